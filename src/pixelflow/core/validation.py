"""
Validation Pipeline - Staged, aggregate checks over a finished graph.

A pipeline is an ordered list of stages. Every stage always runs and
appends to a shared report; nothing aborts early.

- full: structural -> type -> constraint -> custom -> resource
- minimal: structural -> type
"""

from __future__ import annotations

import glob
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any

from pixelflow.core.context import ValidationContext
from pixelflow.core.data_types import assignable
from pixelflow.core.errors import ValidationError
from pixelflow.core.graph import ConnectionId, NodeId, ProcessingGraph
from pixelflow.core.node_types import PathRole
from pixelflow.core.topology import TopologyAnalyzer


logger = logging.getLogger(__name__)


class Severity(Enum):
    ERROR = auto()
    WARNING = auto()


class IssueCode(Enum):
    EMPTY_GRAPH = auto()
    CYCLE_DETECTED = auto()
    MISSING_REQUIRED_INPUT = auto()
    DISCONNECTED_SUBGRAPHS = auto()
    TYPE_MISMATCH = auto()
    CONSTRAINT_VIOLATION = auto()
    UNKNOWN_PARAMETER = auto()
    CUSTOM_VALIDATION = auto()
    RESOURCE_NOT_FOUND = auto()
    RESOURCE_NOT_WRITABLE = auto()
    STAGE_FAILURE = auto()


@dataclass
class ValidationIssue:
    """A single error or warning found by a stage."""
    severity: Severity
    code: IssueCode
    message: str
    stage: str = ""
    node_id: NodeId | None = None
    connection_id: ConnectionId | None = None
    port: str | None = None
    suggestion: str | None = None

    def __str__(self) -> str:
        where = ""
        if self.node_id is not None:
            where = f" [node {self.node_id}"
            if self.port:
                where += f", '{self.port}'"
            where += "]"
        return f"{self.severity.name.lower()}{where}: {self.message}"


@dataclass
class ValidationReport:
    """Aggregate result: valid iff there are no errors."""
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity == Severity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def errors_for(self, node_id: NodeId) -> list[ValidationIssue]:
        return [e for e in self.errors if e.node_id == node_id]

    def __bool__(self) -> bool:
        return self.valid


class ValidationStage(ABC):
    """One pass over the graph. Stages only ever append to the report."""

    name: str = ""

    @abstractmethod
    def run(self, graph: ProcessingGraph, report: ValidationReport) -> None:
        ...

    def error(self, code: IssueCode, message: str, **kwargs: Any) -> ValidationIssue:
        return ValidationIssue(Severity.ERROR, code, message, stage=self.name, **kwargs)

    def warning(self, code: IssueCode, message: str, **kwargs: Any) -> ValidationIssue:
        return ValidationIssue(Severity.WARNING, code, message, stage=self.name, **kwargs)


class StructuralStage(ValidationStage):
    """Required inputs satisfied, acyclic, islands reported as warnings."""

    name = "structural"

    def run(self, graph: ProcessingGraph, report: ValidationReport) -> None:
        if len(graph) == 0:
            report.add(self.warning(IssueCode.EMPTY_GRAPH, "Graph is empty"))
            return

        analyzer = TopologyAnalyzer(graph)
        if analyzer.has_cycle():
            report.add(self.error(IssueCode.CYCLE_DETECTED, "Graph contains a cycle"))

        for node in graph:
            for input_def in node.metadata.inputs:
                if not input_def.required or input_def.has_default:
                    continue
                if graph.get_input_connection(node.id, input_def.name) is None:
                    report.add(self.error(
                        IssueCode.MISSING_REQUIRED_INPUT,
                        f"Required input '{input_def.name}' is not connected",
                        node_id=node.id,
                        port=input_def.name,
                        suggestion=f"Connect an output of type {input_def.port_type} to it",
                    ))

        islands = analyzer.connected_subgraphs()
        if len(islands) > 1:
            report.add(self.warning(
                IssueCode.DISCONNECTED_SUBGRAPHS,
                f"Graph contains {len(islands)} disconnected subgraphs",
            ))


class TypeStage(ValidationStage):
    """Every connection joins assignable types."""

    name = "type"

    def run(self, graph: ProcessingGraph, report: ValidationReport) -> None:
        for conn in graph.connections:
            source = graph.get_node(conn.source.node_id)
            target = graph.get_node(conn.target.node_id)
            if source is None or target is None:
                report.add(self.error(
                    IssueCode.TYPE_MISMATCH,
                    "Connection refers to a missing node",
                    connection_id=conn.id,
                ))
                continue

            output_def = source.metadata.get_output(conn.source.output_name)
            input_def = target.metadata.get_input(conn.target.input_name)
            if output_def is None or input_def is None:
                report.add(self.error(
                    IssueCode.TYPE_MISMATCH,
                    "Connection refers to a missing port",
                    connection_id=conn.id,
                    node_id=target.id,
                ))
                continue

            if not assignable(output_def.port_type, input_def.port_type):
                report.add(self.error(
                    IssueCode.TYPE_MISMATCH,
                    f"Cannot connect {output_def.port_type} to {input_def.port_type}",
                    connection_id=conn.id,
                    node_id=target.id,
                    port=input_def.name,
                ))


class ConstraintStage(ValidationStage):
    """Every parameter's current value satisfies its constraints."""

    name = "constraint"

    def run(self, graph: ProcessingGraph, report: ValidationReport) -> None:
        for node in graph:
            meta = node.metadata
            for param in meta.parameters:
                value = node.get_parameter(param.name)
                for message in param.check(value):
                    report.add(self.error(
                        IssueCode.CONSTRAINT_VIOLATION,
                        f"Parameter '{param.name}': {message}",
                        node_id=node.id,
                        port=param.name,
                    ))
            for name in node.parameters:
                if meta.get_parameter(name) is None:
                    report.add(self.warning(
                        IssueCode.UNKNOWN_PARAMETER,
                        f"Override '{name}' matches no parameter of {meta.id}",
                        node_id=node.id,
                        port=name,
                    ))


class CustomStage(ValidationStage):
    """Delegates to each operation's own validate()."""

    name = "custom"

    def run(self, graph: ProcessingGraph, report: ValidationReport) -> None:
        for node in graph:
            context = self._build_context(graph, node.id)
            try:
                node.operation.validate(context)
            except ValidationError as e:
                report.add(self.error(
                    IssueCode.CUSTOM_VALIDATION,
                    e.message,
                    node_id=e.node_id or node.id,
                    port=e.port,
                ))
            except Exception as e:
                logger.debug(f"validate() of {node.operation_id} raised", exc_info=True)
                report.add(self.error(
                    IssueCode.CUSTOM_VALIDATION,
                    f"{type(e).__name__}: {e}",
                    node_id=node.id,
                ))

    @staticmethod
    def _build_context(graph: ProcessingGraph, node_id: NodeId) -> ValidationContext:
        node = graph.require_node(node_id)
        input_types = {}
        defaults = {}
        for input_def in node.metadata.inputs:
            conn = graph.get_input_connection(node_id, input_def.name)
            if conn is not None:
                source = graph.get_node(conn.source.node_id)
                output_def = source.metadata.get_output(conn.source.output_name) if source else None
                if output_def is not None:
                    input_types[input_def.name] = output_def.port_type
            elif input_def.has_default:
                defaults[input_def.name] = input_def.default_value
        return ValidationContext(
            node_id=node_id,
            operation_id=node.operation_id,
            parameters=node.resolved_parameters(),
            input_types=input_types,
            defaults=defaults,
        )


class ResourceStage(ValidationStage):
    """Checks filesystem paths without running the operation."""

    name = "resource"

    def run(self, graph: ProcessingGraph, report: ValidationReport) -> None:
        for node in graph:
            for param in node.metadata.parameters:
                if param.path_role is None:
                    continue
                value = node.get_parameter(param.name)
                if not isinstance(value, str) or not value:
                    continue
                if param.path_role == PathRole.READ:
                    self._check_readable(report, node.id, param.name, value)
                else:
                    self._check_writable(report, node.id, param.name, value)

    def _check_readable(self, report: ValidationReport, node_id: NodeId, name: str, value: str) -> None:
        if glob.has_magic(value):
            if not glob.glob(value):
                report.add(self.error(
                    IssueCode.RESOURCE_NOT_FOUND,
                    f"No files match pattern: {value}",
                    node_id=node_id,
                    port=name,
                ))
        elif not Path(value).is_file():
            report.add(self.error(
                IssueCode.RESOURCE_NOT_FOUND,
                f"File not found: {value}",
                node_id=node_id,
                port=name,
            ))

    def _check_writable(self, report: ValidationReport, node_id: NodeId, name: str, value: str) -> None:
        parent = Path(value).parent
        if not parent.exists():
            report.add(self.warning(
                IssueCode.RESOURCE_NOT_FOUND,
                f"Output directory does not exist: {parent}",
                node_id=node_id,
                port=name,
                suggestion="It will be created when the graph runs",
            ))
        elif not os.access(parent, os.W_OK):
            report.add(self.error(
                IssueCode.RESOURCE_NOT_WRITABLE,
                f"Output directory is not writable: {parent}",
                node_id=node_id,
                port=name,
            ))


class ValidationPipeline:
    """Runs stages in order and aggregates their findings."""

    def __init__(self, stages: list[ValidationStage] | None = None):
        self.stages: list[ValidationStage] = list(stages or [])

    @classmethod
    def full(cls) -> ValidationPipeline:
        return cls([StructuralStage(), TypeStage(), ConstraintStage(), CustomStage(), ResourceStage()])

    @classmethod
    def minimal(cls) -> ValidationPipeline:
        return cls([StructuralStage(), TypeStage()])

    @classmethod
    def for_mode(cls, mode: str) -> ValidationPipeline:
        if mode == "full":
            return cls.full()
        if mode == "minimal":
            return cls.minimal()
        raise ValueError(f"Unknown validation mode: {mode}")

    def add_stage(self, stage: ValidationStage) -> ValidationPipeline:
        self.stages.append(stage)
        return self

    def run(self, graph: ProcessingGraph) -> ValidationReport:
        report = ValidationReport()
        for stage in self.stages:
            try:
                stage.run(graph, report)
            except Exception as e:
                logger.exception(f"Validation stage '{stage.name}' failed")
                report.add(ValidationIssue(
                    Severity.ERROR,
                    IssueCode.STAGE_FAILURE,
                    f"Stage '{stage.name}' failed: {e}",
                    stage=stage.name,
                ))
        logger.debug(
            f"Validated graph {graph.name!r}: "
            f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)"
        )
        return report


def validate(graph: ProcessingGraph, mode: str = "full") -> ValidationReport:
    """Validate a graph with the full (default) or minimal pipeline."""
    return ValidationPipeline.for_mode(mode).run(graph)
