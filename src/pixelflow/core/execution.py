"""
Execution Engine - Async graph execution.

This module provides the engine that runs a processing graph with
progress reporting, cooperative cancellation, result caching and
tiled processing of oversized images.

Sequential mode runs nodes one by one in topological order. Parallel
mode runs each depth batch concurrently (bounded by max_workers) and
waits for the whole batch before starting the next one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable

from pixelflow.core.cache import CacheKey, ResultCache
from pixelflow.core.chunked import (
    MemoryImageSink,
    MemoryImageSource,
    ProcessingConfig,
    TileBuffer,
    estimate_working_set,
    process_chunked,
    process_pointwise,
)
from pixelflow.core.config import ExecutionSettings, FailurePolicy
from pixelflow.core.context import CancellationToken, ExecutionContext
from pixelflow.core.data_types import DataType, ImageData
from pixelflow.core.errors import ChunkError, ExecutionCancelled, ExecutionError
from pixelflow.core.graph import Node, NodeId, ProcessingGraph
from pixelflow.core.node_types import SpatialExtent
from pixelflow.core.topology import TopologyAnalyzer


logger = logging.getLogger(__name__)


class NodeStatus(Enum):
    """Per-node state within a run: PENDING -> RUNNING -> terminal."""
    PENDING = auto()
    RUNNING = auto()
    COMPLETED = auto()
    ERROR = auto()
    SKIPPED = auto()


class SkipReason(Enum):
    UPSTREAM_FAILED = auto()
    FAIL_FAST = auto()
    CANCELLED = auto()


class ProgressKind(Enum):
    STARTED = auto()
    NODE_STARTED = auto()
    NODE_COMPLETED = auto()
    NODE_FAILED = auto()
    NODE_SKIPPED = auto()
    TILE_PROGRESS = auto()
    COMPLETED = auto()
    CANCELLED = auto()


@dataclass
class ExecutionProgress:
    """Progress information for a run."""
    kind: ProgressKind
    node_id: NodeId | None = None
    operation_id: str = ""
    status: NodeStatus | None = None
    nodes_completed: int = 0
    nodes_total: int = 0
    message: str = ""
    error: str | None = None
    cache_hit: bool = False
    fraction: float | None = None  # Intra-node progress, tiles done / total

    @property
    def progress_percent(self) -> float:
        if self.nodes_total == 0:
            return 0.0
        return (self.nodes_completed / self.nodes_total) * 100


ProgressSink = Callable[[ExecutionProgress], None]


@dataclass
class ExecutionResult:
    """Everything a run produced. Node failures are data, not exceptions."""
    success: bool
    outputs: dict[NodeId, dict[str, Any]] = field(default_factory=dict)
    errors: dict[NodeId, ExecutionError] = field(default_factory=dict)
    statuses: dict[NodeId, NodeStatus] = field(default_factory=dict)
    skip_reasons: dict[NodeId, SkipReason] = field(default_factory=dict)
    cache_hits: set[NodeId] = field(default_factory=set)
    terminal_nodes: list[NodeId] = field(default_factory=list)
    elapsed_time: float = 0.0
    cancelled: bool = False

    @property
    def nodes_executed(self) -> int:
        """Completed nodes that were actually computed."""
        return sum(
            1 for nid, status in self.statuses.items()
            if status == NodeStatus.COMPLETED and nid not in self.cache_hits
        )

    @property
    def nodes_skipped(self) -> int:
        return sum(1 for s in self.statuses.values() if s == NodeStatus.SKIPPED)

    def output(self, node_id: NodeId, port: str) -> Any:
        return self.outputs.get(node_id, {}).get(port)

    def terminal_outputs(self) -> dict[NodeId, dict[str, Any]]:
        """Outputs of nodes nothing else consumes."""
        return {nid: self.outputs[nid] for nid in self.terminal_nodes if nid in self.outputs}


@dataclass
class _ChunkPlan:
    input_name: str
    output_name: str
    image: ImageData
    extent: SpatialExtent


class _Run:
    """Mutable state of one execution."""

    def __init__(
        self,
        graph: ProcessingGraph,
        settings: ExecutionSettings,
        cancel: CancellationToken,
        on_progress: ProgressSink | None,
    ):
        self.graph = graph
        self.settings = settings
        self.cancel = cancel
        self.on_progress = on_progress
        self.statuses = {nid: NodeStatus.PENDING for nid in graph.node_ids()}
        self.outputs: dict[NodeId, dict[str, Any]] = {}
        self.errors: dict[NodeId, ExecutionError] = {}
        self.skip_reasons: dict[NodeId, SkipReason] = {}
        self.cache_hits: set[NodeId] = set()
        self.stop_reason: SkipReason | None = None
        self.finished = 0

    @property
    def cancelled(self) -> bool:
        return self.stop_reason == SkipReason.CANCELLED

    def poll_cancel(self) -> None:
        if self.stop_reason is None and self.cancel.is_cancelled:
            logger.info("Execution cancelled")
            self.stop_reason = SkipReason.CANCELLED

    def emit(self, kind: ProgressKind, node: Node | None = None, **kwargs: Any) -> None:
        if self.on_progress is None:
            return
        progress = ExecutionProgress(
            kind=kind,
            node_id=node.id if node else None,
            operation_id=node.operation_id if node else "",
            status=self.statuses.get(node.id) if node else None,
            nodes_completed=self.finished,
            nodes_total=len(self.statuses),
            **kwargs,
        )
        try:
            self.on_progress(progress)
        except Exception:
            logger.warning("Progress sink raised; continuing", exc_info=True)

    def start(self, node: Node) -> None:
        self.statuses[node.id] = NodeStatus.RUNNING
        self.emit(ProgressKind.NODE_STARTED, node, message=f"Executing {node.operation_id}")

    def complete(self, node: Node, outputs: dict[str, Any], hit: bool) -> None:
        self.outputs[node.id] = outputs
        self.statuses[node.id] = NodeStatus.COMPLETED
        if hit:
            self.cache_hits.add(node.id)
        self.finished += 1
        self.emit(ProgressKind.NODE_COMPLETED, node, cache_hit=hit, message=f"Completed {node.operation_id}")

    def fail(self, node: Node, error: ExecutionError) -> None:
        self.errors[node.id] = error
        self.statuses[node.id] = NodeStatus.ERROR
        self.finished += 1
        logger.warning(f"Node {node.id} ({node.operation_id}) failed: {error.message}")
        if self.settings.failure_policy == FailurePolicy.FAIL_FAST and self.stop_reason is None:
            self.stop_reason = SkipReason.FAIL_FAST
        self.emit(ProgressKind.NODE_FAILED, node, error=str(error), message=f"Failed {node.operation_id}")

    def skip(self, node: Node, reason: SkipReason) -> None:
        self.statuses[node.id] = NodeStatus.SKIPPED
        self.skip_reasons[node.id] = reason
        self.finished += 1
        self.emit(ProgressKind.NODE_SKIPPED, node, message=f"Skipped: {reason.name.lower()}")


class ExecutionEngine:
    """
    Runs processing graphs.

    The engine owns a ResultCache, passed in or created fresh, so
    separate engines never share state unless the caller shares a cache.
    The graph must not be mutated while a run is in progress; pass
    `graph.copy()` if that cannot be guaranteed.
    """

    def __init__(self, cache: ResultCache | None = None):
        self.cache = cache if cache is not None else ResultCache()

    async def execute(
        self,
        graph: ProcessingGraph,
        settings: ExecutionSettings | None = None,
        on_progress: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> ExecutionResult:
        """
        Execute every node of a graph.

        Args:
            graph: The graph to run (read-only during the run)
            settings: Execution settings, defaults if omitted
            on_progress: Called at every node status transition
            cancel: Polled between nodes, at batch barriers and between tiles

        Returns:
            ExecutionResult with per-node outputs, errors and statuses
        """
        settings = settings or ExecutionSettings()
        cancel = cancel or CancellationToken()
        run = _Run(graph, settings, cancel, on_progress)
        analyzer = TopologyAnalyzer(graph)
        start = time.perf_counter()

        mode = "parallel" if settings.parallel else "sequential"
        logger.info(f"Executing graph {graph.name!r}: {len(graph)} node(s), {mode}")
        run.emit(ProgressKind.STARTED, message="Starting execution")

        if settings.parallel:
            await self._run_batches(run, analyzer.parallel_batches())
        else:
            for node_id in analyzer.topological_order():
                run.poll_cancel()
                await self._run_node(run, node_id)

        result = ExecutionResult(
            success=not run.errors and not run.cancelled,
            outputs=run.outputs,
            errors=run.errors,
            statuses=run.statuses,
            skip_reasons=run.skip_reasons,
            cache_hits=run.cache_hits,
            terminal_nodes=[n.id for n in graph.get_output_nodes()],
            elapsed_time=time.perf_counter() - start,
            cancelled=run.cancelled,
        )

        if run.cancelled:
            run.emit(ProgressKind.CANCELLED, message="Execution cancelled")
        else:
            run.emit(ProgressKind.COMPLETED, message="Execution complete")
        logger.info(
            f"Finished graph {graph.name!r} in {result.elapsed_time:.3f}s: "
            f"{result.nodes_executed} executed, {len(result.cache_hits)} cached, "
            f"{len(result.errors)} failed, {result.nodes_skipped} skipped"
        )
        return result

    async def _run_batches(self, run: _Run, batches: list[list[NodeId]]) -> None:
        semaphore = asyncio.Semaphore(run.settings.max_workers)

        async def bounded(node_id: NodeId, dispatched: bool) -> None:
            async with semaphore:
                await self._run_node(run, node_id, dispatched)

        for depth, batch in enumerate(batches):
            run.poll_cancel()
            logger.debug(f"Batch {depth}: {len(batch)} node(s)")
            # The first max_workers members start together; the rest queue for a slot
            await asyncio.gather(*(
                bounded(nid, run.stop_reason is None and index < run.settings.max_workers)
                for index, nid in enumerate(batch)
            ))

    async def _run_node(self, run: _Run, node_id: NodeId, dispatched: bool = False) -> None:
        """
        Run one node, recording its outcome on the run. Never raises.

        A dispatched batch member has already started alongside its
        siblings, so a fail-fast stop raised by one of them lets it finish.
        Cancellation still applies.
        """
        node = run.graph.require_node(node_id)

        run.poll_cancel()
        stop = run.stop_reason
        if stop is not None and not (dispatched and stop == SkipReason.FAIL_FAST):
            run.skip(node, stop)
            return

        blocked = [
            p for p in run.graph.predecessors(node_id)
            if run.statuses[p] != NodeStatus.COMPLETED
        ]
        if blocked:
            run.skip(node, SkipReason.UPSTREAM_FAILED)
            return

        run.start(node)
        try:
            inputs = self._gather_inputs(run, node)
            parameters = node.resolved_parameters()

            if run.settings.use_cache and node.metadata.deterministic:
                key = CacheKey.build(node_id, node.operation_id, parameters, inputs)
                outputs, hit = await self.cache.get_or_compute(
                    key, lambda: self._invoke(run, node, inputs, parameters)
                )
            else:
                outputs, hit = await self._invoke(run, node, inputs, parameters), False

        except ExecutionCancelled:
            run.stop_reason = SkipReason.CANCELLED
            run.skip(node, SkipReason.CANCELLED)
            return
        except Exception as e:
            run.fail(node, ExecutionError.wrap(e, node_id))
            return

        run.complete(node, outputs, hit)

    def _gather_inputs(self, run: _Run, node: Node) -> dict[str, Any]:
        """Connected outputs first, then defaults; absent optional inputs are None."""
        inputs: dict[str, Any] = {}
        for input_def in node.metadata.inputs:
            conn = run.graph.get_input_connection(node.id, input_def.name)
            if conn is not None:
                produced = run.outputs.get(conn.source.node_id, {})
                if conn.source.output_name not in produced:
                    raise ExecutionError(
                        f"Upstream output '{conn.source.output_name}' was not produced",
                        node_id=node.id,
                        port=input_def.name,
                    )
                value = produced[conn.source.output_name]
            elif input_def.has_default:
                value = input_def.default_value
            elif input_def.required:
                raise ExecutionError(
                    f"Missing required input '{input_def.name}'",
                    node_id=node.id,
                    port=input_def.name,
                )
            else:
                value = None

            if value is not None:
                problems = input_def.check(value)
                if problems:
                    raise ExecutionError("; ".join(problems), node_id=node.id, port=input_def.name)
            inputs[input_def.name] = value
        return inputs

    async def _invoke(
        self,
        run: _Run,
        node: Node,
        inputs: dict[str, Any],
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        """Call the operation, directly or tile by tile."""
        context = ExecutionContext(
            node_id=node.id,
            inputs=inputs,
            parameters=parameters,
            cancel=run.cancel,
            on_progress=lambda fraction, message: run.emit(
                ProgressKind.TILE_PROGRESS, node, fraction=fraction, message=message
            ),
        )

        plan = self._chunk_plan(run.settings, node, inputs, parameters)
        if plan is not None:
            outputs = await self._execute_chunked(run.settings, node, context, plan)
        else:
            await node.operation.execute(context)
            outputs = dict(context.outputs)

        for output_def in node.metadata.outputs:
            if output_def.name not in outputs:
                raise ExecutionError(
                    f"Output '{output_def.name}' was not set",
                    node_id=node.id,
                    port=output_def.name,
                )
        return outputs

    def _chunk_plan(
        self,
        settings: ExecutionSettings,
        node: Node,
        inputs: dict[str, Any],
        parameters: dict[str, Any],
    ) -> _ChunkPlan | None:
        """
        Decide whether a node runs tiled.

        Only nodes with exactly one image input and a single image
        output qualify, and only when that image's working set is over
        the memory limit and the operation is not global.
        """
        if not settings.auto_chunk:
            return None

        images = [(name, v) for name, v in inputs.items() if isinstance(v, ImageData)]
        outputs = node.metadata.outputs
        if len(images) != 1 or len(outputs) != 1 or outputs[0].port_type.kind != DataType.IMAGE:
            return None

        name, image = images[0]
        if estimate_working_set(image.width, image.height, image.channels) <= settings.memory_limit:
            return None

        extent = node.operation.spatial_extent(parameters)
        if not extent.is_chunkable:
            logger.debug(f"{node.operation_id} needs the whole image; running untiled")
            return None
        return _ChunkPlan(name, outputs[0].name, image, extent)

    async def _execute_chunked(
        self,
        settings: ExecutionSettings,
        node: Node,
        context: ExecutionContext,
        plan: _ChunkPlan,
    ) -> dict[str, Any]:
        config = ProcessingConfig(settings.tile_size[0], settings.tile_size[1], settings.memory_limit)
        source = MemoryImageSource(plan.image)
        sink = MemoryImageSink(plan.image.width, plan.image.height, plan.image.channels, plan.image.metadata.copy())

        async def run_tile(tile: TileBuffer):
            tile_context = context.derive({**context.inputs, plan.input_name: plan.image.with_pixels(tile.pixels)})
            await node.operation.execute(tile_context)
            result = tile_context.outputs.get(plan.output_name)
            if not isinstance(result, ImageData):
                raise ChunkError(f"Tile produced no image on '{plan.output_name}'", node_id=node.id)
            return result.pixels

        def on_tile(done: int, total: int) -> None:
            context.report_progress(done / total, f"Tile {done}/{total}")

        logger.debug(f"Routing {node.operation_id} through tiled processing (overlap {plan.extent.overlap})")
        if plan.extent.overlap == 0:
            image = await process_pointwise(source, sink, config, run_tile, cancel=context.cancellation, on_tile=on_tile)
        else:
            image = await process_chunked(
                source, sink, config, run_tile,
                overlap=plan.extent.overlap,
                cancel=context.cancellation,
                on_tile=on_tile,
            )
        return {plan.output_name: image}


def execute_graph(
    graph: ProcessingGraph,
    settings: ExecutionSettings | None = None,
    on_progress: ProgressSink | None = None,
    cancel: CancellationToken | None = None,
    cache: ResultCache | None = None,
) -> ExecutionResult:
    """Run a graph to completion from synchronous code."""
    engine = ExecutionEngine(cache)
    return asyncio.run(engine.execute(graph, settings, on_progress, cancel))
