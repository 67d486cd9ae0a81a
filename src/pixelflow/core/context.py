"""
Contexts handed to operations, and the cooperative cancellation handle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from pixelflow.core.data_types import PortType
from pixelflow.core.errors import ExecutionCancelled, ExecutionError


class CancellationToken:
    """
    Cooperative cancellation signal.

    Polled only at suspension points: between nodes, at batch barriers
    and between tiles. An optional external predicate lets a host
    application trip it without holding a reference.
    """

    def __init__(self, external_cancelled: Callable[[], bool] | None = None):
        self._external_cancelled = external_cancelled
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        if self._cancelled:
            return True
        return bool(self._external_cancelled and self._external_cancelled())

    def cancel(self) -> None:
        self._cancelled = True

    def check_cancelled(self) -> None:
        """Raise if cancelled."""
        if self.is_cancelled:
            raise ExecutionCancelled("Execution cancelled")


@dataclass
class ValidationContext:
    """
    What an operation sees when asked to validate itself.

    Attributes:
        node_id: The node being validated
        operation_id: Registry id of its operation
        parameters: Resolved parameter values (defaults merged with overrides)
        input_types: Types of upstream outputs feeding each connected input
        defaults: Default values for unconnected inputs that have one
    """
    node_id: Any
    operation_id: str
    parameters: dict[str, Any] = field(default_factory=dict)
    input_types: dict[str, PortType] = field(default_factory=dict)
    defaults: dict[str, Any] = field(default_factory=dict)

    def is_connected(self, name: str) -> bool:
        return name in self.input_types

    def get_parameter(self, name: str, default: Any = None) -> Any:
        return self.parameters.get(name, default)


class ExecutionContext:
    """
    Context passed to an operation's execute().

    Provides access to:
    - Resolved input values and parameters
    - The output slots to fill
    - Cancellation checking and progress reporting
    """

    def __init__(
        self,
        node_id: Any,
        inputs: dict[str, Any],
        parameters: dict[str, Any],
        cancel: CancellationToken | None = None,
        on_progress: Callable[[float, str], None] | None = None,
    ):
        self.node_id = node_id
        self.inputs = inputs
        self.parameters = parameters
        self.outputs: dict[str, Any] = {}
        self._cancel = cancel
        self._on_progress = on_progress

    def get_input(self, name: str, default: Any = None) -> Any:
        value = self.inputs.get(name)
        return default if value is None else value

    def require_input(self, name: str) -> Any:
        """Get an input value, raising if it is absent."""
        value = self.inputs.get(name)
        if value is None:
            raise ExecutionError(f"Missing input '{name}'", node_id=self.node_id, port=name)
        return value

    def get_parameter(self, name: str, default: Any = None) -> Any:
        return self.parameters.get(name, default)

    def set_output(self, name: str, value: Any) -> None:
        self.outputs[name] = value

    @property
    def cancellation(self) -> CancellationToken | None:
        return self._cancel

    @property
    def is_cancelled(self) -> bool:
        return bool(self._cancel and self._cancel.is_cancelled)

    def check_cancelled(self) -> None:
        if self._cancel is not None:
            self._cancel.check_cancelled()

    def report_progress(self, fraction: float, message: str = "") -> None:
        """Report intra-node progress in [0, 1] to listeners."""
        if self._on_progress:
            self._on_progress(max(0.0, min(1.0, fraction)), message)

    def derive(self, inputs: dict[str, Any]) -> ExecutionContext:
        """A sibling context with replaced inputs and fresh outputs."""
        return ExecutionContext(
            node_id=self.node_id,
            inputs=inputs,
            parameters=self.parameters,
            cancel=self._cancel,
            on_progress=self._on_progress,
        )
