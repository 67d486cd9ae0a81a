"""
Errors - Exception hierarchy for graph editing, validation and execution.

- GraphError: Structural errors raised synchronously by mutation calls
- ValidationError: Raised by an operation's own validate()
- ExecutionError: A node failed while running
- ChunkError: Tiled processing could not proceed
"""

from __future__ import annotations

from typing import Any


class PixelflowError(Exception):
    """Base class for all errors raised by pixelflow."""


# --- Graph errors ---

class GraphError(PixelflowError):
    """A graph mutation was rejected. The graph is left unchanged."""


class NodeNotFoundError(GraphError):
    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class PortNotFoundError(GraphError):
    def __init__(self, node_id: Any, port: str, direction: str = "port"):
        self.node_id = node_id
        self.port = port
        self.direction = direction
        super().__init__(f"No {direction} named '{port}' on node {node_id}")


class ParameterNotFoundError(GraphError):
    def __init__(self, node_id: Any, name: str):
        self.node_id = node_id
        self.name = name
        super().__init__(f"No parameter named '{name}' on node {node_id}")


class TypeMismatchError(GraphError):
    def __init__(self, expected: Any, actual: Any, context: str = ""):
        self.expected = expected
        self.actual = actual
        where = f" ({context})" if context else ""
        super().__init__(f"Type mismatch{where}: expected {expected}, got {actual}")


class DuplicateConnectionError(GraphError):
    def __init__(self, node_id: Any, port: str):
        self.node_id = node_id
        self.port = port
        super().__init__(f"Input '{port}' on node {node_id} is already connected")


class CycleWouldFormError(GraphError):
    def __init__(self, source: Any, target: Any):
        self.source = source
        self.target = target
        super().__init__(f"Connecting {source} -> {target} would create a cycle")


class CycleDetectedError(GraphError):
    def __init__(self, nodes: list[Any]):
        self.nodes = nodes
        super().__init__(f"Graph contains a cycle through {len(nodes)} node(s)")


class ConnectionNotFoundError(GraphError):
    def __init__(self, connection_id: Any):
        self.connection_id = connection_id
        super().__init__(f"Connection not found: {connection_id}")


class DuplicateNodeError(GraphError):
    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id}")


class OperationNotFoundError(GraphError):
    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Unknown operation: {operation_id}")


# --- Validation errors ---

class ValidationError(PixelflowError):
    """
    Raised by an operation's validate() to reject its configuration.

    Attributes:
        message: Human readable description
        node_id: Originating node, filled in by the pipeline if omitted
        port: Offending port or parameter name, if any
    """

    def __init__(self, message: str, node_id: Any = None, port: str | None = None):
        self.message = message
        self.node_id = node_id
        self.port = port
        super().__init__(message)


# --- Execution errors ---

class ExecutionError(PixelflowError):
    """
    A node failed during execution.

    Wraps the operation's own failure together with the node id and,
    where applicable, the port name.
    """

    def __init__(
        self,
        message: str,
        node_id: Any = None,
        port: str | None = None,
        cause: BaseException | None = None,
    ):
        self.message = message
        self.node_id = node_id
        self.port = port
        self.cause = cause
        super().__init__(message)

    @classmethod
    def wrap(cls, error: BaseException, node_id: Any) -> ExecutionError:
        """Attach a node id to an arbitrary exception."""
        if isinstance(error, ExecutionError):
            if error.node_id is None:
                error.node_id = node_id
            return error
        wrapped = cls(f"{type(error).__name__}: {error}", node_id=node_id, cause=error)
        wrapped.__cause__ = error
        return wrapped

    def __str__(self) -> str:
        location = ""
        if self.node_id is not None:
            location = f"[node {self.node_id}"
            if self.port:
                location += f", port '{self.port}'"
            location += "] "
        return f"{location}{self.message}"


class ChunkError(ExecutionError):
    """Tile extraction out of bounds, or the memory budget cannot be met."""


class ExecutionCancelled(PixelflowError):
    """The cancellation handle tripped at a suspension point."""


# --- Registry / persistence errors ---

class RegistryError(PixelflowError):
    """Invalid registry use."""


class RegistryFrozenError(RegistryError):
    def __init__(self) -> None:
        super().__init__("Registry is frozen; no further registrations allowed")


class GraphSerializationError(PixelflowError, ValueError):
    """Serialized graph data is malformed."""
