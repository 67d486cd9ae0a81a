"""
Processing Graph - Nodes, connections and the mutation API.

This module defines the fundamental building blocks:
- Node: An operation instance with its own parameter overrides
- Connection: A link from a node output to a node input
- ProcessingGraph: The complete graph, enforcing its invariants on
  every mutation

Invariants after every successful mutation: the graph is acyclic, each
input has at most one incoming connection, every connection refers to
existing ports on existing nodes, and node ids are unique. A rejected
mutation raises a GraphError and leaves the graph unchanged.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterator, NewType
from uuid import UUID, uuid4

from pixelflow.core.data_types import assignable, type_of
from pixelflow.core.errors import (
    ConnectionNotFoundError,
    CycleWouldFormError,
    DuplicateConnectionError,
    DuplicateNodeError,
    NodeNotFoundError,
    ParameterNotFoundError,
    PortNotFoundError,
    TypeMismatchError,
)
from pixelflow.core.node_types import Operation, OperationMetadata, OperationRegistry


logger = logging.getLogger(__name__)


# Type aliases for clarity
NodeId = NewType("NodeId", UUID)
ConnectionId = NewType("ConnectionId", UUID)


def new_node_id() -> NodeId:
    """Generate a new unique node ID."""
    return NodeId(uuid4())


def new_connection_id() -> ConnectionId:
    """Generate a new unique connection ID."""
    return ConnectionId(uuid4())


@dataclass
class Point2D:
    """Placement of a node on an editor canvas. Not interpreted by the engine."""
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class OutputSocket:
    """Reference to an output socket on a node."""
    node_id: NodeId
    output_name: str


@dataclass(frozen=True)
class InputSocket:
    """Reference to an input socket on a node."""
    node_id: NodeId
    input_name: str


@dataclass(frozen=True)
class Connection:
    """
    A connection (wire) between two nodes.

    Connects an output socket of one node to an input socket of another.
    """
    id: ConnectionId
    source: OutputSocket
    target: InputSocket

    @classmethod
    def create(
        cls,
        source_node: NodeId,
        source_output: str,
        target_node: NodeId,
        target_input: str,
        connection_id: ConnectionId | None = None,
    ) -> Connection:
        """Factory method to create a new connection."""
        return cls(
            id=connection_id or new_connection_id(),
            source=OutputSocket(source_node, source_output),
            target=InputSocket(target_node, target_input),
        )


@dataclass
class Node:
    """
    A single node in the processing graph.

    Nodes have:
    - A unique ID
    - The operation they run (looked up from the registry by id)
    - Parameter overrides; anything not overridden uses the default
    - Opaque placement metadata
    """
    id: NodeId
    operation_id: str
    operation: Operation = field(repr=False, compare=False)
    parameters: dict[str, Any] = field(default_factory=dict)
    position: Point2D = field(default_factory=Point2D)
    label: str = ""

    @property
    def metadata(self) -> OperationMetadata:
        return self.operation.metadata()

    def get_parameter(self, name: str, default: Any = None) -> Any:
        """Get a parameter value: override, then declared default."""
        if name in self.parameters:
            return self.parameters[name]
        definition = self.metadata.get_parameter(name)
        if definition is not None and definition.default is not None:
            return definition.default
        return default

    def resolved_parameters(self) -> dict[str, Any]:
        """Declared defaults merged with this node's overrides."""
        parameters = self.metadata.get_default_parameters()
        parameters.update(self.parameters)
        return parameters


class ProcessingGraph:
    """
    A directed acyclic graph of operation nodes.

    Nodes are stored in insertion order, which is also the tie-break used
    by the topology analyzer. Connections are kept in insertion order alongside
    an index on target inputs.
    """

    def __init__(self, registry: OperationRegistry, name: str = "Untitled"):
        self.id: UUID = uuid4()
        self.name: str = name
        self.registry = registry
        self._nodes: dict[NodeId, Node] = {}
        self._connections: dict[ConnectionId, Connection] = {}
        self._inputs: dict[InputSocket, ConnectionId] = {}

    # --- Node operations ---

    @property
    def nodes(self) -> dict[NodeId, Node]:
        """Get all nodes (read-only copy, insertion ordered)."""
        return self._nodes.copy()

    def node_ids(self) -> list[NodeId]:
        return list(self._nodes)

    def add_node(
        self,
        operation_id: str,
        *,
        node_id: NodeId | None = None,
        position: Point2D | None = None,
        label: str = "",
    ) -> NodeId:
        """
        Add a node running the given operation.

        Raises:
            OperationNotFoundError: If the registry has no such operation.
            DuplicateNodeError: If an explicit node_id is already in use.
        """
        node_id = node_id or new_node_id()
        if node_id in self._nodes:
            raise DuplicateNodeError(node_id)

        operation = self.registry.create(operation_id)
        self._nodes[node_id] = Node(
            id=node_id,
            operation_id=operation_id,
            operation=operation,
            position=position or Point2D(),
            label=label,
        )
        logger.debug(f"Added node {node_id} ({operation_id})")
        return node_id

    def remove_node(self, node_id: NodeId) -> Node:
        """
        Remove a node and all its connections.

        Raises:
            NodeNotFoundError: If the node does not exist.
        """
        node = self.require_node(node_id)
        for conn in self.connections_to(node_id) + self.connections_from(node_id):
            self._drop_connection(conn)
        del self._nodes[node_id]
        logger.debug(f"Removed node {node_id}")
        return node

    def get_node(self, node_id: NodeId) -> Node | None:
        """Get a node by ID."""
        return self._nodes.get(node_id)

    def require_node(self, node_id: NodeId) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def set_parameter(self, node_id: NodeId, name: str, value: Any) -> None:
        """
        Override a parameter on a node.

        Integer values are widened for Float parameters. Constraints are
        not enforced here; the validation pipeline reports them.

        Raises:
            NodeNotFoundError: If the node does not exist.
            ParameterNotFoundError: If the operation has no such parameter.
            TypeMismatchError: If the value has the wrong type.
        """
        node = self.require_node(node_id)
        definition = node.metadata.get_parameter(name)
        if definition is None:
            raise ParameterNotFoundError(node_id, name)
        if not definition.accepts_type(value):
            raise TypeMismatchError(definition.port_type, type_of(value), f"parameter '{name}'")
        node.parameters[name] = definition.coerce(value)

    def reset_parameter(self, node_id: NodeId, name: str) -> None:
        """Drop an override so the declared default applies again."""
        node = self.require_node(node_id)
        node.parameters.pop(name, None)

    # --- Connection operations ---

    @property
    def connections(self) -> list[Connection]:
        """Get all connections (read-only copy, insertion ordered)."""
        return list(self._connections.values())

    def get_connection(self, connection_id: ConnectionId) -> Connection | None:
        return self._connections.get(connection_id)

    def connect(
        self,
        source_node: NodeId,
        source_output: str,
        target_node: NodeId,
        target_input: str,
        *,
        connection_id: ConnectionId | None = None,
    ) -> ConnectionId:
        """
        Connect an output to an input.

        Every check runs before the graph is touched, in this order:
        nodes exist, ports exist, types are assignable, the input is
        free, and no cycle would form.

        Returns:
            The id of the new connection.

        Raises:
            NodeNotFoundError, PortNotFoundError, TypeMismatchError,
            DuplicateConnectionError, CycleWouldFormError
        """
        source = self.require_node(source_node)
        target = self.require_node(target_node)

        output_def = source.metadata.get_output(source_output)
        if output_def is None:
            raise PortNotFoundError(source_node, source_output, "output")
        input_def = target.metadata.get_input(target_input)
        if input_def is None:
            raise PortNotFoundError(target_node, target_input, "input")

        if not assignable(output_def.port_type, input_def.port_type):
            raise TypeMismatchError(
                input_def.port_type,
                output_def.port_type,
                f"{source_output} -> {target_input}",
            )

        socket = InputSocket(target_node, target_input)
        if socket in self._inputs:
            raise DuplicateConnectionError(target_node, target_input)

        if self._would_create_cycle(source_node, target_node):
            raise CycleWouldFormError(source_node, target_node)

        conn = Connection.create(
            source_node, source_output, target_node, target_input, connection_id
        )
        self._connections[conn.id] = conn
        self._inputs[socket] = conn.id
        logger.debug(f"Connected {source_node}.{source_output} -> {target_node}.{target_input}")
        return conn.id

    def disconnect(self, connection_id: ConnectionId) -> Connection:
        """
        Remove a connection by ID.

        Raises:
            ConnectionNotFoundError: If there is no such connection.
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            raise ConnectionNotFoundError(connection_id)
        self._drop_connection(conn)
        return conn

    def disconnect_input(self, node_id: NodeId, input_name: str) -> Connection | None:
        """Remove whatever feeds an input, if anything."""
        conn = self.get_input_connection(node_id, input_name)
        if conn is not None:
            self._drop_connection(conn)
        return conn

    def _drop_connection(self, conn: Connection) -> None:
        del self._connections[conn.id]
        self._inputs.pop(conn.target, None)
        logger.debug(f"Disconnected {conn.id}")

    def get_input_connection(
        self, node_id: NodeId, input_name: str
    ) -> Connection | None:
        """Get the connection feeding into a specific input."""
        conn_id = self._inputs.get(InputSocket(node_id, input_name))
        return self._connections.get(conn_id) if conn_id else None

    def get_output_connections(
        self, node_id: NodeId, output_name: str
    ) -> list[Connection]:
        """Get all connections from a specific output."""
        return [
            conn for conn in self._connections.values()
            if conn.source.node_id == node_id and conn.source.output_name == output_name
        ]

    def connections_to(self, node_id: NodeId) -> list[Connection]:
        return [c for c in self._connections.values() if c.target.node_id == node_id]

    def connections_from(self, node_id: NodeId) -> list[Connection]:
        return [c for c in self._connections.values() if c.source.node_id == node_id]

    # --- Graph queries ---

    def predecessors(self, node_id: NodeId) -> list[NodeId]:
        """Direct upstream nodes, without duplicates, in connection order."""
        return list(dict.fromkeys(c.source.node_id for c in self.connections_to(node_id)))

    def successors(self, node_id: NodeId) -> list[NodeId]:
        """Direct downstream nodes, without duplicates, in connection order."""
        return list(dict.fromkeys(c.target.node_id for c in self.connections_from(node_id)))

    def adjacency(self) -> dict[NodeId, list[NodeId]]:
        """Successor lists for every node, in insertion order."""
        adj: dict[NodeId, list[NodeId]] = {nid: [] for nid in self._nodes}
        for conn in self._connections.values():
            targets = adj[conn.source.node_id]
            if conn.target.node_id not in targets:
                targets.append(conn.target.node_id)
        return adj

    def get_output_nodes(self) -> list[Node]:
        """Nodes with no outgoing connections."""
        sources = {conn.source.node_id for conn in self._connections.values()}
        return [node for nid, node in self._nodes.items() if nid not in sources]

    def get_upstream_nodes(self, node_id: NodeId) -> set[NodeId]:
        """Get all nodes that this node depends on (directly or indirectly)."""
        return self._reachable(node_id, forward=False)

    def get_downstream_nodes(self, node_id: NodeId) -> set[NodeId]:
        """Get all nodes that depend on this node (directly or indirectly)."""
        return self._reachable(node_id, forward=True)

    def _reachable(self, start: NodeId, forward: bool) -> set[NodeId]:
        found: set[NodeId] = set()
        queue = deque([start])
        while queue:
            current = queue.popleft()
            step = self.successors(current) if forward else self.predecessors(current)
            for nid in step:
                if nid not in found:
                    found.add(nid)
                    queue.append(nid)
        return found

    def _would_create_cycle(self, source: NodeId, target: NodeId) -> bool:
        """Check if an edge source -> target would close a cycle."""
        if source == target:
            return True

        # If source is reachable from target, the new edge closes a loop
        adj = self.adjacency()
        visited: set[NodeId] = set()
        queue = deque([target])
        while queue:
            current = queue.popleft()
            if current == source:
                return True
            if current in visited:
                continue
            visited.add(current)
            queue.extend(adj[current])
        return False

    # --- Utility ---

    def copy(self) -> ProcessingGraph:
        """
        Independent copy sharing operation instances and the registry.

        Useful for isolating a run from edits made while it executes.
        """
        clone = ProcessingGraph(self.registry, self.name)
        clone.id = self.id
        for nid, node in self._nodes.items():
            clone._nodes[nid] = Node(
                id=node.id,
                operation_id=node.operation_id,
                operation=node.operation,
                parameters=dict(node.parameters),
                position=Point2D(node.position.x, node.position.y),
                label=node.label,
            )
        clone._connections = dict(self._connections)
        clone._inputs = dict(self._inputs)
        return clone

    def clear(self) -> None:
        """Remove all nodes and connections."""
        self._nodes.clear()
        self._connections.clear()
        self._inputs.clear()

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        """Return the number of nodes."""
        return len(self._nodes)

    def __contains__(self, node_id: NodeId) -> bool:
        """Check if a node exists in the graph."""
        return node_id in self._nodes
