"""
Graph Persistence - Save and load processing graphs as JSON.

Format:
    {
      "version": 1,
      "name": "...",
      "nodes": [{"id", "operation_id", "parameters", "position", "label"}],
      "connections": [{"id", "from": {"node", "port"}, "to": {"node", "port"}}]
    }

Parameters use the tagged value encoding from data_types. Loading goes
through the normal mutation API, so a loaded graph obeys the same
invariants as one built by hand.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from uuid import UUID

from pixelflow.core.data_types import decode_value, encode_value
from pixelflow.core.errors import GraphError, GraphSerializationError
from pixelflow.core.graph import ConnectionId, NodeId, Point2D, ProcessingGraph
from pixelflow.core.node_types import OperationRegistry


logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def graph_to_dict(graph: ProcessingGraph) -> dict[str, Any]:
    """
    Convert a graph to a JSON-compatible dict.

    Raises:
        GraphSerializationError: If a parameter value cannot be encoded.
    """
    nodes_data = []
    for node in graph:
        try:
            parameters = {name: encode_value(value) for name, value in node.parameters.items()}
        except ValueError as e:
            raise GraphSerializationError(f"Node {node.id}: {e}") from e
        nodes_data.append({
            "id": str(node.id),
            "operation_id": node.operation_id,
            "parameters": parameters,
            "position": {"x": node.position.x, "y": node.position.y},
            "label": node.label,
        })

    connections_data = [
        {
            "id": str(conn.id),
            "from": {"node": str(conn.source.node_id), "port": conn.source.output_name},
            "to": {"node": str(conn.target.node_id), "port": conn.target.input_name},
        }
        for conn in graph.connections
    ]

    return {
        "version": FORMAT_VERSION,
        "name": graph.name,
        "nodes": nodes_data,
        "connections": connections_data,
    }


def graph_from_dict(data: dict[str, Any], registry: OperationRegistry) -> ProcessingGraph:
    """
    Rebuild a graph from `graph_to_dict` output.

    Raises:
        GraphSerializationError: If the data is malformed or violates a
            graph invariant.
    """
    if not isinstance(data, dict) or "nodes" not in data:
        raise GraphSerializationError("Invalid graph format: missing 'nodes'")
    version = data.get("version", FORMAT_VERSION)
    if version > FORMAT_VERSION:
        raise GraphSerializationError(f"Unsupported graph format version: {version}")

    graph = ProcessingGraph(registry, name=data.get("name", "Untitled"))
    try:
        for node_data in data["nodes"]:
            position = node_data.get("position") or {}
            node_id = graph.add_node(
                node_data["operation_id"],
                node_id=NodeId(UUID(node_data["id"])),
                position=Point2D(position.get("x", 0.0), position.get("y", 0.0)),
                label=node_data.get("label", ""),
            )
            for name, encoded in node_data.get("parameters", {}).items():
                graph.set_parameter(node_id, name, decode_value(encoded))

        for conn_data in data.get("connections", []):
            graph.connect(
                NodeId(UUID(conn_data["from"]["node"])),
                conn_data["from"]["port"],
                NodeId(UUID(conn_data["to"]["node"])),
                conn_data["to"]["port"],
                connection_id=ConnectionId(UUID(conn_data["id"])) if "id" in conn_data else None,
            )
    except GraphError as e:
        raise GraphSerializationError(f"Invalid graph: {e}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise GraphSerializationError(f"Malformed graph data: {e}") from e

    logger.debug(f"Loaded graph {graph.name!r} with {len(graph)} node(s)")
    return graph


def to_json(graph: ProcessingGraph, indent: int | None = 2) -> str:
    return json.dumps(graph_to_dict(graph), indent=indent)


def from_json(text: str, registry: OperationRegistry) -> ProcessingGraph:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise GraphSerializationError(f"Invalid JSON: {e}") from e
    return graph_from_dict(data, registry)


def save_graph(graph: ProcessingGraph, path: str | Path) -> Path:
    """
    Save a graph to disk.

    Args:
        graph: The graph to save
        path: Destination file; parent directories are created

    Returns:
        Path where the graph was saved
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(to_json(graph))
    return path


def load_graph(path: str | Path, registry: OperationRegistry) -> ProcessingGraph:
    """
    Load a graph from disk.

    Raises:
        FileNotFoundError: If the file doesn't exist
        GraphSerializationError: If the format is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Graph file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return from_json(f.read(), registry)
