"""
Tests for graph persistence.
"""

import json

import pytest

from pixelflow.core.data_types import Color
from pixelflow.core.errors import GraphSerializationError
from pixelflow.core.graph import Point2D
from pixelflow.core.serialization import (
    FORMAT_VERSION,
    from_json,
    graph_from_dict,
    graph_to_dict,
    load_graph,
    save_graph,
    to_json,
)


def _sample(graph):
    src = graph.add_node("solid_image", position=Point2D(1, 2), label="background")
    graph.set_parameter(src, "color", Color(10, 20, 30))
    graph.set_parameter(src, "width", 64)
    blur = graph.add_node("gaussian_blur")
    graph.set_parameter(blur, "sigma", 2)
    graph.connect(src, "image", blur, "image")
    return src, blur


class TestGraphDict:

    def test_format(self, graph):
        src, blur = _sample(graph)
        data = graph_to_dict(graph)

        assert data["version"] == FORMAT_VERSION
        assert data["name"] == "test"
        assert [n["operation_id"] for n in data["nodes"]] == ["solid_image", "gaussian_blur"]
        assert data["nodes"][0]["parameters"]["color"] == {"type": "color", "value": [10, 20, 30, 255]}
        assert data["connections"][0]["from"] == {"node": str(src), "port": "image"}
        assert data["connections"][0]["to"] == {"node": str(blur), "port": "image"}

    def test_round_trip(self, graph, registry):
        src, blur = _sample(graph)
        restored = graph_from_dict(json.loads(to_json(graph)), registry)

        assert graph_to_dict(restored) == graph_to_dict(graph)
        node = restored.get_node(src)
        assert node.position.x == 1
        assert node.label == "background"
        assert restored.get_node(blur).parameters["sigma"] == 2.0

    def test_only_overrides_are_saved(self, graph):
        graph.add_node("box_blur")
        assert graph_to_dict(graph)["nodes"][0]["parameters"] == {}

    def test_unknown_operation(self, registry):
        data = {"version": 1, "nodes": [{"id": "00000000-0000-0000-0000-000000000001", "operation_id": "nope"}]}
        with pytest.raises(GraphSerializationError):
            graph_from_dict(data, registry)

    def test_cycle_rejected_on_load(self, graph, registry):
        a = graph.add_node("passthrough")
        b = graph.add_node("passthrough")
        graph.connect(a, "value", b, "value")
        data = graph_to_dict(graph)
        data["connections"].append({"from": {"node": str(b), "port": "value"}, "to": {"node": str(a), "port": "value"}})

        with pytest.raises(GraphSerializationError):
            graph_from_dict(data, registry)

    def test_newer_version_rejected(self, registry):
        with pytest.raises(GraphSerializationError):
            graph_from_dict({"version": FORMAT_VERSION + 1, "nodes": []}, registry)

    def test_malformed(self, registry):
        with pytest.raises(GraphSerializationError):
            graph_from_dict({"nodes": [{"operation_id": "add"}]}, registry)
        with pytest.raises(GraphSerializationError):
            from_json("{not json", registry)


class TestFiles:

    def test_save_and_load(self, graph, registry, tmp_path):
        _sample(graph)
        path = save_graph(graph, tmp_path / "graphs" / "sample.json")

        loaded = load_graph(path, registry)
        assert graph_to_dict(loaded) == graph_to_dict(graph)

    def test_missing_file(self, registry, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_graph(tmp_path / "missing.json", registry)
