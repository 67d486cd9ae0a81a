"""
Tests for the graph module.
"""

import pytest
from uuid import UUID

from pixelflow.core.data_types import Color
from pixelflow.core.errors import (
    ConnectionNotFoundError,
    CycleWouldFormError,
    DuplicateConnectionError,
    DuplicateNodeError,
    NodeNotFoundError,
    OperationNotFoundError,
    ParameterNotFoundError,
    PortNotFoundError,
    TypeMismatchError,
)
from pixelflow.core.graph import Point2D, new_node_id
from pixelflow.core.serialization import graph_to_dict


class TestNodes:
    """Tests for adding, editing and removing nodes."""

    def test_add_node(self, graph):
        node_id = graph.add_node("integer_constant", position=Point2D(10, 20), label="five")
        assert isinstance(node_id, UUID)
        node = graph.get_node(node_id)
        assert node.operation_id == "integer_constant"
        assert node.position.x == 10
        assert node.label == "five"
        assert len(graph) == 1

    def test_unknown_operation(self, graph):
        with pytest.raises(OperationNotFoundError):
            graph.add_node("does_not_exist")
        assert len(graph) == 0

    def test_explicit_duplicate_id(self, graph):
        node_id = new_node_id()
        graph.add_node("integer_constant", node_id=node_id)
        with pytest.raises(DuplicateNodeError):
            graph.add_node("float_constant", node_id=node_id)

    def test_parameters_default_then_override(self, graph):
        node_id = graph.add_node("add")
        node = graph.get_node(node_id)
        assert node.get_parameter("addend") == 0

        graph.set_parameter(node_id, "addend", 3)
        assert node.get_parameter("addend") == 3

        graph.reset_parameter(node_id, "addend")
        assert node.get_parameter("addend") == 0

    def test_set_parameter_coerces_int_to_float(self, graph):
        node_id = graph.add_node("float_constant")
        graph.set_parameter(node_id, "value", 2)
        value = graph.get_node(node_id).parameters["value"]
        assert value == 2.0 and isinstance(value, float)

    def test_set_parameter_errors(self, graph):
        node_id = graph.add_node("solid_image")
        with pytest.raises(ParameterNotFoundError):
            graph.set_parameter(node_id, "depth", 3)
        with pytest.raises(TypeMismatchError):
            graph.set_parameter(node_id, "color", "red")
        with pytest.raises(NodeNotFoundError):
            graph.set_parameter(new_node_id(), "width", 3)
        assert "color" not in graph.get_node(node_id).parameters

    def test_set_parameter_does_not_enforce_constraints(self, graph):
        node_id = graph.add_node("box_blur")
        graph.set_parameter(node_id, "radius", 1000)
        assert graph.get_node(node_id).parameters["radius"] == 1000

    def test_remove_node_drops_connections(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("add")
        c = graph.add_node("preview")
        graph.connect(a, "value", b, "value")
        graph.connect(b, "result", c, "value")

        graph.remove_node(b)

        assert b not in graph
        assert graph.connections == []
        assert graph.get_input_connection(c, "value") is None

    def test_remove_missing_node(self, graph):
        with pytest.raises(NodeNotFoundError):
            graph.remove_node(new_node_id())


class TestConnections:
    """Tests for connect/disconnect and the checks connect runs."""

    def test_connect(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("add")
        conn_id = graph.connect(a, "value", b, "value")

        conn = graph.get_connection(conn_id)
        assert conn.source.node_id == a
        assert conn.target.input_name == "value"
        assert graph.predecessors(b) == [a]
        assert graph.successors(a) == [b]

    def test_missing_port(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("add")
        with pytest.raises(PortNotFoundError):
            graph.connect(a, "nope", b, "value")
        with pytest.raises(PortNotFoundError):
            graph.connect(a, "value", b, "nope")

    def test_missing_node_checked_before_ports(self, graph):
        a = graph.add_node("integer_constant")
        with pytest.raises(NodeNotFoundError):
            graph.connect(a, "nope", new_node_id(), "nope")

    def test_type_mismatch(self, graph):
        a = graph.add_node("string_constant")
        b = graph.add_node("invert")
        with pytest.raises(TypeMismatchError):
            graph.connect(a, "value", b, "image")
        assert graph.connections == []

    def test_any_accepts_everything(self, graph):
        a = graph.add_node("gradient_image")
        b = graph.add_node("preview")
        graph.connect(a, "image", b, "value")

    def test_input_accepts_one_connection(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("integer_constant")
        c = graph.add_node("add")
        graph.connect(a, "value", c, "value")
        with pytest.raises(DuplicateConnectionError):
            graph.connect(b, "value", c, "value")
        assert graph.get_input_connection(c, "value").source.node_id == a

    def test_output_fans_out(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("add")
        c = graph.add_node("multiply")
        graph.connect(a, "value", b, "value")
        graph.connect(a, "value", c, "value")
        assert len(graph.get_output_connections(a, "value")) == 2

    def test_self_loop_rejected(self, graph):
        a = graph.add_node("add")
        with pytest.raises(CycleWouldFormError):
            graph.connect(a, "result", a, "value")

    def test_cycle_rejected_and_graph_unchanged(self, graph):
        a = graph.add_node("passthrough")
        b = graph.add_node("passthrough")
        c = graph.add_node("passthrough")
        graph.connect(a, "value", b, "value")
        graph.connect(b, "value", c, "value")
        before = graph_to_dict(graph)

        with pytest.raises(CycleWouldFormError):
            graph.connect(c, "value", a, "value")

        assert graph_to_dict(graph) == before

    def test_disconnect(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("add")
        conn_id = graph.connect(a, "value", b, "value")

        graph.disconnect(conn_id)
        assert graph.connections == []
        with pytest.raises(ConnectionNotFoundError):
            graph.disconnect(conn_id)

        # the input is free again
        graph.connect(a, "value", b, "value")

    def test_disconnect_input(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("add")
        graph.connect(a, "value", b, "value")
        assert graph.disconnect_input(b, "value") is not None
        assert graph.disconnect_input(b, "value") is None


class TestQueries:
    """Tests for graph traversal helpers."""

    def test_upstream_and_downstream(self, graph):
        a = graph.add_node("integer_constant")
        b = graph.add_node("add")
        c = graph.add_node("multiply")
        d = graph.add_node("integer_constant")
        graph.connect(a, "value", b, "value")
        graph.connect(b, "result", c, "value")

        assert graph.get_upstream_nodes(c) == {a, b}
        assert graph.get_downstream_nodes(a) == {b, c}
        assert {n.id for n in graph.get_output_nodes()} == {c, d}

    def test_copy_is_independent(self, graph):
        a = graph.add_node("solid_image")
        graph.set_parameter(a, "color", Color(1, 2, 3))

        clone = graph.copy()
        clone.set_parameter(a, "width", 8)
        clone.add_node("invert")

        assert "width" not in graph.get_node(a).parameters
        assert len(graph) == 1
        assert len(clone) == 2
