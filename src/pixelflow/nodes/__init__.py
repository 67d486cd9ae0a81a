"""
Nodes package - All built-in operations.

Operations are organized by category:
- input: Constants, image loading and synthetic images
- math: Scalar arithmetic
- filter: Color, blur and levels
- output: Preview, passthrough and save
"""

from pixelflow.core.node_types import OperationRegistry
from pixelflow.nodes.filter import register_filter_nodes
from pixelflow.nodes.input import register_input_nodes
from pixelflow.nodes.math import register_math_nodes
from pixelflow.nodes.output import register_output_nodes


def register_all_nodes(registry: OperationRegistry) -> None:
    """Register all built-in operations."""
    register_input_nodes(registry)
    register_math_nodes(registry)
    register_filter_nodes(registry)
    register_output_nodes(registry)


__all__ = [
    "register_all_nodes",
]
