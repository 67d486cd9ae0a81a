"""
Input nodes - Constants and image sources.
"""

from pixelflow.core.node_types import OperationRegistry
from pixelflow.nodes.input.constants import CONSTANT_OPERATIONS
from pixelflow.nodes.input.image import IMAGE_SOURCE_OPERATIONS


def register_input_nodes(registry: OperationRegistry) -> None:
    """Register all input operations."""
    registry.register_many(CONSTANT_OPERATIONS)
    registry.register_many(IMAGE_SOURCE_OPERATIONS)


__all__ = ["register_input_nodes"]
