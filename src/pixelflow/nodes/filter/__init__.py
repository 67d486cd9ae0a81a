"""
Filter nodes - Image color, blur, levels and composite operations.
"""

from pixelflow.core.node_types import OperationRegistry
from pixelflow.nodes.filter.blur import BLUR_OPERATIONS
from pixelflow.nodes.filter.color import COLOR_OPERATIONS
from pixelflow.nodes.filter.composite import COMPOSITE_OPERATIONS
from pixelflow.nodes.filter.levels import LEVELS_OPERATIONS


def register_filter_nodes(registry: OperationRegistry) -> None:
    """Register all image filter operations."""
    registry.register_many(COLOR_OPERATIONS)
    registry.register_many(BLUR_OPERATIONS)
    registry.register_many(LEVELS_OPERATIONS)
    registry.register_many(COMPOSITE_OPERATIONS)


__all__ = ["register_filter_nodes"]
