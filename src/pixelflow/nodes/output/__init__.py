"""
Output nodes - Preview and file output.
"""

from pixelflow.core.node_types import OperationRegistry
from pixelflow.nodes.output.preview import OUTPUT_OPERATIONS


def register_output_nodes(registry: OperationRegistry) -> None:
    """Register all output operations."""
    registry.register_many(OUTPUT_OPERATIONS)


__all__ = ["register_output_nodes"]
