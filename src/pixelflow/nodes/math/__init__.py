"""
Math nodes - Scalar arithmetic.
"""

from pixelflow.core.node_types import OperationRegistry
from pixelflow.nodes.math.arithmetic import ARITHMETIC_OPERATIONS


def register_math_nodes(registry: OperationRegistry) -> None:
    """Register all math operations."""
    registry.register_many(ARITHMETIC_OPERATIONS)


__all__ = ["register_math_nodes"]
