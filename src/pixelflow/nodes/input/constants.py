"""
Constant Nodes - Sources that emit a parameter value unchanged.
"""

from __future__ import annotations

from typing import Any

from pixelflow.core.data_types import Color, PortType
from pixelflow.core.node_types import (
    FunctionOperation,
    OperationCategory,
    OperationMetadata,
    OutputDefinition,
    ParameterDefinition,
)


async def constant_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    """Emit the 'value' parameter on the 'value' output."""
    return {"value": parameters.get("value")}


def _constant(
    id: str,
    name: str,
    port_type: PortType,
    parameter: ParameterDefinition,
) -> FunctionOperation:
    return FunctionOperation(
        OperationMetadata(
            id=id,
            name=name,
            description=f"Emit a constant {name.lower()} value",
            category=OperationCategory.INPUT,
            outputs=[OutputDefinition("value", port_type)],
            parameters=[parameter],
            tags=["constant"],
        ),
        constant_executor,
    )


INTEGER_CONSTANT = _constant(
    "integer_constant", "Integer", PortType.integer(),
    ParameterDefinition.integer("value", default=0),
)

FLOAT_CONSTANT = _constant(
    "float_constant", "Float", PortType.float(),
    ParameterDefinition.float_param("value", default=0.0),
)

STRING_CONSTANT = _constant(
    "string_constant", "String", PortType.string(),
    ParameterDefinition.text("value", default=""),
)

BOOLEAN_CONSTANT = _constant(
    "boolean_constant", "Boolean", PortType.boolean(),
    ParameterDefinition.boolean("value", default=False),
)

COLOR_CONSTANT = _constant(
    "color_constant", "Color", PortType.color(),
    ParameterDefinition.color("value", default=Color(255, 255, 255)),
)


CONSTANT_OPERATIONS = [
    INTEGER_CONSTANT,
    FLOAT_CONSTANT,
    STRING_CONSTANT,
    BOOLEAN_CONSTANT,
    COLOR_CONSTANT,
]
