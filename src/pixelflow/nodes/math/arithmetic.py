"""
Arithmetic Nodes - Scalar math on numeric values.

Each node takes a number on its 'value' input and combines it with a
numeric parameter. Integer arithmetic stays integral where Python's
does.
"""

from __future__ import annotations

from typing import Any

from pixelflow.core.data_types import PortType
from pixelflow.core.errors import ExecutionError
from pixelflow.core.node_types import (
    NUMERIC,
    InputDefinition,
    OperationCategory,
    OutputDefinition,
    ParameterDefinition,
    operation,
)


def _operand(name: str, default: int | float) -> ParameterDefinition:
    return ParameterDefinition(
        name=name,
        port_type=PortType.any(),
        default=default,
        constraints=[NUMERIC],
    )


_VALUE_INPUT = [InputDefinition("value", PortType.any(), constraints=[NUMERIC])]
_RESULT_OUTPUT = [OutputDefinition("result", PortType.any())]


@operation(
    "add", "Add", OperationCategory.MATH,
    description="Add a constant to a number",
    inputs=_VALUE_INPUT,
    outputs=_RESULT_OUTPUT,
    parameters=[_operand("addend", 0)],
    tags=["math"],
)
async def add(inputs: dict[str, Any], parameters: dict[str, Any], context: Any) -> dict[str, Any]:
    return {"result": inputs["value"] + parameters["addend"]}


@operation(
    "subtract", "Subtract", OperationCategory.MATH,
    description="Subtract a constant from a number",
    inputs=_VALUE_INPUT,
    outputs=_RESULT_OUTPUT,
    parameters=[_operand("subtrahend", 0)],
    tags=["math"],
)
async def subtract(inputs: dict[str, Any], parameters: dict[str, Any], context: Any) -> dict[str, Any]:
    return {"result": inputs["value"] - parameters["subtrahend"]}


@operation(
    "multiply", "Multiply", OperationCategory.MATH,
    description="Multiply a number by a constant",
    inputs=_VALUE_INPUT,
    outputs=_RESULT_OUTPUT,
    parameters=[_operand("factor", 1)],
    tags=["math"],
)
async def multiply(inputs: dict[str, Any], parameters: dict[str, Any], context: Any) -> dict[str, Any]:
    return {"result": inputs["value"] * parameters["factor"]}


@operation(
    "divide", "Divide", OperationCategory.MATH,
    description="Divide a number by a constant",
    inputs=_VALUE_INPUT,
    outputs=_RESULT_OUTPUT,
    parameters=[_operand("divisor", 1)],
    tags=["math"],
)
async def divide(inputs: dict[str, Any], parameters: dict[str, Any], context: Any) -> dict[str, Any]:
    divisor = parameters["divisor"]
    if divisor == 0:
        raise ExecutionError("Division by zero", port="divisor")
    return {"result": inputs["value"] / divisor}


ARITHMETIC_OPERATIONS = [add, subtract, multiply, divide]
