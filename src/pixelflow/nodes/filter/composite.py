"""
Composite Node - Blend one image over another.

The blend layer's alpha (if it has one) scales the opacity per pixel.
The result keeps the base image's channel count and metadata.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pixelflow.core.data_types import ImageData, PortType
from pixelflow.core.errors import ExecutionError
from pixelflow.core.node_types import (
    FunctionOperation,
    InputDefinition,
    OperationCategory,
    OperationMetadata,
    OutputDefinition,
    ParameterDefinition,
    SpatialExtent,
)

BLEND_MODES = {
    "normal": lambda b, l: l,
    "multiply": lambda b, l: b * l,
    "screen": lambda b, l: 1.0 - (1.0 - b) * (1.0 - l),
    "overlay": lambda b, l: np.where(b < 0.5, 2.0 * b * l, 1.0 - 2.0 * (1.0 - b) * (1.0 - l)),
    "darken": np.minimum,
    "lighten": np.maximum,
    "add": lambda b, l: np.minimum(b + l, 1.0),
    "subtract": lambda b, l: np.maximum(b - l, 0.0),
    "difference": lambda b, l: np.abs(b - l),
}


async def blend_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    base: ImageData = inputs["base"]
    layer: ImageData = inputs["blend"]
    if base.size != layer.size:
        raise ExecutionError(
            f"Cannot blend {layer.width}x{layer.height} over {base.width}x{base.height}",
            port="blend",
        )

    b = base.pixels[..., :3]
    l = layer.pixels[..., :3]
    alpha = np.float32(parameters["opacity"])
    if layer.has_alpha:
        alpha = layer.pixels[..., 3:4] * alpha

    blended = BLEND_MODES[parameters["mode"]](b, l)
    pixels = base.pixels.copy()
    pixels[..., :3] = np.clip(b * (1.0 - alpha) + blended * alpha, 0.0, 1.0)
    if base.has_alpha:
        a = base.pixels[..., 3:4]
        pixels[..., 3:4] = np.clip(a + alpha * (1.0 - a), 0.0, 1.0)
    return {"image": base.with_pixels(pixels)}


BLEND = FunctionOperation(
    OperationMetadata(
        id="blend",
        name="Blend",
        description="Blend a layer over a base image of the same size",
        category=OperationCategory.COMPOSITE,
        inputs=[
            InputDefinition("base", PortType.image(), description="Background image"),
            InputDefinition("blend", PortType.image(), description="Layer drawn on top"),
        ],
        outputs=[OutputDefinition("image", PortType.image())],
        parameters=[
            ParameterDefinition.enum("mode", list(BLEND_MODES), default="normal"),
            ParameterDefinition.float_param("opacity", default=1.0, min_value=0.0, max_value=1.0),
        ],
        spatial_extent=SpatialExtent.pointwise(),
        tags=["composite", "blend"],
    ),
    blend_executor,
)


COMPOSITE_OPERATIONS = [BLEND]
