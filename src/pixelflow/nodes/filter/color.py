"""
Color Nodes - Per-pixel color adjustments.

All of these are pointwise, so large images can be tiled without
overlap. Alpha, when present, passes through untouched.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pixelflow.core.data_types import ImageData, PortType
from pixelflow.core.node_types import (
    FunctionOperation,
    InputDefinition,
    OperationCategory,
    OperationMetadata,
    OutputDefinition,
    ParameterDefinition,
    SpatialExtent,
)

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


def _with_rgb(image: ImageData, rgb: np.ndarray) -> ImageData:
    pixels = image.pixels.copy()
    pixels[..., :3] = rgb
    return image.with_pixels(pixels)


async def invert_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    image: ImageData = inputs["image"]
    return {"image": _with_rgb(image, 1.0 - image.pixels[..., :3])}


async def brightness_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    image: ImageData = inputs["image"]
    factor = np.float32(parameters["factor"])
    return {"image": _with_rgb(image, np.clip(image.pixels[..., :3] * factor, 0.0, 1.0))}


async def grayscale_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    image: ImageData = inputs["image"]
    luma = image.pixels[..., :3] @ LUMA_WEIGHTS
    return {"image": _with_rgb(image, luma[..., None])}


def _pointwise(id: str, name: str, description: str, executor, parameters=None) -> FunctionOperation:
    return FunctionOperation(
        OperationMetadata(
            id=id,
            name=name,
            description=description,
            category=OperationCategory.COLOR,
            inputs=[InputDefinition("image", PortType.image())],
            outputs=[OutputDefinition("image", PortType.image())],
            parameters=parameters or [],
            spatial_extent=SpatialExtent.pointwise(),
            tags=["color", "pointwise"],
        ),
        executor,
    )


INVERT = _pointwise("invert", "Invert", "Invert the color channels", invert_executor)

BRIGHTNESS = _pointwise(
    "brightness", "Brightness", "Scale the color channels by a factor",
    brightness_executor,
    parameters=[ParameterDefinition.float_param("factor", default=1.0, min_value=0.0, max_value=10.0)],
)

GRAYSCALE = _pointwise("grayscale", "Grayscale", "Convert to luminance", grayscale_executor)


COLOR_OPERATIONS = [INVERT, BRIGHTNESS, GRAYSCALE]
