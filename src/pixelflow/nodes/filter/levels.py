"""
Levels Node - Stretch each color channel to the full range.

The stretch depends on the minimum and maximum of the whole image, so
this node always runs on the complete buffer.
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
    SpatialExtent,
)


async def auto_levels_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    image: ImageData = inputs["image"]
    rgb = image.pixels[..., :3]
    low = rgb.min(axis=(0, 1), keepdims=True)
    high = rgb.max(axis=(0, 1), keepdims=True)
    span = np.where(high > low, high - low, 1.0).astype(np.float32)

    pixels = image.pixels.copy()
    pixels[..., :3] = (rgb - low) / span
    return {"image": image.with_pixels(pixels)}


AUTO_LEVELS = FunctionOperation(
    OperationMetadata(
        id="auto_levels",
        name="Auto Levels",
        description="Stretch each channel so its darkest value is 0 and brightest is 1",
        category=OperationCategory.ADJUST,
        inputs=[InputDefinition("image", PortType.image())],
        outputs=[OutputDefinition("image", PortType.image())],
        spatial_extent=SpatialExtent.global_extent(),
        tags=["levels", "global"],
    ),
    auto_levels_executor,
)


LEVELS_OPERATIONS = [AUTO_LEVELS]
