"""
Image Source Nodes - Load images from disk or synthesize them.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import numpy as np

from pixelflow.core.data_types import Color, ImageData, PortType
from pixelflow.core.errors import ExecutionError
from pixelflow.core.node_types import (
    FunctionOperation,
    OperationCategory,
    OperationMetadata,
    OutputDefinition,
    ParameterDefinition,
    PathRole,
)


async def load_image_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    """Execute load image node - reads an image file with Pillow."""
    file_path = parameters.get("path", "")
    if not file_path or not Path(file_path).is_file():
        raise ExecutionError(f"Image file not found: {file_path}", port="path")

    image = await asyncio.to_thread(ImageData.from_file, file_path)
    return {"image": image, "width": image.width, "height": image.height}


LOAD_IMAGE = FunctionOperation(
    OperationMetadata(
        id="load_image",
        name="Load Image",
        description="Load an image from file",
        category=OperationCategory.INPUT,
        outputs=[
            OutputDefinition("image", PortType.image(), description="Loaded image"),
            OutputDefinition("width", PortType.integer()),
            OutputDefinition("height", PortType.integer()),
        ],
        parameters=[
            ParameterDefinition.file_path(
                "path",
                role=PathRole.READ,
                description="Path to image file",
            ),
        ],
        tags=["file", "io"],
    ),
    load_image_executor,
)


async def solid_image_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    """Fill a new image with one color."""
    color: Color = parameters["color"]
    width, height = parameters["width"], parameters["height"]
    pixels = np.empty((height, width, 4), dtype=np.float32)
    pixels[:] = np.asarray(color.to_float(), dtype=np.float32)
    return {"image": ImageData(pixels=pixels)}


SOLID_IMAGE = FunctionOperation(
    OperationMetadata(
        id="solid_image",
        name="Solid Color Image",
        description="Create an image filled with a single color",
        category=OperationCategory.INPUT,
        outputs=[OutputDefinition("image", PortType.image())],
        parameters=[
            ParameterDefinition.integer("width", default=512, min_value=1, max_value=65536),
            ParameterDefinition.integer("height", default=512, min_value=1, max_value=65536),
            ParameterDefinition.color("color", default=Color(0, 0, 0)),
        ],
        tags=["generate"],
    ),
    solid_image_executor,
)


async def gradient_image_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    """
    Deterministic RGB test pattern.

    Red ramps left to right, green top to bottom, blue is a checker
    pattern whose cell size is the 'cell' parameter.
    """
    width, height, cell = parameters["width"], parameters["height"], parameters["cell"]
    xs = np.linspace(0.0, 1.0, width, dtype=np.float32)
    ys = np.linspace(0.0, 1.0, height, dtype=np.float32)
    red = np.broadcast_to(xs[None, :], (height, width))
    green = np.broadcast_to(ys[:, None], (height, width))
    checker = ((np.arange(height)[:, None] // cell + np.arange(width)[None, :] // cell) % 2)
    blue = checker.astype(np.float32)
    return {"image": ImageData(pixels=np.stack([red, green, blue], axis=-1))}


GRADIENT_IMAGE = FunctionOperation(
    OperationMetadata(
        id="gradient_image",
        name="Gradient Image",
        description="Create a gradient and checker test pattern",
        category=OperationCategory.INPUT,
        outputs=[OutputDefinition("image", PortType.image())],
        parameters=[
            ParameterDefinition.integer("width", default=512, min_value=1, max_value=65536),
            ParameterDefinition.integer("height", default=512, min_value=1, max_value=65536),
            ParameterDefinition.integer("cell", default=16, min_value=1),
        ],
        tags=["generate", "test"],
    ),
    gradient_image_executor,
)


IMAGE_SOURCE_OPERATIONS = [LOAD_IMAGE, SOLID_IMAGE, GRADIENT_IMAGE]
