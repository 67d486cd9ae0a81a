"""
Output Nodes - Preview, passthrough and save.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from pixelflow.core.data_types import ImageData, PortType
from pixelflow.core.node_types import (
    FunctionOperation,
    InputDefinition,
    OperationCategory,
    OperationMetadata,
    OutputDefinition,
    ParameterDefinition,
    PathRole,
)

logger = logging.getLogger(__name__)


async def forward_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    return {"value": inputs["value"]}


PREVIEW = FunctionOperation(
    OperationMetadata(
        id="preview",
        name="Preview",
        description="Expose a value as a graph result",
        category=OperationCategory.OUTPUT,
        inputs=[InputDefinition("value", PortType.any())],
        outputs=[OutputDefinition("value", PortType.any())],
        tags=["output"],
    ),
    forward_executor,
)

PASSTHROUGH = FunctionOperation(
    OperationMetadata(
        id="passthrough",
        name="Passthrough",
        description="Forward the input unchanged",
        category=OperationCategory.UTILITY,
        inputs=[InputDefinition("value", PortType.any())],
        outputs=[OutputDefinition("value", PortType.any())],
        tags=["utility"],
    ),
    forward_executor,
)


def _write_image(image: ImageData, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    image.to_pil().save(path)


async def save_image_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    """Execute save image node - writes the image with Pillow."""
    image: ImageData = inputs["image"]
    path = Path(parameters["path"])
    await asyncio.to_thread(_write_image, image, path)
    logger.info(f"Saved {image.width}x{image.height} image to {path}")
    return {"path": str(path)}


SAVE_IMAGE = FunctionOperation(
    OperationMetadata(
        id="save_image",
        name="Save Image",
        description="Save an image to file",
        category=OperationCategory.OUTPUT,
        inputs=[InputDefinition("image", PortType.image())],
        outputs=[OutputDefinition("path", PortType.string())],
        parameters=[
            ParameterDefinition.file_path(
                "path",
                role=PathRole.WRITE,
                description="Destination file; the extension picks the format",
            ),
        ],
        deterministic=False,
        tags=["file", "io"],
    ),
    save_image_executor,
)


OUTPUT_OPERATIONS = [PREVIEW, PASSTHROUGH, SAVE_IMAGE]
