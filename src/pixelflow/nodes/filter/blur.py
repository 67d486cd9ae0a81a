"""
Blur Nodes - Box and Gaussian blur.

Both blurs are separable and treat pixels outside the image as copies
of the nearest edge pixel. Their neighborhood radius comes from their
parameters, which lets tiled execution use exactly the overlap needed.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pixelflow.core.context import ValidationContext
from pixelflow.core.data_types import ImageData, PortType
from pixelflow.core.errors import ValidationError
from pixelflow.core.node_types import (
    FunctionOperation,
    InputDefinition,
    OperationCategory,
    OperationMetadata,
    OutputDefinition,
    ParameterDefinition,
    SpatialExtent,
)

MAX_RADIUS = 128


def convolve_separable(pixels: NDArray[np.float32], kernel: NDArray[np.float32]) -> NDArray[np.float32]:
    """
    Convolve rows then columns with a symmetric 1-D kernel.

    Accumulates shifted slices in a fixed order, so a pixel's result
    depends only on its neighborhood and not on where the array starts.
    """
    radius = len(kernel) // 2
    if radius == 0:
        return pixels * kernel[0]

    padded = np.pad(pixels, ((0, 0), (radius, radius), (0, 0)), mode="edge")
    width = pixels.shape[1]
    rows = np.zeros_like(pixels)
    for i, weight in enumerate(kernel):
        rows += weight * padded[:, i:i + width]

    padded = np.pad(rows, ((radius, radius), (0, 0), (0, 0)), mode="edge")
    height = pixels.shape[0]
    out = np.zeros_like(pixels)
    for i, weight in enumerate(kernel):
        out += weight * padded[i:i + height]
    return out


def box_kernel(radius: int) -> NDArray[np.float32]:
    size = 2 * radius + 1
    return np.full(size, 1.0 / size, dtype=np.float32)


def gaussian_radius(sigma: float) -> int:
    return max(1, math.ceil(3.0 * sigma))


def gaussian_kernel(sigma: float) -> NDArray[np.float32]:
    radius = gaussian_radius(sigma)
    xs = np.arange(-radius, radius + 1, dtype=np.float64)
    kernel = np.exp(-(xs ** 2) / (2.0 * sigma ** 2))
    return (kernel / kernel.sum()).astype(np.float32)


async def box_blur_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    image: ImageData = inputs["image"]
    kernel = box_kernel(parameters["radius"])
    pixels = await asyncio.to_thread(convolve_separable, image.pixels, kernel)
    return {"image": image.with_pixels(pixels)}


async def gaussian_blur_executor(
    inputs: dict[str, Any],
    parameters: dict[str, Any],
    context: Any,
) -> dict[str, Any]:
    image: ImageData = inputs["image"]
    kernel = gaussian_kernel(parameters["sigma"])
    pixels = await asyncio.to_thread(convolve_separable, image.pixels, kernel)
    return {"image": image.with_pixels(pixels)}


def validate_gaussian(context: ValidationContext) -> None:
    sigma = context.get_parameter("sigma")
    if isinstance(sigma, (int, float)) and gaussian_radius(sigma) > MAX_RADIUS:
        raise ValidationError(
            f"Sigma {sigma} needs a radius above {MAX_RADIUS}",
            port="sigma",
        )


BOX_BLUR = FunctionOperation(
    OperationMetadata(
        id="box_blur",
        name="Box Blur",
        description="Average each pixel with its square neighborhood",
        category=OperationCategory.BLUR,
        inputs=[InputDefinition("image", PortType.image())],
        outputs=[OutputDefinition("image", PortType.image())],
        parameters=[ParameterDefinition.integer("radius", default=2, min_value=1, max_value=MAX_RADIUS)],
        spatial_extent=SpatialExtent.neighborhood(2),
        tags=["blur", "neighborhood"],
    ),
    box_blur_executor,
    extent=lambda parameters: SpatialExtent.neighborhood(int(parameters["radius"])),
)

GAUSSIAN_BLUR = FunctionOperation(
    OperationMetadata(
        id="gaussian_blur",
        name="Gaussian Blur",
        description="Blur with a Gaussian kernel of the given sigma",
        category=OperationCategory.BLUR,
        inputs=[InputDefinition("image", PortType.image())],
        outputs=[OutputDefinition("image", PortType.image())],
        parameters=[ParameterDefinition.float_param("sigma", default=1.0, min_value=0.1, max_value=64.0)],
        spatial_extent=SpatialExtent.neighborhood(3),
        tags=["blur", "neighborhood"],
    ),
    gaussian_blur_executor,
    validator=validate_gaussian,
    extent=lambda parameters: SpatialExtent.neighborhood(gaussian_radius(parameters["sigma"])),
)


BLUR_OPERATIONS = [BOX_BLUR, GAUSSIAN_BLUR]
