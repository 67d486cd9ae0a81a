"""
Data Types - Values and type descriptors that flow through the graph.

This module defines what travels along connections:
- DataType: Enum of base value kinds
- PortType: Type descriptor for a port, with parametrized array/map forms
- Color: RGBA color value
- ImageData: Container for image pixels and metadata
- type_of / assignable: The type relation used at edit and validation time
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import NDArray


class DataType(Enum):
    """
    Base kinds of values that can flow through node connections.

    Each input/output socket has a PortType built on one of these kinds.
    """
    IMAGE = auto()
    INTEGER = auto()
    FLOAT = auto()
    BOOLEAN = auto()
    STRING = auto()
    COLOR = auto()
    ARRAY = auto()          # Ordered sequence, parametrized by inner type
    MAP = auto()            # String-keyed mapping, parametrized by inner type
    NONE = auto()           # Absent value
    ANY = auto()            # Wildcard, compatible with everything


@dataclass(frozen=True)
class PortType:
    """
    Type descriptor for a port.

    Array and map types carry an inner type; an inner type of None is
    treated as Any.
    """
    kind: DataType
    inner: PortType | None = None

    @classmethod
    def image(cls) -> PortType:
        return cls(DataType.IMAGE)

    @classmethod
    def integer(cls) -> PortType:
        return cls(DataType.INTEGER)

    @classmethod
    def float(cls) -> PortType:
        return cls(DataType.FLOAT)

    @classmethod
    def boolean(cls) -> PortType:
        return cls(DataType.BOOLEAN)

    @classmethod
    def string(cls) -> PortType:
        return cls(DataType.STRING)

    @classmethod
    def color(cls) -> PortType:
        return cls(DataType.COLOR)

    @classmethod
    def none(cls) -> PortType:
        return cls(DataType.NONE)

    @classmethod
    def any(cls) -> PortType:
        return cls(DataType.ANY)

    @classmethod
    def array(cls, inner: PortType | None = None) -> PortType:
        return cls(DataType.ARRAY, inner or cls.any())

    @classmethod
    def map(cls, inner: PortType | None = None) -> PortType:
        return cls(DataType.MAP, inner or cls.any())

    @property
    def is_any(self) -> bool:
        return self.kind == DataType.ANY

    def __str__(self) -> str:
        name = self.kind.name.capitalize()
        if self.kind in (DataType.ARRAY, DataType.MAP):
            return f"{name}<{self.inner or PortType.any()}>"
        return name


def assignable(source: PortType, target: PortType) -> bool:
    """
    Check whether a value of type `source` may be fed to a port of `target`.

    Reflexive, Any is compatible in both directions, array and map forms
    compare their inner types recursively, otherwise the base kinds must
    match exactly.
    """
    if source.is_any or target.is_any:
        return True
    if source.kind != target.kind:
        return False
    if source.kind in (DataType.ARRAY, DataType.MAP):
        return assignable(source.inner or PortType.any(), target.inner or PortType.any())
    return True


@dataclass(frozen=True)
class Color:
    """RGBA color with 8-bit components."""
    r: int
    g: int
    b: int
    a: int = 255

    def __post_init__(self) -> None:
        for component in (self.r, self.g, self.b, self.a):
            if not 0 <= component <= 255:
                raise ValueError(f"Color component out of range: {component}")

    @classmethod
    def from_hex(cls, value: str) -> Color:
        """Parse '#rrggbb' or '#rrggbbaa'."""
        digits = value.lstrip("#")
        if len(digits) not in (6, 8):
            raise ValueError(f"Invalid color: {value}")
        parts = [int(digits[i:i + 2], 16) for i in range(0, len(digits), 2)]
        return cls(*parts)

    def to_hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}{self.a:02x}"

    def to_float(self) -> tuple[float, float, float, float]:
        """Components scaled to [0, 1]."""
        return (self.r / 255.0, self.g / 255.0, self.b / 255.0, self.a / 255.0)


@dataclass
class ImageMetadata:
    """Metadata associated with an image."""

    # Source information
    source_path: Path | None = None
    source_node_id: str | None = None

    # Image properties
    color_space: str = "sRGB"
    bit_depth: int = 8

    # Custom metadata
    custom: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> ImageMetadata:
        """Create a shallow copy of this metadata."""
        return ImageMetadata(
            source_path=self.source_path,
            source_node_id=self.source_node_id,
            color_space=self.color_space,
            bit_depth=self.bit_depth,
            custom=self.custom.copy(),
        )


@dataclass
class ImageData:
    """
    Container for image data flowing through the node graph.

    Internally stores pixels as a numpy array in HWC format with
    float32 values in range [0, 1]. The pixel buffer may be shared
    between values; operations produce new arrays rather than writing
    into their inputs.

    Attributes:
        pixels: numpy array of shape (H, W, C) with float32 values [0, 1]
        metadata: Optional metadata about the image
    """
    pixels: NDArray[np.float32]
    metadata: ImageMetadata = field(default_factory=ImageMetadata)

    @classmethod
    def from_numpy(
        cls,
        array: NDArray,
        metadata: ImageMetadata | None = None
    ) -> ImageData:
        """
        Create ImageData from a numpy array.

        Handles various input formats:
        - uint8 [0, 255] -> float32 [0, 1]
        - float64 -> float32
        - HW (grayscale) -> HWC
        """
        arr = array.copy()

        if arr.dtype == np.uint8:
            arr = arr.astype(np.float32) / 255.0
        elif arr.dtype != np.float32:
            arr = arr.astype(np.float32)

        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr], axis=-1)

        return cls(pixels=arr, metadata=metadata or ImageMetadata())

    @classmethod
    def from_pil(cls, image, metadata: ImageMetadata | None = None) -> ImageData:
        """Create ImageData from a PIL Image."""
        from PIL import Image

        if not isinstance(image, Image.Image):
            raise TypeError(f"Expected PIL Image, got {type(image)}")

        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")

        arr = np.asarray(image, dtype=np.float32) / 255.0
        return cls(pixels=arr, metadata=metadata or ImageMetadata())

    @classmethod
    def from_file(cls, path: str | Path, metadata: ImageMetadata | None = None) -> ImageData:
        """
        Create ImageData by loading an image from a file.

        Args:
            path: Path to the image file
            metadata: Optional metadata (source_path will be set automatically)

        Returns:
            ImageData with the loaded image
        """
        from PIL import Image

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Image file not found: {path}")

        with Image.open(path) as image:
            image.load()
            meta = metadata or ImageMetadata()
            meta.source_path = path
            return cls.from_pil(image, meta)

    @classmethod
    def empty(cls, width: int, height: int, channels: int = 3) -> ImageData:
        """Create an empty (black) image of the given size."""
        arr = np.zeros((height, width, channels), dtype=np.float32)
        return cls(pixels=arr)

    @property
    def width(self) -> int:
        """Image width in pixels."""
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        """Image height in pixels."""
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        """Number of color channels (3 for RGB, 4 for RGBA)."""
        return self.pixels.shape[2] if self.pixels.ndim == 3 else 1

    @property
    def size(self) -> tuple[int, int]:
        """Image size as (width, height)."""
        return (self.width, self.height)

    @property
    def has_alpha(self) -> bool:
        return self.channels == 4

    @property
    def nbytes(self) -> int:
        """Size of the pixel buffer in bytes."""
        return int(self.pixels.nbytes)

    def to_numpy(self, dtype: np.dtype = np.float32) -> NDArray:
        """
        Convert to numpy array.

        Args:
            dtype: Output dtype (float32, uint8, etc.)

        Returns:
            Array in HWC format
        """
        if dtype == np.uint8:
            return (self.pixels * 255).round().clip(0, 255).astype(np.uint8)
        return self.pixels.astype(dtype)

    def to_pil(self):
        """Convert to PIL Image."""
        from PIL import Image

        arr = self.to_numpy(np.uint8)
        return Image.fromarray(arr)

    def with_pixels(self, pixels: NDArray[np.float32]) -> ImageData:
        """Return a new image with the same metadata and different pixels."""
        return ImageData(pixels=pixels, metadata=self.metadata.copy())

    def copy(self) -> ImageData:
        """Create a copy of this image."""
        return ImageData(
            pixels=self.pixels.copy(),
            metadata=self.metadata.copy(),
        )


# Type alias for any value that can sit on a port or parameter
Value: TypeAlias = (
    ImageData | int | float | bool | str | Color | list | dict | None
)

# Rough per-value cost for anything that is not pixel data
SCALAR_SIZE = 16


def type_of(value: Any) -> PortType:
    """
    Return the PortType describing a value.

    Arrays and maps take the type of their first element, or Any when
    empty. Unknown Python objects are reported as Any.
    """
    if value is None:
        return PortType.none()
    if isinstance(value, ImageData):
        return PortType.image()
    # bool before int: bool is a subclass of int
    if isinstance(value, bool):
        return PortType.boolean()
    if isinstance(value, int):
        return PortType.integer()
    if isinstance(value, float):
        return PortType.float()
    if isinstance(value, str):
        return PortType.string()
    if isinstance(value, Color):
        return PortType.color()
    if isinstance(value, (list, tuple)):
        return PortType.array(type_of(value[0]) if value else PortType.any())
    if isinstance(value, dict):
        first = next(iter(value.values()), None) if value else None
        return PortType.map(type_of(first) if value else PortType.any())
    return PortType.any()


def value_matches(value: Any, port_type: PortType) -> bool:
    """
    Check whether a concrete value may be stored in a slot of `port_type`.

    Integers are accepted where floats are expected.
    """
    if port_type.kind == DataType.FLOAT and isinstance(value, int) and not isinstance(value, bool):
        return True
    if port_type.kind == DataType.FLOAT and isinstance(value, float):
        return True
    return assignable(type_of(value), port_type)


def is_number(value: Any) -> bool:
    """True for ints and finite floats, False for bools."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def estimate_size(value: Any) -> int:
    """
    Approximate memory footprint of a value in bytes.

    Pixel buffers dominate; scalars count as a small constant.
    """
    if isinstance(value, ImageData):
        return value.nbytes
    if isinstance(value, str):
        return SCALAR_SIZE + len(value)
    if isinstance(value, (list, tuple)):
        return SCALAR_SIZE + sum(estimate_size(v) for v in value)
    if isinstance(value, dict):
        return SCALAR_SIZE + sum(
            len(str(k)) + estimate_size(v) for k, v in value.items()
        )
    return SCALAR_SIZE


# --- Tagged encoding ---

def encode_value(value: Any) -> dict[str, Any]:
    """
    Encode a value as a tagged, JSON-compatible dict.

    Images are encoded by reference to their source file and cannot be
    encoded when they have none.

    Raises:
        ValueError: If the value cannot be represented.
    """
    if value is None:
        return {"type": "none"}
    if isinstance(value, ImageData):
        if value.metadata.source_path is None:
            raise ValueError("In-memory images cannot be encoded")
        return {"type": "image", "path": str(value.metadata.source_path)}
    if isinstance(value, bool):
        return {"type": "boolean", "value": value}
    if isinstance(value, int):
        return {"type": "integer", "value": value}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    if isinstance(value, str):
        return {"type": "string", "value": value}
    if isinstance(value, Color):
        return {"type": "color", "value": [value.r, value.g, value.b, value.a]}
    if isinstance(value, (list, tuple)):
        return {"type": "array", "value": [encode_value(v) for v in value]}
    if isinstance(value, dict):
        return {
            "type": "map",
            "value": {str(k): encode_value(v) for k, v in value.items()},
        }
    raise ValueError(f"Cannot encode value of type {type(value).__name__}")


def decode_value(data: dict[str, Any]) -> Any:
    """
    Decode a value produced by `encode_value`.

    Raises:
        ValueError: If the tag is unknown or the payload is malformed.
    """
    try:
        tag = data["type"]
        if tag == "none":
            return None
        if tag == "image":
            return ImageData.from_file(data["path"])
        if tag == "boolean":
            return bool(data["value"])
        if tag == "integer":
            return int(data["value"])
        if tag == "float":
            return float(data["value"])
        if tag == "string":
            return str(data["value"])
        if tag == "color":
            return Color(*data["value"])
        if tag == "array":
            return [decode_value(v) for v in data["value"]]
        if tag == "map":
            return {k: decode_value(v) for k, v in data["value"].items()}
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed value: {data!r}") from e
    raise ValueError(f"Unknown value type: {tag!r}")
