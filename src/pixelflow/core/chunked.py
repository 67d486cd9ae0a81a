"""
Chunked Processing - Memory-bounded tiled execution of spatial operations.

This module provides:
- TileRegion / TileIterator: Gap-free, row-major tiling of an image
- ProcessingConfig: Tile size and memory budget
- MemoryTracker: Live working-set accounting
- ImageSource / ImageSink: Where tiles are read from and written to
- process_chunked: Overlapping tiles, core written back at its offset
- process_pointwise: Fast path for operations with no neighborhood

Tiles within one run are processed one after another. Cancellation is
checked between tiles.
"""

from __future__ import annotations

import inspect
import logging
import math
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterator, Union

import numpy as np
from numpy.typing import NDArray

from pixelflow.core.context import CancellationToken
from pixelflow.core.data_types import ImageData, ImageMetadata
from pixelflow.core.errors import ChunkError


logger = logging.getLogger(__name__)

DEFAULT_MEMORY_LIMIT = 500 * 1024 * 1024
MIN_TILE_SIZE = 64
MAX_TILE_SIZE = 4096
BYTES_PER_SAMPLE = 4  # float32
WORKING_FACTOR = 2  # input buffer + output buffer


@dataclass(frozen=True)
class TileRegion:
    """A rectangle of an image, plus how much context it needs around it."""
    x: int
    y: int
    width: int
    height: int
    overlap: int = 0

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def expand(self, image_width: int, image_height: int) -> TileRegion:
        """This region grown by its overlap on every side, clamped to the image."""
        x0 = max(0, self.x - self.overlap)
        y0 = max(0, self.y - self.overlap)
        x1 = min(image_width, self.right + self.overlap)
        y1 = min(image_height, self.bottom + self.overlap)
        return TileRegion(x0, y0, x1 - x0, y1 - y0)

    def is_within(self, image_width: int, image_height: int) -> bool:
        return (
            self.x >= 0 and self.y >= 0
            and self.width > 0 and self.height > 0
            and self.right <= image_width and self.bottom <= image_height
        )

    def split(self, tile_width: int, tile_height: int) -> list[TileRegion]:
        """Cut into sub-regions no larger than the given size, row-major."""
        return [
            TileRegion(x, y, min(tile_width, self.right - x), min(tile_height, self.bottom - y), self.overlap)
            for y in range(self.y, self.bottom, tile_height)
            for x in range(self.x, self.right, tile_width)
        ]


def clamp_tile_size(size: int) -> int:
    return max(MIN_TILE_SIZE, min(MAX_TILE_SIZE, int(size)))


@dataclass
class ProcessingConfig:
    """Tile dimensions (clamped to the supported range) and memory budget."""
    tile_width: int = 512
    tile_height: int = 512
    memory_limit: int = DEFAULT_MEMORY_LIMIT

    def __post_init__(self) -> None:
        self.tile_width = clamp_tile_size(self.tile_width)
        self.tile_height = clamp_tile_size(self.tile_height)

    def needs_chunking(self, width: int, height: int, channels: int = 4) -> bool:
        """True if whole-image processing would exceed the budget."""
        return estimate_working_set(width, height, channels) > self.memory_limit

    def optimal_tile_size(self, channels: int = 4, overlap: int = 0) -> int:
        """Largest square tile whose working set fits in the budget."""
        per_pixel = channels * BYTES_PER_SAMPLE * WORKING_FACTOR
        side = int(math.sqrt(self.memory_limit / per_pixel)) - 2 * overlap
        return clamp_tile_size(side)


def estimate_working_set(width: int, height: int, channels: int) -> int:
    return width * height * channels * BYTES_PER_SAMPLE * WORKING_FACTOR


class TileIterator:
    """
    Row-major tiling of an image.

    Lazy and restartable: each iteration starts again from the top-left.
    The last row and column are cropped to the image edge.
    """

    def __init__(self, width: int, height: int, config: ProcessingConfig, overlap: int = 0):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid image extent {width}x{height}")
        self.width = width
        self.height = height
        self.config = config
        self.overlap = overlap

    @property
    def columns(self) -> int:
        return math.ceil(self.width / self.config.tile_width)

    @property
    def rows(self) -> int:
        return math.ceil(self.height / self.config.tile_height)

    @property
    def tile_count(self) -> int:
        return self.columns * self.rows

    def __iter__(self) -> Iterator[TileRegion]:
        whole = TileRegion(0, 0, self.width, self.height, self.overlap)
        yield from whole.split(self.config.tile_width, self.config.tile_height)

    def __len__(self) -> int:
        return self.tile_count


class MemoryTracker:
    """Thread-safe accounting of bytes currently allocated against a limit."""

    def __init__(self, limit: int):
        self.limit = limit
        self._current = 0
        self._peak = 0
        self._lock = threading.Lock()

    def try_allocate(self, size: int) -> bool:
        with self._lock:
            if self._current + size > self.limit:
                return False
            self._current += size
            self._peak = max(self._peak, self._current)
            return True

    def release(self, size: int) -> None:
        with self._lock:
            self._current = max(0, self._current - size)

    @property
    def current_usage(self) -> int:
        return self._current

    @property
    def peak_usage(self) -> int:
        return self._peak

    @property
    def available(self) -> int:
        return max(0, self.limit - self._current)


@dataclass
class TileBuffer:
    """
    Pixels of an expanded region, remembering where its core lies.

    Attributes:
        pixels: HWC array covering `expanded`
        region: The core region being produced
        expanded: The region actually read, core plus clamped overlap
    """
    pixels: NDArray[np.float32]
    region: TileRegion
    expanded: TileRegion

    def extract_core(self, pixels: NDArray[np.float32] | None = None) -> NDArray[np.float32]:
        """Crop an expanded-size array (the input by default) down to the core."""
        data = self.pixels if pixels is None else pixels
        if data.shape[:2] != (self.expanded.height, self.expanded.width):
            raise ChunkError(
                f"Tile result has shape {data.shape[:2]}, "
                f"expected {(self.expanded.height, self.expanded.width)}"
            )
        ox = self.region.x - self.expanded.x
        oy = self.region.y - self.expanded.y
        return data[oy:oy + self.region.height, ox:ox + self.region.width]


# --- Sources and sinks ---

class ImageSource(ABC):
    """Somewhere tiles can be read from."""

    @property
    @abstractmethod
    def size(self) -> tuple[int, int]:
        ...

    @property
    @abstractmethod
    def channels(self) -> int:
        ...

    @abstractmethod
    def read_region(self, region: TileRegion) -> NDArray[np.float32]:
        ...

    def _check(self, region: TileRegion) -> None:
        if not region.is_within(*self.size):
            raise ChunkError(f"Tile {region} lies outside image of size {self.size}")


class MemoryImageSource(ImageSource):
    def __init__(self, image: ImageData):
        self.image = image

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def channels(self) -> int:
        return self.image.channels

    def read_region(self, region: TileRegion) -> NDArray[np.float32]:
        self._check(region)
        return self.image.pixels[region.y:region.bottom, region.x:region.right]


class FileImageSource(ImageSource):
    """Reads tiles from an image file with Pillow, cropping per tile."""

    def __init__(self, path: str | Path):
        from PIL import Image

        self.path = Path(path)
        self._image = Image.open(self.path)
        if self._image.mode not in ("RGB", "RGBA"):
            self._image = self._image.convert("RGBA" if "A" in self._image.getbands() else "RGB")

    @property
    def size(self) -> tuple[int, int]:
        return self._image.size

    @property
    def channels(self) -> int:
        return len(self._image.getbands())

    def read_region(self, region: TileRegion) -> NDArray[np.float32]:
        self._check(region)
        crop = self._image.crop((region.x, region.y, region.right, region.bottom))
        return np.asarray(crop, dtype=np.float32) / 255.0

    def close(self) -> None:
        self._image.close()


class ImageSink(ABC):
    """Somewhere finished tile cores are written."""

    @abstractmethod
    def write_region(self, region: TileRegion, pixels: NDArray[np.float32]) -> None:
        ...

    @abstractmethod
    def finish(self) -> ImageData:
        ...


class MemoryImageSink(ImageSink):
    """Assembles tiles into one in-memory image."""

    def __init__(self, width: int, height: int, channels: int, metadata: ImageMetadata | None = None):
        self.width = width
        self.height = height
        self._pixels: NDArray[np.float32] | None = None
        self._channels = channels
        self._metadata = metadata or ImageMetadata()

    def write_region(self, region: TileRegion, pixels: NDArray[np.float32]) -> None:
        if not region.is_within(self.width, self.height):
            raise ChunkError(f"Tile {region} lies outside output of size {(self.width, self.height)}")
        if pixels.shape[:2] != (region.height, region.width):
            raise ChunkError(f"Tile data {pixels.shape[:2]} does not fit region {region}")
        if self._pixels is None:
            channels = pixels.shape[2] if pixels.ndim == 3 else self._channels
            self._pixels = np.zeros((self.height, self.width, channels), dtype=np.float32)
        self._pixels[region.y:region.bottom, region.x:region.right] = pixels

    def finish(self) -> ImageData:
        if self._pixels is None:
            raise ChunkError("No tiles were written")
        return ImageData(pixels=self._pixels, metadata=self._metadata)


# --- Drivers ---

TileResult = Union[NDArray[np.float32], Awaitable[NDArray[np.float32]]]
TileFunction = Callable[[TileBuffer], TileResult]


async def _call(process_tile: TileFunction, tile: TileBuffer) -> NDArray[np.float32]:
    result = process_tile(tile)
    if inspect.isawaitable(result):
        result = await result
    return np.asarray(result, dtype=np.float32)


async def process_chunked(
    source: ImageSource,
    sink: ImageSink,
    config: ProcessingConfig,
    process_tile: TileFunction,
    overlap: int = 0,
    cancel: CancellationToken | None = None,
    on_tile: Callable[[int, int], None] | None = None,
    tracker: MemoryTracker | None = None,
) -> ImageData:
    """
    Run `process_tile` over overlapping tiles and stitch the cores.

    Each tile is read with `overlap` extra pixels on every side (clamped
    to the image), processed, and only its core is written back. Every
    output pixel therefore sees its full neighborhood and the result
    matches whole-image processing.

    If a tile's working set does not fit the memory budget it is split
    into half-size tiles, and that size is kept for the rest of the run.

    Args:
        source: Where input pixels come from
        sink: Where output cores go
        config: Tile size and memory limit
        process_tile: Sync or async function from TileBuffer to an array
            the same height and width as the expanded tile
        overlap: Neighborhood radius of the operation
        cancel: Checked before each tile
        on_tile: Called with (tiles_done, tiles_total) after each tile

    Raises:
        ChunkError: On out-of-bounds tiles, bad tile results, or when even
            a minimum-size tile exceeds the budget.
        ExecutionCancelled: If `cancel` trips between tiles.
    """
    width, height = source.size
    channels = source.channels
    tracker = tracker or MemoryTracker(config.memory_limit)
    tile_w, tile_h = config.tile_width, config.tile_height

    pending = deque(TileIterator(width, height, config, overlap))
    total = len(pending)
    done = 0
    logger.debug(f"Chunked run over {width}x{height}: {total} tile(s), overlap {overlap}")

    while pending:
        if cancel is not None:
            cancel.check_cancelled()

        region = pending.popleft()
        if region.width > tile_w or region.height > tile_h:
            pieces = region.split(tile_w, tile_h)
            pending.extendleft(reversed(pieces))
            total += len(pieces) - 1
            continue

        expanded = region.expand(width, height)
        cost = estimate_working_set(expanded.width, expanded.height, channels)
        if not tracker.try_allocate(cost):
            if tile_w <= MIN_TILE_SIZE and tile_h <= MIN_TILE_SIZE:
                raise ChunkError(
                    f"Tile of {expanded.width}x{expanded.height} needs {cost} bytes, "
                    f"only {tracker.available} available"
                )
            tile_w = max(MIN_TILE_SIZE, tile_w // 2)
            tile_h = max(MIN_TILE_SIZE, tile_h // 2)
            logger.warning(f"Memory pressure: reducing tile size to {tile_w}x{tile_h}")
            pending.appendleft(region)
            continue

        try:
            tile = TileBuffer(source.read_region(expanded), region, expanded)
            result = await _call(process_tile, tile)
            sink.write_region(region, tile.extract_core(result))
        finally:
            tracker.release(cost)

        done += 1
        if on_tile is not None:
            on_tile(done, total)

    return sink.finish()


async def process_pointwise(
    source: ImageSource,
    sink: ImageSink,
    config: ProcessingConfig,
    process_tile: TileFunction,
    cancel: CancellationToken | None = None,
    on_tile: Callable[[int, int], None] | None = None,
    tracker: MemoryTracker | None = None,
) -> ImageData:
    """
    Tiled run without overlap, for operations whose output pixel depends
    only on the input pixel at the same position.

    Tiles are still charged against the memory budget and shrink under
    pressure exactly as in `process_chunked`.
    """
    return await process_chunked(
        source, sink, config, process_tile,
        overlap=0, cancel=cancel, on_tile=on_tile, tracker=tracker,
    )
