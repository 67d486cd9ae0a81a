"""
Tests for tiled processing.
"""

import asyncio

import numpy as np
import pytest

from pixelflow.core.chunked import (
    MIN_TILE_SIZE,
    FileImageSource,
    MemoryImageSink,
    MemoryImageSource,
    MemoryTracker,
    ProcessingConfig,
    TileBuffer,
    TileIterator,
    TileRegion,
    estimate_working_set,
    process_chunked,
    process_pointwise,
)
from pixelflow.core.context import CancellationToken
from pixelflow.core.data_types import ImageData
from pixelflow.core.errors import ChunkError, ExecutionCancelled
from pixelflow.nodes.filter.blur import box_kernel, convolve_separable


def _random_image(width, height, channels=3, seed=0):
    rng = np.random.default_rng(seed)
    return ImageData(pixels=rng.random((height, width, channels), dtype=np.float32))


def _run_chunked(image, config, process_tile, overlap=0, **kwargs):
    source = MemoryImageSource(image)
    sink = MemoryImageSink(image.width, image.height, image.channels)
    return asyncio.run(process_chunked(source, sink, config, process_tile, overlap=overlap, **kwargs))


class TestTileRegion:

    def test_expand_clamps_to_image(self):
        region = TileRegion(0, 0, 64, 64, overlap=5)
        assert region.expand(100, 100) == TileRegion(0, 0, 69, 69)
        inner = TileRegion(10, 10, 20, 20, overlap=5)
        assert inner.expand(100, 100) == TileRegion(5, 5, 30, 30)

    def test_is_within(self):
        assert TileRegion(0, 0, 10, 10).is_within(10, 10)
        assert not TileRegion(5, 0, 10, 10).is_within(10, 10)
        assert not TileRegion(0, 0, 0, 10).is_within(10, 10)


class TestTileIterator:

    def test_count(self):
        tiles = TileIterator(1000, 1000, ProcessingConfig(256, 256))
        assert tiles.tile_count == 16
        assert len(list(tiles)) == 16

    def test_last_tile_cropped(self):
        tiles = list(TileIterator(100, 100, ProcessingConfig(64, 64)))
        assert len(tiles) == 4
        assert tiles[-1] == TileRegion(64, 64, 36, 36)

    def test_row_major_and_gap_free(self):
        tiles = list(TileIterator(300, 200, ProcessingConfig(128, 128)))
        assert [(t.x, t.y) for t in tiles[:3]] == [(0, 0), (128, 0), (256, 0)]
        covered = np.zeros((200, 300), dtype=int)
        for t in tiles:
            covered[t.y:t.bottom, t.x:t.right] += 1
        assert (covered == 1).all()

    def test_restartable(self):
        tiles = TileIterator(200, 100, ProcessingConfig(64, 64))
        assert list(tiles) == list(tiles)

    def test_tile_size_clamped(self):
        config = ProcessingConfig(8, 100000)
        assert config.tile_width == MIN_TILE_SIZE
        assert config.tile_height == 4096

    def test_invalid_extent(self):
        with pytest.raises(ValueError):
            TileIterator(0, 10, ProcessingConfig())


class TestProcessingConfig:

    def test_needs_chunking(self):
        config = ProcessingConfig(memory_limit=estimate_working_set(100, 100, 4))
        assert not config.needs_chunking(100, 100, 4)
        assert config.needs_chunking(101, 100, 4)

    def test_optimal_tile_size(self):
        config = ProcessingConfig(memory_limit=512 * 512 * 4 * 4 * 2)
        assert config.optimal_tile_size(channels=4) == 512
        assert config.optimal_tile_size(channels=4, overlap=10) == 492


class TestProcessChunked:

    def test_box_blur_matches_whole_image(self):
        image = _random_image(1000, 1000)
        radius = 3
        kernel = box_kernel(radius)
        whole = convolve_separable(image.pixels, kernel)

        result = _run_chunked(
            image,
            ProcessingConfig(256, 256),
            lambda tile: convolve_separable(tile.pixels, kernel),
            overlap=radius,
        )
        assert result.size == (1000, 1000)
        np.testing.assert_allclose(result.pixels, whole, atol=1e-6)

    def test_async_tile_function(self):
        image = _random_image(130, 70)

        async def double(tile):
            return tile.pixels * 2

        result = _run_chunked(image, ProcessingConfig(64, 64), double, overlap=2)
        np.testing.assert_allclose(result.pixels, image.pixels * 2)

    def test_pointwise(self):
        image = _random_image(200, 150)
        source = MemoryImageSource(image)
        sink = MemoryImageSink(200, 150, 3)
        result = asyncio.run(process_pointwise(source, sink, ProcessingConfig(64, 64), lambda t: 1.0 - t.pixels))
        np.testing.assert_allclose(result.pixels, 1.0 - image.pixels)

    def test_pointwise_over_budget(self):
        image = _random_image(256, 256)
        source = MemoryImageSource(image)
        sink = MemoryImageSink(256, 256, 3)
        config = ProcessingConfig(256, 256, memory_limit=1024)
        with pytest.raises(ChunkError):
            asyncio.run(process_pointwise(source, sink, config, lambda t: t.pixels))

    def test_pointwise_shrinks_tiles_under_pressure(self):
        image = _random_image(256, 256)
        sizes = []

        def record(tile):
            assert tile.expanded == tile.region
            sizes.append((tile.region.width, tile.region.height))
            return 1.0 - tile.pixels

        tracker = MemoryTracker(estimate_working_set(128, 128, 3))
        source = MemoryImageSource(image)
        sink = MemoryImageSink(256, 256, 3)
        config = ProcessingConfig(256, 256, memory_limit=tracker.limit)
        result = asyncio.run(process_pointwise(source, sink, config, record, tracker=tracker))

        assert sizes == [(128, 128)] * 4
        assert tracker.current_usage == 0
        np.testing.assert_allclose(result.pixels, 1.0 - image.pixels)

    def test_progress_reported_per_tile(self):
        image = _random_image(128, 128)
        seen = []
        _run_chunked(image, ProcessingConfig(64, 64), lambda t: t.pixels, on_tile=lambda d, n: seen.append((d, n)))
        assert seen == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_memory_pressure_shrinks_tiles(self):
        image = _random_image(256, 256)
        sizes = []

        def record(tile):
            sizes.append((tile.region.width, tile.region.height))
            return tile.pixels

        limit = estimate_working_set(128, 128, 3)
        result = _run_chunked(image, ProcessingConfig(256, 256, memory_limit=limit), record)

        assert max(sizes) == (128, 128)
        assert len(sizes) == 4
        np.testing.assert_allclose(result.pixels, image.pixels)

    def test_minimum_tile_too_large(self):
        image = _random_image(128, 128)
        config = ProcessingConfig(64, 64, memory_limit=1024)
        with pytest.raises(ChunkError):
            _run_chunked(image, config, lambda t: t.pixels)

    def test_tracker_released(self):
        image = _random_image(128, 128)
        tracker = MemoryTracker(10**9)
        _run_chunked(image, ProcessingConfig(64, 64), lambda t: t.pixels, tracker=tracker)
        assert tracker.current_usage == 0
        assert tracker.peak_usage == estimate_working_set(64, 64, 3)

    def test_wrong_tile_shape(self):
        image = _random_image(128, 128)
        with pytest.raises(ChunkError):
            _run_chunked(image, ProcessingConfig(64, 64), lambda t: t.pixels[:10])

    def test_cancellation_between_tiles(self):
        image = _random_image(256, 256)
        token = CancellationToken()
        processed = []

        def cancel_after_two(tile):
            processed.append(tile.region)
            if len(processed) == 2:
                token.cancel()
            return tile.pixels

        with pytest.raises(ExecutionCancelled):
            _run_chunked(image, ProcessingConfig(64, 64), cancel_after_two, cancel=token)
        assert len(processed) == 2


class TestTileBuffer:

    def test_extract_core(self):
        pixels = np.arange(10 * 10 * 1, dtype=np.float32).reshape(10, 10, 1)
        buffer = TileBuffer(pixels, TileRegion(12, 12, 6, 6), TileRegion(10, 10, 10, 10))
        core = buffer.extract_core()
        assert core.shape == (6, 6, 1)
        assert core[0, 0, 0] == pixels[2, 2, 0]


class TestSink:

    def test_out_of_bounds_write(self):
        sink = MemoryImageSink(10, 10, 3)
        with pytest.raises(ChunkError):
            sink.write_region(TileRegion(5, 5, 10, 10), np.zeros((10, 10, 3), dtype=np.float32))

    def test_finish_without_tiles(self):
        with pytest.raises(ChunkError):
            MemoryImageSink(10, 10, 3).finish()


class TestFileImageSource:

    def test_reads_tiles_from_file(self, tmp_path):
        arr = (np.arange(100 * 80 * 3) % 256).astype(np.uint8).reshape(80, 100, 3)
        path = tmp_path / "tiles.png"
        ImageData.from_numpy(arr).to_pil().save(path)

        source = FileImageSource(path)
        try:
            assert source.size == (100, 80)
            assert source.channels == 3
            sink = MemoryImageSink(100, 80, 3)
            result = asyncio.run(process_pointwise(source, sink, ProcessingConfig(64, 64), lambda t: t.pixels))
        finally:
            source.close()

        np.testing.assert_allclose(result.pixels, arr.astype(np.float32) / 255.0, atol=1e-6)

    def test_region_outside_image(self, tmp_path):
        path = tmp_path / "small.png"
        ImageData.empty(10, 10).to_pil().save(path)
        source = FileImageSource(path)
        try:
            with pytest.raises(ChunkError):
                source.read_region(TileRegion(5, 5, 10, 10))
        finally:
            source.close()
