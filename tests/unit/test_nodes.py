"""
Tests for the built-in operations.
"""

import asyncio

import numpy as np
import pytest

from pixelflow.core.context import ExecutionContext
from pixelflow.core.data_types import Color, ImageData
from pixelflow.core.errors import ExecutionError
from pixelflow.core.node_types import ExtentKind
from pixelflow.nodes.filter.blur import BOX_BLUR, GAUSSIAN_BLUR, gaussian_kernel, gaussian_radius


def _execute(registry, operation_id, inputs=None, **parameters):
    op = registry.create(operation_id)
    resolved = op.metadata().get_default_parameters()
    resolved.update(parameters)
    context = ExecutionContext("node", inputs or {}, resolved)
    asyncio.run(op.execute(context))
    return context.outputs


def _rgba(value, alpha=0.5):
    pixels = np.full((2, 2, 4), value, dtype=np.float32)
    pixels[..., 3] = alpha
    return ImageData(pixels=pixels)


class TestSources:

    def test_solid_image(self, registry):
        out = _execute(registry, "solid_image", width=3, height=2, color=Color(255, 0, 0, 255))
        image = out["image"]
        assert image.size == (3, 2)
        np.testing.assert_allclose(image.pixels[0, 0], [1.0, 0.0, 0.0, 1.0])

    def test_gradient_is_deterministic(self, registry):
        a = _execute(registry, "gradient_image", width=20, height=10, cell=4)["image"]
        b = _execute(registry, "gradient_image", width=20, height=10, cell=4)["image"]
        np.testing.assert_array_equal(a.pixels, b.pixels)
        assert a.pixels[0, 0, 0] == 0.0
        assert a.pixels[0, -1, 0] == 1.0

    def test_load_image(self, registry, tmp_path):
        path = tmp_path / "pic.png"
        ImageData.empty(5, 4).to_pil().save(path)
        out = _execute(registry, "load_image", path=str(path))
        assert (out["width"], out["height"]) == (5, 4)

    def test_load_missing_image(self, registry, tmp_path):
        with pytest.raises(ExecutionError):
            _execute(registry, "load_image", path=str(tmp_path / "missing.png"))


class TestColor:

    def test_invert_keeps_alpha(self, registry):
        out = _execute(registry, "invert", {"image": _rgba(0.25)})["image"]
        np.testing.assert_allclose(out.pixels[..., :3], 0.75)
        np.testing.assert_allclose(out.pixels[..., 3], 0.5)

    def test_brightness_clips(self, registry):
        out = _execute(registry, "brightness", {"image": _rgba(0.6)}, factor=2.0)["image"]
        np.testing.assert_allclose(out.pixels[..., :3], 1.0)

    def test_grayscale_equal_channels(self, registry):
        pixels = np.random.default_rng(1).random((4, 4, 3), dtype=np.float32)
        out = _execute(registry, "grayscale", {"image": ImageData(pixels=pixels)})["image"]
        np.testing.assert_allclose(out.pixels[..., 0], out.pixels[..., 1])
        np.testing.assert_allclose(out.pixels[..., 1], out.pixels[..., 2])

    def test_input_not_modified(self, registry):
        image = _rgba(0.25)
        _execute(registry, "invert", {"image": image})
        np.testing.assert_allclose(image.pixels[..., :3], 0.25)


class TestBlur:

    def test_extent_follows_radius(self):
        extent = BOX_BLUR.spatial_extent({"radius": 5})
        assert extent.kind == ExtentKind.NEIGHBORHOOD
        assert extent.overlap == 5
        assert GAUSSIAN_BLUR.spatial_extent({"sigma": 2.0}).overlap == gaussian_radius(2.0) == 6

    def test_gaussian_kernel_normalized(self):
        kernel = gaussian_kernel(1.5)
        assert len(kernel) == 2 * gaussian_radius(1.5) + 1
        assert kernel.sum() == pytest.approx(1.0, abs=1e-6)

    def test_box_blur_spreads_a_point(self, registry):
        pixels = np.zeros((9, 9, 3), dtype=np.float32)
        pixels[4, 4] = 1.0
        out = _execute(registry, "box_blur", {"image": ImageData(pixels=pixels)}, radius=1)["image"]
        np.testing.assert_allclose(out.pixels[3:6, 3:6, 0], 1.0 / 9.0, rtol=1e-5)
        assert out.pixels[0, 0, 0] == 0.0


class TestLevels:

    def test_stretch(self, registry):
        pixels = np.linspace(0.2, 0.6, 12, dtype=np.float32).reshape(2, 2, 3)
        out = _execute(registry, "auto_levels", {"image": ImageData(pixels=pixels)})["image"]
        for channel in range(3):
            assert out.pixels[..., channel].min() == pytest.approx(0.0)
            assert out.pixels[..., channel].max() == pytest.approx(1.0)

    def test_flat_image_unchanged_range(self, registry):
        out = _execute(registry, "auto_levels", {"image": ImageData(pixels=np.full((2, 2, 3), 0.5, dtype=np.float32))})
        np.testing.assert_allclose(out["image"].pixels, 0.0)


class TestComposite:

    def _rgb(self, value):
        return ImageData(pixels=np.full((2, 2, 3), value, dtype=np.float32))

    @pytest.mark.parametrize("mode,expected", [
        ("normal", 0.5),
        ("multiply", 0.1),
        ("screen", 0.6),
        ("darken", 0.2),
        ("lighten", 0.5),
        ("add", 0.7),
        ("difference", 0.3),
    ])
    def test_modes(self, registry, mode, expected):
        inputs = {"base": self._rgb(0.2), "blend": self._rgb(0.5)}
        out = _execute(registry, "blend", inputs, mode=mode)["image"]
        np.testing.assert_allclose(out.pixels, expected, atol=1e-6)

    def test_opacity_and_layer_alpha(self, registry):
        inputs = {"base": self._rgb(0.0), "blend": _rgba(1.0, alpha=0.5)}
        out = _execute(registry, "blend", inputs, opacity=0.5)["image"]
        assert out.channels == 3
        np.testing.assert_allclose(out.pixels, 0.25, atol=1e-6)

    def test_base_alpha_composited(self, registry):
        inputs = {"base": _rgba(0.0, alpha=0.5), "blend": _rgba(1.0, alpha=0.5)}
        out = _execute(registry, "blend", inputs)["image"]
        np.testing.assert_allclose(out.pixels[..., 3], 0.75, atol=1e-6)

    def test_size_mismatch(self, registry):
        inputs = {"base": self._rgb(0.2), "blend": ImageData.empty(3, 2)}
        with pytest.raises(ExecutionError) as excinfo:
            _execute(registry, "blend", inputs)
        assert excinfo.value.port == "blend"


class TestMath:

    @pytest.mark.parametrize("op_id, parameter, expected", [
        ("add", {"addend": 2}, 12),
        ("subtract", {"subtrahend": 2}, 8),
        ("multiply", {"factor": 2}, 20),
        ("divide", {"divisor": 4}, 2.5),
    ])
    def test_arithmetic(self, registry, op_id, parameter, expected):
        assert _execute(registry, op_id, {"value": 10}, **parameter)["result"] == expected

    def test_constant(self, registry):
        assert _execute(registry, "string_constant", value="hi") == {"value": "hi"}
