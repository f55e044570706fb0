"""Tests for the pixel comparison module."""

import math

import numpy as np
import pytest

from imagediff.imageio import ArrayImageSource, ImageLevel
from imagediff.metrics import NumpyComparator, compute_stats, sample_errors


def make_level(array: np.ndarray, deep: bool = False) -> ImageLevel:
    """Wrap a pixel array in an ImageLevel."""
    return ArrayImageSource([[array]], deep=deep).read_level(0, 0)


def make_deep(
    samples: dict[tuple[int, int], list[list[float]]], size: tuple[int, int]
) -> np.ndarray:
    """Build a deep ``(height, width)`` array; missing pixels have no samples."""
    height, width = size
    deep = np.empty((height, width), dtype=object)
    for y in range(height):
        for x in range(width):
            deep[y, x] = np.array(samples.get((y, x), []), dtype=np.float32)
    return deep


class TestSampleErrors:
    """Tests for per-sample error computation."""

    def test_absolute_difference(self) -> None:
        errors = sample_errors(np.array([1.0, 0.25]), np.array([0.5, 1.0]))
        np.testing.assert_allclose(errors, [0.5, 0.75])

    def test_equal_infinities_are_zero(self) -> None:
        errors = sample_errors(np.array([np.inf, -np.inf]), np.array([np.inf, -np.inf]))
        np.testing.assert_array_equal(errors, [0.0, 0.0])

    def test_nan_is_infinite_error(self) -> None:
        errors = sample_errors(np.array([np.nan, 1.0]), np.array([0.0, np.nan]))
        assert np.all(np.isinf(errors))

    def test_nan_in_both_is_zero(self) -> None:
        errors = sample_errors(np.array([np.nan, np.nan]), np.array([np.nan, 1.0]))
        assert errors[0] == 0.0
        assert np.isinf(errors[1])


class TestCompare:
    """Tests for NumpyComparator.compare."""

    def test_identical_images(self, gradient_rgb: np.ndarray) -> None:
        stats = NumpyComparator().compare(
            make_level(gradient_rgb), make_level(gradient_rgb.copy()), 1e-6, 1e-6
        )

        assert stats.mean_error == 0.0
        assert stats.rms_error == 0.0
        assert stats.max_error == 0.0
        assert stats.warn_count == 0
        assert stats.fail_count == 0
        assert math.isinf(stats.psnr)

    def test_constant_delta_in_one_channel(self, gradient_rgb: np.ndarray) -> None:
        shifted = gradient_rgb.copy()
        shifted[2:5, 3:6, 1] += 0.125

        stats = NumpyComparator().compare(make_level(gradient_rgb), make_level(shifted), 0.5, 0.01)

        assert stats.max_error == pytest.approx(0.125, abs=1e-6)
        assert stats.max_c == 1
        assert 2 <= stats.max_y < 5
        assert 3 <= stats.max_x < 6
        assert stats.max_z == 0
        assert stats.warn_count == 9
        assert stats.fail_count == 0

    def test_two_by_two_single_pixel(self, zeros_2x2: np.ndarray, one_hot_2x2: np.ndarray) -> None:
        stats = NumpyComparator().compare(make_level(zeros_2x2), make_level(one_hot_2x2), 0.5, 1e-6)

        assert stats.fail_count == 1
        assert stats.warn_count == 1
        assert stats.max_error == 1.0
        assert (stats.max_x, stats.max_y, stats.max_c) == (0, 0, 0)
        assert stats.mean_error == pytest.approx(0.25)
        assert stats.rms_error == pytest.approx(0.5)
        assert stats.psnr == pytest.approx(20 * math.log10(2))

    def test_pixel_counted_once_across_channels(self) -> None:
        a = np.zeros((1, 2, 3), dtype=np.float32)
        b = a.copy()
        b[0, 0, :] = 1.0

        stats = NumpyComparator().compare(make_level(a), make_level(b), 0.5, 0.5)

        assert stats.fail_count == 1
        assert stats.warn_count == 1

    def test_first_maximum_wins(self) -> None:
        a = np.zeros((2, 2, 1), dtype=np.float32)
        b = np.ones((2, 2, 1), dtype=np.float32)

        stats = NumpyComparator().compare(make_level(a), make_level(b), 0.5, 0.5)

        assert (stats.max_x, stats.max_y) == (0, 0)

    def test_volumetric_location(self) -> None:
        a = np.zeros((3, 2, 2, 1), dtype=np.float32)
        b = a.copy()
        b[2, 1, 0, 0] = 0.5

        stats = NumpyComparator().compare(make_level(a), make_level(b), 1.0, 1.0)

        assert (stats.max_x, stats.max_y, stats.max_z) == (0, 1, 2)

    def test_nan_sample_fails(self, zeros_2x2: np.ndarray) -> None:
        b = zeros_2x2.copy()
        b[1, 1, 0] = np.nan

        stats = NumpyComparator().compare(make_level(zeros_2x2), make_level(b), 0.5, 0.5)

        assert math.isinf(stats.max_error)
        assert (stats.max_x, stats.max_y) == (1, 1)
        assert stats.fail_count == 1
        assert math.isinf(stats.mean_error)

    def test_shape_mismatch_raises(self) -> None:
        with pytest.raises(ValueError, match="Cannot compare"):
            NumpyComparator().compare(
                make_level(np.zeros((4, 4, 3))), make_level(np.zeros((4, 4, 4))), 0.1, 0.1
            )

    def test_empty_image(self) -> None:
        stats = compute_stats(np.zeros((1, 0, 0, 3)), 0.1, 0.1)
        assert stats.max_error == 0.0
        assert math.isinf(stats.psnr)


class TestDeepCompare:
    """Tests for comparing deep pixel data."""

    def test_identical_deep(self) -> None:
        deep = make_deep({(0, 0): [[1.0, 0.5], [2.0, 0.25]]}, (1, 2))

        stats = NumpyComparator().compare(
            make_level(deep, deep=True), make_level(deep, deep=True), 1e-6, 1e-6
        )

        assert stats.max_error == 0.0
        assert stats.fail_count == 0

    def test_extra_sample_compared_against_zero(self) -> None:
        a = make_deep({(0, 1): [[0.5, 1.0]]}, (1, 2))
        b = make_deep({(0, 1): [[0.5, 1.0], [0.25, 3.0]]}, (1, 2))

        stats = NumpyComparator().compare(
            make_level(a, deep=True), make_level(b, deep=True), 1.0, 0.1
        )

        assert stats.max_error == pytest.approx(3.0)
        assert (stats.max_x, stats.max_y, stats.max_c) == (1, 0, 1)
        assert stats.warn_count == 1
        assert stats.fail_count == 1

    def test_perceptual_rejects_deep(self) -> None:
        deep = make_level(make_deep({}, (1, 1)), deep=True)
        with pytest.raises(ValueError, match="deep"):
            NumpyComparator().perceptual_compare(deep, deep)


class TestPerceptualCompare:
    """Tests for NumpyComparator.perceptual_compare."""

    def test_identical_images_pass(self, gradient_rgb: np.ndarray) -> None:
        level = make_level(gradient_rgb)
        assert NumpyComparator().perceptual_compare(level, make_level(gradient_rgb.copy())) == 0

    def test_black_versus_white_fails_everywhere(self) -> None:
        black = make_level(np.zeros((16, 16, 3), dtype=np.float32))
        white = make_level(np.ones((16, 16, 3), dtype=np.float32))
        assert NumpyComparator().perceptual_compare(black, white) == 256
