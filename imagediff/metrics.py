"""Pixel comparison module.

Computes the error statistics for two image levels of the same shape:
mean and RMS error, peak signal-to-noise ratio, the largest single-sample
error with its location, and the number of pixels whose error exceeds the
warning and failure thresholds.
"""

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from imagediff.imageio import ImageLevel
from imagediff.perceptual import yee_compare


@dataclass(frozen=True)
class CompareStats:
    """Error statistics for one compared level.

    Attributes:
        mean_error: Mean absolute error over all samples.
        rms_error: Root-mean-square error over all samples.
        psnr: Peak signal-to-noise ratio in dB, assuming a peak of 1.0.
            Infinite for identical images.
        max_error: Largest absolute error of any single sample.
        max_x: Column of the sample with the largest error.
        max_y: Row of the sample with the largest error.
        max_z: Slice of the sample with the largest error.
        max_c: Channel index of the sample with the largest error.
        warn_count: Pixels with at least one channel over the warning threshold.
        fail_count: Pixels with at least one channel over the failure threshold.
    """

    mean_error: float
    rms_error: float
    psnr: float
    max_error: float
    max_x: int
    max_y: int
    max_z: int
    max_c: int
    warn_count: int
    fail_count: int


class PixelComparator(Protocol):
    """Produces statistics and perceptual failure counts for two levels."""

    def compare(
        self, a: ImageLevel, b: ImageLevel, fail_thresh: float, warn_thresh: float
    ) -> CompareStats: ...

    def perceptual_compare(self, a: ImageLevel, b: ImageLevel) -> int: ...


def sample_errors(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Absolute per-sample error of two equally shaped float arrays.

    Equal samples have zero error. This includes equal infinities and NaN
    in both arrays at the same position. Any other non-finite difference is
    treated as an infinite error.
    """
    a = a.astype(np.float64)
    b = b.astype(np.float64)
    with np.errstate(invalid="ignore", over="ignore"):
        errors = np.abs(a - b)
    errors[(a == b) | (np.isnan(a) & np.isnan(b))] = 0.0
    errors[~np.isfinite(errors)] = np.inf
    return errors


def deep_sample_errors(a: np.ndarray, b: np.ndarray, nchannels: int) -> np.ndarray:
    """Per-pixel, per-channel error of two deep pixel arrays.

    Sample lists of unequal length are padded with zeros; a channel's error
    is the largest error over its samples.

    Returns:
        Array of shape ``(depth, height, width, nchannels)``.
    """
    errors = np.zeros((*a.shape, nchannels), dtype=np.float64)
    for index, samples_a in np.ndenumerate(a):
        samples_b = b[index]
        count = max(len(samples_a), len(samples_b))
        if count == 0:
            continue
        padded_a = np.zeros((count, nchannels), dtype=np.float32)
        padded_b = np.zeros((count, nchannels), dtype=np.float32)
        padded_a[: len(samples_a)] = samples_a
        padded_b[: len(samples_b)] = samples_b
        errors[index] = sample_errors(padded_a, padded_b).max(axis=0)
    return errors


def compute_stats(errors: np.ndarray, fail_thresh: float, warn_thresh: float) -> CompareStats:
    """Reduce a ``(depth, height, width, nchannels)`` error array to statistics."""
    if errors.size == 0:
        return CompareStats(
            mean_error=0.0,
            rms_error=0.0,
            psnr=float("inf"),
            max_error=0.0,
            max_x=0,
            max_y=0,
            max_z=0,
            max_c=0,
            warn_count=0,
            fail_count=0,
        )

    with np.errstate(over="ignore", invalid="ignore"):
        mean_error = float(errors.sum() / errors.size)
        rms_error = float(np.sqrt(np.square(errors).sum() / errors.size))

    if rms_error == 0.0:
        psnr = float("inf")
    else:
        with np.errstate(divide="ignore"):
            psnr = float(20.0 * np.log10(1.0 / rms_error))

    # argmax returns the first maximum in z, y, x, channel order
    z, y, x, c = np.unravel_index(int(np.argmax(errors)), errors.shape)

    return CompareStats(
        mean_error=mean_error,
        rms_error=rms_error,
        psnr=psnr,
        max_error=float(errors[z, y, x, c]),
        max_x=int(x),
        max_y=int(y),
        max_z=int(z),
        max_c=int(c),
        warn_count=int(np.count_nonzero((errors > warn_thresh).any(axis=-1))),
        fail_count=int(np.count_nonzero((errors > fail_thresh).any(axis=-1))),
    )


class NumpyComparator:
    """Default comparator computing statistics with NumPy."""

    def compare(
        self, a: ImageLevel, b: ImageLevel, fail_thresh: float, warn_thresh: float
    ) -> CompareStats:
        """Compare two levels of the same shape.

        Args:
            a: First level.
            b: Second level, same shape and deep flag as ``a``.
            fail_thresh: Per-sample error above which a pixel fails.
            warn_thresh: Per-sample error above which a pixel warns.

        Returns:
            Statistics of the absolute differences.

        Raises:
            ValueError: If the levels do not have the same shape.
        """
        if not a.shape.same_size(b.shape) or a.deep != b.deep:
            msg = f"Cannot compare levels of shape {a.shape.describe()} and {b.shape.describe()}"
            raise ValueError(msg)

        if a.deep:
            errors = deep_sample_errors(a.pixels, b.pixels, a.shape.nchannels)
        else:
            errors = sample_errors(a.pixels, b.pixels)
        return compute_stats(errors, fail_thresh, warn_thresh)

    def perceptual_compare(self, a: ImageLevel, b: ImageLevel) -> int:
        """Count pixels that fail the Yee perceptual test.

        Raises:
            ValueError: For deep levels, which have no perceptual metric.
        """
        if a.deep or b.deep:
            msg = "Perceptual comparison is not defined for deep images"
            raise ValueError(msg)
        return yee_compare(a.pixels, b.pixels)
