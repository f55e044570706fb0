"""Perceptual image comparison.

Implements the visible-difference predictor of Yee, "A perceptual metric
for production testing" (Journal of Graphics Tools, 2004). Two images are
compared through luminance Laplacian pyramids weighted by a contrast
sensitivity function, with visual masking and threshold-vs-intensity
elevation, plus a colour test in CIE L*a*b*. The result is the number of
pixels a human observer would be expected to see as different.

Samples are taken as linear Adobe RGB in [0, 1]; the first three
channels are used, or the first channel as grey for fewer channels.
"""

import math

import numpy as np

MAX_PYR_LEVELS = 8

_KERNEL = (0.05, 0.25, 0.4, 0.25, 0.05)

_EPSILON = 216.0 / 24389.0
_KAPPA = 24389.0 / 27.0


def _adobe_rgb_to_xyz(
    r: np.ndarray, g: np.ndarray, b: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    x = r * 0.576700 + g * 0.185556 + b * 0.188212
    y = r * 0.297361 + g * 0.627355 + b * 0.0752847
    z = r * 0.0270328 + g * 0.0706879 + b * 0.991248
    return x, y, z


_WHITE = _adobe_rgb_to_xyz(np.float64(1.0), np.float64(1.0), np.float64(1.0))


def _xyz_to_ab(x: np.ndarray, y: np.ndarray, z: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return the a* and b* components of CIE L*a*b* for the Adobe RGB white point."""
    f = []
    for value, white in zip((x, y, z), _WHITE, strict=True):
        ratio = value / white
        f.append(np.where(ratio > _EPSILON, np.cbrt(ratio), (_KAPPA * ratio + 16.0) / 116.0))
    return 500.0 * (f[0] - f[1]), 200.0 * (f[1] - f[2])


def _blur(image: np.ndarray) -> np.ndarray:
    """Separable 5-tap low-pass filter with reflected borders."""
    height, width = image.shape
    padded = np.pad(image, 2, mode="reflect")
    rows = sum(weight * padded[:, i : i + width] for i, weight in enumerate(_KERNEL))
    return sum(weight * rows[i : i + height, :] for i, weight in enumerate(_KERNEL))


def _pyramid(image: np.ndarray) -> np.ndarray:
    levels = [image]
    for _ in range(1, MAX_PYR_LEVELS):
        levels.append(_blur(levels[-1]))
    return np.stack(levels)


def _csf(cpd: np.ndarray | float, lum: np.ndarray | float) -> np.ndarray:
    """Contrast sensitivity at ``cpd`` cycles per degree and adaptation luminance ``lum``."""
    a = 440.0 * np.power(1.0 + 0.7 / lum, -0.2)
    b = 0.3 * np.power(1.0 + 100.0 / lum, 0.15)
    return a * cpd * np.exp(-b * cpd) * np.sqrt(1.0 + 0.06 * np.exp(b * cpd))


def _mask(contrast: np.ndarray) -> np.ndarray:
    a = np.power(392.498 * contrast, 0.7)
    b = np.power(0.0153 * a, 4.0)
    return np.power(1.0 + b, 0.24)


def _tvi(adaptation_luminance: np.ndarray) -> np.ndarray:
    """Threshold vs intensity: smallest visible luminance change (Ward Larson)."""
    log_a = np.log10(adaptation_luminance)
    with np.errstate(invalid="ignore"):
        r = np.select(
            [log_a < -3.94, log_a < -1.44, log_a < -0.0184, log_a < 1.9],
            [
                np.full_like(log_a, -2.86),
                np.power(0.405 * log_a + 1.6, 2.18) - 2.86,
                log_a - 0.395,
                np.power(0.249 * log_a + 0.65, 2.7) - 0.72,
            ],
            default=log_a - 1.255,
        )
    return np.power(10.0, r)


def _rgb(pixels: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    if pixels.shape[-1] >= 3:
        return pixels[..., 0], pixels[..., 1], pixels[..., 2]
    grey = pixels[..., 0]
    return grey, grey, grey


def _yee_slice(
    a: np.ndarray, b: np.ndarray, luminance: float, fov: float, color_factor: float
) -> int:
    height, width, nchannels = a.shape
    if height == 0 or width == 0 or nchannels == 0:
        return 0

    x_a, y_a, z_a = _adobe_rgb_to_xyz(*_rgb(a))
    x_b, y_b, z_b = _adobe_rgb_to_xyz(*_rgb(b))
    a_star_a, b_star_a = _xyz_to_ab(x_a, y_a, z_a)
    a_star_b, b_star_b = _xyz_to_ab(x_b, y_b, z_b)

    pyr_a = _pyramid(y_a * luminance)
    pyr_b = _pyramid(y_b * luminance)

    num_one_degree_pixels = 2.0 * math.tan(math.radians(fov * 0.5)) * 180.0 / math.pi
    pixels_per_degree = width / num_one_degree_pixels

    num_pixels = 1.0
    adaptation_level = 0
    for level in range(MAX_PYR_LEVELS):
        adaptation_level = level
        if num_pixels > num_one_degree_pixels:
            break
        num_pixels *= 2.0

    nfreq = MAX_PYR_LEVELS - 2
    cpd = 0.5 * pixels_per_degree / np.power(2.0, np.arange(MAX_PYR_LEVELS))
    f_freq = _csf(3.248, 100.0) / _csf(cpd[:nfreq], 100.0)

    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        numerator = np.maximum(
            np.abs(pyr_a[:nfreq] - pyr_a[1 : nfreq + 1]),
            np.abs(pyr_b[:nfreq] - pyr_b[1 : nfreq + 1]),
        )
        denominator = np.maximum(np.maximum(np.abs(pyr_a[2:]), np.abs(pyr_b[2:])), 1e-5)
        contrast = numerator / denominator
        sum_contrast = np.maximum(contrast.sum(axis=0), 1e-5)

        adapt = np.maximum(0.5 * (pyr_a[adaptation_level] + pyr_b[adaptation_level]), 1e-5)

        f_mask = _mask(contrast * _csf(cpd[:nfreq, None, None], adapt[None]))
        factor = (contrast * f_freq[:, None, None] * f_mask).sum(axis=0) / sum_contrast
        factor = np.clip(factor, 1.0, 10.0)

        delta = np.abs(pyr_a[0] - pyr_b[0])
        luminance_fail = delta > factor * _tvi(adapt)

        # colour sensitivity drops off in mesopic and scotopic conditions
        color_scale = np.where(adapt < 10.0, color_factor * adapt / 10.0, color_factor) ** 2
        delta_e = ((a_star_a - a_star_b) ** 2 + (b_star_a - b_star_b) ** 2) * color_scale
        color_fail = delta_e > factor

    return int(np.count_nonzero(luminance_fail | color_fail))


def yee_compare(
    a: np.ndarray,
    b: np.ndarray,
    luminance: float = 100.0,
    fov: float = 45.0,
    color_factor: float = 1.0,
) -> int:
    """Count the pixels that fail the Yee perceptual test.

    Args:
        a: Float pixels of shape ``(depth, height, width, nchannels)``.
        b: Float pixels with the same shape as ``a``.
        luminance: White luminance of the display in cd/m^2.
        fov: Horizontal field of view of the observer in degrees.
        color_factor: Weight of the colour test (0 disables it).

    Returns:
        Number of perceptibly different pixels over all depth slices.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        msg = f"Cannot compare images of shape {a.shape} and {b.shape}"
        raise ValueError(msg)

    return sum(
        _yee_slice(a[z], b[z], luminance, fov, color_factor) for z in range(a.shape[0])
    )
