"""Difference image generation.

Builds an image holding the per-sample difference of two compared levels
(``scale * (A - B)``, or ``scale * |A - B|`` in absolute mode) and writes
it once per comparison run: only the first level that triggers a write is
saved, later levels leave the file alone.
"""

from dataclasses import dataclass
from pathlib import Path

import numpy as np

from imagediff.imageio import ImageLevel, front_samples, save_image
from imagediff.metrics import CompareStats


@dataclass(frozen=True)
class DiffImageRequest:
    """Where and how to write the difference image.

    Attributes:
        path: Output file; its suffix selects the format.
        only_if_different: Skip levels whose maximum error is zero.
        absolute: Write absolute rather than signed differences.
        scale: Factor applied to every difference sample.
    """

    path: Path
    only_if_different: bool = False
    absolute: bool = False
    scale: float = 1.0


def difference_image(
    a: np.ndarray,
    b: np.ndarray,
    scale: float = 1.0,
    absolute: bool = False,
) -> np.ndarray:
    """Compute the scaled difference of two equally shaped pixel arrays.

    Pixels are matched by coordinate, so the result at ``[z, y, x, c]`` is
    derived from ``a[z, y, x, c]`` and ``b[z, y, x, c]`` only.

    Args:
        a: Float pixels of shape ``(depth, height, width, nchannels)``.
        b: Float pixels with the same shape as ``a``.
        scale: Factor applied to every output sample.
        absolute: If True, take the absolute value of the difference.

    Returns:
        Float32 array with the shape of ``a``.

    Raises:
        ValueError: If the arrays have different shapes.
    """
    if a.shape != b.shape:
        msg = f"Cannot subtract images of shape {b.shape} from {a.shape}"
        raise ValueError(msg)

    with np.errstate(invalid="ignore", over="ignore"):
        diff = a.astype(np.float32) - b.astype(np.float32)
        if absolute:
            diff = np.abs(diff)
        return (np.float32(scale) * diff).astype(np.float32)


class DiffImageWriter:
    """Writes the difference image for at most one level.

    The writer holds the pending output path; once a file has been written
    the path is cleared and later calls do nothing.
    """

    def __init__(self, request: DiffImageRequest | None) -> None:
        self.request = request
        self._path = request.path if request is not None else None

    @property
    def pending(self) -> bool:
        return self._path is not None

    def maybe_write(self, a: ImageLevel, b: ImageLevel, stats: CompareStats) -> Path | None:
        """Write the difference of ``a`` and ``b`` if a write is still due.

        Args:
            a: First level.
            b: Second level, same shape as ``a``.
            stats: Statistics of the comparison, used for the
                only-if-different check.

        Returns:
            Path of the written file, or None if nothing was written.

        Raises:
            ImageWriteError: If the file cannot be written.
        """
        if self._path is None or self.request is None:
            return None
        if self.request.only_if_different and stats.max_error == 0:
            return None

        pixels = difference_image(
            front_samples(a),
            front_samples(b),
            scale=self.request.scale,
            absolute=self.request.absolute,
        )
        save_image(self._path, pixels, a.channel_names)

        written, self._path = self._path, None
        return written
