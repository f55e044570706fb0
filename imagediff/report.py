"""Human-readable comparison report.

Renders the statistics of each compared level and the final verdict line
(``PASS``, ``WARNING`` or ``FAILURE``). Non-finite numbers are always
printed as ``nan`` and ``inf`` so reports are identical across platforms.
"""

import math
import sys
from typing import TextIO

from imagediff.imageio import ImageShape
from imagediff.policy import Thresholds, Verdict
from imagediff.results import LevelResult


def format_float(value: float) -> str:
    """Format a number like ``%g``, spelling non-finite values ``nan``, ``inf`` or ``-inf``."""
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return f"{value:g}"


def format_percent(count: int, npixels: int) -> str:
    """Percentage of ``count`` in ``npixels`` to 3 significant digits."""
    return f"{100.0 * count / npixels:.3g}"


def format_level_header(
    shape: ImageShape,
    subimage: int,
    miplevel: int,
    nsubimages: int,
    nmiplevels: int,
) -> str:
    """Describe a level, e.g. ``Subimage 1, MIP level 2: 64 x 64, 3 channel``.

    The subimage and MIP level are only named when the image has more than
    one of them.
    """
    parts = []
    if nsubimages > 1:
        parts.append(f"Subimage {subimage}")
    if nmiplevels > 1:
        parts.append(f"MIP level {miplevel}")
    prefix = ", ".join(parts) + ": " if parts else ""

    dims = f"{shape.width} x {shape.height}"
    if shape.depth > 1:
        dims += f" x {shape.depth}"
    return f"{prefix}{dims}, {shape.nchannels} channel"


def format_size_mismatch(a: ImageShape, b: ImageShape) -> str:
    return f"Images do not match in size: ({a.describe()}) versus ({b.describe()})"


def format_stats(result: LevelResult, thresholds: Thresholds) -> list[str]:
    """Render the statistics block of a compared level.

    Args:
        result: A level that went through numeric comparison.
        thresholds: Thresholds the counts refer to.

    Returns:
        Report lines without trailing newlines.
    """
    stats = result.stats
    if stats is None:
        return []

    max_line = f"  Max error  = {format_float(stats.max_error)}"
    if stats.max_error != 0:
        names = result.shape.channel_names
        channel = names[stats.max_c] if stats.max_c < len(names) else str(stats.max_c)
        coords = [str(stats.max_x), str(stats.max_y)]
        if result.shape.depth > 1:
            coords.append(str(stats.max_z))
        coords.append(channel)
        max_line += f" @ ({', '.join(coords)})"

    lines = [
        f"  Mean error = {format_float(stats.mean_error)}",
        f"  RMS error = {format_float(stats.rms_error)}",
        f"  Peak SNR = {format_float(stats.psnr)}",
        max_line,
        f"  {stats.warn_count} pixels ({format_percent(stats.warn_count, result.npixels)}%)"
        f" over {format_float(thresholds.warn)}",
        f"  {stats.fail_count} pixels ({format_percent(stats.fail_count, result.npixels)}%)"
        f" over {format_float(thresholds.fail)}",
    ]
    if thresholds.perceptual:
        percent = format_percent(result.perceptual_failures, result.npixels)
        lines.append(
            f"  {result.perceptual_failures} pixels ({percent}%) failed the perceptual test"
        )
    return lines


def verdict_label(verdict: Verdict) -> str:
    """Final report line for a verdict; mismatches are reported as failures."""
    if verdict == Verdict.OK:
        return "PASS"
    if verdict == Verdict.WARN:
        return "WARNING"
    return "FAILURE"


class ComparisonReport:
    """Writes the comparison report to a text stream as results arrive."""

    def __init__(
        self,
        stream: TextIO | None = None,
        verbose: bool = False,
        compare_all: bool = False,
        thresholds: Thresholds | None = None,
    ) -> None:
        """Initialize the report.

        Args:
            stream: Output stream (default: standard output).
            verbose: Print statistics for every level, not only failing ones.
            compare_all: Whether all subimages and MIP levels are compared;
                if so every statistics block gets a level header.
            thresholds: Thresholds quoted in the statistics block.
        """
        self.stream = stream if stream is not None else sys.stdout
        self.verbose = verbose
        self.compare_all = compare_all
        self.thresholds = thresholds if thresholds is not None else Thresholds()

    def _print(self, line: str) -> None:
        print(line, file=self.stream)

    def start(self, name_a: str, name_b: str) -> None:
        self._print(f'Comparing "{name_a}" and "{name_b}"')

    def note(self, message: str) -> None:
        self._print(message)

    def level(self, result: LevelResult) -> None:
        """Report one level: its mismatch, or its statistics when warranted."""
        header = format_level_header(
            result.shape,
            result.subimage,
            result.miplevel,
            result.nsubimages,
            result.nmiplevels,
        )

        if result.mismatch is not None:
            if result.other_shape is not None:
                self._print(header)
            self._print(result.mismatch)
            return

        if not self.verbose and result.verdict == Verdict.OK:
            return

        if self.compare_all or result.nsubimages > 1 or result.nmiplevels > 1:
            self._print(header)
        for line in format_stats(result, self.thresholds):
            self._print(line)

    def finish(self, verdict: Verdict) -> None:
        self._print(verdict_label(verdict))
