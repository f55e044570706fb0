"""Threshold configuration and verdict classification.

A compared level is classified as OK, WARN or FAIL from its error
statistics. Failure is checked first: a level fails when too many pixels
exceed the failure threshold, when any single sample exceeds the hard
failure limit, or (in perceptual mode) when too many pixels fail the
perceptual test. Otherwise it warns under the analogous warning rules.

The verdict of a whole comparison is the most severe level verdict, so
once any level fails no later level can bring the result back to WARN
or OK.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum
from functools import reduce

import numpy as np

from imagediff.metrics import CompareStats

FLT_MAX = float(np.finfo(np.float32).max)


class Verdict(IntEnum):
    """Outcome of a comparison, ordered by severity.

    The value is the process exit code.
    """

    OK = 0
    WARN = 1
    FAIL = 2
    SIZE_MISMATCH = 3
    FILE_ERROR = 4


@dataclass(frozen=True)
class Thresholds:
    """Error tolerances for classifying a compared level.

    Attributes:
        fail: Per-sample error above which a pixel counts as failing.
        fail_percent: Percentage of failing pixels tolerated.
        hard_fail: Any single sample error above this fails the level.
        warn: Per-sample error above which a pixel counts as warning.
        warn_percent: Percentage of warning pixels tolerated.
        hard_warn: Any single sample error above this warns.
        perceptual: Also run the perceptual test and count its failures
            against ``fail_percent``.

    Values are used as given. A percentage of 100 or more tolerates any
    number of pixels; a negative threshold counts every pixel.
    """

    fail: float = 1.0e-6
    fail_percent: float = 0.0
    hard_fail: float = FLT_MAX
    warn: float = 1.0e-6
    warn_percent: float = 0.0
    hard_warn: float = FLT_MAX
    perceptual: bool = False


def classify(
    stats: CompareStats,
    npixels: int,
    thresholds: Thresholds,
    perceptual_failures: int = 0,
) -> Verdict:
    """Classify one compared level.

    Args:
        stats: Error statistics of the level.
        npixels: Number of pixels the percentages refer to (at least 1).
        thresholds: Configured tolerances.
        perceptual_failures: Pixels failing the perceptual test. Ignored
            unless ``thresholds.perceptual`` is set.

    Returns:
        Verdict.FAIL, Verdict.WARN or Verdict.OK.
    """
    fail_limit = thresholds.fail_percent / 100.0 * npixels
    perceptual_fail = thresholds.perceptual and perceptual_failures > fail_limit
    if stats.fail_count > fail_limit or stats.max_error > thresholds.hard_fail or perceptual_fail:
        return Verdict.FAIL

    warn_limit = thresholds.warn_percent / 100.0 * npixels
    if stats.warn_count > warn_limit or stats.max_error > thresholds.hard_warn:
        return Verdict.WARN

    return Verdict.OK


def worst_verdict(verdicts: Iterable[Verdict], initial: Verdict = Verdict.OK) -> Verdict:
    """Fold verdicts into the most severe one."""
    return reduce(max, verdicts, initial)
