"""Tests for threshold configuration and verdict classification."""

import pytest

from imagediff.metrics import CompareStats
from imagediff.policy import FLT_MAX, Thresholds, Verdict, classify, worst_verdict


def make_stats(
    max_error: float = 0.0,
    warn_count: int = 0,
    fail_count: int = 0,
) -> CompareStats:
    """CompareStats with only the fields classification looks at set."""
    return CompareStats(
        mean_error=0.0,
        rms_error=0.0,
        psnr=float("inf"),
        max_error=max_error,
        max_x=0,
        max_y=0,
        max_z=0,
        max_c=0,
        warn_count=warn_count,
        fail_count=fail_count,
    )


class TestThresholds:
    """Tests for the Thresholds dataclass."""

    def test_defaults(self) -> None:
        thresholds = Thresholds()
        assert thresholds.fail == 1e-6
        assert thresholds.warn == 1e-6
        assert thresholds.fail_percent == 0.0
        assert thresholds.hard_fail == FLT_MAX
        assert thresholds.hard_warn == FLT_MAX
        assert not thresholds.perceptual

    def test_out_of_range_values_kept(self) -> None:
        thresholds = Thresholds(fail=-0.1, fail_percent=150.0)
        assert thresholds.fail == -0.1
        assert thresholds.fail_percent == 150.0


class TestClassify:
    """Tests for classify."""

    def test_no_errors_is_ok(self) -> None:
        assert classify(make_stats(), 4, Thresholds()) == Verdict.OK

    def test_single_failing_pixel_with_zero_percent(self) -> None:
        stats = make_stats(max_error=1.0, warn_count=1, fail_count=1)
        assert classify(stats, 4, Thresholds(fail=0.5)) == Verdict.FAIL

    def test_failures_within_percentage_warn(self) -> None:
        stats = make_stats(max_error=1.0, warn_count=1, fail_count=1)
        thresholds = Thresholds(fail=0.5, fail_percent=25.0)
        # 1 failing pixel is not more than 25% of 4
        assert classify(stats, 4, thresholds) == Verdict.WARN

    def test_percentage_above_hundred_tolerates_everything(self) -> None:
        stats = make_stats(max_error=0.5, warn_count=4, fail_count=4)
        thresholds = Thresholds(fail_percent=150.0, warn_percent=150.0)
        assert classify(stats, 4, thresholds) == Verdict.OK

    def test_failures_and_warnings_within_percentage_ok(self) -> None:
        stats = make_stats(max_error=1.0, warn_count=1, fail_count=1)
        thresholds = Thresholds(fail=0.5, fail_percent=25.0, warn_percent=25.0)
        assert classify(stats, 4, thresholds) == Verdict.OK

    def test_hard_fail_beats_percentage(self) -> None:
        stats = make_stats(max_error=0.3, warn_count=1, fail_count=1)
        thresholds = Thresholds(fail_percent=100.0, warn_percent=100.0, hard_fail=0.2)
        assert classify(stats, 4, thresholds) == Verdict.FAIL

    def test_hard_warn(self) -> None:
        stats = make_stats(max_error=0.3, warn_count=1, fail_count=1)
        thresholds = Thresholds(fail_percent=100.0, warn_percent=100.0, hard_warn=0.2)
        assert classify(stats, 4, thresholds) == Verdict.WARN

    def test_max_error_equal_to_hard_limit_passes(self) -> None:
        stats = make_stats(max_error=0.2)
        assert classify(stats, 4, Thresholds(hard_fail=0.2, hard_warn=0.2)) == Verdict.OK

    def test_infinite_error_breaks_default_hard_fail(self) -> None:
        stats = make_stats(max_error=float("inf"), warn_count=1, fail_count=1)
        thresholds = Thresholds(fail_percent=100.0, warn_percent=100.0)
        assert classify(stats, 4, thresholds) == Verdict.FAIL

    def test_fail_percent_monotonic(self) -> None:
        stats = make_stats(max_error=0.5, warn_count=10, fail_count=10)
        verdicts = [
            classify(stats, 100, Thresholds(fail_percent=percent, warn_percent=5.0))
            for percent in (0.0, 5.0, 9.99, 10.0, 50.0, 100.0)
        ]
        assert verdicts == sorted(verdicts, reverse=True)
        assert verdicts[0] == Verdict.FAIL
        assert verdicts[-1] == Verdict.WARN

    def test_perceptual_failures_count_when_enabled(self) -> None:
        thresholds = Thresholds(perceptual=True, fail_percent=10.0)
        assert classify(make_stats(), 100, thresholds, perceptual_failures=11) == Verdict.FAIL
        assert classify(make_stats(), 100, thresholds, perceptual_failures=10) == Verdict.OK

    def test_perceptual_failures_ignored_when_disabled(self) -> None:
        assert classify(make_stats(), 100, Thresholds(), perceptual_failures=50) == Verdict.OK


class TestWorstVerdict:
    """Tests for folding level verdicts."""

    def test_empty_is_ok(self) -> None:
        assert worst_verdict([]) == Verdict.OK

    def test_fail_is_sticky(self) -> None:
        verdicts = [Verdict.OK, Verdict.FAIL, Verdict.WARN, Verdict.OK]
        assert worst_verdict(verdicts) == Verdict.FAIL

    def test_warn_after_ok(self) -> None:
        assert worst_verdict([Verdict.OK, Verdict.WARN]) == Verdict.WARN

    def test_size_mismatch_most_severe_level_outcome(self) -> None:
        assert worst_verdict([Verdict.FAIL, Verdict.SIZE_MISMATCH]) == Verdict.SIZE_MISMATCH

    def test_exit_codes(self) -> None:
        assert [int(v) for v in Verdict] == [0, 1, 2, 3, 4]
