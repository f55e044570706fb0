"""Level traversal and comparison orchestration.

Walks the subimages and MIP levels of two images, checks that each pair
of levels is comparable, runs the pixel comparator, classifies the result
and optionally writes a difference image. The verdict of the run is the
most severe level verdict, adjusted for differing subimage counts.

Without ``compare_all`` only subimage 0, MIP level 0 is compared.
"""

import json
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

from imagediff.diffimage import DiffImageRequest, DiffImageWriter
from imagediff.imageio import ImageHandle, ImageLevel, ImageSource, open_image
from imagediff.metrics import NumpyComparator, PixelComparator
from imagediff.policy import Thresholds, Verdict, classify, worst_verdict
from imagediff.report import ComparisonReport, format_size_mismatch
from imagediff.results import ComparisonOutcome, LevelResult

_THRESHOLD_KEYS = ("fail", "fail_percent", "hard_fail", "warn", "warn_percent", "hard_warn")
_CONFIG_KEYS = {*_THRESHOLD_KEYS, "perceptual", "compare_all", "verbose", "diff_image"}
_DIFF_KEYS = {"path", "only_if_different", "absolute", "scale"}


@dataclass(frozen=True)
class ComparisonConfig:
    """Options for one comparison run.

    Attributes:
        thresholds: Error tolerances used to classify each level.
        compare_all: Compare every subimage and MIP level, not just the first.
        verbose: Report statistics for every level, including passing ones.
        diff: Difference image to write, if any.
    """

    thresholds: Thresholds = field(default_factory=Thresholds)
    compare_all: bool = False
    verbose: bool = False
    diff: DiffImageRequest | None = None

    @classmethod
    def from_file(cls, config_path: Path) -> "ComparisonConfig":
        """Load a comparison configuration from a JSON file.

        Args:
            config_path: Path to the JSON file

        Returns:
            ComparisonConfig instance

        Raises:
            FileNotFoundError: If config file does not exist
            ValueError: If config file has invalid content
        """
        if not config_path.exists():
            msg = f"Comparison config not found: {config_path}"
            raise FileNotFoundError(msg)

        with open(config_path) as f:
            data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComparisonConfig":
        """Create a ComparisonConfig from a dictionary.

        Example::

            {
                "fail": 0.01,
                "fail_percent": 0.5,
                "warn": 0.001,
                "compare_all": true,
                "diff_image": {"path": "diff.png", "absolute": true, "scale": 10}
            }

        Args:
            data: Dictionary of options; every key is optional

        Returns:
            ComparisonConfig instance

        Raises:
            ValueError: If unknown keys or invalid values are present
        """
        unknown = set(data) - _CONFIG_KEYS
        if unknown:
            msg = f"Unknown comparison options: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        thresholds = Thresholds(
            **{key: float(data[key]) for key in _THRESHOLD_KEYS if key in data},
            perceptual=bool(data.get("perceptual", False)),
        )

        diff = None
        diff_data = data.get("diff_image")
        if diff_data is not None:
            if "path" not in diff_data or set(diff_data) - _DIFF_KEYS:
                msg = f"Invalid diff_image options: {diff_data}"
                raise ValueError(msg)
            diff = DiffImageRequest(
                path=Path(diff_data["path"]),
                only_if_different=bool(diff_data.get("only_if_different", False)),
                absolute=bool(diff_data.get("absolute", False)),
                scale=float(diff_data.get("scale", 1.0)),
            )

        return cls(
            thresholds=thresholds,
            compare_all=bool(data.get("compare_all", False)),
            verbose=bool(data.get("verbose", False)),
            diff=diff,
        )


def pixel_count(level: ImageLevel) -> int:
    """Number of pixels percentages refer to; never 0."""
    shape = level.shape
    return max(1, shape.width * shape.height * shape.depth)


def compare_level(
    level_a: ImageLevel,
    level_b: ImageLevel,
    thresholds: Thresholds,
    comparator: PixelComparator,
    diff_writer: DiffImageWriter,
    nsubimages: int = 1,
    nmiplevels: int = 1,
) -> LevelResult:
    """Compare one pair of levels.

    Shape and deep-data mismatches are checked first, in that order; a
    mismatched level is neither compared nor used for the difference image.
    """
    shape_a = level_a.shape
    shape_b = level_b.shape
    base = {
        "subimage": level_a.subimage,
        "miplevel": level_a.miplevel,
        "shape": shape_a,
        "nsubimages": nsubimages,
        "nmiplevels": nmiplevels,
    }

    if not shape_a.same_size(shape_b):
        return LevelResult(
            **base,
            verdict=Verdict.SIZE_MISMATCH,
            mismatch=format_size_mismatch(shape_a, shape_b),
            other_shape=shape_b,
        )
    if level_a.deep != level_b.deep:
        return LevelResult(
            **base,
            verdict=Verdict.SIZE_MISMATCH,
            mismatch="One image contains deep data, the other does not",
        )

    npixels = pixel_count(level_a)
    stats = comparator.compare(level_a, level_b, thresholds.fail, thresholds.warn)

    perceptual_failures = 0
    if thresholds.perceptual and not level_a.deep:
        perceptual_failures = comparator.perceptual_compare(level_a, level_b)

    verdict = classify(stats, npixels, thresholds, perceptual_failures)
    diff_path = diff_writer.maybe_write(level_a, level_b, stats)

    return LevelResult(
        **base,
        verdict=verdict,
        stats=stats,
        perceptual_failures=perceptual_failures,
        npixels=npixels,
        diff_path=diff_path,
    )


def iter_level_results(
    handle_a: ImageHandle,
    handle_b: ImageHandle,
    config: ComparisonConfig,
    comparator: PixelComparator,
    diff_writer: DiffImageWriter,
    note: Callable[[str], None],
) -> Iterator[LevelResult]:
    """Compare the levels of two images one pair at a time.

    Subimages are visited while both images have one; within a subimage,
    MIP levels are visited in order. Differing MIP level counts are noted
    for every subimage, and stop that subimage's traversal after level 0
    with a size-mismatch result. A size or deep-data mismatch also ends
    the traversal of that subimage.

    Raises:
        ImageReadError: If any level cannot be loaded.
    """
    for subimage in range(handle_a.nsubimages):
        if subimage > 0 and not config.compare_all:
            break
        if subimage >= handle_b.nsubimages:
            break

        handle_a.read(subimage, 0)
        handle_b.read(subimage, 0)
        nmip_a = handle_a.nmiplevels
        nmip_b = handle_b.nmiplevels
        if nmip_a != nmip_b:
            note(f"Files do not match in their number of MIP levels ({nmip_a} vs {nmip_b})")

        nsubimages = max(handle_a.nsubimages, handle_b.nsubimages)
        nmiplevels = max(nmip_a, nmip_b)

        for miplevel in range(nmip_a):
            if miplevel > 0 and not config.compare_all:
                break
            if miplevel > 0 and nmip_a != nmip_b:
                yield LevelResult(
                    subimage=subimage,
                    miplevel=miplevel,
                    shape=handle_a.level.shape,
                    verdict=Verdict.SIZE_MISMATCH,
                    nsubimages=nsubimages,
                    nmiplevels=nmiplevels,
                    mismatch=(
                        f"Stopped comparing subimage {subimage} at MIP level {miplevel}: "
                        "the files have different numbers of MIP levels"
                    ),
                )
                break

            level_a = handle_a.read(subimage, miplevel)
            level_b = handle_b.read(subimage, miplevel)
            result = compare_level(
                level_a,
                level_b,
                config.thresholds,
                comparator,
                diff_writer,
                nsubimages=nsubimages,
                nmiplevels=nmiplevels,
            )
            yield result
            if result.mismatch is not None:
                break


def compare_images(
    source_a: ImageSource,
    source_b: ImageSource,
    config: ComparisonConfig | None = None,
    comparator: PixelComparator | None = None,
    stream: TextIO | None = None,
) -> ComparisonOutcome:
    """Compare two images and report the result.

    Args:
        source_a: First image (usually the result under test).
        source_b: Second image (usually the reference).
        config: Comparison options (default: exact comparison of the
            first level).
        comparator: Pixel comparator (default: :class:`NumpyComparator`).
        stream: Where the report is written (default: standard output).

    Returns:
        The outcome of the comparison; its ``exit_code`` is the process
        exit status.

    Raises:
        ImageReadError: If any image level cannot be loaded. No verdict is
            reported in that case.
        ImageWriteError: If the difference image cannot be written.
    """
    config = config if config is not None else ComparisonConfig()
    report = _make_report(config, stream)
    report.start(source_a.name, source_b.name)
    return _run_comparison(report, source_a, source_b, config, comparator)


def compare_files(
    path_a: Path,
    path_b: Path,
    config: ComparisonConfig | None = None,
    comparator: PixelComparator | None = None,
    stream: TextIO | None = None,
) -> ComparisonOutcome:
    """Open two image files and compare them like :func:`compare_images`.

    The ``Comparing`` line is printed before either file is opened, so it
    also precedes an error about an unreadable file.

    Raises:
        ImageReadError: If a file cannot be opened or any level loaded.
        ImageWriteError: If the difference image cannot be written.
    """
    config = config if config is not None else ComparisonConfig()
    report = _make_report(config, stream)
    report.start(str(path_a), str(path_b))
    source_a = open_image(path_a)
    source_b = open_image(path_b)
    return _run_comparison(report, source_a, source_b, config, comparator)


def _make_report(config: ComparisonConfig, stream: TextIO | None) -> ComparisonReport:
    return ComparisonReport(
        stream,
        verbose=config.verbose,
        compare_all=config.compare_all,
        thresholds=config.thresholds,
    )


def _run_comparison(
    report: ComparisonReport,
    source_a: ImageSource,
    source_b: ImageSource,
    config: ComparisonConfig,
    comparator: PixelComparator | None,
) -> ComparisonOutcome:
    if comparator is None:
        comparator = NumpyComparator()

    handle_a = ImageHandle(source_a)
    handle_b = ImageHandle(source_b)
    outcome = ComparisonOutcome(name_a=handle_a.name, name_b=handle_b.name, verdict=Verdict.OK)

    def note(message: str) -> None:
        outcome.notes.append(message)
        report.note(message)

    handle_a.read(0, 0)
    handle_b.read(0, 0)

    diff_writer = DiffImageWriter(config.diff)
    for result in iter_level_results(handle_a, handle_b, config, comparator, diff_writer, note):
        report.level(result)
        outcome.levels.append(result)

    verdict = worst_verdict(result.verdict for result in outcome.levels)

    nsub_a = handle_a.nsubimages
    nsub_b = handle_b.nsubimages
    if config.compare_all and nsub_a != nsub_b:
        note(f"Images had differing numbers of subimages ({nsub_a} vs {nsub_b})")
        verdict = Verdict.FAIL
    if not config.compare_all and (nsub_a > 1 or nsub_b > 1):
        note(f"Only compared the first subimage (of {nsub_a} and {nsub_b}, respectively)")

    outcome.verdict = verdict
    report.finish(verdict)
    return outcome
