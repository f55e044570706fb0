"""Comparison result records.

Holds the per-level results produced while traversing two images and the
overall outcome of a comparison run, which can be saved as JSON for
automated pipelines.
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from imagediff.imageio import ImageShape
from imagediff.metrics import CompareStats
from imagediff.policy import Verdict


@dataclass
class LevelResult:
    """Result of comparing one (subimage, MIP level) pair.

    Attributes:
        subimage: Subimage index.
        miplevel: MIP level index.
        shape: Shape of the first image at this level.
        verdict: Classification of the level.
        stats: Error statistics, or None when the level was not compared.
        perceptual_failures: Pixels failing the perceptual test (0 when
            perceptual mode is off or the level is deep).
        npixels: Pixel count the percentages refer to.
        nsubimages: Larger subimage count of the two images.
        nmiplevels: Larger MIP level count of the two images for this subimage.
        mismatch: Why the level could not be compared, if it was skipped.
        other_shape: Shape of the second image when the sizes differ.
        diff_path: Difference image written for this level, if any.
    """

    subimage: int
    miplevel: int
    shape: ImageShape
    verdict: Verdict
    stats: CompareStats | None = None
    perceptual_failures: int = 0
    npixels: int = 1
    nsubimages: int = 1
    nmiplevels: int = 1
    mismatch: str | None = None
    other_shape: ImageShape | None = None
    diff_path: Path | None = None

    @property
    def warn_count(self) -> int:
        return self.stats.warn_count if self.stats is not None else 0

    @property
    def fail_count(self) -> int:
        return self.stats.fail_count if self.stats is not None else 0


def _json_float(value: float) -> float | str:
    """Keep finite floats, spell out NaN and infinities as strings."""
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return value


@dataclass
class ComparisonOutcome:
    """Overall result of comparing two images."""

    name_a: str
    name_b: str
    verdict: Verdict
    levels: list[LevelResult] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return int(self.verdict)

    def to_dict(self) -> dict[str, Any]:
        """Convert the outcome to a JSON-serializable dictionary."""
        levels = []
        for level in self.levels:
            entry: dict[str, Any] = {
                "subimage": level.subimage,
                "miplevel": level.miplevel,
                "width": level.shape.width,
                "height": level.shape.height,
                "depth": level.shape.depth,
                "channels": list(level.shape.channel_names),
                "verdict": level.verdict.name,
                "npixels": level.npixels,
                "mismatch": level.mismatch,
                "warn_count": level.warn_count,
                "fail_count": level.fail_count,
                "perceptual_failures": level.perceptual_failures,
                "diff_image": str(level.diff_path) if level.diff_path is not None else None,
            }
            if level.stats is not None:
                stats = level.stats
                entry.update(
                    {
                        "mean_error": _json_float(stats.mean_error),
                        "rms_error": _json_float(stats.rms_error),
                        "psnr": _json_float(stats.psnr),
                        "max_error": _json_float(stats.max_error),
                        "max_location": {
                            "x": stats.max_x,
                            "y": stats.max_y,
                            "z": stats.max_z,
                            "channel": level.shape.channel_names[stats.max_c]
                            if stats.max_c < len(level.shape.channel_names)
                            else stats.max_c,
                        },
                    }
                )
            levels.append(entry)

        return {
            "image_a": self.name_a,
            "image_b": self.name_b,
            "verdict": self.verdict.name,
            "exit_code": self.exit_code,
            "notes": self.notes,
            "levels": levels,
        }

    def save(self, path: Path) -> None:
        """Save the outcome to a JSON file.

        Args:
            path: Path where the JSON file will be written
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
