#!/usr/bin/env python3
"""Compare two images and report whether they match.

Compares the pixels of two images (for example a freshly rendered image
against its reference) and prints error statistics followed by one of
PASS, WARNING or FAILURE.

Exit codes:
    0  images match within tolerances
    1  warning thresholds exceeded
    2  failure thresholds exceeded
    3  images differ in size, channel count or deep-data layout
    4  an image could not be read or the difference image could not be written

Usage errors (unknown options, malformed values, a bad -config file) exit
with argparse's status 2 and print no verdict.

Usage:
    python3 scripts/compare_images.py render.png reference.png
    python3 scripts/compare_images.py -fail 0.004 -failpercent 1 render.npy ref.npy
    python3 scripts/compare_images.py -a -v -o diff.png -od -abs -scale 10 mip.tif ref.tif
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

# Add project root to path for local imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from imagediff.diffimage import DiffImageRequest  # noqa: E402
from imagediff.imageio import ImageReadError, ImageWriteError  # noqa: E402
from imagediff.policy import Verdict  # noqa: E402
from imagediff.traversal import ComparisonConfig, compare_files  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the comparison script."""
    parser = argparse.ArgumentParser(
        description="Compare two images.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""
Examples:
  # Exact comparison of the first subimage
  python3 scripts/compare_images.py render.png reference.png

  # Tolerate 1% of pixels differing by more than 0.004, never more than 0.1
  python3 scripts/compare_images.py -fail 0.004 -failpercent 1 -hardfail 0.1 a.pfm b.pfm

  # Compare all subimages and MIP levels, write |A-B|*10 if anything differs
  python3 scripts/compare_images.py -a -o diff.png -od -abs -scale 10 a.tif b.tif
        """,
    )

    parser.add_argument(
        "image_a",
        type=Path,
        help="First image (usually the result under test)",
    )
    parser.add_argument(
        "image_b",
        type=Path,
        help="Second image (usually the reference)",
    )
    parser.add_argument(
        "-v",
        dest="verbose",
        action="store_true",
        default=None,
        help="Verbose status messages",
    )
    parser.add_argument(
        "-a",
        dest="compare_all",
        action="store_true",
        default=None,
        help="Compare all subimages/miplevels",
    )
    parser.add_argument(
        "-config",
        type=Path,
        help="JSON file with default options (flags given here override it)",
    )
    parser.add_argument(
        "-json",
        type=Path,
        help="Save the comparison outcome as JSON",
    )

    thresholds = parser.add_argument_group("Thresholding and comparison options")
    thresholds.add_argument(
        "-fail",
        type=float,
        help="Failure threshold difference (default: 1e-06)",
    )
    thresholds.add_argument(
        "-failpercent",
        dest="fail_percent",
        type=float,
        help="Allow this percentage of failures (default: 0)",
    )
    thresholds.add_argument(
        "-hardfail",
        dest="hard_fail",
        type=float,
        help="Fail if any one pixel exceeds this error (default: infinity)",
    )
    thresholds.add_argument(
        "-warn",
        type=float,
        help="Warning threshold difference (default: 1e-06)",
    )
    thresholds.add_argument(
        "-warnpercent",
        dest="warn_percent",
        type=float,
        help="Allow this percentage of warnings (default: 0)",
    )
    thresholds.add_argument(
        "-hardwarn",
        dest="hard_warn",
        type=float,
        help="Warn if any one pixel exceeds this error (default: infinity)",
    )
    thresholds.add_argument(
        "-p",
        dest="perceptual",
        action="store_true",
        default=None,
        help="Perform perceptual (rather than numeric) comparison",
    )

    diff = parser.add_argument_group("Difference image options")
    diff.add_argument(
        "-o",
        dest="output",
        type=Path,
        help="Output difference image",
    )
    diff.add_argument(
        "-od",
        dest="only_if_different",
        action="store_true",
        default=None,
        help="Output image only if nonzero difference",
    )
    diff.add_argument(
        "-abs",
        dest="absolute",
        action="store_true",
        default=None,
        help="Output image of absolute value, not signed difference",
    )
    diff.add_argument(
        "-scale",
        type=float,
        help="Scale the output image by this factor (default: 1)",
    )

    return parser


def _given(**options: object) -> dict[str, object]:
    return {key: value for key, value in options.items() if value is not None}


def build_config(args: argparse.Namespace) -> ComparisonConfig:
    """Merge command-line options over the optional JSON config file.

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If an option has an invalid value
    """
    base = ComparisonConfig.from_file(args.config) if args.config else ComparisonConfig()

    thresholds = replace(
        base.thresholds,
        **_given(
            fail=args.fail,
            fail_percent=args.fail_percent,
            hard_fail=args.hard_fail,
            warn=args.warn,
            warn_percent=args.warn_percent,
            hard_warn=args.hard_warn,
            perceptual=args.perceptual,
        ),
    )

    diff = base.diff
    if args.output is not None:
        if diff is None:
            diff = DiffImageRequest(path=args.output)
        else:
            diff = replace(diff, path=args.output)
    if diff is not None:
        diff = replace(
            diff,
            **_given(
                only_if_different=args.only_if_different,
                absolute=args.absolute,
                scale=args.scale,
            ),
        )

    return replace(
        base,
        thresholds=thresholds,
        diff=diff,
        **_given(verbose=args.verbose, compare_all=args.compare_all),
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the image comparison script.

    Returns:
        Exit code (see module docstring)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except (FileNotFoundError, ValueError) as e:
        parser.error(str(e))

    try:
        outcome = compare_files(args.image_a, args.image_b, config)
    except ImageReadError as e:
        print(f"ERROR: Could not read image:\n\t{e}", file=sys.stderr)
        return int(Verdict.FILE_ERROR)
    except ImageWriteError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return int(Verdict.FILE_ERROR)

    if args.json is not None:
        outcome.save(args.json)

    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
