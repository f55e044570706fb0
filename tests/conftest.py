"""Shared test fixtures and helpers.

Provides small pixel arrays and image files used across multiple test
modules. Each test module can still define its own specialised fixtures
when needed.
"""

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def create_test_image(
    path: Path,
    size: tuple[int, int] = (16, 16),
    mode: str = "RGB",
    color: tuple[int, ...] | int = (128, 128, 128),
) -> Path:
    """Create a small test image and return its path."""
    img = Image.new(mode, size, color=color)
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)
    return path


# ---------------------------------------------------------------------------
# Pixel fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def zeros_2x2() -> np.ndarray:
    """All-zero 2x2 single-channel image."""
    return np.zeros((2, 2, 1), dtype=np.float32)


@pytest.fixture
def one_hot_2x2() -> np.ndarray:
    """2x2 single-channel image, zero except pixel (0, 0) = 1.0."""
    pixels = np.zeros((2, 2, 1), dtype=np.float32)
    pixels[0, 0, 0] = 1.0
    return pixels


@pytest.fixture
def gradient_rgb() -> np.ndarray:
    """8x8 RGB float gradient with distinct values per channel."""
    ys, xs = np.mgrid[0:8, 0:8].astype(np.float32)
    return np.stack([xs / 7.0, ys / 7.0, (xs + ys) / 14.0], axis=-1)


# ---------------------------------------------------------------------------
# Image file fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def grey_png(tmp_path: Path) -> Path:
    """16x16 mid-grey RGB PNG."""
    return create_test_image(tmp_path / "grey.png")


@pytest.fixture
def grey_png_copy(tmp_path: Path) -> Path:
    """Second, identical 16x16 mid-grey RGB PNG."""
    return create_test_image(tmp_path / "grey_copy.png")


@pytest.fixture
def bright_png(tmp_path: Path) -> Path:
    """16x16 RGB PNG whose red channel is brighter than :func:`grey_png`."""
    return create_test_image(tmp_path / "bright.png", color=(200, 128, 128))


@pytest.fixture
def small_png(tmp_path: Path) -> Path:
    """8x8 RGB PNG, a different size from the other fixtures."""
    return create_test_image(tmp_path / "small.png", size=(8, 8))
