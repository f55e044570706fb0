"""Image access module.

This module loads and writes the pixel data compared by the rest of the
package. Every image is exposed as an :class:`ImageSource`: a collection
of subimages, each with one or more MIP levels, decoded on demand into
single-precision float samples.

Supported inputs:
- Anything Pillow can decode. Each frame is a subimage; TIFF frames
  flagged as reduced-resolution are MIP levels of the preceding frame.
- Portable Float Maps (``.pfm``), which keep float samples exactly.
- NumPy arrays (``.npy``), including volumetric ``(d, h, w, c)`` data.

Deep images (variable-length sample lists per pixel) are only available
through :class:`ArrayImageSource`.
"""

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np
from PIL import Image

# NewSubfileType bit marking a reduced-resolution TIFF directory
_TIFF_SUBFILE_TYPE = 254
_REDUCED_RESOLUTION = 0x1

_BAND_NAMES = {"L": "Y", "I": "Y", "F": "Y"}

# Channel counts Pillow can encode as L, LA, RGB and RGBA
_PILLOW_CHANNELS = (1, 2, 3, 4)


class ImageReadError(OSError):
    """Raised when an image (or one of its levels) cannot be decoded."""


class ImageWriteError(OSError):
    """Raised when pixel data cannot be written to the requested file."""


@dataclass(frozen=True)
class ImageShape:
    """Dimensions of one image level.

    Attributes:
        width: Width in pixels.
        height: Height in pixels.
        depth: Number of slices for volumetric data, 1 otherwise.
        nchannels: Number of channels per pixel.
        channel_names: Ordered channel names, one per channel.
    """

    width: int
    height: int
    depth: int
    nchannels: int
    channel_names: tuple[str, ...]

    def same_size(self, other: "ImageShape") -> bool:
        """Check whether two shapes agree on every dimension.

        Channel names and sample types are not compared.
        """
        return (
            self.width == other.width
            and self.height == other.height
            and self.depth == other.depth
            and self.nchannels == other.nchannels
        )

    def describe(self) -> str:
        """Compact ``WxH[xD]xC`` description used in mismatch messages."""
        dims = f"{self.width}x{self.height}"
        if self.depth > 1:
            dims += f"x{self.depth}"
        return f"{dims}x{self.nchannels}"


@dataclass
class ImageLevel:
    """Pixels of one (subimage, MIP level) pair.

    Attributes:
        subimage: Index of the subimage this level belongs to.
        miplevel: MIP level index within the subimage (0 = full resolution).
        pixels: For flat images a float32 array of shape
            ``(depth, height, width, nchannels)``. For deep images an object
            array of shape ``(depth, height, width)`` holding one float32
            ``(nsamples, nchannels)`` array per pixel.
        channel_names: Ordered channel names.
        deep: Whether the pixels carry per-pixel sample lists.
    """

    subimage: int
    miplevel: int
    pixels: np.ndarray
    channel_names: tuple[str, ...]
    deep: bool = False

    @property
    def shape(self) -> ImageShape:
        depth, height, width = self.pixels.shape[:3]
        return ImageShape(
            width=width,
            height=height,
            depth=depth,
            nchannels=len(self.channel_names),
            channel_names=self.channel_names,
        )


class ImageSource(Protocol):
    """Anything that can hand out decoded image levels."""

    name: str

    @property
    def nsubimages(self) -> int: ...

    def nmiplevels(self, subimage: int) -> int: ...

    def read_level(self, subimage: int, miplevel: int) -> ImageLevel: ...


def default_channel_names(nchannels: int) -> tuple[str, ...]:
    """Return conventional channel names for a channel count."""
    if nchannels == 1:
        return ("Y",)
    if nchannels == 2:
        return ("Y", "A")
    if nchannels == 3:
        return ("R", "G", "B")
    if nchannels == 4:
        return ("R", "G", "B", "A")
    return tuple(f"channel{i}" for i in range(nchannels))


def as_float_pixels(array: np.ndarray) -> np.ndarray:
    """Convert an array to float32 ``(depth, height, width, nchannels)`` layout.

    Args:
        array: 2-D ``(h, w)``, 3-D ``(h, w, c)`` or 4-D ``(d, h, w, c)`` array.
            Integer arrays are normalized to [0, 1].

    Returns:
        Float32 array with four dimensions.

    Raises:
        ValueError: If the array has an unsupported number of dimensions.
    """
    array = np.asarray(array)
    if array.ndim == 2:
        array = array[np.newaxis, :, :, np.newaxis]
    elif array.ndim == 3:
        array = array[np.newaxis]
    elif array.ndim != 4:
        msg = f"Expected a 2-D, 3-D or 4-D pixel array, got shape {array.shape}"
        raise ValueError(msg)

    if array.dtype == np.bool_:
        return array.astype(np.float32)
    if array.dtype.kind in "ui":
        scale = float(np.iinfo(array.dtype).max)
        return (array.astype(np.float64) / scale).astype(np.float32)
    return array.astype(np.float32)


def _as_deep_pixels(array: np.ndarray) -> tuple[np.ndarray, int]:
    """Normalize a deep object array and infer its channel count."""
    if not isinstance(array, np.ndarray) or array.dtype != object:
        msg = "Deep pixels must be an object array holding one sample array per pixel"
        raise ValueError(msg)
    if array.ndim == 2:
        array = array[np.newaxis]
    if array.ndim != 3:
        msg = f"Expected a 2-D or 3-D object array of sample lists, got shape {array.shape}"
        raise ValueError(msg)

    nchannels = 0
    deep = np.empty(array.shape, dtype=object)
    for index, samples in np.ndenumerate(array):
        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)
        if samples.size:
            nchannels = samples.shape[1]
        deep[index] = samples

    for index, samples in np.ndenumerate(deep):
        if samples.size == 0:
            deep[index] = np.zeros((0, nchannels), dtype=np.float32)
        elif samples.shape[1] != nchannels:
            msg = "All deep samples must have the same number of channels"
            raise ValueError(msg)
    return deep, nchannels


def front_samples(level: ImageLevel) -> np.ndarray:
    """Return the flat pixels of a level, using the first sample of deep pixels.

    Pixels without samples read as zero.
    """
    if not level.deep:
        return level.pixels

    nchannels = len(level.channel_names)
    flat = np.zeros((*level.pixels.shape, nchannels), dtype=np.float32)
    for index, samples in np.ndenumerate(level.pixels):
        if len(samples):
            flat[index] = samples[0]
    return flat


class ArrayImageSource:
    """Image source backed by in-memory arrays.

    ``subimages`` is a list of subimages, each a list of MIP levels.
    """

    def __init__(
        self,
        subimages: list[list[np.ndarray]],
        channel_names: tuple[str, ...] | None = None,
        name: str = "<memory>",
        deep: bool = False,
    ) -> None:
        """Initialize the source.

        Args:
            subimages: Pixel arrays indexed as ``subimages[s][m]``.
            channel_names: Channel names shared by all levels. Defaults to
                :func:`default_channel_names` for the channel count.
            name: Display name used in reports and error messages.
            deep: If True, each array is an object array of per-pixel
                ``(nsamples, nchannels)`` sample lists.
        """
        if not subimages or any(not levels for levels in subimages):
            msg = "An image needs at least one subimage with at least one level"
            raise ValueError(msg)

        self.name = name
        self.deep = deep
        self._levels: list[list[np.ndarray]] = []
        nchannels = 0
        for levels in subimages:
            converted = []
            for array in levels:
                if deep:
                    pixels, nchannels = _as_deep_pixels(array)
                else:
                    pixels = as_float_pixels(array)
                    nchannels = pixels.shape[3]
                converted.append(pixels)
            self._levels.append(converted)

        if channel_names is None:
            channel_names = default_channel_names(nchannels)
        self.channel_names = tuple(channel_names)

    @property
    def nsubimages(self) -> int:
        return len(self._levels)

    def nmiplevels(self, subimage: int) -> int:
        if not 0 <= subimage < len(self._levels):
            return 0
        return len(self._levels[subimage])

    def read_level(self, subimage: int, miplevel: int) -> ImageLevel:
        if not 0 <= miplevel < self.nmiplevels(subimage):
            msg = f"{self.name} has no subimage {subimage}, MIP level {miplevel}"
            raise ImageReadError(msg)

        pixels = self._levels[subimage][miplevel]
        names = self.channel_names
        if not self.deep and len(names) != pixels.shape[3]:
            names = default_channel_names(pixels.shape[3])
        return ImageLevel(
            subimage=subimage,
            miplevel=miplevel,
            pixels=pixels,
            channel_names=names,
            deep=self.deep,
        )


class PillowImageSource:
    """Image source decoding frames with Pillow on demand."""

    def __init__(self, path: Path) -> None:
        """Scan the frames of an image file.

        Args:
            path: Path to any image file Pillow can open.

        Raises:
            ImageReadError: If the file cannot be opened.
        """
        self.path = path
        self.name = str(path)
        # frame indices per subimage, one entry per MIP level
        self._frames: list[list[int]] = []

        try:
            with Image.open(path) as img:
                for frame in range(getattr(img, "n_frames", 1)):
                    img.seek(frame)
                    if self._frames and _is_reduced_resolution(img):
                        self._frames[-1].append(frame)
                    else:
                        self._frames.append([frame])
        except (OSError, ValueError) as e:
            msg = f"Could not open {path}: {e}"
            raise ImageReadError(msg) from e

    @property
    def nsubimages(self) -> int:
        return len(self._frames)

    def nmiplevels(self, subimage: int) -> int:
        if not 0 <= subimage < len(self._frames):
            return 0
        return len(self._frames[subimage])

    def read_level(self, subimage: int, miplevel: int) -> ImageLevel:
        if not 0 <= miplevel < self.nmiplevels(subimage):
            msg = f"{self.name} has no subimage {subimage}, MIP level {miplevel}"
            raise ImageReadError(msg)

        try:
            with Image.open(self.path) as img:
                img.seek(self._frames[subimage][miplevel])
                frame = _normalize_mode(img)
                names = tuple(_BAND_NAMES.get(band, band) for band in frame.getbands())
                pixels = as_float_pixels(np.asarray(frame))
        except (OSError, ValueError) as e:
            msg = f"Could not decode {self.path}: {e}"
            raise ImageReadError(msg) from e

        return ImageLevel(
            subimage=subimage,
            miplevel=miplevel,
            pixels=pixels,
            channel_names=names,
        )


def _is_reduced_resolution(img: Image.Image) -> bool:
    tags = getattr(img, "tag_v2", None)
    if tags is None:
        return False
    return bool(int(tags.get(_TIFF_SUBFILE_TYPE, 0)) & _REDUCED_RESOLUTION)


def _normalize_mode(img: Image.Image) -> Image.Image:
    """Convert modes numpy cannot represent directly into plain channel modes."""
    if img.mode == "P":
        return img.convert("RGBA" if "transparency" in img.info else "RGB")
    if img.mode == "PA":
        return img.convert("RGBA")
    if img.mode == "1":
        return img.convert("L")
    if img.mode in ("YCbCr", "LAB", "HSV"):
        return img.convert("RGB")
    return img


class ImageHandle:
    """Holds the currently loaded level of one image source.

    Reading the level that is already held is a no-op, so callers can
    request the level they need before every use.
    """

    def __init__(self, source: ImageSource) -> None:
        self.source = source
        self.level: ImageLevel | None = None
        self.last_error: str | None = None

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def nsubimages(self) -> int:
        return self.source.nsubimages

    @property
    def nmiplevels(self) -> int:
        """MIP level count of the subimage currently held (subimage 0 if none)."""
        subimage = self.level.subimage if self.level is not None else 0
        return self.source.nmiplevels(subimage)

    def read(self, subimage: int = 0, miplevel: int = 0) -> ImageLevel:
        """Make ``(subimage, miplevel)`` the held level and return it.

        Raises:
            ImageReadError: If the level cannot be loaded.
        """
        if (
            self.level is not None
            and self.level.subimage == subimage
            and self.level.miplevel == miplevel
        ):
            return self.level

        try:
            level = self.source.read_level(subimage, miplevel)
        except ImageReadError as e:
            self.last_error = str(e)
            raise

        if (level.subimage, level.miplevel) != (subimage, miplevel):
            msg = (
                f"{self.name}: requested subimage {subimage}, MIP level {miplevel} "
                f"but got subimage {level.subimage}, MIP level {level.miplevel}"
            )
            self.last_error = msg
            raise ImageReadError(msg)

        self.level = level
        return level


def read_pfm(pfm_path: Path) -> np.ndarray:
    """Read a PFM (Portable Float Map) file into a float32 array.

    Handles both grayscale (``Pf``) and colour (``PF``) PFM files.

    PFM stores rows bottom-to-top; this function flips the result to the
    conventional top-to-bottom orientation used everywhere else.

    Args:
        pfm_path: Path to the ``.pfm`` file.

    Returns:
        Array of shape ``(H, W, C)`` with C = 1 or 3.

    Raises:
        ValueError: If the file is not a valid PFM.
    """
    with open(pfm_path, "rb") as fh:
        magic = fh.readline().strip()
        if magic == b"PF":
            channels = 3
        elif magic == b"Pf":
            channels = 1
        else:
            msg = f"Not a PFM file: unexpected magic {magic!r}"
            raise ValueError(msg)

        dim_line = fh.readline().strip().decode("ascii")
        width, height = (int(x) for x in dim_line.split())

        scale_line = fh.readline().strip().decode("ascii")
        little_endian = float(scale_line) < 0

        n_floats = width * height * channels
        raw = fh.read(n_floats * 4)

    if len(raw) != n_floats * 4:
        msg = f"Truncated PFM file: expected {n_floats * 4} bytes, got {len(raw)}"
        raise ValueError(msg)

    endian = "<" if little_endian else ">"
    data = np.array(struct.unpack(f"{endian}{n_floats}f", raw), dtype=np.float32)
    data = data.reshape((height, width, channels))

    # PFM rows are stored bottom-to-top; flip to standard orientation
    return np.flipud(data)


def write_pfm(path: Path, data: np.ndarray) -> None:
    """Write a little-endian PFM file.

    Args:
        path: Output path.
        data: Array of shape ``(H, W)``, ``(H, W, 1)`` or ``(H, W, 3)``.

    Raises:
        ValueError: If the channel count is not 1 or 3.
    """
    if data.ndim == 2:
        data = data[:, :, np.newaxis]
    height, width, channels = data.shape
    if channels not in (1, 3):
        msg = f"PFM supports 1 or 3 channels, got {channels}"
        raise ValueError(msg)

    magic = b"PF\n" if channels == 3 else b"Pf\n"
    with open(path, "wb") as fh:
        fh.write(magic)
        fh.write(f"{width} {height}\n".encode())
        fh.write(b"-1.0\n")  # negative = little-endian
        fh.write(np.flipud(data).astype("<f4").tobytes())


def open_image(path: Path) -> ImageSource:
    """Open an image file as an :class:`ImageSource`.

    Raises:
        ImageReadError: If the file does not exist or cannot be decoded.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in (".pfm", ".npy"):
        return PillowImageSource(path)

    try:
        array = read_pfm(path) if suffix == ".pfm" else np.load(path, allow_pickle=False)
        return ArrayImageSource([[array]], name=str(path))
    except (OSError, ValueError) as e:
        msg = f"Could not open {path}: {e}"
        raise ImageReadError(msg) from e


def save_image(path: Path, pixels: np.ndarray, channel_names: tuple[str, ...]) -> None:
    """Write float pixels to ``path``, choosing the encoding from the suffix.

    ``.npy`` and ``.pfm`` keep float samples; single-channel TIFF is written
    as 32-bit float; any other format is written by Pillow at 8 bits per
    sample with values clamped to [0, 1].

    Args:
        path: Output path.
        pixels: Float array of shape ``(depth, height, width, nchannels)``.
        channel_names: Channel names, used in error messages.

    Raises:
        ImageWriteError: If the data cannot be represented or written.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    depth, _, _, nchannels = pixels.shape

    try:
        if suffix == ".npy":
            np.save(path, pixels[0] if depth == 1 else pixels)
            return

        if depth != 1:
            msg = f"Cannot write volumetric data (depth {depth}) to {path}"
            raise ImageWriteError(msg)

        if suffix == ".pfm":
            write_pfm(path, pixels[0])
        elif suffix in (".tif", ".tiff") and nchannels == 1:
            Image.fromarray(np.ascontiguousarray(pixels[0, :, :, 0], dtype=np.float32)).save(path)
        else:
            if nchannels not in _PILLOW_CHANNELS:
                msg = f"Cannot write {nchannels} channels ({', '.join(channel_names)}) to {path}"
                raise ImageWriteError(msg)
            clamped = np.clip(np.nan_to_num(pixels[0], nan=0.0), 0.0, 1.0)
            quantized = np.round(clamped * 255.0).astype(np.uint8)
            if nchannels == 1:
                quantized = quantized[:, :, 0]
            Image.fromarray(np.ascontiguousarray(quantized)).save(path)
    except ImageWriteError:
        raise
    except (OSError, ValueError, KeyError) as e:
        msg = f"Could not write {path}: {e}"
        raise ImageWriteError(msg) from e
