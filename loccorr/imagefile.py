"""Image files: type detection, loading, histograms, JPEG output and binarization."""

from __future__ import annotations

import logging
import os
from typing import Union

import numpy as np
from PIL import Image as PILImage

from .config import DEFAULT_THROWPART, Configuration
from .fits import FitsError, read_fits
from .image import Image, Imtype, InputType, image_new

log = logging.getLogger(__name__)

GRASSHOPPER_CAPT_NAME = "grasshopper"
BASLER_CAPT_NAME = "basler"

JPEG_QUALITY = 95
SIGNATURE_LEN = 7

# leading bytes of supported file formats
SIGNATURES = (
    (b"BM", InputType.BMP),
    (b"SIMPLE", InputType.FITS),
    (b"\x1f\x8b\x08", InputType.GZIP),
    (b"GIF8", InputType.GIF),
    (b"\xff\xd8\xff\xdb", InputType.JPEG),
    (b"\xff\xd8\xff\xe0", InputType.JPEG),
    (b"\xff\xd8\xff\xe1", InputType.JPEG),
    (b"\x89PNG", InputType.PNG),
)

PathLike = Union[str, "os.PathLike[str]"]


class ImageError(Exception):
    """Raised when an image can't be read, written or analysed."""


def _imtype(name: PathLike) -> InputType:
    try:
        with open(name, "rb") as f:
            signature = f.read(SIGNATURE_LEN)
    except OSError as exc:
        log.warning("Can't open file %s: %s", name, exc)
        return InputType.WRONG
    if len(signature) != SIGNATURE_LEN:
        log.warning("Can't read file signature of %s", name)
        return InputType.WRONG
    for prefix, kind in SIGNATURES:
        if signature.startswith(prefix):
            return kind
    return InputType.WRONG


def chkinput(name: PathLike) -> InputType:
    """Tell what ``name`` is: a camera name, a directory or an image file type."""
    text = os.fspath(name)
    if text == GRASSHOPPER_CAPT_NAME:
        return InputType.CAPT_GRASSHOPPER
    if text == BASLER_CAPT_NAME:
        return InputType.CAPT_BASLER
    if os.path.isdir(text):
        try:
            with os.scandir(text):
                pass
        except OSError as exc:
            log.warning("Can't open directory %s: %s", text, exc)
            return InputType.WRONG
        return InputType.DIRECTORY
    return _imtype(text)


def u8_to_image(data, width: int, height: int, stride: int) -> Image:
    """Build an Image from 8-bit rows ``stride`` bytes apart, flipping it upside down."""
    if width < 1 or height < 1:
        raise ValueError(f"bad image size {width}x{height}")
    if stride < width:
        raise ValueError(f"stride {stride} is less than width {width}")
    flat = np.asarray(data, dtype=np.uint8).ravel()
    needed = (height - 1) * stride + width
    if flat.size < needed:
        raise ValueError(f"image data too short: {flat.size} < {needed}")
    full = height * stride
    if flat.size < full:
        flat = np.concatenate([flat, np.zeros(full - flat.size, dtype=np.uint8)])
    rows = flat[:full].reshape(height, stride)[:, :width]
    img = Image(rows[::-1].astype(Imtype))
    img.minmax()
    return img


def _load_raster(name: PathLike) -> Image:
    try:
        with PILImage.open(name) as pic:
            gray = pic.convert("L")
    except OSError as exc:
        raise ImageError(f"Error in loading the image {name}: {exc}") from exc
    arr = np.asarray(gray, dtype=np.uint8)
    height, width = arr.shape
    return u8_to_image(arr, width, height, width)


def image_read(name: PathLike) -> Image:
    """Read an image from any supported file type."""
    kind = chkinput(name)
    if kind in (InputType.DIRECTORY, InputType.WRONG):
        raise ImageError(f"Bad file type to read: {name}")
    if kind in (InputType.FITS, InputType.GZIP):
        try:
            return read_fits(name)
        except FitsError as exc:
            raise ImageError(f"Can't read {name}: {exc}") from exc
    return _load_raster(name)


def get_histogram(image: Image) -> np.ndarray:
    """Return the 256-bin histogram of pixel values."""
    return np.bincount(image.data.ravel(), minlength=256).astype(np.int64)


def calc_background(image: Image, conf: Configuration) -> int:
    """Estimate the background level from the histogram.

    Raises ImageError for flat or overilluminated images.
    """
    if image.maxval == image.minval:
        raise ImageError("Zero or overilluminated image!")
    if conf.fixedbkg:
        if conf.fixedbkgval > image.minval:
            raise ImageError("Image values too small")
        return int(conf.fixedbkgval)
    hist = get_histogram(image)
    modeidx = int(np.argmax(hist))
    # second differences are taken in unsigned arithmetic, so a negative
    # difference never counts as flat: a point is flat when 0 <= d2 < 4
    d2 = hist[4:256] + hist[0:252] - 2 * hist[2:254]
    flat = np.ones(256, dtype=bool)
    flat[2:254] = (d2 >= 0) & (d2 < 4)
    modeidx = max(modeidx, 2)
    if modeidx > 253:
        raise ImageError("Overilluminated image")
    for i in range(modeidx, 254):
        if flat[i] and flat[i + 1]:
            return i
    return modeidx


def _channels(gray: np.ndarray, nchannels: int) -> np.ndarray:
    flipped = gray[::-1]
    if nchannels == 3:
        flipped = np.repeat(flipped[..., None], 3, axis=2)
    return np.ascontiguousarray(flipped, dtype=np.uint8)


def _check_channels(nchannels: int) -> None:
    if nchannels not in (1, 3):
        raise ValueError(f"only 1 or 3 channels are supported, got {nchannels}")


def linear(image: Image, nchannels: int) -> np.ndarray:
    """Stretch ``minval..maxval`` to 0..255 and flip upside down.

    Returns an array shaped (h, w) or (h, w, 3).
    """
    _check_channels(nchannels)
    mn = np.float32(image.minval)
    mx = np.float32(image.maxval)
    if mx == mn:
        gray = np.zeros(image.data.shape, dtype=np.uint8)
    else:
        scale = np.float32(255.0 / (float(mx) - float(mn)))
        values = scale * (image.data.astype(np.float32) - mn)
        gray = np.clip(values, 0, 255).astype(np.uint8)
    return _channels(gray, nchannels)


def equalize(image: Image, nchannels: int, throwpart: float) -> np.ndarray:
    """Histogram equalization throwing away ``throwpart`` of darkest pixels; flips upside down."""
    _check_channels(nchannels)
    hist = get_histogram(image)
    total = image.width * image.height
    bpart = int(throwpart * float(total))
    cum = np.cumsum(hist)
    reached = np.nonzero(cum >= bpart)[0]
    if reached.size:
        startidx = int(reached[0])
        nblack = int(cum[startidx])
    else:
        startidx = 256
        nblack = int(cum[-1])
    startidx += 1
    part = (total + 1.0 - nblack) / 256.0
    levels = np.zeros(256, dtype=np.uint8)
    if startidx < 256:
        running = np.cumsum(hist[startidx:]).astype(np.float64)
        levels[startidx:] = (running / part).astype(np.uint8)
    return _channels(levels[image.data], nchannels)


def image_write_jpg(image: Image, name: PathLike, eq: bool,
                    throwpart: float = DEFAULT_THROWPART) -> None:
    """Save ``image`` as a grayscale JPEG, linear or equalized, replacing ``name`` atomically."""
    pixels = equalize(image, 1, throwpart) if eq else linear(image, 1)
    target = os.fspath(name)
    tmpname = target + "-tmp"
    try:
        PILImage.fromarray(pixels, mode="L").save(tmpname, format="JPEG", quality=JPEG_QUALITY)
        os.replace(tmpname, target)
    except OSError as exc:
        raise ImageError(f"Can't save {target}: {exc}") from exc


def _unpack(binary, width: int, height: int) -> np.ndarray:
    if width < 1 or height < 1:
        raise ValueError(f"bad image size {width}x{height}")
    stride = (width + 7) // 8
    packed = np.asarray(binary, dtype=np.uint8).reshape(height, stride)
    return np.unpackbits(packed, axis=1)[:, :width]


def bin_to_image(binary, width: int, height: int) -> Image:
    """Expand a packed binary image (8 pixels per byte, MSB first) into 0/1 pixels."""
    img = Image(_unpack(binary, width, height))
    img.minval = 0
    img.maxval = 1
    return img


def image_to_bin(image: Image, bk: int) -> np.ndarray:
    """Pack pixels brighter than ``bk`` into bits; returns shape (h, (w + 7) // 8)."""
    if image.width < 2 or image.height < 2:
        raise ValueError("image too small to binarize")
    return np.packbits(image.data > bk, axis=1)


def bin_to_labels(binary, width: int, height: int) -> np.ndarray:
    """Expand a packed binary image into an (h, w) integer array of 0 and 1."""
    return _unpack(binary, width, height).astype(np.int64)