"""Grayscale image container and input type enumeration."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

Imtype = np.uint8


class InputType(enum.IntEnum):
    """Kind of input given to the program: a file type, a directory or a camera."""

    WRONG = 0
    DIRECTORY = 1
    BMP = 2
    FITS = 3
    GZIP = 4
    GIF = 5
    JPEG = 6
    PNG = 7
    CAPT_GRASSHOPPER = 8
    CAPT_BASLER = 9


@dataclass
class Image:
    """8-bit grayscale image; ``data[y, x]`` with ``y`` in FITS (bottom-up) order."""

    data: np.ndarray
    minval: int = 0
    maxval: int = 0
    keylist: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.data = np.ascontiguousarray(self.data, dtype=Imtype)
        if self.data.ndim != 2 or self.data.shape[0] < 1 or self.data.shape[1] < 1:
            raise ValueError("image data must be a non-empty 2-D array")

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    def minmax(self) -> Tuple[int, int]:
        """Store the extremal pixel values in ``minval``/``maxval`` and return them."""
        self.minval = int(self.data.min())
        self.maxval = int(self.data.max())
        return self.minval, self.maxval

    def similar(self) -> "Image":
        """Return a new zero-filled image of the same size, with no header keys."""
        return image_new(self.width, self.height)


def image_new(width: int, height: int) -> Image:
    """Create a zero-filled image; raise ValueError for a non-positive size."""
    if width < 1 or height < 1:
        raise ValueError(f"bad image size {width}x{height}")
    return Image(np.zeros((height, width), dtype=Imtype))