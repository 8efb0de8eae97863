"""Drawing of opaque patterns (crosses) on 3-channel images."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

Color = Sequence[int]

C_R = (255, 0, 0)
C_G = (0, 255, 0)
C_B = (0, 0, 255)
C_K = (0, 0, 0)
C_W = (255, 255, 255)


@dataclass
class Img3:
    """3-channel 8-bit image, ``data`` shaped (h, w, 3)."""

    data: np.ndarray

    def __post_init__(self) -> None:
        self.data = np.ascontiguousarray(self.data, dtype=np.uint8)
        if self.data.ndim != 3 or self.data.shape[2] != 3:
            raise ValueError("Img3 data must have shape (h, w, 3)")

    @property
    def w(self) -> int:
        return int(self.data.shape[1])

    @property
    def h(self) -> int:
        return int(self.data.shape[0])


@dataclass
class Pattern:
    """Single-channel opacity mask, ``data`` shaped (h, w); 255 is fully opaque."""

    data: np.ndarray

    def __post_init__(self) -> None:
        self.data = np.ascontiguousarray(self.data, dtype=np.uint8)
        if self.data.ndim != 2:
            raise ValueError("Pattern data must be 2-D")

    @property
    def w(self) -> int:
        return int(self.data.shape[1])

    @property
    def h(self) -> int:
        return int(self.data.shape[0])

    def draw3(self, img: Img3, xc: float, yc: float, color: Color) -> None:
        """Blend the pattern into ``img`` with its centre at (xc, yc)."""
        xc, yc = int(xc), int(yc)
        xul, yul = xc - self.w // 2, yc - self.h // 2
        xdr, ydr = xul + self.w - 1, yul + self.h - 1
        right, down = img.w, img.h
        if ydr < 0 or xdr < 0 or xul > right - 1 or yul > down - 1:
            return
        oxlow, ixlow = (0, -xul) if xul < 0 else (xul, 0)
        oylow, iylow = (0, -yul) if yul < 0 else (yul, 0)
        # the upper limits are exclusive, so the last pattern row/column is not drawn
        oxhigh = xdr if xdr < right else right
        oyhigh = ydr if ydr < down else down
        if oxhigh <= oxlow or oyhigh <= oylow:
            return
        mask = self.data[iylow:iylow + oyhigh - oylow, ixlow:ixlow + oxhigh - oxlow]
        opaque = (mask.astype(np.float64) / 255.0).astype(np.float32)[..., None]
        colr = np.asarray(color, dtype=np.float32)[:3]
        region = img.data[oylow:oyhigh, oxlow:oxhigh]
        blended = (colr * opaque).astype(np.float64) + region * (1.0 - opaque.astype(np.float64))
        img.data[oylow:oyhigh, oxlow:oxhigh] = blended.astype(np.uint8)


def pattern_cross(h: int, w: int) -> Pattern:
    """Simple cross: one full vertical and one full horizontal line through the centre."""
    data = np.zeros((h, w), dtype=np.uint8)
    data[:, w // 2] = 255
    data[h // 2, :] = 255
    return Pattern(data)


def pattern_xcross(h: int, w: int) -> Pattern:
    """Central point framed by two pairs of lines that stop 3 pixels short of it."""
    data = np.zeros((h, w), dtype=np.uint8)
    hmid, wmid = h // 2, w // 2
    data[hmid, wmid] = 255
    if h < 7 or w < 7:
        return Pattern(data)
    nx, ny = max(wmid - 3, 0), max(hmid - 3, 0)
    for row in (hmid - 3, hmid + 3):
        data[row, :nx] = 255
        data[row, w - nx:] = 255
    for col in (wmid - 3, wmid + 3):
        data[:ny, col] = 255
        data[h - ny:, col] = 255
    return Pattern(data)