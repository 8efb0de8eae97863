"""Morphological operations and connected-component labelling on packed binary images.

A packed binary image stores 8 pixels per byte, most significant bit first;
each row takes ``(width + 7) // 8`` bytes. Bits past ``width`` in the last
byte of a row are padding and are ignored on input and cleared on output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Tuple

import numpy as np

# minimal image size for morphological operations
MINWIDTH = 9
MINHEIGHT = 3


@dataclass
class Box:
    """Bounding box of a connected component and its pixel count."""

    xmin: int
    xmax: int
    ymin: int
    ymax: int
    area: int = 0


@dataclass
class ConnComps:
    """Result of labelling: ``labels[y, x]`` is 0 or a label; label ``i`` has ``boxes[i - 1]``."""

    labels: np.ndarray
    boxes: List[Box]

    @property
    def nobj(self) -> int:
        """Number of components found."""
        return len(self.boxes)


def _stride(width: int) -> int:
    return (width + 7) // 8


def _packed(image, width: int, height: int) -> np.ndarray:
    if width < 1 or height < 1:
        raise ValueError(f"bad image size {width}x{height}")
    arr = np.asarray(image, dtype=np.uint8)
    expected = height * _stride(width)
    if arr.size != expected:
        raise ValueError(f"packed image must hold {expected} bytes, got {arr.size}")
    return arr.reshape(height, _stride(width))


def _check_size(width: int, height: int) -> None:
    if width < MINWIDTH or height < MINHEIGHT:
        raise ValueError(
            f"image {width}x{height} is smaller than {MINWIDTH}x{MINHEIGHT}"
        )


def _bits(image, width: int, height: int) -> np.ndarray:
    packed = _packed(image, width, height)
    return np.unpackbits(packed, axis=1)[:, :width].astype(bool)


def _pack(bits: np.ndarray) -> np.ndarray:
    return np.packbits(bits, axis=1)


def _neighbour(bits: np.ndarray, dy: int, dx: int) -> np.ndarray:
    """Return ``b`` with ``b[y, x] = bits[y + dy, x + dx]``, zero outside the image."""
    h, w = bits.shape
    out = np.zeros_like(bits)
    dst_y = slice(max(0, -dy), min(h, h - dy))
    src_y = slice(max(0, dy), min(h, h + dy))
    dst_x = slice(max(0, -dx), min(w, w - dx))
    src_x = slice(max(0, dx), min(w, w + dx))
    out[dst_y, dst_x] = bits[src_y, src_x]
    return out


_CROSS = ((0, -1), (0, 1), (-1, 0), (1, 0))
_SQUARE = _CROSS + ((-1, -1), (-1, 1), (1, -1), (1, 1))


def _any_of(bits: np.ndarray, offsets) -> np.ndarray:
    result = np.zeros_like(bits)
    for dy, dx in offsets:
        result |= _neighbour(bits, dy, dx)
    return result


def filter4(image, width: int, height: int) -> np.ndarray:
    """Clear every pixel that has no 4-connected neighbour."""
    _check_size(width, height)
    bits = _bits(image, width, height)
    return _pack(bits & _any_of(bits, _CROSS))


def filter8(image, width: int, height: int) -> np.ndarray:
    """Clear every single pixel (one with no 8-connected neighbour)."""
    _check_size(width, height)
    bits = _bits(image, width, height)
    return _pack(bits & _any_of(bits, _SQUARE))


def dilation(image, width: int, height: int) -> np.ndarray:
    """Dilate by a 3x3 cross."""
    _check_size(width, height)
    bits = _bits(image, width, height)
    return _pack(bits | _any_of(bits, _CROSS))


def erosion(image, width: int, height: int) -> np.ndarray:
    """Erode by a 3x3 cross; pixels on the image border are always cleared."""
    _check_size(width, height)
    bits = _bits(image, width, height)
    result = bits.copy()
    for dy, dx in _CROSS:
        result &= _neighbour(bits, dy, dx)
    return _pack(result)


def _repeat(op: Callable[[np.ndarray, int, int], np.ndarray],
            image, width: int, height: int, n: int) -> np.ndarray:
    packed = _packed(image, width, height)
    if width < MINWIDTH or height < MINHEIGHT or n < 1:
        return packed.copy()
    for _ in range(n):
        packed = op(packed, width, height)
    return packed


def erosion_n(image, width: int, height: int, n: int) -> np.ndarray:
    """Erode ``n`` times; a too small image or ``n < 1`` gives an unchanged copy."""
    return _repeat(erosion, image, width, height, n)


def dilation_n(image, width: int, height: int, n: int) -> np.ndarray:
    """Dilate ``n`` times; a too small image or ``n < 1`` gives an unchanged copy."""
    return _repeat(dilation, image, width, height, n)


def _check_n(width: int, height: int, n: int) -> None:
    _check_size(width, height)
    if n < 1:
        raise ValueError(f"number of iterations must be positive, got {n}")


def opening_n(image, width: int, height: int, n: int) -> np.ndarray:
    """``n`` erosions followed by ``n`` dilations."""
    _check_n(width, height, n)
    return dilation_n(erosion_n(image, width, height, n), width, height, n)


def closing_n(image, width: int, height: int, n: int) -> np.ndarray:
    """``n`` dilations followed by ``n`` erosions."""
    _check_n(width, height, n)
    return erosion_n(dilation_n(image, width, height, n), width, height, n)


def top_hat(image, width: int, height: int, n: int) -> np.ndarray:
    """Image minus its opening."""
    opened = opening_n(image, width, height, n)
    return _packed(image, width, height) & ~opened


def bot_hat(image, width: int, height: int, n: int) -> np.ndarray:
    """Closing of the image minus the image."""
    closed = closing_n(image, width, height, n)
    return closed & ~_packed(image, width, height)


def _row_runs(row: np.ndarray) -> List[Tuple[int, int]]:
    padded = np.concatenate(([0], row.astype(np.int8), [0]))
    edges = np.flatnonzero(np.diff(padded))
    return list(zip(edges[0::2].tolist(), edges[1::2].tolist()))


def cclabel4(image, width: int, height: int) -> ConnComps:
    """Label 4-connected components after dropping pixels with no 4-neighbour.

    Labels start at 1 and follow the order in which components first appear
    in a row-by-row scan.
    """
    _check_size(width, height)
    bits = _bits(filter4(image, width, height), width, height)

    parent: List[int] = []

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra < rb:
            parent[rb] = ra
        elif rb < ra:
            parent[ra] = rb

    runs: List[Tuple[int, int, int]] = []
    prev: List[Tuple[int, int, int]] = []
    for y in range(height):
        cur: List[Tuple[int, int, int]] = []
        j = 0
        for start, end in _row_runs(bits[y]):
            rid = len(parent)
            parent.append(rid)
            runs.append((y, start, end))
            while j < len(prev) and prev[j][1] <= start:
                j += 1
            k = j
            while k < len(prev) and prev[k][0] < end:
                union(rid, prev[k][2])
                k += 1
            cur.append((start, end, rid))
        prev = cur

    labels = np.zeros((height, width), dtype=np.int64)
    mapping: dict = {}
    boxes: List[Box] = []
    for rid, (y, start, end) in enumerate(runs):
        root = find(rid)
        label = mapping.get(root)
        if label is None:
            label = len(mapping) + 1
            mapping[root] = label
            boxes.append(Box(xmin=start, xmax=end - 1, ymin=y, ymax=y, area=0))
        labels[y, start:end] = label
        box = boxes[label - 1]
        box.xmin = min(box.xmin, start)
        box.xmax = max(box.xmax, end - 1)
        box.ymin = min(box.ymin, y)
        box.ymax = max(box.ymax, y)
        box.area += end - start
    return ConnComps(labels=labels, boxes=boxes)