"""Reading and writing of FITS images."""

from __future__ import annotations

import gzip
import logging
import os
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from .image import Image

log = logging.getLogger(__name__)

BLOCK = 2880
CARD = 80
GZIP_MAGIC = b"\x1f\x8b"

_DTYPES = {8: ">u1", 16: ">i2", 32: ">i4", 64: ">i8", -32: ">f4", -64: ">f8"}
# records never copied from the key list into a written file
_SKIP_PREFIXES = ("SIMPLE", "EXTEND", "COMMENT", "NAXIS", "BITPIX")
_STRUCTURAL = {"XTENSION", "PCOUNT", "GCOUNT", "BZERO", "BSCALE", "BLANK", "END"}

PathLike = Union[str, "os.PathLike[str]"]


class FitsError(Exception):
    """Raised when a FITS file can't be read or written."""


def _keyword(card: str) -> str:
    return card[:8].strip()


def _raw_value(card: str) -> Optional[str]:
    if card[8:10] != "= ":
        return None
    text = card[10:].strip()
    if text.startswith("'"):
        end = text.find("'", 1)
        return text[1:end] if end > 0 else text[1:]
    return text.split("/", 1)[0].strip()


def _int(header: Dict[str, str], key: str, default: int) -> int:
    value = header.get(key)
    if value is None or value == "":
        return default
    try:
        return int(float(value.replace("D", "E")))
    except ValueError as exc:
        raise FitsError(f"bad value of {key}: {value!r}") from exc


def _float(header: Dict[str, str], key: str, default: float) -> float:
    value = header.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value.replace("D", "E"))
    except ValueError as exc:
        raise FitsError(f"bad value of {key}: {value!r}") from exc


def _naxes(header: Dict[str, str]) -> List[int]:
    naxis = _int(header, "NAXIS", 0)
    return [_int(header, f"NAXIS{i}", 0) for i in range(1, naxis + 1)]


def _data_size(header: Dict[str, str]) -> int:
    naxes = _naxes(header)
    if not naxes:
        return 0
    bitpix = _int(header, "BITPIX", 8)
    pcount = _int(header, "PCOUNT", 0)
    gcount = _int(header, "GCOUNT", 1)
    return abs(bitpix) // 8 * gcount * (pcount + int(np.prod(naxes)))


def _padded(size: int) -> int:
    return -(-size // BLOCK) * BLOCK


def _iter_hdus(raw: bytes) -> Iterator[Tuple[List[str], Dict[str, str], int]]:
    """Yield (cards without END, header values, data offset) for every HDU."""
    pos = 0
    first = True
    while len(raw) - pos >= BLOCK or first:
        cards: List[str] = []
        header: Dict[str, str] = {}
        ended = False
        while not ended:
            if pos + BLOCK > len(raw):
                raise FitsError("truncated FITS header")
            block = raw[pos:pos + BLOCK].decode("ascii", errors="replace")
            pos += BLOCK
            for start in range(0, BLOCK, CARD):
                card = block[start:start + CARD]
                key = _keyword(card)
                if key == "END":
                    ended = True
                    break
                cards.append(card.rstrip())
                value = _raw_value(card)
                if value is not None and key not in header:
                    header[key] = value
        opener = _keyword(cards[0]) if cards else ""
        if first and opener != "SIMPLE":
            raise FitsError("not a FITS file: no SIMPLE keyword")
        if not first and opener != "XTENSION":
            raise FitsError("bad extension header")
        yield cards, header, pos
        pos += _padded(_data_size(header))
        first = False


def _to_image(values: np.ndarray, height: int, width: int) -> np.ndarray:
    """Scale floating values linearly into 0..255."""
    values = values.astype(np.float32)
    undefined = np.isnan(values)
    if undefined.any():
        log.warning("Found %d pixels with undefined value", int(undefined.sum()))
        values = np.where(undefined, np.float32(np.nanmin(values) if (~undefined).any() else 0), values)
    vmin = values.min()
    vmax = values.max()
    if vmax == vmin:
        out = np.zeros(values.shape, dtype=np.uint8)
    else:
        scale = np.float32(255.0 / (float(vmax) - float(vmin)))
        out = (scale * (values - vmin)).astype(np.uint8)
    return out.reshape(height, width)


def read_fits(filename: PathLike) -> Image:
    """Read the primary image of a (possibly gzipped) FITS file.

    Header records of all HDUs go to ``keylist``; pixel values are scaled
    to 0..255.
    """
    try:
        with open(filename, "rb") as f:
            raw = f.read()
    except OSError as exc:
        raise FitsError(f"Can't open {filename}: {exc}") from exc
    if raw.startswith(GZIP_MAGIC):
        try:
            raw = gzip.decompress(raw)
        except (OSError, EOFError) as exc:
            raise FitsError(f"Can't decompress {filename}: {exc}") from exc
    keylist: List[str] = []
    primary: Optional[Tuple[Dict[str, str], int]] = None
    for cards, header, offset in _iter_hdus(raw):
        keylist.extend(cards)
        if primary is None:
            primary = (header, offset)
    if primary is None:
        raise FitsError("Can't read HDU")
    header, offset = primary
    naxes = _naxes(header)
    if len(naxes) > 2:
        raise FitsError("Images with > 2 dimensions are not supported")
    if not naxes or naxes[0] < 1:
        raise FitsError("primary HDU holds no image")
    width = naxes[0]
    height = naxes[1] if len(naxes) > 1 else 1
    if height < 1:
        raise FitsError("primary HDU holds no image")
    bitpix = _int(header, "BITPIX", 0)
    dtype = _DTYPES.get(bitpix)
    if dtype is None:
        raise FitsError(f"unsupported BITPIX {bitpix}")
    count = width * height
    if offset + count * abs(bitpix) // 8 > len(raw):
        raise FitsError("truncated FITS data")
    stored = np.frombuffer(raw, dtype=dtype, count=count, offset=offset)
    values = stored.astype(np.float64)
    if bitpix > 0 and "BLANK" in header:
        blank = stored == _int(header, "BLANK", 0)
        values[blank] = np.nan
    values = values * _float(header, "BSCALE", 1.0) + _float(header, "BZERO", 0.0)
    img = Image(_to_image(values, height, width), keylist=keylist)
    img.minval = 0
    img.maxval = 255
    return img


def _card(key: str, value: str) -> str:
    return ("%-8s= %20s" % (key, value)).ljust(CARD)[:CARD]


def _keep_record(rec: str) -> bool:
    if rec.startswith(_SKIP_PREFIXES):
        return False
    return _keyword(rec) not in _STRUCTURAL


def write_fits(filename: PathLike, image: Image) -> None:
    """Write ``image`` as a 16-bit FITS file; the file must not exist yet."""
    cards = [
        _card("SIMPLE", "T"),
        _card("BITPIX", "16"),
        _card("NAXIS", "2"),
        _card("NAXIS1", str(image.width)),
        _card("NAXIS2", str(image.height)),
        _card("EXTEND", "T"),
    ]
    cards.extend(rec.ljust(CARD)[:CARD] for rec in image.keylist if _keep_record(rec))
    cards.append("COMMENT  modified by loccorr".ljust(CARD))
    cards.append("END".ljust(CARD))
    header = "".join(cards)
    header = header.ljust(_padded(len(header)))
    data = image.data.astype(">i2").tobytes()
    data = data.ljust(_padded(len(data)), b"\0")
    try:
        with open(filename, "xb") as f:
            f.write(header.encode("ascii", errors="replace"))
            f.write(data)
    except OSError as exc:
        raise FitsError(f"Can't create {filename}: {exc}") from exc