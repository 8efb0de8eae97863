"""Star detection on frames, centroid averaging and annotated JPEG output."""

from __future__ import annotations

import functools
import logging
import math
import os
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, TextIO, Tuple, Union

import numpy as np
from PIL import Image as PILImage

from .binmorph import ConnComps, cclabel4, dilation_n, erosion_n
from .config import MESSAGEID, Configuration
from .draw import C_B, C_G, C_R, Img3, Pattern, pattern_xcross
from .image import Image
from .imagefile import (
    JPEG_QUALITY,
    ImageError,
    calc_background,
    equalize,
    image_to_bin,
    image_write_jpg,
    linear,
)

log = logging.getLogger(__name__)

# if sigma of averaged X or Y is greater, the average is considered wrong
XY_TOLERANCE = 5.0
PUSIROBO_POSTPROC = "pusirobo"

Corrector = Callable[[float, float], None]
PathLike = Union[str, "os.PathLike[str]"]


@dataclass
class StarObject:
    """Measured parameters of one detected object."""

    area: int
    isum: float
    wdivh: float
    xc: float
    yc: float
    xsigma: float
    ysigma: float


def _ratio(num: float, den: float) -> float:
    if den:
        return num / den
    if num:
        return math.inf
    return math.nan


def _label(image: Image, conf: Configuration) -> Tuple[int, ConnComps]:
    """Binarize, erode, dilate and label the image; return (background, components)."""
    bk = calc_background(image, conf)
    try:
        binary = image_to_bin(image, bk)
        width, height = image.width, image.height
        eroded = erosion_n(binary, width, height, conf.nerosions)
        opened = dilation_n(eroded, width, height, conf.ndilations)
        comps = cclabel4(opened, width, height)
    except ValueError as exc:
        raise ImageError(str(exc)) from exc
    return bk, comps


def _measure(image: Image, comps: ConnComps, bk: int, conf: Configuration) -> List[StarObject]:
    data = image.data.astype(np.float64)
    objects: List[StarObject] = []
    for label, box in enumerate(comps.boxes, start=1):
        wh = _ratio(float(box.xmax - box.xmin), float(box.ymax - box.ymin))
        if wh < conf.minwh or wh > conf.maxwh:
            continue
        if box.area < conf.minarea or box.area > conf.maxarea:
            continue
        ys = slice(box.ymin, box.ymax + 1)
        xs = slice(box.xmin, box.xmax + 1)
        intens = data[ys, xs] - bk
        mask = (comps.labels[ys, xs] == label) & (intens >= 0)
        weights = np.where(mask, intens, 0.0)
        yy, xx = np.mgrid[ys, xs]
        isum = float(weights.sum())
        with np.errstate(divide="ignore", invalid="ignore"):
            xc = np.float64((weights * xx).sum()) / isum
            yc = np.float64((weights * yy).sum()) / isum
            x2c = np.float64((weights * xx * xx).sum()) / isum - xc * xc
            y2c = np.float64((weights * yy * yy).sum()) / isum - yc * yc
            xsigma = np.sqrt(x2c)
            ysigma = np.sqrt(y2c)
        objects.append(StarObject(
            area=int(box.area), isum=isum, wdivh=wh, xc=float(xc), yc=float(yc),
            xsigma=float(xsigma), ysigma=float(ysigma),
        ))
    return objects


def find_objects(image: Image, conf: Configuration) -> List[StarObject]:
    """Detect and measure objects passing the area and roundness limits (unsorted).

    Raises ImageError if no background can be found.
    """
    bk, comps = _label(image, conf)
    return _measure(image, comps, bk, conf)


def sort_objects(objects: List[StarObject], conf: Configuration) -> List[StarObject]:
    """Order objects by intensity (``starssort`` set) or by distance from the target."""
    if len(objects) < 2:
        return list(objects)
    if conf.starssort:
        def by_intensity(a: StarObject, b: StarObject) -> int:
            idiff = (a.isum - b.isum) / (a.isum + b.isum)
            if abs(idiff) > conf.intensthres:
                return -1 if idiff > 0 else 1
            r2a = a.xc * a.xc + a.yc * a.yc
            r2b = b.xc * b.xc + b.yc * b.yc
            return -1 if r2a < r2b else 1
        return sorted(objects, key=functools.cmp_to_key(by_intensity))
    xtg = conf.xtarget - conf.xoff
    ytg = conf.ytarget - conf.yoff
    return sorted(objects, key=lambda o: (o.xc - xtg) ** 2 + (o.yc - ytg) ** 2)


class Processor:
    """Processes frames: finds the star, averages its position and saves a JPEG."""

    def __init__(self, conf: Configuration, outputjpg: PathLike,
                 corrector: Optional[Corrector] = None) -> None:
        self.conf = conf
        self.outputjpg = os.fspath(outputjpg)
        self.corrector = corrector
        self.image_count = 0
        self._fps = 0.0
        self._last_tproc: Optional[float] = None
        self._xc = -1.0
        self._yc = -1.0
        self._xy_log: Optional[TextIO] = None
        self._xs: List[float] = []
        self._ys: List[float] = []
        self._cross: Optional[Pattern] = None
        self._cross_large: Optional[Pattern] = None
        self._impath: Optional[str] = None

    def __enter__(self) -> "Processor":
        return self

    def __exit__(self, *exc) -> None:
        self.close_xy_log()

    def open_xy_log(self, name: PathLike) -> None:
        """Start appending XY coordinates to ``name``."""
        self.close_xy_log()
        fobj = open(name, "a")
        fobj.write("# Start at: %s\n" % time.ctime())
        fobj.write("# time Xc\tYc\t\tSx\tSy\tW/H\taverX\taverY\tSX\tSY\n")
        fobj.flush()
        self._xy_log = fobj

    def close_xy_log(self) -> None:
        if self._xy_log is not None:
            self._xy_log.close()
            self._xy_log = None

    def frames_per_second(self) -> float:
        return self._fps

    def center(self) -> Tuple[float, float]:
        """Position of the selected star in target coordinates, (-1, -1) if none."""
        return self._xc, self._yc

    def local_status(self, messageid: str, isdir: bool) -> str:
        """JSON status line for watching a file or a directory."""
        if self._impath is None:
            self._impath = os.path.realpath(self.outputjpg)
        return '{ "%s": "%s", "camstatus": "watch %s", "impath": "%s", "xcenter": %.1f, "ycenter": %.1f }' % (
            MESSAGEID, messageid, "directory" if isdir else "file", self._impath, self._xc, self._yc,
        )

    def _deviation(self, obj: StarObject) -> None:
        self._xs.append(obj.xc)
        self._ys.append(obj.yc)
        fobj = self._xy_log
        if fobj is not None:
            fobj.write("%.2f\t%.1f\t%.1f\t%.1f\t%.1f\t%.1f\t" % (
                time.time(), obj.xc, obj.yc, obj.xsigma, obj.ysigma, obj.wdivh))
        if len(self._xs) >= self.conf.naverage:
            n = len(self._xs)
            xx = sum(self._xs) / n
            yy = sum(self._ys) / n
            vx = sum(x * x for x in self._xs) / n - xx * xx
            vy = sum(y * y for y in self._ys) / n - yy * yy
            sx = math.sqrt(vx) if vx >= 0 else math.nan
            sy = math.sqrt(vy) if vy >= 0 else math.nan
            self._xs.clear()
            self._ys.clear()
            log.debug("Average centroid: X=%.1f (+-%.1f), Y=%.1f (+-%.1f)", xx, sx, yy, sy)
            if fobj is not None:
                fobj.write("%.1f\t%.1f\t%.1f\t%.1f" % (xx, yy, sx, sy))
            if self.corrector is not None:
                if sx > XY_TOLERANCE or sy > XY_TOLERANCE:
                    log.debug("Bad value - not process")
                else:
                    self.corrector(xx, yy)
        if fobj is not None:
            fobj.write("\n")
            fobj.flush()

    def _save_annotated(self, image: Image, objects: List[StarObject]) -> None:
        conf = self.conf
        if conf.equalize:
            pixels = equalize(image, 3, conf.throwpart)
        else:
            pixels = linear(image, 3)
        if self._cross is None:
            self._cross = pattern_xcross(33, 33)
        if self._cross_large is None:
            self._cross_large = pattern_xcross(51, 51)
        img3 = Img3(pixels)
        height = image.height
        self._cross_large.draw3(img3, conf.xtarget - conf.xoff,
                                height - (conf.ytarget - conf.yoff), C_R)
        if objects:
            first = objects[0]
            self._cross.draw3(img3, first.xc, height - first.yc, C_G)
            self._xc = first.xc + conf.xoff
            self._yc = first.yc + conf.yoff
            for obj in objects[1:]:
                self._cross.draw3(img3, obj.xc, height - obj.yc, C_B)
        else:
            self._xc = self._yc = -1.0
        tmpname = self.outputjpg + "-tmp"
        try:
            PILImage.fromarray(img3.data, mode="RGB").save(
                tmpname, format="JPEG", quality=JPEG_QUALITY)
            os.replace(tmpname, self.outputjpg)
        except OSError as exc:
            log.warning("can't save %s: %s", self.outputjpg, exc)

    def _write_plain(self, image: Image) -> None:
        try:
            image_write_jpg(image, self.outputjpg, bool(self.conf.equalize), self.conf.throwpart)
        except ImageError as exc:
            log.warning("%s", exc)

    def process_file(self, image: Optional[Image]) -> List[StarObject]:
        """Process one frame; return the detected objects, the selected one first."""
        if image is None:
            log.warning("No image")
            return []
        objects: List[StarObject] = []
        try:
            bk, comps = _label(image, self.conf)
        except ImageError as exc:
            log.debug("%s", exc)
            self._write_plain(image)
        else:
            if comps.nobj:
                objects = sort_objects(_measure(image, comps, bk, self.conf), self.conf)
                if objects:
                    self._deviation(objects[0])
                self._save_annotated(image, objects)
            else:
                self._xc = self._yc = -1.0
                self._write_plain(image)
        self.image_count += 1
        now = time.time()
        if self._last_tproc is not None and now > self._last_tproc:
            self._fps = 1.0 / (now - self._last_tproc)
        self._last_tproc = now
        return objects