"""Frame capture loop: camera control, automatic exposure and status reports."""

from __future__ import annotations

import abc
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .config import EXPAUTO, MESSAGEID, Configuration
from .image import Image
from .imagefile import get_histogram

log = logging.getLogger(__name__)

FLT_EPSILON = 1.1920929e-07
DEFAULT_EXPTIME = 100.0

ImageProcessor = Callable[[Image], object]
MedianFilter = Callable[[Image, int], Optional[Image]]


@dataclass
class FrameFormat:
    """Geometry of a single frame: size and offset on the sensor."""

    w: int = 0
    h: int = 0
    xoff: int = 0
    yoff: int = 0


class Camera(abc.ABC):
    """Interface every camera driver implements."""

    @abc.abstractmethod
    def connect(self) -> bool:
        """Connect and initialize; return False on failure."""

    @abc.abstractmethod
    def disconnect(self) -> None:
        """Disconnect and clean up."""

    @abc.abstractmethod
    def capture(self) -> Optional[Image]:
        """Grab one frame; None on failure."""

    @abc.abstractmethod
    def set_brightness(self, value: float) -> bool:
        """Set brightness; return False on failure."""

    @abc.abstractmethod
    def set_exp(self, value: float) -> bool:
        """Set exposition time in milliseconds; return False on failure."""

    @abc.abstractmethod
    def set_gain(self, value: float) -> bool:
        """Set gain; return False on failure."""

    @abc.abstractmethod
    def max_gain(self) -> float:
        """Return the maximal available gain."""

    @abc.abstractmethod
    def set_geometry(self, fmt: FrameFormat) -> Optional[FrameFormat]:
        """Apply a frame format; return the format really used, None on failure."""

    @abc.abstractmethod
    def geometry_limits(self) -> Optional[Tuple[FrameFormat, FrameFormat]]:
        """Return (maximal values, steps) of the frame geometry, None if unknown."""


def _align(value: int, step: int) -> int:
    """Drop the remainder of ``value`` modulo ``step`` (truncating towards zero)."""
    return int(value - math.fmod(value, step))


class CameraCapture:
    """Drives a camera: keeps exposure, gain and geometry in line with the configuration."""

    def __init__(self, conf: Configuration, median: Optional[MedianFilter] = None,
                 reconnect_delay: float = 1.0) -> None:
        self.conf = conf
        self.median = median
        self.reconnect_delay = reconnect_delay
        self.camera: Optional[Camera] = None
        self.connected = False
        self.gain = 0.0
        self.gainmax = 0.0
        self.exptime = DEFAULT_EXPTIME
        self.brightness = 0.0
        self.curformat = FrameFormat()
        self.maxformat = FrameFormat()
        self.stepformat = FrameFormat()
        self._old_exptime = 0.0
        self._old_gain = -1.0
        self._old_brightness = -1.0
        self._stop = threading.Event()

    def stop(self) -> None:
        """Ask the capture loop to finish."""
        self._stop.set()

    def set_camera(self, camera: Camera) -> bool:
        """Make ``camera`` the active one and initialize it; False if it can't connect."""
        self.disconnect()
        self.camera = camera
        self.connected = bool(camera.connect())
        if not self.connected:
            return False
        self.gainmax = float(camera.max_gain())
        self.gain = float(self.conf.gain)
        self.brightness = float(self.conf.brightness)
        limits = camera.geometry_limits()
        if limits is None:
            log.warning("Can't detect camera format limits")
            return True
        self.maxformat, self.stepformat = limits
        self.change_format()
        log.info("Camera connected, max gain: %.1f, max (W,H): (%d,%d)",
                 self.gainmax, self.maxformat.w, self.maxformat.h)
        return True

    def disconnect(self) -> None:
        if not self.connected:
            return
        self.connected = False
        if self.camera is not None:
            self.camera.disconnect()

    def change_format(self) -> bool:
        """Fit the configured subimage into the camera limits and apply it."""
        if self.camera is None:
            return False
        mx, step, conf = self.maxformat, self.stepformat, self.conf
        if mx.h < 1 or mx.w < 1:
            log.warning("Bad max format data")
            return False
        if step.h < 1 or step.w < 1:
            log.warning("Bad step format data")
            return False
        if step.xoff < 1:
            step.xoff = 1
        if step.yoff < 1:
            step.yoff = 1
        cur = FrameFormat()
        cur.h = _align(min(conf.height, mx.h), step.h)
        cur.w = _align(min(conf.width, mx.w), step.w)
        cur.xoff = conf.xoff if conf.xoff + cur.w <= mx.w else mx.w - cur.w
        cur.xoff = _align(cur.xoff, step.xoff)
        cur.yoff = conf.yoff if conf.yoff + cur.h <= mx.h else mx.h - cur.h
        cur.yoff = _align(cur.yoff, step.yoff)
        self.curformat = cur
        applied = self.camera.set_geometry(FrameFormat(cur.w, cur.h, cur.xoff, cur.yoff))
        if applied is None:
            return False
        self.curformat = applied
        conf.height = applied.h
        conf.width = applied.w
        conf.xoff = applied.xoff
        conf.yoff = applied.yoff
        return True

    def calc_exp_gain(self, newexp: float) -> Tuple[float, float]:
        """Share a wanted exposition between time and gain; return (exptime, gain)."""
        conf = self.conf
        while newexp * 1.25 > conf.minexp:
            if self.gain < self.gainmax - 0.9999:
                self.gain += 1.0
                newexp /= 1.25
            else:
                break
        while newexp < conf.minexp:
            if 1.25 * newexp < conf.maxexp and self.gain > 0.9999:
                self.gain -= 1.0
                newexp *= 1.25
            else:
                break
        if newexp < conf.minexp:
            newexp = conf.minexp
        elif newexp > conf.maxexp:
            newexp = conf.maxexp
        self.exptime = newexp
        return self.exptime, self.gain

    def recalc_exp(self, image: Image) -> None:
        """Adjust exposition so that the brightest 100 pixels sit near level 230..253."""
        conf = self.conf
        if self.exptime < conf.minexp:
            self.exptime = conf.minexp
            return
        if self.exptime > conf.maxexp:
            self.exptime = conf.maxexp
            return
        hist = get_histogram(image)
        total = 0
        idx100 = -1
        for idx in range(255, -1, -1):
            total += int(hist[idx])
            if total > 100:
                idx100 = idx
                break
        if 230 < idx100 < 253:
            return
        if idx100 > 253:
            self.calc_exp_gain(0.7 * self.exptime)
        elif idx100 > 5:
            self.calc_exp_gain(self.exptime * 230.0 / float(idx100))
        else:
            self.calc_exp_gain(self.exptime * 50.0)

    def _apply_settings(self, cam: Camera) -> None:
        conf = self.conf
        if abs(self._old_brightness - self.brightness) > FLT_EPSILON:
            if cam.set_brightness(self.brightness):
                self._old_brightness = self.brightness
            else:
                log.warning("Can't change brightness to %g", self.brightness)
        if self.exptime > conf.maxexp:
            self.exptime = conf.maxexp
        elif self.exptime < conf.minexp:
            self.exptime = conf.minexp
        if abs(self._old_exptime - self.exptime) > FLT_EPSILON:
            if cam.set_exp(self.exptime):
                self._old_exptime = self.exptime
            else:
                log.warning("Can't change exposition time to %gms", self.exptime)
        if self.gain > self.gainmax:
            self.gain = self.gainmax
        if abs(self._old_gain - self.gain) > FLT_EPSILON:
            if cam.set_gain(self.gain):
                self._old_gain = self.gain
            else:
                log.warning("Can't change gain to %g", self.gain)
        cur = self.curformat
        if (cur.h, cur.w, cur.xoff, cur.yoff) != (conf.height, conf.width, conf.xoff, conf.yoff):
            self.change_format()

    def _follow_manual(self) -> None:
        conf = self.conf
        if abs(conf.fixedexp - self.exptime) > FLT_EPSILON:
            self.exptime = conf.fixedexp
        if abs(conf.gain - self.gain) > FLT_EPSILON:
            self.gain = conf.gain
        if abs(conf.brightness - self.brightness) > FLT_EPSILON:
            self.brightness = conf.brightness

    def capture_loop(self, process: Optional[ImageProcessor] = None) -> int:
        """Grab frames until stopped, passing each to ``process``; return frames grabbed.

        Raises RuntimeError if no camera was set.
        """
        frames = 0
        try:
            while not self._stop.is_set():
                cam = self.camera
                if cam is None:
                    raise RuntimeError("camera not initialized")
                if not self.connected:
                    self.connected = bool(cam.connect())
                    time.sleep(self.reconnect_delay)
                    self.change_format()
                    continue
                self._apply_settings(cam)
                image = cam.capture()
                if image is None:
                    log.warning("Can't grab image")
                    self.disconnect()
                    continue
                frames += 1
                if self.conf.expmethod == EXPAUTO:
                    self.recalc_exp(image)
                else:
                    self._follow_manual()
                if process is not None:
                    if self.conf.medfilt and self.median is not None:
                        filtered = self.median(image, self.conf.medseed)
                        if filtered is not None:
                            image = filtered
                    process(image)
        finally:
            self.disconnect()
        return frames

    def status(self, messageid: Optional[str], impath: str, nimages: int,
               fps: float, center: Tuple[float, float]) -> str:
        """JSON status line of the capture."""
        if messageid is None:
            messageid = "unknown"
        xc, yc = center
        return (
            '{ "%s": "%s", "camstatus": "%sconnected", "impath": "%s", "imctr": %d, '
            '"fps": %.3f, "expmethod": "%s", "exposition": %g, "gain": %g, "brightness": %g, '
            '"xcenter": %.1f, "ycenter": %.1f }\n'
        ) % (
            MESSAGEID, messageid, "" if self.connected else "dis", impath, nimages, fps,
            "auto" if self.conf.expmethod == EXPAUTO else "manual",
            self.exptime, self.gain, self.brightness, xc, yc,
        )