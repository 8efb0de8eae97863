import json
from typing import List, Optional

import numpy as np
import pytest

from loccorr.cameracapture import Camera, CameraCapture, FrameFormat
from loccorr.config import Configuration
from loccorr.image import Image


def make_image(value: int) -> Image:
    return Image(np.full((20, 30), value, dtype=np.uint8))


class FakeCamera(Camera):
    def __init__(self, frames: Optional[List[Optional[Image]]] = None, connect_ok=True,
                 gainmax=10.0, limits=None):
        self.frames = list(frames or [])
        self.connect_ok = connect_ok
        self.gainmax = gainmax
        self.limits = limits
        self.connects = 0
        self.disconnects = 0
        self.exp_calls: List[float] = []
        self.gain_calls: List[float] = []
        self.brightness_calls: List[float] = []
        self.geometry_calls: List[FrameFormat] = []

    def connect(self):
        self.connects += 1
        return self.connect_ok

    def disconnect(self):
        self.disconnects += 1

    def capture(self):
        if self.frames:
            return self.frames.pop(0)
        return make_image(240)

    def set_brightness(self, value):
        self.brightness_calls.append(value)
        return True

    def set_exp(self, value):
        self.exp_calls.append(value)
        return True

    def set_gain(self, value):
        self.gain_calls.append(value)
        return True

    def max_gain(self):
        return self.gainmax

    def set_geometry(self, fmt):
        self.geometry_calls.append(fmt)
        return fmt

    def geometry_limits(self):
        return self.limits


LIMITS = (FrameFormat(w=1000, h=800, xoff=1000, yoff=800), FrameFormat(w=4, h=2, xoff=2, yoff=2))


def stop_after(cap, n, store):
    def process(image):
        store.append(image)
        if len(store) >= n:
            cap.stop()
    return process


def test_set_camera_fails_when_connect_fails():
    cap = CameraCapture(Configuration())
    assert cap.set_camera(FakeCamera(connect_ok=False)) is False
    assert cap.connected is False


def test_set_camera_takes_gain_and_aligns_format():
    conf = Configuration(width=501, height=301, xoff=10, yoff=5)
    cap = CameraCapture(conf)
    cam = FakeCamera(limits=LIMITS)
    assert cap.set_camera(cam) is True
    assert cap.gain == conf.gain
    assert cap.gainmax == cam.gainmax
    assert conf.width % 4 == 0 and 501 - 4 < conf.width <= 501
    assert conf.height % 2 == 0 and 301 - 2 < conf.height <= 301
    assert conf.yoff % 2 == 0
    assert cam.geometry_calls[-1] == cap.curformat


def test_change_format_keeps_offset_inside_sensor():
    conf = Configuration(width=500, height=400, xoff=900, yoff=700)
    cap = CameraCapture(conf)
    cap.set_camera(FakeCamera(limits=LIMITS))
    assert conf.xoff + conf.width <= LIMITS[0].w
    assert conf.yoff + conf.height <= LIMITS[0].h


def test_change_format_rejects_bad_limits():
    cap = CameraCapture(Configuration(width=100, height=100))
    cam = FakeCamera(limits=(FrameFormat(), FrameFormat(1, 1, 1, 1)))
    cap.set_camera(cam)
    assert cap.change_format() is False
    assert cam.geometry_calls == []


def test_calc_exp_gain_raises_gain_first():
    cap = CameraCapture(Configuration())
    cap.gainmax = 10.0
    cap.gain = 0.0
    exptime, gain = cap.calc_exp_gain(1.0)
    assert gain == cap.gainmax
    assert exptime * 1.25 ** gain == pytest.approx(1.0)


def test_calc_exp_gain_clamps_to_maxexp():
    conf = Configuration()
    cap = CameraCapture(conf)
    cap.gainmax = 0.0
    exptime, gain = cap.calc_exp_gain(conf.maxexp * 3)
    assert exptime == conf.maxexp
    assert gain == 0.0


def test_recalc_exp_keeps_good_exposure():
    cap = CameraCapture(Configuration())
    before = cap.exptime
    cap.recalc_exp(make_image(240))
    assert cap.exptime == before


def test_recalc_exp_shortens_overexposed():
    cap = CameraCapture(Configuration())
    before = cap.exptime
    cap.recalc_exp(make_image(255))
    assert cap.exptime < before


def test_recalc_exp_lengthens_dark():
    cap = CameraCapture(Configuration())
    before = cap.exptime
    cap.recalc_exp(make_image(10))
    assert cap.exptime > before


def test_recalc_exp_black_image_goes_to_maxexp():
    conf = Configuration()
    cap = CameraCapture(conf)
    cap.recalc_exp(make_image(0))
    assert cap.exptime == conf.maxexp


def test_recalc_exp_restores_minexp():
    conf = Configuration()
    cap = CameraCapture(conf)
    cap.exptime = 0.0
    cap.recalc_exp(make_image(240))
    assert cap.exptime == conf.minexp


def test_capture_loop_without_camera_raises():
    cap = CameraCapture(Configuration())
    with pytest.raises(RuntimeError):
        cap.capture_loop()


def test_capture_loop_processes_frames_and_sets_camera():
    conf = Configuration()
    cap = CameraCapture(conf, reconnect_delay=0)
    cam = FakeCamera(gainmax=10.0)
    cap.set_camera(cam)
    got = []
    frames = cap.capture_loop(stop_after(cap, 3, got))
    assert frames == 3
    assert len(got) == 3
    assert cam.gain_calls == [cam.gainmax]
    assert cam.exp_calls == [cap.exptime]
    assert cam.brightness_calls == [conf.brightness]
    assert cam.disconnects == 1
    assert cap.connected is False


def test_capture_loop_manual_mode_follows_config():
    conf = Configuration(expmethod=1, fixedexp=50.0)
    cap = CameraCapture(conf, reconnect_delay=0)
    cam = FakeCamera()
    cap.set_camera(cam)
    got = []
    cap.capture_loop(stop_after(cap, 2, got))
    assert cam.exp_calls[-1] == conf.fixedexp
    assert cap.exptime == conf.fixedexp


def test_capture_loop_reconnects_after_failed_grab():
    cap = CameraCapture(Configuration(), reconnect_delay=0)
    cam = FakeCamera(frames=[None, make_image(240)])
    cap.set_camera(cam)
    got = []
    frames = cap.capture_loop(stop_after(cap, 1, got))
    assert frames == 1
    assert cam.connects == 2


def test_capture_loop_applies_median_filter():
    conf = Configuration(medfilt=1)
    marked = make_image(7)
    seeds = []

    def median(image, seed):
        seeds.append(seed)
        return marked

    cap = CameraCapture(conf, median=median, reconnect_delay=0)
    cap.set_camera(FakeCamera())
    got = []
    cap.capture_loop(stop_after(cap, 1, got))
    assert got == [marked]
    assert seeds == [conf.medseed]


def test_status_is_json():
    cap = CameraCapture(Configuration())
    cap.set_camera(FakeCamera())
    text = cap.status("abc", "/tmp/out.jpg", 5, 2.5, (10.0, 20.0))
    data = json.loads(text)
    assert data["messageid"] == "abc"
    assert data["camstatus"] == "connected"
    assert data["impath"] == "/tmp/out.jpg"
    assert data["imctr"] == 5
    assert data["expmethod"] == "auto"
    assert data["xcenter"] == 10.0
    assert data["ycenter"] == 20.0


def test_status_unknown_id_and_disconnected():
    cap = CameraCapture(Configuration(expmethod=1))
    data = json.loads(cap.status(None, "x.jpg", 0, 0.0, (-1.0, -1.0)))
    assert data["messageid"] == "unknown"
    assert data["camstatus"] == "disconnected"
    assert data["expmethod"] == "manual"