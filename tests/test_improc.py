import json
import math

import numpy as np
import pytest
from PIL import Image as PILImage

from loccorr.config import Configuration
from loccorr.image import Image
from loccorr.imagefile import ImageError
from loccorr.improc import (
    XY_TOLERANCE,
    Processor,
    StarObject,
    find_objects,
    sort_objects,
)


def _scene(stars, width=80, height=64):
    data = np.full((height, width), 10, dtype=np.uint8)
    yy, xx = np.ogrid[:height, :width]
    for cx, cy, r, value in stars:
        data[(xx - cx) ** 2 + (yy - cy) ** 2 <= r * r] = value
    img = Image(data)
    img.minmax()
    return img


def _conf(**kw):
    conf = Configuration()
    conf.minarea = 10
    for key, value in kw.items():
        setattr(conf, key, value)
    return conf


def _obj(xc, yc, isum):
    return StarObject(area=50, isum=isum, wdivh=1.0, xc=xc, yc=yc, xsigma=1.0, ysigma=1.0)


def test_find_objects_centroids():
    img = _scene([(20, 20, 8, 200), (55, 40, 8, 200)])
    objs = find_objects(img, _conf())
    centres = sorted((round(o.xc, 6), round(o.yc, 6)) for o in objs)
    assert centres == [(20.0, 20.0), (55.0, 40.0)]
    for o in objs:
        assert o.wdivh == pytest.approx(1.0)
        assert o.isum > 0


def test_find_objects_area_limit():
    img = _scene([(20, 20, 8, 200), (55, 40, 8, 200)])
    objs = find_objects(img, _conf(minarea=100000))
    assert objs == []


def test_find_objects_flat_image_raises():
    img = Image(np.full((20, 20), 50, dtype=np.uint8))
    img.minmax()
    with pytest.raises(ImageError):
        find_objects(img, _conf())


def test_sort_by_distance_from_target():
    conf = _conf(xtarget=60.0, ytarget=45.0, xoff=5, yoff=5, starssort=0)
    objs = [_obj(10, 10, 100.0), _obj(54, 41, 100.0), _obj(30, 30, 100.0)]
    ordered = sort_objects(objs, conf)
    assert [(o.xc, o.yc) for o in ordered] == [(54, 41), (30, 30), (10, 10)]


def test_sort_by_intensity():
    conf = _conf(starssort=1)
    objs = [_obj(1, 1, 10.0), _obj(50, 50, 1000.0)]
    ordered = sort_objects(objs, conf)
    assert ordered[0].isum == 1000.0


def test_sort_equal_intensity_uses_origin_distance():
    conf = _conf(starssort=1, intensthres=0.5)
    objs = [_obj(50, 50, 100.0), _obj(2, 3, 101.0)]
    ordered = sort_objects(objs, conf)
    assert (ordered[0].xc, ordered[0].yc) == (2, 3)


def test_process_file_selects_brightest(tmp_path):
    out = tmp_path / "out.jpg"
    conf = _conf(starssort=1, xoff=3, yoff=7)
    proc = Processor(conf, out)
    img = _scene([(20, 20, 8, 100), (55, 40, 8, 220)])
    objs = proc.process_file(img)
    assert len(objs) == 2
    assert proc.center() == pytest.approx((55.0 + 3, 40.0 + 7))
    assert proc.image_count == 1
    with PILImage.open(out) as pic:
        assert pic.size == (80, 64)
        assert pic.mode == "RGB"


def test_process_file_without_objects(tmp_path):
    out = tmp_path / "plain.jpg"
    proc = Processor(_conf(), out)
    data = np.full((30, 30), 10, dtype=np.uint8)
    data[5, 5] = 200
    img = Image(data)
    img.minmax()
    assert proc.process_file(img) == []
    assert proc.center() == (-1.0, -1.0)
    with PILImage.open(out) as pic:
        assert pic.size == (30, 30)


def test_process_none_is_ignored(tmp_path):
    proc = Processor(_conf(), tmp_path / "x.jpg")
    assert proc.process_file(None) == []
    assert proc.image_count == 0


def test_averaging_calls_corrector_and_logs(tmp_path):
    calls = []
    logname = tmp_path / "xy.log"
    with Processor(_conf(naverage=2), tmp_path / "o.jpg",
                   corrector=lambda x, y: calls.append((x, y))) as proc:
        proc.open_xy_log(logname)
        img = _scene([(30, 30, 8, 200)])
        proc.process_file(img)
        assert calls == []
        proc.process_file(img)
    assert calls == [(pytest.approx(30.0), pytest.approx(30.0))]
    lines = logname.read_text().splitlines()
    assert lines[0].startswith("# Start at:")
    data_lines = [ln for ln in lines if not ln.startswith("#")]
    assert len(data_lines) == 2
    assert len(data_lines[0].split("\t")) == 7
    assert len(data_lines[1].split("\t")) == 10


def test_corrector_skipped_on_large_spread(tmp_path):
    calls = []
    proc = Processor(_conf(naverage=2), tmp_path / "o.jpg",
                     corrector=lambda x, y: calls.append((x, y)))
    proc.process_file(_scene([(20, 30, 8, 200)]))
    proc.process_file(_scene([(20 + 4 * XY_TOLERANCE, 30, 8, 200)]))
    assert calls == []


def test_local_status_json(tmp_path):
    out = tmp_path / "img.jpg"
    proc = Processor(_conf(), out)
    status = json.loads(proc.local_status("42", True))
    assert status["messageid"] == "42"
    assert status["camstatus"] == "watch directory"
    assert status["xcenter"] == -1.0
    assert status["impath"].endswith("img.jpg")
    assert json.loads(proc.local_status("1", False))["camstatus"] == "watch file"


def test_frames_per_second(tmp_path):
    proc = Processor(_conf(), tmp_path / "f.jpg")
    assert proc.frames_per_second() == 0.0
    img = _scene([(30, 30, 8, 200)])
    proc.process_file(img)
    proc.process_file(img)
    fps = proc.frames_per_second()
    assert fps > 0 and not math.isinf(fps)
    assert proc.image_count == 2