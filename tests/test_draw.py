import numpy as np
import pytest

from loccorr.draw import C_G, C_R, Img3, Pattern, pattern_cross, pattern_xcross


def _blank(h=10, w=10):
    return Img3(np.zeros((h, w, 3), dtype=np.uint8))


def test_cross_has_two_full_lines():
    p = pattern_cross(5, 7)
    assert (p.h, p.w) == (5, 7)
    assert np.all(p.data[2, :] == 255)
    assert np.all(p.data[:, 3] == 255)
    assert np.count_nonzero(p.data) == p.h + p.w - 1


def test_small_xcross_is_single_point():
    p = pattern_xcross(5, 5)
    assert np.count_nonzero(p.data) == 1
    assert p.data[2, 2] == 255


def test_xcross_symmetric_with_empty_gap():
    p = pattern_xcross(33, 33)
    assert p.data[16, 16] == 255
    assert np.array_equal(p.data, p.data[::-1, :])
    assert np.array_equal(p.data, p.data[:, ::-1])
    assert np.array_equal(p.data, p.data.T)
    gap = p.data[14:19, 14:19].copy()
    gap[2, 2] = 0
    assert not gap.any()
    assert p.data[13, 0] == 255 and p.data[0, 13] == 255


def test_draw_opaque_excludes_last_row_and_column():
    img = _blank()
    Pattern(np.full((3, 3), 255, dtype=np.uint8)).draw3(img, 5, 5, C_R)
    assert np.all(img.data[4:6, 4:6] == np.array(C_R, dtype=np.uint8))
    assert not img.data[6].any()
    assert not img.data[:, 6].any()
    assert np.count_nonzero(img.data.any(axis=2)) == 4


def test_transparent_pixels_keep_background():
    img = Img3(np.full((10, 10, 3), 77, dtype=np.uint8))
    before = img.data.copy()
    Pattern(np.zeros((5, 5), dtype=np.uint8)).draw3(img, 5, 5, C_G)
    assert np.array_equal(img.data, before)


def test_pattern_outside_image_is_ignored():
    img = _blank()
    pattern_cross(5, 5).draw3(img, -20, -20, C_R)
    pattern_cross(5, 5).draw3(img, 40, 3, C_R)
    assert not img.data.any()


def test_clipped_at_top_left_corner():
    img = _blank()
    Pattern(np.full((3, 3), 255, dtype=np.uint8)).draw3(img, 0, 0, C_G)
    assert tuple(img.data[0, 0]) == C_G
    assert np.count_nonzero(img.data.any(axis=2)) == 1


def test_bad_shapes_rejected():
    with pytest.raises(ValueError):
        Img3(np.zeros((4, 4), dtype=np.uint8))
    with pytest.raises(ValueError):
        Pattern(np.zeros((2, 2, 2), dtype=np.uint8))