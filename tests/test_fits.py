import gzip

import numpy as np
import pytest

from loccorr.fits import BLOCK, FitsError, read_fits, write_fits
from loccorr.image import Image


def _fits_bytes(cards, data_bytes):
    header = "".join(c.ljust(80) for c in cards + ["END"])
    header = header.ljust(-(-len(header) // BLOCK) * BLOCK)
    data = data_bytes.ljust(-(-len(data_bytes) // BLOCK) * BLOCK, b"\0")
    return header.encode("ascii") + data


def _gradient():
    return np.arange(256, dtype=np.uint8).reshape(16, 16)


def test_round_trip_keeps_pixels(tmp_path):
    path = tmp_path / "img.fits"
    write_fits(path, Image(_gradient()))
    img = read_fits(path)
    assert np.array_equal(img.data, _gradient())
    assert (img.width, img.height) == (16, 16)
    assert (img.minval, img.maxval) == (0, 255)


def test_written_file_is_block_aligned_and_commented(tmp_path):
    path = tmp_path / "img.fits"
    write_fits(path, Image(_gradient()))
    raw = path.read_bytes()
    assert len(raw) % BLOCK == 0
    assert raw.startswith(b"SIMPLE  =")
    img = read_fits(path)
    assert "COMMENT  modified by loccorr" in img.keylist


def test_user_keys_preserved_structural_dropped(tmp_path):
    path = tmp_path / "img.fits"
    keys = ["OBJECT  = 'star'", "NAXIS   =                    2", "COMMENT old"]
    write_fits(path, Image(_gradient(), keylist=keys))
    img = read_fits(path)
    assert "OBJECT  = 'star'" in img.keylist
    assert "COMMENT old" not in img.keylist
    assert sum(k.startswith("NAXIS ") for k in img.keylist) == 1


def test_existing_file_not_overwritten(tmp_path):
    path = tmp_path / "img.fits"
    path.write_bytes(b"x")
    with pytest.raises(FitsError):
        write_fits(path, Image(_gradient()))
    assert path.read_bytes() == b"x"


def test_gzipped_file_read(tmp_path):
    plain = tmp_path / "img.fits"
    write_fits(plain, Image(_gradient()))
    packed = tmp_path / "img.fits.gz"
    packed.write_bytes(gzip.compress(plain.read_bytes()))
    assert np.array_equal(read_fits(packed).data, _gradient())


def test_float_data_scaled_to_full_range(tmp_path):
    values = np.array([[0.5, 1.5, 2.5], [3.5, 4.5, 5.5]], dtype=">f4")
    cards = ["SIMPLE  =                    T", "BITPIX  =                  -32",
             "NAXIS   =                    2", "NAXIS1  =                    3",
             "NAXIS2  =                    2"]
    path = tmp_path / "f.fits"
    path.write_bytes(_fits_bytes(cards, values.tobytes()))
    img = read_fits(path)
    assert img.data.shape == (2, 3)
    assert int(img.data.min()) == 0
    assert int(img.data.max()) == 255
    assert np.all(np.diff(img.data.ravel().astype(int)) > 0)


def test_three_dimensional_rejected(tmp_path):
    cards = ["SIMPLE  =                    T", "BITPIX  =                    8",
             "NAXIS   =                    3", "NAXIS1  =                    2",
             "NAXIS2  =                    2", "NAXIS3  =                    2"]
    path = tmp_path / "cube.fits"
    path.write_bytes(_fits_bytes(cards, bytes(8)))
    with pytest.raises(FitsError):
        read_fits(path)


def test_not_fits_rejected(tmp_path):
    path = tmp_path / "junk.fits"
    path.write_bytes(b"A" * BLOCK)
    with pytest.raises(FitsError):
        read_fits(path)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FitsError):
        read_fits(tmp_path / "absent.fits")