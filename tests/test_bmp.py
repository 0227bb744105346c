import struct

import pytest
from PIL import Image

from frameout.bmp import bmp_save
from frameout.formats import PixelFormat, StreamInfo


def _frame(width, height, stride):
    rows = []
    for y in range(height):
        row = bytes((y * 31 + x * 7) % 256 for x in range(width * 3))
        rows.append(row + b"\xee" * (stride - len(row)))
    return b"".join(rows)


def test_header_fields(tmp_path):
    info = StreamInfo(3, 2, 12, PixelFormat.RGB888)
    path = tmp_path / "a.bmp"
    bmp_save([_frame(3, 2, 12)], info, str(path))
    raw = path.read_bytes()
    assert raw[:2] == b"BM"
    filesize, _, _, offset = struct.unpack("<IHHI", raw[2:14])
    assert offset == 54
    assert filesize == len(raw)
    width, height = struct.unpack("<ii", raw[18:26])
    assert (width, height) == (3, -2)


def test_pixels_round_trip(tmp_path):
    width, height, stride = 3, 2, 12
    data = _frame(width, height, stride)
    info = StreamInfo(width, height, stride, PixelFormat.RGB888)
    path = tmp_path / "b.bmp"
    bmp_save([data], info, str(path))
    with Image.open(path) as img:
        assert img.size == (width, height)
        for y in range(height):
            for x in range(width):
                p = y * stride + x * 3
                # BMP stores bytes in B, G, R order.
                assert img.getpixel((x, y)) == (data[p + 2], data[p + 1], data[p])


def test_padding_bytes_not_copied(tmp_path):
    info = StreamInfo(3, 2, 12, PixelFormat.RGB888)
    path = tmp_path / "c.bmp"
    bmp_save([_frame(3, 2, 12)], info, str(path))
    assert b"\xee" not in path.read_bytes()[54:]


def test_wrong_format_rejected(tmp_path):
    info = StreamInfo(2, 2, 6, PixelFormat.BGR888)
    with pytest.raises(ValueError):
        bmp_save([bytes(12)], info, str(tmp_path / "d.bmp"))


def test_unopenable_file(tmp_path):
    info = StreamInfo(2, 2, 6, PixelFormat.RGB888)
    with pytest.raises(RuntimeError):
        bmp_save([bytes(12)], info, str(tmp_path / "missing" / "e.bmp"))