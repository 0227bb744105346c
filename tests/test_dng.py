import math
import struct

import pytest
from PIL import Image

from frameout.dng import Matrix, dng_save, unpack_10bit, unpack_12bit
from frameout.formats import PixelFormat, StreamInfo


def _pack10(values, width, height, stride):
    out = bytearray()
    for y in range(height):
        row = bytearray()
        vals = values[y * width:(y + 1) * width]
        for i in range(0, width, 4):
            group = vals[i:i + 4]
            row += bytes(v >> 2 for v in group)
            row += bytes(4 - len(group))
            row.append(sum((v & 3) << (2 * k) for k, v in enumerate(group)))
        out += row.ljust(stride, b"\0")
    return bytes(out)


def _pack12(values, width, height, stride):
    out = bytearray()
    for y in range(height):
        row = bytearray()
        vals = values[y * width:(y + 1) * width]
        for i in range(0, width, 2):
            group = vals[i:i + 2]
            row += bytes(v >> 4 for v in group) + bytes(2 - len(group))
            row.append(sum((v & 15) << (4 * k) for k, v in enumerate(group)))
        out += row.ljust(stride, b"\0")
    return bytes(out)


def test_unpack_10bit_round_trip():
    width, height, stride = 8, 2, 12
    values = [(i * 97) % 1024 for i in range(width * height)]
    info = StreamInfo(width, height, stride, PixelFormat.SRGGB10_CSI2P)
    assert list(unpack_10bit(_pack10(values, width, height, stride), info)) == values


def test_unpack_12bit_round_trip():
    width, height, stride = 4, 3, 8
    values = [(i * 331) % 4096 for i in range(width * height)]
    info = StreamInfo(width, height, stride, PixelFormat.SRGGB12_CSI2P)
    assert list(unpack_12bit(_pack12(values, width, height, stride), info)) == values


def test_matrix_inverse_gives_identity():
    m = Matrix((2, 1, 0, 1, 3, 1, 0, 1, 4))
    product = m * m.inverse()
    ident = Matrix.diagonal(1, 1, 1)
    assert all(math.isclose(a, b, abs_tol=1e-9) for a, b in zip(product.m, ident.m))


def test_matrix_transpose_and_determinant():
    m = Matrix((1, 2, 3, 4, 5, 6, 7, 8, 10))
    assert m.transpose().transpose() == m
    assert math.isclose(m.determinant(), m.transpose().determinant())
    assert Matrix.diagonal(2, 3, 5).determinant() == 2 * 3 * 5


def test_matrix_scalar_multiply():
    m = Matrix.diagonal(1, 2, 3) * 2.0
    assert m == Matrix.diagonal(2, 4, 6)


def test_matrix_needs_nine_values():
    with pytest.raises(ValueError):
        Matrix((1, 2, 3))


def test_dng_save_writes_tiff(tmp_path):
    width, height, stride = 32, 32, 40
    values = [(i * 13) % 1024 for i in range(width * height)]
    info = StreamInfo(width, height, stride, PixelFormat.SBGGR10_CSI2P)
    path = tmp_path / "a.dng"
    metadata = {"ExposureTime": 20000, "AnalogueGain": 2.0, "ColourGains": (1.5, 2.0)}
    dng_save([_pack10(values, width, height, stride)], info, metadata, str(path), "cam")
    raw = path.read_bytes()
    assert raw[:4] == b"II*\x00"
    ifd = struct.unpack("<I", raw[4:8])[0]
    assert ifd < len(raw)
    with Image.open(path) as img:
        assert img.size == (width >> 4, height >> 4)
        assert img.mode == "RGB"


def test_dng_rejects_non_bayer(tmp_path):
    info = StreamInfo(4, 4, 12, PixelFormat.RGB888)
    with pytest.raises(ValueError):
        dng_save([bytes(48)], info, {}, str(tmp_path / "b.dng"), "cam")