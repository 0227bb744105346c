import pytest

from frameout.formats import PixelFormat, StreamInfo
from frameout.yuv import yuv_save

PAD = b"\xee"


def test_yuv420_drops_padding(tmp_path):
    y0, y1 = b"\x01\x02\x03\x04", b"\x05\x06\x07\x08"
    u0, v0 = b"\x11\x12", b"\x21\x22"
    data = y0 + PAD * 2 + y1 + PAD * 2 + u0 + PAD + v0 + PAD
    info = StreamInfo(4, 2, 6, PixelFormat.YUV420)
    path = tmp_path / "f.yuv"
    yuv_save([data], info, str(path), "yuv420")
    assert path.read_bytes() == y0 + y1 + u0 + v0


def test_yuv420_wrong_planes(tmp_path):
    info = StreamInfo(2, 2, 2, PixelFormat.YUV420)
    with pytest.raises(ValueError):
        yuv_save([bytes(6), bytes(6)], info, str(tmp_path / "g"), "yuv420")


def test_odd_size_rejected(tmp_path):
    info = StreamInfo(3, 2, 4, PixelFormat.YUV420)
    with pytest.raises(ValueError):
        yuv_save([bytes(12)], info, str(tmp_path / "h"), "yuv420")


def test_yuyv_converts_to_planar(tmp_path):
    row0 = b"\x01\x11\x02\x21"  # Y0 U Y1 V
    row1 = b"\x03\x12\x04\x22"
    data = row0 + PAD * 2 + row1 + PAD * 2
    info = StreamInfo(2, 2, 6, PixelFormat.YUYV)
    path = tmp_path / "i.yuv"
    yuv_save([data], info, str(path), "yuv420")
    assert path.read_bytes() == b"\x01\x02\x03\x04" + b"\x11" + b"\x21"


def test_rgb_rows(tmp_path):
    r0, r1 = bytes(range(6)), bytes(range(10, 16))
    info = StreamInfo(2, 2, 8, PixelFormat.RGB888)
    path = tmp_path / "j.rgb"
    yuv_save([r0 + PAD * 2 + r1 + PAD * 2], info, str(path), "rgb")
    assert path.read_bytes() == r0 + r1


def test_encoding_mismatch(tmp_path):
    info = StreamInfo(2, 2, 6, PixelFormat.RGB888)
    with pytest.raises(ValueError):
        yuv_save([bytes(12)], info, str(tmp_path / "k"), "yuv420")
    info = StreamInfo(2, 2, 2, PixelFormat.YUV420)
    with pytest.raises(ValueError):
        yuv_save([bytes(6)], info, str(tmp_path / "l"), "rgb")


def test_unsupported_format(tmp_path):
    info = StreamInfo(2, 2, 4, PixelFormat.SRGGB10_CSI2P)
    with pytest.raises(ValueError):
        yuv_save([bytes(8)], info, str(tmp_path / "m"), "yuv420")