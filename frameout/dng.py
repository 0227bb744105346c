"""Save packed raw Bayer frames as DNG files."""

from __future__ import annotations

import logging
import math
import struct
import sys
import time
from array import array
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Mapping, Sequence

from .formats import PixelFormat, StreamInfo

_log = logging.getLogger(__name__)

_TIFF_RGGB = (0, 1, 1, 2)
_TIFF_GRBG = (1, 0, 2, 1)
_TIFF_BGGR = (2, 1, 1, 0)
_TIFF_GBRG = (1, 2, 0, 1)


@dataclass(frozen=True)
class BayerFormat:
    """Name, bit depth and CFA order of a packed Bayer format."""

    name: str
    bits: int
    order: tuple


_BAYER_FORMATS = {
    PixelFormat.SRGGB10_CSI2P: BayerFormat("RGGB-10", 10, _TIFF_RGGB),
    PixelFormat.SGRBG10_CSI2P: BayerFormat("GRBG-10", 10, _TIFF_GRBG),
    PixelFormat.SBGGR10_CSI2P: BayerFormat("BGGR-10", 10, _TIFF_BGGR),
    PixelFormat.SGBRG10_CSI2P: BayerFormat("GBRG-10", 10, _TIFF_GBRG),
    PixelFormat.SRGGB12_CSI2P: BayerFormat("RGGB-12", 12, _TIFF_RGGB),
    PixelFormat.SGRBG12_CSI2P: BayerFormat("GRBG-12", 12, _TIFF_GRBG),
    PixelFormat.SBGGR12_CSI2P: BayerFormat("BGGR-12", 12, _TIFF_BGGR),
    PixelFormat.SGBRG12_CSI2P: BayerFormat("GBRG-12", 12, _TIFF_GBRG),
}


def unpack_10bit(src, info: StreamInfo) -> array:
    """Unpack CSI-2 10-bit packed rows into 16-bit samples."""
    data = memoryview(src).cast("B")
    out = array("H")
    w_align = info.width & ~3
    for y in range(info.height):
        row = y * info.stride
        x = 0
        for x in range(0, w_align, 4):
            p = row + x // 4 * 5
            low = data[p + 4]
            out.extend(((data[p] << 2) | (low & 3), (data[p + 1] << 2) | ((low >> 2) & 3),
                        (data[p + 2] << 2) | ((low >> 4) & 3), (data[p + 3] << 2) | ((low >> 6) & 3)))
        p = row + w_align // 4 * 5
        for x in range(w_align, info.width):
            out.append((data[p + (x & 3)] << 2) | ((data[p + 4] >> ((x & 3) << 1)) & 3))
    return out


def unpack_12bit(src, info: StreamInfo) -> array:
    """Unpack CSI-2 12-bit packed rows into 16-bit samples."""
    data = memoryview(src).cast("B")
    out = array("H")
    w_align = info.width & ~1
    for y in range(info.height):
        row = y * info.stride
        for x in range(0, w_align, 2):
            p = row + x // 2 * 3
            out.extend(((data[p] << 4) | (data[p + 2] & 15), (data[p + 1] << 4) | ((data[p + 2] >> 4) & 15)))
        if w_align < info.width:
            p = row + w_align // 2 * 3
            out.append(data[p] << 4 | (data[p + 2] & 15))
    return out


@dataclass(frozen=True)
class Matrix:
    """A 3x3 matrix stored row by row."""

    m: tuple

    def __post_init__(self):
        if len(self.m) != 9:
            raise ValueError("a 3x3 matrix needs 9 values")
        object.__setattr__(self, "m", tuple(float(v) for v in self.m))

    @classmethod
    def diagonal(cls, d0: float, d1: float, d2: float) -> "Matrix":
        return cls((d0, 0, 0, 0, d1, 0, 0, 0, d2))

    def transpose(self) -> "Matrix":
        m = self.m
        return Matrix((m[0], m[3], m[6], m[1], m[4], m[7], m[2], m[5], m[8]))

    def cofactors(self) -> "Matrix":
        m = self.m
        return Matrix((
            m[4] * m[8] - m[5] * m[7], -(m[3] * m[8] - m[5] * m[6]), m[3] * m[7] - m[4] * m[6],
            -(m[1] * m[8] - m[2] * m[7]), m[0] * m[8] - m[2] * m[6], -(m[0] * m[7] - m[1] * m[6]),
            m[1] * m[5] - m[2] * m[4], -(m[0] * m[5] - m[2] * m[3]), m[0] * m[4] - m[1] * m[3],
        ))

    def adjugate(self) -> "Matrix":
        return self.cofactors().transpose()

    def determinant(self) -> float:
        m = self.m
        return (m[0] * (m[4] * m[8] - m[5] * m[7])
                - m[1] * (m[3] * m[8] - m[5] * m[6])
                + m[2] * (m[3] * m[7] - m[4] * m[6]))

    def inverse(self) -> "Matrix":
        return self.adjugate() * (1.0 / self.determinant())

    def __mul__(self, other):
        if isinstance(other, Matrix):
            a, b = self.m, other.m
            return Matrix(tuple(
                a[i * 3] * b[j] + a[i * 3 + 1] * b[3 + j] + a[i * 3 + 2] * b[6 + j]
                for i in range(3) for j in range(3)
            ))
        if isinstance(other, (int, float)):
            return Matrix(tuple(v * other for v in self.m))
        return NotImplemented


# TIFF field types.
_BYTE, _ASCII, _SHORT, _LONG, _RATIONAL, _SRATIONAL = 1, 2, 3, 4, 5, 10


def _rational(value: float) -> tuple[int, int]:
    frac = Fraction(value).limit_denominator(1_000_000)
    return frac.numerator, frac.denominator


def _encode(kind: int, values) -> tuple[int, bytes]:
    if kind == _ASCII:
        raw = values.encode("ascii") + b"\0"
        return len(raw), raw
    if kind == _BYTE:
        return len(values), bytes(values)
    if kind == _SHORT:
        return len(values), struct.pack(f"<{len(values)}H", *values)
    if kind == _LONG:
        return len(values), struct.pack(f"<{len(values)}I", *values)
    code = "I" if kind == _RATIONAL else "i"
    flat = [part for v in values for part in _rational(v)]
    return len(values), struct.pack(f"<{len(flat)}{code}", *flat)


def _write_ifd(out: bytearray, entries: Mapping[int, tuple[int, Any]]) -> int:
    if len(out) & 1:
        out.append(0)
    offset = len(out)
    extra_at = offset + 2 + 12 * len(entries) + 4
    table = bytearray(struct.pack("<H", len(entries)))
    extra = bytearray()
    for tag in sorted(entries):
        kind, values = entries[tag]
        count, raw = _encode(kind, values)
        if len(raw) <= 4:
            field = raw.ljust(4, b"\0")
        else:
            field = struct.pack("<I", extra_at + len(extra))
            extra += raw
            if len(extra) & 1:
                extra.append(0)
        table += struct.pack("<HHI", tag, kind, count) + field
    table += struct.pack("<I", 0)
    out += table + extra
    return offset


def dng_save(mem: Sequence, info: StreamInfo, metadata: Mapping[str, Any], filename: str,
             cam_name: str) -> None:
    """Write a packed Bayer frame and its metadata as a DNG with a small thumbnail."""
    bayer = _BAYER_FORMATS.get(info.pixel_format)
    if bayer is None:
        raise ValueError("unsupported Bayer format")
    _log.info("Bayer format is %s", bayer.name)
    buf = unpack_10bit(mem[0], info) if bayer.bits == 10 else unpack_12bit(mem[0], info)

    scale = (1 << bayer.bits) / 65536.0
    black = 4096 * scale
    black_levels = [black] * 4
    levels = metadata.get("SensorBlackLevels")
    if levels is not None:
        # Levels arrive as R, Gr, Gb, B; re-order them for the actual Bayer order.
        for i in range(4):
            j = bayer.order[i]
            j = 0 if j == 0 else (3 if j == 2 else 1 + bool(bayer.order[i ^ 1]))
            black_levels[j] = levels[i] * scale
    else:
        _log.warning("no black level found, using default")

    exp_time = metadata.get("ExposureTime")
    if exp_time is None:
        exp_time = 10000
        _log.warning("default to exposure time of %dus", exp_time)
    exp_time = exp_time / 1e6

    gain = metadata.get("AnalogueGain")
    if gain is not None:
        iso = int(gain * 100.0) & 0xFFFF
    else:
        iso = 100
        _log.warning("default to ISO value of %d", iso)

    neutral = [1.0, 1.0, 1.0]
    wb_gains = Matrix.diagonal(1, 1, 1)
    colour_gains = metadata.get("ColourGains")
    if colour_gains is not None:
        neutral[0] = 1.0 / colour_gains[0]
        neutral[2] = 1.0 / colour_gains[1]
        wb_gains = Matrix.diagonal(colour_gains[0], 1, colour_gains[1])

    ccm = metadata.get("ColourCorrectionMatrix")
    if ccm is not None:
        ccm = Matrix(tuple(ccm))
    else:
        # A plausible default in case the metadata lacks one.
        ccm = Matrix((1.90255, -0.77478, -0.12777,
                      -0.31338, 1.88197, -0.56858,
                      -0.06001, -0.61785, 1.67786))
        _log.warning("no CCM metadata found")

    rgb2xyz = Matrix((0.4124564, 0.3575761, 0.1804375,
                      0.2126729, 0.7151522, 0.0721750,
                      0.0193339, 0.1191920, 0.9503041))
    cam_xyz = (rgb2xyz * ccm * wb_gains).inverse()
    _log.debug("Black levels %s, exposure time %gus, ISO %d", black_levels, exp_time * 1e6, iso)

    white = (1 << bayer.bits) - 1
    width, height = info.width, info.height
    thumb_w, thumb_h = width >> 4, height >> 4

    # Greyscale thumbnail with a fake "gamma".
    thumb = bytearray()
    for y in range(thumb_h):
        for x in range(thumb_w):
            off = (y * width + x) << 4
            grey = buf[off] + buf[off + 1] + buf[off + width] + buf[off + width + 1]
            grey = int(white * math.sqrt(grey / white))
            value = (grey >> (bayer.bits - 6)) & 0xFF
            thumb += bytes((value, value, value))

    samples = array("H", buf)
    if sys.byteorder == "big":
        samples.byteswap()
    image = samples.tobytes()

    out = bytearray(b"II*\x00\x00\x00\x00\x00")
    thumb_offset = len(out)
    out += thumb
    if len(out) & 1:
        out.append(0)
    image_offset = len(out)
    out += image

    sub_ifd = _write_ifd(out, {
        254: (_LONG, [0]),
        256: (_LONG, [width]),
        257: (_LONG, [height]),
        258: (_SHORT, [16]),
        259: (_SHORT, [1]),
        262: (_SHORT, [32803]),
        273: (_LONG, [image_offset]),
        277: (_SHORT, [1]),
        278: (_LONG, [height]),
        279: (_LONG, [len(image)]),
        284: (_SHORT, [1]),
        33421: (_SHORT, [2, 2]),
        33422: (_BYTE, list(bayer.order)),
        50713: (_SHORT, [2, 2]),
        50714: (_RATIONAL, black_levels),
        50717: (_LONG, [white]),
    })
    exif_ifd = _write_ifd(out, {
        33434: (_RATIONAL, [exp_time]),
        34855: (_SHORT, [iso]),
        36867: (_ASCII, time.strftime("%Y:%m:%d %H:%M:%S", time.localtime())),
    })
    main_ifd = _write_ifd(out, {
        254: (_LONG, [1]),
        256: (_LONG, [thumb_w]),
        257: (_LONG, [thumb_h]),
        258: (_SHORT, [8, 8, 8]),
        259: (_SHORT, [1]),
        262: (_SHORT, [2]),
        271: (_ASCII, "Raspberry Pi"),
        272: (_ASCII, cam_name),
        273: (_LONG, [thumb_offset]),
        274: (_SHORT, [1]),
        277: (_SHORT, [3]),
        278: (_LONG, [max(thumb_h, 1)]),
        279: (_LONG, [len(thumb)]),
        284: (_SHORT, [1]),
        305: (_ASCII, "libcamera-still"),
        330: (_LONG, [sub_ifd]),
        34665: (_LONG, [exif_ifd]),
        50706: (_BYTE, [1, 1, 0, 0]),
        50707: (_BYTE, [1, 0, 0, 0]),
        50708: (_ASCII, cam_name),
        50721: (_SRATIONAL, list(cam_xyz.m)),
        50728: (_RATIONAL, neutral),
        50778: (_SHORT, [21]),
    })
    out[4:8] = struct.pack("<I", main_ifd)

    try:
        with open(filename, "wb") as fp:
            fp.write(out)
    except OSError as exc:
        raise RuntimeError("could not open file " + filename) from exc