"""Save uncompressed YUV or RGB frames, dropping any row padding."""

from __future__ import annotations

import contextlib
import sys
from typing import BinaryIO, Iterator, Sequence

from .formats import PixelFormat, StreamInfo


@contextlib.contextmanager
def _open_output(filename: str) -> Iterator[BinaryIO]:
    if filename == "-":
        yield sys.stdout.buffer
        sys.stdout.buffer.flush()
        return
    try:
        fp = open(filename, "wb")
    except OSError as exc:
        raise RuntimeError("failed to open file " + filename) from exc
    with fp:
        yield fp


def _write(fp: BinaryIO, chunk, filename: str) -> None:
    try:
        fp.write(chunk)
    except OSError as exc:
        raise RuntimeError("failed to write file " + filename) from exc


def _check_even(info: StreamInfo) -> None:
    if info.width & 1 or info.height & 1:
        raise ValueError("both width and height must be even")


def _yuv420_save(mem: Sequence, info: StreamInfo, filename: str, encoding: str) -> None:
    if encoding != "yuv420":
        raise ValueError("output format " + encoding + " not supported")
    _check_even(info)
    if len(mem) != 1:
        raise ValueError("incorrect number of planes in YUV420 data")
    data = memoryview(mem[0]).cast("B")
    w, h, stride = info.width, info.height, info.stride
    half_w, half_h, half_stride = w // 2, h // 2, stride // 2
    u_start = stride * h
    v_start = u_start + half_stride * half_h
    with _open_output(filename) as fp:
        for row in range(h):
            _write(fp, data[row * stride:row * stride + w], filename)
        for plane in (u_start, v_start):
            for row in range(half_h):
                start = plane + row * half_stride
                _write(fp, data[start:start + half_w], filename)


def _yuyv_save(mem: Sequence, info: StreamInfo, filename: str, encoding: str) -> None:
    if encoding != "yuv420":
        raise ValueError("output format " + encoding + " not supported")
    _check_even(info)
    data = memoryview(mem[0]).cast("B")
    w, stride = info.width, info.stride
    with _open_output(filename) as fp:
        for row in range(info.height):
            start = row * stride
            _write(fp, bytes(data[start:start + 2 * w:2]), filename)
        for chroma in (1, 3):
            for row in range(0, info.height, 2):
                start = row * stride + chroma
                _write(fp, bytes(data[start:start + 2 * w:4][: w // 2]), filename)


def _rgb_save(mem: Sequence, info: StreamInfo, filename: str, encoding: str) -> None:
    if encoding != "rgb":
        raise ValueError("encoding should be set to rgb")
    data = memoryview(mem[0]).cast("B")
    line = 3 * info.width
    with _open_output(filename) as fp:
        for row in range(info.height):
            start = row * info.stride
            _write(fp, data[start:start + line], filename)


def yuv_save(mem: Sequence, info: StreamInfo, filename: str, encoding: str) -> None:
    """Save a YUYV, YUV420 or RGB frame as planar YUV420 or packed RGB."""
    if info.pixel_format is PixelFormat.YUYV:
        _yuyv_save(mem, info, filename, encoding)
    elif info.pixel_format is PixelFormat.YUV420:
        _yuv420_save(mem, info, filename, encoding)
    elif info.pixel_format in (PixelFormat.BGR888, PixelFormat.RGB888):
        _rgb_save(mem, info, filename, encoding)
    else:
        raise ValueError("unrecognised YUV/RGB save format")