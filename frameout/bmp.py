"""Write an RGB888 frame as an uncompressed 24-bit BMP file."""

from __future__ import annotations

import contextlib
import logging
import struct
import sys
from typing import BinaryIO, Iterator, Sequence

from .formats import PixelFormat, StreamInfo

_log = logging.getLogger(__name__)

# "BM", file size, two reserved words, offset of the pixel data.
_FILE_HEADER = struct.Struct("<2sIHHI")
# size, width, height, planes, bit count, compression, image size,
# x/y pixels per metre, colours used, colours important.
_IMAGE_HEADER = struct.Struct("<IiiHHIIIIII")


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


def bmp_save(mem: Sequence, info: StreamInfo, filename: str) -> None:
    """Save the first plane of an RGB888 frame to a BMP file ("-" for stdout)."""
    if info.pixel_format is not PixelFormat.RGB888:
        raise ValueError("pixel format for bmp should be RGB")

    data = memoryview(mem[0]).cast("B")
    line = info.width * 3
    pitch = (line + 3) & ~3  # rows are padded to multiples of 4 bytes
    padding = bytes(pitch - line)
    offset = _FILE_HEADER.size + _IMAGE_HEADER.size
    filesize = offset + info.height * pitch

    with _open_output(filename) as fp:
        try:
            fp.write(_FILE_HEADER.pack(b"BM", filesize, 0, 0, offset))
            # A negative height makes the image come out the right way up.
            fp.write(_IMAGE_HEADER.pack(
                _IMAGE_HEADER.size, info.width, -info.height, 1, 24, 0, 0, 100000, 100000, 0, 0
            ))
        except OSError as exc:
            raise RuntimeError("failed to write BMP file") from exc
        for row in range(info.height):
            start = row * info.stride
            try:
                fp.write(data[start:start + line])
                if padding:
                    fp.write(padding)
            except OSError as exc:
                raise RuntimeError(f"failed to write BMP file, row {row}") from exc

    _log.debug("Wrote %d bytes to BMP file", filesize)