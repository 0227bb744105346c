"""Write a BGR888 frame as a PNG file."""

from __future__ import annotations

import logging
import sys
from typing import Sequence

from PIL import Image

from .formats import PixelFormat, StreamInfo

_log = logging.getLogger(__name__)


def png_save(mem: Sequence, info: StreamInfo, filename: str) -> None:
    """Save the first plane of a BGR888 frame as an 8-bit RGB PNG ("-" for stdout)."""
    if info.pixel_format is not PixelFormat.BGR888:
        raise ValueError("pixel format for png should be BGR")

    data = bytes(memoryview(mem[0]).cast("B"))
    image = Image.frombuffer("RGB", (info.width, info.height), data, "raw", "RGB", info.stride, 1)
    # Fast compression still gets most of the benefit.
    if filename == "-":
        image.save(sys.stdout.buffer, format="PNG", compress_level=1)
        sys.stdout.buffer.flush()
        return
    try:
        with open(filename, "wb") as fp:
            image.save(fp, format="PNG", compress_level=1)
            size = fp.tell()
    except OSError as exc:
        raise RuntimeError("failed to open file " + filename) from exc
    _log.debug("Wrote PNG file of %d bytes", size)