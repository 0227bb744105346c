"""Pixel formats and stream geometry shared by the image writers and outputs."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class PixelFormat(str, enum.Enum):
    """Pixel layouts a camera stream can deliver."""

    RGB888 = "RGB888"
    BGR888 = "BGR888"
    YUV420 = "YUV420"
    YUYV = "YUYV"
    SRGGB10_CSI2P = "SRGGB10_CSI2P"
    SGRBG10_CSI2P = "SGRBG10_CSI2P"
    SBGGR10_CSI2P = "SBGGR10_CSI2P"
    SGBRG10_CSI2P = "SGBRG10_CSI2P"
    SRGGB12_CSI2P = "SRGGB12_CSI2P"
    SGRBG12_CSI2P = "SGRBG12_CSI2P"
    SBGGR12_CSI2P = "SBGGR12_CSI2P"
    SGBRG12_CSI2P = "SGBRG12_CSI2P"

    @property
    def is_bayer(self) -> bool:
        """True for packed raw Bayer formats."""
        return self.name.startswith("S") and self.name.endswith("_CSI2P")


@dataclass(frozen=True)
class StreamInfo:
    """Geometry and format of the frames in a stream."""

    width: int
    height: int
    stride: int
    pixel_format: PixelFormat
    colour_space: Optional[str] = None