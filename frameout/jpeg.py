"""Encode YUV frames as JPEG files carrying EXIF data and an optional thumbnail."""

from __future__ import annotations

import io
import logging
import re
import struct
import sys
import time
from dataclasses import dataclass, field
from operator import itemgetter
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from PIL import Image

from .formats import PixelFormat, StreamInfo

_log = logging.getLogger(__name__)

# The APP1 marker that opens the file, directly after the start-of-image marker.
_EXIF_HEADER = b"\xff\xd8\xff\xe1"
_EXIF_PREFIX = b"Exif\x00\x00"
# Thumbnails are shrunk until they are this small, so the EXIF block stays under 64K.
_MAX_THUMB_LEN = 60000

# EXIF/TIFF field formats.
_BYTE, _ASCII, _SHORT, _LONG, _RATIONAL = 1, 2, 3, 4, 5
_SBYTE, _UNDEFINED, _SSHORT, _SLONG, _SRATIONAL = 6, 7, 8, 9, 10

_FORMAT_SIZE = {
    _BYTE: 1, _ASCII: 1, _SHORT: 2, _LONG: 4, _RATIONAL: 8,
    _SBYTE: 1, _UNDEFINED: 1, _SSHORT: 2, _SLONG: 4, _SRATIONAL: 8,
}

_IFD_NAMES = ("IFD0", "EXIF", "GPS", "EINT", "IFD1")

_EXIF_POINTER = 0x8769
_GPS_POINTER = 0x8825
_INTEROP_POINTER = 0xA005

# Tag name -> (tag id, default format, default component count; 0 means variable).
_TAGS: Dict[str, tuple] = {
    "ImageWidth": (0x0100, _LONG, 1),
    "ImageLength": (0x0101, _LONG, 1),
    "BitsPerSample": (0x0102, _SHORT, 3),
    "Compression": (0x0103, _SHORT, 1),
    "PhotometricInterpretation": (0x0106, _SHORT, 1),
    "ImageDescription": (0x010E, _ASCII, 0),
    "Make": (0x010F, _ASCII, 0),
    "Model": (0x0110, _ASCII, 0),
    "Orientation": (0x0112, _SHORT, 1),
    "SamplesPerPixel": (0x0115, _SHORT, 1),
    "XResolution": (0x011A, _RATIONAL, 1),
    "YResolution": (0x011B, _RATIONAL, 1),
    "PlanarConfiguration": (0x011C, _SHORT, 1),
    "ResolutionUnit": (0x0128, _SHORT, 1),
    "Software": (0x0131, _ASCII, 0),
    "DateTime": (0x0132, _ASCII, 0),
    "Artist": (0x013B, _ASCII, 0),
    "WhitePoint": (0x013E, _RATIONAL, 2),
    "PrimaryChromaticities": (0x013F, _RATIONAL, 6),
    "JPEGInterchangeFormat": (0x0201, _LONG, 1),
    "JPEGInterchangeFormatLength": (0x0202, _LONG, 1),
    "YCbCrCoefficients": (0x0211, _UNDEFINED, 0),
    "YCbCrSubSampling": (0x0212, _SHORT, 2),
    "YCbCrPositioning": (0x0213, _SHORT, 1),
    "ReferenceBlackWhite": (0x0214, _RATIONAL, 6),
    "Copyright": (0x8298, _ASCII, 0),
    "ExposureTime": (0x829A, _RATIONAL, 1),
    "FNumber": (0x829D, _RATIONAL, 1),
    "ExposureProgram": (0x8822, _SHORT, 1),
    "ISOSpeedRatings": (0x8827, _SHORT, 0),
    "ExifVersion": (0x9000, _UNDEFINED, 4),
    "DateTimeOriginal": (0x9003, _ASCII, 0),
    "DateTimeDigitized": (0x9004, _ASCII, 0),
    "ComponentsConfiguration": (0x9101, _UNDEFINED, 4),
    "ShutterSpeedValue": (0x9201, _SRATIONAL, 1),
    "ApertureValue": (0x9202, _RATIONAL, 1),
    "BrightnessValue": (0x9203, _SRATIONAL, 1),
    "ExposureBiasValue": (0x9204, _SRATIONAL, 1),
    "MaxApertureValue": (0x9205, _RATIONAL, 1),
    "SubjectDistance": (0x9206, _RATIONAL, 1),
    "MeteringMode": (0x9207, _SHORT, 1),
    "LightSource": (0x9208, _SHORT, 1),
    "Flash": (0x9209, _SHORT, 1),
    "FocalLength": (0x920A, _RATIONAL, 1),
    "SubjectArea": (0x9214, _SHORT, 0),
    "MakerNote": (0x927C, _UNDEFINED, 0),
    "UserComment": (0x9286, _UNDEFINED, 0),
    "FlashPixVersion": (0xA000, _UNDEFINED, 4),
    "ColorSpace": (0xA001, _SHORT, 1),
    "PixelXDimension": (0xA002, _LONG, 1),
    "PixelYDimension": (0xA003, _LONG, 1),
    "FileSource": (0xA300, _UNDEFINED, 1),
    "SceneType": (0xA301, _UNDEFINED, 1),
    "ExposureMode": (0xA402, _SHORT, 1),
    "WhiteBalance": (0xA403, _SHORT, 1),
    "DigitalZoomRatio": (0xA404, _RATIONAL, 1),
    "FocalLengthIn35mmFilm": (0xA405, _SHORT, 1),
    "SceneCaptureType": (0xA406, _SHORT, 1),
    "Contrast": (0xA408, _SHORT, 1),
    "Saturation": (0xA409, _SHORT, 1),
    "Sharpness": (0xA40A, _SHORT, 1),
    "ImageUniqueID": (0xA420, _ASCII, 0),
    "InteroperabilityIndex": (0x0001, _ASCII, 0),
    "GPSLatitudeRef": (0x0001, _ASCII, 0),
    "GPSLatitude": (0x0002, _RATIONAL, 3),
    "GPSLongitudeRef": (0x0003, _ASCII, 0),
    "GPSLongitude": (0x0004, _RATIONAL, 3),
    "GPSAltitudeRef": (0x0005, _BYTE, 1),
    "GPSAltitude": (0x0006, _RATIONAL, 1),
    "GPSTimeStamp": (0x0007, _RATIONAL, 3),
    "GPSMapDatum": (0x0012, _ASCII, 0),
    "GPSDateStamp": (0x001D, _ASCII, 0),
}

_TAGS_BY_ID = {}
for _name, _info in _TAGS.items():
    _TAGS_BY_ID.setdefault(_info[0], _info)

# Formats for tags whose usual format is "undefined" but which are really numeric.
_FORMAT_EXCEPTIONS = {0x0211: (_RATIONAL, 3)}

_SPEC = re.compile(r"([^.]{1,4})\.([^=]{1,127})=")
_NUMBER = re.compile(r"\s*([+-]?\d+)")


@dataclass
class JpegOptions:
    """Settings for JPEG stills: quality, restart interval, thumbnail and EXIF tags."""

    quality: int = 93
    restart: int = 0
    thumb_width: int = 320
    thumb_height: int = 240
    thumb_quality: int = 70
    exif: List[str] = field(default_factory=list)


@dataclass
class _Entry:
    format: int
    components: int
    data: bytes = b""


def _wrap(value: int, bits: int, signed: bool) -> int:
    mask = (1 << bits) - 1
    value &= mask
    if signed and value >> (bits - 1):
        value -= 1 << bits
    return value


def _scan_number(text: str, pos: int) -> Optional[tuple]:
    match = _NUMBER.match(text, pos)
    if not match:
        return None
    return int(match.group(1)), match.end()


def _integer_reader(code: str, bits: int, signed: bool, what: str) -> Callable:
    def read(text: str, pos: int) -> tuple:
        found = _scan_number(text, pos)
        if found is None:
            raise ValueError("failed to read EXIF " + what)
        value, end = found
        return struct.pack("<" + code, _wrap(value, bits, signed)), end - pos
    return read


def _rational_reader(code: str, signed: bool, what: str) -> Callable:
    def read(text: str, pos: int) -> tuple:
        first = _scan_number(text, pos)
        if first is None or first[1] >= len(text) or text[first[1]] != "/":
            raise ValueError("failed to read EXIF " + what)
        second = _scan_number(text, first[1] + 1)
        if second is None:
            raise ValueError("failed to read EXIF " + what)
        num = _wrap(first[0], 32, signed)
        denom = _wrap(second[0], 32, signed)
        return struct.pack("<" + code * 2, num, denom), second[1] - pos
    return read


_READERS = {
    _SHORT: _integer_reader("H", 16, False, "unsigned short"),
    _SSHORT: _integer_reader("h", 16, True, "signed short"),
    _LONG: _integer_reader("I", 32, False, "unsigned short"),
    _SLONG: _integer_reader("i", 32, True, "signed short"),
    _RATIONAL: _rational_reader("I", False, "unsigned rational"),
    _SRATIONAL: _rational_reader("i", True, "signed rational"),
}


class ExifBuilder:
    """Collects EXIF entries per IFD and serialises them as an APP1 payload."""

    def __init__(self):
        self._ifds: Dict[str, Dict[int, _Entry]] = {name: {} for name in _IFD_NAMES}

    @staticmethod
    def _tag_info(tag: Union[str, int]) -> tuple:
        if isinstance(tag, int):
            return _TAGS_BY_ID.get(tag, (tag, 0, 0))
        try:
            return _TAGS[tag]
        except KeyError:
            raise ValueError("unknown EXIF tag " + tag) from None

    def _create(self, ifd: str, tag: Union[str, int]) -> _Entry:
        if ifd not in self._ifds:
            raise ValueError("bad IFD name " + ifd)
        tag_id, fmt, components = self._tag_info(tag)
        entries = self._ifds[ifd]
        entry = entries.get(tag_id)
        if entry is None:
            size = _FORMAT_SIZE.get(fmt, 0) * components
            entry = _Entry(fmt, components, bytes(size))
            entries[tag_id] = entry
        return entry

    def set_string(self, ifd: str, tag: Union[str, int], value: str) -> None:
        """Store an ASCII value (without a terminating NUL)."""
        entry = self._create(ifd, tag)
        raw = value.encode("latin-1", "replace")
        entry.format = _ASCII
        entry.components = len(raw)
        entry.data = raw

    def set_short(self, ifd: str, tag: Union[str, int], value: int) -> None:
        entry = self._create(ifd, tag)
        entry.format, entry.components = _SHORT, 1
        entry.data = struct.pack("<H", int(value) & 0xFFFF)

    def set_long(self, ifd: str, tag: Union[str, int], value: int) -> None:
        entry = self._create(ifd, tag)
        entry.format, entry.components = _LONG, 1
        entry.data = struct.pack("<I", int(value) & 0xFFFFFFFF)

    def set_rational(self, ifd: str, tag: Union[str, int], numerator: int, denominator: int) -> None:
        entry = self._create(ifd, tag)
        entry.format, entry.components = _RATIONAL, 1
        entry.data = struct.pack("<II", int(numerator) & 0xFFFFFFFF, int(denominator) & 0xFFFFFFFF)

    def read_tag(self, spec: str) -> None:
        """Apply a tag given as "IFD.TagName=value[,value...]"."""
        match = _SPEC.match(spec)
        if not match:
            raise ValueError("failed to read EXIF IFD and tag")
        ifd_name, tag_name = match.group(1), match.group(2)
        if ifd_name not in self._ifds:
            raise ValueError("bad IFD name " + ifd_name)
        if tag_name not in _TAGS:
            _log.warning("no EXIF tag %s found - ignoring", tag_name)
            return
        consumed = match.end()

        entry = self._create(ifd_name, tag_name)
        if entry.format == 0:
            _log.warning("format for EXIF tag %s unknown - ignoring", tag_name)
            return
        if entry.format == _UNDEFINED:
            exception = _FORMAT_EXCEPTIONS.get(_TAGS[tag_name][0])
            if exception:
                entry.format, entry.components = exception
            else:
                _log.warning("libexif format for tag %s undefined - treating as ASCII", tag_name)
                entry.format = _ASCII

        if entry.format == _ASCII:
            self.set_string(ifd_name, tag_name, spec[consumed:])
            return
        reader = _READERS.get(entry.format)
        if reader is None:
            raise ValueError("unsupported format for EXIF tag " + tag_name)

        if entry.components == 0:
            entry.components = spec[consumed:].count(",") + 1
        values = []
        for _ in range(entry.components):
            if consumed >= len(spec):
                raise ValueError("too few parameters for EXIF tag " + tag_name)
            raw, used = reader(spec, consumed)
            values.append(raw)
            consumed += used + 1  # allow a comma
        entry.data = b"".join(values)

    def save(self) -> bytes:
        """Serialise as "Exif\\0\\0" followed by a little-endian TIFF structure."""
        ifd0 = dict(self._ifds["IFD0"])
        exif = dict(self._ifds["EXIF"])
        gps = dict(self._ifds["GPS"])
        interop = dict(self._ifds["EINT"])
        ifd1 = dict(self._ifds["IFD1"])
        placeholder = _Entry(_LONG, 1, bytes(4))
        if interop:
            exif[_INTEROP_POINTER] = placeholder
        if exif:
            ifd0[_EXIF_POINTER] = placeholder
        if gps:
            ifd0[_GPS_POINTER] = placeholder

        layout = [("IFD0", ifd0)]
        layout += [(name, entries) for name, entries in (("EXIF", exif), ("GPS", gps), ("EINT", interop))
                   if entries]
        if ifd1:
            layout.append(("IFD1", ifd1))

        offsets = {}
        position = 8
        for name, entries in layout:
            offsets[name] = position
            position += _ifd_size(entries)

        def pointer(name: str) -> _Entry:
            return _Entry(_LONG, 1, struct.pack("<I", offsets[name]))

        if interop:
            exif[_INTEROP_POINTER] = pointer("EINT")
        if exif:
            ifd0[_EXIF_POINTER] = pointer("EXIF")
        if gps:
            ifd0[_GPS_POINTER] = pointer("GPS")

        out = bytearray(b"II*\x00" + struct.pack("<I", 8))
        for name, entries in layout:
            following = offsets.get("IFD1", 0) if name == "IFD0" else 0
            out += _serialise_ifd(entries, offsets[name], following)
        return _EXIF_PREFIX + bytes(out)


def _padded(length: int) -> int:
    return length + (length & 1)


def _ifd_size(entries: Mapping[int, _Entry]) -> int:
    extra = sum(_padded(len(e.data)) for e in entries.values() if len(e.data) > 4)
    return 2 + 12 * len(entries) + 4 + extra


def _serialise_ifd(entries: Mapping[int, _Entry], offset: int, next_ifd: int) -> bytes:
    table = bytearray(struct.pack("<H", len(entries)))
    extra = bytearray()
    extra_at = offset + 2 + 12 * len(entries) + 4
    for tag in sorted(entries):
        entry = entries[tag]
        if len(entry.data) <= 4:
            value = entry.data.ljust(4, b"\x00")
        else:
            value = struct.pack("<I", extra_at + len(extra))
            extra += entry.data
            if len(extra) & 1:
                extra.append(0)
        table += struct.pack("<HHI", tag, entry.format, entry.components) + value
    table += struct.pack("<I", next_ifd)
    return bytes(table + extra)


def _picker(indices: Sequence[int]) -> Callable:
    if len(indices) == 1:
        only = indices[0]
        return lambda seq: (seq[only],)
    return itemgetter(*indices)


def _yuyv_image(data: bytes, info: StreamInfo, output_width: int, output_height: int) -> Image.Image:
    h_offset = []
    for i in range(output_width):
        off = (i * info.width) // output_width * 2
        aligned = off & ~3
        h_offset += (off, aligned + 1, aligned + 3)
    pick = _picker(h_offset)
    row_len = 2 * info.width
    out = bytearray()
    for row in range(output_height):
        offset = ((row * info.height) // output_height) * info.stride
        out += bytes(pick(data[offset:offset + row_len]))
    return Image.frombytes("YCbCr", (output_width, output_height), bytes(out))


def _yuv420_image(data: bytes, info: StreamInfo, output_width: int, output_height: int) -> Image.Image:
    width, height, stride = info.width, info.height, info.stride
    half_stride = stride // 2
    u_start = stride * height
    v_start = u_start + half_stride * (height // 2)
    xs = [(i * width) // output_width for i in range(output_width)]
    pick_y = _picker(xs)
    pick_c = _picker([x // 2 for x in xs])
    line = 3 * output_width
    out = bytearray(line * output_height)
    for row in range(output_height):
        offset = ((row * height) // output_height) * stride
        offset_uv = (((row // 2) * height) // output_height) * half_stride
        base = row * line
        out[base:base + line:3] = bytes(pick_y(data[offset:offset + width]))
        u = u_start + offset_uv
        v = v_start + offset_uv
        out[base + 1:base + line:3] = bytes(pick_c(data[u:u + width // 2]))
        out[base + 2:base + line:3] = bytes(pick_c(data[v:v + width // 2]))
    return Image.frombytes("YCbCr", (output_width, output_height), bytes(out))


def yuv_to_jpeg(data, info: StreamInfo, output_width: int, output_height: int,
                quality: int, restart: int) -> bytes:
    """Encode a YUYV or YUV420 frame, resized by nearest neighbour, as a JPEG."""
    raw = bytes(memoryview(data).cast("B"))
    if info.pixel_format is PixelFormat.YUYV:
        image = _yuyv_image(raw, info, output_width, output_height)
    elif info.pixel_format is PixelFormat.YUV420:
        image = _yuv420_image(raw, info, output_width, output_height)
    else:
        raise ValueError("unsupported YUV format in JPEG encode")
    params: Dict[str, Any] = {"quality": int(quality)}
    if restart:
        params["restart_marker_blocks"] = int(restart)
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", **params)
    return buffer.getvalue()


def _strip_leading_headers(jpeg: bytes) -> bytes:
    """Drop the start-of-image marker and any JFIF APP0 segment."""
    start = 2
    if jpeg[2:4] == b"\xff\xe0":
        start += 2 + int.from_bytes(jpeg[4:6], "big")
    return jpeg[start:]


def _create_exif_data(mem: Sequence, info: StreamInfo, metadata: Mapping[str, Any], cam_name: str,
                      options: JpegOptions) -> tuple:
    exif = ExifBuilder()
    exif.set_string("EXIF", "Make", "Raspberry Pi")
    exif.set_string("EXIF", "Model", cam_name)
    exif.set_string("EXIF", "Software", "libcamera-apps")
    now = time.strftime("%Y:%m:%d %H:%M:%S", time.localtime())
    for tag in ("DateTime", "DateTimeOriginal", "DateTimeDigitized"):
        exif.set_string("EXIF", tag, now)

    exposure_time = metadata.get("ExposureTime")
    if exposure_time is not None:
        _log.debug("Exposure time: %s", exposure_time)
        exif.set_rational("EXIF", "ExposureTime", int(exposure_time), 1000000)
    analogue_gain = metadata.get("AnalogueGain")
    if analogue_gain is not None:
        digital_gain = metadata.get("DigitalGain")
        gain = analogue_gain * (digital_gain if digital_gain is not None else 1.0)
        _log.debug("Ag %s Dg %s Total %s", analogue_gain, digital_gain, gain)
        exif.set_short("EXIF", "ISOSpeedRatings", int(100 * gain))

    for item in options.exif:
        _log.debug("Processing EXIF item: %s", item)
        exif.read_tag(item)

    thumbnail = b""
    if options.thumb_quality:
        _log.debug("Thumbnail dimensions are %d x %d", options.thumb_width, options.thumb_height)
        exif.set_short("IFD1", "ImageWidth", options.thumb_width)
        exif.set_short("IFD1", "ImageLength", options.thumb_height)
        exif.set_short("IFD1", "Compression", 6)
        exif.set_long("IFD1", "JPEGInterchangeFormat", 0)
        exif.set_long("IFD1", "JPEGInterchangeFormatLength", 0)
        exif_len = len(exif.save())

        quality = options.thumb_quality
        while quality > 0:
            thumbnail = yuv_to_jpeg(mem[0], info, options.thumb_width, options.thumb_height, quality, 0)
            if len(thumbnail) < _MAX_THUMB_LEN:
                break
            thumbnail = b""
            quality -= 5
        _log.debug("Thumbnail size %d", len(thumbnail))
        if quality <= 0:
            raise RuntimeError("failed to make acceptable thumbnail")

        # Offsets are relative to the TIFF header, which follows the "Exif\0\0" prefix.
        exif.set_long("IFD1", "JPEGInterchangeFormat", exif_len - len(_EXIF_PREFIX))
        exif.set_long("IFD1", "JPEGInterchangeFormatLength", len(thumbnail))

    return exif.save(), thumbnail


def jpeg_save(mem: Sequence, info: StreamInfo, metadata: Mapping[str, Any], filename: str,
              cam_name: str, options: JpegOptions) -> None:
    """Write a YUV frame as a JPEG with EXIF data and a thumbnail ("-" for stdout)."""
    if info.width & 1 or info.height & 1:
        raise ValueError("both width and height must be even")
    if len(mem) != 1:
        raise ValueError("only single plane YUV supported")

    exif_data, thumbnail = _create_exif_data(mem, info, metadata, cam_name, options)
    jpeg = yuv_to_jpeg(mem[0], info, info.width, info.height, options.quality, options.restart)
    _log.debug("JPEG size is %d", len(jpeg))
    _log.debug("EXIF data len %d", len(exif_data))

    segment_len = len(exif_data) + len(thumbnail) + 2
    payload = b"".join((
        _EXIF_HEADER,
        bytes(((segment_len >> 8) & 0xFF, segment_len & 0xFF)),
        exif_data,
        thumbnail,
        _strip_leading_headers(jpeg),
    ))

    if filename == "-":
        sys.stdout.buffer.write(payload)
        sys.stdout.buffer.flush()
        return
    try:
        fp = open(filename, "wb")
    except OSError as exc:
        raise RuntimeError("failed to open file " + filename) from exc
    with fp:
        try:
            fp.write(payload)
        except OSError as exc:
            raise RuntimeError("failed to write file - output probably corrupt") from exc