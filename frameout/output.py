"""Base video output: keyframe gating, pause handling, timestamps and metadata."""

from __future__ import annotations

import enum
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Mapping, Optional, TextIO


class Flag(enum.IntFlag):
    """Flags passed with every buffer handed to an output."""

    NONE = 0
    KEYFRAME = 1
    RESTART = 2


class _State(enum.Enum):
    DISABLED = 0
    WAITING_KEYFRAME = 1
    RUNNING = 2


@dataclass
class OutputOptions:
    """Settings that control where and how encoded video is written."""

    output: str = ""
    codec: str = "h264"
    save_pts: str = ""
    metadata: str = ""
    metadata_format: str = "json"
    pause: bool = False
    flush: bool = False
    circular: int = 0
    segment: int = 0
    split: bool = False
    wrap: int = 0
    listen: bool = False


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "[ " + ", ".join(_format_value(v) for v in value) + " ]"
    return str(value)


def start_metadata_output(stream: TextIO, fmt: str) -> None:
    """Write whatever opens a metadata document in the given format."""
    if fmt == "json":
        stream.write("[\n")
        stream.flush()


def write_metadata(stream: TextIO, fmt: str, metadata: Mapping[str, Any], first_write: bool) -> None:
    """Write one frame's metadata as "txt" or as a JSON object."""
    if fmt == "txt":
        for name, value in metadata.items():
            stream.write(f"{name}={_format_value(value)}\n")
        stream.write("\n")
    else:
        if not first_write:
            stream.write(",\n")
        stream.write("{")
        first_done = False
        for name, value in metadata.items():
            text = _format_value(value)
            quote = '"' if "/" in text else ""
            stream.write(("," if first_done else "") + "\n" + f'    "{name}": {quote}{text}{quote}')
            first_done = True
        stream.write("\n}")
    stream.flush()


def stop_metadata_output(stream: TextIO, fmt: str) -> None:
    """Write whatever closes a metadata document in the given format."""
    if fmt == "json":
        stream.write("\n]\n")
        stream.flush()


def _trunc_divmod(value: int, divisor: int) -> tuple[int, int]:
    quotient = abs(value) // divisor
    if value < 0:
        quotient = -quotient
    return quotient, value - quotient * divisor


class Output:
    """An output that accepts encoded buffers; this base class stores none."""

    def __init__(self, options: OutputOptions):
        self.options = options
        self._closed = False
        self._timestamps: Optional[TextIO] = None
        self._metadata_stream: TextIO = sys.stdout
        self._metadata_file: Optional[TextIO] = None
        self._metadata_started = False
        self._metadata_queue: deque = deque()
        self._state = _State.WAITING_KEYFRAME
        self._time_offset = 0
        self._last_timestamp = 0

        if options.save_pts:
            try:
                self._timestamps = open(options.save_pts, "w")
            except OSError as exc:
                raise RuntimeError("Failed to open timestamp file " + options.save_pts) from exc
            self._timestamps.write("# timecode format v2\n")
        if options.metadata and options.metadata != "-":
            try:
                self._metadata_file = open(options.metadata, "w")
            except OSError:
                if self._timestamps:
                    self._timestamps.close()
                raise
            self._metadata_stream = self._metadata_file
            start_metadata_output(self._metadata_stream, options.metadata_format)

        self._enabled = not options.pause

    def signal(self) -> None:
        """Toggle between recording and paused."""
        self._enabled = not self._enabled

    def output_ready(self, data, timestamp_us: int, keyframe: bool) -> None:
        """Accept an encoded buffer, waiting for a keyframe after a pause."""
        flags = Flag.KEYFRAME if keyframe else Flag.NONE
        if not self._enabled:
            self._state = _State.DISABLED
        elif self._state is _State.DISABLED:
            self._state = _State.WAITING_KEYFRAME
        if self._state is _State.WAITING_KEYFRAME and keyframe:
            self._state = _State.RUNNING
            flags |= Flag.RESTART
        if self._state is not _State.RUNNING:
            return

        # Keep timestamps continuous across pauses.
        if flags & Flag.RESTART:
            self._time_offset = timestamp_us - self._last_timestamp
        self._last_timestamp = timestamp_us - self._time_offset

        self.output_buffer(data, self._last_timestamp, flags)

        if self._timestamps:
            self.timestamp_ready(self._last_timestamp)

        if self.options.metadata and self._metadata_queue:
            metadata = self._metadata_queue.popleft()
            write_metadata(
                self._metadata_stream,
                self.options.metadata_format,
                metadata,
                not self._metadata_started,
            )
            self._metadata_started = True

    def metadata_ready(self, metadata: Mapping[str, Any]) -> None:
        """Queue the metadata belonging to the next buffer."""
        if not self.options.metadata:
            return
        self._metadata_queue.append(metadata)

    def output_buffer(self, data, timestamp_us: int, flags: Flag) -> None:
        """Write one buffer; the base output discards it."""

    def timestamp_ready(self, timestamp: int) -> None:
        """Append a timestamp, in milliseconds, to the timestamp file."""
        millis, micros = _trunc_divmod(timestamp, 1000)
        self._timestamps.write(f"{millis}.{micros:03d}\n")
        if self.options.flush:
            self._timestamps.flush()

    def close(self) -> None:
        """Finish the timestamp and metadata files."""
        if self._closed:
            return
        self._closed = True
        if self._timestamps:
            self._timestamps.close()
        if self.options.metadata:
            stop_metadata_output(self._metadata_stream, self.options.metadata_format)
            if self._metadata_file:
                self._metadata_file.close()

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()