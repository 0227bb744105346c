"""Write encoded video to a file, optionally split into numbered segments."""

from __future__ import annotations

import logging
import sys
from typing import BinaryIO, Optional

from .output import Flag, Output, OutputOptions

_log = logging.getLogger(__name__)

_MAX_FILENAME = 255


def _trunc_div(value: int, divisor: int) -> int:
    quotient = abs(value) // divisor
    return -quotient if value < 0 else quotient


def _format_filename(pattern: str, count: int) -> str:
    try:
        name = pattern % count
    except TypeError:
        try:
            name = pattern % ()
        except (TypeError, ValueError):
            name = pattern
    except ValueError as exc:
        raise RuntimeError("failed to generate filename") from exc
    return name[:_MAX_FILENAME]


class FileOutput(Output):
    """Output that writes buffers to a file named by a printf-style pattern."""

    def __init__(self, options: OutputOptions):
        super().__init__(options)
        self._fp: Optional[BinaryIO] = None
        self._owns_fp = False
        self._count = 0
        self._file_start_time_ms = 0

    def output_buffer(self, data, timestamp_us: int, flags: Flag) -> None:
        options = self.options
        # A new file starts when none is open, when a segment is full (at the next
        # keyframe), or when recording restarts in split mode.
        if (
            self._fp is None
            or (
                options.segment
                and flags & Flag.KEYFRAME
                and _trunc_div(timestamp_us, 1000) - self._file_start_time_ms > options.segment
            )
            or (options.split and flags & Flag.RESTART)
        ):
            self._close_file()
            self._open_file(timestamp_us)

        _log.debug("FileOutput: output buffer size %d", len(data))
        if self._fp is not None and len(data):
            try:
                self._fp.write(data)
                if options.flush:
                    self._fp.flush()
            except OSError as exc:
                raise RuntimeError("failed to write output bytes") from exc

    def _open_file(self, timestamp_us: int) -> None:
        options = self.options
        if options.output == "-":
            self._fp = sys.stdout.buffer
            self._owns_fp = False
        elif options.output:
            filename = _format_filename(options.output, self._count)
            self._count += 1
            if options.wrap:
                self._count %= options.wrap
            try:
                self._fp = open(filename, "wb")
            except OSError as exc:
                raise RuntimeError("failed to open output file " + filename) from exc
            self._owns_fp = True
            _log.debug("FileOutput: opened output file %s", filename)
            self._file_start_time_ms = _trunc_div(timestamp_us, 1000)

    def _close_file(self) -> None:
        if self._fp is not None:
            if self._owns_fp:
                self._fp.close()
            else:
                self._fp.flush()
        self._fp = None

    def close(self) -> None:
        """Close the current file and finish the base output."""
        if self._closed:
            return
        self._close_file()
        super().close()