"""Keep the most recent frames in a ring buffer and write them out on close."""

from __future__ import annotations

import logging
import struct
import sys

from .output import Flag, Output, OutputOptions

_log = logging.getLogger(__name__)

# Frames are aligned within the buffer on this boundary (a power of 2).
_ALIGN = 16
# length, keyframe, timestamp: laid out as a 16-byte record.
_HEADER = struct.Struct("<I?3xq")


def _aligned(length: int) -> int:
    return (length + _ALIGN - 1) & ~(_ALIGN - 1)


class CircularBuffer:
    """A fixed-size byte ring with separate read and write positions."""

    def __init__(self, size: int):
        self._size = size
        self._buf = bytearray(size)
        self._rptr = 0
        self._wptr = 0

    def empty(self) -> bool:
        return self._rptr == self._wptr

    def available(self) -> int:
        if self._wptr == self._rptr:
            return self._size - 1
        return (self._size - self._wptr + self._rptr) % self._size - 1

    def skip(self, n: int) -> None:
        self._rptr = (self._rptr + n) % self._size

    def read(self, n: int) -> bytes:
        """Remove and return the next n bytes."""
        parts = []
        if self._rptr + n >= self._size:
            parts.append(bytes(self._buf[self._rptr:]))
            n -= self._size - self._rptr
            self._rptr = 0
        parts.append(bytes(self._buf[self._rptr:self._rptr + n]))
        self._rptr += n
        return b"".join(parts)

    def pad(self, n: int) -> None:
        self._wptr = (self._wptr + n) % self._size

    def write(self, data) -> None:
        view = memoryview(data).cast("B")
        n = len(view)
        if n >= self._size:
            raise ValueError("data larger than circular buffer")
        if self._wptr + n >= self._size:
            first = self._size - self._wptr
            self._buf[self._wptr:] = view[:first]
            view = view[first:]
            n -= first
            self._wptr = 0
        self._buf[self._wptr:self._wptr + n] = view
        self._wptr += n


class CircularOutput(Output):
    """Buffer frames in memory (options.circular megabytes) and save them on close."""

    def __init__(self, options: OutputOptions):
        super().__init__(options)
        self._cb = CircularBuffer(options.circular << 20)
        self._owns_fp = False
        try:
            if options.output == "-":
                self._fp = sys.stdout.buffer
            elif options.output:
                self._fp = open(options.output, "wb")
                self._owns_fp = True
            else:
                raise RuntimeError("could not open output file")
        except OSError as exc:
            super().close()
            raise RuntimeError("could not open output file") from exc
        except RuntimeError:
            super().close()
            raise

    def output_buffer(self, data, timestamp_us: int, flags: Flag) -> None:
        size = len(memoryview(data).cast("B"))
        pad = (_ALIGN - size) & (_ALIGN - 1)
        # Drop the oldest frames until the new one fits.
        while size + pad + _HEADER.size > self._cb.available():
            if self._cb.empty():
                raise RuntimeError("circular buffer too small")
            length, _, _ = _HEADER.unpack(self._cb.read(_HEADER.size))
            self._cb.skip(_aligned(length))
        self._cb.write(_HEADER.pack(size, bool(flags & Flag.KEYFRAME), timestamp_us))
        self._cb.write(data)
        self._cb.pad(pad)

    def timestamp_ready(self, timestamp: int) -> None:
        """Timestamps are only written when the buffer is saved."""

    def close(self) -> None:
        """Write the buffered frames, starting at the first keyframe."""
        if self._closed:
            return
        total = frames = 0
        seen_keyframe = False
        while not self._cb.empty():
            length, keyframe, timestamp = _HEADER.unpack(self._cb.read(_HEADER.size))
            seen_keyframe |= keyframe
            if seen_keyframe:
                self._fp.write(self._cb.read(length))
                self._cb.skip((_ALIGN - length) & (_ALIGN - 1))
                total += length
                if self._timestamps:
                    Output.timestamp_ready(self, timestamp)
                frames += 1
            else:
                self._cb.skip(_aligned(length))
        if self._owns_fp:
            self._fp.close()
        else:
            self._fp.flush()
        _log.info("Wrote %d bytes (%d frames)", total, frames)
        super().close()