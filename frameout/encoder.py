"""Threaded video encoders that hand finished buffers to a callback."""

from __future__ import annotations

import abc
import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Dict, Optional, Tuple

from .formats import PixelFormat, StreamInfo
from .jpeg import yuv_to_jpeg

_log = logging.getLogger(__name__)

InputDoneCallback = Callable[[], None]
OutputReadyCallback = Callable[[Any, int, bool], None]

# How long a worker waits before re-checking whether it should stop.
_POLL_SECONDS = 0.2


class Encoder(abc.ABC):
    """Base encoder.

    ``input_done_callback`` is called once the encoder has finished with an input
    buffer; ``output_ready_callback(data, timestamp_us, keyframe)`` receives each
    encoded buffer. Either may be left as ``None``. Both run on the encoder's own
    threads. An exception raised by a worker or a callback is re-raised by
    :meth:`close`.
    """

    def __init__(self):
        self.input_done_callback: Optional[InputDoneCallback] = None
        self.output_ready_callback: Optional[OutputReadyCallback] = None
        self._closed = False
        self._error: Optional[BaseException] = None
        self._error_lock = threading.Lock()

    @abc.abstractmethod
    def encode_buffer(self, mem, info: StreamInfo, timestamp_us: int) -> None:
        """Queue one frame for encoding."""

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("encoder is closed")

    def _record_error(self, exc: BaseException) -> None:
        with self._error_lock:
            if self._error is None:
                self._error = exc

    def _raise_pending_error(self) -> None:
        with self._error_lock:
            error, self._error = self._error, None
        if error is not None:
            raise error

    def _deliver(self, data: Any, timestamp_us: int, keyframe: bool) -> None:
        callback = self.output_ready_callback
        if callback is None:
            return
        try:
            callback(data, timestamp_us, keyframe)
        except Exception as exc:  # raised again by close()
            self._record_error(exc)

    def _input_done(self) -> None:
        callback = self.input_done_callback
        if callback is None:
            return
        try:
            callback()
        except Exception as exc:  # raised again by close()
            self._record_error(exc)

    def close(self) -> None:
        """Stop the encoder once every queued frame has been delivered."""
        self._closed = True
        self._raise_pending_error()

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()


class NullEncoder(Encoder):
    """Passes every buffer straight through, unencoded, as a keyframe."""

    def __init__(self):
        super().__init__()
        self._queue: deque = deque()
        self._cond = threading.Condition()
        self._abort = False
        _log.debug("Opened NullEncoder")
        self._thread = threading.Thread(target=self._output_thread, name="null-output", daemon=True)
        self._thread.start()

    def encode_buffer(self, mem, info: StreamInfo, timestamp_us: int) -> None:
        self._check_open()
        with self._cond:
            self._queue.append((mem, timestamp_us))
            self._cond.notify()

    def _output_thread(self) -> None:
        while True:
            with self._cond:
                while not self._queue:
                    if self._abort:
                        return
                    self._cond.wait(_POLL_SECONDS)
                mem, timestamp_us = self._queue.popleft()
            self._deliver(mem, timestamp_us, True)
            self._input_done()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._cond:
            self._abort = True
            self._cond.notify_all()
        self._thread.join()
        _log.debug("NullEncoder closed")
        self._raise_pending_error()


class MjpegEncoder(Encoder):
    """Encodes YUV420 frames as JPEGs on several threads, delivering them in order."""

    NUM_ENC_THREADS = 4

    def __init__(self, quality: int = 93):
        super().__init__()
        self.quality = quality
        self._encode_queue: deque = deque()
        self._encode_cond = threading.Condition()
        self._abort_encode = False
        self._next_index = 0
        self._results: Dict[int, Tuple[Optional[bytes], int]] = {}
        self._output_cond = threading.Condition()
        self._abort_output = False

        self._output_thread = threading.Thread(target=self._output_loop, name="mjpeg-output", daemon=True)
        self._output_thread.start()
        self._encode_threads = [
            threading.Thread(target=self._encode_loop, name=f"mjpeg-encode-{num}", daemon=True)
            for num in range(self.NUM_ENC_THREADS)
        ]
        for thread in self._encode_threads:
            thread.start()
        _log.debug("Opened MjpegEncoder")

    def encode_buffer(self, mem, info: StreamInfo, timestamp_us: int) -> None:
        self._check_open()
        if info.pixel_format is not PixelFormat.YUV420:
            raise ValueError("MJPEG encoding needs YUV420 input")
        with self._encode_cond:
            self._encode_queue.append((mem, info, timestamp_us, self._next_index))
            self._next_index += 1
            self._encode_cond.notify_all()

    def _encode_loop(self) -> None:
        frames = 0
        encode_time = 0.0
        while True:
            with self._encode_cond:
                while not self._encode_queue:
                    if self._abort_encode:
                        if frames:
                            _log.debug("Encode %d frames, average time %gms",
                                       frames, encode_time * 1000 / frames)
                        return
                    self._encode_cond.wait(_POLL_SECONDS)
                mem, info, timestamp_us, index = self._encode_queue.popleft()

            start = time.perf_counter()
            try:
                jpeg: Optional[bytes] = yuv_to_jpeg(mem, info, info.width, info.height, self.quality, 0)
            except Exception as exc:
                self._record_error(exc)
                jpeg = None
            encode_time += time.perf_counter() - start
            frames += 1

            with self._output_cond:
                self._results[index] = (jpeg, timestamp_us)
                self._output_cond.notify_all()

    def _output_loop(self) -> None:
        index = 0
        while True:
            with self._output_cond:
                # Wait for whichever thread encodes the next frame in sequence.
                while index not in self._results:
                    if self._abort_output and not self._results:
                        return
                    self._output_cond.wait(_POLL_SECONDS)
                jpeg, timestamp_us = self._results.pop(index)
            index += 1
            self._input_done()
            if jpeg is not None:
                self._deliver(jpeg, timestamp_us, True)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._encode_cond:
            self._abort_encode = True
            self._encode_cond.notify_all()
        for thread in self._encode_threads:
            thread.join()
        with self._output_cond:
            self._abort_output = True
            self._output_cond.notify_all()
        self._output_thread.join()
        _log.debug("MjpegEncoder closed")
        self._raise_pending_error()


def create_encoder(codec: str, quality: int = 93) -> Encoder:
    """Return the encoder for a codec name, matched without regard to case."""
    name = codec.lower()
    if name == "yuv420":
        return NullEncoder()
    if name == "mjpeg":
        return MjpegEncoder(quality)
    raise ValueError("Unrecognised codec " + codec)