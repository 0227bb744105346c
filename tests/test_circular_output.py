import pytest

from frameout.circular_output import CircularBuffer, CircularOutput
from frameout.output import Flag, OutputOptions


def test_new_buffer_is_empty():
    size = 32
    cb = CircularBuffer(size)
    assert cb.empty()
    assert cb.available() == size - 1


def test_write_reduces_available_space():
    size = 32
    cb = CircularBuffer(size)
    cb.write(b"abcd")
    assert not cb.empty()
    assert cb.available() == size - 1 - 4


def test_round_trip_with_wraparound():
    cb = CircularBuffer(10)
    cb.write(b"abcdef")
    assert cb.read(6) == b"abcdef"
    cb.write(b"ghijklm")
    assert cb.read(7) == b"ghijklm"
    assert cb.empty()


def test_skip_discards_bytes():
    cb = CircularBuffer(16)
    cb.write(b"abcdef")
    cb.skip(2)
    assert cb.read(4) == b"cdef"
    assert cb.empty()


def test_pad_advances_write_position():
    size = 16
    cb = CircularBuffer(size)
    cb.pad(3)
    assert not cb.empty()
    assert cb.available() == size - 1 - 3


def test_write_larger_than_buffer_rejected():
    cb = CircularBuffer(8)
    with pytest.raises(ValueError):
        cb.write(b"0123456789")


def test_saves_from_first_keyframe(tmp_path):
    path = tmp_path / "out.h264"
    out = CircularOutput(OutputOptions(output=str(path), circular=1))
    out.output_buffer(b"aaa", 0, Flag.NONE)
    out.output_buffer(b"bbbb", 1, Flag.KEYFRAME)
    out.output_buffer(b"cc", 2, Flag.NONE)
    out.close()
    assert path.read_bytes() == b"bbbbcc"


def test_nothing_saved_without_keyframe(tmp_path):
    path = tmp_path / "out.h264"
    with CircularOutput(OutputOptions(output=str(path), circular=1)) as out:
        out.output_buffer(b"aaa", 0, Flag.NONE)
        out.output_buffer(b"bbb", 1, Flag.NONE)
    assert path.read_bytes() == b""


def test_oldest_frames_dropped_when_full(tmp_path):
    path = tmp_path / "out.h264"
    frame_size = 300_000
    frames = [bytes([i + 1]) * frame_size for i in range(6)]
    with CircularOutput(OutputOptions(output=str(path), circular=1)) as out:
        for i, frame in enumerate(frames):
            out.output_ready(frame, i * 1000, True)
    content = path.read_bytes()
    kept = len(content) // frame_size
    assert len(content) % frame_size == 0
    assert 0 < kept < len(frames)
    assert content == b"".join(frames[-kept:])


def test_frame_too_large_for_buffer(tmp_path):
    out = CircularOutput(OutputOptions(output=str(tmp_path / "out.h264"), circular=1))
    with pytest.raises(RuntimeError, match="circular buffer too small"):
        out.output_buffer(b"\0" * (2 << 20), 0, Flag.KEYFRAME)
    out.close()


def test_timestamps_written_on_close(tmp_path):
    pts = tmp_path / "pts.txt"
    opts = OutputOptions(output=str(tmp_path / "out.h264"), circular=1, save_pts=str(pts))
    with CircularOutput(opts) as out:
        out.output_ready(b"a", 0, True)
        out.output_ready(b"b", 1000, False)
        out.output_ready(b"c", 2000, False)
    lines = pts.read_text().splitlines()
    assert lines[0] == "# timecode format v2"
    assert len(lines) == 4
    assert lines[1] == "0.000"


def test_missing_output_raises():
    with pytest.raises(RuntimeError, match="could not open output file"):
        CircularOutput(OutputOptions(circular=1))