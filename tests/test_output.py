import io
import json

import pytest

from frameout.output import (
    Output,
    OutputOptions,
    start_metadata_output,
    stop_metadata_output,
    write_metadata,
)


def _pts_lines(path):
    return path.read_text().splitlines()[1:]


def test_timestamp_file_header(tmp_path):
    pts = tmp_path / "pts.txt"
    with Output(OutputOptions(save_pts=str(pts))):
        pass
    assert pts.read_text() == "# timecode format v2\n"


def test_frames_before_first_keyframe_are_dropped(tmp_path):
    pts = tmp_path / "pts.txt"
    with Output(OutputOptions(save_pts=str(pts))) as out:
        out.output_ready(b"a", 1_000, False)
        out.output_ready(b"b", 5_000, True)
        out.output_ready(b"c", 7_500, False)
    assert _pts_lines(pts) == ["0.000", "2.500"]


def test_timestamp_millisecond_format(tmp_path):
    pts = tmp_path / "pts.txt"
    with Output(OutputOptions(save_pts=str(pts))) as out:
        out.output_ready(b"a", 0, True)
        out.output_ready(b"b", 1_234_567, False)
    assert _pts_lines(pts)[1] == "1234.567"


def test_paused_output_waits_for_signal_and_keyframe(tmp_path):
    pts = tmp_path / "pts.txt"
    with Output(OutputOptions(save_pts=str(pts), pause=True)) as out:
        out.output_ready(b"a", 0, True)
        out.signal()
        out.output_ready(b"b", 100, False)
        out.output_ready(b"c", 200, True)
    assert len(_pts_lines(pts)) == 1


def test_timestamps_continuous_after_pause(tmp_path):
    pts = tmp_path / "pts.txt"
    with Output(OutputOptions(save_pts=str(pts))) as out:
        out.output_ready(b"a", 1_000_000, True)
        out.output_ready(b"b", 2_000_000, False)
        out.signal()
        out.output_ready(b"c", 3_000_000, True)
        out.signal()
        out.output_ready(b"d", 9_000_000, False)
        out.output_ready(b"e", 9_500_000, True)
    lines = _pts_lines(pts)
    assert len(lines) == 3
    assert lines[1] == lines[2]


def test_metadata_json_round_trip(tmp_path):
    meta = tmp_path / "meta.json"
    first = {"ExposureTime": 100, "AnalogueGain": 2}
    second = {"ExposureTime": 200, "Lux": 3}
    with Output(OutputOptions(metadata=str(meta), metadata_format="json")) as out:
        out.metadata_ready(first)
        out.output_ready(b"a", 0, True)
        out.metadata_ready(second)
        out.output_ready(b"b", 10, False)
    assert json.loads(meta.read_text()) == [first, second]


def test_metadata_txt_format(tmp_path):
    meta = tmp_path / "meta.txt"
    with Output(OutputOptions(metadata=str(meta), metadata_format="txt")) as out:
        out.metadata_ready({"ExposureTime": 100, "AnalogueGain": 2})
        out.output_ready(b"a", 0, True)
    assert meta.read_text() == "ExposureTime=100\nAnalogueGain=2\n\n"


def test_write_metadata_quotes_values_with_slash():
    buf = io.StringIO()
    write_metadata(buf, "json", {"FrameDuration": "1/30", "Gains": [1, 2], "Locked": True}, True)
    assert json.loads(buf.getvalue()) == {"FrameDuration": "1/30", "Gains": [1, 2], "Locked": True}


def test_write_metadata_separates_later_objects():
    buf = io.StringIO()
    write_metadata(buf, "json", {"Lux": 5}, False)
    assert buf.getvalue().startswith(",\n")


def test_start_and_stop_metadata_output():
    buf = io.StringIO()
    start_metadata_output(buf, "json")
    stop_metadata_output(buf, "json")
    assert buf.getvalue() == "[\n\n]\n"
    txt = io.StringIO()
    start_metadata_output(txt, "txt")
    stop_metadata_output(txt, "txt")
    assert txt.getvalue() == ""


def test_bad_timestamp_path_raises(tmp_path):
    with pytest.raises(RuntimeError, match="Failed to open timestamp file"):
        Output(OutputOptions(save_pts=str(tmp_path / "missing" / "pts.txt")))


def test_close_is_idempotent(tmp_path):
    meta = tmp_path / "meta.json"
    out = Output(OutputOptions(metadata=str(meta)))
    out.close()
    out.close()
    assert json.loads(meta.read_text()) == []