import socket

from frameout.circular_output import CircularOutput
from frameout.factory import create_output
from frameout.file_output import FileOutput
from frameout.net_output import NetOutput, parse_network_address
from frameout.output import OutputOptions


def test_libav_codec_gets_plain_output(tmp_path):
    path = tmp_path / "out.mp4"
    with create_output(OutputOptions(codec="libav", output=str(path))) as out:
        out.output_ready(b"frame", 0, True)
    assert not isinstance(out, FileOutput)
    assert not path.exists()


def test_file_output_selected(tmp_path):
    path = tmp_path / "out.h264"
    with create_output(OutputOptions(output=str(path))) as out:
        out.output_ready(b"frame", 0, True)
    assert isinstance(out, FileOutput)
    assert path.read_bytes() == b"frame"


def test_circular_output_selected(tmp_path):
    path = tmp_path / "out.h264"
    out = create_output(OutputOptions(output=str(path), circular=1))
    out.output_ready(b"frame", 0, True)
    assert path.read_bytes() == b""
    out.close()
    assert isinstance(out, CircularOutput)
    assert path.read_bytes() == b"frame"


def test_udp_output_selected():
    payload = b"packet"
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as receiver:
        receiver.bind(("127.0.0.1", 0))
        receiver.settimeout(5)
        port = receiver.getsockname()[1]
        url = f"udp://127.0.0.1:{port}"
        with create_output(OutputOptions(output=url, circular=1)) as out:
            out.output_ready(payload, 0, True)
        data, _ = receiver.recvfrom(1024)
    assert type(out) is NetOutput
    assert parse_network_address(url) == ("udp", "127.0.0.1", port)
    assert data == payload


def test_no_output_still_records_timestamps(tmp_path):
    pts = tmp_path / "pts.txt"
    with create_output(OutputOptions(save_pts=str(pts))) as out:
        out.output_ready(b"a", 0, True)
        out.output_ready(b"b", 1000, False)
    assert not isinstance(out, (FileOutput, CircularOutput, NetOutput))
    assert len(pts.read_text().splitlines()) == 3