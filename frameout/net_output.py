"""Send encoded video over UDP or TCP."""

from __future__ import annotations

import logging
import re
import socket
from typing import Optional

from .output import Flag, Output, OutputOptions

_log = logging.getLogger(__name__)

# Largest payload a single UDP datagram will carry.
MAX_UDP_SIZE = 65507

_ADDRESS = re.compile(
    r"\s*(\S{3})://([+-]?\d+\.[+-]?\d+\.[+-]?\d+\.[+-]?\d+):\s*([+-]?\d+)"
)


def parse_network_address(url: str) -> tuple[str, str, int]:
    """Split "proto://a.b.c.d:port" into protocol, address and port."""
    match = _ADDRESS.match(url)
    if not match:
        raise ValueError("bad network address " + url)
    return match.group(1), match.group(2), int(match.group(3))


def _normalise_address(address: str) -> str:
    try:
        return socket.inet_ntoa(socket.inet_aton(address))
    except OSError as exc:
        raise RuntimeError("inet_aton failed for " + address) from exc


class NetOutput(Output):
    """Output that sends every buffer to a network peer."""

    def __init__(self, options: OutputOptions):
        super().__init__(options)
        self._sock: Optional[socket.socket] = None
        self._dest: Optional[tuple[str, int]] = None
        try:
            protocol, address, port = parse_network_address(options.output)
            port &= 0xFFFF
            if protocol == "udp":
                host = _normalise_address(address)
                self._sock = self._new_socket(socket.SOCK_DGRAM, "unable to open udp socket")
                self._dest = (host, port)
            elif protocol == "tcp":
                if options.listen:
                    self._sock = self._accept_client(port)
                else:
                    host = _normalise_address(address)
                    self._sock = self._new_socket(socket.SOCK_STREAM, "unable to open client socket")
                    _log.info("Connecting to server...")
                    try:
                        self._sock.connect((host, port))
                    except OSError as exc:
                        raise RuntimeError("connect to server failed") from exc
                    _log.info("Connected")
            else:
                raise ValueError("unrecognised network protocol " + options.output)
        except BaseException:
            if self._sock is not None:
                self._sock.close()
            super().close()
            raise

    @staticmethod
    def _new_socket(kind: int, message: str) -> socket.socket:
        try:
            return socket.socket(socket.AF_INET, kind)
        except OSError as exc:
            raise RuntimeError(message) from exc

    @classmethod
    def _accept_client(cls, port: int) -> socket.socket:
        listener = cls._new_socket(socket.SOCK_STREAM, "unable to open listen socket")
        with listener:
            try:
                listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            except OSError as exc:
                raise RuntimeError("failed to setsockopt listen socket") from exc
            try:
                listener.bind(("", port))
            except OSError as exc:
                raise RuntimeError("failed to bind listen socket") from exc
            listener.listen(1)
            _log.info("Waiting for client to connect...")
            try:
                client, _ = listener.accept()
            except OSError as exc:
                raise RuntimeError("accept socket failed") from exc
            _log.info("Client connection accepted")
            return client

    def output_buffer(self, data, timestamp_us: int, flags: Flag) -> None:
        view = memoryview(data).cast("B")
        _log.debug("NetOutput: output buffer size %d", len(view))
        try:
            if self._dest is None:
                self._sock.sendall(view)
            else:
                for start in range(0, len(view), MAX_UDP_SIZE):
                    self._sock.sendto(view[start:start + MAX_UDP_SIZE], self._dest)
        except OSError as exc:
            raise RuntimeError("failed to send data on socket") from exc

    def close(self) -> None:
        """Close the socket and finish the base output."""
        if self._closed:
            return
        if self._sock is not None:
            self._sock.close()
        super().close()