from __future__ import annotations

import logging
import socket
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from .config import FCTConfig

LOGGER = logging.getLogger("ccafct.server")


class CCAError(Exception):
    """The requested congestion control algorithm could not be applied."""

    def __init__(self, cca: str) -> None:
        super().__init__(f"unable to use selected CCA: '{cca}'")
        self.cca = cca


class FCTRequestHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"
    server: "FCTServer"

    def do_GET(self) -> None:  # noqa: N802
        config = self.server.config
        if self.path.split("?", 1)[0] != config.path:
            self._send_error(HTTPStatus.NOT_FOUND, f"unknown path '{self.path}'")
            return

        try:
            self._set_sock_opts()
        except CCAError as exc:
            self._send_error(HTTPStatus.BAD_REQUEST, str(exc))
            return

        raw = self.headers.get(config.flow_length_header)
        if raw is None or raw == "":
            self._send_error(
                HTTPStatus.BAD_REQUEST, f"missing '{config.flow_length_header}' header"
            )
            return
        try:
            flow_len = int(raw)
            if flow_len < 0:
                raise ValueError("negative flow length")
        except ValueError:
            self._send_error(
                HTTPStatus.BAD_REQUEST, f"invalid {config.flow_length_header}: '{raw}'"
            )
            return

        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Length", str(flow_len))
        self.end_headers()

        buf = self.server.buf
        view = memoryview(buf)
        remaining = flow_len
        try:
            while remaining > 0:
                n = min(remaining, len(buf))
                self.wfile.write(view[:n])
                remaining -= n
        except OSError as exc:
            LOGGER.warning("write error: '%s'", exc)
            self.close_connection = True

    def _set_sock_opts(self) -> None:
        cca = self.headers.get(self.server.config.cca_header)
        if not cca:
            return
        option = getattr(socket, "TCP_CONGESTION", None)
        if option is None:
            LOGGER.warning("TCP_CONGESTION is not supported on this platform")
            raise CCAError(cca)
        try:
            self.connection.setsockopt(socket.IPPROTO_TCP, option, cca.encode("ascii"))
        except (OSError, UnicodeEncodeError) as exc:
            LOGGER.warning("unable to set TCP_CONGESTION to '%s': '%s'", cca, exc)
            raise CCAError(cca) from exc

    def _send_error(self, status: HTTPStatus, message: str) -> None:
        body = (message + "\n").encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        LOGGER.debug("%s - %s", self.address_string(), format % args)


class FCTServer(ThreadingHTTPServer):
    """HTTP server returning the number of bytes each client asks for."""

    daemon_threads = True

    def __init__(
        self,
        listen_addr: tuple[str, int] | None = None,
        config: FCTConfig | None = None,
    ) -> None:
        self.config = config or FCTConfig()
        self.buf = bytes(self.config.buf_len)
        if listen_addr is None:
            listen_addr = ("", self.config.port)
        super().__init__(listen_addr, FCTRequestHandler)

    @property
    def url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}{self.config.path}"

    def serve(self) -> None:
        LOGGER.info("server listening on %s:%d", *self.server_address[:2])
        self.serve_forever()

    def start_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.serve, name="fct-server", daemon=True)
        thread.start()
        return thread


def parse_listen_addr(value: str, default_port: int) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if not sep:
        return value, default_port
    return host, int(port)


__all__ = ["CCAError", "FCTRequestHandler", "FCTServer", "parse_listen_addr"]
