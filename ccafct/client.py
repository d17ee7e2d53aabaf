from __future__ import annotations

import contextlib
import logging
import socket
import threading
import time

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection
from urllib3.connectionpool import HTTPConnectionPool

from .config import FCTConfig
from .context import CancelledError, CancelToken
from .flowlog import FlowRecord

LOGGER = logging.getLogger("ccafct.client")

DEFAULT_CONNECT_TIMEOUT_S = 10.0
DEFAULT_READ_TIMEOUT_S = 60.0


class FlowError(Exception):
    """Raised when a single flow's request/response cycle fails."""


class AbortableAdapter(HTTPAdapter):
    """HTTP adapter whose open sockets can be shut down from another thread.

    Shutting a socket down wakes a request blocked on the response headers
    or on the body, which then fails with a ``requests.ConnectionError``.
    """

    def __init__(self) -> None:
        self._sock_lock = threading.Lock()
        self._sockets: list[socket.socket] = []
        self._aborted = False
        super().__init__()

    def init_poolmanager(self, *args, **kwargs) -> None:
        super().init_poolmanager(*args, **kwargs)
        adapter = self

        class TrackedConnection(HTTPConnection):
            def connect(self) -> None:
                super().connect()
                adapter._track(self.sock)

        class TrackedPool(HTTPConnectionPool):
            ConnectionCls = TrackedConnection

        self.poolmanager.pool_classes_by_scheme = {
            **self.poolmanager.pool_classes_by_scheme,
            "http": TrackedPool,
        }

    def abort(self) -> None:
        with self._sock_lock:
            self._aborted = True
            sockets = list(self._sockets)
        for sock in sockets:
            _shutdown(sock)

    def _track(self, sock: socket.socket) -> None:
        with self._sock_lock:
            self._sockets.append(sock)
            aborted = self._aborted
        if aborted:
            _shutdown(sock)


def _shutdown(sock: socket.socket) -> None:
    with contextlib.suppress(OSError):
        sock.shutdown(socket.SHUT_RDWR)


def fetch_flow(
    url: str,
    length: int,
    token: CancelToken,
    cca: str | None = None,
    config: FCTConfig | None = None,
    timeout: tuple[float, float] = (DEFAULT_CONNECT_TIMEOUT_S, DEFAULT_READ_TIMEOUT_S),
) -> FlowRecord:
    """Request ``length`` bytes from the FCT server and time the transfer.

    Cancelling ``token`` aborts the round trip wherever it is blocked.
    """
    config = config or FCTConfig()
    if token.cancelled:
        raise FlowError(f"flow not started: {token.reason}")

    headers = {config.flow_length_header: str(length)}
    if cca:
        headers[config.cca_header] = cca

    adapter = AbortableAdapter()
    session = requests.Session()
    session.mount("http://", adapter)
    handle = token.add_callback(lambda _token: adapter.abort())

    received = 0
    try:
        start = time.time()
        started = time.perf_counter()
        try:
            response = session.get(url, headers=headers, stream=True, timeout=timeout)
        except requests.RequestException as exc:
            raise _flow_error(token, f"request to {url} failed", received, exc) from exc

        with response:
            if response.status_code != requests.codes.ok:
                detail = response.text.strip()
                raise FlowError(
                    f"client received: {response.status_code} {response.reason}: {detail}"
                )
            try:
                for chunk in response.iter_content(chunk_size=config.buf_len):
                    received += len(chunk)
                    token.raise_if_cancelled()
                token.raise_if_cancelled()
            except (requests.RequestException, CancelledError) as exc:
                raise _flow_error(
                    token, f"reading response from {url} failed", received, exc
                ) from exc
        elapsed = time.perf_counter() - started
    finally:
        token.remove_callback(handle)
        session.close()

    return FlowRecord(start=start, end=start + elapsed, length=received, elapsed=elapsed)


def _flow_error(token: CancelToken, message: str, received: int, exc: Exception) -> FlowError:
    if token.cancelled:
        return FlowError(f"flow cancelled after {received} bytes: {token.reason}")
    return FlowError(f"{message}: {exc}")


__all__ = ["AbortableAdapter", "FlowError", "fetch_flow"]
