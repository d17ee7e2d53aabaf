from __future__ import annotations

from typing import Iterator

import pytest

from ccafct.config import FCTConfig
from ccafct.server import FCTServer


@pytest.fixture
def fct_config() -> FCTConfig:
    return FCTConfig(buf_len=4096)


@pytest.fixture
def fct_server(fct_config: FCTConfig) -> Iterator[FCTServer]:
    server = FCTServer(("127.0.0.1", 0), fct_config)
    thread = server.start_background()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5.0)


@pytest.fixture
def server_addr(fct_server: FCTServer) -> str:
    host, port = fct_server.server_address[:2]
    return f"{host}:{port}"
