"""
Fixtures compartidas: cámara falsa, hub de WebSocket falso y mocks de WebSocket.
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocket
from starlette.websockets import WebSocketState

# Sin .env.local en los tests: puertos que no choquen con un servidor real
os.environ.setdefault("TCP_PORT", "0")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from camera import Frame  # noqa: E402
from errors import UpstreamUnavailable  # noqa: E402
from overlay import ClientInfo  # noqa: E402


class FakeCamera:
    """Cámara que exige acquire/release alternados y puede fallar en el acquire N."""

    def __init__(self, fail_at: int | None = None, size: int = 200) -> None:
        self.fail_at = fail_at
        self.size = size
        self.acquired = 0
        self.released = 0
        self.outstanding = 0

    def acquire(self) -> Frame:
        if self.outstanding:
            raise AssertionError("acquire sin release del frame anterior")
        self.acquired += 1
        if self.fail_at is not None and self.acquired >= self.fail_at:
            raise UpstreamUnavailable("falla simulada")
        self.outstanding += 1
        return Frame(data=bytes([self.acquired % 256]) * self.size, seq=self.acquired)

    def release(self, frame: Frame) -> None:
        self.outstanding -= 1
        self.released += 1


class FakeHub:
    """Colaborador WebSocket: `live` son los handles que reporta vivos."""

    def __init__(self, max_sockets: int = 16) -> None:
        self.max_sockets = max_sockets
        self.live: set[int] = set()
        self.failing: set[int] = set()
        self.delivered: list[tuple[int, str]] = []
        self.send_text = AsyncMock(side_effect=self._send)

    async def _send(self, handle: int, text: str) -> None:
        if handle in self.failing:
            raise ConnectionError(f"handle {handle} roto")
        self.delivered.append((handle, text))

    def client_info(self, handle: int) -> ClientInfo:
        return ClientInfo.WEBSOCKET if handle in self.live else ClientInfo.INVALID


def create_mock_websocket(connected: bool = True):
    ws_mock = MagicMock(spec=WebSocket)
    ws_mock.send_text = AsyncMock()
    ws_mock.accept = AsyncMock()
    ws_mock.close = AsyncMock()
    state = WebSocketState.CONNECTED if connected else WebSocketState.DISCONNECTED
    ws_mock.client_state = state
    ws_mock.application_state = state
    ws_mock.client = MagicMock()
    ws_mock.client.host = "127.0.0.1"
    return ws_mock


@pytest.fixture
def fake_camera():
    return FakeCamera()


@pytest.fixture
def fake_hub():
    return FakeHub()
