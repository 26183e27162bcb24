"""Transport adapter over the ``websockets`` asyncio client."""
from __future__ import annotations

import logging
from typing import Mapping

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI

from chat_sync.application.exceptions import ConnectionFailed, HandshakeRejected, TransportClosed

logger = logging.getLogger(__name__)


class WebsocketsTransport:
    """Implements application.ports.transport.Transport."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    async def send(self, raw: str) -> None:
        try:
            await self._ws.send(raw)
        except ConnectionClosed as exc:
            raise _closed(exc) from exc

    async def recv(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except ConnectionClosed as exc:
            raise _closed(exc) from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)


class WebsocketsTransportFactory:
    """Implements application.ports.transport.TransportFactory.

    Library-level keepalive pings are disabled; the connection manager runs
    its own ``ping``/``pong`` frames.
    """

    def __init__(self, open_timeout: float = 10.0) -> None:
        self._open_timeout = open_timeout

    async def open(self, url: str, headers: Mapping[str, str] | None = None) -> WebsocketsTransport:
        try:
            ws = await connect(
                url,
                additional_headers=dict(headers or {}),
                ping_interval=None,
                open_timeout=self._open_timeout,
            )
        except InvalidStatus as exc:
            raise HandshakeRejected(exc.response.status_code) from exc
        except InvalidURI as exc:
            raise ConnectionFailed(f"Invalid WebSocket URI: {exc}") from exc
        except InvalidHandshake as exc:
            raise ConnectionFailed(f"Handshake failed: {exc}") from exc
        except (OSError, TimeoutError) as exc:
            raise ConnectionFailed(f"Network error: {exc}") from exc
        logger.debug("Transport connected to %s", _redact(url))
        return WebsocketsTransport(ws)


def _closed(exc: ConnectionClosed) -> TransportClosed:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return TransportClosed(None, "")
    return TransportClosed(frame.code, frame.reason)


def _redact(url: str) -> str:
    base, _, _query = url.partition("?")
    return base
