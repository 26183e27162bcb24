from __future__ import annotations

from typing import Mapping, Protocol


class Transport(Protocol):
    """One open bidirectional text stream.

    ``recv`` and ``send`` raise ``TransportClosed`` once the stream is gone.
    """

    async def send(self, raw: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class TransportFactory(Protocol):
    """Opens transports. Raises ``HandshakeRejected`` or ``ConnectionFailed``."""

    async def open(self, url: str, headers: Mapping[str, str] | None = None) -> Transport: ...
