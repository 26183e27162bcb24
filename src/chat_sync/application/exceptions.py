from __future__ import annotations


class SyncError(Exception):
    """Base sync-core error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ConnectionFailed(SyncError):
    """Transport could not open or closed unexpectedly. Retried with backoff."""


class HandshakeRejected(ConnectionFailed):
    def __init__(self, status: int, detail: str = "") -> None:
        self.status = status
        super().__init__(detail or f"handshake rejected with HTTP {status}")


class HeartbeatTimeout(ConnectionFailed):
    pass


class ConnectionLost(SyncError):
    """Retry budget exhausted; no further reconnects without connect()."""


class TransportClosed(SyncError):
    def __init__(self, code: int | None = None, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"transport closed (code={code}, reason={reason!r})")


class ProtocolError(SyncError):
    pass


class SendError(SyncError):
    pass


class NotConnected(SendError):
    pass


class AuthError(SyncError):
    pass
