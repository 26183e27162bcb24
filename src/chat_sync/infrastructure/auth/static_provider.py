from __future__ import annotations

from chat_sync.application.exceptions import AuthError


class StaticTokenProvider:
    """Hands out a fixed access token; cannot refresh."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    async def current_token(self) -> str | None:
        return self._token

    async def refresh(self) -> str:
        raise AuthError("static token cannot be refreshed")
