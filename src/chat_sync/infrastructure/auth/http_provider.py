"""Token provider backed by the REST auth endpoints."""
from __future__ import annotations

import logging

import httpx
import jwt

from chat_sync.application.dto.tokens import AuthTokens
from chat_sync.application.exceptions import AuthError
from chat_sync.application.ports.clock import Clock
from chat_sync.config import Settings, settings as default_settings
from chat_sync.infrastructure.timers.asyncio_scheduler import SystemClock

logger = logging.getLogger(__name__)


class HttpTokenProvider:
    """Implements application.ports.auth.TokenProvider.

    Refreshes via ``POST /auth/refresh``. ``current_token`` refreshes ahead of
    time when the access token's ``exp`` claim is close. Claims are read
    without signature verification; the server is the one that verifies.
    """

    def __init__(
        self,
        tokens: AuthTokens | None,
        *,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config or default_settings
        self._clock = clock or SystemClock()
        self._tokens = tokens
        self._client = client or httpx.AsyncClient(
            base_url=self._config.API_BASE_URL,
            timeout=self._config.HTTP_TIMEOUT_S,
        )

    @property
    def tokens(self) -> AuthTokens | None:
        return self._tokens

    def set_tokens(self, tokens: AuthTokens | None) -> None:
        self._tokens = tokens

    async def current_token(self) -> str | None:
        if self._tokens is None:
            return None
        if self._expires_soon(self._tokens.access_token):
            logger.info("Access token close to expiry, refreshing")
            try:
                return await self.refresh()
            except AuthError:
                logger.warning("Proactive refresh failed, using current token")
        return self._tokens.access_token

    async def refresh(self) -> str:
        if self._tokens is None or not self._tokens.refresh_token:
            raise AuthError("No refresh token available")

        try:
            resp = await self._client.post(
                "/auth/refresh",
                json={"refresh_token": self._tokens.refresh_token},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (401, 403):
                self._tokens = None
            raise AuthError(f"Token refresh rejected: HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            raise AuthError(f"Token refresh failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise AuthError("Token refresh response is not JSON") from exc
        tokens = body.get("tokens", body) if isinstance(body, dict) else None
        if not isinstance(tokens, dict):
            raise AuthError("Token refresh response is not an object")
        access_token = tokens.get("accessToken", tokens.get("access_token"))
        if not isinstance(access_token, str) or not access_token:
            raise AuthError("Token refresh response missing access token")
        self._tokens = AuthTokens(
            access_token=access_token,
            refresh_token=tokens.get("refreshToken", tokens.get("refresh_token", self._tokens.refresh_token)),
        )
        logger.info("Access token refreshed")
        return self._tokens.access_token

    async def aclose(self) -> None:
        await self._client.aclose()

    def _expires_soon(self, token: str) -> bool:
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return False
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return False
        return exp * 1000 - self._clock.now_ms() <= self._config.TOKEN_REFRESH_LEEWAY_S * 1000
