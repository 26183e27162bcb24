from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    WS_URL: str = "ws://localhost:4000/ws"
    WS_TOKEN_PARAM: str = "token"

    API_BASE_URL: str = "http://localhost:4000/api"
    HTTP_TIMEOUT_S: float = 10.0
    TOKEN_REFRESH_LEEWAY_S: int = 30

    RECONNECT_BASE_INTERVAL_MS: int = 5000
    RECONNECT_MAX_DELAY_MS: int = 30000
    MAX_RECONNECT_ATTEMPTS: int = 10

    HEARTBEAT_INTERVAL_MS: int = 30000
    HEARTBEAT_TIMEOUT_MS: int = 10000

    TYPING_TTL_MS: int = 3000
    TYPING_SWEEP_INTERVAL_MS: int = 1000

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
