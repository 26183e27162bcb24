from __future__ import annotations

from typing import Protocol


class TokenProvider(Protocol):
    async def current_token(self) -> str | None: ...

    async def refresh(self) -> str: ...
