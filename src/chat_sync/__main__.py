"""Entrypoint: python -m chat_sync"""
from __future__ import annotations

import asyncio
import logging
import os

from chat_sync.client import ChatSyncClient
from chat_sync.config import settings
from chat_sync.infrastructure.auth.static_provider import StaticTokenProvider

logger = logging.getLogger(__name__)


async def run() -> None:
    client = ChatSyncClient(
        os.environ.get("CHAT_USER_ID", ""),
        StaticTokenProvider(os.environ.get("CHAT_TOKEN")),
    )
    client.store.subscribe(lambda change: logger.info("Store changed: %s", change))
    async with client:
        await asyncio.Event().wait()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
