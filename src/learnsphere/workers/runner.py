"""Standalone runner for the progression event consumer.

Usage: python -m learnsphere.workers.runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

from learnsphere.config import get_settings
from learnsphere.database import close_db, get_session_factory, init_db
from learnsphere.middleware.logging import setup_logging
from learnsphere.redis_client import connect
from learnsphere.workers.consumer import ProgressionConsumer

logger = logging.getLogger(__name__)


async def main() -> None:
    """Run the progression consumer until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = connect(settings.redis_url, max_connections=20)
    consumer = ProgressionConsumer(
        redis_client,
        get_session_factory(),
        consumer_name=settings.event_consumer_name,
        settings=settings,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, consumer.stop)

    try:
        await consumer.run()
    finally:
        await redis_client.aclose()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
