"""Redis Streams consumer for progression events.

Each message is processed in its own database session and acknowledged only
after the processor reports success. Failed messages stay in the consumer
group's pending list and are retried on the next pending drain: at startup
and periodically while running.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.config import Settings, get_settings
from learnsphere.events.processor import EventProcessor
from learnsphere.events.schemas import STREAMS

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "progression-consumers"


def parse_fields(raw: dict[str, Any]) -> dict[str, Any]:
    """Decode the JSON ``data`` field of a stream entry."""
    data_str = raw.get("data", "{}")
    if isinstance(data_str, str):
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            return dict(raw)
        return data if isinstance(data, dict) else {}
    return dict(raw)


class ProgressionConsumer:
    """Reads the progression streams and hands each event to EventProcessor."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        session_factory: Callable[[], AsyncSession],
        consumer_name: str = "progression-worker-1",
        settings: Settings | None = None,
    ) -> None:
        self.redis = redis_client
        self.session_factory = session_factory
        self.consumer_name = consumer_name
        self.settings = settings or get_settings()
        self._running = False
        self._processed = 0
        self._errors = 0
        self._last_drain = 0.0

    async def setup_groups(self) -> None:
        """Create consumer groups for all streams (idempotent)."""
        for stream in STREAMS:
            try:
                await self.redis.xgroup_create(stream, CONSUMER_GROUP, id="0", mkstream=True)
                logger.info("Created consumer group %s for %s", CONSUMER_GROUP, stream)
            except aioredis.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

    async def handle_message(self, stream: str, msg_id: str, raw: dict[str, Any]) -> bool:
        """Process one entry; XACK it on success. Returns True if acknowledged."""
        data = parse_fields(raw)
        async with self.session_factory() as db:
            processor = EventProcessor(db, self.redis, self.settings)
            effects = await processor.process(stream, msg_id, data)

        if effects is None:
            self._errors += 1
            return False

        await self.redis.xack(stream, CONSUMER_GROUP, msg_id)
        self._processed += 1
        return True

    async def _read(self, streams: dict[str, str], block: int | None) -> list[Any]:
        try:
            return await self.redis.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=self.consumer_name,
                streams=streams,
                count=self.settings.event_batch_size,
                block=block,
            ) or []
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            return []

    async def _process_batch(self, events: list[Any]) -> tuple[int, dict[str, str]]:
        """Handle every entry of one read. Returns (entries read, last id per stream)."""
        read = 0
        last_ids: dict[str, str] = {}
        for stream_name, messages in events:
            stream_str = stream_name if isinstance(stream_name, str) else stream_name.decode()
            for msg_id, raw in messages:
                read += 1
                last_ids[stream_str] = msg_id if isinstance(msg_id, str) else msg_id.decode()
                try:
                    await self.handle_message(stream_str, msg_id, raw)
                except Exception:
                    self._errors += 1
                    logger.exception("Failed to process %s from %s", msg_id, stream_str)
        return read, last_ids

    async def consume(self, pending: bool = False) -> int:
        """Read and process one batch from all streams. Returns entries read.

        ``pending=True`` re-reads the first batch of this consumer's
        unacknowledged entries instead of new ones.
        """
        start = "0" if pending else ">"
        events = await self._read(
            {s: start for s in STREAMS},
            block=None if pending else self.settings.event_block_ms,
        )
        read, _ = await self._process_batch(events)
        return read

    async def drain_pending(self) -> int:
        """Retry every unacknowledged entry once. Returns entries read.

        Each pending read resumes after the last id seen on that stream, so
        entries that fail again are skipped until the next drain.
        """
        cursors = {s: "0" for s in STREAMS}
        total = 0
        while cursors:
            read, last_ids = await self._process_batch(await self._read(cursors, block=None))
            if not read:
                break
            total += read
            cursors = last_ids
        self._last_drain = time.monotonic()
        if total:
            logger.info("Retried %d pending events", total)
        return total

    async def run(self) -> None:
        """Main consumer loop: drain the pending backlog, then block for new events.

        The pending list is drained again every ``event_pending_retry_s``
        seconds so failures are retried without a restart.
        """
        await self.setup_groups()
        self._running = True
        logger.info("Progression consumer started (consumer=%s)", self.consumer_name)

        await self.drain_pending()
        while self._running:
            try:
                if time.monotonic() - self._last_drain >= self.settings.event_pending_retry_s:
                    await self.drain_pending()
                await self.consume()
            except Exception:
                logger.exception("Consumer loop error")
                await asyncio.sleep(1)

        logger.info(
            "Progression consumer stopped: %d processed, %d failed", self._processed, self._errors
        )

    def stop(self) -> None:
        """Signal the consumer to stop after the current batch."""
        self._running = False

    @property
    def stats(self) -> dict[str, int]:
        return {"processed": self._processed, "errors": self._errors}
