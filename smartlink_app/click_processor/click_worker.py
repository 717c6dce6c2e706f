"""
Click Processor Worker

Drains ClickEvents from the queue, writes them to click storage and keeps
the aggregate counters in the main DB up to date:

- urls.total_hits            every redirect by a human visitor
- routing_rules.match_count  redirects decided by a rule
- url_variants.click_count   redirects sent to a variant

Counts are aggregated in memory and flushed periodically with
`UPDATE ... SET col = col + n`, so concurrent workers never lose increments.
A flush that keeps failing is retried a few times, then dropped. Events are
acknowledged only after the click store accepted them.
"""

import asyncio
import signal
import sys
from collections import Counter
from datetime import datetime, timezone
from typing import List

from sqlalchemy import update

from smartlink_app.config import settings
from smartlink_app.database.connection import SessionLocal
from smartlink_app.models import URL, RoutingRule, URLVariant
from smartlink_app.queue.models import ClickEvent
from smartlink_app.queue.strategies import QueueStrategy
from smartlink_app.routing.decision import Mechanism
from smartlink_app.storage.strategies import ClickStorageStrategy


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClickWorker:
    """Batch consumer for click events."""

    def __init__(
        self,
        queue: QueueStrategy,
        storage: ClickStorageStrategy,
        db_session_factory=SessionLocal,
        max_flush_retries: int = None,
    ):
        self.queue = queue
        self.storage = storage
        self.db_session_factory = db_session_factory
        self.running = False
        self.processed_count = 0
        self.last_batch_rejected = False

        # Pending increments keyed by row id
        self.url_hits: Counter = Counter()
        self.rule_matches: Counter = Counter()
        self.variant_clicks: Counter = Counter()

        self.batch_size = settings.queue_batch_size
        self.flush_interval = settings.counter_flush_interval
        self.flush_max_keys = settings.counter_flush_max_keys
        self.max_flush_retries = (
            settings.max_flush_retries if max_flush_retries is None else max_flush_retries
        )
        self.failed_flushes = 0
        self.last_flush = _utcnow()
        # Seconds to wait before retrying a batch the click store rejected
        self.retry_delay = 1

    @property
    def pending_keys(self) -> int:
        return len(self.url_hits) + len(self.rule_matches) + len(self.variant_clicks)

    async def start(self):
        """Consume until stopped."""
        self.running = True
        print("🚀 Click worker started")
        print(f"📊 Batch size: {self.batch_size}, flush every {self.flush_interval}s")

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        while self.running:
            try:
                await self.run_once()
                if self.last_batch_rejected:
                    await asyncio.sleep(self.retry_delay)
            except asyncio.CancelledError:
                print("Worker task cancelled.")
                break
            except Exception as e:
                print(f"❌ Error processing batch: {e}")
                await asyncio.sleep(1)

        # Don't lose what is already counted
        self.flush_counters()
        print("🛑 Click worker stopped")

    async def run_once(self) -> int:
        """
        Process one batch and flush counters if due. Returns events handled.

        A batch the click store rejects is neither counted nor acknowledged;
        it stays pending and is delivered again on a later call.
        """
        messages = await self.queue.consume(
            settings.queue_name,
            batch_size=self.batch_size,
            block_time=settings.queue_block_ms,
        )
        self.last_batch_rejected = False
        handled = 0
        if messages:
            if await self.process_batch(messages):
                message_ids = [msg.message_id for msg in messages if msg.message_id]
                await self.queue.ack(settings.queue_name, message_ids)
                self.processed_count += len(messages)
                handled = len(messages)
                print(f"✅ Processed {len(messages)} clicks. Total: {self.processed_count}")
            else:
                self.last_batch_rejected = True
                print(f"⚠️  Click storage rejected a batch of {len(messages)} events, left pending for retry")

        if self._flush_due():
            self.flush_counters()
        return handled

    async def process_batch(self, messages: List[ClickEvent]) -> bool:
        """
        Store analytics rows, then count increments in memory.

        Bot clicks are stored but not counted. Returns False, counting
        nothing, when the click store rejects the batch.
        """
        if not await self.storage.store_clicks(messages):
            return False

        for event in messages:
            if event.is_bot:
                continue
            self.url_hits[event.url_id] += 1
            if event.mechanism == Mechanism.RULE.value and event.rule_id is not None:
                self.rule_matches[event.rule_id] += 1
            if event.mechanism == Mechanism.VARIANT.value and event.variant_id is not None:
                self.variant_clicks[event.variant_id] += 1
        return True


    def _flush_due(self) -> bool:
        if not self.pending_keys:
            return False
        elapsed = (_utcnow() - self.last_flush).total_seconds()
        return elapsed >= self.flush_interval or self.pending_keys >= self.flush_max_keys

    def flush_counters(self) -> bool:
        """
        Apply pending increments in one transaction.

        On failure the increments are kept for the next flush. After
        `max_flush_retries` consecutive failures they are discarded.
        """
        if not self.pending_keys:
            return True

        db = self.db_session_factory()
        try:
            for url_id, count in self.url_hits.items():
                db.execute(
                    update(URL).where(URL.id == url_id).values(total_hits=URL.total_hits + count)
                )
            for rule_id, count in self.rule_matches.items():
                db.execute(
                    update(RoutingRule)
                    .where(RoutingRule.id == rule_id)
                    .values(match_count=RoutingRule.match_count + count)
                )
            for variant_id, count in self.variant_clicks.items():
                db.execute(
                    update(URLVariant)
                    .where(URLVariant.id == variant_id)
                    .values(click_count=URLVariant.click_count + count)
                )
            db.commit()
        except Exception as e:
            db.rollback()
            self.failed_flushes += 1
            print(f"❌ Counter flush failed ({self.failed_flushes}/{self.max_flush_retries}): {e}")
            if self.failed_flushes >= self.max_flush_retries:
                print(f"⚠️  Dropping {self.pending_keys} pending counters after repeated failures")
                self._reset_counters()
            return False
        finally:
            db.close()

        print(
            f"📊 Flushed counters: {len(self.url_hits)} links, "
            f"{len(self.rule_matches)} rules, {len(self.variant_clicks)} variants"
        )
        self._reset_counters()
        return True

    def _reset_counters(self):
        self.url_hits.clear()
        self.rule_matches.clear()
        self.variant_clicks.clear()
        self.failed_flushes = 0
        self.last_flush = _utcnow()

    def _signal_handler(self, signum, frame):
        print(f"\nReceived signal {signum}. Shutting down gracefully...")
        self.stop()

    def stop(self):
        self.running = False


async def main():
    """
    Usage:
        python -m smartlink_app.click_processor.click_worker
    """
    print("=" * 60)
    print("🔧 SmartLink - Click Worker")
    print("=" * 60)
    print(f"Environment: {settings.environment}")
    print(f"Queue backend: {settings.queue_backend}")
    print(f"Storage backend: {settings.click_storage_backend}")
    print("=" * 60)

    from smartlink_app.queue.factory import QueueFactory, QueueBackend
    from smartlink_app.storage.factory import ClickStorageFactory, ClickStorageBackend

    queue = QueueFactory.create(QueueBackend(settings.queue_backend))
    storage = ClickStorageFactory.create(ClickStorageBackend(settings.click_storage_backend))
    worker = ClickWorker(queue=queue, storage=storage)

    try:
        await worker.start()
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user")
    except Exception as e:
        print(f"❌ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
