"""
Tests for the click worker: analytics rows and aggregate counters.
"""
import asyncio

from smartlink_app.click_processor.click_worker import ClickWorker
from smartlink_app.config import settings
from smartlink_app.models import URL, RoutingRule, URLVariant
from smartlink_app.queue.models import ClickEvent
from smartlink_app.queue.strategies import InMemoryQueue


class FailingSession:
    """Session stand-in whose writes always fail"""

    def __init__(self):
        self.rolled_back = False

    def execute(self, statement):
        raise RuntimeError("database is down")

    def commit(self):
        pass

    def rollback(self):
        self.rolled_back = True

    def close(self):
        pass


class RejectingStorage:
    """Click store that refuses every batch"""

    async def store_clicks(self, events):
        return False


def seed_link(db_session):
    url = URL(original_url="https://www.example.com/", short_code="wk123")
    db_session.add(url)
    db_session.flush()
    rule = RoutingRule(
        url_id=url.id,
        name="iOS",
        target_url="https://apps.apple.com/app/id1",
        conditions={"operator": "AND", "conditions": []},
    )
    variant = URLVariant(url_id=url.id, name="B", target_url="https://www.example.com/b", weight=50)
    db_session.add_all([rule, variant])
    db_session.commit()
    return url, rule, variant


def publish(queue, *events):
    for event in events:
        asyncio.run(queue.publish(settings.queue_name, event))


class TestClickWorker:
    def test_counters_follow_mechanism(self, db_session, click_worker, queue, click_storage):
        url, rule, variant = seed_link(db_session)
        publish(
            queue,
            ClickEvent(short_code="wk123", url_id=url.id, mechanism="rule", rule_id=rule.id),
            ClickEvent(short_code="wk123", url_id=url.id, mechanism="rule", rule_id=rule.id),
            ClickEvent(short_code="wk123", url_id=url.id, mechanism="variant", variant_id=variant.id),
            ClickEvent(short_code="wk123", url_id=url.id, mechanism="control"),
            ClickEvent(short_code="wk123", url_id=url.id, mechanism="fallback"),
        )

        handled = asyncio.run(click_worker.run_once())
        assert handled == 5
        assert click_worker.flush_counters() is True
        db_session.expire_all()

        assert db_session.get(URL, url.id).total_hits == 5
        assert db_session.get(RoutingRule, rule.id).match_count == 2
        assert db_session.get(URLVariant, variant.id).click_count == 1
        assert asyncio.run(click_storage.get_total_clicks("wk123")) == 5
        assert asyncio.run(click_storage.get_clicks_by_mechanism("wk123")) == {
            "rule": 2,
            "variant": 1,
            "control": 1,
            "fallback": 1,
        }

    def test_ids_without_matching_mechanism_are_not_counted(self, db_session, click_worker, queue):
        url, rule, variant = seed_link(db_session)
        publish(queue, ClickEvent(
            short_code="wk123",
            url_id=url.id,
            mechanism="fallback",
            rule_id=rule.id,
            variant_id=variant.id,
        ))

        asyncio.run(click_worker.run_once())

        assert dict(click_worker.url_hits) == {url.id: 1}
        assert not click_worker.rule_matches
        assert not click_worker.variant_clicks

    def test_increments_accumulate_across_flushes(self, db_session, click_worker, queue):
        url, _, _ = seed_link(db_session)

        for _ in range(2):
            publish(queue, ClickEvent(short_code="wk123", url_id=url.id, mechanism="fallback"))
            asyncio.run(click_worker.run_once())
            click_worker.flush_counters()

        db_session.expire_all()
        assert db_session.get(URL, url.id).total_hits == 2

    def test_flush_due_by_pending_keys(self, click_worker):
        click_worker.flush_max_keys = 2
        click_worker.url_hits[1] += 1
        assert not click_worker._flush_due()

        click_worker.url_hits[2] += 1
        assert click_worker._flush_due()

    def test_empty_queue(self, click_worker):
        assert asyncio.run(click_worker.run_once()) == 0
        assert click_worker.flush_counters() is True

    def test_rejected_batch_is_left_pending(self, db_session, click_storage):
        url, _, _ = seed_link(db_session)
        queue = InMemoryQueue()
        worker = ClickWorker(queue=queue, storage=RejectingStorage(), db_session_factory=lambda: None)
        publish(queue, ClickEvent(short_code="wk123", url_id=url.id, mechanism="fallback"))

        assert asyncio.run(worker.run_once()) == 0

        assert not worker.url_hits
        assert worker.processed_count == 0
        assert worker.last_batch_rejected is True
        assert asyncio.run(queue.get_pending_count(settings.queue_name)) == 1

        # Once storage accepts again the same event is stored and counted once
        worker.storage = click_storage
        assert asyncio.run(worker.run_once()) == 1
        assert worker.last_batch_rejected is False
        assert dict(worker.url_hits) == {url.id: 1}
        assert asyncio.run(queue.get_pending_count(settings.queue_name)) == 0
        assert asyncio.run(click_storage.get_total_clicks("wk123")) == 1

    def test_bot_clicks_are_stored_not_counted(self, db_session, click_worker, queue, click_storage):
        url, _, variant = seed_link(db_session)
        publish(
            queue,
            ClickEvent(short_code="wk123", url_id=url.id, mechanism="variant", variant_id=variant.id, is_bot=True),
            ClickEvent(short_code="wk123", url_id=url.id, mechanism="fallback"),
        )

        assert asyncio.run(click_worker.run_once()) == 2

        assert dict(click_worker.url_hits) == {url.id: 1}
        assert not click_worker.variant_clicks
        assert asyncio.run(click_storage.get_total_clicks("wk123")) == 2

    def test_failed_flush_retried_then_dropped(self, queue, click_storage):
        sessions = []

        def failing_factory():
            sessions.append(FailingSession())
            return sessions[-1]

        worker = ClickWorker(
            queue=queue,
            storage=click_storage,
            db_session_factory=failing_factory,
            max_flush_retries=2,
        )
        worker.url_hits[1] += 3

        assert worker.flush_counters() is False
        assert worker.pending_keys == 1
        assert worker.failed_flushes == 1

        assert worker.flush_counters() is False
        assert worker.pending_keys == 0
        assert worker.failed_flushes == 0
        assert all(session.rolled_back for session in sessions)

    def test_stop(self, click_worker):
        click_worker.running = True
        click_worker.stop()
        assert click_worker.running is False
