import asyncio
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from smartlink_app.cache.strategies import InMemoryCache
from smartlink_app.models import URL
from smartlink_app.queue.strategies import InMemoryQueue
from smartlink_app.routing import Mechanism, VisitContext
from smartlink_app.schemas.url import URLUpdate
from smartlink_app.services.url_service import URLService, snapshot_cache_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestURLShortener:
    """Short link CRUD and plain redirects through the API"""

    def test_create_short_url(self, client: TestClient):
        url_data = {"original_url": "https://www.google.com/"}

        response = client.post("/api/v1/urls/", json=url_data)
        assert response.status_code == 201

        data = response.json()
        assert data["short_code"]
        assert data["short_url"].endswith(f"/{data['short_code']}")
        assert data["original_url"] == url_data["original_url"]
        assert data["total_hits"] == 0
        assert data["is_active"] is True
        assert data["is_smart_routing"] is False
        assert data["is_ab_test"] is False
        assert data["default_url"] is None

    def test_create_with_default_url(self, client: TestClient):
        response = client.post("/api/v1/urls/", json={
            "original_url": "https://www.example.com/landing",
            "default_url": "https://www.example.com/everyone-else",
        })
        assert response.status_code == 201
        assert response.json()["default_url"] == "https://www.example.com/everyone-else"

    def test_same_url_gets_distinct_codes(self, short_link):
        first = short_link("https://www.example.com/same")
        second = short_link("https://www.example.com/same")

        assert first["short_code"] != second["short_code"]

    def test_get_url_info(self, client: TestClient, short_link):
        short_code = short_link("https://www.google.com/")["short_code"]

        response = client.get(f"/api/v1/urls/{short_code}")
        assert response.status_code == 200

        data = response.json()
        assert data["short_code"] == short_code
        assert data["original_url"] == "https://www.google.com/"

    def test_get_nonexistent_url(self, client: TestClient):
        response = client.get("/api/v1/urls/nonexistent")
        assert response.status_code == 404

    def test_redirect_url(self, client: TestClient, short_link):
        short_code = short_link("https://www.github.com/")["short_code"]

        response = client.get(f"/{short_code}", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "https://www.github.com/"

    def test_redirect_nonexistent_url(self, client: TestClient):
        response = client.get("/nonexistent", follow_redirects=False)
        assert response.status_code == 404

    def test_redirect_forwards_utm_params(self, client: TestClient, short_link):
        short_code = short_link("https://www.example.com/landing?ref=abc")["short_code"]

        response = client.get(
            f"/{short_code}?utm_source=newsletter&utm_medium=email&other=x",
            follow_redirects=False,
        )
        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://www.example.com/landing?")
        assert "ref=abc" in location
        assert "utm_source=newsletter" in location
        assert "utm_medium=email" in location
        assert "other=x" not in location

    def test_redirect_queues_click(self, client: TestClient, short_link, queue):
        short_code = short_link()["short_code"]

        client.get(f"/{short_code}", follow_redirects=False)

        assert asyncio.run(queue.get_queue_length("url_clicks")) == 1
        event = asyncio.run(queue.consume("url_clicks"))[0]
        assert event.short_code == short_code
        assert event.mechanism == "fallback"
        assert event.target_url == "https://www.example.com/landing"

    def test_url_stats(self, client: TestClient, short_link, drain_clicks):
        short_code = short_link("https://www.stackoverflow.com/")["short_code"]

        client.get(f"/{short_code}", follow_redirects=False, headers={"cf-ipcountry": "tw"})
        client.get(
            f"/{short_code}",
            follow_redirects=False,
            headers={"referer": "https://news.example.org/"},
        )

        # Before the worker runs only the click is queued
        response = client.get(f"/api/v1/urls/{short_code}/stats")
        assert response.json()["total_hits"] == 0

        assert drain_clicks() == 2

        response = client.get(f"/api/v1/urls/{short_code}/stats")
        assert response.status_code == 200
        data = response.json()
        assert data["short_code"] == short_code
        assert data["total_hits"] == 2
        assert data["clicks_by_mechanism"] == {"fallback": 2}
        assert data["clicks_by_country"] == {"TW": 1, "unknown": 1}
        assert data["top_referers"] == [{"referer": "https://news.example.org/", "count": 1}]

    def test_stats_nonexistent_url(self, client: TestClient):
        assert client.get("/api/v1/urls/nonexistent/stats").status_code == 404

    def test_delete_url(self, client: TestClient, short_link):
        short_code = short_link("https://www.python.org/")["short_code"]

        # Warm the snapshot cache first
        assert client.get(f"/{short_code}", follow_redirects=False).status_code == 302

        response = client.delete(f"/api/v1/urls/{short_code}")
        assert response.status_code == 204

        response = client.get(f"/{short_code}", follow_redirects=False)
        assert response.status_code == 404
        assert client.delete(f"/api/v1/urls/{short_code}").status_code == 204
        assert client.delete("/api/v1/urls/nonexistent").status_code == 404

    def test_expired_link_stops_redirecting(self, client: TestClient, short_link, db_session):
        short_code = short_link("https://www.python.org/")["short_code"]
        url = db_session.query(URL).filter(URL.short_code == short_code).first()
        url.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db_session.commit()

        assert client.get(f"/{short_code}", follow_redirects=False).status_code == 404
        assert client.get(f"/api/v1/urls/{short_code}").status_code == 404

        # Clearing the expiry brings the link back
        response = client.patch(f"/api/v1/urls/{short_code}", json={"expires_at": None})
        assert response.status_code == 200
        assert response.json()["expires_at"] is None
        assert client.get(f"/{short_code}", follow_redirects=False).status_code == 302

    def test_create_with_expiry_and_utm_presets(self, client: TestClient):
        expires_at = datetime.now(timezone.utc) + timedelta(days=7)
        response = client.post("/api/v1/urls/", json={
            "original_url": "https://www.example.com/landing",
            "expires_at": expires_at.isoformat(),
            "utm_source": "partner",
            "utm_medium": "email",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["expires_at"] is not None
        assert data["utm_source"] == "partner"
        assert data["utm_medium"] == "email"
        assert data["utm_campaign"] is None

    def test_past_expiry_rejected(self, client: TestClient, short_link):
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        response = client.post("/api/v1/urls/", json={
            "original_url": "https://www.example.com/",
            "expires_at": past,
        })
        assert response.status_code == 422

        short_code = short_link()["short_code"]
        response = client.patch(f"/api/v1/urls/{short_code}", json={"expires_at": past})
        assert response.status_code == 422

    def test_update_url_refreshes_cached_redirect(self, client: TestClient, short_link):
        short_code = short_link("https://www.example.com/old")["short_code"]
        assert client.get(f"/{short_code}", follow_redirects=False).headers["location"] == (
            "https://www.example.com/old"
        )

        response = client.patch(
            f"/api/v1/urls/{short_code}",
            json={"original_url": "https://www.example.com/new"},
        )
        assert response.status_code == 200
        assert response.json()["original_url"] == "https://www.example.com/new"

        response = client.get(f"/{short_code}", follow_redirects=False)
        assert response.headers["location"] == "https://www.example.com/new"

    def test_update_reactivates_and_ignores_null_required_fields(self, client: TestClient, short_link):
        short_code = short_link("https://www.example.com/")["short_code"]
        client.delete(f"/api/v1/urls/{short_code}")

        response = client.patch(
            f"/api/v1/urls/{short_code}",
            json={"is_active": True, "original_url": None},
        )

        assert response.status_code == 200
        assert response.json()["is_active"] is True
        assert response.json()["original_url"] == "https://www.example.com/"
        assert client.get(f"/{short_code}", follow_redirects=False).status_code == 302

    def test_update_nonexistent_url(self, client: TestClient):
        response = client.patch("/api/v1/urls/nonexistent", json={"utm_source": "x"})
        assert response.status_code == 404

    def test_preset_utm_values_on_redirect_and_click(self, client: TestClient, short_link, queue):
        short_code = short_link(
            "https://www.example.com/landing?flag",
            utm_source="partner",
            utm_campaign="spring",
        )["short_code"]

        response = client.get(f"/{short_code}?utm_campaign=summer", follow_redirects=False)

        assert response.headers["location"] == (
            "https://www.example.com/landing?flag&utm_source=partner&utm_campaign=summer"
        )
        event = asyncio.run(queue.consume("url_clicks"))[0]
        assert event.utm_source == "partner"
        assert event.utm_campaign == "summer"
        assert event.is_bot is False

    def test_bot_visit_is_flagged(self, client: TestClient, short_link, queue):
        short_code = short_link()["short_code"]

        response = client.get(
            f"/{short_code}",
            follow_redirects=False,
            headers={"user-agent": "Mozilla/5.0 (compatible; Googlebot/2.1)"},
        )

        assert response.status_code == 302
        event = asyncio.run(queue.consume("url_clicks"))[0]
        assert event.is_bot is True

    def test_invalid_url(self, client: TestClient):
        response = client.post("/api/v1/urls/", json={"original_url": "not-a-valid-url"})
        assert response.status_code == 422

    def test_non_http_scheme_rejected(self, client: TestClient):
        response = client.post("/api/v1/urls/", json={"original_url": "ftp://files.example.com/x"})
        assert response.status_code == 422

    def test_internal_targets_rejected(self, client: TestClient):
        for target in (
            "http://localhost:8000/admin",
            "http://127.0.0.1/",
            "http://10.0.0.5/internal",
            "http://192.168.1.1/",
            "http://169.254.169.254/latest/meta-data",
        ):
            response = client.post("/api/v1/urls/", json={"original_url": target})
            assert response.status_code == 422, target

    def test_health(self, client: TestClient):
        assert client.get("/health").json()["status"] == "healthy"


class TestURLService:
    """URL service business logic, called directly"""

    def test_short_code_generation(self, db_session):
        service = URLService(db_session)

        url1 = asyncio.run(service.create_short_url("https://www.test.com/"))
        url2 = asyncio.run(service.create_short_url("https://www.test.com/"))

        assert url1.short_code != url2.short_code
        assert url1.original_url == url2.original_url

    def test_url_retrieval(self, db_session):
        service = URLService(db_session)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))

        retrieved = asyncio.run(service.get_url_by_short_code(url.short_code))
        assert retrieved is not None
        assert retrieved.original_url == "https://www.example.com/"

        assert asyncio.run(service.get_url_by_short_code("nonexistent")) is None

    def test_resolve_redirect_falls_back_to_original(self, db_session):
        service = URLService(db_session)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))

        resolved = asyncio.run(service.resolve_redirect(url.short_code, VisitContext()))

        assert resolved.url.id == url.id
        assert resolved.decision.mechanism == Mechanism.FALLBACK
        assert resolved.decision.target_url == "https://www.example.com/"

    def test_resolve_unknown_code(self, db_session):
        service = URLService(db_session)
        assert asyncio.run(service.resolve_redirect("nope", VisitContext())) is None

    def test_snapshot_is_cached_and_invalidated(self, db_session):
        cache = InMemoryCache()
        service = URLService(db_session, cache=cache)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))
        key = snapshot_cache_key(url.short_code)

        asyncio.run(service.resolve_redirect(url.short_code, VisitContext()))
        cached = asyncio.run(cache.get_json(key))
        assert cached["url"]["original_url"] == "https://www.example.com/"

        asyncio.run(service.delete_url(url.short_code))
        assert asyncio.run(cache.get(key)) is None
        assert asyncio.run(service.resolve_redirect(url.short_code, VisitContext())) is None

    def test_unknown_codes_are_not_cached(self, db_session):
        cache = InMemoryCache()
        service = URLService(db_session, cache=cache)

        asyncio.run(service.get_redirect_snapshot("missing"))

        assert asyncio.run(cache.get(snapshot_cache_key("missing"))) is None

    def test_stale_snapshot_is_rebuilt(self, db_session):
        cache = InMemoryCache()
        service = URLService(db_session, cache=cache)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))
        key = snapshot_cache_key(url.short_code)
        asyncio.run(cache.set_json(key, {"url": {"id": "not-a-number"}}))

        snapshot = asyncio.run(service.get_redirect_snapshot(url.short_code))

        assert snapshot.url.id == url.id
        assert asyncio.run(cache.get_json(key))["url"]["id"] == url.id

    def test_publish_click_without_queue(self, db_session):
        service = URLService(db_session)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))
        ctx = VisitContext()
        resolved = asyncio.run(service.resolve_redirect(url.short_code, ctx))

        assert asyncio.run(service.publish_click(resolved, ctx)) is False

    def test_publish_click_carries_visit(self, db_session):
        queue = InMemoryQueue()
        service = URLService(db_session, queue=queue)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))
        ctx = VisitContext(country="TW", device_type="mobile", utm_source="ig")
        resolved = asyncio.run(service.resolve_redirect(url.short_code, ctx))

        assert asyncio.run(service.publish_click(resolved, ctx, ip_address="203.0.113.7")) is True

        event = asyncio.run(queue.consume("url_clicks"))[0]
        assert event.url_id == url.id
        assert event.country == "TW"
        assert event.device_type == "mobile"
        assert event.utm_source == "ig"
        assert event.ip_address == "203.0.113.7"
        assert event.rule_id is None and event.variant_id is None

    def test_delete_url(self, db_session):
        service = URLService(db_session)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))

        assert asyncio.run(service.delete_url(url.short_code)) is True
        assert asyncio.run(service.get_url_by_short_code(url.short_code)) is None
        assert asyncio.run(service.delete_url("nonexistent")) is False

    def test_cached_snapshot_not_served_after_expiry(self, db_session):
        cache = InMemoryCache()
        service = URLService(db_session, cache=cache)
        url = asyncio.run(service.create_short_url(
            "https://www.example.com/",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        ))
        key = snapshot_cache_key(url.short_code)
        assert asyncio.run(service.resolve_redirect(url.short_code, VisitContext())) is not None

        cached = asyncio.run(cache.get_json(key))
        cached["url"]["expires_at"] = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        asyncio.run(cache.set_json(key, cached))

        assert asyncio.run(service.resolve_redirect(url.short_code, VisitContext())) is None
        assert asyncio.run(cache.get(key)) is None

    def test_snapshot_ttl_capped_at_expiry(self, db_session):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        service = URLService(db_session, cache=cache)
        url = asyncio.run(service.create_short_url(
            "https://www.example.com/",
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=30),
        ))
        key = snapshot_cache_key(url.short_code)

        asyncio.run(service.get_redirect_snapshot(url.short_code))
        assert asyncio.run(cache.get(key)) is not None

        clock.now += 31
        assert asyncio.run(cache.get(key)) is None

    def test_update_url_invalidates_snapshot(self, db_session):
        cache = InMemoryCache()
        service = URLService(db_session, cache=cache)
        url = asyncio.run(service.create_short_url("https://www.example.com/"))
        key = snapshot_cache_key(url.short_code)
        asyncio.run(service.get_redirect_snapshot(url.short_code))

        updated = asyncio.run(service.update_url(url.short_code, URLUpdate(utm_source="partner")))

        assert updated.utm_source == "partner"
        assert asyncio.run(cache.get(key)) is None
        snapshot = asyncio.run(service.get_redirect_snapshot(url.short_code))
        assert snapshot.url.utm_presets["utm_source"] == "partner"
        assert asyncio.run(service.update_url("nonexistent", URLUpdate())) is None

    def test_publish_click_merges_presets(self, db_session):
        queue = InMemoryQueue()
        service = URLService(db_session, queue=queue)
        url = asyncio.run(service.create_short_url(
            "https://www.example.com/", utm_source="partner", utm_medium="email"
        ))
        ctx = VisitContext(utm_medium="social", is_bot=True)
        resolved = asyncio.run(service.resolve_redirect(url.short_code, ctx))

        asyncio.run(service.publish_click(resolved, ctx))

        event = asyncio.run(queue.consume("url_clicks"))[0]
        assert event.utm_source == "partner"
        assert event.utm_medium == "social"
        assert event.is_bot is True
