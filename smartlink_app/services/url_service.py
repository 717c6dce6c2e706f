from datetime import datetime, timezone
from typing import NamedTuple, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from smartlink_app.cache.strategies import CacheStrategy
from smartlink_app.config import settings
from smartlink_app.enrichment.visit import utm_values
from smartlink_app.models.url import URL
from smartlink_app.queue.models import ClickEvent
from smartlink_app.queue.strategies import QueueStrategy
from smartlink_app.routing import RedirectDecision, VisitContext, load_conditions, resolve
from smartlink_app.routing.context import UTM_PARAMS
from smartlink_app.routing.snapshots import (
    RedirectSnapshot,
    RuleSnapshot,
    UrlSnapshot,
    VariantSnapshot,
    has_expired,
)
from smartlink_app.schemas.url import URLStats, URLUpdate
from smartlink_app.services.short_code_factory import ShortCodeFactory
from smartlink_app.storage.strategies import ClickStorageStrategy


def snapshot_cache_key(short_code: str) -> str:
    return f"url:{short_code}"


def build_redirect_snapshot(url: URL) -> RedirectSnapshot:
    """
    Copy a link and its rules/variants out of the ORM.

    Rules whose stored conditions no longer validate are kept; the bad
    conditions never match and the problem is reported.
    """
    rules = []
    for rule in url.routing_rules:
        conditions, problems = load_conditions(rule.conditions)
        if problems:
            print(
                f"⚠️  Rule {rule.id} on '{url.short_code}' has invalid conditions "
                f"(treated as non-matching): {'; '.join(problems)}"
            )
        rules.append(RuleSnapshot(
            id=rule.id,
            name=rule.name,
            target_url=rule.target_url,
            priority=rule.priority,
            is_active=rule.is_active,
            conditions=conditions,
        ))

    return RedirectSnapshot(
        url=UrlSnapshot.model_validate(url),
        rules=rules,
        variants=[VariantSnapshot.model_validate(variant) for variant in url.variants],
    )


class ResolvedRedirect(NamedTuple):
    url: UrlSnapshot
    decision: RedirectDecision


class URLService:
    """
    Short links: CRUD, redirect snapshots and redirect resolution.

    Cache, queue and click storage are injected and optional; without a
    cache every redirect reads the DB, without a queue clicks are not
    counted, without storage stats only carry the DB counters.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional[CacheStrategy] = None,
        queue: Optional[QueueStrategy] = None,
        storage: Optional[ClickStorageStrategy] = None,
    ):
        self.db = db
        self.cache = cache
        self.queue = queue
        self.storage = storage
        self.short_code_strategy = ShortCodeFactory.create_strategy()

    async def create_short_url(
        self,
        original_url: str,
        default_url: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        **utm_presets: Optional[str],
    ) -> URL:
        """
        Create a new short link.

        The row is flushed first so the Base62 strategy can derive the code
        from its ID, then committed with the final code. The same target can
        be shortened any number of times.
        """
        url = URL(
            original_url=original_url,
            default_url=default_url,
            expires_at=expires_at,
            short_code=None,
            **utm_presets,
        )
        self.db.add(url)
        self.db.flush()

        url.short_code = self.short_code_strategy.generate(url.id, self.db)
        self.db.commit()
        self.db.refresh(url)
        return url

    async def update_url(self, short_code: str, data: URLUpdate) -> Union[URL, None]:
        """
        Apply a partial update and drop the cached snapshot.

        Works on deactivated links too, so `is_active` can switch them back on.
        original_url and is_active cannot be cleared.
        """
        url = self.db.query(URL).filter(URL.short_code == short_code).first()
        if not url:
            return None

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field in ("original_url", "is_active"):
                continue
            setattr(url, field, value)

        self.db.commit()
        self.db.refresh(url)
        await self.invalidate_snapshot(short_code)
        return url

    def find_active(self, short_code: str) -> Union[URL, None]:
        """The link if it exists, is active and has not expired."""
        url = self.db.query(URL).filter(
            URL.short_code == short_code,
            URL.is_active == True  # noqa: E712
        ).first()
        if url is not None and has_expired(url.expires_at):
            return None
        return url

    async def get_url_by_short_code(self, short_code: str) -> Union[URL, None]:
        return self.find_active(short_code)

    async def get_url_stats(self, short_code: str) -> Optional[URLStats]:
        url = self.db.query(URL).filter(URL.short_code == short_code).first()
        if not url:
            return None

        breakdowns = {}
        if self.storage:
            breakdowns = {
                "clicks_by_mechanism": await self.storage.get_clicks_by_mechanism(short_code),
                "clicks_by_device": await self.storage.get_clicks_by_device(short_code),
                "clicks_by_country": await self.storage.get_clicks_by_country(short_code),
                "top_referers": await self.storage.get_top_referers(short_code),
            }

        return URLStats(
            short_code=url.short_code,
            total_hits=url.total_hits,
            created_at=url.created_at,
            last_accessed=url.updated_at,
            **breakdowns,
        )

    async def delete_url(self, short_code: str) -> bool:
        """Soft delete: the link stops redirecting, its data is kept."""
        url = self.db.query(URL).filter(URL.short_code == short_code).first()
        if not url:
            return False

        url.is_active = False
        self.db.commit()
        await self.invalidate_snapshot(short_code)
        return True

    async def invalidate_snapshot(self, short_code: str):
        if self.cache and short_code:
            await self.cache.delete(snapshot_cache_key(short_code))

    async def get_redirect_snapshot(self, short_code: str) -> Optional[RedirectSnapshot]:
        """
        Cache-aside read of everything a redirect needs.

        Returns None for unknown, inactive or expired links. Unknown codes are
        not cached, so a link created later is visible immediately. A cached
        snapshot is never served past the link's expiry, and its TTL is
        capped at the time the link has left.
        """
        cache_key = snapshot_cache_key(short_code)

        if self.cache:
            cached = await self.cache.get_json(cache_key)
            if cached is not None:
                try:
                    snapshot = RedirectSnapshot.model_validate(cached)
                except ValidationError as e:
                    print(f"⚠️  Discarding stale snapshot for '{short_code}': {e.error_count()} errors")
                    await self.cache.delete(cache_key)
                else:
                    if not snapshot.url.is_expired():
                        return snapshot
                    print(f"🕒 Link '{short_code}' has expired")
                    await self.cache.delete(cache_key)
                    return None

        url = self.find_active(short_code)
        if not url:
            return None

        snapshot = build_redirect_snapshot(url)
        if self.cache:
            await self.cache.set_json(
                cache_key, snapshot.model_dump(mode="json"), ttl=self._snapshot_ttl(snapshot)
            )
        return snapshot

    @staticmethod
    def _snapshot_ttl(snapshot: RedirectSnapshot) -> int:
        expires_at = snapshot.url.expires_at
        if expires_at is None:
            return settings.cache_ttl
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        remaining = int((expires_at - datetime.now(timezone.utc)).total_seconds())
        return max(1, min(settings.cache_ttl, remaining))

    async def resolve_redirect(
        self,
        short_code: str,
        ctx: VisitContext,
        rng=None,
    ) -> Optional[ResolvedRedirect]:
        """Decide where a visit goes. None if the link is unknown, inactive or expired."""
        snapshot = await self.get_redirect_snapshot(short_code)
        if snapshot is None:
            return None
        decision = resolve(snapshot.url, snapshot.rules, snapshot.variants, ctx, rng)
        return ResolvedRedirect(url=snapshot.url, decision=decision)

    async def publish_click(
        self,
        resolved: ResolvedRedirect,
        ctx: VisitContext,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """Hand the click to the worker. Never blocks the redirect on failure."""
        if not self.queue:
            return False

        decision = resolved.decision
        utm = utm_values(
            {name: getattr(ctx, name) for name in UTM_PARAMS},
            resolved.url.utm_presets,
        )
        event = ClickEvent(
            short_code=resolved.url.short_code,
            url_id=resolved.url.id,
            timestamp=ctx.timestamp,
            ip_address=ip_address,
            user_agent=user_agent,
            referer=ctx.referer,
            country=ctx.country,
            region=ctx.region,
            city=ctx.city,
            device_type=ctx.device_type.value if ctx.device_type else None,
            os=ctx.os,
            browser=ctx.browser,
            language=ctx.language,
            is_bot=ctx.is_bot,
            **utm,
            mechanism=decision.mechanism.value,
            rule_id=decision.matched_rule_id,
            variant_id=decision.matched_variant_id,
            target_url=decision.target_url,
        )
        published = await self.queue.publish(settings.queue_name, event)
        if not published:
            print(f"⚠️  Click for '{resolved.url.short_code}' was not queued")
        return published
