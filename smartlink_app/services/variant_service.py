from typing import Optional

from sqlalchemy.orm import Session

from smartlink_app.cache.strategies import CacheStrategy
from smartlink_app.config import settings
from smartlink_app.models import URL, URLVariant
from smartlink_app.routing.variants import FULL_WEIGHT, control_weight
from smartlink_app.schemas.variant import (
    VariantCreate,
    VariantList,
    VariantResponse,
    VariantStat,
    VariantUpdate,
)
from smartlink_app.services.errors import VariantWeightError, rounded_percentage
from smartlink_app.services.url_service import snapshot_cache_key
from smartlink_app.storage.strategies import ClickStorageStrategy


class VariantService:
    """
    A/B test variants of a short link.

    The first variant turns A/B testing on for the link and deleting the
    last one turns it off. Traffic the active variants do not claim stays
    on the original URL as the control group.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional[CacheStrategy] = None,
        storage: Optional[ClickStorageStrategy] = None,
    ):
        self.db = db
        self.cache = cache
        self.storage = storage

    def _get_url(self, short_code: str) -> Optional[URL]:
        return self.db.query(URL).filter(
            URL.short_code == short_code,
            URL.is_active == True  # noqa: E712
        ).first()

    def _get_variant(self, url: URL, variant_id: int) -> Optional[URLVariant]:
        return self.db.query(URLVariant).filter(
            URLVariant.id == variant_id,
            URLVariant.url_id == url.id,
        ).first()

    async def _invalidate(self, url: URL):
        if self.cache:
            await self.cache.delete(snapshot_cache_key(url.short_code))

    def _check_weights(self, url: URL, weight: int, is_active: bool, exclude_id: Optional[int] = None):
        """Reject a write that would push active weights past 100."""
        if not settings.enforce_variant_weight_limit or not is_active:
            return
        query = self.db.query(URLVariant).filter(
            URLVariant.url_id == url.id,
            URLVariant.is_active == True  # noqa: E712
        )
        if exclude_id is not None:
            query = query.filter(URLVariant.id != exclude_id)
        used = sum(variant.weight for variant in query.all())
        if used + weight > FULL_WEIGHT:
            raise VariantWeightError(
                f"Active variant weights would total {used + weight}; "
                f"at most {FULL_WEIGHT - used} is left for this variant"
            )

    async def create_variant(self, short_code: str, data: VariantCreate) -> Optional[URLVariant]:
        """
        Raises:
            VariantWeightError: active weights would exceed 100
        """
        url = self._get_url(short_code)
        if not url:
            return None
        self._check_weights(url, data.weight, data.is_active)

        variant = URLVariant(
            url_id=url.id,
            name=data.name,
            target_url=data.target_url,
            weight=data.weight,
            is_active=data.is_active,
        )
        self.db.add(variant)
        url.is_ab_test = True
        self.db.commit()
        self.db.refresh(variant)

        await self._invalidate(url)
        return variant

    async def list_variants(self, short_code: str) -> Optional[VariantList]:
        """
        Variants in creation order plus per-bucket stats.

        The control group is listed when it has weight or has received
        clicks; its clicks come from the click store.
        """
        url = self._get_url(short_code)
        if not url:
            return None

        variants = self.db.query(URLVariant).filter(
            URLVariant.url_id == url.id
        ).order_by(URLVariant.id.asc()).all()

        control_clicks = await self.storage.get_control_clicks(short_code) if self.storage else 0
        remaining_weight = control_weight(variants)
        total_clicks = sum(variant.click_count for variant in variants) + control_clicks

        stats = [
            VariantStat(
                variant_id=variant.id,
                name=variant.name,
                target_url=variant.target_url,
                weight=variant.weight,
                click_count=variant.click_count,
                click_through_rate=rounded_percentage(variant.click_count, total_clicks),
            )
            for variant in variants
        ]
        if remaining_weight > 0 or control_clicks > 0:
            stats.insert(0, VariantStat(
                name="Control Group (Original URL)",
                target_url=url.original_url,
                weight=remaining_weight,
                click_count=control_clicks,
                click_through_rate=rounded_percentage(control_clicks, total_clicks),
                is_control=True,
            ))

        return VariantList(
            variants=[VariantResponse.model_validate(variant) for variant in variants],
            total_clicks=total_clicks,
            control_weight=remaining_weight,
            stats=stats,
        )

    async def get_variant(self, short_code: str, variant_id: int) -> Optional[URLVariant]:
        url = self._get_url(short_code)
        if not url:
            return None
        return self._get_variant(url, variant_id)

    async def update_variant(
        self,
        short_code: str,
        variant_id: int,
        data: VariantUpdate,
    ) -> Optional[URLVariant]:
        url = self._get_url(short_code)
        if not url:
            return None
        variant = self._get_variant(url, variant_id)
        if not variant:
            return None

        weight = data.weight if data.weight is not None else variant.weight
        is_active = data.is_active if data.is_active is not None else variant.is_active
        self._check_weights(url, weight, is_active, exclude_id=variant.id)

        for field in ("name", "target_url", "weight", "is_active"):
            value = getattr(data, field)
            if value is not None:
                setattr(variant, field, value)
        self.db.commit()
        self.db.refresh(variant)

        await self._invalidate(url)
        return variant

    async def delete_variant(self, short_code: str, variant_id: int) -> bool:
        url = self._get_url(short_code)
        if not url:
            return False
        variant = self._get_variant(url, variant_id)
        if not variant:
            return False

        self.db.delete(variant)
        self.db.flush()
        remaining = self.db.query(URLVariant).filter(URLVariant.url_id == url.id).count()
        if remaining == 0:
            url.is_ab_test = False
        self.db.commit()

        await self._invalidate(url)
        return True
