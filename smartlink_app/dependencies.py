"""
FastAPI dependencies.

Cache, queue and click storage are process-wide singletons built from
settings; services are built per request around the request's DB session.
Tests override get_db / get_cache / get_queue / get_click_storage.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from smartlink_app.cache.factory import CacheFactory, CacheBackend
from smartlink_app.cache.strategies import CacheStrategy
from smartlink_app.config import settings
from smartlink_app.database.connection import get_db
from smartlink_app.queue.factory import QueueFactory, QueueBackend
from smartlink_app.queue.strategies import QueueStrategy
from smartlink_app.storage.factory import ClickStorageFactory, ClickStorageBackend
from smartlink_app.storage.strategies import ClickStorageStrategy


@lru_cache()
def get_cache() -> CacheStrategy:
    return CacheFactory.create(CacheBackend(settings.cache_backend))


@lru_cache()
def get_queue() -> QueueStrategy:
    return QueueFactory.create(QueueBackend(settings.queue_backend))


@lru_cache()
def get_click_storage() -> ClickStorageStrategy:
    return ClickStorageFactory.create(ClickStorageBackend(settings.click_storage_backend))


def get_url_service(
    db: Session = Depends(get_db),
    cache: CacheStrategy = Depends(get_cache),
    queue: QueueStrategy = Depends(get_queue),
    storage: ClickStorageStrategy = Depends(get_click_storage),
):
    from smartlink_app.services.url_service import URLService
    return URLService(db=db, cache=cache, queue=queue, storage=storage)


def get_routing_service(
    db: Session = Depends(get_db),
    cache: CacheStrategy = Depends(get_cache),
):
    from smartlink_app.services.routing_service import RoutingService
    return RoutingService(db=db, cache=cache)


def get_variant_service(
    db: Session = Depends(get_db),
    cache: CacheStrategy = Depends(get_cache),
    storage: ClickStorageStrategy = Depends(get_click_storage),
):
    from smartlink_app.services.variant_service import VariantService
    return VariantService(db=db, cache=cache, storage=storage)
