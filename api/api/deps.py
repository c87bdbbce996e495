from functools import lru_cache

import redis
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.cache import get_redis
from core.config import Settings, get_settings
from core.database import SessionLocal, get_db
from services.aggregator import AnalyticsAggregator
from services.classifier import ClickClassifier
from services.link_store import LinkStore
from services.passwords import PasswordProofs
from services.rate_limit import RateLimiter
from services.recorder import ClickRecorder
from services.reserved import ReservedPaths
from services.resolver import RedirectResolver


@lru_cache
def get_reserved_paths() -> ReservedPaths:
    return ReservedPaths(get_settings().reserved_paths_extra)


@lru_cache
def get_classifier() -> ClickClassifier:
    return ClickClassifier(get_settings().bot_signatures)


@lru_cache
def get_recorder() -> ClickRecorder:
    return ClickRecorder(SessionLocal)


def get_link_store(
    db: Session = Depends(get_db),
    reserved: ReservedPaths = Depends(get_reserved_paths),
    settings: Settings = Depends(get_settings),
) -> LinkStore:
    return LinkStore(db, reserved, settings)


def get_password_proofs(
    redis_client: redis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> PasswordProofs:
    return PasswordProofs(redis_client, settings.password_session_ttl)


def get_resolver(
    store: LinkStore = Depends(get_link_store),
    proofs: PasswordProofs = Depends(get_password_proofs),
    classifier: ClickClassifier = Depends(get_classifier),
) -> RedirectResolver:
    return RedirectResolver(store, proofs, classifier)


def get_aggregator(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> AnalyticsAggregator:
    return AnalyticsAggregator(db, settings)


def get_rate_limiter(redis_client: redis.Redis = Depends(get_redis)) -> RateLimiter:
    return RateLimiter(redis_client)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    return (
        request.headers.get("cf-connecting-ip")
        or forwarded.split(",")[0].strip()
        or (request.client.host if request.client else "unknown")
    )
