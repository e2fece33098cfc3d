"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException

from marketdesk.auth import AuthClient, AuthSession, HostedAuthClient, InMemoryAuthClient, authorize, build_session
from marketdesk.config import Settings, get_settings
from marketdesk.db import CollectionStore, InMemoryCollectionStore, PostgresCollectionStore
from marketdesk.errors import AuthError
from marketdesk.live import LiveViews
from marketdesk.realtime import ChangeFeed, InMemoryChangeFeed, RedisChangeFeed
from marketdesk.security import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from marketdesk.storage import InMemoryStorageClient, S3StorageClient, StorageClient

_change_feed: ChangeFeed | None = None
_store: CollectionStore | None = None
_storage_client: StorageClient | None = None
_auth_client: AuthClient | None = None
_live_views: LiveViews | None = None


def get_change_feed() -> ChangeFeed:
    global _change_feed
    if _change_feed is not None:
        return _change_feed

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.redis_url:
        _change_feed = InMemoryChangeFeed()
    else:
        _change_feed = RedisChangeFeed(
            url=settings.redis_url,
            channel_prefix=settings.realtime_channel_prefix,
        )
    return _change_feed


def get_store() -> CollectionStore:
    """
    Return a singleton table store so in-memory rows persist across requests.
    """
    global _store
    if _store is not None:
        return _store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _store = InMemoryCollectionStore(feed=get_change_feed())
    else:
        _store = PostgresCollectionStore(settings.database_url, feed=get_change_feed())
    return _store


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client is not None:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.storage_public_base_url,
        )
    return _storage_client


def get_auth_client() -> AuthClient:
    global _auth_client
    if _auth_client is not None:
        return _auth_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.supabase_url or not settings.supabase_anon_key:
        _auth_client = InMemoryAuthClient()
    else:
        _auth_client = HostedAuthClient(
            base_url=settings.supabase_url,
            api_key=settings.supabase_anon_key,
        )
    return _auth_client


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.redis_url and not settings.use_in_memory_backends:
        return RedisRateLimiter(
            url=settings.redis_url,
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def get_live_views() -> LiveViews:
    global _live_views
    if _live_views is not None:
        return _live_views
    _live_views = LiveViews(get_store(), get_storage_client(), get_change_feed())
    return _live_views


def get_session(
    authorization: Optional[str] = Header(default=None),
    auth: AuthClient = Depends(get_auth_client),
    settings: Settings = Depends(get_settings),
) -> Optional[AuthSession]:
    """Resolve the bearer token to a session, or None when signed out."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    try:
        user = auth.get_user(token)
    except AuthError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if user is None:
        return None
    return build_session(user, token, settings.admin_email)


def require_session(
    session: Optional[AuthSession] = Depends(get_session),
) -> AuthSession:
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return session


def require_admin(session: AuthSession = Depends(require_session)) -> AuthSession:
    if not authorize(session, ["admin"]):
        raise HTTPException(
            status_code=403, detail="You don't have permission to view this page."
        )
    return session
