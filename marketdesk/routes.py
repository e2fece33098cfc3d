"""
HTTP routes for the marketdesk JSON API.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile

from marketdesk.auth import AuthClient, AuthSession, build_session
from marketdesk.config import Settings, get_settings
from marketdesk.db import CollectionStore
from marketdesk.dependencies import (
    get_auth_client,
    get_change_feed,
    get_live_views,
    get_session,
    get_storage_client,
    get_store,
    require_admin,
    require_session,
)
from marketdesk.exports import export_csv, export_pdf, export_png
from marketdesk.fetcher import FetcherStatus, SyncedCollectionFetcher, resolve_images
from marketdesk.live import LiveViews
from marketdesk.realtime import ChangeFeed
from marketdesk.records import COLLECTIONS, coerce_filters
from marketdesk.schemas import (
    AdminStatsResponse,
    CollectionResponse,
    DashboardResponse,
    InsightPayload,
    ItemResponse,
    MarketDataCreate,
    MarketDataFileCreate,
    MarketDataUpdate,
    PostCreate,
    SessionResponse,
    SignInRequest,
    SignUrlResponse,
    StatusResponse,
    UploadResponse,
)
from marketdesk.services import (
    InsightService,
    MarketDataFileService,
    MarketDataService,
    PostService,
    admin_stats,
    dashboard_summary,
    search_rows,
)
from marketdesk.storage import StorageClient
from marketdesk.uploads import UPLOAD_PREFIXES, UploadItem, upload_images

logger = logging.getLogger(__name__)

router = APIRouter()

PUBLIC_COLLECTIONS = ("posts", "insights", "market_data", "market_data_files")
RESERVED_PARAMS = {"select", "order", "desc", "limit", "search"}

EXPORT_MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "pdf": "application/pdf",
    "png": "image/png",
}


def _check_readable(collection: str, session: Optional[AuthSession]) -> None:
    if collection not in COLLECTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown collection: {collection}")
    if collection not in PUBLIC_COLLECTIONS and not (session and session.is_admin):
        raise HTTPException(status_code=403, detail="Collection is not readable")


async def _load(fetcher: SyncedCollectionFetcher) -> CollectionResponse:
    await fetcher.load()
    if fetcher.status == FetcherStatus.ERRORED:
        raise HTTPException(status_code=400, detail=fetcher.error)
    return CollectionResponse(
        collection=fetcher.collection,
        status=fetcher.status.value,
        items=fetcher.rows(),
    )


def _session_response(session: AuthSession, include_token: bool = False) -> SessionResponse:
    return SessionResponse(
        user_id=session.user.id,
        email=session.user.email,
        role=session.user.role,
        is_admin=session.is_admin,
        access_token=session.access_token if include_token else None,
    )


@router.get("/health", response_model=StatusResponse)
def health():
    return StatusResponse(status="ok")


@router.post("/auth/sign-in", response_model=SessionResponse)
def sign_in(
    payload: SignInRequest,
    auth: AuthClient = Depends(get_auth_client),
    settings: Settings = Depends(get_settings),
):
    user, token = auth.sign_in(payload.email, payload.password)
    session = build_session(user, token, settings.admin_email)
    logger.info("Signed in user %s (admin=%s)", session.user.id, session.is_admin)
    return _session_response(session, include_token=True)


@router.post("/auth/sign-out", response_model=StatusResponse)
def sign_out(
    session: AuthSession = Depends(require_session),
    auth: AuthClient = Depends(get_auth_client),
):
    auth.sign_out(session.access_token)
    return StatusResponse(status="ok")


@router.get("/auth/session", response_model=SessionResponse)
def current_session(session: AuthSession = Depends(require_session)):
    return _session_response(session)


@router.get("/collections/{collection}", response_model=CollectionResponse)
async def load_collection(
    collection: str,
    request: Request,
    select: str = Query("*"),
    order: Optional[str] = Query(None),
    desc: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    search: Optional[str] = Query(None, description="Case-insensitive title search"),
    session: Optional[AuthSession] = Depends(get_session),
    store: CollectionStore = Depends(get_store),
    storage: StorageClient = Depends(get_storage_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Load a collection once. Query parameters other than the reserved ones
    are equality filters, e.g. `?category=fuel`.
    """
    _check_readable(collection, session)
    filters = {
        key: value
        for key, value in request.query_params.items()
        if key not in RESERVED_PARAMS
    }
    fetcher = SyncedCollectionFetcher(
        store,
        storage,
        feed,
        collection,
        select,
        coerce_filters(collection, filters),
        order_by=order,
        descending=desc,
        limit=limit,
        search={"title": search} if search else None,
    )
    return await _load(fetcher)


@router.get("/live/{collection}", response_model=CollectionResponse)
async def live_collection(
    collection: str,
    session: Optional[AuthSession] = Depends(get_session),
    live: LiveViews = Depends(get_live_views),
):
    _check_readable(collection, session)
    fetcher = await live.get(collection)
    return CollectionResponse(
        collection=collection,
        status=fetcher.status.value,
        items=fetcher.rows(),
        error=fetcher.error,
    )


@router.post("/live/{collection}/refresh", response_model=CollectionResponse)
async def refresh_live_collection(
    collection: str,
    session: Optional[AuthSession] = Depends(get_session),
    live: LiveViews = Depends(get_live_views),
):
    _check_readable(collection, session)
    fetcher = await live.get(collection)
    await fetcher.refresh()
    return CollectionResponse(
        collection=collection,
        status=fetcher.status.value,
        items=fetcher.rows(),
        error=fetcher.error,
    )


@router.get("/posts", response_model=CollectionResponse)
async def list_posts(
    search: Optional[str] = Query(None),
    store: CollectionStore = Depends(get_store),
    storage: StorageClient = Depends(get_storage_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    fetcher = SyncedCollectionFetcher(
        store,
        storage,
        feed,
        "posts",
        order_by="created_at",
        descending=True,
        search={"title": search} if search else None,
    )
    return await _load(fetcher)


@router.get("/posts/{post_id}", response_model=ItemResponse)
async def get_post(
    post_id: str,
    store: CollectionStore = Depends(get_store),
    storage: StorageClient = Depends(get_storage_client),
):
    post = await asyncio.to_thread(PostService(store).get_post, post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    post = await resolve_images(storage, post)
    return ItemResponse(item=post.model_dump())


@router.post("/admin/posts", response_model=ItemResponse, status_code=201)
def create_post(
    payload: PostCreate,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    post = PostService(store).create_post(
        session,
        title=payload.title,
        body=payload.body,
        category=payload.category,
        images=payload.images,
        post_type=payload.post_type,
    )
    return ItemResponse(item=post.model_dump())


@router.get("/insights", response_model=CollectionResponse)
async def list_insights(
    store: CollectionStore = Depends(get_store),
    storage: StorageClient = Depends(get_storage_client),
    feed: ChangeFeed = Depends(get_change_feed),
):
    fetcher = SyncedCollectionFetcher(
        store, storage, feed, "insights", order_by="created_at", descending=True
    )
    return await _load(fetcher)


@router.post("/admin/insights", response_model=ItemResponse, status_code=201)
def create_insight(
    payload: InsightPayload,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    insight = InsightService(store).save(**payload.model_dump())
    return ItemResponse(item=insight.model_dump())


@router.put("/admin/insights/{insight_id}", response_model=ItemResponse)
def update_insight(
    insight_id: str,
    payload: InsightPayload,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    insight = InsightService(store).save(insight_id=insight_id, **payload.model_dump())
    if insight is None:
        raise HTTPException(status_code=404, detail="Insight not found")
    return ItemResponse(item=insight.model_dump())


@router.delete("/admin/insights/{insight_id}", response_model=StatusResponse)
def delete_insight(
    insight_id: str,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    if not InsightService(store).delete(insight_id):
        raise HTTPException(status_code=404, detail="Insight not found")
    return StatusResponse(status="ok")


@router.get("/market-data", response_model=CollectionResponse)
def list_market_data(
    q: Optional[str] = Query(None, description="Case-insensitive text search across all fields"),
    store: CollectionStore = Depends(get_store),
):
    rows = [record.model_dump() for record in MarketDataService(store).list_entries()]
    if q:
        rows = search_rows(rows, q)
    return CollectionResponse(
        collection="market_data", status=FetcherStatus.READY.value, items=rows
    )


@router.post("/admin/market-data", response_model=ItemResponse, status_code=201)
def create_market_data(
    payload: MarketDataCreate,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    data = payload.model_dump()
    entry = MarketDataService(store).insert(
        category=data.pop("category"),
        value=data.pop("value"),
        images=data.pop("images"),
        session=session,
        **{k: v for k, v in data.items() if v is not None},
    )
    return ItemResponse(item=entry.model_dump())


@router.patch("/admin/market-data/{entry_id}", response_model=ItemResponse)
def update_market_data(
    entry_id: str,
    payload: MarketDataUpdate,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    entry = MarketDataService(store).update(entry_id, **payload.model_dump())
    if entry is None:
        raise HTTPException(status_code=404, detail="Market data not found")
    return ItemResponse(item=entry.model_dump())


@router.delete("/admin/market-data/{entry_id}", response_model=StatusResponse)
def delete_market_data(
    entry_id: str,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    if not MarketDataService(store).delete(entry_id):
        raise HTTPException(status_code=404, detail="Market data not found")
    return StatusResponse(status="ok")


@router.get("/market-data/export/{fmt}")
def export_market_data(fmt: str, store: CollectionStore = Depends(get_store)):
    if fmt not in EXPORT_MEDIA_TYPES:
        raise HTTPException(status_code=404, detail="Unsupported export format")
    records = MarketDataService(store).list_for_export()
    writer = {"csv": export_csv, "pdf": export_pdf, "png": export_png}[fmt]
    return Response(
        content=writer(records),
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="market_data.{fmt}"'},
    )


@router.get("/market-data-files", response_model=CollectionResponse)
def list_market_data_files(store: CollectionStore = Depends(get_store)):
    files = MarketDataFileService(store).list_files()
    return CollectionResponse(
        collection="market_data_files",
        status=FetcherStatus.READY.value,
        items=[f.model_dump() for f in files],
    )


@router.post("/admin/market-data-files", response_model=ItemResponse, status_code=201)
def add_market_data_file(
    payload: MarketDataFileCreate,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    record = MarketDataFileService(store).add(
        title=payload.title,
        google_sheets_url=payload.google_sheets_url,
        data_type=payload.data_type,
    )
    return ItemResponse(item=record.model_dump())


@router.delete("/admin/market-data-files/{file_id}", response_model=StatusResponse)
def delete_market_data_file(
    file_id: str,
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    if not MarketDataFileService(store).delete(file_id):
        raise HTTPException(status_code=404, detail="File not found")
    return StatusResponse(status="ok")


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(store: CollectionStore = Depends(get_store)):
    summary = dashboard_summary(store)
    featured = summary["featured_insight"]
    return DashboardResponse(
        featured_insight=featured.model_dump() if featured else None,
        latest_insights=[i.model_dump() for i in summary["latest_insights"]],
        market_data=summary["market_data"].model_dump(),
        last_updated=summary["last_updated"],
    )


@router.get("/admin/stats", response_model=AdminStatsResponse)
def stats(
    session: AuthSession = Depends(require_admin),
    store: CollectionStore = Depends(get_store),
):
    return AdminStatsResponse(**admin_stats(store))


@router.post("/admin/uploads/{prefix}", response_model=UploadResponse)
async def upload(
    prefix: str,
    files: list[UploadFile] = File(...),
    session: AuthSession = Depends(require_admin),
    storage: StorageClient = Depends(get_storage_client),
):
    if prefix not in UPLOAD_PREFIXES:
        raise HTTPException(status_code=400, detail=f"Unknown upload type: {prefix}")
    items = [
        UploadItem(
            filename=file.filename or "upload",
            data=await file.read(),
            content_type=file.content_type or "application/octet-stream",
        )
        for file in files
    ]
    paths = await asyncio.to_thread(upload_images, storage, items, prefix)
    return UploadResponse(paths=paths, urls=[storage.public_url(p) for p in paths])


@router.get("/sign-url", response_model=SignUrlResponse)
def sign_url(
    path: str = Query(..., description="Object path in storage"),
    expires_in: int = Query(3600, ge=60, le=86400),
    storage: StorageClient = Depends(get_storage_client),
):
    return SignUrlResponse(url=storage.presign_get(path, expires_in=expires_in))
