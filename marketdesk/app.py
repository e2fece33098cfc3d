"""
FastAPI application entry point: JSON API plus the single-page bundle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from marketdesk.config import Settings, get_settings
from marketdesk.dependencies import build_rate_limiter, get_live_views
from marketdesk.errors import AuthError, RecordValidationError, StorageError, StoreError
from marketdesk.routes import router
from marketdesk.security import RATE_LIMIT_MESSAGE, RateLimiter, security_headers

logger = logging.getLogger(__name__)

LIVE_COLLECTIONS = ["market_data", "insights"]
IMMUTABLE_CACHE = "public, max-age=31536000, immutable"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"status": "error", "message": message}
    )


def _lifespan(settings: Settings):
    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        live = get_live_views()
        task = None
        if settings.refresh_interval_seconds > 0:
            task = asyncio.create_task(
                live.poll(settings.refresh_interval_seconds, LIVE_COLLECTIONS)
            )
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            live.close()

    return lifespan


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RecordValidationError)
    async def validation_error(request: Request, exc: RecordValidationError):
        return _error(422, str(exc))

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        logger.warning("Store error on %s: %s", request.url.path, exc)
        return _error(400, str(exc))

    @app.exception_handler(AuthError)
    async def auth_error(request: Request, exc: AuthError):
        return _error(401, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        logger.error("Storage error on %s: %s", request.url.path, exc)
        return _error(502, str(exc))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal Server Error")


def _install_middleware(app: FastAPI, settings: Settings, limiter: RateLimiter) -> None:
    headers = security_headers(settings.supabase_url or None)

    @app.middleware("http")
    async def protect(request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        result = await run_in_threadpool(limiter.hit, client)
        if not result.allowed:
            response = PlainTextResponse(RATE_LIMIT_MESSAGE, status_code=429)
            response.headers["Retry-After"] = str(int(result.reset_after) or 1)
        else:
            response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response

    if settings.is_production:

        @app.middleware("http")
        async def access_log(request: Request, call_next):
            started = time.perf_counter()
            response = await call_next(request)
            logger.info(
                '%s "%s %s" %s %.1fms',
                request.client.host if request.client else "-",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
            return response

    app.add_middleware(GZipMiddleware, minimum_size=1000)


def _install_spa(app: FastAPI, settings: Settings) -> None:
    dist = Path(settings.dist_dir).resolve()
    api_root = settings.api_prefix.strip("/")

    @app.get("/{full_path:path}", include_in_schema=False)
    def single_page_app(full_path: str):
        if api_root and (full_path == api_root or full_path.startswith(api_root + "/")):
            raise HTTPException(status_code=404, detail="Not Found")
        if full_path:
            candidate = (dist / full_path).resolve()
            if candidate.is_relative_to(dist) and candidate.is_file():
                return FileResponse(candidate, headers={"Cache-Control": IMMUTABLE_CACHE})
        index = dist / "index.html"
        if not index.is_file():
            raise HTTPException(status_code=404, detail="Not Found")
        return FileResponse(index, headers={"Cache-Control": "no-cache"})


def create_app(
    settings: Optional[Settings] = None, rate_limiter: Optional[RateLimiter] = None
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="marketdesk", version="0.1.0", lifespan=_lifespan(settings)
    )
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter or build_rate_limiter(settings)

    _install_error_handlers(app)
    _install_middleware(app, settings, app.state.rate_limiter)
    app.include_router(router, prefix=settings.api_prefix)
    _install_spa(app, settings)
    return app


app = create_app()
