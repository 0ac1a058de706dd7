from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional, Set

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from walletauth.api.admin.sessions import router as admin_sessions_router
from walletauth.api.health import router as health_router
from walletauth.api.sessions import router as sessions_router
from walletauth.api.wallet import router as wallet_router
from walletauth.core.analytics import AnalyticsService
from walletauth.core.errors import BackendUnavailable, SessionNotFound, ValidationError
from walletauth.core.kv_store import KVBackend
from walletauth.core.logging import configure_logging, log_event
from walletauth.core.middleware_rate_limit import RateLimitIPMiddleware
from walletauth.core.periodic import PeriodicTask, Reconciler
from walletauth.core.rate_limit import MemoryFixedWindowLimiter
from walletauth.core.session_service import SessionService
from walletauth.core.session_store import SessionStore
from walletauth.infra.bootstrap import build_backend, check_backend
from walletauth.settings import Settings, settings

logger = logging.getLogger(__name__)

MAX_PENDING_TRACKING = 1000


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "statusCode": status_code, **extra})


def create_app(s: Optional[Settings] = None, backend: Optional[KVBackend] = None) -> FastAPI:
    s = s or settings
    configure_logging(env=s.ENV)

    backend = backend if backend is not None else build_backend(s)
    store = SessionStore(
        backend,
        ttl_sec=s.SESSION_TTL_SEC,
        # the index may never outlive its sessions by more than one sweep
        index_grace_sec=min(s.INDEX_GRACE_SEC, s.RECONCILE_INTERVAL_SEC),
    )
    analytics = None
    if s.ANALYTICS_ENABLED:
        analytics = AnalyticsService(
            backend,
            store,
            active_window_sec=s.ACTIVE_WINDOW_SEC,
            chain_ids=s.SUPPORTED_CHAIN_IDS,
        )
    sessions = SessionService(
        store,
        supported_chain_ids=s.SUPPORTED_CHAIN_IDS,
        metadata_max_bytes=s.METADATA_MAX_BYTES,
        analytics=analytics,
    )
    limiter = MemoryFixedWindowLimiter(max_requests=s.RATE_LIMIT_MAX_REQUESTS, window_sec=s.RATE_LIMIT_WINDOW_SEC)

    async def _sweep_limiter() -> int:
        return limiter.sweep()

    reconciler = Reconciler(store, interval_sec=s.RECONCILE_INTERVAL_SEC)
    limiter_sweep = PeriodicTask("rate-limit-sweep", s.RATE_LIMIT_SWEEP_SEC, _sweep_limiter)
    # request counters are written off the request path; keep references until done
    tracking: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await check_backend(backend)
        if s.RECONCILE_ENABLED:
            reconciler.start()
        if s.RATE_LIMIT_ENABLED:
            limiter_sweep.start()
        logger.info("%s v%s starting up env=%s", s.APP_NAME, s.APP_VERSION, s.ENV)
        try:
            yield
        finally:
            await reconciler.stop()
            await limiter_sweep.stop()
            if tracking:
                await asyncio.gather(*tracking, return_exceptions=True)
            await backend.close()
            logger.info("%s shutting down", s.APP_NAME)

    app = FastAPI(title=s.APP_NAME, version=s.APP_VERSION, lifespan=lifespan)
    app.state.settings = s
    app.state.backend = backend
    app.state.store = store
    app.state.sessions = sessions
    app.state.analytics = analytics
    app.state.limiter = limiter
    app.state.reconciler = reconciler
    app.state.tracking = tracking

    # CORS (tighten allow_origins in prod)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RateLimitIPMiddleware, limiter=limiter, enabled=s.RATE_LIMIT_ENABLED)

    # registered last so it wraps the rate limiter and sees 429s too
    @app.middleware("http")
    async def request_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        log_event(
            "http.request",
            method=request.method,
            path=endpoint,
            status=response.status_code,
            ms=round((time.perf_counter() - started) * 1000, 1),
        )
        if analytics is not None:
            if len(tracking) < MAX_PENDING_TRACKING:
                task = asyncio.create_task(analytics.track_request(endpoint, request.method, response.status_code))
                tracking.add(task)
                task.add_done_callback(tracking.discard)
            else:
                logger.warning("Request counter dropped, %d updates pending", len(tracking))
        return response

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(SessionNotFound)
    async def _not_found(request: Request, exc: SessionNotFound):
        return _error(404, "Session not found")

    @app.exception_handler(BackendUnavailable)
    async def _backend_down(request: Request, exc: BackendUnavailable):
        logger.error("Backend unavailable path=%s: %s", request.url.path, exc)
        return _error(503, "Session store unavailable")

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        details = []
        for err in exc.errors():
            field = ".".join(str(loc) for loc in err["loc"] if loc != "body")
            details.append({"field": field or None, "issue": err["msg"]})
        return _error(400, "Invalid request", details=details)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unexpected error path=%s", request.url.path)
        message = str(exc) if s.ENV == "dev" else "Something went wrong"
        return JSONResponse(status_code=500, content={"error": "Internal Server Error", "message": message})

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(wallet_router)
    app.include_router(admin_sessions_router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("walletauth.main:app", host=settings.HOST, port=settings.PORT, reload=(settings.ENV == "dev"))
