from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from quoteboard.config import Settings, settings as default_settings
from quoteboard.db import Store
from quoteboard.errors import QuoteboardError
from quoteboard.logging_setup import configure_logging
from quoteboard.routes.system import router as system_router
from quoteboard.routes.auth import router as auth_router, root_router as auth_root_router
from quoteboard.routes.quotes import router as quotes_router
from quoteboard.routes.votes import router as votes_router
import structlog

log = structlog.get_logger()

def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid input"
    first = errors[0]
    loc = first.get("loc") or ()
    if len(loc) >= 2 and loc[0] == "path" and loc[1] == "quote_id":
        return "Invalid quote ID"
    where = ".".join(str(p) for p in loc if p not in ("body", "query", "path"))
    return f"{where}: {first.get('msg')}" if where else str(first.get("msg"))

def create_app(cfg: Settings | None = None, *, store: Store | None = None) -> FastAPI:
    """Build the API. Pass ``store`` to share an already-open handle; otherwise the lifespan owns one."""
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.store is None
        if owned:
            app.state.store = Store(cfg)
            if cfg.auto_create_schema:
                await app.state.store.create_all()
        log.info("startup", env=cfg.environment, version=cfg.app_version, git_sha=cfg.git_sha)
        try:
            yield
        finally:
            if owned:
                await app.state.store.dispose()
                app.state.store = None
            log.info("shutdown")

    app = FastAPI(
        title="Quoteboard API",
        version=cfg.app_version,
        lifespan=lifespan,
        description="Share quotes and cast your single vote",
    )
    app.state.settings = cfg
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if cfg.environment == "dev" else cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
        allow_headers=["Origin", "Content-Length", "Content-Type", "Authorization", "X-Requested-With", "Accept", "X-Request-ID"],
        expose_headers=["Content-Length", "Content-Type", "Authorization", "X-Request-ID"],
        max_age=12 * 3600,
    )

    app.include_router(system_router)
    app.include_router(auth_router)
    app.include_router(auth_root_router)
    app.include_router(quotes_router)
    app.include_router(votes_router)

    @app.exception_handler(QuoteboardError)
    async def quoteboard_error(request: Request, exc: QuoteboardError):
        if exc.status_code >= 500:
            log.error("request_failed", kind=exc.kind, error=exc.message, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content={"kind": exc.kind, "detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"kind": "InvalidInput", "detail": _validation_message(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        log.exception("unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content={"kind": "InternalError", "detail": "Internal server error"})

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid
        structlog.contextvars.bind_contextvars(request_id=rid)
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers["X-Request-ID"] = rid
        return response

    return app

configure_logging(default_settings.log_level)
app = create_app()
