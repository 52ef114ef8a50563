import os
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings as default_settings
from .db import Store, build_store
from .errors import DispatchError
from .logging import setup_logging, RequestIdMiddleware
from .routes.analytics import router as analytics_router
from .routes.completions import router as completions_router
from .routes.orders import router as orders_router
from .routes.subcontractors import router as subcontractors_router
from .routes.time_slots import router as time_slots_router

logger = structlog.get_logger(__name__)


def _error_response(status_code: int, message: str, code: str, field=None, **extra) -> JSONResponse:
    body = {"error": message, "code": code, "field": field}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DispatchError)
    async def _dispatch_error(request: Request, exc: DispatchError):
        logger.info("request_rejected", code=exc.code, status_code=exc.status_code, field=exc.field)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = list(first.get("loc") or [])
        field = str(loc[-1]) if len(loc) > 1 else None
        if loc and loc[0] == "path":
            return _error_response(400, f"Invalid {field or 'id'}", "INVALID_ID", field=field)
        return _error_response(400, first.get("msg") or "Invalid request", "INVALID_REQUEST", field=field)

    @app.exception_handler(SQLAlchemyError)
    async def _store_error(request: Request, exc: SQLAlchemyError):
        logger.error("store_error", error=str(exc), exc_info=True)
        return _error_response(500, "Internal server error", "INTERNAL_ERROR")

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.error("unhandled_exception", error=str(exc), exc_info=True)
        return _error_response(500, "Internal server error", "INTERNAL_ERROR")


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.log_level)
    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.store = store or build_store(settings.database_url, settings.sqlite_busy_timeout_s)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_error_handlers(app)

    app.include_router(orders_router)
    app.include_router(subcontractors_router)
    app.include_router(time_slots_router)
    app.include_router(completions_router)
    app.include_router(analytics_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health", tags=["health"])
    def health():
        try:
            app.state.store.ping()
        except SQLAlchemyError as e:
            logger.error("health_check_failed", error=str(e))
            return JSONResponse(status_code=503, content={"status": "error", "database": "unavailable"})
        return {"status": "ok", "database": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        store_ = app.state.store
        # Ensure local SQLite directory exists
        if store_.database_url.startswith("sqlite:///./"):
            os.makedirs(os.path.dirname(store_.database_url[len("sqlite:///"):]) or ".", exist_ok=True)
        if settings.auto_create_db:
            store_.create_all()
            logger.info("tables_ready", database=store_.engine.url.render_as_string(hide_password=True))
        logger.info("startup_complete", app=settings.app_name, environment=settings.environment)

    @app.on_event("shutdown")
    def _shutdown():
        app.state.store.dispose()
        logger.info("shutdown_complete")

    return app


app = create_app()
