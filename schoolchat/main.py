from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette_exporter import PrometheusMiddleware, handle_metrics
import sentry_sdk

from schoolchat.api import admin, auth, chats, reports, users
from schoolchat.core.config import Settings
from schoolchat.core.database import Database
from schoolchat.core.observability import configure_logging, configure_sentry, configure_tracing
from schoolchat.core.security import require_admin
from schoolchat.services import accounts, relay

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    logger.info("Validation error", extra={"path": request.url.path, "field": where})
    return JSONResponse(
        status_code=400,
        content={"detail": f"{where}: {message}" if where else message},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    sentry_sdk.capture_exception(exc)
    logger.error("Unhandled error", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(settings: Optional[Settings] = None, llm_client=None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    configure_sentry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(settings.database_url, echo=settings.echo_sql)
        db.create_all()
        app.state.db = db
        app.state.llm = llm_client or relay.build_client(settings)
        if settings.seed_superadmin:
            session = db.session()
            try:
                accounts.ensure_super_admin(session, settings)
            finally:
                session.close()
        logger.info(
            "School chat server started",
            extra={"school": settings.school_name, "environment": settings.environment},
        )
        try:
            yield
        finally:
            db.dispose()
            logger.info("School chat server stopped")

    app = FastAPI(title="School Chat API", lifespan=lifespan)
    app.state.settings = settings

    configure_tracing(app, settings)
    app.add_middleware(PrometheusMiddleware, app_name="school_chat")
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get(API_PREFIX + "/health", tags=["General"])
    def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment,
            "school": settings.school_name,
        }

    @app.get(API_PREFIX + "/metrics", dependencies=[Depends(require_admin)], include_in_schema=False)
    async def metrics(request: Request):
        """
        Return the metrics in a format that can be scraped by Prometheus.
        """
        return handle_metrics(request)

    app.include_router(auth.router, prefix=API_PREFIX + "/auth", tags=["Authentication"])
    app.include_router(users.router, prefix=API_PREFIX)
    app.include_router(chats.router, prefix=API_PREFIX)
    app.include_router(reports.router, prefix=API_PREFIX)
    app.include_router(admin.router, prefix=API_PREFIX)
    return app


app = create_app()
