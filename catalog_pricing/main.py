from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from catalog_pricing.api.v1.router import api_router
from catalog_pricing.config import Settings, get_settings
from catalog_pricing.core.exceptions import AuditWriteFailure, BulkOperationTimeout, PricingEngineError
from catalog_pricing.core.logging import configure_logging
from catalog_pricing.database import Database
from catalog_pricing.services.margin_rule_service import MarginRuleService


logger = logging.getLogger(__name__)


OPENAPI_TAGS = [
    {"name": "Catalog", "description": "Drill-down browsing, single variant pricing and bulk operations"},
    {"name": "Special Offers", "description": "Scoped discounts: preview, apply and remove"},
    {"name": "Margin Rules", "description": "Markup rules by scope, applied in priority order"},
    {"name": "Audit Logs", "description": "Append-only record of every pricing mutation"},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    - Open the store handle
    - In local/dev mode, create tables and seed the default margin rule

    Shutdown:
    - Dispose the engine
    """
    settings: Settings = app.state.settings
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)

    db = Database(settings)
    db.connect()
    app.state.db = db

    if settings.AUTO_CREATE_TABLES:
        await db.create_all()
        async with db.session() as session:
            await MarginRuleService(session, settings).ensure_default_rule()

    yield

    await db.disconnect()
    logger.info("Shutting down...")


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AuditWriteFailure)
    async def audit_failure_handler(request: Request, exc: AuditWriteFailure):
        # Prices are committed; report the change as unaudited rather than failed
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": True,
                "audited": False,
                "detail": exc.message,
                "result": jsonable_encoder(exc.result),
            },
        )

    @app.exception_handler(BulkOperationTimeout)
    async def timeout_handler(request: Request, exc: BulkOperationTimeout):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "detail": exc.message,
                "effect": "unknown",
                "details": jsonable_encoder(exc.details),
            },
        )

    @app.exception_handler(PricingEngineError)
    async def pricing_error_handler(request: Request, exc: PricingEngineError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "detail": exc.message,
                "error": type(exc).__name__,
                "details": jsonable_encoder(exc.details),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Unexpected errors, including persistence failures, become a 500."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error_detail = {
            "success": False,
            "error": str(exc) if request.app.state.settings.DEBUG else "Internal server error",
            "type": type(exc).__name__,
            "path": str(request.url.path),
            "method": request.method,
        }
        return JSONResponse(status_code=500, content=error_detail)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Set-based pricing for a product catalog: margin rules, special offers, "
                    "bulk overrides and cursor-paginated browsing, with an append-only audit log.",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=OPENAPI_TAGS,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Liveness plus a round trip to the pricing store; 503 when the store is unreachable."""
        checks = {"database": "connected"}
        healthy = True
        try:
            await request.app.state.db.ping()
        except (SQLAlchemyError, OSError) as e:
            healthy = False
            checks["database"] = f"error: {e}"

        body = {
            "status": "healthy" if healthy else "unhealthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        }
        if not healthy:
            return JSONResponse(status_code=503, content=body)
        return body

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "api": "/api/v1",
            "docs": "/docs",
        }

    return app


app = create_app()
