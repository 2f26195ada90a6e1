"""Statement Ledger API: FastAPI entry point.

Routes are served from domain modules under apps/api/domains/ and
mounted under /api/v1. Backends (transaction store, session store,
credential verifier) are chosen by Settings and attached to
``app.state.services``.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api.core.config import Settings, settings as default_settings
from apps.api.core.errors import register_error_handlers
from apps.api.core.logging import setup_logging
from apps.api.deps import Services, build_services
from apps.api.domains.auth.router import router as auth_router
from apps.api.domains.ingestion.router import router as ingestion_router
from apps.api.domains.transactions.router import router as transactions_router
from apps.api.routers import health

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup/shutdown hooks."""
        setup_logging(
            log_level=settings.log_level,
            json_output=(settings.ENVIRONMENT == "production"),
        )
        logger.info(
            "app_starting",
            version=settings.APP_VERSION,
            store_backend=settings.STORE_BACKEND,
            session_backend=settings.SESSION_BACKEND,
        )
        yield
        await app.state.services.sessions.close()
        logger.info("app_stopping")

    app = FastAPI(
        title="Statement Ledger API",
        description="Bank statement ingestion and reconciliation.",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services or build_services(settings)

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(ingestion_router, prefix="/api/v1")
    app.include_router(transactions_router, prefix="/api/v1")
    app.include_router(health.router, prefix="/api/v1")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)
