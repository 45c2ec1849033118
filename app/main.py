"""
Main FastAPI application for the creator marketplace API.
Serves content delivery, purchases, notifications, users, products, health and metrics.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import files, health, notifications, products, purchase, users
from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.core.logging import configure_logging
from app.db.session import Database
from app.services.auth.identity import IdentityVerifier
from app.services.settlement.verifier import SettlementVerifier
from app.storage.base import Storage
from app.storage.local import LocalStorage
from app.utils.metrics import router as metrics_router

logger = logging.getLogger(__name__)


def create_app(
    database: Database | None = None,
    storage: Storage | None = None,
    settlement_verifier: SettlementVerifier | None = None,
    identity_verifier: IdentityVerifier | None = None,
) -> FastAPI:
    """Build the application. Collaborators passed in are used as-is and not disposed at shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        owned_database = database is None
        owned_verifier = settlement_verifier is None
        app.state.database = (database or Database(settings.database_url)).start()
        app.state.storage = storage or LocalStorage()
        app.state.settlement_verifier = settlement_verifier or SettlementVerifier()
        app.state.identity_verifier = identity_verifier or IdentityVerifier()
        logger.info("app_started")
        try:
            yield
        finally:
            if owned_verifier:
                app.state.settlement_verifier.close()
            if owned_database:
                app.state.database.dispose()
            logger.info("app_stopped")

    app = FastAPI(
        title="Marketplace API",
        description="Entitlement-gated content delivery and on-chain purchase confirmation",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Routers
    app.include_router(health.router, tags=["health"])
    app.include_router(files.router)
    app.include_router(purchase.router)
    app.include_router(notifications.router)
    app.include_router(users.router)
    app.include_router(products.router)
    app.include_router(metrics_router)
    return app


app = create_app()
