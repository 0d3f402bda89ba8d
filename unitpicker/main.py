"""FastAPI application bootstrap and lifecycle wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from unitpicker.controllers.admin_controller import router as admin_router
from unitpicker.controllers.room_controller import router as room_router
from unitpicker.controllers.session_controller import router as session_router
from unitpicker.repository.data_repository import InventoryRepository
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.services.auth_service import AuthService
from unitpicker.services.broadcast_service import ChangeBroadcaster
from unitpicker.services.transfer_service import InventoryTransferService
from unitpicker.utils.config import Settings, get_settings
from unitpicker.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app; every service is created here and handed out via ``app.state``."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    repository = InventoryRepository(settings)
    broadcaster = ChangeBroadcaster()
    engine = AllocationEngine(
        repository=repository,
        broadcaster=broadcaster,
        settings=settings,
    )
    auth_service = AuthService(settings=settings)
    transfer_service = InventoryTransferService(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(session_router)
    app.include_router(room_router)
    app.include_router(admin_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.broadcaster = broadcaster
    app.state.engine = engine
    app.state.auth_service = auth_service
    app.state.transfer_service = transfer_service

    return app


def startup(app: FastAPI) -> None:
    """Create the schema and, on an empty database, install the default seed.

    Safe to re-run on restarts; existing inventory is never touched.
    """
    repository: InventoryRepository = app.state.repository
    settings: Settings = app.state.settings

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding default users and inventory (skipped if not empty)")
        repository.seed_default_data_if_empty()

    if not settings.admin_secret:
        logger.warning("ADMIN_SECRET is not set; administrator logins are disabled")
    logger.info("Startup complete, system ready")


app = create_app()
