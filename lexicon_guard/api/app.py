"""FastAPI application for lexicon-guard."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import dataclasses
import logging
import os
import sys

from lexicon_guard import GuardConfig, MigrationGuard
from .config import settings
from .routers import health, migration

# App-managed pattern: attach our own handler and don't propagate, so INFO
# logs show up regardless of uvicorn's logging config
guard_logger = logging.getLogger("lexicon-guard")
guard_logger.setLevel(logging.INFO)
guard_logger.propagate = False
guard_logger.handlers.clear()

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
formatter = logging.Formatter(
    '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
console_handler.setFormatter(formatter)
guard_logger.addHandler(console_handler)

# Allow disabling app-managed logging via env var for production
if os.getenv("DISABLE_APP_LOGGING", "false").lower() == "true":
    guard_logger.handlers.clear()
    guard_logger.propagate = True

logger = logging.getLogger(__name__)


def build_config() -> GuardConfig:
    """GuardConfig from the environment, with the API settings applied on top."""
    config = GuardConfig.from_env()

    store_overrides = {}
    if settings.guard_data_dir:
        store_overrides["data_dir"] = settings.guard_data_dir
    if settings.guard_db_name:
        store_overrides["db_name"] = settings.guard_db_name

    backup_overrides = {"handoff": settings.backup_handoff}
    if settings.backup_db_backend:
        backup_overrides["backup_db_backend"] = settings.backup_db_backend
    if settings.redis_url:
        backup_overrides["redis_url"] = settings.redis_url
        backup_overrides["redis_password"] = settings.redis_password

    return dataclasses.replace(
        config,
        store=dataclasses.replace(config.store, **store_overrides),
        backup=dataclasses.replace(config.backup, **backup_overrides),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage MigrationGuard lifecycle."""
    logger.info("Initializing MigrationGuard...")

    try:
        app.state.guard = MigrationGuard(config=build_config())
        logger.info("MigrationGuard initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize MigrationGuard: {e}")
        raise

    yield

    logger.info("Shutting down MigrationGuard...")
    await app.state.guard.close()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(migration.router, prefix=settings.api_prefix)
    app.include_router(health.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": f"{settings.api_prefix}/docs"
        }

    return app


# Create default app instance
app = create_app()
