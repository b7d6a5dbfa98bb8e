from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from catalogclone.api.routes.clone import router as clone_router
from catalogclone.api.routes.health import router as health_router
from catalogclone.api.routes.jobs import router as jobs_router
from catalogclone.core.config import get_settings
from catalogclone.core.logging import configure_logging
from catalogclone.db.init_db import initialize_database
from catalogclone.worker.pipeline import shutdown_clone_runtime


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    yield
    shutdown_clone_runtime()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(clone_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")

    # Copied product images are served from the local asset store.
    app.mount("/assets", StaticFiles(directory=settings.assets_root), name="assets")
    return app
