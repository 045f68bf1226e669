"""Ops HTTP app, served by uvicorn inside the sync service process.

Settings are resolved in create_app() so tests can set env first.
"""

from fastapi import FastAPI

from mailsync.api.exception_handlers import register_exception_handlers
from mailsync.api.routes import router
from mailsync.application.services import Scheduler, WorkerPool
from mailsync.core.config import get_settings


def create_app(scheduler: Scheduler, worker_pool: WorkerPool | None = None) -> FastAPI:
    """Build the ops app around the running scheduler and worker pool."""
    settings = get_settings()
    app = FastAPI(
        title=f"{settings.app_name} ops",
        version=settings.app_version,
        debug=settings.debug,
    )
    app.state.scheduler = scheduler
    app.state.worker_pool = worker_pool
    register_exception_handlers(app)
    app.include_router(router)
    return app
