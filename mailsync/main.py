"""Sync service entry point.

Runs the scheduler loop, the worker pool and the ops HTTP app in one
asyncio.TaskGroup until SIGTERM/SIGINT, then lets in-flight passes finish.
"""

from __future__ import annotations

import asyncio
import signal

import uvicorn

from mailsync.api import create_app
from mailsync.core.config import Settings, get_settings
from mailsync.core.lifespan import ServiceRuntime, service_lifespan
from mailsync.infrastructure.persistence import database
from mailsync.shared.telemetry import SyncTelemetry
from mailsync.shared.telemetry.logging import get_logger, setup_logging

logger = get_logger(__name__)


def install_signal_handlers(stop: asyncio.Event) -> None:
    """Register SIGTERM and SIGINT handlers that set stop."""
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down", sig.name)
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)


async def run_ops_server(runtime: ServiceRuntime, telemetry: SyncTelemetry, stop: asyncio.Event) -> None:
    """Serve the ops app until stop is set (or the server exits on its own)."""
    settings = runtime.settings
    app = create_app(runtime.scheduler, runtime.worker_pool)
    telemetry.instrument_app(app)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.ops_host,
            port=settings.ops_port,
            log_level="warning",
            log_config=None,
        )
    )
    serve_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(stop.wait())
    await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    server.should_exit = True
    stop.set()
    await serve_task
    stop_task.cancel()


async def run_service(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    setup_logging()
    telemetry = SyncTelemetry(settings)
    telemetry.start()
    stop = asyncio.Event()
    install_signal_handlers(stop)

    async with service_lifespan(settings) as runtime:
        telemetry.instrument_engine(database.get_engine())
        if runtime.redis_enabled:
            telemetry.instrument_redis()

        async with asyncio.TaskGroup() as tg:
            tg.create_task(runtime.worker_pool.run(stop))
            if settings.scheduler_enabled:
                tg.create_task(runtime.scheduler.run(stop))
            else:
                logger.info("Scheduler disabled; only manual and webhook jobs will run")
            tg.create_task(run_ops_server(runtime, telemetry, stop))

    telemetry.shutdown()
    logger.info("Sync service stopped")


def main() -> None:
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
