import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from . import __version__
from .api import backup, mount, storage
from .api.errors import register_error_handlers
from .config import Settings
from .dependencies import StorageEngine, build_engine
from .logging_config import setup_logging


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[StorageEngine] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the FastAPI app around one engine instance.

    Tests pass a pre-built engine and start_scheduler=False.
    """
    settings = settings or (engine.settings if engine else Settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            setup_logging(settings)
            config_info = settings.config_file_info
            logging.info(f"Configuration loaded from: {config_info['active_config_file']}")
            logging.info(f"Running on hostname: {config_info['hostname']}")

        app.state.engine = engine or build_engine(settings)
        scheduler = app.state.engine.build_scheduler() if start_scheduler else None

        logging.info(
            f"Storage engine starting: {len(app.state.engine.registry)} volumes, "
            f"network mount {settings.mount_point} via {settings.remote_host}"
        )
        if scheduler:
            await scheduler.start()

        yield

        logging.info("Storage engine shutting down...")
        if scheduler:
            await scheduler.stop()
        await app.state.engine.notifier.stop()
        logging.info("Alle periodic tasks stoppet")

    app = FastAPI(
        title="Storage Engine",
        description="Volume lifecycle, network mount supervision and backup orchestration",
        version=__version__,
        lifespan=lifespan,
    )
    register_error_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logging.info(f"{request.method} {request.url.path} -> {response.status_code}")
        return response

    app.include_router(storage.router)
    app.include_router(mount.router)
    app.include_router(backup.router)

    @app.get("/health")
    async def health():
        """Liveness only; storage health lives under /api/storage/health."""
        return {"status": "healthy", "service": "storage-engine"}

    return app


def run() -> None:
    settings = Settings()
    uvicorn.run(
        "storage_engine.main:create_app",
        factory=True,
        host=settings.http_host,
        port=settings.http_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
