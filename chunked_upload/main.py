"""
Main FastAPI application entry point
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from .api import router
from .core import Settings, UploadError, build_engine, settings
from .services import (
    ChunkUploadCoordinator,
    MergeEngine,
    PartStore,
    StaleSessionReaper,
    build_registry,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def upload_error_handler(request: Request, exc: UploadError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed parameters are a plain 400 for upload clients."""
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Missing or invalid parameters",
            "error": "INVALID_ARGUMENT",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the application and wire the upload services onto app.state."""
    app_settings = app_settings or settings

    part_store = PartStore(app_settings.TEMP_UPLOAD_DIR)
    engine = build_engine(app_settings.DATABASE_URL) if app_settings.REGISTRY_BACKEND == "sql" else None
    registry = build_registry(app_settings.REGISTRY_BACKEND, part_store, engine)
    coordinator = ChunkUploadCoordinator(registry, part_store, app_settings.MAX_CHUNK_SIZE)
    merge_engine = MergeEngine(
        registry, part_store, app_settings.PUBLIC_UPLOAD_DIR, app_settings.PUBLIC_URL_PREFIX
    )
    reaper = StaleSessionReaper(
        registry, part_store, app_settings.SESSION_TTL_SECONDS, app_settings.MERGE_TIMEOUT_SECONDS
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown"""
        logger.info("🚀 Starting Chunked Upload Server...")
        logger.info(f"📂 Staging parts in {part_store.root}, publishing to {merge_engine.public_dir}")
        logger.info(f"🗂️  Session registry backend: {app_settings.REGISTRY_BACKEND}")

        reaper_task = None
        if app_settings.REAPER_ENABLED:
            reaper_task = asyncio.create_task(reaper.run_forever(app_settings.REAPER_INTERVAL_SECONDS))
            logger.info(
                f"🧹 Reaping sessions older than {app_settings.SESSION_TTL_SECONDS}s "
                f"every {app_settings.REAPER_INTERVAL_SECONDS}s"
            )

        yield

        logger.info("🛑 Shutting down Chunked Upload Server...")
        if reaper_task is not None:
            reaper_task.cancel()
            with suppress(asyncio.CancelledError):
                await reaper_task
        if engine is not None:
            engine.dispose()

    app = FastAPI(
        title=app_settings.APP_TITLE,
        description=app_settings.APP_DESCRIPTION,
        version=app_settings.APP_VERSION,
        lifespan=lifespan
    )

    app.state.settings = app_settings
    app.state.part_store = part_store
    app.state.registry = registry
    app.state.coordinator = coordinator
    app.state.merge_engine = merge_engine
    app.state.reaper = reaper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=app_settings.SESSION_SECRET,
        session_cookie=app_settings.SESSION_COOKIE,
    )

    app.add_exception_handler(UploadError, upload_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(router)

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "healthy"}

    app.mount(
        app_settings.PUBLIC_URL_PREFIX.rstrip("/"),
        StaticFiles(directory=Path(app_settings.PUBLIC_UPLOAD_DIR)),
        name="uploads",
    )

    return app


def main():
    import uvicorn
    uvicorn.run(
        "chunked_upload.main:create_app",
        factory=True,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
    )


if __name__ == "__main__":
    main()
