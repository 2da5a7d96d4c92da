"""FastAPI application entry point."""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from webpify import __version__
from webpify.api.routes import router, storage_summary
from webpify.archive import ArchiveBuilder
from webpify.batch import BatchOrchestrator
from webpify.config import CORS_ORIGINS, MAX_FILES_PER_BATCH, MAX_WORKERS, PURGE_ON_SHUTDOWN, logger as config_logger
from webpify.conversion.service import ConversionWorker
from webpify.errors import ConverterError
from webpify.intake import UploadIntake
from webpify.storage import StorageLifecycleManager, StorageRole

logging.getLogger("uvicorn").setLevel(logging.INFO)

API_VERSION = __version__


def _error_body(error: str, details: Optional[str] = None) -> dict:
    body = {"success": False, "error": error}
    if details:
        body["details"] = details
    return body


async def converter_error_handler(request: Request, exc: ConverterError):
    if exc.status_code >= 500:
        config_logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
    else:
        config_logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.details))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=_error_body("Invalid request", str(exc.errors())))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_body(error))


async def unhandled_error_handler(request: Request, exc: Exception):
    config_logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body(str(exc) or "Internal server error"))


def create_app(
    storage: Optional[StorageLifecycleManager] = None,
    max_workers: int = MAX_WORKERS,
    purge_on_shutdown: bool = PURGE_ON_SHUTDOWN,
) -> FastAPI:
    """Wire the storage manager and conversion components into a FastAPI app."""
    storage = storage or StorageLifecycleManager.from_config()
    storage.ensure_dirs()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        storage.start()
        config_logger.info(
            "Converter API started (uploads=%s, converted=%s, batch=%s, max %s files per batch)",
            storage.path_for(StorageRole.STAGING),
            storage.path_for(StorageRole.SINGLE_OUTPUT),
            storage.path_for(StorageRole.BATCH_OUTPUT),
            MAX_FILES_PER_BATCH,
        )
        yield
        config_logger.info("Converter API shutting down")
        storage.stop(purge=purge_on_shutdown)

    app = FastAPI(
        title="Image to WebP Converter API",
        description="Convert images to WebP, single or in batches packaged as zip, with automatic cleanup.",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ConverterError, converter_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    worker = ConversionWorker(storage.path_for(StorageRole.SINGLE_OUTPUT))
    app.state.storage = storage
    app.state.intake = UploadIntake(storage.path_for(StorageRole.STAGING))
    app.state.worker = worker
    app.state.orchestrator = BatchOrchestrator(worker, max_workers=max_workers)
    app.state.archiver = ArchiveBuilder(storage.path_for(StorageRole.BATCH_OUTPUT))
    app.state.started_at = time.monotonic()

    @app.get("/")
    def index():
        return {
            "message": "Image to WebP Converter API",
            "version": API_VERSION,
            "storage": storage_summary(storage),
            "endpoints": {
                "convert": "POST /api/convert",
                "batch_convert": "POST /api/batch-convert",
                "download": "GET /api/download/:filename",
                "download_batch": "GET /api/download-batch/:filename",
                "health": "GET /api/health",
                "storage": "GET /api/storage",
                "cleanup": "POST /api/cleanup",
            },
        }

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from webpify.config import HOST, PORT
    uvicorn.run("webpify.main:app", host=HOST, port=PORT, reload=True)
