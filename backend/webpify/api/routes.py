"""API routes for conversion, downloads and storage maintenance."""
import logging
import re
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from webpify.archive import ArchiveBuilder
from webpify.batch import BatchOrchestrator, BatchResult
from webpify.config import (
    BATCH_DOWNLOAD_DELETE_DELAY_SECONDS,
    BATCH_WORKDIR_DELETE_DELAY_SECONDS,
    DOWNLOAD_DELETE_DELAY_SECONDS,
)
from webpify.conversion.models import ConversionRequest, ConvertedAsset
from webpify.conversion.service import ConversionWorker
from webpify.errors import ConversionError, NotFoundError, ValidationError
from webpify.intake import IncomingFile, UploadIntake, new_token
from webpify.storage import RoleUsage, StorageLifecycleManager, StorageRole, format_bytes

logger = logging.getLogger("webpify.api")
router = APIRouter(prefix="/api", tags=["converter"])

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_download_name(filename: str, extension: str) -> str:
    """Reject anything but [A-Za-z0-9_.-] names ending in extension. Runs before any filesystem access."""
    if not _SAFE_NAME_RE.match(filename or "") or not filename.endswith(extension) or filename == extension:
        raise ValidationError("Invalid filename")
    return filename


def get_storage(request: Request) -> StorageLifecycleManager:
    return request.app.state.storage


def get_intake(request: Request) -> UploadIntake:
    return request.app.state.intake


def get_worker(request: Request) -> ConversionWorker:
    return request.app.state.worker


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.orchestrator


def get_archiver(request: Request) -> ArchiveBuilder:
    return request.app.state.archiver


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _converted_to_dict(asset: ConvertedAsset) -> dict:
    return {
        "originalFilename": asset.original_filename,
        "originalSize": asset.original_size,
        "originalDimensions": asset.original_dimensions.to_dict(),
        "convertedSize": asset.size_bytes,
        "compressionRatio": asset.compression_ratio,
        "quality": asset.quality,
        "filename": asset.filename,
        "downloadUrl": f"/api/download/{asset.filename}",
        "timestamp": asset.created_at.isoformat(),
    }


def _batch_to_dict(batch: BatchResult) -> dict:
    results = []
    for item in batch.items:
        if item.asset is None:
            results.append({"originalFilename": item.original_filename, "error": item.error})
            continue
        results.append({
            "originalFilename": item.original_filename,
            "convertedFilename": item.asset.filename,
            "originalSize": item.asset.original_size,
            "convertedSize": item.asset.size_bytes,
            "compressionRatio": item.asset.compression_ratio,
            "originalDimensions": item.asset.original_dimensions.to_dict(),
        })
    return {
        "batchId": batch.batch_id,
        "totalFiles": batch.total_files,
        "successfulConversions": batch.successful_conversions,
        "failedConversions": batch.failed_conversions,
        "totalOriginalSize": batch.total_original_size,
        "totalConvertedSize": batch.total_converted_size,
        "overallCompressionRatio": batch.overall_compression_ratio,
        "quality": batch.quality,
        "results": results,
        "timestamp": _now_iso(),
    }


def _usage_to_dict(usage: dict[StorageRole, RoleUsage]) -> dict:
    out = {
        role.value: {"count": u.count, "size": format_bytes(u.size_bytes), "sizeBytes": u.size_bytes}
        for role, u in usage.items()
    }
    total_count = sum(u.count for u in usage.values())
    total_bytes = sum(u.size_bytes for u in usage.values())
    out["total"] = {"count": total_count, "size": format_bytes(total_bytes), "sizeBytes": total_bytes}
    return out


def storage_summary(storage: StorageLifecycleManager) -> dict:
    """Human-readable size per role plus total."""
    usage = storage.usage()
    out = {role.value: format_bytes(u.size_bytes) for role, u in usage.items()}
    out["total"] = format_bytes(sum(u.size_bytes for u in usage.values()))
    return out


@router.get("/health")
def health(request: Request, storage: StorageLifecycleManager = Depends(get_storage)):
    return {
        "status": "OK",
        "timestamp": _now_iso(),
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "storage": storage_summary(storage),
    }


@router.post("/convert")
def convert_image(
    image: Optional[list[UploadFile]] = File(None),
    quality: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    intake: UploadIntake = Depends(get_intake),
    worker: ConversionWorker = Depends(get_worker),
):
    """Convert a single image to WebP."""
    files = image or []
    intake.check_count(len(files))
    settings = ConversionRequest.from_form(quality, width, height)
    upload = files[0]
    source = intake.stage(upload.file, upload.filename, upload.content_type, upload.size)
    logger.info(
        "Processing file: %s (%s) quality=%s width=%s height=%s",
        source.original_name,
        format_bytes(source.size_bytes),
        settings.quality,
        settings.target_width or "auto",
        settings.target_height or "auto",
    )
    try:
        asset = worker.convert(source, settings)
    except ConversionError:
        worker.discard_source(source)
        raise
    return {"success": True, "message": "Image converted successfully", "data": _converted_to_dict(asset)}


@router.post("/batch-convert")
def batch_convert(
    images: Optional[list[UploadFile]] = File(None),
    quality: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    intake: UploadIntake = Depends(get_intake),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    archiver: ArchiveBuilder = Depends(get_archiver),
    storage: StorageLifecycleManager = Depends(get_storage),
):
    """Convert up to MAX_FILES_PER_BATCH images and package the results in one zip."""
    files = images or []
    intake.check_count(len(files), batch=True)
    settings = ConversionRequest.from_form(quality, width, height)
    entries = intake.stage_many([
        IncomingFile(stream=f.file, filename=f.filename or "upload", mime_type=f.content_type or "", size=f.size)
        for f in files
    ])

    token = new_token()
    batch_id = f"batch-{token}"
    work_dir = storage.path_for(StorageRole.BATCH_OUTPUT) / batch_id
    try:
        batch = orchestrator.run_batch(entries, settings, batch_id, work_dir)
        archive = archiver.build_archive(batch.converted_assets, token)
    finally:
        storage.schedule_deletion(work_dir, BATCH_WORKDIR_DELETE_DELAY_SECONDS)

    data = _batch_to_dict(batch)
    data.update({
        "zipFilename": archive.filename,
        "zipSize": archive.size_bytes,
        "downloadUrl": f"/api/download-batch/{archive.filename}",
    })
    return {
        "success": True,
        "message": f"Successfully converted {batch.successful_conversions} out of {batch.total_files} images",
        "data": data,
    }


def _send_file(
    storage: StorageLifecycleManager,
    role: StorageRole,
    filename: str,
    media_type: str,
    delete_delay: float,
) -> FileResponse:
    path = storage.path_for(role) / filename
    if not path.is_file():
        raise NotFoundError("File not found")
    logger.info("Downloading file: %s", filename)
    # The background task runs only after the response was sent.
    return FileResponse(
        path,
        media_type=media_type,
        filename=filename,
        background=BackgroundTask(storage.schedule_deletion, path, delete_delay),
    )


@router.get("/download/{filename:path}")
def download_file(filename: str, storage: StorageLifecycleManager = Depends(get_storage)):
    """Download a converted image; it is deleted shortly after."""
    validate_download_name(filename, ".webp")
    return _send_file(storage, StorageRole.SINGLE_OUTPUT, filename, "image/webp", DOWNLOAD_DELETE_DELAY_SECONDS)


@router.get("/download-batch/{filename:path}")
def download_batch(filename: str, storage: StorageLifecycleManager = Depends(get_storage)):
    """Download a batch zip; it is deleted shortly after."""
    validate_download_name(filename, ".zip")
    return _send_file(
        storage, StorageRole.BATCH_OUTPUT, filename, "application/zip", BATCH_DOWNLOAD_DELETE_DELAY_SECONDS
    )


@router.get("/storage")
def storage_info(storage: StorageLifecycleManager = Depends(get_storage)):
    return {"success": True, "storage": _usage_to_dict(storage.usage())}


@router.post("/cleanup")
def cleanup(storage: StorageLifecycleManager = Depends(get_storage)):
    """Operator-triggered sweep with the short forced TTL."""
    logger.info("Manual cleanup initiated")
    outcome = storage.force_sweep()
    freed = outcome["freed"]
    after = outcome["after"]
    cleaned = {role.value: format_bytes(n) for role, n in freed.items()}
    cleaned["total"] = format_bytes(sum(freed.values()))
    current = {role.value: format_bytes(u.size_bytes) for role, u in after.items()}
    current["total"] = format_bytes(sum(u.size_bytes for u in after.values()))
    return {
        "success": True,
        "message": "Manual cleanup completed",
        "removed": outcome["report"].total_removed,
        "cleaned": cleaned,
        "current": current,
    }
