"""Upload intake: validate incoming files and persist them to staging under collision-free names."""
import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Union

from webpify.config import ALLOWED_MIME_TYPES, MAX_FILE_SIZE_BYTES, MAX_FILES_PER_BATCH
from webpify.conversion.models import SourceAsset
from webpify.errors import ValidationError

logger = logging.getLogger("webpify.intake")

CHUNK_SIZE = 1024 * 1024  # 1 MiB
_EXT_RE = re.compile(r"^\.[a-z0-9]{1,10}$")


def new_token() -> str:
    """Epoch millis plus a random suffix; unique across concurrent requests."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:10]}"


def _safe_extension(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    return ext if _EXT_RE.match(ext) else ""


@dataclass(frozen=True)
class RejectedUpload:
    """A batch file that failed intake validation. Reported as a failed batch item."""

    original_name: str
    error: str


@dataclass(frozen=True)
class IncomingFile:
    stream: BinaryIO
    filename: str
    mime_type: str
    size: Optional[int] = None


StagedEntry = Union[SourceAsset, RejectedUpload]


class UploadIntake:
    def __init__(
        self,
        staging_dir: Path,
        max_file_size_bytes: int = MAX_FILE_SIZE_BYTES,
        max_files_per_batch: int = MAX_FILES_PER_BATCH,
        allowed_mime_types: Iterable[str] = ALLOWED_MIME_TYPES,
    ):
        self.staging_dir = Path(staging_dir)
        self.max_file_size_bytes = max_file_size_bytes
        self.max_files_per_batch = max_files_per_batch
        self.allowed_mime_types = frozenset(allowed_mime_types)

    @property
    def max_file_size_mb(self) -> int:
        return self.max_file_size_bytes // (1024 * 1024)

    def check_count(self, count: int, batch: bool = False) -> None:
        """Reject the whole request before anything is staged."""
        if count == 0:
            raise ValidationError("No files uploaded" if batch else "No file uploaded")
        if not batch and count > 1:
            raise ValidationError("Only one file may be uploaded for a single conversion")
        if batch and count > self.max_files_per_batch:
            raise ValidationError(f"Too many files: max {self.max_files_per_batch} images per batch")

    def validate(self, filename: str, mime_type: Optional[str], declared_size: Optional[int] = None) -> None:
        if (mime_type or "").lower() not in self.allowed_mime_types:
            raise ValidationError(
                f"Invalid file type for {filename}. Only JPEG, PNG, GIF, BMP, TIFF, and WebP are allowed."
            )
        if declared_size is not None and declared_size > self.max_file_size_bytes:
            raise ValidationError(f"File too large: {filename} (max {self.max_file_size_mb} MB)")

    def stage(
        self,
        stream: BinaryIO,
        original_name: Optional[str],
        mime_type: Optional[str],
        declared_size: Optional[int] = None,
    ) -> SourceAsset:
        """Validate and fully write one upload to staging. Raises ValidationError."""
        original_name = original_name or "upload"
        self.validate(original_name, mime_type, declared_size)
        token = new_token()
        dest = self.staging_dir / f"upload-{token}{_safe_extension(original_name)}"
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        total = 0
        try:
            with open(dest, "wb") as f:
                while chunk := stream.read(CHUNK_SIZE):
                    total += len(chunk)
                    if total > self.max_file_size_bytes:
                        raise ValidationError(f"File too large: {original_name} (max {self.max_file_size_mb} MB)")
                    f.write(chunk)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise
        logger.info("Staged %s as %s (%s bytes)", original_name, dest.name, total)
        return SourceAsset(
            id=token,
            original_name=original_name,
            mime_type=(mime_type or "").lower(),
            size_bytes=total,
            storage_path=dest,
        )

    def stage_many(self, files: list[IncomingFile]) -> list[StagedEntry]:
        """
        Batch intake. The file count is checked first; per-file type and size
        problems become RejectedUpload entries at the file's position. Any other
        error removes everything staged so far and propagates.
        """
        self.check_count(len(files), batch=True)
        staged: list[StagedEntry] = []
        try:
            for incoming in files:
                name = incoming.filename or "upload"
                try:
                    staged.append(self.stage(incoming.stream, name, incoming.mime_type, incoming.size))
                except ValidationError as e:
                    logger.warning("Rejected %s: %s", name, e.message)
                    staged.append(RejectedUpload(original_name=name, error=e.message))
        except BaseException:
            for entry in staged:
                if isinstance(entry, SourceAsset):
                    entry.storage_path.unlink(missing_ok=True)
            raise
        return staged
