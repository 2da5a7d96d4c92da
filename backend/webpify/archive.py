"""Zip packaging of batch outputs."""
import logging
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from webpify.conversion.models import ConvertedAsset
from webpify.errors import ArchiveError

logger = logging.getLogger("webpify.archive")


def archive_name_for(archive_id: str) -> str:
    return f"converted-images-{archive_id}.zip"


@dataclass(frozen=True)
class Archive:
    filename: str
    size_bytes: int
    storage_path: Path


class ArchiveBuilder:
    def __init__(self, archive_dir: Path):
        self.archive_dir = Path(archive_dir)

    def build_archive(self, assets: Sequence[ConvertedAsset], archive_id: str) -> Archive:
        """
        Write assets into one zip at maximum compression, streaming each file from disk.
        The zip is written under a temporary name and only renamed once finalized, so a
        partial archive is never downloadable. Raises ArchiveError and removes the partial file.
        """
        filename = archive_name_for(archive_id)
        zip_path = self.archive_dir / filename
        part_path = zip_path.with_name(filename + ".part")
        try:
            with zipfile.ZipFile(part_path, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
                for asset in assets:
                    zf.write(asset.storage_path, asset.filename)
            os.replace(part_path, zip_path)
            size = zip_path.stat().st_size
        except Exception as e:
            logger.exception("Archive %s failed: %s", filename, e)
            for p in (part_path, zip_path):
                try:
                    p.unlink(missing_ok=True)
                except OSError as cleanup_error:
                    logger.warning("Could not remove partial archive %s: %s", p, cleanup_error)
            raise ArchiveError("Failed to create archive", details=str(e)) from e
        logger.info("Created zip %s with %s files (%s bytes)", filename, len(assets), size)
        return Archive(filename=filename, size_bytes=size, storage_path=zip_path)
