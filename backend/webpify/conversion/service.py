"""Conversion worker: one staged image in, one WebP file out."""
import logging
from pathlib import Path
from typing import Optional

from webpify.config import WEBP_EFFORT
from webpify.conversion.codec import ImageCodec, PillowCodec
from webpify.conversion.models import (
    ConversionRequest,
    ConvertedAsset,
    SourceAsset,
    compression_ratio,
)
from webpify.conversion.resize import fit_inside
from webpify.errors import ConversionError

logger = logging.getLogger("webpify.service")


def output_name_for(source: SourceAsset) -> str:
    return f"converted-{source.id}.webp"


class ConversionWorker:
    """Converts SourceAssets to WebP. Holds no per-conversion state, safe to share across threads."""

    def __init__(self, output_dir: Path, codec: Optional[ImageCodec] = None):
        self.output_dir = Path(output_dir)
        self.codec = codec or PillowCodec()

    def convert(
        self,
        source: SourceAsset,
        request: ConversionRequest,
        output_dir: Optional[Path] = None,
    ) -> ConvertedAsset:
        """
        Convert one staged file. On success the staged file is deleted right away.
        On failure any partial output is removed, the staged file is left for the
        caller and ConversionError is raised.
        """
        out_dir = Path(output_dir) if output_dir is not None else self.output_dir
        out_path = out_dir / output_name_for(source)
        try:
            original_size = source.storage_path.stat().st_size
            img = self.codec.decode(source.storage_path)
            try:
                original_dimensions = self.codec.metadata(img)
                work = img
                if request.wants_resize:
                    size = fit_inside(
                        (original_dimensions.width, original_dimensions.height),
                        request.target_width,
                        request.target_height,
                    )
                    if size != (original_dimensions.width, original_dimensions.height):
                        work = self.codec.resize(img, size)
                dimensions = self.codec.metadata(work)
                self.codec.encode_webp(work, out_path, quality=request.quality, effort=WEBP_EFFORT)
            finally:
                img.close()
            converted_size = out_path.stat().st_size
        except Exception as e:
            logger.exception("Image conversion failed for %s: %s", source.original_name, e)
            try:
                out_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning("Could not remove partial output %s: %s", out_path, cleanup_error)
            raise ConversionError(
                f"Failed to convert {source.original_name}",
                details=str(e) or e.__class__.__name__,
            ) from e

        asset = ConvertedAsset(
            storage_path=out_path,
            size_bytes=converted_size,
            original_filename=source.original_name,
            original_size=original_size,
            original_dimensions=original_dimensions,
            dimensions=dimensions,
            quality=request.quality,
            compression_ratio=compression_ratio(original_size, converted_size),
        )
        self.discard_source(source)
        logger.info(
            "Converted %s -> %s (%s -> %s bytes, %.1f%% reduction)",
            source.original_name,
            out_path.name,
            original_size,
            converted_size,
            asset.compression_ratio,
        )
        return asset

    @staticmethod
    def discard_source(source: SourceAsset) -> None:
        """Remove a staged upload. Already-absent files are fine."""
        try:
            source.storage_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove upload %s: %s", source.storage_path, e)
