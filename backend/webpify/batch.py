"""Batch orchestration: convert many staged files with per-item failure isolation."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from webpify.config import MAX_WORKERS
from webpify.conversion.models import ConversionRequest, ConvertedAsset, SourceAsset, compression_ratio
from webpify.conversion.service import ConversionWorker
from webpify.errors import ConversionError
from webpify.intake import RejectedUpload, StagedEntry

logger = logging.getLogger("webpify.batch")


@dataclass(frozen=True)
class BatchItemResult:
    original_filename: str
    asset: Optional[ConvertedAsset] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.asset is not None


@dataclass(frozen=True)
class BatchResult:
    batch_id: str
    total_files: int
    successful_conversions: int
    failed_conversions: int
    total_original_size: int
    total_converted_size: int
    overall_compression_ratio: float
    quality: int
    items: list[BatchItemResult] = field(default_factory=list)

    @property
    def converted_assets(self) -> list[ConvertedAsset]:
        return [item.asset for item in self.items if item.asset is not None]


def summarize_batch(batch_id: str, items: Sequence[BatchItemResult], quality: int) -> BatchResult:
    """Aggregate ordered item results. Sizes and the overall ratio come from successful items only."""
    successes = [item.asset for item in items if item.asset is not None]
    total_original = sum(a.original_size for a in successes)
    total_converted = sum(a.size_bytes for a in successes)
    return BatchResult(
        batch_id=batch_id,
        total_files=len(items),
        successful_conversions=len(successes),
        failed_conversions=len(items) - len(successes),
        total_original_size=total_original,
        total_converted_size=total_converted,
        overall_compression_ratio=compression_ratio(total_original, total_converted),
        quality=quality,
        items=list(items),
    )


class BatchOrchestrator:
    """Runs the conversion worker over a batch on a bounded thread pool."""

    def __init__(self, worker: ConversionWorker, max_workers: int = MAX_WORKERS):
        self.worker = worker
        self.max_workers = max(1, max_workers)

    def _convert_one(self, source: SourceAsset, request: ConversionRequest, work_dir: Path) -> BatchItemResult:
        try:
            asset = self.worker.convert(source, request, output_dir=work_dir)
        except ConversionError as e:
            # The batch does not retry; the staged file is abandoned.
            self.worker.discard_source(source)
            return BatchItemResult(original_filename=source.original_name, error=e.details or e.message)
        return BatchItemResult(original_filename=source.original_name, asset=asset)

    def run_batch(
        self,
        entries: Sequence[StagedEntry],
        request: ConversionRequest,
        batch_id: str,
        work_dir: Path,
    ) -> BatchResult:
        """
        Convert every staged entry with the same request. Returns once every entry
        was attempted; item results keep submission order whatever the completion order.
        """
        work_dir = Path(work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        results: list[Optional[BatchItemResult]] = [None] * len(entries)
        pending: dict[int, SourceAsset] = {}
        for index, entry in enumerate(entries):
            if isinstance(entry, RejectedUpload):
                results[index] = BatchItemResult(original_filename=entry.original_name, error=entry.error)
            else:
                pending[index] = entry

        logger.info("Processing batch %s: %s files (%s rejected at intake)", batch_id, len(entries), len(entries) - len(pending))
        if pending:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as executor:
                futures = {
                    executor.submit(self._convert_one, source, request, work_dir): index
                    for index, source in pending.items()
                }
                for future in as_completed(futures):
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except Exception as e:
                        source = pending[index]
                        logger.exception("Task failed for %s: %s", source.original_name, e)
                        self.worker.discard_source(source)
                        results[index] = BatchItemResult(original_filename=source.original_name, error=str(e))

        batch = summarize_batch(batch_id, results, request.quality)
        logger.info(
            "Batch %s completed: %s/%s files converted",
            batch_id,
            batch.successful_conversions,
            batch.total_files,
        )
        return batch
