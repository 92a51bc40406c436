import asyncio
import logging
from typing import List, Sequence

from flowvault.services import url_guard
from flowvault.services.metrics import record_duplicate, record_item, record_rejected_batch
from flowvault.services.worker import ByteBudget, FailureReason, ImageWorker, IngestOptions, ItemOutcome
from flowvault.schemas.ingest import BatchResult, CompressionStats

logger = logging.getLogger(__name__)

MAX_IMAGES = 50
MAX_TOTAL_SIZE = 100 * 1024 * 1024


class BatchRejected(Exception):
    """The whole batch was refused before any item was processed."""

    def __init__(self, message: str, invalid_count: int = 0):
        super().__init__(message)
        self.message = message
        self.invalid_count = invalid_count


def compression_ratio(original: int, compressed: int) -> float:
    if original <= 0:
        return 0.0
    return 1 - compressed / original


class BatchOrchestrator:
    def __init__(
        self,
        worker: ImageWorker,
        max_images: int = MAX_IMAGES,
        max_total_size: int = MAX_TOTAL_SIZE,
        concurrency: int = 1,
    ):
        self.worker = worker
        self.max_images = max_images
        self.max_total_size = max_total_size
        self.concurrency = max(concurrency, 1)

    def check(self, urls) -> List[str]:
        """Reject malformed, empty, oversized or partly invalid batches."""
        if not isinstance(urls, list):
            record_rejected_batch("malformed")
            raise BatchRejected("Images array required")
        if not urls:
            record_rejected_batch("empty")
            raise BatchRejected("At least one image URL is required")
        if len(urls) > self.max_images:
            record_rejected_batch("oversized")
            raise BatchRejected(f"Maximum {self.max_images} images allowed per request")
        invalid = url_guard.find_invalid(urls, self.worker.allowed_domains)
        if invalid:
            record_rejected_batch("invalid_url")
            raise BatchRejected("Invalid or unauthorized image URLs detected", invalid_count=len(invalid))
        return urls

    async def run_batch(self, urls: Sequence[str], options: IngestOptions) -> BatchResult:
        urls = self.check(urls)
        budget = ByteBudget(self.max_total_size)
        semaphore = asyncio.Semaphore(self.concurrency)
        total = len(urls)

        async def run_one(index: int, url: str) -> ItemOutcome:
            async with semaphore:
                logger.info("Processing image %s/%s", index + 1, total)
                try:
                    return await self.worker.process(url, options, budget)
                except Exception:
                    logger.exception("Unexpected failure: url=%s", url[:50])
                    return ItemOutcome(url=url, reason=FailureReason.PROCESSING_FAILED)

        outcomes = await asyncio.gather(*(run_one(i, u) for i, u in enumerate(urls)))
        return self._summarize(outcomes)

    def _summarize(self, outcomes: List[ItemOutcome]) -> BatchResult:
        original = compressed = successful = 0
        for outcome in outcomes:
            if not outcome.success:
                record_item("failed")
                continue
            successful += 1
            record = outcome.record
            original += record.size.original
            compressed += record.size.compressed
            record_item("success")
            if record.duplicate:
                record_duplicate()
            if outcome.sidecar_error:
                logger.warning("JSON metadata upload failed for %s: %s", record.file_name, outcome.sidecar_error)
            logger.info(
                "Uploaded: %s (%.2f%% compression%s)",
                record.file_name,
                record.size.compression_ratio * 100,
                ", duplicate" if record.duplicate else "",
            )

        return BatchResult(
            total=len(outcomes),
            successful=successful,
            failed=len(outcomes) - successful,
            compression=CompressionStats(
                total_original_size=original,
                total_compressed_size=compressed,
                total_saved=original - compressed,
                compression_ratio=compression_ratio(original, compressed),
            ),
            results=[o.to_result() for o in outcomes],
        )
