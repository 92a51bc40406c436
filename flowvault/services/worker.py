"""
Per-URL fetch, compress and store step of the ingestion pipeline.

Every failure is mapped onto a small closed set of caller-safe reasons; the
underlying detail is only logged.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

import httpx
from PIL import Image

from flowvault.services import content_key, url_guard
from flowvault.services.compress import compress_image_bytes
from flowvault.services.storage import StorageError
from flowvault.schemas.ingest import ImageDimensions, ImageRecord, ItemFailure, SizeInfo

logger = logging.getLogger(__name__)

USER_AGENT = "Flow-Image-Uploader/1.0"
MAX_FILE_SIZE = 10 * 1024 * 1024
FETCH_TIMEOUT_SECONDS = 30.0


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    SIZE_EXCEEDED = "size_exceeded"
    INVALID_CONTENT_TYPE = "invalid_content_type"
    PROCESSING_FAILED = "processing_failed"

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    FailureReason.TIMEOUT: "Request timeout",
    FailureReason.SIZE_EXCEEDED: "File size error",
    FailureReason.INVALID_CONTENT_TYPE: "Invalid file type",
    FailureReason.PROCESSING_FAILED: "Processing failed",
}


class IngestItemError(Exception):
    def __init__(self, reason: FailureReason, detail: str = ""):
        super().__init__(detail or reason.value)
        self.reason = reason
        self.detail = detail


def _clamp_int(value, default: int, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        number = default
    if number == 0:
        number = default
    return min(max(number, low), high)


@dataclass(frozen=True)
class IngestOptions:
    quality: int = 85
    max_width: int = 1920
    max_height: int = 1920

    @classmethod
    def from_raw(cls, quality=85, max_width=1920, max_height=1920) -> "IngestOptions":
        return cls(
            quality=_clamp_int(quality, 85, 1, 100),
            max_width=_clamp_int(max_width, 1920, 1, 4000),
            max_height=_clamp_int(max_height, 1920, 1, 4000),
        )


class ByteBudget:
    """Running total of fetched bytes shared by every item of one batch.

    The charge is recorded before the check, so once the limit is crossed every
    later item fails too. Items already in flight may push the total past the
    limit before their own check runs.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0
        self._lock = asyncio.Lock()

    async def charge(self, size: int) -> bool:
        async with self._lock:
            self.used += size
            return self.used <= self.limit


@dataclass
class ItemOutcome:
    url: str
    record: Optional[ImageRecord] = None
    reason: Optional[FailureReason] = None
    sidecar_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.record is not None

    def to_result(self):
        if self.record is not None:
            return self.record
        reason = self.reason or FailureReason.PROCESSING_FAILED
        return ItemFailure(error=reason.message, original_url=self.url)


class ImageWorker:
    def __init__(
        self,
        store,
        client: httpx.AsyncClient,
        allowed_domains: Optional[Sequence[str]] = None,
        max_file_size: int = MAX_FILE_SIZE,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.client = client
        self.allowed_domains = allowed_domains
        self.max_file_size = max_file_size
        self.fetch_timeout = fetch_timeout

    async def process(self, url: str, options: IngestOptions, budget: ByteBudget) -> ItemOutcome:
        try:
            return await self._process(url, options, budget)
        except IngestItemError as exc:
            logger.error("Failed: url=%s reason=%s detail=%s", url[:50], exc.reason.value, exc.detail)
            return ItemOutcome(url=url, reason=exc.reason)

    async def _process(self, url: str, options: IngestOptions, budget: ByteBudget) -> ItemOutcome:
        if not url_guard.validate(url, self.allowed_domains):
            raise IngestItemError(FailureReason.PROCESSING_FAILED, "URL failed revalidation")

        original = await self.fetch(url)
        original_size = len(original)

        if not await budget.charge(original_size):
            raise IngestItemError(
                FailureReason.SIZE_EXCEEDED,
                f"batch total {budget.used} exceeds {budget.limit} bytes",
            )

        try:
            compressed = await asyncio.to_thread(
                compress_image_bytes, original, options.quality, options.max_width, options.max_height
            )
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise IngestItemError(FailureReason.PROCESSING_FAILED, f"decode/encode failed: {exc}") from exc

        source_key = content_key.derive_key(url)
        digest = content_key.fingerprint(source_key)
        file_name, sidecar_name = content_key.object_names(digest)

        try:
            created = await self.store.put_if_absent(file_name, compressed.data, "image/jpeg")
        except StorageError as exc:
            raise IngestItemError(FailureReason.PROCESSING_FAILED, f"store failed: {exc}") from exc

        compressed_size = len(compressed.data)
        now = datetime.now(timezone.utc)
        record = ImageRecord(
            id=digest,
            file_name=file_name,
            public_url=self.store.public_url(file_name),
            original_url=url,
            source_key=source_key,
            dimensions=ImageDimensions(width=compressed.width, height=compressed.height, format=compressed.format),
            size=SizeInfo(
                original=original_size,
                compressed=compressed_size,
                saved=original_size - compressed_size,
                compression_ratio=(1 - compressed_size / original_size) if original_size else 0.0,
            ),
            timestamp=int(time.time() * 1000),
            created_at=now.isoformat(),
            duplicate=not created,
        )

        sidecar_error = await self._write_sidecar(sidecar_name, record)
        return ItemOutcome(url=url, record=record, sidecar_error=sidecar_error)

    async def fetch(self, url: str) -> bytes:
        """Download ``url`` under a hard wall-clock timeout and the per-item size cap."""
        try:
            return await asyncio.wait_for(self._download(url), timeout=self.fetch_timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise IngestItemError(FailureReason.TIMEOUT, f"fetch timed out: {exc!r}") from exc
        except httpx.HTTPError as exc:
            raise IngestItemError(FailureReason.PROCESSING_FAILED, f"fetch failed: {exc!r}") from exc

    async def _download(self, url: str) -> bytes:
        # Redirects are not followed: a redirect target never went through the URL guard.
        async with self.client.stream(
            "GET", url, headers={"User-Agent": USER_AGENT}, follow_redirects=False
        ) as response:
            if not response.is_success:
                raise IngestItemError(FailureReason.PROCESSING_FAILED, f"upstream status {response.status_code}")

            content_type = response.headers.get("content-type", "")
            if not content_type.lower().startswith("image/"):
                raise IngestItemError(FailureReason.INVALID_CONTENT_TYPE, f"content type {content_type!r}")

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_file_size:
                raise IngestItemError(FailureReason.SIZE_EXCEEDED, f"declared length {declared}")

            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_file_size:
                    raise IngestItemError(FailureReason.SIZE_EXCEEDED, f"body exceeds {self.max_file_size} bytes")
                chunks.append(chunk)
            return b"".join(chunks)

    async def _write_sidecar(self, sidecar_name: str, record: ImageRecord) -> Optional[str]:
        body = json.dumps(record.model_dump(by_alias=True), indent=2).encode("utf-8")
        try:
            await self.store.put_if_absent(sidecar_name, body, "application/json")
        except StorageError as exc:
            return str(exc)
        return None
