from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IngestRequest(CamelModel):
    # Loose types on purpose: bad numbers fall back to defaults, and a missing
    # or non-list ``images`` is reported by the orchestrator with its own message.
    images: Any = None
    compress_quality: Any = 85
    max_width: Any = 1920
    max_height: Any = 1920


class ImageDimensions(BaseModel):
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None


class SizeInfo(CamelModel):
    original: int
    compressed: int
    saved: int
    compression_ratio: float


class ImageRecord(CamelModel):
    """Metadata sidecar written next to each stored image."""

    id: str
    file_name: str
    public_url: str
    original_url: str
    source_key: str
    dimensions: ImageDimensions
    size: SizeInfo
    timestamp: int
    created_at: str
    duplicate: bool = False
    success: bool = True


class ItemFailure(CamelModel):
    success: bool = False
    error: str
    original_url: str


class CompressionStats(CamelModel):
    total_original_size: int = 0
    total_compressed_size: int = 0
    total_saved: int = 0
    compression_ratio: float = 0.0


class BatchResult(CamelModel):
    success: bool = True
    total: int
    successful: int
    failed: int
    compression: CompressionStats
    results: List[Union[ImageRecord, ItemFailure]] = Field(default_factory=list)


class ReconcileResponse(CamelModel):
    success: bool = True
    bucket: str
    table: str
    folder: str
    dry_run: bool
    scanned: int
    candidates: int
    inserted: int
    would_insert: int
