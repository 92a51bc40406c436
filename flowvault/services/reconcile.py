"""
Catalog reconciliation: insert catalog rows for stored images that have none.

Inserts happen in chunks and are not transactional across chunks. A failing
chunk stops the run; chunks written before it stay committed.
"""

import hmac
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from flowvault.models.catalog import FlowImage
from flowvault.services.content_key import IMAGE_EXTENSION
from flowvault.services.metrics import record_reconciled
from flowvault.services.storage import StoredObject

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 500
INSERT_CHUNK_SIZE = 100


class ReconcileError(Exception):
    def __init__(self, message: str, chunks: Optional[List["ChunkOutcome"]] = None):
        super().__init__(message)
        self.chunks = chunks or []

    @property
    def inserted(self) -> int:
        return sum(c.rows for c in self.chunks if c.ok)


@dataclass
class ChunkOutcome:
    index: int
    rows: int
    ok: bool
    error: Optional[str] = None


@dataclass
class ReconcileReport:
    scanned: int
    candidates: int
    inserted: int
    dry_run: bool
    rows: List[Dict] = field(default_factory=list)
    chunks: List[ChunkOutcome] = field(default_factory=list)

    @property
    def would_insert(self) -> int:
        return len(self.rows)


class TortoiseCatalog:
    """Catalog table backed by the ``FlowImage`` model."""

    def __init__(self, model=FlowImage):
        self.model = model

    @property
    def table(self) -> str:
        return self.model._meta.db_table

    async def existing_paths(self, paths: Sequence[str]) -> Set[str]:
        found = await self.model.filter(storage_path__in=list(paths)).values_list("storage_path", flat=True)
        return set(found)

    async def insert_rows(self, rows: Sequence[Dict]) -> None:
        await self.model.bulk_create([self.model(**row) for row in rows])


def authorize(secret: str, header_token: str = "", bearer_token: str = "", query_token: str = "") -> bool:
    """Check the first presented credential (header, bearer, query) against ``secret``."""
    token = header_token or bearer_token or query_token
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


def bearer_token(authorization: Optional[str]) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer":
        return ""
    return token.strip()


def is_sync_candidate(item: StoredObject) -> bool:
    if not item or not item.name:
        return False
    if item.name.endswith("/"):
        return False
    return item.name.lower().endswith(IMAGE_EXTENSION)


def chunked(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def list_all_objects(store, folder: str, max_objects: int, page_size: int = LIST_PAGE_SIZE) -> List[StoredObject]:
    objects: List[StoredObject] = []
    offset = 0
    while len(objects) < max_objects:
        page = await store.list(folder, limit=page_size, offset=offset)
        if not page:
            break
        objects.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
    return objects[:max_objects]


async def reconcile(
    store,
    catalog,
    folder: str = "",
    max_objects: int = 2000,
    dry_run: bool = False,
    chunk_size: int = INSERT_CHUNK_SIZE,
) -> ReconcileReport:
    objects = await list_all_objects(store, folder, max(max_objects, 1))
    candidates = [item for item in objects if is_sync_candidate(item)]
    paths = [item.full_path for item in candidates]
    existing = await catalog.existing_paths(paths) if paths else set()

    rows = [
        {
            "storage_path": item.full_path,
            "public_url": store.public_url(item.full_path),
            "metadata": item.metadata or None,
        }
        for item in candidates
        if item.full_path not in existing
    ]

    report = ReconcileReport(
        scanned=len(objects),
        candidates=len(candidates),
        inserted=0,
        dry_run=dry_run,
        rows=rows,
    )
    if dry_run or not rows:
        logger.info(
            "Reconcile %s: scanned=%s candidates=%s missing=%s",
            "dry run" if dry_run else "run", report.scanned, report.candidates, len(rows),
        )
        return report

    for index, chunk in enumerate(chunked(rows, chunk_size)):
        try:
            await catalog.insert_rows(chunk)
        except Exception as exc:
            report.chunks.append(ChunkOutcome(index, len(chunk), ok=False, error=str(exc)))
            logger.exception("Reconcile chunk %s failed after %s rows inserted", index, report.inserted)
            raise ReconcileError(f"Insert of chunk {index} failed", report.chunks) from exc
        report.chunks.append(ChunkOutcome(index, len(chunk), ok=True))
        report.inserted += len(chunk)
        record_reconciled(len(chunk))

    logger.info(
        "Reconciled %s rows into %s (scanned=%s candidates=%s)",
        report.inserted, getattr(catalog, "table", "?"), report.scanned, report.candidates,
    )
    return report
