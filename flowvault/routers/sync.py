import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from tortoise.exceptions import BaseORMException

from flowvault.config import settings
from flowvault.core.rate_limit import limiter
from flowvault.schemas.ingest import ReconcileResponse
from flowvault.services.reconcile import ReconcileError, TortoiseCatalog, authorize, bearer_token, reconcile
from flowvault.services.storage import StorageError

router = APIRouter(prefix="/api", tags=["sync"])
log = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


@router.post("/sync-storage-to-db", response_model=ReconcileResponse, response_model_by_alias=True)
@limiter.limit(settings.RECONCILE_RATE_LIMIT)
async def sync_storage_to_db(
    request: Request,
    dry_run: str = Query(default="", alias="dryRun"),
    token: str = Query(default=""),
    x_sync_token: Optional[str] = Header(default=None, alias="X-Sync-Token"),
    authorization: Optional[str] = Header(default=None),
):
    """Insert catalog rows for stored images that have none."""
    if not authorize(settings.SYNC_SECRET, x_sync_token or "", bearer_token(authorization), token):
        raise HTTPException(status_code=401, detail="Unauthorized")

    is_dry_run = dry_run.strip().lower() in _TRUTHY
    store = getattr(request.app.state, "sync_store", None)
    if store is None:
        log.error("Sync failed: Supabase service role config missing")
        raise HTTPException(status_code=500, detail="Sync failed")
    catalog = TortoiseCatalog()

    try:
        report = await reconcile(
            store,
            catalog,
            folder=settings.SYNC_FOLDER,
            max_objects=settings.SYNC_MAX_OBJECTS,
            dry_run=is_dry_run,
        )
    except ReconcileError as exc:
        log.error("Sync failed after %s rows: %s", exc.inserted, exc)
        raise HTTPException(status_code=500, detail="Sync failed")
    except (StorageError, BaseORMException):
        log.exception("Sync failed")
        raise HTTPException(status_code=500, detail="Sync failed")

    return ReconcileResponse(
        bucket=store.bucket,
        table=catalog.table,
        folder=settings.SYNC_FOLDER,
        dry_run=is_dry_run,
        scanned=report.scanned,
        candidates=report.candidates,
        inserted=report.inserted,
        would_insert=report.would_insert,
    )
