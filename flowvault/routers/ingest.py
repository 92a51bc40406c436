import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from flowvault.core.rate_limit import SlidingWindowLimiter, client_identity
from flowvault.schemas.ingest import BatchResult, IngestRequest
from flowvault.services.batch import BatchOrchestrator
from flowvault.services.worker import IngestOptions

router = APIRouter(prefix="/api", tags=["ingest"])
log = logging.getLogger(__name__)


def get_admission_limiter(request: Request) -> SlidingWindowLimiter:
    return request.app.state.admission_limiter


def get_orchestrator(request: Request) -> BatchOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        log.error("Ingestion requested but storage is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    return orchestrator


def admit_client(request: Request, limiter: SlidingWindowLimiter = Depends(get_admission_limiter)) -> str:
    identity = client_identity(request)
    if not limiter.admit(identity):
        log.warning("Rate limit exceeded for %s", identity)
        raise HTTPException(status_code=429, detail="Too many requests. Please try again later.")
    return identity


@router.post("/upload-flow-images", response_model=BatchResult, response_model_by_alias=True)
async def upload_flow_images(
    payload: IngestRequest,
    identity: str = Depends(admit_client),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Fetch, compress and store a batch of discovered image URLs."""
    options = IngestOptions.from_raw(payload.compress_quality, payload.max_width, payload.max_height)
    result = await orchestrator.run_batch(payload.images, options)
    log.info(
        "Batch from %s: %s/%s stored, %s failed",
        identity, result.successful, result.total, result.failed,
    )
    return result
