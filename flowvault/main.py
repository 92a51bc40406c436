import logging
from contextlib import asynccontextmanager
from datetime import datetime

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from flowvault.config import settings
from flowvault.core.middleware import ErrorEnvelopeMiddleware, SecurityHeadersMiddleware
from flowvault.core.rate_limit import build_admission_limiter, limiter
from flowvault.db import close_db, init_db
from flowvault.routers import router
from flowvault.services.batch import BatchOrchestrator, BatchRejected
from flowvault.services.metrics import metrics_endpoint, metrics_middleware
from flowvault.services.observability import init_observability
from flowvault.services.storage import build_storage
from flowvault.services.worker import ImageWorker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("flowvault")


def _is_production() -> bool:
    return (settings.APP_ENV or "").strip().lower() == "production"


def build_orchestrator(client: httpx.AsyncClient, store) -> BatchOrchestrator:
    worker = ImageWorker(
        store,
        client,
        allowed_domains=settings.ALLOWED_IMAGE_DOMAINS,
        max_file_size=settings.MAX_FILE_SIZE,
        fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
    )
    return BatchOrchestrator(
        worker,
        max_images=settings.MAX_IMAGES,
        max_total_size=settings.MAX_TOTAL_SIZE,
        concurrency=settings.INGEST_CONCURRENCY,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting FlowVault ingestion service...")
    init_observability("flowvault")

    client = httpx.AsyncClient(timeout=httpx.Timeout(settings.FETCH_TIMEOUT_SECONDS))
    app.state.http_client = client

    if _is_production() and not settings.supabase_configured:
        logger.error("Missing Supabase environment variables")
        app.state.orchestrator = None
        app.state.sync_store = None
    else:
        store = build_storage(settings, client=client)
        app.state.orchestrator = build_orchestrator(client, store)
        if _is_production() and not settings.SUPABASE_SERVICE_ROLE_KEY:
            app.state.sync_store = None
        else:
            app.state.sync_store = store

    await init_db()

    yield

    logger.info("Shutting down FlowVault ingestion service...")
    await client.aclose()
    await close_db()


app = FastAPI(
    title="FlowVault API",
    description="Ingests discovered image URLs, deduplicates and compresses them into object storage",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.admission_limiter = build_admission_limiter()
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected malformed request body on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})


@app.exception_handler(BatchRejected)
async def batch_rejected_handler(request: Request, exc: BatchRejected):
    content = {"success": False, "error": exc.message}
    if exc.invalid_count:
        content["invalidCount"] = exc.invalid_count
    return JSONResponse(status_code=400, content=content)


app.include_router(router)

# Middleware setup
app.add_middleware(ErrorEnvelopeMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.ALLOWED_ORIGIN],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Sync-Token"],
)
app.add_middleware(SecurityHeadersMiddleware)
metrics_middleware(app)


@app.get("/metrics")
async def prometheus_metrics():
    return await metrics_endpoint()


@app.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


if __name__ == "__main__":
    uvicorn.run("flowvault.main:app", host="0.0.0.0", port=8000, log_level="info")
