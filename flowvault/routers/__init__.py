from fastapi import APIRouter
import logging


def build_router() -> APIRouter:
    router = APIRouter()
    log = logging.getLogger("routers")

    from .ingest import router as ingest_router
    router.include_router(ingest_router)
    log.info("Loaded router: ingest")

    from .sync import router as sync_router
    router.include_router(sync_router)
    log.info("Loaded router: sync")

    from .health import router as health_router
    router.include_router(health_router)
    log.info("Loaded router: health")

    return router


# Export module-level router so flowvault.main can import it
router = build_router()
