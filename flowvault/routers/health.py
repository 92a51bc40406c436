import logging

from fastapi import APIRouter
from tortoise import Tortoise
from tortoise.exceptions import BaseORMException

router = APIRouter(prefix="/ops", tags=["ops"])
log = logging.getLogger(__name__)


@router.get("/db-health")
async def db_health():
    """Catalog database connectivity check"""
    try:
        await Tortoise.get_connection("default").execute_query("SELECT 1")
        return {"db_ok": True}
    except (BaseORMException, OSError, KeyError) as exc:
        log.warning("Catalog database check failed: %s", exc)
        return {"db_ok": False}

