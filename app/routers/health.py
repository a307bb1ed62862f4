from fastapi import APIRouter

from app.core.config import get_settings
from app.core.db import check_database_connection

router = APIRouter()


@router.get("/healthz", summary="Health check")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "environment": get_settings().environment}


@router.get("/readyz", summary="Readiness check")
async def readiness_check() -> dict[str, str | bool]:
    database_ready = await check_database_connection()
    return {"status": "ready" if database_ready else "not_ready", "database_ready": database_ready}
