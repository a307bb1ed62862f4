from fastapi import APIRouter

from app.routers import health, loads

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(loads.router, prefix="/loads", tags=["Loads"])
