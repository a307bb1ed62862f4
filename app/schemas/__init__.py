"""Pydantic schemas."""

from app.schemas.load import (  # noqa: F401
    CurrentStatusResponse,
    LoadCreate,
    LoadResponse,
    LoadStatusUpdateRequest,
    StatusHistoryResponse,
    StatusTimelineEntry,
    TransitionRulesResponse,
)
