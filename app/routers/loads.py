from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import InvalidTransitionError, LoadNotFoundError, PersistenceError
from app.schemas.load import (
    CurrentStatusResponse,
    LoadCreate,
    LoadResponse,
    LoadStatusUpdateRequest,
    StatusHistoryResponse,
    StatusTimelineEntry,
    TransitionRulesResponse,
)
from app.services.load_events import LoadEventsProducer, get_load_events_producer
from app.services.load_status import LoadLifecycleService

router = APIRouter()


async def _service(
    db: AsyncSession = Depends(get_db),
    producer: LoadEventsProducer = Depends(get_load_events_producer),
) -> LoadLifecycleService:
    return LoadLifecycleService(db, producer=producer)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LoadNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_dict())
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_dict())
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# Static paths - MUST be before /{load_id} routes
@router.get("/status/counts", response_model=Dict[str, int])
async def get_status_counts(
    shipper_id: Optional[str] = Query(None),
    company_id: Optional[str] = Query(None),
    service: LoadLifecycleService = Depends(_service),
) -> Dict[str, int]:
    """Number of loads in each status."""
    try:
        return await service.get_status_counts(shipper_id=shipper_id, company_id=company_id)
    except PersistenceError as exc:
        raise _http_error(exc)


@router.get("/status/transitions", response_model=TransitionRulesResponse)
async def get_transition_rules(
    service: LoadLifecycleService = Depends(_service),
) -> TransitionRulesResponse:
    """Status transition graph, for client-side validation."""
    return TransitionRulesResponse(
        rules=service.get_transition_rules(),
        terminal_statuses=service.rules.terminal_statuses(),
    )


@router.post("", response_model=LoadResponse, status_code=status.HTTP_201_CREATED)
async def create_load(
    payload: LoadCreate,
    service: LoadLifecycleService = Depends(_service),
) -> LoadResponse:
    try:
        load = await service.create_load(payload.model_dump(exclude={"actor"}), actor=payload.actor)
    except PersistenceError as exc:
        raise _http_error(exc)
    return LoadResponse.model_validate(load)


@router.delete("/{load_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_load(
    load_id: str,
    actor: str = Query(..., min_length=1),
    reason: Optional[str] = Query(None),
    service: LoadLifecycleService = Depends(_service),
) -> Response:
    try:
        deleted = await service.delete_load(load_id, actor=actor, reason=reason)
    except PersistenceError as exc:
        raise _http_error(exc)
    if not deleted:
        raise _http_error(LoadNotFoundError(load_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{load_id}/status", response_model=LoadResponse)
async def update_load_status(
    load_id: str,
    request: LoadStatusUpdateRequest,
    service: LoadLifecycleService = Depends(_service),
) -> LoadResponse:
    """Move a load to a new status."""
    try:
        load = await service.update_status(
            load_id,
            request.status,
            request.details,
            actor=request.actor,
            latitude=request.latitude,
            longitude=request.longitude,
        )
    except (LoadNotFoundError, InvalidTransitionError, PersistenceError) as exc:
        raise _http_error(exc)
    return LoadResponse.model_validate(load)


@router.get("/{load_id}/status", response_model=CurrentStatusResponse)
async def get_current_status(
    load_id: str,
    service: LoadLifecycleService = Depends(_service),
) -> CurrentStatusResponse:
    try:
        current = await service.get_current_status(load_id)
    except (LoadNotFoundError, PersistenceError) as exc:
        raise _http_error(exc)
    return CurrentStatusResponse(load_id=load_id, status=current)


@router.get("/{load_id}/status/history", response_model=List[StatusHistoryResponse])
async def get_status_history(
    load_id: str,
    service: LoadLifecycleService = Depends(_service),
) -> List[StatusHistoryResponse]:
    try:
        history = await service.get_status_history(load_id)
    except PersistenceError as exc:
        raise _http_error(exc)
    return [StatusHistoryResponse.model_validate(record) for record in history]


@router.get("/{load_id}/status/timeline", response_model=List[StatusTimelineEntry])
async def get_status_timeline(
    load_id: str,
    service: LoadLifecycleService = Depends(_service),
) -> List[StatusTimelineEntry]:
    try:
        timeline = await service.get_status_timeline(load_id)
    except PersistenceError as exc:
        raise _http_error(exc)
    return [StatusTimelineEntry(**entry) for entry in timeline]
