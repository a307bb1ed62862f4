from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.load import LoadStatus


class LoadCreate(BaseModel):
    actor: str = Field(..., min_length=1, description="User or system creating the load")
    shipper_id: Optional[str] = None
    company_id: Optional[str] = None
    reference_number: Optional[str] = None
    commodity: Optional[str] = None
    weight: Optional[float] = Field(None, gt=0, description="Weight in pounds")
    equipment_type: Optional[str] = None
    base_rate: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class LoadStatusUpdateRequest(BaseModel):
    status: LoadStatus
    details: Optional[Dict[str, Any]] = None
    actor: str = Field(..., min_length=1, description="User or system performing the transition")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def check_location_pair(self) -> "LoadStatusUpdateRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class LoadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: LoadStatus
    shipper_id: Optional[str] = None
    company_id: Optional[str] = None
    reference_number: Optional[str] = None
    commodity: Optional[str] = None
    weight: Optional[float] = None
    equipment_type: Optional[str] = None
    base_rate: Optional[Decimal] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_json")
    created_at: datetime
    updated_at: datetime


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    load_id: str
    sequence: int
    status: LoadStatus
    previous_status: Optional[LoadStatus] = None
    details: Optional[Dict[str, Any]] = None
    actor: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime


class StatusTimelineEntry(BaseModel):
    status: LoadStatus
    previous_status: Optional[LoadStatus] = None
    actor: str
    created_at: datetime
    location: Optional[Dict[str, float]] = None


class CurrentStatusResponse(BaseModel):
    load_id: str
    status: LoadStatus


class TransitionRulesResponse(BaseModel):
    rules: Dict[LoadStatus, List[LoadStatus]]
    initial_status: LoadStatus = LoadStatus.CREATED
    terminal_statuses: List[LoadStatus]
