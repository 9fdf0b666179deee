# File: parkcore/application/dtos.py
"""
Data Transfer Objects for the parking engine

1. Request DTOs - validated input for the command handler
2. Result DTOs - what each operation returns; failures use the same DTO
   with success=False, an error_code and a human readable message
3. Read DTOs - slots, sessions, billing configuration
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..domain.exceptions import DomainError
from ..domain.models import (
    BillingMode, VehicleCategory, SlotCategory, LicensePlate, ParkingSlot, ParkingSession
)


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """JSON-compatible dictionary"""
        return self.model_dump(mode='json', exclude_none=exclude_none, **kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        return cls(**data)


class OperationResultDTO(BaseDTO):
    """Outcome envelope shared by every operation"""
    success: bool = True
    message: str = ""
    error_code: Optional[str] = None
    retryable: bool = False

    @classmethod
    def failure(cls, error: DomainError, **fields) -> 'OperationResultDTO':
        return cls(
            success=False,
            message=error.message,
            error_code=error.code.value,
            retryable=error.retryable,
            **fields
        )


# ============================================================================
# REQUEST DTOs
# ============================================================================

class EntryRequestDTO(BaseDTO):
    license_plate: str
    vehicle_category: VehicleCategory
    billing_mode: BillingMode = BillingMode.HOURLY
    slot_id: Optional[str] = None

    @field_validator('license_plate')
    @classmethod
    def _normalize_plate(cls, value: str) -> str:
        return LicensePlate(value).value


class ExitRequestDTO(BaseDTO):
    license_plate: str

    @field_validator('license_plate')
    @classmethod
    def _normalize_plate(cls, value: str) -> str:
        return LicensePlate(value).value


class OverrideRequestDTO(BaseDTO):
    session_id: str = Field(min_length=1)
    new_slot_id: str = Field(min_length=1)


class ForceEndRequestDTO(BaseDTO):
    session_id: str = Field(min_length=1)


class EstimateRequestDTO(BaseDTO):
    entry_time: datetime
    billing_mode: BillingMode = BillingMode.HOURLY


class SlotCreateDTO(BaseDTO):
    slot_number: str = Field(min_length=1, max_length=20)
    category: SlotCategory


# ============================================================================
# READ DTOs
# ============================================================================

class SlotDTO(BaseDTO):
    id: str
    slot_number: str
    floor: str
    category: SlotCategory
    status: str

    @classmethod
    def from_domain(cls, slot: ParkingSlot) -> 'SlotDTO':
        return cls(
            id=slot.id,
            slot_number=slot.slot_number,
            floor=slot.floor,
            category=slot.category,
            status=slot.status.value,
        )


class SessionDTO(BaseDTO):
    id: str
    license_plate: Optional[str] = None
    vehicle_category: Optional[VehicleCategory] = None
    slot_id: str
    slot_number: Optional[str] = None
    entry_time: datetime
    exit_time: Optional[datetime] = None
    billing_mode: BillingMode
    status: str
    billing_amount: Optional[Decimal] = None

    @classmethod
    def from_domain(cls, session: ParkingSession) -> 'SessionDTO':
        return cls(
            id=session.id,
            license_plate=session.license_plate,
            vehicle_category=session.vehicle_category,
            slot_id=session.slot_id,
            slot_number=session.slot_number,
            entry_time=session.entry_time,
            exit_time=session.exit_time,
            billing_mode=session.billing_mode,
            status=session.status.value,
            billing_amount=session.billing_amount,
        )


class RateSlabDTO(BaseDTO):
    min_hours: int
    max_hours: int
    rate: Decimal


class BillingConfigDTO(BaseDTO):
    currency: str
    day_pass_rate: Decimal
    hourly_slabs: List[RateSlabDTO]
    preview: List[str] = Field(default_factory=list)


# ============================================================================
# RESULT DTOs
# ============================================================================

class EntryResultDTO(OperationResultDTO):
    session_id: Optional[str] = None
    license_plate: Optional[str] = None
    vehicle_category: Optional[VehicleCategory] = None
    slot_id: Optional[str] = None
    slot_number: Optional[str] = None
    slot_category: Optional[SlotCategory] = None
    entry_time: Optional[datetime] = None
    billing_mode: Optional[BillingMode] = None


class ExitResultDTO(OperationResultDTO):
    session_id: Optional[str] = None
    license_plate: Optional[str] = None
    slot_number: Optional[str] = None
    entry_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None
    duration: Optional[str] = None
    duration_hours: Optional[int] = None
    billing_mode: Optional[BillingMode] = None
    billing_amount: Optional[Decimal] = None
    currency: Optional[str] = None


class OverrideResultDTO(OperationResultDTO):
    session_id: Optional[str] = None
    license_plate: Optional[str] = None
    old_slot: Optional[SlotDTO] = None
    new_slot: Optional[SlotDTO] = None
    entry_time: Optional[datetime] = None
    billing_mode: Optional[BillingMode] = None


class CostEstimateDTO(OperationResultDTO):
    entry_time: Optional[datetime] = None
    billing_mode: Optional[BillingMode] = None
    duration: Optional[str] = None
    duration_hours: Optional[int] = None
    estimated_amount: Optional[Decimal] = None
    currency: Optional[str] = None


class OverstayAlertDTO(BaseDTO):
    session_id: str
    license_plate: Optional[str] = None
    vehicle_category: Optional[VehicleCategory] = None
    slot_number: Optional[str] = None
    billing_mode: BillingMode
    entry_time: datetime
    severity: str
    duration_hours: float
    threshold_hours: float
    overstay_hours: float
    estimated_cost: Decimal
    currency: str


class OverstayRunDTO(BaseDTO):
    alerts_found: int = 0
    notifications_sent: int = 0
    errors: int = 0


class SlotResultDTO(OperationResultDTO):
    slot: Optional[SlotDTO] = None


class SlotListResultDTO(OperationResultDTO):
    slots: List[SlotDTO] = Field(default_factory=list)
    status_counts: Dict[str, int] = Field(default_factory=dict)


class SessionResultDTO(OperationResultDTO):
    session: Optional[SessionDTO] = None
