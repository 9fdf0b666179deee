# File: parkcore/domain/models.py
"""
Domain Models for the Slot Allocation & Session Lifecycle Engine

This module contains:
1. Enums: closed sets of categories, statuses, billing modes and severities
2. Value Objects: LicensePlate, Money, RateSlab, RateTable, OverstayThreshold
3. Entities: Vehicle, ParkingSlot, ParkingSession

Configuration value objects validate themselves on construction and are
immutable once built.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Tuple
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import re
import uuid

from .exceptions import ConfigurationError, InvalidLicensePlate


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(moment: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through"""
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class VehicleCategory(str, Enum):
    """Kind of vehicle, as declared at entry"""
    CAR = "CAR"
    BIKE = "BIKE"
    EV = "EV"                                    # Electric vehicle
    HANDICAP_ACCESSIBLE = "HANDICAP_ACCESSIBLE"  # Vehicle needing an accessible slot

    def __str__(self) -> str:
        names = {
            VehicleCategory.CAR: "Car",
            VehicleCategory.BIKE: "Bike",
            VehicleCategory.EV: "Electric Vehicle",
            VehicleCategory.HANDICAP_ACCESSIBLE: "Accessible Need",
        }
        return names[self]


class SlotCategory(str, Enum):
    """Physical kind of a parking slot"""
    REGULAR = "REGULAR"
    COMPACT = "COMPACT"
    EV = "EV"                                    # Slot with a charging point
    HANDICAP_ACCESSIBLE = "HANDICAP_ACCESSIBLE"  # Reserved accessible slot

    def __str__(self) -> str:
        names = {
            SlotCategory.REGULAR: "Regular",
            SlotCategory.COMPACT: "Compact",
            SlotCategory.EV: "Electric Charging",
            SlotCategory.HANDICAP_ACCESSIBLE: "Accessible Reserved",
        }
        return names[self]


class SlotStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class BillingMode(str, Enum):
    """How a session is charged; fixed at entry"""
    HOURLY = "HOURLY"
    DAY_PASS = "DAY_PASS"


class Severity(str, Enum):
    """Overstay severity, ordered by rank"""
    WARNING = "WARNING"
    ALERT = "ALERT"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return {Severity.WARNING: 1, Severity.ALERT: 2, Severity.CRITICAL: 3}[self]


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

_PLATE_PATTERN = re.compile(r'^[A-Z0-9]{2,15}$')


@dataclass(frozen=True)
class LicensePlate:
    """
    Value Object: normalized license plate

    Normalization trims, upper-cases and removes inner whitespace and
    hyphens, so "mh 12-ab 1234" and "MH12AB1234" are the same vehicle.
    """
    value: str

    def __post_init__(self):
        raw = self.value or ""
        normalized = re.sub(r'[\s\-]+', '', raw.strip().upper())
        if not _PLATE_PATTERN.match(normalized):
            raise InvalidLicensePlate(raw)
        object.__setattr__(self, 'value', normalized)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Money:
    """
    Value Object: monetary amount with currency
    Amounts are Decimal; floats are rejected.
    """
    amount: Decimal
    currency: str = "INR"

    def __post_init__(self):
        if isinstance(self.amount, float):
            raise TypeError("Money amount must be Decimal, not float")
        object.__setattr__(self, 'amount', Decimal(self.amount))
        if self.amount < Decimal('0'):
            raise ValueError("Money amount cannot be negative")
        if len(self.currency) != 3:
            raise ValueError(f"Currency must be 3-letter code: {self.currency}")

    def format(self) -> str:
        return f"{self.amount:.2f} {self.currency}"

    def to_dict(self) -> Dict[str, str]:
        return {"amount": str(self.amount), "currency": self.currency}


@dataclass(frozen=True)
class RateSlab:
    """Hourly rate applying to durations in (min_hours, max_hours]"""
    min_hours: int
    max_hours: int
    rate: Decimal

    def __post_init__(self):
        if self.min_hours < 0 or self.max_hours <= self.min_hours:
            raise ConfigurationError(
                f"Invalid rate slab ({self.min_hours}, {self.max_hours}]"
            )
        if Decimal(self.rate) < 0:
            raise ConfigurationError(f"Rate for slab ({self.min_hours}, {self.max_hours}] is negative")
        object.__setattr__(self, 'rate', Decimal(self.rate))

    def contains(self, hours: int) -> bool:
        return self.min_hours < hours <= self.max_hours

    def describe(self, currency: str) -> str:
        if self.min_hours == 0:
            return f"Up to {self.max_hours} hour(s): {self.rate} {currency}"
        return f"{self.min_hours}-{self.max_hours} hours: {self.rate} {currency}"


@dataclass(frozen=True)
class RateTable:
    """
    Value Object: ordered hourly slabs plus the day-pass rate

    Slabs must start at zero and be contiguous. The last slab is the cap:
    longer stays are billed at its rate.
    """
    slabs: Tuple[RateSlab, ...]
    day_pass_rate: Decimal
    currency: str = "INR"

    def __post_init__(self):
        slabs = tuple(self.slabs)
        object.__setattr__(self, 'slabs', slabs)
        object.__setattr__(self, 'day_pass_rate', Decimal(self.day_pass_rate))

        if not slabs:
            raise ConfigurationError("Rate table needs at least one slab")
        if slabs[0].min_hours != 0:
            raise ConfigurationError("First rate slab must start at 0 hours")
        for previous, current in zip(slabs, slabs[1:]):
            if current.min_hours != previous.max_hours:
                raise ConfigurationError(
                    f"Rate slabs are not contiguous: ({previous.min_hours}, {previous.max_hours}] "
                    f"followed by ({current.min_hours}, {current.max_hours}]"
                )
        if self.day_pass_rate < 0:
            raise ConfigurationError("Day-pass rate cannot be negative")
        if len(self.currency) != 3:
            raise ConfigurationError(f"Currency must be 3-letter code: {self.currency}")

    def slab_for(self, hours: int) -> RateSlab:
        """Slab whose range (min, max] holds `hours`; anything outside every range bills the last slab"""
        for slab in self.slabs:
            if slab.contains(hours):
                return slab
        return self.slabs[-1]


@dataclass(frozen=True)
class OverstayThreshold:
    """Hours after which a session escalates to each severity"""
    warning_hours: float
    alert_hours: float
    critical_hours: float

    def __post_init__(self):
        if not (0 < self.warning_hours < self.alert_hours < self.critical_hours):
            raise ConfigurationError(
                "Overstay thresholds must satisfy 0 < warning < alert < critical, got "
                f"{self.warning_hours}/{self.alert_hours}/{self.critical_hours}"
            )

    def severity_for(self, elapsed_hours: float) -> Optional[Tuple[Severity, float]]:
        """Highest threshold reached by `elapsed_hours`, with its value"""
        if elapsed_hours >= self.critical_hours:
            return Severity.CRITICAL, self.critical_hours
        if elapsed_hours >= self.alert_hours:
            return Severity.ALERT, self.alert_hours
        if elapsed_hours >= self.warning_hours:
            return Severity.WARNING, self.warning_hours
        return None


@dataclass(frozen=True)
class ThresholdTable:
    """Overstay thresholds keyed by (billing mode, vehicle category)"""
    entries: Dict[Tuple[BillingMode, VehicleCategory], OverstayThreshold] = field(default_factory=dict)

    def lookup(self, mode: BillingMode, category: VehicleCategory) -> Optional[OverstayThreshold]:
        return self.entries.get((mode, category))


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

@dataclass
class Vehicle:
    """Entity: a vehicle known to the facility, keyed by its plate"""
    license_plate: LicensePlate
    category: VehicleCategory
    id: str = field(default_factory=new_id)


@dataclass
class ParkingSlot:
    """
    Entity: a physical parking space

    Status is OCCUPIED exactly when one ACTIVE session references the slot.
    """
    slot_number: str
    category: SlotCategory
    status: SlotStatus = SlotStatus.AVAILABLE
    id: str = field(default_factory=new_id)

    @property
    def is_available(self) -> bool:
        return self.status == SlotStatus.AVAILABLE

    @property
    def floor(self) -> str:
        """Floor prefix of the slot number, e.g. "B1" for "B1-04" """
        return self.slot_number.split('-', 1)[0]


@dataclass
class ParkingSession:
    """Entity: one stay of one vehicle, from entry to exit"""
    vehicle_id: str
    slot_id: str
    entry_time: datetime
    billing_mode: BillingMode
    status: SessionStatus = SessionStatus.ACTIVE
    exit_time: Optional[datetime] = None
    billing_amount: Optional[Decimal] = None
    id: str = field(default_factory=new_id)

    # Populated by the repository for reads that join the vehicle and slot
    license_plate: Optional[str] = None
    vehicle_category: Optional[VehicleCategory] = None
    slot_number: Optional[str] = None
    slot_category: Optional[SlotCategory] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE
