# File: parkcore/domain/exceptions.py
"""
Domain exceptions

Every business rule violation is a DomainError subclass carrying a stable
ErrorCode and a message that names the blocked rule. Callers translate these
into result objects; they are expected outcomes, not faults.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    ALREADY_PARKED = "ALREADY_PARKED"
    NOT_PARKED = "NOT_PARKED"
    NO_SLOTS_AVAILABLE = "NO_SLOTS_AVAILABLE"
    SLOT_NO_LONGER_AVAILABLE = "SLOT_NO_LONGER_AVAILABLE"
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    INCOMPATIBLE_SLOT = "INCOMPATIBLE_SLOT"
    SAME_SLOT = "SAME_SLOT"
    INVALID_STATE = "INVALID_STATE"
    TRANSACTION_TIMEOUT = "TRANSACTION_TIMEOUT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SLOT_NOT_FOUND = "SLOT_NOT_FOUND"
    DUPLICATE_SLOT = "DUPLICATE_SLOT"
    INVALID_LICENSE_PLATE = "INVALID_LICENSE_PLATE"


class DomainError(Exception):
    """Base class for business rule violations"""

    code: ErrorCode = ErrorCode.INVALID_STATE
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class AlreadyParked(DomainError):
    code = ErrorCode.ALREADY_PARKED

    def __init__(self, license_plate: str, slot_number: Optional[str] = None):
        if slot_number:
            message = f"Vehicle {license_plate} is already parked in slot {slot_number}"
        else:
            message = f"Vehicle {license_plate} is already parked"
        super().__init__(message)
        self.license_plate = license_plate
        self.slot_number = slot_number


class NotParked(DomainError):
    code = ErrorCode.NOT_PARKED

    def __init__(self, license_plate: Optional[str] = None, message: Optional[str] = None):
        super().__init__(message or f"No active parking session found for vehicle {license_plate}")
        self.license_plate = license_plate


class NoSlotsAvailable(DomainError):
    code = ErrorCode.NO_SLOTS_AVAILABLE

    def __init__(self, vehicle_category):
        super().__init__(f"No compatible slots available for {vehicle_category}")
        self.vehicle_category = vehicle_category


class SlotNoLongerAvailable(DomainError):
    """A slot was claimed by a concurrent transaction between read and write"""
    code = ErrorCode.SLOT_NO_LONGER_AVAILABLE

    def __init__(self, message: str = "Slot is no longer available or does not exist"):
        super().__init__(message)


class SlotUnavailable(DomainError):
    code = ErrorCode.SLOT_UNAVAILABLE

    def __init__(self, slot_number: str, reason: Optional[str] = None):
        super().__init__(reason or f"Slot {slot_number} is not available")
        self.slot_number = slot_number


class IncompatibleSlot(DomainError):
    code = ErrorCode.INCOMPATIBLE_SLOT

    def __init__(self, vehicle_category, slot_category, slot_number: Optional[str] = None):
        where = f"slot {slot_number}" if slot_number else "slot"
        super().__init__(
            f"{vehicle_category} cannot be parked in {slot_category} {where}"
        )
        self.vehicle_category = vehicle_category
        self.slot_category = slot_category


class SameSlot(DomainError):
    code = ErrorCode.SAME_SLOT

    def __init__(self):
        super().__init__("New slot is the same as current slot")


class InvalidState(DomainError):
    """Stored state contradicts an invariant; the transaction is rolled back"""
    code = ErrorCode.INVALID_STATE


class TransactionTimeout(DomainError):
    code = ErrorCode.TRANSACTION_TIMEOUT
    retryable = True

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Transaction exceeded its {timeout_seconds:g}s budget and was rolled back; retry the request"
        )
        self.timeout_seconds = timeout_seconds


class ConfigurationError(DomainError):
    """Invalid rate table, thresholds or engine settings; fatal at startup"""
    code = ErrorCode.CONFIGURATION_ERROR


class SessionNotFound(DomainError):
    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SlotNotFound(DomainError):
    code = ErrorCode.SLOT_NOT_FOUND

    def __init__(self, slot_ref: str):
        super().__init__(f"Slot {slot_ref} does not exist")
        self.slot_ref = slot_ref


class DuplicateSlot(DomainError):
    code = ErrorCode.DUPLICATE_SLOT

    def __init__(self, slot_numbers):
        numbers = ", ".join(sorted(slot_numbers))
        super().__init__(f"Slot number(s) already exist: {numbers}")
        self.slot_numbers = list(slot_numbers)


class InvalidLicensePlate(DomainError):
    code = ErrorCode.INVALID_LICENSE_PLATE

    def __init__(self, raw: str):
        super().__init__(
            f"License plate must be 2-15 letters or digits (spaces and hyphens ignored), got: {raw!r}"
        )
        self.raw = raw
