# File: parkcore/application/session_manager.py
"""
Session Lifecycle Manager

Owns every slot and session state transition:

    no session --entry--> ACTIVE --exit / force-end--> COMPLETED
                            |
                            +--override--> ACTIVE (other slot, same entry time)

Each operation is one unit of work: all of its writes commit together or not
at all. Gate checks read current state; every transition that a concurrent
request could race is re-checked by a conditional write, and a lost write
aborts the whole transaction.

Business rule violations raise DomainError subclasses. Domain events are
published after commit only.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy.exc import IntegrityError

from ..domain.billing import BillingCalculator, BillingResult
from ..domain.compatibility import CompatibilityMatrix
from ..domain.exceptions import (
    AlreadyParked, NotParked, SlotNoLongerAvailable, SlotUnavailable,
    IncompatibleSlot, SameSlot, InvalidState, SessionNotFound, SlotNotFound,
    DuplicateSlot,
)
from ..domain.models import (
    LicensePlate, ParkingSession, ParkingSlot, Vehicle,
    VehicleCategory, SlotCategory, SlotStatus, SessionStatus, BillingMode,
    utc_now, to_naive_utc,
)
from ..domain.strategies import AllocationStrategyFactory
from ..infrastructure.messaging import DomainEvent, EventBus, EventType
from ..infrastructure.repositories import SQLAlchemyUnitOfWork


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class EntryResult:
    session: ParkingSession
    slot: ParkingSlot
    vehicle: Vehicle


@dataclass
class ExitResult:
    session: ParkingSession
    billing: BillingResult


@dataclass
class OverrideResult:
    session: ParkingSession
    old_slot: ParkingSlot
    new_slot: ParkingSlot


# ============================================================================
# SESSION LIFECYCLE MANAGER
# ============================================================================

class SessionLifecycleManager:
    """
    Entry, exit, override and force-end transactions, plus slot
    administration that touches slot status.
    """

    def __init__(
        self,
        uow_factory: Callable[[], SQLAlchemyUnitOfWork],
        billing_calculator: BillingCalculator,
        strategy_factory: Optional[AllocationStrategyFactory] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.uow_factory = uow_factory
        self.billing_calculator = billing_calculator
        self.strategy_factory = strategy_factory or AllocationStrategyFactory()
        self.event_bus = event_bus
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def now(self) -> datetime:
        return to_naive_utc(self.clock())

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def register_entry(
        self,
        license_plate: str,
        vehicle_category: VehicleCategory,
        billing_mode: BillingMode = BillingMode.HOURLY,
        slot_id: Optional[str] = None
    ) -> EntryResult:
        """
        Park a vehicle: claim a slot and open an ACTIVE session.

        With `slot_id` the given slot is claimed; otherwise the allocation
        strategy for the vehicle category picks one.
        """
        plate = LicensePlate(license_plate)
        vehicle_category = VehicleCategory(vehicle_category)
        billing_mode = BillingMode(billing_mode)
        strategy = self.strategy_factory.create_for_vehicle_category(vehicle_category)

        try:
            with self.uow_factory() as uow:
                active = uow.parking_sessions.find_active_by_license_plate(plate)
                if active is not None:
                    raise AlreadyParked(plate.value, active.slot_number)

                if slot_id:
                    slot = self._claim_chosen_slot(uow, strategy, slot_id, vehicle_category)
                else:
                    slot = strategy.auto_assign(vehicle_category, uow.parking_slots)
                uow.check_deadline()

                vehicle = uow.vehicles.get_or_create(plate, vehicle_category)
                session = ParkingSession(
                    vehicle_id=vehicle.id,
                    slot_id=slot.id,
                    entry_time=self.now(),
                    billing_mode=billing_mode,
                    license_plate=plate.value,
                    vehicle_category=vehicle_category,
                    slot_number=slot.slot_number,
                    slot_category=slot.category,
                )
                uow.parking_sessions.add(session)
        except IntegrityError as e:
            raise self._translate_entry_conflict(e, plate) from e

        self.logger.info(f"Vehicle {plate} entered, slot {slot.slot_number}, session {session.id}")
        self._publish(DomainEvent(
            event_type=EventType.VEHICLE_ENTERED,
            aggregate_id=session.id,
            aggregate_type="ParkingSession",
            data={
                "license_plate": plate.value,
                "vehicle_category": vehicle_category.value,
                "slot_id": slot.id,
                "slot_number": slot.slot_number,
                "billing_mode": billing_mode.value,
                "entry_time": session.entry_time.isoformat(),
            },
        ))
        return EntryResult(session=session, slot=slot, vehicle=vehicle)

    def _claim_chosen_slot(self, uow, strategy, slot_id: str, vehicle_category: VehicleCategory) -> ParkingSlot:
        slot = uow.parking_slots.get(slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if not CompatibilityMatrix.is_compatible(vehicle_category, slot.category):
            raise IncompatibleSlot(vehicle_category, slot.category, slot.slot_number)
        # Status is decided by the conditional write alone
        if not strategy.manual_reserve(slot.id, uow.parking_slots):
            raise SlotNoLongerAvailable(f"Slot {slot.slot_number} is no longer available")
        slot.status = SlotStatus.OCCUPIED
        return slot

    def _translate_entry_conflict(self, error: IntegrityError, plate: LicensePlate):
        # A racing entry for the same vehicle lost on the active-session index
        message = str(error.orig if error.orig is not None else error).lower()
        if "vehicle_id" in message or "uq_active_session_vehicle" in message or "license_plate" in message:
            self.logger.info(f"Concurrent entry for {plate} rejected by storage constraint")
            return AlreadyParked(plate.value)
        self.logger.warning(f"Storage constraint violated during entry of {plate}: {error}")
        return InvalidState(f"Entry for {plate} conflicts with stored state")

    # ------------------------------------------------------------------
    # Exit and force-end
    # ------------------------------------------------------------------

    def register_exit(self, license_plate: str) -> ExitResult:
        """Close the vehicle's ACTIVE session, bill it and free its slot"""
        plate = LicensePlate(license_plate)
        with self.uow_factory() as uow:
            session = uow.parking_sessions.find_active_by_license_plate(plate)
            if session is None:
                raise NotParked(plate.value)
            result = self._complete(uow, session)

        self.logger.info(
            f"Vehicle {plate} exited slot {session.slot_number}: "
            f"{result.billing.duration}, {result.billing.amount.format()}"
        )
        self._publish(self._completion_event(EventType.VEHICLE_EXITED, result))
        return result

    def force_end(self, session_id: str) -> ExitResult:
        """Administrative exit by session id, billed like a normal exit"""
        with self.uow_factory() as uow:
            session = uow.parking_sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            if not session.is_active:
                raise NotParked(message=f"Session {session_id} has already ended")
            result = self._complete(uow, session)

        self.logger.info(f"Session {session_id} force-ended, slot {session.slot_number} released")
        self._publish(self._completion_event(EventType.SESSION_FORCE_ENDED, result))
        return result

    def _complete(self, uow: SQLAlchemyUnitOfWork, session: ParkingSession) -> ExitResult:
        exit_time = self.now()
        if exit_time < session.entry_time:
            self.logger.warning(f"Clock is behind entry time of session {session.id}; billing from entry")
            exit_time = session.entry_time

        billing = self.billing_calculator.compute_amount(session.entry_time, exit_time, session.billing_mode)

        if not uow.parking_sessions.complete(session.id, exit_time, billing.amount.amount):
            raise NotParked(session.license_plate, message=f"Session {session.id} was closed concurrently")
        if not uow.parking_slots.release(session.slot_id):
            raise InvalidState(
                f"Slot {session.slot_number} was not occupied while session {session.id} was active"
            )
        uow.check_deadline()

        session.status = SessionStatus.COMPLETED
        session.exit_time = exit_time
        session.billing_amount = billing.amount.amount
        return ExitResult(session=session, billing=billing)

    def _completion_event(self, event_type: EventType, result: ExitResult) -> DomainEvent:
        session = result.session
        return DomainEvent(
            event_type=event_type,
            aggregate_id=session.id,
            aggregate_type="ParkingSession",
            data={
                "license_plate": session.license_plate,
                "slot_id": session.slot_id,
                "slot_number": session.slot_number,
                "billing_mode": session.billing_mode.value,
                "duration": result.billing.duration,
                "duration_hours": result.billing.duration_hours,
                "billing_amount": str(result.billing.amount.amount),
                "currency": result.billing.amount.currency,
            },
        )

    # ------------------------------------------------------------------
    # Override
    # ------------------------------------------------------------------

    def override_slot(self, session_id: str, new_slot_id: str) -> OverrideResult:
        """
        Move an ACTIVE session to another slot.

        Checks run in order: same slot, current slot occupied, target
        available, compatibility. Entry time and billing mode are kept.
        """
        with self.uow_factory() as uow:
            session = uow.parking_sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            if not session.is_active:
                raise NotParked(message=f"Session {session_id} has already ended")
            if session.slot_id == new_slot_id:
                raise SameSlot()

            old_slot = uow.parking_slots.get(session.slot_id)
            if old_slot is None or old_slot.status != SlotStatus.OCCUPIED:
                raise InvalidState(f"Current slot of session {session_id} is not occupied")

            new_slot = uow.parking_slots.get(new_slot_id)
            if new_slot is None:
                raise SlotNotFound(new_slot_id)
            if not new_slot.is_available:
                raise SlotUnavailable(
                    new_slot.slot_number,
                    f"Slot {new_slot.slot_number} is not available (status: {new_slot.status.value})"
                )
            if not CompatibilityMatrix.is_compatible(session.vehicle_category, new_slot.category):
                raise IncompatibleSlot(session.vehicle_category, new_slot.category, new_slot.slot_number)

            if not uow.parking_slots.try_reserve(new_slot.id, SlotStatus.AVAILABLE):
                raise SlotNoLongerAvailable()
            if not uow.parking_sessions.reassign_slot(session.id, old_slot.id, new_slot.id):
                raise NotParked(session.license_plate, message=f"Session {session_id} changed concurrently")
            if not uow.parking_slots.release(old_slot.id):
                raise InvalidState(f"Slot {old_slot.slot_number} could not be released")
            uow.check_deadline()

        old_slot.status = SlotStatus.AVAILABLE
        new_slot.status = SlotStatus.OCCUPIED
        session.slot_id = new_slot.id
        session.slot_number = new_slot.slot_number
        session.slot_category = new_slot.category

        self.logger.info(
            f"Session {session_id} moved from {old_slot.slot_number} to {new_slot.slot_number}"
        )
        self._publish(DomainEvent(
            event_type=EventType.SLOT_OVERRIDDEN,
            aggregate_id=session.id,
            aggregate_type="ParkingSession",
            data={
                "license_plate": session.license_plate,
                "old_slot_id": old_slot.id,
                "old_slot_number": old_slot.slot_number,
                "new_slot_id": new_slot.id,
                "new_slot_number": new_slot.slot_number,
            },
        ))
        return OverrideResult(session=session, old_slot=old_slot, new_slot=new_slot)

    # ------------------------------------------------------------------
    # Slot administration
    # ------------------------------------------------------------------

    def create_slot(self, slot_number: str, category: SlotCategory) -> ParkingSlot:
        return self.bulk_create_slots([(slot_number, category)])[0]

    def bulk_create_slots(self, slots: Iterable[Tuple[str, SlotCategory]]) -> List[ParkingSlot]:
        """Add slots in one transaction; any duplicate number rejects the batch"""
        new_slots = []
        seen = set()
        duplicates = set()
        for slot_number, category in slots:
            number = (slot_number or "").strip().upper()
            if not number:
                raise ValueError("Slot number cannot be empty")
            if number in seen:
                duplicates.add(number)
            seen.add(number)
            new_slots.append(ParkingSlot(slot_number=number, category=SlotCategory(category)))

        if duplicates:
            raise DuplicateSlot(duplicates)
        if not new_slots:
            return []

        with self.uow_factory() as uow:
            existing = uow.parking_slots.find_existing_numbers([s.slot_number for s in new_slots])
            if existing:
                raise DuplicateSlot(existing)
            uow.parking_slots.bulk_add(new_slots)

        self.logger.info(f"Created {len(new_slots)} slot(s)")
        return new_slots

    def set_maintenance(self, slot_id: str) -> ParkingSlot:
        with self.uow_factory() as uow:
            slot = uow.parking_slots.get(slot_id)
            if slot is None:
                raise SlotNotFound(slot_id)
            if slot.status == SlotStatus.MAINTENANCE:
                return slot
            if slot.status == SlotStatus.OCCUPIED:
                raise SlotUnavailable(slot.slot_number, "Cannot set slot to maintenance while it is occupied")
            if not uow.parking_slots.set_maintenance(slot.id):
                raise SlotNoLongerAvailable()

        slot.status = SlotStatus.MAINTENANCE
        self.logger.info(f"Slot {slot.slot_number} set to maintenance")
        self._publish(self._slot_event(EventType.SLOT_MAINTENANCE_SET, slot))
        return slot

    def release_maintenance(self, slot_id: str) -> ParkingSlot:
        with self.uow_factory() as uow:
            slot = uow.parking_slots.get(slot_id)
            if slot is None:
                raise SlotNotFound(slot_id)
            if not uow.parking_slots.release_maintenance(slot.id):
                raise InvalidState(f"Slot {slot.slot_number} is not under maintenance")

        slot.status = SlotStatus.AVAILABLE
        self.logger.info(f"Slot {slot.slot_number} released from maintenance")
        self._publish(self._slot_event(EventType.SLOT_MAINTENANCE_RELEASED, slot))
        return slot

    @staticmethod
    def _slot_event(event_type: EventType, slot: ParkingSlot) -> DomainEvent:
        return DomainEvent(
            event_type=event_type,
            aggregate_id=slot.id,
            aggregate_type="ParkingSlot",
            data={"slot_number": slot.slot_number, "category": slot.category.value},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_session(self, license_plate: str) -> Optional[ParkingSession]:
        plate = LicensePlate(license_plate)
        with self.uow_factory() as uow:
            return uow.parking_sessions.find_active_by_license_plate(plate)

    def list_active_sessions(self) -> List[ParkingSession]:
        with self.uow_factory() as uow:
            return uow.parking_sessions.find_active()

    def list_available_slots(
        self,
        category: Optional[SlotCategory] = None,
        vehicle_category: Optional[VehicleCategory] = None
    ) -> List[ParkingSlot]:
        """Available slots, optionally only those a vehicle category may use"""
        categories = None
        if vehicle_category is not None:
            categories = CompatibilityMatrix.allowed_slot_categories(vehicle_category)
        with self.uow_factory() as uow:
            return uow.parking_slots.find_available(category, categories)

    def slot_status_counts(self) -> Dict[SlotStatus, int]:
        with self.uow_factory() as uow:
            return uow.parking_slots.count_by_status()

    def find_slot_by_number(self, slot_number: str) -> ParkingSlot:
        with self.uow_factory() as uow:
            slot = uow.parking_slots.find_by_slot_number(slot_number.strip().upper())
        if slot is None:
            raise SlotNotFound(slot_number)
        return slot

    def _publish(self, event: DomainEvent):
        if self.event_bus is not None:
            self.event_bus.publish(event)
