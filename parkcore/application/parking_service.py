# File: parkcore/application/parking_service.py
"""
Parking Engine Application Service

Facade used by the outer layers (HTTP handlers, CLI, jobs). It calls the
session lifecycle manager and the pure domain services and returns DTOs.

Error handling:
- DomainError: an expected business outcome. Logged at INFO (WARNING for
  invariant breaches) and returned as a DTO with success=False.
- SQLAlchemyError: a storage fault. Logged with traceback and re-raised.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError

from ..domain.billing import BillingCalculator
from ..domain.exceptions import DomainError, InvalidState, TransactionTimeout
from ..domain.models import (
    BillingMode, VehicleCategory, SlotCategory, utc_now, to_naive_utc
)
from ..domain.overstay import OverstayClassifier
from ..domain.strategies import AllocationStrategyFactory
from ..infrastructure.config import AppSettings
from ..infrastructure.factories import EngineFactory
from ..infrastructure.messaging import DomainEvent, EventBus, EventType
from .dtos import (
    EntryResultDTO, ExitResultDTO, OverrideResultDTO, CostEstimateDTO,
    OverstayAlertDTO, OverstayRunDTO, SlotDTO, SlotResultDTO, SlotListResultDTO,
    SessionDTO, SessionResultDTO, BillingConfigDTO, RateSlabDTO,
    EntryRequestDTO, ExitRequestDTO, OverrideRequestDTO, ForceEndRequestDTO,
    EstimateRequestDTO, SlotCreateDTO,
)
from .session_manager import SessionLifecycleManager, ExitResult


# ============================================================================
# APPLICATION SERVICE
# ============================================================================

class ParkingService:
    """
    Application service for the parking engine

    Use cases:
    1. Vehicle entry / exit
    2. Admin slot override and forced session end
    3. Overstay alerts and cost estimates
    4. Slot administration
    """

    def __init__(
        self,
        manager: SessionLifecycleManager,
        overstay_classifier: OverstayClassifier,
        event_bus: Optional[EventBus] = None
    ):
        self.manager = manager
        self.billing_calculator: BillingCalculator = manager.billing_calculator
        self.overstay_classifier = overstay_classifier
        self.event_bus = event_bus if event_bus is not None else manager.event_bus
        self.logger = logging.getLogger(self.__class__.__name__)

    def _log_rejection(self, operation: str, error: DomainError):
        if isinstance(error, InvalidState):
            self.logger.warning(f"{operation} rejected, invariant violated: {error}")
        elif isinstance(error, TransactionTimeout):
            self.logger.warning(f"{operation} timed out: {error}")
        else:
            self.logger.info(f"{operation} rejected [{error.code.value}]: {error}")

    def _log_storage_fault(self, operation: str, error: SQLAlchemyError):
        self.logger.error(f"Storage failure during {operation}: {error}", exc_info=True)

    # ------------------------------------------------------------------
    # Entry / exit
    # ------------------------------------------------------------------

    def register_entry(
        self,
        license_plate: str,
        vehicle_category: VehicleCategory,
        billing_mode: BillingMode = BillingMode.HOURLY,
        slot_id: Optional[str] = None
    ) -> EntryResultDTO:
        """
        Use Case: Vehicle Entry
        1. Reject a vehicle that is already parked
        2. Claim the chosen slot, or auto-assign a compatible one
        3. Open the session
        """
        self.logger.info(f"Processing entry for {license_plate} ({vehicle_category})")
        try:
            result = self.manager.register_entry(license_plate, vehicle_category, billing_mode, slot_id)
        except DomainError as e:
            self._log_rejection("Entry", e)
            return EntryResultDTO.failure(e, license_plate=license_plate)
        except SQLAlchemyError as e:
            self._log_storage_fault("entry", e)
            raise

        session, slot = result.session, result.slot
        return EntryResultDTO(
            success=True,
            message=f"Vehicle {session.license_plate} parked in slot {slot.slot_number}",
            session_id=session.id,
            license_plate=session.license_plate,
            vehicle_category=session.vehicle_category,
            slot_id=slot.id,
            slot_number=slot.slot_number,
            slot_category=slot.category,
            entry_time=session.entry_time,
            billing_mode=session.billing_mode,
        )

    def register_exit(self, license_plate: str) -> ExitResultDTO:
        """
        Use Case: Vehicle Exit
        Bills the session, completes it and frees the slot in one transaction.
        """
        self.logger.info(f"Processing exit for {license_plate}")
        try:
            result = self.manager.register_exit(license_plate)
        except DomainError as e:
            self._log_rejection("Exit", e)
            return ExitResultDTO.failure(e, license_plate=license_plate)
        except SQLAlchemyError as e:
            self._log_storage_fault("exit", e)
            raise

        return self._exit_dto(result, f"Vehicle {result.session.license_plate} exited")

    def force_end_session(self, session_id: str) -> ExitResultDTO:
        """Use Case: admin ends a session without the vehicle scanning out"""
        self.logger.info(f"Force-ending session {session_id}")
        try:
            result = self.manager.force_end(session_id)
        except DomainError as e:
            self._log_rejection("Force end", e)
            return ExitResultDTO.failure(e, session_id=session_id)
        except SQLAlchemyError as e:
            self._log_storage_fault("force end", e)
            raise

        return self._exit_dto(result, "Session ended successfully")

    @staticmethod
    def _exit_dto(result: ExitResult, message: str) -> ExitResultDTO:
        session, billing = result.session, result.billing
        return ExitResultDTO(
            success=True,
            message=message,
            session_id=session.id,
            license_plate=session.license_plate,
            slot_number=session.slot_number,
            entry_time=session.entry_time,
            exit_time=session.exit_time,
            duration=billing.duration,
            duration_hours=billing.duration_hours,
            billing_mode=session.billing_mode,
            billing_amount=billing.amount.amount,
            currency=billing.amount.currency,
        )

    # ------------------------------------------------------------------
    # Override
    # ------------------------------------------------------------------

    def override_slot(self, session_id: str, new_slot_id: str) -> OverrideResultDTO:
        """Use Case: admin moves a parked vehicle to another slot"""
        self.logger.info(f"Overriding slot for session {session_id} -> {new_slot_id}")
        try:
            result = self.manager.override_slot(session_id, new_slot_id)
        except DomainError as e:
            self._log_rejection("Override", e)
            return OverrideResultDTO.failure(e, session_id=session_id)
        except SQLAlchemyError as e:
            self._log_storage_fault("override", e)
            raise

        session = result.session
        return OverrideResultDTO(
            success=True,
            message=f"Session moved from {result.old_slot.slot_number} to {result.new_slot.slot_number}",
            session_id=session.id,
            license_plate=session.license_plate,
            old_slot=SlotDTO.from_domain(result.old_slot),
            new_slot=SlotDTO.from_domain(result.new_slot),
            entry_time=session.entry_time,
            billing_mode=session.billing_mode,
        )

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    def estimate_cost(self, entry_time: datetime, billing_mode: BillingMode = BillingMode.HOURLY) -> CostEstimateDTO:
        """Current charge for a stay that started at `entry_time`"""
        now = self.manager.now()
        entry_time = to_naive_utc(entry_time)
        if entry_time > now:
            return CostEstimateDTO(
                success=False,
                message="Entry time is in the future",
                error_code="INVALID_ENTRY_TIME",
                entry_time=entry_time,
                billing_mode=billing_mode,
            )

        estimate = self.billing_calculator.estimate(entry_time, billing_mode, now)
        return CostEstimateDTO(
            success=True,
            message=f"Estimated cost {estimate.amount.format()}",
            entry_time=entry_time,
            billing_mode=estimate.billing_mode,
            duration=estimate.duration,
            duration_hours=estimate.duration_hours,
            estimated_amount=estimate.amount.amount,
            currency=estimate.amount.currency,
        )

    def get_billing_config(self) -> BillingConfigDTO:
        table = self.billing_calculator.rate_table
        return BillingConfigDTO(
            currency=table.currency,
            day_pass_rate=table.day_pass_rate,
            hourly_slabs=[
                RateSlabDTO(min_hours=s.min_hours, max_hours=s.max_hours, rate=s.rate) for s in table.slabs
            ],
            preview=self.billing_calculator.rate_preview(),
        )

    # ------------------------------------------------------------------
    # Overstay
    # ------------------------------------------------------------------

    def get_overstay_alerts(self, now: Optional[datetime] = None) -> List[OverstayAlertDTO]:
        """
        Active sessions past a threshold, most severe first and, within a
        severity, longest parked first.
        """
        now = to_naive_utc(now) if now is not None else self.manager.now()
        alerts = []
        for session in self.manager.list_active_sessions():
            assessment = self.overstay_classifier.classify(
                session.entry_time, now, session.billing_mode, session.vehicle_category
            )
            if assessment is None:
                continue
            alerts.append((assessment, session))

        alerts.sort(key=lambda pair: (-pair[0].severity.rank, -pair[0].elapsed_hours))
        return [
            OverstayAlertDTO(
                session_id=session.id,
                license_plate=session.license_plate,
                vehicle_category=session.vehicle_category,
                slot_number=session.slot_number,
                billing_mode=session.billing_mode,
                entry_time=session.entry_time,
                severity=assessment.severity.value,
                duration_hours=round(assessment.elapsed_hours, 2),
                threshold_hours=assessment.threshold_hours,
                overstay_hours=round(assessment.overstay_hours, 2),
                estimated_cost=assessment.estimated_cost.amount,
                currency=assessment.estimated_cost.currency,
            )
            for assessment, session in alerts
        ]

    def run_overstay_detection(self, now: Optional[datetime] = None) -> OverstayRunDTO:
        """Publish one OVERSTAY_DETECTED event per alert; delivery is up to subscribers"""
        alerts = self.get_overstay_alerts(now)
        result = OverstayRunDTO(alerts_found=len(alerts))
        if self.event_bus is None:
            self.logger.info(f"Overstay detection: {len(alerts)} alert(s), no event bus configured")
            return result

        sent = errors = 0
        for alert in alerts:
            failures = self.event_bus.publish(DomainEvent(
                event_type=EventType.OVERSTAY_DETECTED,
                aggregate_id=alert.session_id,
                aggregate_type="ParkingSession",
                data=alert.to_dict(),
            ))
            if failures:
                errors += 1
            else:
                sent += 1

        self.logger.info(f"Overstay detection: {len(alerts)} alert(s), {sent} announced, {errors} failed")
        return OverstayRunDTO(alerts_found=len(alerts), notifications_sent=sent, errors=errors)

    # ------------------------------------------------------------------
    # Slot administration
    # ------------------------------------------------------------------

    def create_slot(self, slot_number: str, category: SlotCategory) -> SlotResultDTO:
        try:
            slot = self.manager.create_slot(slot_number, category)
        except DomainError as e:
            self._log_rejection("Slot creation", e)
            return SlotResultDTO.failure(e)
        return SlotResultDTO(success=True, message=f"Slot {slot.slot_number} created", slot=SlotDTO.from_domain(slot))

    def bulk_create_slots(self, slots: Iterable[Tuple[str, SlotCategory]]) -> SlotListResultDTO:
        try:
            created = self.manager.bulk_create_slots(slots)
        except DomainError as e:
            self._log_rejection("Bulk slot creation", e)
            return SlotListResultDTO.failure(e)
        return SlotListResultDTO(
            success=True,
            message=f"{len(created)} slot(s) created",
            slots=[SlotDTO.from_domain(s) for s in created],
        )

    def set_slot_maintenance(self, slot_id: str) -> SlotResultDTO:
        try:
            slot = self.manager.set_maintenance(slot_id)
        except DomainError as e:
            self._log_rejection("Maintenance", e)
            return SlotResultDTO.failure(e)
        return SlotResultDTO(
            success=True, message=f"Slot {slot.slot_number} under maintenance", slot=SlotDTO.from_domain(slot)
        )

    def release_slot_maintenance(self, slot_id: str) -> SlotResultDTO:
        try:
            slot = self.manager.release_maintenance(slot_id)
        except DomainError as e:
            self._log_rejection("Maintenance release", e)
            return SlotResultDTO.failure(e)
        return SlotResultDTO(
            success=True, message=f"Slot {slot.slot_number} is available", slot=SlotDTO.from_domain(slot)
        )

    def list_available_slots(
        self,
        category: Optional[SlotCategory] = None,
        vehicle_category: Optional[VehicleCategory] = None
    ) -> SlotListResultDTO:
        """
        List AVAILABLE slots.

        With vehicle_category only compatible slots are listed, grouped by
        slot category then slot number, for picking a slot at entry.
        """
        slots = self.manager.list_available_slots(category, vehicle_category)
        suffix = f" for {VehicleCategory(vehicle_category)}" if vehicle_category is not None else ""
        return SlotListResultDTO(
            success=True,
            message=f"{len(slots)} slot(s) available{suffix}",
            slots=[SlotDTO.from_domain(s) for s in slots],
            status_counts={status.value: total for status, total in self.manager.slot_status_counts().items()},
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_active_session(self, license_plate: str) -> SessionResultDTO:
        try:
            session = self.manager.get_active_session(license_plate)
        except DomainError as e:
            return SessionResultDTO.failure(e)
        if session is None:
            return SessionResultDTO(
                success=False,
                error_code="NOT_PARKED",
                message=f"No active parking session found for vehicle {license_plate}",
            )
        return SessionResultDTO(success=True, session=SessionDTO.from_domain(session))

    def list_active_sessions(self) -> List[SessionDTO]:
        return [SessionDTO.from_domain(s) for s in self.manager.list_active_sessions()]


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class ParkingServiceFactory:
    """Factory for creating parking service instances"""

    @staticmethod
    def create_service(
        settings: AppSettings,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
        timer: Optional[Callable[[], float]] = None
    ) -> ParkingService:
        """Wire storage, domain services and the manager from validated settings"""
        storage = EngineFactory.create_storage(settings, timer=timer)
        billing_calculator = BillingCalculator(settings.rate_table())
        classifier = OverstayClassifier(settings.threshold_table(), billing_calculator)
        manager = SessionLifecycleManager(
            uow_factory=storage.uow_factory,
            billing_calculator=billing_calculator,
            strategy_factory=AllocationStrategyFactory(settings.engine.max_allocation_attempts),
            event_bus=event_bus,
            clock=clock,
        )
        return ParkingService(manager, classifier, event_bus)


# ============================================================================
# COMMAND HANDLER
# ============================================================================

class ParkingCommandHandler:
    """
    Handler for parking commands

    Commands are dicts {"type": ..., "data": {...}}; results are dicts
    {"success": bool, "data": ...} or {"success": False, "error": ...}.
    """

    def __init__(self, service: ParkingService):
        self.service = service
        self.logger = logging.getLogger(self.__class__.__name__)

    def handle(self, command: Dict[str, Any]) -> Dict[str, Any]:
        command_type = command.get("type")
        data = command.get("data") or {}

        try:
            if command_type == "register_entry":
                request = EntryRequestDTO.from_dict(data)
                result = self.service.register_entry(
                    request.license_plate, request.vehicle_category, request.billing_mode, request.slot_id
                )

            elif command_type == "register_exit":
                request = ExitRequestDTO.from_dict(data)
                result = self.service.register_exit(request.license_plate)

            elif command_type == "override_slot":
                request = OverrideRequestDTO.from_dict(data)
                result = self.service.override_slot(request.session_id, request.new_slot_id)

            elif command_type == "force_end":
                request = ForceEndRequestDTO.from_dict(data)
                result = self.service.force_end_session(request.session_id)

            elif command_type == "estimate_cost":
                request = EstimateRequestDTO.from_dict(data)
                result = self.service.estimate_cost(request.entry_time, request.billing_mode)

            elif command_type == "overstay_alerts":
                alerts = self.service.get_overstay_alerts()
                return {"success": True, "data": [alert.to_dict() for alert in alerts]}

            elif command_type == "create_slot":
                request = SlotCreateDTO.from_dict(data)
                result = self.service.create_slot(request.slot_number, request.category)

            elif command_type == "set_maintenance":
                result = self.service.set_slot_maintenance(data["slot_id"])

            elif command_type == "release_maintenance":
                result = self.service.release_slot_maintenance(data["slot_id"])

            elif command_type == "list_available_slots":
                category = data.get("category")
                vehicle_category = data.get("vehicle_category")
                result = self.service.list_available_slots(
                    SlotCategory(category) if category else None,
                    VehicleCategory(vehicle_category) if vehicle_category else None,
                )

            else:
                return {"success": False, "error": f"Unknown command type: {command_type}"}

        except DomainError as e:
            return {"success": False, "error": e.message, "error_code": e.code.value}
        except (ValueError, KeyError) as e:
            self.logger.info(f"Invalid {command_type} command: {e}")
            return {"success": False, "error": str(e)}

        return {"success": result.success, "data": result.to_dict()}
