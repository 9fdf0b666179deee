"""
Integration Tests Package for the parking engine

Integration tests run the real service, lifecycle manager and SQLAlchemy
repositories against a temporary SQLite database file.

Test Categories:
- Session lifecycle (entry, exit, override, force end)
- Slot administration
- Concurrency and transaction budgets
- Service facade and command handler
"""

import os
import shutil
import sys
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path

# Add the project root to Python path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from parkcore.application.parking_service import ParkingService
from parkcore.application.session_manager import SessionLifecycleManager
from parkcore.domain.billing import BillingCalculator
from parkcore.domain.models import SlotCategory, SlotStatus, SessionStatus
from parkcore.domain.overstay import OverstayClassifier
from parkcore.domain.strategies import AllocationStrategyFactory
from parkcore.infrastructure.config import build_settings
from parkcore.infrastructure.factories import EngineFactory
from parkcore.infrastructure.messaging import CallableEventHandler, EventBus
from parkcore.infrastructure.repositories import (
    ParkingSessionModel, ParkingSlotModel, RepositoryFactory
)


class IntegrationTestConfig:
    """Configuration for integration tests"""

    TEST_DB_NAME = "test_parkcore.db"
    TRANSACTION_TIMEOUT = 5.0
    START_TIME = datetime(2024, 1, 15, 10, 0, 0)

    # Small mixed floor used by most tests
    SAMPLE_SLOTS = [
        ("B1-01", SlotCategory.HANDICAP_ACCESSIBLE),
        ("B1-02", SlotCategory.EV),
        ("B1-03", SlotCategory.COMPACT),
        ("B1-04", SlotCategory.REGULAR),
        ("B1-05", SlotCategory.REGULAR),
    ]


class ManualClock:
    """Clock the tests move by hand"""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class EngineTestCase(unittest.TestCase):
    """
    Base class: fresh database, service and event recorder per test

    Slots from `slot_layout` are created in setUp and exposed by number in
    `self.slots`.
    """

    slot_layout = IntegrationTestConfig.SAMPLE_SLOTS

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        db_path = os.path.join(self.temp_dir, IntegrationTestConfig.TEST_DB_NAME)
        self.settings = build_settings({
            "engine": {
                "database_url": f"sqlite:///{db_path}",
                "transaction_timeout_seconds": IntegrationTestConfig.TRANSACTION_TIMEOUT,
            },
            "logging": {"log_dir": None},
        })
        self.clock = ManualClock(IntegrationTestConfig.START_TIME)

        self.events = []
        self.event_bus = EventBus()
        self.event_bus.subscribe_all(CallableEventHandler(self.events.append))

        self.storage = EngineFactory.create_storage(self.settings)
        self.engine = self.storage.engine
        self.billing = BillingCalculator(self.settings.rate_table())
        self.manager = self.build_manager(self.storage.uow_factory)
        self.service = ParkingService(
            self.manager,
            OverstayClassifier(self.settings.threshold_table(), self.billing),
            self.event_bus,
        )

        created = self.manager.bulk_create_slots(self.slot_layout) if self.slot_layout else []
        self.slots = {slot.slot_number: slot for slot in created}
        self.events.clear()

    def tearDown(self):
        self.engine.dispose()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def build_manager(self, uow_factory) -> SessionLifecycleManager:
        return SessionLifecycleManager(
            uow_factory=uow_factory,
            billing_calculator=self.billing,
            strategy_factory=AllocationStrategyFactory(self.settings.engine.max_allocation_attempts),
            event_bus=self.event_bus,
            clock=self.clock,
        )

    def uow_factory_with_timer(self, timer):
        return RepositoryFactory.create_uow_factory(
            self.engine, IntegrationTestConfig.TRANSACTION_TIMEOUT, timer=timer
        )

    # ------------------------------------------------------------------
    # Assertions on stored state
    # ------------------------------------------------------------------

    def slot_status(self, slot_number: str) -> SlotStatus:
        return self.manager.find_slot_by_number(slot_number).status

    def assertSlotSessionInvariant(self):
        """OCCUPIED iff exactly one ACTIVE session references the slot"""
        session_factory = RepositoryFactory.create_session_factory(self.engine)
        with session_factory() as db:
            for slot in db.query(ParkingSlotModel).all():
                active = db.query(ParkingSessionModel).filter(
                    ParkingSessionModel.slot_id == slot.id,
                    ParkingSessionModel.status == SessionStatus.ACTIVE.value
                ).count()
                if slot.status == SlotStatus.OCCUPIED.value:
                    self.assertEqual(active, 1, f"{slot.slot_number} is OCCUPIED with {active} active sessions")
                else:
                    self.assertEqual(active, 0, f"{slot.slot_number} is {slot.status} with {active} active sessions")

    def count_sessions(self) -> int:
        session_factory = RepositoryFactory.create_session_factory(self.engine)
        with session_factory() as db:
            return db.query(ParkingSessionModel).count()
