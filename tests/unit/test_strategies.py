#!/usr/bin/env python3
"""
Unit tests for slot allocation strategies

The inventory is an in-memory fake so races can be staged: a slot can be
marked as "stolen" so the next conditional write on it fails.
"""

import unittest
import sys
from pathlib import Path
from unittest.mock import Mock

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parkcore.domain.exceptions import NoSlotsAvailable, SlotNoLongerAvailable
from parkcore.domain.models import ParkingSlot, SlotCategory, SlotStatus, VehicleCategory
from parkcore.domain.strategies import (
    AllocationStrategyFactory, CompatibilityAllocationStrategy,
    ElectricVehicleAllocationStrategy, SlotInventory
)


class FakeInventory(SlotInventory):
    """Slots kept in a list; ordering mirrors the SQL query"""

    def __init__(self, slots):
        self.slots = list(slots)
        self.stolen = set()
        self.reserve_calls = []

    def find_candidate(self, categories, preference_order):
        ranks = {}
        for index, tier in enumerate(preference_order):
            for category in tier:
                ranks[category] = index
        available = [
            s for s in self.slots
            if s.status == SlotStatus.AVAILABLE and s.category in categories
        ]
        available.sort(key=lambda s: (ranks.get(s.category, len(preference_order)), s.slot_number))
        return ParkingSlot(available[0].slot_number, available[0].category, available[0].status, available[0].id) \
            if available else None

    def try_reserve(self, slot_id, expected_status=SlotStatus.AVAILABLE):
        self.reserve_calls.append(slot_id)
        slot = next(s for s in self.slots if s.id == slot_id)
        if slot.slot_number in self.stolen:
            # Another transaction got there first
            slot.status = SlotStatus.OCCUPIED
            return False
        if slot.status != expected_status:
            return False
        slot.status = SlotStatus.OCCUPIED
        return True


def make_slots(*specs):
    return [ParkingSlot(slot_number=number, category=category) for number, category in specs]


# ============================================================================
# AUTO-ASSIGNMENT
# ============================================================================

class TestAutoAssign(unittest.TestCase):

    def setUp(self):
        self.factory = AllocationStrategyFactory()

    def test_car_takes_lowest_numbered_compatible_slot(self):
        inventory = FakeInventory(make_slots(
            ("B1-01", SlotCategory.HANDICAP_ACCESSIBLE),
            ("B1-03", SlotCategory.EV),
            ("B1-05", SlotCategory.COMPACT),
            ("B1-09", SlotCategory.REGULAR),
        ))
        strategy = self.factory.create_for_vehicle_category(VehicleCategory.CAR)
        slot = strategy.auto_assign(VehicleCategory.CAR, inventory)
        self.assertEqual(slot.slot_number, "B1-05")
        self.assertEqual(slot.status, SlotStatus.OCCUPIED)

    def test_ev_prefers_charging_slot_over_lower_numbered_regular(self):
        inventory = FakeInventory(make_slots(
            ("B1-01", SlotCategory.REGULAR),
            ("B2-03", SlotCategory.EV),
        ))
        strategy = self.factory.create_for_vehicle_category(VehicleCategory.EV)
        self.assertEqual(strategy.auto_assign(VehicleCategory.EV, inventory).slot_number, "B2-03")

    def test_ev_falls_back_when_charging_slots_are_full(self):
        slots = make_slots(("B1-03", SlotCategory.EV), ("B1-06", SlotCategory.COMPACT))
        slots[0].status = SlotStatus.OCCUPIED
        strategy = self.factory.create_for_vehicle_category(VehicleCategory.EV)
        self.assertEqual(strategy.auto_assign(VehicleCategory.EV, FakeInventory(slots)).slot_number, "B1-06")

    def test_bike_never_gets_compact(self):
        inventory = FakeInventory(make_slots(("B1-05", SlotCategory.COMPACT)))
        strategy = self.factory.create_for_vehicle_category(VehicleCategory.BIKE)
        with self.assertRaises(NoSlotsAvailable):
            strategy.auto_assign(VehicleCategory.BIKE, inventory)

    def test_car_does_not_take_ev_slot(self):
        """Only a charging slot free: a car is turned away"""
        inventory = FakeInventory(make_slots(("B1-03", SlotCategory.EV)))
        strategy = self.factory.create_for_vehicle_category(VehicleCategory.CAR)
        with self.assertRaises(NoSlotsAvailable):
            strategy.auto_assign(VehicleCategory.CAR, inventory)

    def test_maintenance_slots_are_skipped(self):
        slots = make_slots(("B1-09", SlotCategory.REGULAR), ("B1-10", SlotCategory.REGULAR))
        slots[0].status = SlotStatus.MAINTENANCE
        strategy = self.factory.create_for_vehicle_category(VehicleCategory.CAR)
        self.assertEqual(strategy.auto_assign(VehicleCategory.CAR, FakeInventory(slots)).slot_number, "B1-10")


# ============================================================================
# LOST CLAIMS
# ============================================================================

class TestLostClaims(unittest.TestCase):

    def test_retries_with_fresh_candidate(self):
        inventory = FakeInventory(make_slots(
            ("B1-09", SlotCategory.REGULAR), ("B1-10", SlotCategory.REGULAR)
        ))
        inventory.stolen.add("B1-09")
        strategy = CompatibilityAllocationStrategy(max_attempts=2)
        slot = strategy.auto_assign(VehicleCategory.CAR, inventory)
        self.assertEqual(slot.slot_number, "B1-10")
        self.assertEqual(len(inventory.reserve_calls), 2)

    def test_gives_up_after_max_attempts(self):
        inventory = FakeInventory(make_slots(
            ("B1-09", SlotCategory.REGULAR), ("B1-10", SlotCategory.REGULAR), ("B1-11", SlotCategory.REGULAR)
        ))
        inventory.stolen.update({"B1-09", "B1-10"})
        strategy = CompatibilityAllocationStrategy(max_attempts=2)
        with self.assertRaises(SlotNoLongerAvailable):
            strategy.auto_assign(VehicleCategory.CAR, inventory)
        self.assertEqual(len(inventory.reserve_calls), 2)

    def test_last_slot_taken_concurrently_reports_no_slots(self):
        inventory = FakeInventory(make_slots(("B1-09", SlotCategory.REGULAR)))
        inventory.stolen.add("B1-09")
        strategy = CompatibilityAllocationStrategy(max_attempts=3)
        with self.assertRaises(NoSlotsAvailable):
            strategy.auto_assign(VehicleCategory.CAR, inventory)

    def test_manual_reserve_reports_conditional_write_result(self):
        inventory = Mock(spec=SlotInventory)
        inventory.try_reserve.return_value = False
        strategy = CompatibilityAllocationStrategy()
        self.assertFalse(strategy.manual_reserve("slot-1", inventory))
        inventory.try_reserve.assert_called_once_with("slot-1", SlotStatus.AVAILABLE)

    def test_max_attempts_must_be_positive(self):
        with self.assertRaises(ValueError):
            CompatibilityAllocationStrategy(max_attempts=0)


# ============================================================================
# FACTORY
# ============================================================================

class TestAllocationStrategyFactory(unittest.TestCase):

    def test_strategy_per_category(self):
        factory = AllocationStrategyFactory()
        self.assertIsInstance(
            factory.create_for_vehicle_category(VehicleCategory.EV), ElectricVehicleAllocationStrategy
        )
        for category in (VehicleCategory.CAR, VehicleCategory.BIKE, VehicleCategory.HANDICAP_ACCESSIBLE):
            strategy = factory.create_for_vehicle_category(category)
            self.assertIs(type(strategy), CompatibilityAllocationStrategy)

    def test_strategies_are_cached(self):
        factory = AllocationStrategyFactory(max_attempts=4)
        first = factory.create_for_vehicle_category("CAR")
        self.assertIs(first, factory.create_for_vehicle_category(VehicleCategory.CAR))
        self.assertEqual(first.max_attempts, 4)

    def test_ev_strategy_rejects_other_vehicles(self):
        with self.assertRaises(ValueError):
            ElectricVehicleAllocationStrategy().preference_tiers(VehicleCategory.CAR)

    def test_strategy_name(self):
        self.assertEqual(str(ElectricVehicleAllocationStrategy()), "ElectricVehicle Strategy")


if __name__ == '__main__':
    unittest.main()
