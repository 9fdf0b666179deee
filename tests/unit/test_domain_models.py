#!/usr/bin/env python3
"""
Unit tests for domain value objects, entities and the compatibility matrix
"""

import unittest
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parkcore.domain.compatibility import CompatibilityMatrix
from parkcore.domain.exceptions import ConfigurationError, InvalidLicensePlate, ErrorCode
from parkcore.domain.models import (
    LicensePlate, Money, RateSlab, RateTable, OverstayThreshold, ParkingSlot, ParkingSession,
    VehicleCategory, SlotCategory, SlotStatus, SessionStatus, BillingMode
)


# ============================================================================
# VALUE OBJECT TESTS
# ============================================================================

class TestLicensePlate(unittest.TestCase):

    def test_normalization(self):
        """Case, spaces and hyphens do not distinguish plates"""
        self.assertEqual(LicensePlate("mh 12-ab 1234").value, "MH12AB1234")
        self.assertEqual(LicensePlate("  KA01xy9 ").value, "KA01XY9")
        self.assertEqual(LicensePlate("mh12ab1234"), LicensePlate("MH-12-AB-1234"))

    def test_invalid_plates(self):
        for raw in ("", "   ", "A", "MH12@1234", "X" * 16):
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidLicensePlate) as ctx:
                    LicensePlate(raw)
                self.assertEqual(ctx.exception.code, ErrorCode.INVALID_LICENSE_PLATE)


class TestMoney(unittest.TestCase):

    def test_rejects_float(self):
        with self.assertRaises(TypeError):
            Money(12.5)

    def test_rejects_negative(self):
        with self.assertRaises(ValueError):
            Money(Decimal('-1'))

    def test_format(self):
        self.assertEqual(Money(Decimal('150')).format(), "150.00 INR")
        self.assertEqual(Money(Decimal('7.5'), "USD").to_dict(), {"amount": "7.5", "currency": "USD"})


class TestRateTable(unittest.TestCase):

    def slabs(self, *bounds):
        return tuple(RateSlab(lo, hi, Decimal('10')) for lo, hi in bounds)

    def test_valid_table(self):
        table = RateTable(self.slabs((0, 1), (1, 3)), Decimal('100'))
        self.assertEqual(table.slab_for(1).max_hours, 1)
        self.assertEqual(table.slab_for(2).max_hours, 3)
        self.assertEqual(table.slab_for(99).max_hours, 3)
        self.assertEqual(table.slab_for(0).max_hours, 3)

    def test_must_start_at_zero(self):
        with self.assertRaises(ConfigurationError):
            RateTable(self.slabs((1, 3)), Decimal('100'))

    def test_gap_rejected(self):
        with self.assertRaises(ConfigurationError):
            RateTable(self.slabs((0, 1), (2, 3)), Decimal('100'))

    def test_overlap_rejected(self):
        with self.assertRaises(ConfigurationError):
            RateTable(self.slabs((0, 2), (1, 3)), Decimal('100'))

    def test_empty_rejected(self):
        with self.assertRaises(ConfigurationError):
            RateTable((), Decimal('100'))

    def test_inverted_slab_rejected(self):
        with self.assertRaises(ConfigurationError):
            RateSlab(3, 3, Decimal('10'))


class TestOverstayThreshold(unittest.TestCase):

    def test_must_be_strictly_increasing(self):
        for values in ((6, 6, 12), (8, 6, 12), (0, 1, 2), (6, 8, 7)):
            with self.subTest(values=values):
                with self.assertRaises(ConfigurationError):
                    OverstayThreshold(*values)


# ============================================================================
# ENTITY TESTS
# ============================================================================

class TestEntities(unittest.TestCase):

    def test_slot_defaults(self):
        slot = ParkingSlot(slot_number="B2-07", category=SlotCategory.COMPACT)
        self.assertEqual(slot.status, SlotStatus.AVAILABLE)
        self.assertTrue(slot.is_available)
        self.assertEqual(slot.floor, "B2")
        self.assertTrue(slot.id)

    def test_session_ids_are_unique(self):
        first = ParkingSession("v1", "s1", datetime(2024, 1, 1), BillingMode.HOURLY)
        second = ParkingSession("v1", "s1", datetime(2024, 1, 1), BillingMode.HOURLY)
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(first.status, SessionStatus.ACTIVE)
        self.assertTrue(first.is_active)

    def test_category_display_names(self):
        self.assertEqual(str(VehicleCategory.HANDICAP_ACCESSIBLE), "Accessible Need")
        self.assertEqual(VehicleCategory("EV"), VehicleCategory.EV)


# ============================================================================
# COMPATIBILITY MATRIX
# ============================================================================

class TestCompatibilityMatrix(unittest.TestCase):

    def test_allowed_categories(self):
        expected = {
            VehicleCategory.CAR: {SlotCategory.REGULAR, SlotCategory.COMPACT},
            VehicleCategory.BIKE: {SlotCategory.REGULAR},
            VehicleCategory.EV: {SlotCategory.EV, SlotCategory.REGULAR, SlotCategory.COMPACT},
            VehicleCategory.HANDICAP_ACCESSIBLE: {
                SlotCategory.HANDICAP_ACCESSIBLE, SlotCategory.REGULAR, SlotCategory.COMPACT
            },
        }
        for vehicle, slots in expected.items():
            with self.subTest(vehicle=vehicle):
                self.assertEqual(set(CompatibilityMatrix.allowed_slot_categories(vehicle)), slots)

    def test_reserved_slots_are_exclusive(self):
        """Only EVs use charging slots and only accessible-need vehicles use accessible slots"""
        for vehicle in (VehicleCategory.CAR, VehicleCategory.BIKE, VehicleCategory.HANDICAP_ACCESSIBLE):
            self.assertFalse(CompatibilityMatrix.is_compatible(vehicle, SlotCategory.EV))
        for vehicle in (VehicleCategory.CAR, VehicleCategory.BIKE, VehicleCategory.EV):
            self.assertFalse(CompatibilityMatrix.is_compatible(vehicle, SlotCategory.HANDICAP_ACCESSIBLE))

    def test_ev_prefers_charging_slots(self):
        tiers = CompatibilityMatrix.preference_tiers(VehicleCategory.EV)
        self.assertEqual(tiers[0], [SlotCategory.EV])
        self.assertEqual(set(tiers[1]), {SlotCategory.REGULAR, SlotCategory.COMPACT})

    def test_other_categories_have_one_tier(self):
        for vehicle in (VehicleCategory.CAR, VehicleCategory.BIKE, VehicleCategory.HANDICAP_ACCESSIBLE):
            self.assertEqual(len(CompatibilityMatrix.preference_tiers(vehicle)), 1)


if __name__ == '__main__':
    unittest.main()
