# File: parkcore/domain/strategies.py
"""
Strategy Pattern for slot allocation

Allocation is two steps against the slot inventory:
1. pick a candidate (read) in compatibility-preference order
2. claim it with a conditional write that only succeeds if the slot is
   still AVAILABLE

A lost claim means another transaction took the slot between the two steps;
the strategy then looks for a fresh candidate, a bounded number of times.

Strategies:
- CompatibilityAllocationStrategy: single preference tier, slot-number order
- ElectricVehicleAllocationStrategy: charging slots first, then the rest
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence
import logging

from .compatibility import CompatibilityMatrix
from .exceptions import NoSlotsAvailable, SlotNoLongerAvailable
from .models import ParkingSlot, SlotCategory, SlotStatus, VehicleCategory


DEFAULT_MAX_ATTEMPTS = 2


# ============================================================================
# STRATEGY INTERFACES
# ============================================================================

class SlotInventory(ABC):
    """The slot store as seen by allocation strategies"""

    @abstractmethod
    def find_candidate(
        self,
        categories: Sequence[SlotCategory],
        preference_order: Sequence[Sequence[SlotCategory]]
    ) -> Optional[ParkingSlot]:
        """First AVAILABLE slot in one of `categories`, by preference tier then slot number"""
        pass

    @abstractmethod
    def try_reserve(self, slot_id: str, expected_status: SlotStatus = SlotStatus.AVAILABLE) -> bool:
        """Atomically move the slot from `expected_status` to OCCUPIED"""
        pass


class SlotAllocationStrategy(ABC):
    """
    Abstract base class for allocation strategies
    Defines how a vehicle category is matched to a slot
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def preference_tiers(self, vehicle_category: VehicleCategory) -> List[List[SlotCategory]]:
        """Slot categories grouped into tiers, most preferred tier first"""
        pass

    def auto_assign(self, vehicle_category: VehicleCategory, inventory: SlotInventory) -> ParkingSlot:
        """
        Claim the best available slot for the vehicle category.

        Raises NoSlotsAvailable when nothing compatible is free and
        SlotNoLongerAvailable when every claim attempt lost a race.
        """
        tiers = self.preference_tiers(vehicle_category)
        categories = [category for tier in tiers for category in tier]

        for attempt in range(1, self.max_attempts + 1):
            candidate = inventory.find_candidate(categories, tiers)
            if candidate is None:
                raise NoSlotsAvailable(vehicle_category)

            if inventory.try_reserve(candidate.id, SlotStatus.AVAILABLE):
                candidate.status = SlotStatus.OCCUPIED
                self.logger.debug(f"Claimed slot {candidate.slot_number} on attempt {attempt}")
                return candidate

            self.logger.info(
                f"Slot {candidate.slot_number} was taken concurrently "
                f"(attempt {attempt}/{self.max_attempts})"
            )

        raise SlotNoLongerAvailable()

    def manual_reserve(self, slot_id: str, inventory: SlotInventory) -> bool:
        """Claim a specific slot; False means it was not AVAILABLE at write time"""
        return inventory.try_reserve(slot_id, SlotStatus.AVAILABLE)

    def get_strategy_name(self) -> str:
        return self.__class__.__name__.replace("AllocationStrategy", "")

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Strategy"


# ============================================================================
# ALLOCATION STRATEGIES
# ============================================================================

class CompatibilityAllocationStrategy(SlotAllocationStrategy):
    """
    Strategy: any compatible slot, lowest slot number first
    Used for cars, bikes and accessible-need vehicles.
    """

    def preference_tiers(self, vehicle_category: VehicleCategory) -> List[List[SlotCategory]]:
        return CompatibilityMatrix.preference_tiers(vehicle_category)


class ElectricVehicleAllocationStrategy(CompatibilityAllocationStrategy):
    """
    Strategy: electric vehicles
    - Charging slots are exhausted first
    - Falls back to regular and compact slots
    """

    def preference_tiers(self, vehicle_category: VehicleCategory) -> List[List[SlotCategory]]:
        if VehicleCategory(vehicle_category) != VehicleCategory.EV:
            raise ValueError("ElectricVehicleAllocationStrategy can only be used for electric vehicles")
        return super().preference_tiers(vehicle_category)


class AllocationStrategyFactory:
    """Picks the allocation strategy for a vehicle category"""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.max_attempts = max_attempts
        self._cache: Dict[VehicleCategory, SlotAllocationStrategy] = {}

    def create_for_vehicle_category(self, vehicle_category: VehicleCategory) -> SlotAllocationStrategy:
        vehicle_category = VehicleCategory(vehicle_category)
        if vehicle_category not in self._cache:
            strategy_map = {
                VehicleCategory.CAR: CompatibilityAllocationStrategy,
                VehicleCategory.BIKE: CompatibilityAllocationStrategy,
                VehicleCategory.HANDICAP_ACCESSIBLE: CompatibilityAllocationStrategy,
                VehicleCategory.EV: ElectricVehicleAllocationStrategy,
            }
            self._cache[vehicle_category] = strategy_map[vehicle_category](self.max_attempts)
        return self._cache[vehicle_category]
