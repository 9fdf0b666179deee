# File: parkcore/domain/compatibility.py
"""
Vehicle / slot compatibility rules and allocation preference tiers
"""

from typing import Dict, FrozenSet, List, Tuple

from .models import VehicleCategory, SlotCategory


_ALLOWED: Dict[VehicleCategory, FrozenSet[SlotCategory]] = {
    VehicleCategory.CAR: frozenset({SlotCategory.REGULAR, SlotCategory.COMPACT}),
    VehicleCategory.BIKE: frozenset({SlotCategory.REGULAR}),
    VehicleCategory.EV: frozenset({SlotCategory.EV, SlotCategory.REGULAR, SlotCategory.COMPACT}),
    VehicleCategory.HANDICAP_ACCESSIBLE: frozenset({
        SlotCategory.HANDICAP_ACCESSIBLE, SlotCategory.REGULAR, SlotCategory.COMPACT
    }),
}

# Each inner tuple is one tier; an earlier tier is always exhausted first.
_TIERS: Dict[VehicleCategory, Tuple[Tuple[SlotCategory, ...], ...]] = {
    VehicleCategory.CAR: ((SlotCategory.REGULAR, SlotCategory.COMPACT),),
    VehicleCategory.BIKE: ((SlotCategory.REGULAR,),),
    VehicleCategory.EV: ((SlotCategory.EV,), (SlotCategory.REGULAR, SlotCategory.COMPACT)),
    VehicleCategory.HANDICAP_ACCESSIBLE: (
        (SlotCategory.HANDICAP_ACCESSIBLE, SlotCategory.REGULAR, SlotCategory.COMPACT),
    ),
}


class CompatibilityMatrix:
    """
    Which slot categories may hold which vehicle categories.

    Used for auto-assignment, manual slot choice at entry and admin
    overrides. Stateless; all methods are static.
    """

    @staticmethod
    def allowed_slot_categories(vehicle_category: VehicleCategory) -> FrozenSet[SlotCategory]:
        return _ALLOWED[VehicleCategory(vehicle_category)]

    @staticmethod
    def is_compatible(vehicle_category: VehicleCategory, slot_category: SlotCategory) -> bool:
        return SlotCategory(slot_category) in _ALLOWED[VehicleCategory(vehicle_category)]

    @staticmethod
    def preference_tiers(vehicle_category: VehicleCategory) -> List[List[SlotCategory]]:
        return [list(tier) for tier in _TIERS[VehicleCategory(vehicle_category)]]
