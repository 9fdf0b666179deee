# File: parkcore/infrastructure/factories.py
"""
Factories for slot layouts and engine wiring

- SlotLayoutFactory builds ParkingSlot entities for a multi-floor facility
  using the standard per-floor category split
- EngineFactory turns AppSettings into an engine, schema and unit-of-work
  factory
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple
import logging

from sqlalchemy.engine import Engine

from ..domain.models import ParkingSlot, SlotCategory
from .config import AppSettings
from .repositories import RepositoryFactory, SQLAlchemyUnitOfWork


# ============================================================================
# SLOT LAYOUT FACTORY
# ============================================================================

# (first, last, category) per floor, slot positions are 1-based
DEFAULT_FLOOR_PATTERN: Tuple[Tuple[int, int, SlotCategory], ...] = (
    (1, 2, SlotCategory.HANDICAP_ACCESSIBLE),
    (3, 4, SlotCategory.EV),
    (5, 8, SlotCategory.COMPACT),
    (9, 10 ** 6, SlotCategory.REGULAR),
)


class SlotLayoutFactory:
    """Creates slot entities for basement floors B1..Bn"""

    def __init__(self, floor_prefix: str = "B", pattern: Sequence[Tuple[int, int, SlotCategory]] = DEFAULT_FLOOR_PATTERN):
        self.floor_prefix = floor_prefix
        self.pattern = tuple(pattern)
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def slot_number(floor: str, position: int) -> str:
        return f"{floor}-{position:02d}"

    def category_for(self, position: int) -> SlotCategory:
        for first, last, category in self.pattern:
            if first <= position <= last:
                return category
        return SlotCategory.REGULAR

    def create_floor(self, floor_index: int, slots_per_floor: int) -> List[ParkingSlot]:
        floor = f"{self.floor_prefix}{floor_index}"
        return [
            ParkingSlot(slot_number=self.slot_number(floor, position), category=self.category_for(position))
            for position in range(1, slots_per_floor + 1)
        ]

    def create_layout(self, floors: int = 5, slots_per_floor: int = 15) -> List[ParkingSlot]:
        if floors < 1 or slots_per_floor < 1:
            raise ValueError("floors and slots_per_floor must be positive")
        if slots_per_floor > 99:
            raise ValueError("slots_per_floor cannot exceed 99")

        slots: List[ParkingSlot] = []
        for floor_index in range(1, floors + 1):
            slots.extend(self.create_floor(floor_index, slots_per_floor))
        self.logger.debug(f"Generated {len(slots)} slots across {floors} floor(s)")
        return slots


# ============================================================================
# ENGINE FACTORY
# ============================================================================

@dataclass
class StorageBundle:
    engine: Engine
    uow_factory: Callable[[], SQLAlchemyUnitOfWork]


class EngineFactory:
    """Builds storage plumbing from settings"""

    @staticmethod
    def create_storage(
        settings: AppSettings,
        create_schema: bool = True,
        timer: Optional[Callable[[], float]] = None
    ) -> StorageBundle:
        engine_settings = settings.engine
        engine = RepositoryFactory.create_engine(
            engine_settings.database_url,
            timeout_seconds=engine_settings.transaction_timeout_seconds,
            isolation_level=engine_settings.isolation_level,
            echo=engine_settings.echo_sql,
        )
        if create_schema:
            RepositoryFactory.create_schema(engine)

        kwargs = {'timer': timer} if timer is not None else {}
        uow_factory = RepositoryFactory.create_uow_factory(
            engine, engine_settings.transaction_timeout_seconds, **kwargs
        )
        return StorageBundle(engine=engine, uow_factory=uow_factory)
