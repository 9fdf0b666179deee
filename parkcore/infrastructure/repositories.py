# File: parkcore/infrastructure/repositories.py
"""
Repository Pattern Implementation for the parking engine

Repositories give the lifecycle manager a collection-like view of vehicles,
slots and sessions over SQLAlchemy. Every state transition that another
transaction could race is written as a single conditional UPDATE whose
WHERE clause restates the precondition; the affected row count tells the
caller whether it won.

Contents:
- SQLAlchemy ORM models (tables vehicles, parking_slots, parking_sessions)
- Mapper between ORM rows and domain dataclasses
- Repositories per aggregate
- SQLAlchemyUnitOfWork: one transaction with a wall-clock budget
- RepositoryFactory: engines, session factories and unit-of-work factories
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Generic, Iterable, List, Optional, Sequence, Type, TypeVar
from datetime import datetime
from decimal import Decimal
import logging
import time

from sqlalchemy import (
    create_engine, event, text, case, func,
    Column, String, DateTime, ForeignKey, Numeric, Index,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session, relationship
from sqlalchemy.exc import IntegrityError, SQLAlchemyError, OperationalError
from sqlalchemy.pool import StaticPool

from ..domain.exceptions import DomainError, TransactionTimeout
from ..domain.models import (
    Vehicle, ParkingSlot, ParkingSession, LicensePlate,
    VehicleCategory, SlotCategory, SlotStatus, SessionStatus, BillingMode,
    new_id, utc_now,
)
from ..domain.strategies import SlotInventory

T = TypeVar('T')


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()

_ACTIVE_ONLY = text("status = 'ACTIVE'")


class VehicleModel(Base):
    """SQLAlchemy model for Vehicle"""
    __tablename__ = 'vehicles'

    id = Column(String(36), primary_key=True, default=new_id)
    license_plate = Column(String(20), nullable=False, unique=True, index=True)
    category = Column(String(32), nullable=False)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    sessions = relationship('ParkingSessionModel', back_populates='vehicle')


class ParkingSlotModel(Base):
    """SQLAlchemy model for ParkingSlot"""
    __tablename__ = 'parking_slots'

    id = Column(String(36), primary_key=True, default=new_id)
    slot_number = Column(String(20), nullable=False, unique=True, index=True)
    category = Column(String(32), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=SlotStatus.AVAILABLE.value, index=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    sessions = relationship('ParkingSessionModel', back_populates='slot')


class ParkingSessionModel(Base):
    """SQLAlchemy model for ParkingSession"""
    __tablename__ = 'parking_sessions'

    id = Column(String(36), primary_key=True, default=new_id)
    vehicle_id = Column(String(36), ForeignKey('vehicles.id'), nullable=False, index=True)
    slot_id = Column(String(36), ForeignKey('parking_slots.id'), nullable=False, index=True)
    entry_time = Column(DateTime, nullable=False)
    exit_time = Column(DateTime)
    billing_mode = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=SessionStatus.ACTIVE.value, index=True)
    billing_amount = Column(Numeric(10, 2))

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    vehicle = relationship('VehicleModel', back_populates='sessions')
    slot = relationship('ParkingSlotModel', back_populates='sessions')

    # Storage-level backstop: one ACTIVE session per vehicle and per slot
    __table_args__ = (
        Index('uq_active_session_vehicle', 'vehicle_id', unique=True,
              sqlite_where=_ACTIVE_ONLY, postgresql_where=_ACTIVE_ONLY),
        Index('uq_active_session_slot', 'slot_id', unique=True,
              sqlite_where=_ACTIVE_ONLY, postgresql_where=_ACTIVE_ONLY),
    )


# ============================================================================
# MAPPERS
# ============================================================================

class Mapper:
    """Maps between domain models and ORM models"""

    @staticmethod
    def vehicle_to_orm(vehicle: Vehicle) -> VehicleModel:
        return VehicleModel(
            id=vehicle.id,
            license_plate=vehicle.license_plate.value,
            category=vehicle.category.value,
        )

    @staticmethod
    def vehicle_to_domain(model: VehicleModel) -> Vehicle:
        return Vehicle(
            id=model.id,
            license_plate=LicensePlate(model.license_plate),
            category=VehicleCategory(model.category),
        )

    @staticmethod
    def slot_to_orm(slot: ParkingSlot) -> ParkingSlotModel:
        return ParkingSlotModel(
            id=slot.id,
            slot_number=slot.slot_number,
            category=slot.category.value,
            status=slot.status.value,
        )

    @staticmethod
    def slot_to_domain(model: ParkingSlotModel) -> ParkingSlot:
        return ParkingSlot(
            id=model.id,
            slot_number=model.slot_number,
            category=SlotCategory(model.category),
            status=SlotStatus(model.status),
        )

    @staticmethod
    def session_to_orm(session: ParkingSession) -> ParkingSessionModel:
        return ParkingSessionModel(
            id=session.id,
            vehicle_id=session.vehicle_id,
            slot_id=session.slot_id,
            entry_time=session.entry_time,
            exit_time=session.exit_time,
            billing_mode=session.billing_mode.value,
            status=session.status.value,
            billing_amount=session.billing_amount,
        )

    @staticmethod
    def session_to_domain(model: ParkingSessionModel) -> ParkingSession:
        amount = model.billing_amount
        session = ParkingSession(
            id=model.id,
            vehicle_id=model.vehicle_id,
            slot_id=model.slot_id,
            entry_time=model.entry_time,
            exit_time=model.exit_time,
            billing_mode=BillingMode(model.billing_mode),
            status=SessionStatus(model.status),
            billing_amount=Decimal(amount) if amount is not None else None,
        )
        if model.vehicle is not None:
            session.license_plate = model.vehicle.license_plate
            session.vehicle_category = VehicleCategory(model.vehicle.category)
        if model.slot is not None:
            session.slot_number = model.slot.slot_number
            session.slot_category = SlotCategory(model.slot.category)
        return session


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyRepository(ABC, Generic[T]):
    """Base SQLAlchemy repository"""

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def model_class(self) -> Type[Base]:
        """Return SQLAlchemy model class"""
        pass

    @abstractmethod
    def to_domain(self, model: Base) -> T:
        pass

    @abstractmethod
    def to_orm(self, entity: T) -> Base:
        pass

    def add(self, entity: T) -> T:
        try:
            model = self.to_orm(entity)
            self.session.add(model)
            self.session.flush()
            self._logger.debug(f"Added {self.model_class.__tablename__} row: {model.id}")
            return entity
        except IntegrityError as e:
            # Constraint conflicts are business outcomes decided by the caller
            self._logger.warning(f"Constraint violation adding {self.model_class.__tablename__} row: {e.orig}")
            raise
        except SQLAlchemyError as e:
            self._logger.error(f"Database error adding entity: {e}")
            raise

    def get(self, id: str) -> Optional[T]:
        try:
            model = self.session.get(self.model_class, str(id))
            if model:
                return self.to_domain(model)
            return None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting entity {id}: {e}")
            raise


class VehicleRepository(SQLAlchemyRepository[Vehicle]):
    """Repository for Vehicle entities"""

    @property
    def model_class(self) -> Type[Base]:
        return VehicleModel

    def to_domain(self, model: VehicleModel) -> Vehicle:
        return Mapper.vehicle_to_domain(model)

    def to_orm(self, entity: Vehicle) -> VehicleModel:
        return Mapper.vehicle_to_orm(entity)

    def get_or_create(self, license_plate: LicensePlate, category: VehicleCategory) -> Vehicle:
        """Return the vehicle for the plate, creating it or updating its category"""
        try:
            model = self.session.query(VehicleModel).filter(
                VehicleModel.license_plate == license_plate.value
            ).first()
            if model is None:
                return self.add(Vehicle(license_plate=license_plate, category=category))

            if model.category != category.value:
                self._logger.info(
                    f"Vehicle {license_plate} category changed from {model.category} to {category.value}"
                )
                model.category = category.value
                self.session.flush()
            return self.to_domain(model)
        except SQLAlchemyError as e:
            self._logger.error(f"Database error resolving vehicle {license_plate}: {e}")
            raise


class ParkingSlotRepository(SQLAlchemyRepository[ParkingSlot], SlotInventory):
    """
    Slot inventory.

    Status changes go through the conditional updates below; nothing else
    writes the status column.
    """

    @property
    def model_class(self) -> Type[Base]:
        return ParkingSlotModel

    def to_domain(self, model: ParkingSlotModel) -> ParkingSlot:
        return Mapper.slot_to_domain(model)

    def to_orm(self, entity: ParkingSlot) -> ParkingSlotModel:
        return Mapper.slot_to_orm(entity)

    def find_by_slot_number(self, slot_number: str) -> Optional[ParkingSlot]:
        try:
            model = self.session.query(ParkingSlotModel).filter(
                ParkingSlotModel.slot_number == slot_number
            ).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding slot {slot_number}: {e}")
            raise

    def find_existing_numbers(self, slot_numbers: Iterable[str]) -> List[str]:
        try:
            rows = self.session.query(ParkingSlotModel.slot_number).filter(
                ParkingSlotModel.slot_number.in_(list(slot_numbers))
            ).all()
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error checking slot numbers: {e}")
            raise

    def find_candidate(
        self,
        categories: Sequence[SlotCategory],
        preference_order: Sequence[Sequence[SlotCategory]]
    ) -> Optional[ParkingSlot]:
        """First AVAILABLE slot by preference tier, then ascending slot number"""
        if not categories:
            return None
        try:
            ranks: Dict[str, int] = {}
            for index, tier in enumerate(preference_order):
                for category in tier:
                    ranks.setdefault(SlotCategory(category).value, index)
            tier_rank = case(ranks, value=ParkingSlotModel.category, else_=len(preference_order))

            model = self.session.query(ParkingSlotModel).filter(
                ParkingSlotModel.status == SlotStatus.AVAILABLE.value,
                ParkingSlotModel.category.in_([SlotCategory(c).value for c in categories])
            ).order_by(tier_rank, ParkingSlotModel.slot_number).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding candidate slot: {e}")
            raise

    def find_available(
        self,
        category: Optional[SlotCategory] = None,
        categories: Optional[Iterable[SlotCategory]] = None
    ) -> List[ParkingSlot]:
        """AVAILABLE slots; restricted to `categories`, they are grouped by category then slot number"""
        try:
            query = self.session.query(ParkingSlotModel).filter(
                ParkingSlotModel.status == SlotStatus.AVAILABLE.value
            )
            ordering = [ParkingSlotModel.slot_number]
            if category is not None:
                query = query.filter(ParkingSlotModel.category == SlotCategory(category).value)
            if categories is not None:
                query = query.filter(ParkingSlotModel.category.in_([SlotCategory(c).value for c in categories]))
                ordering.insert(0, ParkingSlotModel.category)
            return [self.to_domain(m) for m in query.order_by(*ordering).all()]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error listing available slots: {e}")
            raise

    def count_by_status(self) -> Dict[SlotStatus, int]:
        try:
            rows = self.session.query(
                ParkingSlotModel.status, func.count(ParkingSlotModel.id)
            ).group_by(ParkingSlotModel.status).all()
            counts = {status: 0 for status in SlotStatus}
            for status, total in rows:
                counts[SlotStatus(status)] = total
            return counts
        except SQLAlchemyError as e:
            self._logger.error(f"Database error counting slots: {e}")
            raise

    def bulk_add(self, slots: List[ParkingSlot]) -> List[ParkingSlot]:
        try:
            self.session.add_all([self.to_orm(slot) for slot in slots])
            self.session.flush()
            self._logger.debug(f"Added {len(slots)} slots")
            return slots
        except IntegrityError as e:
            self._logger.warning(f"Constraint violation adding slots: {e.orig}")
            raise
        except SQLAlchemyError as e:
            self._logger.error(f"Database error adding slots: {e}")
            raise

    def _transition(self, slot_id: str, expected: SlotStatus, new_status: SlotStatus) -> bool:
        """Conditional status change; True iff exactly one row matched"""
        try:
            result = self.session.query(ParkingSlotModel).filter(
                ParkingSlotModel.id == str(slot_id),
                ParkingSlotModel.status == expected.value
            ).update({
                'status': new_status.value,
                'updated_at': utc_now()
            })
            self.session.flush()
            return result == 1
        except SQLAlchemyError as e:
            self._logger.error(
                f"Database error moving slot {slot_id} {expected.value} -> {new_status.value}: {e}"
            )
            raise

    def try_reserve(self, slot_id: str, expected_status: SlotStatus = SlotStatus.AVAILABLE) -> bool:
        return self._transition(slot_id, expected_status, SlotStatus.OCCUPIED)

    def release(self, slot_id: str) -> bool:
        return self._transition(slot_id, SlotStatus.OCCUPIED, SlotStatus.AVAILABLE)

    def set_maintenance(self, slot_id: str) -> bool:
        return self._transition(slot_id, SlotStatus.AVAILABLE, SlotStatus.MAINTENANCE)

    def release_maintenance(self, slot_id: str) -> bool:
        return self._transition(slot_id, SlotStatus.MAINTENANCE, SlotStatus.AVAILABLE)


class ParkingSessionRepository(SQLAlchemyRepository[ParkingSession]):
    """Repository for ParkingSession entities"""

    @property
    def model_class(self) -> Type[Base]:
        return ParkingSessionModel

    def to_domain(self, model: ParkingSessionModel) -> ParkingSession:
        return Mapper.session_to_domain(model)

    def to_orm(self, entity: ParkingSession) -> ParkingSessionModel:
        return Mapper.session_to_orm(entity)

    def find_active_by_license_plate(self, license_plate: LicensePlate) -> Optional[ParkingSession]:
        try:
            model = self.session.query(ParkingSessionModel).join(
                VehicleModel, ParkingSessionModel.vehicle_id == VehicleModel.id
            ).filter(
                VehicleModel.license_plate == license_plate.value,
                ParkingSessionModel.status == SessionStatus.ACTIVE.value
            ).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding active session for {license_plate}: {e}")
            raise

    def find_active(self) -> List[ParkingSession]:
        try:
            models = self.session.query(ParkingSessionModel).filter(
                ParkingSessionModel.status == SessionStatus.ACTIVE.value
            ).order_by(ParkingSessionModel.entry_time).all()
            return [self.to_domain(m) for m in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error listing active sessions: {e}")
            raise

    def complete(self, session_id: str, exit_time: datetime, billing_amount: Decimal) -> bool:
        """ACTIVE -> COMPLETED; False if the session was already closed"""
        try:
            result = self.session.query(ParkingSessionModel).filter(
                ParkingSessionModel.id == str(session_id),
                ParkingSessionModel.status == SessionStatus.ACTIVE.value
            ).update({
                'status': SessionStatus.COMPLETED.value,
                'exit_time': exit_time,
                'billing_amount': billing_amount,
                'updated_at': utc_now()
            })
            self.session.flush()
            return result == 1
        except SQLAlchemyError as e:
            self._logger.error(f"Database error completing session {session_id}: {e}")
            raise

    def reassign_slot(self, session_id: str, old_slot_id: str, new_slot_id: str) -> bool:
        """Point an ACTIVE session at another slot; entry_time is untouched"""
        try:
            result = self.session.query(ParkingSessionModel).filter(
                ParkingSessionModel.id == str(session_id),
                ParkingSessionModel.slot_id == str(old_slot_id),
                ParkingSessionModel.status == SessionStatus.ACTIVE.value
            ).update({
                'slot_id': str(new_slot_id),
                'updated_at': utc_now()
            })
            self.session.flush()
            return result == 1
        except SQLAlchemyError as e:
            self._logger.error(f"Database error reassigning session {session_id}: {e}")
            raise


# ============================================================================
# SQLALCHEMY UNIT OF WORK
# ============================================================================

_TIMEOUT_MARKERS = (
    "database is locked",
    "lock timeout",
    "lock wait timeout",
    "statement timeout",
    "canceling statement",
)


def is_timeout_error(error: BaseException) -> bool:
    """True for storage errors raised by lock waits or statement timeouts"""
    if not isinstance(error, OperationalError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


class SQLAlchemyUnitOfWork:
    """
    One all-or-nothing transaction.

    Commits on a clean exit, rolls back on any exception. When a timeout is
    set, the transaction must finish inside it: `check_deadline()` and the
    commit path raise TransactionTimeout after rolling back.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        timeout_seconds: Optional[float] = None,
        timer: Callable[[], float] = time.monotonic
    ):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self._timer = timer
        self._deadline: Optional[float] = None
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.session = self.session_factory()
        if self.timeout_seconds:
            self._deadline = self._timer() + self.timeout_seconds
            if self.session.get_bind().dialect.name == 'postgresql':
                millis = int(self.timeout_seconds * 1000)
                self.session.execute(text(f"SET LOCAL statement_timeout = {millis}"))

        self._vehicles = VehicleRepository(self.session)
        self._parking_slots = ParkingSlotRepository(self.session)
        self._parking_sessions = ParkingSessionRepository(self.session)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                if isinstance(exc_val, DomainError):
                    self._logger.debug(f"Rolling back: {exc_val}")
                elif isinstance(exc_val, IntegrityError):
                    self._logger.warning(f"Rolling back on constraint violation: {exc_val.orig}")
                else:
                    self._logger.error(f"Exception in unit of work: {exc_val}")
                self.rollback()
                if is_timeout_error(exc_val):
                    raise TransactionTimeout(self.timeout_seconds or 0) from exc_val
                return False

            self.check_deadline()
            self.commit()
        finally:
            self.session.close()
        return False

    def check_deadline(self):
        """Roll back and raise TransactionTimeout if the budget is spent"""
        if self._deadline is not None and self._timer() > self._deadline:
            self._logger.warning(f"Transaction exceeded {self.timeout_seconds}s budget")
            self.rollback()
            raise TransactionTimeout(self.timeout_seconds)

    def commit(self):
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            if isinstance(e, IntegrityError):
                self._logger.warning(f"Constraint violation on commit: {e.orig}")
            else:
                self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            if is_timeout_error(e):
                raise TransactionTimeout(self.timeout_seconds or 0) from e
            raise

    def rollback(self):
        self.session.rollback()
        self._logger.debug("Transaction rolled back")

    @property
    def vehicles(self) -> VehicleRepository:
        return self._vehicles

    @property
    def parking_slots(self) -> ParkingSlotRepository:
        return self._parking_slots

    @property
    def parking_sessions(self) -> ParkingSessionRepository:
        return self._parking_sessions


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

def _use_immediate_transactions(engine: Engine):
    """
    SQLite: take the write lock at BEGIN so concurrent writers queue on the
    busy timeout instead of failing on lock upgrade.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class RepositoryFactory:
    """Factory for engines and units of work"""

    @staticmethod
    def create_engine(
        database_url: str,
        timeout_seconds: float = 10.0,
        isolation_level: str = "READ COMMITTED",
        echo: bool = False
    ) -> Engine:
        if database_url.startswith('sqlite'):
            kwargs = {
                'connect_args': {'check_same_thread': False, 'timeout': timeout_seconds},
            }
            if database_url in ('sqlite://', 'sqlite:///:memory:'):
                kwargs['poolclass'] = StaticPool
            engine = create_engine(database_url, echo=echo, **kwargs)
            _use_immediate_transactions(engine)
            return engine

        return create_engine(
            database_url,
            echo=echo,
            isolation_level=isolation_level,
            pool_pre_ping=True,
        )

    @staticmethod
    def create_schema(engine: Engine):
        """Create tables if they don't exist"""
        Base.metadata.create_all(bind=engine)

    @staticmethod
    def create_session_factory(engine: Engine) -> sessionmaker:
        return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @staticmethod
    def create_uow_factory(
        engine: Engine,
        timeout_seconds: Optional[float] = None,
        timer: Callable[[], float] = time.monotonic
    ) -> Callable[[], SQLAlchemyUnitOfWork]:
        """Callable producing a fresh unit of work per transaction"""
        session_factory = RepositoryFactory.create_session_factory(engine)

        def uow_factory() -> SQLAlchemyUnitOfWork:
            return SQLAlchemyUnitOfWork(session_factory, timeout_seconds=timeout_seconds, timer=timer)

        return uow_factory
