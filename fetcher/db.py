"""
Database models and write path for the transit fetcher.

Requires DATABASE_URL (PostgreSQL in production). Tests run the same code
against SQLite; both dialects support INSERT ... ON CONFLICT, which every
upsert here relies on.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import (
    Column, Date, DateTime, Float, Integer, String, Time, UniqueConstraint, and_,
    create_engine, func, select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

from errors import StoreError

logger = logging.getLogger(__name__)

Base = declarative_base()


class LineRow(Base):
    """A tram or bus line of the monitored network."""
    __tablename__ = 'lines'

    line_id = Column(String(100), primary_key=True)
    line_name = Column(String(100))
    product = Column(String(30))
    line_number = Column(String(10), nullable=True)   # "4", "34E"


class StopRow(Base):
    __tablename__ = 'stops'

    stop_id = Column(String(50), primary_key=True)
    stop_name = Column(String(200), nullable=True)
    lat = Column(Float)
    lon = Column(Float)


class TripRow(Base):
    __tablename__ = 'trips'

    trip_id = Column(String(200), primary_key=True)
    line_id = Column(String(100), index=True)
    direction = Column(String(200), nullable=True)
    service_date = Column(Date)                       # UTC calendar date
    departure_time = Column(Time, nullable=True)      # first planned departure, provider local time


class VehiclePositionRow(Base):
    """Point-in-time position of the vehicle serving a trip. Append-only."""
    __tablename__ = 'vehicle_positions'
    __table_args__ = (UniqueConstraint('trip_id', 'timestamp', name='uq_vehicle_positions_trip_ts'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String(200), index=True)
    timestamp = Column(DateTime(timezone=True), index=True)   # ingestion time, not provider time
    lat = Column(Float)
    lon = Column(Float)
    delay_seconds = Column(Integer, default=0)


class StopEventRow(Base):
    """
    Arrival or departure of a trip at a stop.

    Unique by (trip_id, stop_id, event_type). ``timestamp`` is the best known
    event time (actual, else planned, else observation time); ``recorded_at``
    is the wall-clock time of the last accepted write, which decides whether
    the row is finalized.
    """
    __tablename__ = 'stop_events'
    __table_args__ = (
        UniqueConstraint('trip_id', 'stop_id', 'event_type', name='uq_stop_events_key'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String(200), index=True)
    stop_id = Column(String(50), index=True)
    event_type = Column(String(10))                   # 'arrival' / 'departure'
    stop_sequence = Column(Integer, nullable=True)
    timestamp = Column(DateTime(timezone=True))
    planned_time = Column(DateTime(timezone=True), nullable=True)
    actual_time = Column(DateTime(timezone=True), nullable=True)
    arrival_delay_seconds = Column(Integer, nullable=True)
    departure_delay_seconds = Column(Integer, nullable=True)
    recorded_at = Column(DateTime(timezone=True))


TABLES = {
    'lines': LineRow,
    'stops': StopRow,
    'trips': TripRow,
    'vehicle_positions': VehiclePositionRow,
    'stop_events': StopEventRow,
}


@dataclass
class StopEventRecord:
    """A stop event as exchanged with the temporal upsert engine."""
    trip_id: str
    stop_id: str
    event_type: str
    stop_sequence: Optional[int]
    timestamp: datetime
    planned_time: Optional[datetime]
    actual_time: Optional[datetime]
    arrival_delay_seconds: Optional[int]
    departure_delay_seconds: Optional[int]
    recorded_at: Optional[datetime] = None


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC. SQLite hands back naive datetimes, which are stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_db_engine(database_url: str, pool_size: int = 10):
    """Create a pooled engine and make sure all tables exist."""
    # Some hosts still hand out the pre-1.4 "postgres://" scheme
    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)
    kwargs = {'pool_pre_ping': True}
    if not database_url.startswith('sqlite'):
        # Bounded fetch + ingest pools must not serialize behind one connection
        kwargs['pool_size'] = pool_size
        kwargs['max_overflow'] = pool_size
    engine = create_engine(database_url, **kwargs)
    Base.metadata.create_all(engine)
    logger.info("Database connected and tables created")
    return engine


class Store:
    """
    Write path to the persistent store.

    Each method runs in its own short session. Failures roll back and
    surface as StoreError; callers decide whether to drop the update.
    """

    def __init__(self, engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine)

    def _insert(self, model):
        if self.engine.dialect.name == 'postgresql':
            return postgresql.insert(model)
        if self.engine.dialect.name == 'sqlite':
            return sqlite.insert(model)
        raise StoreError(f"Unsupported database dialect: {self.engine.dialect.name}")

    def _execute(self, what: str, statement) -> int:
        session = self._session_factory()
        try:
            result = session.execute(statement)
            session.commit()
            return result.rowcount
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"{what} failed: {e}") from e
        finally:
            session.close()

    def ping(self) -> None:
        """Round-trip to the database; raises StoreError if it is unreachable."""
        self._execute('ping', select(1))

    def upsert_line(self, line_id: str, name: str, product: str, line_number: Optional[str]) -> bool:
        """Insert a line; an existing line is left untouched. Returns True if inserted."""
        stmt = self._insert(LineRow).values(
            line_id=line_id, line_name=name, product=product, line_number=line_number,
        ).on_conflict_do_nothing(index_elements=['line_id'])
        return self._execute(f"upsert line {line_id}", stmt) > 0

    def upsert_stop(self, stop_id: str, name: Optional[str], lat: float, lon: float) -> bool:
        """
        Insert a stop. An existing stop keeps its coordinates and name, except
        that a missing name is filled in. Returns True if a row was written.
        """
        stmt = self._insert(StopRow).values(
            stop_id=stop_id, stop_name=name, lat=lat, lon=lon,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['stop_id'],
            set_={'stop_name': stmt.excluded.stop_name},
            where=and_(StopRow.stop_name.is_(None), stmt.excluded.stop_name.is_not(None)),
        )
        return self._execute(f"upsert stop {stop_id}", stmt) > 0

    def upsert_trip(self, trip_id: str, line_id: Optional[str], direction: Optional[str],
                    service_date: date, departure_time: Optional[time]) -> None:
        """Insert a trip or replace the stored one with the same trip id."""
        stmt = self._insert(TripRow).values(
            trip_id=trip_id, line_id=line_id, direction=direction,
            service_date=service_date, departure_time=departure_time,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['trip_id'],
            set_={
                'line_id': stmt.excluded.line_id,
                'direction': stmt.excluded.direction,
                'service_date': stmt.excluded.service_date,
                'departure_time': stmt.excluded.departure_time,
            },
        )
        self._execute(f"upsert trip {trip_id}", stmt)

    def insert_vehicle_position(self, trip_id: str, timestamp: datetime, lat: float, lon: float,
                                delay_seconds: int) -> bool:
        """Append a position; an exact (trip_id, timestamp) duplicate is ignored."""
        stmt = self._insert(VehiclePositionRow).values(
            trip_id=trip_id, timestamp=to_utc(timestamp), lat=lat, lon=lon,
            delay_seconds=delay_seconds,
        ).on_conflict_do_nothing(index_elements=['trip_id', 'timestamp'])
        return self._execute(f"insert vehicle position {trip_id}", stmt) > 0

    def get_stop_event(self, trip_id: str, stop_id: str, event_type: str) -> Optional[StopEventRecord]:
        session = self._session_factory()
        try:
            row = session.execute(
                select(StopEventRow).where(
                    StopEventRow.trip_id == trip_id,
                    StopEventRow.stop_id == stop_id,
                    StopEventRow.event_type == event_type,
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"read stop event {trip_id}/{stop_id}/{event_type} failed: {e}") from e
        finally:
            session.close()

        if row is None:
            return None
        return StopEventRecord(
            trip_id=row.trip_id,
            stop_id=row.stop_id,
            event_type=row.event_type,
            stop_sequence=row.stop_sequence,
            timestamp=to_utc(row.timestamp),
            planned_time=to_utc(row.planned_time),
            actual_time=to_utc(row.actual_time),
            arrival_delay_seconds=row.arrival_delay_seconds,
            departure_delay_seconds=row.departure_delay_seconds,
            recorded_at=to_utc(row.recorded_at),
        )

    def write_stop_event(self, event: StopEventRecord) -> None:
        """Insert the event, or overwrite every mutable field of the stored one."""
        stmt = self._insert(StopEventRow).values(
            trip_id=event.trip_id,
            stop_id=event.stop_id,
            event_type=event.event_type,
            stop_sequence=event.stop_sequence,
            timestamp=to_utc(event.timestamp),
            planned_time=to_utc(event.planned_time),
            actual_time=to_utc(event.actual_time),
            arrival_delay_seconds=event.arrival_delay_seconds,
            departure_delay_seconds=event.departure_delay_seconds,
            recorded_at=to_utc(event.recorded_at),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['trip_id', 'stop_id', 'event_type'],
            set_={
                'stop_sequence': stmt.excluded.stop_sequence,
                'timestamp': stmt.excluded.timestamp,
                'planned_time': stmt.excluded.planned_time,
                'actual_time': stmt.excluded.actual_time,
                'arrival_delay_seconds': stmt.excluded.arrival_delay_seconds,
                'departure_delay_seconds': stmt.excluded.departure_delay_seconds,
                'recorded_at': stmt.excluded.recorded_at,
            },
        )
        self._execute(f"write stop event {event.trip_id}/{event.stop_id}/{event.event_type}", stmt)

    def count_rows(self, table: str) -> int:
        model = TABLES[table]
        session = self._session_factory()
        try:
            return session.execute(select(func.count()).select_from(model)).scalar_one()
        except SQLAlchemyError as e:
            raise StoreError(f"count {table} failed: {e}") from e
        finally:
            session.close()
