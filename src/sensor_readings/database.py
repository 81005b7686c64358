from datetime import datetime
from typing import Optional

import pytz
from sqlalchemy import BigInteger, Column, DateTime, Float, Index, Integer, String, create_engine, text
from sqlalchemy.types import TypeDecorator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DATABASE_URL
from .errors import PersistenceError
from .logging_config import log_database_operation, log_performance
from .models import NewReading, StoredReading

# Stored creation times are UTC
STORE_TZ = pytz.utc

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """DateTime that always reads back as UTC, also on backends that drop the offset"""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(STORE_TZ)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return STORE_TZ.localize(value)
        return value.astimezone(STORE_TZ)


class SensorReadingRecord(Base):
    """One temperature sample; rows are append-only"""
    __tablename__ = "sensor_readings"
    __table_args__ = (
        Index("ix_sensor_readings_device_timestamp", "device_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(255), nullable=False, index=True)
    temperature = Column(Float, nullable=False)
    # epoch milliseconds
    timestamp = Column(BigInteger, nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=lambda: datetime.now(STORE_TZ))


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # a single shared connection, otherwise each thread sees its own empty database
        options["poolclass"] = StaticPool
    return options


class ReadingStore:
    """Append-only store of sensor readings backed by SQLAlchemy"""

    def __init__(self, url: str = DATABASE_URL):
        self.url = url
        self.engine = create_engine(url, **_engine_options(url))
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)

    def init_db(self):
        """Create tables and indexes"""
        Base.metadata.create_all(bind=self.engine)
        log_database_operation("init_db")

    def ping(self) -> bool:
        """Check that the database answers"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            log_database_operation("ping", success=False, error=str(e))
            return False

    @log_performance
    def insert(self, reading: NewReading) -> StoredReading:
        """Append a new reading and return it as stored"""
        db = self.SessionLocal()
        try:
            record = SensorReadingRecord(
                device_id=reading.device_id,
                temperature=reading.temperature,
                timestamp=reading.timestamp,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return StoredReading.model_validate(record)
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("insert", str(e)) from e
        finally:
            db.close()

    @log_performance
    def find_latest(self, device_id: str) -> Optional[StoredReading]:
        """Get the reading with the greatest timestamp for a device"""
        db = self.SessionLocal()
        try:
            record = db.query(SensorReadingRecord).filter(
                SensorReadingRecord.device_id == device_id
            ).order_by(
                SensorReadingRecord.timestamp.desc(),
                SensorReadingRecord.id.desc(),
            ).first()
            if record is None:
                return None
            return StoredReading.model_validate(record)
        except SQLAlchemyError as e:
            raise PersistenceError("find_latest", str(e)) from e
        finally:
            db.close()

    def dispose(self):
        self.engine.dispose()
