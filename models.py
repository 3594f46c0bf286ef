from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid_utils
import uuid


def generate_uuid7():
    """Generate UUIDv7 and convert to standard Python UUID"""
    uuid7_obj = uuid_utils.uuid7()
    return uuid.UUID(str(uuid7_obj))


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

Base = declarative_base()


class Vehicle(Base):
    __tablename__ = 'vehicles'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=generate_uuid7)
    organization = Column(String(100), nullable=False, index=True)
    assigned_user = Column(String(100), index=True)
    site_slug = Column(String(100), index=True)
    source_url = Column(String(2000), nullable=False)
    vin = Column(String(17))
    year = Column(String(4), index=True)
    make = Column(String(100), index=True)
    model = Column(String(200))
    trim = Column(String(200))
    body_style = Column(String(100))
    mileage = Column(Integer)
    transmission = Column(String(100))
    exterior_color = Column(String(100))
    interior_color = Column(String(100))
    doors = Column(String(20))
    passengers = Column(String(20))
    fuel_type = Column(String(100))
    stock_number = Column(String(100))
    engine = Column(String(200))
    drivetrain = Column(String(100))
    price = Column(Float)
    description = Column(Text)
    features = Column(JSONType)
    images = Column(JSONType)
    scrape_warnings = Column(JSONType)
    scraped_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # One row per VIN and per listing URL within an organization
    __table_args__ = (
        UniqueConstraint('organization', 'vin', name='uq_vehicles_org_vin'),
        UniqueConstraint('organization', 'source_url', name='uq_vehicles_org_source_url'),
    )

    def __repr__(self):
        return (
            f"<Vehicle(id={self.id}, org='{self.organization}', vin='{self.vin}', "
            f"url='{self.source_url}')>"
        )


class ScrapeJobEntry(Base):
    __tablename__ = 'scrape_jobs'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=generate_uuid7)
    source_url = Column(String(2000), nullable=False)
    organization = Column(String(100), nullable=False, index=True)
    assigned_user = Column(String(100), index=True)
    status = Column(String(20), nullable=False, default='queued')
    scheduled_time = Column(DateTime)
    attempts = Column(Integer, nullable=False, default=0)
    scraped = Column(Boolean, nullable=False, default=False)
    vehicle_id = Column(Uuid(as_uuid=True))
    outcome = Column(String(20))
    error = Column(Text)
    error_type = Column(String(100))
    needs_human = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # The sweep and the due-job poll both scan by status and time
    __table_args__ = (
        Index('ix_scrape_jobs_status_scheduled_time', 'status', 'scheduled_time'),
    )

    def __repr__(self):
        return f"<ScrapeJobEntry(id={self.id}, status='{self.status}', url='{self.source_url}')>"
