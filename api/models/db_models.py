"""
SQLAlchemy ORM models for the hourly air-quality sync.
Tables: sites, sensors, measurements, job_checkpoints
"""

import uuid

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime,
    ForeignKey, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func


Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Site(Base):
    __tablename__ = "sites"

    id = Column(String(36), primary_key=True, default=_new_id)
    # Upstream location id. Expected int or str; stored as JSON so that
    # malformed legacy values survive and can be reported.
    external_id = Column(JSON, nullable=True)
    name = Column(String(200), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    city = Column(String(200), nullable=True)
    country = Column(String(10), nullable=True)
    upstream_snapshot = Column(JSON, nullable=True)
    last_data_update = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    sensors = relationship(
        "Sensor",
        back_populates="site",
        order_by="Sensor.position",
    )
    measurements = relationship("Measurement", back_populates="site")

    __table_args__ = (
        Index("ix_sites_lat_lng", "latitude", "longitude"),
        Index("ix_sites_name", "name"),
    )

    def __repr__(self) -> str:
        return f"<Site {self.name!r} external_id={self.external_id!r}>"


class Sensor(Base):
    __tablename__ = "sensors"

    id = Column(String(36), primary_key=True, default=_new_id)
    site_id = Column(String(36), ForeignKey("sites.id"), nullable=False)
    external_sensor_id = Column(String(50), nullable=True)
    name = Column(String(200), nullable=True)
    parameter_id = Column(Integer, nullable=True)
    parameter_name = Column(String(50), nullable=False)
    parameter_units = Column(String(30), nullable=True)
    position = Column(Integer, nullable=False, default=0)  # order within the site
    parameter_display_name = Column(String(100), nullable=True)
    value = Column(Float, nullable=True)
    last_updated = Column(DateTime(timezone=True), nullable=True)
    is_simulated = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    site = relationship("Site", back_populates="sensors")

    __table_args__ = (
        Index("ix_sensors_site_id", "site_id"),
        Index("ix_sensors_external_sensor_id", "external_sensor_id"),
    )


class Measurement(Base):
    __tablename__ = "measurements"

    id = Column(String(36), primary_key=True, default=_new_id)
    site_id = Column(String(36), ForeignKey("sites.id"), nullable=False)
    parameter_id = Column(Integer, nullable=True)
    parameter_name = Column(String(50), nullable=False)
    parameter_units = Column(String(30), nullable=True)
    parameter_display_name = Column(String(100), nullable=True)
    value = Column(Float, nullable=False)
    is_simulated = Column(Boolean, default=False, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)  # aligned hour
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    site = relationship("Site", back_populates="measurements")

    __table_args__ = (
        # Lookup index for the (site, parameter, hour) idempotency key.
        # Not UNIQUE: the writer checks before inserting.
        Index("ix_measurements_site_param_ts", "site_id", "parameter_name", "timestamp"),
        Index("ix_measurements_timestamp", "timestamp"),
    )


class JobCheckpoint(Base):
    __tablename__ = "job_checkpoints"

    job_id = Column(String(100), primary_key=True)
    last_run_time = Column(DateTime(timezone=True), nullable=True)
    last_offset = Column(Integer, nullable=False, default=0)
    next_offset = Column(Integer, nullable=False, default=0)
    total_sites = Column(Integer, nullable=False, default=0)
    batches_completed = Column(Integer, nullable=False, default=0)
    total_batches = Column(Integer, nullable=False, default=0)
    is_fully_complete = Column(Boolean, nullable=False, default=False)
    stats = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
