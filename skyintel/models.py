"""
SQLAlchemy database models.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger, Boolean, DateTime, Float, Index, Integer, String, Text, JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from skyintel.core.database import Base
from skyintel.core.utils import utcnow


class AircraftStateRecord(Base):
    """Individual aircraft position reports, in SI units."""
    __tablename__ = "aircraft_states"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    aircraft_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    icao_hex: Mapped[str] = mapped_column(String(10), index=True, nullable=False)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    altitude: Mapped[Optional[float]] = mapped_column(Float)
    heading: Mapped[Optional[float]] = mapped_column(Float)
    ground_speed: Mapped[Optional[float]] = mapped_column(Float)
    turn_rate: Mapped[Optional[float]] = mapped_column(Float)
    vertical_rate: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("aircraft_id", "observed_at", name="uq_aircraft_states_observation"),
    )


class TrajectoryPredictionRecord(Base):
    """One predicted position per (aircraft, generation, horizon)."""
    __tablename__ = "trajectory_predictions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    aircraft_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    icao_hex: Mapped[str] = mapped_column(String(10), index=True, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    horizon_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    target_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    predicted_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    predicted_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    predicted_altitude: Mapped[Optional[float]] = mapped_column(Float)
    predicted_heading: Mapped[Optional[float]] = mapped_column(Float)
    uncertainty_radius_meters: Mapped[Optional[float]] = mapped_column(Float)
    confidence: Mapped[Optional[float]] = mapped_column(Float)
    actual_latitude: Mapped[Optional[float]] = mapped_column(Float)
    actual_longitude: Mapped[Optional[float]] = mapped_column(Float)
    actual_altitude: Mapped[Optional[float]] = mapped_column(Float)
    error_distance_meters: Mapped[Optional[float]] = mapped_column(Float)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    reconciliation_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)

    __table_args__ = (
        Index("idx_predictions_aircraft_generated", "aircraft_id", "generated_at"),
        Index("idx_predictions_pending", "reconciliation_status", "target_time"),
    )


class ProximityEventRecord(Base):
    """Detected close encounters, append-only."""
    __tablename__ = "proximity_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    aircraft_a_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    aircraft_b_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    icao_hex_a: Mapped[Optional[str]] = mapped_column(String(10))
    icao_hex_b: Mapped[Optional[str]] = mapped_column(String(10))
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    horizontal_separation_meters: Mapped[float] = mapped_column(Float, nullable=False)
    vertical_separation_meters: Mapped[float] = mapped_column(Float, nullable=False)
    closure_rate_mps: Mapped[float] = mapped_column(Float, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(10), index=True, nullable=False)
    closest_approach_meters: Mapped[Optional[float]] = mapped_column(Float)
    time_to_closest_seconds: Mapped[Optional[float]] = mapped_column(Float)
    context_snapshot: Mapped[Optional[dict]] = mapped_column(JSON)

    __table_args__ = (
        Index("idx_proximity_events_risk_time", "risk_level", "detected_at"),
    )


class Infrastructure(Base):
    """Ground infrastructure used to annotate positions."""
    __tablename__ = "infrastructure"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    infrastructure_type: Mapped[str] = mapped_column(String(30), index=True, nullable=False)
    sub_type: Mapped[Optional[str]] = mapped_column(String(50))
    latitude: Mapped[float] = mapped_column(Float, index=True, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, index=True, nullable=False)
    icao_code: Mapped[Optional[str]] = mapped_column(String(4))
    country_code: Mapped[Optional[str]] = mapped_column(String(2))
    region: Mapped[Optional[str]] = mapped_column(String(100))
    strategic_importance: Mapped[str] = mapped_column(String(10), default="medium")
    military_presence: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class StrikeEvent(Base):
    """Strike reports extracted upstream from message channels."""
    __tablename__ = "strike_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, index=True, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, index=True, nullable=False)
    location_name: Mapped[Optional[str]] = mapped_column(String(255))
    region: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    source_channel: Mapped[Optional[str]] = mapped_column(String(100))
    confidence: Mapped[float] = mapped_column(Float, default=0.5)
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
