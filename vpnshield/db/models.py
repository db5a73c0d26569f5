"""ORM models for the detection store."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, UniqueConstraint, false, func

from .base import Base


class SchemaState(Base):
    """Key/value metadata used to track schema versions."""

    __tablename__ = "schema_state"

    key = Column(String(128), primary_key=True)
    value = Column(String(256), nullable=False)


class DetectionRecordModel(Base):
    """Latest lookup result logged for an (address, subject) pair.

    A repeat detection for the same pair replaces the row rather than appending.
    ``subject_id`` is NULL for checks not tied to an authenticated subject.
    """

    __tablename__ = "detections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(45), nullable=False)
    subject_id = Column(String(64), nullable=True)
    subject_name = Column(String(64), nullable=True)
    is_vpn = Column(Boolean, nullable=False, server_default=false())
    is_proxy = Column(Boolean, nullable=False, server_default=false())
    is_hosting = Column(Boolean, nullable=False, server_default=false())
    is_tor = Column(Boolean, nullable=False, server_default=false())
    provider = Column(String(255), nullable=True, doc="VPN/hosting service reported for the address")
    isp = Column(String(255), nullable=True)
    org = Column(String(255), nullable=True)
    asn = Column(String(50), nullable=True)
    country = Column(String(100), nullable=True)
    country_code = Column(String(10), nullable=True)
    city = Column(String(100), nullable=True)
    real_address = Column(String(45), nullable=True)
    risk_score = Column(Float, nullable=False, server_default="0")
    api_provider = Column(String(64), nullable=True, doc="Lookup service that produced the result")
    action = Column(String(20), nullable=True)
    detected_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("address", "subject_id", name="uq_detections_address_subject"),
        Index("ix_detections_address", "address"),
        Index("ix_detections_subject", "subject_id"),
        Index("ix_detections_detected_at", "detected_at"),
    )


class AddressHistoryModel(Base):
    """Per-subject address history with visit counts."""

    __tablename__ = "address_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(64), nullable=False)
    subject_name = Column(String(64), nullable=True)
    address = Column(String(45), nullable=False)
    is_vpn = Column(Boolean, nullable=False, server_default=false(), doc="Classification as last observed")
    first_seen = Column(DateTime(timezone=True), nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=False)
    visit_count = Column(Integer, nullable=False, server_default="1")

    __table_args__ = (
        UniqueConstraint("subject_id", "address", name="uq_address_history_subject_address"),
        Index("ix_address_history_subject", "subject_id"),
        Index("ix_address_history_address", "address"),
    )


class ProviderStatModel(Base):
    """Cumulative detections per VPN/hosting service name."""

    __tablename__ = "provider_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_name = Column(String(255), nullable=False, unique=True)
    detection_count = Column(Integer, nullable=False, server_default="1")
    first_detected = Column(DateTime(timezone=True), nullable=False)
    last_detected = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_provider_stats_count", "detection_count"),)


__all__ = ["AddressHistoryModel", "DetectionRecordModel", "ProviderStatModel", "SchemaState"]
