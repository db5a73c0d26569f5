"""Durable log of detections and per-subject address history.

The store keeps three tables (see :mod:`vpnshield.db.models`):

- ``detections``: latest result per (address, subject), replaced on repeat
- ``address_history``: one row per (subject, address) with a visit counter
- ``provider_stats``: cumulative detections per VPN/hosting service name

SQLite allows a single writer, so every mutating call takes one process-wide
lock for the duration of its transaction. Reads do not take the lock.

Errors from the database never propagate: they are logged and the call returns
a safe default (``False``, ``None``, an empty list or zeroed stats).
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional, cast

from sqlalchemy import Table, distinct, false, func, or_, select, true
from sqlalchemy.dialects import postgresql as postgres_dialect
from sqlalchemy.dialects import sqlite as sqlite_dialect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vpnshield.db import (
    AddressHistoryModel,
    DetectionRecordModel,
    ProviderStatModel,
    apply_migrations,
    create_engine_with_fallback,
    create_session_maker,
)
from vpnshield.settings import DatabaseSettings
from vpnshield.telemetry import start_span

from .models import AddressHistoryEntry, DetectionRecord, DetectionResult, DetectionStats, ProviderStat, VPNAction

logger = logging.getLogger(__name__)

TOP_PROVIDER_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dangerous_clause() -> Any:
    return or_(
        DetectionRecordModel.is_vpn == true(),
        DetectionRecordModel.is_proxy == true(),
        DetectionRecordModel.is_hosting == true(),
        DetectionRecordModel.is_tor == true(),
    )


class DetectionStore:
    """Persistence for detections, address history and provider statistics.

    Example:
        >>> store = DetectionStore.from_settings(DatabaseSettings(url="sqlite:///vpn.sqlite"))
        >>> store.track_address("069a79f4", "203.0.113.7", is_vpn=False, subject_name="Notch")
        True
        >>> store.get_likely_real_address("069a79f4")
        '203.0.113.7'
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = _utcnow) -> None:
        """Initialize the store on an engine whose schema is already in place.

        Args:
            engine: SQLAlchemy engine
            clock: Source of timezone-aware UTC timestamps
        """
        self.engine = engine
        self.dialect_name = engine.dialect.name
        self._session_factory = create_session_maker(engine)
        self._write_lock = threading.Lock()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: DatabaseSettings, clock: Callable[[], datetime] = _utcnow) -> "DetectionStore":
        """Create the engine, apply migrations and return a ready store."""
        engine = create_engine_with_fallback(settings)
        version = apply_migrations(engine)
        logger.info(f"VPN detection store ready ({engine.dialect.name}, schema v{version})")
        return cls(engine, clock=clock)

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        try:
            self.engine.dispose()
        except SQLAlchemyError as e:
            logger.warning(f"Error while closing detection store: {e}")

    # ------------------------------------------------------------------ writes

    def log_detection(
        self,
        result: DetectionResult,
        subject_id: Optional[str] = None,
        subject_name: Optional[str] = None,
        action: VPNAction | str | None = None,
    ) -> bool:
        """Upsert the detection row for (address, subject) and update service stats.

        Service statistics are only touched when the result is dangerous and names
        a service (operator, organisation or ISP). The row itself keeps only the
        reported operator.

        Returns:
            True if the write committed, False on database error
        """
        action_value = action.value if isinstance(action, VPNAction) else action
        now = self._clock()
        values = {
            "address": result.address,
            "subject_id": subject_id,
            "subject_name": subject_name,
            "is_vpn": result.is_vpn,
            "is_proxy": result.is_proxy,
            "is_hosting": result.is_hosting,
            "is_tor": result.is_tor,
            "provider": result.service_name,
            "isp": result.isp,
            "org": result.org,
            "asn": result.asn,
            "country": result.country,
            "country_code": result.country_code,
            "city": result.city,
            "real_address": result.real_address,
            "risk_score": result.risk_score,
            "api_provider": result.source,
            "action": action_value,
            "detected_at": now,
        }
        service = result.service_label if result.dangerous else None

        try:
            with start_span("vpnshield.store.log_detection", {"address": result.address}):
                with self._write_lock, self._session_factory.begin() as session:
                    # subject_id may be NULL, which a unique constraint cannot deduplicate
                    existing = session.execute(
                        select(DetectionRecordModel).where(
                            DetectionRecordModel.address == result.address,
                            DetectionRecordModel.subject_id.is_(None)
                            if subject_id is None
                            else DetectionRecordModel.subject_id == subject_id,
                        )
                    ).scalar_one_or_none()
                    if existing is None:
                        session.add(DetectionRecordModel(**values))
                    else:
                        for key, value in values.items():
                            setattr(existing, key, value)

                    if service:
                        self._upsert_provider_stat(session, service, now)
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to log VPN detection for {result.address}: {e}", exc_info=True)
            return False

    def _upsert_provider_stat(self, session: Session, provider_name: str, now: datetime) -> None:
        table = cast(Table, ProviderStatModel.__table__)
        values = {
            "provider_name": provider_name,
            "detection_count": 1,
            "first_detected": now,
            "last_detected": now,
        }

        if self.dialect_name in {"sqlite", "postgresql"}:
            dialect = sqlite_dialect if self.dialect_name == "sqlite" else postgres_dialect
            stmt = dialect.insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["provider_name"],
                set_={
                    "detection_count": table.c.detection_count + 1,
                    "last_detected": stmt.excluded.last_detected,
                },
            )
            session.execute(stmt)
            return

        existing = session.execute(
            select(ProviderStatModel).where(ProviderStatModel.provider_name == provider_name)
        ).scalar_one_or_none()
        if existing is None:
            session.add(ProviderStatModel(**values))
        else:
            existing.detection_count = existing.detection_count + 1
            existing.last_detected = now

    def track_address(
        self,
        subject_id: str,
        address: str,
        is_vpn: bool,
        subject_name: Optional[str] = None,
    ) -> bool:
        """Record one observation of ``address`` for ``subject_id``.

        The first observation inserts a row with ``visit_count = 1``. Each repeat
        increments ``visit_count``, advances ``last_seen`` and refreshes the stored
        ``is_vpn`` flag and subject name.

        Returns:
            True if the write committed, False on database error
        """
        now = self._clock()
        table = cast(Table, AddressHistoryModel.__table__)
        values = {
            "subject_id": subject_id,
            "subject_name": subject_name,
            "address": address,
            "is_vpn": is_vpn,
            "first_seen": now,
            "last_seen": now,
            "visit_count": 1,
        }

        try:
            with self._write_lock, self._session_factory.begin() as session:
                if self.dialect_name in {"sqlite", "postgresql"}:
                    dialect = sqlite_dialect if self.dialect_name == "sqlite" else postgres_dialect
                    stmt = dialect.insert(table).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["subject_id", "address"],
                        set_={
                            "subject_name": func.coalesce(stmt.excluded.subject_name, table.c.subject_name),
                            "is_vpn": stmt.excluded.is_vpn,
                            "last_seen": stmt.excluded.last_seen,
                            "visit_count": table.c.visit_count + 1,
                        },
                    )
                    session.execute(stmt)
                else:
                    existing = session.execute(
                        select(AddressHistoryModel).where(
                            AddressHistoryModel.subject_id == subject_id,
                            AddressHistoryModel.address == address,
                        )
                    ).scalar_one_or_none()
                    if existing is None:
                        session.add(AddressHistoryModel(**values))
                    else:
                        existing.visit_count = existing.visit_count + 1
                        existing.last_seen = now
                        existing.is_vpn = is_vpn
                        if subject_name:
                            existing.subject_name = subject_name
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to track address {address} for {subject_id}: {e}", exc_info=True)
            return False

    # ------------------------------------------------------------------- reads

    def get_likely_real_address(self, subject_id: str) -> Optional[str]:
        """Most visited non-VPN address of a subject, most recent first on ties.

        This is a heuristic over observed history, not proof of identity.
        """
        stmt = (
            select(AddressHistoryModel.address)
            .where(AddressHistoryModel.subject_id == subject_id, AddressHistoryModel.is_vpn == false())
            .order_by(
                AddressHistoryModel.visit_count.desc(),
                AddressHistoryModel.last_seen.desc(),
                AddressHistoryModel.id.desc(),
            )
            .limit(1)
        )
        try:
            with Session(self.engine) as session:
                return session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Failed to get likely real address for {subject_id}: {e}", exc_info=True)
            return None

    def get_subject_addresses(self, subject_id: str) -> list[AddressHistoryEntry]:
        """Every address seen for a subject, most recently seen first."""
        stmt = (
            select(AddressHistoryModel)
            .where(AddressHistoryModel.subject_id == subject_id)
            .order_by(AddressHistoryModel.last_seen.desc(), AddressHistoryModel.id.desc())
        )
        try:
            with Session(self.engine) as session:
                rows = session.execute(stmt).scalars().all()
                return [
                    AddressHistoryEntry(
                        subject_id=row.subject_id,
                        address=row.address,
                        is_vpn=bool(row.is_vpn),
                        first_seen=_as_utc(row.first_seen),
                        last_seen=_as_utc(row.last_seen),
                        visit_count=int(row.visit_count),
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to get addresses for {subject_id}: {e}", exc_info=True)
            return []

    def is_known_dangerous(self, address: str) -> bool:
        """True if any logged detection for ``address`` carries a dangerous flag."""
        stmt = select(DetectionRecordModel.id).where(DetectionRecordModel.address == address, _dangerous_clause())
        try:
            with Session(self.engine) as session:
                return session.execute(stmt.limit(1)).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Failed to check known dangerous address {address}: {e}", exc_info=True)
            return False

    def get_stats(self) -> DetectionStats:
        """Aggregate figures over the detection log and service statistics."""
        now = self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        stats = DetectionStats()
        try:
            with Session(self.engine) as session:
                stats.total_detections = int(
                    session.execute(select(func.count(DetectionRecordModel.id)).where(_dangerous_clause())).scalar()
                    or 0
                )
                stats.unique_dangerous_addresses = int(
                    session.execute(
                        select(func.count(distinct(DetectionRecordModel.address))).where(_dangerous_clause())
                    ).scalar()
                    or 0
                )
                stats.total_kicks = int(
                    session.execute(
                        select(func.count(DetectionRecordModel.id)).where(
                            DetectionRecordModel.action == VPNAction.KICK.value
                        )
                    ).scalar()
                    or 0
                )
                stats.total_warnings = int(
                    session.execute(
                        select(func.count(DetectionRecordModel.id)).where(
                            DetectionRecordModel.action == VPNAction.WARN.value
                        )
                    ).scalar()
                    or 0
                )
                stats.detections_today = int(
                    session.execute(
                        select(func.count(DetectionRecordModel.id)).where(
                            DetectionRecordModel.detected_at >= start_of_day, _dangerous_clause()
                        )
                    ).scalar()
                    or 0
                )
                top = session.execute(
                    select(ProviderStatModel)
                    .order_by(ProviderStatModel.detection_count.desc(), ProviderStatModel.last_detected.desc())
                    .limit(TOP_PROVIDER_LIMIT)
                ).scalars()
                stats.top_providers = [
                    ProviderStat(
                        provider_name=row.provider_name,
                        detection_count=int(row.detection_count),
                        first_detected=_as_utc(row.first_detected),
                        last_detected=_as_utc(row.last_detected),
                    )
                    for row in top
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to get VPN stats: {e}", exc_info=True)
            return DetectionStats()
        return stats

    def get_recent_detections(self, limit: int = 10) -> list[DetectionRecord]:
        """Most recent dangerous detections, newest first."""
        if limit <= 0:
            return []
        stmt = (
            select(DetectionRecordModel)
            .where(_dangerous_clause())
            .order_by(DetectionRecordModel.detected_at.desc(), DetectionRecordModel.id.desc())
            .limit(limit)
        )
        try:
            with Session(self.engine) as session:
                return [
                    DetectionRecord(
                        address=row.address,
                        subject_id=row.subject_id,
                        subject_name=row.subject_name,
                        is_vpn=bool(row.is_vpn),
                        is_proxy=bool(row.is_proxy),
                        is_hosting=bool(row.is_hosting),
                        is_tor=bool(row.is_tor),
                        service_name=row.provider,
                        isp=row.isp,
                        org=row.org,
                        asn=row.asn,
                        country=row.country,
                        country_code=row.country_code,
                        city=row.city,
                        real_address=row.real_address,
                        risk_score=float(row.risk_score),
                        api_provider=row.api_provider,
                        action=row.action,
                        detected_at=_as_utc(row.detected_at),
                    )
                    for row in session.execute(stmt).scalars()
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to get recent detections: {e}", exc_info=True)
            return []


__all__ = ["DetectionStore", "TOP_PROVIDER_LIMIT"]
