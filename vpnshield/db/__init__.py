"""Database utilities for the detection store."""

from .base import Base
from .engine import create_engine_from_settings, create_engine_with_fallback, create_session_maker, is_postgresql
from .migrations import CURRENT_SCHEMA_VERSION, apply_migrations
from .models import AddressHistoryModel, DetectionRecordModel, ProviderStatModel, SchemaState

__all__ = [
    "AddressHistoryModel",
    "Base",
    "CURRENT_SCHEMA_VERSION",
    "DetectionRecordModel",
    "ProviderStatModel",
    "SchemaState",
    "apply_migrations",
    "create_engine_from_settings",
    "create_engine_with_fallback",
    "create_session_maker",
    "is_postgresql",
]
