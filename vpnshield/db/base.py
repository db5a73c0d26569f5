"""Declarative base shared by all vpnshield ORM models."""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for ORM models."""


__all__ = ["Base"]
