"""Database foundation: declarative base, portable types, repositories, sessions."""

from __future__ import annotations

from .base import NAMING_CONVENTION, Base, TimestampedBase, TimestampMixin, UUIDPKMixin, utcnow
from .repository import BaseRepository, SearchResult
from .session import Database
from .types import StringArray, UTCDateTime

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "Database",
    "SearchResult",
    "StringArray",
    "TimestampMixin",
    "TimestampedBase",
    "UTCDateTime",
    "UUIDPKMixin",
    "utcnow",
]
