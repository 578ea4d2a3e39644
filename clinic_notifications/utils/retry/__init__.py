from __future__ import annotations

from .strategies import BackoffPolicy

__all__ = ["BackoffPolicy"]
