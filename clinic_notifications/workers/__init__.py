"""Background workers that run alongside the API process.

- reminders: the poll loop that fires due reminder jobs and wakes due
  delivery retries
"""

from __future__ import annotations

from .reminders import ReminderWorker

__all__ = ["ReminderWorker"]
