"""Interfaces to the clinic records the engine does not own.

Sessions, people and contact details live in the surrounding application.
The engine reaches them through these protocols; the application supplies
implementations when it builds the service context.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .enums import Channel, RecipientRole


@dataclass(frozen=True, slots=True)
class Recipient:
    user_id: str
    role: RecipientRole = RecipientRole.PARENT


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """Snapshot of a therapy session as seen by the reminder scheduler.

    Attributes:
        session_id: Identifier of the session in the clinic application.
        starts_at: Aware start time of the session.
        stakeholders: Recipients of reminders (student or parent, therapist).
        params: Template parameters (student_name, therapist_name, session_type, time).
        cancelled: Whether the session itself has been cancelled.
    """

    session_id: str
    starts_at: datetime
    stakeholders: tuple[Recipient, ...]
    params: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False


@runtime_checkable
class SessionDirectory(Protocol):
    """Looks up sessions for reminder scheduling."""

    async def get_session(self, session_id: str) -> SessionInfo | None:
        """Return the session or None when it does not exist."""
        ...


@runtime_checkable
class AddressBook(Protocol):
    """Resolves a recipient's address for an external channel."""

    async def get_address(self, user_id: str, channel: Channel) -> str | None:
        """Phone number, device token or email address; None when unknown."""
        ...


class InMemorySessionDirectory:
    """Dict-backed SessionDirectory for standalone runs and tests."""

    def __init__(self, sessions: dict[str, SessionInfo] | None = None) -> None:
        self._sessions = dict(sessions or {})

    def put(self, info: SessionInfo) -> None:
        self._sessions[info.session_id] = info

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def get_session(self, session_id: str) -> SessionInfo | None:
        return self._sessions.get(session_id)


class StaticAddressBook:
    """AddressBook over a ``{user_id: {channel: address}}`` mapping."""

    def __init__(self, addresses: dict[str, dict[Channel, str]] | None = None) -> None:
        self._addresses = {user: dict(by_channel) for user, by_channel in (addresses or {}).items()}

    def set(self, user_id: str, channel: Channel, address: str) -> None:
        self._addresses.setdefault(user_id, {})[channel] = address

    async def get_address(self, user_id: str, channel: Channel) -> str | None:
        return self._addresses.get(user_id, {}).get(channel)
