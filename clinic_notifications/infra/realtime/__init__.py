"""Realtime fan-out of notification state to live client connections.

Usage:
    from clinic_notifications.infra.realtime import RealtimeNotifier

    notifier = RealtimeNotifier(redis_client)
    await notifier.start()
    unsubscribe = notifier.subscribe(user_id, websocket.send_json)
"""

from __future__ import annotations

from .notifier import MessageHandle, RealtimeNotifier

__all__ = ["MessageHandle", "RealtimeNotifier"]
