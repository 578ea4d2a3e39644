"""FastAPI dependencies for the notifications feature.

The ServiceContext is created by the application lifespan and stored on
``app.state.context``; routes reach the service through these aliases:

    @router.get("/users/{user_id}/unread-count")
    async def unread_count(user_id: str, service: NotificationServiceDep) -> UnreadCount:
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request

from clinic_notifications.core.exceptions import AppException

from .service import NotificationService

if TYPE_CHECKING:
    from starlette.datastructures import State


def service_from_state(state: State) -> NotificationService:
    context = getattr(state, "context", None)
    if context is None:
        raise AppException(503, "Notification engine is not running", type="service-unavailable")
    return context.service


def get_notification_service(request: Request) -> NotificationService:
    return service_from_state(request.app.state)


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]


__all__ = ["NotificationServiceDep", "get_notification_service", "service_from_state"]
