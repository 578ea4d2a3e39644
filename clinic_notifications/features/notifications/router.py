"""API router for the notifications feature.

Notification Endpoints:
- POST /notifications - Create and dispatch a notification
- POST /notifications/{notification_id}/cancel - Stop further sends
- POST /notifications/deliveries/confirm - Transport delivery callback

Inbox Endpoints:
- GET /notifications/users/{user_id} - List a user's notifications
- GET /notifications/users/{user_id}/unread-count - Unread total
- GET /notifications/users/{user_id}/{notification_id} - One notification with attempts
- POST /notifications/users/{user_id}/{notification_id}/read - Mark as read
- POST /notifications/users/{user_id}/read - Bulk mark as read

Preference Endpoints:
- GET /notifications/users/{user_id}/preferences - List preferences
- PUT /notifications/users/{user_id}/preferences/{notification_type} - Upsert preference

Reminder Endpoints:
- GET /notifications/reminders/{entity_id} - List reminder jobs
- POST /notifications/reminders/{entity_id} - Schedule reminders
- PUT /notifications/reminders/{entity_id} - Reschedule reminders
- DELETE /notifications/reminders/{entity_id} - Cancel pending reminders
- POST /notifications/reminders/{entity_id}/send - Send a reminder now

Admin Endpoints:
- GET /notifications/admin/health - Workers, queue depth, failure rate
- GET /notifications/admin/analytics - Outcome counters

WebSocket:
- /notifications/ws/{user_id} - Live notification state for one user
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from clinic_notifications.infra.logging import get_lazy_logger

from .dependencies import NotificationServiceDep, service_from_state
from .directory import Recipient
from .enums import NotificationType
from .schemas import (
    BulkDeleteRequest,
    BulkMarkReadRequest,
    ConfirmDeliveryRequest,
    CreatedNotification,
    CreateNotificationRequest,
    DeleteResult,
    ManualReminderRequest,
    MarkReadResult,
    NotificationFilters,
    NotificationPage,
    NotificationRead,
    OutcomeCounts,
    PreferenceRead,
    PreferenceUpdate,
    ReminderJobRead,
    RescheduleRemindersRequest,
    ScheduleRemindersRequest,
    SystemHealth,
    UnreadCount,
)

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


# ============================================================================
# Notifications
# ============================================================================


@router.post(
    "",
    response_model=CreatedNotification,
    status_code=status.HTTP_201_CREATED,
    summary="Create a notification",
    description="""
Render the template for `notification_type`, persist the notification and
deliver it on every channel the recipient's preferences allow.

A missing template field returns **422**. Delivery failures never fail the
request; they are visible on the notification's attempts.
""",
)
async def create_notification(
    payload: CreateNotificationRequest,
    service: NotificationServiceDep,
) -> CreatedNotification:
    notification_id = await service.create_notification(
        payload.notification_type,
        payload.params,
        Recipient(user_id=payload.recipient_id, role=payload.recipient_role),
        payload.options,
    )
    return CreatedNotification(id=notification_id)


@router.post("/{notification_id}/cancel", summary="Cancel a notification")
async def cancel_notification(notification_id: UUID, service: NotificationServiceDep) -> dict[str, bool]:
    return {"cancelled": await service.cancel_notification(notification_id)}


@router.post("/deliveries/confirm", summary="Confirm a transport delivery")
async def confirm_delivery(payload: ConfirmDeliveryRequest, service: NotificationServiceDep) -> dict[str, bool]:
    return {"confirmed": await service.confirm_delivery(payload.external_ref)}


# ============================================================================
# Inbox
# ============================================================================


@router.get("/users/{user_id}", response_model=NotificationPage, summary="List a user's notifications")
async def list_user_notifications(
    user_id: str,
    service: NotificationServiceDep,
    unread_only: Annotated[bool, Query(description="Only unread notifications")] = False,
    types: Annotated[list[NotificationType] | None, Query(description="Filter by notification type")] = None,
    include_expired: Annotated[bool, Query(description="Include expired notifications")] = True,
    limit: Annotated[int, Query(ge=1, le=200, description="Maximum results")] = 50,
    offset: Annotated[int, Query(ge=0, description="Pagination offset")] = 0,
) -> NotificationPage:
    filters = NotificationFilters(
        unread_only=unread_only,
        types=types,
        include_expired=include_expired,
        limit=limit,
        offset=offset,
    )
    return await service.get_user_notifications(user_id, filters)


@router.get("/users/{user_id}/unread-count", response_model=UnreadCount)
async def unread_count(user_id: str, service: NotificationServiceDep) -> UnreadCount:
    return UnreadCount(user_id=user_id, unread_count=await service.get_unread_count(user_id))


@router.get("/users/{user_id}/preferences", response_model=list[PreferenceRead])
async def list_preferences(user_id: str, service: NotificationServiceDep) -> list[PreferenceRead]:
    return await service.get_preferences(user_id)


@router.put("/users/{user_id}/preferences/{notification_type}", response_model=PreferenceRead)
async def update_preference(
    user_id: str,
    notification_type: NotificationType,
    payload: PreferenceUpdate,
    service: NotificationServiceDep,
) -> PreferenceRead:
    return await service.set_preference(user_id, notification_type, payload)


@router.post("/users/{user_id}/read", response_model=MarkReadResult, summary="Mark several as read")
async def bulk_mark_read(
    user_id: str,
    payload: BulkMarkReadRequest,
    service: NotificationServiceDep,
) -> MarkReadResult:
    return MarkReadResult(updated=await service.bulk_mark_as_read(payload.notification_ids, user_id))


@router.post("/users/{user_id}/read-all", response_model=MarkReadResult, summary="Mark everything as read")
async def mark_all_read(user_id: str, service: NotificationServiceDep) -> MarkReadResult:
    return MarkReadResult(updated=await service.mark_all_as_read(user_id))


@router.post("/users/{user_id}/delete", response_model=DeleteResult, summary="Delete several notifications")
async def bulk_delete(
    user_id: str,
    payload: BulkDeleteRequest,
    service: NotificationServiceDep,
) -> DeleteResult:
    return DeleteResult(deleted=await service.bulk_delete(payload.notification_ids, user_id))


@router.get("/users/{user_id}/{notification_id}", response_model=NotificationRead)
async def get_notification(user_id: str, notification_id: UUID, service: NotificationServiceDep) -> NotificationRead:
    return await service.get_notification(notification_id, user_id)


@router.post("/users/{user_id}/{notification_id}/read", response_model=MarkReadResult, summary="Mark as read")
async def mark_read(user_id: str, notification_id: UUID, service: NotificationServiceDep) -> MarkReadResult:
    changed = await service.mark_as_read(notification_id, user_id)
    return MarkReadResult(updated=1 if changed else 0)


@router.delete(
    "/users/{user_id}/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
)
async def delete_notification(user_id: str, notification_id: UUID, service: NotificationServiceDep) -> None:
    await service.delete_notification(notification_id, user_id)


# ============================================================================
# Reminders
# ============================================================================


@router.get("/reminders/{entity_id}", response_model=list[ReminderJobRead])
async def list_reminders(
    entity_id: str,
    service: NotificationServiceDep,
    pending_only: Annotated[bool, Query(description="Only jobs that have not fired")] = False,
) -> list[ReminderJobRead]:
    return await service.list_entity_reminders(entity_id, pending_only=pending_only)


@router.post(
    "/reminders/{entity_id}",
    response_model=list[ReminderJobRead],
    status_code=status.HTTP_201_CREATED,
    summary="Schedule session reminders",
)
async def schedule_reminders(
    entity_id: str,
    payload: ScheduleRemindersRequest,
    service: NotificationServiceDep,
) -> list[ReminderJobRead]:
    return await service.schedule_entity_reminders(entity_id, payload.baseline)


@router.put("/reminders/{entity_id}", response_model=list[ReminderJobRead], summary="Reschedule session reminders")
async def reschedule_reminders(
    entity_id: str,
    payload: RescheduleRemindersRequest,
    service: NotificationServiceDep,
) -> list[ReminderJobRead]:
    return await service.reschedule_entity_reminders(entity_id, payload.new_baseline)


@router.delete("/reminders/{entity_id}", summary="Cancel pending session reminders")
async def cancel_reminders(entity_id: str, service: NotificationServiceDep) -> dict[str, int]:
    return {"cancelled": await service.cancel_entity_reminders(entity_id)}


@router.post("/reminders/{entity_id}/send", summary="Send a reminder now")
async def send_manual_reminder(
    entity_id: str,
    payload: ManualReminderRequest,
    service: NotificationServiceDep,
) -> dict[str, list[UUID]]:
    return {"notification_ids": await service.send_manual_reminder(entity_id, payload.reminder_kind)}


# ============================================================================
# Admin
# ============================================================================


@router.get("/admin/health", response_model=SystemHealth, tags=["notifications-admin"])
async def system_health(service: NotificationServiceDep) -> SystemHealth:
    return await service.get_system_health()


@router.get("/admin/analytics", response_model=list[OutcomeCounts], tags=["notifications-admin"])
async def analytics(
    service: NotificationServiceDep,
    notification_type: Annotated[NotificationType | None, Query()] = None,
    channel: Annotated[str | None, Query()] = None,
    day: Annotated[date | None, Query()] = None,
) -> list[OutcomeCounts]:
    return service.get_analytics(
        notification_type=notification_type.value if notification_type else None,
        channel=channel,
        day=day,
    )


# ============================================================================
# WebSocket
# ============================================================================


@router.websocket("/ws/{user_id}")
async def notifications_websocket(websocket: WebSocket, user_id: str) -> None:
    """Stream state changes of the user's notifications.

    Server → Client:
        {"event": "notification.created" | "notification.delivery_changed" |
                  "notification.read" | "notification.cancelled" | "notification.in_app",
         ...}

    Client → Server:
        {"type": "ping"} answered with {"type": "pong"}; anything else is ignored.
    """
    service = service_from_state(websocket.app.state)
    await websocket.accept()

    async def forward(message: dict[str, Any]) -> None:
        await websocket.send_json(message)

    unsubscribe = service.subscribe(user_id, forward)
    logger.info("Realtime client connected", extra={"operation": "ws.connect", "user_id": user_id})
    try:
        await websocket.send_json({"type": "connected", "user_id": user_id})
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        lazy_logger.debug(lambda: f"ws.disconnect: {user_id}")
    finally:
        unsubscribe()
        logger.info("Realtime client disconnected", extra={"operation": "ws.disconnect", "user_id": user_id})
