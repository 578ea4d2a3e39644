"""HTTP messaging gateway sender for sms, push, email and whatsapp.

The gateway accepts ``POST {base_url}/messages/{channel}`` with a JSON body
and answers with ``{"id": "...", "status": "accepted" | "delivered"}``.
An ``accepted`` message is confirmed later through the delivery callback.

Error mapping:
    timeouts, connection errors, 429 and 5xx  -> TransientDeliveryError
    any other 4xx                              -> PermanentDeliveryError
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from clinic_notifications.core.exceptions import PermanentDeliveryError, TransientDeliveryError
from clinic_notifications.infra.logging import get_lazy_logger

from .base import SendReceipt

if TYPE_CHECKING:
    from clinic_notifications.features.notifications.enums import Channel

    from .base import OutboundMessage

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


class GatewaySender:
    """Sends external-channel messages through an HTTP gateway.

    Args:
        base_url: Gateway root URL.
        api_key: Optional bearer token.
        timeout: Request timeout in seconds.
        client: Pre-built client (tests pass one with a MockTransport). When
            omitted the sender creates and owns its own client.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"User-Agent": "clinic-notifications/1.0"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)
        if client is not None:
            self._client.headers.update(headers)
        self._timeout = timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, channel: Channel, address: str, message: OutboundMessage) -> SendReceipt:
        body: dict[str, Any] = {
            "to": address,
            "notification_id": str(message.notification_id),
            "type": message.notification_type,
            "priority": message.priority,
            "title": {"ar": message.title_ar, "en": message.title_en},
            "body": {"ar": message.body_ar, "en": message.body_en},
        }

        lazy_logger.debug(lambda: f"gateway.send: {channel} {message.notification_id} -> {address}")

        try:
            response = await self._client.post(f"/messages/{channel}", json=body, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            msg = f"Gateway timeout after {self._timeout}s"
            raise TransientDeliveryError(msg, channel=str(channel), code="timeout") from exc
        except httpx.TransportError as exc:
            msg = f"Gateway unreachable: {exc}"
            raise TransientDeliveryError(msg, channel=str(channel), code="connection") from exc

        status = response.status_code
        if status == 429 or status >= 500:
            msg = f"Gateway returned HTTP {status}"
            raise TransientDeliveryError(msg, channel=str(channel), code=str(status))
        if status >= 400:
            msg = f"Gateway rejected message: HTTP {status} {response.text[:500]}"
            raise PermanentDeliveryError(msg, channel=str(channel), code=str(status))

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        external_ref = payload.get("id") if isinstance(payload, dict) else None
        confirmed = isinstance(payload, dict) and payload.get("status") == "delivered"

        logger.info(
            "Gateway accepted message",
            extra={
                "operation": "gateway.send",
                "channel": str(channel),
                "notification_id": str(message.notification_id),
                "external_ref": external_ref,
                "confirmed": confirmed,
            },
        )
        return SendReceipt(external_ref=external_ref, confirmed=confirmed)
