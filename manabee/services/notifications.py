"""
Notification Dispatcher - push notifications to a user's registered devices.

One multicast call per send; endpoints the provider reports as permanently
invalid are pruned from the target's endpoint set afterwards.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any, Protocol

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging
from structlog import get_logger

from manabee.exceptions import (
    DeliveryProviderError,
    InvalidArgumentError,
    NotFoundError,
    TargetNotFoundError,
)
from manabee.models.domain import (
    DeliverySummary,
    EndpointResult,
    MulticastReport,
    NotificationRecordData,
    PushMessage,
)
from manabee.observability import metrics
from manabee.storage import Store

logger = get_logger(__name__)

DEFAULT_URL = "/"
DEFAULT_CATEGORY = "general"


class PushProvider(Protocol):
    """Multicast push delivery."""

    async def send_multicast(self, message: PushMessage) -> MulticastReport: ...


def _is_permanently_invalid(error: Exception | None, batch_had_success: bool) -> bool:
    """
    Unregistered or malformed tokens will never succeed again.

    FCM also answers INVALID_ARGUMENT for a bad payload, which would fail every
    token in the batch. That error only condemns the token when the message
    names the registration token or another token in the same batch went
    through.
    """
    if isinstance(error, messaging.UnregisteredError):
        return True
    if isinstance(error, firebase_exceptions.InvalidArgumentError):
        return batch_had_success or "registration token" in str(error).lower()
    return False


class FirebasePushProvider:
    """PushProvider backed by Firebase Cloud Messaging."""

    def __init__(self, app: Any = None) -> None:
        self.app = app

    async def send_multicast(self, message: PushMessage) -> MulticastReport:
        multicast = messaging.MulticastMessage(
            tokens=message.tokens,
            notification=messaging.Notification(title=message.title, body=message.body),
            data=message.data,
        )
        # The admin SDK is synchronous
        batch = await asyncio.to_thread(
            messaging.send_each_for_multicast, multicast, app=self.app
        )
        batch_had_success = any(response.success for response in batch.responses)
        return MulticastReport(
            results=[
                EndpointResult(
                    token=token,
                    success=response.success,
                    permanently_invalid=_is_permanently_invalid(
                        response.exception, batch_had_success
                    ),
                    error=str(response.exception) if response.exception else None,
                )
                for token, response in zip(message.tokens, batch.responses)
            ]
        )


class NotificationDispatcher:
    """Sends notifications and manages device endpoint registration."""

    def __init__(self, store: Store, push_provider: PushProvider | None) -> None:
        self.store = store
        self.push_provider = push_provider

    async def send(
        self,
        sender_id: str,
        target_user_id: str,
        title: str,
        body: str,
        url: str | None = None,
        category: str | None = None,
    ) -> DeliverySummary:
        """
        Deliver a notification to every endpoint of ``target_user_id``.

        A NotificationRecord is written for every attempt that reaches the
        provider stage, including attempts with no endpoints and attempts
        where the multicast call itself failed.

        Raises:
            InvalidArgumentError: target, title or body missing
            TargetNotFoundError: no profile for the target user
            DeliveryProviderError: the multicast call failed
        """
        title = (title or "").strip()
        body = (body or "").strip()
        if not target_user_id or not title or not body:
            raise InvalidArgumentError("target_user_id, title, and body are required")

        target = await self.store.get_user(target_user_id)
        if target is None:
            raise TargetNotFoundError(target_user_id)

        tokens = await self.store.list_endpoints(target_user_id)
        sent_at = datetime.now(UTC)

        def record(success_count: int, failure_count: int) -> NotificationRecordData:
            return NotificationRecordData(
                target_user_id=target_user_id,
                sender_id=sender_id,
                title=title,
                body=body,
                url=url,
                category=category,
                sent_at=sent_at,
                success_count=success_count,
                failure_count=failure_count,
            )

        if not tokens:
            await self.store.add_notification(record(0, 0))
            logger.info("notification_no_endpoints", target_user_id=target_user_id)
            return DeliverySummary(sent=0, failed=0)

        if self.push_provider is None:
            await self.store.add_notification(record(0, len(tokens)))
            raise DeliveryProviderError("push provider not configured")

        message = PushMessage(
            tokens=tokens,
            title=title,
            body=body,
            data={
                "url": url or DEFAULT_URL,
                "type": category or DEFAULT_CATEGORY,
                "timestamp": sent_at.isoformat(),
            },
        )

        try:
            report = await self.push_provider.send_multicast(message)
        except Exception as e:
            await self.store.add_notification(record(0, len(tokens)))
            metrics.record_delivery(sent=0, failed=len(tokens), pruned=0)
            logger.error(
                "notification_send_failed",
                target_user_id=target_user_id,
                endpoints=len(tokens),
                error=str(e),
            )
            raise DeliveryProviderError(str(e)) from e

        await self.store.add_notification(record(report.success_count, report.failure_count))

        pruned = 0
        invalid = report.invalid_tokens
        if invalid:
            pruned = await self.store.remove_endpoints(target_user_id, invalid)
            logger.info("endpoints_pruned", target_user_id=target_user_id, count=pruned)

        metrics.record_delivery(
            sent=report.success_count, failed=report.failure_count, pruned=pruned
        )
        logger.info(
            "notification_sent",
            sender_id=sender_id,
            target_user_id=target_user_id,
            sent=report.success_count,
            failed=report.failure_count,
        )
        return DeliverySummary(sent=report.success_count, failed=report.failure_count)

    async def register_endpoint(self, user_id: str, token: str) -> bool:
        """Add ``token`` to the caller's endpoint set; True if newly added."""
        if not token or not token.strip():
            raise InvalidArgumentError("Token is required")

        if await self.store.get_user(user_id) is None:
            raise NotFoundError("User profile", user_id)

        added = await self.store.add_endpoint(user_id, token.strip())
        logger.info("endpoint_registered", user_id=user_id, new=added)
        return added
