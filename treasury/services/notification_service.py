"""Notification collaborator: turns domain events into bureau chat messages.

Delivery goes through a pluggable transport (Telegram or in-memory mock).
Notifications are fire-and-forget: a failed send is logged, never raised.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from telegram import Bot
from telegram.error import TelegramError

from treasury.config.settings import settings
from treasury.models.validation_record import Decision
from treasury.services.events import (
    DomainEvent,
    EventBus,
    PaymentFailed,
    PaymentRetried,
    RepaymentValidated,
    RequestCancelled,
    RequestCreated,
    RequestDecided,
    RequestPaid,
    RequestResubmitted,
)
from treasury.services.locale_service import format_amount
from treasury.services.localizer import t

logger = logging.getLogger(__name__)


class NotificationTransport(ABC):
    """Abstract base class for notification transports."""

    @abstractmethod
    async def send_message(self, chat_id: int | str, message: str) -> bool:
        """Send a message to a chat.

        Returns:
            bool: True if successful, False otherwise
        """


class MockTransport(NotificationTransport):
    """In-memory transport for tests and for running without a bot token."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []

    async def send_message(self, chat_id: int | str, message: str) -> bool:
        self.messages.append({"chat_id": chat_id, "message": message})
        logger.debug("[MOCK] Message queued for %s: %s", chat_id, message)
        return True

    def get_messages(self, chat_id: int | str | None = None) -> list[dict[str, Any]]:
        """Stored messages, optionally filtered by chat_id."""
        if chat_id is None:
            return self.messages
        return [m for m in self.messages if m["chat_id"] == chat_id]

    def clear(self):
        self.messages = []


class TelegramTransport(NotificationTransport):
    """Sends messages with the Telegram Bot API."""

    def __init__(self, token: str):
        self.bot = Bot(token=token)
        self._initialized = False

    async def send_message(self, chat_id: int | str, message: str) -> bool:
        try:
            if not self._initialized:
                await self.bot.initialize()
                self._initialized = True
            await self.bot.send_message(chat_id=chat_id, text=message)
            return True
        except TelegramError as e:
            logger.error("Error sending Telegram message to %s: %s", chat_id, e)
            return False


def _amount(value, currency: str) -> str:
    return format_amount(value, currency)


def render(event: DomainEvent) -> str | None:
    """Localized message for an event, None for events nobody is told about."""
    if isinstance(event, RequestCreated):
        return t(
            "notifications.request_created",
            request_id=event.request_id,
            title=event.title,
            amount=_amount(event.amount, event.currency),
            validators=", ".join(event.required_validators),
        )
    if isinstance(event, RequestDecided):
        if event.decision == Decision.REJECTED.value:
            return t(
                "notifications.request_rejected",
                request_id=event.request_id,
                role=event.role,
                comment=event.comment or "-",
            )
        if event.decision == Decision.INFO_REQUESTED.value:
            return t(
                "notifications.request_info_requested",
                request_id=event.request_id,
                role=event.role,
                comment=event.comment or "",
            )
        if event.remaining_roles:
            return t(
                "notifications.request_approved_partial",
                request_id=event.request_id,
                role=event.role,
                remaining=len(event.remaining_roles),
            )
        return t(
            "notifications.request_approved",
            request_id=event.request_id,
            amount=_amount(event.amount_approved or 0, event.currency),
        )
    if isinstance(event, RequestResubmitted):
        return t("notifications.request_resubmitted", request_id=event.request_id)
    if isinstance(event, RequestCancelled):
        return t("notifications.request_cancelled", request_id=event.request_id, reason=event.reason or "-")
    if isinstance(event, RequestPaid):
        return t(
            "notifications.request_paid",
            request_id=event.request_id,
            amount=_amount(event.amount, event.currency),
        )
    if isinstance(event, PaymentFailed):
        return t("notifications.payment_failed", request_id=event.request_id, reason=event.reason or "-")
    if isinstance(event, PaymentRetried):
        return t("notifications.payment_retry", request_id=event.request_id)
    if isinstance(event, RepaymentValidated):
        return t(
            "notifications.repayment_validated",
            request_id=event.request_id,
            amount=_amount(event.amount, event.currency),
            outstanding=_amount(event.outstanding, event.currency),
        )
    return None


class NotificationService:
    """Forward domain events to the bureau chat."""

    def __init__(self, chat_id: int | str, transport: NotificationTransport | None = None):
        """Initialize notification service.

        Args:
            chat_id: Bureau group chat receiving treasury notifications
            transport: Optional transport (defaults to MockTransport for safety)
        """
        self.chat_id = chat_id
        self.transport = transport or MockTransport()

    async def notify(self, event: DomainEvent) -> bool:
        message = render(event)
        if message is None:
            return False
        logger.info(
            "Notifying %s about %s on request %s", self.chat_id, type(event).__name__, event.request_id
        )
        try:
            return await self.transport.send_message(self.chat_id, message)
        except Exception as e:
            logger.error("Notification for request %s failed: %s", event.request_id, e, exc_info=True)
            return False

    def register(self, bus: EventBus) -> None:
        bus.subscribe(DomainEvent, self.notify)


def build_notification_service() -> NotificationService:
    """Telegram-backed service when a bot token and chat are configured, mock otherwise."""
    if settings.telegram_bot_token and settings.telegram_bureau_chat_id:
        return NotificationService(
            settings.telegram_bureau_chat_id, TelegramTransport(settings.telegram_bot_token)
        )
    logger.info("Telegram not configured, notifications go to the in-memory transport")
    return NotificationService(settings.telegram_bureau_chat_id or -1, MockTransport())


__all__ = [
    "MockTransport",
    "NotificationService",
    "NotificationTransport",
    "TelegramTransport",
    "build_notification_service",
    "render",
]
