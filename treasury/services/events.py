"""Domain events published after a workflow or repayment transaction commits.

Consumers (notifications, cache invalidation) subscribe to an EventBus.
A failing handler is logged and never affects the committed transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable

from treasury.models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    association_id: int
    request_id: int
    actor_id: int | None = None
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, kw_only=True)
class RequestCreated(DomainEvent):
    title: str
    amount: Decimal
    currency: str
    required_validators: tuple[str, ...]


@dataclass(frozen=True, kw_only=True)
class RequestDecided(DomainEvent):
    role: str
    decision: str
    new_status: str
    comment: str | None = None
    amount_approved: Decimal | None = None
    remaining_roles: tuple[str, ...] = ()
    currency: str = "EUR"


@dataclass(frozen=True, kw_only=True)
class RequestResubmitted(DomainEvent):
    new_status: str


@dataclass(frozen=True, kw_only=True)
class RequestCancelled(DomainEvent):
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class RequestPaid(DomainEvent):
    amount: Decimal
    currency: str
    transaction_id: int
    is_loan: bool = False


@dataclass(frozen=True, kw_only=True)
class PaymentFailed(DomainEvent):
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class PaymentRetried(DomainEvent):
    pass


@dataclass(frozen=True, kw_only=True)
class RepaymentValidated(DomainEvent):
    repayment_id: int
    amount: Decimal
    outstanding: Decimal
    currency: str
    completed: bool = False


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """In-process async publish/subscribe keyed by event class."""

    def __init__(self):
        self._handlers: dict[type[DomainEvent], list[EventHandler]] = {}

    def subscribe(self, event_type: type[DomainEvent], handler: EventHandler) -> None:
        """Call handler for event_type and all its subclasses."""
        self._handlers.setdefault(event_type, []).append(handler)

    async def publish(self, event: DomainEvent) -> None:
        for event_type, handlers in self._handlers.items():
            if not isinstance(event, event_type):
                continue
            for handler in handlers:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(
                        "Event handler %s failed for %s (request %s): %s",
                        getattr(handler, "__qualname__", handler),
                        type(event).__name__,
                        event.request_id,
                        e,
                        exc_info=True,
                    )


# Process-wide bus; main.py subscribes the notification service to it
event_bus = EventBus()


__all__ = [
    "DomainEvent",
    "EventBus",
    "EventHandler",
    "PaymentFailed",
    "PaymentRetried",
    "RepaymentValidated",
    "RequestCancelled",
    "RequestCreated",
    "RequestDecided",
    "RequestPaid",
    "RequestResubmitted",
    "event_bus",
]
