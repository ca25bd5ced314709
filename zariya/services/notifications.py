"""Fire-and-forget notifications emitted after a transition commits.

Delivery failures are logged and never propagate: a committed approval
or posting is not undone because an e-mail could not be sent.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

MEMBERSHIP_APPROVED = "membership.approved"
MEMBERSHIP_REJECTED = "membership.rejected"
APPLICATION_APPROVED = "loan_application.approved"
APPLICATION_REJECTED = "loan_application.rejected"
LOAN_CREATED = "loan.created"
LOAN_CLOSED = "loan.closed"

EVENTS = frozenset(
    {
        MEMBERSHIP_APPROVED,
        MEMBERSHIP_REJECTED,
        APPLICATION_APPROVED,
        APPLICATION_REJECTED,
        LOAN_CREATED,
        LOAN_CLOSED,
    }
)


class Notifier(Protocol):
    async def send(self, event: str, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    async def send(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("Notification %s", event, extra={"event": event, "payload": payload})


_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


async def dispatch(event: str, payload: dict[str, Any]) -> None:
    if event not in EVENTS:
        raise ValueError(f"Unknown notification event {event}")
    try:
        await _notifier.send(event, payload)
    except Exception:
        logger.warning("Notification delivery failed", extra={"event": event}, exc_info=True)
