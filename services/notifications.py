# services/notifications.py
from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger("tipsettle.notifications")


class NotificationSender(Protocol):
    def send_payment_success(self, email: str, details: dict[str, Any]) -> None: ...

    def send_payment_failure(self, email: str, details: dict[str, Any]) -> None: ...


class LoggingNotificationSender:
    """
    Default sender: records the notification in the log. Mail rendering and
    delivery live outside this service.
    """

    def send_payment_success(self, email: str, details: dict[str, Any]) -> None:
        logger.info(
            "payment success notification email=%s reference=%s amount=%s",
            email,
            details.get("reference"),
            details.get("amount"),
        )

    def send_payment_failure(self, email: str, details: dict[str, Any]) -> None:
        logger.info(
            "payment failure notification email=%s reference=%s reason=%s",
            email,
            details.get("reference"),
            details.get("errorMessage"),
        )
