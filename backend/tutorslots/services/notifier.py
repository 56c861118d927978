# backend/tutorslots/services/notifier.py
"""
Notification delivery seam.

The scheduling core only decides *who* to tell and *what*; delivery
(email, push, SMS) belongs to whatever implements ``Notifier``. Sends are
fire-and-forget: a failed send is logged and never rolls back the state
change that caused it.
"""

from datetime import datetime
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, recipient_id: str, message: str, expires_at: Optional[datetime] = None) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes each notification to the application log."""

    def notify(self, recipient_id: str, message: str, expires_at: Optional[datetime] = None) -> None:
        logger.info(
            "notification_sent",
            extra={
                "recipient_id": recipient_id,
                "notification_message": message,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )


def send_notification(
    notifier: Notifier, recipient_id: Optional[str], message: str, expires_at: Optional[datetime] = None
) -> bool:
    """Deliver through ``notifier``; returns False instead of raising on failure."""
    if not recipient_id:
        return False
    try:
        notifier.notify(recipient_id, message, expires_at)
        return True
    except Exception as exc:
        logger.warning(
            "notification_failed",
            extra={"recipient_id": recipient_id, "error": str(exc)},
            exc_info=True,
        )
        return False
