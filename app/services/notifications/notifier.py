"""
Best-effort notification dispatch.

State transitions commit before notifications are sent; a failed email is
logged and reported as False but never fails the caller.
"""

from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.services.notifications.mailgun_client import (
    EmailMessage,
    NotificationError,
    mailgun_client,
)

logger = get_logger(__name__)


class Mailer(Protocol):
    async def send(self, message: EmailMessage) -> bool: ...


class Notifier:
    def __init__(self, mailer: Mailer | None = None):
        self.mailer = mailer or mailgun_client

    async def dispatch(self, message: EmailMessage, event: str, **context) -> bool:
        if not message.to:
            logger.info(
                "Notification skipped, no recipient address", notification_event=event, **context
            )
            return False

        try:
            return await self.mailer.send(message)
        except NotificationError as e:
            logger.warning(
                "Notification failed",
                notification_event=event,
                to=message.to,
                error=str(e),
                **context,
            )
            return False
        except Exception as e:
            logger.error(
                "Unexpected notification error",
                notification_event=event,
                to=message.to,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            return False


notifier = Notifier()


def get_notifier() -> Notifier:
    return notifier
