"""Best-effort notification dispatch.

Core operations collect NotificationMessage objects and hand them to
``dispatch`` only after their own transaction has committed. A notifier
failure is a DependencyError: logged, never propagated, never rolling back
the operation that triggered it.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.errors import DependencyError
from jobbroker.models.notification import Notification, NotificationStatus

logger = logging.getLogger(__name__)


class Channel(enum.Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


@dataclass
class NotificationMessage:
    actor_id: uuid.UUID
    job_id: uuid.UUID | None
    type: str
    title: str
    message: str
    channels: list[Channel] = field(default_factory=lambda: [Channel.IN_APP])
    metadata: dict | None = None


class Notifier(Protocol):
    async def send(self, db: AsyncSession, message: NotificationMessage) -> None: ...


class OutboxNotifier:
    """Writes notifications to the outbox table for the delivery workers."""

    async def send(self, db: AsyncSession, message: NotificationMessage) -> None:
        db.add(Notification(
            notification_id=uuid.uuid4(),
            actor_id=message.actor_id,
            job_id=message.job_id,
            notification_type=message.type,
            title=message.title,
            message=message.message,
            channels=[c.value for c in message.channels],
            metadata_=message.metadata,
            status=NotificationStatus.PENDING,
        ))
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise DependencyError("Notification outbox write failed") from exc


_notifier: Notifier = OutboxNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


async def _send(db: AsyncSession, message: NotificationMessage) -> None:
    try:
        await _notifier.send(db, message)
    except DependencyError:
        raise
    except Exception as exc:
        # Installed notifiers may fail any way they like
        raise DependencyError(f"Notifier failed: {type(exc).__name__}") from exc


async def dispatch(db: AsyncSession, messages: list[NotificationMessage]) -> int:
    """Send each message; returns how many were accepted by the notifier."""
    sent = 0
    for message in messages:
        try:
            await _send(db, message)
            sent += 1
        except DependencyError:
            logger.warning(
                "Notification %s to %s dropped", message.type, message.actor_id, exc_info=True
            )
    return sent
