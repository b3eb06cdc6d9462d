"""
Notification fan-out.

State transitions record their side effects on an ``Outbox`` while the
database transaction is open. Notification rows are added to the same
session, so they commit or roll back together with the appointment change.
Emails and realtime pushes are held until ``Outbox.flush`` runs after the
commit; a failure there is logged and never undoes the transition.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from mobipet.core import config
from mobipet.models.notification import Notification
from mobipet.models.user import ROLE_ADMIN, ROLE_VET, User
from mobipet.services.email_templates import EmailMessage

logger = logging.getLogger(__name__)

VET_NOTIFICATION_TYPES = {
    'new_appointment',
    'appointment_cancelled',
    'time_proposal_accepted',
    'time_proposal_declined',
    'appointment_withdrawn',
}

PET_OWNER_NOTIFICATION_TYPES = {
    'appointment_accepted',
    'appointment_declined',
    'time_proposed',
    'appointment_started',
    'appointment_completed',
    'invoice_ready',
}

SUBSCRIBER_QUEUE_SIZE = 100


def is_relevant(role: str, notification_type: str) -> bool:
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_VET:
        return notification_type in VET_NOTIFICATION_TYPES
    return notification_type in PET_OWNER_NOTIFICATION_TYPES


def serialize_notification(notification: Notification) -> dict:
    return {
        'id': notification.id,
        'user_id': notification.user_id,
        'appointment_id': notification.appointment_id,
        'type': notification.type,
        'title': notification.title,
        'message': notification.message,
        'read': notification.read,
        'created_at': notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationBroker:
    """In-process publish/subscribe of committed notifications, keyed by user id.

    Subscribers are asyncio queues owned by a running event loop (one per open
    stream). ``publish`` may be called from worker threads, so delivery goes
    through ``call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, set[tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {}

    def subscribe(self, user_id: str) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            self._subscribers.setdefault(user_id, set()).add((loop, queue))
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        with self._lock:
            subscribers = self._subscribers.get(user_id)
            if not subscribers:
                return
            subscribers.difference_update({entry for entry in subscribers if entry[1] is queue})
            if not subscribers:
                del self._subscribers[user_id]

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, ()))

    def publish(self, user_id: str, payload: dict) -> int:
        with self._lock:
            targets = list(self._subscribers.get(user_id, ()))

        for loop, queue in targets:
            loop.call_soon_threadsafe(_offer, queue, payload)
        return len(targets)


def _offer(queue: asyncio.Queue, payload: dict) -> None:
    try:
        queue.put_nowait(payload)
    except asyncio.QueueFull:
        logger.warning('Dropping realtime notification; subscriber queue is full.')


@dataclass
class PendingEmail:
    to: str
    message: EmailMessage


@dataclass
class Outbox:
    """Side effects of one operation, released after its transaction commits."""

    notifications: list[Notification] = field(default_factory=list)
    emails: list[PendingEmail] = field(default_factory=list)

    def notify(
        self,
        db: Session,
        user_id: str | None,
        notification_type: str,
        message: str,
        title: str | None = None,
        appointment_id: int | None = None,
    ) -> Notification | None:
        if not user_id:
            return None

        user = db.get(User, user_id)
        if user is None:
            logger.warning('Skipping %s notification for unknown user %s', notification_type, user_id)
            return None

        if not is_relevant(user.role, notification_type):
            logger.debug('Skipping %s notification for %s user %s', notification_type, user.role, user_id)
            return None

        notification = Notification(
            user_id=user_id,
            appointment_id=appointment_id,
            type=notification_type,
            title=title,
            message=message,
            read=False,
        )
        db.add(notification)
        self.notifications.append(notification)
        return notification

    def email(self, to: str | None, message: EmailMessage) -> None:
        if not to:
            logger.warning('Skipping "%s" email; recipient has no address.', message.subject)
            return
        self.emails.append(PendingEmail(to=to, message=message))

    def flush(self, mailer=None, broker: NotificationBroker | None = None) -> None:
        if broker is not None:
            for notification in self.notifications:
                try:
                    broker.publish(notification.user_id, serialize_notification(notification))
                except Exception:
                    logger.exception('Failed to push notification %s', notification.id)

        if mailer is not None:
            for pending in self.emails:
                try:
                    mailer.send(pending.to, pending.message.subject, pending.message.html)
                except Exception:
                    logger.exception('Failed to send "%s" email to %s', pending.message.subject, pending.to)

        self.notifications.clear()
        self.emails.clear()


def list_notifications(db: Session, user_id: str, now: datetime | None = None) -> list[Notification]:
    cutoff = (now or datetime.utcnow()) - timedelta(days=config.NOTIFICATION_RETENTION_DAYS)
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.created_at >= cutoff,
    ).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(config.NOTIFICATION_PAGE_SIZE).all()
