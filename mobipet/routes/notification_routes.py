import asyncio
import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, get_auth_context
from mobipet.core.errors import NotFoundError
from mobipet.database import get_db
from mobipet.models.notification import Notification
from mobipet.services import store
from mobipet.services.integrations import Integrations, get_integrations
from mobipet.services.notifications import list_notifications

router = APIRouter(tags=['notifications'])

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15


class NotificationResponse(BaseModel):
    id: int
    user_id: str
    appointment_id: int | None = None
    type: str
    title: str | None = None
    message: str
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class UpdateNotificationRequest(BaseModel):
    read: bool = True


class MarkAllReadResponse(BaseModel):
    updated: int


@router.get('', response_model=NotificationListResponse)
def get_notifications(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    notifications = list_notifications(db, context.identity)
    unread_count = db.query(Notification).filter(
        Notification.user_id == context.identity,
        Notification.read.is_(False),
    ).count()
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(item) for item in notifications],
        unread_count=unread_count,
    )


@router.post('/read-all', response_model=MarkAllReadResponse)
def mark_all_read(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    updated = db.query(Notification).filter(
        Notification.user_id == context.identity,
        Notification.read.is_(False),
    ).update({Notification.read: True}, synchronize_session=False)
    store.commit(db)
    return MarkAllReadResponse(updated=updated)


@router.get('/stream')
async def stream_notifications(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    integrations: Integrations = Depends(get_integrations),
):
    broker = integrations.broker
    queue = broker.subscribe(context.identity)

    async def event_stream():
        try:
            yield 'retry: 5000\n\n'
            while not await request.is_disconnected():
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ': keepalive\n\n'
                    continue
                yield f'event: notification\ndata: {json.dumps(payload)}\n\n'
        finally:
            broker.unsubscribe(context.identity, queue)
            logger.debug('Notification stream closed for %s', context.identity)

    return StreamingResponse(
        event_stream(),
        media_type='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


@router.patch('/{notification_id}', response_model=NotificationResponse)
def update_notification(
    notification_id: int,
    data: UpdateNotificationRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != context.identity:
        raise NotFoundError('Notification not found.')

    notification.read = data.read
    store.commit(db)
    db.refresh(notification)
    return notification
