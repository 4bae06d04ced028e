"""
services/notification_service.py — In-app notifications.

notify() is called by other services inside their own unit of work; the
route that owns the request commits. Nothing here is delivered outside the
database.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from settleup.app.errors import ErrorCode, NotFoundError
from settleup.app.models.notification import Notification


def notify(user_id: int, kind: str, payload: dict, session: Session) -> Notification:
    notification = Notification(user_id=user_id, kind=kind, payload=payload)
    session.add(notification)
    return notification


def list_notifications(
        user_id: int,
        session: Session,
        unread_only: bool = False,
) -> list[Notification]:
    """Newest first."""
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read_at.is_(None))
    stmt = stmt.order_by(Notification.id.desc())
    return list(session.execute(stmt).scalars().all())


def mark_read(notification_id: int, user_id: int, session: Session) -> Notification:
    """
    Marks one of the caller's notifications as read. Idempotent.

    Someone else's notification is reported as not found rather than
    forbidden so ids cannot be probed.
    """
    notification = session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError(
            ErrorCode.NOTIFICATION_NOT_FOUND,
            f"Notification {notification_id} does not exist.",
        )

    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        session.flush()
    return notification
