from __future__ import annotations

from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import Notification, NotificationType, Profile

logger = structlog.get_logger(__name__)


class RecipientResolver(Protocol):
    def resolve(self, db: Session) -> list[int]: ...


class RoleRecipientResolver:
    """Addresses profiles by role; ``first`` keeps only the lowest id, ``all`` addresses every match."""

    def __init__(self, role: str = 'owner', policy: str = 'all') -> None:
        if policy not in ('all', 'first'):
            raise ValueError(f'Unknown recipient policy: {policy}')
        self.role = role
        self.policy = policy

    def resolve(self, db: Session) -> list[int]:
        query = (
            select(Profile.id)
            .where(Profile.role == self.role, Profile.active.is_(True))
            .order_by(Profile.id.asc())
        )
        if self.policy == 'first':
            query = query.limit(1)
        return list(db.execute(query).scalars().all())


class StaticRecipientResolver:
    def __init__(self, user_ids: list[int]) -> None:
        self.user_ids = list(user_ids)

    def resolve(self, db: Session) -> list[int]:
        return list(self.user_ids)


class Notifier:
    """Best-effort notification writer.

    Each row is written inside its own SAVEPOINT. A failed write rolls back
    only that savepoint, and a failing resolver sends nothing. Both are logged
    and never reach the caller, so the primary write in the surrounding
    transaction is unaffected.
    """

    def __init__(self, resolver: RecipientResolver) -> None:
        self.resolver = resolver

    def notify(
        self,
        db: Session,
        *,
        user_id: int,
        title: str,
        body: str,
        type: NotificationType | str,
        reference_id: object | None = None,
    ) -> Notification | None:
        kind = type.value if isinstance(type, NotificationType) else str(type)
        notification = Notification(
            user_id=user_id,
            title=title,
            body=body,
            type=kind,
            reference_id=str(reference_id) if reference_id is not None else None,
            is_read=False,
        )
        try:
            with db.begin_nested():
                db.add(notification)
        except Exception:
            logger.warning('notification.failed', user_id=user_id, type=kind, reference_id=reference_id, exc_info=True)
            return None
        return notification

    def notify_recipients(
        self,
        db: Session,
        *,
        title: str,
        body: str,
        type: NotificationType | str,
        reference_id: object | None = None,
        recipients: RecipientResolver | None = None,
    ) -> list[Notification]:
        kind = type.value if isinstance(type, NotificationType) else str(type)
        resolver = recipients or self.resolver
        try:
            user_ids = resolver.resolve(db)
        except Exception:
            logger.warning('notification.failed', stage='resolve_recipients', type=kind, exc_info=True)
            return []

        if not user_ids:
            logger.info('notification.no_recipients', type=kind, reference_id=reference_id)
            return []

        sent = []
        for user_id in user_ids:
            notification = self.notify(
                db,
                user_id=user_id,
                title=title,
                body=body,
                type=type,
                reference_id=reference_id,
            )
            if notification is not None:
                sent.append(notification)
        return sent


def notification_to_dict(notification: Notification) -> dict:
    return {
        'id': notification.id,
        'user_id': notification.user_id,
        'title': notification.title,
        'body': notification.body,
        'type': notification.type,
        'reference_id': notification.reference_id,
        'is_read': notification.is_read,
        'created_at': notification.created_at,
    }


def list_notifications(db: Session, *, user_id: int, limit: int = 50) -> list[dict]:
    rows = db.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    ).scalars().all()
    return [notification_to_dict(row) for row in rows]


def mark_notification_read(db: Session, *, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification:
        raise NotFoundError('Notification not found')
    notification.is_read = True
    db.flush()
    return notification
