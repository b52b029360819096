"""Per-user notification inbox and preference switches."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import DownstreamError, NotFoundError
from ..models import Notification, NotificationPreference, User
from ..schemas import NotificationPreferences, NotificationPreferencesUpdate

DEFAULT_PAGE_SIZE = 50


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DownstreamError(code="NOTIFICATION_UPDATE_FAILED", message="Failed to update notifications") from e


def list_notifications(
    *, db: Session, current_user: User, unread_only: bool = False, limit: int = DEFAULT_PAGE_SIZE
) -> list[Notification]:
    query = db.query(Notification).filter(Notification.user_id == current_user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(*, db: Session, current_user: User) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id, Notification.is_read.is_(False))
        .count()
    )


def _own_notification(db: Session, notification_id: UUID, user: User) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user.id,
    ).first()
    if not notification:
        raise NotFoundError(code="NOTIFICATION_NOT_FOUND", message="Notification not found")
    return notification


def mark_read(*, db: Session, notification_id: UUID, current_user: User) -> Notification:
    notification = _own_notification(db, notification_id, current_user)
    if not notification.is_read:
        notification.is_read = True
        _commit(db)
    return notification


def mark_all_read(*, db: Session, current_user: User) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    _commit(db)
    return updated


def delete_notification(*, db: Session, notification_id: UUID, current_user: User) -> None:
    db.delete(_own_notification(db, notification_id, current_user))
    _commit(db)


def get_preferences(*, db: Session, current_user: User) -> NotificationPreferences:
    """Stored switches, or all-enabled defaults when the user never saved any."""
    preference = db.query(NotificationPreference).filter(NotificationPreference.user_id == current_user.id).first()
    if preference is None:
        return NotificationPreferences()
    return NotificationPreferences.model_validate(preference)


def update_preferences(
    *, db: Session, payload: NotificationPreferencesUpdate, current_user: User
) -> NotificationPreferences:
    preference = db.query(NotificationPreference).filter(NotificationPreference.user_id == current_user.id).first()
    if preference is None:
        preference = NotificationPreference(user_id=current_user.id)
        db.add(preference)
    for field, value in payload.model_dump().items():
        setattr(preference, field, value)
    _commit(db)
    return NotificationPreferences.model_validate(preference)
