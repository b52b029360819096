"""Notification centre endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import (
    NotificationPreferences,
    NotificationPreferencesUpdate,
    NotificationResponse,
    UnreadCountResponse,
)
from ..use_cases import notification_centre

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
def get_notifications(
    unread_only: bool = False,
    limit: int = Query(notification_centre.DEFAULT_PAGE_SIZE, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = notification_centre.list_notifications(
        db=db, current_user=current_user, unread_only=unread_only, limit=limit
    )
    return [NotificationResponse.model_validate(n) for n in items]


@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return UnreadCountResponse(unread_count=notification_centre.unread_count(db=db, current_user=current_user))


@router.get("/preferences", response_model=NotificationPreferences)
def get_preferences(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return notification_centre.get_preferences(db=db, current_user=current_user)


@router.put("/preferences", response_model=NotificationPreferences)
def update_preferences(
    data: NotificationPreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return notification_centre.update_preferences(db=db, payload=data, current_user=current_user)


@router.post("/read-all")
def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"updated": notification_centre.mark_all_read(db=db, current_user=current_user)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = notification_centre.mark_read(db=db, notification_id=notification_id, current_user=current_user)
    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification_centre.delete_notification(db=db, notification_id=notification_id, current_user=current_user)
