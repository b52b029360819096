"""Notification fan-out: recipients, preference gating and duplicate suppression.

Every event handler builds drafts for its base recipient set and hands them to
``deliver``, which drops the actor, applies stored preferences (missing row
means enabled) and skips recipients that already hold an unread copy of a
deduplicated notification type. Rows are added to the session; the caller
commits.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from ..enums import STAFF_ROLES, ApprovalStatus, MessageMode, MessageType, NotificationType, Role
from ..models import Notification, NotificationPreference, Ticket, TicketMember, TicketMessage, User
from .channels import SendResult

logger = logging.getLogger(__name__)


class NotificationCategory(str, Enum):
    """Preference-controlled notification families."""

    CHAT_CLIENTS = "chat_clients"
    CHAT_INTERNAL = "chat_internal"
    STATUS_CHANGE = "status_change"
    TICKET_CREATION = "ticket_creation"
    TICKET_ASSIGNED = "ticket_assigned"


PREFERENCE_FIELDS: dict[NotificationCategory, str] = {
    NotificationCategory.CHAT_CLIENTS: "chat_clients",
    NotificationCategory.CHAT_INTERNAL: "chat_internal",
    NotificationCategory.STATUS_CHANGE: "status_change",
    NotificationCategory.TICKET_CREATION: "ticket_creation",
    NotificationCategory.TICKET_ASSIGNED: "ticket_assigned",
}

# Categories users cannot switch off.
ALWAYS_DELIVERED = frozenset({NotificationCategory.TICKET_ASSIGNED})

# Types where an unread copy for the same subject blocks another insert.
DEDUPLICATED_TYPES = frozenset({NotificationType.TICKET_ASSIGNED.value, NotificationType.USER_REQUEST.value})


def preference_field(category: NotificationCategory) -> str:
    return PREFERENCE_FIELDS[category]


def is_category_enabled(preference: NotificationPreference | None, category: NotificationCategory) -> bool:
    if category in ALWAYS_DELIVERED or preference is None:
        return True
    return bool(getattr(preference, preference_field(category)))


@dataclass(frozen=True)
class NotificationDraft:
    user_id: UUID
    type: str
    title: str
    message: str
    related_user_id: UUID | None = None
    related_ticket_id: UUID | None = None
    is_read: bool = False


def ticket_label(ticket: Ticket) -> str:
    return ticket.ticket_number or ticket.uid or str(ticket.id)


def display_name(user: User | None, fallback: str = "Someone") -> str:
    if user is None:
        return fallback
    return user.name or user.email or fallback


def _load_preferences(db: Session, user_ids: set[UUID]) -> dict[UUID, NotificationPreference]:
    if not user_ids:
        return {}
    rows = db.query(NotificationPreference).filter(NotificationPreference.user_id.in_(user_ids)).all()
    return {row.user_id: row for row in rows}


def _existing_unread_keys(db: Session, drafts: list[NotificationDraft]) -> set[tuple]:
    deduped = [draft for draft in drafts if draft.type in DEDUPLICATED_TYPES]
    if not deduped:
        return set()
    rows = db.query(Notification).filter(
        Notification.type.in_({draft.type for draft in deduped}),
        Notification.user_id.in_({draft.user_id for draft in deduped}),
        Notification.is_read.is_(False),
    ).all()
    return {_dedupe_key(row) for row in rows}


def _dedupe_key(item) -> tuple:
    if item.type == NotificationType.USER_REQUEST.value:
        return (item.type, item.related_user_id, item.user_id)
    return (item.type, item.related_ticket_id, item.user_id)


def deliver(
    db: Session,
    drafts: Iterable[NotificationDraft],
    *,
    category: NotificationCategory | None = None,
    actor_id: UUID | None = None,
) -> list[Notification]:
    """Persist one notification per surviving recipient."""
    unique: dict[UUID, NotificationDraft] = {}
    for draft in drafts:
        if actor_id is not None and draft.user_id == actor_id:
            continue
        unique.setdefault(draft.user_id, draft)
    if not unique:
        return []

    candidates = list(unique.values())
    if category is not None and category not in ALWAYS_DELIVERED:
        preferences = _load_preferences(db, set(unique))
        candidates = [
            draft for draft in candidates
            if is_category_enabled(preferences.get(draft.user_id), category)
        ]

    existing = _existing_unread_keys(db, candidates)
    created: list[Notification] = []
    for draft in candidates:
        if draft.type in DEDUPLICATED_TYPES and _dedupe_key(draft) in existing:
            logger.info("Skipping duplicate notification: %s", _dedupe_key(draft))
            continue
        notification = Notification(
            user_id=draft.user_id,
            type=draft.type,
            title=draft.title,
            message=draft.message,
            related_user_id=draft.related_user_id,
            related_ticket_id=draft.related_ticket_id,
            is_read=draft.is_read,
        )
        db.add(notification)
        created.append(notification)
    return created


def _member_ids(db: Session, ticket_id: UUID) -> list[UUID]:
    return [row[0] for row in db.query(TicketMember.user_id).filter(TicketMember.ticket_id == ticket_id).all()]


def _users_by_id(db: Session, user_ids: Iterable[UUID]) -> dict[UUID, User]:
    ids = set(user_ids)
    if not ids:
        return {}
    return {user.id: user for user in db.query(User).filter(User.id.in_(ids)).all()}


def _approved_admin_ids(db: Session) -> list[UUID]:
    rows = db.query(User.id).filter(
        User.role == Role.ADMIN.value,
        User.approval_status == ApprovalStatus.APPROVED.value,
    ).all()
    return [row[0] for row in rows]


def message_category(*, sender_role: str | None, mode: str) -> NotificationCategory:
    if sender_role == Role.CLIENT.value or mode == MessageMode.CLIENT.value:
        return NotificationCategory.CHAT_CLIENTS
    return NotificationCategory.CHAT_INTERNAL


def notify_message_sent(db: Session, *, message: TicketMessage, ticket: Ticket, sender: User | None) -> list[Notification]:
    member_ids = [uid for uid in _member_ids(db, ticket.id) if uid != message.sender_id]
    if message.message_mode == MessageMode.INTERNAL.value:
        users = _users_by_id(db, member_ids)
        member_ids = [
            uid for uid in member_ids
            if uid in users
            and users[uid].role in STAFF_ROLES
            and users[uid].approval_status == ApprovalStatus.APPROVED.value
        ]

    category = message_category(sender_role=sender.role if sender else None, mode=message.message_mode)
    verb = "shared a file in" if message.message_type in (MessageType.FILE.value, MessageType.IMAGE.value) else "sent a message in"
    text = f'{display_name(sender)} {verb} "{ticket.title}" ({ticket_label(ticket)})'
    if message.message_mode == MessageMode.INTERNAL.value:
        text += " [Internal]"

    drafts = [
        NotificationDraft(
            user_id=uid,
            type=category.value,
            title="New Message",
            message=text,
            related_user_id=message.sender_id,
            related_ticket_id=ticket.id,
        )
        for uid in member_ids
    ]
    return deliver(db, drafts, category=category, actor_id=message.sender_id)


def notify_status_changed(
    db: Session, *, ticket: Ticket, actor: User, old_status: str, new_status: str
) -> list[Notification]:
    text = f'"{ticket.title}" ({ticket_label(ticket)}) status changed: {old_status} → {new_status}'
    drafts = [
        NotificationDraft(
            user_id=uid,
            type=NotificationType.STATUS_CHANGE.value,
            title="Ticket Status Updated",
            message=text,
            related_user_id=actor.id,
            related_ticket_id=ticket.id,
        )
        for uid in _member_ids(db, ticket.id)
    ]
    return deliver(db, drafts, category=NotificationCategory.STATUS_CHANGE, actor_id=actor.id)


def notify_ticket_created(db: Session, *, ticket: Ticket, creator: User) -> list[Notification]:
    text = f'{display_name(creator)} created "{ticket.title}" ({ticket_label(ticket)})'
    drafts = [
        NotificationDraft(
            user_id=uid,
            type=NotificationType.TICKET_CREATION.value,
            title="New Ticket Created",
            message=text,
            related_user_id=creator.id,
            related_ticket_id=ticket.id,
        )
        for uid in _approved_admin_ids(db)
    ]
    return deliver(db, drafts, category=NotificationCategory.TICKET_CREATION, actor_id=creator.id)


def notify_members_added(
    db: Session, *, ticket: Ticket, user_ids: Iterable[UUID], added_by: User
) -> list[Notification]:
    text = f'{display_name(added_by)} added you to "{ticket.title}" ({ticket_label(ticket)})'
    drafts = [
        NotificationDraft(
            user_id=uid,
            type=NotificationType.TICKET_ASSIGNED.value,
            title="Added to Ticket",
            message=text,
            related_user_id=added_by.id,
            related_ticket_id=ticket.id,
        )
        for uid in user_ids
    ]
    # Adding yourself does not notify.
    return deliver(db, drafts, category=NotificationCategory.TICKET_ASSIGNED, actor_id=added_by.id)


def notify_member_removed(db: Session, *, ticket: Ticket, user_id: UUID, removed_by: User) -> list[Notification]:
    draft = NotificationDraft(
        user_id=user_id,
        type=NotificationType.TICKET_UPDATE.value,
        title="Removed from Ticket",
        message=f'{display_name(removed_by)} removed you from "{ticket.title}" ({ticket_label(ticket)})',
        related_user_id=removed_by.id,
        related_ticket_id=ticket.id,
    )
    return deliver(db, [draft], actor_id=removed_by.id)


def _non_admin_member_ids(db: Session, ticket_id: UUID) -> list[UUID]:
    users = _users_by_id(db, _member_ids(db, ticket_id))
    return [uid for uid, user in users.items() if user.role != Role.ADMIN.value]


def notify_priority_changed(
    db: Session, *, ticket: Ticket, actor: User, old_priority: str, new_priority: str
) -> list[Notification]:
    text = f'"{ticket.title}" ({ticket_label(ticket)}) priority changed: {old_priority} → {new_priority}'
    drafts = [
        NotificationDraft(
            user_id=uid,
            type=NotificationType.PRIORITY_UPDATED.value,
            title="Priority Updated",
            message=text,
            related_user_id=actor.id,
            related_ticket_id=ticket.id,
        )
        for uid in _non_admin_member_ids(db, ticket.id)
    ]
    return deliver(db, drafts, actor_id=actor.id)


def notify_points_updated(db: Session, *, ticket: Ticket, actor: User) -> list[Notification]:
    text = f'{display_name(actor)} updated the works of "{ticket.title}" ({ticket_label(ticket)})'
    drafts = [
        NotificationDraft(
            user_id=uid,
            type=NotificationType.WORKS_UPDATED.value,
            title="Works Updated",
            message=text,
            related_user_id=actor.id,
            related_ticket_id=ticket.id,
        )
        for uid in _non_admin_member_ids(db, ticket.id)
    ]
    return deliver(db, drafts, actor_id=actor.id)


def notify_user_request(db: Session, *, user: User) -> list[Notification]:
    name = display_name(user, fallback="A user")
    if user.role == Role.CLIENT.value:
        title = "New Client Registration"
        text = f"{name} joined as client"
    else:
        title = "New User Registration"
        text = f"{name} is waiting for approval as {user.role}"
    drafts = [
        NotificationDraft(
            user_id=uid,
            type=NotificationType.USER_REQUEST.value,
            title=title,
            message=text,
            related_user_id=user.id,
        )
        for uid in _approved_admin_ids(db)
    ]
    return deliver(db, drafts, actor_id=user.id)


def notify_user_decision(db: Session, *, user: User, approved: bool, decided_by: UUID | None = None) -> list[Notification]:
    if approved:
        draft = NotificationDraft(
            user_id=user.id,
            type=NotificationType.USER_APPROVED.value,
            title="Account Approved",
            message="Your account has been approved! You can now access all features.",
            related_user_id=decided_by,
        )
    else:
        draft = NotificationDraft(
            user_id=user.id,
            type=NotificationType.USER_REJECTED.value,
            title="Account Rejected",
            message=(
                "Unfortunately, your account request has been rejected. "
                "Please contact support for more information."
            ),
            related_user_id=decided_by,
        )
    return deliver(db, [draft])


def record_whatsapp_outcome(db: Session, *, ticket: Ticket, recipient: User, result: SendResult) -> list[Notification]:
    """Audit trail of an external send, stored already read."""
    if result.success:
        draft = NotificationDraft(
            user_id=recipient.id,
            type=NotificationType.WHATSAPP_SENT.value,
            title="WhatsApp Sent",
            message=f"Status update for {ticket_label(ticket)} sent via WhatsApp",
            related_ticket_id=ticket.id,
            is_read=True,
        )
    else:
        draft = NotificationDraft(
            user_id=recipient.id,
            type=NotificationType.WHATSAPP_FAILED.value,
            title="WhatsApp Failed",
            message=f"WhatsApp status update for {ticket_label(ticket)} failed: {result.error}",
            related_ticket_id=ticket.id,
            is_read=True,
        )
    return deliver(db, [draft])
