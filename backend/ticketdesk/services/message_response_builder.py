"""Message serialization with batched relation loading."""
from __future__ import annotations

from collections import defaultdict
from uuid import UUID

from sqlalchemy.orm import Session

from ..enums import MessageType
from ..models import MessageSeen, Ticket, TicketMessage, User
from ..schemas import ForwardedSummary, MessageResponse, ReplySummary, SeenByResponse, UserBrief
from .message_visibility import DeletedContent, VisibilityRule, message_content

UNKNOWN_USER = {"name": "Unknown User", "email": None, "role": "unknown"}
DELETED_PLACEHOLDER = "This message was deleted"


def reply_preview(message: TicketMessage) -> str:
    if message.is_deleted:
        return "Message deleted"
    if message.message_type == MessageType.TEXT.value:
        return (message.message or "")[:200]
    if message.message_type == MessageType.IMAGE.value:
        return "Image"
    return "File"


def build_message_context(db: Session, messages: list[TicketMessage]) -> dict:
    """Preload senders, reply targets, forward sources and seen rows for a page."""
    if not messages:
        return {
            "users_by_id": {},
            "replies_by_id": {},
            "forwarded_by_id": {},
            "source_tickets_by_id": {},
            "seen_by_message_id": {},
        }

    message_ids = [message.id for message in messages]
    user_ids: set[UUID] = {message.sender_id for message in messages if message.sender_id}
    reply_ids = {message.reply_to_message_id for message in messages if message.reply_to_message_id}
    forwarded_ids = {message.forwarded_from_message_id for message in messages if message.forwarded_from_message_id}
    source_ticket_ids = {message.forwarded_from_ticket_id for message in messages if message.forwarded_from_ticket_id}

    related_ids = reply_ids | forwarded_ids
    related: dict[UUID, TicketMessage] = {}
    if related_ids:
        related = {
            message.id: message
            for message in db.query(TicketMessage).filter(TicketMessage.id.in_(related_ids)).all()
        }
        user_ids.update(message.sender_id for message in related.values() if message.sender_id)

    source_tickets_by_id: dict[UUID, Ticket] = {}
    if source_ticket_ids:
        source_tickets_by_id = {
            ticket.id: ticket
            for ticket in db.query(Ticket).filter(Ticket.id.in_(source_ticket_ids)).all()
        }

    seen_by_message_id: dict[UUID, list[MessageSeen]] = defaultdict(list)
    for row in db.query(MessageSeen).filter(MessageSeen.message_id.in_(message_ids)).all():
        seen_by_message_id[row.message_id].append(row)
        user_ids.add(row.user_id)

    users_by_id: dict[UUID, User] = {}
    if user_ids:
        users_by_id = {user.id: user for user in db.query(User).filter(User.id.in_(user_ids)).all()}

    return {
        "users_by_id": users_by_id,
        "replies_by_id": {mid: related[mid] for mid in reply_ids if mid in related},
        "forwarded_by_id": {mid: related[mid] for mid in forwarded_ids if mid in related},
        "source_tickets_by_id": source_tickets_by_id,
        "seen_by_message_id": seen_by_message_id,
    }


def _name(user: User | None, fallback: str) -> str:
    if user is None:
        return fallback
    return user.name or user.email or fallback


def message_to_response_from_context(
    message: TicketMessage,
    context: dict,
    *,
    rule: VisibilityRule | None = None,
) -> MessageResponse:
    users_by_id: dict[UUID, User] = context["users_by_id"]

    sender = users_by_id.get(message.sender_id) if message.sender_id else None
    sender_brief = UserBrief.model_validate(sender) if sender else UserBrief(id=message.sender_id, **UNKNOWN_USER)

    reply = None
    target = context["replies_by_id"].get(message.reply_to_message_id) if message.reply_to_message_id else None
    if target is not None:
        visible = rule is None or rule.admits(target)
        reply = ReplySummary(
            id=target.id,
            sender_name=_name(users_by_id.get(target.sender_id), "Unknown User"),
            preview=reply_preview(target) if visible else "Message unavailable",
        )

    forwarded = None
    if message.forwarded_from_ticket_id or message.forwarded_from_message_id:
        source_ticket = context["source_tickets_by_id"].get(message.forwarded_from_ticket_id)
        original = context["forwarded_by_id"].get(message.forwarded_from_message_id)
        forwarded = ForwardedSummary(
            ticket_id=message.forwarded_from_ticket_id,
            ticket_number=source_ticket.ticket_number if source_ticket else None,
            ticket_title=source_ticket.title if source_ticket else None,
            original_sender=_name(users_by_id.get(original.sender_id), "Unknown User") if original else None,
        )

    seen_by = [
        SeenByResponse(
            user_id=row.user_id,
            name=_name(users_by_id.get(row.user_id), "Unknown User"),
            seen_at=row.seen_at,
        )
        for row in context["seen_by_message_id"].get(message.id, [])
    ]

    content = message_content(message)
    if isinstance(content, DeletedContent):
        text, file_url, file_name, file_size = DELETED_PLACEHOLDER, None, None, None
    else:
        text, file_url, file_name, file_size = content.text, content.file_url, content.file_name, message.file_size

    return MessageResponse(
        id=message.id,
        ticket_id=message.ticket_id,
        sender=sender_brief,
        message=text,
        message_type=message.message_type,
        message_mode=message.message_mode,
        file_url=file_url,
        file_name=file_name,
        file_size=file_size,
        is_edited=message.is_edited,
        is_deleted=message.is_deleted,
        deleted_at=message.deleted_at,
        deleted_by=message.deleted_by,
        reply_to=reply,
        forwarded_from=forwarded,
        seen_by=seen_by,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def messages_to_response(
    db: Session,
    messages: list[TicketMessage],
    *,
    rule: VisibilityRule | None = None,
) -> list[MessageResponse]:
    context = build_message_context(db, messages)
    return [message_to_response_from_context(message, context, rule=rule) for message in messages]
