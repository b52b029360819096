"""Ticket message use-cases: send, read, seen, edit, delete and forward."""
from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import AppContext
from ..domain_errors import AuthorizationError, ConflictError, DownstreamError, NotFoundError, ValidationError
from ..enums import STAFF_ROLES, MessageMode, MessageType, Role, TicketAction, values
from ..models import MessageHistory, MessageSeen, TicketMessage, User, utcnow
from ..schemas import MessageCreate, MessageResponse
from ..security import authorize_ticket_action
from ..services.message_response_builder import messages_to_response
from ..services.message_visibility import ensure_can_write_mode, visibility_rule_for_access
from ..services.realtime import ticket_channel

logger = logging.getLogger(__name__)


def _get_message_or_404(db: Session, message_id: UUID) -> TicketMessage:
    message = db.query(TicketMessage).filter(TicketMessage.id == message_id).first()
    if not message:
        raise NotFoundError(code="MESSAGE_NOT_FOUND", message="Message not found")
    return message


def _commit_message_write(db: Session, *, code: str, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("%s: %s", message, e, exc_info=True)
        raise DownstreamError(code=code, message=message) from e


def _publish_message_event(ctx: AppContext, message: TicketMessage, event: str) -> None:
    # Payload carries ids only; subscribers re-read through the API, which applies visibility.
    ctx.submit_job(
        "realtime.publish",
        channels=[ticket_channel(message.ticket_id)],
        event=event,
        data={
            "ticket_id": str(message.ticket_id),
            "message_id": str(message.id),
            "message_mode": message.message_mode,
        },
    )


def default_mode_for(user: User) -> str:
    if user.role in STAFF_ROLES:
        return MessageMode.INTERNAL.value
    return MessageMode.CLIENT.value


def send_message_use_case(
    *, db: Session, ctx: AppContext, ticket_id: UUID, payload: MessageCreate, current_user: User
) -> TicketMessage:
    message_type = MessageType(payload.message_type).value
    text = (payload.message or "").strip()
    if message_type == MessageType.TEXT.value and not text:
        raise ValidationError(code="MESSAGE_EMPTY", message="Message text is required")
    if message_type != MessageType.TEXT.value and not payload.file_url:
        raise ValidationError(code="MESSAGE_FILE_REQUIRED", message="File URL is required for file messages")

    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.POST_MESSAGE)
    mode = MessageMode(payload.message_mode).value if payload.message_mode else default_mode_for(current_user)
    ensure_can_write_mode(access, mode)

    if payload.reply_to_message_id:
        target = db.query(TicketMessage).filter(TicketMessage.id == payload.reply_to_message_id).first()
        if not target or target.ticket_id != ticket_id:
            raise ValidationError(code="REPLY_TARGET_INVALID", message="Reply target is not a message of this ticket")

    message = TicketMessage(
        ticket_id=ticket_id,
        sender_id=current_user.id,
        message=text or payload.file_name,
        message_type=message_type,
        message_mode=mode,
        file_url=payload.file_url,
        file_name=payload.file_name,
        file_size=payload.file_size,
        reply_to_message_id=payload.reply_to_message_id,
    )
    db.add(message)
    _commit_message_write(db, code="MESSAGE_SEND_FAILED", message="Failed to send message")

    ctx.submit_job("notifications.message_sent", message_id=str(message.id))
    _publish_message_event(ctx, message, "message_created")
    return message


def list_messages_use_case(
    *,
    db: Session,
    ctx: AppContext,
    ticket_id: UUID,
    current_user: User,
    limit: int | None = None,
    before: datetime | None = None,
    before_id: UUID | None = None,
) -> list[MessageResponse]:
    """A page of visible messages, oldest first, ending before ``before``.

    Pass the id of the oldest message of the previous page as ``before_id`` so
    that messages sharing its timestamp are not skipped.
    """
    page_size = limit if limit is not None else ctx.settings.MESSAGE_PAGE_SIZE
    if page_size < 1 or page_size > ctx.settings.MESSAGE_PAGE_SIZE_MAX:
        raise ValidationError(
            code="MESSAGE_PAGE_SIZE_INVALID",
            message=f"limit must be between 1 and {ctx.settings.MESSAGE_PAGE_SIZE_MAX}",
        )

    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.VIEW)
    rule = visibility_rule_for_access(access, join_date_filter=ctx.settings.MESSAGE_JOIN_DATE_FILTER)

    query = rule.apply(db.query(TicketMessage).filter(TicketMessage.ticket_id == ticket_id))
    if before is not None and before_id is not None:
        query = query.filter(
            or_(
                TicketMessage.created_at < before,
                and_(TicketMessage.created_at == before, TicketMessage.id < before_id),
            )
        )
    elif before is not None:
        query = query.filter(TicketMessage.created_at < before)
    messages = (
        query.order_by(TicketMessage.created_at.desc(), TicketMessage.id.desc())
        .limit(page_size)
        .all()
    )
    messages.reverse()
    return messages_to_response(db, messages, rule=rule)


def mark_messages_seen_use_case(
    *, db: Session, ctx: AppContext, ticket_id: UUID, message_ids: list[UUID], current_user: User
) -> int:
    """Record seen receipts; already-seen messages are ignored. Returns new receipts."""
    if not message_ids:
        return 0
    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.VIEW)
    rule = visibility_rule_for_access(access, join_date_filter=ctx.settings.MESSAGE_JOIN_DATE_FILTER)

    visible_ids = {
        row[0]
        for row in rule.apply(
            db.query(TicketMessage.id).filter(
                TicketMessage.ticket_id == ticket_id,
                TicketMessage.id.in_(set(message_ids)),
            )
        ).all()
    }
    already_seen = {
        row[0]
        for row in db.query(MessageSeen.message_id).filter(
            MessageSeen.user_id == current_user.id,
            MessageSeen.message_id.in_(visible_ids),
        ).all()
    } if visible_ids else set()

    new_ids = [mid for mid in visible_ids if mid not in already_seen]
    if not new_ids:
        return 0
    db.add_all([MessageSeen(message_id=mid, user_id=current_user.id) for mid in new_ids])
    try:
        db.commit()
    except IntegrityError:
        # Another tab marked the same messages first.
        db.rollback()
        logger.info("Seen receipts for user %s raced; keeping existing rows", current_user.id)
        return 0
    return len(new_ids)


def edit_message_use_case(*, db: Session, ctx: AppContext, message_id: UUID, text: str, current_user: User) -> TicketMessage:
    new_text = (text or "").strip()
    if not new_text:
        raise ValidationError(code="MESSAGE_EMPTY", message="Message content is required")

    message = _get_message_or_404(db, message_id)
    authorize_ticket_action(db, ticket_id=message.ticket_id, user=current_user, action=TicketAction.VIEW)
    if message.is_deleted:
        raise ValidationError(code="MESSAGE_DELETED", message="Cannot edit deleted message")
    if message.message_type != MessageType.TEXT.value:
        raise ValidationError(code="MESSAGE_NOT_EDITABLE", message="Only text messages can be edited")
    if message.sender_id != current_user.id:
        raise AuthorizationError(code="MESSAGE_EDIT_FORBIDDEN", message="You can only edit your own messages")

    if message.message == new_text:
        return message

    db.add(MessageHistory(message_id=message.id, action="edit", previous_content=message.message, edited_by=current_user.id))
    message.message = new_text
    message.is_edited = True
    _commit_message_write(db, code="MESSAGE_EDIT_FAILED", message="Failed to edit message")
    _publish_message_event(ctx, message, "message_updated")
    return message


def delete_message_use_case(*, db: Session, ctx: AppContext, message_id: UUID, current_user: User) -> TicketMessage:
    """Soft delete by the sender or an admin; stored content is kept for history."""
    message = _get_message_or_404(db, message_id)
    authorize_ticket_action(db, ticket_id=message.ticket_id, user=current_user, action=TicketAction.VIEW)
    if message.is_deleted:
        raise ConflictError(code="MESSAGE_ALREADY_DELETED", message="Message already deleted")
    if message.sender_id != current_user.id and current_user.role != Role.ADMIN.value:
        raise AuthorizationError(code="MESSAGE_DELETE_FORBIDDEN", message="You can only delete your own messages")

    db.add(MessageHistory(message_id=message.id, action="delete", previous_content=message.message, edited_by=current_user.id))
    message.is_deleted = True
    message.deleted_at = utcnow()
    message.deleted_by = current_user.id
    _commit_message_write(db, code="MESSAGE_DELETE_FAILED", message="Failed to delete message")
    _publish_message_event(ctx, message, "message_deleted")
    return message


def forward_message_use_case(
    *, db: Session, ctx: AppContext, message_id: UUID, target_ticket_id: UUID, mode: str, current_user: User
) -> TicketMessage:
    if mode not in values(MessageMode):
        raise ValidationError(code="MESSAGE_MODE_INVALID", message="Mode must be client or internal")

    original = _get_message_or_404(db, message_id)
    if original.is_deleted:
        raise ValidationError(code="MESSAGE_DELETED", message="Cannot forward deleted message")

    source = authorize_ticket_action(db, ticket_id=original.ticket_id, user=current_user, action=TicketAction.VIEW)
    source_rule = visibility_rule_for_access(source, join_date_filter=ctx.settings.MESSAGE_JOIN_DATE_FILTER)
    if not source_rule.admits(original):
        raise NotFoundError(code="MESSAGE_NOT_FOUND", message="Message not found")

    target = authorize_ticket_action(db, ticket_id=target_ticket_id, user=current_user, action=TicketAction.POST_MESSAGE)
    ensure_can_write_mode(target, mode)

    forwarded = TicketMessage(
        ticket_id=target_ticket_id,
        sender_id=current_user.id,
        message=original.message,
        message_type=original.message_type,
        message_mode=mode,
        file_url=original.file_url,
        file_name=original.file_name,
        file_size=original.file_size,
        forwarded_from_message_id=original.id,
        forwarded_from_ticket_id=original.ticket_id,
    )
    db.add(forwarded)
    _commit_message_write(db, code="MESSAGE_FORWARD_FAILED", message="Failed to forward message")

    ctx.submit_job("notifications.message_sent", message_id=str(forwarded.id))
    _publish_message_event(ctx, forwarded, "message_created")
    return forwarded
