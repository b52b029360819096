"""Ticket lifecycle use-cases: status, priority, works list and deletion.

Status is a free-form field: any authorized actor may set any valid value.
Each change is one committed update; notifications, the WhatsApp message and
real-time events are submitted afterwards as background jobs and never undo
the write.
"""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import AppContext
from ..domain_errors import DownstreamError, ValidationError
from ..enums import Priority, Role, TicketAction, TicketStatus, values
from ..models import Ticket, TicketFile, TicketMember, TicketMessage, User
from ..security import authorize_ticket_action
from ..services.realtime import ticket_channel, user_channel

logger = logging.getLogger(__name__)


def _commit_ticket_write(db: Session, *, code: str, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("%s: %s", message, e, exc_info=True)
        raise DownstreamError(code=code, message=message) from e


def _publish_ticket_updated(ctx: AppContext, ticket: Ticket, **changes) -> None:
    ctx.submit_job(
        "realtime.publish",
        channels=[ticket_channel(ticket.id)],
        event="ticket_updated",
        data={"ticket_id": str(ticket.id), **changes},
    )


def notifies_client_externally(new_status: str, creator: User | None) -> bool:
    """Entering 'Pending with client' pings a client creator who has a phone."""
    return (
        new_status == TicketStatus.PENDING_WITH_CLIENT.value
        and creator is not None
        and creator.role == Role.CLIENT.value
        and bool(creator.phone)
    )


def change_status_use_case(*, db: Session, ctx: AppContext, ticket_id: UUID, status: str, current_user: User) -> Ticket:
    if status not in values(TicketStatus):
        raise ValidationError(
            code="TICKET_INVALID_STATUS",
            message="Invalid status",
            details={"allowed": values(TicketStatus)},
        )

    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.CHANGE_STATUS)
    ticket = access.ticket

    # Idempotent: re-setting the current status triggers nothing.
    if ticket.status == status:
        return ticket

    old_status = ticket.status
    ticket.status = status
    _commit_ticket_write(db, code="TICKET_STATUS_UPDATE_FAILED", message="Failed to update ticket status")
    logger.info("Ticket %s status %s -> %s by %s", ticket.ticket_number, old_status, status, current_user.id)

    ctx.submit_job(
        "notifications.status_changed",
        ticket_id=str(ticket.id),
        actor_id=str(current_user.id),
        old_status=old_status,
        new_status=status,
    )
    creator = db.query(User).filter(User.id == ticket.created_by).first() if ticket.created_by else None
    if notifies_client_externally(status, creator):
        ctx.submit_job("channels.status_whatsapp", ticket_id=str(ticket.id))
    _publish_ticket_updated(ctx, ticket, status=status)
    return ticket


def change_priority_use_case(*, db: Session, ctx: AppContext, ticket_id: UUID, priority: str, current_user: User) -> Ticket:
    if priority not in values(Priority):
        raise ValidationError(
            code="TICKET_INVALID_PRIORITY",
            message="Invalid priority. Must be P1, P2, P3, P4, or P5",
            details={"allowed": values(Priority)},
        )

    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.CHANGE_PRIORITY)
    ticket = access.ticket
    if ticket.priority == priority:
        return ticket

    old_priority = ticket.priority
    ticket.priority = priority
    _commit_ticket_write(db, code="TICKET_PRIORITY_UPDATE_FAILED", message="Failed to update ticket priority")

    ctx.submit_job(
        "notifications.priority_changed",
        ticket_id=str(ticket.id),
        actor_id=str(current_user.id),
        old_priority=old_priority,
        new_priority=priority,
    )
    _publish_ticket_updated(ctx, ticket, priority=priority)
    return ticket


def update_points_use_case(*, db: Session, ctx: AppContext, ticket_id: UUID, points: list[str], current_user: User) -> Ticket:
    if points is None:
        raise ValidationError(code="TICKET_POINTS_REQUIRED", message="Points must be a list")
    cleaned = [point.strip() for point in points if isinstance(point, str) and point.strip()]

    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.UPDATE_POINTS)
    ticket = access.ticket
    ticket.points = cleaned
    _commit_ticket_write(db, code="TICKET_POINTS_UPDATE_FAILED", message="Failed to update ticket works")

    ctx.submit_job("notifications.points_updated", ticket_id=str(ticket.id), actor_id=str(current_user.id))
    _publish_ticket_updated(ctx, ticket, points=cleaned)
    return ticket


def collect_blob_paths(db: Session, ctx: AppContext, ticket: Ticket) -> list[str]:
    """Every stored object owned by the ticket: files, message attachments, creation files."""
    paths: list[str] = []
    for (file_path,) in db.query(TicketFile.file_path).filter(TicketFile.ticket_id == ticket.id).all():
        if file_path:
            paths.append(file_path)
    for (file_url,) in db.query(TicketMessage.file_url).filter(
        TicketMessage.ticket_id == ticket.id,
        TicketMessage.file_url.isnot(None),
    ).all():
        path = ctx.blob_store.path_from_url(file_url)
        if path:
            paths.append(path)
    for item in ticket.creation_files or []:
        if item.get("url") and item.get("path"):
            paths.append(item["path"])
    return list(dict.fromkeys(paths))


def delete_ticket_use_case(*, db: Session, ctx: AppContext, ticket_id: UUID, current_user: User) -> None:
    """Hard delete with cascade; blob cleanup and member fan-out are best effort."""
    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.DELETE)
    ticket = access.ticket

    paths = collect_blob_paths(db, ctx, ticket)
    member_ids = [row[0] for row in db.query(TicketMember.user_id).filter(TicketMember.ticket_id == ticket.id).all()]
    ticket_number = ticket.ticket_number

    db.delete(ticket)
    _commit_ticket_write(db, code="TICKET_DELETE_FAILED", message="Failed to delete ticket")
    logger.info("Ticket %s deleted by %s (%d blob(s) to clean)", ticket_number, current_user.id, len(paths))

    if paths:
        ctx.submit_job("tickets.cleanup_blobs", paths=paths)
    ctx.submit_job(
        "realtime.publish",
        channels=[user_channel(uid) for uid in member_ids],
        event="ticket_deleted",
        data={"ticket_id": str(ticket_id), "ticket_number": ticket_number},
    )
