"""Ticket membership use-cases (add, remove, permissions, stars)."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import AppContext
from ..domain_errors import AuthorizationError, ConflictError, DownstreamError, NotFoundError, ValidationError
from ..enums import ApprovalStatus, PRIVILEGED_ROLES, Role, TicketAction
from ..models import StarredTicket, TicketMember, User
from ..security import (
    authorize_ticket_action,
    check_member_removal,
    get_membership,
    get_ticket_or_404,
    resolve_ticket_access,
)
from ..services.realtime import ticket_channel, user_channel

logger = logging.getLogger(__name__)


def _commit(db: Session, *, code: str, message: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(code=code, message=message) from e
    except SQLAlchemyError as e:
        db.rollback()
        raise DownstreamError(code="STORE_WRITE_FAILED", message="Failed to save changes") from e


def add_members_use_case(
    *,
    db: Session,
    ctx: AppContext,
    ticket_id: UUID,
    user_ids: list[UUID],
    current_user: User,
    staff_only: bool = False,
) -> list[TicketMember]:
    """Add users to a ticket; ``staff_only`` limits targets to approved employees and admins."""
    requested = list(dict.fromkeys(user_ids))
    if not requested:
        raise ValidationError(code="MEMBERS_REQUIRED", message="At least one user is required")

    access = authorize_ticket_action(
        db,
        ticket_id=ticket_id,
        user=current_user,
        action=TicketAction.ADD_MEMBER,
        target_user_ids=requested,
    )

    users = {user.id: user for user in db.query(User).filter(User.id.in_(requested)).all()}
    missing = [str(uid) for uid in requested if uid not in users]
    if missing:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found", details={"user_ids": missing})
    if staff_only:
        invalid = [
            str(uid) for uid, user in users.items()
            if user.role not in PRIVILEGED_ROLES or user.approval_status != ApprovalStatus.APPROVED.value
        ]
        if invalid:
            raise ValidationError(
                code="MEMBERS_NOT_STAFF",
                message="Only approved employees and admins can be added here",
                details={"user_ids": invalid},
            )

    existing = {
        row[0]
        for row in db.query(TicketMember.user_id).filter(
            TicketMember.ticket_id == ticket_id,
            TicketMember.user_id.in_(requested),
        ).all()
    }
    new_ids = [uid for uid in requested if uid not in existing]
    if not new_ids:
        raise ConflictError(code="MEMBERS_ALREADY_PRESENT", message="All selected users are already members")

    members = [
        TicketMember(ticket_id=ticket_id, user_id=uid, added_by=current_user.id, can_message_client=False)
        for uid in new_ids
    ]
    db.add_all(members)
    _commit(db, code="MEMBERS_ALREADY_PRESENT", message="Some users were added concurrently; retry")

    ctx.submit_job(
        "notifications.members_added",
        ticket_id=str(ticket_id),
        user_ids=[str(uid) for uid in new_ids],
        added_by=str(current_user.id),
    )
    ctx.submit_job(
        "realtime.publish",
        channels=[ticket_channel(ticket_id), *(user_channel(uid) for uid in new_ids)],
        event="members_added",
        data={"ticket_id": str(ticket_id), "user_ids": [str(uid) for uid in new_ids]},
    )
    logger.info("Added %d member(s) to ticket %s", len(new_ids), access.ticket.ticket_number)
    return members


def list_available_staff(*, db: Session, ticket_id: UUID, current_user: User) -> list[User]:
    """Approved employees and admins not yet on the ticket."""
    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.VIEW)
    if access.role not in PRIVILEGED_ROLES:
        raise AuthorizationError(code="TICKET_ACTION_FORBIDDEN", message="Only staff can list available employees")
    member_ids = db.query(TicketMember.user_id).filter(TicketMember.ticket_id == ticket_id)
    return (
        db.query(User)
        .filter(
            User.role.in_(sorted(PRIVILEGED_ROLES)),
            User.approval_status == ApprovalStatus.APPROVED.value,
            ~User.id.in_(member_ids),
        )
        .order_by(User.name)
        .all()
    )


def remove_member_use_case(*, db: Session, ctx: AppContext, ticket_id: UUID, user_id: UUID, current_user: User) -> None:
    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.REMOVE_MEMBER)

    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found")
    check_member_removal(access, target)

    membership = get_membership(db, ticket_id=ticket_id, user_id=user_id)
    if not membership:
        raise NotFoundError(code="MEMBER_NOT_FOUND", message="User is not a member of this ticket")

    db.delete(membership)
    _commit(db, code="MEMBER_REMOVE_CONFLICT", message="Member could not be removed")

    ctx.submit_job(
        "notifications.member_removed",
        ticket_id=str(ticket_id),
        user_id=str(user_id),
        removed_by=str(current_user.id),
    )
    ctx.submit_job(
        "realtime.publish",
        channels=[ticket_channel(ticket_id), user_channel(user_id)],
        event="member_removed",
        data={"ticket_id": str(ticket_id), "user_id": str(user_id)},
    )


def update_member_permission_use_case(
    *, db: Session, ticket_id: UUID, user_id: UUID, can_message_client: bool, current_user: User
) -> TicketMember:
    """Toggle an employee's right to write in client mode."""
    authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.MANAGE_PERMISSIONS)

    membership = get_membership(db, ticket_id=ticket_id, user_id=user_id)
    if not membership:
        raise NotFoundError(code="MEMBER_NOT_FOUND", message="User is not a member of this ticket")
    target = db.query(User).filter(User.id == user_id).first()
    if not target or target.role != Role.EMPLOYEE.value:
        raise ValidationError(
            code="PERMISSION_TARGET_NOT_EMPLOYEE",
            message="Client messaging permission applies to employees only",
        )

    if membership.can_message_client == can_message_client:
        return membership
    membership.can_message_client = can_message_client
    _commit(db, code="MEMBER_UPDATE_CONFLICT", message="Member could not be updated")
    return membership


def check_membership(*, db: Session, ticket_id: UUID, current_user: User) -> dict:
    access = resolve_ticket_access(db, ticket_id=ticket_id, user=current_user)
    membership = access.membership
    return {
        "is_member": access.is_member or access.is_creator,
        "is_creator": access.is_creator,
        "can_message_client": bool(membership and membership.can_message_client),
        "added_at": membership.added_at if membership else None,
    }


def star_ticket_use_case(*, db: Session, ticket_id: UUID, current_user: User) -> None:
    authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.VIEW)
    existing = db.query(StarredTicket).filter(
        StarredTicket.ticket_id == ticket_id,
        StarredTicket.user_id == current_user.id,
    ).first()
    # Idempotent: starring twice keeps one row.
    if existing:
        return
    db.add(StarredTicket(ticket_id=ticket_id, user_id=current_user.id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Ticket %s already starred by %s", ticket_id, current_user.id)


def unstar_ticket_use_case(*, db: Session, ticket_id: UUID, current_user: User) -> None:
    # Only the caller's own row is touched, so no access check.
    get_ticket_or_404(db, ticket_id)
    db.query(StarredTicket).filter(
        StarredTicket.ticket_id == ticket_id,
        StarredTicket.user_id == current_user.id,
    ).delete(synchronize_session=False)
    db.commit()
