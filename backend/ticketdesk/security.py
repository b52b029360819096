"""Ticket access policy: role first, membership second."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from .domain_errors import AuthorizationError, NotFoundError, ValidationError
from .enums import PRIVILEGED_ROLES, ApprovalStatus, Role, TicketAction
from .models import Ticket, TicketMember, User

_ADMIN_ONLY = frozenset({
    TicketAction.CHANGE_PRIORITY,
    TicketAction.MANAGE_PERMISSIONS,
    TicketAction.DELETE,
    TicketAction.EXPORT_ALL,
})

_EMPLOYEE_MEMBER_GATED = frozenset({
    TicketAction.POST_MESSAGE,
    TicketAction.ADD_MEMBER,
    TicketAction.REMOVE_MEMBER,
    TicketAction.CHANGE_STATUS,
    TicketAction.UPDATE_POINTS,
})

_FREELANCER_MEMBER_GATED = frozenset({
    TicketAction.VIEW,
    TicketAction.POST_MESSAGE,
    TicketAction.CHANGE_STATUS,
})

_CLIENT_PARTICIPANT_GATED = frozenset({
    TicketAction.VIEW,
    TicketAction.POST_MESSAGE,
})

_DENIAL_MESSAGES = {
    TicketAction.VIEW: "You don't have access to this ticket",
    TicketAction.POST_MESSAGE: "You are not allowed to send messages in this ticket",
    TicketAction.ADD_MEMBER: "You are not allowed to add members to this ticket",
    TicketAction.REMOVE_MEMBER: "You are not allowed to remove members from this ticket",
    TicketAction.CHANGE_STATUS: "You are not allowed to change the status of this ticket",
    TicketAction.CHANGE_PRIORITY: "Only admins can change ticket priority",
    TicketAction.UPDATE_POINTS: "You are not allowed to update the works of this ticket",
    TicketAction.MANAGE_PERMISSIONS: "Only admins can change member permissions",
    TicketAction.DELETE: "Only admins can delete tickets",
    TicketAction.EXPORT_ALL: "Only admins can export tickets",
}


def is_action_allowed(
    role: str | None,
    action: TicketAction,
    *,
    is_member: bool,
    is_creator: bool,
    is_self_addition: bool = False,
) -> bool:
    """Pure decision table for a single (role, action) pair."""
    if role == Role.ADMIN.value:
        return True
    if action in _ADMIN_ONLY:
        return False

    if role == Role.EMPLOYEE.value:
        # Employees work the whole queue, so reading is not membership-gated.
        if action == TicketAction.VIEW:
            return True
        if action == TicketAction.ADD_MEMBER and is_self_addition:
            return True
        return action in _EMPLOYEE_MEMBER_GATED and is_member

    if role == Role.FREELANCER.value:
        return action in _FREELANCER_MEMBER_GATED and is_member

    if role == Role.CLIENT.value:
        return action in _CLIENT_PARTICIPANT_GATED and (is_member or is_creator)

    return False


def is_approved(user: User) -> bool:
    return user.approval_status == ApprovalStatus.APPROVED.value


def can_view_all_tickets(user: User) -> bool:
    """Approved roles whose dashboard working set is every ticket."""
    return is_approved(user) and user.role in PRIVILEGED_ROLES


@dataclass(frozen=True)
class TicketAccess:
    """A user's standing on one ticket, resolved once per request."""

    user: User
    ticket: Ticket
    membership: TicketMember | None

    @property
    def is_creator(self) -> bool:
        return self.ticket.created_by is not None and self.ticket.created_by == self.user.id

    @property
    def is_member(self) -> bool:
        return self.membership is not None

    @property
    def role(self) -> str | None:
        return self.user.role

    def allows(self, action: TicketAction, *, target_user_ids: Iterable[UUID] = ()) -> bool:
        # A role grants nothing until an admin approved it.
        if not is_approved(self.user):
            return False
        targets = set(target_user_ids)
        return is_action_allowed(
            self.user.role,
            action,
            is_member=self.is_member,
            is_creator=self.is_creator,
            is_self_addition=bool(targets) and targets == {self.user.id},
        )

    def require(self, action: TicketAction, *, target_user_ids: Iterable[UUID] = ()) -> None:
        if not self.allows(action, target_user_ids=target_user_ids):
            raise AuthorizationError(
                code="TICKET_ACTION_FORBIDDEN",
                message=_DENIAL_MESSAGES[action],
                details={"action": action.value},
            )


def get_ticket_or_404(db: Session, ticket_id: UUID) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError(code="TICKET_NOT_FOUND", message="Ticket not found")
    return ticket


def get_membership(db: Session, *, ticket_id: UUID, user_id: UUID) -> TicketMember | None:
    return db.query(TicketMember).filter(
        TicketMember.ticket_id == ticket_id,
        TicketMember.user_id == user_id,
    ).first()


def resolve_ticket_access(db: Session, *, ticket_id: UUID, user: User) -> TicketAccess:
    ticket = get_ticket_or_404(db, ticket_id)
    membership = get_membership(db, ticket_id=ticket_id, user_id=user.id)
    return TicketAccess(user=user, ticket=ticket, membership=membership)


def authorize_ticket_action(
    db: Session,
    *,
    ticket_id: UUID,
    user: User,
    action: TicketAction,
    target_user_ids: Iterable[UUID] = (),
) -> TicketAccess:
    """Load the ticket, resolve membership and enforce ``action``."""
    access = resolve_ticket_access(db, ticket_id=ticket_id, user=user)
    access.require(action, target_user_ids=target_user_ids)
    return access


def check_member_removal(access: TicketAccess, target: User) -> None:
    """Rules on top of REMOVE_MEMBER that depend on who is being removed."""
    if access.ticket.created_by == target.id:
        raise AuthorizationError(
            code="TICKET_CREATOR_PROTECTED",
            message="Cannot remove the ticket creator",
        )
    if access.role != Role.EMPLOYEE.value:
        return
    if target.id == access.user.id:
        raise ValidationError(
            code="MEMBER_SELF_REMOVAL",
            message="You cannot remove yourself from the ticket",
        )
    if target.role == Role.ADMIN.value:
        raise AuthorizationError(
            code="MEMBER_REMOVAL_FORBIDDEN",
            message="Employees cannot remove admins from tickets",
        )
