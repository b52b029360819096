"""Ticket membership endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..context import AppContext, get_app_context
from ..database import get_db
from ..models import TicketMember, User
from ..schemas import AddMembersRequest, MemberPermissionUpdate, MemberResponse, UserBrief
from ..use_cases.ticket_members import (
    add_members_use_case,
    list_available_staff,
    remove_member_use_case,
    update_member_permission_use_case,
)

router = APIRouter(prefix="/tickets/{ticket_id}/members", tags=["members"])


def _member_responses(db: Session, members: list[TicketMember]) -> list[MemberResponse]:
    user_ids = {member.user_id for member in members}
    users = {user.id: user for user in db.query(User).filter(User.id.in_(user_ids)).all()} if user_ids else {}
    return [
        MemberResponse(
            user=UserBrief.model_validate(users[member.user_id]) if member.user_id in users else UserBrief(id=member.user_id),
            added_by=member.added_by,
            added_at=member.added_at,
            can_message_client=member.can_message_client,
        )
        for member in members
    ]


@router.post("", response_model=list[MemberResponse], status_code=status.HTTP_201_CREATED)
def add_members(
    ticket_id: UUID,
    data: AddMembersRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    members = add_members_use_case(
        db=db, ctx=ctx, ticket_id=ticket_id, user_ids=data.user_ids, current_user=current_user
    )
    return _member_responses(db, members)


@router.post("/employees", response_model=list[MemberResponse], status_code=status.HTTP_201_CREATED)
def add_employees(
    ticket_id: UUID,
    data: AddMembersRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    """Add approved employees or admins; users already on the ticket are skipped."""
    members = add_members_use_case(
        db=db,
        ctx=ctx,
        ticket_id=ticket_id,
        user_ids=data.user_ids,
        current_user=current_user,
        staff_only=True,
    )
    return _member_responses(db, members)


@router.get("/available", response_model=list[UserBrief])
def get_available_staff(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    users = list_available_staff(db=db, ticket_id=ticket_id, current_user=current_user)
    return [UserBrief.model_validate(u) for u in users]


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    ticket_id: UUID,
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    remove_member_use_case(db=db, ctx=ctx, ticket_id=ticket_id, user_id=user_id, current_user=current_user)


@router.patch("/{user_id}/permissions", response_model=MemberResponse)
def update_member_permission(
    ticket_id: UUID,
    user_id: UUID,
    data: MemberPermissionUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    membership = update_member_permission_use_case(
        db=db,
        ticket_id=ticket_id,
        user_id=user_id,
        can_message_client=data.can_message_client,
        current_user=current_user,
    )
    return _member_responses(db, [membership])[0]
