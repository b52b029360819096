"""Ticket endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..context import AppContext, get_app_context
from ..database import get_db
from ..models import User
from ..schemas import (
    MembershipCheckResponse,
    TicketCreate,
    TicketDetailResponse,
    TicketListResponse,
    TicketPointsUpdate,
    TicketPriorityUpdate,
    TicketResponse,
    TicketStatusUpdate,
)
from ..use_cases.ticket_creation import create_ticket_use_case
from ..use_cases.ticket_lifecycle import (
    change_priority_use_case,
    change_status_use_case,
    delete_ticket_use_case,
    update_points_use_case,
)
from ..use_cases.ticket_members import check_membership, star_ticket_use_case, unstar_ticket_use_case
from ..use_cases.ticket_reads import get_ticket_details_use_case, list_tickets_use_case

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("", response_model=TicketListResponse)
def get_tickets(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    """Dashboard list; chunks that failed to load are reported in partial_failures."""
    return list_tickets_use_case(db=db, ctx=ctx, current_user=current_user)


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(
    data: TicketCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    ticket = create_ticket_use_case(db=db, ctx=ctx, payload=data, current_user=current_user)
    return TicketResponse.model_validate(ticket)


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
def get_ticket(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    return get_ticket_details_use_case(db=db, ctx=ctx, ticket_id=ticket_id, current_user=current_user)


@router.get("/{ticket_id}/membership", response_model=MembershipCheckResponse)
def get_membership_status(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return check_membership(db=db, ticket_id=ticket_id, current_user=current_user)


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
def update_status(
    ticket_id: UUID,
    data: TicketStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    ticket = change_status_use_case(db=db, ctx=ctx, ticket_id=ticket_id, status=data.status, current_user=current_user)
    return TicketResponse.model_validate(ticket)


@router.patch("/{ticket_id}/priority", response_model=TicketResponse)
def update_priority(
    ticket_id: UUID,
    data: TicketPriorityUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    ticket = change_priority_use_case(
        db=db, ctx=ctx, ticket_id=ticket_id, priority=data.priority, current_user=current_user
    )
    return TicketResponse.model_validate(ticket)


@router.put("/{ticket_id}/points", response_model=TicketResponse)
def update_points(
    ticket_id: UUID,
    data: TicketPointsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    ticket = update_points_use_case(db=db, ctx=ctx, ticket_id=ticket_id, points=data.points, current_user=current_user)
    return TicketResponse.model_validate(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_ticket(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    delete_ticket_use_case(db=db, ctx=ctx, ticket_id=ticket_id, current_user=current_user)


@router.post("/{ticket_id}/star", status_code=status.HTTP_204_NO_CONTENT)
def star_ticket(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    star_ticket_use_case(db=db, ticket_id=ticket_id, current_user=current_user)


@router.delete("/{ticket_id}/star", status_code=status.HTTP_204_NO_CONTENT)
def unstar_ticket(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    unstar_ticket_use_case(db=db, ticket_id=ticket_id, current_user=current_user)
