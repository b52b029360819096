"""Ticket chat endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..context import AppContext, get_app_context
from ..database import get_db
from ..models import User
from ..schemas import MessageCreate, MessageEdit, MessageForward, MessageResponse, MessagesSeenRequest
from ..services.message_response_builder import messages_to_response
from ..use_cases.ticket_messages import (
    delete_message_use_case,
    edit_message_use_case,
    forward_message_use_case,
    list_messages_use_case,
    mark_messages_seen_use_case,
    send_message_use_case,
)

router = APIRouter(tags=["messages"])


@router.get("/tickets/{ticket_id}/messages", response_model=list[MessageResponse])
def get_messages(
    ticket_id: UUID,
    limit: Optional[int] = Query(None, ge=1),
    before: Optional[datetime] = None,
    before_id: Optional[UUID] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    """Messages visible to the caller, oldest first; page backwards with ``before`` and ``before_id``."""
    return list_messages_use_case(
        db=db,
        ctx=ctx,
        ticket_id=ticket_id,
        current_user=current_user,
        limit=limit,
        before=before,
        before_id=before_id,
    )


@router.post("/tickets/{ticket_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def send_message(
    ticket_id: UUID,
    data: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    message = send_message_use_case(db=db, ctx=ctx, ticket_id=ticket_id, payload=data, current_user=current_user)
    return messages_to_response(db, [message])[0]


@router.post("/tickets/{ticket_id}/messages/seen")
def mark_seen(
    ticket_id: UUID,
    data: MessagesSeenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    marked = mark_messages_seen_use_case(
        db=db, ctx=ctx, ticket_id=ticket_id, message_ids=data.message_ids, current_user=current_user
    )
    return {"marked": marked}


@router.patch("/messages/{message_id}", response_model=MessageResponse)
def edit_message(
    message_id: UUID,
    data: MessageEdit,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    message = edit_message_use_case(db=db, ctx=ctx, message_id=message_id, text=data.message, current_user=current_user)
    return messages_to_response(db, [message])[0]


@router.delete("/messages/{message_id}", response_model=MessageResponse)
def delete_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    message = delete_message_use_case(db=db, ctx=ctx, message_id=message_id, current_user=current_user)
    return messages_to_response(db, [message])[0]


@router.post("/messages/{message_id}/forward", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def forward_message(
    message_id: UUID,
    data: MessageForward,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    message = forward_message_use_case(
        db=db,
        ctx=ctx,
        message_id=message_id,
        target_ticket_id=data.target_ticket_id,
        mode=data.message_mode,
        current_user=current_user,
    )
    return messages_to_response(db, [message])[0]
