"""User profile and approval endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..context import AppContext, get_app_context
from ..database import get_db
from ..models import User
from ..schemas import AccessRequest, RejectUserRequest, UserResponse
from ..use_cases.user_accounts import (
    approve_user_use_case,
    reject_user_use_case,
    submit_access_request_use_case,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.post("/me/access-request", response_model=UserResponse)
def request_access(
    data: AccessRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    """Submit name and role; the account stays pending until an admin decides."""
    user = submit_access_request_use_case(db=db, ctx=ctx, payload=data, current_user=current_user)
    return UserResponse.model_validate(user)


@router.get("", response_model=list[UserResponse])
def get_users(
    approval_status: Optional[str] = None,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Get all users."""
    query = db.query(User)
    if approval_status:
        query = query.filter(User.approval_status == approval_status)
    return [UserResponse.model_validate(u) for u in query.order_by(User.created_at.desc()).all()]


@router.post("/{user_id}/approve", response_model=UserResponse)
def approve_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    user = approve_user_use_case(db=db, ctx=ctx, user_id=user_id, current_user=current_user)
    return UserResponse.model_validate(user)


@router.post("/{user_id}/reject", response_model=UserResponse)
def reject_user(
    user_id: UUID,
    data: RejectUserRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    user = reject_user_use_case(db=db, ctx=ctx, user_id=user_id, reason=data.reason, current_user=current_user)
    return UserResponse.model_validate(user)
