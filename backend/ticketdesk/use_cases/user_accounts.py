"""Account access requests and admin approval decisions."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import AppContext
from ..domain_errors import AuthorizationError, ConflictError, DownstreamError, NotFoundError, ValidationError
from ..enums import ApprovalStatus, Role
from ..models import AdminAction, User, utcnow
from ..schemas import AccessRequest

logger = logging.getLogger(__name__)

REQUESTABLE_ROLES = (Role.EMPLOYEE.value, Role.FREELANCER.value, Role.CLIENT.value)
DEFAULT_REJECTION_REASON = "No reason provided"


def _require_admin(user: User) -> None:
    if user.role != Role.ADMIN.value or user.approval_status != ApprovalStatus.APPROVED.value:
        raise AuthorizationError(code="ADMIN_REQUIRED", message="Admin access required")


def _get_user_or_404(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found")
    return user


def _commit(db: Session, *, code: str, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("%s: %s", message, e, exc_info=True)
        raise DownstreamError(code=code, message=message) from e


def submit_access_request_use_case(*, db: Session, ctx: AppContext, payload: AccessRequest, current_user: User) -> User:
    """First-time profile: the user picks a role and waits for an admin."""
    name = payload.name.strip()
    if not name:
        raise ValidationError(code="USER_NAME_REQUIRED", message="Name is required")
    if payload.role not in REQUESTABLE_ROLES:
        raise ValidationError(
            code="USER_ROLE_INVALID",
            message="Invalid role",
            details={"allowed": list(REQUESTABLE_ROLES)},
        )
    if current_user.approval_status == ApprovalStatus.APPROVED.value:
        raise ConflictError(code="USER_ALREADY_APPROVED", message="User is already approved")

    current_user.name = name
    current_user.role = payload.role
    if payload.phone:
        current_user.phone = payload.phone.strip()
    current_user.approval_status = ApprovalStatus.PENDING.value
    current_user.rejection_reason = None
    _commit(db, code="USER_UPDATE_FAILED", message="Failed to save access request")

    ctx.submit_job("notifications.user_request", user_id=str(current_user.id))
    return current_user


def approve_user_use_case(*, db: Session, ctx: AppContext, user_id: UUID, current_user: User) -> User:
    _require_admin(current_user)
    user = _get_user_or_404(db, user_id)
    if user.approval_status == ApprovalStatus.APPROVED.value:
        raise ConflictError(code="USER_ALREADY_APPROVED", message="User is already approved")

    user.approval_status = ApprovalStatus.APPROVED.value
    user.approved_by = current_user.id
    user.approved_at = utcnow()
    user.rejection_reason = None
    db.add(
        AdminAction(
            admin_id=current_user.id,
            action_type="approve_user",
            target_user_id=user.id,
            details={"role": user.role, "email": user.email},
        )
    )
    _commit(db, code="USER_APPROVAL_FAILED", message="Failed to approve user")
    logger.info("User %s approved by %s", user.id, current_user.id)

    ctx.submit_job("notifications.user_decision", user_id=str(user.id), approved=True, admin_id=str(current_user.id))
    ctx.submit_job("channels.approval_email", user_id=str(user.id), approved=True)
    return user


def reject_user_use_case(
    *, db: Session, ctx: AppContext, user_id: UUID, reason: str | None, current_user: User
) -> User:
    _require_admin(current_user)
    user = _get_user_or_404(db, user_id)
    if user.approval_status == ApprovalStatus.REJECTED.value:
        raise ConflictError(code="USER_ALREADY_REJECTED", message="User is already rejected")

    rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    user.approval_status = ApprovalStatus.REJECTED.value
    user.approved_by = current_user.id
    user.approved_at = utcnow()
    user.rejection_reason = rejection_reason
    db.add(
        AdminAction(
            admin_id=current_user.id,
            action_type="reject_user",
            target_user_id=user.id,
            details={"reason": rejection_reason, "email": user.email},
        )
    )
    _commit(db, code="USER_REJECTION_FAILED", message="Failed to reject user")
    logger.info("User %s rejected by %s", user.id, current_user.id)

    ctx.submit_job("notifications.user_decision", user_id=str(user.id), approved=False, admin_id=str(current_user.id))
    ctx.submit_job("channels.approval_email", user_id=str(user.id), approved=False, reason=rejection_reason)
    return user
