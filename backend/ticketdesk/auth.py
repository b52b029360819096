"""Bearer-token authentication."""
from datetime import timedelta
from typing import Optional
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import Settings
from .context import AppContext, get_app_context
from .database import get_db
from .enums import ApprovalStatus, Role
from .models import User

logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(
    user: User, settings: Settings, expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token carrying user id, email and role."""
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "exp": exp,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode JWT token; expiry is checked with clock-skew leeway."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _unauthorized()

    now = int(time.time())
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _unauthorized("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _unauthorized()
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _unauthorized()
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _unauthorized()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _unauthorized()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials, ctx.settings)

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise _unauthorized("User not found")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Dependency for admin-only endpoints."""
    if current_user.role != Role.ADMIN.value or current_user.approval_status != ApprovalStatus.APPROVED.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
