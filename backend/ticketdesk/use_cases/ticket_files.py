"""Ticket attachment use-cases."""
from __future__ import annotations

import logging
import posixpath
import re
from pathlib import Path
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import AppContext
from ..domain_errors import DownstreamError, NotFoundError, ValidationError
from ..enums import TicketAction
from ..models import TicketFile, TicketMessage, User
from ..schemas import ConfirmUploadRequest
from ..security import authorize_ticket_action
from ..services.blob_store import BlobStoreError
from ..services.message_visibility import visibility_rule_for_access

logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def ticket_file_prefix(ticket_id: UUID) -> str:
    return f"tickets/{ticket_id}/files"


def sanitize_filename(filename: str) -> str:
    name = Path(filename or "").name
    cleaned = _UNSAFE_NAME_RE.sub("_", name).strip("._")
    return cleaned[:120] or "file"


def _validate_upload(ctx: AppContext, filename: str, size: int) -> str:
    ext = Path(filename or "").suffix.lower().lstrip(".")
    if not ext or ext not in ctx.settings.allowed_extensions_list:
        raise ValidationError(
            code="FILE_TYPE_NOT_ALLOWED",
            message=f"File type not allowed. Allowed: {ctx.settings.ALLOWED_EXTENSIONS}",
        )
    if size > ctx.settings.MAX_UPLOAD_SIZE:
        raise ValidationError(code="FILE_TOO_LARGE", message="File too large", http_status=413)
    return ext


def _record_file(db: Session, file: TicketFile) -> TicketFile:
    db.add(file)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DownstreamError(code="FILE_RECORD_FAILED", message="Failed to record file") from e
    return file


def upload_ticket_file_use_case(
    *,
    db: Session,
    ctx: AppContext,
    ticket_id: UUID,
    filename: str,
    content: bytes,
    mime_type: str | None,
    current_user: User,
) -> TicketFile:
    _validate_upload(ctx, filename, len(content))
    authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.POST_MESSAGE)

    path = f"{ticket_file_prefix(ticket_id)}/{uuid4().hex}_{sanitize_filename(filename)}"
    try:
        url = ctx.blob_store.upload(path, content)
    except BlobStoreError as e:
        logger.error("Upload to blob store failed for %s: %s", path, e)
        raise DownstreamError(code="FILE_UPLOAD_FAILED", message="File upload failed") from e

    return _record_file(
        db,
        TicketFile(
            ticket_id=ticket_id,
            uploaded_by=current_user.id,
            file_name=filename,
            file_path=path,
            file_url=url,
            file_size=len(content),
            mime_type=mime_type,
        ),
    )


def confirm_upload_use_case(
    *, db: Session, ctx: AppContext, ticket_id: UUID, payload: ConfirmUploadRequest, current_user: User
) -> TicketFile:
    """Record a file uploaded straight to the blob store, once it is really there."""
    file_path = (payload.file_path or "").strip()
    file_name = (payload.file_name or "").strip()
    if not file_path or not file_name:
        raise ValidationError(code="FILE_PATH_REQUIRED", message="File path and name are required")
    if not file_path.startswith(f"{ticket_file_prefix(ticket_id)}/") or ".." in file_path.split("/"):
        raise ValidationError(code="FILE_PATH_INVALID", message="File path does not belong to this ticket")

    authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.POST_MESSAGE)

    directory, basename = posixpath.split(file_path)
    if basename not in ctx.blob_store.list(directory):
        raise NotFoundError(
            code="FILE_NOT_IN_STORAGE",
            message="File not found in storage. Upload may have failed.",
        )

    return _record_file(
        db,
        TicketFile(
            ticket_id=ticket_id,
            uploaded_by=current_user.id,
            file_name=file_name,
            file_path=file_path,
            file_url=ctx.blob_store.public_url(file_path),
            file_size=payload.file_size,
            mime_type=payload.mime_type,
        ),
    )


def _ticket_id_from_path(path: str) -> UUID | None:
    parts = path.split("/")
    if len(parts) < 3 or parts[0] != "tickets" or ".." in parts:
        return None
    try:
        return UUID(parts[1])
    except ValueError:
        return None


def open_ticket_blob_use_case(*, db: Session, ctx: AppContext, path: str, current_user: User) -> Path:
    """Resolve a stored object for download.

    Every object lives under ``tickets/<ticket_id>/``, so the caller needs VIEW
    on that ticket. When the object is attached to messages, at least one of
    them must be visible to the caller. Denials look like a missing file.
    """
    not_found = NotFoundError(code="FILE_NOT_FOUND", message="File not found")
    ticket_id = _ticket_id_from_path(path)
    if ticket_id is None:
        raise not_found

    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.VIEW)

    attached_to = db.query(TicketMessage).filter(
        TicketMessage.ticket_id == ticket_id,
        TicketMessage.file_url == ctx.blob_store.public_url(path),
    ).all()
    if attached_to:
        rule = visibility_rule_for_access(access, join_date_filter=ctx.settings.MESSAGE_JOIN_DATE_FILTER)
        if not rule.filter(attached_to):
            logger.info("User %s asked for hidden attachment %s", current_user.id, path)
            raise not_found

    try:
        return ctx.blob_store.open(path)
    except BlobStoreError as e:
        raise not_found from e
