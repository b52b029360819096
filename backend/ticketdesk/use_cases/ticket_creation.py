"""Ticket creation: identifiers, attachments and the initial member set."""
from __future__ import annotations

import base64
import binascii
import logging
import random
import re
import time
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import AppContext
from ..domain_errors import AuthorizationError, DownstreamError, ValidationError
from ..enums import ApprovalStatus, Priority, Role, TicketStatus, values
from ..models import Ticket, TicketMember, User
from ..schemas import CreationFileUpload, TicketCreate
from ..services.blob_store import BlobStoreError
from ..services.realtime import user_channel

logger = logging.getLogger(__name__)

UID_ATTEMPTS = 10
_CREATOR_ROLES = {Role.ADMIN.value, Role.CLIENT.value}
_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def next_ticket_number(db: Session, prefix: str) -> str:
    """Sequential human-readable number following the most recent ticket."""
    latest = db.query(Ticket.ticket_number).order_by(Ticket.created_at.desc()).first()
    next_value = 1
    if latest and latest[0]:
        match = re.search(rf"{re.escape(prefix)}\s*(\d+)", latest[0])
        if match:
            next_value = int(match.group(1)) + 1
    return f"{prefix} {next_value:04d}"


def generate_ticket_uid(db: Session, prefix: str, *, rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    for _ in range(UID_ATTEMPTS):
        candidate = f"{prefix} {rng.randint(10000, 99999)}"
        if not db.query(Ticket.id).filter(Ticket.uid == candidate).first():
            return candidate
    fallback = f"{prefix} {str(int(time.time() * 1000))[-5:]}"
    logger.warning("Ticket uid space crowded; falling back to %s", fallback)
    return fallback


def _safe_name(name: str) -> str:
    cleaned = _UNSAFE_NAME_RE.sub("_", name).strip("._")
    return cleaned[:120] or "file"


def store_creation_files(ctx: AppContext, ticket_id: UUID, files: list[CreationFileUpload]) -> list[dict]:
    """Upload creation attachments; a failed upload keeps its descriptor with the error."""
    descriptors: list[dict] = []
    for upload in files:
        path = f"tickets/{ticket_id}/creation/{uuid4().hex}_{_safe_name(upload.name)}"
        descriptor = {"name": upload.name, "path": path, "mime_type": upload.mime_type, "url": None}
        try:
            data = base64.b64decode(upload.content_base64, validate=True)
            descriptor["size"] = len(data)
            descriptor["url"] = ctx.blob_store.upload(path, data)
        except (binascii.Error, ValueError) as e:
            descriptor["error"] = f"Invalid file content: {e}"
        except BlobStoreError as e:
            logger.warning("Creation file upload failed for ticket %s: %s", ticket_id, e)
            descriptor["error"] = str(e)
        descriptors.append(descriptor)
    return descriptors


def initial_member_ids(creator_id: UUID, requested: list[UUID], admin_ids: list[UUID]) -> list[UUID]:
    """Creator first, then requested users, then approved admins; no repeats."""
    ordered: list[UUID] = []
    for user_id in [creator_id, *requested, *admin_ids]:
        if user_id not in ordered:
            ordered.append(user_id)
    return ordered


def create_ticket_use_case(*, db: Session, ctx: AppContext, payload: TicketCreate, current_user: User) -> Ticket:
    """Create a ticket with its creator, requested users and all approved admins as members."""
    title = (payload.title or "").strip()
    if not title:
        raise ValidationError(code="TICKET_TITLE_REQUIRED", message="Title is required")
    if payload.priority not in values(Priority):
        raise ValidationError(
            code="TICKET_INVALID_PRIORITY",
            message="Invalid priority",
            details={"allowed": values(Priority)},
        )

    if current_user.approval_status != ApprovalStatus.APPROVED.value:
        raise AuthorizationError(
            code="ACCOUNT_NOT_APPROVED",
            message="Your account is not approved yet. Please wait for admin approval.",
        )
    if current_user.role not in _CREATOR_ROLES:
        raise AuthorizationError(
            code="TICKET_CREATE_FORBIDDEN",
            message="Only admins and clients can create tickets",
        )

    requested = list(dict.fromkeys(payload.member_ids))
    if requested:
        found = {row[0] for row in db.query(User.id).filter(User.id.in_(requested)).all()}
        unknown = [str(uid) for uid in requested if uid not in found]
        if unknown:
            raise ValidationError(
                code="TICKET_UNKNOWN_MEMBERS",
                message="Some selected members do not exist",
                details={"user_ids": unknown},
            )

    admin_ids = [
        row[0]
        for row in db.query(User.id).filter(
            User.role == Role.ADMIN.value,
            User.approval_status == ApprovalStatus.APPROVED.value,
        ).all()
    ]
    member_ids = initial_member_ids(current_user.id, requested, admin_ids)

    ticket_id = uuid4()
    creation_files = store_creation_files(ctx, ticket_id, payload.files)
    ticket = Ticket(
        id=ticket_id,
        ticket_number=next_ticket_number(db, ctx.settings.TICKET_NUMBER_PREFIX),
        uid=generate_ticket_uid(db, ctx.settings.TICKET_UID_PREFIX),
        title=title,
        description=payload.description,
        priority=payload.priority,
        status=TicketStatus.CREATED.value,
        created_by=current_user.id,
        points=[point.strip() for point in payload.points if point and point.strip()],
        creation_files=creation_files,
    )
    # Ticket and members commit together: no ticket may exist without its creator as member.
    ticket.members = [
        TicketMember(user_id=user_id, added_by=current_user.id, can_message_client=True)
        for user_id in member_ids
    ]
    db.add(ticket)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Ticket creation failed: %s", e, exc_info=True)
        uploaded = [item["path"] for item in creation_files if item.get("url")]
        if uploaded:
            ctx.submit_job("tickets.cleanup_blobs", paths=uploaded)
        raise DownstreamError(code="TICKET_CREATE_FAILED", message="Failed to create ticket") from e

    logger.info("Ticket %s created by %s with %d member(s)", ticket.ticket_number, current_user.id, len(member_ids))
    ctx.submit_job(
        "notifications.ticket_created",
        ticket_id=str(ticket.id),
        creator_id=str(current_user.id),
        member_ids=[str(uid) for uid in member_ids if uid != current_user.id],
    )
    ctx.submit_job(
        "realtime.publish",
        channels=[user_channel(uid) for uid in member_ids],
        event="ticket_created",
        data={"ticket_id": str(ticket.id), "ticket_number": ticket.ticket_number},
    )
    return ticket
