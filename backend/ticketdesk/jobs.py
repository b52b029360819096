"""Fire-and-forget side effects.

Use cases submit a named job with JSON-serializable keyword arguments through
``AppContext.submit_job``. Jobs open their own session, so they can run in a
Celery worker or in-process after the request committed. A failing job is
logged and never reaches the request that triggered it.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Protocol
from uuid import UUID

from .database import session_scope
from .enums import Role, TicketStatus
from .models import Ticket, TicketMessage, User
from .services import notification_dispatcher as dispatcher
from .services.blob_store import BlobStoreError
from .services.channels import approval_email, build_status_update_text

if TYPE_CHECKING:
    from .context import AppContext

logger = logging.getLogger(__name__)

JobFunc = Callable[..., Any]
JOBS: dict[str, JobFunc] = {}


def job(name: str) -> Callable[[JobFunc], JobFunc]:
    def register(func: JobFunc) -> JobFunc:
        JOBS[name] = func
        return func
    return register


def run_job(ctx: "AppContext", name: str, payload: dict[str, Any]) -> bool:
    """Execute a registered job; returns False when it failed."""
    func = JOBS.get(name)
    if func is None:
        logger.error("Unknown background job: %s", name)
        return False
    try:
        func(ctx, **payload)
    except Exception:
        logger.exception("Background job %s failed (payload=%s)", name, payload)
        return False
    return True


class JobQueue(Protocol):
    def submit(self, ctx: "AppContext", name: str, payload: dict[str, Any]) -> None: ...


class InlineJobQueue:
    """Runs jobs immediately in the calling thread."""

    def __init__(self) -> None:
        self.history: list[tuple[str, dict[str, Any], bool]] = []

    def submit(self, ctx: "AppContext", name: str, payload: dict[str, Any]) -> None:
        ok = run_job(ctx, name, payload)
        self.history.append((name, payload, ok))


class CeleryJobQueue:
    """Hands jobs to the Celery worker."""

    def submit(self, ctx: "AppContext", name: str, payload: dict[str, Any]) -> None:
        from .celery_app import execute_job

        try:
            execute_job.delay(name, payload)
        except Exception:
            logger.exception("Could not enqueue background job %s", name)


def _ticket(db, ticket_id: str) -> Ticket | None:
    ticket = db.query(Ticket).filter(Ticket.id == UUID(ticket_id)).first()
    if not ticket:
        logger.info("Ticket %s vanished before its side effects ran", ticket_id)
    return ticket


def _user(db, user_id: str | None) -> User | None:
    if not user_id:
        return None
    return db.query(User).filter(User.id == UUID(user_id)).first()


@job("notifications.message_sent")
def message_sent_job(ctx: "AppContext", *, message_id: str) -> None:
    with session_scope(ctx.session_factory) as db:
        message = db.query(TicketMessage).filter(TicketMessage.id == UUID(message_id)).first()
        if not message:
            return
        ticket = _ticket(db, str(message.ticket_id))
        if not ticket:
            return
        sender = db.query(User).filter(User.id == message.sender_id).first() if message.sender_id else None
        created = dispatcher.notify_message_sent(db, message=message, ticket=ticket, sender=sender)
        logger.info("Message %s notified %d recipient(s)", message_id, len(created))


@job("notifications.status_changed")
def status_changed_job(ctx: "AppContext", *, ticket_id: str, actor_id: str, old_status: str, new_status: str) -> None:
    with session_scope(ctx.session_factory) as db:
        ticket = _ticket(db, ticket_id)
        actor = _user(db, actor_id)
        if not ticket or not actor:
            return
        dispatcher.notify_status_changed(db, ticket=ticket, actor=actor, old_status=old_status, new_status=new_status)


@job("notifications.ticket_created")
def ticket_created_job(ctx: "AppContext", *, ticket_id: str, creator_id: str, member_ids: list[str]) -> None:
    with session_scope(ctx.session_factory) as db:
        ticket = _ticket(db, ticket_id)
        creator = _user(db, creator_id)
        if not ticket or not creator:
            return
        dispatcher.notify_members_added(
            db, ticket=ticket, user_ids=[UUID(uid) for uid in member_ids], added_by=creator
        )
        dispatcher.notify_ticket_created(db, ticket=ticket, creator=creator)


@job("notifications.members_added")
def members_added_job(ctx: "AppContext", *, ticket_id: str, user_ids: list[str], added_by: str) -> None:
    with session_scope(ctx.session_factory) as db:
        ticket = _ticket(db, ticket_id)
        actor = _user(db, added_by)
        if not ticket or not actor:
            return
        dispatcher.notify_members_added(db, ticket=ticket, user_ids=[UUID(uid) for uid in user_ids], added_by=actor)


@job("notifications.member_removed")
def member_removed_job(ctx: "AppContext", *, ticket_id: str, user_id: str, removed_by: str) -> None:
    with session_scope(ctx.session_factory) as db:
        ticket = _ticket(db, ticket_id)
        actor = _user(db, removed_by)
        if not ticket or not actor:
            return
        dispatcher.notify_member_removed(db, ticket=ticket, user_id=UUID(user_id), removed_by=actor)


@job("notifications.priority_changed")
def priority_changed_job(ctx: "AppContext", *, ticket_id: str, actor_id: str, old_priority: str, new_priority: str) -> None:
    with session_scope(ctx.session_factory) as db:
        ticket = _ticket(db, ticket_id)
        actor = _user(db, actor_id)
        if not ticket or not actor:
            return
        dispatcher.notify_priority_changed(
            db, ticket=ticket, actor=actor, old_priority=old_priority, new_priority=new_priority
        )


@job("notifications.points_updated")
def points_updated_job(ctx: "AppContext", *, ticket_id: str, actor_id: str) -> None:
    with session_scope(ctx.session_factory) as db:
        ticket = _ticket(db, ticket_id)
        actor = _user(db, actor_id)
        if not ticket or not actor:
            return
        dispatcher.notify_points_updated(db, ticket=ticket, actor=actor)


@job("notifications.user_request")
def user_request_job(ctx: "AppContext", *, user_id: str) -> None:
    with session_scope(ctx.session_factory) as db:
        user = _user(db, user_id)
        if user:
            dispatcher.notify_user_request(db, user=user)


@job("notifications.user_decision")
def user_decision_job(ctx: "AppContext", *, user_id: str, approved: bool, admin_id: str | None = None) -> None:
    with session_scope(ctx.session_factory) as db:
        user = _user(db, user_id)
        if user:
            dispatcher.notify_user_decision(
                db, user=user, approved=approved, decided_by=UUID(admin_id) if admin_id else None
            )


@job("channels.status_whatsapp")
def status_whatsapp_job(ctx: "AppContext", *, ticket_id: str) -> None:
    """Tell a client creator over WhatsApp that the ticket waits for them."""
    with session_scope(ctx.session_factory) as db:
        ticket = _ticket(db, ticket_id)
        if not ticket:
            return
        creator = _user(db, str(ticket.created_by) if ticket.created_by else None)
        if not creator or creator.role != Role.CLIENT.value or not creator.phone:
            logger.info("Ticket %s creator has no WhatsApp destination", ticket_id)
            return

        body = build_status_update_text(
            ticket_label=dispatcher.ticket_label(ticket),
            title=ticket.title,
            status=TicketStatus.PENDING_WITH_CLIENT.value,
            website_url=ctx.settings.WEBSITE_URL,
        )
        result = ctx.whatsapp.send(creator.phone, body)
        if result.success:
            logger.info("WhatsApp status update sent for ticket %s", ticket_id)
        else:
            logger.warning("WhatsApp status update failed for ticket %s: %s", ticket_id, result.error)
        dispatcher.record_whatsapp_outcome(db, ticket=ticket, recipient=creator, result=result)


@job("channels.approval_email")
def approval_email_job(ctx: "AppContext", *, user_id: str, approved: bool, reason: str | None = None) -> None:
    with session_scope(ctx.session_factory) as db:
        user = _user(db, user_id)
        if not user:
            return
        subject, html = approval_email(
            name=user.name, approved=approved, reason=reason, website_url=ctx.settings.WEBSITE_URL
        )
        email = user.email
    result = ctx.email.send(email, subject, html)
    if not result.success:
        logger.warning("Approval email to %s failed: %s", email, result.error)


@job("tickets.cleanup_blobs")
def cleanup_blobs_job(ctx: "AppContext", *, paths: list[str]) -> None:
    failed = 0
    for path in paths:
        try:
            ctx.blob_store.remove(path)
        except BlobStoreError:
            failed += 1
            logger.warning("Blob cleanup failed for %s", path, exc_info=True)
    logger.info("Blob cleanup finished: %d removed, %d failed", len(paths) - failed, failed)


@job("realtime.publish")
def publish_job(ctx: "AppContext", *, channels: list[str], event: str, data: dict[str, Any]) -> None:
    failed = ctx.publisher.publish_many(channels, event, data)
    if failed:
        logger.warning("Real-time event %s missed %d of %d channel(s)", event, failed, len(channels))
