"""Dashboard ticket aggregation with chunked, batched relation loading.

The working set of visible tickets is split into chunks of
``AGGREGATION_CHUNK_SIZE`` ids so that no ``IN (...)`` list grows without
bound. For every chunk the relation queries (members, files, stars, recent
messages, missing creators) run concurrently on the shared query pool, each
on its own session. Users already resolved by an earlier chunk are never
fetched again. Tickets whose chunk produced no visible recent message get one
latest-message query each in a second, bounded pass.

A failing relation query degrades only the tickets of its chunk: those
tickets are still returned, with the relation left empty or replaced by a
placeholder, and an ``UpstreamPartialFailure`` is reported next to the data.
Only the top-level visibility query can fail the whole call.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, TypeVar
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import SessionFactory
from ..domain_errors import DownstreamError, UpstreamPartialFailure
from ..enums import MessageType
from ..models import StarredTicket, Ticket, TicketFile, TicketMember, TicketMessage, User
from ..schemas import MemberResponse, TicketFileResponse, TicketSummary, UserBrief
from ..security import can_view_all_tickets, is_approved
from .message_visibility import VisibilityRule, visibility_rule

logger = logging.getLogger(__name__)

T = TypeVar("T")

DELETED_USER = {"name": "Deleted User", "email": "deleted@user.com", "role": "unknown"}
UNKNOWN_SENDER = "Unknown"


def chunked(items: list[T], size: int) -> Iterable[list[T]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def placeholder_user(user_id: UUID | None = None) -> UserBrief:
    return UserBrief(id=user_id, **DELETED_USER)


def message_preview(message: TicketMessage) -> str:
    if message.is_deleted:
        return "This message was deleted"
    if message.message_type == MessageType.TEXT.value:
        return message.message or ""
    if message.message_type == MessageType.IMAGE.value:
        return "🖼️ Sent an image"
    return "📎 Sent a file"


@dataclass
class TicketListResult:
    tickets: list[TicketSummary]
    partial_failures: list[UpstreamPartialFailure] = field(default_factory=list)


@dataclass
class _Aggregate:
    """In-memory maps filled chunk by chunk."""

    users: dict[UUID, User] = field(default_factory=dict)
    members: dict[UUID, list[TicketMember]] = field(default_factory=lambda: defaultdict(list))
    files: dict[UUID, list[TicketFile]] = field(default_factory=lambda: defaultdict(list))
    starred: set[UUID] = field(default_factory=set)
    latest: dict[UUID, TicketMessage] = field(default_factory=dict)
    rules: dict[UUID, VisibilityRule] = field(default_factory=dict)
    failures: list[UpstreamPartialFailure] = field(default_factory=list)

    def fail(self, relation: str, ticket_ids: Iterable[UUID]) -> None:
        ids = [str(ticket_id) for ticket_id in ticket_ids]
        self.failures.append(
            UpstreamPartialFailure(
                code="TICKET_RELATION_UNAVAILABLE",
                message=f"Could not load {relation} for {len(ids)} ticket(s)",
                details={"relation": relation, "ticket_ids": ids},
            )
        )


class TicketAggregationLoader:
    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        pool: Executor,
        chunk_size: int = 50,
        messages_per_ticket: int = 5,
        join_date_filter: bool = False,
    ):
        self._session_factory = session_factory
        self._pool = pool
        self._chunk_size = chunk_size
        self._messages_per_ticket = messages_per_ticket
        self._join_date_filter = join_date_filter

    # Queries. Each one runs on its own short-lived session.

    def _run(self, query: Callable[[Session], T]) -> T:
        db = self._session_factory()
        try:
            return query(db)
        finally:
            db.close()

    def fetch_members(self, ticket_ids: list[UUID]) -> list[TicketMember]:
        return self._run(lambda db: db.query(TicketMember).filter(TicketMember.ticket_id.in_(ticket_ids)).all())

    def fetch_files(self, ticket_ids: list[UUID]) -> list[TicketFile]:
        return self._run(lambda db: db.query(TicketFile).filter(TicketFile.ticket_id.in_(ticket_ids)).all())

    def fetch_starred(self, ticket_ids: list[UUID], user_id: UUID) -> set[UUID]:
        rows = self._run(
            lambda db: db.query(StarredTicket.ticket_id).filter(
                StarredTicket.user_id == user_id,
                StarredTicket.ticket_id.in_(ticket_ids),
            ).all()
        )
        return {row[0] for row in rows}

    def fetch_recent_messages(self, ticket_ids: list[UUID]) -> list[TicketMessage]:
        """Newest messages across the chunk; the store has no latest-per-group query."""
        limit = len(ticket_ids) * self._messages_per_ticket
        return self._run(
            lambda db: db.query(TicketMessage)
            .filter(TicketMessage.ticket_id.in_(ticket_ids))
            .order_by(TicketMessage.created_at.desc())
            .limit(limit)
            .all()
        )

    def fetch_latest_message(self, ticket_id: UUID, rule: VisibilityRule) -> TicketMessage | None:
        return self._run(
            lambda db: rule.apply(db.query(TicketMessage).filter(TicketMessage.ticket_id == ticket_id))
            .order_by(TicketMessage.created_at.desc())
            .first()
        )

    def fetch_users(self, user_ids: set[UUID]) -> list[User]:
        return self._run(lambda db: db.query(User).filter(User.id.in_(user_ids)).all())

    def visible_tickets(self, db: Session, user: User) -> list[Ticket]:
        """The caller's working set; failure here fails the whole read."""
        if not is_approved(user):
            return []
        try:
            query = db.query(Ticket)
            if not can_view_all_tickets(user):
                member_ticket_ids = db.query(TicketMember.ticket_id).filter(TicketMember.user_id == user.id)
                query = query.filter(
                    or_(Ticket.created_by == user.id, Ticket.id.in_(member_ticket_ids))
                )
            return query.order_by(Ticket.created_at.desc()).all()
        except SQLAlchemyError as e:
            logger.error("Visible ticket query failed for user %s: %s", user.id, e, exc_info=True)
            raise DownstreamError(code="TICKET_LIST_FAILED", message="Failed to load tickets") from e

    # Aggregation

    def load(self, db: Session, user: User) -> TicketListResult:
        tickets = self.visible_tickets(db, user)
        if not tickets:
            return TicketListResult(tickets=[])

        agg = _Aggregate()
        for chunk in chunked(tickets, self._chunk_size):
            self._load_chunk(chunk, user, agg)

        self._load_cold_tickets(tickets, agg)

        if agg.failures:
            logger.warning(
                "Ticket list for user %s degraded: %d partial failure(s)",
                user.id,
                len(agg.failures),
            )
        return TicketListResult(
            tickets=[self._assemble(ticket, agg) for ticket in tickets],
            partial_failures=agg.failures,
        )

    def _collect(self, future: Future, relation: str, ticket_ids: list[UUID], agg: _Aggregate, default: T) -> T:
        try:
            return future.result()
        except SQLAlchemyError:
            logger.warning("Batch query for %s failed", relation, exc_info=True)
            agg.fail(relation, ticket_ids)
            return default

    def _load_chunk(self, chunk: list[Ticket], user: User, agg: _Aggregate) -> None:
        ticket_ids = [ticket.id for ticket in chunk]
        missing_creators = {t.created_by for t in chunk if t.created_by and t.created_by not in agg.users}

        members_f = self._pool.submit(self.fetch_members, ticket_ids)
        files_f = self._pool.submit(self.fetch_files, ticket_ids)
        starred_f = self._pool.submit(self.fetch_starred, ticket_ids, user.id)
        messages_f = self._pool.submit(self.fetch_recent_messages, ticket_ids)
        creators_f = self._pool.submit(self.fetch_users, missing_creators) if missing_creators else None

        members = self._collect(members_f, "members", ticket_ids, agg, None)
        files = self._collect(files_f, "files", ticket_ids, agg, [])
        starred = self._collect(starred_f, "starred", ticket_ids, agg, set())
        messages = self._collect(messages_f, "messages", ticket_ids, agg, [])
        if creators_f is not None:
            for creator in self._collect(creators_f, "creators", ticket_ids, agg, []):
                agg.users[creator.id] = creator

        viewer_memberships: dict[UUID, TicketMember] = {}
        for member in members or []:
            agg.members[member.ticket_id].append(member)
            if member.user_id == user.id:
                viewer_memberships[member.ticket_id] = member
        for file in files:
            agg.files[file.ticket_id].append(file)
        agg.starred.update(starred)

        for ticket in chunk:
            agg.rules[ticket.id] = self._rule_for(
                ticket, user, viewer_memberships.get(ticket.id), members_known=members is not None
            )

        # Newest first, so the first admitted message per ticket is its latest.
        for message in messages:
            if message.ticket_id in agg.latest:
                continue
            if agg.rules[message.ticket_id].admits(message):
                agg.latest[message.ticket_id] = message

        referenced = {member.user_id for member in members or []}
        referenced.update(file.uploaded_by for file in files if file.uploaded_by)
        referenced.update(m.sender_id for m in agg.latest.values() if m.sender_id)
        self._resolve_users(referenced, ticket_ids, agg)

    def _rule_for(self, ticket: Ticket, user: User, membership: TicketMember | None, *, members_known: bool) -> VisibilityRule:
        is_creator = ticket.created_by == user.id
        rule = visibility_rule(
            user,
            is_creator=is_creator,
            membership=membership,
            join_date_filter=self._join_date_filter,
        )
        if self._join_date_filter and not members_known and not is_creator and not can_view_all_tickets(user):
            # Join date unknown: show no preview rather than one the user may not be allowed to read.
            return VisibilityRule(modes=rule.modes, not_before=datetime.max)
        return rule

    def _resolve_users(self, user_ids: set[UUID], ticket_ids: list[UUID], agg: _Aggregate) -> None:
        missing = {uid for uid in user_ids if uid not in agg.users}
        if not missing:
            return
        future = self._pool.submit(self.fetch_users, missing)
        for found in self._collect(future, "users", ticket_ids, agg, []):
            agg.users[found.id] = found

    def _load_cold_tickets(self, tickets: list[Ticket], agg: _Aggregate) -> None:
        cold = [ticket.id for ticket in tickets if ticket.id not in agg.latest]
        if not cold:
            return

        for batch in chunked(cold, self._chunk_size):
            futures = {
                ticket_id: self._pool.submit(self.fetch_latest_message, ticket_id, agg.rules[ticket_id])
                for ticket_id in batch
            }
            failed: list[UUID] = []
            for ticket_id, future in futures.items():
                try:
                    message = future.result()
                except SQLAlchemyError:
                    logger.warning("Latest message query failed for ticket %s", ticket_id, exc_info=True)
                    failed.append(ticket_id)
                    continue
                if message is not None:
                    agg.latest[ticket_id] = message
            if failed:
                agg.fail("latest_message", failed)

        senders = {agg.latest[tid].sender_id for tid in cold if tid in agg.latest and agg.latest[tid].sender_id}
        self._resolve_users(senders, cold, agg)

    def _user_brief(self, user_id: UUID | None, agg: _Aggregate) -> UserBrief:
        user = agg.users.get(user_id) if user_id else None
        if user is None:
            return placeholder_user(user_id)
        return UserBrief.model_validate(user)

    def _assemble(self, ticket: Ticket, agg: _Aggregate) -> TicketSummary:
        latest = agg.latest.get(ticket.id)
        sender = agg.users.get(latest.sender_id) if latest and latest.sender_id else None

        members = [
            MemberResponse(
                user=self._user_brief(member.user_id, agg),
                added_by=member.added_by,
                added_at=member.added_at,
                can_message_client=member.can_message_client,
            )
            for member in agg.members.get(ticket.id, [])
        ]
        files = [
            TicketFileResponse(
                id=file.id,
                file_name=file.file_name,
                file_url=file.file_url,
                file_size=file.file_size,
                mime_type=file.mime_type,
                created_at=file.created_at,
                uploader=UserBrief.model_validate(agg.users[file.uploaded_by])
                if file.uploaded_by in agg.users else None,
            )
            for file in agg.files.get(ticket.id, [])
        ]

        return TicketSummary(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            uid=ticket.uid,
            title=ticket.title,
            description=ticket.description,
            priority=ticket.priority,
            status=ticket.status,
            created_by=ticket.created_by,
            points=list(ticket.points or []),
            creation_files=list(ticket.creation_files or []),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            creator=self._user_brief(ticket.created_by, agg),
            members=members,
            files=files,
            last_message=message_preview(latest) if latest else None,
            last_message_at=latest.created_at if latest else None,
            last_message_sender=(sender.name or sender.email) if sender else (UNKNOWN_SENDER if latest else None),
            is_starred=ticket.id in agg.starred,
        )
