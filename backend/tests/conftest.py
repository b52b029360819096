from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import pytest

from ticketdesk import models  # noqa: F401
from ticketdesk.auth import create_access_token
from ticketdesk.config import Settings
from ticketdesk.context import AppContext
from ticketdesk.database import Base, build_engine, build_session_factory
from ticketdesk.enums import ApprovalStatus, Priority, Role, TicketStatus
from ticketdesk.jobs import InlineJobQueue
from ticketdesk.models import Ticket, TicketMember, TicketMessage, User
from ticketdesk.services.blob_store import LocalBlobStore
from ticketdesk.services.channels import SendResult


class RecordingWhatsApp:
    configured = True

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.result = SendResult(success=True, message_id="wamid.test")

    def send(self, destination: str, body: str) -> SendResult:
        self.sent.append((destination, body))
        return self.result


class RecordingEmail:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, destination: str, subject: str, html: str) -> SendResult:
        self.sent.append((destination, subject, html))
        return SendResult(success=True, message_id="email-1")


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[list[str], str, dict[str, Any]]] = []

    def publish_many(self, channels, event: str, payload: dict[str, Any]) -> int:
        self.events.append((list(channels), event, payload))
        return 0

    def event_names(self) -> list[str]:
        return [event for _, event, _ in self.events]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'ticketdesk.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        API_BASE_URL="http://testserver",
        WEBSITE_URL="https://support.example.com",
        JWT_SECRET_KEY="test-secret",
        JOBS_INLINE=True,
        AGGREGATION_CHUNK_SIZE=2,
        AGGREGATION_MAX_WORKERS=2,
    )


@pytest.fixture
def ctx(settings):
    engine = build_engine(settings)
    Base.metadata.create_all(engine)
    context = AppContext(
        settings=settings,
        session_factory=build_session_factory(engine),
        whatsapp=RecordingWhatsApp(),
        email=RecordingEmail(),
        blob_store=LocalBlobStore(root=settings.UPLOAD_DIR, public_base_url=settings.API_BASE_URL),
        publisher=RecordingPublisher(),
        jobs=InlineJobQueue(),
        query_pool=ThreadPoolExecutor(max_workers=2),
    )
    yield context
    context.query_pool.shutdown(wait=True)
    engine.dispose()


@pytest.fixture
def db(ctx):
    session = ctx.session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def factory(
        role: str | None = Role.EMPLOYEE.value,
        *,
        name: str | None = None,
        approval_status: str = ApprovalStatus.APPROVED.value,
        phone: str | None = None,
    ) -> User:
        suffix = uuid4().hex[:8]
        user = User(
            email=f"{role or 'new'}-{suffix}@example.com",
            name=name or f"{(role or 'new').title()} {suffix}",
            role=role,
            phone=phone,
            approval_status=approval_status,
        )
        db.add(user)
        db.commit()
        return user

    return factory


@pytest.fixture
def make_ticket(db):
    """Insert a ticket directly, with its creator and ``members`` on it."""
    counter = {"n": 0}

    def factory(
        creator: User,
        *,
        members: list[User] = (),
        title: str = "Printer offline",
        status: str = TicketStatus.CREATED.value,
        priority: str = Priority.P3.value,
        created_at: datetime | None = None,
    ) -> Ticket:
        counter["n"] += 1
        ticket = Ticket(
            ticket_number=f"MZI {counter['n']:04d}",
            uid=f"MED {10000 + counter['n']}",
            title=title,
            priority=priority,
            status=status,
            created_by=creator.id,
            points=[],
            creation_files=[],
            created_at=created_at or datetime.now(timezone.utc),
        )
        ticket.members = [
            TicketMember(user_id=user.id, added_by=creator.id, can_message_client=True)
            for user in [creator, *members]
        ]
        db.add(ticket)
        db.commit()
        return ticket

    return factory


@pytest.fixture
def add_message(db):
    def factory(
        ticket: Ticket,
        sender: User,
        text: str,
        *,
        mode: str = "client",
        minutes_ago: int = 0,
    ) -> TicketMessage:
        message = TicketMessage(
            ticket_id=ticket.id,
            sender_id=sender.id,
            message=text,
            message_type="text",
            message_mode=mode,
            created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        )
        db.add(message)
        db.commit()
        return message

    return factory


@pytest.fixture
def auth_headers(settings):
    def factory(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user, settings)}"}

    return factory
