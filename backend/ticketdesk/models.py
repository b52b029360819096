"""SQLAlchemy models for tickets, membership, messages and notifications."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text, JSON, Uuid,
    ForeignKey, CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from datetime import datetime, timezone
from .database import Base
from .enums import ApprovalStatus, MessageMode, MessageType, Priority, Role, TicketStatus, values

JsonList = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Registered person; role and approval are changed by admin actions."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    # NULL until the user submits an access request.
    role = Column(String(20), nullable=True, index=True)
    approval_status = Column(String(20), nullable=False, default=ApprovalStatus.PENDING.value, index=True)
    approved_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(role.in_(values(Role)), name="chk_user_role"),
        CheckConstraint(approval_status.in_(values(ApprovalStatus)), name="chk_user_approval_status"),
    )


class Ticket(Base):
    """Support ticket room."""
    __tablename__ = "tickets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_number = Column(String(32), unique=True, nullable=False, index=True)
    uid = Column(String(32), unique=True, nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(2), nullable=False, default=Priority.P3.value)
    status = Column(String(40), nullable=False, default=TicketStatus.CREATED.value, index=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    points = Column(JsonList, nullable=False, default=list)
    creation_files = Column(JsonList, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(priority.in_(values(Priority)), name="chk_ticket_priority"),
        CheckConstraint(status.in_(values(TicketStatus)), name="chk_ticket_status"),
    )

    # Children go with the ticket in the same flush.
    members = relationship("TicketMember", cascade="all, delete-orphan")
    messages = relationship(
        "TicketMessage",
        foreign_keys="TicketMessage.ticket_id",
        cascade="all, delete-orphan",
    )
    files = relationship("TicketFile", cascade="all, delete-orphan")
    stars = relationship("StarredTicket", cascade="all, delete-orphan")


class TicketMember(Base):
    __tablename__ = "ticket_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    added_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    # Employee-only gate for writing in client mode.
    can_message_client = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("ticket_id", "user_id", name="uq_ticket_members_ticket_user"),
    )


class TicketMessage(Base):
    __tablename__ = "ticket_messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # Text body, or the display name of the attachment for file/image messages.
    message = Column(Text, nullable=True)
    message_type = Column(String(20), nullable=False, default=MessageType.TEXT.value)
    message_mode = Column(String(20), nullable=False, default=MessageMode.CLIENT.value)
    file_url = Column(Text, nullable=True)
    file_name = Column(String(500), nullable=True)
    file_size = Column(Integer, nullable=True)
    reply_to_message_id = Column(Uuid, ForeignKey("ticket_messages.id", ondelete="SET NULL"), nullable=True)
    forwarded_from_message_id = Column(Uuid, ForeignKey("ticket_messages.id", ondelete="SET NULL"), nullable=True)
    forwarded_from_ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True)
    is_edited = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(message_type.in_(values(MessageType)), name="chk_message_type"),
        CheckConstraint(message_mode.in_(values(MessageMode)), name="chk_message_mode"),
        Index("idx_ticket_messages_ticket_created", "ticket_id", "created_at"),
    )

    seen_records = relationship("MessageSeen", cascade="all, delete-orphan")
    history = relationship("MessageHistory", cascade="all, delete-orphan")


class MessageSeen(Base):
    __tablename__ = "message_seen"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid, ForeignKey("ticket_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    seen_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_seen_message_user"),
    )


class MessageHistory(Base):
    """Previous content captured before an edit or delete."""
    __tablename__ = "ticket_message_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid, ForeignKey("ticket_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(10), nullable=False)
    previous_content = Column(Text, nullable=True)
    edited_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint(action.in_(["edit", "delete"]), name="chk_message_history_action"),
    )


class TicketFile(Base):
    __tablename__ = "ticket_files"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    file_name = Column(String(500), nullable=False)
    file_path = Column(Text, nullable=False)
    file_url = Column(Text, nullable=True)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class StarredTicket(Base):
    __tablename__ = "starred_tickets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ticket_id", "user_id", name="uq_starred_tickets_ticket_user"),
    )


class Notification(Base):
    """In-app notification; one row per (event, recipient)."""
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(40), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    related_ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
        Index("idx_notifications_dedupe", "type", "user_id", "related_ticket_id"),
    )


class NotificationPreference(Base):
    """Per-user switches; a missing row means everything is enabled."""
    __tablename__ = "notification_preferences"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    chat_clients = Column(Boolean, nullable=False, default=True)
    chat_internal = Column(Boolean, nullable=False, default=True)
    status_change = Column(Boolean, nullable=False, default=True)
    ticket_creation = Column(Boolean, nullable=False, default=True)
    # Stored for the settings screen; ticket_assigned is always delivered.
    ticket_assigned = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)


class AdminAction(Base):
    """Audit log of admin decisions on user accounts."""
    __tablename__ = "admin_actions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action_type = Column(String(50), nullable=False)
    target_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    details = Column(JsonList, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
