"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Optional
from datetime import datetime
from uuid import UUID

from .enums import MessageMode, MessageType


# Users
class UserBrief(BaseModel):
    """Brief user info for nested responses."""
    id: Optional[UUID] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserBrief):
    phone: Optional[str] = None
    approval_status: str
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class AccessRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    role: str
    phone: Optional[str] = None


class RejectUserRequest(BaseModel):
    reason: Optional[str] = None


# Tickets
class CreationFileUpload(BaseModel):
    name: str
    content_base64: str
    mime_type: Optional[str] = None


class TicketCreate(BaseModel):
    title: str
    description: Optional[str] = None
    priority: str = "P3"
    member_ids: list[UUID] = Field(default_factory=list)
    points: list[str] = Field(default_factory=list)
    files: list[CreationFileUpload] = Field(default_factory=list)


class TicketStatusUpdate(BaseModel):
    status: str


class TicketPriorityUpdate(BaseModel):
    priority: str


class TicketPointsUpdate(BaseModel):
    points: list[str]


class TicketResponse(BaseModel):
    id: UUID
    ticket_number: str
    uid: str
    title: str
    description: Optional[str] = None
    priority: str
    status: str
    created_by: Optional[UUID] = None
    points: list[Any] = Field(default_factory=list)
    creation_files: list[dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class MemberResponse(BaseModel):
    user: UserBrief
    added_by: Optional[UUID] = None
    added_at: Optional[datetime] = None
    can_message_client: bool = False


class TicketFileResponse(BaseModel):
    id: UUID
    file_name: str
    file_url: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = None
    uploader: Optional[UserBrief] = None


class TicketSummary(TicketResponse):
    """Dashboard row assembled by the batched loader."""
    creator: UserBrief
    members: list[MemberResponse] = Field(default_factory=list)
    files: list[TicketFileResponse] = Field(default_factory=list)
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_sender: Optional[str] = None
    is_starred: bool = False


class PartialFailureInfo(BaseModel):
    code: str
    message: str
    ticket_ids: list[UUID] = Field(default_factory=list)


class TicketListResponse(BaseModel):
    tickets: list[TicketSummary]
    partial_failures: list[PartialFailureInfo] = Field(default_factory=list)


class MembershipCheckResponse(BaseModel):
    is_member: bool
    is_creator: bool
    can_message_client: bool = False
    added_at: Optional[datetime] = None


# Messages
class ReplySummary(BaseModel):
    id: UUID
    sender_name: str
    preview: str


class ForwardedSummary(BaseModel):
    ticket_id: Optional[UUID] = None
    ticket_number: Optional[str] = None
    ticket_title: Optional[str] = None
    original_sender: Optional[str] = None


class SeenByResponse(BaseModel):
    user_id: UUID
    name: Optional[str] = None
    seen_at: datetime


class MessageResponse(BaseModel):
    id: UUID
    ticket_id: UUID
    sender: UserBrief
    message: Optional[str] = None
    message_type: str
    message_mode: str
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    is_edited: bool = False
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[UUID] = None
    reply_to: Optional[ReplySummary] = None
    forwarded_from: Optional[ForwardedSummary] = None
    seen_by: list[SeenByResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessageCreate(BaseModel):
    message: Optional[str] = None
    message_type: MessageType = MessageType.TEXT
    # Defaults to client mode for clients and internal mode for staff.
    message_mode: Optional[MessageMode] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    reply_to_message_id: Optional[UUID] = None


class MessageEdit(BaseModel):
    message: str


class MessageForward(BaseModel):
    target_ticket_id: UUID
    message_mode: str


class MessagesSeenRequest(BaseModel):
    message_ids: list[UUID]


class TicketDetailResponse(TicketResponse):
    creator: UserBrief
    members: list[MemberResponse] = Field(default_factory=list)
    files: list[TicketFileResponse] = Field(default_factory=list)
    messages: list[MessageResponse] = Field(default_factory=list)
    is_member: bool
    is_creator: bool
    writable_modes: list[str] = Field(default_factory=list)


# Members
class AddMembersRequest(BaseModel):
    user_ids: list[UUID] = Field(min_length=1)


class MemberPermissionUpdate(BaseModel):
    can_message_client: bool


# Files
class ConfirmUploadRequest(BaseModel):
    file_path: str
    file_name: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None


# Notifications
class NotificationResponse(BaseModel):
    id: UUID
    type: str
    title: str
    message: str
    related_user_id: Optional[UUID] = None
    related_ticket_id: Optional[UUID] = None
    is_read: bool
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class UnreadCountResponse(BaseModel):
    unread_count: int


class NotificationPreferences(BaseModel):
    chat_clients: bool = True
    chat_internal: bool = True
    status_change: bool = True
    ticket_creation: bool = True
    ticket_assigned: bool = True
    model_config = ConfigDict(from_attributes=True)


class NotificationPreferencesUpdate(BaseModel):
    chat_clients: bool
    chat_internal: bool
    status_change: bool
    ticket_creation: bool
    ticket_assigned: bool
