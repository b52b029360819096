"""Closed value sets shared by models, schemas and policies."""
from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"
    FREELANCER = "freelancer"
    CLIENT = "client"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TicketStatus(str, Enum):
    CREATED = "Created"
    ASSIGNED = "Assigned"
    ONGOING = "Ongoing"
    PENDING_WITH_REVIEWER = "Pending with reviewer"
    PENDING_WITH_CLIENT = "Pending with client"
    COMPLETED = "Completed"
    CLOSED = "Closed"


class Priority(str, Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"
    P5 = "P5"


class MessageMode(str, Enum):
    INTERNAL = "internal"
    CLIENT = "client"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    IMAGE = "image"


class NotificationType(str, Enum):
    """Values stored in ``notifications.type``."""

    CHAT_CLIENTS = "chat_clients"
    CHAT_INTERNAL = "chat_internal"
    STATUS_CHANGE = "status_change"
    TICKET_CREATION = "ticket_creation"
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_UPDATE = "ticket_update"
    PRIORITY_UPDATED = "priority_updated"
    WORKS_UPDATED = "works_updated"
    USER_REQUEST = "user_request"
    USER_APPROVED = "user_approved"
    USER_REJECTED = "user_rejected"
    WHATSAPP_SENT = "whatsapp_sent"
    WHATSAPP_FAILED = "whatsapp_failed"


class TicketAction(str, Enum):
    VIEW = "view"
    POST_MESSAGE = "postMessage"
    ADD_MEMBER = "addMember"
    REMOVE_MEMBER = "removeMember"
    CHANGE_STATUS = "changeStatus"
    CHANGE_PRIORITY = "changePriority"
    UPDATE_POINTS = "updatePoints"
    MANAGE_PERMISSIONS = "managePermissions"
    DELETE = "delete"
    EXPORT_ALL = "exportAll"


STAFF_ROLES = frozenset({Role.ADMIN.value, Role.EMPLOYEE.value, Role.FREELANCER.value})
PRIVILEGED_ROLES = frozenset({Role.ADMIN.value, Role.EMPLOYEE.value})


def values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]
