"""Which messages of a ticket a user may read, and in which modes they may write.

One policy serves every read path (ticket details, message pages, dashboard
previews):

* mode filter - a client who did not create the ticket reads ``client``
  messages only; staff and the ticket creator read every mode;
* join-date filter - optional (``MESSAGE_JOIN_DATE_FILTER``); when enabled,
  members other than admins, employees and the creator read only messages
  posted at or after their ``added_at``.

Stored messages are never modified here.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Union
from uuid import UUID

from ..domain_errors import AuthorizationError
from ..enums import MessageMode, PRIVILEGED_ROLES, STAFF_ROLES, Role
from ..models import TicketMember, TicketMessage, User

ALL_MODES = frozenset(mode.value for mode in MessageMode)
CLIENT_ONLY = frozenset({MessageMode.CLIENT.value})


@dataclass(frozen=True)
class ActiveContent:
    text: str | None
    file_url: str | None = None
    file_name: str | None = None


@dataclass(frozen=True)
class DeletedContent:
    deleted_at: datetime | None
    deleted_by: UUID | None


MessageContent = Union[ActiveContent, DeletedContent]


def message_content(message: TicketMessage) -> MessageContent:
    if message.is_deleted:
        return DeletedContent(deleted_at=message.deleted_at, deleted_by=message.deleted_by)
    return ActiveContent(text=message.message, file_url=message.file_url, file_name=message.file_name)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class VisibilityRule:
    modes: frozenset[str]
    not_before: datetime | None = None

    def admits(self, message: TicketMessage) -> bool:
        if message.message_mode not in self.modes:
            return False
        if self.not_before is not None and message.created_at is not None:
            return _as_naive_utc(message.created_at) >= _as_naive_utc(self.not_before)
        return True

    def filter(self, messages: Iterable[TicketMessage]) -> list[TicketMessage]:
        return [message for message in messages if self.admits(message)]

    def apply(self, query):
        """Narrow a ``TicketMessage`` query to what the rule admits."""
        if self.modes != ALL_MODES:
            query = query.filter(TicketMessage.message_mode.in_(sorted(self.modes)))
        if self.not_before is not None:
            query = query.filter(TicketMessage.created_at >= self.not_before)
        return query


def sees_all_modes(user: User, *, is_creator: bool) -> bool:
    return user.role in STAFF_ROLES or is_creator


def visibility_rule(
    user: User,
    *,
    is_creator: bool,
    membership: TicketMember | None,
    join_date_filter: bool,
) -> VisibilityRule:
    modes = ALL_MODES if sees_all_modes(user, is_creator=is_creator) else CLIENT_ONLY
    not_before = None
    if (
        join_date_filter
        and membership is not None
        and not is_creator
        and user.role not in PRIVILEGED_ROLES
    ):
        not_before = membership.added_at
    return VisibilityRule(modes=modes, not_before=not_before)


def visibility_rule_for_access(access, *, join_date_filter: bool) -> VisibilityRule:
    return visibility_rule(
        access.user,
        is_creator=access.is_creator,
        membership=access.membership,
        join_date_filter=join_date_filter,
    )


def writable_modes(access) -> frozenset[str]:
    if access.role == Role.EMPLOYEE.value:
        if access.membership is not None and access.membership.can_message_client:
            return ALL_MODES
        return frozenset({MessageMode.INTERNAL.value})
    if access.role in STAFF_ROLES:
        return ALL_MODES
    return CLIENT_ONLY


def ensure_can_write_mode(access, mode: str) -> None:
    if mode in writable_modes(access):
        return
    if access.role == Role.CLIENT.value:
        raise AuthorizationError(
            code="MESSAGE_MODE_FORBIDDEN",
            message="Clients can only send messages in client mode",
        )
    raise AuthorizationError(
        code="MESSAGE_MODE_FORBIDDEN",
        message="You don't have permission to message the client in this ticket",
    )
