from __future__ import annotations

from datetime import datetime
from uuid import uuid4

import pytest

from ticketdesk.domain_errors import DomainError
from ticketdesk.models import MessageHistory, MessageSeen, Notification, NotificationPreference, TicketMember
from ticketdesk.schemas import AccessRequest, MessageCreate
from ticketdesk.use_cases import ticket_messages as use_case
from ticketdesk.use_cases.ticket_reads import list_tickets_use_case
from ticketdesk.use_cases.user_accounts import submit_access_request_use_case


@pytest.fixture
def room(make_user, make_ticket):
    client = make_user("client", name="Cora Client")
    other_client = make_user("client", name="Olga Client")
    employee = make_user("employee", name="Emil Employee")
    admin = make_user("admin", name="Ada Admin")
    ticket = make_ticket(client, members=[other_client, employee, admin])
    return {"client": client, "other_client": other_client, "employee": employee, "admin": admin, "ticket": ticket}


def _send(db, ctx, ticket, user, text, mode=None):
    return use_case.send_message_use_case(
        db=db, ctx=ctx, ticket_id=ticket.id, payload=MessageCreate(message=text, message_mode=mode), current_user=user
    )


def test_default_mode_is_client_for_clients_and_internal_for_staff(db, ctx, room) -> None:
    from_client = _send(db, ctx, room["ticket"], room["client"], "hello")
    from_admin = _send(db, ctx, room["ticket"], room["admin"], "triage note")

    assert from_client.message_mode == "client"
    assert from_admin.message_mode == "internal"


def test_non_creator_client_never_sees_internal_messages(db, ctx, room, add_message) -> None:
    ticket = room["ticket"]
    add_message(ticket, room["admin"], "internal note", mode="internal", minutes_ago=2)
    add_message(ticket, room["client"], "public reply", mode="client", minutes_ago=1)

    seen_by_other = use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=ticket.id, current_user=room["other_client"])
    seen_by_creator = use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=ticket.id, current_user=room["client"])

    assert [m.message for m in seen_by_other] == ["public reply"]
    assert [m.message for m in seen_by_creator] == ["internal note", "public reply"]


def test_list_pages_backwards_with_before_cursor(db, ctx, room, add_message) -> None:
    ticket = room["ticket"]
    for minutes in (5, 4, 3, 2, 1):
        add_message(ticket, room["admin"], f"m{minutes}", minutes_ago=minutes)

    latest = use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=ticket.id, current_user=room["admin"], limit=2)
    older = use_case.list_messages_use_case(
        db=db, ctx=ctx, ticket_id=ticket.id, current_user=room["admin"], limit=2, before=latest[0].created_at
    )

    assert [m.message for m in latest] == ["m2", "m1"]
    assert [m.message for m in older] == ["m4", "m3"]


def test_page_size_is_bounded(db, ctx, room) -> None:
    with pytest.raises(DomainError) as exc_info:
        use_case.list_messages_use_case(
            db=db, ctx=ctx, ticket_id=room["ticket"].id, current_user=room["admin"], limit=10_000
        )
    assert exc_info.value.code == "MESSAGE_PAGE_SIZE_INVALID"


def test_client_cannot_post_internal(db, ctx, room) -> None:
    with pytest.raises(DomainError) as exc_info:
        _send(db, ctx, room["ticket"], room["client"], "psst", mode="internal")
    assert exc_info.value.code == "MESSAGE_MODE_FORBIDDEN"


def test_employee_needs_permission_for_client_mode(db, ctx, room) -> None:
    membership = db.query(TicketMember).filter(
        TicketMember.ticket_id == room["ticket"].id,
        TicketMember.user_id == room["employee"].id,
    ).first()
    membership.can_message_client = False
    db.commit()

    with pytest.raises(DomainError) as exc_info:
        _send(db, ctx, room["ticket"], room["employee"], "hi client", mode="client")
    assert exc_info.value.http_status == 403

    membership.can_message_client = True
    db.commit()
    assert _send(db, ctx, room["ticket"], room["employee"], "hi client", mode="client").message_mode == "client"


def test_internal_message_notifies_staff_only(db, ctx, room) -> None:
    _send(db, ctx, room["ticket"], room["admin"], "note", mode="internal")

    recipients = {n.user_id for n in db.query(Notification).filter(Notification.type == "chat_internal").all()}
    assert recipients == {room["employee"].id}
    assert "message_created" in ctx.publisher.event_names()


def test_reply_must_target_same_ticket(db, ctx, room, make_ticket, add_message) -> None:
    elsewhere = make_ticket(room["admin"])
    foreign = add_message(elsewhere, room["admin"], "other room")

    with pytest.raises(DomainError) as exc_info:
        use_case.send_message_use_case(
            db=db,
            ctx=ctx,
            ticket_id=room["ticket"].id,
            payload=MessageCreate(message="re", reply_to_message_id=foreign.id),
            current_user=room["admin"],
        )
    assert exc_info.value.code == "REPLY_TARGET_INVALID"


def test_edit_rules_and_history(db, ctx, room) -> None:
    message = _send(db, ctx, room["ticket"], room["client"], "typo")

    with pytest.raises(DomainError) as forbidden:
        use_case.edit_message_use_case(db=db, ctx=ctx, message_id=message.id, text="x", current_user=room["admin"])
    assert forbidden.value.code == "MESSAGE_EDIT_FORBIDDEN"

    edited = use_case.edit_message_use_case(db=db, ctx=ctx, message_id=message.id, text="fixed", current_user=room["client"])

    assert edited.message == "fixed"
    assert edited.is_edited is True
    history = db.query(MessageHistory).filter(MessageHistory.message_id == message.id).all()
    assert [(h.action, h.previous_content) for h in history] == [("edit", "typo")]


def test_soft_delete_keeps_row_and_second_delete_conflicts(db, ctx, room) -> None:
    message = _send(db, ctx, room["ticket"], room["client"], "oops")

    deleted = use_case.delete_message_use_case(db=db, ctx=ctx, message_id=message.id, current_user=room["admin"])
    assert deleted.is_deleted is True
    assert deleted.deleted_by == room["admin"].id
    assert deleted.message == "oops"

    with pytest.raises(DomainError) as exc_info:
        use_case.delete_message_use_case(db=db, ctx=ctx, message_id=message.id, current_user=room["admin"])
    assert exc_info.value.http_status == 409
    assert exc_info.value.code == "MESSAGE_ALREADY_DELETED"

    with pytest.raises(DomainError) as edit_exc:
        use_case.edit_message_use_case(db=db, ctx=ctx, message_id=message.id, text="again", current_user=room["client"])
    assert edit_exc.value.code == "MESSAGE_DELETED"

    listed = use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=room["ticket"].id, current_user=room["client"])
    assert listed[0].is_deleted is True
    assert listed[0].message == "This message was deleted"


def test_only_sender_or_admin_may_delete(db, ctx, room) -> None:
    message = _send(db, ctx, room["ticket"], room["client"], "mine")
    with pytest.raises(DomainError) as exc_info:
        use_case.delete_message_use_case(db=db, ctx=ctx, message_id=message.id, current_user=room["employee"])
    assert exc_info.value.code == "MESSAGE_DELETE_FORBIDDEN"


def test_forward_records_source_and_respects_target_mode(db, ctx, room, make_ticket) -> None:
    original = _send(db, ctx, room["ticket"], room["client"], "please escalate")
    target = make_ticket(room["admin"], members=[room["client"]])

    forwarded = use_case.forward_message_use_case(
        db=db, ctx=ctx, message_id=original.id, target_ticket_id=target.id, mode="internal", current_user=room["admin"]
    )
    assert forwarded.ticket_id == target.id
    assert forwarded.message == "please escalate"
    assert forwarded.forwarded_from_message_id == original.id
    assert forwarded.forwarded_from_ticket_id == room["ticket"].id

    with pytest.raises(DomainError) as exc_info:
        use_case.forward_message_use_case(
            db=db, ctx=ctx, message_id=original.id, target_ticket_id=target.id, mode="internal", current_user=room["client"]
        )
    assert exc_info.value.code == "MESSAGE_MODE_FORBIDDEN"

    view = use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=target.id, current_user=room["admin"])
    assert view[-1].forwarded_from.ticket_number == room["ticket"].ticket_number
    assert view[-1].forwarded_from.original_sender == "Cora Client"


def test_mark_seen_ignores_duplicates_and_invisible_messages(db, ctx, room, add_message) -> None:
    ticket = room["ticket"]
    public = add_message(ticket, room["admin"], "public", mode="client")
    internal = add_message(ticket, room["admin"], "internal", mode="internal")

    first = use_case.mark_messages_seen_use_case(
        db=db, ctx=ctx, ticket_id=ticket.id, message_ids=[public.id, internal.id, uuid4()], current_user=room["other_client"]
    )
    second = use_case.mark_messages_seen_use_case(
        db=db, ctx=ctx, ticket_id=ticket.id, message_ids=[public.id], current_user=room["other_client"]
    )

    assert first == 1
    assert second == 0
    assert db.query(MessageSeen).count() == 1


def test_chat_internal_opt_out_silences_internal_but_not_client_messages(db, ctx, room) -> None:
    employee = room["employee"]
    db.add(NotificationPreference(user_id=employee.id, chat_internal=False))
    db.commit()

    _send(db, ctx, room["ticket"], room["admin"], "staff only", mode="internal")
    assert db.query(Notification).filter(Notification.user_id == employee.id).count() == 0

    _send(db, ctx, room["ticket"], room["admin"], "update for the client", mode="client")
    [note] = db.query(Notification).filter(Notification.user_id == employee.id).all()
    assert note.type == "chat_clients"


def test_zero_limit_is_rejected(db, ctx, room) -> None:
    with pytest.raises(DomainError) as exc_info:
        use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=room["ticket"].id, current_user=room["admin"], limit=0)
    assert exc_info.value.code == "MESSAGE_PAGE_SIZE_INVALID"


def test_cursor_keeps_messages_that_share_a_timestamp(db, ctx, room, add_message) -> None:
    ticket = room["ticket"]
    stamp = datetime(2026, 5, 1, 9, 0, 0)
    sent = [add_message(ticket, room["admin"], f"burst {i}") for i in range(3)]
    for message in sent:
        message.created_at = stamp
    db.commit()

    first = use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=ticket.id, current_user=room["admin"], limit=2)
    rest = use_case.list_messages_use_case(
        db=db,
        ctx=ctx,
        ticket_id=ticket.id,
        current_user=room["admin"],
        limit=2,
        before=first[0].created_at,
        before_id=first[0].id,
    )

    paged = [m.id for m in rest] + [m.id for m in first]
    assert len(paged) == 3
    assert set(paged) == {m.id for m in sent}


@pytest.mark.parametrize("approval_status", ["pending", "rejected"])
def test_unapproved_employee_cannot_read_the_ticket(db, ctx, room, make_user, add_message, approval_status) -> None:
    add_message(room["ticket"], room["admin"], "secret internal note", mode="internal")
    applicant = make_user("employee", approval_status=approval_status)

    with pytest.raises(DomainError) as exc_info:
        use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=room["ticket"].id, current_user=applicant)

    assert exc_info.value.http_status == 403
    assert list_tickets_use_case(db=db, ctx=ctx, current_user=applicant).tickets == []


def test_self_requested_staff_role_grants_nothing_before_approval(db, ctx, room, make_user, add_message) -> None:
    add_message(room["ticket"], room["admin"], "secret internal note", mode="internal")
    newcomer = make_user(None, approval_status="pending")

    submit_access_request_use_case(
        db=db, ctx=ctx, payload=AccessRequest(name="Eve", role="employee"), current_user=newcomer
    )

    assert newcomer.role == "employee"
    assert list_tickets_use_case(db=db, ctx=ctx, current_user=newcomer).tickets == []
    with pytest.raises(DomainError):
        use_case.list_messages_use_case(db=db, ctx=ctx, ticket_id=room["ticket"].id, current_user=newcomer)
    with pytest.raises(DomainError):
        _send(db, ctx, room["ticket"], newcomer, "let me in", mode="internal")


def test_unapproved_sender_cannot_edit_or_delete(db, ctx, room) -> None:
    message = _send(db, ctx, room["ticket"], room["employee"], "draft")
    room["employee"].approval_status = "rejected"
    db.commit()

    with pytest.raises(DomainError) as edit_exc:
        use_case.edit_message_use_case(db=db, ctx=ctx, message_id=message.id, text="x", current_user=room["employee"])
    with pytest.raises(DomainError) as delete_exc:
        use_case.delete_message_use_case(db=db, ctx=ctx, message_id=message.id, current_user=room["employee"])

    assert edit_exc.value.http_status == delete_exc.value.http_status == 403
