from __future__ import annotations

from ticketdesk.models import Notification, NotificationPreference, TicketMessage
from ticketdesk.services import notification_dispatcher as dispatcher
from ticketdesk.services.channels import SendResult


def _notifications(db, user, type_=None):
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if type_:
        query = query.filter(Notification.type == type_)
    return query.all()


def test_deliver_drops_actor_and_duplicate_recipients(db, make_user) -> None:
    actor = make_user("admin")
    other = make_user("employee")
    drafts = [
        dispatcher.NotificationDraft(user_id=uid, type="ticket_update", title="t", message="m")
        for uid in (actor.id, other.id, other.id)
    ]

    created = dispatcher.deliver(db, drafts, actor_id=actor.id)
    db.commit()

    assert [n.user_id for n in created] == [other.id]


def test_internal_message_never_reaches_clients(db, make_user, make_ticket) -> None:
    client = make_user("client")
    employee = make_user("employee")
    admin = make_user("admin")
    ticket = make_ticket(client, members=[employee, admin])
    message = TicketMessage(ticket_id=ticket.id, sender_id=employee.id, message="note", message_type="text", message_mode="internal")
    db.add(message)
    db.commit()

    created = dispatcher.notify_message_sent(db, message=message, ticket=ticket, sender=employee)
    db.commit()

    assert {n.user_id for n in created} == {admin.id}
    assert all(n.type == "chat_internal" for n in created)
    assert "[Internal]" in created[0].message


def test_client_message_uses_chat_clients_category_and_preferences(db, make_user, make_ticket) -> None:
    client = make_user("client")
    employee = make_user("employee")
    admin = make_user("admin")
    ticket = make_ticket(client, members=[employee, admin])
    db.add(NotificationPreference(user_id=employee.id, chat_clients=False))
    message = TicketMessage(ticket_id=ticket.id, sender_id=client.id, message="hi", message_type="text", message_mode="client")
    db.add(message)
    db.commit()

    created = dispatcher.notify_message_sent(db, message=message, ticket=ticket, sender=client)
    db.commit()

    assert {n.user_id for n in created} == {admin.id}
    assert created[0].type == "chat_clients"


def test_missing_preference_row_means_enabled(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    ticket = make_ticket(admin, members=[employee])

    created = dispatcher.notify_status_changed(db, ticket=ticket, actor=admin, old_status="Created", new_status="Ongoing")
    db.commit()

    assert [n.user_id for n in created] == [employee.id]
    assert "Created → Ongoing" in created[0].message


def test_status_change_respects_disabled_preference(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    ticket = make_ticket(admin, members=[employee])
    db.add(NotificationPreference(user_id=employee.id, status_change=False))
    db.commit()

    created = dispatcher.notify_status_changed(db, ticket=ticket, actor=admin, old_status="Created", new_status="Ongoing")

    assert created == []


def test_ticket_assigned_ignores_preferences_but_is_deduplicated_while_unread(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    ticket = make_ticket(admin)
    db.add(NotificationPreference(user_id=employee.id, ticket_assigned=False))
    db.commit()

    first = dispatcher.notify_members_added(db, ticket=ticket, user_ids=[employee.id], added_by=admin)
    db.commit()
    second = dispatcher.notify_members_added(db, ticket=ticket, user_ids=[employee.id], added_by=admin)
    db.commit()

    assert len(first) == 1
    assert second == []
    assert len(_notifications(db, employee, "ticket_assigned")) == 1

    first[0].is_read = True
    db.commit()
    third = dispatcher.notify_members_added(db, ticket=ticket, user_ids=[employee.id], added_by=admin)
    assert len(third) == 1


def test_self_addition_does_not_notify(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    ticket = make_ticket(admin)

    assert dispatcher.notify_members_added(db, ticket=ticket, user_ids=[employee.id], added_by=employee) == []


def test_priority_and_works_updates_skip_admins(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    other_admin = make_user("admin")
    client = make_user("client")
    freelancer = make_user("freelancer")
    ticket = make_ticket(client, members=[admin, other_admin, freelancer])

    priority = dispatcher.notify_priority_changed(db, ticket=ticket, actor=admin, old_priority="P3", new_priority="P1")
    works = dispatcher.notify_points_updated(db, ticket=ticket, actor=admin)
    db.commit()

    assert {n.user_id for n in priority} == {client.id, freelancer.id}
    assert {n.type for n in priority} == {"priority_updated"}
    assert {n.user_id for n in works} == {client.id, freelancer.id}


def test_user_request_goes_to_approved_admins_once(db, make_user) -> None:
    admin = make_user("admin")
    make_user("admin", approval_status="pending")
    requester = make_user("employee", approval_status="pending")

    first = dispatcher.notify_user_request(db, user=requester)
    db.commit()
    second = dispatcher.notify_user_request(db, user=requester)

    assert [n.user_id for n in first] == [admin.id]
    assert first[0].related_user_id == requester.id
    assert second == []


def test_whatsapp_outcome_is_recorded_as_read(db, make_user, make_ticket) -> None:
    client = make_user("client", phone="+1 555 0100")
    ticket = make_ticket(client)

    failed = dispatcher.record_whatsapp_outcome(
        db, ticket=ticket, recipient=client, result=SendResult(success=False, error="HTTP_500: boom")
    )
    db.commit()

    assert failed[0].type == "whatsapp_failed"
    assert failed[0].is_read is True
    assert "HTTP_500" in failed[0].message


def test_internal_message_skips_roleless_and_unapproved_members(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    staff = make_user("employee")
    registrant = make_user(None, approval_status="pending")
    applicant = make_user("employee", approval_status="pending")
    ticket = make_ticket(make_user("client"), members=[admin, staff, registrant, applicant])
    message = TicketMessage(ticket_id=ticket.id, sender_id=admin.id, message="note", message_type="text", message_mode="internal")
    db.add(message)
    db.commit()

    created = dispatcher.notify_message_sent(db, message=message, ticket=ticket, sender=admin)
    db.commit()

    assert {n.user_id for n in created} == {staff.id}
