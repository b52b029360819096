from __future__ import annotations

from uuid import uuid4

import pytest

from ticketdesk.domain_errors import DomainError
from ticketdesk.models import Notification, StarredTicket, TicketMember
from ticketdesk.use_cases import ticket_members as use_case


def _member_ids(db, ticket):
    return {m.user_id for m in db.query(TicketMember).filter(TicketMember.ticket_id == ticket.id).all()}


def test_admin_adds_members_without_client_permission(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    freelancer = make_user("freelancer")
    ticket = make_ticket(admin)

    added = use_case.add_members_use_case(
        db=db, ctx=ctx, ticket_id=ticket.id, user_ids=[employee.id, freelancer.id], current_user=admin
    )

    assert {m.user_id for m in added} == {employee.id, freelancer.id}
    assert all(m.can_message_client is False for m in added)
    assigned = db.query(Notification).filter(Notification.type == "ticket_assigned").all()
    assert {n.user_id for n in assigned} == {employee.id, freelancer.id}


def test_non_member_employee_may_join_but_not_add_others(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    colleague = make_user("employee")
    ticket = make_ticket(admin)

    with pytest.raises(DomainError) as exc_info:
        use_case.add_members_use_case(db=db, ctx=ctx, ticket_id=ticket.id, user_ids=[colleague.id], current_user=employee)
    assert exc_info.value.http_status == 403

    use_case.add_members_use_case(db=db, ctx=ctx, ticket_id=ticket.id, user_ids=[employee.id], current_user=employee)

    assert employee.id in _member_ids(db, ticket)
    # Joining yourself does not notify yourself.
    assert db.query(Notification).filter(Notification.user_id == employee.id).count() == 0


def test_adding_existing_members_conflicts(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    ticket = make_ticket(admin, members=[employee])

    with pytest.raises(DomainError) as exc_info:
        use_case.add_members_use_case(db=db, ctx=ctx, ticket_id=ticket.id, user_ids=[employee.id], current_user=admin)

    assert exc_info.value.http_status == 409
    assert exc_info.value.code == "MEMBERS_ALREADY_PRESENT"


def test_staff_only_addition_rejects_clients_and_skips_existing(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    member = make_user("employee")
    newcomer = make_user("employee")
    client = make_user("client")
    ticket = make_ticket(admin, members=[member])

    with pytest.raises(DomainError) as exc_info:
        use_case.add_members_use_case(
            db=db, ctx=ctx, ticket_id=ticket.id, user_ids=[client.id], current_user=admin, staff_only=True
        )
    assert exc_info.value.code == "MEMBERS_NOT_STAFF"

    added = use_case.add_members_use_case(
        db=db, ctx=ctx, ticket_id=ticket.id, user_ids=[member.id, newcomer.id], current_user=admin, staff_only=True
    )
    assert [m.user_id for m in added] == [newcomer.id]


def test_available_staff_excludes_members_and_unapproved(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    member = make_user("employee")
    free = make_user("employee")
    make_user("employee", approval_status="pending")
    make_user("client")
    ticket = make_ticket(admin, members=[member])

    available = use_case.list_available_staff(db=db, ticket_id=ticket.id, current_user=admin)

    assert [u.id for u in available] == [free.id]


def test_remove_member_notifies_removed_user(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    freelancer = make_user("freelancer")
    ticket = make_ticket(admin, members=[freelancer])

    use_case.remove_member_use_case(db=db, ctx=ctx, ticket_id=ticket.id, user_id=freelancer.id, current_user=admin)

    assert freelancer.id not in _member_ids(db, ticket)
    [note] = db.query(Notification).filter(Notification.user_id == freelancer.id).all()
    assert note.type == "ticket_update"
    assert note.title == "Removed from Ticket"


def test_remove_member_edge_cases(db, ctx, make_user, make_ticket) -> None:
    client = make_user("client")
    admin = make_user("admin")
    employee = make_user("employee")
    outsider = make_user("freelancer")
    ticket = make_ticket(client, members=[admin, employee])

    cases = [
        (admin, client, "TICKET_CREATOR_PROTECTED"),
        (employee, employee, "MEMBER_SELF_REMOVAL"),
        (employee, admin, "MEMBER_REMOVAL_FORBIDDEN"),
        (admin, outsider, "MEMBER_NOT_FOUND"),
    ]
    for actor, target, code in cases:
        with pytest.raises(DomainError) as exc_info:
            use_case.remove_member_use_case(db=db, ctx=ctx, ticket_id=ticket.id, user_id=target.id, current_user=actor)
        assert exc_info.value.code == code

    assert _member_ids(db, ticket) == {client.id, admin.id, employee.id}


def test_client_permission_toggle_is_admin_only_and_for_employees(db, make_user, make_ticket) -> None:
    admin = make_user("admin")
    employee = make_user("employee")
    freelancer = make_user("freelancer")
    ticket = make_ticket(admin, members=[employee, freelancer])

    updated = use_case.update_member_permission_use_case(
        db=db, ticket_id=ticket.id, user_id=employee.id, can_message_client=False, current_user=admin
    )
    assert updated.can_message_client is False

    with pytest.raises(DomainError) as not_employee:
        use_case.update_member_permission_use_case(
            db=db, ticket_id=ticket.id, user_id=freelancer.id, can_message_client=True, current_user=admin
        )
    assert not_employee.value.code == "PERMISSION_TARGET_NOT_EMPLOYEE"

    with pytest.raises(DomainError) as not_admin:
        use_case.update_member_permission_use_case(
            db=db, ticket_id=ticket.id, user_id=employee.id, can_message_client=True, current_user=employee
        )
    assert not_admin.value.http_status == 403


def test_membership_check_and_stars(db, make_user, make_ticket) -> None:
    client = make_user("client")
    stranger = make_user("client")
    ticket = make_ticket(client)

    assert use_case.check_membership(db=db, ticket_id=ticket.id, current_user=client)["is_creator"] is True
    assert use_case.check_membership(db=db, ticket_id=ticket.id, current_user=stranger)["is_member"] is False

    use_case.star_ticket_use_case(db=db, ticket_id=ticket.id, current_user=client)
    use_case.star_ticket_use_case(db=db, ticket_id=ticket.id, current_user=client)
    assert db.query(StarredTicket).count() == 1

    use_case.unstar_ticket_use_case(db=db, ticket_id=ticket.id, current_user=client)
    assert db.query(StarredTicket).count() == 0

    with pytest.raises(DomainError):
        use_case.star_ticket_use_case(db=db, ticket_id=ticket.id, current_user=stranger)


def test_unstar_unknown_ticket_is_not_found(db, make_user) -> None:
    with pytest.raises(DomainError) as exc_info:
        use_case.unstar_ticket_use_case(db=db, ticket_id=uuid4(), current_user=make_user("client"))

    assert exc_info.value.http_status == 404
    assert exc_info.value.code == "TICKET_NOT_FOUND"
