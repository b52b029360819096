from __future__ import annotations

import pytest

from ticketdesk.domain_errors import DomainError
from ticketdesk.models import TicketFile, TicketMessage
from ticketdesk.schemas import ConfirmUploadRequest
from ticketdesk.use_cases.ticket_files import (
    confirm_upload_use_case,
    open_ticket_blob_use_case,
    sanitize_filename,
    ticket_file_prefix,
    upload_ticket_file_use_case,
)


def test_sanitize_filename_strips_directories_and_unsafe_characters() -> None:
    assert sanitize_filename("35bf5afa-184f-495e-8a0d-7257fe204aa0.png") == "35bf5afa-184f-495e-8a0d-7257fe204aa0.png"
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("..") == "file"


def test_upload_rejects_disallowed_type_and_oversize(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    ticket = make_ticket(admin)

    with pytest.raises(DomainError) as bad_type:
        upload_ticket_file_use_case(
            db=db, ctx=ctx, ticket_id=ticket.id, filename="run.exe", content=b"x", mime_type=None, current_user=admin
        )
    assert bad_type.value.code == "FILE_TYPE_NOT_ALLOWED"

    ctx.settings.MAX_UPLOAD_SIZE = 4
    with pytest.raises(DomainError) as too_big:
        upload_ticket_file_use_case(
            db=db, ctx=ctx, ticket_id=ticket.id, filename="log.txt", content=b"too long", mime_type=None, current_user=admin
        )
    assert too_big.value.http_status == 413


def test_upload_requires_post_rights(db, ctx, make_user, make_ticket) -> None:
    ticket = make_ticket(make_user("client"))
    outsider = make_user("freelancer")

    with pytest.raises(DomainError) as exc_info:
        upload_ticket_file_use_case(
            db=db, ctx=ctx, ticket_id=ticket.id, filename="a.txt", content=b"a", mime_type=None, current_user=outsider
        )

    assert exc_info.value.http_status == 403
    assert db.query(TicketFile).count() == 0


def test_confirm_upload_only_records_listed_objects_under_the_ticket(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    ticket = make_ticket(admin)
    other = make_ticket(admin)
    path = f"{ticket_file_prefix(ticket.id)}/report.pdf"

    with pytest.raises(DomainError) as foreign:
        confirm_upload_use_case(
            db=db,
            ctx=ctx,
            ticket_id=other.id,
            payload=ConfirmUploadRequest(file_path=path, file_name="report.pdf"),
            current_user=admin,
        )
    assert foreign.value.code == "FILE_PATH_INVALID"

    with pytest.raises(DomainError) as missing:
        confirm_upload_use_case(
            db=db,
            ctx=ctx,
            ticket_id=ticket.id,
            payload=ConfirmUploadRequest(file_path=path, file_name="report.pdf"),
            current_user=admin,
        )
    assert missing.value.code == "FILE_NOT_IN_STORAGE"

    ctx.blob_store.upload(path, b"%PDF-1.7")
    record = confirm_upload_use_case(
        db=db,
        ctx=ctx,
        ticket_id=ticket.id,
        payload=ConfirmUploadRequest(file_path=path, file_name="report.pdf", file_size=8),
        current_user=admin,
    )

    assert record.file_url == ctx.blob_store.public_url(path)
    assert db.query(TicketFile).filter(TicketFile.ticket_id == ticket.id).count() == 1


def test_download_requires_access_to_the_owning_ticket(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    ticket = make_ticket(admin)
    path = f"{ticket_file_prefix(ticket.id)}/plan.pdf"
    ctx.blob_store.upload(path, b"%PDF")

    assert open_ticket_blob_use_case(db=db, ctx=ctx, path=path, current_user=admin).read_bytes() == b"%PDF"

    for outsider in (make_user("client"), make_user("employee", approval_status="pending")):
        with pytest.raises(DomainError) as exc_info:
            open_ticket_blob_use_case(db=db, ctx=ctx, path=path, current_user=outsider)
        assert exc_info.value.http_status == 403


@pytest.mark.parametrize("path", ["uploads/plan.pdf", "tickets/not-a-uuid/files/plan.pdf", "tickets/x"])
def test_download_of_paths_outside_ticket_storage_is_not_found(db, ctx, make_user, path) -> None:
    with pytest.raises(DomainError) as exc_info:
        open_ticket_blob_use_case(db=db, ctx=ctx, path=path, current_user=make_user("admin"))
    assert exc_info.value.code == "FILE_NOT_FOUND"


def test_internal_attachment_is_hidden_from_non_creator_client(db, ctx, make_user, make_ticket) -> None:
    admin = make_user("admin")
    creator = make_user("client")
    viewer = make_user("client")
    ticket = make_ticket(creator, members=[admin, viewer])
    path = f"{ticket_file_prefix(ticket.id)}/internal-costs.xlsx"
    url = ctx.blob_store.upload(path, b"costs")
    db.add(
        TicketMessage(
            ticket_id=ticket.id,
            sender_id=admin.id,
            message="internal-costs.xlsx",
            message_type="file",
            message_mode="internal",
            file_url=url,
            file_name="internal-costs.xlsx",
        )
    )
    db.commit()

    with pytest.raises(DomainError) as exc_info:
        open_ticket_blob_use_case(db=db, ctx=ctx, path=path, current_user=viewer)
    assert exc_info.value.code == "FILE_NOT_FOUND"

    assert open_ticket_blob_use_case(db=db, ctx=ctx, path=path, current_user=creator).read_bytes() == b"costs"
