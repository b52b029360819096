"""Ticket attachment endpoints."""
from __future__ import annotations

import logging
import mimetypes
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..context import AppContext, get_app_context
from ..database import get_db
from ..models import TicketFile, User
from ..schemas import ConfirmUploadRequest, TicketFileResponse, UserBrief
from ..use_cases.ticket_files import (
    confirm_upload_use_case,
    open_ticket_blob_use_case,
    upload_ticket_file_use_case,
)

router = APIRouter(prefix="/files", tags=["files"])
logger = logging.getLogger(__name__)


def _file_response(file: TicketFile, uploader: User) -> TicketFileResponse:
    return TicketFileResponse(
        id=file.id,
        file_name=file.file_name,
        file_url=file.file_url,
        file_size=file.file_size,
        mime_type=file.mime_type,
        created_at=file.created_at,
        uploader=UserBrief.model_validate(uploader),
    )


@router.post("/tickets/{ticket_id}", response_model=TicketFileResponse, status_code=status.HTTP_201_CREATED)
async def upload_ticket_file(
    ticket_id: UUID,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename is required")
    content = await file.read()
    record = upload_ticket_file_use_case(
        db=db,
        ctx=ctx,
        ticket_id=ticket_id,
        filename=file.filename,
        content=content,
        mime_type=file.content_type,
        current_user=current_user,
    )
    return _file_response(record, current_user)


@router.post("/tickets/{ticket_id}/confirm", response_model=TicketFileResponse, status_code=status.HTTP_201_CREATED)
def confirm_upload(
    ticket_id: UUID,
    data: ConfirmUploadRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    """Record a file the client already uploaded under the ticket's storage prefix."""
    record = confirm_upload_use_case(db=db, ctx=ctx, ticket_id=ticket_id, payload=data, current_user=current_user)
    return _file_response(record, current_user)


@router.get("/serve/{path:path}")
def serve_file(
    path: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_app_context),
):
    target = open_ticket_blob_use_case(db=db, ctx=ctx, path=path, current_user=current_user)
    media_type, _ = mimetypes.guess_type(target.name)
    return FileResponse(path=target, media_type=media_type or "application/octet-stream", filename=target.name)
