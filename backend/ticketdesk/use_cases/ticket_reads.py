"""Read-side use-cases: ticket dashboard and ticket details."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from ..context import AppContext
from ..enums import Role, TicketAction
from ..models import TicketFile, TicketMember, TicketMessage, User
from ..schemas import (
    MemberResponse,
    PartialFailureInfo,
    TicketDetailResponse,
    TicketFileResponse,
    TicketListResponse,
    UserBrief,
)
from ..security import authorize_ticket_action
from ..services.message_response_builder import messages_to_response
from ..services.message_visibility import visibility_rule_for_access, writable_modes
from ..services.ticket_loader import TicketAggregationLoader, placeholder_user


def build_ticket_loader(ctx: AppContext) -> TicketAggregationLoader:
    settings = ctx.settings
    return TicketAggregationLoader(
        session_factory=ctx.session_factory,
        pool=ctx.query_pool,
        chunk_size=settings.AGGREGATION_CHUNK_SIZE,
        messages_per_ticket=settings.AGGREGATION_MESSAGES_PER_TICKET,
        join_date_filter=settings.MESSAGE_JOIN_DATE_FILTER,
    )


def list_tickets_use_case(*, db: Session, ctx: AppContext, current_user: User) -> TicketListResponse:
    result = build_ticket_loader(ctx).load(db, current_user)
    return TicketListResponse(
        tickets=result.tickets,
        partial_failures=[
            PartialFailureInfo(
                code=failure.code,
                message=failure.message,
                ticket_ids=(failure.details or {}).get("ticket_ids", []),
            )
            for failure in result.partial_failures
        ],
    )


def get_ticket_details_use_case(*, db: Session, ctx: AppContext, ticket_id: UUID, current_user: User) -> TicketDetailResponse:
    access = authorize_ticket_action(db, ticket_id=ticket_id, user=current_user, action=TicketAction.VIEW)
    ticket = access.ticket

    members = db.query(TicketMember).filter(TicketMember.ticket_id == ticket.id).order_by(TicketMember.added_at).all()
    files = db.query(TicketFile).filter(TicketFile.ticket_id == ticket.id).order_by(TicketFile.created_at.desc()).all()

    user_ids = {member.user_id for member in members}
    user_ids.update(file.uploaded_by for file in files if file.uploaded_by)
    if ticket.created_by:
        user_ids.add(ticket.created_by)
    users_by_id = {user.id: user for user in db.query(User).filter(User.id.in_(user_ids)).all()} if user_ids else {}

    def brief(user_id: UUID | None) -> UserBrief:
        user = users_by_id.get(user_id) if user_id else None
        return UserBrief.model_validate(user) if user else placeholder_user(user_id)

    rule = visibility_rule_for_access(access, join_date_filter=ctx.settings.MESSAGE_JOIN_DATE_FILTER)
    messages = (
        rule.apply(db.query(TicketMessage).filter(TicketMessage.ticket_id == ticket.id))
        .order_by(TicketMessage.created_at.desc())
        .limit(ctx.settings.MESSAGE_PAGE_SIZE)
        .all()
    )
    messages.reverse()

    return TicketDetailResponse(
        id=ticket.id,
        ticket_number=ticket.ticket_number,
        uid=ticket.uid,
        title=ticket.title,
        description=ticket.description,
        priority=ticket.priority,
        status=ticket.status,
        created_by=ticket.created_by,
        points=list(ticket.points or []),
        creation_files=list(ticket.creation_files or []),
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
        creator=brief(ticket.created_by),
        members=[
            MemberResponse(
                user=brief(member.user_id),
                added_by=member.added_by,
                added_at=member.added_at,
                can_message_client=member.can_message_client,
            )
            for member in members
        ],
        files=[
            TicketFileResponse(
                id=file.id,
                file_name=file.file_name,
                file_url=file.file_url,
                file_size=file.file_size,
                mime_type=file.mime_type,
                created_at=file.created_at,
                uploader=brief(file.uploaded_by) if file.uploaded_by else None,
            )
            for file in files
        ],
        messages=messages_to_response(db, messages, rule=rule),
        is_member=access.is_member or access.role == Role.ADMIN.value,
        is_creator=access.is_creator,
        writable_modes=sorted(writable_modes(access)) if access.allows(TicketAction.POST_MESSAGE) else [],
    )
