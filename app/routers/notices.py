from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator
from sqlalchemy import or_

from app.core.database import utcnow
from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.fsm import states
from app.fsm.engine import NOTICE_MACHINE, notice_state
from app.models.notice import NOTICE_AUDIENCES, NOTICE_PRIORITIES, NOTICE_TYPES, NoticeEvent
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.records import changes_from, create_record, delete_record, update_record
from app.services.serializers import to_dict, to_dicts
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/notices", tags=["notices"])

TYPE_PATTERN = "^(" + "|".join(NOTICE_TYPES) + ")$"
PRIORITY_PATTERN = "^(" + "|".join(NOTICE_PRIORITIES) + ")$"
AUDIENCE_PATTERN = "^(" + "|".join(NOTICE_AUDIENCES) + ")$"


class NoticeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    type: str = Field("notice", pattern=TYPE_PATTERN)
    priority: str = Field("medium", pattern=PRIORITY_PATTERN)
    target_audience: str = Field("all", pattern=AUDIENCE_PATTERN)
    is_published: bool = False
    publish_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    attachment_url: Optional[str] = Field(None, max_length=500)

    @field_validator("expiry_date")
    @classmethod
    def _after_publish_date(cls, value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        publish_date = info.data.get("publish_date")
        if value is not None and publish_date is not None and value <= publish_date:
            raise ValueError("The expiry date must be after the publish date")
        return value


class NoticeUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    type: Optional[str] = Field(None, pattern=TYPE_PATTERN)
    priority: Optional[str] = Field(None, pattern=PRIORITY_PATTERN)
    target_audience: Optional[str] = Field(None, pattern=AUDIENCE_PATTERN)
    publish_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    attachment_url: Optional[str] = Field(None, max_length=500)


@router.get("")
def list_notices(
    params: ListParams = Depends(list_params),
    type: Optional[str] = None,
    priority: Optional[str] = None,
    target_audience: Optional[str] = None,
    is_published: Optional[bool] = None,
    active_only: bool = False,
    ctx: RequestContext = Depends(require_permission(Permission.NOTICES_VIEW)),
):
    query = scoped_query(ctx, NoticeEvent)
    if type:
        query = query.filter(NoticeEvent.type == type)
    if priority:
        query = query.filter(NoticeEvent.priority == priority)
    if target_audience:
        query = query.filter(NoticeEvent.target_audience == target_audience)
    if is_published is not None:
        query = query.filter(NoticeEvent.is_published.is_(is_published))
    if active_only:
        now = utcnow()
        query = query.filter(
            NoticeEvent.is_published.is_(True),
            or_(NoticeEvent.publish_date.is_(None), NoticeEvent.publish_date <= now),
            or_(NoticeEvent.expiry_date.is_(None), NoticeEvent.expiry_date > now),
        )
    query = apply_filters(
        query,
        NoticeEvent,
        params,
        search_fields=("title", "content"),
        sortable=("title", "priority", "publish_date", "expiry_date"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Notices retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_notice(payload: NoticeCreate, ctx: RequestContext = Depends(require_permission(Permission.NOTICES_CREATE))):
    data = payload.model_dump()
    data["created_by"] = ctx.user_id
    if data["is_published"] and data["publish_date"] is None:
        data["publish_date"] = utcnow()
    with atomic(ctx.db, "Failed to create notice"):
        notice = create_record(ctx, NoticeEvent, data, entity="notice")
    return envelope(to_dict(notice), "Notice created successfully", tenant=ctx.tenant)


@router.get("/{notice_id}")
def show_notice(notice_id: int, ctx: RequestContext = Depends(require_permission(Permission.NOTICES_VIEW))):
    notice = get_scoped_or_404(ctx, NoticeEvent, notice_id, "Notice")
    return envelope(to_dict(notice), "Notice retrieved successfully", tenant=ctx.tenant)


@router.put("/{notice_id}")
def update_notice(
    notice_id: int,
    payload: NoticeUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.NOTICES_EDIT)),
):
    notice = get_scoped_or_404(ctx, NoticeEvent, notice_id, "Notice")
    with atomic(ctx.db, "Failed to update notice"):
        update_record(ctx, notice, changes_from(payload, NoticeEvent), entity="notice")
    return envelope(to_dict(notice), "Notice updated successfully", tenant=ctx.tenant)


@router.delete("/{notice_id}")
def delete_notice(notice_id: int, ctx: RequestContext = Depends(require_permission(Permission.NOTICES_DELETE))):
    notice = get_scoped_or_404(ctx, NoticeEvent, notice_id, "Notice")
    with atomic(ctx.db, "Failed to delete notice"):
        delete_record(ctx, notice, entity="notice")
    return envelope(None, "Notice deleted successfully", tenant=ctx.tenant)


def _set_published(ctx: RequestContext, notice_id: int, action: str) -> NoticeEvent:
    notice = get_scoped_or_404(ctx, NoticeEvent, notice_id, "Notice")
    published = NOTICE_MACHINE.apply(notice_state(notice.is_published), action) == states.NOTICE_PUBLISHED
    changes = {"is_published": published}
    if published and notice.publish_date is None:
        changes["publish_date"] = utcnow()
    with atomic(ctx.db, f"Failed to {action} notice"):
        update_record(ctx, notice, changes, entity="notice")
    return notice


@router.post("/{notice_id}/publish")
def publish_notice(notice_id: int, ctx: RequestContext = Depends(require_permission(Permission.NOTICES_PUBLISH))):
    notice = _set_published(ctx, notice_id, "publish")
    return envelope(to_dict(notice), "Notice published successfully", tenant=ctx.tenant)


@router.post("/{notice_id}/unpublish")
def unpublish_notice(notice_id: int, ctx: RequestContext = Depends(require_permission(Permission.NOTICES_PUBLISH))):
    notice = _set_published(ctx, notice_id, "unpublish")
    return envelope(to_dict(notice), "Notice unpublished successfully", tenant=ctx.tenant)
