"""Append-only clip usage history and its listings."""

from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.clip_usage_history import USAGE_APPLIED, USAGE_PURCHASED, ClipUsageHistory
from models.project import Project
from services.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_USAGE_TYPES = {USAGE_APPLIED, USAGE_PURCHASED}
HISTORY_SORT_KEYS = {"created_at", "clips_used", "usage_type", "description"}


def _record(
    *,
    business_id: str,
    clips_used: int,
    usage_type: str,
    description: Optional[str],
    project_id: Optional[str] = None,
) -> ClipUsageHistory:
    return ClipUsageHistory(
        id=str(uuid.uuid4()),
        business_id=business_id,
        project_id=project_id,
        clips_used=int(clips_used),
        usage_type=usage_type,
        description=description,
    )


def record_purchase(db: AsyncSession, *, business_id: str, clips: int, description: Optional[str]) -> ClipUsageHistory:
    """Stage a ``purchased`` entry on the session; the caller commits."""
    entry = _record(
        business_id=business_id,
        clips_used=max(int(clips or 0), 0),
        usage_type=USAGE_PURCHASED,
        description=description,
    )
    db.add(entry)
    return entry


def record_application(
    db: AsyncSession,
    *,
    business_id: str,
    project_id: str,
    description: Optional[str],
    clips_used: int = 1,
) -> ClipUsageHistory:
    """Stage an ``applied`` entry on the session; the caller commits."""
    entry = _record(
        business_id=business_id,
        clips_used=clips_used,
        usage_type=USAGE_APPLIED,
        description=description,
        project_id=project_id,
    )
    db.add(entry)
    return entry


def page_window(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    page_number = max(int(page or 1), 1)
    page_limit = int(limit or settings.CLIP_DEFAULT_PAGE_SIZE)
    page_limit = max(1, min(page_limit, int(settings.CLIP_MAX_PAGE_SIZE)))
    return page_number, page_limit


def page_envelope(items: list, total: int, page_number: int, page_limit: int) -> Dict[str, Any]:
    return {
        "items": items,
        "total_count": total,
        "items_count": len(items),
        "current_page": page_number,
        "total_page": math.ceil(total / page_limit) if page_limit else 0,
        "page_size": page_limit,
    }


async def list_clip_history(
    db: AsyncSession,
    *,
    business_id: str,
    page: Optional[int] = 1,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    sort_key: Optional[str] = None,
    sort_value: Optional[str] = "desc",
    usage_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Paginated usage entries for one business, newest first by default."""
    if usage_type and usage_type not in ALLOWED_USAGE_TYPES:
        raise ValidationError(f"usage_type must be one of {sorted(ALLOWED_USAGE_TYPES)}", code="invalid_usage_type")

    page_number, page_limit = page_window(page, limit)
    filters = [ClipUsageHistory.business_id == business_id]
    if usage_type:
        filters.append(ClipUsageHistory.usage_type == usage_type)
    term = str(search or "").strip()
    if term:
        pattern = f"%{term.lower()}%"
        filters.append(
            or_(
                func.lower(ClipUsageHistory.usage_type).like(pattern),
                func.lower(ClipUsageHistory.description).like(pattern),
            )
        )

    total_result = await db.execute(select(func.count(ClipUsageHistory.id)).where(*filters))
    total = int(total_result.scalar() or 0)

    sort_column = getattr(ClipUsageHistory, sort_key if sort_key in HISTORY_SORT_KEYS else "created_at")
    ordering = sort_column.asc() if sort_value == "asc" else sort_column.desc()

    result = await db.execute(
        select(ClipUsageHistory, Project.title)
        .outerjoin(Project, Project.id == ClipUsageHistory.project_id)
        .where(*filters)
        .order_by(ordering, ClipUsageHistory.id)
        .offset((page_number - 1) * page_limit)
        .limit(page_limit)
    )
    items = [
        {
            "id": entry.id,
            "project_id": entry.project_id,
            "project_title": project_title,
            "clips_used": entry.clips_used,
            "usage_type": entry.usage_type,
            "title": entry.description,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry, project_title in result.all()
    ]
    logger.info("Clip usage history listed for business %s (%s of %s)", business_id, len(items), total)
    return page_envelope(items, total, page_number, page_limit)


async def business_clip_history(
    db: AsyncSession,
    *,
    business_id: str,
    page: Optional[int] = 1,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    sort_key: Optional[str] = None,
    sort_value: Optional[str] = "desc",
) -> Dict[str, Any]:
    """Admin view of a business's usage entries across both types."""
    return await list_clip_history(
        db,
        business_id=business_id,
        page=page,
        limit=limit,
        search=search,
        sort_key=sort_key,
        sort_value=sort_value,
    )
