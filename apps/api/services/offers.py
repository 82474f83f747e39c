"""Clip consumption gate: a business spends one clip to apply to a project."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.business_clip import CLIP_PAYMENT_RECEIVED, BusinessClip
from models.offer import Offer
from models.project import Project
from models.user import PAYMENT_RECEIVED, ROLE_BUSINESS, User
from services.business_clips import get_active_clip
from services.clip_dates import ensure_utc, find_current_month_index
from services.clip_history import record_application
from services.clock import utcnow
from services.errors import ConflictError, NotFoundError, PreconditionFailedError

logger = logging.getLogger(__name__)

CLIPS_PER_APPLICATION = 1
MAX_DEBIT_ATTEMPTS = 5


def _insufficient_clips() -> PreconditionFailedError:
    return PreconditionFailedError(
        "You do not have enough clips to apply for this project",
        code="insufficient_clips",
    )


async def _get_plan_holder(db: AsyncSession, business_id: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(
            User.id == business_id,
            User.role == ROLE_BUSINESS,
            User.is_active.is_(True),
            User.payment_status == PAYMENT_RECEIVED,
            User.plan_assigned.is_(True),
        )
    )
    return result.scalar_one_or_none()


def _debited_history(clip: BusinessClip, now: datetime) -> Optional[list]:
    history = [dict(bucket) for bucket in (clip.month_history or [])]
    index = find_current_month_index(history, now)
    if index is None:
        return None
    history[index]["clip"] = int(history[index].get("clip", 0)) - CLIPS_PER_APPLICATION
    return history


async def _debit_clip(db: AsyncSession, clip: BusinessClip, business_id: str, now: datetime) -> BusinessClip:
    """
    Decrement remaining clips and the current month bucket in one statement.

    The update only matches while ``remaining_clips >= 1`` and the row version
    is unchanged. On a version miss the row is re-read and the debit retried;
    once no clips remain the request fails with nothing written.
    """
    for _ in range(MAX_DEBIT_ATTEMPTS):
        if clip is None or (clip.remaining_clips or 0) < CLIPS_PER_APPLICATION:
            raise _insufficient_clips()

        values: Dict[str, Any] = {
            "remaining_clips": BusinessClip.remaining_clips - CLIPS_PER_APPLICATION,
            "version": clip.version + 1,
        }
        history = _debited_history(clip, now)
        if history is not None:
            values["month_history"] = history

        result = await db.execute(
            update(BusinessClip)
            .where(
                BusinessClip.id == clip.id,
                BusinessClip.version == clip.version,
                BusinessClip.remaining_clips >= CLIPS_PER_APPLICATION,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return clip

        logger.info("Clip debit for business %s lost a race, re-reading ledger", business_id)
        clip = await get_active_clip(db, business_id, payment_status=CLIP_PAYMENT_RECEIVED)

    raise ConflictError("Business plan is busy. Try again.", code="ledger_conflict")


async def apply_project(
    db: AsyncSession,
    *,
    business_id: str,
    project_id: str,
    description: Optional[str] = None,
    estimated_duration: Optional[str] = None,
    amount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Spend one clip and create the business's offer for a project.

    The debit, the offer and the ``applied`` usage entry commit together or
    not at all.
    """
    current_time = ensure_utc(now or utcnow())

    business = await _get_plan_holder(db, business_id)
    if not business:
        logger.warning("Business %s has no active paid plan", business_id)
        raise NotFoundError("Business plan not found", code="business_plan_not_found")

    clip = await get_active_clip(db, business_id, payment_status=CLIP_PAYMENT_RECEIVED)
    if not clip or (clip.remaining_clips or 0) < CLIPS_PER_APPLICATION:
        logger.warning("Business %s has no clips left", business_id)
        raise _insufficient_clips()

    project_result = await db.execute(select(Project).where(Project.id == project_id))
    project = project_result.scalar_one_or_none()
    if not project:
        raise NotFoundError("Project not found", code="project_not_found")

    existing = await db.execute(
        select(Offer.id).where(Offer.business_id == business_id, Offer.project_id == project_id).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        logger.warning("Business %s already applied to project %s", business_id, project_id)
        raise ConflictError("You have already applied for this project", code="project_already_applied")

    try:
        clip = await _debit_clip(db, clip, business_id, current_time)
        offer = Offer(
            id=str(uuid.uuid4()),
            project_id=project_id,
            business_id=business_id,
            customer_id=project.customer_id,
            description=description,
            estimated_duration=estimated_duration,
            amount=amount,
            status="pending",
            clips_used=CLIPS_PER_APPLICATION,
        )
        db.add(offer)
        record_application(
            db,
            business_id=business_id,
            project_id=project_id,
            description=project.title,
            clips_used=CLIPS_PER_APPLICATION,
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("Duplicate offer for business %s on project %s", business_id, project_id)
        raise ConflictError("You have already applied for this project", code="project_already_applied") from exc
    except (PreconditionFailedError, ConflictError):
        await db.rollback()
        raise

    await db.refresh(clip)
    logger.info(
        "Business %s applied to project %s, %s clips remaining",
        business_id,
        project_id,
        clip.remaining_clips,
    )
    return {
        "offer_id": offer.id,
        "project_id": project_id,
        "business_id": business_id,
        "clips_used": CLIPS_PER_APPLICATION,
        "remaining_clips": clip.remaining_clips,
        "status": offer.status,
    }
