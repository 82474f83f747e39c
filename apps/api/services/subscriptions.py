"""Clip subscription catalog: admin-managed plan templates."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.business_clip import (
    CLIP_PAYMENT_PENDING,
    CLIP_PAYMENT_RECEIVED,
    CLIP_STATUS_ACTIVE,
    BusinessClip,
)
from models.clip_subscription import ClipSubscription
from services.clip_dates import parse_validity_period
from services.clip_history import page_envelope, page_window
from services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "package_name",
    "package_description",
    "price",
    "total_clips",
    "validity_days",
    "monthly_duration",
)
SUBSCRIPTION_SORT_KEYS = {"created_at", "package_name", "price", "total_clips", "monthly_duration", "validity_days"}


def _serialize(subscription: ClipSubscription) -> Dict[str, Any]:
    return {
        "id": subscription.id,
        "package_name": subscription.package_name,
        "package_description": subscription.package_description,
        "price": subscription.price,
        "total_clips": subscription.total_clips,
        "validity_days": subscription.validity_days,
        "monthly_duration": subscription.monthly_duration,
        "created_at": subscription.created_at.isoformat() if subscription.created_at else None,
    }


async def _name_taken(db: AsyncSession, package_name: str, exclude_id: Optional[str] = None) -> bool:
    query = select(ClipSubscription.id).where(
        func.lower(ClipSubscription.package_name) == package_name.strip().lower(),
        ClipSubscription.is_deleted.is_(False),
    )
    if exclude_id:
        query = query.where(ClipSubscription.id != exclude_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none() is not None


async def get_active_subscription(db: AsyncSession, subscription_id: str) -> ClipSubscription:
    result = await db.execute(
        select(ClipSubscription).where(
            ClipSubscription.id == subscription_id,
            ClipSubscription.is_deleted.is_(False),
        )
    )
    subscription = result.scalar_one_or_none()
    if not subscription:
        logger.warning("Subscription %s not found", subscription_id)
        raise NotFoundError("Subscription not found", code="clip_subscription_not_found")
    return subscription


async def add_subscription(db: AsyncSession, payload: Dict[str, Any]) -> Dict[str, Any]:
    package_name = str(payload.get("package_name") or "").strip()
    if await _name_taken(db, package_name):
        logger.warning("Subscription name %r already exists", package_name)
        raise ConflictError("Subscription with this package name already exists", code="subscription_already_exist")
    if payload.get("validity_days"):
        parse_validity_period(payload["validity_days"])

    subscription = ClipSubscription(
        id=str(uuid.uuid4()),
        package_name=package_name,
        is_deleted=False,
        **{key: payload.get(key) for key in EDITABLE_FIELDS if key != "package_name"},
    )
    db.add(subscription)
    await db.commit()
    await db.refresh(subscription)
    logger.info("Subscription %s created", subscription.id)
    return _serialize(subscription)


async def view_subscription(db: AsyncSession, subscription_id: str) -> Dict[str, Any]:
    subscription = await get_active_subscription(db, subscription_id)
    return _serialize(subscription)


async def update_subscription(db: AsyncSession, subscription_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    subscription = await get_active_subscription(db, subscription_id)
    package_name = payload.get("package_name")
    if package_name and await _name_taken(db, package_name, exclude_id=subscription_id):
        logger.warning("Subscription name %r already exists", package_name)
        raise ConflictError("Subscription with this package name already exists", code="subscription_already_exist")
    if payload.get("validity_days"):
        parse_validity_period(payload["validity_days"])

    for key in EDITABLE_FIELDS:
        if key in payload and payload[key] is not None:
            value = payload[key].strip() if key == "package_name" else payload[key]
            setattr(subscription, key, value)
    await db.commit()
    await db.refresh(subscription)
    logger.info("Subscription %s updated", subscription_id)
    return _serialize(subscription)


async def delete_subscription(db: AsyncSession, subscription_id: str) -> Dict[str, Any]:
    result = await db.execute(select(ClipSubscription).where(ClipSubscription.id == subscription_id))
    subscription = result.scalar_one_or_none()
    if not subscription:
        logger.warning("Subscription %s not found", subscription_id)
        raise NotFoundError("Subscription not found", code="clip_subscription_not_found")

    subscription.is_deleted = True
    await db.commit()
    logger.info("Subscription %s soft-deleted", subscription_id)
    return {"id": subscription_id, "is_deleted": True}


def _plan_status(payment_status: Optional[str]) -> str:
    if payment_status == CLIP_PAYMENT_RECEIVED:
        return "accepted"
    if payment_status == CLIP_PAYMENT_PENDING:
        return "requested"
    return "pending"


async def list_subscriptions(
    db: AsyncSession,
    *,
    business_id: Optional[str] = None,
    page: Optional[int] = 1,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    sort_key: Optional[str] = None,
    sort_value: Optional[str] = "desc",
) -> Dict[str, Any]:
    """
    Paginated catalog listing of non-deleted plans.

    With ``business_id`` each item reports the business's relation to that
    plan: ``accepted`` (paid), ``requested`` (awaiting payment) or ``pending``.
    """
    page_number, page_limit = page_window(page, limit)
    filters = [ClipSubscription.is_deleted.is_(False)]
    term = str(search or "").strip()
    if term:
        filters.append(func.lower(ClipSubscription.package_name).like(f"%{term.lower()}%"))

    total_result = await db.execute(select(func.count(ClipSubscription.id)).where(*filters))
    total = int(total_result.scalar() or 0)

    sort_column = getattr(ClipSubscription, sort_key if sort_key in SUBSCRIPTION_SORT_KEYS else "created_at")
    ordering = sort_column.asc() if sort_value == "asc" else sort_column.desc()
    result = await db.execute(
        select(ClipSubscription)
        .where(*filters)
        .order_by(ordering, ClipSubscription.id)
        .offset((page_number - 1) * page_limit)
        .limit(page_limit)
    )
    subscriptions = result.scalars().all()

    statuses: Dict[str, str] = {}
    if business_id and subscriptions:
        clip_result = await db.execute(
            select(BusinessClip.subscription_id, BusinessClip.payment_status).where(
                BusinessClip.business_id == business_id,
                BusinessClip.status == CLIP_STATUS_ACTIVE,
                BusinessClip.payment_status.in_([CLIP_PAYMENT_PENDING, CLIP_PAYMENT_RECEIVED]),
                BusinessClip.subscription_id.in_([item.id for item in subscriptions]),
            )
        )
        statuses = {subscription_id: payment_status for subscription_id, payment_status in clip_result.all()}

    items = []
    for subscription in subscriptions:
        item = _serialize(subscription)
        if business_id:
            item["plan_status"] = _plan_status(statuses.get(subscription.id))
        items.append(item)

    return page_envelope(items, total, page_number, page_limit)
