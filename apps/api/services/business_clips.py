"""Business clip ledger: plan assignment, renewal, refill, payment and expiry."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Set

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.business_clip import (
    CLIP_PAYMENT_PENDING,
    CLIP_PAYMENT_RECEIVED,
    CLIP_PAYMENT_REJECTED,
    CLIP_STATUS_ACTIVE,
    CLIP_STATUS_EXPIRED,
    BusinessClip,
)
from models.clip_refill import ClipRefill
from models.clip_renewal import ClipRenewal
from models.clip_subscription import ClipSubscription
from models.user import (
    PAYMENT_PENDING,
    PAYMENT_RECEIVED,
    PAYMENT_REJECTED,
    ROLE_BUSINESS,
    User,
)
from services.clip_dates import (
    build_period,
    ensure_utc,
    find_current_month_index,
    next_expiry_boundary,
)
from services.clip_history import page_envelope, page_window, record_purchase
from services.clock import utcnow
from services.errors import ConflictError, NotFoundError, PreconditionFailedError, ValidationError
from services.subscriptions import get_active_subscription

logger = logging.getLogger(__name__)

ALLOWED_PAYMENT_STATUSES = {CLIP_PAYMENT_PENDING, CLIP_PAYMENT_RECEIVED, CLIP_PAYMENT_REJECTED}
BUSINESS_PAYMENT_FLAGS = {
    CLIP_PAYMENT_PENDING: PAYMENT_PENDING,
    CLIP_PAYMENT_RECEIVED: PAYMENT_RECEIVED,
    CLIP_PAYMENT_REJECTED: PAYMENT_REJECTED,
}
PURCHASING_SORT_KEYS = {
    "created_at",
    "expiry_date",
    "package_name",
    "price",
    "remaining_clips",
    "status",
    "payment_status",
}

_background_sweeps: Set[asyncio.Task] = set()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


def _is_live(clip: BusinessClip, now: datetime) -> bool:
    """Active rows with no expiry yet (awaiting payment) count as live."""
    if clip.status != CLIP_STATUS_ACTIVE:
        return False
    if clip.expiry_date is None:
        return True
    return ensure_utc(clip.expiry_date) > now


def serialize_business_clip(clip: BusinessClip, now: Optional[datetime] = None) -> Dict[str, Any]:
    history = list(clip.month_history or [])
    current_index = find_current_month_index(history, now)
    return {
        "id": clip.id,
        "business_id": clip.business_id,
        "subscription_id": clip.subscription_id,
        "package_name": clip.package_name,
        "package_description": clip.package_description,
        "price": clip.price,
        "validity_days": clip.validity_days,
        "monthly_duration": clip.monthly_duration,
        "total_clips": clip.total_clips,
        "remaining_clips": clip.remaining_clips,
        "monthly_remaining_clips": history[current_index]["clip"] if current_index is not None else 0,
        "month_history": history,
        "purchased_at": _iso(clip.purchased_at),
        "expiry_date": _iso(clip.expiry_date),
        "status": clip.status,
        "payment_status": clip.payment_status,
        "created_at": _iso(clip.created_at),
    }


async def get_business(db: AsyncSession, business_id: str) -> User:
    result = await db.execute(
        select(User).where(
            User.id == business_id,
            User.role == ROLE_BUSINESS,
            User.is_active.is_(True),
        )
    )
    business = result.scalar_one_or_none()
    if not business:
        logger.warning("Business %s not found", business_id)
        raise NotFoundError("Business not found", code="business_not_found")
    return business


async def get_active_clip(
    db: AsyncSession,
    business_id: str,
    *,
    payment_status: Optional[str] = None,
) -> Optional[BusinessClip]:
    """Current active ledger row, always re-read from the database."""
    query = select(BusinessClip).where(
        BusinessClip.business_id == business_id,
        BusinessClip.status == CLIP_STATUS_ACTIVE,
    )
    if payment_status:
        query = query.where(BusinessClip.payment_status == payment_status)
    result = await db.execute(
        query.order_by(BusinessClip.created_at.desc()).limit(1).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _get_latest_clip(db: AsyncSession, business_id: str) -> Optional[BusinessClip]:
    result = await db.execute(
        select(BusinessClip)
        .where(BusinessClip.business_id == business_id)
        .order_by(
            case((BusinessClip.status == CLIP_STATUS_ACTIVE, 0), else_=1),
            BusinessClip.created_at.desc(),
        )
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _rewrite_clip(db: AsyncSession, clip: BusinessClip, values: Dict[str, Any]) -> None:
    """Versioned update of a ledger row; a concurrent rewrite raises Conflict."""
    result = await db.execute(
        update(BusinessClip)
        .where(BusinessClip.id == clip.id, BusinessClip.version == clip.version)
        .values(**values, version=clip.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.warning("Ledger row %s changed concurrently", clip.id)
        raise ConflictError("Business plan was modified concurrently. Reload and try again.", code="ledger_conflict")


async def _commit_ledger(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("Active plan uniqueness violated: %s", exc.orig)
        raise ConflictError("Business already has an active plan", code="already_have_plan") from exc


async def _retire_stale_plan(db: AsyncSession, business_id: str, now: datetime) -> None:
    """Reject when a live plan exists, otherwise expire a lapsed active row."""
    current = await get_active_clip(db, business_id)
    if current is None:
        return
    if _is_live(current, now):
        logger.warning("Business %s already has a live plan %s", business_id, current.id)
        raise ConflictError("Business already has an active plan", code="already_have_plan")
    await _rewrite_clip(db, current, {"status": CLIP_STATUS_EXPIRED})


def _snapshot(subscription: ClipSubscription, *, price: Any, validity_days: Optional[str], monthly: Optional[int]) -> Dict[str, Any]:
    return {
        "subscription_id": subscription.id,
        "package_name": subscription.package_name,
        "package_description": subscription.package_description,
        "price": price if price is not None else subscription.price,
        "validity_days": validity_days or subscription.validity_days,
        "monthly_duration": int(monthly if monthly is not None else (subscription.monthly_duration or 0)),
    }


def _period_values(validity_days: Optional[str], monthly: int, now: datetime) -> Dict[str, Any]:
    if not validity_days:
        raise ValidationError("validity_days is required to build a subscription period", code="invalid_validity_period")
    period = build_period(validity_days, monthly, now)
    return {
        "purchased_at": period["purchased_at"],
        "expiry_date": period["expiry_date"],
        "month_history": period["month_history"],
        "total_clips": period["total_clips"],
        "remaining_clips": period["total_clips"],
    }


async def assign_business_plan(
    db: AsyncSession,
    *,
    business_id: str,
    subscription_id: str,
    validity_days: Optional[str] = None,
    monthly_duration: Optional[int] = None,
    price: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Admin assigns a catalog plan, optionally overriding price/validity/allotment."""
    current_time = ensure_utc(now or utcnow())
    business = await get_business(db, business_id)
    await _retire_stale_plan(db, business_id, current_time)
    subscription = await get_active_subscription(db, subscription_id)

    snapshot = _snapshot(subscription, price=price, validity_days=validity_days, monthly=monthly_duration)
    clip = BusinessClip(
        id=str(uuid.uuid4()),
        business_id=business_id,
        status=CLIP_STATUS_ACTIVE,
        payment_status=CLIP_PAYMENT_PENDING,
        version=1,
        **snapshot,
        **_period_values(snapshot["validity_days"], snapshot["monthly_duration"], current_time),
    )
    db.add(clip)
    business.plan_assigned = True
    await _commit_ledger(db)
    await db.refresh(clip)

    logger.info("Plan %s assigned to business %s (%s clips)", subscription_id, business_id, clip.total_clips)
    return serialize_business_clip(clip, current_time)


async def send_plan_request(
    db: AsyncSession,
    *,
    business_id: str,
    subscription_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Business asks for a catalog plan; dates start once payment is received."""
    current_time = ensure_utc(now or utcnow())
    business = await get_business(db, business_id)
    await _retire_stale_plan(db, business_id, current_time)
    subscription = await get_active_subscription(db, subscription_id)

    snapshot = _snapshot(subscription, price=None, validity_days=None, monthly=None)
    clip = BusinessClip(
        id=str(uuid.uuid4()),
        business_id=business_id,
        status=CLIP_STATUS_ACTIVE,
        payment_status=CLIP_PAYMENT_PENDING,
        remaining_clips=0,
        total_clips=0,
        month_history=[],
        purchased_at=current_time,
        version=1,
        **snapshot,
    )
    db.add(clip)
    business.plan_assigned = True
    await _commit_ledger(db)
    await db.refresh(clip)

    logger.info("Business %s requested plan %s", business_id, subscription_id)
    return serialize_business_clip(clip, current_time)


async def add_renewal_plan(
    db: AsyncSession,
    *,
    business_id: str,
    subscription_id: str,
    validity_days: str,
    monthly_duration: int,
    price: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Renew a business onto a plan once its previous period has lapsed.

    The latest ledger row is rewritten in place: package snapshot, a fresh
    month history, reset clips, ``active`` status and ``pending`` payment.
    A business with no prior row gets a new one.
    """
    current_time = ensure_utc(now or utcnow())
    business = await get_business(db, business_id)
    subscription = await get_active_subscription(db, subscription_id)

    snapshot = _snapshot(subscription, price=price, validity_days=validity_days, monthly=monthly_duration)
    values = {
        **snapshot,
        **_period_values(validity_days, snapshot["monthly_duration"], current_time),
        "status": CLIP_STATUS_ACTIVE,
        "payment_status": CLIP_PAYMENT_PENDING,
    }

    latest = await _get_latest_clip(db, business_id)
    if latest is None:
        clip = BusinessClip(id=str(uuid.uuid4()), business_id=business_id, version=1, **values)
        db.add(clip)
    else:
        if latest.expiry_date is not None and ensure_utc(latest.expiry_date) > current_time:
            logger.warning("Business %s renewal rejected, plan %s not expired", business_id, latest.id)
            raise ConflictError("Subscription plan is still active and cannot be renewed yet", code="already_have_plan")
        await _retire_other_active(db, business_id, keep_id=latest.id)
        await _rewrite_clip(db, latest, values)
        clip = latest

    db.add(
        ClipRenewal(
            id=str(uuid.uuid4()),
            business_id=business_id,
            subscription_id=subscription_id,
            validity_days=validity_days,
            monthly_duration=snapshot["monthly_duration"],
            status=CLIP_STATUS_ACTIVE,
        )
    )
    business.plan_assigned = True
    await _commit_ledger(db)
    await db.refresh(clip)

    logger.info("Business %s renewed onto plan %s", business_id, subscription_id)
    return serialize_business_clip(clip, current_time)


async def _retire_other_active(db: AsyncSession, business_id: str, *, keep_id: str) -> None:
    await db.execute(
        update(BusinessClip)
        .where(
            BusinessClip.business_id == business_id,
            BusinessClip.status == CLIP_STATUS_ACTIVE,
            BusinessClip.id != keep_id,
        )
        .values(status=CLIP_STATUS_EXPIRED, version=BusinessClip.version + 1)
        .execution_options(synchronize_session=False)
    )


async def add_refill_plan(
    db: AsyncSession,
    *,
    business_id: str,
    clip: int,
    price: float,
    expiry_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Record a top-up; allowed only once the current month's clips are used up."""
    current_time = ensure_utc(now or utcnow())
    await get_business(db, business_id)

    ledger = await _get_latest_clip(db, business_id)
    if not ledger:
        logger.warning("Business clip for %s not found", business_id)
        raise NotFoundError("Business clip not found", code="business_clip_not_found")

    history = list(ledger.month_history or [])
    current_index = find_current_month_index(history, current_time)
    if current_index is not None and int(history[current_index].get("clip", 0)) > 0:
        logger.warning("Refill rejected for business %s, current month still has clips", business_id)
        raise PreconditionFailedError(
            "Current month clips are not used up yet",
            code="already_have_current_month_plan",
        )

    refill = ClipRefill(
        id=str(uuid.uuid4()),
        business_id=business_id,
        clip=int(clip),
        price=price,
        expiry_date=ensure_utc(expiry_date) if expiry_date else None,
        purchased_at=current_time,
    )
    db.add(refill)
    await db.commit()

    logger.info("Top-up of %s clips added for business %s", clip, business_id)
    return {
        "id": refill.id,
        "business_id": business_id,
        "clip": refill.clip,
        "price": refill.price,
        "expiry_date": _iso(refill.expiry_date),
        "purchased_at": _iso(refill.purchased_at),
    }


async def update_payment(
    db: AsyncSession,
    *,
    business_id: str,
    price: float,
    validity_days: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Confirm a payment with final price/validity and start the period now."""
    current_time = ensure_utc(now or utcnow())
    business = await get_business(db, business_id)
    clip = await get_active_clip(db, business_id)
    if not clip:
        logger.warning("Business clip for %s not found", business_id)
        raise NotFoundError("Business clip not found", code="business_clip_not_found")

    monthly = int(clip.monthly_duration or 0)
    values = {
        "price": price,
        "validity_days": validity_days,
        "monthly_duration": monthly,
        **_period_values(validity_days, monthly, current_time),
        "payment_status": CLIP_PAYMENT_RECEIVED,
    }
    await _rewrite_clip(db, clip, values)
    business.payment_status = PAYMENT_RECEIVED
    record_purchase(db, business_id=business_id, clips=values["remaining_clips"], description=clip.package_name)
    await db.commit()
    await db.refresh(clip)

    logger.info("Payment details updated for business %s", business_id)
    return serialize_business_clip(clip, current_time)


async def update_payment_status(
    db: AsyncSession,
    *,
    business_id: str,
    payment_status: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Move the active plan's payment status and mirror it onto the business.

    The first ``received`` rebuilds the period from the package validity.
    The anchor is the confirmation time when PAYMENT_RECEIVED_RESTARTS_CLOCK
    is set, otherwise the recorded purchase time. Confirming a plan that is
    already received leaves its clips and dates untouched.
    """
    if payment_status not in ALLOWED_PAYMENT_STATUSES:
        raise ValidationError(
            f"payment_status must be one of {sorted(ALLOWED_PAYMENT_STATUSES)}",
            code="invalid_payment_status",
        )

    current_time = ensure_utc(now or utcnow())
    business = await get_business(db, business_id)
    clip = await get_active_clip(db, business_id)
    if not clip:
        logger.warning("Business clip for %s not found", business_id)
        raise NotFoundError("Business clip not found", code="business_clip_not_found")

    activating = payment_status == CLIP_PAYMENT_RECEIVED and clip.payment_status != CLIP_PAYMENT_RECEIVED
    values: Dict[str, Any] = {"payment_status": payment_status}
    if activating:
        anchor = current_time
        if not settings.PAYMENT_RECEIVED_RESTARTS_CLOCK and clip.purchased_at is not None:
            anchor = ensure_utc(clip.purchased_at)
        values.update(_period_values(clip.validity_days, int(clip.monthly_duration or 0), anchor))

    await _rewrite_clip(db, clip, values)
    business.payment_status = BUSINESS_PAYMENT_FLAGS[payment_status]
    if activating:
        record_purchase(db, business_id=business_id, clips=values["remaining_clips"], description=clip.package_name)
    await db.commit()
    await db.refresh(clip)

    logger.info("Payment status for business %s set to %s", business_id, payment_status)
    return serialize_business_clip(clip, current_time)


async def expire_business_subscription(
    db: AsyncSession,
    business_id: str,
    now: Optional[datetime] = None,
) -> bool:
    """Expire a lapsed paid plan and clear the business activation flags."""
    current_time = ensure_utc(now or utcnow())
    clip = await get_active_clip(db, business_id, payment_status=CLIP_PAYMENT_RECEIVED)
    if clip is None or clip.expiry_date is None:
        return False
    if ensure_utc(clip.expiry_date) >= current_time:
        return False

    result = await db.execute(
        update(BusinessClip)
        .where(BusinessClip.id == clip.id, BusinessClip.status == CLIP_STATUS_ACTIVE)
        .values(status=CLIP_STATUS_EXPIRED, version=BusinessClip.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False
    await db.execute(
        update(User)
        .where(User.id == business_id)
        .values(plan_assigned=False, payment_status=PAYMENT_PENDING)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Plan %s for business %s expired", clip.id, business_id)
    return True


async def _run_expiry_sweep(business_id: str) -> None:
    try:
        async with async_session_maker() as session:
            await expire_business_subscription(session, business_id)
    except Exception:
        logger.exception("Expiry sweep failed for business %s", business_id)


def schedule_expiry_sweep(business_id: str) -> Optional[asyncio.Task]:
    """Run the expiry sweep detached from the calling request."""
    if not settings.EXPIRY_SWEEP_ENABLED:
        return None
    task = asyncio.create_task(_run_expiry_sweep(business_id))
    _background_sweeps.add(task)
    task.add_done_callback(_background_sweeps.discard)
    return task


async def get_expiry_date(db: AsyncSession, business_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    ledger = await _get_latest_clip(db, business_id)
    if not ledger:
        logger.warning("Business clip for %s not found", business_id)
        raise NotFoundError("Business clip not found", code="business_clip_not_found")
    boundary = next_expiry_boundary(list(ledger.month_history or []), ledger.expiry_date, now)
    return {"expiry_date": boundary.isoformat()}


async def list_purchasing(
    db: AsyncSession,
    *,
    page: Optional[int] = 1,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    sort_key: Optional[str] = None,
    sort_value: Optional[str] = "desc",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Admin report of ledger rows with the business name and current-month clips."""
    page_number, page_limit = page_window(page, limit)
    filters = []
    term = str(search or "").strip()
    if term:
        pattern = f"%{term.lower()}%"
        filters.append(
            or_(
                func.lower(User.business_name).like(pattern),
                func.lower(BusinessClip.package_name).like(pattern),
            )
        )

    total_result = await db.execute(
        select(func.count(BusinessClip.id)).select_from(BusinessClip).outerjoin(User, User.id == BusinessClip.business_id).where(*filters)
    )
    total = int(total_result.scalar() or 0)

    sort_column = getattr(BusinessClip, sort_key if sort_key in PURCHASING_SORT_KEYS else "created_at")
    ordering = sort_column.asc() if sort_value == "asc" else sort_column.desc()
    result = await db.execute(
        select(BusinessClip, User.business_name, User.plan_assigned)
        .outerjoin(User, User.id == BusinessClip.business_id)
        .where(*filters)
        .order_by(ordering, BusinessClip.id)
        .offset((page_number - 1) * page_limit)
        .limit(page_limit)
    )

    items = []
    for clip, business_name, plan_assigned in result.all():
        item = serialize_business_clip(clip, now)
        item.pop("month_history")
        item["business_name"] = business_name
        item["plan_assigned"] = plan_assigned
        items.append(item)
    return page_envelope(items, total, page_number, page_limit)


async def view_purchasing(db: AsyncSession, purchasing_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    result = await db.execute(
        select(BusinessClip, User.business_name)
        .outerjoin(User, User.id == BusinessClip.business_id)
        .where(BusinessClip.id == purchasing_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Purchase not found", code="purchase_not_found")
    clip, business_name = row
    payload = serialize_business_clip(clip, now)
    payload["business_name"] = business_name
    return payload
