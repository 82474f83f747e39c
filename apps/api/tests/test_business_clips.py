from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from config import settings
from models.business_clip import BusinessClip
from models.clip_refill import ClipRefill
from models.clip_renewal import ClipRenewal
from models.clip_usage_history import ClipUsageHistory
from models.user import ROLE_CUSTOMER, User
from services import business_clips
from services.business_clips import (
    add_refill_plan,
    add_renewal_plan,
    assign_business_plan,
    expire_business_subscription,
    get_expiry_date,
    list_purchasing,
    schedule_expiry_sweep,
    send_plan_request,
    update_payment,
    update_payment_status,
    view_purchasing,
)
from services.errors import ConflictError, NotFoundError, PreconditionFailedError, ValidationError


JAN_1 = datetime(2025, 1, 1, tzinfo=timezone.utc)


async def _fresh(session_maker, model, ident):
    async with session_maker() as session:
        return await session.get(model, ident)


async def _count(session_maker, model, **filters) -> int:
    async with session_maker() as session:
        query = select(func.count()).select_from(model)
        for column, value in filters.items():
            query = query.where(getattr(model, column) == value)
        result = await session.execute(query)
        return int(result.scalar() or 0)


@pytest.mark.asyncio
async def test_assign_plan_builds_ledger_from_catalog(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="2 month", monthly_duration=5, price=200.0)

    ledger = await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    assert ledger["total_clips"] == 10
    assert ledger["remaining_clips"] == 10
    assert [bucket["clip"] for bucket in ledger["month_history"]] == [5, 5]
    assert ledger["status"] == "active"
    assert ledger["payment_status"] == "pending"
    assert ledger["expiry_date"] == "2025-03-01T00:00:00+00:00"
    assert ledger["price"] == 200.0

    business = await _fresh(session_maker, User, business_id)
    assert business.plan_assigned is True


@pytest.mark.asyncio
async def test_assign_plan_applies_overrides(db, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="2 month", monthly_duration=5)

    ledger = await assign_business_plan(
        db,
        business_id=business_id,
        subscription_id=subscription_id,
        validity_days="1 month",
        monthly_duration=3,
        price=99.0,
        now=JAN_1,
    )

    assert ledger["total_clips"] == 3
    assert ledger["validity_days"] == "1 month"
    assert ledger["price"] == 99.0
    assert len(ledger["month_history"]) == 1


@pytest.mark.asyncio
async def test_assign_plan_conflicts_with_live_plan(db, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription()
    await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    with pytest.raises(ConflictError) as exc_info:
        await assign_business_plan(
            db,
            business_id=business_id,
            subscription_id=subscription_id,
            now=JAN_1 + timedelta(days=10),
        )
    assert exc_info.value.detail["code"] == "already_have_plan"


@pytest.mark.asyncio
async def test_assign_plan_after_expiry_retires_previous_row(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="1 month")
    first = await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    second = await assign_business_plan(
        db,
        business_id=business_id,
        subscription_id=subscription_id,
        now=datetime(2025, 3, 1, tzinfo=timezone.utc),
    )

    assert second["id"] != first["id"]
    previous = await _fresh(session_maker, BusinessClip, first["id"])
    assert previous.status == "expired"
    assert await _count(session_maker, BusinessClip, business_id=business_id, status="active") == 1


@pytest.mark.asyncio
async def test_assign_plan_requires_active_business_and_plan(db, make_business, make_subscription, make_user):
    subscription_id = await make_subscription()
    customer_id = await make_user(ROLE_CUSTOMER)
    inactive_id = await make_business(is_active=False)
    business_id = await make_business()

    for candidate in ("missing-business", customer_id, inactive_id):
        with pytest.raises(NotFoundError) as exc_info:
            await assign_business_plan(db, business_id=candidate, subscription_id=subscription_id)
        assert exc_info.value.detail["code"] == "business_not_found"

    with pytest.raises(NotFoundError) as exc_info:
        await assign_business_plan(db, business_id=business_id, subscription_id="missing-plan")
    assert exc_info.value.detail["code"] == "clip_subscription_not_found"


@pytest.mark.asyncio
async def test_send_plan_request_blocks_second_request(db, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription()

    ledger = await send_plan_request(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)
    assert ledger["payment_status"] == "pending"
    assert ledger["month_history"] == []
    assert ledger["expiry_date"] is None

    with pytest.raises(ConflictError):
        await send_plan_request(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)


@pytest.mark.asyncio
async def test_renewal_rejected_while_plan_is_still_running(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="1 month")
    await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    with pytest.raises(ConflictError):
        await add_renewal_plan(
            db,
            business_id=business_id,
            subscription_id=subscription_id,
            validity_days="2 month",
            monthly_duration=4,
            now=datetime(2025, 1, 31, tzinfo=timezone.utc),
        )
    assert await _count(session_maker, ClipRenewal, business_id=business_id) == 0


@pytest.mark.asyncio
async def test_renewal_after_expiry_regenerates_month_history(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="1 month", monthly_duration=5)
    original = await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    renewed_at = datetime(2025, 2, 2, tzinfo=timezone.utc)
    renewed = await add_renewal_plan(
        db,
        business_id=business_id,
        subscription_id=subscription_id,
        validity_days="2 month",
        monthly_duration=4,
        now=renewed_at,
    )

    assert renewed["id"] == original["id"]
    assert renewed["status"] == "active"
    assert renewed["payment_status"] == "pending"
    assert renewed["total_clips"] == 8
    assert renewed["remaining_clips"] == 8
    assert renewed["expiry_date"] == "2025-04-02T00:00:00+00:00"
    assert [bucket["start_date"] for bucket in renewed["month_history"]] == [
        "2025-02-02T00:00:00+00:00",
        "2025-03-02T00:00:00+00:00",
    ]
    assert await _count(session_maker, ClipRenewal, business_id=business_id) == 1


@pytest.mark.asyncio
async def test_renewal_without_prior_plan_creates_ledger(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription()

    renewed = await add_renewal_plan(
        db,
        business_id=business_id,
        subscription_id=subscription_id,
        validity_days="1 year",
        monthly_duration=2,
        now=JAN_1,
    )

    assert renewed["total_clips"] == 24
    assert len(renewed["month_history"]) == 12
    assert await _count(session_maker, ClipRenewal, business_id=business_id) == 1
    business = await _fresh(session_maker, User, business_id)
    assert business.plan_assigned is True


@pytest.mark.asyncio
async def test_refill_gate_follows_current_month_bucket(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="2 month", monthly_duration=5)
    ledger = await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)
    refill_time = datetime(2025, 1, 10, tzinfo=timezone.utc)

    with pytest.raises(PreconditionFailedError) as exc_info:
        await add_refill_plan(db, business_id=business_id, clip=3, price=30.0, now=refill_time)
    assert exc_info.value.status_code == 412
    assert exc_info.value.detail["code"] == "already_have_current_month_plan"

    exhausted = [dict(bucket) for bucket in ledger["month_history"]]
    exhausted[0]["clip"] = 0
    await db.execute(update(BusinessClip).where(BusinessClip.id == ledger["id"]).values(month_history=exhausted))
    await db.commit()
    db.expire_all()

    refill = await add_refill_plan(
        db,
        business_id=business_id,
        clip=3,
        price=30.0,
        expiry_date=datetime(2025, 2, 1, tzinfo=timezone.utc),
        now=refill_time,
    )
    assert refill["clip"] == 3
    assert refill["expiry_date"] == "2025-02-01T00:00:00+00:00"
    assert await _count(session_maker, ClipRefill, business_id=business_id) == 1

    untouched = await _fresh(session_maker, BusinessClip, ledger["id"])
    assert untouched.month_history == exhausted
    assert untouched.remaining_clips == 10


@pytest.mark.asyncio
async def test_refill_requires_ledger(db, make_business):
    business_id = await make_business()

    with pytest.raises(NotFoundError) as exc_info:
        await add_refill_plan(db, business_id=business_id, clip=3, price=30.0)
    assert exc_info.value.detail["code"] == "business_clip_not_found"


@pytest.mark.asyncio
async def test_payment_received_restarts_clock_and_records_purchase(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="2 month", monthly_duration=5)
    await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    confirmed_at = datetime(2025, 1, 10, tzinfo=timezone.utc)
    ledger = await update_payment_status(db, business_id=business_id, payment_status="received", now=confirmed_at)

    assert ledger["payment_status"] == "received"
    assert ledger["purchased_at"] == "2025-01-10T00:00:00+00:00"
    assert ledger["expiry_date"] == "2025-03-10T00:00:00+00:00"
    assert ledger["remaining_clips"] == 10
    business = await _fresh(session_maker, User, business_id)
    assert business.payment_status == "payment_received"
    assert await _count(session_maker, ClipUsageHistory, business_id=business_id, usage_type="purchased") == 1


@pytest.mark.asyncio
async def test_payment_received_can_keep_purchase_anchor(db, monkeypatch, make_business, make_subscription):
    monkeypatch.setattr(settings, "PAYMENT_RECEIVED_RESTARTS_CLOCK", False)
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="2 month", monthly_duration=5)
    await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    ledger = await update_payment_status(
        db,
        business_id=business_id,
        payment_status="received",
        now=datetime(2025, 1, 10, tzinfo=timezone.utc),
    )

    assert ledger["purchased_at"] == "2025-01-01T00:00:00+00:00"
    assert ledger["expiry_date"] == "2025-03-01T00:00:00+00:00"


@pytest.mark.asyncio
async def test_payment_rejected_mirrors_business_flag(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription()
    original = await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    ledger = await update_payment_status(db, business_id=business_id, payment_status="rejected", now=JAN_1)

    assert ledger["payment_status"] == "rejected"
    assert ledger["expiry_date"] == original["expiry_date"]
    business = await _fresh(session_maker, User, business_id)
    assert business.payment_status == "payment_rejected"
    assert await _count(session_maker, ClipUsageHistory, business_id=business_id) == 0

    with pytest.raises(ValidationError):
        await update_payment_status(db, business_id=business_id, payment_status="refunded")


@pytest.mark.asyncio
async def test_update_payment_rebuilds_period_with_new_terms(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="2 month", monthly_duration=5)
    await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    paid_at = datetime(2025, 1, 5, tzinfo=timezone.utc)
    ledger = await update_payment(db, business_id=business_id, price=260.0, validity_days="3 month", now=paid_at)

    assert ledger["price"] == 260.0
    assert ledger["validity_days"] == "3 month"
    assert ledger["total_clips"] == 15
    assert ledger["remaining_clips"] == 15
    assert ledger["payment_status"] == "received"
    assert len(ledger["month_history"]) == 3
    business = await _fresh(session_maker, User, business_id)
    assert business.payment_status == "payment_received"
    assert await _count(session_maker, ClipUsageHistory, business_id=business_id, usage_type="purchased") == 1


@pytest.mark.asyncio
async def test_payment_updates_require_active_ledger(db, make_business):
    business_id = await make_business()

    with pytest.raises(NotFoundError):
        await update_payment(db, business_id=business_id, price=10.0, validity_days="1 month")
    with pytest.raises(NotFoundError):
        await update_payment_status(db, business_id=business_id, payment_status="received")


@pytest.mark.asyncio
async def test_expiry_sweep_is_idempotent(db, session_maker, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="1 month")
    ledger = await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)
    await update_payment_status(db, business_id=business_id, payment_status="received", now=JAN_1)

    assert await expire_business_subscription(db, business_id, now=datetime(2025, 1, 20, tzinfo=timezone.utc)) is False

    after_expiry = datetime(2025, 2, 2, tzinfo=timezone.utc)
    assert await expire_business_subscription(db, business_id, now=after_expiry) is True
    assert await expire_business_subscription(db, business_id, now=after_expiry) is False

    row = await _fresh(session_maker, BusinessClip, ledger["id"])
    assert row.status == "expired"
    business = await _fresh(session_maker, User, business_id)
    assert business.plan_assigned is False
    assert business.payment_status == "pending"


@pytest.mark.asyncio
async def test_expiry_sweep_skips_unpaid_plans(db, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="1 month")
    await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    assert await expire_business_subscription(db, business_id, now=datetime(2025, 6, 1, tzinfo=timezone.utc)) is False


@pytest.mark.asyncio
async def test_scheduled_sweep_runs_in_its_own_session(db, session_maker, monkeypatch, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="1 month")
    ledger = await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)
    await update_payment_status(db, business_id=business_id, payment_status="received", now=JAN_1)

    assert schedule_expiry_sweep(business_id) is None

    monkeypatch.setattr(settings, "EXPIRY_SWEEP_ENABLED", True)
    monkeypatch.setattr(business_clips, "async_session_maker", session_maker)
    task = schedule_expiry_sweep(business_id)
    await task

    row = await _fresh(session_maker, BusinessClip, ledger["id"])
    assert row.status == "expired"


@pytest.mark.asyncio
async def test_scheduled_sweep_logs_failures(monkeypatch, caplog):
    def _broken_session_maker():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(settings, "EXPIRY_SWEEP_ENABLED", True)
    monkeypatch.setattr(business_clips, "async_session_maker", _broken_session_maker)

    task = schedule_expiry_sweep("business-x")
    await task

    assert task.exception() is None
    assert "Expiry sweep failed for business business-x" in caplog.text


@pytest.mark.asyncio
async def test_get_expiry_date_caps_at_plan_end(db, make_business, make_subscription):
    business_id = await make_business()
    subscription_id = await make_subscription(validity_days="2 month")
    await assign_business_plan(db, business_id=business_id, subscription_id=subscription_id, now=JAN_1)

    early = await get_expiry_date(db, business_id, now=datetime(2025, 1, 10, tzinfo=timezone.utc))
    late = await get_expiry_date(db, business_id, now=datetime(2025, 2, 20, tzinfo=timezone.utc))

    assert early == {"expiry_date": "2025-02-10T00:00:00+00:00"}
    assert late == {"expiry_date": "2025-03-01T00:00:00+00:00"}

    with pytest.raises(NotFoundError):
        await get_expiry_date(db, "unknown-business")


@pytest.mark.asyncio
async def test_purchasing_report_lists_ledgers_with_business_name(db, make_business, make_subscription):
    fjord_id = await make_business(business_name="Fjord Media")
    bergen_id = await make_business(business_name="Bergen Clips")
    subscription_id = await make_subscription(validity_days="2 month", monthly_duration=5)
    fjord = await assign_business_plan(db, business_id=fjord_id, subscription_id=subscription_id, now=JAN_1)
    await assign_business_plan(db, business_id=bergen_id, subscription_id=subscription_id, now=JAN_1)

    report = await list_purchasing(db, search="fjord", now=datetime(2025, 1, 10, tzinfo=timezone.utc))
    assert report["total_count"] == 1
    item = report["items"][0]
    assert item["business_name"] == "Fjord Media"
    assert item["monthly_remaining_clips"] == 5
    assert "month_history" not in item

    everything = await list_purchasing(db, limit=1)
    assert everything["total_count"] == 2
    assert everything["total_page"] == 2

    detail = await view_purchasing(db, fjord["id"], now=datetime(2025, 6, 1, tzinfo=timezone.utc))
    assert detail["business_name"] == "Fjord Media"
    assert detail["monthly_remaining_clips"] == 0

    with pytest.raises(NotFoundError):
        await view_purchasing(db, "missing")
