"""Date arithmetic for clip subscription windows and monthly buckets."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from services.clock import utcnow
from services.errors import ValidationError


MONTH_UNITS = {"month", "months", "måned", "måneder"}
DAY_UNITS = {"day", "days", "dag", "dager"}
YEAR_UNITS = {"year", "years", "år"}

_PERIOD_RE = re.compile(r"^\s*([+-]?\d+)\s*(\S*)")


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if not text:
        return None
    return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))


def parse_validity_period(validity_period: str) -> tuple[int, str]:
    """Split ``"<integer> <unit>"`` into its amount and lower-cased unit."""
    match = _PERIOD_RE.match(str(validity_period or ""))
    if not match:
        raise ValidationError(
            f"Invalid validity period '{validity_period}'. Expected '<number> <unit>'.",
            code="invalid_validity_period",
        )
    return int(match.group(1)), match.group(2).lower()


def calculate_expiry_date(validity_period: str, now: Optional[datetime] = None) -> datetime:
    """
    Add the validity period to ``now`` using calendar-aware arithmetic.

    Month and year additions keep the day of month and saturate at month end
    (Jan 31 + 1 month -> Feb 28/29). Unknown units are treated as days.
    """
    start = ensure_utc(now or utcnow())
    amount, unit = parse_validity_period(validity_period)

    if unit in MONTH_UNITS:
        return start + relativedelta(months=amount)
    if unit in YEAR_UNITS:
        return start + relativedelta(years=amount)
    return start + relativedelta(days=amount)


def _next_boundary(cursor: datetime, expiry: datetime) -> datetime:
    return min(cursor + relativedelta(months=1), expiry)


def validity_months(start: datetime, expiry: datetime) -> int:
    """Count the monthly buckets needed to cover ``[start, expiry)``."""
    cursor = ensure_utc(start)
    end = ensure_utc(expiry)
    months = 0
    while cursor < end:
        cursor = _next_boundary(cursor, end)
        months += 1
    return months


def generate_month_history(
    start: datetime,
    expiry: datetime,
    months: int,
    clips_per_month: int,
) -> List[Dict[str, Any]]:
    """
    Partition the window into contiguous calendar-month buckets.

    Emits at most ``months`` buckets; the last one is clamped to ``expiry``
    and generation stops as soon as the cursor reaches it. Each bucket gets
    the full monthly allotment, partial months included.
    """
    history: List[Dict[str, Any]] = []
    cursor = ensure_utc(start)
    end = ensure_utc(expiry)

    for _ in range(max(int(months), 0)):
        boundary = _next_boundary(cursor, end)
        history.append(
            {
                "start_date": cursor.isoformat(),
                "expiry_date": boundary.isoformat(),
                "clip": int(clips_per_month),
            }
        )
        cursor = boundary
        if cursor >= end:
            break

    return history


def find_current_month_index(month_history: List[Dict[str, Any]], now: Optional[datetime] = None) -> Optional[int]:
    """Index of the bucket whose [start_date, expiry_date) contains ``now``."""
    current = ensure_utc(now or utcnow())
    for index, bucket in enumerate(month_history or []):
        start = parse_timestamp(bucket.get("start_date"))
        end = parse_timestamp(bucket.get("expiry_date"))
        if start is None or end is None:
            continue
        if start <= current < end:
            return index
    return None


def build_period(validity_period: str, clips_per_month: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Dates, buckets and clip totals for a subscription window starting now."""
    purchased_at = ensure_utc(now or utcnow())
    expiry_date = calculate_expiry_date(validity_period, purchased_at)
    months = validity_months(purchased_at, expiry_date)
    monthly = max(int(clips_per_month or 0), 0)
    return {
        "purchased_at": purchased_at,
        "expiry_date": expiry_date,
        "month_history": generate_month_history(purchased_at, expiry_date, months, monthly),
        "total_clips": months * monthly,
    }


def next_expiry_boundary(
    month_history: List[Dict[str, Any]],
    expiry_date: Optional[datetime],
    now: Optional[datetime] = None,
) -> datetime:
    """
    One month from now, capped at the last known expiry of the plan.
    Falls back to one month from now when the plan carries no dates.
    """
    current = ensure_utc(now or utcnow())
    one_month_out = current + relativedelta(months=1)

    last_expiry = None
    if month_history:
        last_expiry = parse_timestamp(month_history[-1].get("expiry_date"))
    if last_expiry is None and expiry_date is not None:
        last_expiry = ensure_utc(expiry_date)

    if last_expiry is not None and one_month_out > last_expiry:
        return last_expiry
    return one_month_out
