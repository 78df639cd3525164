from __future__ import annotations

import calendar
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping to the last day (Jan 31 + 1 month -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def parse_money(raw: Any) -> Decimal | None:
    if raw is None or raw == "":
        return None
    try:
        d = Decimal(str(raw))
        # NaN/Infinity quantize without complaint but break comparisons later
        if not d.is_finite():
            return None
        return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def money(value: Decimal | float | int | None) -> float:
    """JSON-friendly money value rounded to cents."""
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def parse_int(raw: Any) -> int | None:
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def parse_float(raw: Any) -> float | None:
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        return float(str(raw).strip())
    except ValueError:
        return None


def parse_date(raw: str | None) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise ValueError(f"Not a date string: {raw!r}")
    raw = raw.strip()
    if not raw:
        return None
    if len(raw) > 10:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    return date.fromisoformat(raw)


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None

