import calendar
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from cobranca.core.config import settings

CENT = Decimal("0.01")
# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def round_currency(value: Decimal) -> Decimal:
    """Rounds a monetary value to cents (half up). Apply only when persisting or presenting."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_brl(value: Decimal) -> str:
    """
    Formats a value as Brazilian Real.
    Example: 1234.5 -> R$ 1.234,50
    """
    rounded = round_currency(value)
    sign = "-" if rounded < 0 else ""
    integer, _, cents = f"{abs(rounded):.2f}".partition(".")
    grouped = f"{int(integer):,}".replace(",", ".")
    return f"{sign}R$ {grouped},{cents}"


def add_months(dt: date, months: int) -> date:
    """
    Returns the date `months` months after `dt`.
    The day is clamped to the last day of the target month (Jan 31 + 1 -> Feb 28/29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def local_now(offset_hours: Optional[int] = None) -> datetime:
    """Current time in the configured business timezone (Brasília by default, no DST)."""
    hours = settings.TIMEZONE_OFFSET_HOURS if offset_hours is None else offset_hours
    return datetime.now(timezone.utc).astimezone(timezone(timedelta(hours=hours)))


def local_today(offset_hours: Optional[int] = None) -> date:
    """Calendar date used as "today" for overdue classification."""
    return local_now(offset_hours).date()
