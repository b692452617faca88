from datetime import date, datetime
from typing import Optional

from config import get_settings


def group_indian(whole: int) -> str:
    """Group digits the en-IN way: last three, then pairs (12,34,567)."""
    digits = str(abs(whole))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        parts: list[str] = []
        while len(head) > 2:
            parts.insert(0, head[-2:])
            head = head[:-2]
        if head:
            parts.insert(0, head)
        digits = ",".join(parts + [tail])
    return f"-{digits}" if whole < 0 else digits


def format_amount(cents: int, *, include_cents: bool = True) -> str:
    sign = "-" if cents < 0 else ""
    rupees, paise = divmod(abs(cents), 100)
    if include_cents:
        return f"{sign}{group_indian(rupees)}.{paise:02d}"
    if paise >= 50:
        rupees += 1
    return f"{sign}{group_indian(rupees)}"


def format_currency(cents: int, options: Optional[dict] = None) -> str:
    include_cents = True
    if isinstance(options, dict):
        include_cents = options.get("include_cents", True)
    symbol = get_settings().currency_symbol
    if cents < 0:
        return f"-{symbol}{format_amount(-cents, include_cents=include_cents)}"
    return f"{symbol}{format_amount(cents, include_cents=include_cents)}"


def amount_text(cents: int) -> str:
    """Plain decimal text of an amount as typed by a user: 1250, 12.5, 12.05."""
    if cents % 100 == 0:
        return str(cents // 100)
    return f"{cents / 100:.2f}".rstrip("0")


def format_timestamp(value: datetime) -> str:
    return value.strftime("%d %b %y, %I:%M %p")


def format_short_date(value: date) -> str:
    return value.strftime("%d %b %y")


def format_long_date(value: date) -> str:
    return value.strftime("%d %b %Y")
