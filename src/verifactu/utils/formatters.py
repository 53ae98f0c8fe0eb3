from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal


def format_amount(value: Decimal) -> str:
    """Format a Decimal as plain text, keeping its scale (no rounding, no exponent)."""
    return f"{value:f}"


def format_date(value: date) -> str:
    """Format a date as DD-MM-YYYY."""
    return value.strftime("%d-%m-%Y")


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as ISO 8601 with offset, e.g. 2024-07-01T12:00:00+02:00."""
    return value.isoformat(timespec="seconds")


def format_yes_no(flag: bool) -> str:
    return "S" if flag else "N"

