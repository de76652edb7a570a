"""Shared utilities used across the chat orchestrator."""

import re
import unicodedata
from datetime import date, datetime, timedelta
from typing import Optional

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("(555) 123-4567")
        '5551234567'
        >>> normalize_phone("+1 555.123.4567")
        '+15551234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def strip_accents(value: str) -> str:
    """Lower-case and remove combining accents ("Amanhã" -> "amanha")."""
    decomposed = unicodedata.normalize("NFD", value.lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def time_to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total: int) -> str:
    """Format minutes past midnight as HH:MM (wraps past 24h)."""
    total %= 24 * 60
    return f"{total // 60:02d}:{total % 60:02d}"


def add_minutes(hhmm: str, minutes: int) -> str:
    return minutes_to_time(time_to_minutes(hhmm) + minutes)


def is_valid_iso_date(value: Optional[str]) -> bool:
    if not value or not _ISO_DATE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def parse_iso_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def add_days(iso_date: str, days: int) -> str:
    return (parse_iso_date(iso_date) + timedelta(days=days)).isoformat()
