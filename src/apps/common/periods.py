# src/apps/common/periods.py
from __future__ import annotations

import re
from datetime import datetime

from django.core.exceptions import ValidationError
from django.utils import timezone

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER_RE = re.compile(r"^(\d{4})-Q([1-4])$")


def _aware(year: int, month: int) -> datetime:
    # midnight on the 1st, in the configured TIME_ZONE
    return timezone.make_aware(datetime(year, month, 1), timezone.get_current_timezone())


def month_bounds(month: str) -> tuple[datetime, datetime]:
    """
    "2026-03" -> [2026-03-01 00:00, 2026-04-01 00:00) in the current time zone.
    """
    m = _MONTH_RE.match(month or "")
    if not m:
        raise ValidationError({"month": "Invalid or missing month (expected YYYY-MM)"})
    year, mon = int(m.group(1)), int(m.group(2))
    if not 1 <= mon <= 12:
        raise ValidationError({"month": "Month must be between 01 and 12"})

    start = _aware(year, mon)
    end = _aware(year + 1, 1) if mon == 12 else _aware(year, mon + 1)
    return start, end


def quarter_bounds(quarter: str) -> tuple[datetime, datetime]:
    """
    "2026-Q2" -> [2026-04-01, 2026-07-01) in the current time zone.
    """
    m = _QUARTER_RE.match(quarter or "")
    if not m:
        raise ValidationError({"quarter": "Invalid or missing quarter (expected YYYY-QN)"})
    year, q = int(m.group(1)), int(m.group(2))

    start_month = (q - 1) * 3 + 1
    start = _aware(year, start_month)
    end = _aware(year + 1, 1) if q == 4 else _aware(year, start_month + 3)
    return start, end
