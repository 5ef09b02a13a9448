from __future__ import annotations

import calendar
import re
from datetime import datetime, timedelta, timezone

_RELATIVE_PATTERN = re.compile(r"(\d+)\s+(minute|hour|day|week|month)s?\s+ago", re.IGNORECASE)


def parse_posted_date(value: str | None, *, now: datetime | None = None) -> datetime | None:
    """Turn listing text such as "Posted 2 weeks ago" into a timestamp.

    Unrecognized text yields ``None``; the raw string stays on the discovered job.
    """
    if not value:
        return None
    reference = now or datetime.now(timezone.utc)

    match = _RELATIVE_PATTERN.search(value)
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()
        try:
            if unit == "month":
                return _subtract_months(reference, amount)
            return reference - timedelta(**{f"{unit}s": amount})
        except (OverflowError, ValueError):
            return None

    lowered = value.strip().lower()
    if lowered.endswith("today") or lowered.endswith("just now"):
        return reference
    if lowered.endswith("yesterday"):
        return reference - timedelta(days=1)

    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _subtract_months(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    day = min(moment.day, calendar.monthrange(year, month + 1)[1])
    return moment.replace(year=year, month=month + 1, day=day)
