import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")

MONTH_NAMES_FR = (
    "janvier",
    "février",
    "mars",
    "avril",
    "mai",
    "juin",
    "juillet",
    "août",
    "septembre",
    "octobre",
    "novembre",
    "décembre",
)

MAX_SPAN_MONTHS = 120


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def parse_month(value: str) -> tuple[int, int]:
    match = MONTH_KEY_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    return year, month


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_start(key: str) -> date:
    year, month = parse_month(key)
    return date(year, month, 1)


def month_end(key: str) -> date:
    year, month = parse_month(key)
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def _index(key: str) -> int:
    year, month = parse_month(key)
    return year * 12 + (month - 1)


def add_months(key: str, count: int) -> str:
    idx = _index(key) + count
    return f"{idx // 12:04d}-{idx % 12 + 1:02d}"


def months_between_inclusive(start_key: str, end_key: str) -> int:
    """Number of calendar months from start to end, both counted."""
    return _index(end_key) - _index(start_key) + 1


def month_label(key: str) -> str:
    year, month = parse_month(key)
    return f"{MONTH_NAMES_FR[month - 1]} {year}"


@dataclass(frozen=True)
class MonthSpan:
    start: str
    end: str

    def months(self) -> list[str]:
        count = months_between_inclusive(self.start, self.end)
        return [add_months(self.start, offset) for offset in range(count)]


def resolve_month_span(
    months: Optional[int],
    start: Optional[str],
    end: Optional[str],
    target: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> MonthSpan:
    if start or end:
        if not start or not end:
            raise ValueError("A month range requires both start and end")
        parse_month(start)
        parse_month(end)
        count = months_between_inclusive(start, end)
        if count < 1:
            raise ValueError("Start month must not be after end month")
        if count > MAX_SPAN_MONTHS:
            raise ValueError(f"A month range is limited to {MAX_SPAN_MONTHS} months")
        return MonthSpan(start, end)

    last = target or month_key(today or today_local())
    parse_month(last)
    count = 12 if months is None else months
    if count < 1 or count > MAX_SPAN_MONTHS:
        raise ValueError(f"months must be between 1 and {MAX_SPAN_MONTHS}")
    return MonthSpan(add_months(last, -(count - 1)), last)
