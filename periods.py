from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from models import PeriodKind

# date.weekday() value weeks start on (Monday); shared by every window
WEEK_START = 0


@dataclass(frozen=True)
class PeriodWindow:
    kind: PeriodKind
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    @property
    def label(self) -> str:
        if self.kind == PeriodKind.yearly:
            return f"{self.start.year}"
        if self.kind == PeriodKind.quarterly:
            return f"{self.start.year}-Q{(self.start.month - 1) // 3 + 1}"
        if self.kind == PeriodKind.monthly:
            return f"{self.start.year}-{self.start.month:02d}"
        return f"week of {self.start.isoformat()}"


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def resolve_window(
    kind: PeriodKind, reference: Union[date, datetime]
) -> PeriodWindow:
    """Return the inclusive calendar window of ``kind`` that contains ``reference``."""
    if isinstance(reference, datetime):
        reference = reference.date()
    kind = PeriodKind(kind)

    if kind == PeriodKind.yearly:
        return PeriodWindow(
            kind, date(reference.year, 1, 1), date(reference.year, 12, 31)
        )
    if kind == PeriodKind.quarterly:
        first_month = (reference.month - 1) // 3 * 3 + 1
        return PeriodWindow(
            kind,
            date(reference.year, first_month, 1),
            _month_end(reference.year, first_month + 2),
        )
    if kind == PeriodKind.weekly:
        offset = (reference.weekday() - WEEK_START) % 7
        start = reference - timedelta(days=offset)
        return PeriodWindow(kind, start, start + timedelta(days=6))

    return PeriodWindow(
        kind,
        reference.replace(day=1),
        _month_end(reference.year, reference.month),
    )


def parse_period_kind(
    value: Optional[str], default: PeriodKind = PeriodKind.monthly
) -> PeriodKind:
    if value is None or not value.strip():
        return default
    clean = value.strip().lower()
    for kind in PeriodKind:
        if kind.value.lower() == clean or kind.name == clean:
            return kind
    raise ValueError("Invalid period specified")


def resolve_range(
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> DateRange:
    today = today or today_local()
    start_date = date.fromisoformat(start) if start else date(1970, 1, 1)
    end_date = date.fromisoformat(end) if end else today
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return DateRange(start_date, end_date)


def infer_period_kind(start: Optional[date], end: Optional[date]) -> PeriodKind:
    if start is None or end is None:
        return PeriodKind.monthly
    span = (end - start).days
    if span <= 7:
        return PeriodKind.weekly
    if span <= 31:
        return PeriodKind.monthly
    if span <= 90:
        return PeriodKind.quarterly
    return PeriodKind.yearly
