"""Turns day buckets into report rows with booked hours and flex-time."""
import collections.abc as _coll_types

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from . import core as _core

DEFAULT_HISTORY_DAYS = 14
DEFAULT_WORKING_HOURS = Decimal(8)
DEFAULT_LUNCH_BREAK = Decimal(1)
DEFAULT_PRECISION = 4
DEFAULT_DATE_FORMAT = "%a %Y-%m-%d"

_MAX_HOURS = Decimal(24)
_MAX_PRECISION = 100


class SettingsError(ValueError):
    """Raised when a report setting is out of range."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid setting '{field}': {message}")


@dataclass(frozen=True)
class ReportSettings:
    history_days: int = DEFAULT_HISTORY_DAYS
    working_hours: Decimal = DEFAULT_WORKING_HOURS
    lunch_break: Decimal = DEFAULT_LUNCH_BREAK
    precision: int = DEFAULT_PRECISION
    date_format: str = DEFAULT_DATE_FORMAT

    def __post_init__(self):
        if self.history_days < 1:
            raise SettingsError(
                "history_days", f"must be a positive number of days, got {self.history_days}"
            )
        for name in ("working_hours", "lunch_break"):
            value = getattr(self, name)
            if not 0 <= value <= _MAX_HOURS:
                raise SettingsError(name, f"must be between 0 and 24 hours, got {value}")
        if not 1 <= self.precision <= _MAX_PRECISION:
            raise SettingsError(
                "precision", f"must be between 1 and 100, got {self.precision}"
            )


@dataclass(frozen=True)
class ReportRow:
    day: date
    attributes: _core.DayAttributes
    weekend: bool
    # a separator goes before this row
    week_break: bool


def build_report(
    buckets: _coll_types.Sequence[_core.DayBucket],
    settings: ReportSettings,
    newest_first: bool = False,
) -> list[ReportRow]:
    """Computes a row per bucket.

    `buckets` are expected most recent first as returned by `reconstruct`. Rows are chronological unless
    `newest_first` is set. In both orders a row is marked with `week_break` when the weekday wraps around
    relative to the row before it.
    """
    ordered = list(buckets) if newest_first else list(reversed(buckets))
    rows = []
    prev_weekday = None
    for bucket in ordered:
        weekday = bucket.day.weekday()
        if prev_weekday is None:
            week_break = False
        elif newest_first:
            week_break = weekday > prev_weekday
        else:
            week_break = weekday < prev_weekday
        rows.append(
            ReportRow(
                day=bucket.day,
                attributes=_core.attributes_of(
                    bucket, settings.lunch_break, settings.working_hours, settings.precision
                ),
                weekend=_core.is_weekend(bucket.day),
                week_break=week_break,
            )
        )
        prev_weekday = weekday
    return rows


def flex_balance(rows: _coll_types.Iterable[ReportRow]) -> Decimal:
    return sum((row.attributes.flex_delta for row in rows), Decimal(0))


_SECONDS_IN_HOUR = 3600
_SECONDS_IN_MINUTE = 60


def format_uptime(td: timedelta) -> str:
    total_secs = int(td.total_seconds())
    hours, min_secs = divmod(total_secs, _SECONDS_IN_HOUR)
    return f"{hours}:{min_secs // _SECONDS_IN_MINUTE:02}"


def format_header(date_format: str = DEFAULT_DATE_FORMAT) -> str:
    date_width = len(date(2000, 1, 1).strftime(date_format))
    return f"{'Date':<{date_width}} {'Booked':>6} {'Flex':>6} {'Uptime':>6}  Intervals"


def row_columns(
    row: ReportRow, date_format: str = DEFAULT_DATE_FORMAT
) -> tuple[str, str, str, str, str]:
    """The padded date, booked, flex, uptime and intervals columns of a row."""
    attrs = row.attributes
    return (
        row.day.strftime(date_format),
        f"{attrs.booked_hours:>6.2f}",
        f"{attrs.flex_text:>6}",
        f"{format_uptime(attrs.total_uptime):>6}",
        attrs.intervals_text,
    )


def join_columns(columns: _coll_types.Sequence[str]) -> str:
    *fields, intervals = columns
    return f"{' '.join(fields)}  {intervals}"


def format_row(row: ReportRow, date_format: str = DEFAULT_DATE_FORMAT) -> str:
    return join_columns(row_columns(row, date_format))


def format_separator(date_format: str = DEFAULT_DATE_FORMAT) -> str:
    return "-" * len(format_header(date_format))
