"""
Reconstructs daily working hours from power events (boot, resume, shutdown, sleep).

Raw events from the platform log are classified into session start/stop markers, paired up into uptime
intervals per calendar day, and then aggregated into booked hours and flex-time.
"""
import logging as _logging
import collections.abc as _coll_types

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

_LOG = _logging.getLogger(__name__)

KERNEL_GENERAL = "Microsoft-Windows-Kernel-General"
POWER_TROUBLESHOOTER = "Microsoft-Windows-Power-Troubleshooter"
KERNEL_POWER = "Microsoft-Windows-Kernel-Power"
PMSET = "pmset"


class SessionKind(Enum):
    START = 0
    STOP = 1


@dataclass(frozen=True)
class RawEvent:
    ts: datetime
    source_id: int | str
    provider: str

    def __str__(self):
        return f"{ts_to_str(self.ts)}, {self.provider}, {self.source_id}"


@dataclass(frozen=True)
class SessionEvent:
    ts: datetime
    kind: SessionKind

    def __str__(self):
        return f"{ts_to_str(self.ts)}, {self.kind.name}"


def ts_to_str(ts: datetime):
    return ts.strftime("%Y-%m-%d %H:%M:%S")


ClassificationTable = _coll_types.Mapping[tuple[str, int | str], SessionKind]

CLASSIFICATION: ClassificationTable = {
    # boot / shutdown
    (KERNEL_GENERAL, 12): SessionKind.START,
    (KERNEL_GENERAL, 13): SessionKind.STOP,
    # resume from sleep / entering sleep
    (POWER_TROUBLESHOOTER, 1): SessionKind.START,
    (KERNEL_POWER, 42): SessionKind.STOP,
    # macOS power management log domains
    (PMSET, "Wake"): SessionKind.START,
    (PMSET, "Sleep"): SessionKind.STOP,
}


def classify(
    raw: RawEvent, table: ClassificationTable = CLASSIFICATION
) -> SessionEvent | None:
    """Maps a raw event to a session marker, `None` if the event has no meaning for uptime."""
    kind = table.get((raw.provider, raw.source_id))
    if kind is None:
        return None
    return SessionEvent(raw.ts, kind)


def normalize(
    raws: _coll_types.Iterable[RawEvent], table: ClassificationTable = CLASSIFICATION
) -> list[SessionEvent]:
    """Classifies the raw events and returns the session markers sorted by time."""
    events = []
    for raw in raws:
        event = classify(raw, table)
        if event is None:
            _LOG.debug("Discarding unclassified event: %s", raw)
            continue
        events.append(event)
    events.sort(key=lambda e: e.ts)
    return events


def provider_filters(
    table: ClassificationTable = CLASSIFICATION,
) -> dict[str, tuple[int | str, ...]]:
    """Groups the classification keys by provider, for the log readers to query."""
    filters: dict[str, list[int | str]] = {}
    for provider, source_id in table:
        filters.setdefault(provider, []).append(source_id)
    return {provider: tuple(ids) for provider, ids in filters.items()}


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(
                f"Interval end {ts_to_str(self.end)} is before start {ts_to_str(self.start)}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self):
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True)
class DayBucket:
    """All of the uptime intervals whose start falls on `day`, in chronological order."""

    day: date
    intervals: tuple[Interval, ...]


def _next_kind(
    events: _coll_types.Sequence[SessionEvent], idx: int, kind: SessionKind
) -> int:
    """Walks backward from `idx` skipping events that are not of `kind`, returns -1 when exhausted."""
    while idx >= 0 and events[idx].kind != kind:
        _LOG.debug("Dropping unpaired event: %s", events[idx])
        idx -= 1
    return idx


def reconstruct(
    events: _coll_types.Iterable[SessionEvent], now: datetime
) -> list[DayBucket]:
    """Pairs session events into per-day uptime intervals, most recent day first.

    The events are walked from the most recent one backward. If the most recent event is not a stop, the machine
    is assumed to still be running and the session is closed at `now`. Repeated starts (crashes) and repeated
    stops are skipped until a matching partner is found. Once the events run out without a partner the remainder
    is dropped: a cleared or truncated log cannot be recovered.
    """
    ordered = sorted(events, key=lambda e: e.ts)
    days: list[date] = []
    day_intervals: list[list[Interval]] = []
    idx = len(ordered) - 1
    while idx >= 0:
        if not days and ordered[idx].kind != SessionKind.STOP:
            # still running, no stop recorded yet
            end = now
        else:
            idx = _next_kind(ordered, idx, SessionKind.STOP)
            if idx < 0:
                break
            end = ordered[idx].ts
            idx -= 1

        idx = _next_kind(ordered, idx, SessionKind.START)
        if idx < 0:
            break
        start = ordered[idx].ts
        idx -= 1

        interval = Interval(start, max(start, end))
        day = start.date()
        if days and days[-1] == day:
            day_intervals[-1].insert(0, interval)
        else:
            days.append(day)
            day_intervals.append([interval])

    return [
        DayBucket(day, tuple(intervals)) for day, intervals in zip(days, day_intervals)
    ]


_MICROS_PER_HOUR = Decimal(3600 * 1000 * 1000)
_ONE = Decimal(1)
_CENTS = Decimal("0.01")
INTERVAL_SEPARATOR = ", "


class FlexEmphasis(Enum):
    NEUTRAL = 0
    AHEAD = 1
    BEHIND = 2


def to_hours(td: timedelta) -> Decimal:
    return Decimal(td // timedelta(microseconds=1)) / _MICROS_PER_HOUR


def book_hours(
    uptime: timedelta, lunch_break_hours: Decimal | int, precision: int
) -> Decimal:
    """Net hours after the lunch break, rounded half away from zero to `1/precision` of an hour."""
    net = to_hours(uptime) - Decimal(lunch_break_hours)
    steps = (net * precision).quantize(_ONE, rounding=ROUND_HALF_UP)
    return steps / Decimal(precision)


def format_flex(delta: Decimal) -> str:
    if delta == 0:
        delta = Decimal(0)
    return f"{delta:+.2f}"


@dataclass(frozen=True)
class DayAttributes:
    total_uptime: timedelta
    booked_hours: Decimal
    flex_delta: Decimal
    interval_summary: tuple[str, ...]

    @property
    def emphasis(self) -> FlexEmphasis:
        if self.flex_delta > 0:
            return FlexEmphasis.AHEAD
        if self.flex_delta < 0:
            return FlexEmphasis.BEHIND
        return FlexEmphasis.NEUTRAL

    @property
    def flex_text(self) -> str:
        return format_flex(self.flex_delta)

    @property
    def intervals_text(self) -> str:
        return INTERVAL_SEPARATOR.join(self.interval_summary)


def attributes_of(
    bucket: DayBucket,
    lunch_break_hours: Decimal | int,
    working_hours_per_day: Decimal | int,
    precision: int,
) -> DayAttributes:
    total_uptime = sum((i.duration for i in bucket.intervals), timedelta())
    booked = book_hours(total_uptime, lunch_break_hours, precision)
    return DayAttributes(
        total_uptime=total_uptime,
        booked_hours=booked,
        flex_delta=(booked - Decimal(working_hours_per_day)).quantize(
            _CENTS, rounding=ROUND_HALF_UP
        ),
        interval_summary=tuple(str(i) for i in bucket.intervals),
    )


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5
