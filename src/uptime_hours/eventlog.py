"""
Reads power events from the platform event log.

On Windows this queries the System log with `wevtutil`, on macOS it parses `pmset -g log`. Both readers only
return the raw events, classification happens in `core`.
"""
import logging as _logging
import re as _re
import sys as _sys
import subprocess as _subprocess
import collections.abc as _coll_types

from contextlib import contextmanager
from datetime import datetime, timezone

from . import core as _core

_LOG = _logging.getLogger(__name__)

WINDOWS_PLATFORM = "win32"
MACOS_PLATFORM = "darwin"


class EventLogError(OSError):
    """Raised when the platform event log could not be read."""


Filters = _coll_types.Mapping[str, _coll_types.Sequence[int | str]]

_WEVTUTIL_DATE_PAT = _re.compile(
    r"(?P<timestamp>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.\d+)?(?P<utc>Z)?"
)
_WEVTUTIL_FIELD_PAT = _re.compile(r"^\s*(?P<name>Source|Date|Event ID):\s*(?P<value>.*?)\s*$")
_WEVTUTIL_RECORD_PAT = _re.compile(r"^Event\[\d+\]:")


def parse_wevtutil_ts(ts_text: str) -> datetime | None:
    """Parses a `wevtutil` text formatted date into a local `datetime`.

    Newer versions of Windows print UTC with a `Z` suffix, older ones local time without an offset.
    """
    match = _WEVTUTIL_DATE_PAT.match(ts_text)
    if not match:
        return None
    ts = datetime.strptime(match["timestamp"], "%Y-%m-%dT%H:%M:%S")
    if match["utc"]:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone()


def _record_to_event(fields: dict[str, str]) -> _core.RawEvent | None:
    try:
        source = fields["Source"]
        ts = parse_wevtutil_ts(fields["Date"])
        event_id = int(fields["Event ID"])
    except (KeyError, ValueError):
        _LOG.debug("Skipping incomplete wevtutil record: %s", fields)
        return None
    if ts is None:
        _LOG.debug("Skipping wevtutil record with bad date: %s", fields)
        return None
    return _core.RawEvent(ts, event_id, source)


def parse_wevtutil_text(
    log_lines: _coll_types.Iterable[str],
) -> list[_core.RawEvent]:
    """Parses `wevtutil qe ... /f:text` output, one `RawEvent` per `Event[n]:` record."""
    events = []
    fields: dict[str, str] = {}
    for line in log_lines:
        if _WEVTUTIL_RECORD_PAT.match(line):
            if fields:
                event = _record_to_event(fields)
                if event is not None:
                    events.append(event)
            fields = {}
            continue
        match = _WEVTUTIL_FIELD_PAT.match(line)
        # only the first occurrence counts, the description may repeat names
        if match and match["name"] not in fields:
            fields[match["name"]] = match["value"]
    if fields:
        event = _record_to_event(fields)
        if event is not None:
            events.append(event)
    return events


def wevtutil_query(filters: Filters, since: datetime, now: datetime) -> str:
    """Builds the XPath query selecting the given provider event ids created after `since`."""
    clauses = []
    for provider, source_ids in filters.items():
        ids = " or ".join(f"EventID={i}" for i in source_ids if isinstance(i, int))
        if ids:
            clauses.append(f"(Provider[@Name='{provider}'] and ({ids}))")
    if not clauses:
        raise EventLogError("No Windows event providers to query")
    window_ms = max(0, int((now - since).total_seconds() * 1000))
    return (
        f"*[System[({' or '.join(clauses)}) "
        f"and TimeCreated[timediff(@SystemTime) <= {window_ms}]]]"
    )


def _run(args: _coll_types.Sequence[str]) -> str:
    _LOG.debug("Running %s", " ".join(args))
    try:
        proc = _subprocess.run(
            args, capture_output=True, encoding="UTF-8", errors="replace", check=True
        )
    except FileNotFoundError as e:
        raise EventLogError(f"Could not run {args[0]}: {e}") from e
    except _subprocess.CalledProcessError as e:
        raise EventLogError(
            f"{args[0]} failed with exit code {e.returncode}: {(e.stderr or '').strip()}"
        ) from e
    return proc.stdout


def wevtutil_events(filters: Filters, since: datetime) -> list[_core.RawEvent]:
    query = wevtutil_query(filters, since, datetime.now().astimezone())
    text = _run(("wevtutil", "qe", "System", f"/q:{query}", "/f:text"))
    return parse_wevtutil_text(text.splitlines())


_TIMESTAMP_PAT_STR = r"(?P<timestamp>\d{4}-\d{2}-\d{2}\s\d{2}:\d{2}:\d{2}\s[+-]\d{4})"
_PMSET_PAT = _re.compile(_TIMESTAMP_PAT_STR + r"\s+(?P<domain>\w+)(?:\t|\s{2,})")


def parse_pmset_ts(ts_text: str) -> datetime:
    """Parses the `pmset` log formatted timestamp into a local `datetime`"""
    return datetime.strptime(ts_text, "%Y-%m-%d %H:%M:%S %z").astimezone()


def parse_pmset_log(
    log_lines: _coll_types.Iterable[str],
    domains: _coll_types.Collection[str],
    since: datetime | None = None,
) -> list[_core.RawEvent]:
    events = []
    for line in log_lines:
        match = _PMSET_PAT.match(line)
        if not match or match["domain"] not in domains:
            continue
        ts = parse_pmset_ts(match["timestamp"])
        if since is not None and ts < since:
            continue
        events.append(_core.RawEvent(ts, match["domain"], _core.PMSET))
    return events


_PMSET_LOG_ARGS = ("pmset", "-g", "log")


def _grep_args(domains: _coll_types.Iterable[str]) -> tuple[str, ...]:
    args = ["grep"]
    for domain in domains:
        args.extend(("-e", f"[[:blank:]]{domain}[[:blank:]]"))
    return tuple(args)


def _popen(args: _coll_types.Sequence[str], **kwargs) -> _subprocess.Popen:
    _LOG.debug("Running %s", " ".join(args))
    try:
        return _subprocess.Popen(args, **kwargs)
    except FileNotFoundError as e:
        raise EventLogError(f"Could not run {args[0]}: {e}") from e


@contextmanager
def pmset_log(
    domains: _coll_types.Iterable[str],
) -> _coll_types.Generator[_coll_types.Iterator[str], None, None]:
    """Runs `pmset -g log` pre-filtering lines with `grep` and yields the filtered lines"""
    with _popen(_PMSET_LOG_ARGS, stdout=_subprocess.PIPE) as pmset_proc:
        with _popen(
            _grep_args(domains),
            encoding="UTF-8",
            stdin=pmset_proc.stdout,
            stdout=_subprocess.PIPE,
        ) as grep_proc:
            yield grep_proc.stdout
    if pmset_proc.returncode != 0:
        raise EventLogError(f"pmset failed with exit code {pmset_proc.returncode}")


def pmset_events(filters: Filters, since: datetime) -> list[_core.RawEvent]:
    domains = tuple(str(d) for d in filters.get(_core.PMSET, ()))
    if not domains:
        raise EventLogError("No pmset domains to query")
    with pmset_log(domains) as log:
        return parse_pmset_log(log, domains, since)


def fetch_events(
    filters: Filters, since: datetime, platform: str = _sys.platform
) -> list[_core.RawEvent]:
    """Fetches the raw power events since `since` from the platform log, sorted by time."""
    if platform == WINDOWS_PLATFORM:
        events = wevtutil_events(filters, since)
    elif platform == MACOS_PLATFORM:
        events = pmset_events(filters, since)
    else:
        raise EventLogError(f"Expected Windows or macOS, found {platform}")
    _LOG.info("Read %d power events since %s", len(events), _core.ts_to_str(since))
    events.sort(key=lambda e: e.ts)
    return events
