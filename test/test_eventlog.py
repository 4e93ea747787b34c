import subprocess

import pytest

from uptime_hours import eventlog
from uptime_hours.core import (
    KERNEL_GENERAL,
    KERNEL_POWER,
    PMSET,
    POWER_TROUBLESHOOTER,
    RawEvent,
    provider_filters,
)
from uptime_hours.eventlog import *

from datetime import datetime, timedelta, timezone


def local(*args) -> datetime:
    return datetime(*args).astimezone()


_WEVTUTIL_TEXT = """\
Event[0]:
  Log Name: System
  Source: Microsoft-Windows-Kernel-General
  Date: 2023-03-13T08:01:02.5170000
  Event ID: 12
  Task: N/A
  Level: Information
  Opcode: Info
  Keyword: N/A
  User: S-1-5-18
  User Name: NT AUTHORITY\\SYSTEM
  Computer: DESKTOP
  Description:
The operating system started at system time 2023-03-13T08:01:02.500000000Z.

Event[1]:
  Log Name: System
  Source: Microsoft-Windows-Kernel-Power
  Date: 2023-03-14T12:00:40Z
  Event ID: 42
  Task: N/A
  Description:
The system is entering sleep.

Event[2]:
  Log Name: System
  Source: Microsoft-Windows-Power-Troubleshooter
  Date: not a date
  Event ID: 1
  Description:
The system has returned from a low power state.
"""


def test_parse_wevtutil_text():
    events = parse_wevtutil_text(_WEVTUTIL_TEXT.splitlines())
    assert [
        RawEvent(local(2023, 3, 13, 8, 1, 2), 12, KERNEL_GENERAL),
        RawEvent(datetime(2023, 3, 14, 12, 0, 40, tzinfo=timezone.utc), 42, KERNEL_POWER),
    ] == events


def test_parse_wevtutil_text_empty():
    assert [] == parse_wevtutil_text(())
    assert [] == parse_wevtutil_text(("INFO: No events were found that match the specified selection criteria.",))


def test_parse_wevtutil_ts_is_local():
    ts = parse_wevtutil_ts("2023-03-13T12:00:40.1234567Z")
    assert ts is not None and ts.tzinfo is not None
    assert datetime(2023, 3, 13, 12, 0, 40, tzinfo=timezone.utc) == ts
    assert parse_wevtutil_ts("yesterday") is None


def test_wevtutil_query():
    now = local(2023, 3, 15, 10, 0)
    query = wevtutil_query(provider_filters(), now - timedelta(days=14), now)
    assert query.startswith("*[System[(")
    assert f"(Provider[@Name='{KERNEL_GENERAL}'] and (EventID=12 or EventID=13))" in query
    assert f"(Provider[@Name='{POWER_TROUBLESHOOTER}'] and (EventID=1))" in query
    assert f"(Provider[@Name='{KERNEL_POWER}'] and (EventID=42))" in query
    assert PMSET not in query
    assert "TimeCreated[timediff(@SystemTime) <= 1209600000]" in query


def test_wevtutil_query_without_windows_providers():
    now = local(2023, 3, 15, 10, 0)
    with pytest.raises(EventLogError):
        wevtutil_query({PMSET: ("Wake", "Sleep")}, now, now)


_PMSET_LINES = (
    "2023-03-13 08:00:02 -0700 Wake                \tDarkWake to FullWake from Deep Idle [CDNVA] : due to UserActivity Assertion",
    "2023-03-13 09:14:11 -0700 DarkWake            \tDarkWake from Deep Idle [CDN] : due to EC.RTC/Maintenance",
    "2023-03-13 11:30:00 -0700 Wake Requests       \t[*process=mDNSResponder request=Maintenance]",
    "2023-03-13 12:02:40 -0700 Sleep               \tEntering Sleep state due to 'Clamshell Sleep':TCPKeepAlive=active Using Batt (Charge:36%) 2 secs",
    "2023-03-13 12:05:00 -0700 Assertions          \tSummary- [System: PrevIdle] Using Batt(Charge: 36)",
)


def test_parse_pmset_log():
    events = parse_pmset_log(_PMSET_LINES, ("Wake", "Sleep"))
    assert [
        RawEvent(parse_pmset_ts("2023-03-13 08:00:02 -0700"), "Wake", PMSET),
        RawEvent(parse_pmset_ts("2023-03-13 12:02:40 -0700"), "Sleep", PMSET),
    ] == events


def test_parse_pmset_log_since():
    since = parse_pmset_ts("2023-03-13 10:00:00 -0700")
    events = parse_pmset_log(_PMSET_LINES, ("Wake", "Sleep"), since)
    assert ["Sleep"] == [e.source_id for e in events]


def test_fetch_events_unsupported_platform():
    with pytest.raises(EventLogError):
        fetch_events(provider_filters(), local(2023, 3, 1), platform="linux")


def test_fetch_events_windows(monkeypatch):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return subprocess.CompletedProcess(args, 0, stdout=_WEVTUTIL_TEXT, stderr="")

    monkeypatch.setattr(eventlog._subprocess, "run", fake_run)
    events = fetch_events(provider_filters(), local(2023, 3, 1), platform="win32")
    assert [12, 42] == [e.source_id for e in events]
    assert ("wevtutil", "qe", "System") == tuple(calls[0][:3])
    assert calls[0][4] == "/f:text"


def test_fetch_events_windows_missing_command(monkeypatch):
    def fake_run(args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", args[0])

    monkeypatch.setattr(eventlog._subprocess, "run", fake_run)
    with pytest.raises(EventLogError):
        fetch_events(provider_filters(), local(2023, 3, 1), platform="win32")


def test_fetch_events_windows_failed_command(monkeypatch):
    def fake_run(args, **kwargs):
        raise subprocess.CalledProcessError(5, args, stderr="Access is denied.")

    monkeypatch.setattr(eventlog._subprocess, "run", fake_run)
    with pytest.raises(EventLogError) as e:
        fetch_events(provider_filters(), local(2023, 3, 1), platform="win32")
    assert "Access is denied." in str(e.value)
    assert isinstance(e.value, OSError)


def test_parse_pmset_ts_is_local():
    ts = parse_pmset_ts("2023-03-13 12:02:40 -0700")
    utc = datetime(2023, 3, 13, 19, 2, 40, tzinfo=timezone.utc)
    assert utc == ts
    assert utc.astimezone().utcoffset() == ts.utcoffset()


class FakeProc:
    def __init__(self, args, returncode: int, stdout=None):
        self.args = tuple(args)
        self.stdout = stdout
        self.returncode = None
        self.__exit_code = returncode

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.returncode = self.__exit_code
        return False


def fake_popen(monkeypatch, lines=(), pmset_code: int = 0, missing: str | None = None):
    calls = []

    def popen(args, **kwargs):
        calls.append(tuple(args))
        if args[0] == missing:
            raise FileNotFoundError(2, "No such file or directory", args[0])
        if args[0] == "pmset":
            return FakeProc(args, pmset_code)
        return FakeProc(args, 0, stdout=iter(lines))

    monkeypatch.setattr(eventlog._subprocess, "Popen", popen)
    return calls


_SINCE = parse_pmset_ts("2023-03-13 00:00:00 -0700")


def test_fetch_events_macos(monkeypatch):
    calls = fake_popen(monkeypatch, lines=_PMSET_LINES)
    events = fetch_events(provider_filters(), _SINCE, platform="darwin")
    assert [
        RawEvent(parse_pmset_ts("2023-03-13 08:00:02 -0700"), "Wake", PMSET),
        RawEvent(parse_pmset_ts("2023-03-13 12:02:40 -0700"), "Sleep", PMSET),
    ] == events
    assert [
        ("pmset", "-g", "log"),
        ("grep", "-e", "[[:blank:]]Wake[[:blank:]]", "-e", "[[:blank:]]Sleep[[:blank:]]"),
    ] == calls


@pytest.mark.parametrize(
    "kwargs",
    (
        {"pmset_code": 1},
        {"missing": "pmset"},
        {"missing": "grep"},
    ),
    ids=("pmset fails", "pmset missing", "grep missing"),
)
def test_fetch_events_macos_errors(monkeypatch, kwargs):
    fake_popen(monkeypatch, lines=_PMSET_LINES, **kwargs)
    with pytest.raises(EventLogError) as e:
        fetch_events(provider_filters(), _SINCE, platform="darwin")
    assert isinstance(e.value, OSError)


def test_fetch_events_macos_without_domains(monkeypatch):
    calls = fake_popen(monkeypatch)
    with pytest.raises(EventLogError):
        fetch_events({KERNEL_GENERAL: (12, 13)}, _SINCE, platform="darwin")
    assert [] == calls
