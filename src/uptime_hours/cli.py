"""Typer CLI printing the booked hours and flex-time per day."""
import logging
from datetime import datetime, timedelta
from decimal import Decimal

import typer

from . import core as _core
from . import eventlog as _eventlog
from . import report as _report

_ENV_PREFIX = "UPTIME_HOURS_"

_EMPHASIS_COLORS = {
    _core.FlexEmphasis.NEUTRAL: None,
    _core.FlexEmphasis.AHEAD: typer.colors.GREEN,
    _core.FlexEmphasis.BEHIND: typer.colors.RED,
}

app = typer.Typer(
    name="uptime-hours",
    help="Working hours and flex-time reconstructed from the machine's power events.",
    add_completion=False,
)


def now() -> datetime:
    return datetime.now().astimezone()


def _echo_row(row: _report.ReportRow, date_format: str) -> None:
    date_text, booked, flex_text, uptime, intervals = _report.row_columns(row, date_format)
    if row.weekend:
        date_text = typer.style(date_text, fg=typer.colors.BLUE, dim=True)
    color = _EMPHASIS_COLORS[row.attributes.emphasis]
    if color is not None:
        flex_text = typer.style(flex_text, fg=color, bold=True)
    typer.echo(_report.join_columns((date_text, booked, flex_text, uptime, intervals)))


@app.command()
def main(
    history: int = typer.Option(
        _report.DEFAULT_HISTORY_DAYS,
        "--history",
        "-d",
        min=1,
        envvar=_ENV_PREFIX + "HISTORY",
        help="Number of days of power events to read",
    ),
    working_hours: float = typer.Option(
        float(_report.DEFAULT_WORKING_HOURS),
        "--working-hours",
        "-w",
        min=0,
        max=24,
        envvar=_ENV_PREFIX + "WORKING_HOURS",
        help="Nominal working hours per day",
    ),
    lunch_break: float = typer.Option(
        float(_report.DEFAULT_LUNCH_BREAK),
        "--lunch-break",
        "-l",
        min=0,
        max=24,
        envvar=_ENV_PREFIX + "LUNCH_BREAK",
        help="Hours subtracted from each day's uptime",
    ),
    precision: int = typer.Option(
        _report.DEFAULT_PRECISION,
        "--precision",
        "-p",
        min=1,
        max=100,
        envvar=_ENV_PREFIX + "PRECISION",
        help="Round booked hours to 1/N of an hour (1 = full hours, 4 = quarter hours)",
    ),
    date_format: str = typer.Option(
        _report.DEFAULT_DATE_FORMAT,
        "--date-format",
        "-f",
        envvar=_ENV_PREFIX + "DATE_FORMAT",
        help="strftime format for the date column",
    ),
    newest_first: bool = typer.Option(
        False, "--newest-first", help="List the most recent day first"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Print booked hours and flex-time for each day the machine was up."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        settings = _report.ReportSettings(
            history_days=history,
            working_hours=Decimal(str(working_hours)),
            lunch_break=Decimal(str(lunch_break)),
            precision=precision,
            date_format=date_format,
        )
    except _report.SettingsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    current = now()
    since = current - timedelta(days=settings.history_days)
    try:
        raws = _eventlog.fetch_events(_core.provider_filters(), since)
    except _eventlog.EventLogError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    buckets = _core.reconstruct(_core.normalize(raws), current)
    rows = _report.build_report(buckets, settings, newest_first=newest_first)
    if not rows:
        typer.echo(f"No uptime recorded in the last {settings.history_days} days")
        raise typer.Exit(0)

    typer.echo(_report.format_header(settings.date_format))
    for row in rows:
        if row.week_break:
            typer.echo(_report.format_separator(settings.date_format))
        _echo_row(row, settings.date_format)
    balance = _report.flex_balance(rows)
    typer.echo(_report.format_separator(settings.date_format))
    typer.echo(f"Flex balance over {len(rows)} days: {_core.format_flex(balance)}")
