"""CLI for inspecting, correcting and repairing a stored match event log."""

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .checksum import verify_checksum
from .config import BACKENDS, ENV_BACKEND, ENV_STORAGE_KEY, ENV_STORE_PATH, load_settings
from .engine import MatchLogger
from .exceptions import MatchLogError
from .models import SCORING_TYPES, EventType, now_ms
from .stats import score_timeline
from .timeutil import format_timestamp, parse_time_reference
from .timing import format_clock
from .validation import validate_match_data

console = Console()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _parse_ref(value: str | None, option: str) -> int | None:
    if not value:
        return None
    try:
        return parse_time_reference(value)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint=option) from e


def _open_logger(ctx: click.Context) -> MatchLogger:
    """Open the match logger for the configured store; closed with the context."""
    settings = ctx.obj["settings"]
    try:
        match = MatchLogger.open(
            settings.store_dir, backend=settings.backend, storage_key=settings.storage_key
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    ctx.call_on_close(match.close)
    return match


def _fail(ctx: click.Context, message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}")
    ctx.exit(1)


@click.group()
@click.option(
    "--store", "store_path",
    envvar=ENV_STORE_PATH,
    type=click.Path(path_type=Path),
    help="Directory holding the match log (default: nearest .matchlog)",
)
@click.option("--key", "storage_key", envvar=ENV_STORAGE_KEY, help="Storage key of the snapshot")
@click.option(
    "--backend",
    envvar=ENV_BACKEND,
    type=click.Choice(BACKENDS, case_sensitive=False),
    help="Storage backend",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx, store_path, storage_key, backend, verbose):
    """Matchlog - event log of a youth football match."""
    try:
        settings = load_settings()
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--backend") from e

    if store_path:
        settings.store_dir = store_path
    if storage_key:
        settings.storage_key = storage_key
    if backend:
        settings.backend = backend.lower()

    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--all", "include_undone", is_flag=True, help="Include undone events")
@click.option(
    "--type", "event_types",
    multiple=True,
    type=click.Choice([t.value for t in EventType]),
    help="Only events of this type (repeatable)",
)
@click.option("--since", help="Only events at or after this time (ISO, relative, or epoch ms)")
@click.option("--until", help="Only events at or before this time")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def events(ctx, include_undone, event_types, since, until, as_json):
    """List match events in sequence order."""
    start_time = _parse_ref(since, "--since")
    end_time = _parse_ref(until, "--until")

    match = _open_logger(ctx)
    found = match.get_match_events(
        include_undone=include_undone,
        event_types=event_types or None,
        start_time=start_time,
        end_time=end_time,
    )

    if as_json:
        click.echo(json.dumps([e.to_dict() for e in found], indent=2))
        return

    if not found:
        console.print("[dim]No events found.[/dim]")
        return

    table = Table(title=f"Match events ({len(found)})")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Clock", style="cyan")
    table.add_column("Type")
    table.add_column("Id", style="yellow")
    table.add_column("Recorded")
    table.add_column("Data")

    for event in found:
        label = f"[strike]{event.type.value}[/strike] (undone)" if event.undone else event.type.value
        table.add_row(
            str(event.sequence),
            event.match_time,
            label,
            event.id,
            format_timestamp(event.timestamp),
            escape(json.dumps(event.data)) if event.data else "",
        )
    console.print(table)


@cli.command("log")
@click.argument("event_type")
@click.option("--data", "data_json", help="Event data as a JSON object")
@click.option("--at", "at", help="When it happened (default: now)")
@click.pass_context
def log_event(ctx, event_type, data_json, at):
    """Record an event.

    Examples:
        matchlog log match_start
        matchlog log goal_scored --data '{"scorerId": "p7"}'
        matchlog log timer_paused --at "-30s"
    """
    data = None
    if data_json:
        try:
            data = json.loads(data_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"Not valid JSON: {e}", param_hint="--data") from e
        if not isinstance(data, dict):
            raise click.BadParameter("Must be a JSON object", param_hint="--data")
    timestamp = _parse_ref(at, "--at")

    match = _open_logger(ctx)
    try:
        event = match.log_event(event_type, data, custom_timestamp=timestamp)
    except MatchLogError as e:
        _fail(ctx, e.message)

    console.print(
        f"[green]✓[/green] #{event.sequence} [cyan]{event.match_time}[/cyan] "
        f"{event.type.value} [yellow]{event.id}[/yellow]"
    )


@cli.command()
@click.argument("event_id")
@click.option("--reason", help="Why the event is retracted")
@click.pass_context
def undo(ctx, event_id, reason):
    """Mark an event as undone (goals also rewrite the running score)."""
    match = _open_logger(ctx)
    event = match.get_event_by_id(event_id)
    if event is None:
        _fail(ctx, f"Event not found: {event_id}")

    # Each kind of retraction has its own default reason
    kwargs = {"reason": reason} if reason else {}
    if event.type in SCORING_TYPES:
        ok = match.undo_goal(event_id, **kwargs)
    else:
        ok = match.mark_event_as_undone(event_id, **kwargs)

    if not ok:
        _fail(ctx, f"Could not undo {event_id}")
    console.print(f"[green]✓[/green] Undone {event.type.value} [yellow]{event_id}[/yellow]")


@cli.command()
@click.argument("event_id")
@click.pass_context
def remove(ctx, event_id):
    """Permanently delete an event."""
    match = _open_logger(ctx)
    if not match.remove_event(event_id):
        _fail(ctx, f"Could not remove {event_id}")
    console.print(f"[green]✓[/green] Removed [yellow]{event_id}[/yellow]")


@cli.command()
@click.pass_context
def clock(ctx):
    """Show the match clock and effective playing time."""
    match = _open_logger(ctx)
    start = match.get_match_start_time()
    if start is None:
        console.print("[dim]Match not started.[/dim]")
        return

    now = now_ms()
    console.print(f"Kick-off:        {format_timestamp(start)}")
    console.print(f"Match clock:     [cyan]{match.calculate_match_time(now)}[/cyan]")
    console.print(f"Elapsed:         {format_clock(match.get_total_elapsed_time(now))}")
    console.print(f"Playing time:    [bold]{format_clock(match.get_effective_playing_time(now))}[/bold]")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show the score and time per player."""
    match = _open_logger(ctx)

    timeline = score_timeline(match.get_match_events(event_types=SCORING_TYPES))
    own, opponent = timeline[-1][1:] if timeline else (0, 0)
    console.print(f"Score: [bold]{own} - {opponent}[/bold]")

    totals = match.player_time_totals()
    if not totals:
        console.print("[dim]No player time recorded.[/dim]")
        return

    table = Table(title="Player time")
    table.add_column("Player", style="cyan")
    for heading in ("On field", "Goalie", "Defender", "Attacker", "Sub"):
        table.add_column(heading, justify="right")

    for player_id, times in sorted(totals.items()):
        table.add_row(
            player_id,
            format_clock(times.time_on_field),
            format_clock(times.time_as_goalie),
            format_clock(times.time_as_defender),
            format_clock(times.time_as_attacker),
            format_clock(times.time_as_sub),
        )
    console.print(table)


@cli.command()
@click.pass_context
def verify(ctx):
    """Check the stored snapshot. Exits non-zero if anything is wrong."""
    match = _open_logger(ctx)
    raw = match.persistence.read_raw()
    if raw is None:
        console.print("[dim]Nothing stored.[/dim]")
        return

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        _fail(ctx, f"Snapshot is not valid JSON: {e}")
    if not isinstance(data, dict):
        _fail(ctx, "Snapshot is not a JSON object")

    checksum_ok = verify_checksum(data)
    issues = validate_match_data(data.get("events"))

    if checksum_ok:
        console.print("[green]✓[/green] Checksum matches")
    else:
        console.print("[red]✗[/red] Checksum mismatch")

    if issues:
        table = Table(title=f"Validation issues ({len(issues)})")
        table.add_column("Severity")
        table.add_column("Kind")
        table.add_column("Message")
        for issue in issues:
            table.add_row(issue.severity, issue.kind.value, escape(issue.message))
        console.print(table)
    else:
        console.print(f"[green]✓[/green] {len(data.get('events') or [])} events pass validation")

    if not checksum_ok or issues:
        console.print("Run [bold]matchlog recover[/bold] to attempt a repair.")
        ctx.exit(1)


@cli.command()
@click.option("--apply", is_flag=True, help="Write the repaired snapshot back to storage")
@click.pass_context
def recover(ctx, apply):
    """Salvage events from a damaged snapshot."""
    match = _open_logger(ctx)
    try:
        snapshot = match.recover_from_crash(apply=apply)
    except MatchLogError as e:
        _fail(ctx, e.message)

    if snapshot is None:
        _fail(ctx, "No recoverable events found")

    if not snapshot.recovered:
        console.print(f"[green]✓[/green] Snapshot is sound ({len(snapshot.events)} events)")
        return

    console.print(f"Recovered [bold]{len(snapshot.events)}[/bold] events")
    if apply:
        console.print("[green]✓[/green] Repaired snapshot written")
    else:
        console.print("[yellow]![/yellow] Dry run; use --apply to write it")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear(ctx, yes):
    """Delete every event and the stored snapshot."""
    if not yes:
        click.confirm("Delete all match events?", abort=True)
    match = _open_logger(ctx)
    if not match.clear_all_events():
        _fail(ctx, "Could not clear stored events")
    console.print("[green]✓[/green] Cleared all match events")


if __name__ == "__main__":
    cli()
