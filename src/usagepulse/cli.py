"""CLI interface for UsagePulse."""

import json
import logging

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import __version__
from .aggregator import (
    GROUP_BY_CHOICES,
    aggregate_by_key,
    aggregate_total,
    group_key_fn,
    load_all_messages,
    load_all_sessions,
    parse_since,
)
from .config import LOG_FILE, STORAGE_DIR, load_budgets_config, load_limits_config
from .models import AggregatedUsage, WindowSize

console = Console()

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def _format_number(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)


@click.group(invoke_without_command=True)
@click.version_option(__version__)
@click.option(
    "--storage-dir",
    type=click.Path(file_okay=False),
    default=str(STORAGE_DIR),
    show_default=True,
    help="OpenCode storage directory",
)
@click.pass_context
def cli(ctx, storage_dir):
    """UsagePulse - OpenCode token usage, budgets and provider health.

    Without a command, prints all-time totals like `usagepulse stats`.
    """
    ctx.obj = {"storage_dir": storage_dir}
    if ctx.invoked_subcommand is None:
        ctx.invoke(stats)


@cli.command()
@click.option("--since", "-s", default=None, help="Relative (7d, 30d, 1h, 1w, 1m) or absolute (YYYY-MM-DD)")
@click.option("--by", "-b", "group_by", default=None, type=click.Choice(GROUP_BY_CHOICES), help="Group usage by")
@click.option("--limit", "-n", default=None, type=int, help="Limit number of rows in grouped output")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--log-level", default="warning", type=click.Choice(["debug", "info", "warning", "error"]))
@click.pass_context
def stats(ctx, since, group_by, limit, as_json, log_level):
    """Show token usage totals, optionally grouped."""
    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)

    since_ts = None
    if since:
        try:
            since_ts = parse_since(since)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--since")

    storage_dir = ctx.obj["storage_dir"]
    messages = load_all_messages(storage_dir, since_ts)
    if not messages:
        console.print("No usage data found.")
        console.print("[dim]Make sure OpenCode has been used at least once.[/]")
        return

    total = aggregate_total(messages)
    grouped = aggregate_by_key(messages, group_key_fn(group_by)) if group_by else None

    if as_json:
        output = {"total": total.model_dump(by_alias=True)}
        if grouped is not None:
            output[f"by{group_by.capitalize()}"] = [g.model_dump(by_alias=True) for g in grouped]
        click.echo(json.dumps(output, indent=2))
        return

    _print_total(total, since)
    if grouped is not None:
        sessions = load_all_sessions(storage_dir) if group_by == "session" else {}
        _print_grouped(grouped, group_by, sessions, limit)


def _print_total(total: AggregatedUsage, since: str | None):
    period = f"(since {since})" if since else "(all time)"
    console.print(f"\n[bold]OpenCode Token Usage[/] {period}\n")

    table = Table(show_header=False, box=None)
    table.add_column(style="white")
    table.add_column(justify="right")
    table.add_row("Messages", _format_number(total.message_count))
    table.add_row("Total Cost", f"[yellow]${total.total_cost:.4f}[/]")
    table.add_row("Input", _format_number(total.total_input))
    table.add_row("Output", _format_number(total.total_output))
    table.add_row("Reasoning", _format_number(total.total_reasoning))
    table.add_row("Cache Read", _format_number(total.total_cache_read))
    table.add_row("Cache Write", _format_number(total.total_cache_write))
    console.print(table)
    console.print()


def _print_grouped(grouped, group_by, sessions, limit):
    rows = grouped[:limit] if limit else grouped

    table = Table(show_header=True, header_style="bold cyan", title=f"Usage by {group_by}")
    table.add_column(group_by.capitalize(), style="white", max_width=30)
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Reasoning", justify="right")
    table.add_column("Cache R", justify="right")
    table.add_column("Cache W", justify="right")
    table.add_column("Cost", justify="right", style="yellow")
    table.add_column("Msgs", justify="right")

    for row in rows:
        label = row.key
        if group_by == "session":
            session = sessions.get(row.key)
            label = session.title if session and session.title else row.key[:20]
        table.add_row(
            Text(label),
            _format_number(row.total_input),
            _format_number(row.total_output),
            _format_number(row.total_reasoning),
            _format_number(row.total_cache_read),
            _format_number(row.total_cache_write),
            f"${row.total_cost:.4f}",
            str(row.message_count),
        )
    console.print(table)

    if limit and len(grouped) > limit:
        console.print(f"[dim]... and {len(grouped) - limit} more[/]")
    console.print()


@cli.command()
@click.option(
    "--window",
    "-w",
    default=WindowSize.FIVE_HOURS.value,
    type=click.Choice([w.value for w in WindowSize]),
    help="Initial sparkline window",
)
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Path to limits config file")
@click.option("--budgets", "budgets_path", default=None, type=click.Path(dir_okay=False), help="Path to budgets config file")
@click.option("--log-level", default="info", type=click.Choice(["debug", "info", "warning", "error"]))
@click.pass_context
def live(ctx, window, config_path, budgets_path, log_level):
    """Start the real-time fullscreen dashboard."""
    from .live import start_live
    from .state import LiveState

    # The dashboard owns the terminal, so log records go to a file
    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT, filename=str(LOG_FILE))

    state = LiveState(budgets=load_budgets_config(budgets_path), limits=load_limits_config(config_path))
    start_live(state, ctx.obj["storage_dir"], window)
