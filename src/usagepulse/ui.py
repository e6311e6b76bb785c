"""Rich renderables for the live dashboard."""

from datetime import datetime

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import (
    DashboardSnapshot,
    HealthStatus,
    ModelHealthStatus,
    ModelWindowStats,
    ProviderWindowStats,
    RateLimitEvent,
    SortMode,
    ViewMode,
)

HEALTH_COLORS = {
    HealthStatus.OK: "green",
    HealthStatus.WARN: "yellow",
    HealthStatus.THROTTLED: "red",
}
PROVIDER_HEALTH_ICONS = {
    HealthStatus.OK: "●",
    HealthStatus.WARN: "◐",
    HealthStatus.THROTTLED: "○",
}
MODEL_HEALTH_COLORS = {
    ModelHealthStatus.ACTIVE: "green",
    ModelHealthStatus.STALE: "yellow",
    ModelHealthStatus.ERROR: "red",
}
MODEL_HEALTH_ICONS = {
    ModelHealthStatus.ACTIVE: "●",
    ModelHealthStatus.STALE: "◐",
    ModelHealthStatus.ERROR: "○",
}

SPARK_CHARS = "▁▂▃▄▅▆▇█"
MAX_PROVIDERS = 5
MAX_MODELS = 15
ALERT_MESSAGE_WIDTH = 50

HELP_TEXT = """[bold]Keyboard Shortcuts[/]

 [bold]a[/]  Toggle MTD / All Time view
 [bold]c[/]  Cycle sort mode (cost → tokens → name)
 [bold]w[/]  Cycle sparkline window (5m → 1h → 5h → 24h)
 [bold]r[/]  Refresh data
 [bold]?[/]  Show / hide this help
 [bold]q[/]  Quit"""


def format_tokens(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)


def format_cost(n: float) -> str:
    return f"${n:.2f}"


def progress_bar(percent: float, width: int) -> str:
    clamped = min(100.0, max(0.0, percent))
    filled = round(clamped / 100 * width)
    return "█" * filled + "░" * (width - filled)


def budget_color(percent: float) -> str:
    if percent >= 90:
        return "red"
    if percent >= 70:
        return "yellow"
    return "green"


def sparkline(values: list[int]) -> str:
    peak = max(values, default=0)
    if peak <= 0:
        return SPARK_CHARS[0] * len(values)
    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[round(v / peak * top)] for v in values)


def render_summary(snapshot: DashboardSnapshot) -> Panel:
    s = snapshot.summary
    text = Text.from_markup(
        f"Total Cost: [bold]{format_cost(s.total_cost)}[/]    "
        f"Total Tokens: [bold]{format_tokens(s.total_tokens)}[/]    "
        f"Messages: [bold]{s.message_count}[/]\n"
        f"[dim]{snapshot.current_window.value:>4}[/] [cyan]{sparkline(snapshot.sparkline)}[/]"
    )
    return Panel(text, title=snapshot.view_label, title_align="left", border_style="cyan")


def _budget_cell(p: ProviderWindowStats) -> Text:
    if p.budget_cost and p.budget_cost_percent is not None:
        label = f"{format_cost(p.total_cost)}/{format_cost(p.budget_cost)}"
        percent = p.budget_cost_percent
    elif p.budget_tokens and p.budget_percent is not None:
        label = f"{format_tokens(p.total_tokens)}/{format_tokens(p.budget_tokens)}"
        percent = p.budget_percent
    else:
        return Text.from_markup(f"{format_tokens(p.total_tokens):<16} [dim](no budget)[/]")

    color = budget_color(percent)
    warning = " [red]⚠[/]" if percent >= 90 else ""
    return Text.from_markup(f"{label:<16} [{color}]{progress_bar(percent, 20)}[/] {round(percent):>3}%{warning}")


def _limit_cell(p: ProviderWindowStats) -> Text:
    if p.limit_percent is None:
        return Text("")
    return Text(f"limit {round(p.limit_percent)}%", style=budget_color(p.limit_percent))


def render_providers(providers: list[ProviderWindowStats]) -> Panel:
    if not providers:
        return Panel(Text("No provider data", style="dim"), title="Provider Budgets", title_align="left", border_style="green")

    table = Table.grid(padding=(0, 1))
    table.add_column(width=1)
    table.add_column(min_width=12)
    table.add_column(justify="right", min_width=8)
    table.add_column()
    table.add_column()
    table.add_column()

    for p in providers[:MAX_PROVIDERS]:
        color = HEALTH_COLORS[p.health.status]
        rate_limits = f"[red][{p.health.rate_limit_count_5m} 429s][/]" if p.health.rate_limit_count_5m > 0 else ""
        table.add_row(
            f"[{color}]{PROVIDER_HEALTH_ICONS[p.health.status]}[/]",
            Text(p.provider_id),
            format_cost(p.total_cost),
            _budget_cell(p),
            _limit_cell(p),
            rate_limits,
        )
    return Panel(table, title="Provider Budgets", title_align="left", border_style="green")


def render_models(models: list[ModelWindowStats], sort_mode: SortMode) -> Panel:
    title = f"Models (sorted by {sort_mode.value})"
    if not models:
        return Panel(Text("No model data", style="dim"), title=title, title_align="left", border_style="blue")

    table = Table(show_header=True, header_style="bold cyan", box=None, expand=True)
    table.add_column("Model", no_wrap=True, max_width=28)
    table.add_column("Cost", justify="right", style="yellow")
    table.add_column("Tokens", justify="right")
    table.add_column("Share")
    table.add_column("Health", justify="center")

    for m in models[:MAX_MODELS]:
        color = MODEL_HEALTH_COLORS[m.health.status]
        table.add_row(
            Text(m.model_id[:26]),
            format_cost(m.total_cost),
            format_tokens(m.total_tokens),
            f"{progress_bar(m.share_percent, 8)} {round(m.share_percent):>3}%",
            f"[{color}]{MODEL_HEALTH_ICONS[m.health.status]}[/]",
        )
    if len(models) > MAX_MODELS:
        table.add_row(f"[dim]... and {len(models) - MAX_MODELS} more models[/]", "", "", "", "")
    return Panel(table, title=title, title_align="left", border_style="blue")


def render_alerts(alerts: list[RateLimitEvent]) -> Panel:
    if not alerts:
        body = Text("No recent rate limit errors", style="green")
    else:
        lines = []
        for e in alerts:
            when = datetime.fromtimestamp(e.timestamp / 1000).strftime("%H:%M:%S")
            msg = e.error_message
            if len(msg) > ALERT_MESSAGE_WIDTH:
                msg = msg[:ALERT_MESSAGE_WIDTH] + "..."
            line = Text(f"[{when}] ", style="red")
            line.append(f"{e.provider_id}: {msg}")
            lines.append(line)
        body = Text("\n").join(lines)
    return Panel(body, title="Alerts", title_align="left", border_style="red")


def render_footer(snapshot: DashboardSnapshot) -> Text:
    view_toggle = "All" if snapshot.view_mode == ViewMode.MTD else "MTD"
    next_sort = {SortMode.COST: "tokens", SortMode.TOKENS: "name", SortMode.NAME: "cost"}[snapshot.sort_mode]
    footer = Text(" ", style="white on blue")
    for key, label in (
        ("a", view_toggle),
        ("c", f"sort({next_sort})"),
        ("w", f"window({snapshot.current_window.value})"),
        ("r", "refresh"),
        ("?", "help"),
        ("q", "quit"),
    ):
        footer.append(f"[{key}]", style="bold")
        footer.append(f":{label}  ")
    return footer


def render_help() -> Panel:
    return Panel(Text.from_markup(HELP_TEXT), title="Help", border_style="yellow", width=52)


def build_dashboard(snapshot: DashboardSnapshot, show_help: bool = False) -> Group:
    parts = [
        render_summary(snapshot),
        render_providers(snapshot.providers),
        render_models(snapshot.models, snapshot.sort_mode),
        render_alerts(snapshot.alerts),
    ]
    if show_help:
        parts.append(render_help())
    parts.append(render_footer(snapshot))
    return Group(*parts)
