"""Tests for formatting helpers and dashboard rendering."""

from rich.console import Console

from usagepulse.models import ProviderBudget, ProviderLimits, RateLimitEvent
from usagepulse.state import LiveState
from usagepulse.ui import budget_color, build_dashboard, format_cost, format_tokens, progress_bar, sparkline

MINUTE = 60 * 1000


def _render(renderable) -> str:
    console = Console(record=True, width=120, color_system=None)
    console.print(renderable)
    return console.export_text()


def test_format_tokens():
    assert format_tokens(999) == "999"
    assert format_tokens(1_500) == "1.5K"
    assert format_tokens(2_500_000) == "2.5M"


def test_format_cost():
    assert format_cost(1.234) == "$1.23"
    assert format_cost(0) == "$0.00"


def test_progress_bar_clamps():
    assert progress_bar(50, 10) == "█" * 5 + "░" * 5
    assert progress_bar(150, 4) == "████"
    assert progress_bar(-5, 4) == "░░░░"


def test_budget_color():
    assert budget_color(10) == "green"
    assert budget_color(70) == "yellow"
    assert budget_color(95) == "red"


def test_sparkline():
    assert sparkline([0, 0, 0]) == "▁▁▁"
    assert sparkline([0, 4, 8]) == "▁▅█"
    assert sparkline([]) == ""


def test_build_dashboard_renders_everything(clock, make_message, now):
    state = LiveState(budgets={"anthropic": ProviderBudget(monthly_cost=10)}, clock=clock)
    state.add_messages(
        [
            make_message("a", now - MINUTE, provider="anthropic", model="claude-sonnet", cost=9.5),
            make_message("b", now - 2 * MINUTE, provider="openai", model="gpt-5", cost=0.5),
        ]
    )
    state.add_rate_limit_event(
        RateLimitEvent(timestamp=now, provider_id="anthropic", error_message="429 [Too Many Requests]")
    )

    text = _render(build_dashboard(state.snapshot()))
    assert "Month-to-Date (October 2026)" in text
    assert "$10.00" in text
    assert "claude-sonnet" in text
    assert "gpt-5" in text
    assert "[1 429s]" in text
    assert "95%" in text
    assert "429 [Too Many Requests]" in text
    assert "[a]:All" in text


def test_build_dashboard_empty_state(state):
    text = _render(build_dashboard(state.snapshot(), show_help=True))
    assert "No provider data" in text
    assert "No model data" in text
    assert "No recent rate limit errors" in text
    assert "Keyboard Shortcuts" in text


def test_models_overflow_line(state, make_message):
    state.add_messages(make_message(f"m{i}", model=f"model-{i:02d}") for i in range(17))
    text = _render(build_dashboard(state.snapshot()))
    assert "... and 2 more models" in text


def test_provider_row_shows_rolling_limit(clock, make_message):
    state = LiveState(limits={"openai": ProviderLimits(tokens_5h=100)}, clock=clock)
    state.add_message(make_message("a", provider="openai", input=90, output=0))

    text = _render(build_dashboard(state.snapshot()))
    assert "limit 90%" in text


def test_provider_row_without_limits_has_no_limit_cell(state, make_message):
    state.add_message(make_message("a", provider="openai"))
    text = _render(build_dashboard(state.snapshot()))
    assert text.count("limit") == text.count("rate limit")
