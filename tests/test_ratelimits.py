"""Tests for rate-limit detection and provider attribution."""

from usagepulse.models import PartRecord
from usagepulse.ratelimits import detect_provider, event_from_part, is_rate_limit_error


def _part(status="error", output=None, error=None, tool=None) -> PartRecord:
    return PartRecord(id="prt_1", tool=tool, state={"status": status, "output": output, "error": error})


def test_detects_common_rate_limit_messages():
    for text in [
        "HTTP 429",
        "Too Many Requests",
        "rate limit exceeded",
        "Request was throttled",
        "Quota exceeded for project",
        "Model is at capacity",
    ]:
        assert is_rate_limit_error(_part(error=text)), text


def test_detects_in_completed_output():
    assert is_rate_limit_error(_part(status="completed", output="upstream said: RATE LIMIT"))


def test_ignores_other_statuses():
    assert not is_rate_limit_error(_part(status="running", error="429"))
    assert not is_rate_limit_error(_part(status="pending", output="rate limit"))


def test_ignores_unrelated_errors():
    assert not is_rate_limit_error(_part(error="File not found"))
    assert not is_rate_limit_error(_part(status="completed", output="ok"))


def test_ignores_parts_without_state():
    assert not is_rate_limit_error(PartRecord(id="prt_1", type="text"))


def test_detect_provider():
    assert detect_provider("claude-sonnet overloaded") == "anthropic"
    assert detect_provider("OpenAI: 429 Too Many Requests") == "openai"
    assert detect_provider("Vertex quota exceeded") == "google"
    assert detect_provider("OpenRouter rate limit") == "openrouter"
    assert detect_provider("429") == "unknown"


def test_detect_provider_uses_tool_name():
    assert detect_provider("429 Too Many Requests", "gemini_search") == "google"


def test_detect_provider_first_match_wins():
    assert detect_provider("claude via openrouter") == "anthropic"


def test_event_from_part_prefers_output():
    part = _part(status="completed", output="anthropic 429", error="ignored")
    event = event_from_part(part, 1234)
    assert event.timestamp == 1234
    assert event.provider_id == "anthropic"
    assert event.error_message == "anthropic 429"
    assert event.part_id == "prt_1"


def test_event_from_part_truncates_message():
    event = event_from_part(_part(error="rate limit " + "x" * 500), 0)
    assert len(event.error_message) == 200
    assert event.error_message.startswith("rate limit")
