"""Shared fixtures: a controllable clock and a message factory."""

from datetime import datetime, timezone

import pytest

from usagepulse.models import UsageMessage
from usagepulse.state import LiveState

# 2026-10-17 12:00 UTC, 14:00 in Bratislava (CEST)
NOW = int(datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc).timestamp()) * 1000


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state(clock):
    return LiveState(clock=clock)


@pytest.fixture
def make_message(clock):
    def _make(
        msg_id: str,
        created: int | None = None,
        provider: str | None = "openai",
        model: str | None = "gpt-5",
        input: int = 10,
        output: int = 20,
        reasoning: int = 0,
        cost: float | None = 0.01,
        with_tokens: bool = True,
    ) -> UsageMessage:
        tokens = None
        if with_tokens:
            tokens = {"input": input, "output": output, "reasoning": reasoning, "cache": {"read": 0, "write": 0}}
        return UsageMessage(
            id=msg_id,
            session_id="ses_1",
            role="assistant",
            time={"created": clock.now if created is None else created},
            provider_id=provider,
            model_id=model,
            tokens=tokens,
            cost=cost,
        )

    return _make
