"""Tests for tiktoken-backed event costing (tiktoken itself is faked)."""

import pytest

from cohort import schemas
from cohort import tokens
from cohort.schemas import Decision, MessageEvent
from cohort.tokens import MESSAGE_OVERHEAD_TOKENS, TokenCounter, cumulative_costs, total_cost


class WordEncoder:
    def __init__(self):
        self.calls = 0

    def encode(self, text, disallowed_special=()):
        self.calls += 1
        return text.split()


@pytest.fixture
def encoder(monkeypatch):
    fake = WordEncoder()
    requested = {}

    def encoding_for_model(model):
        requested["model"] = model
        if model.startswith("claude"):
            raise KeyError(model)
        return fake

    def get_encoding(name):
        requested["encoding"] = name
        return fake

    monkeypatch.setattr(tokens.tiktoken, "encoding_for_model", encoding_for_model)
    monkeypatch.setattr(tokens.tiktoken, "get_encoding", get_encoding)
    fake.requested = requested
    return fake


def test_event_cost_includes_headers_and_overhead(encoder):
    counter = TokenCounter("gpt-4o-mini")
    event = MessageEvent(message=schemas.agent_to_agent("2", ["1"], "hello there"))

    # "--- MESSAGE FROM Agent 2 ---" + "hello there" -> 6 + 2 words
    assert counter.count_event(event) == 8 + MESSAGE_OVERHEAD_TOKENS
    assert encoder.requested == {"model": "gpt-4o-mini"}


def test_unknown_model_falls_back_to_default_encoding(encoder):
    counter = TokenCounter("claude-3-5-haiku-latest")

    assert counter.count_string("one two three") == 3
    assert encoder.requested["encoding"] == "cl100k_base"


def test_counts_are_cached_per_string(encoder):
    counter = TokenCounter("gpt-4o-mini", cache_size=2)

    counter.count_string("a b")
    counter.count_string("a b")
    assert encoder.calls == 1

    counter.count_string("c")
    counter.count_string("d")  # evicts "a b"
    counter.count_string("a b")
    assert encoder.calls == 4

    counter.clear_cache()
    counter.count_string("c")
    assert encoder.calls == 5


def test_empty_string_costs_nothing(encoder):
    assert TokenCounter().count_string("") == 0
    assert encoder.calls == 0


def test_cumulative_and_total_costs(encoder):
    counter = TokenCounter()
    events = [Decision(action_text="a"), Decision(action_text="b c"), Decision(action_text="d e f")]

    assert cumulative_costs(events, counter) == [4, 9, 15]
    assert total_cost(events, counter) == 15
