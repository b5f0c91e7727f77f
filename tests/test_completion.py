"""Unit tests for header injection and the completion client."""

import asyncio
from types import SimpleNamespace

import pytest
from tenacity import wait_none

from cohort import schemas
from cohort.completion import (
    CONVERSATION_START,
    CompletionClient,
    CompletionError,
    anthropic_turns,
    to_chat_message,
)
from cohort.schemas import USER_SOURCE, Decision, Message, MessageEvent, MessageType


def _event(message: Message) -> MessageEvent:
    return MessageEvent(message=message)


# ============================================================================
# Header injection
# ============================================================================


def test_decision_is_an_assistant_turn():
    assert to_chat_message(Decision(action_text="action: noop")) == {
        "role": "assistant",
        "content": "action: noop",
    }


def test_agent_message_gets_sender_header():
    event = _event(schemas.agent_to_agent("7", ["1"], "Can you review my note?"))

    assert to_chat_message(event) == {
        "role": "user",
        "content": "--- MESSAGE FROM Agent 7 ---\n\nCan you review my note?",
    }


def test_user_message_gets_user_header():
    event = _event(
        Message(type=MessageType.AGENT_TO_AGENT, source=USER_SOURCE, target_agent_ids=[], content="Hi all")
    )

    assert to_chat_message(event)["content"] == "--- MESSAGE FROM USER ---\n\nHi all"


def test_error_gets_error_header_and_system_role():
    event = _event(schemas.error("1", "Unknown action `fly`."))

    assert to_chat_message(event) == {
        "role": "system",
        "content": "--- ERROR ---\n\nUnknown action `fly`.",
    }


@pytest.mark.parametrize("builder", [schemas.ok, schemas.spontaneous])
def test_other_system_messages_are_unheaded(builder):
    assert to_chat_message(_event(builder("1", "plain"))) == {"role": "system", "content": "plain"}


# ============================================================================
# CompletionClient
# ============================================================================


def _fake_llm_call(recorded, replies):
    def fake_decorator(*, provider, model, call_params):
        recorded.append({"provider": provider, "model": model, "call_params": call_params})

        def wrapper(fn):
            async def inner(transcript):
                messages = await fn(transcript)
                recorded.append({"messages": [(m.role, m.content) for m in messages]})
                reply = replies.pop(0)
                if isinstance(reply, Exception):
                    raise reply
                return SimpleNamespace(content=reply)

            return inner

        return wrapper

    return fake_decorator


@pytest.mark.asyncio
async def test_complete_sends_transcript_through_mirascope(monkeypatch):
    recorded = []
    monkeypatch.setattr("cohort.completion.llm.call", _fake_llm_call(recorded, ["action: noop"]))
    client = CompletionClient("openai", timeout=5, max_attempts=1)

    events = [
        _event(schemas.spontaneous("1", "intro")),
        Decision(action_text="action: noop"),
        _event(schemas.ok("1", "Noop was successful.")),
    ]
    text = await client.complete("gpt-4o-mini", 99, events)

    assert text == "action: noop"
    assert recorded[0] == {"provider": "openai", "model": "gpt-4o-mini", "call_params": {"max_tokens": 99}}
    assert recorded[1]["messages"] == [
        ("system", "intro"),
        ("assistant", "action: noop"),
        ("system", "Noop was successful."),
    ]


@pytest.mark.asyncio
async def test_complete_retries_transient_failures(monkeypatch):
    recorded = []
    replies = [RuntimeError("503"), ConnectionError("reset"), "action: noop"]
    monkeypatch.setattr("cohort.completion.llm.call", _fake_llm_call(recorded, replies))
    client = CompletionClient("openai", timeout=5, max_attempts=3, wait=wait_none())

    text = await client.complete("gpt-4o-mini", 10, [Decision(action_text="x")])

    assert text == "action: noop"
    assert replies == []


@pytest.mark.asyncio
async def test_complete_raises_after_exhausting_attempts(monkeypatch):
    recorded = []
    replies = [RuntimeError("first"), RuntimeError("second")]
    monkeypatch.setattr("cohort.completion.llm.call", _fake_llm_call(recorded, replies))
    client = CompletionClient("anthropic", timeout=5, max_attempts=2, wait=wait_none())

    with pytest.raises(CompletionError) as exc_info:
        await client.complete("claude-3-5-haiku-latest", 10, [Decision(action_text="x")])

    error = exc_info.value
    assert error.attempts == 2
    assert str(error.underlying) == "second"
    assert "Remediation tips" in str(error)


@pytest.mark.asyncio
async def test_complete_times_out_stalled_attempts(monkeypatch):
    client = CompletionClient("openai", timeout=0.01, max_attempts=1, wait=wait_none())

    async def stalled(model, max_tokens, messages):
        await asyncio.sleep(10)

    monkeypatch.setattr(client, "_invoke", stalled)

    with pytest.raises(CompletionError) as exc_info:
        await client.complete("gpt-4o-mini", 10, [Decision(action_text="x")])

    assert isinstance(exc_info.value.underlying, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_ollama_provider_uses_local_transport(monkeypatch):
    captured = {}

    async def fake_ollama(*, messages, llm_model, max_tokens, timeout):
        captured.update(messages=messages, llm_model=llm_model, max_tokens=max_tokens, timeout=timeout)
        return "action: noop"

    monkeypatch.setattr("cohort.completion.call_ollama_chat", fake_ollama)
    client = CompletionClient("ollama", timeout=12, max_attempts=1)

    text = await client.complete("llama3.1", 50, [Decision(action_text="x")])

    assert text == "action: noop"
    assert captured == {
        "messages": [{"role": "assistant", "content": "x"}],
        "llm_model": "llama3.1",
        "max_tokens": 50,
        "timeout": 12,
    }


# ============================================================================
# Anthropic transcript shape
# ============================================================================


def test_anthropic_turns_fold_system_messages_and_start_with_user():
    transcript = [
        {"role": "system", "content": "intro"},
        {"role": "assistant", "content": "action: noop"},
        {"role": "system", "content": "Noop was successful."},
        {"role": "user", "content": "--- MESSAGE FROM Agent 2 ---\n\nhi"},
        {"role": "system", "content": ""},
    ]

    assert anthropic_turns(transcript) == [
        {"role": "system", "content": "intro"},
        {"role": "user", "content": CONVERSATION_START},
        {"role": "assistant", "content": "action: noop"},
        {"role": "user", "content": "Noop was successful.\n\n--- MESSAGE FROM Agent 2 ---\n\nhi"},
    ]


def test_anthropic_turns_joins_leading_system_messages():
    transcript = [
        {"role": "system", "content": "intro"},
        {"role": "system", "content": "summary so far"},
        {"role": "system", "content": "Write a summary."},
    ]

    assert anthropic_turns(transcript) == [
        {"role": "system", "content": "intro\n\nsummary so far\n\nWrite a summary."},
        {"role": "user", "content": CONVERSATION_START},
    ]


@pytest.mark.asyncio
async def test_anthropic_request_through_mirascope_has_valid_roles(monkeypatch):
    from anthropic.resources.messages import AsyncMessages
    from anthropic.types import Message as AnthropicMessage, TextBlock, Usage

    sent = {}

    async def fake_create(self, **kwargs):
        sent.update(kwargs)
        return AnthropicMessage(
            id="msg_1",
            type="message",
            role="assistant",
            model=kwargs["model"],
            content=[TextBlock(type="text", text="action: noop")],
            stop_reason="end_turn",
            stop_sequence=None,
            usage=Usage(input_tokens=10, output_tokens=3),
        )

    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    monkeypatch.setattr(AsyncMessages, "create", fake_create)
    client = CompletionClient("anthropic", timeout=5, max_attempts=1)

    events = [
        _event(schemas.spontaneous("1", "--- CORE ---\n\nYou are Agent 1.")),
        Decision(action_text="action: noop"),
        _event(schemas.ok("1", "Noop was successful.")),
    ]
    text = await client.complete("claude-3-5-haiku-latest", 64, events)

    assert text == "action: noop"
    assert sent["system"] == "--- CORE ---\n\nYou are Agent 1."
    assert sent["max_tokens"] == 64
    roles = [message["role"] for message in sent["messages"]]
    assert roles == ["user", "assistant", "user"]
    assert sent["messages"][-1]["content"] == "Noop was successful."
