"""Completion client: turn an agent's event log into raw model text.

This module provides:
- Header injection (``to_chat_message``): how each event is presented to the model
- ``anthropic_turns``: the same transcript reshaped for Anthropic's stricter turn rules
- ``CompletionClient.complete``: provider-agnostic chat completion via Mirascope,
  with bounded retries (tenacity) and a per-attempt timeout
- ``CompletionError``: raised once every attempt has failed

The client is stateless apart from its retry/timeout settings; agents pass the
model id and token limit on every call.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, Dict, List, Optional, Sequence

from mirascope import llm
from mirascope.core import BaseMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from cohort.config import Config
from cohort.local_llm import call_ollama_chat
from cohort.logging_utils import log_error, log_llm
from cohort.schemas import Decision, Event, MessageType, agent_name


# ============================================================================
# Header injection
# ============================================================================


def _source_label(event_source: Any) -> str:
    if event_source.type == "agent" and event_source.id is not None:
        return agent_name(event_source.id)
    return event_source.type.upper()


def to_chat_message(event: Event) -> Dict[str, str]:
    """Format one event as a chat message.

    Decisions are the assistant's own turns. Agent-to-agent messages get a
    ``MESSAGE FROM <agent>`` header and errors an ``ERROR`` header; every other
    message is passed through unheaded.
    """
    if isinstance(event, Decision):
        return {"role": "assistant", "content": event.action_text}

    message = event.message
    role = "system" if message.source.type == "system" else "user"
    if message.type == MessageType.AGENT_TO_AGENT:
        header = f"--- MESSAGE FROM {_source_label(message.source)} ---\n\n"
    elif message.type == MessageType.ERROR:
        header = "--- ERROR ---\n\n"
    else:
        header = ""
    return {"role": role, "content": f"{header}{message.content}"}


CONVERSATION_START = "(Start of your event log.)"


def anthropic_turns(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Reshape a chat transcript for Anthropic's Messages API.

    Anthropic accepts a single system prompt and turns that start with the
    user. Leading system messages are joined into that prompt, later system
    messages are sent as user turns, and consecutive turns from the same role
    are merged. Empty contents are dropped.
    """
    index = 0
    system_parts: List[str] = []
    while index < len(messages) and messages[index]["role"] == "system":
        if messages[index]["content"]:
            system_parts.append(messages[index]["content"])
        index += 1

    turns: List[Dict[str, str]] = []
    for item in messages[index:]:
        if not item["content"]:
            continue
        role = "assistant" if item["role"] == "assistant" else "user"
        if turns and turns[-1]["role"] == role:
            turns[-1] = {"role": role, "content": f"{turns[-1]['content']}\n\n{item['content']}"}
        else:
            turns.append({"role": role, "content": item["content"]})

    if not turns or turns[0]["role"] != "user":
        turns.insert(0, {"role": "user", "content": CONVERSATION_START})
    if system_parts:
        return [{"role": "system", "content": "\n\n".join(system_parts)}, *turns]
    return turns


# ============================================================================
# Client
# ============================================================================


class CompletionError(RuntimeError):
    """Raised when the completion service keeps failing after all retries."""

    def __init__(self, *, model: str, attempts: int, underlying: BaseException) -> None:
        self.model = model
        self.attempts = attempts
        self.underlying = underlying
        message = (
            f"Completion failed for model {model} after {attempts} attempt(s): "
            f"{type(underlying).__name__}: {underlying}\n\n"
            "Remediation tips:\n"
            "  - Verify LLM configuration (LLM_PROVIDER, LLM_MODEL, API key)\n"
            "  - Raise LLM_TIMEOUT_SECONDS for slow providers\n"
            "  - Enable DEBUG_LLM=true to inspect requests/responses"
        )
        super().__init__(message)


class CompletionClient:
    """Provider-agnostic chat completion with bounded retries.

    Every attempt is wrapped in ``asyncio.wait_for`` so a stalled provider
    becomes a fault instead of a hang. Any exception (network, timeout,
    provider error) triggers another attempt until ``max_attempts`` is reached;
    then ``CompletionError`` is raised with the last underlying exception.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        wait: Optional[Callable[..., float]] = None,
    ) -> None:
        self.provider = provider or Config.LLM_PROVIDER
        self.timeout = timeout if timeout is not None else Config.LLM_TIMEOUT_SECONDS
        self.max_attempts = max(max_attempts or Config.LLM_MAX_ATTEMPTS, 1)
        self.wait = wait or wait_exponential(multiplier=1, max=10)

    async def complete(self, model: str, max_tokens: int, events: Sequence[Event]) -> str:
        """Return the model's raw reply to ``events``.

        Raises:
            CompletionError: If every attempt failed
        """
        messages = [to_chat_message(event) for event in events]
        self._debug_request(model, messages)

        attempt_number = 0
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(Exception),
                stop=stop_after_attempt(self.max_attempts),
                wait=self.wait,
                reraise=True,
            ):
                with attempt:
                    attempt_number += 1
                    if attempt_number > 1:
                        log_llm(
                            f"Completion retry {attempt_number}/{self.max_attempts} for {model}"
                        )
                    try:
                        text = await asyncio.wait_for(
                            self._invoke(model, max_tokens, messages),
                            timeout=self.timeout,
                        )
                    except asyncio.TimeoutError:
                        log_error(
                            f"Completion timed out after {self.timeout:g}s for {model} "
                            f"(attempt {attempt_number}/{self.max_attempts})."
                        )
                        raise
                    except Exception as exc:
                        log_error(
                            f"Completion failed for {model} "
                            f"(attempt {attempt_number}/{self.max_attempts}): {exc}"
                        )
                        raise
        except Exception as exc:
            raise CompletionError(model=model, attempts=attempt_number, underlying=exc) from exc

        self._debug_response(model, text)
        return text

    async def _invoke(self, model: str, max_tokens: int, messages: List[Dict[str, str]]) -> str:
        if self.provider.lower() == "ollama":
            return await call_ollama_chat(
                messages=messages,
                llm_model=model,
                max_tokens=max_tokens,
                timeout=self.timeout,
            )
        if self.provider.lower() == "anthropic":
            messages = anthropic_turns(messages)

        @llm.call(provider=self.provider, model=model, call_params={"max_tokens": max_tokens})
        async def _call(transcript: List[Dict[str, str]]) -> List[BaseMessageParam]:
            return [
                BaseMessageParam(role=item["role"], content=item["content"])
                for item in transcript
            ]

        response = await _call(messages)
        return response.content or ""

    @staticmethod
    def _debug_request(model: str, messages: List[Dict[str, str]]) -> None:
        if os.getenv("DEBUG_LLM", "").lower() not in ("1", "true", "yes"):
            return
        print(f"\n{'='*80}")
        print(f"[LLM REQUEST] Model: {model} ({len(messages)} messages)")
        print(f"{'='*80}")
        for item in messages:
            print(f"[{item['role'].upper()}]")
            print(item["content"])
            print(f"{'-'*80}")

    @staticmethod
    def _debug_response(model: str, text: str) -> None:
        if os.getenv("DEBUG_LLM", "").lower() not in ("1", "true", "yes"):
            return
        print(f"[LLM RESPONSE] Model: {model}")
        print(text)
        print(f"{'='*80}\n")
