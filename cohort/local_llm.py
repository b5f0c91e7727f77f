"""Chat transport for locally hosted models served by Ollama."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from urllib import error, request

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
_CHAT_ENDPOINT = "/api/chat"


class LocalLLMError(RuntimeError):
    """Raised when a local LLM invocation fails."""


def _post_chat(url: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
    """POST ``payload`` to the chat endpoint and return the decoded JSON body.

    Ollama reports most failures as ``{"error": "..."}``, both with a non-2xx
    status and (for some model load failures) with 200, so the body is decoded
    either way and left for ``_reply_text`` to judge.
    """
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except error.HTTPError as exc:
        raw = exc.read() if exc.fp else b""
        if not raw:
            raise LocalLLMError(f"Ollama returned HTTP {exc.code}: {exc.reason}") from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url}: {exc.reason}") from exc

    try:
        body = json.loads(raw.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned a non-JSON response.") from exc
    if not isinstance(body, dict):
        raise LocalLLMError("Ollama returned an unexpected JSON payload.")
    return body


def _reply_text(body: dict[str, Any], model: str) -> str:
    if body.get("error"):
        raise LocalLLMError(f"Ollama could not answer with {model}: {body['error']}")
    content = (body.get("message") or {}).get("content")
    if content is None:
        raise LocalLLMError("Ollama response did not include assistant content.")
    return content


async def call_ollama_chat(
    *,
    messages: list[dict[str, str]],
    llm_model: str,
    max_tokens: int | None = None,
    base_url: str | None = None,
    timeout: float = 120.0,
) -> str:
    """Send an ordered chat transcript to a local Ollama model and return its reply.

    ``max_tokens`` maps to Ollama's ``num_predict`` option.
    """
    if not messages:
        raise LocalLLMError("Cannot call Ollama with an empty transcript.")
    if max_tokens is not None and max_tokens <= 0:
        raise LocalLLMError(f"max_tokens must be positive, got {max_tokens}.")

    resolved_base = (
        base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
    ).rstrip("/")

    payload: dict[str, Any] = {
        "model": llm_model,
        "messages": messages,
        "stream": False,
    }
    if max_tokens is not None:
        payload["options"] = {"num_predict": max_tokens}

    body = await asyncio.to_thread(
        _post_chat,
        f"{resolved_base}{_CHAT_ENDPOINT}",
        payload,
        timeout,
    )
    return _reply_text(body, llm_model)


__all__ = ["LocalLLMError", "call_ollama_chat", "DEFAULT_OLLAMA_BASE_URL"]
