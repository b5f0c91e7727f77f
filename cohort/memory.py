"""
Bounded episodic memory for a single agent.

The MemoryManager owns an agent's event log and keeps what the model sees
inside a token budget.

Key responsibilities:
- ``retrieve()``: build a fresh Introduction from every capability's pinned
  text and put it in front of the persisted events
- ``append(event)``: add an event, prune the most recent error when an ``ok``
  arrives, compress if over budget, persist
- ``summarize(events)``: replace the oldest events with a single model-written
  recap once the log grows past 75% of the context window

Invariants:
- The persisted log never includes the Introduction and is never empty (an
  empty log is seeded with a no-op Decision)
- Events are only ever appended; compression swaps a contiguous prefix (after
  the Introduction) for exactly one summary Message and keeps the rest in order
- A compression is only kept if it strictly lowers the total token cost
"""

from __future__ import annotations

import math
import os
from bisect import bisect_left
from typing import List, Optional, Sequence

from pydantic import ValidationError

from cohort import schemas
from cohort.completion import CompletionClient, CompletionError
from cohort.config import Config
from cohort.dispatcher import ActionDispatcher
from cohort.logging_utils import Color, colored, log_error, log_event, log_memory
from cohort.schemas import Event, MessageEvent, MessageType
from cohort.store import Store, StoreError
from cohort.tokens import EventCostEstimator, TokenCounter, cumulative_costs, total_cost


SUMMARY_THRESHOLD_RATIO = 0.75
TOKENS_PER_SUMMARY_WORD = 6
MIN_TAIL_EVENTS = 3
MIN_COVERAGE_RATIO = 0.5

SUMMARY_PREAMBLE = (
    "Several events are omitted here to free up space in your context window, "
    "summarized as follows:\n\n"
)


def summary_instruction(word_limit: int) -> str:
    """Prompt asking the model to recap the events it is about to lose."""
    return (
        f"Write a summary in {word_limit} words or less of what has happened since "
        "(but not including) the introductory message. Include key information that "
        "you learned which you don't want to forget. This information will serve as a "
        "note to yourself to help you understand what has gone before. Use the second "
        "person voice, as if you are someone filling in your replacement who knows "
        "nothing. The summarized messages will be omitted from your context window going "
        "forward and you will only have this summary to go by, so make it as useful and "
        "information-dense as possible. Be as specific as possible, but only include "
        "important information. If there are details that seem unimportant, or which you "
        "could recover outside of your memory (for instance the particular contents of a "
        "file which you could read any time), then omit them from your summary. Once "
        f"again, your summary must not exceed {word_limit} words. In this particular "
        "instance, your response should just be raw text, not formatted as an action."
    )


def prune_latest_error(events: Sequence[Event]) -> List[Event]:
    """Drop the most recent error Message and the Decision right before it.

    ``events[0]`` is the Introduction and is never touched. If the event before
    the error is not a Decision, only the error is removed.
    """
    for index in range(len(events) - 1, 0, -1):
        if schemas.is_message_of(events[index], MessageType.ERROR):
            start = index - 1 if index > 1 and schemas.is_decision(events[index - 1]) else index
            return [*events[:start], *events[index + 1 :]]
    return list(events)


def clamp_boundary(boundary: int, count: int) -> Optional[int]:
    """Clamp a summarized-prefix length for a log of ``count`` events.

    The prefix must cover at least half of the events and leave at least
    ``MIN_TAIL_EVENTS`` behind. When both cannot hold, the tail wins. Returns
    None when no non-empty prefix leaves a large enough tail.
    """
    max_prefix = count - MIN_TAIL_EVENTS
    if max_prefix < 1:
        return None
    min_prefix = math.ceil(count * MIN_COVERAGE_RATIO)
    return min(max(boundary, min_prefix), max_prefix)


class MemoryManager:
    """Owns one agent's event log.

    Not safe for concurrent use: callers serialize access (see ``TaskQueue``).
    """

    def __init__(
        self,
        agent_id: str,
        dispatcher: ActionDispatcher,
        store: Store,
        completion: CompletionClient,
        *,
        model: Optional[str] = None,
        context_window_size: Optional[int] = None,
        max_summary_tokens: Optional[int] = None,
        token_counter: Optional[EventCostEstimator] = None,
    ) -> None:
        self.agent_id = agent_id
        self.dispatcher = dispatcher
        self.store = store
        self.completion = completion
        self.model = model or Config.LLM_MODEL
        self.context_window_size = context_window_size or Config.context_window_size(self.model)
        self.max_summary_tokens = max_summary_tokens or Config.MAX_COMPLETION_TOKENS
        self.token_counter = token_counter or TokenCounter(self.model)
        self.key = f"{agent_id}-memory"
        self._first_retrieval = True

    @property
    def threshold(self) -> float:
        return self.context_window_size * SUMMARY_THRESHOLD_RATIO

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def retrieve(self) -> List[Event]:
        """Return ``[Introduction, *stored events]``.

        The first call for this manager also compresses the log, so an agent
        restarted on top of a long history starts within budget.
        """
        events: List[Event] = [await self.introduction(), *await self._load()]
        if self._first_retrieval:
            events = await self._summarize_or_keep(events)
            await self._save(events)
            self._first_retrieval = False
        return events

    async def append(self, event: Event) -> List[Event]:
        """Add ``event`` and return the resulting combined list."""
        self._echo(event)
        events = await self.retrieve()
        if schemas.is_message_of(event, MessageType.OK):
            events = prune_latest_error(events)
        events.append(event)
        events = await self._summarize_or_keep(events)
        await self._save(events)
        return events

    async def introduction(self) -> MessageEvent:
        """Build the Introduction from the capabilities' current pinned text."""
        sections = await self.dispatcher.pinned_messages()
        content = "\n\n".join(f"--- {name.upper()} ---\n\n{text}" for name, text in sections)
        return MessageEvent(message=schemas.spontaneous(self.agent_id, content))

    async def summarize(self, events: List[Event]) -> List[Event]:
        """Compress ``events`` if their cost exceeds the threshold.

        Returns ``events`` itself when no compression is needed or possible, or
        when the recap would not actually save tokens.

        Raises:
            CompletionError: If the recap could not be generated
        """
        if len(events) < 2:
            return events

        cumulative = cumulative_costs(events, self.token_counter)
        total = cumulative[-1]
        threshold = self.threshold
        if total <= threshold:
            return events

        overrun = total - threshold
        introduction_cost = cumulative[0]
        tail_cumulative = [value - introduction_cost for value in cumulative[1:]]
        count = len(tail_cumulative)
        searched = bisect_left(tail_cumulative, overrun) + 1
        boundary = clamp_boundary(searched, count)
        if boundary is None:
            self._debug(
                f"over budget ({total} > {threshold:g}) but only {count} events; "
                "nothing can be summarized"
            )
            return events

        self._debug(
            f"total={total} threshold={threshold:g} overrun={overrun:g} "
            f"boundary={searched} clamped={boundary}/{count}"
        )

        word_limit = math.floor(threshold / TOKENS_PER_SUMMARY_WORD)
        introduction, prefix, tail = events[0], events[1 : 1 + boundary], events[1 + boundary :]
        instruction = MessageEvent(
            message=schemas.spontaneous(self.agent_id, summary_instruction(word_limit))
        )
        log_memory(
            f"[{schemas.agent_name(self.agent_id)}] Summarizing {len(prefix)} of {count} events "
            f"({total} tokens > {threshold:g})..."
        )
        summary_text = await self.completion.complete(
            self.model, self.max_summary_tokens, [introduction, *prefix, instruction]
        )

        summary_event = MessageEvent(
            message=schemas.spontaneous(self.agent_id, SUMMARY_PREAMBLE + summary_text.strip())
        )
        candidate: List[Event] = [introduction, summary_event, *tail]
        candidate_total = total_cost(candidate, self.token_counter)
        if candidate_total < total:
            log_memory(
                f"[{schemas.agent_name(self.agent_id)}] Memory compressed: "
                f"{total} -> {candidate_total} tokens"
            )
            return candidate

        log_memory(
            f"[{schemas.agent_name(self.agent_id)}] Summary discarded "
            f"({candidate_total} >= {total} tokens)"
        )
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _summarize_or_keep(self, events: List[Event]) -> List[Event]:
        try:
            return await self.summarize(events)
        except CompletionError as exc:
            log_error(
                f"[{schemas.agent_name(self.agent_id)}] Summarization failed; "
                f"keeping uncompressed memory until the next append. {exc.underlying}"
            )
            return events

    async def _load(self) -> List[Event]:
        payload = await self.store.get(self.key)
        if not payload:
            return [schemas.NOOP_DECISION]
        try:
            return schemas.load_events(payload)
        except ValidationError as exc:
            raise StoreError(operation="decode", key=self.key, underlying=exc) from exc

    async def _save(self, events: List[Event]) -> None:
        await self.store.set(self.key, schemas.dump_events(events[1:]))

    def _echo(self, event: Event) -> None:
        name = schemas.agent_name(self.agent_id)
        if isinstance(event, MessageEvent):
            log_event(name, f"message ({event.message.type.value})", event.message.content)
        else:
            log_event(name, "decision", event.action_text)

    def _debug(self, message: str) -> None:
        if os.getenv("DEBUG_MEMORY"):
            print(colored(f"  [DEBUG_MEMORY] {schemas.agent_name(self.agent_id)}: {message}", Color.CYAN))
