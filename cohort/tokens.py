"""Token accounting for agent events.

Memory compression is driven by an *estimate* of what each event costs once it
is formatted for the model. ``TokenCounter`` measures that with tiktoken,
caching per distinct string since the same introduction and recent events are
re-counted on every append.
"""

from __future__ import annotations

from itertools import accumulate
from typing import Any, Dict, List, Optional, Protocol, Sequence

import tiktoken

from cohort.completion import to_chat_message
from cohort.schemas import Event


DEFAULT_ENCODING = "cl100k_base"
MESSAGE_OVERHEAD_TOKENS = 3
"""Role/separator tokens each chat message adds on top of its content."""


class EventCostEstimator(Protocol):
    """Anything that can price an event in tokens."""

    def count_event(self, event: Event) -> int:
        ...


class TokenCounter:
    """tiktoken-backed estimator for formatted events.

    The encoder is resolved lazily from the model id, falling back to
    ``cl100k_base`` for model ids tiktoken does not know (Anthropic, local
    models), which is close enough for budget decisions.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        *,
        encoding: str = DEFAULT_ENCODING,
        cache_size: int = 2048,
    ) -> None:
        self.model = model
        self.encoding_name = encoding
        self._encoder: Any | None = None
        self._cache: Dict[str, int] = {}
        self._cache_size = max(cache_size, 1)

    @property
    def encoder(self) -> Any:
        if self._encoder is None:
            if self.model:
                try:
                    self._encoder = tiktoken.encoding_for_model(self.model)
                except KeyError:
                    self._encoder = tiktoken.get_encoding(self.encoding_name)
            else:
                self._encoder = tiktoken.get_encoding(self.encoding_name)
        return self._encoder

    def count_string(self, text: str) -> int:
        if not text:
            return 0
        cached = self._cache.get(text)
        if cached is not None:
            return cached

        result = len(self.encoder.encode(text, disallowed_special=()))
        if len(self._cache) >= self._cache_size:
            # Evict the oldest entry (dicts preserve insertion order)
            self._cache.pop(next(iter(self._cache)))
        self._cache[text] = result
        return result

    def count_event(self, event: Event) -> int:
        return self.count_string(to_chat_message(event)["content"]) + MESSAGE_OVERHEAD_TOKENS

    def clear_cache(self) -> None:
        self._cache.clear()


def event_costs(events: Sequence[Event], estimator: EventCostEstimator) -> List[int]:
    return [estimator.count_event(event) for event in events]


def cumulative_costs(events: Sequence[Event], estimator: EventCostEstimator) -> List[int]:
    """Running totals: ``result[i]`` is the cost of ``events[: i + 1]``."""
    return list(accumulate(event_costs(events, estimator)))


def total_cost(events: Sequence[Event], estimator: EventCostEstimator) -> int:
    return sum(event_costs(events, estimator))
