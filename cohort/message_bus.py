"""Message bus interface and the in-process implementation.

Delivery is at-least-once to whoever is subscribed when ``send`` is called.
Nothing is persisted and there is no ordering guarantee across different
senders. Handlers must be cheap and non-blocking: agents hand the message to
their own task queue and return immediately.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, List

from cohort.logging_utils import log_error
from cohort.schemas import Message


MessageHandler = Callable[[Message], None]
Unsubscribe = Callable[[], None]


class MessageBus(ABC):
    """Pub/sub delivery of Message objects."""

    @abstractmethod
    def subscribe(self, handler: MessageHandler) -> Unsubscribe:
        """Register ``handler``; the returned callable removes it again."""

    @abstractmethod
    def send(self, message: Message) -> None:
        """Deliver ``message`` to every current subscriber."""


class InProcessMessageBus(MessageBus):
    """Synchronous fan-out to subscribers in the same process."""

    def __init__(self) -> None:
        self._handlers: List[MessageHandler] = []

    def subscribe(self, handler: MessageHandler) -> Unsubscribe:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def send(self, message: Message) -> None:
        # Copy so a handler may unsubscribe while we iterate
        for handler in list(self._handlers):
            try:
                handler(message)
            except Exception as exc:  # pragma: no cover - diagnostic hook
                log_error(f"[MessageBus] Subscriber failed: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
