"""
Agent control loop.

One ``Agent`` per agent id. It reacts to three things, all funnelled through
the same ``TaskQueue`` so no two of them ever touch the agent's memory at once:

1. Decision ticks (fixed interval): retrieve memory, ask the model what to do,
   record the raw answer as a Decision, parse it, dispatch it
2. Inbound messages from the bus: appended to memory in arrival order
3. Heartbeats (slower interval): nudge an agent whose last event is a Decision
   that never got a reply

Failure handling:
- Parse errors and handler faults become error Messages in the agent's own
  memory; the loop carries on and the agent corrects itself next tick
- ``CompletionError`` aborts the tick without touching memory
- ``StoreError`` is fatal: the agent stops and keeps the error in ``failure``
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from cohort import schemas
from cohort.capabilities import CapabilityRegistry
from cohort.completion import CompletionClient, CompletionError
from cohort.config import Config
from cohort.dispatcher import ActionDispatcher
from cohort.logging_utils import log_error, log_info, log_llm, log_store_fault
from cohort.memory import MemoryManager
from cohort.message_bus import MessageBus, Unsubscribe
from cohort.parser import ParseError, parse_action
from cohort.schemas import Decision, Message, MessageEvent
from cohort.store import StoreError
from cohort.task_queue import TaskQueue


HEARTBEAT_MESSAGE = (
    "This is your regularly scheduled heartbeat message. Is there anything you need to do?"
)


class Agent:
    """Serialized decide/act loop for a single agent."""

    def __init__(
        self,
        agent_id: str,
        memory: MemoryManager,
        dispatcher: ActionDispatcher,
        message_bus: MessageBus,
        registry: CapabilityRegistry,
        completion: CompletionClient,
        *,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        tick_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
    ) -> None:
        self.id = agent_id
        self.memory = memory
        self.dispatcher = dispatcher
        self.message_bus = message_bus
        self.registry = registry
        self.completion = completion
        self.model = model or Config.LLM_MODEL
        self.max_tokens = max_tokens or Config.MAX_COMPLETION_TOKENS
        self.tick_interval = tick_interval or Config.TICK_INTERVAL_SECONDS
        self.heartbeat_interval = heartbeat_interval or Config.HEARTBEAT_INTERVAL_SECONDS

        self.task_queue = TaskQueue(name=self.name)
        self.failure: Optional[StoreError] = None
        self.stopped = asyncio.Event()
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def name(self) -> str:
        return schemas.agent_name(self.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the bus and start the tick and heartbeat timers."""
        log_info(f"[{self.name}] Starting (tick every {self.tick_interval:g}s)")
        self._unsubscribe = self.message_bus.subscribe(self.receive)
        self.task_queue.run_periodically(self._guarded(self.take_action), self.tick_interval)
        self.task_queue.run_periodically(self._guarded(self.heartbeat), self.heartbeat_interval)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.task_queue.stop()
        self.stopped.set()

    # ------------------------------------------------------------------
    # Entry points (all serialized on the task queue)
    # ------------------------------------------------------------------

    def receive(self, message: Message) -> None:
        """Bus subscriber: queue ``message`` for appending if it is for us."""
        if message.target_agent_ids and self.id not in message.target_agent_ids:
            return
        if self.failure is not None or self.task_queue.stopped:
            return

        async def _append() -> None:
            await self.memory.append(MessageEvent(message=message))

        self.task_queue.submit(self._guarded(_append))

    async def tick(self) -> None:
        """Run one decision tick now, waiting for the queue like any timer firing."""
        await self.task_queue.run(self._guarded(self.take_action))

    async def take_action(self) -> None:
        """One decision cycle. Callers must hold the task queue."""
        events = await self.memory.retrieve()
        if schemas.is_decision(events[-1]):
            # Still waiting on the outcome of the previous decision
            return

        log_llm(f"[{self.name}] Deciding on next action...")
        action_text = await self.completion.complete(self.model, self.max_tokens, events)
        await self.memory.append(Decision(action_text=action_text))

        result = parse_action(self.registry, action_text)
        if isinstance(result, ParseError):
            log_error(f"[{self.name}] Could not use response ({result.kind.value})")
            await self.memory.append(
                MessageEvent(message=schemas.error(self.id, result.message))
            )
            return

        failure = await self.dispatcher.execute(result)
        if failure is not None:
            await self.memory.append(MessageEvent(message=failure))

    async def heartbeat(self) -> None:
        """Nudge the agent if its last event is an unanswered Decision."""
        events = await self.memory.retrieve()
        if schemas.is_decision(events[-1]):
            self.message_bus.send(schemas.spontaneous(self.id, HEARTBEAT_MESSAGE))

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _guarded(self, fn: Callable[[], Awaitable[None]]) -> Callable[[], Awaitable[None]]:
        async def _run() -> None:
            if self.failure is not None:
                return
            try:
                await fn()
            except StoreError as exc:
                await self._fail(exc)
            except CompletionError as exc:
                log_error(f"[{self.name}] Tick aborted, memory unchanged. {exc}")

        return _run

    async def _fail(self, exc: StoreError) -> None:
        self.failure = exc
        log_store_fault(f"[{self.name}] Stopping agent loop: {exc}")
        await self.stop()
