"""
Multi-agent orchestrator.

Fully decoupled from file I/O and config: every collaborator can be injected,
and defaults come from ``Config``.

Wires, per agent id:
1. An ActionDispatcher (module state, handler execution)
2. A MemoryManager (bounded event log persisted in the shared store)
3. An Agent (serialized tick / inbound / heartbeat loop)

All agents share one registry, one store, one message bus and one completion
client; nothing mutable is shared between agents beyond those collaborators.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

from .agent import Agent
from .capabilities import CapabilityRegistry
from .completion import CompletionClient
from .config import Config
from .dispatcher import ActionDispatcher
from .logging_utils import log_info, log_success
from .memory import MemoryManager
from .message_bus import InProcessMessageBus, MessageBus
from .schemas import USER_SOURCE, Message, MessageType
from .store import InMemoryStore, Store, StoreError
from .tokens import EventCostEstimator


class AgentLoopFailedError(Exception):
    """Raised when one or more agent loops stopped on a fatal store fault.

    Contains a mapping of agent_id to the underlying StoreError, along with
    guidance on common remediation steps.
    """

    def __init__(self, *, errors: Dict[str, StoreError]) -> None:
        self.errors = errors
        message_lines = ["One or more agent loops stopped on a storage failure:"]
        for agent_id, exc in errors.items():
            message_lines.append(f"  - {agent_id}: {exc}")
        message_lines.extend(
            [
                "\nRemediation tips:",
                "  - Check that STORE_PATH is writable and has free space",
                "  - Raise STORE_TIMEOUT_SECONDS for slow storage",
                "  - Inspect the agent's persisted memory file for corruption",
            ]
        )
        super().__init__("\n".join(message_lines))


class Orchestrator:
    """Builds and runs one control loop per agent."""

    def __init__(
        self,
        agent_ids: Sequence[str],
        registry: CapabilityRegistry,
        *,
        store: Optional[Store] = None,
        message_bus: Optional[MessageBus] = None,
        completion: Optional[CompletionClient] = None,
        model: Optional[str] = None,
        context_window_size: Optional[int] = None,
        max_tokens: Optional[int] = None,
        tick_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        token_counter: Optional[EventCostEstimator] = None,
    ):
        """Initialize orchestrator with all dependencies injected.

        Args:
            agent_ids: Ids of the agents to run (must be unique)
            registry: Capability table shared by every agent
            store: Persistence for event logs (defaults to InMemoryStore)
            message_bus: Delivery between agents (defaults to in-process)
            completion: Completion client (defaults to Config's provider)
            model: Model id used for decisions and summaries
            context_window_size: Token budget override for memory compression
            max_tokens: Completion token limit per decision
            tick_interval: Seconds between decision ticks
            heartbeat_interval: Seconds between heartbeat checks
            token_counter: Event cost estimator override (tests)
        """
        if len(set(agent_ids)) != len(agent_ids):
            raise ValueError("agent_ids must be unique")

        self.agent_ids: List[str] = list(agent_ids)
        self.registry = registry
        self.store = store or InMemoryStore()
        self.message_bus = message_bus or InProcessMessageBus()
        self.completion = completion or CompletionClient()
        self.model = model or Config.LLM_MODEL

        self.agents: Dict[str, Agent] = {}
        for agent_id in self.agent_ids:
            dispatcher = ActionDispatcher(agent_id, self.agent_ids, registry, self.message_bus)
            memory = MemoryManager(
                agent_id,
                dispatcher,
                self.store,
                self.completion,
                model=self.model,
                context_window_size=context_window_size,
                token_counter=token_counter,
            )
            self.agents[agent_id] = Agent(
                agent_id,
                memory,
                dispatcher,
                self.message_bus,
                registry,
                self.completion,
                model=self.model,
                max_tokens=max_tokens,
                tick_interval=tick_interval,
                heartbeat_interval=heartbeat_interval,
            )

    async def start(self) -> None:
        await self.store.initialize()
        for agent in self.agents.values():
            agent.start()

    async def stop(self) -> None:
        await asyncio.gather(*(agent.stop() for agent in self.agents.values()))
        await self.store.close()

    def send_user_message(self, content: str, target_agent_ids: Optional[Sequence[str]] = None) -> None:
        """Publish an operator message (to every agent when no targets given)."""
        self.message_bus.send(
            Message(
                type=MessageType.AGENT_TO_AGENT,
                source=USER_SOURCE,
                target_agent_ids=list(target_agent_ids or []),
                content=content,
            )
        )

    async def run(self, duration: float, *, initial_message: Optional[str] = None) -> Dict:
        """Run every agent for ``duration`` seconds.

        Returns:
            Dict with agent ids and the number of stored events per agent

        Raises:
            AgentLoopFailedError: If any agent stopped on a store fault
        """
        print(f"Starting {len(self.agents)} agent(s) for {duration:g}s with model {self.model}")
        await self.start()
        waiters = [asyncio.create_task(agent.stopped.wait()) for agent in self.agents.values()]
        try:
            if initial_message:
                self.send_user_message(initial_message)
            await asyncio.wait(waiters, timeout=duration, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await self.stop()

        failures = {
            agent_id: agent.failure
            for agent_id, agent in self.agents.items()
            if agent.failure is not None
        }
        if failures:
            raise AgentLoopFailedError(errors=failures)

        event_counts: Dict[str, int] = {}
        for agent_id in self.agent_ids:
            stored = await self.store.get(self.agents[agent_id].memory.key)
            event_counts[agent_id] = len(stored or [])
        log_success("Run complete")
        log_info(", ".join(f"{agent_id}: {count} events" for agent_id, count in event_counts.items()))
        return {"agent_ids": self.agent_ids, "event_counts": event_counts}
