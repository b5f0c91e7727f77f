"""Tests for the Agent control loop.

The completion service is replaced with a scripted stub and token counting
with a character counter, so these run offline.
"""

import asyncio
from typing import List, Optional, Sequence

import pytest

from cohort import schemas
from cohort.agent import HEARTBEAT_MESSAGE, Agent
from cohort.capabilities import ActionDefinition, CapabilityModule, CapabilityRegistry
from cohort.completion import CompletionError, to_chat_message
from cohort.dispatcher import ActionDispatcher
from cohort.memory import MemoryManager
from cohort.message_bus import InProcessMessageBus
from cohort.modules import CORE_MODULE
from cohort.schemas import Decision, Event, MessageEvent, MessageType
from cohort.store import InMemoryStore, StoreError


class CharCounter:
    def count_event(self, event: Event) -> int:
        return len(to_chat_message(event)["content"])


class ScriptedCompletion:
    """Replays canned replies; optionally waits on a gate before answering."""

    def __init__(self, *replies: str, error: Optional[Exception] = None):
        self.replies = list(replies)
        self.error = error
        self.calls: List[Sequence[Event]] = []
        self.gate: Optional[asyncio.Event] = None

    async def complete(self, model: str, max_tokens: int, events: Sequence[Event]) -> str:
        self.calls.append(list(events))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)


class FlakyStore(InMemoryStore):
    """Fails every write once ``broken`` is set."""

    def __init__(self):
        super().__init__(timeout=1.0)
        self.broken = False

    async def _set(self, key, value):
        if self.broken:
            raise OSError("disk full")
        await super()._set(key, value)


def _explode(parameters, context):
    raise RuntimeError("boom")


EXPLODING_MODULE = CapabilityModule(
    name="hazard",
    actions=(ActionDefinition(name="explode", description="Always fails", handler=_explode),),
)


def _build_agent(completion, *, store=None, bus=None, agent_id="1", all_ids=("1",)):
    registry = CapabilityRegistry([CORE_MODULE, EXPLODING_MODULE])
    bus = bus or InProcessMessageBus()
    store = store or InMemoryStore()
    dispatcher = ActionDispatcher(agent_id, list(all_ids), registry, bus)
    memory = MemoryManager(
        agent_id,
        dispatcher,
        store,
        completion,
        model="test-model",
        context_window_size=1_000_000,
        token_counter=CharCounter(),
    )
    return Agent(
        agent_id,
        memory,
        dispatcher,
        bus,
        registry,
        completion,
        model="test-model",
        max_tokens=64,
        tick_interval=3600,
        heartbeat_interval=3600,
    )


async def _events(agent: Agent) -> List[Event]:
    return (await agent.memory.retrieve())[1:]


def _inbound(content: str, targets=("1",)) -> schemas.Message:
    return schemas.agent_to_agent("2", list(targets), content)


@pytest.mark.asyncio
async def test_tick_skips_when_last_event_is_decision():
    completion = ScriptedCompletion()
    agent = _build_agent(completion)

    await agent.tick()

    assert completion.calls == []
    assert await _events(agent) == [schemas.NOOP_DECISION]


@pytest.mark.asyncio
async def test_inbound_message_is_appended_and_answered():
    completion = ScriptedCompletion("action: noop")
    agent = _build_agent(completion)
    agent.start()
    try:
        agent.message_bus.send(_inbound("hello"))
        await agent.task_queue.drain()

        await agent.tick()
        await agent.task_queue.drain()
    finally:
        await agent.stop()

    events = await _events(agent)
    assert isinstance(events[1], MessageEvent)
    assert events[1].message.content == "hello"
    assert events[2] == Decision(action_text="action: noop")
    assert schemas.is_message_of(events[3], MessageType.OK)
    assert events[3].message.content == "Noop was successful."

    # The model saw the introduction first and the inbound message with a header
    prompt = [to_chat_message(event) for event in completion.calls[0]]
    assert "--- CORE ---" in prompt[0]["content"]
    assert prompt[-1] == {"role": "user", "content": "--- MESSAGE FROM Agent 2 ---\n\nhello"}


@pytest.mark.asyncio
async def test_messages_for_other_agents_are_ignored():
    agent = _build_agent(ScriptedCompletion())
    agent.start()
    try:
        agent.message_bus.send(_inbound("not for you", targets=("2",)))
        agent.message_bus.send(_inbound("broadcast", targets=()))
        await agent.task_queue.drain()
    finally:
        await agent.stop()

    contents = [event.message.content for event in await _events(agent) if isinstance(event, MessageEvent)]
    assert contents == ["broadcast"]


@pytest.mark.asyncio
async def test_unparseable_reply_becomes_error_message():
    completion = ScriptedCompletion("I would like to think about it.")
    agent = _build_agent(completion)
    await agent.memory.append(MessageEvent(message=_inbound("do something")))

    await agent.tick()

    events = await _events(agent)
    assert events[-2] == Decision(action_text="I would like to think about it.")
    assert schemas.is_message_of(events[-1], MessageType.ERROR)
    assert "could not be parsed" in events[-1].message.content


@pytest.mark.asyncio
async def test_unknown_action_lists_available_actions():
    completion = ScriptedCompletion("action: fly")
    agent = _build_agent(completion)
    await agent.memory.append(MessageEvent(message=_inbound("go")))

    await agent.tick()

    error = (await _events(agent))[-1]
    assert schemas.is_message_of(error, MessageType.ERROR)
    assert "`fly`" in error.message.content
    assert "`explode`" in error.message.content


@pytest.mark.asyncio
async def test_handler_fault_becomes_error_message():
    completion = ScriptedCompletion("action: explode")
    agent = _build_agent(completion)
    await agent.memory.append(MessageEvent(message=_inbound("go")))

    await agent.tick()

    events = await _events(agent)
    assert events[-2] == Decision(action_text="action: explode")
    assert events[-1].message.type == MessageType.ERROR
    assert events[-1].message.content == "Action `explode` failed with RuntimeError: boom"
    assert agent.failure is None


@pytest.mark.asyncio
async def test_ok_after_error_prunes_the_failed_attempt():
    completion = ScriptedCompletion("nonsense", "action: noop")
    agent = _build_agent(completion)
    agent.start()
    try:
        await agent.memory.append(MessageEvent(message=_inbound("go")))
        await agent.tick()
        await agent.tick()
        await agent.task_queue.drain()
    finally:
        await agent.stop()

    events = await _events(agent)
    assert [type(event).__name__ for event in events] == ["Decision", "MessageEvent", "Decision", "MessageEvent"]
    assert events[2] == Decision(action_text="action: noop")
    assert schemas.is_message_of(events[3], MessageType.OK)
    assert not any(schemas.is_message_of(event, MessageType.ERROR) for event in events)


@pytest.mark.asyncio
async def test_completion_error_leaves_memory_unchanged():
    failure = CompletionError(model="test-model", attempts=3, underlying=TimeoutError())
    agent = _build_agent(ScriptedCompletion(error=failure))
    await agent.memory.append(MessageEvent(message=_inbound("go")))
    before = await _events(agent)

    await agent.tick()

    assert await _events(agent) == before
    assert agent.failure is None
    assert not agent.stopped.is_set()


@pytest.mark.asyncio
async def test_store_fault_stops_the_agent():
    store = FlakyStore()
    agent = _build_agent(ScriptedCompletion("action: noop"), store=store)
    agent.start()
    await agent.memory.append(MessageEvent(message=_inbound("go")))
    store.broken = True

    await agent.tick()

    assert isinstance(agent.failure, StoreError)
    assert agent.failure.operation == "set"
    assert agent.stopped.is_set()
    assert agent.task_queue.stopped

    # A stopped agent ignores further input
    agent.message_bus.send(_inbound("anyone there?"))
    await agent.task_queue.drain()


@pytest.mark.asyncio
async def test_inbound_message_waits_for_running_tick():
    completion = ScriptedCompletion("action: explode")
    completion.gate = asyncio.Event()
    agent = _build_agent(completion)
    agent.start()
    try:
        await agent.memory.append(MessageEvent(message=_inbound("first")))
        tick = asyncio.create_task(agent.tick())
        while not completion.calls:
            await asyncio.sleep(0)

        agent.message_bus.send(_inbound("second"))
        for _ in range(5):
            await asyncio.sleep(0)
        assert agent.task_queue.busy
        stored = await agent.memory.store.get(agent.memory.key)
        assert len(stored) == 2

        completion.gate.set()
        await tick
        await agent.task_queue.drain()
    finally:
        await agent.stop()

    events = await _events(agent)
    assert events[2] == Decision(action_text="action: explode")
    assert events[3].message.type == MessageType.ERROR
    assert events[4].message.content == "second"


@pytest.mark.asyncio
async def test_heartbeat_nudges_agent_waiting_on_decision():
    agent = _build_agent(ScriptedCompletion())
    agent.start()
    try:
        await agent.task_queue.run(agent.heartbeat)
        await agent.task_queue.drain()
    finally:
        await agent.stop()

    events = await _events(agent)
    assert events[-1].message.type == MessageType.SPONTANEOUS
    assert events[-1].message.content == HEARTBEAT_MESSAGE


@pytest.mark.asyncio
async def test_heartbeat_is_quiet_when_last_event_is_a_message():
    bus = InProcessMessageBus()
    received = []
    bus.subscribe(received.append)
    agent = _build_agent(ScriptedCompletion(), bus=bus)
    await agent.memory.append(MessageEvent(message=_inbound("hi")))

    await agent.heartbeat()

    assert received == []
