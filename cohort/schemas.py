"""
Pydantic schemas for agent events and messages.

Everything an agent remembers is an Event: either a Decision (raw model output,
recorded before it is parsed) or a Message (something the agent was told).
Events are persisted as JSON through the Store, so every model here round-trips
through ``model_dump(mode="json")`` / ``model_validate``.

Design Philosophy:
- Events are immutable records; memory maintenance replaces whole events, it
  never edits one in place
- ``type`` discriminators keep the persisted JSON self-describing
- Message builders keep call sites short and the wire shape consistent
"""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# ============================================================================
# Messages
# ============================================================================


class MessageType(str, Enum):
    """Kinds of message an agent can receive."""

    SPONTANEOUS = "spontaneous"
    OK = "ok"
    ERROR = "error"
    AGENT_TO_AGENT = "agentToAgent"


class MessageSource(BaseModel):
    """Who a message came from.

    ``system`` is the runtime itself (introductions, summaries, heartbeats),
    ``user`` is a human operator, and ``agent`` carries the sending agent's id.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["system", "user", "agent"] = Field(..., description="Source kind")
    id: Optional[str] = Field(None, description="Agent id when type == 'agent'")


SYSTEM_SOURCE = MessageSource(type="system")
USER_SOURCE = MessageSource(type="user")


def agent_source(agent_id: str) -> MessageSource:
    return MessageSource(type="agent", id=agent_id)


class Message(BaseModel):
    """A message delivered to one or more agents.

    Wire shape: ``{type, source, targetAgentIds, content}``. An empty
    ``target_agent_ids`` list means "every subscriber".
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: MessageType = Field(..., description="Message kind")
    source: MessageSource = Field(..., description="Sender")
    target_agent_ids: List[str] = Field(
        default_factory=list,
        alias="targetAgentIds",
        description="Agents this message is addressed to",
    )
    content: str = Field(..., description="Message body (natural language)")


# ============================================================================
# Events
# ============================================================================


class Decision(BaseModel):
    """Raw model output, stored before parsing so failed parses stay visible."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["decision"] = "decision"
    action_text: str = Field(..., alias="actionText", description="Unparsed model output")


class MessageEvent(BaseModel):
    """A Message as it sits in an agent's event log."""

    model_config = ConfigDict(frozen=True)

    type: Literal["message"] = "message"
    message: Message


Event = Annotated[Union[Decision, MessageEvent], Field(discriminator="type")]

EVENT_LIST_ADAPTER: TypeAdapter[List[Event]] = TypeAdapter(List[Event])

NOOP_DECISION = Decision(action_text="action: noop")
"""Seed for an empty event log."""


def dump_events(events: List[Event]) -> list:
    """Serialize events to JSON-compatible data for the store."""
    return EVENT_LIST_ADAPTER.dump_python(events, mode="json", by_alias=True)


def load_events(payload: list) -> List[Event]:
    """Inverse of :func:`dump_events`."""
    return EVENT_LIST_ADAPTER.validate_python(payload)


def is_decision(event: Event) -> bool:
    return isinstance(event, Decision)


def is_message_of(event: Event, message_type: MessageType) -> bool:
    return isinstance(event, MessageEvent) and event.message.type == message_type


# ============================================================================
# Message builders
# ============================================================================


def agent_name(agent_id: str) -> str:
    """Human-facing name used in headers and logs."""
    return f"Agent {agent_id}"


def spontaneous(agent_id: str, content: str) -> Message:
    """System-originated message for a single agent."""
    return Message(
        type=MessageType.SPONTANEOUS,
        source=SYSTEM_SOURCE,
        target_agent_ids=[agent_id],
        content=content,
    )


def ok(agent_id: str, content: str) -> Message:
    return Message(
        type=MessageType.OK,
        source=SYSTEM_SOURCE,
        target_agent_ids=[agent_id],
        content=content,
    )


def error(agent_id: str, content: str) -> Message:
    return Message(
        type=MessageType.ERROR,
        source=SYSTEM_SOURCE,
        target_agent_ids=[agent_id],
        content=content,
    )


def agent_to_agent(source_id: str, target_ids: List[str], content: str) -> Message:
    return Message(
        type=MessageType.AGENT_TO_AGENT,
        source=agent_source(source_id),
        target_agent_ids=list(target_ids),
        content=content,
    )
