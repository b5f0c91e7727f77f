"""
Cohort - autonomous LLM agents with bounded memory.

Each agent runs a serialized decide/act loop: it shows its event log to a
language model, parses the reply into an action call, and executes it. The
event log is kept inside the model's context window by summarizing old events.

No file I/O required. No database required. No global state.
All collaborators injected by the user.
"""

__version__ = "0.1.0"

# Main runtime components
from .orchestrator import Orchestrator, AgentLoopFailedError
from .agent import Agent, HEARTBEAT_MESSAGE

# Core interfaces
from .capabilities import (
    ActionDefinition,
    CapabilityModule,
    CapabilityRegistry,
    ParameterSpec,
)
from .completion import CompletionClient, CompletionError, to_chat_message
from .dispatcher import ActionDispatcher, ExecutionContext, ModuleStates
from .memory import MemoryManager, SUMMARY_PREAMBLE
from .message_bus import MessageBus, InProcessMessageBus
from .parser import Action, ParseError, ParseErrorKind, parse_action, usage_text
from .store import Store, InMemoryStore, JsonFileStore, StoreError
from .task_queue import TaskQueue
from .tokens import TokenCounter

# Core schemas
from .schemas import (
    Decision,
    Event,
    Message,
    MessageEvent,
    MessageSource,
    MessageType,
)

# Built-in capabilities
from .modules import CORE_MODULE

__all__ = [
    # Runtime
    "Orchestrator",
    "AgentLoopFailedError",
    "Agent",
    "HEARTBEAT_MESSAGE",
    # Capabilities
    "ActionDefinition",
    "CapabilityModule",
    "CapabilityRegistry",
    "ParameterSpec",
    "CORE_MODULE",
    # Collaborators
    "CompletionClient",
    "CompletionError",
    "to_chat_message",
    "ActionDispatcher",
    "ExecutionContext",
    "ModuleStates",
    "MemoryManager",
    "SUMMARY_PREAMBLE",
    "MessageBus",
    "InProcessMessageBus",
    "Store",
    "InMemoryStore",
    "JsonFileStore",
    "StoreError",
    "TaskQueue",
    "TokenCounter",
    # Parsing
    "Action",
    "ParseError",
    "ParseErrorKind",
    "parse_action",
    "usage_text",
    # Schemas
    "Decision",
    "Event",
    "Message",
    "MessageEvent",
    "MessageSource",
    "MessageType",
]
