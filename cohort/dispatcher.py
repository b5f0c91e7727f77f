"""Action dispatch: route a validated action to its capability module.

The dispatcher owns the agent's module state. State is created lazily, the
first time the agent touches a module, and kept in an explicit map keyed by
``(agent_id, module_name)``; nothing is global. Handlers receive an
``ExecutionContext`` carrying everything they may need, including a bound
``send_message`` that publishes to the message bus.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from cohort import schemas
from cohort.capabilities import CapabilityModule, CapabilityRegistry
from cohort.logging_utils import log_error, log_success
from cohort.message_bus import MessageBus
from cohort.parser import Action
from cohort.schemas import Message


@dataclass
class ExecutionContext:
    """What a handler (or a pinned-message callable) can see."""

    agent_id: str
    all_agent_ids: Sequence[str]
    registry: CapabilityRegistry
    module_name: str
    state: Any
    send_message: Callable[[Message], None]


class ModuleStates:
    """Lazily created module state, keyed by ``(agent_id, module_name)``."""

    def __init__(self) -> None:
        self._states: Dict[Tuple[str, str], Any] = {}

    def get_or_create(self, agent_id: str, module: CapabilityModule) -> Any:
        key = (agent_id, module.name)
        if key not in self._states:
            self._states[key] = module.create_state(agent_id) if module.create_state else None
        return self._states[key]

    def __contains__(self, key: object) -> bool:
        return key in self._states


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ActionDispatcher:
    """Executes actions on behalf of one agent."""

    def __init__(
        self,
        agent_id: str,
        all_agent_ids: Sequence[str],
        registry: CapabilityRegistry,
        message_bus: MessageBus,
        *,
        states: Optional[ModuleStates] = None,
    ) -> None:
        self.agent_id = agent_id
        self.all_agent_ids = list(all_agent_ids)
        self.registry = registry
        self.message_bus = message_bus
        self.states = states or ModuleStates()

    def context_for(self, module: CapabilityModule) -> ExecutionContext:
        return ExecutionContext(
            agent_id=self.agent_id,
            all_agent_ids=self.all_agent_ids,
            registry=self.registry,
            module_name=module.name,
            state=self.states.get_or_create(self.agent_id, module),
            send_message=self.message_bus.send,
        )

    async def pinned_messages(self) -> List[Tuple[str, str]]:
        """Current pinned text per module, in registry order.

        Modules without pinned text (or returning an empty one) are skipped. A
        module whose pinned text cannot be produced is logged and skipped so one
        broken capability does not blind the agent to all the others.
        """
        sections: List[Tuple[str, str]] = []
        for module in self.registry.modules:
            if module.pinned_message is None:
                continue
            try:
                content = await _maybe_await(module.pinned_message(self.context_for(module)))
            except Exception as exc:
                log_error(
                    f"[{schemas.agent_name(self.agent_id)}] Pinned message for "
                    f"'{module.name}' failed: {exc}"
                )
                continue
            if content:
                sections.append((module.name, content))
        return sections

    async def execute(self, action: Action) -> Optional[Message]:
        """Run ``action``'s handler.

        Returns:
            None on success, or an error Message addressed to this agent when
            the handler (or the module's state factory) raised
        """
        module = self.registry.module_for(action.name)
        try:
            context = self.context_for(module)
            await _maybe_await(action.definition.handler(dict(action.parameters), context))
        except Exception as exc:
            log_error(
                f"[{schemas.agent_name(self.agent_id)}] Action '{action.name}' raised "
                f"{type(exc).__name__}: {exc}"
            )
            return schemas.error(
                self.agent_id,
                f"Action `{action.name}` failed with {type(exc).__name__}: {exc}",
            )

        log_success(f"[{schemas.agent_name(self.agent_id)}] Executed '{action.name}'")
        return None
