"""Capability descriptors and the static registry agents act against.

A capability module is a named bundle of actions plus optional per-agent state
and optional pinned text. Modules are plain data: the process builds one
``CapabilityRegistry`` at startup and every agent shares it read-only. Module
*state* is never stored here; it lives in each agent's dispatcher, keyed by
``(agent_id, module_name)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Union

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for annotations only
    from cohort.dispatcher import ExecutionContext


Handler = Callable[[Dict[str, str], "ExecutionContext"], Union[Awaitable[None], None]]
PinnedMessage = Callable[["ExecutionContext"], Union[Awaitable[Optional[str]], Optional[str]]]
StateFactory = Callable[[str], Any]


@dataclass(frozen=True)
class ParameterSpec:
    """One declared action parameter."""

    description: str
    required: bool = True


@dataclass(frozen=True)
class ActionDefinition:
    """An action an agent may invoke by name.

    ``parameters`` preserves declaration order; usage text lists parameters in
    that order.
    """

    name: str
    description: str
    handler: Handler
    parameters: Mapping[str, ParameterSpec] = field(default_factory=dict)

    @property
    def required_parameters(self) -> List[str]:
        return [name for name, spec in self.parameters.items() if spec.required]


@dataclass(frozen=True)
class CapabilityModule:
    """Named bundle of actions with optional state and pinned text.

    Attributes:
        name: Module name, unique within a registry
        actions: Actions this module owns
        create_state: Optional factory ``agent_id -> state``; called lazily the
            first time an agent touches the module
        pinned_message: Optional callable returning text that is always shown
            to the agent at the top of its context (may be async)
    """

    name: str
    actions: Sequence[ActionDefinition] = ()
    create_state: Optional[StateFactory] = None
    pinned_message: Optional[PinnedMessage] = None


class CapabilityRegistry:
    """Static table mapping action name to definition and owning module.

    Built once per process from a fixed list of modules; registration order is
    preserved and determines the order of Introduction sections.
    """

    def __init__(self, modules: Sequence[CapabilityModule]) -> None:
        self.modules: tuple[CapabilityModule, ...] = tuple(modules)
        self._actions: Dict[str, ActionDefinition] = {}
        self._owners: Dict[str, CapabilityModule] = {}

        seen_modules: set[str] = set()
        for module in self.modules:
            if module.name in seen_modules:
                raise ValueError(f"Duplicate capability module '{module.name}'")
            seen_modules.add(module.name)
            for action in module.actions:
                if action.name in self._actions:
                    owner = self._owners[action.name].name
                    raise ValueError(
                        f"Action '{action.name}' is defined by both '{owner}' and '{module.name}'"
                    )
                self._actions[action.name] = action
                self._owners[action.name] = module

    def get(self, name: str) -> Optional[ActionDefinition]:
        return self._actions.get(name)

    def module_for(self, action_name: str) -> CapabilityModule:
        """Return the module owning ``action_name``.

        Raises:
            KeyError: If no module defines the action
        """
        return self._owners[action_name]

    def action_names(self) -> List[str]:
        """All action names, sorted."""
        return sorted(self._actions)

    @property
    def actions(self) -> Mapping[str, ActionDefinition]:
        return dict(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def __iter__(self) -> Iterator[ActionDefinition]:
        return iter(self._actions.values())

    def __len__(self) -> int:
        return len(self._actions)
