"""The ``core`` capability: the actions every agent has.

- ``noop``: do nothing this turn (also the seed Decision of a fresh log)
- ``help``: show usage for one action, looked up in the live registry

Its pinned text tells the agent who it is, how to format a response and which
actions exist, so it should be registered first.
"""

from __future__ import annotations

from typing import Dict

from cohort import schemas
from cohort.capabilities import ActionDefinition, CapabilityModule, ParameterSpec
from cohort.dispatcher import ExecutionContext
from cohort.parser import FORMAT_EXAMPLE, usage_text


def _noop(parameters: Dict[str, str], context: ExecutionContext) -> None:
    context.send_message(schemas.ok(context.agent_id, "Noop was successful."))


def _help(parameters: Dict[str, str], context: ExecutionContext) -> None:
    about = parameters["aboutAction"]
    definition = context.registry.get(about)
    if definition is None:
        available = ", ".join(f"`{name}`" for name in context.registry.action_names())
        context.send_message(
            schemas.error(
                context.agent_id,
                f"Unknown action `{about}`. The available actions are: {available}.",
            )
        )
        return
    context.send_message(schemas.ok(context.agent_id, usage_text(definition)))


def _pinned_message(context: ExecutionContext) -> str:
    others = [schemas.agent_name(agent_id) for agent_id in context.all_agent_ids if agent_id != context.agent_id]
    catalog = "\n".join(
        f"- `{definition.name}`: {definition.description}" for definition in context.registry
    )
    lines = [
        f"You are {schemas.agent_name(context.agent_id)}, an autonomous agent who accomplishes "
        "tasks by performing actions.",
        "",
        "Your entire response must always be exactly one action, formatted like this:",
        "",
        FORMAT_EXAMPLE,
        "",
        "Use `help` to see the parameters of any action.",
    ]
    if others:
        lines.extend(["", f"Other agents: {', '.join(others)}."])
    lines.extend(["", "The available actions are:", catalog])
    return "\n".join(lines)


NOOP = ActionDefinition(
    name="noop",
    description="Do nothing",
    handler=_noop,
)

HELP = ActionDefinition(
    name="help",
    description="Get help on a specific action and the parameters it expects",
    handler=_help,
    parameters={
        "aboutAction": ParameterSpec(description="The name of an action to get help on"),
    },
)


def core_module() -> CapabilityModule:
    return CapabilityModule(
        name="core",
        actions=(NOOP, HELP),
        pinned_message=_pinned_message,
    )


CORE_MODULE = core_module()
