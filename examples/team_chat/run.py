"""
Example: Team Chat - Two Agents Messaging Each Other
====================================================

WHAT THIS SHOWS:
- Registering a custom capability module next to the built-in ``core`` one
- Agents sending each other messages through the in-process bus
- Event logs persisted as JSON files (one per agent) under STORE_PATH

REQUIRES:
- LLM_PROVIDER environment variable (e.g., "openai" or "ollama")
- LLM_MODEL environment variable (e.g., "gpt-4o-mini")
- API key for your provider (e.g., OPENAI_API_KEY)

RUN:
    export LLM_PROVIDER=openai
    export LLM_MODEL=gpt-4o-mini
    export OPENAI_API_KEY=your_key
    python -m examples.team_chat.run
"""

import asyncio
import os
from typing import Dict

from cohort import (
    ActionDefinition,
    CapabilityModule,
    CapabilityRegistry,
    CORE_MODULE,
    ExecutionContext,
    JsonFileStore,
    Orchestrator,
    ParameterSpec,
)
from cohort import schemas
from cohort.config import Config


# ============================================================================
# STEP 1: Define a capability (messaging between agents)
# ============================================================================


def send_message(parameters: Dict[str, str], context: ExecutionContext) -> None:
    target = parameters["targetAgentId"]
    if target not in context.all_agent_ids:
        context.send_message(schemas.error(context.agent_id, f"Unknown agent id `{target}`."))
        return
    context.send_message(schemas.agent_to_agent(context.agent_id, [target], parameters["message"]))
    context.send_message(schemas.ok(context.agent_id, f"Message sent to {schemas.agent_name(target)}."))


def messaging_pinned(context: ExecutionContext) -> str:
    ids = ", ".join(f"`{agent_id}`" for agent_id in context.all_agent_ids if agent_id != context.agent_id)
    return f"You can message these agent ids: {ids}."


MESSAGING_MODULE = CapabilityModule(
    name="messaging",
    actions=(
        ActionDefinition(
            name="sendMessage",
            description="Send a message to another agent",
            handler=send_message,
            parameters={
                "targetAgentId": ParameterSpec(description="The id of the agent to message"),
                "message": ParameterSpec(description="The content of the message"),
            },
        ),
    ),
    pinned_message=messaging_pinned,
)


# ============================================================================
# STEP 2: Run the agents
# ============================================================================


async def main() -> None:
    Config.validate()
    print(Config.display())

    orchestrator = Orchestrator(
        ["1", "2"],
        CapabilityRegistry([CORE_MODULE, MESSAGING_MODULE]),
        store=JsonFileStore(),
    )
    duration = float(os.getenv("RUN_SECONDS", "60"))
    result = await orchestrator.run(
        duration,
        initial_message="Agree between you on a name for a new coffee shop, then report it to me.",
    )
    print(result)


if __name__ == "__main__":
    asyncio.run(main())
