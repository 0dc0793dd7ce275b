"""
Agent construction for helpdesk chat turns.
"""

from __future__ import annotations

from typing import Any

from agents import Agent, ModelSettings

from helpdesk_chat.core.prompts import EMPLOYEES
from helpdesk_chat.utils.logger import logger


def create_agent(
    deployment: str,
    instructions: str,
    tools: list[Any],
    employee_id: str | None = None,
) -> Agent:
    """Create the agent for one turn.

    Tool calls are executed one at a time (``parallel_tool_calls=False``): a
    tool's output is returned to the model before it may request the next one.

    Note:
        For concurrent request isolation, pass a custom model_provider via RunConfig
        to Runner.run_streamed() rather than trying to set client on Agent.
    """
    employee = EMPLOYEES.get(employee_id or "")
    name = employee.name if employee else "AI Knowledge Desk"

    model_settings = ModelSettings(parallel_tool_calls=False) if tools else ModelSettings()

    agent = Agent(
        name=name,
        model=deployment,
        instructions=instructions,
        tools=tools,
        model_settings=model_settings,
    )

    logger.info(f"Agent created - Deployment: {deployment}, employee: {employee_id or 'none'}, tools: {len(tools)}")
    return agent
