from __future__ import annotations

from datetime import date
from typing import Any

from langchain.agents import create_agent
from langchain_core.language_models import BaseChatModel
from langchain_core.tools import BaseTool


def agent_system_prompt(today: date) -> str:
    return f"The current date is {today.isoformat()}. Use this as reference."


def manual_system_prompt(today: date) -> str:
    return (
        "You are an AI assistant that helps people find information. "
        f"The current date is {today.isoformat()}. Use this as reference."
    )


def build_search_agent(
    chat_model: BaseChatModel,
    tools: list[BaseTool],
    today: date | None = None,
) -> Any:
    """Compose the prebuilt tool-calling agent used on the automatic path.

    Built per request so the system prompt always carries today's date.
    """
    return create_agent(
        model=chat_model,
        tools=tools,
        system_prompt=agent_system_prompt(today or date.today()),
    )
