from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Request

from app.agents.automatic import AutomaticOrchestrator
from app.agents.factory import build_search_agent
from app.agents.manual import ChatModel, ManualOrchestrator
from app.config import Settings
from app.llm_client import OpenRouterChatModel, get_chat_model, get_client
from app.tools.web_search import WebSearchTool


@dataclass
class ChatServices:
    """Process-wide collaborators; orchestrators are built from them per request."""

    settings: Settings
    search_tool: WebSearchTool
    chat_model: ChatModel
    agent_model: Any
    llm_client: Any = None

    def automatic(self) -> AutomaticOrchestrator:
        agent = build_search_agent(self.agent_model, [self.search_tool.as_agent_tool()])
        return AutomaticOrchestrator(agent, self.settings)

    def manual(self) -> ManualOrchestrator:
        return ManualOrchestrator(self.chat_model, self.search_tool, self.settings)

    async def close(self) -> None:
        if self.llm_client is not None:
            await self.llm_client.close()


def build_services(settings: Settings) -> ChatServices:
    llm_client = get_client(settings)
    return ChatServices(
        settings=settings,
        search_tool=WebSearchTool(settings),
        chat_model=OpenRouterChatModel(llm_client, settings),
        agent_model=get_chat_model(settings),
        llm_client=llm_client,
    )


def get_services(request: Request) -> ChatServices:
    return request.app.state.services
