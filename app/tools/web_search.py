from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any

import httpx
from bs4 import BeautifulSoup
from langchain_core.tools import BaseTool, tool
from loguru import logger

from app.config import Settings
from app.errors import ToolFetchError
from app.services import logger as log_service

AGENT_TOOL_NAME = "web_search"
BROWSER_TOOL_NAME = "browserUse"

# Function declaration offered to the model on the manual path.
BROWSER_USE_DECLARATION: dict[str, Any] = {
    "name": BROWSER_TOOL_NAME,
    "description": "Gets information from the internet using the browser",
    "input_schema": {
        "type": "object",
        "properties": {
            "input": {
                "type": "string",
                "description": "What to look up on the web.",
            },
        },
        "required": ["input"],
    },
}


@dataclass
class SearchResult:
    title: str
    snippet: str
    link: str


@dataclass
class ToolInvocation:
    tool: str
    input: str
    output: str


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def parse_results(html: str, limit: int) -> list[SearchResult]:
    """Pull the first ``limit`` result blocks out of a DuckDuckGo HTML page."""
    soup = BeautifulSoup(html, "html.parser")
    results: list[SearchResult] = []
    for block in soup.select(".result")[:limit]:
        anchor = block.select_one(".result__a")
        snippet = block.select_one(".result__snippet")
        results.append(
            SearchResult(
                title=_clean(anchor.get_text()) if anchor else "",
                snippet=_clean(snippet.get_text()) if snippet else "",
                link=(anchor.get("href") or "") if anchor else "",
            )
        )
    return results


def format_results(results: list[SearchResult]) -> str:
    return "\n\n".join(f"{r.title}\n{r.snippet}\n{r.link}" for r in results)


class WebSearchTool:
    """Scrapes the top few DuckDuckGo results for a query.

    Every call is a live request: nothing is cached and nothing is retried.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    async def fetch_results(self, query: str) -> list[SearchResult]:
        if not query or not query.strip():
            raise ValueError("Search query must not be empty")

        url = self.settings.search_url
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.search_timeout_seconds,
                follow_redirects=True,
            ) as client:
                response = await client.get(
                    url,
                    params={"q": query},
                    headers={"User-Agent": self.settings.search_user_agent},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ToolFetchError(f"Error fetching {url}: {e}") from e

        content_type = response.headers.get("content-type", "text/html")
        if not content_type.startswith("text/"):
            raise ToolFetchError(f"Expected HTML from {url} but got {content_type}")

        results = parse_results(response.text, self.settings.search_max_results)
        if not results:
            logger.warning(f"No results found for query {query!r}")
        return results

    async def search(self, query: str) -> str:
        return format_results(await self.fetch_results(query))

    async def run(self, query: str, tool_name: str = BROWSER_TOOL_NAME) -> ToolInvocation:
        """Search and record the call as a ``ToolInvocation``."""
        t0 = time.monotonic()
        try:
            results = await self.fetch_results(query)
        except ToolFetchError as e:
            log_service.log_tool_call(
                tool=tool_name,
                tool_input=query,
                status="failed",
                duration_ms=int((time.monotonic() - t0) * 1000),
                error=e.message,
            )
            raise
        log_service.log_tool_call(
            tool=tool_name,
            tool_input=query,
            status="success",
            duration_ms=int((time.monotonic() - t0) * 1000),
            results=len(results),
        )
        return ToolInvocation(tool=tool_name, input=query, output=format_results(results))

    def as_agent_tool(self) -> BaseTool:
        search_tool = self

        @tool(AGENT_TOOL_NAME)
        async def web_search(query: str) -> str:
            """Search the web and return the top 3 results (title, snippet, link) for a query."""
            invocation = await search_tool.run(query, tool_name=AGENT_TOOL_NAME)
            return invocation.output

        return web_search
