"""OpenRouter LLM clients: raw streaming chat for the manual path, LangChain model for the agent."""
from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncGenerator

import openai
from langchain_openai import ChatOpenAI
from loguru import logger

from app.config import Settings
from app.errors import ModelStreamError
from app.models.conversation import ConversationHistory, FunctionCall, Role
from app.services import logger as log_service


@dataclass
class ModelFragment:
    text: str | None = None
    thought: str | None = None
    function_call: FunctionCall | None = None


def _require_key(settings: Settings) -> str:
    if not settings.openrouter_api_key:
        raise RuntimeError("OPENROUTER_API_KEY is not configured")
    return settings.openrouter_api_key


def get_client(settings: Settings) -> openai.AsyncOpenAI:
    """Get an OpenRouter client via the OpenAI-compatible SDK."""
    return openai.AsyncOpenAI(
        api_key=_require_key(settings),
        base_url=settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1",
        timeout=settings.model_timeout_seconds,
    )


def get_chat_model(settings: Settings, model: str | None = None) -> ChatOpenAI:
    """LangChain chat model bound to OpenRouter, used by the prebuilt agent."""
    return ChatOpenAI(
        model=model or settings.default_model,
        temperature=settings.temperature,
        api_key=_require_key(settings),
        base_url=settings.openrouter_base_url,
        timeout=settings.model_timeout_seconds,
        streaming=True,
    )


def to_openai_messages(system: str, history: ConversationHistory) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = [{"role": "system", "content": system}]

    for turn in history:
        if turn.role == Role.USER:
            messages.append({"role": "user", "content": turn.text})
            continue

        if turn.role == Role.MODEL:
            msg: dict[str, Any] = {"role": "assistant", "content": turn.text or None}
            calls = turn.function_calls
            if calls:
                msg["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.args)},
                    }
                    for call in calls
                ]
            messages.append(msg)
            continue

        for part in turn.parts:
            fr = part.function_response
            if fr is None:
                continue
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": fr.id or "",
                    "content": json.dumps(fr.response),
                }
            )

    return messages


def to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for t in tools
    ]


def _parse_args(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenRouterChatModel:
    """Streams chat completions as ``ModelFragment`` values.

    Tool calls arrive from the API as argument deltas spread over many chunks;
    they are folded together here and surfaced once, whole, on the chunk that
    finishes the call (or after the last chunk if the provider never says so).
    Only the first tool call of a response is surfaced.
    """

    def __init__(self, client: openai.AsyncOpenAI, settings: Settings, model: str | None = None):
        self._client = client
        self.model = model or settings.default_model
        self.temperature = settings.temperature

    async def stream(
        self,
        history: ConversationHistory,
        *,
        system: str,
        tools: list[dict[str, Any]] | None = None,
        allow_tool_calls: bool = True,
        caller: str = "manual",
    ) -> AsyncGenerator[ModelFragment, None]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(system, history),
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
            kwargs["tool_choice"] = "auto" if allow_tool_calls else "none"

        t0 = time.monotonic()
        pending: dict[int, dict[str, str]] = {}
        surfaced = False
        stream = None
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                delta = getattr(choice, "delta", None)
                text = getattr(delta, "content", None) if delta else None
                thought = getattr(delta, "reasoning", None) if delta else None

                for tc in (getattr(delta, "tool_calls", None) or []) if delta else []:
                    slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    fn = getattr(tc, "function", None)
                    if fn is not None:
                        slot["name"] += fn.name or ""
                        slot["arguments"] += fn.arguments or ""

                call = None
                if pending and not surfaced and getattr(choice, "finish_reason", None):
                    call = self._assemble(pending)
                    surfaced = True
                yield ModelFragment(text=text, thought=thought, function_call=call)

            if pending and not surfaced:
                yield ModelFragment(function_call=self._assemble(pending))
        except openai.APIError as e:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                tools_enabled=bool(tools) and allow_tool_calls,
                status="failed",
                error=str(e),
            )
            raise ModelStreamError(f"Model stream failed: {e}") from e
        finally:
            if stream is not None:
                await stream.close()

        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            duration_ms=int((time.monotonic() - t0) * 1000),
            tools_enabled=bool(tools) and allow_tool_calls,
        )

    @staticmethod
    def _assemble(pending: dict[int, dict[str, str]]) -> FunctionCall:
        first = pending[min(pending)]
        if len(pending) > 1:
            logger.warning(f"Model requested {len(pending)} tool calls, only the first is used")
        return FunctionCall(
            name=first["name"],
            args=_parse_args(first["arguments"]),
            id=first["id"] or f"call_{uuid.uuid4().hex[:24]}",
        )
