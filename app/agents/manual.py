from __future__ import annotations

from contextlib import aclosing
from datetime import date
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterator, Protocol

from loguru import logger

from app.agents.factory import manual_system_prompt
from app.config import Settings
from app.errors import ModelStreamError, ProtocolViolationError, ToolFetchError
from app.llm_client import ModelFragment
from app.models.conversation import ConversationHistory, FunctionCall, Part, Turn
from app.models.events import StreamEvent
from app.services import streaming
from app.tools.web_search import BROWSER_USE_DECLARATION, WebSearchTool

PLACEHOLDER_REASONING = "Thinking about relevant factors..."


class ChatModel(Protocol):
    def stream(
        self,
        history: ConversationHistory,
        *,
        system: str,
        tools: list[dict[str, Any]] | None = None,
        allow_tool_calls: bool = True,
        caller: str = "manual",
    ) -> AsyncIterator[ModelFragment]: ...


class ManualState(str, Enum):
    REQUEST_SENT = "request_sent"
    AWAITING_FUNCTION_CALL = "awaiting_function_call"
    STREAMING_TEXT = "streaming_text"
    EXECUTING_TOOL = "executing_tool"
    APPENDING_HISTORY = "appending_history"
    FOLLOWUP_SENT = "followup_sent"
    STREAMING_FOLLOWUP = "streaming_followup"
    DONE = "done"


class ManualOrchestrator:
    """Hand-rolled single tool call: model -> search -> model.

    The first model call may request ``browserUse`` once. When it does, the
    search runs, the call and its result are spliced into the history, and a
    second model call (tool calls disabled) produces the answer. Without a
    call the run ends after the first stream.
    """

    tools: list[dict[str, Any]] = [BROWSER_USE_DECLARATION]

    def __init__(
        self,
        model: ChatModel,
        search_tool: WebSearchTool,
        settings: Settings,
        today: date | None = None,
    ):
        self.model = model
        self.search_tool = search_tool
        self.settings = settings
        self.system_prompt = manual_system_prompt(today or date.today())
        self.history = ConversationHistory()
        self.state: ManualState | None = None
        self.transitions: list[ManualState] = []
        self.tool_calls = 0

    @property
    def allowed_tools(self) -> list[str]:
        return [t["name"] for t in self.tools]

    def _enter(self, state: ManualState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug(f"manual orchestrator -> {state.value}")

    def _stream(self, allow_tool_calls: bool, caller: str) -> AsyncGenerator[ModelFragment, None]:
        return streaming.bounded(
            self.model.stream(
                self.history,
                system=self.system_prompt,
                tools=self.tools,
                allow_tool_calls=allow_tool_calls,
                caller=caller,
            ),
            self.settings.model_timeout_seconds,
            lambda: ModelStreamError("Model stream timed out"),
        )

    async def run(self, query: str) -> AsyncGenerator[StreamEvent, None]:
        if self.state is not None:
            raise RuntimeError("ManualOrchestrator.run can only be called once")

        self.history = ConversationHistory.start(query)
        self._enter(ManualState.REQUEST_SENT)

        text_so_far = ""
        async with aclosing(self._stream(allow_tool_calls=True, caller="manual")) as fragments:
            async for fragment in fragments:
                yield streaming.reasoning(fragment.thought or PLACEHOLDER_REASONING)

                if fragment.text:
                    if self.state in (ManualState.REQUEST_SENT, ManualState.AWAITING_FUNCTION_CALL):
                        self._enter(ManualState.STREAMING_TEXT)
                    text_so_far += fragment.text
                    yield streaming.response(fragment.text)
                elif self.state == ManualState.REQUEST_SENT:
                    self._enter(ManualState.AWAITING_FUNCTION_CALL)

                call = fragment.function_call
                if call is None:
                    continue
                if self.tool_calls >= self.settings.max_tool_calls:
                    logger.warning(
                        f"Ignoring tool call {call.name!r}: limit of {self.settings.max_tool_calls} reached"
                    )
                    continue

                model_turn = Turn.model(
                    *([Part(text=text_so_far)] if text_so_far else []),
                    Part(function_call=call),
                )
                async with aclosing(self._call_tool_and_follow_up(call, model_turn)) as events:
                    async for event in events:
                        yield event

        self._enter(ManualState.DONE)

    async def _call_tool_and_follow_up(
        self, call: FunctionCall, model_turn: Turn
    ) -> AsyncGenerator[StreamEvent, None]:
        self._enter(ManualState.EXECUTING_TOOL)
        if call.name not in self.allowed_tools:
            raise ProtocolViolationError(
                f"Model requested tool '{call.name}', allowed: {', '.join(self.allowed_tools)}"
            )
        tool_input = call.args.get("input")
        if not isinstance(tool_input, str) or not tool_input.strip():
            raise ProtocolViolationError(f"Tool call '{call.name}' is missing a string 'input' argument")

        self.tool_calls += 1
        try:
            invocation = await self.search_tool.run(tool_input, tool_name=call.name)
        except ToolFetchError as e:
            # Let the model answer without search results.
            yield streaming.error(e.message, e.kind)
            response: dict[str, Any] = {"error": e.message}
        else:
            yield streaming.tool_call(invocation)
            response = {"result": invocation.output}

        self._enter(ManualState.APPENDING_HISTORY)
        self.history = self.history.append(
            model_turn,
            Turn.tool_result(call.name, response, call_id=call.id),
        )

        self._enter(ManualState.FOLLOWUP_SENT)
        async with aclosing(self._stream(allow_tool_calls=False, caller="manual_followup")) as fragments:
            async for fragment in fragments:
                if self.state != ManualState.STREAMING_FOLLOWUP:
                    self._enter(ManualState.STREAMING_FOLLOWUP)
                if fragment.function_call is not None:
                    logger.warning(f"Ignoring tool call {fragment.function_call.name!r} in follow-up")
                if fragment.text:
                    yield streaming.response(fragment.text)
