"""Tests for the manual single tool-call orchestrator."""
from __future__ import annotations

from datetime import date

import pytest

from app.agents.manual import PLACEHOLDER_REASONING, ManualOrchestrator, ManualState
from app.config import Settings
from app.errors import ProtocolViolationError, ToolFetchError
from app.llm_client import ModelFragment
from app.models.conversation import FunctionCall, Role
from app.tools.web_search import ToolInvocation

SEARCH_OUTPUT = "Final result\nTeam A beat Team B\nhttps://example.com/final"


class ScriptedModel:
    """Plays back one list of fragments per stream() call."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls: list[dict] = []
        self.closed = 0

    async def stream(self, history, *, system, tools=None, allow_tool_calls=True, caller="manual"):
        self.calls.append(
            {
                "history": history,
                "system": system,
                "tools": tools,
                "allow_tool_calls": allow_tool_calls,
            }
        )
        try:
            for item in self.scripts.pop(0):
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed += 1


class StubSearchTool:
    def __init__(self, output: str = SEARCH_OUTPUT, exc: Exception | None = None):
        self.output = output
        self.exc = exc
        self.queries: list[str] = []

    async def run(self, query: str, tool_name: str = "browserUse") -> ToolInvocation:
        self.queries.append(query)
        if self.exc is not None:
            raise self.exc
        return ToolInvocation(tool=tool_name, input=query, output=self.output)


def _call(name: str = "browserUse", query: str = "who won today") -> ModelFragment:
    return ModelFragment(function_call=FunctionCall(name=name, args={"input": query}, id="call_1"))


def _orchestrator(model, search_tool=None) -> ManualOrchestrator:
    return ManualOrchestrator(
        model,
        search_tool or StubSearchTool(),
        Settings(openrouter_api_key="test"),
        today=date(2025, 1, 15),
    )


async def _payloads(orchestrator: ManualOrchestrator, query: str) -> list[dict]:
    return [event.payload() async for event in orchestrator.run(query)]


class TestToolCallPath:
    @pytest.mark.asyncio
    async def test_function_call_runs_search_then_follow_up(self):
        model = ScriptedModel(
            [_call()],
            [ModelFragment(text="Team A "), ModelFragment(text="won."), ModelFragment(text="")],
        )
        search = StubSearchTool()
        orchestrator = _orchestrator(model, search)

        payloads = await _payloads(orchestrator, "who won today")

        assert payloads == [
            {"type": "reasoning", "content": PLACEHOLDER_REASONING},
            {
                "type": "tool_call",
                "tool": "browserUse",
                "input": "who won today",
                "output": SEARCH_OUTPUT,
            },
            {"type": "response", "content": "Team A "},
            {"type": "response", "content": "won."},
        ]
        assert search.queries == ["who won today"]

    @pytest.mark.asyncio
    async def test_history_grows_by_model_turn_and_tool_result(self):
        model = ScriptedModel([_call()], [ModelFragment(text="ok")])
        orchestrator = _orchestrator(model)

        await _payloads(orchestrator, "who won today")

        history = orchestrator.history
        assert len(history) == 1 + 2
        model_turn, result_turn = history.turns[1], history.turns[2]
        assert model_turn.role == Role.MODEL
        assert result_turn.role == Role.TOOL_RESULT
        response = result_turn.parts[0].function_response
        assert response.name == model_turn.function_calls[0].name
        assert response.response == {"result": SEARCH_OUTPUT}
        assert response.id == "call_1"

    @pytest.mark.asyncio
    async def test_follow_up_sees_three_turns_with_tools_disabled(self):
        model = ScriptedModel([_call()], [ModelFragment(text="ok")])
        orchestrator = _orchestrator(model)

        await _payloads(orchestrator, "who won today")

        first, follow_up = model.calls
        assert first["allow_tool_calls"] is True
        assert [t["name"] for t in first["tools"]] == ["browserUse"]
        assert len(first["history"]) == 1
        assert follow_up["allow_tool_calls"] is False
        assert len(follow_up["history"]) == 3
        assert "2025-01-15" in first["system"]

    @pytest.mark.asyncio
    async def test_state_transitions_are_recorded_in_order(self):
        model = ScriptedModel([_call()], [ModelFragment(text="ok")])
        orchestrator = _orchestrator(model)

        await _payloads(orchestrator, "who won today")

        assert orchestrator.transitions == [
            ManualState.REQUEST_SENT,
            ManualState.AWAITING_FUNCTION_CALL,
            ManualState.EXECUTING_TOOL,
            ManualState.APPENDING_HISTORY,
            ManualState.FOLLOWUP_SENT,
            ManualState.STREAMING_FOLLOWUP,
            ManualState.DONE,
        ]
        assert orchestrator.state == ManualState.DONE

    @pytest.mark.asyncio
    async def test_zero_search_results_still_emit_tool_call(self):
        model = ScriptedModel([_call()], [ModelFragment(text="Nothing found.")])
        orchestrator = _orchestrator(model, StubSearchTool(output=""))

        payloads = await _payloads(orchestrator, "who won today")

        tool_calls = [p for p in payloads if p["type"] == "tool_call"]
        assert tool_calls == [
            {"type": "tool_call", "tool": "browserUse", "input": "who won today", "output": ""}
        ]

    @pytest.mark.asyncio
    async def test_only_one_tool_call_per_request(self):
        model = ScriptedModel([_call(), _call(query="again")], [ModelFragment(text="ok")])
        search = StubSearchTool()
        orchestrator = _orchestrator(model, search)

        payloads = await _payloads(orchestrator, "who won today")

        assert [p["type"] for p in payloads].count("tool_call") == 1
        assert search.queries == ["who won today"]
        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_model_thought_replaces_placeholder(self):
        model = ScriptedModel(
            [ModelFragment(thought="Needs fresh data"), _call()],
            [ModelFragment(text="ok")],
        )

        payloads = await _payloads(_orchestrator(model), "who won today")

        reasoning = [p["content"] for p in payloads if p["type"] == "reasoning"]
        assert reasoning == ["Needs fresh data", PLACEHOLDER_REASONING]


class TestNoToolCall:
    @pytest.mark.asyncio
    async def test_direct_answer_goes_straight_to_done(self):
        model = ScriptedModel([ModelFragment(text="Hello"), ModelFragment(text=" there")])
        search = StubSearchTool()
        orchestrator = _orchestrator(model, search)

        payloads = await _payloads(orchestrator, "say hello")

        assert payloads == [
            {"type": "reasoning", "content": PLACEHOLDER_REASONING},
            {"type": "response", "content": "Hello"},
            {"type": "reasoning", "content": PLACEHOLDER_REASONING},
            {"type": "response", "content": " there"},
        ]
        assert len(model.calls) == 1
        assert search.queries == []
        assert len(orchestrator.history) == 1
        assert orchestrator.transitions == [
            ManualState.REQUEST_SENT,
            ManualState.STREAMING_TEXT,
            ManualState.DONE,
        ]


class TestFailures:
    @pytest.mark.asyncio
    async def test_tool_failure_becomes_error_event_and_follow_up_still_runs(self):
        model = ScriptedModel([_call()], [ModelFragment(text="I could not search, but...")])
        search = StubSearchTool(exc=ToolFetchError("Error fetching https://html.duckduckgo.com/html/: timeout"))
        orchestrator = _orchestrator(model, search)

        payloads = await _payloads(orchestrator, "who won today")

        assert [p["type"] for p in payloads] == ["reasoning", "error", "response"]
        assert payloads[1]["kind"] == "tool_fetch_error"
        assert "timeout" in payloads[1]["message"]
        result = orchestrator.history.last.parts[0].function_response
        assert "error" in result.response
        assert orchestrator.state == ManualState.DONE

    @pytest.mark.asyncio
    async def test_unknown_tool_name_is_rejected(self):
        model = ScriptedModel([_call(name="deleteEverything")], [])
        search = StubSearchTool()
        orchestrator = _orchestrator(model, search)

        with pytest.raises(ProtocolViolationError):
            await _payloads(orchestrator, "who won today")

        assert search.queries == []
        assert len(orchestrator.history) == 1
        assert model.closed == 1

    @pytest.mark.asyncio
    async def test_missing_input_argument_is_rejected(self):
        fragment = ModelFragment(function_call=FunctionCall(name="browserUse", args={"query": "x"}))
        model = ScriptedModel([fragment], [])

        with pytest.raises(ProtocolViolationError):
            await _payloads(_orchestrator(model), "who won today")

    @pytest.mark.asyncio
    async def test_run_is_one_shot(self):
        model = ScriptedModel([ModelFragment(text="hi")], [ModelFragment(text="hi")])
        orchestrator = _orchestrator(model)
        await _payloads(orchestrator, "q")

        with pytest.raises(RuntimeError):
            await _payloads(orchestrator, "q")


@pytest.mark.asyncio
async def test_same_stubs_give_identical_event_sequence():
    def scripts():
        return ([_call()], [ModelFragment(text="Team A won.")])

    first = await _payloads(_orchestrator(ScriptedModel(*scripts())), "who won today")
    second = await _payloads(_orchestrator(ScriptedModel(*scripts())), "who won today")

    assert first == second


@pytest.mark.asyncio
async def test_every_model_stream_is_closed_after_a_full_run():
    model = ScriptedModel([_call()], [ModelFragment(text="ok")])

    await _payloads(_orchestrator(model), "who won today")

    assert model.closed == 2


@pytest.mark.asyncio
async def test_closing_the_run_early_closes_open_model_streams():
    model = ScriptedModel(
        [_call()],
        [ModelFragment(text="Team A "), ModelFragment(text="won "), ModelFragment(text="again.")],
    )
    run = _orchestrator(model).run("who won today")

    seen = [(await anext(run)).payload()["type"] for _ in range(3)]
    await run.aclose()

    assert seen == ["reasoning", "tool_call", "response"]
    assert model.closed == 2
