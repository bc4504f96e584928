"""Tests for conversation history."""
import pytest

from app.models.conversation import ConversationHistory, FunctionCall, Part, Role, Turn


def test_start_seeds_single_user_turn():
    history = ConversationHistory.start("who won today")

    assert len(history) == 1
    assert history.last.role == Role.USER
    assert history.last.text == "who won today"


def test_append_returns_new_history_and_leaves_original():
    history = ConversationHistory.start("q")
    call = FunctionCall(name="browserUse", args={"input": "q"}, id="call_1")

    extended = history.append(
        Turn.model(Part(function_call=call)),
        Turn.tool_result("browserUse", {"result": "text"}, call_id="call_1"),
    )

    assert len(history) == 1
    assert len(extended) == 3
    assert [t.role for t in extended] == [Role.USER, Role.MODEL, Role.TOOL_RESULT]
    assert extended.last.parts[0].function_response.response == {"result": "text"}


def test_tool_result_must_follow_model_turn():
    history = ConversationHistory.start("q")

    with pytest.raises(ValueError):
        history.append(Turn.tool_result("browserUse", {"result": ""}))


def test_tool_result_name_must_match_function_call():
    history = ConversationHistory.start("q").append(
        Turn.model(Part(function_call=FunctionCall(name="browserUse", args={"input": "q"})))
    )

    with pytest.raises(ValueError):
        history.append(Turn.tool_result("other_tool", {"result": ""}))


def test_model_turn_exposes_function_calls_and_text():
    call = FunctionCall(name="browserUse", args={"input": "x"})
    turn = Turn.model(Part(text="Let me check. "), Part(function_call=call))

    assert turn.function_calls == [call]
    assert turn.text == "Let me check. "
