"""Conversation turns passed to the model on every call.

``ConversationHistory`` is immutable: ``append`` hands back a new history so
each orchestrator transition can be inspected on its own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    TOOL_RESULT = "tool_result"


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True)
class FunctionResponse:
    name: str
    response: dict[str, Any]
    id: str | None = None


@dataclass(frozen=True)
class Part:
    text: str | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None


@dataclass(frozen=True)
class Turn:
    role: Role
    parts: tuple[Part, ...]

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(role=Role.USER, parts=(Part(text=text),))

    @classmethod
    def model(cls, *parts: Part) -> "Turn":
        return cls(role=Role.MODEL, parts=tuple(parts))

    @classmethod
    def tool_result(cls, name: str, response: dict[str, Any], call_id: str | None = None) -> "Turn":
        return cls(
            role=Role.TOOL_RESULT,
            parts=(Part(function_response=FunctionResponse(name=name, response=response, id=call_id)),),
        )

    @property
    def function_calls(self) -> list[FunctionCall]:
        return [p.function_call for p in self.parts if p.function_call is not None]

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text)


@dataclass(frozen=True)
class ConversationHistory:
    turns: tuple[Turn, ...] = ()

    @classmethod
    def start(cls, query: str) -> "ConversationHistory":
        return cls(turns=(Turn.user(query),))

    def append(self, *turns: Turn) -> "ConversationHistory":
        history = self
        for turn in turns:
            _check_tool_result(history.last, turn)
            history = ConversationHistory(turns=history.turns + (turn,))
        return history

    @property
    def last(self) -> Turn | None:
        return self.turns[-1] if self.turns else None

    def __len__(self) -> int:
        return len(self.turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.turns)


def _check_tool_result(previous: Turn | None, turn: Turn) -> None:
    if turn.role != Role.TOOL_RESULT:
        return
    if len(turn.parts) != 1 or turn.parts[0].function_response is None:
        raise ValueError("tool_result turn must hold exactly one function response")
    if previous is None or previous.role != Role.MODEL:
        raise ValueError("tool_result turn must follow a model turn")
    name = turn.parts[0].function_response.name
    if name not in {call.name for call in previous.function_calls}:
        raise ValueError(f"No function call named '{name}' in the preceding model turn")
