from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    RESPONSE = "response"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.data}

    def to_json(self) -> str:
        return json.dumps(self.payload())


END_EVENT_NAME = "end"
