from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncGenerator

from loguru import logger

from app.config import Settings
from app.errors import ChatError, ModelStreamError
from app.models.events import StreamEvent
from app.services import streaming
from app.tools.web_search import ToolInvocation


class ChunkKind(str, Enum):
    TOOL_RESULT = "tool_result"
    REASONING = "reasoning"
    TEXT = "text"
    UNKNOWN = "unknown"


@dataclass
class DecodedChunk:
    kind: ChunkKind
    content: str = ""
    tool: str = ""
    tool_call_id: str | None = None
    raw_type: str | None = None


def _stringify(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            b if isinstance(b, str) else str(b.get("text", "")) for b in content if isinstance(b, (str, dict))
        )
    return str(content)


def _decode_blocks(content: Any) -> list[DecodedChunk]:
    if isinstance(content, str):
        return [DecodedChunk(ChunkKind.TEXT, content=content)]
    decoded: list[DecodedChunk] = []
    for block in content or []:
        if isinstance(block, str):
            decoded.append(DecodedChunk(ChunkKind.TEXT, content=block))
            continue
        if not isinstance(block, dict):
            decoded.append(DecodedChunk(ChunkKind.UNKNOWN, raw_type=type(block).__name__))
            continue
        btype = block.get("type")
        if btype in ("reasoning", "thinking"):
            text = block.get("reasoning") or block.get("thinking") or block.get("text") or ""
            decoded.append(DecodedChunk(ChunkKind.REASONING, content=str(text)))
        elif btype == "text":
            decoded.append(DecodedChunk(ChunkKind.TEXT, content=str(block.get("text", ""))))
        elif btype in ("tool_call_chunk", "tool_call", "tool_use"):
            # Carried separately on tool_call_chunks.
            continue
        else:
            decoded.append(DecodedChunk(ChunkKind.UNKNOWN, raw_type=str(btype)))
    return decoded


def decode_chunk(chunk: Any) -> list[DecodedChunk]:
    """Map one agent message chunk onto the kinds the client understands."""
    ctype = getattr(chunk, "type", None)

    if ctype == "tool":
        return [
            DecodedChunk(
                ChunkKind.TOOL_RESULT,
                content=_stringify(getattr(chunk, "content", "")),
                tool=getattr(chunk, "name", None) or "",
                tool_call_id=getattr(chunk, "tool_call_id", None),
            )
        ]

    if ctype in ("reasoning", "thinking"):
        return [DecodedChunk(ChunkKind.REASONING, content=_stringify(getattr(chunk, "content", "")))]

    if ctype in ("ai", "AIMessageChunk"):
        decoded: list[DecodedChunk] = []
        extra = getattr(chunk, "additional_kwargs", None) or {}
        reasoning = extra.get("reasoning_content") or extra.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            decoded.append(DecodedChunk(ChunkKind.REASONING, content=reasoning))
        decoded.extend(_decode_blocks(getattr(chunk, "content", "")))
        return decoded

    return [DecodedChunk(ChunkKind.UNKNOWN, raw_type=str(ctype))]


class AutomaticOrchestrator:
    """Streams a prebuilt tool-calling agent and re-tags its chunks as stream events.

    The agent owns the model/tool loop; this class only translates. Tool
    messages do not carry the arguments they were called with, so the
    arguments are collected from the model's earlier tool-call chunks and
    matched back by call id.
    """

    def __init__(self, agent: Any, settings: Settings):
        self.agent = agent
        self.settings = settings
        self._started = False
        self._call_args: dict[str, str] = {}
        self._call_ids: dict[int, str] = {}

    async def run(self, query: str) -> AsyncGenerator[StreamEvent, None]:
        if self._started:
            raise RuntimeError("AutomaticOrchestrator.run can only be called once")
        self._started = True

        inputs = {"messages": [{"role": "user", "content": query}]}
        stream = streaming.bounded(
            self.agent.astream(inputs, stream_mode="messages"),
            self.settings.model_timeout_seconds,
            lambda: ModelStreamError("Agent stream timed out"),
        )
        try:
            async for chunk, metadata in stream:
                self._track_tool_calls(chunk)
                for decoded in decode_chunk(chunk):
                    event = self._to_event(decoded, metadata)
                    if event is not None:
                        yield event
        except ChatError:
            raise
        except Exception as e:
            raise ModelStreamError(f"Agent stream failed: {e}") from e
        finally:
            await stream.aclose()

    def _track_tool_calls(self, chunk: Any) -> None:
        for tc in getattr(chunk, "tool_call_chunks", None) or []:
            index = tc.get("index") or 0
            call_id = tc.get("id") or self._call_ids.get(index)
            if not call_id:
                continue
            self._call_ids[index] = call_id
            self._call_args[call_id] = self._call_args.get(call_id, "") + (tc.get("args") or "")

        if getattr(chunk, "tool_call_chunks", None):
            return
        # Non-streaming model messages carry complete calls instead.
        for tc in getattr(chunk, "tool_calls", None) or []:
            if tc.get("id"):
                self._call_args[tc["id"]] = json.dumps(tc.get("args") or {})

    def _tool_input(self, call_id: str | None) -> str:
        raw = self._call_args.get(call_id or "", "")
        try:
            args = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            return raw
        if isinstance(args, dict) and isinstance(args.get("query"), str):
            return args["query"]
        return json.dumps(args) if args else ""

    def _to_event(self, decoded: DecodedChunk, metadata: Any) -> StreamEvent | None:
        if decoded.kind == ChunkKind.TOOL_RESULT:
            # Tool results are emitted even when empty (no search hits).
            return streaming.tool_call(
                ToolInvocation(
                    tool=decoded.tool,
                    input=self._tool_input(decoded.tool_call_id),
                    output=decoded.content,
                )
            )
        if decoded.kind == ChunkKind.UNKNOWN:
            node = metadata.get("langgraph_node") if isinstance(metadata, dict) else None
            logger.warning(f"Dropping unknown agent chunk kind {decoded.raw_type!r} from node {node!r}")
            return None
        if not decoded.content:
            return None
        if decoded.kind == ChunkKind.REASONING:
            return streaming.reasoning(decoded.content)
        return streaming.response(decoded.content)
