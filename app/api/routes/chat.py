from __future__ import annotations

import pydantic
from fastapi import APIRouter, Depends, Request

from app.api.deps import ChatServices, get_services
from app.errors import ValidationError
from app.models.schemas import ChatRequest, ErrorResponse
from app.services import logger as log_service
from app.services.streaming import EventStreamer

router = APIRouter(tags=["chat"])


async def _parse_request(request: Request) -> ChatRequest:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    try:
        chat_request = ChatRequest.model_validate(body)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid request body: {e.error_count()} error(s)") from e
    if not chat_request.query or not chat_request.query.strip():
        raise ValidationError("Query is required")
    return chat_request


@router.post("/chat", responses={400: {"model": ErrorResponse}})
async def chat(request: Request, services: ChatServices = Depends(get_services)):
    """Answer a query, streaming reasoning, tool calls and text as server-sent events."""
    chat_request = await _parse_request(request)
    mode = "manual" if chat_request.manual else "automatic"

    log_service.log_event(
        event_type="chat_started",
        message="Chat stream opened",
        mode=mode,
        query=chat_request.query[:100],
    )

    orchestrator = services.manual() if chat_request.manual else services.automatic()
    streamer = EventStreamer(orchestrator.run(chat_request.query), label=mode)
    return streamer.open()
