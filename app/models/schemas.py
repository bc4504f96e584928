from __future__ import annotations

from pydantic import BaseModel


# --- Requests ---


class ChatRequest(BaseModel):
    query: str | None = None
    manual: bool | None = None


# --- Responses ---


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    service: str
