"""Logging for the chat service: loguru sinks plus structured call helpers."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from app.config import settings

LOG_DIR = Path("logs")

# Libraries whose stdlib loggers chatter on every request or stream chunk.
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai", "sse_starlette", "langchain", "langgraph")


def configure_logging(level: str, quiet_level: str) -> None:
    LOG_DIR.mkdir(exist_ok=True)
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> <cyan>{name}</cyan> {message}",
        level=level.upper(),
    )
    # Keeps DEBUG so per-event SSE traces are available after the fact.
    logger.add(
        LOG_DIR / "search_chat_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name}:{line} | {message}",
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level.upper())


configure_logging(settings.app_log_level, settings.noisy_log_level)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_llm_call(
    model: str,
    caller: str,
    duration_ms: int = 0,
    tools_enabled: bool = False,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log one streamed model round-trip."""
    call_data = {
        "timestamp": _now(),
        "model": model,
        "caller": caller,
        "tools_enabled": tools_enabled,
        "duration_ms": duration_ms,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"LLM_CALL_FAILED: {call_data}")
    else:
        logger.info(f"LLM_CALL: {call_data}")


def log_tool_call(
    tool: str,
    tool_input: str,
    status: str,
    duration_ms: int = 0,
    results: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log a tool execution."""
    call_data = {
        "timestamp": _now(),
        "tool": tool,
        "input": tool_input[:200],
        "status": status,
        "results": results,
        "duration_ms": duration_ms,
        "error": error,
    }
    if error:
        logger.error(f"TOOL_CALL_FAILED: {call_data}")
    else:
        logger.info(f"TOOL_CALL: {call_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
