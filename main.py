"""Search Chat - web-search chat agent

Simple CLI for running one chat turn from the terminal.
"""

import argparse
import asyncio
import json

from app.api.deps import build_services
from app.config import settings
from app.services.streaming import EventStreamer


async def run_chat(query: str, manual: bool = False, model: str | None = None):
    """Run one chat turn and print its event stream."""
    print(f"Query: {query} ({'manual' if manual else 'automatic'})")
    print("-" * 50)

    run_settings = settings.model_copy(update={"default_model": model}) if model else settings
    services = build_services(run_settings)
    orchestrator = services.manual() if manual else services.automatic()
    streamer = EventStreamer(orchestrator.run(query), label="cli")

    try:
        async for frame in streamer.frames():
            if frame.get("event") == "end":
                print("\n[*] Done.")
                break
            event = json.loads(frame["data"])
            event_type = event["type"]

            if event_type == "reasoning":
                print(f"[~] {event['content']}")

            elif event_type == "tool_call":
                print(f"\n[+] {event['tool']}({event['input']!r})")
                print(event["output"] or "  (no results)")
                print()

            elif event_type == "response":
                print(event["content"], end="", flush=True)

            elif event_type == "error":
                print(f"\n[!] Error: {event.get('message', 'Unknown error')}")
    finally:
        await services.close()


def main():
    parser = argparse.ArgumentParser(description="Search Chat CLI")
    parser.add_argument("--query", "-q", required=True, help="Chat query")
    parser.add_argument("--manual", action="store_true", help="Use the manual single tool-call path")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")

    args = parser.parse_args()

    asyncio.run(run_chat(args.query, args.manual, args.model))


if __name__ == "__main__":
    main()
