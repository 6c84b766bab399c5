"""Interactive CLI for the tanda router."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import uuid

from tanda_router.config.loader import apply_env_overrides, load_config
from tanda_router.config.models import RouterConfig
from tanda_router.domain.routing import RouteRequest
from tanda_router.infrastructure.llm_client import ChatCompletionsClient
from tanda_router.infrastructure.logging_setup import setup_logging
from tanda_router.infrastructure.services import InMemoryServices
from tanda_router.orchestration.runtime import TandaRuntime, build_session_store


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Tanda router interactive demo")
    p.add_argument("--config", "-c", required=True, help="Path to router YAML config")
    p.add_argument("--sender", "-s", default="59177242197", help="Sender phone number")
    p.add_argument("--name", default=None, help="Sender display name")
    p.add_argument("--otp", default=None, help="Pending verification code for the sender")
    return p.parse_args()


async def run_interactive(config: RouterConfig, args: argparse.Namespace) -> None:
    store, backend = await build_session_store(config)

    llm = None
    base_url = config.llm_base_url
    if base_url:
        api_key = os.environ.get("OPENAI_API_KEY", "")
        llm = ChatCompletionsClient(base_url=base_url, model=config.llm_model, api_key=api_key or None)

    services = InMemoryServices()
    if args.otp:
        services.pending_codes[args.sender] = args.otp
    runtime = TandaRuntime(config, store, services, services, services, llm_client=llm)

    print("Type a message. Commands: /state, /sessions, /reset, quit")
    try:
        while True:
            try:
                line = input("You: ").strip()
            except EOFError:
                break
            if not line:
                continue
            if line.lower() in ("quit", "exit", "q"):
                print("Goodbye.")
                break
            if line == "/state":
                print(json.dumps(await runtime.get_state(args.sender), indent=2, ensure_ascii=False, default=str))
                continue
            if line == "/sessions":
                for summary in await runtime.list_sessions(args.sender):
                    print(f"  {summary.id} (updated {summary.last_update_time:.0f})")
                continue
            if line == "/reset":
                await runtime.reset(args.sender)
                print("Session cleared.")
                continue

            result = await runtime.handle_message(
                RouteRequest(
                    sender_id=args.sender,
                    sender_name=args.name,
                    original_text=line,
                    message_id=uuid.uuid4().hex,
                )
            )
            if result is None:
                continue
            print(f"Bot [{result.handler_used} / {result.intent.value}]: {result.response_text}")
            print()
    finally:
        if backend is not None:
            await backend.close()


def main() -> int:
    args = parse_args()
    try:
        config = apply_env_overrides(load_config(args.config))
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(level=config.log_level)

    asyncio.run(run_interactive(config, args))
    return 0


if __name__ == "__main__":
    sys.exit(main())
