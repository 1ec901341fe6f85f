import asyncio
import json
import sys

from dotenv import load_dotenv
from loguru import logger

from prose_prime.app_config import load_json_config, parse_app_config, resolve_runtime_env
from prose_prime.bootstrap import AppRuntime, build_runtime
from prose_prime.errors import ProsePrimeError, SessionNotFoundError
from prose_prime.prompts import DISCLAIMER
from prose_prime.schemas import CoachReply

_LINE_PREFIX = "coach> "
_USER_PROMPT = "you> "


def _print_reply(reply: CoachReply) -> None:
    print(f"{_LINE_PREFIX}{reply.assistant_message}")
    for i, question in enumerate(reply.next_questions, 1):
        print(f"{_LINE_PREFIX}  {i}. {question}")
    print(f"{_LINE_PREFIX}[progress {reply.progress_percent}%]")


def _print_help() -> None:
    print(
        "Commands: /progress, /facts, /packet [refresh], /sessions, /help, exit\n"
        "Anything else is sent to the coach."
    )


async def _handle_command(runtime: AppRuntime, session_id: str, command: str) -> None:
    service = runtime.service
    name, _, arg = command.partition(" ")

    if name == "/help":
        _print_help()
    elif name == "/progress":
        progress = service.progress(session_id)
        print(f"{_LINE_PREFIX}Progress: {progress['progress_percent']}%")
        print(f"{_LINE_PREFIX}Missing: {', '.join(progress['missing_fields']) or 'nothing'}")
        for gap in progress["gaps"]:
            print(f"{_LINE_PREFIX}  - {gap}")
    elif name == "/facts":
        session = service.get_session(session_id)
        print(json.dumps(session.facts.to_dict(), indent=2, ensure_ascii=False))
    elif name == "/packet":
        packet = await service.get_packet(session_id, regenerate=arg.strip() == "refresh")
        print(packet["oral_script_2min"])
        print(packet["oral_outline_5min"])
        print(packet.get("disclaimer", DISCLAIMER))
    elif name == "/sessions":
        for session in service.list_sessions(limit=20):
            marker = "*" if session.id == session_id else " "
            print(f"{marker} {session.id} (updated={session.updated_at}, messages={len(session.messages)})")
    else:
        print(f"{_LINE_PREFIX}Unknown command: {name}. Type /help.")


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    runtime = build_runtime(app, env)
    service = runtime.service

    try:
        if app.session_id:
            try:
                session = service.get_session(app.session_id)
            except SessionNotFoundError:
                logger.error(f"Session not found: {app.session_id}")
                sys.exit(1)
        else:
            session = service.create_session()

        print("prose-prime intake coach (type 'exit' to quit, '/help' for commands)")
        print(DISCLAIMER)
        print(f"Session: {session.id} ({session.jurisdiction}, {session.track.value if session.track else 'no track'})")
        if runtime.log_descriptions:
            print(f"Logging: {', '.join(runtime.log_descriptions)}")
        print()

        while True:
            try:
                user_input = input(_USER_PROMPT)
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                if trimmed.startswith("/"):
                    await _handle_command(runtime, session.id, trimmed)
                else:
                    result = await service.handle_turn(session.id, trimmed)
                    _print_reply(result.reply)
                print()
            except ProsePrimeError as ex:
                logger.error(f"{type(ex).__name__}: {ex}")
    finally:
        runtime.close()


def _cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    _cli()
