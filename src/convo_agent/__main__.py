"""CLI entry point for convo-agent."""

from __future__ import annotations

import argparse
import asyncio
import sys

from convo_agent.app import AgentApp
from convo_agent.config import AppConfig, load_config
from convo_agent.errors import AgentError
from convo_agent.log import setup_logging

REPL_HELP = "Commands: /reset, /history, /stats, /quit"


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="convo-agent",
        description="Conversational agent with bounded memory, tools and a circuit-breaker-guarded LLM",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Chat with an agent session")
    chat_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    chat_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )
    chat_parser.add_argument(
        "-s", "--session", default="cli", help="Session key to chat in"
    )
    chat_parser.add_argument(
        "--tools", action="store_true", help="Let the model call the configured tools"
    )

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    check_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    check_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )

    args = parser.parse_args()

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "chat":
        _run_chat(args.config, args.env, args.session, args.tools)
    else:
        parser.print_help()


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        print(f"Configuration valid: {config_path}")
        print(f"  Backend: {config.ai.backend} (model={config.ai.model or 'default'})")
        print(f"  Tools: {', '.join(config.ai.tools) if config.ai.tools else '(all built-in)'}")
        print(f"  Context window: {config.context.max_messages} messages")
        cb = config.circuit_breaker
        print(
            f"  Circuit breaker: {cb.failure_threshold} failures, "
            f"{cb.reset_timeout_ms}ms reset, {cb.success_threshold} successes to close"
        )
        print(f"  Chat timeout: {config.session.chat_timeout_ms}ms")
        print(f"  Storage: {config.storage.db_path if config.storage.enabled else 'in-memory'}")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _run_chat(config_path: str, env_path: str, session_key: str, use_tools: bool) -> None:
    """Load config and run an interactive chat session."""
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml first")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, config.log_json)

    try:
        asyncio.run(_repl(config, session_key, use_tools))
    except KeyboardInterrupt:
        pass


async def _repl(config: AppConfig, session_key: str, use_tools: bool) -> None:
    app = AgentApp(config)
    await app.start()
    print(f"Session '{session_key}'. {REPL_HELP}")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break
            if not await handle_line(app, session_key, line.strip(), use_tools):
                break
    finally:
        await app.stop()


async def handle_line(app: AgentApp, session_key: str, text: str, use_tools: bool) -> bool:
    """Run one REPL input. Returns False when the user asked to quit.

    Session errors are printed and the REPL keeps going.
    """
    try:
        return await _dispatch_line(app, session_key, text, use_tools)
    except (AgentError, TimeoutError) as e:
        print(f"error: {e}", file=sys.stderr)
        return True


async def _dispatch_line(app: AgentApp, session_key: str, text: str, use_tools: bool) -> bool:
    manager = app.session_manager
    match text:
        case "":
            pass
        case "/quit" | "/exit":
            return False
        case "/reset":
            # works before the first message too
            agent = await manager.get_or_create(session_key)
            await agent.clear_history()
            print("(history cleared)")
        case "/history":
            agent = await manager.get_or_create(session_key)
            for message in await agent.get_history():
                print(f"  [{message.role}] {message.content or ''}")
        case "/stats":
            stats = app.breaker.stats()
            print(
                f"  breaker={stats.state} failures={stats.consecutive_failures} "
                f"calls={stats.total_calls} rejected={stats.total_rejected}"
            )
            print(f"  sessions={', '.join(manager.active_keys()) or '(none)'}")
        case _ if text.startswith("/"):
            print(REPL_HELP)
        case _:
            reply = await manager.send(session_key, text, use_tools=use_tools)
            print(f"agent> {reply}")
    return True


if __name__ == "__main__":
    main()
