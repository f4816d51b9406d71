"""
chatsub entry point.

Loads configuration, configures logging, and runs one command against the
configured Redis server.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from .config import ChatConfig, load_config
from .registry import ChatRegistry


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(level)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


async def _listen(registry: ChatRegistry, identity: str, topics: list[str]) -> None:
    session = await registry.connect(identity)
    try:
        for topic in topics:
            await registry.subscribe(identity, topic)
        print(f"{identity} listening on: {', '.join(sorted(await registry.get_topics(identity)))}")
        async for message in session.messages():
            print(f"[{message.topic}] {message.payload.decode(errors='replace')}", flush=True)
    finally:
        await registry.disconnect(identity)


async def _execute(config: ChatConfig, args: argparse.Namespace) -> int:
    registry = ChatRegistry.from_config(config)
    try:
        if args.command == "listen":
            await _listen(registry, args.identity, args.topic)
        elif args.command == "publish":
            receivers = await registry.publish(args.topic, args.payload)
            print(f"delivered to {receivers} subscriber(s)")
        elif args.command == "who":
            for identity in sorted(await registry.list_connected()):
                print(identity)
        elif args.command == "topics":
            for topic in sorted(await registry.get_topics(args.identity)):
                print(topic)
        elif args.command == "broadcast-add":
            await registry.add_broadcast_topic(args.topic)
        elif args.command == "broadcast-remove":
            await registry.remove_broadcast_topic(args.topic)
    finally:
        await registry.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatsub", description="Redis topic chat sessions")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (defaults are used when omitted)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    listen = commands.add_parser("listen", help="connect and print inbound messages")
    listen.add_argument("identity")
    listen.add_argument("-t", "--topic", action="append", default=[], help="extra topic (repeatable)")

    publish = commands.add_parser("publish", help="publish a message to a topic")
    publish.add_argument("topic")
    publish.add_argument("payload")

    commands.add_parser("who", help="list connected identities")

    topics = commands.add_parser("topics", help="show the topics an identity receives")
    topics.add_argument("identity")

    add = commands.add_parser("broadcast-add", help="add a topic every session receives")
    add.add_argument("topic")

    remove = commands.add_parser("broadcast-remove", help="remove a broadcast topic")
    remove.add_argument("topic")
    return parser


def run(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config) if args.config else ChatConfig()
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.debug("chatsub.config_loaded", config_path=args.config, command=args.command)

    try:
        sys.exit(asyncio.run(_execute(config, args)))
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
