"""
main.py — Parley Entry Point

Runs the gateway client headless: new chat log entries are echoed to stdout,
each line typed on stdin is posted as a message, and notifications go to the
structured log.

Usage:
    python -m parley                          # default settings
    python -m parley --name Kayla             # override the display name
    python -m parley --log-level DEBUG        # verbose logging
    python -m parley --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import threading
from pathlib import Path
from typing import TextIO

from dotenv import load_dotenv


def _find_env_file() -> Path | None:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Parley — terminal chat client",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $PARLEY_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--name",
        default=None,
        help="Display name (2–32 characters); overrides client.name",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it, and set up logging. Returns the settings.

    Exits with code 1 (after printing a clear message) on invalid config.
    """
    from pydantic import ValidationError

    from parley.config.settings import ConfigError, load_settings
    from parley.observability.logger import setup_logging

    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    try:
        settings = load_settings(args.config)
        if args.name is not None:
            settings.name_override = args.name
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings


async def _echo_log(state, interval: float = 0.1) -> None:
    """Print log entries as they arrive."""
    seen = 0
    while True:
        entries = state.snapshot_log()
        for entry in entries[seen:]:
            print(entry, flush=True)
        seen = len(entries)
        await asyncio.sleep(interval)


def _pump_lines(stream: TextIO, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
    """Reader thread body: forward each line to the loop, then None at EOF."""
    try:
        for line in stream:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, None)
    except RuntimeError:
        # Loop closed while this thread was blocked on input.
        return


async def _read_input(rest, state, stream: TextIO | None = None) -> None:
    """
    Post every non-blank line read from `stream` (stdin by default) as a chat
    message. Returns at EOF. Blocking reads run on a daemon thread.
    """
    from parley.gateway.rest import submit_message

    queue: asyncio.Queue = asyncio.Queue()
    reader = threading.Thread(
        target=_pump_lines,
        args=(sys.stdin if stream is None else stream, asyncio.get_running_loop(), queue),
        name="parley-input",
        daemon=True,
    )
    reader.start()
    while True:
        line = await queue.get()
        if line is None:
            return
        content = line.rstrip("\r\n")
        if content.strip():
            await submit_message(rest, state, content)


async def _cancel_all(*tasks: asyncio.Task) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def run_client(settings) -> int:
    from parley.exceptions import AuthenticationError, RestError
    from parley.gateway.notifications import LogNotificationSink
    from parley.gateway.rest import RestClient
    from parley.gateway.state import ChatState
    from parley.gateway.supervisor import GatewaySupervisor, websocket_connector
    from parley.observability.logger import get_logger

    log = get_logger("parley.main")
    cfg = settings.gateway
    notifier = LogNotificationSink() if settings.notifications.enabled else None
    state = ChatState(settings.display_name, notifier)

    async with RestClient(cfg.rest_url, timeout=cfg.open_timeout_seconds) as rest:
        url = cfg.url
        if url is None:
            try:
                info = await rest.get_instance_info()
            except RestError as exc:
                print(f"\n❌  Could not reach {cfg.rest_url}: {exc}\n", file=sys.stderr)
                return 1
            url = info.gateway_url
            log.info("instance.discovered", name=info.instance_name, gateway_url=url)

        supervisor = GatewaySupervisor(
            url,
            settings.token,
            state,
            rest,
            connect=websocket_connector(cfg.open_timeout_seconds),
            max_backoff=cfg.max_backoff_seconds,
            hello_timeout=cfg.hello_timeout_seconds,
        )
        echo = asyncio.create_task(_echo_log(state), name="parley-echo")
        composer = asyncio.create_task(_read_input(rest, state), name="parley-input")
        try:
            await supervisor.run()
        except AuthenticationError as exc:
            print(f"\n❌  Could not authenticate: {exc}\n", file=sys.stderr)
            return 1
        finally:
            await _cancel_all(echo, composer)
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = bootstrap(args)
    return await run_client(settings)


def cli() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))
