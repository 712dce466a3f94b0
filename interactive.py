"""Interactive shell that keeps one driver connection open.

Each line is parsed with the command line parser and dispatched to the same
command handlers.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
from collections.abc import Awaitable, Callable

from context import AppContext

_LOGGER = logging.getLogger(__name__)

PROMPT = "zwave-lock> "
EXIT_WORDS = ("exit", "quit", "q")
BLOCKED_COMMANDS = (None, "serve", "interactive")


async def read_line(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, input, prompt)


async def run_interactive(
    ctx: AppContext,
    parser: argparse.ArgumentParser,
    execute: Callable[[AppContext, argparse.Namespace], Awaitable[int]],
    read: Callable[[str], Awaitable[str]] = read_line,
) -> None:
    """Read commands until exit, EOF or Ctrl-C."""
    print("\n🔐 Z-Wave Lock interactive mode. Type 'help' for commands, 'exit' to quit.\n")
    while True:
        try:
            line = await read(PROMPT)
        except (EOFError, KeyboardInterrupt):
            print()
            break
        try:
            words = shlex.split(line)
        except ValueError as err:
            print(f"❌ {err}")
            continue
        if not words:
            continue
        if words[0] in EXIT_WORDS:
            break
        if words[0] == "help":
            parser.print_help()
            continue
        try:
            args = parser.parse_args(words)
        except SystemExit:
            # argparse already printed the problem
            continue
        if args.command in BLOCKED_COMMANDS:
            print(f"❌ '{words[0]}' is not available in interactive mode")
            continue
        code = await execute(ctx, args)
        _LOGGER.debug("Command %s finished with %d", args.command, code)
    print("👋 Bye")
