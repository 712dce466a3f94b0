"""Adding, removing and replacing nodes.

Inclusion grants the security classes the joining node requests and asks
the operator for the DSK PIN through a callback. After a node joins, the
interview wait is bounded and reports "incomplete" instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from context import AppContext
from errors import InvalidFormatError, ZWaveLockError
from inspection import wait_for_interview
from models import InclusionResult

_LOGGER = logging.getLogger(__name__)

DskPinCallback = Callable[[str], Awaitable[str]]

STRATEGIES = ("s2", "s0", "insecure")


def _log_task_error(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        _LOGGER.error("Inclusion step failed: %s", task.exception())


class _InclusionListener:
    """Answers controller prompts while waiting for a node to be added."""

    def __init__(self, session: Any, dsk_pin: DskPinCallback | None):
        self._session = session
        self._dsk_pin = dsk_pin
        self._tasks: set[asyncio.Task] = set()
        self.added: asyncio.Future = asyncio.get_running_loop().create_future()
        self._unsubscribers = [
            session.on_controller("grant security classes", self._on_grant),
            session.on_controller("validate dsk and enter pin", self._on_dsk),
            session.on_controller("node added", self._on_added),
        ]

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(_log_task_error)

    def _on_grant(self, data: dict) -> None:
        requested = data["requested_grant"]
        _LOGGER.info("Granting requested security classes")
        self._spawn(self._session.grant_requested_security_classes(requested))

    def _on_dsk(self, data: dict) -> None:
        self._spawn(self._answer_dsk(data.get("dsk", "")))

    async def _answer_dsk(self, dsk: str) -> None:
        if self._dsk_pin is None:
            _LOGGER.error("Device requires a DSK PIN but no prompt is available")
            await self._session.stop_inclusion()
            return
        pin = (await self._dsk_pin(dsk)).strip()
        if not (len(pin) == 5 and pin.isdigit()):
            raise InvalidFormatError("DSK PIN must be the first 5 digits of the DSK")
        await self._session.validate_dsk_and_enter_pin(pin)

    def _on_added(self, data: dict) -> None:
        if not self.added.done():
            self.added.set_result(data["node"])

    def close(self) -> None:
        for unsub in self._unsubscribers:
            unsub()
        for task in self._tasks:
            task.cancel()


async def _finish_inclusion(ctx: AppContext, session: Any, raw_node: Any) -> InclusionResult:
    node = session.wrap_node(raw_node)
    _LOGGER.info("Node %d added, waiting for interview", node.node_id)
    try:
        await node.set_keep_awake(True)
    except ZWaveLockError as err:
        _LOGGER.warning("Could not keep node %d awake: %s", node.node_id, err)
    complete = await wait_for_interview(node, ctx.config.timing.interview_timeout_sec)
    return InclusionResult(
        node_id=node.node_id,
        interview_complete=complete,
        secure=node.is_secure,
        security_class=node.security_class,
        detail="" if complete else "Interview incomplete, wake the device to finish",
    )


async def _run_inclusion(
    ctx: AppContext,
    start: Callable[[Any], Awaitable[Any]],
    dsk_pin: DskPinCallback | None,
) -> InclusionResult:
    session = await ctx.session()
    listener = _InclusionListener(session, dsk_pin)
    try:
        await start(session)
        try:
            raw_node = await asyncio.wait_for(
                asyncio.shield(listener.added), ctx.config.timing.inclusion_timeout_sec
            )
        except asyncio.TimeoutError:
            await session.stop_inclusion()
            return InclusionResult(node_id=None, detail="No device joined before the timeout")
    finally:
        listener.close()
    return await _finish_inclusion(ctx, session, raw_node)


def _check_strategy(strategy: str) -> str:
    if strategy not in STRATEGIES:
        raise InvalidFormatError(f"Strategy must be one of {', '.join(STRATEGIES)}")
    return strategy


async def include_device(
    ctx: AppContext,
    strategy: str = "s2",
    dsk_pin: DskPinCallback | None = None,
) -> InclusionResult:
    """Put the controller in inclusion mode and add one device."""
    _check_strategy(strategy)
    _LOGGER.info("Starting %s inclusion", strategy.upper())
    return await _run_inclusion(
        ctx, lambda session: session.begin_inclusion(strategy), dsk_pin
    )


async def replace_failed_node(
    ctx: AppContext,
    node_id: int,
    strategy: str = "s2",
    dsk_pin: DskPinCallback | None = None,
) -> InclusionResult:
    """Replace a failed node with a new device that keeps its node id."""
    _check_strategy(strategy)
    _LOGGER.info("Replacing failed node %d", node_id)
    return await _run_inclusion(
        ctx, lambda session: session.replace_failed_node(node_id, strategy), dsk_pin
    )


async def exclude_device(ctx: AppContext) -> int | None:
    """Put the controller in exclusion mode. Returns the removed node id."""
    session = await ctx.session()
    removed: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_removed(data: dict) -> None:
        if not removed.done():
            removed.set_result(data["node"].node_id)

    unsub = session.on_controller("node removed", on_removed)
    try:
        await session.begin_exclusion()
        try:
            node_id = await asyncio.wait_for(
                asyncio.shield(removed), ctx.config.timing.inclusion_timeout_sec
            )
        except asyncio.TimeoutError:
            await session.stop_exclusion()
            return None
    finally:
        unsub()
    _LOGGER.info("Node %d excluded", node_id)
    return node_id


async def remove_failed_node(ctx: AppContext, node_id: int) -> None:
    """Remove a dead node from the controller's node list."""
    session = await ctx.session()
    node = session.get_node(node_id)
    if node.status != "dead":
        _LOGGER.warning(
            "Node %d is %s, the controller only removes failed nodes", node_id, node.status
        )
    await session.remove_failed_node(node_id)
    _LOGGER.info("Node %d removed", node_id)
