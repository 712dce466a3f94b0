"""Read-only node and network inspection.

Every field is read once, best-effort. A field that is missing or fails to
read is reported as "Unknown" instead of failing the whole report.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from commands import describe_lock_mode, field_value
from const import CC_BATTERY, CC_DOOR_LOCK, CC_USER_CODE, UNKNOWN
from context import AppContext
from errors import ZWaveLockError

_LOGGER = logging.getLogger(__name__)


def _safe(read: Callable[[], Any]) -> Any:
    """Read a field, returning "Unknown" when it is missing or fails."""
    try:
        value = read()
    except (AttributeError, KeyError, TypeError, ValueError, ZWaveLockError) as err:
        _LOGGER.debug("Field read failed: %s", err)
        return UNKNOWN
    if value is None or value == "":
        return UNKNOWN
    return value


def format_home_id(home_id: Any) -> str:
    if not isinstance(home_id, int):
        return UNKNOWN
    return f"0x{home_id:08x}"


def node_summary(node: Any) -> dict[str, Any]:
    """One line summary of a node for listings."""
    listening = _safe(lambda: node.is_listening)
    return {
        "node_id": node.node_id,
        "name": _safe(lambda: node.name),
        "manufacturer": _safe(lambda: node.manufacturer),
        "product": _safe(lambda: node.product),
        "power": UNKNOWN if listening == UNKNOWN else ("mains" if listening else "battery"),
        "status": _safe(lambda: node.status),
        "ready": _safe(lambda: node.ready),
        "secure": _safe(lambda: node.is_secure),
        "security_class": _safe(lambda: node.security_class),
        "is_lock": _safe(lambda: node.supports(CC_DOOR_LOCK)),
    }


async def list_nodes(ctx: AppContext) -> list[dict[str, Any]]:
    session = await ctx.session()
    return [node_summary(node) for node in session.nodes()]


async def inspect_node(ctx: AppContext, node_id: int) -> dict[str, Any]:
    """Detailed metadata of a single node."""
    session = await ctx.session()
    node = session.get_node(node_id)
    report = {
        "basic": {
            "node_id": node.node_id,
            "name": _safe(lambda: node.name),
            "location": _safe(lambda: node.location),
            "status": _safe(lambda: node.status),
            "ready": _safe(lambda: node.ready),
            "interview_stage": _safe(lambda: node.interview_stage),
        },
        "device": {
            "manufacturer": _safe(lambda: node.manufacturer),
            "manufacturer_id": _safe(lambda: node.manufacturer_id),
            "product": _safe(lambda: node.product_label),
            "description": _safe(lambda: node.product),
            "product_id": _safe(lambda: node.product_id),
            "product_type": _safe(lambda: node.product_type),
            "device_class": _safe(lambda: node.device_class),
        },
        "capabilities": {
            "listening": _safe(lambda: node.is_listening),
            "secure": _safe(lambda: node.is_secure),
            "security_class": _safe(lambda: node.security_class),
        },
        "firmware": {
            "version": _safe(lambda: node.firmware_version),
        },
        "command_classes": _safe(lambda: node.command_classes),
    }
    if _safe(lambda: node.is_controller) is True:
        report["controller"] = network_info_from_session(session)
    return report


def network_info_from_session(session: Any) -> dict[str, Any]:
    info = _safe(session.controller_info)
    if info == UNKNOWN:
        info = {}
    return {
        "home_id": format_home_id(info.get("home_id")),
        "own_node_id": info.get("own_node_id") or UNKNOWN,
        "node_count": info.get("node_count", UNKNOWN),
        "is_primary": info.get("is_primary", UNKNOWN),
        "is_suc": info.get("is_suc", UNKNOWN),
        "sdk_version": info.get("sdk_version") or UNKNOWN,
        "firmware_version": info.get("firmware_version") or UNKNOWN,
        "controller_type": info.get("controller_type") or UNKNOWN,
        "server_version": info.get("server_version") or UNKNOWN,
        "driver_version": info.get("driver_version") or UNKNOWN,
    }


async def network_info(ctx: AppContext) -> dict[str, Any]:
    session = await ctx.session()
    return network_info_from_session(session)


def _node_checks(node: Any) -> dict[str, Any]:
    supports_lock = _safe(lambda: node.supports(CC_DOOR_LOCK)) is True
    return {
        **node_summary(node),
        "interview_stage": _safe(lambda: node.interview_stage),
        "door_lock_cc": supports_lock,
        "user_code_cc": _safe(lambda: node.supports(CC_USER_CODE)) is True,
        "battery_cc": _safe(lambda: node.supports(CC_BATTERY)) is True,
    }


def recommendations(nodes: list[dict[str, Any]]) -> list[str]:
    """Operator advice derived from per-node checks."""
    advice = []
    for info in nodes:
        node_id = info["node_id"]
        if info["door_lock_cc"] and info["secure"] is not True:
            advice.append(
                f"Node {node_id} is a door lock paired without security. "
                "Exclude it and pair again with S2 (or S0 for older locks)."
            )
        if info["ready"] is not True:
            advice.append(
                f"Node {node_id} interview incomplete (stage {info['interview_stage']}). "
                "Battery devices may need to be woken up."
            )
    return advice


async def run_diagnostics(ctx: AppContext) -> dict[str, Any]:
    """Controller, security key and per-node diagnostics with recommendations."""
    session = await ctx.session()
    keys = ctx.config.security_keys
    nodes = [
        _node_checks(node)
        for node in session.nodes()
        if _safe(lambda: node.is_controller) is not True
    ]
    return {
        "controller": network_info_from_session(session),
        "security_keys": {
            name: name in keys.configured()
            for name in keys.to_dict()
        },
        "connection": ctx.connection.get_diagnostics(),
        "nodes": nodes,
        "recommendations": recommendations(nodes),
    }


async def test_lock(ctx: AppContext, node_id: int) -> dict[str, Any]:
    """Check that a lock is ready, secure and answering."""
    node = await ctx.node(node_id)
    report: dict[str, Any] = {
        "node_id": node_id,
        "ready": _safe(lambda: node.ready),
        "secure": _safe(lambda: node.is_secure),
        "status": _safe(lambda: node.status),
        "door_lock_cc": node.supports(CC_DOOR_LOCK),
        "ping": None,
        "lock_state": UNKNOWN,
        "next_steps": [],
    }
    if not report["door_lock_cc"]:
        report["next_steps"].append("This device does not support the Door Lock command class.")
        return report

    try:
        report["ping"] = await node.ping()
    except ZWaveLockError as err:
        report["ping"] = False
        report["ping_error"] = str(err)

    try:
        state = await node.invoke(CC_DOOR_LOCK, "get")
        mode = field_value(state, "currentMode")
        report["lock_state"] = describe_lock_mode(mode)
    except ZWaveLockError as err:
        report["lock_state_error"] = str(err)

    if report["ready"] is not True:
        report["next_steps"] += [
            "Wait for the node interview to complete",
            "Wake the lock by pressing a button",
            "Run diagnostics again",
        ]
    elif report["secure"] is not True:
        report["next_steps"] += [
            "Exclude the lock",
            "Pair it again with S2 and enter the DSK PIN when prompted",
        ]
    else:
        report["next_steps"] += [f"lock {node_id}", f"unlock {node_id}"]
    return report


async def wait_for_interview(node: Any, timeout: float) -> bool:
    """Wait for a node interview to finish.

    Returns False when the timeout elapses or the interview fails. A timeout
    does not mean failure: the device may finish later.
    """
    if node.ready:
        return True
    finished = asyncio.Event()
    outcome = {"ok": False}

    def on_done(_data: Any, ok: bool = True) -> None:
        outcome["ok"] = ok
        finished.set()

    unsubscribers = [
        node.on("ready", on_done),
        node.on("interview completed", on_done),
        node.on("interview failed", lambda data: on_done(data, ok=False)),
    ]
    try:
        await asyncio.wait_for(finished.wait(), timeout)
    except asyncio.TimeoutError:
        _LOGGER.info("Interview of node %d not complete after %gs", node.node_id, timeout)
        return bool(node.ready)
    finally:
        for unsub in unsubscribers:
            unsub()
    return outcome["ok"]
