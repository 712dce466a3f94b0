"""Lock command workflows.

Lock, unlock and user code operations against a single node. User code
writes are verified by re-reading the slot status after a settle delay,
because locks silently ignore codes they do not accept (duplicates,
policy violations) and never hand the code back in plaintext.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from code_store import validate_pin
from const import (
    CC_BATTERY,
    CC_CONFIGURATION,
    CC_DOOR_LOCK,
    CC_USER_CODE,
    COMMAND_CLASS_NAMES,
    DEFAULT_MAX_SLOTS,
    DOOR_LOCK_MODE_NAMES,
    DOOR_LOCK_SECURED,
    DOOR_LOCK_UNKNOWN,
    DOOR_LOCK_UNSECURED,
    MAX_CODE_LENGTH,
    MAX_SLOT,
    MIN_CODE_LENGTH,
    MIN_SLOT,
    SUPERVISION_STATUS_NAMES,
    UNKNOWN,
    USER_CODE_LENGTH_PARAMETER,
    USER_ID_STATUS_AVAILABLE,
    USER_ID_STATUS_ENABLED,
    USER_ID_STATUS_NAMES,
)
from context import AppContext
from errors import (
    CommandRejectedError,
    InvalidFormatError,
    UnreachableError,
    UnsupportedCommandClassError,
    ZWaveLockError,
)
from models import (
    DeleteCodeResult,
    LockResult,
    LockStatusReport,
    SetCodeOutcome,
    SetCodeResult,
    SlotStatus,
    UserCodeListing,
)

_LOGGER = logging.getLogger(__name__)


def _require(node: Any, command_class: int) -> None:
    if not node.supports(command_class):
        raise UnsupportedCommandClassError(
            f"Node {node.node_id} does not support "
            f"{COMMAND_CLASS_NAMES.get(command_class, command_class)} command class"
        )


def validate_slot(slot: int) -> int:
    if not isinstance(slot, int) or not MIN_SLOT <= slot <= MAX_SLOT:
        raise InvalidFormatError(f"Slot must be between {MIN_SLOT} and {MAX_SLOT}")
    return slot


def describe_lock_mode(mode: int | None) -> str:
    """locked, unlocked or unknown for a Door Lock CC mode."""
    if mode is None or mode == DOOR_LOCK_UNKNOWN:
        return "unknown"
    return "locked" if mode == DOOR_LOCK_SECURED else "unlocked"


def field_value(response: Any, name: str) -> Any:
    """Read a field from a CC API response, a dict or a library model."""
    if isinstance(response, dict):
        return response.get(name)
    return getattr(response, name, None)


async def read_slot_status(node: Any, slot: int) -> int:
    """Query one slot. Raises UnreachableError when the lock does not answer."""
    response = await node.invoke(CC_USER_CODE, "get", slot)
    status = field_value(response, "userIdStatus")
    if status is None:
        raise UnreachableError(f"No user code report for slot {slot}")
    return int(status)


# Lock / unlock


async def _set_lock_mode(ctx: AppContext, node_id: int, mode: int, action: str) -> LockResult:
    node = await ctx.node(node_id)
    _require(node, CC_DOOR_LOCK)
    _LOGGER.info("%s node %d", "Locking" if mode == DOOR_LOCK_SECURED else "Unlocking", node_id)
    await node.invoke(CC_DOOR_LOCK, "set", mode)
    result = LockResult(node_id=node_id, action=action)

    # Read-back is best-effort; the acknowledged set is the success signal
    try:
        report = await node.invoke(CC_DOOR_LOCK, "get")
        current = field_value(report, "currentMode")
        if current is not None:
            result.current_mode = int(current)
        result.state = describe_lock_mode(result.current_mode)
    except ZWaveLockError as err:
        _LOGGER.debug("Lock state read-back failed on node %d: %s", node_id, err)
    return result


async def lock_door(ctx: AppContext, node_id: int) -> LockResult:
    return await _set_lock_mode(ctx, node_id, DOOR_LOCK_SECURED, "lock")


async def unlock_door(ctx: AppContext, node_id: int) -> LockResult:
    return await _set_lock_mode(ctx, node_id, DOOR_LOCK_UNSECURED, "unlock")


async def get_status(ctx: AppContext, node_id: int) -> LockStatusReport:
    """Lock state, battery and device info. Each read is best-effort."""
    node = await ctx.node(node_id)
    report = LockStatusReport(
        node_id=node_id,
        name=node.name or UNKNOWN,
        status=node.status,
        online=node.status != "dead",
        ready=node.ready,
        secure=node.is_secure,
        security_class=node.security_class,
        manufacturer=node.manufacturer or UNKNOWN,
        product=node.product or UNKNOWN,
    )
    if node.supports(CC_DOOR_LOCK):
        try:
            state = await node.invoke(CC_DOOR_LOCK, "get")
            current = field_value(state, "currentMode")
            if current is not None:
                report.current_mode = int(current)
            report.lock_state = describe_lock_mode(report.current_mode)
        except ZWaveLockError as err:
            _LOGGER.debug("Door lock read failed on node %d: %s", node_id, err)
    if node.supports(CC_BATTERY):
        try:
            battery = await node.invoke(CC_BATTERY, "get")
            level = field_value(battery, "level")
            if level is not None:
                report.battery_level = int(level)
        except ZWaveLockError as err:
            _LOGGER.debug("Battery read failed on node %d: %s", node_id, err)
    return report


# User codes


async def get_user_codes(ctx: AppContext, node_id: int, limit: int | None = None) -> UserCodeListing:
    """Enumerate slots that are not available.

    Every slot is queried on its own; a failed query is recorded in
    ``failed_slots`` and enumeration continues.
    """
    node = await ctx.node(node_id)
    _require(node, CC_USER_CODE)

    max_slots = DEFAULT_MAX_SLOTS
    try:
        count = await node.invoke(CC_USER_CODE, "getUsersCount")
        if count:
            max_slots = int(count)
    except ZWaveLockError as err:
        _LOGGER.debug("Users count unavailable on node %d: %s", node_id, err)
    if limit:
        max_slots = min(max_slots, limit)
    _LOGGER.info("Querying %d slots on node %d", max_slots, node_id)

    listing = UserCodeListing(node_id=node_id, max_slots=max_slots)
    labels = {entry["slot"]: entry["label"] for entry in ctx.codes.list_all()}
    for slot in range(1, max_slots + 1):
        try:
            status = await read_slot_status(node, slot)
        except ZWaveLockError as err:
            _LOGGER.warning("Slot %d query failed: %s", slot, err)
            listing.failed_slots.append(slot)
            continue
        if status != USER_ID_STATUS_AVAILABLE:
            listing.slots.append(SlotStatus(slot, status, labels.get(slot)))
    return listing


def _supervision_detail(response: Any) -> str:
    status = field_value(response, "status")
    if status is None:
        return "no supervision report"
    return f"supervision {SUPERVISION_STATUS_NAMES.get(status, status)}"


async def _try_read(node: Any, slot: int, result: SetCodeResult, step: str) -> int | None:
    try:
        status = await read_slot_status(node, slot)
    except ZWaveLockError as err:
        result.add_step(step, False, str(err))
        return None
    result.add_step(step, True, USER_ID_STATUS_NAMES.get(status, str(status)))
    return status


async def set_user_code(
    ctx: AppContext,
    node_id: int,
    slot: int,
    pin: str,
    label: str = "",
) -> SetCodeResult:
    """Set a PIN on a slot and verify the lock accepted it.

    Only a confirmed code is written to the code store. Rejections and
    unreachable outcomes leave the store untouched.
    """
    validate_pin(pin)
    validate_slot(slot)
    node = await ctx.node(node_id)
    _require(node, CC_USER_CODE)

    timing = ctx.config.timing
    result = SetCodeResult(node_id=node_id, slot=slot)

    try:
        caps = await node.invoke(CC_USER_CODE, "getCapabilities")
        result.add_step("capabilities", True, _describe_capabilities(caps))
    except ZWaveLockError as err:
        result.add_step("capabilities", False, str(err))

    result.status_before = await _try_read(node, slot, result, "read_before")

    if ctx.config.clears_before_set(node_id):
        try:
            await node.invoke(CC_USER_CODE, "clear", slot)
            result.add_step("clear", True)
        except ZWaveLockError as err:
            result.add_step("clear", False, str(err))
        await asyncio.sleep(timing.clear_settle_sec)
        result.status_before = await _try_read(node, slot, result, "read_after_clear")

    _LOGGER.info("Setting code on node %d slot %d", node_id, slot)
    try:
        response = await node.invoke(CC_USER_CODE, "set", slot, USER_ID_STATUS_ENABLED, pin)
    except UnreachableError as err:
        # The write may or may not have landed
        result.add_step("set", False, str(err))
        result.outcome = SetCodeOutcome.DEVICE_UNREACHABLE
        return result
    except CommandRejectedError as err:
        result.add_step("set", False, str(err))
        result.outcome = SetCodeOutcome.REJECTED_UNKNOWN_REASON
        _LOGGER.warning("Node %d refused code for slot %d: %s", node_id, slot, err)
        return result
    result.add_step("set", True, _supervision_detail(response))

    result.add_step("settle", True, f"{timing.settle_delay_sec:g}s")
    await asyncio.sleep(timing.settle_delay_sec)

    try:
        result.status_after = await read_slot_status(node, slot)
    except ZWaveLockError as err:
        result.add_step("verify", False, str(err))
        result.outcome = SetCodeOutcome.DEVICE_UNREACHABLE
        _LOGGER.warning("Could not verify slot %d on node %d: %s", slot, node_id, err)
        return result

    status_name = USER_ID_STATUS_NAMES.get(result.status_after, str(result.status_after))
    if result.status_after == USER_ID_STATUS_ENABLED:
        result.add_step("verify", True, status_name)
        ctx.codes.save(slot, label or f"Slot {slot}", pin)
        result.add_step("store", True)
        result.outcome = SetCodeOutcome.CONFIRMED
        _LOGGER.info("Code confirmed on node %d slot %d", node_id, slot)
        return result

    result.add_step("verify", False, status_name)
    result.duplicate_slots = ctx.codes.slots_with_pin(pin, exclude_slot=slot)
    if result.duplicate_slots:
        result.outcome = SetCodeOutcome.REJECTED_LIKELY_DUPLICATE
    else:
        result.outcome = SetCodeOutcome.REJECTED_UNKNOWN_REASON
    _LOGGER.warning(
        "Node %d ignored code for slot %d (%s)", node_id, slot, result.outcome.value
    )
    return result


def _describe_capabilities(caps: Any) -> str:
    if not caps:
        return "no report"
    parts = []
    for name in ("supportedUserIDStatuses", "supportedKeypadModes", "supportedASCIIChars"):
        value = field_value(caps, name)
        if value is not None:
            parts.append(f"{name}={value}")
    return ", ".join(parts) or "reported"


async def delete_user_code(ctx: AppContext, node_id: int, slot: int) -> DeleteCodeResult:
    """Clear a slot on the lock and drop it from the code store.

    The store entry is removed whether or not the lock acknowledged; a stale
    code left on the lock is safe, a stale record of intent is not useful.
    """
    validate_slot(slot)
    node = await ctx.node(node_id)
    device_cleared = False
    error = None
    try:
        _require(node, CC_USER_CODE)
        await node.invoke(CC_USER_CODE, "clear", slot)
        device_cleared = True
    except (UnreachableError, UnsupportedCommandClassError) as err:
        error = str(err)
        _LOGGER.warning("Clear slot %d on node %d failed: %s", slot, node_id, err)
    removed = ctx.codes.delete(slot)
    return DeleteCodeResult(
        node_id=node_id,
        slot=slot,
        device_cleared=device_cleared,
        removed_from_store=removed,
        error=error,
    )


# Configuration


async def get_code_length(ctx: AppContext, node_id: int) -> int | None:
    """Read the configured user code length, None when the lock does not say."""
    node = await ctx.node(node_id)
    _require(node, CC_CONFIGURATION)
    value = await node.invoke(CC_CONFIGURATION, "get", USER_CODE_LENGTH_PARAMETER)
    if isinstance(value, dict):
        value = value.get("value")
    return int(value) if value is not None else None


async def set_code_length(ctx: AppContext, node_id: int, length: int) -> None:
    """Set the user code length. The lock wipes all user codes when it changes."""
    if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
        raise InvalidFormatError(
            f"Code length must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH} digits"
        )
    node = await ctx.node(node_id)
    _require(node, CC_CONFIGURATION)
    _LOGGER.warning("Setting code length on node %d to %d, existing codes are erased", node_id, length)
    await node.invoke(
        CC_CONFIGURATION,
        "set",
        {"parameter": USER_CODE_LENGTH_PARAMETER, "value": length},
    )


async def reinterview_node(ctx: AppContext, node_id: int) -> None:
    """Ask the driver to interview a node again."""
    node = await ctx.node(node_id)
    if node.can_sleep:
        _LOGGER.info(
            "Node %d sleeps on battery, wake it now (%gs grace)",
            node_id,
            ctx.config.timing.wake_grace_sec,
        )
        await asyncio.sleep(ctx.config.timing.wake_grace_sec)
    await node.refresh_info()
    _LOGGER.info("Re-interview of node %d started", node_id)


def lock_mode_name(mode: int | None) -> str:
    if mode is None:
        return UNKNOWN
    return DOOR_LOCK_MODE_NAMES.get(mode, str(mode))
