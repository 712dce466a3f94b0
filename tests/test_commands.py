from __future__ import annotations

from types import SimpleNamespace

import pytest

import commands
from const import (
    CC_CONFIGURATION,
    CC_DOOR_LOCK,
    CC_USER_CODE,
    DOOR_LOCK_SECURED,
    DOOR_LOCK_UNSECURED,
    USER_ID_STATUS_DISABLED,
)
from errors import InvalidFormatError, NotFoundError, UnreachableError, UnsupportedCommandClassError

from conftest import FakeLock, FakeNode


@pytest.mark.parametrize(
    "response", [{"currentMode": 255}, SimpleNamespace(currentMode=255)]
)
def test_field_value_reads_dicts_and_models(response) -> None:
    assert commands.field_value(response, "currentMode") == 255
    assert commands.field_value(response, "targetMode") is None


async def test_lock_and_unlock(ctx, lock: FakeLock) -> None:
    result = await commands.unlock_door(ctx, 8)
    assert lock.mode == DOOR_LOCK_UNSECURED
    assert result.state == "unlocked"
    assert result.current_mode == DOOR_LOCK_UNSECURED

    result = await commands.lock_door(ctx, 8)
    assert lock.mode == DOOR_LOCK_SECURED
    assert result.state == "locked"
    assert result.to_dict()["action"] == "lock"


async def test_lock_read_back_failure_does_not_fail(ctx, lock: FakeLock) -> None:
    lock.fail_lock_get = True

    result = await commands.lock_door(ctx, 8)

    assert lock.mode == DOOR_LOCK_SECURED
    assert result.state == "unknown"
    assert result.current_mode is None


async def test_lock_command_failure_propagates(ctx, lock: FakeLock) -> None:
    def fail(command_class, method, *args):
        raise UnreachableError("node asleep")

    lock.handle = fail

    with pytest.raises(UnreachableError):
        await commands.lock_door(ctx, 8)


async def test_lock_unknown_node(ctx) -> None:
    with pytest.raises(NotFoundError):
        await commands.lock_door(ctx, 99)


async def test_lock_on_node_without_door_lock(ctx, session) -> None:
    session.add_node(FakeNode(12, (CC_USER_CODE,)))

    with pytest.raises(UnsupportedCommandClassError):
        await commands.unlock_door(ctx, 12)


async def test_get_user_codes_lists_non_available_slots(ctx, lock: FakeLock) -> None:
    lock.occupy(1, "9876")
    lock.occupy(4, "2468")
    lock.slots[7] = (USER_ID_STATUS_DISABLED, "")
    ctx.codes.save(4, "Dog walker", "2468")

    listing = await commands.get_user_codes(ctx, 8)

    assert listing.max_slots == 30
    assert [s.slot for s in listing.slots] == [1, 4, 7]
    assert listing.slots[1].label == "Dog walker"
    assert listing.slots[2].status_name == "Reserved"
    assert listing.failed_slots == []
    assert "2468" not in str(listing.to_dict())


async def test_get_user_codes_continues_past_failed_slots(ctx, lock: FakeLock) -> None:
    lock.occupy(2, "1111")
    lock.occupy(6, "2222")
    lock.unreachable_slots = {3, 4}

    listing = await commands.get_user_codes(ctx, 8)

    assert [s.slot for s in listing.slots] == [2, 6]
    assert listing.failed_slots == [3, 4]
    assert len(lock.method_calls(CC_USER_CODE, "get")) == 30


async def test_get_user_codes_default_ceiling(ctx, lock: FakeLock) -> None:
    lock.users_count = None

    listing = await commands.get_user_codes(ctx, 8, limit=10)

    assert listing.max_slots == 10
    assert len(lock.method_calls(CC_USER_CODE, "get")) == 10


async def test_get_user_codes_uses_reported_count(ctx, lock: FakeLock) -> None:
    lock.users_count = 12

    listing = await commands.get_user_codes(ctx, 8)

    assert listing.max_slots == 12


async def test_delete_never_set_slot_is_noop(ctx, lock: FakeLock) -> None:
    result = await commands.delete_user_code(ctx, 8, 9)

    assert result.device_cleared is True
    assert result.removed_from_store is False
    assert result.error is None


async def test_delete_removes_store_entry_even_when_lock_fails(ctx, lock: FakeLock) -> None:
    ctx.codes.save(3, "Guest", "4321")
    lock.occupy(3, "4321")
    original = lock._user_code

    def unreachable_clear(method, *args):
        if method == "clear":
            raise UnreachableError("clear timed out")
        return original(method, *args)

    lock._user_code = unreachable_clear

    result = await commands.delete_user_code(ctx, 8, 3)

    assert result.device_cleared is False
    assert result.removed_from_store is True
    assert "timed out" in result.error
    assert ctx.codes.get(3) is None


async def test_delete_clears_lock_slot(ctx, lock: FakeLock) -> None:
    lock.occupy(3, "4321")
    ctx.codes.save(3, "Guest", "4321")

    result = await commands.delete_user_code(ctx, 8, 3)

    assert result.device_cleared is True
    assert result.removed_from_store is True
    assert 3 not in lock.slots


async def test_get_status(ctx, lock: FakeLock) -> None:
    report = await commands.get_status(ctx, 8)

    assert report.name == "Front Door"
    assert report.lock_state == "locked"
    assert report.battery_level == 87
    assert report.online is True
    assert report.manufacturer == "Allegion"


async def test_get_status_tolerates_failed_reads(ctx, lock: FakeLock) -> None:
    lock.fail_lock_get = True
    lock.status = "dead"

    report = await commands.get_status(ctx, 8)

    assert report.lock_state == "unknown"
    assert report.online is False
    assert report.battery_level == 87


async def test_code_length(ctx, lock: FakeLock) -> None:
    lock.occupy(1, "1234")

    assert await commands.get_code_length(ctx, 8) == 4
    await commands.set_code_length(ctx, 8, 6)

    assert lock.method_calls(CC_CONFIGURATION, "set") == [
        (CC_CONFIGURATION, "set", {"parameter": 16, "value": 6})
    ]
    assert await commands.get_code_length(ctx, 8) == 6
    assert lock.slots == {}


@pytest.mark.parametrize("length", [3, 9])
async def test_code_length_bounds(ctx, lock: FakeLock, length: int) -> None:
    with pytest.raises(InvalidFormatError):
        await commands.set_code_length(ctx, 8, length)
    assert lock.calls == []


async def test_reinterview(ctx, lock: FakeLock) -> None:
    await commands.reinterview_node(ctx, 8)
    assert lock.refreshed == 1


def test_describe_lock_mode() -> None:
    assert commands.describe_lock_mode(0xFF) == "locked"
    assert commands.describe_lock_mode(0x00) == "unlocked"
    assert commands.describe_lock_mode(0x01) == "unlocked"
    assert commands.describe_lock_mode(0xFE) == "unknown"
    assert commands.describe_lock_mode(None) == "unknown"
    assert commands.lock_mode_name(0xFF) == "Secured"


async def test_door_lock_calls_are_recorded(ctx, lock: FakeLock) -> None:
    await commands.lock_door(ctx, 8)
    assert lock.method_calls(CC_DOOR_LOCK, "set") == [(CC_DOOR_LOCK, "set", DOOR_LOCK_SECURED)]
