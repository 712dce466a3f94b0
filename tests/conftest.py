from __future__ import annotations

from typing import Any, Callable

import pytest

from code_store import CodeCipher, CodeStore
from config import Config, Timing
from const import (
    CC_BATTERY,
    CC_CONFIGURATION,
    CC_DOOR_LOCK,
    CC_USER_CODE,
    DOOR_LOCK_SECURED,
    SUPERVISION_SUCCESS,
    USER_ID_STATUS_AVAILABLE,
    USER_ID_STATUS_ENABLED,
)
from context import AppContext
from errors import (
    CommandRejectedError,
    NotFoundError,
    UnreachableError,
    UnsupportedCommandClassError,
)

TEST_KEY = bytes(range(32))


class Emitter:
    def __init__(self) -> None:
        self.listeners: dict[str, list[Callable]] = {}

    def on(self, event: str, callback: Callable) -> Callable[[], None]:
        self.listeners.setdefault(event, []).append(callback)
        return lambda: self.listeners[event].remove(callback)

    def emit(self, event: str, data: dict | None = None) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback(data or {})


class FakeNode(Emitter):
    """Duck-typed stand-in for NodeProxy."""

    def __init__(
        self,
        node_id: int,
        command_classes: tuple[int, ...] = (),
        *,
        name: str | None = None,
        status: str = "alive",
        ready: bool = True,
        is_secure: bool = True,
        security_class: str = "S2_AccessControl",
        is_listening: bool | None = False,
        is_controller: bool = False,
        manufacturer: str | None = "Allegion",
        product: str | None = "BE469ZP Connect Smart Deadbolt",
    ) -> None:
        super().__init__()
        self.node_id = node_id
        self._ccs = set(command_classes)
        self.name = name
        self.location = None
        self.status = status
        self.ready = ready
        self.is_secure = is_secure
        self.security_class = security_class
        self.interview_stage = "Complete" if ready else "ProtocolInfo"
        self.is_listening = is_listening
        self.can_sleep = is_listening is False
        self.is_controller = is_controller
        self.manufacturer = manufacturer
        self.product = product
        self.product_label = "BE469ZP"
        self.manufacturer_id = 0x003B
        self.product_id = 0x0001
        self.product_type = 0x0001
        self.firmware_version = "0.11.0"
        self.device_class = {"basic": "Routing Slave", "generic": "Entry Control", "specific": "Secure Keypad Door Lock"}
        self.calls: list[tuple] = []
        self.pinged = 0
        self.refreshed = 0
        self.keep_awake: bool | None = None

    @property
    def command_classes(self) -> list[dict[str, Any]]:
        return [{"id": cc, "name": str(cc), "version": 1, "secure": True} for cc in sorted(self._ccs)]

    def supports(self, command_class: int) -> bool:
        return command_class in self._ccs

    async def invoke(self, command_class: int, method: str, *args: Any) -> Any:
        self.calls.append((command_class, method, *args))
        if command_class not in self._ccs:
            raise UnsupportedCommandClassError(f"CC {command_class} not supported")
        return self.handle(command_class, method, *args)

    def handle(self, command_class: int, method: str, *args: Any) -> Any:
        raise UnreachableError(f"{method} not simulated")

    async def ping(self) -> bool:
        self.pinged += 1
        return True

    async def refresh_info(self) -> None:
        self.refreshed += 1

    async def set_keep_awake(self, keep_awake: bool) -> None:
        self.keep_awake = keep_awake

    def method_calls(self, command_class: int, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == command_class and c[1] == method]


class FakeLock(FakeNode):
    """A keypad deadbolt that behaves like the real hardware.

    Duplicate PINs are silently ignored, as are all writes when
    ``ignore_set`` is on. ``unreachable_slots`` never answer a get.
    """

    def __init__(self, node_id: int = 8, **kwargs: Any) -> None:
        super().__init__(
            node_id,
            (CC_DOOR_LOCK, CC_USER_CODE, CC_BATTERY, CC_CONFIGURATION),
            **kwargs,
        )
        self.mode = DOOR_LOCK_SECURED
        self.users_count: int | None = 30
        self.slots: dict[int, tuple[int, str]] = {}
        self.battery = 87
        self.code_length = 4
        self.ignore_set = False
        self.fail_set = False
        self.reject_set = False
        self.fail_lock_get = False
        self.unreachable_slots: set[int] = set()
        self.sleep_after_set = False
        self._asleep = False

    def handle(self, command_class: int, method: str, *args: Any) -> Any:
        if command_class == CC_DOOR_LOCK:
            if method == "set":
                self.mode = args[0]
                return None
            if method == "get":
                if self.fail_lock_get:
                    raise UnreachableError("door lock get timed out")
                return {"currentMode": self.mode}
        if command_class == CC_USER_CODE:
            return self._user_code(method, *args)
        if command_class == CC_BATTERY and method == "get":
            return {"level": self.battery}
        if command_class == CC_CONFIGURATION:
            if method == "get":
                return self.code_length
            if method == "set":
                self.code_length = args[0]["value"]
                self.slots.clear()
                return None
        return super().handle(command_class, method, *args)

    def _user_code(self, method: str, *args: Any) -> Any:
        if method == "getUsersCount":
            return self.users_count
        if method == "getCapabilities":
            return {"supportedUserIDStatuses": [0, 1, 2], "supportedASCIIChars": "0123456789"}
        if method == "get":
            slot = args[0]
            if self._asleep or slot in self.unreachable_slots:
                raise UnreachableError(f"node {self.node_id} did not respond")
            status, code = self.slots.get(slot, (USER_ID_STATUS_AVAILABLE, ""))
            return {"userIdStatus": status, "userCode": code}
        if method == "set":
            slot, status, code = args
            if self.fail_set:
                raise UnreachableError("set timed out")
            if self.reject_set:
                raise CommandRejectedError("set: Argument is invalid")
            if self.sleep_after_set:
                self._asleep = True
            duplicate = any(
                c == code for s, (st, c) in self.slots.items() if s != slot and st != USER_ID_STATUS_AVAILABLE
            )
            if not self.ignore_set and not duplicate:
                self.slots[slot] = (status, code)
            return {"status": SUPERVISION_SUCCESS}
        if method == "clear":
            self.slots.pop(args[0], None)
            return None
        return super().handle(CC_USER_CODE, method, *args)

    def occupy(self, slot: int, code: str) -> None:
        self.slots[slot] = (USER_ID_STATUS_ENABLED, code)


class FakeSession(Emitter):
    """Duck-typed stand-in for ZWaveJSSession."""

    def __init__(self, nodes: list[FakeNode], on_event=None, on_lost=None) -> None:
        super().__init__()
        self._nodes = {node.node_id: node for node in nodes}
        self.on_event = on_event
        self.on_lost = on_lost
        self.closed = False
        self.calls: list[tuple] = []
        self.info = {
            "home_id": 0xE1A2B3C4,
            "own_node_id": 1,
            "node_count": len(self._nodes),
            "is_primary": True,
            "is_suc": True,
            "sdk_version": "7.18.1",
            "firmware_version": "7.18",
            "controller_type": None,
            "server_version": "1.33.0",
            "driver_version": "12.4.0",
        }

    def nodes(self) -> list[FakeNode]:
        return [self._nodes[n] for n in sorted(self._nodes)]

    def get_node(self, node_id: int) -> FakeNode:
        if node_id not in self._nodes:
            raise NotFoundError(f"Node {node_id} not found")
        return self._nodes[node_id]

    def add_node(self, node: FakeNode) -> None:
        self._nodes[node.node_id] = node

    def controller_info(self) -> dict[str, Any]:
        return dict(self.info)

    def on_controller(self, event: str, callback: Callable) -> Callable[[], None]:
        return self.on(event, callback)

    def wrap_node(self, node: FakeNode) -> FakeNode:
        return node

    async def begin_inclusion(self, strategy: str) -> bool:
        self.calls.append(("begin_inclusion", strategy))
        return True

    async def stop_inclusion(self) -> bool:
        self.calls.append(("stop_inclusion",))
        return True

    async def begin_exclusion(self) -> bool:
        self.calls.append(("begin_exclusion",))
        return True

    async def stop_exclusion(self) -> bool:
        self.calls.append(("stop_exclusion",))
        return True

    async def grant_requested_security_classes(self, requested: Any) -> None:
        self.calls.append(("grant", requested))

    async def validate_dsk_and_enter_pin(self, pin: str) -> None:
        self.calls.append(("dsk_pin", pin))

    async def remove_failed_node(self, node_id: int) -> None:
        self.get_node(node_id)
        self.calls.append(("remove_failed_node", node_id))
        del self._nodes[node_id]

    async def replace_failed_node(self, node_id: int, strategy: str) -> bool:
        self.get_node(node_id)
        self.calls.append(("replace_failed_node", node_id, strategy))
        return True

    async def close(self) -> None:
        self.closed = True


def make_connector(session: FakeSession, failures: int = 0):
    """Connector that fails ``failures`` times, then returns ``session``."""
    from errors import TransportError

    state = {"calls": 0}

    async def connector(config, on_event, on_lost):
        state["calls"] += 1
        if state["calls"] <= failures:
            raise TransportError(f"serial port busy ({state['calls']})")
        session.on_event = on_event
        session.on_lost = on_lost
        return session

    connector.state = state
    return connector


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        server_url="ws://localhost:3000",
        data_dir=str(tmp_path),
        timing=Timing(
            ready_timeout_sec=1.0,
            reconnect_delay_sec=0.01,
            settle_delay_sec=0,
            clear_settle_sec=0,
            interview_timeout_sec=0.2,
            inclusion_timeout_sec=0.2,
            wake_grace_sec=0,
        ),
    )


@pytest.fixture
def cipher() -> CodeCipher:
    return CodeCipher(TEST_KEY)


@pytest.fixture
def store(config: Config, cipher: CodeCipher) -> CodeStore:
    return CodeStore(config.codes_file, cipher)


@pytest.fixture
def lock() -> FakeLock:
    return FakeLock(8, name="Front Door")


@pytest.fixture
def controller_node() -> FakeNode:
    return FakeNode(1, is_controller=True, is_listening=True, manufacturer="Zooz", product="ZST10 700")


@pytest.fixture
def session(controller_node: FakeNode, lock: FakeLock) -> FakeSession:
    return FakeSession([controller_node, lock])


@pytest.fixture
async def ctx(config: Config, store: CodeStore, session: FakeSession):
    context = AppContext(config, store, connector=make_connector(session))
    yield context
    await context.shutdown()
