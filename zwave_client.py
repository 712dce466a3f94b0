"""Z-Wave JS server client session.

Wraps zwave-js-server-python: opens the WebSocket to the Z-Wave JS server,
waits for the driver to become ready and exposes nodes through NodeProxy,
which turns library exceptions into this project's error types.

The library is imported lazily so that the code store and configuration
commands work without it installed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import aiohttp

from config import Config
from const import REJECTED_ZWAVE_ERRORS, UNKNOWN
from errors import (
    CommandRejectedError,
    ConfigError,
    NotFoundError,
    TransportError,
    UnreachableError,
    UnsupportedCommandClassError,
    ZWaveLockError,
)
from events import NodeEvent, sanitize_args

_LOGGER = logging.getLogger(__name__)

NODE_EVENTS = (
    "value updated",
    "value notification",
    "notification",
    "wake up",
    "sleep",
    "dead",
    "alive",
    "interview completed",
    "interview failed",
)


def _import_zwave_js() -> SimpleNamespace:
    """Import zwave-js-server-python, raising ConfigError if not installed."""
    try:
        from zwave_js_server import exceptions
        from zwave_js_server.client import Client
        from zwave_js_server.const import CommandClass, InclusionStrategy, SecurityClass
        from zwave_js_server.model.controller import InclusionGrant
    except ImportError as err:
        raise ConfigError(
            "zwave-js-server-python is not installed "
            "(pip install 'zwave-lock[zwave]')"
        ) from err
    return SimpleNamespace(
        Client=Client,
        CommandClass=CommandClass,
        InclusionStrategy=InclusionStrategy,
        SecurityClass=SecurityClass,
        InclusionGrant=InclusionGrant,
        exceptions=exceptions,
    )


def _translate(lib: SimpleNamespace, err: Exception, what: str) -> ZWaveLockError:
    """Map a zwave-js-server-python exception to our error types."""
    exc = lib.exceptions
    if isinstance(err, exc.NotFoundError):
        return UnsupportedCommandClassError(f"{what}: {err}")
    if isinstance(err, exc.FailedZWaveCommand):
        message = f"{what}: {err.zwave_error_message or err}"
        if getattr(err, "zwave_error_code", None) in REJECTED_ZWAVE_ERRORS:
            return CommandRejectedError(message)
        # Timeouts, dropped messages and sleeping nodes
        return UnreachableError(message)
    return UnreachableError(f"{what}: {err}")


def _name(value: Any) -> str:
    """Readable name of an enum-like value."""
    if value is None:
        return UNKNOWN
    name = getattr(value, "name", None)
    return name if name else str(value)


class NodeProxy:
    """A Z-Wave node as seen by the lock workflows."""

    def __init__(self, node: Any, lib: SimpleNamespace):
        self._node = node
        self._lib = lib

    @property
    def node_id(self) -> int:
        return self._node.node_id

    @property
    def name(self) -> str | None:
        return self._node.name

    @property
    def location(self) -> str | None:
        return self._node.location

    @property
    def status(self) -> str:
        """alive, asleep, awake, dead or unknown."""
        return _name(self._node.status).lower()

    @property
    def ready(self) -> bool:
        return bool(self._node.ready)

    @property
    def is_secure(self) -> bool:
        return bool(self._node.is_secure)

    @property
    def security_class(self) -> str:
        highest = self._node.highest_security_class
        return _name(highest) if highest is not None else "None"

    @property
    def interview_stage(self) -> str | None:
        return self._node.interview_stage

    @property
    def is_listening(self) -> bool | None:
        return self._node.is_listening

    @property
    def can_sleep(self) -> bool:
        return self._node.is_listening is False and not self._node.is_frequent_listening

    @property
    def is_controller(self) -> bool:
        return bool(self._node.is_controller_node)

    @property
    def manufacturer(self) -> str | None:
        config = self._node.device_config
        return config.manufacturer if config else None

    @property
    def product(self) -> str | None:
        config = self._node.device_config
        if not config:
            return None
        return config.description or config.label

    @property
    def product_label(self) -> str | None:
        config = self._node.device_config
        return config.label if config else None

    @property
    def manufacturer_id(self) -> int | None:
        return self._node.manufacturer_id

    @property
    def product_id(self) -> int | None:
        return self._node.product_id

    @property
    def product_type(self) -> int | None:
        return self._node.product_type

    @property
    def firmware_version(self) -> str | None:
        return self._node.firmware_version

    @property
    def device_class(self) -> dict[str, str | None]:
        device_class = self._node.device_class
        if device_class is None:
            return {"basic": None, "generic": None, "specific": None}
        return {
            "basic": device_class.basic.label,
            "generic": device_class.generic.label,
            "specific": device_class.specific.label,
        }

    @property
    def command_classes(self) -> list[dict[str, Any]]:
        return [
            {
                "id": cc.id,
                "name": cc.name,
                "version": cc.version,
                "secure": cc.is_secure,
            }
            for cc in self._node.command_classes
        ]

    def supports(self, command_class: int) -> bool:
        return any(cc.id == command_class for cc in self._node.command_classes)

    async def invoke(self, command_class: int, method: str, *args: Any) -> Any:
        """Invoke a command class API method and wait for the result."""
        what = f"node {self.node_id} CC {command_class}.{method}"
        _LOGGER.debug("Invoking %s", what)
        try:
            return await self._node.async_invoke_cc_api(
                self._lib.CommandClass(command_class),
                method,
                *args,
                wait_for_result=True,
            )
        except self._lib.exceptions.BaseZwaveJSServerError as err:
            raise _translate(self._lib, err, what) from err

    async def ping(self) -> bool:
        try:
            return bool(await self._node.async_ping())
        except self._lib.exceptions.BaseZwaveJSServerError as err:
            raise _translate(self._lib, err, f"ping node {self.node_id}") from err

    async def refresh_info(self) -> None:
        try:
            await self._node.async_refresh_info()
        except self._lib.exceptions.BaseZwaveJSServerError as err:
            raise _translate(self._lib, err, f"re-interview node {self.node_id}") from err

    async def set_keep_awake(self, keep_awake: bool) -> None:
        try:
            await self._node.async_set_keep_awake(keep_awake)
        except self._lib.exceptions.BaseZwaveJSServerError as err:
            raise _translate(self._lib, err, f"keep awake node {self.node_id}") from err

    def on(self, event: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        """Listen for a node event. Returns an unsubscribe callable."""
        return self._node.on(event, callback)


class ZWaveJSSession:
    """A ready connection to the Z-Wave JS server."""

    def __init__(
        self,
        client: Any,
        http_session: aiohttp.ClientSession,
        listen_task: asyncio.Task,
        lib: SimpleNamespace,
        on_event: Callable[[NodeEvent], None],
        on_lost: Callable[[Any, str], None],
    ):
        self._client = client
        self._http = http_session
        self._listen_task = listen_task
        self._lib = lib
        self._on_event = on_event
        self._on_lost = on_lost
        self._closing = False
        self._unsubscribers: list[Callable] = []
        self._attached: set[int] = set()
        listen_task.add_done_callback(self._on_listen_done)

    @property
    def controller(self) -> Any:
        return self._client.driver.controller

    def nodes(self) -> list[NodeProxy]:
        return [
            NodeProxy(node, self._lib)
            for _, node in sorted(self.controller.nodes.items())
        ]

    def get_node(self, node_id: int) -> NodeProxy:
        node = self.controller.nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found")
        return NodeProxy(node, self._lib)

    def controller_info(self) -> dict[str, Any]:
        controller = self.controller
        version = self._client.version
        # Attribute sets differ between library versions
        return {
            "home_id": getattr(controller, "home_id", None),
            "own_node_id": getattr(controller, "own_node_id", None),
            "node_count": len(controller.nodes),
            "is_primary": getattr(controller, "is_primary", None),
            "is_suc": getattr(controller, "is_suc", None),
            "sdk_version": getattr(controller, "sdk_version", None),
            "firmware_version": getattr(controller, "firmware_version", None),
            "controller_type": getattr(controller, "controller_type", None),
            "server_version": getattr(version, "server_version", None),
            "driver_version": getattr(version, "driver_version", None),
        }

    # Controller operations

    def _strategy(self, strategy: str) -> Any:
        strategies = {
            "s2": self._lib.InclusionStrategy.SECURITY_S2,
            "s0": self._lib.InclusionStrategy.SECURITY_S0,
            "insecure": self._lib.InclusionStrategy.INSECURE,
            "default": self._lib.InclusionStrategy.DEFAULT,
        }
        return strategies[strategy]

    async def _controller_call(self, what: str, coro) -> Any:
        try:
            return await coro
        except self._lib.exceptions.BaseZwaveJSServerError as err:
            raise _translate(self._lib, err, what) from err

    async def begin_inclusion(self, strategy: str) -> bool:
        return await self._controller_call(
            "begin inclusion",
            self.controller.async_begin_inclusion(self._strategy(strategy)),
        )

    async def stop_inclusion(self) -> bool:
        return await self._controller_call(
            "stop inclusion", self.controller.async_stop_inclusion()
        )

    async def begin_exclusion(self) -> bool:
        return await self._controller_call(
            "begin exclusion", self.controller.async_begin_exclusion()
        )

    async def stop_exclusion(self) -> bool:
        return await self._controller_call(
            "stop exclusion", self.controller.async_stop_exclusion()
        )

    async def grant_requested_security_classes(self, requested: Any) -> None:
        """Grant what the joining node asked for, with client side auth off."""
        grant = self._lib.InclusionGrant(requested.security_classes, False)
        await self._controller_call(
            "grant security classes",
            self.controller.async_grant_security_classes(grant),
        )

    async def validate_dsk_and_enter_pin(self, pin: str) -> None:
        await self._controller_call(
            "validate DSK",
            self.controller.async_validate_dsk_and_enter_pin(pin),
        )

    async def remove_failed_node(self, node_id: int) -> None:
        node = self.get_node(node_id)._node
        await self._controller_call(
            f"remove failed node {node_id}",
            self.controller.async_remove_failed_node(node),
        )

    async def replace_failed_node(self, node_id: int, strategy: str) -> bool:
        node = self.get_node(node_id)._node
        return await self._controller_call(
            f"replace failed node {node_id}",
            self.controller.async_replace_failed_node(node, self._strategy(strategy)),
        )

    def on_controller(self, event: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        """Listen for a controller event. Returns an unsubscribe callable."""
        return self.controller.on(event, callback)

    def wrap_node(self, node: Any) -> NodeProxy:
        return NodeProxy(node, self._lib)

    # Event bridge

    def attach_event_bridge(self) -> None:
        """Forward node events of current and future nodes to on_event."""
        for node in self.controller.nodes.values():
            self._attach_node(node)
        self._unsubscribers.append(
            self.controller.on("node added", lambda data: self._attach_node(data["node"]))
        )

    def _attach_node(self, node: Any) -> None:
        node_id = node.node_id
        if node_id in self._attached:
            return
        self._attached.add(node_id)
        for event_name in NODE_EVENTS:
            self._unsubscribers.append(
                node.on(
                    event_name,
                    lambda data, _name=event_name, _id=node_id: self._forward(_id, _name, data),
                )
            )

    def _forward(self, node_id: int, event_name: str, data: dict) -> None:
        args = data.get("args") if isinstance(data, dict) else None
        event = NodeEvent(
            node_id=node_id,
            event=event_name,
            args=sanitize_args(args) if isinstance(args, dict) else {},
        )
        _LOGGER.debug("Node %d event %s %s", node_id, event_name, event.args)
        self._on_event(event)

    def _on_listen_done(self, task: asyncio.Task) -> None:
        if self._closing:
            return
        reason = "listen loop ended"
        if task.cancelled():
            reason = "listen loop cancelled"
        elif task.exception() is not None:
            reason = str(task.exception())
        self._on_lost(self, reason)

    async def close(self) -> None:
        """Disconnect from the server."""
        if self._closing:
            return
        self._closing = True
        for unsub in self._unsubscribers:
            unsub()
        self._unsubscribers.clear()
        await self._client.disconnect()
        if not self._listen_task.done():
            self._listen_task.cancel()
        try:
            await self._listen_task
        except (asyncio.CancelledError, Exception) as err:
            _LOGGER.debug("Listen task ended: %s", err)
        await self._http.close()
        _LOGGER.debug("Z-Wave JS session closed")


async def connect_zwave_js(
    config: Config,
    on_event: Callable[[NodeEvent], None],
    on_lost: Callable[[Any, str], None],
) -> ZWaveJSSession:
    """Connect to the Z-Wave JS server and wait for the driver to be ready."""
    url = config.validate_server_url()
    lib = _import_zwave_js()
    http_session = aiohttp.ClientSession()
    client = lib.Client(url, http_session)
    listen_task: asyncio.Task | None = None
    try:
        try:
            await client.connect()
        except (lib.exceptions.BaseZwaveJSServerError, aiohttp.ClientError, OSError) as err:
            raise TransportError(f"Cannot connect to {url}: {err}") from err

        driver_ready = asyncio.Event()
        listen_task = asyncio.create_task(client.listen(driver_ready))
        ready_wait = asyncio.create_task(driver_ready.wait())
        try:
            await asyncio.wait(
                {listen_task, ready_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            ready_wait.cancel()

        if not driver_ready.is_set():
            err = None if listen_task.cancelled() else listen_task.exception()
            raise TransportError(f"Driver did not start: {err or 'listen loop ended'}")
    except BaseException:
        if listen_task is not None and not listen_task.done():
            listen_task.cancel()
        if client.connected:
            await client.disconnect()
        await http_session.close()
        raise

    session = ZWaveJSSession(client, http_session, listen_task, lib, on_event, on_lost)
    session.attach_event_bridge()
    _LOGGER.info(
        "Connected to Z-Wave JS server %s, %d node(s)",
        url,
        len(session.controller.nodes),
    )
    return session
