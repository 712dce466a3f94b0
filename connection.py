"""Connection lifecycle for the Z-Wave JS driver.

One ConnectionManager owns at most one live session. Callers use
``acquire()`` and get either a ready session or a well defined error.
Transport failures are retried in the background after a fixed delay;
configuration errors are raised immediately and never retried.

State machine::

    disconnected -> connecting -> ready
    connecting -> disconnected     (attempt failed, reconnect scheduled)
    ready -> disconnected          (transport lost, reconnect scheduled)
    any -> shut_down               (release(), terminal)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from config import Config
from errors import ConfigError, NotReadyError, ReadyTimeoutError, TransportError

_LOGGER = logging.getLogger(__name__)

# connector(config, on_event, on_lost) -> session
Connector = Callable[[Config, Callable, Callable], Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    SHUT_DOWN = "shut_down"


class ConnectionManager:
    """Owns the single driver session of a process context."""

    def __init__(
        self,
        config: Config,
        connector: Connector | None = None,
        on_event: Callable | None = None,
    ):
        if connector is None:
            from zwave_client import connect_zwave_js
            connector = connect_zwave_js
        self._config = config
        self._connector = connector
        self._on_event = on_event
        self._state = ConnectionState.DISCONNECTED
        self._session: Any = None
        self._attempt: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._state_changed = asyncio.Event()
        self._fatal_error: ConfigError | None = None
        self._callbacks: list[Callable] = []
        self.last_error: str | None = None
        self.attempt_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def session(self) -> Any:
        """The ready session, or None."""
        return self._session if self.ready else None

    def register_state_callback(self, callback: Callable) -> None:
        """Register ``callback(old_state, new_state)`` for transitions."""
        self._callbacks.append(callback)

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        _LOGGER.debug("Connection %s -> %s", old_state.value, new_state.value)
        # Wake everyone waiting on the previous event, then start a fresh one
        self._state_changed.set()
        self._state_changed = asyncio.Event()
        for cb in self._callbacks:
            try:
                cb(old_state, new_state)
            except Exception as e:
                _LOGGER.error("Error in connection state callback: %s", e)

    def start(self) -> None:
        """Begin connecting in the background without waiting for readiness."""
        if self._state is ConnectionState.SHUT_DOWN:
            raise NotReadyError("Connection has been shut down")
        self._config.validate_server_url()
        if self.ready or self._attempt is not None or self._reconnect_handle is not None:
            return
        self._start_attempt()

    async def acquire(self, timeout: float | None = None) -> Any:
        """Return the ready session, connecting if needed.

        Raises ConfigError for an unusable configuration, NotReadyError after
        release() and ReadyTimeoutError when the driver is not ready in time.
        A reconnect stays scheduled after a timeout.
        """
        if self._state is ConnectionState.SHUT_DOWN:
            raise NotReadyError("Connection has been shut down")
        if self._fatal_error is not None:
            raise self._fatal_error
        self._config.validate_server_url()
        if self.ready:
            return self._session

        if self._attempt is None and self._reconnect_handle is None:
            self._start_attempt()

        if timeout is None:
            timeout = self._config.timing.ready_timeout_sec
        try:
            return await asyncio.wait_for(self._wait_ready(), timeout)
        except asyncio.TimeoutError:
            self._abandon_attempt()
            raise ReadyTimeoutError(
                f"Driver not ready after {timeout:g}s"
                + (f" (last error: {self.last_error})" if self.last_error else "")
            ) from None

    async def _wait_ready(self) -> Any:
        while True:
            if self._fatal_error is not None:
                raise self._fatal_error
            if self._state is ConnectionState.SHUT_DOWN:
                raise NotReadyError("Connection has been shut down")
            if self.ready:
                return self._session
            await self._state_changed.wait()

    def _start_attempt(self) -> None:
        self._attempt = asyncio.ensure_future(self._connect())

    async def _connect(self) -> None:
        task = asyncio.current_task()
        self.attempt_count += 1
        self._set_state(ConnectionState.CONNECTING)
        _LOGGER.info(
            "Connecting to Z-Wave JS server at %s (attempt %d)",
            self._config.server_url,
            self.attempt_count,
        )
        try:
            session = await self._connector(
                self._config, self._publish, self._on_transport_lost
            )
        except asyncio.CancelledError:
            self._finish_attempt(task)
            raise
        except ConfigError as err:
            _LOGGER.error("Connection configuration error: %s", err)
            self._fatal_error = err
            self.last_error = str(err)
            self._finish_attempt(task)
            self._set_state(ConnectionState.DISCONNECTED)
            return
        except (TransportError, OSError) as err:
            _LOGGER.warning("Connection attempt failed: %s", err)
            self.last_error = str(err)
            self._finish_attempt(task)
            if self._state is not ConnectionState.SHUT_DOWN:
                self._set_state(ConnectionState.DISCONNECTED)
                self._schedule_reconnect()
            return
        except Exception as err:
            _LOGGER.exception("Unexpected error connecting to Z-Wave JS server")
            self.last_error = str(err) or type(err).__name__
            self._finish_attempt(task)
            if self._state is not ConnectionState.SHUT_DOWN:
                self._set_state(ConnectionState.DISCONNECTED)
                self._schedule_reconnect()
            return

        if self._attempt is not task or self._state is ConnectionState.SHUT_DOWN:
            # Abandoned while the connector was finishing
            await session.close()
            return
        self._attempt = None
        self._session = session
        self.last_error = None
        self._set_state(ConnectionState.READY)
        _LOGGER.info("Driver ready")

    def _finish_attempt(self, task: asyncio.Task | None) -> None:
        if self._attempt is task:
            self._attempt = None

    def _abandon_attempt(self) -> None:
        """Stop waiting on the current attempt and retry later."""
        attempt, self._attempt = self._attempt, None
        if attempt is not None and not attempt.done():
            attempt.cancel()
        if self._state is ConnectionState.CONNECTING:
            self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule one reconnect attempt.

        No-op while a reconnect is pending, an attempt is in flight or the
        manager is shut down.
        """
        if self._state is ConnectionState.SHUT_DOWN:
            return
        if self._reconnect_handle is not None or self._attempt is not None:
            return
        if self._fatal_error is not None:
            return
        delay = self._config.timing.reconnect_delay_sec
        _LOGGER.info("Reconnecting in %gs", delay)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._state is ConnectionState.SHUT_DOWN or self._attempt is not None:
            return
        self._start_attempt()

    def _on_transport_lost(self, session: Any, reason: str = "") -> None:
        """Called by the session when its transport ends unexpectedly."""
        if session is not self._session or self._state is not ConnectionState.READY:
            return
        _LOGGER.warning("Driver connection lost%s", f": {reason}" if reason else "")
        self._session = None
        self.last_error = reason or "connection lost"
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _publish(self, event: Any) -> None:
        if self._on_event is not None:
            self._on_event(event)

    async def release(self) -> None:
        """Tear down the session and stop reconnecting. Idempotent."""
        if self._state is ConnectionState.SHUT_DOWN:
            return
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        attempt, self._attempt = self._attempt, None
        session, self._session = self._session, None
        self._set_state(ConnectionState.SHUT_DOWN)
        if attempt is not None and not attempt.done():
            attempt.cancel()
            try:
                await attempt
            except asyncio.CancelledError:
                pass
        if session is not None:
            await session.close()
        _LOGGER.info("Driver connection released")

    def get_diagnostics(self) -> dict:
        """Return connection diagnostics."""
        return {
            "state": self._state.value,
            "ready": self.ready,
            "reconnect_pending": self.reconnect_pending,
            "connecting": self._attempt is not None,
            "last_error": self.last_error,
            "server_url": self._config.server_url,
            "attempts": self.attempt_count,
        }


@asynccontextmanager
async def connected(manager: ConnectionManager, timeout: float | None = None):
    """Acquire a session for one command and always release afterwards."""
    try:
        yield await manager.acquire(timeout)
    finally:
        await manager.release()
