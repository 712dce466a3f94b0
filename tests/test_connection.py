from __future__ import annotations

import asyncio

import pytest

from config import Config
from connection import ConnectionManager, ConnectionState, connected
from errors import ConfigError, NotReadyError, ReadyTimeoutError

from conftest import FakeSession, make_connector


def hanging_connector():
    state = {"calls": 0}

    async def connector(config, on_event, on_lost):
        state["calls"] += 1
        await asyncio.Event().wait()

    connector.state = state
    return connector


async def test_acquire_returns_ready_session(config: Config, session: FakeSession) -> None:
    manager = ConnectionManager(config, connector=make_connector(session))

    assert await manager.acquire() is session
    assert manager.state is ConnectionState.READY
    assert manager.session is session
    await manager.release()


async def test_retries_until_ready(config: Config, session: FakeSession) -> None:
    connector = make_connector(session, failures=3)
    manager = ConnectionManager(config, connector=connector)
    transitions = []
    manager.register_state_callback(lambda old, new: transitions.append(new))

    assert await manager.acquire() is session

    assert connector.state["calls"] == 4
    assert transitions.count(ConnectionState.READY) == 1
    assert manager.reconnect_pending is False
    assert manager.last_error is None
    await manager.release()


async def test_unexpected_connector_error_is_retried(config: Config, session: FakeSession) -> None:
    calls = []

    async def connector(config, on_event, on_lost):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("unsupported server schema")
        return session

    manager = ConnectionManager(config, connector=connector)
    transitions = []
    manager.register_state_callback(lambda old, new: transitions.append(new))

    assert await manager.acquire() is session

    assert len(calls) == 2
    assert transitions[:2] == [ConnectionState.CONNECTING, ConnectionState.DISCONNECTED]
    assert manager.state is ConnectionState.READY
    await manager.release()


async def test_unexpected_connector_error_does_not_stick_in_connecting(config: Config) -> None:
    config.timing.ready_timeout_sec = 0.05
    config.timing.reconnect_delay_sec = 10

    async def connector(config, on_event, on_lost):
        raise RuntimeError("boom")

    manager = ConnectionManager(config, connector=connector)

    with pytest.raises(ReadyTimeoutError):
        await manager.acquire()

    assert manager.state is ConnectionState.DISCONNECTED
    assert manager.last_error == "boom"
    assert manager.reconnect_pending is True
    await manager.release()


async def test_concurrent_acquire_shares_one_attempt(config: Config, session: FakeSession) -> None:
    connector = make_connector(session)
    manager = ConnectionManager(config, connector=connector)

    first, second = await asyncio.gather(manager.acquire(), manager.acquire())

    assert first is second is session
    assert connector.state["calls"] == 1
    await manager.release()


async def test_timeout_leaves_reconnect_scheduled(config: Config) -> None:
    connector = hanging_connector()
    manager = ConnectionManager(config, connector=connector)

    with pytest.raises(ReadyTimeoutError):
        await manager.acquire(timeout=0.05)

    assert manager.reconnect_pending is True
    assert manager.state is ConnectionState.DISCONNECTED
    await manager.release()
    assert manager.reconnect_pending is False


async def test_timeout_is_a_not_ready_error(config: Config) -> None:
    manager = ConnectionManager(config, connector=hanging_connector())

    with pytest.raises(NotReadyError):
        await manager.acquire(timeout=0.05)
    await manager.release()


async def test_bad_url_fails_without_connecting(config: Config, session: FakeSession) -> None:
    config.server_url = "http://localhost:3000"
    connector = make_connector(session)
    manager = ConnectionManager(config, connector=connector)

    with pytest.raises(ConfigError):
        await manager.acquire()

    assert connector.state["calls"] == 0
    assert manager.reconnect_pending is False


async def test_connector_config_error_is_not_retried(config: Config) -> None:
    calls = []

    async def connector(cfg, on_event, on_lost):
        calls.append(1)
        raise ConfigError("zwave-js-server-python is not installed")

    manager = ConnectionManager(config, connector=connector)

    with pytest.raises(ConfigError):
        await manager.acquire()
    with pytest.raises(ConfigError):
        await manager.acquire()

    assert calls == [1]
    assert manager.reconnect_pending is False
    await manager.release()


async def test_release_is_idempotent_and_terminal(config: Config, session: FakeSession) -> None:
    manager = ConnectionManager(config, connector=make_connector(session))
    await manager.acquire()

    await manager.release()
    await manager.release()

    assert session.closed is True
    assert manager.state is ConnectionState.SHUT_DOWN
    with pytest.raises(NotReadyError):
        await manager.acquire()
    with pytest.raises(NotReadyError):
        manager.start()


async def test_release_cancels_in_flight_attempt(config: Config) -> None:
    manager = ConnectionManager(config, connector=hanging_connector())
    manager.start()
    await asyncio.sleep(0)

    await manager.release()

    assert manager.state is ConnectionState.SHUT_DOWN
    assert manager.get_diagnostics()["connecting"] is False


async def test_transport_lost_reconnects(config: Config, session: FakeSession) -> None:
    connector = make_connector(session)
    manager = ConnectionManager(config, connector=connector)
    await manager.acquire()

    session.on_lost(session, "socket closed")

    assert manager.state is ConnectionState.DISCONNECTED
    assert manager.session is None
    assert manager.reconnect_pending is True
    assert manager.last_error == "socket closed"

    assert await manager.acquire() is session
    assert connector.state["calls"] == 2
    await manager.release()


async def test_transport_lost_from_stale_session_is_ignored(config: Config, session: FakeSession) -> None:
    manager = ConnectionManager(config, connector=make_connector(session))
    await manager.acquire()

    session.on_lost(FakeSession([]), "old socket")

    assert manager.ready is True
    await manager.release()


async def test_reconnect_is_debounced(config: Config) -> None:
    config.timing.reconnect_delay_sec = 10
    manager = ConnectionManager(config, connector=hanging_connector())

    manager._schedule_reconnect()
    handle = manager._reconnect_handle
    manager._schedule_reconnect()
    manager._schedule_reconnect()

    assert manager._reconnect_handle is handle
    await manager.release()
    assert handle.cancelled()


async def test_no_reconnect_after_release(config: Config) -> None:
    manager = ConnectionManager(config, connector=hanging_connector())
    await manager.release()

    manager._schedule_reconnect()

    assert manager.reconnect_pending is False


async def test_events_are_forwarded(config: Config, session: FakeSession) -> None:
    received = []
    manager = ConnectionManager(config, connector=make_connector(session), on_event=received.append)
    await manager.acquire()

    session.on_event("an event")

    assert received == ["an event"]
    await manager.release()


async def test_connected_releases_on_exit(config: Config, session: FakeSession) -> None:
    manager = ConnectionManager(config, connector=make_connector(session))

    with pytest.raises(RuntimeError):
        async with connected(manager) as live:
            assert live is session
            raise RuntimeError("boom")

    assert manager.state is ConnectionState.SHUT_DOWN
    assert session.closed is True


async def test_diagnostics(config: Config, session: FakeSession) -> None:
    manager = ConnectionManager(config, connector=make_connector(session, failures=1))
    await manager.acquire()

    diagnostics = manager.get_diagnostics()

    assert diagnostics["state"] == "ready"
    assert diagnostics["attempts"] == 2
    assert diagnostics["server_url"] == "ws://localhost:3000"
    await manager.release()
