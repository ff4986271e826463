"""
Tests for SessionManager: reuse, single-flight, failure caching, detached handshake,
dispose and invalidate, plus the acquire_with_retry and run_with_session policies.
"""

import asyncio
import gc

import pytest

from conftest import FakeConnector, make_endpoint
from toolquery.connection.session_manager import (
    ConnectionStatus,
    SessionManager,
    acquire_with_retry,
    run_with_session,
)
from toolquery.core.errors import MCPConnectionError, ProtocolError


@pytest.mark.asyncio
async def test_sequential_acquires_reuse_the_session(endpoint, connector: FakeConnector) -> None:
    """Two acquire() calls on a ready connection perform one handshake."""
    manager = SessionManager(endpoint, connector)
    first = await manager.acquire()
    second = await manager.acquire()
    assert first is second
    assert connector.handshakes == 1
    assert manager.handshake_count == 1
    state = manager.status()
    assert state.status is ConnectionStatus.READY
    assert state.connected
    assert state.server_name == "fake-mcp"
    assert state.last_connected is not None
    await manager.dispose()


@pytest.mark.asyncio
async def test_concurrent_first_acquires_single_flight() -> None:
    connector = FakeConnector(delay=0.05)
    manager = SessionManager(make_endpoint(), connector)
    handles = await asyncio.gather(*(manager.acquire() for _ in range(10)))
    assert connector.handshakes == 1
    assert all(h is handles[0] for h in handles)
    await manager.dispose()


@pytest.mark.asyncio
async def test_concurrent_callers_share_the_failure_then_next_acquire_retries() -> None:
    connector = FakeConnector(delay=0.02, fail_times=1)
    manager = SessionManager(make_endpoint(), connector)
    outcomes = await asyncio.gather(*(manager.acquire() for _ in range(5)), return_exceptions=True)
    assert connector.handshakes == 1
    assert all(isinstance(o, MCPConnectionError) for o in outcomes)
    state = manager.status()
    assert state.status is ConnectionStatus.FAILED
    assert "http://mcp.test/sse" in state.last_error
    assert "connection refused" in state.last_error

    handle = await manager.acquire()
    assert handle.server_name == "fake-mcp"
    assert connector.handshakes == 2
    assert manager.status().last_error is None
    await manager.dispose()


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_handshake() -> None:
    """A short per-query deadline must not kill the shared handshake."""
    connector = FakeConnector(delay=0.1)
    manager = SessionManager(make_endpoint(), connector)
    with pytest.raises(TimeoutError):
        async with asyncio.timeout(0.01):
            await manager.acquire()
    assert manager.status().status is ConnectionStatus.CONNECTING

    handle = await manager.acquire()
    assert handle is not None
    assert connector.handshakes == 1
    await manager.dispose()


@pytest.mark.asyncio
async def test_handshake_uses_connection_timeout() -> None:
    connector = FakeConnector(delay=1.0)
    manager = SessionManager(make_endpoint(timeout=0.05), connector)
    with pytest.raises(MCPConnectionError, match="failed to connect"):
        await manager.acquire()
    assert manager.status().status is ConnectionStatus.FAILED


@pytest.mark.asyncio
async def test_dispose_is_idempotent(endpoint, connector: FakeConnector) -> None:
    manager = SessionManager(endpoint, connector)
    await manager.acquire()
    await manager.dispose()
    await manager.dispose()
    assert connector.closed == 1
    assert manager.status().status is ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_dispose_without_session_is_noop(endpoint, connector: FakeConnector) -> None:
    manager = SessionManager(endpoint, connector)
    await manager.dispose()
    assert connector.handshakes == 0
    assert manager.status().status is ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_dispose_waits_for_inflight_handshake() -> None:
    connector = FakeConnector(delay=0.05)
    manager = SessionManager(make_endpoint(), connector)
    acquiring = asyncio.create_task(manager.acquire())
    await asyncio.sleep(0.01)
    await manager.dispose()
    handle = await acquiring
    assert handle.server_name == "fake-mcp"
    assert connector.handshakes == 1
    assert connector.closed == 1
    assert manager.status().status is ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_acquire_after_dispose_reconnects(endpoint, connector: FakeConnector) -> None:
    manager = SessionManager(endpoint, connector)
    first = await manager.acquire()
    await manager.dispose()
    second = await manager.acquire()
    assert second is not first
    assert connector.handshakes == 2
    await manager.dispose()


@pytest.mark.asyncio
async def test_invalidate_forces_new_handshake(endpoint, connector: FakeConnector) -> None:
    manager = SessionManager(endpoint, connector)
    first = await manager.acquire()
    await manager.invalidate(first, "stream reset")
    state = manager.status()
    assert state.status is ConnectionStatus.FAILED
    assert state.last_error == "stream reset"
    assert connector.closed == 1

    second = await manager.acquire()
    assert second is not first
    assert connector.handshakes == 2

    # A stale handle does not tear down the new session.
    await manager.invalidate(first, "late report")
    assert manager.status().status is ConnectionStatus.READY
    assert await manager.acquire() is second
    await manager.dispose()


@pytest.mark.asyncio
async def test_acquire_with_retry_recovers() -> None:
    connector = FakeConnector(fail_times=2)
    manager = SessionManager(make_endpoint(), connector)
    handle = await acquire_with_retry(manager, max_retries=3, retry_interval=0)
    assert handle.server_name == "fake-mcp"
    assert connector.handshakes == 3
    await manager.dispose()


@pytest.mark.asyncio
async def test_acquire_with_retry_gives_up_after_max_retries() -> None:
    connector = FakeConnector(fail_times=10)
    manager = SessionManager(make_endpoint(), connector)
    with pytest.raises(MCPConnectionError):
        await acquire_with_retry(manager, max_retries=2, retry_interval=0)
    assert connector.handshakes == 3


@pytest.mark.asyncio
async def test_status_carries_negotiated_protocol(endpoint, connector: FakeConnector) -> None:
    manager = SessionManager(endpoint, connector)
    await manager.acquire()
    state = manager.status()
    assert state.server_version == "1.0.0"
    assert state.protocol_version == "2025-06-18"
    assert state.capabilities == {"tools": {"listChanged": False}}
    await manager.dispose()


@pytest.mark.asyncio
async def test_abandoned_failed_handshake_leaves_nothing_unretrieved(caplog: pytest.LogCaptureFixture) -> None:
    """Every caller hit its deadline before the handshake failed; asyncio must not complain at GC."""
    connector = FakeConnector(delay=0.05, fail_times=1)
    manager = SessionManager(make_endpoint(), connector)
    with pytest.raises(TimeoutError):
        async with asyncio.timeout(0.01):
            await manager.acquire()
    await asyncio.sleep(0.1)
    assert manager.status().status is ConnectionStatus.FAILED

    await manager.dispose()
    del manager
    gc.collect()
    assert "never retrieved" not in caplog.text


@pytest.mark.asyncio
async def test_run_with_session_retries_on_fresh_session() -> None:
    connector = FakeConnector()
    manager = SessionManager(make_endpoint(), connector)
    seen = []

    async def operation(handle):
        seen.append(handle)
        if len(seen) == 1:
            raise MCPConnectionError("tools/list failed: stream reset")
        return handle.server_name

    assert await run_with_session(manager, operation, max_retries=1, retry_interval=0) == "fake-mcp"
    assert seen[0] is not seen[1]
    assert connector.handshakes == 2
    assert connector.closed == 1
    assert manager.status().status is ConnectionStatus.READY
    await manager.dispose()


@pytest.mark.asyncio
async def test_run_with_session_gives_up_after_max_retries() -> None:
    connector = FakeConnector()
    manager = SessionManager(make_endpoint(), connector)

    async def operation(handle):
        raise MCPConnectionError("tools/list failed: stream reset")

    with pytest.raises(MCPConnectionError, match="stream reset"):
        await run_with_session(manager, operation, max_retries=2, retry_interval=0)
    assert connector.handshakes == 3
    state = manager.status()
    assert state.status is ConnectionStatus.FAILED
    assert state.last_error == "tools/list failed: stream reset"


@pytest.mark.asyncio
async def test_run_with_session_keeps_session_on_protocol_error(endpoint, connector: FakeConnector) -> None:
    async def operation(handle):
        raise ProtocolError("malformed tools/list response")

    manager = SessionManager(endpoint, connector)
    with pytest.raises(ProtocolError):
        await run_with_session(manager, operation, max_retries=3, retry_interval=0)
    assert connector.handshakes == 1
    assert manager.status().status is ConnectionStatus.READY
    await manager.dispose()
