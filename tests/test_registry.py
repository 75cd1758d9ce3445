"""
Session Registry Tests
======================
"""

import asyncio

import pytest

from mcp_bridge.bridge import generate_session_id
from mcp_bridge.errors import (
    BridgeConnectionError,
    ConfigValidationError,
    ForwardError,
    RegistryClosedError,
    SessionNotFoundError,
)
from mcp_bridge.models import Direction, SessionState

from conftest import wait_until


def test_generated_ids_are_unique():
    ids = {generate_session_id() for _ in range(1000)}
    assert len(ids) == 1000
    assert all(i.startswith("bridge-") for i in ids)


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_registers_connected_session(self, make_registry, valid_payload):
        registry = make_registry()

        session = await registry.create(valid_payload)

        assert len(registry) == 1
        status = await registry.get(session.session_id)
        assert status.is_fully_connected
        assert status.state is SessionState.CONNECTED
        assert status.mcp_server_url == valid_payload["mcpServerUrl"]

        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_registry_defaults_applied(self, make_registry, valid_payload):
        registry = make_registry(max_reconnect_attempts=7, reconnect_delay_ms=5)

        session = await registry.create(valid_payload)

        assert session.config.max_reconnect_attempts == 7
        assert session.config.reconnect_delay_ms == 5

        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_payload_opens_nothing(self, make_registry, transports):
        registry = make_registry()

        with pytest.raises(ConfigValidationError):
            await registry.create({
                "mcpServerUrl": "https://mcp.example.com/sse",
                "xiaozhiWssUrl": "https://not-a-websocket/",
            })

        assert len(registry) == 0
        assert transports.calls == []

    @pytest.mark.asyncio
    async def test_failed_connect_not_registered(self, make_registry, transports, valid_payload):
        registry = make_registry()
        transports.fail_source = True

        with pytest.raises(BridgeConnectionError):
            await registry.create(valid_payload)

        assert len(registry) == 0
        assert await registry.list() == []
        assert transports.live() == 0

    @pytest.mark.asyncio
    async def test_sink_closed_during_handshake_not_registered(
        self, make_registry, transports, valid_payload
    ):
        registry = make_registry()
        transports.drop_sink_during_source_open = True

        with pytest.raises(BridgeConnectionError):
            await registry.create(valid_payload)

        assert len(registry) == 0
        assert (await registry.health()).total == 0

    @pytest.mark.asyncio
    async def test_concurrent_creates_then_delete_one(self, make_registry, transports, valid_payload):
        registry = make_registry()

        sessions = await asyncio.gather(*(registry.create(valid_payload) for _ in range(3)))
        ids = [s.session_id for s in sessions]
        assert len(set(ids)) == 3

        remaining = await registry.delete(ids[0])

        assert remaining == 2
        statuses = await registry.list()
        assert sorted(s.connection_id for s in statuses) == sorted(ids[1:])
        assert all(s.is_fully_connected for s in statuses)
        assert transports.live() == 4

        with pytest.raises(SessionNotFoundError):
            await registry.get(ids[0])

        await registry.shutdown()


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_unknown(self, make_registry):
        registry = make_registry()
        with pytest.raises(SessionNotFoundError) as exc_info:
            await registry.delete("bridge-missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.session_id == "bridge-missing"

    @pytest.mark.asyncio
    async def test_delete_closes_transports(self, make_registry, transports, valid_payload):
        registry = make_registry()
        session = await registry.create(valid_payload)

        await registry.delete(session.session_id)

        assert session.state is SessionState.TERMINATED
        assert transports.live() == 0

    @pytest.mark.asyncio
    async def test_delete_all(self, make_registry, transports, valid_payload):
        registry = make_registry()
        for _ in range(3):
            await registry.create(valid_payload)

        assert await registry.delete_all() == 3
        assert len(registry) == 0
        assert transports.live() == 0

        # still open for business after delete_all
        await registry.create(valid_payload)
        assert len(registry) == 1
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_refuses_new_sessions(self, make_registry, transports, valid_payload):
        registry = make_registry()
        await registry.create(valid_payload)
        await registry.create(valid_payload)

        assert await registry.shutdown() == 2
        assert registry.closed
        assert transports.live() == 0

        with pytest.raises(RegistryClosedError):
            await registry.create(valid_payload)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_retries(self, make_registry, transports, valid_payload):
        registry = make_registry(reconnect_delay_ms=1000)
        session = await registry.create(valid_payload)

        transports.sinks[0].drop()
        await wait_until(lambda: session.reconnect_pending)

        await registry.shutdown()

        assert not session.reconnect_pending
        await asyncio.sleep(0.05)
        assert len(transports.sinks) == 1


class TestQueries:

    @pytest.mark.asyncio
    async def test_health_counts(self, make_registry, transports, valid_payload):
        registry = make_registry(reconnect_delay_ms=10_000)
        first = await registry.create(valid_payload)
        await registry.create(valid_payload)

        transports.sinks[0].drop()
        await wait_until(lambda: not first.is_fully_connected)

        summary = await registry.health()
        assert summary.total == 2
        assert summary.fully_connected == 1
        assert summary.partially_connected == 1

        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_exhausted_session_stays_registered(self, make_registry, transports, valid_payload):
        registry = make_registry()
        valid_payload["options"] = {"maxReconnectAttempts": 0}
        session = await registry.create(valid_payload)

        transports.sinks[0].drop()
        await wait_until(lambda: session.state is SessionState.TERMINATED)

        status = await registry.get(session.session_id)
        assert status.state is SessionState.TERMINATED
        assert len(registry) == 1

        await registry.delete(session.session_id)

    @pytest.mark.asyncio
    async def test_history_through_registry(self, make_registry, transports, valid_payload):
        registry = make_registry()
        session = await registry.create(valid_payload)
        sid = session.session_id

        transports.sources[0].emit('{"n": 1}')
        transports.sources[0].emit('{"n": 2}')
        await wait_until(lambda: len(session.history) == 2)

        records = await registry.get_history(sid, limit=1)
        assert len(records) == 1
        assert records[0].data["n"] == 2

        assert await registry.clear_history(sid) == 2
        assert await registry.get_history(sid) == []

        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_send_manual_through_registry(self, make_registry, transports, valid_payload):
        registry = make_registry()
        session = await registry.create(valid_payload)

        message = await registry.send_manual(session.session_id, {"type": "ping"})
        assert message["sentVia"] == "manual"
        assert len(transports.sinks[0].sent) == 1

        with pytest.raises(SessionNotFoundError):
            await registry.send_manual("bridge-missing", {})

        transports.sinks[0].opened = False
        with pytest.raises(ForwardError):
            await registry.send_manual(session.session_id, {"type": "ping"})
        errors = [r for r in session.get_history() if r.direction is Direction.ERROR]
        assert len(errors) == 1

        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_get_messages_returns_records_and_count(
        self, make_registry, transports, valid_payload
    ):
        registry = make_registry()
        session = await registry.create(valid_payload)

        for n in range(3):
            transports.sources[0].emit(f'{{"n": {n}}}')
        await wait_until(lambda: len(session.history) == 3)

        records, count = await registry.get_messages(session.session_id, limit=2)
        assert [r.data["n"] for r in records] == [1, 2]
        assert count == 3

        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_history_limit_must_be_positive(self, make_registry, valid_payload):
        registry = make_registry()
        session = await registry.create(valid_payload)

        with pytest.raises(ConfigValidationError) as exc_info:
            await registry.get_history(session.session_id, 0)
        assert exc_info.value.status_code == 400

        await registry.shutdown()


class TestIsolation:
    """One stalled peer must not hold up the registry for other sessions."""

    @pytest.mark.asyncio
    async def test_stalled_send_does_not_block_other_sessions(
        self, make_registry, transports, valid_payload
    ):
        registry = make_registry()
        first = await registry.create(valid_payload)
        second = await registry.create(valid_payload)
        stalled = transports.sinks[0]
        stalled.hold = asyncio.Event()

        pending = asyncio.create_task(registry.send_manual(first.session_id, {"type": "ping"}))
        await asyncio.sleep(0.01)
        assert not pending.done()

        status = await asyncio.wait_for(registry.get(second.session_id), 0.5)
        assert status.is_fully_connected
        await asyncio.wait_for(registry.send_manual(second.session_id, {"n": 2}), 0.5)
        summary = await asyncio.wait_for(registry.health(), 0.5)
        assert summary.total == 2
        assert len(transports.sinks[1].sent) == 1

        stalled.hold.set()
        await pending
        assert len(stalled.sent) == 1

        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_slow_close_does_not_block_other_sessions(
        self, make_registry, transports, valid_payload
    ):
        registry = make_registry()
        first = await registry.create(valid_payload)
        second = await registry.create(valid_payload)
        stalled = transports.sinks[0]
        stalled.hold = asyncio.Event()

        deleting = asyncio.create_task(registry.delete(first.session_id))
        await asyncio.sleep(0.01)
        assert not deleting.done()

        statuses = await asyncio.wait_for(registry.list(), 0.5)
        assert [s.connection_id for s in statuses] == [second.session_id]
        with pytest.raises(SessionNotFoundError):
            await asyncio.wait_for(registry.delete(first.session_id), 0.5)

        stalled.hold.set()
        assert await deleting == 1
        assert stalled.closed

        await registry.shutdown()
