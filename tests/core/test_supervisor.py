import asyncio

import pytest
from unittest.mock import patch

from wabridge.core.catalog import CatalogCache
from wabridge.core.state_machine import ConnectionState
from wabridge.core.supervisor import ConnectionSupervisor
from wabridge.network.base import Network
from wabridge.network.events import (
    CloseReason,
    ConnectionClosed,
    ConnectionOpened,
    CredentialsChanged,
    MessageReceived,
    PairingCode,
)
from wabridge.session.codec import decode_auth_state, encode_auth_state
from wabridge.store.models import InboundMessage

KEY = ("sessions", "session.json")


def _supervisor(network, sessions, **kw):
    kw.setdefault("reconnect_delay", 0.01)
    return ConnectionSupervisor(network, sessions, **kw)


async def _settle(seconds=0.05):
    await asyncio.sleep(seconds)


@pytest.mark.asyncio
async def test_start_restores_session_and_connects(network, sessions, blob_store):
    blob_store.objects[KEY] = encode_auth_state({"noiseKey": b"\x01"})
    sup = _supervisor(network, sessions)
    await sup.start()
    assert sup.state is ConnectionState.CONNECTING
    assert network.connects == [{"noiseKey": b"\x01"}]
    await sup.stop()


@pytest.mark.asyncio
async def test_cold_start_without_session(network, sessions):
    sup = _supervisor(network, sessions)
    await sup.start()
    assert network.connects == [None]
    await sup.stop()


@pytest.mark.asyncio
async def test_pairing_code_then_open(network, sessions, repo):
    repo.products = [{"id": 1, "nombre": "Pastel"}]
    catalog = CatalogCache(repo)
    sup = _supervisor(network, sessions, catalog=catalog)
    await sup.start()

    await network.emit(PairingCode("ABC123"))
    assert sup.state is ConnectionState.AWAITING_PAIRING
    assert sup.pairing_code == "ABC123"

    await network.emit(PairingCode("DEF456"))
    assert sup.state is ConnectionState.AWAITING_PAIRING
    assert sup.pairing_code == "DEF456"

    await network.emit(ConnectionOpened(own_address="5215500000000@c.us"))
    assert sup.state is ConnectionState.OPEN
    assert sup.pairing_code is None
    assert sup.own_address == "5215500000000@c.us"

    await sup.drain()
    assert len(catalog.current()) == 1
    await sup.stop()


@pytest.mark.asyncio
async def test_catalog_failure_does_not_affect_connection(network, sessions, repo):
    from wabridge.errors import StoreError
    repo.products_fail = StoreError("down")
    sup = _supervisor(network, sessions, catalog=CatalogCache(repo))
    await sup.start()
    await network.emit(ConnectionOpened())
    await sup.drain()
    assert sup.state is ConnectionState.OPEN
    await sup.stop()


@pytest.mark.asyncio
async def test_stray_pairing_code_when_open_is_ignored(network, sessions):
    sup = _supervisor(network, sessions)
    await sup.start()
    await network.emit(ConnectionOpened())
    await network.emit(PairingCode("LATE"))
    assert sup.state is ConnectionState.OPEN
    assert sup.pairing_code is None
    await sup.stop()


@pytest.mark.asyncio
async def test_logout_is_terminal(network, sessions, blob_store):
    blob_store.objects[KEY] = encode_auth_state({"k": b"\x01"})
    sup = _supervisor(network, sessions)
    await sup.start()
    await network.emit(ConnectionOpened())

    await network.emit(ConnectionClosed(CloseReason(code=401, message="logout")))
    assert sup.state is ConnectionState.CLOSED
    assert sup.reconnect_pending is False

    await _settle()
    assert sup.state is ConnectionState.CLOSED
    assert len(network.connects) == 1
    # Credentials the network invalidated are not kept around
    assert KEY not in blob_store.objects
    await sup.stop()


@pytest.mark.asyncio
async def test_transient_close_reconnects_after_delay(network, sessions):
    sup = _supervisor(network, sessions, reconnect_delay=0.05)
    await sup.start()
    await network.emit(ConnectionOpened())

    await network.emit(ConnectionClosed(CloseReason(code=428, message="Connection Closed")))
    assert sup.state is ConnectionState.CLOSED
    assert sup.reconnect_pending is True
    assert len(network.connects) == 1

    await _settle(0.15)
    assert sup.state is ConnectionState.CONNECTING
    assert len(network.connects) == 2
    assert sup.reconnect_pending is False
    await sup.stop()


@pytest.mark.asyncio
async def test_bad_session_deletes_before_fresh_pairing(network, sessions, blob_store):
    blob_store.objects[KEY] = encode_auth_state({"k": b"\x01"})
    sup = _supervisor(network, sessions)
    await sup.start()
    assert network.connects == [{"k": b"\x01"}]

    await network.emit(ConnectionClosed(CloseReason(message="auth_failure: session restore failed")))
    assert KEY not in blob_store.objects
    ops = [c[0] for c in blob_store.calls]
    assert ops.index("delete") > ops.index("download")

    await _settle()
    assert network.connects[-1] is None
    assert sup.state is ConnectionState.CONNECTING
    await sup.stop()


@pytest.mark.asyncio
async def test_at_most_one_reconnect_timer(network, sessions):
    sup = _supervisor(network, sessions, reconnect_delay=10)
    await sup.start()
    await network.emit(ConnectionOpened())
    await network.emit(ConnectionClosed(CloseReason(message="stream errored")))
    first = sup._reconnect_task
    assert sup.reconnect_pending

    # Stray close while already closed, and a direct second schedule: both no-ops
    await network.emit(ConnectionClosed(CloseReason(message="stream errored")))
    assert sup._schedule_reconnect() is False
    assert sup._reconnect_task is first

    await sup.stop()
    assert sup.reconnect_pending is False
    assert first.cancelled() or first.done()


@pytest.mark.asyncio
async def test_transitions_never_skip_closed(network, sessions):
    changes = []

    def capture(event, **fields):
        if event == "connection_state_changed":
            changes.append((fields["fromState"], fields["toState"]))

    with patch("wabridge.core.supervisor.log", side_effect=capture):
        sup = _supervisor(network, sessions)
        await sup.start()
        await network.emit(ConnectionOpened())
        await network.emit(ConnectionClosed(CloseReason(message="lost")))
        await _settle()
        await network.emit(ConnectionOpened())
        await network.emit(ConnectionClosed(CloseReason(message="lost")))
        await _settle()
        await sup.stop()

    into_connecting = [frm for frm, to in changes if to == "CONNECTING"]
    assert len(into_connecting) == 3
    assert set(into_connecting) <= {"DISCONNECTED", "CLOSED"}
    assert ("OPEN", "CONNECTING") not in changes


class SlowConnectNetwork(Network):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay
        self.order = []

    async def connect(self, auth_state=None):
        self.order.append("connect_start")
        await asyncio.sleep(self.delay)
        self.order.append("connect_done")

    async def send(self, to, body):
        pass

    async def disconnect(self):
        self.order.append("disconnect")


@pytest.mark.asyncio
async def test_stop_cancels_reconnect_in_flight(sessions):
    network = SlowConnectNetwork(delay=0.05)
    sup = ConnectionSupervisor(network, sessions, reconnect_delay=0.01)
    await sup.start()
    await network.emit(ConnectionOpened())
    await network.emit(ConnectionClosed(CloseReason(code=428, message="Connection Closed")))

    # Timer has fired and the second connect is still dialing
    await _settle(0.03)
    assert network.order == ["connect_start", "connect_done", "connect_start"]
    assert sup.reconnect_pending is False

    await sup.stop()
    assert network.order[-1] == "disconnect"

    await _settle(0.1)
    assert network.order == ["connect_start", "connect_done", "connect_start", "disconnect"]
    assert sup.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_connect_failure_schedules_reconnect(network, sessions):
    network.connect_error = ConnectionRefusedError("sidecar down")
    sup = _supervisor(network, sessions, reconnect_delay=0.01, max_reconnect_attempts=3)
    await sup.start()
    await _settle(0.2)
    # Initial attempt plus three retries, then the cap holds it closed
    assert len(network.connects) == 4
    assert sup.state is ConnectionState.CLOSED
    assert sup.reconnect_pending is False
    await sup.stop()


@pytest.mark.asyncio
async def test_credentials_saved_in_any_state(network, sessions, blob_store):
    sup = _supervisor(network, sessions)
    await sup.start()
    await network.emit(PairingCode("ABC123"))
    await network.emit(CredentialsChanged({"noiseKey": b"\x02"}))
    await sessions.flush()
    assert decode_auth_state(blob_store.objects[KEY]) == {"noiseKey": b"\x02"}

    # The rotated state is what the next reconnect presents
    await network.emit(ConnectionClosed(CloseReason(message="lost")))
    await _settle()
    assert network.connects[-1] == {"noiseKey": b"\x02"}
    await sup.stop()


@pytest.mark.asyncio
async def test_messages_dispatched_without_blocking(network, sessions):
    release = asyncio.Event()
    handled = []

    async def slow_handler(msg, delivered_open):
        await release.wait()
        handled.append((msg.id, delivered_open))

    sup = _supervisor(network, sessions, on_message=slow_handler)
    await sup.start()
    await network.emit(ConnectionOpened())

    await network.emit(MessageReceived(InboundMessage(id="M1", sender="a@c.us", text="hola")))
    await network.emit(MessageReceived(InboundMessage(id="M2", sender="b@c.us", text="hey")))
    # Both emits returned while the handlers are still parked
    assert handled == []

    release.set()
    await sup.drain()
    assert sorted(handled) == [("M1", True), ("M2", True)]
    await sup.stop()


@pytest.mark.asyncio
async def test_stop_closes_and_disconnects(network, sessions):
    sup = _supervisor(network, sessions)
    await sup.start()
    await network.emit(PairingCode("ABC123"))
    await sup.stop()
    assert sup.state is ConnectionState.CLOSED
    assert sup.pairing_code is None
    assert network.disconnects == 1
    status = sup.status()
    assert status["state"] == "CLOSED"
    assert status["hasPairingCode"] is False
