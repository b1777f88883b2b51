"""
Connection Supervisor
---------------------
Single owner of the network connection and everything derived from it:

    DISCONNECTED -> CONNECTING -> AWAITING_PAIRING -> OPEN -> CLOSED
                                                              |
                     CONNECTING <--- fixed-delay timer -------+

- A pairing code moves CONNECTING to AWAITING_PAIRING and fills the single
  pairing slot; OPEN and CLOSED empty it.
- A close is classified (see state_machine.classify_close_reason):
  LOGOUT is terminal, BAD_SESSION wipes the stored session before the
  reconnect, anything else just reconnects.
- At most one reconnect timer exists at a time, and it only ever fires
  from CLOSED, so OPEN never jumps straight back to CONNECTING.
- Credential rotations are handed to the Session Manager whatever the state.
- Inbound messages are dispatched to `on_message` as background tasks so a
  slow store or webhook never holds up the next network event. Whether the
  connection was OPEN is decided at delivery and handed to the task.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Set

from wabridge.core.catalog import CatalogCache
from wabridge.core.state_machine import (
    CloseKind,
    ConnectionState,
    can_transition,
    classify_close_reason,
)
from wabridge.network.base import Network
from wabridge.network.events import (
    CloseReason,
    ConnectionClosed,
    ConnectionOpened,
    CredentialsChanged,
    MessageReceived,
    PairingCode,
)
from wabridge.observability.logging import log, log_error
from wabridge.session.manager import SessionManager
from wabridge.store.models import InboundMessage


class ConnectionSupervisor:
    def __init__(
        self,
        network: Network,
        sessions: SessionManager,
        catalog: Optional[CatalogCache] = None,
        reconnect_delay: float = 5.0,
        max_reconnect_attempts: int = 0,
        on_message: Optional[Callable[[InboundMessage, bool], Awaitable]] = None,
    ):
        self.network = network
        self.sessions = sessions
        self.catalog = catalog
        self.reconnect_delay = float(reconnect_delay)
        self.max_reconnect_attempts = int(max_reconnect_attempts or 0)
        self.on_message = on_message

        self._state = ConnectionState.DISCONNECTED
        self._pairing_code: Optional[str] = None
        self._own_address: Optional[str] = None
        self._auth_state = None
        self._reconnect_task: Optional[asyncio.Task] = None
        # A fired timer whose connect attempt is still running
        self._connecting_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        self._last_close: Optional[str] = None
        self._stopped = False
        self._background: Set[asyncio.Task] = set()

        network.subscribe(PairingCode, self._on_pairing_code)
        network.subscribe(CredentialsChanged, self._on_credentials_changed)
        network.subscribe(ConnectionOpened, self._on_opened)
        network.subscribe(ConnectionClosed, self._on_closed)
        network.subscribe(MessageReceived, self._on_message_received)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def pairing_code(self) -> Optional[str]:
        return self._pairing_code

    @property
    def own_address(self) -> Optional[str]:
        return self._own_address

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def status(self) -> dict:
        snapshot = self.catalog.current() if self.catalog is not None else None
        return {
            "state": self._state.value,
            "hasPairingCode": self._pairing_code is not None,
            "ownAddress": self._own_address,
            "reconnectPending": self.reconnect_pending,
            "reconnectAttempts": self._reconnect_attempts,
            "lastCloseReason": self._last_close,
            "catalogProducts": len(snapshot) if snapshot is not None else None,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        self._stopped = False
        self._auth_state = await self.sessions.load()
        log("supervisor_start", restoredSession=self._auth_state is not None)
        await self._connect()

    async def stop(self) -> None:
        self._stopped = True
        # Both the pending timer and a reconnect already dialing must be gone before disconnect
        pending = [t for t in (self._cancel_reconnect(), self._cancel_connecting()) if t is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        previous = self._state
        self._state = ConnectionState.CLOSED
        self._pairing_code = None
        if previous is not ConnectionState.CLOSED:
            log("connection_state_changed", fromState=previous.value, toState=self._state.value, cause="stop")
        try:
            await self.network.disconnect()
        except Exception as e:
            log_error("network_disconnect_failed", e)
        await self.sessions.flush()
        await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight background work (message relays, catalog loads)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def _transition(self, target: ConnectionState, cause: str = "") -> bool:
        current = self._state
        if target is current:
            return False
        if not can_transition(current, target):
            log("connection_transition_ignored", fromState=current.value, toState=target.value, cause=cause)
            return False
        self._state = target
        log("connection_state_changed", fromState=current.value, toState=target.value, cause=cause)
        return True

    async def _connect(self) -> None:
        if self._stopped:
            return
        if not self._transition(ConnectionState.CONNECTING, cause="connect"):
            return
        try:
            await self.network.connect(self._auth_state)
        except Exception as e:
            # Whatever the protocol layer raised, the attempt is over: treat it as a transient close
            log_error("connect_failed", e, attempt=self._reconnect_attempts)
            await self._handle_close(CloseReason(message=f"connect failed: {type(e).__name__}"))

    async def _handle_close(self, reason: CloseReason) -> None:
        kind = classify_close_reason(reason)
        if not self._transition(ConnectionState.CLOSED, cause=kind.value):
            # Stray close (already closed, or never started): nothing to react to
            return
        self._pairing_code = None
        self._last_close = reason.describe()
        log("connection_closed", reason=self._last_close, kind=kind.value)

        if kind is CloseKind.LOGOUT:
            self._cancel_reconnect()
            self._auth_state = None
            await self.sessions.delete()
            log("connection_logged_out", reason=self._last_close)
            return

        if kind is CloseKind.BAD_SESSION:
            self._auth_state = None
            await self.sessions.delete()

        self._schedule_reconnect()

    def _schedule_reconnect(self) -> bool:
        if self._stopped:
            return False
        if self.reconnect_pending:
            log("reconnect_already_pending")
            return False
        if self.max_reconnect_attempts and self._reconnect_attempts >= self.max_reconnect_attempts:
            log("reconnect_gave_up", attempts=self._reconnect_attempts)
            return False
        self._reconnect_attempts += 1
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_after(self.reconnect_delay))
        log("reconnect_scheduled", delaySec=self.reconnect_delay, attempt=self._reconnect_attempts)
        return True

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Fired: no longer pending, so a failure of this attempt can schedule the next one
        self._reconnect_task = None
        if self._state is not ConnectionState.CLOSED:
            log("reconnect_skipped", state=self._state.value)
            return
        me = asyncio.current_task()
        self._connecting_task = me
        try:
            await self._connect()
        finally:
            if self._connecting_task is me:
                self._connecting_task = None

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]) -> Optional[asyncio.Task]:
        if task is None or task.done() or task is asyncio.current_task():
            return None
        task.cancel()
        return task

    def _cancel_reconnect(self) -> Optional[asyncio.Task]:
        """Cancel the pending timer; returns it so callers can wait for it to unwind."""
        task, self._reconnect_task = self._reconnect_task, None
        return self._cancel_task(task)

    def _cancel_connecting(self) -> Optional[asyncio.Task]:
        task, self._connecting_task = self._connecting_task, None
        return self._cancel_task(task)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)

        def _done(t: asyncio.Task):
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                log_error("background_task_failed", t.exception(), task=name)

        task.add_done_callback(_done)
        return task

    # ------------------------------------------------------------------
    # Network event handlers
    # ------------------------------------------------------------------
    async def _on_pairing_code(self, event: PairingCode) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._transition(ConnectionState.AWAITING_PAIRING, cause="pairing_code")
        if self._state is not ConnectionState.AWAITING_PAIRING:
            log("pairing_code_ignored", state=self._state.value)
            return
        self._pairing_code = event.code
        log("pairing_code_received", codeLength=len(event.code or ""))

    async def _on_credentials_changed(self, event: CredentialsChanged) -> None:
        self._auth_state = event.state
        self.sessions.schedule_save(event.state)

    async def _on_opened(self, event: ConnectionOpened) -> None:
        if not self._transition(ConnectionState.OPEN, cause="handshake"):
            return
        self._pairing_code = None
        self._reconnect_attempts = 0
        if event.own_address:
            self._own_address = event.own_address
        log("connection_open", ownAddress=self._own_address)
        if self.catalog is not None:
            self._spawn(self.catalog.reload(), name="catalog_reload")

    async def _on_closed(self, event: ConnectionClosed) -> None:
        await self._handle_close(event.reason)

    async def _on_message_received(self, event: MessageReceived) -> None:
        if self.on_message is None:
            return
        # Gate on the state at delivery: a close handled before the task runs must not drop it
        self._spawn(self.on_message(event.message, self.is_open), name="inbound_relay")
