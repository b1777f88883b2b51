"""
Network capability backed by a protocol sidecar
-----------------------------------------------
The messaging protocol itself runs out of process (a small companion
service holding the web session). This adapter talks to it over HTTP:

  POST   /session        {"session": <auth state, buffers tagged> | null}
  GET    /events         NDJSON stream, one event object per line
  POST   /messages       {"to", "body"}
  POST   /session/close  drop the socket; the device stays linked

The bridge never asks the sidecar to log out: unlinking happens on the
phone and arrives as a close event. A graceful shutdown therefore leaves the
persisted auth state valid for the next start.

Event lines are translated into the typed events of wabridge.network.events.
The end of the event stream is reported as a transient close.
"""
from __future__ import annotations

import asyncio
import json
from typing import Optional

import httpx

from wabridge.errors import SendError
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
from wabridge.session.codec import from_wire, to_wire
from wabridge.store.models import InboundMessage
from wabridge.utils.time import parse_timestamp_ms


def _as_int(v) -> Optional[int]:
    try:
        return int(v) if v is not None and str(v).strip() != "" else None
    except (TypeError, ValueError):
        return None


def _serialized_id(v) -> str:
    # Message ids arrive either flat or as {"_serialized": "...", "id": "..."}
    if isinstance(v, dict):
        return str(v.get("_serialized") or v.get("id") or "")
    return "" if v is None else str(v)


def parse_event(data: dict):
    """Typed event for one sidecar line, or None for kinds the bridge ignores."""
    if not isinstance(data, dict):
        return None
    kind = str(data.get("type") or "").lower()

    if kind == "qr":
        code = data.get("qr") or data.get("code")
        return PairingCode(str(code)) if code else None

    if kind in ("authenticated", "creds"):
        session = data.get("session")
        return CredentialsChanged(from_wire(session)) if session is not None else None

    if kind in ("ready", "open"):
        me = data.get("me")
        return ConnectionOpened(own_address=_serialized_id(me) or None)

    if kind in ("disconnected", "close"):
        return ConnectionClosed(CloseReason(code=_as_int(data.get("code")), message=str(data.get("reason") or "")))

    if kind == "auth_failure":
        return ConnectionClosed(CloseReason(message=f"auth_failure: {data.get('message') or ''}".strip()))

    if kind == "message":
        msg_id = _serialized_id(data.get("id"))
        sender = str(data.get("from") or "")
        if not msg_id or not sender:
            return None
        return MessageReceived(InboundMessage(
            id=msg_id,
            sender=sender,
            text=str(data.get("body") or ""),
            participant=data.get("author") or None,
            to=data.get("to") or None,
            from_me=bool(data.get("fromMe")),
            received_at_ms=parse_timestamp_ms(data.get("timestamp")),
        ))

    return None


class SidecarNetwork(Network):
    def __init__(self, base_url: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._reader: Optional[asyncio.Task] = None
        self._close_reported = False

    def _new_client(self) -> httpx.AsyncClient:
        # The event stream is long-lived: no read timeout on it
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, read=None),
            transport=self._transport,
        )

    async def connect(self, auth_state=None) -> None:
        await self._teardown()
        self._client = self._new_client()
        self._close_reported = False
        body = {"session": to_wire(auth_state) if auth_state is not None else None}
        resp = await self._client.post("/session", json=body, timeout=self.timeout)
        resp.raise_for_status()
        self._reader = asyncio.get_running_loop().create_task(self._read_events(self._client))

    async def _read_events(self, client: httpx.AsyncClient) -> None:
        reason = CloseReason(message="event stream ended")
        try:
            async with client.stream("GET", "/events") as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = parse_event(json.loads(line))
                    except ValueError as e:
                        log_error("sidecar_event_invalid", e, line=line[:200])
                        continue
                    if event is None:
                        continue
                    if isinstance(event, ConnectionClosed):
                        self._close_reported = True
                    await self.emit(event)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            log_error("sidecar_stream_failed", e, url=self.base_url)
            reason = CloseReason(message=f"event stream error: {type(e).__name__}")
        if not self._close_reported:
            self._close_reported = True
            await self.emit(ConnectionClosed(reason))

    async def send(self, to: str, body: str) -> None:
        if self._client is None:
            raise SendError("sidecar session not started")
        try:
            resp = await self._client.post("/messages", json={"to": to, "body": body}, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise SendError(f"{type(e).__name__}: {e}") from e
        if not (200 <= resp.status_code < 300):
            raise SendError(f"sidecar refused send: {resp.status_code} {(resp.text or '')[:200]}")

    async def disconnect(self) -> None:
        client = self._client
        if client is not None:
            try:
                await client.post("/session/close", timeout=self.timeout)
            except httpx.HTTPError as e:
                log_error("sidecar_disconnect_failed", e, url=self.base_url)
        await self._teardown()
        log("sidecar_disconnected", url=self.base_url)

    async def _teardown(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
