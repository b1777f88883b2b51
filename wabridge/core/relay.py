"""
Message Relay
-------------
Inbound: self-echo filter, open-connection gate, dedup gate, then the DB copy
and the webhook forward run side by side. Neither waits on the other's
success; each failure is logged and dropped.

Outbound: refuse unless OPEN, send through the network, then record the
sent message. A failed record does not undo a send that already happened.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from typing import Optional

from redis import RedisError
from starlette.concurrency import run_in_threadpool

from wabridge.callback.client import build_forward_payload, forward_to_webhook
from wabridge.core.dedup import ProcessedIds
from wabridge.core.state_machine import ConnectionState
from wabridge.errors import NotReadyError, SendError, StoreError
from wabridge.observability.logging import log, log_error
from wabridge.queue.jobs import forward_inbound_job
from wabridge.queue.rq_conn import get_queue
from wabridge.settings import settings
from wabridge.store.message_repo import MessageRepo
from wabridge.store.models import InboundMessage, MessageRecord


class MessageRelay:
    def __init__(
        self,
        connection,
        repo: MessageRepo,
        processed: Optional[ProcessedIds] = None,
        forward_mode: str = "inline",
        webhook_url: Optional[str] = None,
        webhook_timeout: Optional[float] = None,
    ):
        # `connection` is the ConnectionSupervisor: state, own_address and network come from it
        self.connection = connection
        self.repo = repo
        self.processed = processed if processed is not None else ProcessedIds()
        self.forward_mode = (forward_mode or "inline").lower()
        self.webhook_url = webhook_url if webhook_url is not None else settings.N8N_WEBHOOK_URL
        self.webhook_timeout = float(webhook_timeout if webhook_timeout is not None else settings.WEBHOOK_TIMEOUT_SEC)
        self.stats = Counter()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    async def on_inbound(self, msg: InboundMessage, delivered_open: Optional[bool] = None) -> bool:
        """
        True when the message was relayed, False when it was filtered out.
        `delivered_open` is the connection state when the network delivered the
        message; a message accepted while OPEN is relayed whatever happens after.
        """
        if msg.from_me:
            log("inbound_self_ignored", messageId=msg.id)
            return False

        if delivered_open is None:
            delivered_open = self.connection.state is ConnectionState.OPEN
        if not delivered_open:
            # Not marked as processed: the network redelivers it once the session is back
            self.stats["held"] += 1
            log("inbound_not_open", messageId=msg.id, address=msg.sender, state=self.connection.state.value)
            return False

        if not self.processed.check_and_add(msg.id):
            self.stats["duplicates"] += 1
            log("inbound_duplicate", messageId=msg.id, address=msg.sender)
            return False

        self.stats["received"] += 1
        log("inbound_received", messageId=msg.id, address=msg.sender, participant=msg.participant, text=msg.text)
        await asyncio.gather(self._persist_inbound(msg), self._forward(msg))
        return True

    async def _persist_inbound(self, msg: InboundMessage) -> None:
        record = MessageRecord(
            whatsapp_from=msg.sender,
            whatsapp_to=msg.to or self.connection.own_address or "",
            texto=msg.text,
            enviado_por_bot=False,
        )
        await self._persist(record, message_id=msg.id)

    async def _persist(self, record: MessageRecord, message_id: str = "") -> bool:
        try:
            await run_in_threadpool(self.repo.insert_message, record)
        except StoreError as e:
            self.stats["persist_failed"] += 1
            log_error(
                "message_persist_failed", e,
                messageId=message_id,
                address=record.whatsapp_from,
                sentByBot=record.enviado_por_bot,
            )
            return False
        self.stats["persisted"] += 1
        return True

    async def _forward(self, msg: InboundMessage) -> bool:
        payload = build_forward_payload(msg.sender, msg.text)
        if self.forward_mode == "rq" and await self._enqueue_forward(payload, msg.id):
            return True
        ok = await run_in_threadpool(
            forward_to_webhook,
            payload,
            message_id=msg.id,
            url=self.webhook_url,
            timeout=self.webhook_timeout,
        )
        self.stats["forwarded" if ok else "forward_failed"] += 1
        return ok

    async def _enqueue_forward(self, payload: dict, message_id: str) -> bool:
        try:
            job = await run_in_threadpool(lambda: get_queue().enqueue(forward_inbound_job, payload, message_id))
        except RedisError as e:
            log_error("forward_enqueue_failed", e, messageId=message_id)
            return False
        self.stats["forward_enqueued"] += 1
        log("forward_enqueued", messageId=message_id, rqJobId=getattr(job, "id", "") or "")
        return True

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    async def send_outbound(self, to: str, body: str) -> dict:
        state = self.connection.state
        if state is not ConnectionState.OPEN:
            log("outbound_not_ready", address=to, state=state.value)
            raise NotReadyError(f"connection is {state.value}")

        try:
            await self.connection.network.send(to, body)
        except SendError as e:
            self.stats["send_failed"] += 1
            log_error("outbound_send_failed", e, address=to)
            raise
        except Exception as e:
            # Unknown protocol-layer failure: surface it as a send error
            self.stats["send_failed"] += 1
            log_error("outbound_send_failed", e, address=to)
            raise SendError(str(e) or type(e).__name__) from e

        self.stats["sent"] += 1
        log("outbound_sent", address=to, body=body)

        record = MessageRecord(
            whatsapp_from=self.connection.own_address or to,
            whatsapp_to=to,
            texto=body,
            enviado_por_bot=True,
        )
        await self._persist(record)
        return {"status": "enviado"}
