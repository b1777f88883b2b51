import time

import httpx

from wabridge.settings import settings
from wabridge.observability.logging import log


def build_forward_payload(sender: str, body: str) -> dict:
    return {"from": sender, "body": body}


def forward_to_webhook(payload: dict, *, message_id: str = "", url: str = None, timeout: float = None,
                       transport=None) -> bool:
    """
    POST one inbound message to the downstream automation webhook.
    Single attempt; returns True on 2xx, False otherwise (never raises).
    """
    url = url if url is not None else settings.N8N_WEBHOOK_URL
    if not url:
        log(event="inbound_forward_skipped_no_url", messageId=message_id)
        return False
    timeout = float(timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SEC)

    start = time.time()
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            resp = client.post(url, json=payload)
    except httpx.HTTPError as e:
        log(
            event="inbound_forward_failed",
            messageId=message_id,
            address=payload.get("from", ""),
            elapsedMs=int((time.time() - start) * 1000),
            errorType=type(e).__name__,
            error=str(e)[:500],
        )
        return False

    elapsed_ms = int((time.time() - start) * 1000)
    if 200 <= resp.status_code < 300:
        log(
            event="inbound_forwarded",
            messageId=message_id,
            address=payload.get("from", ""),
            statusCode=int(resp.status_code),
            elapsedMs=elapsed_ms,
        )
        return True

    log(
        event="inbound_forward_failed",
        messageId=message_id,
        address=payload.get("from", ""),
        statusCode=int(resp.status_code),
        elapsedMs=elapsed_ms,
        responseText=(resp.text or "")[:500],
    )
    return False
