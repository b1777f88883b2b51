from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from wabridge.api.auth import require_api_key
from wabridge.api.qr import render_qr_png
from wabridge.api.schemas import (
    ErrorResponse,
    ProductsResponse,
    SendMessageRequest,
    SendMessageResponse,
    StatusResponse,
)
from wabridge.core.bridge import Bridge
from wabridge.errors import NotReadyError, SendError
from wabridge.observability.logging import log, log_error
from wabridge.settings import settings

router = APIRouter()


def get_bridge(request: Request) -> Bridge:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise HTTPException(status_code=503, detail="Bridge not started")
    return bridge


@router.get("/qr", responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def get_qr(bridge: Bridge = Depends(get_bridge)):
    code = bridge.supervisor.pairing_code
    if not code:
        return JSONResponse(status_code=404, content={"error": "No pairing code available"})
    try:
        png = await run_in_threadpool(render_qr_png, code)
    except Exception as e:
        log_error("qr_render_failed", e)
        return JSONResponse(status_code=500, content={"error": str(e) or type(e).__name__})
    return Response(content=png, media_type="image/png", headers={"Cache-Control": "no-store"})


@router.post(
    "/send-message",
    response_model=SendMessageResponse,
    responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    dependencies=[Depends(require_api_key)],
)
async def send_message(req: SendMessageRequest, bridge: Bridge = Depends(get_bridge)):
    try:
        result = await bridge.relay.send_outbound(req.to, req.body)
    except NotReadyError as e:
        return JSONResponse(status_code=503, content={"error": f"WhatsApp no inicializado ({e})"})
    except SendError as e:
        return JSONResponse(status_code=500, content={"error": str(e)})
    return SendMessageResponse(**result)


@router.post("/webhook/new-message")
async def webhook_new_message(payload: Any = Body(None)):
    """Debug sink: logs whatever it receives."""
    log("debug_webhook_hit", payload=payload if isinstance(payload, dict) else {"raw": str(payload)})
    return PlainTextResponse("OK")


@router.get("/status", response_model=StatusResponse, dependencies=[Depends(require_api_key)])
def get_status(bridge: Bridge = Depends(get_bridge)):
    out = bridge.status()
    if out.get("hasPairingCode"):
        out["qrUrl"] = f"{settings.public_base_url()}/qr"
    return StatusResponse(**out)


@router.get("/products", response_model=ProductsResponse, dependencies=[Depends(require_api_key)])
def get_products(bridge: Bridge = Depends(get_bridge)):
    snapshot = bridge.catalog.current() if bridge.catalog is not None else None
    if snapshot is None:
        return ProductsResponse()
    return ProductsResponse(
        loadedAtMs=snapshot.loaded_at_ms,
        products=[p.to_dict() for p in snapshot.products],
    )
