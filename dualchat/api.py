# dualchat/api.py
"""FastAPI application exposing the delivery core over HTTP."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from dualchat.core import DeliveryCore
from dualchat.nucleus.dispatcher import describe_transport_status, recommend
from dualchat.nucleus.errors import ContentStoreError, StoreUnavailable, ValidationError
from dualchat.nucleus.protocol import FALLBACK, DeliveryResult, Message, TransportMode
from dualchat.nucleus.requests import build_message, decode_payload

logger = logging.getLogger(__name__)


class DeliverRequest(BaseModel):
    recipient_id: Optional[str] = None
    payload: Optional[str] = None
    mode: Optional[str] = None
    sender_id: Optional[str] = None


class LegacyMessageRequest(BaseModel):
    recipient_id: Optional[str] = None
    encrypted_content: Optional[str] = None
    transport_mode: Optional[str] = None


class ContentAddRequest(BaseModel):
    payload_b64: Optional[str] = None
    pin: bool = True
    filename: Optional[str] = None


class ContentAddResponse(BaseModel):
    cid: str
    gateways: List[str]
    local_gateway: Optional[str]
    size: int


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(core: DeliveryCore) -> FastAPI:
    settings = core.settings
    app = FastAPI(title=settings.SERVICE_NAME, version=settings.SERVICE_VERSION)
    app.state.core = core

    async def _deliver(sender_id: str, recipient_id: Optional[str], payload: Optional[str], mode: Optional[str]) -> Dict[str, Any]:
        try:
            message = build_message(sender_id, recipient_id, payload, mode)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        try:
            core.dispatcher.check_admission(message.transport_mode)
        except StoreUnavailable as e:
            raise HTTPException(
                status_code=503,
                detail={"error": f"content store unavailable: {e}", "fallback": "Use primary transport"},
            )
        result = await core.dispatcher.deliver(message)
        return _delivery_body(message, result)

    @app.post("/api/deliver")
    async def deliver(request: DeliverRequest) -> Dict[str, Any]:
        return await _deliver(
            request.sender_id or settings.DEFAULT_SENDER_ID,
            request.recipient_id,
            request.payload,
            request.mode,
        )

    @app.post("/api/messages")
    async def send_message(request: LegacyMessageRequest) -> Dict[str, Any]:
        return await _deliver(
            settings.DEFAULT_SENDER_ID,
            request.recipient_id,
            request.encrypted_content,
            request.transport_mode,
        )

    @app.get("/api/transport/status")
    async def transport_status() -> Dict[str, Any]:
        return describe_transport_status(core.monitor.snapshot())

    @app.get("/api/ipfs/status")
    async def content_status() -> Dict[str, Any]:
        store = core.content_store
        if not store.enabled:
            return {"status": "disabled", "message": getattr(store, "reason", "content store not initialized")}
        health = core.monitor.snapshot().fallback
        return {
            "status": health.state.value,
            "available": health.available,
            "last_checked": health.last_checked.isoformat() if health.last_checked else None,
            "error": health.error,
            **health.detail,
            "gateway": store.local_gateway or None,
        }

    @app.post("/api/ipfs/add", response_model=ContentAddResponse)
    async def add_content(request: ContentAddRequest) -> ContentAddResponse:
        store = core.content_store
        try:
            core.dispatcher.check_admission(TransportMode.FALLBACK)
        except StoreUnavailable as e:
            raise HTTPException(
                status_code=503,
                detail={"error": f"content store unavailable: {e}", "fallback": "Use primary transport"},
            )
        try:
            data = decode_payload(request.payload_b64)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        try:
            cid = await store.add(data, filename=request.filename or "payload.bin", pin=request.pin)
        except ContentStoreError as e:
            logger.error(f"Content store add error: {e.kind}: {e}")
            raise HTTPException(status_code=502, detail=f"content store add failed: {e}")
        return ContentAddResponse(
            cid=cid,
            gateways=store.gateway_urls(cid),
            local_gateway=store.local_gateway_url(cid),
            size=len(data),
        )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        snapshot = core.monitor.snapshot()
        return {
            "status": "healthy",
            "timestamp": _now(),
            "version": settings.SERVICE_VERSION,
            "transports": {
                "primary": "WebSocket",
                "fallback": "IPFS",
                "recommendation": recommend(snapshot.primary.available, snapshot.fallback.available).value,
                "primary_status": snapshot.primary.state.value,
                "fallback_status": snapshot.fallback.state.value if core.content_store.enabled else "disabled",
            },
        }

    @app.get("/")
    async def root() -> Dict[str, Any]:
        return {
            "name": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "status": "running",
            "transports": ["WebSocket", "IPFS"],
            "endpoints": {
                "deliver": "/api/deliver",
                "health": "/health",
                "transport_status": "/api/transport/status",
                "ipfs_status": "/api/ipfs/status",
                "ipfs_add": "/api/ipfs/add",
                "websocket": f"ws://{settings.SERVER_HOST}:{settings.WS_PORT}",
            },
        }

    return app


def _delivery_body(message: Message, result: DeliveryResult) -> Dict[str, Any]:
    body = result.model_dump(mode="json")
    body.update({
        "sender_id": message.sender_id,
        "recipient_id": message.recipient_id,
        "transport_mode": message.transport_mode.value,
        "created_at": message.created_at.isoformat(),
    })
    fallback = result.per_transport[FALLBACK]
    if fallback.succeeded:
        body["cid"] = fallback.cid
        body["gateway_urls"] = fallback.gateway_urls
    return body
