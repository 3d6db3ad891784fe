"""Twilio Voice integration.

This module provides:
- TwiML for incoming calls that connects them to the media stream.
- Outbound call initiation.
- The media stream WebSocket that feeds call sessions.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from twilio.base.exceptions import TwilioException

from api.dependencies import get_registry, get_session_factory
from api.schemas import OutboundCallRequest, OutboundCallResponse
from calls.bridge import MediaStreamBridge
from calls.errors import OutboundCallError, RecorderError
from calls.registry import SessionRegistry
from calls.session import SessionFactory
from config.settings import get_settings
from integrations.twilio_client import (
    MEDIA_STREAM_PATH,
    TwilioConfig,
    build_twilio_client,
    connect_stream_twiml,
    get_twilio_config,
    start_recorded_call,
    to_ws_url,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return to_ws_url(settings.public_base_url.rstrip("/") + MEDIA_STREAM_PATH)
    # Behind a proxy the Host header may be wrong; prefer PUBLIC_BASE_URL.
    return f"wss://{request.headers.get('host', 'localhost')}{MEDIA_STREAM_PATH}"


@router.api_route("/incoming-call", methods=["GET", "POST"])
async def twilio_incoming_call(request: Request) -> Response:
    settings = get_settings()
    return _twiml_response(connect_stream_twiml(_stream_url(request), settings.twilio_greeting))


def get_twilio_cfg() -> TwilioConfig:
    try:
        return get_twilio_config()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_twilio_client(cfg: TwilioConfig = Depends(get_twilio_cfg)):
    return build_twilio_client(cfg)


@router.post("/calls", response_model=OutboundCallResponse)
async def create_outbound_call(
    payload: OutboundCallRequest,
    twilio_client=Depends(get_twilio_client),
    cfg: TwilioConfig = Depends(get_twilio_cfg),
) -> OutboundCallResponse:
    try:
        call_sid = start_recorded_call(twilio_client, cfg, payload.to_number)
    except TwilioException as exc:
        LOGGER.exception("Outbound call to %s failed", payload.to_number)
        error = OutboundCallError(str(exc))
        raise HTTPException(status_code=error.status_code, detail=error.detail) from exc

    return OutboundCallResponse(call_sid=call_sid, to_number=payload.to_number)


@router.websocket("/media-stream")
async def twilio_media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> None:
    await websocket.accept()

    async def send(text: str) -> None:
        try:
            await websocket.send_text(text)
        except (WebSocketDisconnect, RuntimeError):
            LOGGER.debug("Transport gone; dropping outbound frame")

    bridge = MediaStreamBridge(registry, session_factory, send)
    try:
        while True:
            message = await websocket.receive_text()
            await bridge.handle_text(message)
    except WebSocketDisconnect:
        LOGGER.info("Media stream disconnected")
    except RecorderError as exc:
        LOGGER.error("Media stream aborted: %s", exc.detail)
    finally:
        await bridge.on_transport_closed()
