"""Twilio Voice integration.

This module provides:
- Incoming-call webhook (TwiML) that connects the call to the media stream.
- Media stream websocket relaying the call to ElevenLabs Conversational AI.
- Outbound-call endpoint and the call-status callback.
"""

from __future__ import annotations

import logging
from typing import Annotated
from urllib.parse import urlencode
from xml.sax.saxutils import quoteattr

from fastapi import APIRouter, Depends, Header, Request, Response, WebSocket
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_convai_connector, get_session_registry, get_twilio_cfg, get_twilio_client
from api.schemas import MessageResponse, OutboundCallRequest, OutboundCallResponse
from bridge.errors import MissingDestinationError, OutboundCallError, UnauthorizedError
from bridge.media_relay import MediaRelay
from bridge.metadata import CALL_SID_PARAM, select_resolver
from bridge.session_registry import CallSession, LeadDetails, SessionRegistry
from config.settings import get_settings
from integrations.elevenlabs_convai import ConvaiConnector
from integrations.twilio_client import TwilioConfig

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _twiml_connect_stream(*, stream_url: str) -> str:
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url={quoteattr(stream_url)} />"
        "</Connect>"
        "</Response>"
    )


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _public_url(request: Request, route_name: str) -> str:
    settings = get_settings()
    url = request.url_for(route_name)
    if settings.public_base_url:
        # Behind proxies (ngrok etc.) the request host is not what Twilio can reach.
        return f"{settings.public_base_url}{url.path}"
    return str(url)


@router.api_route("/incoming-call", methods=["GET", "POST"])
async def twilio_incoming_call(
    request: Request,
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    call_sid = request.query_params.get("CallSid") or ""
    if not call_sid and request.method == "POST":
        form = await request.form()
        call_sid = str(form.get("CallSid") or "")
    call_sid = call_sid.strip() or None

    lead = LeadDetails.from_mapping(request.query_params)
    if call_sid:
        session = await registry.get(call_sid)
        if session is None:
            # Inbound call without an outbound trigger.
            await registry.put(call_sid, CallSession(call_sid=call_sid, lead=lead))
            LOGGER.info("Registered inbound call %s", call_sid)
        elif lead.is_empty:
            lead = session.lead

    stream_params: dict[str, str] = {}
    if call_sid:
        stream_params[CALL_SID_PARAM] = call_sid
    stream_params.update(lead.as_dict())

    stream_url = _to_ws_url(_public_url(request, "twilio_media_stream"))
    if stream_params:
        stream_url = f"{stream_url}?{urlencode(stream_params)}"

    LOGGER.info("Incoming call %s - streaming to %s", call_sid or "unknown", stream_url)
    return _twiml_response(_twiml_connect_stream(stream_url=stream_url))


@router.websocket("/media-stream")
async def twilio_media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_session_registry),
    connector: ConvaiConnector = Depends(get_convai_connector),
) -> None:
    await websocket.accept()
    LOGGER.info("Twilio connected to media stream")

    relay = MediaRelay(
        websocket,
        registry=registry,
        resolver=select_resolver(websocket.query_params, registry),
        connector=connector,
        greeting_template=get_settings().greeting_template,
    )
    await relay.run()


def validated_outbound_request(
    payload: OutboundCallRequest,
    x_api_key: Annotated[str | None, Header()] = None,
) -> OutboundCallRequest:
    """Authorize the request and normalise its destination number.

    Declared ahead of the Twilio dependencies so a bad request is rejected
    before Twilio configuration is looked up.
    """

    settings = get_settings()
    if settings.outbound_call_api_key and x_api_key != settings.outbound_call_api_key:
        raise UnauthorizedError()

    to_number = (payload.to or "").strip()
    if not to_number:
        raise MissingDestinationError()
    return payload.model_copy(update={"to": to_number})


@router.post("/outbound-call", response_model=OutboundCallResponse)
async def make_outbound_call(
    request: Request,
    payload: OutboundCallRequest = Depends(validated_outbound_request),
    registry: SessionRegistry = Depends(get_session_registry),
    twilio_client=Depends(get_twilio_client),
    cfg: TwilioConfig = Depends(get_twilio_cfg),
) -> OutboundCallResponse:
    to_number = payload.to
    lead = LeadDetails(name=payload.name, email=payload.email, phone=payload.phone or to_number)

    try:
        call = await run_in_threadpool(
            twilio_client.calls.create,
            to=to_number,
            from_=cfg.from_number,
            url=_public_url(request, "twilio_incoming_call"),
            method="POST",
            status_callback=_public_url(request, "twilio_call_status"),
            status_callback_event=list(cfg.status_callback_events),
            status_callback_method="POST",
        )
    except Exception as exc:
        # TwilioException for API errors; transport failures surface from requests.
        LOGGER.exception("Error initiating call to %s: %s", to_number, exc)
        raise OutboundCallError() from exc

    call_sid = str(call.sid)
    await registry.put(call_sid, CallSession(call_sid=call_sid, lead=lead))
    LOGGER.info("Outbound call initiated: %s", call_sid)

    return OutboundCallResponse(call_sid=call_sid, lead_details=lead.as_dict())


@router.post("/call-status", response_model=MessageResponse)
async def twilio_call_status(request: Request) -> MessageResponse:
    form = await request.form()
    LOGGER.info(
        "Call status update: call=%s status=%s",
        form.get("CallSid"),
        form.get("CallStatus"),
    )
    LOGGER.debug("Call status payload: %s", dict(form))
    return MessageResponse(message="Call status received")
