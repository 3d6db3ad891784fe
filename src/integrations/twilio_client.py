"""Twilio Voice helpers: credentials, stream TwiML and outbound calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from twilio.rest import Client
from twilio.twiml.voice_response import Connect, VoiceResponse

from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

MEDIA_STREAM_PATH = "/api/twilio/media-stream"


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    public_base_url: str

    @property
    def media_stream_url(self) -> str:
        return to_ws_url(self.public_base_url + MEDIA_STREAM_PATH)


def to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def connect_stream_twiml(stream_url: str, greeting: str | None = None) -> str:
    """TwiML that optionally greets the caller, then bridges the call to ``stream_url``."""

    response = VoiceResponse()
    if greeting:
        response.say(greeting)
    connect = Connect()
    connect.stream(url=stream_url)
    response.append(connect)
    return str(response)


def get_twilio_config() -> TwilioConfig:
    settings = get_settings()
    missing = [
        name
        for name, value in (
            ("TWILIO_ACCOUNT_SID", settings.twilio_account_sid),
            ("TWILIO_AUTH_TOKEN", settings.twilio_auth_token),
            ("TWILIO_FROM_NUMBER", settings.twilio_from_number),
            ("PUBLIC_BASE_URL", settings.public_base_url),
        )
        if not value
    ]
    if missing:
        raise ValueError(f"Twilio is not configured; missing {', '.join(missing)}")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_from_number,
        public_base_url=settings.public_base_url.rstrip("/"),
    )


def build_twilio_client(cfg: TwilioConfig | None = None) -> Client:
    cfg = cfg or get_twilio_config()
    return Client(cfg.account_sid, cfg.auth_token)


def start_recorded_call(client: Client, cfg: TwilioConfig, to_number: str) -> str:
    """Dial ``to_number`` and stream the answered call into the recorder; returns the call SID.

    Raises:
        twilio.base.exceptions.TwilioException: when Twilio rejects the call.
    """

    call = client.calls.create(
        to=to_number,
        from_=cfg.from_number,
        twiml=connect_stream_twiml(cfg.media_stream_url),
    )
    LOGGER.info("Outgoing call to %s (call=%s)", to_number, call.sid)
    return str(call.sid)
