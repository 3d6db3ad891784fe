"""Twilio Media Streams frame parsing and building."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One decoded transport frame.

    ``stream_sid``/``call_sid`` are only guaranteed on ``start``; ``payload`` only
    on ``media``.
    """

    event: str
    stream_sid: str | None = None
    call_sid: str | None = None
    payload: str | None = None
    track: str | None = None


def parse_twilio_ws_message(text: str) -> StreamEvent:
    """Decode a Twilio WebSocket text frame.

    Raises:
        ValueError: if the frame is not a JSON object with an ``event`` field.
    """

    message: Any = json.loads(text)
    if not isinstance(message, dict):
        raise ValueError("Twilio frame is not a JSON object")

    event = message.get("event")
    if not isinstance(event, str) or not event:
        raise ValueError("Twilio frame has no event")

    stream_sid = message.get("streamSid")
    if event == "start":
        start = message.get("start") or {}
        if not isinstance(start, dict):
            raise ValueError("Twilio start frame body is not an object")
        stream_sid = start.get("streamSid") or stream_sid
        call_sid = start.get("callSid")
        if not stream_sid or not call_sid:
            raise ValueError("Twilio start frame without streamSid/callSid")
        return StreamEvent(event=event, stream_sid=str(stream_sid), call_sid=str(call_sid))

    if event == "media":
        media = message.get("media") or {}
        if not isinstance(media, dict):
            raise ValueError("Twilio media frame body is not an object")
        payload = media.get("payload")
        if not isinstance(payload, str):
            raise ValueError("Twilio media frame without payload")
        track = media.get("track")
        if track is not None and not isinstance(track, str):
            raise ValueError("Twilio media frame with a non-string track")
        return StreamEvent(
            event=event,
            stream_sid=str(stream_sid) if stream_sid else None,
            payload=payload,
            track=track,
        )

    return StreamEvent(event=event, stream_sid=str(stream_sid) if stream_sid else None)


def build_media_message(stream_sid: str, payload_b64: str) -> str:
    """Outbound frame that plays base64 mu-law audio to the caller."""

    return json.dumps(
        {
            "event": "media",
            "streamSid": stream_sid,
            "media": {"payload": payload_b64},
        }
    )
