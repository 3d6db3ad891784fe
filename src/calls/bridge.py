from __future__ import annotations

import logging

from calls.errors import DuplicateStreamError
from calls.registry import SessionRegistry
from calls.session import CallSession, Sender, SessionFactory
from telephony.twilio_stream import StreamEvent, parse_twilio_ws_message

LOGGER = logging.getLogger(__name__)

_IGNORED_EVENTS = frozenset({"connected", "mark", "dtmf"})


class MediaStreamBridge:
    """Routes the frames of one transport WebSocket to its call session."""

    def __init__(self, registry: SessionRegistry, session_factory: SessionFactory, send: Sender) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._send = send
        self._session: CallSession | None = None

    @property
    def session(self) -> CallSession | None:
        return self._session

    async def handle_text(self, text: str) -> None:
        try:
            event = parse_twilio_ws_message(text)
        except ValueError as exc:
            LOGGER.warning("Dropping malformed transport frame: %s", exc)
            return

        if event.event == "start":
            await self._on_start(event)
        elif event.event == "media":
            if event.track and event.track != "inbound":
                return
            session = self._session_for(event)
            if session is not None and event.payload is not None:
                await session.on_media(event.payload)
        elif event.event == "stop":
            session = self._session_for(event)
            if session is not None:
                await session.stop()
        elif event.event in _IGNORED_EVENTS:
            LOGGER.debug("Ignoring transport event %s", event.event)
        else:
            LOGGER.debug("Unknown transport event %s", event.event)

    async def on_transport_closed(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    async def _on_start(self, event: StreamEvent) -> None:
        assert event.stream_sid is not None and event.call_sid is not None

        if self._session is not None and self._session.stream_sid != event.stream_sid:
            LOGGER.warning(
                "New stream %s on a socket still carrying %s; closing the old one",
                event.stream_sid,
                self._session.stream_sid,
            )
            await self.on_transport_closed()

        if event.stream_sid in self._registry:
            LOGGER.warning("Duplicate start for stream %s ignored", event.stream_sid)
            return

        session = self._session_factory(event.stream_sid, event.call_sid, self._send)
        try:
            await session.start()
        except DuplicateStreamError:
            LOGGER.warning("Duplicate start for stream %s ignored", event.stream_sid)
            return
        self._session = session

    def _session_for(self, event: StreamEvent) -> CallSession | None:
        """The session this socket started; frames naming another stream are dropped."""

        session = self._session
        if session is None:
            LOGGER.debug("No session for transport event %s", event.event)
            return None
        if event.stream_sid and event.stream_sid != session.stream_sid:
            LOGGER.warning(
                "Dropping %s for stream %s on a socket carrying %s",
                event.event,
                event.stream_sid,
                session.stream_sid,
            )
            return None
        return session
