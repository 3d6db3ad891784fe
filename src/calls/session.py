"""State machine and data owner for one recorded call."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from calls.errors import RealtimeLinkError
from calls.registry import SessionRegistry
from jobs.schemas import MixJob
from realtime.link import AUDIO_DELTA_EVENT, RealtimeConfig, RealtimeLink
from recording.filler import SilenceFiller
from recording.wav_sink import AudioCaptureSink
from telephony.twilio_stream import build_media_message

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings

LOGGER = logging.getLogger(__name__)

Sender = Callable[[str], Awaitable[None]]


class Dispatcher(Protocol):
    async def publish(self, job: MixJob) -> bool: ...


class CallState(str, Enum):
    INIT = "init"
    ACTIVE = "active"
    STOPPING = "stopping"
    CLOSED = "closed"
    DISPATCHED = "dispatched"


@dataclass(frozen=True, slots=True)
class RecordingPaths:
    caller: Path
    agent: Path
    mixed: Path


def recording_paths(recordings_dir: Path, call_sid: str) -> RecordingPaths:
    return RecordingPaths(
        caller=recordings_dir / f"{call_sid}_caller.wav",
        agent=recordings_dir / f"{call_sid}_agent.wav",
        mixed=recordings_dir / f"{call_sid}_mixed.wav",
    )


def _decode_audio(payload_b64: str) -> bytes | None:
    try:
        return base64.b64decode(payload_b64, validate=True)
    except (binascii.Error, ValueError):
        return None


class CallSession:
    """One phone call from stream start to mix job dispatch.

    States move ``INIT -> ACTIVE -> STOPPING -> CLOSED -> DISPATCHED``; a close may
    skip ``STOPPING`` when the transport drops without a stop frame. Everything runs
    on the event loop, which is what orders the silence filler against real agent
    writes.
    """

    def __init__(
        self,
        stream_sid: str,
        call_sid: str,
        *,
        recordings_dir: Path,
        send_to_caller: Sender,
        registry: SessionRegistry,
        dispatcher: Dispatcher,
        link: RealtimeLink | None = None,
        frame_interval_ms: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stream_sid = stream_sid
        self.call_sid = call_sid

        paths = recording_paths(recordings_dir, call_sid)
        self.caller_path = paths.caller
        self.agent_path = paths.agent
        self.output_path = paths.mixed
        self.caller_sink = AudioCaptureSink(self.caller_path)
        self.agent_sink = AudioCaptureSink(self.agent_path)

        self.link = link
        self.state = CallState.INIT
        self._clock = clock
        self.last_agent_write = clock()
        self.filler = SilenceFiller(self, interval_ms=frame_interval_ms, clock=clock)

        self._send_to_caller = send_to_caller
        self._registry = registry
        self._dispatcher = dispatcher
        self._link_task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"CallSession(call={self.call_sid!r}, stream={self.stream_sid!r}, state={self.state.value})"

    def mix_job(self) -> MixJob:
        return MixJob(
            call_sid=self.call_sid,
            stream_sid=self.stream_sid,
            caller_path=str(self.caller_path),
            agent_path=str(self.agent_path),
            output_path=str(self.output_path),
        )

    async def start(self) -> None:
        if self.state is not CallState.INIT:
            LOGGER.warning("Ignoring start for %r", self)
            return

        self._registry.put(self.stream_sid, self)
        for sink in (self.caller_sink, self.agent_sink):
            try:
                sink.open()
            except OSError:
                LOGGER.exception("Could not open %s for call=%s", sink.path, self.call_sid)

        self.last_agent_write = self._clock()
        self.filler.start()
        self.state = CallState.ACTIVE
        LOGGER.info("Call started call=%s stream=%s", self.call_sid, self.stream_sid)

        if self.link is None:
            LOGGER.warning("No realtime link for call=%s; agent track will be silence", self.call_sid)
            return

        self.link.on_event(self._on_link_event)
        self._link_task = asyncio.create_task(self._open_link(), name=f"realtime-open:{self.stream_sid}")

    async def wait_until_linked(self) -> bool:
        """Wait for the background link opening and report whether it is up."""

        task = self._link_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                return False
        return self.link is not None and self.link.is_open

    async def on_media(self, payload_b64: str) -> None:
        if self.state is not CallState.ACTIVE:
            LOGGER.debug("Dropping caller media for %r", self)
            return

        chunk = _decode_audio(payload_b64)
        if chunk is None:
            LOGGER.warning("Dropping undecodable caller media for call=%s", self.call_sid)
            return

        try:
            self.caller_sink.append(chunk)
        except OSError:
            LOGGER.exception("Caller audio write failed for call=%s", self.call_sid)

        if self.link is not None:
            await self.link.send_audio(payload_b64)

    async def on_agent_audio(self, delta_b64: str) -> None:
        if self.state is not CallState.ACTIVE:
            LOGGER.debug("Dropping agent audio for %r", self)
            return

        chunk = _decode_audio(delta_b64)
        if chunk is None:
            LOGGER.warning("Dropping undecodable agent audio for call=%s", self.call_sid)
            return

        # No await between the clock update and the write: the filler cannot interleave.
        self.last_agent_write = self._clock()
        try:
            self.agent_sink.append(chunk)
        except OSError:
            LOGGER.exception("Agent audio write failed for call=%s", self.call_sid)

        await self._send_to_caller(build_media_message(self.stream_sid, delta_b64))

    async def stop(self) -> None:
        if self.state is not CallState.ACTIVE:
            LOGGER.debug("Ignoring stop for %r", self)
            return

        self.state = CallState.STOPPING
        self.filler.stop()
        self._finalize_sinks()
        LOGGER.info("Call stopping call=%s stream=%s", self.call_sid, self.stream_sid)

        if self.link is not None:
            await self.link.commit()

    async def close(self) -> None:
        if self.state in (CallState.CLOSED, CallState.DISPATCHED):
            return
        if self.state is CallState.INIT:
            self.state = CallState.CLOSED
            return

        self.filler.stop()
        self._finalize_sinks()
        if self._registry.get(self.stream_sid) is self:
            self._registry.remove(self.stream_sid)
        self.state = CallState.CLOSED

        if self._link_task is not None and not self._link_task.done():
            self._link_task.cancel()
        if self.link is not None:
            await self.link.close()
        LOGGER.info("Call closed call=%s stream=%s", self.call_sid, self.stream_sid)

        await self._dispatch()

    async def _dispatch(self) -> None:
        if self.state is not CallState.CLOSED:
            return
        self.state = CallState.DISPATCHED
        await self._dispatcher.publish(self.mix_job())

    async def _open_link(self) -> None:
        assert self.link is not None
        try:
            await self.link.open()
        except RealtimeLinkError as exc:
            LOGGER.error("Realtime link failed for call=%s: %s; recording caller only", self.call_sid, exc)

    async def _on_link_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == AUDIO_DELTA_EVENT:
            delta = event.get("delta")
            if isinstance(delta, str) and delta:
                await self.on_agent_audio(delta)
        elif event_type == "error":
            LOGGER.warning("Realtime error for call=%s: %s", self.call_sid, event.get("error"))

    def _finalize_sinks(self) -> None:
        for sink in (self.caller_sink, self.agent_sink):
            try:
                sink.finalize()
            except OSError:
                LOGGER.exception("Could not finalize %s for call=%s", sink.path, self.call_sid)


SessionFactory = Callable[[str, str, Sender], CallSession]


def build_session_factory(
    settings: Settings,
    registry: SessionRegistry,
    dispatcher: Dispatcher,
) -> SessionFactory:
    """Bind configuration to new sessions; a missing API key means no realtime link."""

    realtime_config = RealtimeConfig(
        voice=settings.realtime_voice,
        instructions=settings.realtime_instructions,
        temperature=settings.realtime_temperature,
    )

    def factory(stream_sid: str, call_sid: str, send_to_caller: Sender) -> CallSession:
        link = None
        if settings.openai_api_key:
            link = RealtimeLink(
                settings.openai_api_key,
                realtime_config,
                url=settings.realtime_url,
                connect_attempts=settings.realtime_connect_attempts,
                backoff_seconds=settings.realtime_backoff_seconds,
                open_timeout=settings.realtime_open_timeout,
                label=f"call={call_sid}",
            )
        return CallSession(
            stream_sid,
            call_sid,
            recordings_dir=settings.recordings_dir,
            send_to_caller=send_to_caller,
            registry=registry,
            dispatcher=dispatcher,
            link=link,
            frame_interval_ms=settings.frame_interval_ms,
        )

    return factory
