"""Persistent connection to the OpenAI Realtime API for one call."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from calls.errors import RealtimeLinkError

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]

AUDIO_DELTA_EVENT = "response.audio.delta"


@dataclass(slots=True)
class RealtimeConfig:
    voice: str = "alloy"
    instructions: str = "You are a helpful assistant."
    temperature: float = 0.8
    turn_detection: dict[str, Any] = field(default_factory=lambda: {"type": "server_vad"})
    modalities: list[str] = field(default_factory=lambda: ["text", "audio"])
    input_audio_format: str = "g711_ulaw"
    output_audio_format: str = "g711_ulaw"

    def session_update(self) -> dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "turn_detection": self.turn_detection,
                "input_audio_format": self.input_audio_format,
                "output_audio_format": self.output_audio_format,
                "voice": self.voice,
                "instructions": self.instructions,
                "modalities": self.modalities,
                "temperature": self.temperature,
            },
        }


def decode_event(raw: str | bytes) -> dict[str, Any] | None:
    """Decode one server message; ``None`` for anything that is not a JSON object."""

    try:
        event = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(event, dict):
        return None
    return event


class RealtimeLink:
    """Wraps one Realtime websocket.

    Reconnect policy: ``open`` makes up to ``connect_attempts`` attempts with
    exponential backoff. If the socket drops while the link is still wanted, the
    receive task reconnects with the same policy and re-sends ``session.update``.
    When every attempt fails the link stays down and sends become no-ops.
    """

    def __init__(
        self,
        api_key: str,
        config: RealtimeConfig,
        *,
        url: str,
        connect_attempts: int = 3,
        backoff_seconds: float = 0.5,
        open_timeout: float = 10.0,
        connect: Callable[..., Awaitable[Any]] = ws_connect,
        label: str = "",
    ) -> None:
        self._api_key = api_key
        self._config = config
        self._url = url
        self._attempts = max(1, connect_attempts)
        self._backoff = backoff_seconds
        self._open_timeout = open_timeout
        self._connect = connect
        self._label = label
        self._ws: Any = None
        self._receiver: asyncio.Task | None = None
        self._handler: EventHandler | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    def on_event(self, handler: EventHandler) -> None:
        self._handler = handler

    async def open(self) -> None:
        if self._closed:
            raise RealtimeLinkError("Realtime link already closed")
        self._ws = await self._connect_with_retry()
        self._receiver = asyncio.create_task(self._receive_loop(), name=f"realtime-recv:{self._label}")

    async def send_audio(self, payload_b64: str) -> bool:
        return await self._send({"type": "input_audio_buffer.append", "audio": payload_b64})

    async def commit(self) -> bool:
        return await self._send({"type": "input_audio_buffer.commit"})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        receiver, self._receiver = self._receiver, None
        if receiver is not None and receiver is not asyncio.current_task():
            receiver.cancel()

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException):
                LOGGER.debug("Realtime close failed for %s", self._label, exc_info=True)

    async def _connect_with_retry(self) -> Any:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        last_error: Exception | None = None
        for attempt in range(self._attempts):
            if attempt:
                await asyncio.sleep(self._backoff * 2 ** (attempt - 1))
            try:
                ws = await self._connect(
                    self._url,
                    additional_headers=headers,
                    open_timeout=self._open_timeout,
                )
                await self._initialize(ws)
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                last_error = exc
                LOGGER.warning(
                    "Realtime connect attempt %d/%d failed for %s: %s",
                    attempt + 1,
                    self._attempts,
                    self._label,
                    exc,
                )
                continue

            LOGGER.info("Realtime session initialized for %s", self._label)
            return ws

        raise RealtimeLinkError(
            f"Realtime connect failed after {self._attempts} attempts: {last_error}"
        ) from last_error

    async def _initialize(self, ws: Any) -> None:
        # Until session.update is sent the socket is owned here, not by the link.
        try:
            await ws.send(json.dumps(self._config.session_update()))
        except BaseException:
            try:
                await ws.close()
            except (OSError, WebSocketException):
                LOGGER.debug("Realtime close failed for %s", self._label, exc_info=True)
            raise

    async def _send(self, message: dict[str, Any]) -> bool:
        ws = self._ws
        if ws is None or self._closed:
            LOGGER.debug("Realtime link down; dropping %s for %s", message["type"], self._label)
            return False
        try:
            await ws.send(json.dumps(message))
        except ConnectionClosed:
            LOGGER.debug("Realtime socket closed; dropping %s for %s", message["type"], self._label)
            return False
        return True

    async def _receive_loop(self) -> None:
        while not self._closed:
            try:
                async for raw in self._ws:
                    event = decode_event(raw)
                    if event is None:
                        LOGGER.debug("Dropping malformed realtime message for %s", self._label)
                        continue
                    await self._dispatch(event)
            except ConnectionClosed as exc:
                if self._closed:
                    return
                LOGGER.warning("Realtime socket dropped for %s: %s", self._label, exc)

            if self._closed:
                return

            self._ws = None
            try:
                self._ws = await self._connect_with_retry()
            except RealtimeLinkError:
                LOGGER.error("Realtime link lost for %s; continuing without agent audio", self._label)
                return

    async def _dispatch(self, event: dict[str, Any]) -> None:
        if self._handler is None:
            return
        try:
            await self._handler(event)
        except Exception:
            LOGGER.exception("Realtime event handler failed for %s", self._label)
