from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from telephony.g711 import silence_frame

if TYPE_CHECKING:  # pragma: no cover
    from calls.session import CallSession

LOGGER = logging.getLogger(__name__)

# Absorbs float error when the gap is an exact multiple of the interval.
_EPSILON = 1e-6


class SilenceFiller:
    """Keeps the agent track aligned with wall-clock time.

    Agent audio arrives in bursts. Every ``interval_ms`` the filler checks how long
    it has been since the last agent write and appends one silence frame per whole
    interval elapsed. Ticks run on the event loop, so they are ordered with real
    agent writes rather than racing them.
    """

    def __init__(
        self,
        session: CallSession,
        *,
        interval_ms: int = 20,
        frame: bytes | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._interval = interval_ms / 1000
        self._frame = frame if frame is not None else silence_frame(interval_ms)
        self._clock = clock
        self._task: asyncio.Task | None = None
        self.frames_written = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"silence-filler:{self._session.stream_sid}")

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None

    def tick(self) -> int:
        """Write the silence owed since the last agent write; returns frames written."""

        sink = self._session.agent_sink
        if not sink.is_open:
            return 0

        elapsed = self._clock() - self._session.last_agent_write
        owed = math.floor(elapsed / self._interval + _EPSILON)
        written = 0
        for _ in range(owed):
            try:
                sink.append(self._frame)
            except OSError:
                LOGGER.exception("Silence write failed for stream=%s", self._session.stream_sid)
                break
            written += 1

        self._session.last_agent_write += written * self._interval
        self.frames_written += written
        return written

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.tick()
