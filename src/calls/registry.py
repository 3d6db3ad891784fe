from __future__ import annotations

from typing import TYPE_CHECKING

from calls.errors import DuplicateStreamError

if TYPE_CHECKING:  # pragma: no cover
    from calls.session import CallSession


class SessionRegistry:
    """Active call sessions keyed by stream SID.

    Note: this is accessed only from the event loop, so it carries no lock. If
    sessions are ever driven from OS threads, guard every method with one.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}

    def put(self, stream_sid: str, session: CallSession) -> None:
        existing = self._sessions.get(stream_sid)
        if existing is not None and existing is not session:
            raise DuplicateStreamError(f"Stream {stream_sid} already has an active session")
        self._sessions[stream_sid] = session

    def get(self, stream_sid: str) -> CallSession | None:
        return self._sessions.get(stream_sid)

    def remove(self, stream_sid: str) -> CallSession | None:
        return self._sessions.pop(stream_sid, None)

    def __contains__(self, stream_sid: object) -> bool:
        return stream_sid in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
