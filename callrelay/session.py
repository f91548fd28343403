"""Call session management for callrelay.

Each telephony connection gets a CallSession that is the single source of
truth for the call's identifiers, stream parameters and active flag. The
SessionStore is the explicit registry of live sessions, keyed by connection.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from loguru import logger

from callrelay.core.events import DynamicVariables


def _empty_parameters() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass
class CallSession:
    """State for one call flowing through the relay.

    Lifecycle:
    - created when Twilio opens the media stream WebSocket
    - ``start_stream`` populates identifiers and marks the call active
    - ``end`` marks it inactive for good (stop event, hang-up or socket close)
    """

    # Connection identity
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Identifiers from Twilio's start event
    stream_sid: str | None = None
    call_sid: str | None = None
    custom_parameters: Mapping[str, str] = field(default_factory=_empty_parameters)

    # State
    is_active: bool = False
    ended: bool = False
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None

    # Counters
    audio_frames_in: int = 0
    audio_frames_out: int = 0
    reconnect_attempts: int = 0

    def start_stream(
        self,
        stream_sid: str,
        call_sid: str | None,
        custom_parameters: Mapping[str, str] | None = None,
    ) -> bool:
        """Populate the session from the start event. Returns False if ignored.

        The stream id is set at most once; the parameters are frozen.
        """
        if self.ended:
            logger.warning(f"Session {self.session_id}: start after end ignored")
            return False
        if self.stream_sid is not None:
            logger.warning(
                f"Session {self.session_id}: duplicate start for {stream_sid} ignored "
                f"(stream already {self.stream_sid})"
            )
            return False

        self.stream_sid = stream_sid
        self.call_sid = call_sid or None
        self.custom_parameters = MappingProxyType(dict(custom_parameters or {}))
        self.is_active = True
        return True

    def end(self) -> None:
        """Mark the call inactive. Idempotent."""
        self.is_active = False
        if not self.ended:
            self.ended = True
            self.ended_at = time.time()

    @property
    def can_reconnect(self) -> bool:
        """The agent leg may be re-established until the call has ended."""
        return not self.ended

    def dynamic_variables(self) -> DynamicVariables:
        return DynamicVariables.from_parameters(self.custom_parameters, self.call_sid)

    @property
    def duration_ms(self) -> int:
        """Session duration in milliseconds."""
        end = self.ended_at or time.time()
        return int((end - self.started_at) * 1000)


class SessionStore:
    """Registry of live call sessions keyed by connection identity."""

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}

    def create(self, **kwargs) -> CallSession:
        """Create and store a new session."""
        session = CallSession(**kwargs)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id}")
        return session

    def get(self, session_id: str) -> CallSession | None:
        return self._sessions.get(session_id)

    def get_by_stream_sid(self, stream_sid: str) -> CallSession | None:
        for session in self._sessions.values():
            if session.stream_sid == stream_sid:
                return session
        return None

    def remove(self, session_id: str) -> None:
        """Remove a session, ending it first."""
        session = self._sessions.pop(session_id, None)
        if session:
            session.end()
            logger.info(
                f"Session removed: {session.session_id} "
                f"(stream: {session.stream_sid}, duration: {session.duration_ms}ms)"
            )

    @property
    def active_count(self) -> int:
        """Number of sessions with an active call."""
        return sum(1 for s in self._sessions.values() if s.is_active)

    @property
    def all_sessions(self) -> list[CallSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)
