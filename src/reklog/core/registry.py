"""
In-flight session registry.

Correlates a start() call with the matching end() call. Owned by a single
Tracker; all access happens on one event loop and no operation awaits
between a lookup and its deletion, so no locking is required.
"""

import random
import string
import time
from dataclasses import dataclass
from typing import Dict

from .exceptions import UnknownSessionError

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
_SUFFIX_LENGTH = 9


@dataclass(frozen=True)
class Session:
    """One tracked operation between start and end."""
    session_id: str
    endpoint: str
    method: str
    start_time: int

    def elapsed_ms(self, now: int) -> int:
        """Whole milliseconds since start_time, never negative."""
        return max(0, (now - self.start_time) // 1_000_000)


def monotonic_ns() -> int:
    """High resolution clock unaffected by wall-clock adjustments."""
    return time.perf_counter_ns()


def generate_session_id() -> str:
    """Build an id from the epoch milliseconds and a random base36 suffix."""
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=_SUFFIX_LENGTH))
    return f"{time.time_ns() // 1_000_000}_{suffix}"


class SessionRegistry:
    """
    Maps session ids to in-flight sessions.

    Sessions that are started and never ended stay here for the lifetime of
    the registry.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def start(self, endpoint: str, method: str = "GET") -> str:
        """Register a new session and return its id."""
        session_id = generate_session_id()
        while session_id in self._sessions:
            session_id = generate_session_id()

        self._sessions[session_id] = Session(
            session_id=session_id,
            endpoint=endpoint,
            method=method.upper(),
            start_time=monotonic_ns(),
        )
        return session_id

    def consume(self, session_id: str) -> Session:
        """
        Remove and return the session for session_id.

        Raises:
            UnknownSessionError: if the id is unknown or already consumed
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    def discard(self, session_id: str) -> bool:
        """Drop a session without reading it. Returns whether it existed."""
        return self._sessions.pop(session_id, None) is not None

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
