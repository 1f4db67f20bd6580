"""Per-session conversational context.

Each session owns a fixed-size ring of turns. The ring wraps around when
full, always keeping the most recent turns. Writers of one session are
serialized by that session's lock; sessions never contend with each other.
Readers get value snapshots, never live references.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Protocol, Self

from voxcmd.constants import DEFAULT_CONTEXT_CAPACITY, DEFAULT_SESSION_TTL
from voxcmd.core.env import LOGGER
from voxcmd.core.errors import ContextStoreUnavailable
from voxcmd.core.types import ConversationContext, ConversationTurn, PendingSlotFill


class ContextSink(Protocol):
    """Persistence collaborator. Raising from ``save`` is session-fatal."""

    async def save(self, context: ConversationContext) -> None: ...


class TurnRing:
    """Circular turn buffer with O(1) append and bounded memory."""

    __slots__ = ("_buffer", "_write_pos", "_filled", "_total_written")

    def __init__(self, buffer: list[ConversationTurn | None]) -> None:
        self._buffer = buffer
        self._write_pos = 0
        self._filled = 0
        self._total_written = 0

    @classmethod
    def create(cls, capacity: int) -> Self:
        """Create a ring holding at most *capacity* turns."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        return cls([None] * capacity)

    @property
    def capacity(self) -> int:
        return len(self._buffer)

    @property
    def total_written(self) -> int:
        return self._total_written

    def __len__(self) -> int:
        return self._filled

    def append(self, turn: ConversationTurn) -> ConversationTurn | None:
        """Write *turn*, returning the evicted oldest turn when full."""
        evicted = self._buffer[self._write_pos] if self._filled == self.capacity else None
        self._buffer[self._write_pos] = turn
        self._write_pos = (self._write_pos + 1) % self.capacity
        self._filled = min(self.capacity, self._filled + 1)
        self._total_written += 1
        return evicted

    def get_recent(self, n: int | None = None) -> tuple[ConversationTurn, ...]:
        """Return up to *n* most recent turns, oldest first."""
        num = self._filled if n is None else min(n, self._filled)
        if num <= 0:
            return ()
        start = (self._write_pos - num) % self.capacity
        end = start + num
        if end <= self.capacity:
            items = self._buffer[start:end]
        else:
            items = self._buffer[start:] + self._buffer[: end % self.capacity]
        return tuple(t for t in items if t is not None)

    def reset(self) -> None:
        self._buffer = [None] * self.capacity
        self._write_pos = 0
        self._filled = 0


class _Session:
    __slots__ = ("ring", "pending", "lock", "last_active")

    def __init__(self, capacity: int, now: float) -> None:
        self.ring = TurnRing.create(capacity)
        self.pending: PendingSlotFill | None = None
        self.lock = asyncio.Lock()
        self.last_active = now


class ContextStore:
    """Bounded per-session history with idle eviction.

    Args:
        capacity: Turns kept per session.
        idle_ttl: Seconds of inactivity after which a session is evicted.
        clock: Monotonic time source (injectable for tests).
        sink: Optional persistence collaborator called after every append.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CONTEXT_CAPACITY,
        idle_ttl: float = DEFAULT_SESSION_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sink: ContextSink | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._sink = sink
        self._sessions: dict[str, _Session] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def _session(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = _Session(self._capacity, self._clock())
            self._sessions[session_id] = session
        return session

    def _context(self, session_id: str, session: _Session) -> ConversationContext:
        return ConversationContext(
            session_id=session_id,
            turns=session.ring.get_recent(),
            pending=session.pending,
            capacity=self._capacity,
        )

    async def append(self, session_id: str, turn: ConversationTurn) -> ConversationContext:
        """Append *turn* and set the pending record to ``turn.pending``.

        Raises:
            ContextStoreUnavailable: The persistence sink failed.
        """
        self.evict_idle()
        session = self._session(session_id)
        async with session.lock:
            session.ring.append(turn)
            session.pending = turn.pending
            session.last_active = self._clock()
            context = self._context(session_id, session)
            if self._sink is not None:
                try:
                    await self._sink.save(context)
                except Exception as exc:
                    LOGGER.error("Context sink failed for session %s: %s", session_id, exc)
                    raise ContextStoreUnavailable(session_id, exc) from exc
        return context

    def snapshot(self, session_id: str) -> ConversationContext:
        session = self._sessions.get(session_id)
        if session is None:
            return ConversationContext(session_id=session_id, capacity=self._capacity)
        return self._context(session_id, session)

    async def clear(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        async with session.lock:
            session.ring.reset()
            session.pending = None
            if self._sessions.get(session_id) is session:
                del self._sessions[session_id]

    def evict_idle(self) -> list[str]:
        """Drop sessions idle beyond the TTL; returns the evicted ids."""
        cutoff = self._clock() - self._idle_ttl
        evicted = [
            sid
            for sid, session in self._sessions.items()
            if session.last_active < cutoff and not session.lock.locked()
        ]
        for sid in evicted:
            del self._sessions[sid]
        if evicted:
            LOGGER.debug("Evicted idle sessions: %s", ", ".join(evicted))
        return evicted

    def sessions(self) -> tuple[str, ...]:
        return tuple(self._sessions)
