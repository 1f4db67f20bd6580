"""Tests for voxcmd.core.context — turn ring and per-session store."""

from __future__ import annotations

import asyncio

import pytest

from voxcmd.core.context import ContextStore, TurnRing
from voxcmd.core.errors import ContextStoreUnavailable
from voxcmd.core.types import (
    ConversationContext,
    ConversationTurn,
    DispatchResult,
    DispatchStatus,
    Intent,
    PendingSlotFill,
)


def _turn(text: str, pending: PendingSlotFill | None = None) -> ConversationTurn:
    return ConversationTurn(
        text=text, result=DispatchResult(DispatchStatus.SUCCESS), pending=pending
    )


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.saved: list[ConversationContext] = []
        self._fail = fail

    async def save(self, context: ConversationContext) -> None:
        if self._fail:
            raise OSError("disk full")
        self.saved.append(context)


class TestTurnRing:
    def test_create(self) -> None:
        ring = TurnRing.create(3)
        assert ring.capacity == 3
        assert len(ring) == 0
        assert ring.get_recent() == ()

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            TurnRing.create(0)

    def test_wraps_keeping_most_recent(self) -> None:
        ring = TurnRing.create(3)
        turns = [_turn(str(i)) for i in range(5)]
        evicted = [ring.append(t) for t in turns]
        assert evicted[:3] == [None, None, None]
        assert evicted[3:] == [turns[0], turns[1]]
        assert [t.text for t in ring.get_recent()] == ["2", "3", "4"]
        assert len(ring) == 3
        assert ring.total_written == 5

    def test_get_recent_n(self) -> None:
        ring = TurnRing.create(4)
        for i in range(6):
            ring.append(_turn(str(i)))
        assert [t.text for t in ring.get_recent(2)] == ["4", "5"]
        assert ring.get_recent(0) == ()
        assert len(ring.get_recent(10)) == 4

    def test_reset(self) -> None:
        ring = TurnRing.create(2)
        ring.append(_turn("a"))
        ring.reset()
        assert len(ring) == 0
        assert ring.get_recent() == ()


class TestContextStore:
    def test_unknown_session_is_empty(self) -> None:
        context = ContextStore(capacity=5).snapshot("nobody")
        assert context.session_id == "nobody"
        assert context.turns == ()
        assert context.pending is None
        assert context.capacity == 5

    def test_fifo_eviction_at_capacity(self) -> None:
        async def run() -> None:
            store = ContextStore(capacity=3)
            for i in range(5):
                await store.append("s", _turn(str(i)))
            assert [t.text for t in store.snapshot("s").turns] == ["2", "3", "4"]

        asyncio.run(run())

    def test_snapshot_is_a_value(self) -> None:
        async def run() -> None:
            store = ContextStore()
            await store.append("s", _turn("first"))
            before = store.snapshot("s")
            await store.append("s", _turn("second"))
            assert [t.text for t in before.turns] == ["first"]
            assert len(store.snapshot("s").turns) == 2

        asyncio.run(run())

    def test_sessions_are_isolated(self) -> None:
        async def run() -> None:
            store = ContextStore()
            await store.append("a", _turn("for a"))
            await store.append("b", _turn("for b"))
            assert [t.text for t in store.snapshot("a").turns] == ["for a"]
            assert set(store.sessions()) == {"a", "b"}

        asyncio.run(run())

    def test_pending_follows_latest_turn(self) -> None:
        async def run() -> None:
            store = ContextStore()
            pending = PendingSlotFill(Intent("createReminder"), missing=("time",))
            await store.append("s", _turn("remind me", pending=pending))
            assert store.snapshot("s").pending is pending
            await store.append("s", _turn("tomorrow"))
            assert store.snapshot("s").pending is None

        asyncio.run(run())

    def test_idle_sessions_evicted(self) -> None:
        async def run() -> None:
            clock = FakeClock()
            store = ContextStore(idle_ttl=60.0, clock=clock)
            await store.append("old", _turn("hello"))
            clock.now += 30
            await store.append("fresh", _turn("hi"))
            clock.now += 45
            assert store.evict_idle() == ["old"]
            assert store.sessions() == ("fresh",)
            assert store.snapshot("old").turns == ()

        asyncio.run(run())

    def test_append_evicts_before_writing(self) -> None:
        async def run() -> None:
            clock = FakeClock()
            store = ContextStore(idle_ttl=10.0, clock=clock)
            await store.append("s", _turn("before"))
            clock.now += 11
            context = await store.append("s", _turn("after"))
            assert [t.text for t in context.turns] == ["after"]

        asyncio.run(run())

    def test_clear(self) -> None:
        async def run() -> None:
            store = ContextStore()
            await store.append("s", _turn("x"))
            await store.clear("s")
            await store.clear("never-seen")
            assert store.sessions() == ()

        asyncio.run(run())

    def test_sink_receives_every_append(self) -> None:
        async def run() -> None:
            sink = RecordingSink()
            store = ContextStore(sink=sink)
            await store.append("s", _turn("one"))
            await store.append("s", _turn("two"))
            assert [len(c.turns) for c in sink.saved] == [1, 2]

        asyncio.run(run())

    def test_sink_failure_is_fatal(self) -> None:
        async def run() -> None:
            store = ContextStore(sink=RecordingSink(fail=True))
            with pytest.raises(ContextStoreUnavailable) as info:
                await store.append("s", _turn("x"))
            assert info.value.session_id == "s"
            assert "disk full" in str(info.value)

        asyncio.run(run())

    def test_concurrent_appends_all_recorded(self) -> None:
        async def run() -> None:
            store = ContextStore(capacity=50)
            await asyncio.gather(
                *(store.append("s", _turn(str(i))) for i in range(20))
            )
            assert len(store.snapshot("s").turns) == 20

        asyncio.run(run())
