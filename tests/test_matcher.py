"""Tests for voxcmd.core.matcher — candidate extraction and ranking."""

from __future__ import annotations

import asyncio

import pytest

from conftest import CREATE_REMINDER, OPEN_APP, make_plugin

from voxcmd.core.config import DispatchConfig
from voxcmd.core.matcher import PatternMatcher
from voxcmd.core.registry import PluginRegistry, RegistrySnapshot, StaticPlugin
from voxcmd.core.types import (
    CommandPattern,
    ConversationContext,
    ConversationTurn,
    DispatchResult,
    DispatchStatus,
    Intent,
    IntentSource,
    SlotSpec,
    SlotType,
    Utterance,
)


def _snapshot(*plugins: StaticPlugin) -> RegistrySnapshot:
    async def build() -> RegistrySnapshot:
        registry = PluginRegistry()
        for plugin in plugins:
            await registry.register(plugin)
        return registry.snapshot()

    return asyncio.run(build())


def _match(text: str, snapshot: RegistrySnapshot, **kwargs):
    config = kwargs.pop("config", None)
    return PatternMatcher(config).match(Utterance(text), snapshot, **kwargs)


class TestBasicMatching:
    def test_open_application(self) -> None:
        snapshot = _snapshot(make_plugin("desktop", OPEN_APP))
        [candidate] = _match("open application Mail", snapshot)
        assert candidate.intent.intent_id == "openApp"
        assert dict(candidate.intent.parameters) == {"appName": "Mail"}
        assert candidate.intent.confidence == 0.95
        assert candidate.intent.source == IntentSource.PATTERN
        assert candidate.span == (0, len("open application Mail"))
        assert candidate.complete

    def test_values_keep_original_casing(self) -> None:
        snapshot = _snapshot(make_plugin("desktop", OPEN_APP))
        [candidate] = _match("Open Application Visual Studio Code", snapshot)
        assert candidate.intent.parameters["appName"] == "Visual Studio Code"

    def test_no_match_is_empty(self) -> None:
        snapshot = _snapshot(make_plugin("desktop", OPEN_APP))
        assert _match("do the thing", snapshot) == []

    def test_empty_registry(self) -> None:
        assert _match("open application Mail", RegistrySnapshot()) == []

    def test_session_id_carried(self) -> None:
        snapshot = _snapshot(make_plugin("desktop", OPEN_APP))
        [candidate] = PatternMatcher().match(
            Utterance("open application Mail", session_id="kitchen"), snapshot
        )
        assert candidate.intent.session_id == "kitchen"


class TestRanking:
    def test_longest_span_first(self) -> None:
        short = CommandPattern("mail", ("mail",))
        long = CommandPattern("openMail", ("open mail",))
        snapshot = _snapshot(make_plugin("p", short, long))
        ids = [c.intent.intent_id for c in _match("open mail", snapshot)]
        assert ids == ["openMail", "mail"]

    def test_priority_breaks_span_ties(self) -> None:
        low = CommandPattern("low", ("stop",), priority=0)
        high = CommandPattern("high", ("stop",), priority=5)
        snapshot = _snapshot(make_plugin("p", low, high))
        ids = [c.intent.intent_id for c in _match("stop", snapshot)]
        assert ids == ["high", "low"]

    def test_fewer_unresolved_optional_slots(self) -> None:
        vague = CommandPattern(
            "vague", ("stop",), slots=(SlotSpec("reason", required=False),)
        )
        plain = CommandPattern("plain", ("stop",))
        snapshot = _snapshot(make_plugin("p", vague, plain))
        candidates = _match("stop", snapshot)
        assert [c.intent.intent_id for c in candidates] == ["plain", "vague"]
        assert candidates[1].unresolved_optional == ("reason",)
        assert candidates[1].intent.confidence == pytest.approx(0.9)

    def test_registration_order_is_last_resort(self) -> None:
        first = CommandPattern("first", ("stop",))
        second = CommandPattern("second", ("stop",))
        snapshot = _snapshot(make_plugin("a", first), make_plugin("b", second))
        ids = [c.intent.intent_id for c in _match("stop", snapshot)]
        assert ids == ["first", "second"]

    def test_complete_before_partial(self) -> None:
        literal = CommandPattern("remindLiteral", ("remind",))
        snapshot = _snapshot(make_plugin("p", CREATE_REMINDER, literal))
        candidates = _match("remind me", snapshot)
        assert [c.intent.intent_id for c in candidates] == [
            "remindLiteral",
            "createReminder",
        ]
        assert candidates[1].missing == ("title", "time")


class TestSlotExtraction:
    def test_partial_reports_missing_required(self) -> None:
        snapshot = _snapshot(make_plugin("p", CREATE_REMINDER))
        [candidate] = _match("remind me to call mom", snapshot)
        assert not candidate.complete
        assert candidate.missing == ("time",)
        assert dict(candidate.intent.parameters) == {"title": "call mom"}

    def test_datetime_slot_coerced(self) -> None:
        snapshot = _snapshot(make_plugin("p", CREATE_REMINDER))
        [candidate] = _match("remind me to call mom at 5pm", snapshot)
        assert candidate.complete
        assert candidate.intent.parameters["time"].hour == 17

    def test_failed_coercion_disqualifies(self) -> None:
        volume = CommandPattern(
            "setVolume",
            ("set volume [to] {level}",),
            slots=(SlotSpec("level", SlotType.ENUM, choices=("low", "high")),),
        )
        snapshot = _snapshot(make_plugin("p", volume))
        assert _match("set volume loud", snapshot) == []
        [candidate] = _match("set volume to HIGH", snapshot)
        assert candidate.intent.parameters["level"] == "high"

    def test_referent_resolved_from_context(self) -> None:
        snapshot = _snapshot(make_plugin("desktop", OPEN_APP))
        earlier = Intent("openApp", {"appName": "Mail"})
        context = ConversationContext(
            session_id="default",
            turns=(
                ConversationTurn(
                    text="open application Mail",
                    result=DispatchResult(DispatchStatus.SUCCESS),
                    intent=earlier,
                    entities={"appName": "Mail"},
                ),
            ),
        )
        [candidate] = _match("open application it", snapshot, context=context)
        assert candidate.intent.parameters["appName"] == "Mail"

    def test_referent_without_history_is_missing(self) -> None:
        snapshot = _snapshot(make_plugin("desktop", OPEN_APP))
        [candidate] = _match("open application it", snapshot)
        assert candidate.missing == ("appName",)


class TestConfidence:
    def test_penalty_clamped_at_zero(self) -> None:
        pattern = CommandPattern(
            "busy",
            ("stop",),
            slots=(
                SlotSpec("a", required=False),
                SlotSpec("b", required=False),
            ),
        )
        snapshot = _snapshot(make_plugin("p", pattern))
        config = DispatchConfig(optional_slot_penalty=0.6)
        [candidate] = _match("stop", snapshot, config=config)
        assert candidate.intent.confidence == 0.0

    def test_always_within_bounds(self) -> None:
        snapshot = _snapshot(make_plugin("p", OPEN_APP, CREATE_REMINDER))
        for text in ("open application Mail", "remind me", "remind me to x at 9am"):
            for candidate in _match(text, snapshot):
                assert 0.0 <= candidate.intent.confidence <= 1.0
