"""Core data types shared across voxcmd modules.

Everything here is immutable. Mappings handed out by these types are
read-only proxies over private copies, so a handler holding an Intent or a
ConversationContext can never mutate engine state.
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from voxcmd.constants import DEFAULT_LOCALE, DEFAULT_SESSION_ID


def _frozen_mapping(value: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


def _lower_char(ch: str) -> str:
    # Some characters expand when lower-cased ("İ"); keep those as-is.
    low = ch.lower()
    return low if len(low) == 1 else ch


@dataclass(frozen=True, slots=True)
class Utterance:
    """One unit of user input after normalization.

    ``normalized`` is lower-cased character by character, so offsets into it
    are valid offsets into ``text`` and entity values keep their casing.
    """

    text: str
    session_id: str = DEFAULT_SESSION_ID
    timestamp: float = field(default_factory=time.time)
    source_confidence: float | None = None
    locale: str = DEFAULT_LOCALE

    def __post_init__(self) -> None:
        if self.source_confidence is not None and not (
            0.0 <= self.source_confidence <= 1.0
        ):
            raise ValueError("source_confidence must be within [0, 1]")

    @property
    def normalized(self) -> str:
        return "".join(_lower_char(ch) for ch in self.text)


class SlotType(StrEnum):
    STRING = "string"
    ENUM = "enum"
    DATETIME = "datetime"
    FREE_TEXT = "free_text"


@dataclass(frozen=True, slots=True)
class SlotSpec:
    """A named, typed parameter of a command pattern."""

    name: str
    type: SlotType = SlotType.STRING
    required: bool = True
    choices: tuple[str, ...] = ()
    prompt: str | None = None

    def ask(self) -> str:
        """Question used when this slot must be filled by the user."""
        if self.prompt:
            return self.prompt
        if self.type == SlotType.ENUM and self.choices:
            return f"Which {self.name}: {', '.join(self.choices)}?"
        if self.type == SlotType.DATETIME:
            return f"When should that be ({self.name})?"
        return f"What is the {self.name}?"


@dataclass(frozen=True, slots=True)
class CommandPattern:
    """Statically registered command: templates plus slot schema.

    ``intent_id`` is the pattern identifier and is unique in the registry.
    Templates use ``{slot}`` placeholders, ``[optional]`` segments and
    ``(a|b)`` alternation, or are raw regular expressions with named groups
    when ``regex`` is set.
    """

    intent_id: str
    templates: tuple[str, ...]
    slots: tuple[SlotSpec, ...] = ()
    priority: int = 0
    regex: bool = False
    description: str = ""

    def slot(self, name: str) -> SlotSpec | None:
        for spec in self.slots:
            if spec.name == name:
                return spec
        return None

    @property
    def required_slots(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.slots if s.required)

    @property
    def optional_slots(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.slots if not s.required)


class IntentSource(StrEnum):
    PATTERN = "pattern"
    MODEL = "model"


@dataclass(frozen=True, slots=True)
class Intent:
    """A resolved, executable command with typed parameters."""

    intent_id: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    confidence: float = 1.0
    source: IntentSource = IntentSource.PATTERN
    session_id: str = DEFAULT_SESSION_ID

    def __post_init__(self) -> None:
        if not isinstance(self.confidence, (int, float)) or not (
            0.0 <= self.confidence <= 1.0
        ):
            raise ValueError(
                f"confidence must be within [0, 1], got {self.confidence!r}"
            )
        object.__setattr__(self, "parameters", _frozen_mapping(self.parameters))

    def with_parameters(
        self, parameters: Mapping[str, Any], confidence: float | None = None
    ) -> "Intent":
        return Intent(
            intent_id=self.intent_id,
            parameters=parameters,
            confidence=self.confidence if confidence is None else confidence,
            source=self.source,
            session_id=self.session_id,
        )


class DispatchStatus(StrEnum):
    SUCCESS = "success"
    CLARIFICATION_NEEDED = "clarification_needed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome of one dispatch, returned to the caller and kept in history."""

    status: DispatchStatus
    payload: Any = None
    error_kind: str | None = None
    message: str = ""
    intent: Intent | None = None
    states: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is DispatchStatus.SUCCESS

    @property
    def speech_text(self) -> str:
        """Text suitable for a text-to-speech collaborator."""
        if isinstance(self.payload, str) and self.payload:
            return self.payload
        return self.message


@dataclass(frozen=True, slots=True)
class PendingSlotFill:
    """Record that the next utterance of a session answers a question.

    Either slots are missing (``missing``) or a low-confidence intent awaits
    a yes/no confirmation (``confirm``). ``pattern`` is the command pattern
    the question was asked under; a reply is only applied while the same
    pattern is registered.
    """

    intent: Intent
    missing: tuple[str, ...] = ()
    confirm: bool = False
    prompt: str = ""
    pattern: CommandPattern | None = None
    created_at: float = field(default_factory=time.monotonic)
    expires_at: float | None = None

    def expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.monotonic() if now is None else now) >= self.expires_at


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One completed dispatch as stored in conversational history."""

    text: str
    result: DispatchResult
    intent: Intent | None = None
    entities: Mapping[str, Any] = field(default_factory=dict)
    pending: PendingSlotFill | None = None
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entities", _frozen_mapping(self.entities))


@dataclass(frozen=True, slots=True)
class ConversationContext:
    """Immutable snapshot of a session's recent history."""

    session_id: str
    turns: tuple[ConversationTurn, ...] = ()
    pending: PendingSlotFill | None = None
    capacity: int = 0

    def recent(self, n: int) -> tuple[ConversationTurn, ...]:
        if n <= 0:
            return ()
        return self.turns[-n:]

    @property
    def last_intent(self) -> Intent | None:
        for turn in reversed(self.turns):
            if turn.intent is not None:
                return turn.intent
        return None

    def recall(self, slot_name: str) -> Any | None:
        """Most recent resolved value for *slot_name*, if any."""
        for turn in reversed(self.turns):
            if slot_name in turn.entities:
                return turn.entities[slot_name]
        return None
