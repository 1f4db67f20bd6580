"""Slot coercion and binding.

Shared by the pattern matcher (values captured from templates), the
dispatcher (values returned by the model, pending slot-fill replies) and
referent carry-over ("open it again" -> last resolved appName).
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final

import dateparser

from voxcmd.constants import DEFAULT_LOCALE
from voxcmd.core.text import base_language, collapse_whitespace
from voxcmd.core.types import CommandPattern, ConversationContext, SlotSpec, SlotType

# Values that refer back to an entity from an earlier turn.
REFERENT_WORDS: Final = frozenset(
    {
        "it", "that", "this", "that one", "this one", "the same", "same",
        "her", "him", "them", "there", "it again",
    }
)

_STRIP_CHARS: Final = " \t,.;:!?\"'"


class SlotValueError(ValueError):
    """A raw value could not be coerced to the slot's declared type."""

    def __init__(self, spec: SlotSpec, raw: Any) -> None:
        super().__init__(f"{raw!r} is not a valid {spec.type} for slot {spec.name!r}")
        self.spec = spec
        self.raw = raw


@dataclass(frozen=True, slots=True)
class SlotBinding:
    """Result of binding raw values against a pattern's slot schema."""

    values: dict[str, Any] = field(default_factory=dict)
    missing: tuple[str, ...] = ()
    invalid: tuple[str, ...] = ()
    unresolved_optional: tuple[str, ...] = ()
    extra: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.missing and not self.invalid


def parse_datetime(
    text: str, locale: str = DEFAULT_LOCALE, now: datetime | None = None
) -> datetime | None:
    """Parse a spoken date/time expression ("tomorrow at 9am")."""
    settings: dict[str, Any] = {"PREFER_DATES_FROM": "future"}
    if now is not None:
        settings["RELATIVE_BASE"] = now
    lang = base_language(locale)
    languages = [lang] if lang == "en" else [lang, "en"]
    try:
        return dateparser.parse(text, languages=languages, settings=settings)
    except ValueError:
        # Unsupported language codes raise; retry with auto-detection.
        return dateparser.parse(text, settings=settings)


def coerce_slot(
    spec: SlotSpec,
    raw: Any,
    *,
    locale: str = DEFAULT_LOCALE,
    now: datetime | None = None,
) -> Any:
    """Coerce *raw* to the slot's type or raise SlotValueError."""
    if raw is None:
        raise SlotValueError(spec, raw)

    if spec.type == SlotType.DATETIME:
        if isinstance(raw, datetime):
            return raw
        text = collapse_whitespace(str(raw)).strip(_STRIP_CHARS)
        parsed = parse_datetime(text, locale, now) if text else None
        if parsed is None:
            raise SlotValueError(spec, raw)
        return parsed

    if isinstance(raw, (dict, list, tuple, set)):
        raise SlotValueError(spec, raw)

    if spec.type == SlotType.FREE_TEXT:
        text = collapse_whitespace(str(raw))
        if not text:
            raise SlotValueError(spec, raw)
        return text

    text = collapse_whitespace(str(raw)).strip(_STRIP_CHARS)
    if not text:
        raise SlotValueError(spec, raw)

    if spec.type == SlotType.ENUM:
        wanted = text.casefold().replace("_", " ")
        for choice in spec.choices:
            if choice.casefold().replace("_", " ") == wanted:
                return choice
        raise SlotValueError(spec, raw)

    return text


def is_referent(value: Any) -> bool:
    return isinstance(value, str) and value.strip(_STRIP_CHARS).lower() in REFERENT_WORDS


def bind_slots(
    pattern: CommandPattern,
    raw: Mapping[str, Any],
    *,
    context: ConversationContext | None = None,
    locale: str = DEFAULT_LOCALE,
    now: datetime | None = None,
) -> SlotBinding:
    """Bind raw slot values to *pattern*'s schema.

    Referent words are replaced by the most recent value of the same slot in
    *context*. Required slots without a usable value are reported as missing
    (absent) or invalid (present but failed coercion); unknown keys are
    dropped and reported as extra.
    """
    values: dict[str, Any] = {}
    missing: list[str] = []
    invalid: list[str] = []
    unresolved: list[str] = []

    for spec in pattern.slots:
        value = raw.get(spec.name)
        if isinstance(value, str) and not value.strip():
            value = None
        if value is not None and is_referent(value):
            value = context.recall(spec.name) if context is not None else None

        if value is None:
            (missing if spec.required else unresolved).append(spec.name)
            continue
        try:
            values[spec.name] = coerce_slot(spec, value, locale=locale, now=now)
        except SlotValueError:
            (invalid if spec.required else unresolved).append(spec.name)

    declared = {s.name for s in pattern.slots}
    extra = tuple(k for k in raw if k not in declared)
    return SlotBinding(
        values=values,
        missing=tuple(missing),
        invalid=tuple(invalid),
        unresolved_optional=tuple(unresolved),
        extra=extra,
    )
