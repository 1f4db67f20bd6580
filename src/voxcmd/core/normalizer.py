"""Utterance normalization: raw transcript text -> candidate utterances.

normalize() is a pure function of its input and the locale tables below.
It removes filler tokens, applies vocabulary corrections and splits on
strong sentence boundaries. Casing is preserved in Utterance.text; matching
uses Utterance.normalized.
"""

import re
import time
from typing import Final

from voxcmd.constants import DEFAULT_LOCALE, DEFAULT_SESSION_ID
from voxcmd.core.text import (
    apply_vocab,
    base_language,
    collapse_whitespace,
    is_meaningful,
)
from voxcmd.core.types import Utterance

FILLER_WORDS: Final[dict[str, tuple[str, ...]]] = {
    "en": (
        "um", "umm", "uh", "uhh", "uhm", "er", "erm", "ah", "hmm", "mm",
        "mhm", "you know", "i mean",
    ),
    "nl": ("eh", "ehm", "uh", "uhm", "hmm", "euh"),
    "de": ("äh", "ähm", "öhm", "hm", "hmm", "ähh"),
}

# Courtesy words trimmed from either end of an utterance ("open Mail please").
POLITENESS_WORDS: Final[dict[str, tuple[str, ...]]] = {
    "en": ("please", "thanks", "thank you", "could you", "can you"),
    "nl": ("alsjeblieft", "alstublieft", "graag", "bedankt", "dank je"),
    "de": ("bitte", "danke", "danke schön"),
}

# Periods after these tokens do not end a sentence ("9 a.m. tomorrow").
_ABBREVIATIONS: Final = frozenset(
    {"a.m", "p.m", "mr", "mrs", "ms", "dr", "st", "e.g", "i.e", "vs", "etc"}
)

_HARD_BOUNDARY_RE = re.compile(r"(?<=[!?;])\s+|[\r\n]+")
_PERIOD_RE = re.compile(r"\.\s+")
_EDGE_PUNCT = " \t,.;:!?-\"'"

_filler_cache: dict[str, re.Pattern[str]] = {}
_politeness_cache: dict[str, re.Pattern[str]] = {}


def _language(locale: str) -> str:
    """Language code with a filler table, falling back to the default."""
    lang = base_language(locale)
    return lang if lang in FILLER_WORDS else DEFAULT_LOCALE


def _filler_pattern(lang: str) -> re.Pattern[str]:
    pattern = _filler_cache.get(lang)
    if pattern is None:
        # Longest first so "umm" wins over "um".
        words = sorted(FILLER_WORDS[lang], key=len, reverse=True)
        alternation = "|".join(re.escape(w).replace(r"\ ", r"\s+") for w in words)
        pattern = re.compile(rf"(?<!\w)(?:{alternation})(?!\w)[,]?", re.IGNORECASE)
        _filler_cache[lang] = pattern
    return pattern


def strip_fillers(text: str, locale: str = DEFAULT_LOCALE) -> str:
    """Remove filler tokens for *locale* and tidy the remaining whitespace."""
    cleaned = _filler_pattern(_language(locale)).sub(" ", text)
    return collapse_whitespace(cleaned)


def _politeness_pattern(lang: str) -> re.Pattern[str]:
    pattern = _politeness_cache.get(lang)
    if pattern is None:
        words = sorted(POLITENESS_WORDS[lang], key=len, reverse=True)
        alternation = "|".join(re.escape(w).replace(r"\ ", r"\s+") for w in words)
        # Separators sit on one side of each word so a run splits one way only.
        word = rf"(?:{alternation})(?!\w)"
        leading = rf"^(?:{word}[\s,.!?]*)+"
        trailing = rf"(?<!\w){word}(?:[\s,]+{word})*[\s,.!?]*$"
        pattern = re.compile(rf"{leading}|{trailing}", re.IGNORECASE)
        _politeness_cache[lang] = pattern
    return pattern


def strip_politeness(text: str, locale: str = DEFAULT_LOCALE) -> str:
    """Trim courtesy words at either end; the middle is left alone."""
    return _politeness_pattern(_language(locale)).sub("", text).strip()


def _is_initial(token: str) -> bool:
    """A capital letter with a period ("J.")."""
    return len(token) == 2 and token[0].isupper() and token[1] == "."


def _split_periods(segment: str) -> list[str]:
    parts: list[str] = []
    start = 0
    for m in _PERIOD_RE.finditer(segment):
        words = segment[start : m.start()].split()
        last = words[-1] if words else ""
        if last.lower() in _ABBREVIATIONS:
            continue
        # A run of initials ("J. R. R. Tolkien") is one name.
        if len(last) == 1 and last.isupper():
            before = words[-2] if len(words) > 1 else ""
            after = segment[m.end() :].split(maxsplit=1)
            if _is_initial(before) or (after and _is_initial(after[0])):
                continue
        parts.append(segment[start : m.start()])
        start = m.end()
    parts.append(segment[start:])
    return parts


def split_sentences(text: str) -> list[str]:
    """Split on strong sentence boundaries (. ! ? ; and newlines)."""
    pieces: list[str] = []
    for segment in _HARD_BOUNDARY_RE.split(text):
        if segment:
            pieces.extend(_split_periods(segment))
    return pieces


def normalize(
    raw: str,
    locale: str = DEFAULT_LOCALE,
    *,
    session_id: str = DEFAULT_SESSION_ID,
    source_confidence: float | None = None,
    corrections: dict[str, str] | None = None,
    timestamp: float | None = None,
) -> list[Utterance]:
    """Turn raw transcribed or typed text into zero or more utterances.

    Silence, noise and filler-only input yield an empty list.
    """
    if not raw or not raw.strip():
        return []

    text = apply_vocab(raw, corrections) if corrections else raw
    ts = time.time() if timestamp is None else timestamp

    utterances: list[Utterance] = []
    for sentence in split_sentences(text):
        cleaned = strip_fillers(sentence, locale).strip(_EDGE_PUNCT)
        cleaned = strip_politeness(cleaned, locale).strip(_EDGE_PUNCT)
        if not cleaned or not is_meaningful(cleaned):
            continue
        utterances.append(
            Utterance(
                text=cleaned,
                session_id=session_id,
                timestamp=ts,
                source_confidence=source_confidence,
                locale=locale,
            )
        )
    return utterances
