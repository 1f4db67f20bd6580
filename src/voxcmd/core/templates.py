"""Command template compilation.

Template syntax::

    open application {appName}
    remind me [to {title}] [at {time}]
    (open|launch|start) {appName}
    reminder[s]

Whitespace between template words matches any run of whitespace. Literal
text is matched against the lower-cased utterance. A template whose last
word carries a slot is anchored to the end of the utterance so that lazy
slot captures extend over multi-word values ("Visual Studio Code").
"""

import re
from dataclasses import dataclass

from voxcmd.core.types import CommandPattern

_SLOT_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class TemplateError(ValueError):
    """A template could not be compiled."""


@dataclass(frozen=True, slots=True)
class CompiledTemplate:
    template: str
    regex: re.Pattern[str]
    slot_names: tuple[str, ...]


@dataclass(slots=True)
class _Word:
    regex: str
    optional: bool = False
    has_slot: bool = False


class _TemplateParser:
    """Recursive-descent parser from template text to a regex body."""

    def __init__(self, template: str, declared: frozenset[str]) -> None:
        self._src = template
        self._pos = 0
        self._declared = declared
        self.slots: list[str] = []

    def parse(self) -> tuple[str, bool]:
        words = self._sequence(end=None)
        if self._pos != len(self._src):
            raise TemplateError(f"unexpected {self._src[self._pos]!r}")
        if not words:
            raise TemplateError("template is empty")
        return _join(words), words[-1].has_slot

    def _at_stop(self, end: str | None) -> bool:
        ch = self._src[self._pos]
        return end is not None and ch in (end, "|")

    def _sequence(self, end: str | None) -> list[_Word]:
        words: list[_Word] = []
        while self._pos < len(self._src):
            if self._src[self._pos].isspace():
                self._pos += 1
                continue
            if self._at_stop(end):
                break
            words.append(self._word(end))
        return words

    def _word(self, end: str | None) -> _Word:
        parts: list[str] = []
        atoms = 0
        optional_inner: str | None = None
        has_slot = False
        while (
            self._pos < len(self._src)
            and not self._src[self._pos].isspace()
            and not self._at_stop(end)
        ):
            ch = self._src[self._pos]
            atoms += 1
            if ch == "{":
                parts.append(self._slot())
                has_slot = True
            elif ch in "[(":
                self._pos += 1
                closing = "]" if ch == "[" else ")"
                inner, inner_slot = self._alternatives(closing)
                has_slot = has_slot or inner_slot
                if ch == "[":
                    optional_inner = inner
                    parts.append(f"(?:{inner})?")
                else:
                    parts.append(f"(?:{inner})")
            elif ch in "])}|":
                raise TemplateError(f"unexpected {ch!r} at {self._pos}")
            else:
                parts.append(re.escape(ch.lower()))
                self._pos += 1

        if atoms == 1 and optional_inner is not None:
            return _Word(optional_inner, optional=True, has_slot=has_slot)
        return _Word("".join(parts), has_slot=has_slot)

    def _slot(self) -> str:
        close = self._src.find("}", self._pos)
        if close < 0:
            raise TemplateError("unterminated slot placeholder")
        name = self._src[self._pos + 1 : close]
        if not _SLOT_NAME_RE.fullmatch(name):
            raise TemplateError(f"bad slot name {name!r}")
        if name not in self._declared:
            raise TemplateError(f"slot {name!r} is not declared")
        if name in self.slots:
            raise TemplateError(f"slot {name!r} appears twice")
        self.slots.append(name)
        self._pos = close + 1
        return f"(?P<{name}>.+?)"

    def _alternatives(self, closing: str) -> tuple[str, bool]:
        start_slots = len(self.slots)
        options = [_join(self._sequence(closing))]
        while self._pos < len(self._src) and self._src[self._pos] == "|":
            self._pos += 1
            options.append(_join(self._sequence(closing)))
        if self._pos >= len(self._src) or self._src[self._pos] != closing:
            raise TemplateError(f"missing {closing!r}")
        self._pos += 1
        return "|".join(options), len(self.slots) > start_slots


def _join(words: list[_Word]) -> str:
    """Join words with whitespace, folding separators into optional words."""
    if all(w.optional for w in words):
        return r"\s*".join(f"(?:{w.regex})?" for w in words)
    out: list[str] = []
    seen_required = False
    for word in words:
        if word.optional:
            if seen_required:
                out.append(rf"(?:\s+(?:{word.regex}))?")
            else:
                out.append(rf"(?:(?:{word.regex})\s+)?")
            continue
        if seen_required:
            out.append(r"\s+")
        out.append(word.regex)
        seen_required = True
    return "".join(out)


def compile_template(template: str, pattern: CommandPattern) -> CompiledTemplate:
    """Compile one template of *pattern*, raising TemplateError if malformed."""
    declared = frozenset(s.name for s in pattern.slots)

    if pattern.regex:
        try:
            regex = re.compile(template, re.IGNORECASE)
        except re.error as exc:
            raise TemplateError(f"bad regular expression: {exc}") from exc
        names = tuple(regex.groupindex)
        unknown = [n for n in names if n not in declared]
        if unknown:
            raise TemplateError(f"undeclared groups: {', '.join(unknown)}")
        return CompiledTemplate(template=template, regex=regex, slot_names=names)

    parser = _TemplateParser(template, declared)
    body, tail_slot = parser.parse()
    tail = r"(?=\s*$)" if tail_slot else r"(?!\w)"
    try:
        regex = re.compile(rf"(?<!\w){body}{tail}")
    except re.error as exc:
        raise TemplateError(f"template does not compile: {exc}") from exc
    return CompiledTemplate(
        template=template, regex=regex, slot_names=tuple(parser.slots)
    )


def compile_pattern(pattern: CommandPattern) -> tuple[CompiledTemplate, ...]:
    return tuple(compile_template(t, pattern) for t in pattern.templates)
