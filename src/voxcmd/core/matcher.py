"""Pattern matching of utterances against registered command templates.

An empty result is not an error: it is the normal trigger for the model
fallback in the dispatcher.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from voxcmd.core.config import DispatchConfig
from voxcmd.core.env import LOGGER
from voxcmd.core.slots import bind_slots
from voxcmd.core.types import (
    CommandPattern,
    ConversationContext,
    Intent,
    IntentSource,
    Utterance,
)

if TYPE_CHECKING:
    from voxcmd.core.registry import RegisteredCommand, RegistrySnapshot


@dataclass(frozen=True, slots=True)
class MatchCandidate:
    """A candidate intent plus the span of the utterance it was matched on."""

    intent: Intent
    span: tuple[int, int]
    pattern: CommandPattern
    template: str
    order: int
    missing: tuple[str, ...] = ()
    unresolved_optional: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        """All required slots were extracted."""
        return not self.missing

    @property
    def span_length(self) -> int:
        return self.span[1] - self.span[0]

    def rank_key(self) -> tuple[int, int, int, int, int]:
        return (
            0 if self.complete else 1,
            -self.span_length,
            -self.pattern.priority,
            len(self.unresolved_optional),
            self.order,
        )


def pattern_confidence(config: DispatchConfig, unresolved_optional: int) -> float:
    """Fixed pattern confidence minus a penalty per unresolved optional slot."""
    value = config.pattern_confidence - config.optional_slot_penalty * unresolved_optional
    return min(1.0, max(0.0, value))


class PatternMatcher:
    """Evaluates every registered pattern against an utterance."""

    def __init__(self, config: DispatchConfig | None = None) -> None:
        self._config = config or DispatchConfig()

    def match(
        self,
        utterance: Utterance,
        snapshot: "RegistrySnapshot",
        context: ConversationContext | None = None,
    ) -> list[MatchCandidate]:
        """Return candidates ordered best-first.

        Ranking: complete before partial, longest span, highest priority,
        fewest unresolved optional slots, then registration order.
        """
        candidates: list[MatchCandidate] = []
        for command in snapshot:
            candidate = self._match_command(utterance, command, context)
            if candidate is not None:
                candidates.append(candidate)
        candidates.sort(key=MatchCandidate.rank_key)
        if candidates:
            LOGGER.debug(
                "[MATCH] %r -> %s",
                utterance.text,
                ", ".join(
                    f"{c.intent.intent_id}({c.intent.confidence:.2f}"
                    f"{'' if c.complete else ', partial'})"
                    for c in candidates
                ),
            )
        return candidates

    def _match_command(
        self,
        utterance: Utterance,
        command: "RegisteredCommand",
        context: ConversationContext | None,
    ) -> MatchCandidate | None:
        """Best candidate across one command's templates, if any matched."""
        text = utterance.normalized
        best: MatchCandidate | None = None
        for compiled in command.templates:
            m = compiled.regex.search(text)
            if m is None:
                continue

            captured = {
                name: utterance.text[m.start(name) : m.end(name)]
                for name in compiled.slot_names
                if m.start(name) >= 0
            }
            binding = bind_slots(
                command.pattern,
                captured,
                context=context,
                locale=utterance.locale,
            )
            if binding.invalid:
                continue

            unresolved = len(binding.unresolved_optional)
            intent = Intent(
                intent_id=command.pattern.intent_id,
                parameters=binding.values,
                confidence=pattern_confidence(self._config, unresolved),
                source=IntentSource.PATTERN,
                session_id=utterance.session_id,
            )
            candidate = MatchCandidate(
                intent=intent,
                span=m.span(),
                pattern=command.pattern,
                template=compiled.template,
                order=command.order,
                missing=binding.missing,
                unresolved_optional=binding.unresolved_optional,
            )
            if best is None or candidate.rank_key() < best.rank_key():
                best = candidate
        return best
