"""Dispatch state machine.

::

    idle -> matching -> (resolving) -> executing -> completed
                     \\             \\            \\-> failed
                      \\             \\-> clarification_needed | failed
                       \\-> clarification_needed | failed

Every dispatch that reaches a terminal state appends exactly one turn to
the context store. A dispatch cancelled before that point appends nothing.
"""

import asyncio
import inspect
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final

from voxcmd.core.config import DispatchConfig
from voxcmd.core.context import ContextStore
from voxcmd.core.env import LOGGER
from voxcmd.core.errors import (
    ErrorKind,
    HandlerError,
    HandlerNotFound,
    ResolutionError,
    ResolverTimeout,
    ResolverUnavailable,
)
from voxcmd.core.matcher import MatchCandidate, PatternMatcher
from voxcmd.core.registry import PluginRegistry, RegisteredCommand, RegistrySnapshot
from voxcmd.core.resolver import IntentResolver
from voxcmd.core.slots import SlotValueError, bind_slots, coerce_slot, is_referent
from voxcmd.core.types import (
    ConversationContext,
    ConversationTurn,
    DispatchResult,
    DispatchStatus,
    Intent,
    PendingSlotFill,
    SlotType,
    Utterance,
)

# Replies to a pending question. YES/NO match a leading word ("yes, do it").
YES_RE: Final = re.compile(
    r"^(?:yes|yeah|yep|yup|sure|ok|okay|do\s+it|go\s+ahead|confirm|correct|"
    r"ja|jawohl|klopt|genau|doe\s+maar)(?:\b|$)",
    re.IGNORECASE,
)
NO_RE: Final = re.compile(
    r"^(?:no|nope|nah|don'?t|do\s+not|negative|nee|nein)(?:\b|$)",
    re.IGNORECASE,
)
CANCEL_RE: Final = re.compile(
    r"^(?:cancel|stop|abort|never\s*mind|forget\s+(?:it|that)|"
    r"annuleer|laat\s+maar|abbrechen|vergiss\s+es)(?:\s+(?:it|that))?$",
    re.IGNORECASE,
)

_REPLY_STRIP: Final = " \t,.;:!?\"'"

NOT_UNDERSTOOD: Final = "Sorry, I didn't understand that. Could you rephrase?"
CANCELLED: Final = "Okay, cancelled."


class DispatchState(StrEnum):
    IDLE = "idle"
    MATCHING = "matching"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CLARIFICATION_NEEDED = "clarification_needed"
    FAILED = "failed"


TRANSITIONS: Final[dict[DispatchState, frozenset[DispatchState]]] = {
    DispatchState.IDLE: frozenset({DispatchState.MATCHING}),
    DispatchState.MATCHING: frozenset(
        {
            DispatchState.RESOLVING,
            DispatchState.EXECUTING,
            DispatchState.CLARIFICATION_NEEDED,
            DispatchState.FAILED,
        }
    ),
    DispatchState.RESOLVING: frozenset(
        {
            DispatchState.EXECUTING,
            DispatchState.CLARIFICATION_NEEDED,
            DispatchState.FAILED,
        }
    ),
    DispatchState.EXECUTING: frozenset(
        {DispatchState.COMPLETED, DispatchState.FAILED}
    ),
}

_STATUS: Final = {
    DispatchState.COMPLETED: DispatchStatus.SUCCESS,
    DispatchState.CLARIFICATION_NEEDED: DispatchStatus.CLARIFICATION_NEEDED,
    DispatchState.FAILED: DispatchStatus.FAILED,
}


class _Trace:
    """Records and validates the states visited by one dispatch."""

    __slots__ = ("session_id", "states")

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.states = [DispatchState.IDLE]

    @property
    def current(self) -> DispatchState:
        return self.states[-1]

    def to(self, state: DispatchState) -> None:
        if state not in TRANSITIONS.get(self.current, frozenset()):
            raise RuntimeError(f"illegal dispatch transition {self.current} -> {state}")
        LOGGER.debug("[%s] %s -> %s", self.session_id, self.current, state)
        self.states.append(state)


@dataclass(frozen=True, slots=True)
class _Outcome:
    state: DispatchState
    payload: Any = None
    error_kind: str | None = None
    message: str = ""
    intent: Intent | None = None
    entities: Mapping[str, Any] = field(default_factory=dict)
    pending: PendingSlotFill | None = None


def describe_intent(intent: Intent) -> str:
    """Short human description ("openApp (appName=Mail)")."""
    if not intent.parameters:
        return intent.intent_id
    params = ", ".join(f"{k}={v}" for k, v in intent.parameters.items())
    return f"{intent.intent_id} ({params})"


async def invoke_handler(
    handler: Callable[..., Any],
    parameters: Mapping[str, Any],
    context: ConversationContext,
) -> Any:
    """Call *handler*; sync handlers run in a worker thread."""
    if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    ):
        return await handler(parameters, context)
    result = await asyncio.to_thread(handler, parameters, context)
    if inspect.isawaitable(result):
        result = await result
    return result


class Dispatcher:
    """Turns utterances into executed commands or clarification requests.

    Args:
        registry: Source of command snapshots.
        store: Per-session conversational context.
        resolver: Optional model fallback; without it unmatched utterances
            become clarification requests.
        config: Thresholds, timeouts and retry policy.
        clock: Monotonic time source for pending-record expiry.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        store: ContextStore,
        resolver: IntentResolver | None = None,
        config: DispatchConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._store = store
        self._resolver = resolver
        self._config = config or DispatchConfig()
        self._matcher = PatternMatcher(self._config)
        self._clock = clock

    @property
    def config(self) -> DispatchConfig:
        return self._config

    async def dispatch(self, utterance: Utterance) -> DispatchResult:
        """Dispatch one utterance and record the outcome in its session.

        Raises:
            ContextStoreUnavailable: The outcome could not be recorded.
        """
        trace = _Trace(utterance.session_id)
        snapshot = self._registry.snapshot()
        context = self._store.snapshot(utterance.session_id)
        trace.to(DispatchState.MATCHING)

        outcome = None
        pending = context.pending
        if pending is not None:
            if pending.expired(self._clock()):
                LOGGER.debug(
                    "[%s] pending %s expired",
                    utterance.session_id,
                    pending.intent.intent_id,
                )
            else:
                outcome = await self._continue_pending(
                    utterance, pending, snapshot, context, trace
                )
        if outcome is None:
            outcome = await self._dispatch_fresh(utterance, snapshot, context, trace)

        trace.to(outcome.state)
        result = DispatchResult(
            status=_STATUS[outcome.state],
            payload=outcome.payload,
            error_kind=outcome.error_kind,
            message=outcome.message,
            intent=outcome.intent,
            states=tuple(str(s) for s in trace.states),
        )
        turn = ConversationTurn(
            text=utterance.text,
            result=result,
            intent=outcome.intent,
            entities=outcome.entities,
            pending=outcome.pending,
            timestamp=utterance.timestamp,
        )
        await self._store.append(utterance.session_id, turn)

        LOGGER.info(
            "[%s] %r -> %s%s",
            utterance.session_id,
            utterance.text,
            result.status,
            f" ({result.error_kind})" if result.error_kind else "",
        )
        return result

    # -- routing -------------------------------------------------------------

    async def _dispatch_fresh(
        self,
        utterance: Utterance,
        snapshot: RegistrySnapshot,
        context: ConversationContext,
        trace: _Trace,
    ) -> _Outcome:
        candidates = self._matcher.match(utterance, snapshot, context)
        best = candidates[0] if candidates else None

        if best is not None and not best.complete:
            command = snapshot.get(best.intent.intent_id)
            return self._ask_for_slots(command, best.intent, best.missing)

        if best is not None and best.intent.confidence >= self._config.min_confidence:
            trace.to(DispatchState.EXECUTING)
            return await self._execute(snapshot, best.intent, context)

        if self._resolver is not None:
            trace.to(DispatchState.RESOLVING)
            return await self._resolve(utterance, snapshot, context, trace)

        if best is not None:
            command = snapshot.get(best.intent.intent_id)
            return self._ask_to_confirm(command, best.intent, ())
        return _Outcome(
            DispatchState.CLARIFICATION_NEEDED,
            error_kind=ErrorKind.NO_MATCH,
            message=NOT_UNDERSTOOD,
        )

    async def _resolve(
        self,
        utterance: Utterance,
        snapshot: RegistrySnapshot,
        context: ConversationContext,
        trace: _Trace,
    ) -> _Outcome:
        resolver = self._resolver
        if resolver is None:
            raise RuntimeError("no intent resolver configured")
        try:
            intent = await resolver.resolve(utterance, context, snapshot)
        except ResolverTimeout as exc:
            LOGGER.warning("[%s] %s", utterance.session_id, exc.message)
            return _Outcome(
                DispatchState.FAILED,
                error_kind=exc.kind,
                message="Sorry, that took too long to work out.",
            )
        except ResolverUnavailable as exc:
            LOGGER.warning("[%s] %s", utterance.session_id, exc.message)
            return _Outcome(
                DispatchState.FAILED,
                error_kind=exc.kind,
                message="Sorry, the language model is not reachable.",
            )
        except ResolutionError as exc:
            LOGGER.info("[%s] no intent: %s", utterance.session_id, exc.message)
            return _Outcome(
                DispatchState.CLARIFICATION_NEEDED,
                error_kind=exc.kind,
                message=NOT_UNDERSTOOD,
            )

        command = snapshot.get(intent.intent_id)
        if command is None:
            trace.to(DispatchState.EXECUTING)
            return self._not_found(intent)

        intent, unfilled = self._bind(command, intent, context, utterance.locale)
        if intent.confidence < self._config.min_confidence:
            return self._ask_to_confirm(command, intent, unfilled)
        if unfilled:
            return self._ask_for_slots(command, intent, unfilled)

        trace.to(DispatchState.EXECUTING)
        return await self._execute(snapshot, intent, context)

    @staticmethod
    def _bind(
        command: RegisteredCommand,
        intent: Intent,
        context: ConversationContext,
        locale: str,
    ) -> tuple[Intent, tuple[str, ...]]:
        """Bind *intent* to the registered schema; return it and unfilled slots."""
        binding = bind_slots(
            command.pattern, intent.parameters, context=context, locale=locale
        )
        if binding.extra:
            LOGGER.debug("Dropping undeclared parameters %s", ", ".join(binding.extra))
        unfilled = binding.missing + binding.invalid
        return (
            intent.with_parameters(binding.values),
            tuple(n for n in command.pattern.required_slots if n in unfilled),
        )

    async def _bind_and_execute(
        self,
        command: RegisteredCommand,
        intent: Intent,
        snapshot: RegistrySnapshot,
        context: ConversationContext,
        utterance: Utterance,
        trace: _Trace,
    ) -> _Outcome:
        intent, unfilled = self._bind(command, intent, context, utterance.locale)
        if unfilled:
            return self._ask_for_slots(command, intent, unfilled)
        trace.to(DispatchState.EXECUTING)
        return await self._execute(snapshot, intent, context)

    async def _continue_pending(
        self,
        utterance: Utterance,
        pending: PendingSlotFill,
        snapshot: RegistrySnapshot,
        context: ConversationContext,
        trace: _Trace,
    ) -> _Outcome | None:
        """Interpret *utterance* as the answer to a pending question.

        Returns None when the utterance should be dispatched as a fresh
        command instead.
        """
        command = snapshot.get(pending.intent.intent_id)
        if command is None:
            return None
        if pending.pattern is not None and pending.pattern != command.pattern:
            LOGGER.debug(
                "[%s] pending %s outdated by re-registration",
                utterance.session_id,
                pending.intent.intent_id,
            )
            return None

        reply = utterance.normalized.strip(_REPLY_STRIP)
        if CANCEL_RE.match(reply):
            return _Outcome(
                DispatchState.FAILED, error_kind=ErrorKind.CANCELLED, message=CANCELLED
            )

        if pending.confirm:
            if YES_RE.match(reply):
                # The user vouched for the guess.
                intent = pending.intent.with_parameters(
                    pending.intent.parameters, confidence=1.0
                )
                return await self._bind_and_execute(
                    command, intent, snapshot, context, utterance, trace
                )
            if NO_RE.match(reply):
                return _Outcome(
                    DispatchState.FAILED,
                    error_kind=ErrorKind.CANCELLED,
                    message=CANCELLED,
                )
            return None

        if not pending.missing:
            return None
        slot_name = pending.missing[0]
        spec = command.pattern.slot(slot_name)
        if spec is None:
            return None

        fresh = self._fresh_command(utterance, snapshot, context)
        value: Any = None
        try:
            raw: Any = utterance.text
            if is_referent(raw):
                raw = context.recall(slot_name)
            value = coerce_slot(spec, raw, locale=utterance.locale)
        except SlotValueError:
            value = None

        open_ended = spec.type in (SlotType.STRING, SlotType.FREE_TEXT)
        if fresh is not None and (value is None or open_ended):
            LOGGER.debug(
                "[%s] dropping pending %s for a new command",
                utterance.session_id,
                pending.intent.intent_id,
            )
            return None
        if value is None:
            return self._ask_for_slots(command, pending.intent, pending.missing)

        params = dict(pending.intent.parameters)
        params[slot_name] = value
        return await self._bind_and_execute(
            command,
            pending.intent.with_parameters(params),
            snapshot,
            context,
            utterance,
            trace,
        )

    def _fresh_command(
        self,
        utterance: Utterance,
        snapshot: RegistrySnapshot,
        context: ConversationContext,
    ) -> MatchCandidate | None:
        threshold = self._config.min_confidence
        for candidate in self._matcher.match(utterance, snapshot, context):
            if candidate.complete and candidate.intent.confidence >= threshold:
                return candidate
        return None

    # -- clarification -------------------------------------------------------

    def _pending(
        self,
        command: RegisteredCommand | None,
        intent: Intent,
        missing: tuple[str, ...],
        confirm: bool,
        prompt: str,
    ) -> PendingSlotFill:
        now = self._clock()
        return PendingSlotFill(
            intent=intent,
            missing=missing,
            confirm=confirm,
            prompt=prompt,
            pattern=command.pattern if command is not None else None,
            created_at=now,
            expires_at=now + self._config.pending_ttl,
        )

    def _ask_for_slots(
        self,
        command: RegisteredCommand | None,
        intent: Intent,
        missing: tuple[str, ...],
    ) -> _Outcome:
        spec = command.pattern.slot(missing[0]) if command is not None else None
        prompt = spec.ask() if spec is not None else f"What is the {missing[0]}?"
        return _Outcome(
            DispatchState.CLARIFICATION_NEEDED,
            error_kind=ErrorKind.MISSING_SLOTS,
            message=prompt,
            intent=intent,
            pending=self._pending(
                command, intent, missing, confirm=False, prompt=prompt
            ),
        )

    def _ask_to_confirm(
        self,
        command: RegisteredCommand | None,
        intent: Intent,
        missing: tuple[str, ...],
    ) -> _Outcome:
        prompt = f"Did you mean {describe_intent(intent)}?"
        return _Outcome(
            DispatchState.CLARIFICATION_NEEDED,
            error_kind=ErrorKind.LOW_CONFIDENCE,
            message=prompt,
            intent=intent,
            pending=self._pending(
                command, intent, missing, confirm=True, prompt=prompt
            ),
        )

    # -- execution -----------------------------------------------------------

    def _not_found(self, intent: Intent) -> _Outcome:
        error = HandlerNotFound(intent.intent_id)
        LOGGER.warning(error.message)
        return _Outcome(
            DispatchState.FAILED,
            error_kind=error.kind,
            message=error.message,
            intent=intent,
        )

    async def _execute(
        self,
        snapshot: RegistrySnapshot,
        intent: Intent,
        context: ConversationContext,
    ) -> _Outcome:
        """Run the handler under the per-command timeout and retry policy.

        Idempotent commands are retried with exponential backoff after a
        timeout or a transient HandlerError. Others are never retried.
        """
        command = snapshot.get(intent.intent_id)
        if command is None:
            return self._not_found(intent)

        binding = command.binding
        timeout = binding.timeout or self._config.handler_timeout
        attempts = 1 + (self._config.max_retries if binding.idempotent else 0)

        attempt = 0
        while True:
            try:
                payload = await asyncio.wait_for(
                    invoke_handler(binding.handler, intent.parameters, context),
                    timeout=timeout,
                )
            except TimeoutError:
                error = HandlerError(
                    f"{intent.intent_id} timed out after {timeout:g}s",
                    kind=ErrorKind.HANDLER_TIMEOUT,
                    transient=True,
                )
            except HandlerError as exc:
                error = exc
            except Exception as exc:
                LOGGER.warning("Handler for %s raised", intent.intent_id, exc_info=True)
                error = HandlerError(str(exc) or type(exc).__name__)
            else:
                return _Outcome(
                    DispatchState.COMPLETED,
                    payload=payload,
                    message=payload if isinstance(payload, str) else "Done.",
                    intent=intent,
                    entities=intent.parameters,
                )

            attempt += 1
            if attempt < attempts and error.transient:
                delay = self._config.retry_backoff * (2 ** (attempt - 1))
                LOGGER.info(
                    "Retrying %s in %.2fs after %s", intent.intent_id, delay, error.kind
                )
                await asyncio.sleep(delay)
                continue
            break

        LOGGER.warning("%s failed: %s (%s)", intent.intent_id, error.message, error.kind)
        return _Outcome(
            DispatchState.FAILED,
            error_kind=error.kind,
            message=error.message,
            intent=intent,
        )
