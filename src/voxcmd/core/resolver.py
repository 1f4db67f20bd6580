"""Model fallback: resolve an utterance to an intent via a completion model.

Uses litellm for provider-agnostic LLM access (Ollama, OpenAI, Claude, etc.).
The reply is expected to be a single JSON object::

    {"intent": "openApp", "parameters": {"appName": "Mail"}, "confidence": 0.8}
"""

import asyncio
import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from voxcmd.constants import (
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_MODEL_CONFIDENCE,
    DEFAULT_RESOLVER_MAX_TOKENS,
    DEFAULT_RESOLVER_SYSTEM_PROMPT,
    DEFAULT_RESOLVER_TIMEOUT,
)
from voxcmd.core.config import DispatchConfig
from voxcmd.core.env import LOGGER
from voxcmd.core.errors import (
    MalformedResponse,
    ResolverTimeout,
    ResolverUnavailable,
    UnknownIntent,
)
from voxcmd.core.protocols import CompletionClient
from voxcmd.core.registry import RegistrySnapshot
from voxcmd.core.types import (
    ConversationContext,
    ConversationTurn,
    Intent,
    IntentSource,
    Utterance,
)

_THINK_RE = re.compile(r"<think>.*?(?:</think>|$)", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_DECLINED = frozenset({"", "none", "null", "unknown", "no_match"})


class LitellmCompletionClient:
    """CompletionClient backed by ``litellm.acompletion``.

    The litellm import is deferred so that importing voxcmd stays cheap
    when the model fallback is disabled.
    """

    def __init__(
        self,
        model: str,
        *,
        max_tokens: int = DEFAULT_RESOLVER_MAX_TOKENS,
        extra_params: Mapping[str, Any] | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.extra_params = dict(extra_params or {})

    async def complete(
        self, messages: Sequence[dict[str, str]], *, timeout: float
    ) -> str:
        from litellm import acompletion  # deferred import

        response = await acompletion(
            model=self.model,
            messages=list(messages),
            max_tokens=self.max_tokens,
            timeout=timeout,
            **self.extra_params,
        )
        return response.choices[0].message.content or ""


def intent_schema(snapshot: RegistrySnapshot) -> list[dict[str, Any]]:
    """Describe every registered intent for the model prompt."""
    schema = []
    for command in snapshot:
        pattern = command.pattern
        schema.append(
            {
                "intent": pattern.intent_id,
                "description": pattern.description,
                "examples": [] if pattern.regex else list(pattern.templates),
                "slots": [
                    {
                        "name": s.name,
                        "type": str(s.type),
                        "required": s.required,
                        **({"choices": list(s.choices)} if s.choices else {}),
                    }
                    for s in pattern.slots
                ],
            }
        )
    return schema


def _describe_turn(turn: ConversationTurn) -> str:
    line = f"user: {turn.text}"
    if turn.intent is not None:
        params = json.dumps(dict(turn.entities), default=str, ensure_ascii=False)
        line += f" -> {turn.intent.intent_id} {params}"
    return f"{line} [{turn.result.status}]"


def strip_reasoning(raw: str) -> str:
    """Remove <think> blocks and code fences around the JSON payload."""
    text = _THINK_RE.sub("", raw).strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    return text


def parse_reply(
    raw: str, default_confidence: float = DEFAULT_MODEL_CONFIDENCE
) -> tuple[str, dict[str, Any], float]:
    """Parse a model reply into ``(intent_id, parameters, confidence)``.

    Raises:
        MalformedResponse: Not a JSON object of the expected shape.
        UnknownIntent: The model declined to pick an intent.
    """
    text = strip_reasoning(raw)
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end < start:
        raise MalformedResponse("reply contains no JSON object", raw)
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"reply is not valid JSON: {exc}", raw) from exc
    if not isinstance(data, dict):
        raise MalformedResponse("reply is not a JSON object", raw)

    intent_id = data.get("intent", data.get("intent_id", data.get("intentId")))
    if intent_id is None or (
        isinstance(intent_id, str) and intent_id.strip().lower() in _DECLINED
    ):
        raise UnknownIntent("the model did not recognize a command")
    if not isinstance(intent_id, str):
        raise MalformedResponse("intent must be a string", raw)

    parameters = data.get("parameters") or {}
    if not isinstance(parameters, dict):
        raise MalformedResponse("parameters must be an object", raw)

    confidence = data.get("confidence")
    if confidence is None:
        confidence = default_confidence
    elif isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise MalformedResponse("confidence must be a number", raw)
    confidence = min(1.0, max(0.0, float(confidence)))
    return intent_id.strip(), {str(k): v for k, v in parameters.items()}, confidence


class IntentResolver:
    """Escalates unmatched utterances to a completion model."""

    def __init__(
        self,
        client: CompletionClient,
        *,
        timeout: float = DEFAULT_RESOLVER_TIMEOUT,
        default_confidence: float = DEFAULT_MODEL_CONFIDENCE,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
        system_prompt: str = DEFAULT_RESOLVER_SYSTEM_PROMPT,
    ) -> None:
        self._client = client
        self.timeout = timeout
        self.default_confidence = default_confidence
        self.context_window = context_window
        self.system_prompt = system_prompt

    @classmethod
    def from_config(
        cls,
        client: CompletionClient,
        config: DispatchConfig,
        system_prompt: str | None = None,
    ) -> "IntentResolver":
        return cls(
            client,
            timeout=config.resolver_timeout,
            default_confidence=config.default_model_confidence,
            context_window=config.context_window,
            system_prompt=system_prompt or DEFAULT_RESOLVER_SYSTEM_PROMPT,
        )

    def build_messages(
        self,
        utterance: Utterance,
        context: ConversationContext,
        snapshot: RegistrySnapshot,
    ) -> list[dict[str, str]]:
        schema = json.dumps(intent_schema(snapshot), ensure_ascii=False, indent=1)
        history = "\n".join(
            _describe_turn(t) for t in context.recent(self.context_window)
        )
        user = (
            f"Intent schema:\n{schema}\n\n"
            f"Recent conversation:\n{history or '(none)'}\n\n"
            f"Utterance: {utterance.text}"
        )
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": user},
        ]

    async def resolve(
        self,
        utterance: Utterance,
        context: ConversationContext,
        snapshot: RegistrySnapshot,
    ) -> Intent:
        """Resolve *utterance* against the intents in *snapshot*.

        Raises:
            ResolverTimeout: The completion call exceeded the timeout.
            ResolverUnavailable: The completion provider failed.
            MalformedResponse: The reply could not be parsed.
            UnknownIntent: No registered intent fits.
        """
        messages = self.build_messages(utterance, context, snapshot)
        try:
            raw = await asyncio.wait_for(
                self._client.complete(messages, timeout=self.timeout),
                timeout=self.timeout,
            )
        except TimeoutError as exc:
            raise ResolverTimeout(
                f"model did not answer within {self.timeout:g}s"
            ) from exc
        except Exception as exc:
            if "timeout" in type(exc).__name__.lower():
                raise ResolverTimeout(str(exc)) from exc
            raise ResolverUnavailable(f"completion failed: {exc}") from exc

        LOGGER.debug("[RESOLVE] %r -> %r", utterance.text, raw)
        intent_id, parameters, confidence = parse_reply(raw, self.default_confidence)
        if intent_id not in snapshot:
            raise UnknownIntent(f"model named unregistered intent {intent_id!r}")
        return Intent(
            intent_id=intent_id,
            parameters=parameters,
            confidence=confidence,
            source=IntentSource.MODEL,
            session_id=utterance.session_id,
        )
