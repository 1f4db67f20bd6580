"""Shared test fixtures: no real language model or OS automation needed."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pytest

from voxcmd.core.registry import CommandBinding, StaticPlugin
from voxcmd.core.types import CommandPattern, ConversationContext, SlotSpec, SlotType


class FakeCompletionClient:
    """CompletionClient stub returning canned replies in order.

    A reply may be a string, an exception instance (raised) or ``None`` to
    hang until cancelled.
    """

    def __init__(self, *replies: str | BaseException | None) -> None:
        self._replies = list(replies)
        self.calls: list[list[dict[str, str]]] = []

    async def complete(
        self, messages: Sequence[dict[str, str]], *, timeout: float
    ) -> str:
        self.calls.append(list(messages))
        reply = self._replies.pop(0) if self._replies else None
        if reply is None:
            await asyncio.Event().wait()
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeLauncher:
    """AppLauncher stub recording launched applications."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.launched: list[str] = []
        self._error = error

    async def launch(self, app_name: str) -> None:
        self.launched.append(app_name)
        if self._error is not None:
            raise self._error


class RecordingHandler:
    """Async handler recording its calls; optionally fails or stalls."""

    def __init__(
        self,
        result: Any = "ok",
        *,
        errors: Sequence[BaseException] = (),
        delay: float = 0.0,
    ) -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []
        self.contexts: list[ConversationContext] = []
        self._errors = list(errors)
        self._delay = delay

    async def __call__(
        self, parameters: Mapping[str, Any], context: ConversationContext
    ) -> Any:
        self.calls.append(dict(parameters))
        self.contexts.append(context)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._errors:
            raise self._errors.pop(0)
        return self.result


OPEN_APP = CommandPattern(
    intent_id="openApp",
    templates=("open application {appName}",),
    slots=(SlotSpec("appName"),),
)

CREATE_REMINDER = CommandPattern(
    intent_id="createReminder",
    templates=("remind me [to {title}] [at {time}]",),
    slots=(
        SlotSpec("title", prompt="What should I remind you about?"),
        SlotSpec("time", SlotType.DATETIME, prompt="When should I remind you?"),
    ),
)


def make_plugin(
    name: str = "test",
    *patterns: CommandPattern,
    handler: Callable[..., Any] | None = None,
    idempotent: bool = False,
    timeout: float | None = None,
    version: str = "1.0.0",
) -> StaticPlugin:
    """Plugin binding every pattern to the same handler."""
    bound = handler or RecordingHandler()
    return StaticPlugin(
        name,
        [
            CommandBinding(p, bound, idempotent=idempotent, timeout=timeout)
            for p in (patterns or (OPEN_APP,))
        ],
        version=version,
    )


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def plugin_factory() -> Callable[..., StaticPlugin]:
    return make_plugin
