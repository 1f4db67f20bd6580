"""Structural type protocols for the engine's external collaborators."""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from voxcmd.core.types import ConversationContext


class CompletionClient(Protocol):
    """Language-model completion collaborator.

    Returns the raw reply text. May raise ``TimeoutError`` or any
    provider-specific exception; the resolver classifies them.
    """

    async def complete(
        self, messages: Sequence[dict[str, str]], *, timeout: float
    ) -> str: ...


class Handler(Protocol):
    """Command handler. Sync handlers are run off the event loop."""

    def __call__(
        self, parameters: Mapping[str, Any], context: ConversationContext
    ) -> Any: ...


class Speaker(Protocol):
    """Text-to-speech collaborator."""

    async def speak(self, text: str) -> None: ...


class AppLauncher(Protocol):
    """OS automation collaborator used by the desktop plugin."""

    async def launch(self, app_name: str) -> None: ...
