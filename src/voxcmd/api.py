"""Public API for the voxcmd dispatch engine.

The litellm import is deferred until a model fallback is actually used,
so ``import voxcmd.api`` stays cheap.

Typical usage::

    from voxcmd.api import build_engine, handle_text

    engine = await build_engine(plugins=[my_plugin])
    results = await handle_text(engine, "open application Mail")
    print(results[0].status, results[0].speech_text)
    await engine.close()
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import Any

from voxcmd.constants import DEFAULT_SESSION_ID
from voxcmd.core.config import DispatchConfig
from voxcmd.core.context import ContextSink, ContextStore
from voxcmd.core.dispatcher import Dispatcher
from voxcmd.core.normalizer import normalize
from voxcmd.core.protocols import CompletionClient
from voxcmd.core.registry import Plugin, PluginRegistry
from voxcmd.core.resolver import IntentResolver
from voxcmd.core.session import SessionManager
from voxcmd.core.types import DispatchResult


class CommandEngine:
    """Bundles registry, context store, dispatcher and session pipelines.

    Use :func:`build_engine` to create instances; do not instantiate
    directly.
    """

    __slots__ = (
        "config",
        "registry",
        "store",
        "dispatcher",
        "sessions",
        "corrections",
    )

    def __init__(
        self,
        config: DispatchConfig,
        registry: PluginRegistry,
        store: ContextStore,
        dispatcher: Dispatcher,
        sessions: SessionManager,
        corrections: dict[str, str],
    ) -> None:
        self.config = config
        self.registry = registry
        self.store = store
        self.dispatcher = dispatcher
        self.sessions = sessions
        self.corrections = corrections

    async def register(self, plugin: Plugin, *, replace: bool = False) -> None:
        await self.registry.register(plugin, replace=replace)

    async def unregister(self, plugin_name: str) -> bool:
        return await self.registry.unregister(plugin_name)

    async def close(self) -> None:
        """Close all sessions, then unregister plugins (running cleanup)."""
        await self.sessions.shutdown()
        await self.registry.close()


async def build_engine(
    config: DispatchConfig | None = None,
    *,
    completion: CompletionClient | None = None,
    plugins: Iterable[Plugin] = (),
    corrections: dict[str, str] | None = None,
    system_prompt: str | None = None,
    sink: ContextSink | None = None,
    on_result: Callable[[DispatchResult], Any] | None = None,
    on_session_failed: Callable[[str, BaseException], Any] | None = None,
    setup_env: bool = True,
) -> CommandEngine:
    """Create an engine and register *plugins* in order.

    Args:
        config: Dispatch thresholds and timeouts (defaults if omitted).
        completion: Model fallback client; ``None`` disables the fallback.
        plugins: Plugins to register before returning.
        corrections: Vocabulary fixes applied to raw text before matching.
        system_prompt: Override for the resolver system prompt.
        sink: Optional persistence collaborator for conversation context.
        setup_env: If True, call ``setup_environment()`` to quiet noisy
            library output before litellm is imported.

    Raises:
        RegistrationError: A plugin was rejected; nothing is left running.
    """
    if setup_env:
        from voxcmd.core.env import setup_environment

        setup_environment()

    cfg = config or DispatchConfig()
    registry = PluginRegistry()
    store = ContextStore(cfg.context_capacity, cfg.session_ttl, sink=sink)
    resolver = (
        IntentResolver.from_config(completion, cfg, system_prompt)
        if completion is not None
        else None
    )
    dispatcher = Dispatcher(registry, store, resolver, cfg)
    sessions = SessionManager(
        dispatcher,
        store,
        on_result=on_result,
        on_session_failed=on_session_failed,
    )
    engine = CommandEngine(
        config=cfg,
        registry=registry,
        store=store,
        dispatcher=dispatcher,
        sessions=sessions,
        corrections=dict(corrections or {}),
    )
    try:
        for plugin in plugins:
            await registry.register(plugin)
    except BaseException:
        await registry.close()
        raise
    return engine


async def handle_text(
    engine: CommandEngine,
    raw: str,
    *,
    session_id: str | None = None,
    locale: str | None = None,
    source_confidence: float | None = None,
) -> list[DispatchResult]:
    """Normalize *raw* and dispatch each utterance in order.

    Returns one DispatchResult per utterance; empty for silence or noise.

    Raises:
        ContextStoreUnavailable: The session failed while dispatching.
    """
    utterances = normalize(
        raw,
        locale or engine.config.locale,
        session_id=session_id or DEFAULT_SESSION_ID,
        source_confidence=source_confidence,
        corrections=engine.corrections,
    )
    futures = [await engine.sessions.submit(u) for u in utterances]
    # Collect every outcome so queued futures failed by a teardown are read.
    outcomes = await asyncio.gather(*futures, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return list(outcomes)
