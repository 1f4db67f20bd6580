"""Core dispatch engine, free of UI dependencies.

Re-exports key symbols for convenience.
"""

from voxcmd.core.config import DispatchConfig, make_dispatch_config
from voxcmd.core.context import ContextSink, ContextStore
from voxcmd.core.dispatcher import Dispatcher, DispatchState
from voxcmd.core.errors import (
    ContextStoreUnavailable,
    DuplicateCommand,
    ErrorKind,
    HandlerError,
    HandlerNotFound,
    InvalidPattern,
    MalformedResponse,
    PluginLifecycleError,
    ResolutionError,
    ResolverTimeout,
    ResolverUnavailable,
    SessionClosed,
    UnknownIntent,
    VoxError,
)
from voxcmd.core.matcher import MatchCandidate, PatternMatcher
from voxcmd.core.normalizer import normalize
from voxcmd.core.registry import (
    CommandBinding,
    Plugin,
    PluginRegistry,
    RegistrySnapshot,
    StaticPlugin,
)
from voxcmd.core.resolver import IntentResolver, LitellmCompletionClient
from voxcmd.core.session import SessionManager
from voxcmd.core.types import (
    CommandPattern,
    ConversationContext,
    ConversationTurn,
    DispatchResult,
    DispatchStatus,
    Intent,
    IntentSource,
    PendingSlotFill,
    SlotSpec,
    SlotType,
    Utterance,
)

__all__ = [
    "CommandBinding",
    "CommandPattern",
    "ContextSink",
    "ContextStore",
    "ContextStoreUnavailable",
    "ConversationContext",
    "ConversationTurn",
    "DispatchConfig",
    "DispatchResult",
    "DispatchState",
    "DispatchStatus",
    "Dispatcher",
    "DuplicateCommand",
    "ErrorKind",
    "HandlerError",
    "HandlerNotFound",
    "Intent",
    "IntentResolver",
    "IntentSource",
    "InvalidPattern",
    "LitellmCompletionClient",
    "MalformedResponse",
    "MatchCandidate",
    "PatternMatcher",
    "PendingSlotFill",
    "Plugin",
    "PluginLifecycleError",
    "PluginRegistry",
    "RegistrySnapshot",
    "ResolutionError",
    "ResolverTimeout",
    "ResolverUnavailable",
    "SessionClosed",
    "SessionManager",
    "SlotSpec",
    "SlotType",
    "StaticPlugin",
    "UnknownIntent",
    "Utterance",
    "VoxError",
    "make_dispatch_config",
    "normalize",
]
