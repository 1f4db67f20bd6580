"""Error taxonomy for the dispatch engine.

Registration errors are raised to the registering caller. Per-utterance
errors are caught by the dispatcher and surface as DispatchResult values;
only ContextStoreUnavailable is fatal to a session.
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Machine-readable error kinds carried by exceptions and results."""

    NO_MATCH = "no_match"
    INVALID_PATTERN = "invalid_pattern"
    DUPLICATE_COMMAND = "duplicate_command"
    PLUGIN_LIFECYCLE = "plugin_lifecycle"
    RESOLVER_TIMEOUT = "resolver_timeout"
    RESOLVER_UNAVAILABLE = "resolver_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN_INTENT = "unknown_intent"
    HANDLER_NOT_FOUND = "handler_not_found"
    HANDLER_ERROR = "handler_error"
    HANDLER_TIMEOUT = "handler_timeout"
    LOW_CONFIDENCE = "low_confidence"
    MISSING_SLOTS = "missing_slots"
    CANCELLED = "cancelled"
    CONTEXT_UNAVAILABLE = "context_unavailable"
    SESSION_CLOSED = "session_closed"


class VoxError(Exception):
    """Base class for all voxcmd errors."""

    kind: str = ErrorKind.HANDLER_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# -- registration ------------------------------------------------------------


class RegistrationError(VoxError):
    """A plugin registration was rejected as a whole."""


class InvalidPattern(RegistrationError):
    kind = ErrorKind.INVALID_PATTERN

    def __init__(self, intent_id: str, reason: str) -> None:
        super().__init__(f"invalid pattern {intent_id!r}: {reason}")
        self.intent_id = intent_id
        self.reason = reason


class DuplicateCommand(RegistrationError):
    kind = ErrorKind.DUPLICATE_COMMAND

    def __init__(self, intent_id: str, owner: str) -> None:
        super().__init__(
            f"intent {intent_id!r} is already registered by plugin {owner!r}"
        )
        self.intent_id = intent_id
        self.owner = owner


class PluginLifecycleError(RegistrationError):
    kind = ErrorKind.PLUGIN_LIFECYCLE


# -- resolution --------------------------------------------------------------


class ResolutionError(VoxError):
    """The model fallback could not produce a usable intent."""


class ResolverTimeout(ResolutionError):
    kind = ErrorKind.RESOLVER_TIMEOUT


class ResolverUnavailable(ResolutionError):
    """The completion provider failed for a reason other than a timeout."""

    kind = ErrorKind.RESOLVER_UNAVAILABLE


class MalformedResponse(ResolutionError):
    kind = ErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class UnknownIntent(ResolutionError):
    kind = ErrorKind.UNKNOWN_INTENT


# -- execution ---------------------------------------------------------------


class HandlerNotFound(VoxError):
    kind = ErrorKind.HANDLER_NOT_FOUND

    def __init__(self, intent_id: str) -> None:
        super().__init__(f"no handler registered for intent {intent_id!r}")
        self.intent_id = intent_id


class HandlerError(VoxError):
    """Raised by plugin handlers to report a failure.

    *kind* is free-form so handlers can report their own error kinds;
    *transient* marks failures that are safe to retry for idempotent
    commands.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str = ErrorKind.HANDLER_ERROR,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.transient = transient


# -- sessions ----------------------------------------------------------------


class ContextStoreUnavailable(VoxError):
    kind = ErrorKind.CONTEXT_UNAVAILABLE

    def __init__(self, session_id: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"context store unavailable for session {session_id!r}{detail}")
        self.session_id = session_id


class SessionClosed(VoxError):
    kind = ErrorKind.SESSION_CLOSED

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session {session_id!r} is closed")
        self.session_id = session_id
