"""Default configuration values for voxcmd."""

from typing import Final

DEFAULT_LOCALE: Final = "en"
DEFAULT_SESSION_ID: Final = "default"

# Confidence policy
DEFAULT_MIN_CONFIDENCE: Final = 0.6
DEFAULT_PATTERN_CONFIDENCE: Final = 0.95
DEFAULT_OPTIONAL_SLOT_PENALTY: Final = 0.05
DEFAULT_MODEL_CONFIDENCE: Final = 0.5

# Execution policy
DEFAULT_HANDLER_TIMEOUT: Final = 10.0
DEFAULT_RESOLVER_TIMEOUT: Final = 8.0
DEFAULT_MAX_RETRIES: Final = 1
DEFAULT_RETRY_BACKOFF: Final = 0.25

# Conversation context
DEFAULT_CONTEXT_CAPACITY: Final = 20
DEFAULT_SESSION_TTL: Final = 1800.0
DEFAULT_CONTEXT_WINDOW: Final = 6
DEFAULT_PENDING_TTL: Final = 60.0
DEFAULT_SWEEP_INTERVAL: Final = 30.0
DEFAULT_SESSION_QUEUE_MAXSIZE: Final = 64

# Intent resolver
DEFAULT_RESOLVER_MAX_TOKENS: Final = 256
DEFAULT_RESOLVER_SYSTEM_PROMPT: Final = (
    "You route voice commands for a desktop assistant. Pick the single intent "
    "from the schema that best matches the user's request and extract its "
    "parameters. Reply with only a JSON object of the form "
    '{"intent": "<intent id or null>", "parameters": {"<slot>": "<value>"}, '
    '"confidence": <number between 0 and 1>}. Use null for the intent when '
    "nothing in the schema fits. Do not add commentary."
)

# Application config
DEFAULT_CONFIG_DIR: Final = "~/.config/voxcmd"
DEFAULT_CONFIG_DIR_ENV: Final = "VOXCMD_CONFIG_DIR"
DEFAULT_CONFIG_FILE: Final = "config.json"
DEFAULT_PROMPT_FILE: Final = "resolver_prompt.md"
DEFAULT_PLUGINS: Final = ("desktop", "reminders", "clock")
