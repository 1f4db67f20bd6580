"""Environment setup and logging for voxcmd.

setup_environment() should be called before litellm is imported so its
import-time banners and debug hints stay out of an interactive terminal.
"""

import logging
import os
import warnings

LOGGER = logging.getLogger("voxcmd")


def setup_environment() -> None:
    """Configure warning filters and env vars before library imports."""
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    warnings.filterwarnings("ignore", category=FutureWarning)

    os.environ.setdefault("LITELLM_LOG", "ERROR")
    os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")


def quiet_library_loggers() -> None:
    """Keep chatty third-party loggers at WARNING."""
    for name in ("LiteLLM", "litellm", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
