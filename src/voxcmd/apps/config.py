"""Application-level configuration.

Loads ``~/.config/voxcmd/config.json``::

    {
      "dispatch": {"min_confidence": 0.7, "handler_timeout": 5},
      "resolver": {"model": "ollama/llama3.2", "prompt_file": "resolver_prompt.md"},
      "corrections": {"note pad": "Notepad"},
      "plugins": ["desktop", "clock"]
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from voxcmd.constants import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_DIR_ENV,
    DEFAULT_CONFIG_FILE,
    DEFAULT_PLUGINS,
    DEFAULT_PROMPT_FILE,
    DEFAULT_RESOLVER_MAX_TOKENS,
)
from voxcmd.core.config import DispatchConfig, make_dispatch_config
from voxcmd.core.env import LOGGER

# ---------------------------------------------------------------------------
# Nested config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ResolverConfig:
    """Model fallback settings. No model means no fallback."""

    model: str | None = None
    prompt: str | None = None
    max_tokens: int = DEFAULT_RESOLVER_MAX_TOKENS
    flags: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class VoxConfig:
    """Top-level configuration loaded from ~/.config/voxcmd/config.json."""

    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    corrections: dict[str, str] = field(default_factory=dict)
    plugins: tuple[str, ...] = DEFAULT_PLUGINS


# ---------------------------------------------------------------------------
# Config loading helpers
# ---------------------------------------------------------------------------


def config_dir() -> Path:
    """Config directory, honoring the ``VOXCMD_CONFIG_DIR`` override."""
    return Path(
        os.environ.get(DEFAULT_CONFIG_DIR_ENV, "") or DEFAULT_CONFIG_DIR,
    ).expanduser()


def _resolve_config_path(base: Path, path_str: str) -> Path:
    """Resolve a path relative to *base*. Absolute paths used as-is."""
    p = Path(path_str).expanduser()
    if p.is_absolute():
        return p
    return base / p


def _resolve_prompt(
    base: Path, section: dict[str, Any], section_name: str,
) -> str | None:
    """Resolve ``prompt`` / ``prompt_file`` from a config section."""
    prompt = section.get("prompt")
    prompt_file = section.get("prompt_file")
    if prompt and prompt_file:
        LOGGER.debug(
            "Both 'prompt' and 'prompt_file' in %s; using 'prompt_file'",
            section_name,
        )
    if prompt_file:
        path = _resolve_config_path(base, str(prompt_file))
        return path.read_text().strip()
    if prompt:
        return str(prompt)
    return None


def _read_default_prompt_file(base: Path) -> str | None:
    """Fallback: read ``resolver_prompt.md`` from *base* if it exists."""
    path = base / DEFAULT_PROMPT_FILE
    if path.exists():
        return path.read_text().strip() or None
    return None


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name, {})
    if isinstance(raw, dict):
        return raw
    LOGGER.warning("Ignoring config section %r: expected an object", name)
    return {}


def _default_config(base: Path) -> VoxConfig:
    prompt = _read_default_prompt_file(base)
    if prompt:
        return VoxConfig(resolver=ResolverConfig(prompt=prompt))
    return VoxConfig()


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(path: str | None = None) -> VoxConfig:
    """Load voxcmd configuration from a JSON file.

    Reads ``~/.config/voxcmd/config.json`` (or *path*). Relative
    ``prompt_file`` paths are resolved against the config directory.

    Returns a default config if the file does not exist.

    Raises:
        ValueError: A ``dispatch`` value is out of range.
    """
    base = config_dir()
    config_path = Path(path).expanduser() if path else base / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        return _default_config(base)

    with open(config_path) as f:
        data = json.load(f)

    if not isinstance(data, dict):
        LOGGER.warning("Config file %s is not a JSON object; using defaults", config_path)
        return _default_config(base)

    # -- dispatch ------------------------------------------------------------
    dispatch = make_dispatch_config(_section(data, "dispatch"))

    # -- resolver ------------------------------------------------------------
    resolver_raw = _section(data, "resolver")
    prompt = _resolve_prompt(base, resolver_raw, "resolver")
    if prompt is None:
        prompt = _read_default_prompt_file(base)
    resolver = ResolverConfig(
        model=resolver_raw.get("model") or None,
        prompt=prompt,
        max_tokens=int(resolver_raw.get("max_tokens", DEFAULT_RESOLVER_MAX_TOKENS)),
        flags=dict(resolver_raw.get("flags", {})),
    )

    # -- corrections ---------------------------------------------------------
    corrections = {
        str(k): str(v) for k, v in _section(data, "corrections").items()
    }

    # -- plugins -------------------------------------------------------------
    plugins = DEFAULT_PLUGINS
    raw_plugins = data.get("plugins")
    if isinstance(raw_plugins, list):
        plugins = tuple(str(p) for p in raw_plugins if p)

    return VoxConfig(
        dispatch=dispatch,
        resolver=resolver,
        corrections=corrections,
        plugins=plugins,
    )
