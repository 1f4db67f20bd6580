"""Plugin command registry.

Readers take an immutable :class:`RegistrySnapshot` and never block.
Writers serialize on an asyncio lock, build a complete new snapshot and
publish it with a single reference swap, so a reader sees either the old
or the new set of commands and never a half-registered plugin.
"""

import asyncio
import inspect
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from voxcmd.core.env import LOGGER
from voxcmd.core.errors import DuplicateCommand, InvalidPattern, PluginLifecycleError
from voxcmd.core.templates import CompiledTemplate, TemplateError, compile_pattern
from voxcmd.core.types import CommandPattern, SlotType

_IDENTIFIER_RE = re.compile(r"[A-Za-z][A-Za-z0-9_.\-]*")
_SLOT_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


@dataclass(frozen=True, slots=True)
class CommandBinding:
    """A command pattern bound to its handler and execution metadata.

    Attributes:
        pattern: The command's templates and slot schema.
        handler: ``(parameters, context) -> result``; sync or async.
        idempotent: Safe to retry after a timeout or transient failure.
        timeout: Per-command timeout in seconds (``None`` uses the default).
    """

    pattern: CommandPattern
    handler: Callable[..., Any]
    idempotent: bool = False
    timeout: float | None = None


class Plugin:
    """Base class for command plugins.

    Subclasses set ``name`` and ``version`` and yield their bindings from
    :meth:`commands`. ``initialize`` runs before the commands become
    visible, ``cleanup`` after they are removed. Both must tolerate being
    called more than once.
    """

    name: str = ""
    version: str = "0.0.0"

    def commands(self) -> Iterable[CommandBinding]:
        raise NotImplementedError

    async def initialize(self) -> None:
        return None

    async def cleanup(self) -> None:
        return None


class StaticPlugin(Plugin):
    """Plugin built from a fixed list of bindings."""

    def __init__(
        self, name: str, bindings: Iterable[CommandBinding], version: str = "0.0.0"
    ) -> None:
        self.name = name
        self.version = version
        self._bindings = tuple(bindings)

    def commands(self) -> Iterable[CommandBinding]:
        return self._bindings


@dataclass(frozen=True, slots=True)
class RegisteredCommand:
    """A validated binding as published in a snapshot."""

    binding: CommandBinding
    plugin_name: str
    order: int
    templates: tuple[CompiledTemplate, ...]

    @property
    def pattern(self) -> CommandPattern:
        return self.binding.pattern

    @property
    def intent_id(self) -> str:
        return self.binding.pattern.intent_id


@dataclass(frozen=True, slots=True)
class RegistrySnapshot:
    """Immutable view of all active commands, in registration order."""

    commands: tuple[RegisteredCommand, ...] = ()
    plugins: Mapping[str, str] = field(default_factory=dict)
    version: int = 0
    _index: Mapping[str, RegisteredCommand] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "plugins", MappingProxyType(dict(self.plugins)))
        object.__setattr__(
            self, "_index", MappingProxyType({c.intent_id: c for c in self.commands})
        )

    def __iter__(self) -> Iterator[RegisteredCommand]:
        return iter(self.commands)

    def __len__(self) -> int:
        return len(self.commands)

    def __contains__(self, intent_id: object) -> bool:
        return intent_id in self._index

    def get(self, intent_id: str) -> RegisteredCommand | None:
        return self._index.get(intent_id)

    @property
    def intent_ids(self) -> tuple[str, ...]:
        return tuple(c.intent_id for c in self.commands)


def validate_binding(binding: CommandBinding) -> tuple[CompiledTemplate, ...]:
    """Check a binding structurally and compile its templates.

    Raises:
        InvalidPattern: On any malformed declaration.
    """
    pattern = binding.pattern
    intent_id = getattr(pattern, "intent_id", "")
    if not isinstance(pattern, CommandPattern):
        raise InvalidPattern(str(intent_id), "pattern must be a CommandPattern")
    if not isinstance(intent_id, str) or not _IDENTIFIER_RE.fullmatch(intent_id):
        raise InvalidPattern(str(intent_id), "bad intent identifier")
    if not callable(binding.handler):
        raise InvalidPattern(intent_id, "handler is not callable")
    if binding.timeout is not None and binding.timeout <= 0:
        raise InvalidPattern(intent_id, "timeout must be positive")
    if not pattern.templates or any(
        not isinstance(t, str) or not t.strip() for t in pattern.templates
    ):
        raise InvalidPattern(intent_id, "at least one non-empty template is required")

    seen: set[str] = set()
    for spec in pattern.slots:
        if not _SLOT_NAME_RE.fullmatch(spec.name):
            raise InvalidPattern(intent_id, f"bad slot name {spec.name!r}")
        if spec.name in seen:
            raise InvalidPattern(intent_id, f"slot {spec.name!r} declared twice")
        seen.add(spec.name)
        try:
            slot_type = SlotType(spec.type)
        except ValueError:
            raise InvalidPattern(
                intent_id, f"slot {spec.name!r} has unknown type {spec.type!r}"
            ) from None
        if slot_type == SlotType.ENUM and not spec.choices:
            raise InvalidPattern(intent_id, f"enum slot {spec.name!r} has no choices")

    try:
        compiled = compile_pattern(pattern)
    except TemplateError as exc:
        raise InvalidPattern(intent_id, str(exc)) from exc

    extracted = {name for c in compiled for name in c.slot_names}
    absent = [name for name in pattern.required_slots if name not in extracted]
    if absent:
        raise InvalidPattern(
            intent_id, f"required slot(s) in no template: {', '.join(absent)}"
        )
    return compiled


async def _call_hook(plugin: Plugin, hook: str) -> None:
    result = getattr(plugin, hook)()
    if inspect.isawaitable(result):
        await result


class PluginRegistry:
    """Mapping from intent identifiers to plugin command bindings."""

    def __init__(self) -> None:
        self._snapshot = RegistrySnapshot()
        self._plugins: dict[str, Plugin] = {}
        self._lock = asyncio.Lock()
        self._order = 0

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    @property
    def plugin_names(self) -> tuple[str, ...]:
        return tuple(self._plugins)

    async def register(self, plugin: Plugin, *, replace: bool = False) -> RegistrySnapshot:
        """Validate, initialize and publish *plugin*'s commands.

        Re-registering a plugin name replaces all of its commands. An intent
        owned by another plugin is taken over only with ``replace=True``.

        Raises:
            InvalidPattern: A binding is malformed; nothing is published.
            DuplicateCommand: An intent is owned by another plugin.
            PluginLifecycleError: ``initialize`` failed; nothing is published.
        """
        name = getattr(plugin, "name", "")
        if not isinstance(name, str) or not _IDENTIFIER_RE.fullmatch(name):
            raise InvalidPattern(str(name), "bad plugin name")

        async with self._lock:
            current = self._snapshot
            bindings = list(plugin.commands())
            staged: list[tuple[CommandBinding, tuple[CompiledTemplate, ...]]] = []
            ids: set[str] = set()
            for binding in bindings:
                compiled = validate_binding(binding)
                intent_id = binding.pattern.intent_id
                if intent_id in ids:
                    raise InvalidPattern(intent_id, "declared twice in one plugin")
                ids.add(intent_id)
                existing = current.get(intent_id)
                if existing is not None and existing.plugin_name != name and not replace:
                    raise DuplicateCommand(intent_id, existing.plugin_name)
                staged.append((binding, compiled))

            try:
                await _call_hook(plugin, "initialize")
            except Exception as exc:
                raise PluginLifecycleError(
                    f"plugin {name!r} failed to initialize: {exc}"
                ) from exc

            kept = [
                c
                for c in current.commands
                if c.plugin_name != name and c.intent_id not in ids
            ]
            added = []
            for binding, compiled in staged:
                self._order += 1
                added.append(
                    RegisteredCommand(
                        binding=binding,
                        plugin_name=name,
                        order=self._order,
                        templates=compiled,
                    )
                )

            previous = self._plugins.get(name)
            self._plugins[name] = plugin
            self._publish(kept + added)

            taken = sorted(
                {c.plugin_name for c in current.commands if c.intent_id in ids} - {name}
            )
            LOGGER.info(
                "Registered plugin %s %s (%d commands%s)",
                name,
                getattr(plugin, "version", ""),
                len(added),
                f", replaced from {', '.join(taken)}" if taken else "",
            )

            if previous is not None and previous is not plugin:
                await self._cleanup(previous)
            return self._snapshot

    async def unregister(self, plugin_name: str) -> bool:
        """Remove all commands of *plugin_name*; False if it was not registered."""
        async with self._lock:
            plugin = self._plugins.pop(plugin_name, None)
            if plugin is None:
                return False
            self._publish(
                [c for c in self._snapshot.commands if c.plugin_name != plugin_name]
            )
            LOGGER.info("Unregistered plugin %s", plugin_name)
            await self._cleanup(plugin)
            return True

    async def close(self) -> None:
        """Unregister every plugin, running cleanup hooks."""
        for name in list(self._plugins):
            await self.unregister(name)

    def _publish(self, commands: list[RegisteredCommand]) -> None:
        commands.sort(key=lambda c: c.order)
        self._snapshot = RegistrySnapshot(
            commands=tuple(commands),
            plugins={n: getattr(p, "version", "") for n, p in self._plugins.items()},
            version=self._snapshot.version + 1,
        )

    async def _cleanup(self, plugin: Plugin) -> None:
        try:
            await _call_hook(plugin, "cleanup")
        except Exception:
            LOGGER.warning("Cleanup of plugin %s failed", plugin.name, exc_info=True)
