"""Built-in command plugins: desktop application launcher, reminders, clock."""

from __future__ import annotations

import asyncio
import shutil
import sys
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from voxcmd.core.env import LOGGER
from voxcmd.core.errors import HandlerError
from voxcmd.core.protocols import AppLauncher
from voxcmd.core.registry import CommandBinding, Plugin
from voxcmd.core.types import CommandPattern, ConversationContext, SlotSpec, SlotType

# ---------------------------------------------------------------------------
# Desktop
# ---------------------------------------------------------------------------


def _launch_command(app_name: str) -> tuple[list[str], bool]:
    """Platform launch command and whether to wait for it to exit."""
    if sys.platform == "darwin":
        return ["open", "-a", app_name], True
    if sys.platform == "win32":
        return ["cmd", "/c", "start", "", app_name], True
    executable = shutil.which(app_name) or shutil.which(
        app_name.lower().replace(" ", "-")
    )
    if executable is None:
        raise HandlerError(f"application {app_name!r} not found", kind="app_not_found")
    return [executable], False


class SubprocessLauncher:
    """AppLauncher that starts applications with the platform launcher."""

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._reapers: set[asyncio.Task[int]] = set()

    async def launch(self, app_name: str) -> None:
        argv, wait = _launch_command(app_name)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise HandlerError(
                f"could not start {app_name}: {exc}", kind="launch_failed"
            ) from exc
        if not wait:
            # The application keeps running; collect its exit status later.
            reaper = asyncio.create_task(process.wait(), name=f"reap-{app_name}")
            self._reapers.add(reaper)
            reaper.add_done_callback(self._reapers.discard)
            return
        code = await asyncio.wait_for(process.wait(), timeout=self.timeout)
        if code != 0:
            raise HandlerError(
                f"could not open {app_name} (exit code {code})", kind="app_not_found"
            )


OPEN_APP = CommandPattern(
    intent_id="openApp",
    templates=(
        "open application {appName}",
        "(open|launch|start) {appName}",
    ),
    slots=(SlotSpec("appName", prompt="Which application should I open?"),),
    description="Open a desktop application by name",
)


class DesktopPlugin(Plugin):
    """Opens desktop applications. Launching is not idempotent."""

    name = "desktop"
    version = "1.0.0"

    def __init__(self, launcher: AppLauncher | None = None) -> None:
        self._launcher = launcher or SubprocessLauncher()

    async def open_app(
        self, parameters: Mapping[str, Any], context: ConversationContext
    ) -> str:
        app_name = parameters["appName"]
        await self._launcher.launch(app_name)
        return f"Opening {app_name}."

    def commands(self) -> Iterable[CommandBinding]:
        return (CommandBinding(OPEN_APP, self.open_app, idempotent=False),)


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Reminder:
    title: str
    due: datetime


CREATE_REMINDER = CommandPattern(
    intent_id="createReminder",
    templates=(
        "remind me [to {title}] [at {time}]",
        "remind me [at {time}] to {title}",
        "(set|create|add) a reminder [to {title}] [at {time}]",
    ),
    slots=(
        SlotSpec("title", prompt="What should I remind you about?"),
        SlotSpec("time", SlotType.DATETIME, prompt="When should I remind you?"),
    ),
    description="Create a reminder with a title and a due time",
)

LIST_REMINDERS = CommandPattern(
    intent_id="listReminders",
    templates=(
        "(list|show) [my] reminders",
        "what are my reminders",
    ),
    description="Read back pending reminders",
)


def _format_due(due: datetime) -> str:
    return due.strftime("%A %d %B at %H:%M")


class RemindersPlugin(Plugin):
    """In-memory reminders, cleared when the plugin is unregistered."""

    name = "reminders"
    version = "1.0.0"

    def __init__(self) -> None:
        self._reminders: list[Reminder] = []

    @property
    def reminders(self) -> tuple[Reminder, ...]:
        return tuple(self._reminders)

    async def create(
        self, parameters: Mapping[str, Any], context: ConversationContext
    ) -> str:
        reminder = Reminder(title=parameters["title"], due=parameters["time"])
        self._reminders.append(reminder)
        LOGGER.debug("Reminder added: %s", reminder)
        return f"Okay, I'll remind you to {reminder.title} on {_format_due(reminder.due)}."

    async def list_all(
        self, parameters: Mapping[str, Any], context: ConversationContext
    ) -> str:
        if not self._reminders:
            return "You have no reminders."
        items = sorted(self._reminders, key=lambda r: r.due)
        lines = [f"{r.title} on {_format_due(r.due)}" for r in items]
        return "Your reminders: " + "; ".join(lines) + "."

    def commands(self) -> Iterable[CommandBinding]:
        return (
            CommandBinding(CREATE_REMINDER, self.create, idempotent=False),
            CommandBinding(LIST_REMINDERS, self.list_all, idempotent=True),
        )

    async def cleanup(self) -> None:
        self._reminders.clear()


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

CURRENT_TIME = CommandPattern(
    intent_id="currentTime",
    templates=(
        "what time is it",
        "what's the time",
        "tell me the time",
    ),
    description="Say the current time",
)

CURRENT_DATE = CommandPattern(
    intent_id="currentDate",
    templates=(
        "what day is it [today]",
        "what's the date [today]",
        "what is the date [today]",
    ),
    description="Say today's date",
)


class ClockPlugin(Plugin):
    """Reads the local clock. Handlers are plain functions run off-loop."""

    name = "clock"
    version = "1.0.0"

    def __init__(self, now: Callable[[], datetime] = datetime.now) -> None:
        self._now = now

    def current_time(
        self, parameters: Mapping[str, Any], context: ConversationContext
    ) -> str:
        return f"It's {self._now():%H:%M}."

    def current_date(
        self, parameters: Mapping[str, Any], context: ConversationContext
    ) -> str:
        return f"Today is {self._now():%A %d %B %Y}."

    def commands(self) -> Iterable[CommandBinding]:
        return (
            CommandBinding(CURRENT_TIME, self.current_time, idempotent=True),
            CommandBinding(CURRENT_DATE, self.current_date, idempotent=True),
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

BUILTIN_PLUGINS: dict[str, Callable[[], Plugin]] = {
    "desktop": DesktopPlugin,
    "reminders": RemindersPlugin,
    "clock": ClockPlugin,
}


def load_plugins(names: Iterable[str]) -> list[Plugin]:
    """Instantiate the named built-in plugins, skipping unknown names."""
    plugins: list[Plugin] = []
    for name in names:
        factory = BUILTIN_PLUGINS.get(name)
        if factory is None:
            LOGGER.warning("Unknown plugin %r in config; skipping", name)
            continue
        plugins.append(factory())
    return plugins
