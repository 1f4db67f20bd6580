"""Terminal rendering for voxcmd.

All render functions are pure: they take results or snapshots and return
Rich renderables. No side effects, no mutation.
"""

from rich.table import Table
from rich.text import Text

from voxcmd.core.registry import RegistrySnapshot
from voxcmd.core.types import DispatchResult, DispatchStatus

_STATUS_STYLE = {
    DispatchStatus.SUCCESS: "green",
    DispatchStatus.CLARIFICATION_NEEDED: "yellow",
    DispatchStatus.FAILED: "red",
}


def render_result(result: DispatchResult, *, show_states: bool = False) -> Text:
    """Render one dispatch result as a single styled line."""
    line = Text()
    style = _STATUS_STYLE.get(result.status, "white")
    if result.status is DispatchStatus.SUCCESS:
        line.append("✓ ", style=f"bold {style}")
    elif result.status is DispatchStatus.CLARIFICATION_NEEDED:
        line.append("? ", style=f"bold {style}")
    else:
        line.append("✗ ", style=f"bold {style}")
    line.append(result.speech_text or str(result.status), style=style)
    if result.intent is not None:
        line.append(f"  [{result.intent.intent_id}", style="dim cyan")
        line.append(f" {result.intent.confidence:.2f} {result.intent.source}]", style="dim")
    if result.error_kind:
        line.append(f"  ({result.error_kind})", style="dim red")
    if show_states and result.states:
        line.append("\n  " + " → ".join(result.states), style="dim")
    return line


def render_commands_table(snapshot: RegistrySnapshot) -> Table:
    """Render registered commands, in registration order."""
    table = Table(title=f"Registered Commands (v{snapshot.version})")
    table.add_column("Intent", style="cyan")
    table.add_column("Plugin", style="magenta")
    table.add_column("Templates", style="white")
    table.add_column("Slots", style="green")
    table.add_column("Idempotent", style="yellow")
    for command in snapshot:
        pattern = command.pattern
        slots = ", ".join(
            f"{s.name}:{s.type}{'' if s.required else '?'}" for s in pattern.slots
        )
        table.add_row(
            pattern.intent_id,
            command.plugin_name,
            "\n".join(pattern.templates),
            slots or "--",
            "Yes" if command.binding.idempotent else "",
        )
    return table
