"""Terminal rendering of task progress."""

from rich.console import Console

from deepshell.agent.loop import ProgressEvent
from deepshell.utils.helpers import truncate_lines

console = Console()

_STYLES = {
    "chat": ("💬", None),
    "command": ("⚡", "cyan"),
    "output_ok": ("✅", "green"),
    "output_fail": ("❌", "red"),
    "delegate": ("🤖", "magenta"),
    "warning": ("⚠️", "yellow"),
    "error": ("❌", "red"),
    "status": ("ℹ️", "bold"),
}


def print_event(event: ProgressEvent, target: Console | None = None) -> None:
    """Print one progress event, indented by agent depth."""
    out = target or console
    icon, style = _STYLES.get(event.kind, ("", None))
    prefix = "│ " * event.depth

    text = event.text
    if event.kind in ("output_ok", "output_fail"):
        text = truncate_lines(text, 4)

    lines = text.split("\n")
    first = f"{prefix}{icon} {lines[0]}" if icon else f"{prefix}{lines[0]}"
    rest = [f"{prefix}   {line}" for line in lines[1:]]
    out.print("\n".join([first, *rest]), style=style, markup=False, highlight=False)
