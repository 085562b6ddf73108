# ----------------------------------------------------------------
# Console Output
# ----------------------------------------------------------------
import shutil
from typing import Iterable, List, Optional, Sequence

import pyfiglet
from rich import box
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from vps_bootstrap import APP_NAME, VERSION


class NordColors:
    """The slice of the Nord palette the CLI draws with."""

    MUTED: str = "#434C5E"
    TEXT: str = "#D8DEE9"
    TEXT_BRIGHT: str = "#E5E9F0"
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"

    FROST: List[str] = [FROST_1, FROST_2, FROST_3, FROST_4]


console = Console(
    theme=Theme(
        {
            "banner": f"bold {NordColors.FROST_2}",
            "header": f"bold {NordColors.FROST_2}",
            "info": NordColors.GREEN,
            "success": NordColors.GREEN,
            "warning": NordColors.YELLOW,
            "error": NordColors.RED,
            "debug": NordColors.MUTED,
        }
    )
)

# (color, prefix) per message kind
_MESSAGE_STYLES = {
    "success": (NordColors.GREEN, "✓"),
    "warning": (NordColors.YELLOW, "⚠"),
    "error": (NordColors.RED, "✗"),
    "step": (NordColors.FROST_2, "→"),
}


def create_header(title: str = APP_NAME) -> Panel:
    """Figlet banner, one frost shade per line, boxed with the version."""
    term_width = shutil.get_terminal_size((80, 24)).columns
    art = ""
    for font in ("slant", "small", "mini") if term_width >= 60 else ("small", "mini"):
        try:
            art = pyfiglet.Figlet(font=font, width=min(term_width - 10, 120)).renderText(title)
        except pyfiglet.FontNotFound:
            continue
        if art.strip():
            break

    banner = Text()
    lines = [line for line in art.splitlines() if line.strip()]
    for i, line in enumerate(lines):
        if i:
            banner.append("\n")
        banner.append(line, style=f"bold {NordColors.FROST[i % len(NordColors.FROST)]}")

    return Panel(
        Align.center(banner),
        border_style=NordColors.FROST_1,
        padding=(1, 2),
        title=Text(f"{APP_NAME} v{VERSION}", style=f"bold {NordColors.TEXT_BRIGHT}"),
        title_align="right",
        subtitle=Text("Server Bootstrap Tool", style=f"bold {NordColors.TEXT}"),
        box=box.ROUNDED,
    )


def _print(kind: str, message: str) -> None:
    color, prefix = _MESSAGE_STYLES[kind]
    # Messages carry paths and command output; never parse them as markup
    console.print(Text(f"{prefix} {message}", style=color))


def print_success(message: str) -> None:
    _print("success", message)


def print_warning(message: str) -> None:
    _print("warning", message)


def print_error(message: str) -> None:
    _print("error", message)


def print_step(message: str) -> None:
    _print("step", message)


def print_section(title: str) -> None:
    console.print()
    console.print(Text(title, style=f"bold {NordColors.FROST_3}"))
    console.print(Text("─" * len(title), style=NordColors.FROST_3))


def display_panel(
    message: str, style: str = NordColors.FROST_2, title: Optional[str] = None
) -> None:
    console.print(
        Panel(
            Text(message, style=style),
            border_style=style,
            padding=(1, 2),
            title=Text(title, style=f"bold {style}") if title else None,
            box=box.ROUNDED,
        )
    )


def print_table(
    title: str, columns: Sequence[str], rows: Iterable[Sequence[str]]
) -> None:
    """Rounded table; the first column is styled as the row header. Cells accept markup."""
    table = Table(title=title, style="banner", box=box.ROUNDED)
    for i, column in enumerate(columns):
        table.add_column(column, style="info" if i else "header")
    for row in rows:
        table.add_row(*row)
    console.print(table)
