"""
cli/display.py

All Rich-based terminal rendering for the machine CLI.
Centralising this here means:
  - main.py never imports Rich directly
  - the drivers package only ever talks to the stdlib logging module
  - Tests can mock this module without touching driver logic

Functions:
  setup_logging()        - route driver log records through Rich
  print_banner()         - CLI header
  print_flags_table()    - create flags with env vars and defaults
  print_status_panel()   - machine status panel
  print_success()        - Styled success message
  print_error()          - Styled error message
"""

import logging
from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()

_STATE_STYLES = {
    "Running":  ("🟢", "green"),
    "Starting": ("🟡", "yellow"),
    "Stopped":  ("⚪", "white"),
    "Error":    ("🔴", "red"),
}


def setup_logging(debug: bool = False) -> None:
    """Install a RichHandler on the root logger. --debug shows driver internals."""
    level = logging.DEBUG if debug else logging.INFO
    handler = RichHandler(
        console=console,
        show_time=debug,
        show_path=debug,
        markup=False,
        rich_tracebacks=debug,
    )
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    # paramiko is chatty at INFO; only show it when debugging
    logging.getLogger("paramiko").setLevel(logging.DEBUG if debug else logging.WARNING)


def print_banner(driver_name: str) -> None:
    banner = Text()
    banner.append("  ☁  Machine", style="bold cyan")
    banner.append("  |  ", style="dim")
    banner.append(f"driver: {driver_name}", style="italic white")
    console.print(Panel(banner, border_style="cyan", padding=(0, 2)))


def print_flags_table(flags: List, driver_name: str) -> None:
    """
    Render the create flags a driver accepts.

    Args:
        flags: StringFlag / BoolFlag items from driver.get_create_flags()
    """
    table = Table(
        title=f"[bold cyan]{driver_name}[/bold cyan]  [dim]create options[/dim]",
        box=box.ROUNDED,
        border_style="cyan",
        show_header=True,
        header_style="bold white",
        padding=(0, 1),
    )
    table.add_column("Option",  style="green", min_width=26)
    table.add_column("Env var", style="white", min_width=26)
    table.add_column("Default", style="dim",   min_width=18)
    table.add_column("Usage",   style="white")

    for f in flags:
        default = f.value if f.value not in ("", None) else "-"
        table.add_row(f"--{f.name}", f.envvar or "-", str(default), f.usage)

    console.print()
    console.print(table)


def print_status_panel(machine: Dict, state: str, url: Optional[str] = None) -> None:
    """
    Render a machine status panel.
    machine: the stored driver dict (driver.to_dict())
    """
    icon, color = _STATE_STYLES.get(state, ("🔴", "red"))

    text = Text()
    text.append(f"  {icon} State      ", style="dim")
    text.append(state.upper(), style=f"bold {color}")

    text.append("\n  📍 Driver     ", style="dim")
    text.append(str(machine.get("driver", "-")), style="bold cyan")

    text.append("\n  🆔 Instance   ", style="dim")
    text.append(str(machine.get("instance_id") or "N/A"), style="white")

    text.append("\n  🌐 Public IP  ", style="dim")
    text.append(str(machine.get("ip_address") or "N/A"), style="bold white")

    text.append("\n  📌 Location   ", style="dim")
    text.append(str(machine.get("vm_location", "-")), style="white")

    text.append("\n  💻 Plan       ", style="dim")
    text.append(str(machine.get("plan_name", "-")), style="white")

    if url:
        text.append("\n\n  🔗 ", style="dim")
        text.append(url, style="bold underline cyan")

    console.print()
    console.print(Panel(
        text,
        title=f"[bold {color}]Machine: {machine.get('machine_name', '?')}[/bold {color}]",
        border_style=color,
        padding=(0, 2),
    ))


def print_success(message: str) -> None:
    console.print(Panel(f"  {message}", border_style="green", padding=(0, 1)))


def print_error(message: str) -> None:
    console.print(Panel(f"  {message}", border_style="red", title="[red]Error[/red]", padding=(0, 1)))
