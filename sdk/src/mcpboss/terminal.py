"""Terminal output for the mcpboss CLI.

Output settings live in an `OutputOptions` object handed to `Terminal` at
construction, so nothing here depends on process-wide state.
"""

import json
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.table import Table, Column, box
from rich.text import Text

from .deployment import ContainerKind, ContainerRecord, ContainerStatus, CrashLogs, DeploymentState, crash_summary


class OutputFormat(str, Enum):
    JSON = "json"
    TABLE = "table"


@dataclass(frozen=True)
class OutputOptions:
    format: OutputFormat = OutputFormat.TABLE
    interactive: bool = True

    @classmethod
    def detect(cls, format: str = "table", non_interactive: Optional[bool] = None) -> "OutputOptions":
        """Build options from CLI flags, guessing interactivity from the TTY."""
        if non_interactive is not None:
            interactive = not non_interactive
        else:
            interactive = sys.stdout.isatty() and sys.stdin.isatty() and not os.environ.get("CI")
        return cls(format=OutputFormat(format), interactive=interactive)


@dataclass(frozen=True)
class TableColumn:
    name: str
    title: str
    justify: str = "left"


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (dict, list)):
        return json.dumps(value) if value else ("{}" if isinstance(value, dict) else "[]")
    return str(value)


class Terminal:
    """Writes command results and messages in the configured format."""

    def __init__(
        self,
        options: Optional[OutputOptions] = None,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.options = options or OutputOptions()
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    @property
    def is_json(self) -> bool:
        return self.options.format == OutputFormat.JSON

    def print(self, renderable: Any = "", *, error: bool = False) -> None:
        console = self.err_console if error and not self.options.interactive else self.console
        console.print(renderable, soft_wrap=True, highlight=False, markup=False, emoji=False)

    def output(
        self,
        data: Any,
        columns: Optional[Sequence[TableColumn]] = None,
        *,
        error: bool = False,
    ) -> None:
        """Print a command result."""
        if self.is_json:
            self.print(json.dumps(data, default=str), error=error)
            return

        if isinstance(data, list):
            self._print_rows(data, columns)
        elif isinstance(data, dict):
            rows = next((v for v in data.values() if isinstance(v, list)), None) if columns else None
            if rows is not None:
                if rows:
                    self._print_rows(rows, columns)
                else:
                    self.print(f"No {next(iter(data))} found.")
            else:
                self._print_properties(data)
        else:
            self.print(data, error=error)

    def _print_rows(self, rows: List[Any], columns: Optional[Sequence[TableColumn]]) -> None:
        if not rows:
            self.print("No results.")
            return
        if columns is None:
            keys: List[str] = []
            for row in rows:
                if isinstance(row, dict):
                    keys.extend(k for k in row if k not in keys)
            columns = [TableColumn(name=k, title=k) for k in keys] or [TableColumn("value", "Value")]

        table = Table(*[Column(c.title, justify=c.justify) for c in columns], box=box.SIMPLE)
        for row in rows:
            if not isinstance(row, dict):
                row = {"value": row}
            table.add_row(*[_cell(row.get(c.name)) for c in columns])
        self.console.print(table)

    def _print_properties(self, data: Dict[str, Any], title: Optional[str] = None) -> None:
        table = Table(Column("Property"), Column("Value"), box=box.SIMPLE, title=title)
        nested = []
        for key, value in data.items():
            if isinstance(value, (dict, list)) and value:
                nested.append((key, value))
            else:
                table.add_row(key, _cell(value))
        if table.row_count:
            self.console.print(table)
        for key, value in nested:
            if isinstance(value, dict):
                self._print_properties(value, title=key)
            else:
                self.print(f"\n{key}:")
                self._print_rows(value, None)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        if self.is_json:
            payload: Dict[str, Any] = {"success": True, "message": message}
            if data:
                payload["data"] = data
            self.output(payload)
            return
        self.console.print(f"✅ {message}", style="green", markup=False, highlight=False)
        for key, value in (data or {}).items():
            if isinstance(value, list):
                self.print("\nNext steps:" if key == "nextSteps" else f"\n{key}:")
                for item in value:
                    self.print(f"• {item}")
            else:
                self.print(f"{key}: {value}")

    def error(self, error: Any) -> None:
        message = str(error)
        if self.is_json:
            self.output({"success": False, "error": message}, error=True)
            return
        console = self.err_console if not self.options.interactive else self.console
        console.print(f"❌ {message}", style="bold red", markup=False, highlight=False)

    def warn(self, message: str) -> None:
        if self.options.interactive:
            self.console.print(f"⚠️  {message}", style="yellow", markup=False, highlight=False)
        else:
            self.err_console.print(message, markup=False, highlight=False)

    def info(self, message: str) -> None:
        """Informational message, shown only in interactive mode."""
        if self.options.interactive:
            self.print(message)

    def progress(self, message: str) -> None:
        """Progress message; goes to stderr when not interactive."""
        if self.options.interactive:
            self.console.print(message, style="dim", markup=False, highlight=False)
        else:
            self.err_console.print(message, markup=False, highlight=False)


STATUS_ICONS = {
    ContainerStatus.PENDING: "⏳",
    ContainerStatus.RUNNING: "🔄",
    ContainerStatus.COMPLETED: "✅",
    ContainerStatus.READY: "✅",
    ContainerStatus.FAILED: "❌",
    ContainerStatus.CRASH_BACK_OFF: "🔁",
}

STATUS_LABELS = {
    ContainerStatus.PENDING: "Pending",
    ContainerStatus.RUNNING: "Running",
    ContainerStatus.COMPLETED: "Completed",
    ContainerStatus.READY: "Ready",
    ContainerStatus.FAILED: "Failed",
    ContainerStatus.CRASH_BACK_OFF: "CrashLoopBackOff",
}


def format_container(container: ContainerRecord) -> str:
    line = f"  {STATUS_ICONS[container.status]} {container.name}: {STATUS_LABELS[container.status]}"
    if container.exit_code not in (None, 0):
        line += f" (exit {container.exit_code})"
    if container.status == ContainerStatus.CRASH_BACK_OFF and container.restarts is not None:
        line += f" ({container.restarts} restarts)"
    if container.reason and container.status != ContainerStatus.COMPLETED:
        line += f" - {container.reason}"
    return line


def render_crash_logs(logs: CrashLogs) -> RenderableType:
    if logs.is_loading:
        return Text("🔍 Fetching crash logs...")
    if logs.empty:
        return Text("📄 No logs available for this container crash.")

    parts: List[RenderableType] = [Text("📋 Container Logs:")]
    if logs.stdout:
        parts.append(Panel(Text(logs.stdout.strip()), title="stdout", title_align="left"))
    if logs.stderr:
        parts.append(Panel(Text(logs.stderr.strip()), title="stderr", title_align="left", border_style="red"))
    return Group(*parts)


def render_deployment(state: DeploymentState) -> RenderableType:
    """Renderable snapshot of a deployment's progress."""
    lines: List[RenderableType] = [Text("📦 Deployment Progress", style="bold"), Text("")]

    if state.pod_info:
        lines.append(Text(f"🏷️  Pod: {state.pod_info.pod_name}"))
        lines.append(Text(""))
        for kind, title in ((ContainerKind.INIT, "🔧 Initialization:"), (ContainerKind.MAIN, "🚀 Application:")):
            containers = state.containers_of(kind)
            if containers:
                lines.append(Text(title))
                lines.extend(Text(format_container(c)) for c in containers)
                lines.append(Text(""))

    if state.errors:
        lines.append(Text("❌ Errors:", style="red"))
        lines.extend(Text(f"  • {error}") for error in state.errors)
        lines.append(Text(""))

    if state.is_ready and not state.has_crashed:
        lines.append(Text("🎉 Deployment completed successfully! Function is ready to use.", style="green"))
    elif state.has_crashed:
        lines.append(Text(f"💥 {crash_summary(state)}", style="red"))

    if state.crash_logs:
        lines.append(render_crash_logs(state.crash_logs))

    return Group(*lines)


class DeploymentProgressView:
    """Live view of a deployment, redrawn on every state update.

    Only draws in interactive table mode; otherwise updates are dropped and
    the caller prints the final outcome.

    Usage:
        with DeploymentProgressView(terminal) as view:
            outcome = await DeploymentMonitor(client, on_update=view.update).monitor(fid)
    """

    def __init__(self, terminal: Terminal):
        self.terminal = terminal
        self.enabled = terminal.options.interactive and not terminal.is_json
        self._live: Optional[Live] = None

    def __enter__(self) -> "DeploymentProgressView":
        if self.enabled:
            self._live = Live(
                Text("📦 Monitoring deployment progress..."),
                console=self.terminal.console,
                auto_refresh=False,
            )
            self._live.start()
        return self

    def update(self, state: DeploymentState) -> None:
        if self._live is not None:
            self._live.update(render_deployment(state), refresh=True)

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
