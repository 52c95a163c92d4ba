"""
Terminal reporting for build runs using Rich.
"""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich import box

from .pipeline import PipelineResult, StageStatus
from .precache import PrecacheResult
from .utils import format_bytes


console = Console()

STATUS_STYLES = {
    StageStatus.SUCCEEDED: "green",
    StageStatus.FAILED: "bold red",
    StageStatus.SKIPPED: "dim",
}


class BuildReporter:
    """
    Prints pipeline and precache summaries.
    """

    def __init__(self, console_override: Optional[Console] = None):
        self.console = console_override or console

    def show_message(self, message: str, style: str = ""):
        self.console.print(message, style=style)

    def show_error(self, message: str):
        self.console.print(Panel(escape(message), title="Build failed", border_style="red"))

    def show_pipeline_result(self, result: PipelineResult):
        """Display one row per stage."""
        table = Table(title="Build", box=box.SIMPLE_HEAVY)
        table.add_column("Stage", style="cyan")
        table.add_column("Status")
        table.add_column("Time", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Notes")

        for stage in result.stages:
            style = STATUS_STYLES[stage.status]
            notes = escape(stage.output.note)
            if stage.error is not None:
                notes = escape(str(stage.error))
            table.add_row(
                stage.name,
                f"[{style}]{stage.status.value}[/{style}]",
                f"{stage.duration_seconds:.2f}s" if stage.status is not StageStatus.SKIPPED else "-",
                format_bytes(stage.output.bytes_written) if stage.output.bytes_written else "-",
                notes,
            )
        self.console.print(table)

        precache = result.get("generate-service-worker")
        if precache is not None and isinstance(precache.output.artifact, PrecacheResult):
            self.show_precache_result(precache.output.artifact)

    def show_precache_result(self, result: PrecacheResult):
        """Summarize the generated service worker and any glob warnings."""
        lines = [
            f"[bold]{escape(str(result.output_path))}[/bold]",
            f"{len(result.manifest)} files, {format_bytes(result.manifest.total_size)} precached",
        ]
        if result.diff is not None:
            lines.append(
                f"{len(result.diff.added)} added, {len(result.diff.changed)} changed, "
                f"{len(result.diff.removed)} removed since last build"
            )
        for warning in result.warnings:
            lines.append(f"[yellow]⚠ {escape(str(warning))}[/yellow]")
        for skipped in result.skipped_oversize:
            lines.append(f"[yellow]⚠ {escape(skipped)} skipped (too large to precache)[/yellow]")
        self.console.print(Panel("\n".join(lines), title="Service worker", border_style="cyan"))
