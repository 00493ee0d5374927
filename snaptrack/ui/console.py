"""
ConsoleUI - Rich-based console interface.

Renders versions, comparison reports, duplicate groups and restore outcomes.
"""

import logging
from typing import List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ..snapshot.models import (
    ComparisonItem,
    DuplicateAction,
    DuplicateGroup,
    EntityStatus,
    RestoreOutcome,
    RestorePreview,
    summarize,
)
from ..snapshot.records import SnapshotRecord, VersionInfo

STATUS_COLORS = {
    EntityStatus.UNCHANGED: "dim",
    EntityStatus.MODIFIED: "yellow",
    EntityStatus.NEW: "green",
    EntityStatus.DELETED: "red",
    EntityStatus.UNPLACED: "magenta",
}


def setup_logging(level: str = "INFO", quiet: bool = False, console: Optional[Console] = None) -> None:
    """Route snaptrack logging through a RichHandler on stderr."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger = logging.getLogger("snaptrack")
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel("ERROR" if quiet else level.upper())
    logger.propagate = False


class ConsoleUI:
    """
    Rich console interface for snaptrack.
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None):
        self.quiet = quiet
        self.console = console or Console()

    def print(self, *args, **kwargs):
        """Print to console."""
        if self.quiet:
            return
        self.console.print(*args, **kwargs)

    def print_header(self, title: str):
        """Print a section header."""
        if self.quiet:
            return
        self.console.print()
        self.console.rule(f"[bold blue]{title}[/]")

    def print_error(self, message: str, exception: Optional[Exception] = None):
        """Display error message (shown even in quiet mode)."""
        self.console.print(f"[bold red]Error:[/] {escape(message)}")
        if exception:
            self.console.print(f"[dim]{type(exception).__name__}: {escape(str(exception))}[/]")

    def print_warning(self, message: str):
        self.print(f"[yellow]Warning:[/] {escape(message)}")

    def print_success(self, message: str):
        self.print(f"[green]:heavy_check_mark:[/] {message}")

    # =========================================================================
    # Versions
    # =========================================================================

    def print_versions(self, versions: Sequence[VersionInfo]):
        """Display version list."""
        if self.quiet:
            return

        self.print_header("Versions")
        if not versions:
            self.console.print("[dim]No versions found[/]")
            return

        table = Table(box=None)
        table.add_column("Version", style="bold")
        table.add_column("Kind")
        table.add_column("Captured", style="dim")
        table.add_column("By")
        table.add_column("Records", justify="right")

        for info in versions:
            kind = "[green]official[/]" if info.is_official else "[dim]draft[/]"
            table.add_row(
                info.version_name,
                kind,
                (info.captured_at or "")[:19],
                info.captured_by,
                str(info.record_count),
            )
        self.console.print(table)

    def print_history(self, track_id: str, records: Sequence[SnapshotRecord]):
        """Display one identifier across versions."""
        if self.quiet:
            return

        self.print_header(f"History of {track_id}")
        if not records:
            self.console.print("[dim]No records found[/]")
            return

        table = Table(box=None)
        table.add_column("Version", style="bold")
        table.add_column("Captured", style="dim")
        table.add_column("Code")
        table.add_column("Level")
        table.add_column("Placed")
        table.add_column("Parameters", justify="right")

        for record in records:
            table.add_row(
                record.version_name,
                (record.captured_at or "")[:19],
                record.indexed.code or "",
                record.indexed.level or "",
                "yes" if record.was_placed else "no",
                str(len(record.all_parameters)),
            )
        self.console.print(table)

    # =========================================================================
    # Comparison
    # =========================================================================

    def print_comparison(self, items: Sequence[ComparisonItem], title: str = "Comparison"):
        """Display comparison items grouped as a tree per entity."""
        if self.quiet:
            return

        self.print_header(title)
        if not items:
            self.console.print("[green]No differences[/]")
            return

        for item in items:
            color = STATUS_COLORS[item.status]
            label = f" {item.label}" if item.label else ""
            tree = Tree(f"[bold]{item.track_id}[/]{label} [{color}]{item.status_display}[/]")
            for change in item.changes:
                flags = []
                if change.is_read_only:
                    flags.append("read-only")
                if change.is_type_level:
                    flags.append("type")
                suffix = f" [dim]({', '.join(flags)})[/]" if flags else ""
                tree.add(
                    f"{change.name}: [red]{change.current_display}[/] -> "
                    f"[green]{change.snapshot_display}[/]{suffix}"
                )
            if item.inapplicable_parameters:
                tree.add(
                    f"[dim]No longer applicable: {', '.join(item.inapplicable_parameters)}[/]"
                )
            self.console.print(tree)

        self.print_status_counts(items)

    def print_status_counts(self, items: Sequence[ComparisonItem]):
        if self.quiet:
            return
        counts = summarize(items)
        parts = [
            f"[{STATUS_COLORS[status]}]{status.value}: {count}[/]"
            for status, count in counts.items() if count
        ]
        self.console.print()
        self.console.print("  ".join(parts))

    # =========================================================================
    # Duplicates
    # =========================================================================

    def print_duplicates(self, groups: Sequence[DuplicateGroup]):
        """Display duplicate groups with suggested actions."""
        if self.quiet:
            return

        self.print_header("Duplicate Identifiers")
        if not groups:
            self.console.print("[green]No duplicated identifiers[/]")
            return

        for group in groups:
            title = f"[bold]{group.track_id}[/] [dim]({group.category.value}, {len(group.members)} elements)[/]"
            if group.lookup_failed:
                title += " [yellow]history unavailable[/]"
            table = Table(title=title, box=None, title_justify="left")
            table.add_column("Element", justify="right")
            table.add_column("Code")
            table.add_column("Name")
            table.add_column("Action")

            for member in group.members:
                if member.action == DuplicateAction.KEEP:
                    reason = member.match_reason.value if member.match_reason else ""
                    action = f"[green]keep[/] [dim]({reason})[/]"
                else:
                    action = f"[yellow]-> {member.new_track_id}[/]"
                table.add_row(f"#{member.element_id}", member.code, member.name, action)
            self.console.print(table)

    # =========================================================================
    # Restore
    # =========================================================================

    def print_preview(self, preview: RestorePreview):
        """Display planned writes."""
        if self.quiet:
            return

        self.print_header(f"Restore Preview: {preview.version_name}")
        if preview.writes:
            table = Table(box=None)
            table.add_column("Element", style="bold")
            table.add_column("Parameter")
            table.add_column("Current", style="red")
            table.add_column("Restored", style="green")
            table.add_column("Action", style="dim")
            for write in preview.writes:
                table.add_row(write.track_id, write.parameter, write.current_value,
                              write.snapshot_value, write.action)
            self.console.print(table)
        else:
            self.console.print("[dim]Nothing to write[/]")

        self._print_problems(preview.skipped, preview.errors)
        self.console.print(
            f"[bold]{preview.total_writes}[/] writes, "
            f"[bold]{preview.entities_to_recreate}[/] entities to recreate"
        )

    def print_outcome(self, outcome: RestoreOutcome):
        """Display restore outcome."""
        if not outcome.success:
            self.print_error(outcome.error or "Restore failed")
            for warning in outcome.warnings:
                self.print_warning(warning)
            return

        if self.quiet:
            return

        lines = [
            f"Version: [bold]{outcome.version_name}[/]",
            f"Updated: [green]{outcome.updated_count}[/]",
            f"Recreated: [green]{outcome.created_count}[/]",
            f"Skipped: {outcome.skipped_count}",
            f"Errors: [{'red' if outcome.errors else 'dim'}]{len(outcome.errors)}[/]",
        ]
        if outcome.backup_version:
            lines.append(f"Backup: [cyan]{outcome.backup_version}[/]")
        self.console.print(Panel("\n".join(lines), title="Restore", border_style="green"))

        for warning in outcome.warnings:
            self.print_warning(warning)
        for recreation in outcome.unplaced_recreations:
            self.print_warning(
                f"{recreation.track_id} was recreated unplaced (#{recreation.element_id})"
                + (f": {recreation.reason}" if recreation.reason else "")
            )
        self._print_problems(outcome.skipped, outcome.errors)

    def _print_problems(self, skipped: List, errors: List):
        if skipped:
            self.console.print("[bold]Skipped:[/]")
            for entry in skipped:
                self.console.print(f"  [dim]{entry}[/]")
        if errors:
            self.console.print("[bold red]Errors:[/]")
            for error in errors:
                self.console.print(f"  [red]{error}[/]")

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask for confirmation."""
        if self.quiet:
            return default

        from rich.prompt import Confirm
        return Confirm.ask(message, default=default, console=self.console)
