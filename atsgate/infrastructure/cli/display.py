"""Console rendering for the atsgate CLI using the rich library."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from rich.box import ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from atsgate.domain.models.analysis import AnalysisOutcome

logger = logging.getLogger(__name__)

class ConsoleDisplay:
    """Renders analysis results and health reports with the rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_info(self, info_message: str) -> None:
        self.console.print(f"[cyan]{info_message}[/cyan]")

    def display_warning(self, warning_message: str) -> None:
        self.console.print(f"[bold yellow]Warning:[/bold yellow] {warning_message}")

    def display_error(self, error_message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {error_message}")

    def display_analysis(self, outcome: AnalysisOutcome) -> None:
        """Shows score, keyword split and rewrite suggestions for a finished analysis."""
        result = outcome.result
        if result is None:
            return
        logger.debug(f"Rendering analysis: score={result.score}, cached={outcome.cached}")
        timestamp = datetime.now().strftime("%H:%M:%S")
        source = "cache" if outcome.cached else "fresh"
        header = f"[bold white]ATS match[/bold white] [dim]·[/dim] [dim white]{timestamp} ({source}, {outcome.duration_ms:.0f}ms)[/dim white]"

        score_style = "green" if result.score >= 70 else "yellow" if result.score >= 40 else "red"
        keywords = Table(box=SIMPLE, show_header=True, expand=True)
        keywords.add_column("Matched", style="green")
        keywords.add_column("Missing", style="red")
        for i in range(max(len(result.matched), len(result.missing))):
            keywords.add_row(
                result.matched[i] if i < len(result.matched) else "",
                result.missing[i] if i < len(result.missing) else "",
            )

        self.console.print(Panel(
            keywords,
            title=header,
            title_align="left",
            subtitle=f"[bold {score_style}]Score: {result.score}/100[/bold {score_style}]",
            box=ROUNDED,
            padding=(0, 1),
        ))

        if result.suggestions:
            suggestions = Table(box=ROUNDED, show_header=True, expand=True, title="Suggestions")
            suggestions.add_column("Original", style="dim")
            suggestions.add_column("Suggested", style="bold")
            for s in result.suggestions:
                suggestions.add_row(s.original, s.suggested)
            self.console.print(suggestions)

        self.console.print(f"[dim]Requests remaining in this window: {outcome.decision.remaining}[/dim]")

    def display_health(self, report: Dict[str, Any]) -> None:
        """Shows a health report as a two-column table."""
        status = report.get("status", "unknown")
        style = "green" if status == "ok" else "yellow"
        table = Table(box=ROUNDED, show_header=False, title=f"[bold {style}]Status: {status}[/bold {style}]")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for section, values in report.items():
            if section == "status":
                continue
            if isinstance(values, dict):
                for key, value in values.items():
                    table.add_row(f"{section}.{key}", str(value))
            else:
                table.add_row(section, str(values))
        self.console.print(table)
