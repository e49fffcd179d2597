"""Console reporter with environment detection for run output."""

import os
import sys
from typing import Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .models import RunReport, ScenarioResult
from .output_config import OutputFormat

CI_ENV_VARS = ("CI", "GITHUB_ACTIONS", "JENKINS_HOME", "GITLAB_CI", "TRAVIS")


class ConsoleReporter:
    """
    Console reporter that adapts to environment.

    Automatically detects:
    - Interactive terminals (use rich styling)
    - CI/CD environments (use plain text)
    - Pipe/redirect scenarios (use plain text)

    JSON output mode stays silent; the report file is the output.
    """

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO, console: Optional[Console] = None):
        self.output_format = output_format
        self.silent = output_format == OutputFormat.JSON
        self.use_rich = self._detect_rich()
        self.console = console or Console(highlight=False)

    def _detect_rich(self) -> bool:
        if self.output_format == OutputFormat.RICH:
            return True
        if self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            return False
        is_terminal = sys.stdout.isatty()
        is_ci = any(name in os.environ for name in CI_ENV_VARS)
        return is_terminal and not is_ci

    def _emit(self, message: str, style: Optional[str] = None) -> None:
        if self.silent:
            return
        if self.use_rich:
            self.console.print(Text(message, style=style or ""))
        else:
            print(message)

    def start_run(self, base_url: Optional[str], sources: Sequence[str]) -> None:
        self._emit("")
        self._emit("🪨 Stoney run", style="bold cyan")
        self._emit(f"Base URL: {base_url or '(none)'}")
        self._emit(f"Suites: {', '.join(sources)}")
        self._emit("")

    def start_contract(self, suite: str, contract: str) -> None:
        self._emit(f"Suite: {suite}  Contract: {contract}", style="bold")

    def report_scenario(self, result: ScenarioResult) -> None:
        status = result.status if result.status is not None else "?"
        if result.ok:
            self._emit(f"  ✅ {result.id} ({status})", style="green")
            return
        self._emit(f"  ❌ {result.id} ({status})", style="red")
        if result.method and result.url:
            self._emit(f"     {result.method} {result.url}", style="dim")
        for note in result.notes:
            self._emit(f"     - {note}", style="red")

    def finish_run(self, report: RunReport, report_path: Optional[str] = None) -> None:
        if self.silent:
            return
        summary = f"Total: {report.total} | Passed: {report.passed} | Failed: {report.failed}"
        if self.use_rich:
            title = Text(
                "✓ ALL SCENARIOS PASSED" if report.ok else "✗ SOME SCENARIOS FAILED",
                style="bold green" if report.ok else "bold red",
            )
            self.console.print()
            self.console.print(Panel(Text(summary, style="bold"), title=title, border_style="green" if report.ok else "red"))
        else:
            print("-" * 80)
            print(summary)
            print("✓ ALL SCENARIOS PASSED" if report.ok else "✗ SOME SCENARIOS FAILED")
        if report_path:
            self._emit(f"Report written: {report_path}")

    def print_error(self, message: str) -> None:
        if self.use_rich:
            Console(stderr=True).print(f"[bold red]Error:[/] {message}")
        else:
            print(f"Error: {message}", file=sys.stderr)
