"""CLI entrypoint for the stoney contract runner."""

from __future__ import annotations

import glob
import sys
from pathlib import Path
from typing import Optional

import typer

if __package__ in {None, ""}:
    sys.path.append(str(Path(__file__).resolve().parents[1]))
    __package__ = "stoney_runner"

from .config import RunnerSettings
from .console_reporter import ConsoleReporter
from .env import EnvLookup, process_env
from .errors import ConfigError, SchemaError
from .exec_executor import ExecStepExecutor
from .http_executor import HttpStepExecutor
from .issue_source import JiraSuiteSource
from .loader import load_suite, suite_to_json
from .logging_utils import configure_logging
from .models import SuiteDocument
from .output_config import get_output_format, log_format_for
from .report import write_json_report, write_junit_report
from .runner import RunFilters, ScenarioRunner, SuiteRunner, selected_scenarios
from .sql_executor import SqlStepExecutor

app = typer.Typer(help="Run HTTP, exec and SQL contract suites against a live target in CI.")

DEFAULT_REPORT = Path("stoney-report.json")
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _expand_globs(patterns: list[str]) -> list[Path]:
    seen: dict[str, Path] = {}
    for pattern in patterns:
        for match in sorted(glob.glob(pattern, recursive=True)):
            path = Path(match)
            if path.is_file():
                seen.setdefault(str(path.resolve()), path)
    return list(seen.values())


def _collect_suites(
    patterns: list[str],
    issue_keys: list[str],
    settings: RunnerSettings,
    env: EnvLookup,
) -> tuple[list[str], list[SuiteDocument]]:
    paths = _expand_globs(patterns)
    if not paths and not issue_keys:
        wanted = ", ".join(patterns) if patterns else "(no --suite given)"
        raise ConfigError(f"No suite files matched: {wanted}")

    sources: list[str] = []
    suites: list[SuiteDocument] = []
    for path in paths:
        suites.append(load_suite(path, env=env))
        sources.append(str(path))
    if issue_keys:
        source = JiraSuiteSource(settings)
        for key in issue_keys:
            suites.append(source.load_suite(key, env=env))
            sources.append(f"jira:{key}")
    return sources, suites


@app.command("parse")
def parse_command(
    file: Path = typer.Argument(..., help="Suite file (.yml/.yaml or .json)."),
    pretty: bool = typer.Option(False, "--pretty", help="Pretty-print JSON."),
) -> None:
    """Load, validate and print a suite in its normalized form."""

    configure_logging()
    try:
        suite = load_suite(file)
    except (SchemaError, ConfigError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_CONFIG) from exc
    typer.echo(suite_to_json(suite, pretty=pretty))


@app.command("run")
def run_command(
    suite: list[str] = typer.Option([], "--suite", help="Suite file path or glob (e.g. contracts/*.yml)."),
    issue: list[str] = typer.Option([], "--issue", help="Jira issue key holding a fenced suite."),
    base_url: Optional[str] = typer.Option(None, help="Base URL (defaults to STONEY_BASE_URL)."),
    report: Path = typer.Option(DEFAULT_REPORT, help="JSON report output path."),
    junit: Optional[Path] = typer.Option(None, help="Optional JUnit XML output path."),
    only_contract: Optional[str] = typer.Option(None, help="Run only one contract by name."),
    only_scenario: Optional[str] = typer.Option(None, help="Run only one scenario id."),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Stop on first failure."),
    fail_fast_steps: bool = typer.Option(
        False,
        "--fail-fast-steps",
        help="Skip a scenario's remaining steps after its first failure, but keep running scenarios.",
    ),
    output_format: Optional[str] = typer.Option(None, help="Console output: auto, rich, plain or json."),
    log_level: str = typer.Option("warning", help="Log level for diagnostics on stderr."),
) -> None:
    """Run contract suites and write the run report."""

    env = process_env()
    fmt = get_output_format(output_format, env)
    configure_logging(log_level, log_format_for(fmt))
    reporter = ConsoleReporter(output_format=fmt)
    filters = RunFilters(only_contract=only_contract, only_scenario=only_scenario)

    try:
        settings = RunnerSettings.from_env(env)
        sources, suites = _collect_suites(suite, issue, settings, env)
        resolved_base = base_url or settings.base_url
        needs_http = any(
            step.kind == "http" for scenario in selected_scenarios(suites, filters) for step in scenario.steps
        )
        if needs_http and not resolved_base:
            raise ConfigError("Missing base URL. Provide --base-url or set STONEY_BASE_URL.")
    except (SchemaError, ConfigError) as exc:
        reporter.print_error(str(exc))
        raise typer.Exit(code=EXIT_CONFIG) from exc

    executors = {
        "http": HttpStepExecutor(resolved_base or "", settings),
        "exec": ExecStepExecutor(settings, env),
        "sql": SqlStepExecutor(settings, env),
    }
    suite_runner = SuiteRunner(
        ScenarioRunner(executors, fail_fast=fail_fast or fail_fast_steps),
        filters=filters,
        stop_on_failure=fail_fast,
        observer=reporter,
    )

    reporter.start_run(resolved_base, sources)
    run_report = suite_runner.run(suites, base_url=resolved_base, sources=sources)

    written = write_json_report(run_report, report)
    if junit is not None:
        write_junit_report(run_report, junit)
    reporter.finish_run(run_report, str(written))

    raise typer.Exit(code=0 if run_report.ok else EXIT_FAILED)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
