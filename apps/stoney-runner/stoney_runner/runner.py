"""Scenario execution engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol
import time

import structlog

from .models import RunReport, Scenario, ScenarioResult, StepResult, SuiteDocument

LOGGER = structlog.get_logger("stoney_runner.runner")


class StepExecutor(Protocol):
    def execute(self, step) -> StepResult: ...


class ScenarioObserver(Protocol):
    """Receives progress callbacks; the console reporter implements this."""

    def start_contract(self, suite: str, contract: str) -> None: ...

    def report_scenario(self, result: ScenarioResult) -> None: ...


@dataclass(frozen=True)
class RunFilters:
    only_contract: Optional[str] = None
    only_scenario: Optional[str] = None

    def wants_contract(self, name: str) -> bool:
        return self.only_contract is None or name == self.only_contract

    def wants_scenario(self, scenario_id: str) -> bool:
        return self.only_scenario is None or scenario_id == self.only_scenario


class ScenarioRunner:
    """Executes a scenario's steps strictly in declaration order."""

    def __init__(self, executors: Mapping[str, StepExecutor], *, fail_fast: bool = False) -> None:
        self._executors = executors
        self.fail_fast = fail_fast

    def run(self, scenario: Scenario, *, suite: str = "", contract: str = "") -> ScenarioResult:
        log = LOGGER.bind(suite=suite, contract=contract, scenario=scenario.id)
        started = time.perf_counter()
        step_results: list[StepResult] = []
        ok = True
        http_display: dict[str, object] = {}

        for index, step in enumerate(scenario.steps, start=1):
            try:
                result = self._executors[step.kind].execute(step)
            except Exception as exc:  # runners report failures as results; this is a bug path
                log.exception("step_crashed", step=index, kind=step.kind)
                result = StepResult(ok=False, kind=step.kind, title=step.title, notes=[f"Unexpected error: {exc}"])
            step_results.append(result)
            log.debug("step_finished", step=index, kind=step.kind, ok=result.ok, attempts=result.attempts)
            if result.kind == "http":
                http_display = {"method": result.method, "url": result.url, "status": result.status}
            if not result.ok:
                ok = False
                if self.fail_fast:
                    skipped = len(scenario.steps) - index
                    if skipped:
                        log.info("scenario_steps_skipped", skipped=skipped)
                    break

        notes = [f"[{result.title}] {note}" for result in step_results if not result.ok for note in result.notes]
        duration_ms = round((time.perf_counter() - started) * 1000, 3)
        log.info("scenario_finished", ok=ok, steps=len(step_results), duration_ms=duration_ms)
        return ScenarioResult(
            suite=suite,
            contract=contract,
            id=scenario.id,
            ok=ok,
            notes=notes,
            steps=step_results,
            duration_ms=duration_ms,
            **http_display,
        )


class SuiteRunner:
    """Runs filtered scenarios across suites and tallies the run report."""

    def __init__(
        self,
        scenario_runner: ScenarioRunner,
        *,
        filters: RunFilters | None = None,
        stop_on_failure: bool = False,
        observer: ScenarioObserver | None = None,
    ) -> None:
        self._scenario_runner = scenario_runner
        self._filters = filters or RunFilters()
        self._stop_on_failure = stop_on_failure
        self._observer = observer

    def run(
        self,
        suites: Iterable[SuiteDocument],
        *,
        base_url: str | None = None,
        sources: Iterable[str] = (),
    ) -> RunReport:
        results: list[ScenarioResult] = []
        failed = 0

        for suite in suites:
            for contract in suite.contracts:
                if not self._filters.wants_contract(contract.name):
                    continue
                if self._observer is not None:
                    self._observer.start_contract(suite.suite, contract.name)
                for scenario in contract.scenarios:
                    if not self._filters.wants_scenario(scenario.id):
                        continue
                    result = self._scenario_runner.run(scenario, suite=suite.suite, contract=contract.name)
                    results.append(result)
                    if self._observer is not None:
                        self._observer.report_scenario(result)
                    if not result.ok:
                        failed += 1
                        if self._stop_on_failure:
                            break
                if self._stop_on_failure and failed:
                    break
            if self._stop_on_failure and failed:
                LOGGER.info("run_stopped_on_failure", failed=failed)
                break

        total = len(results)
        return RunReport(
            base_url=base_url,
            suites=list(sources),
            total=total,
            failed=failed,
            passed=total - failed,
            ok=failed == 0,
            results=results,
        )


def selected_scenarios(suites: Iterable[SuiteDocument], filters: RunFilters) -> list[Scenario]:
    return [
        scenario
        for suite in suites
        for contract in suite.contracts
        if filters.wants_contract(contract.name)
        for scenario in contract.scenarios
        if filters.wants_scenario(scenario.id)
    ]
