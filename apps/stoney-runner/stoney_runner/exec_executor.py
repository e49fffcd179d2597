"""Shell command step runner."""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import structlog

from .config import RunnerSettings
from .env import EnvLookup, process_env
from .errors import ExpectationMismatch, StepError, StepTimeout
from .models import ExecExpectation, ExecStep, StepResult
from .policy import CancelToken, RetriesExhausted, RetryPolicy, run_with_retries

LOGGER = structlog.get_logger("stoney_runner.exec")

_POSIX = os.name == "posix"


@dataclass
class ProcessOutcome:
    exit_code: int
    stdout: str
    stderr: str


class ExecStepExecutor:
    """Runs exec steps through the shell and checks exit code and output."""

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        env: EnvLookup | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or RunnerSettings()
        self._env = process_env() if env is None else env
        self._sleep = sleep

    def execute(self, step: ExecStep) -> StepResult:
        spec = step.exec
        cwd = str(Path(spec.cwd).resolve()) if spec.cwd else os.getcwd()
        child_env = {**self._env, **(spec.env or {})}
        policy = RetryPolicy(
            retries=spec.retries or 0,
            backoff_ms=self._settings.backoff_ms,
            timeout_ms=self._settings.timeout_ms if spec.timeout_ms is None else spec.timeout_ms,
        )
        started = time.perf_counter()

        try:
            attempted = run_with_retries(
                policy,
                lambda token: self._run_process(spec.run, cwd, child_env, token),
                sleep=self._sleep,
                label=step.title,
            )
        except RetriesExhausted as exc:
            return StepResult(
                ok=False,
                kind="exec",
                title=step.title,
                notes=[f"Exec error: {exc.last_error}"],
                attempts=exc.attempts,
                duration_ms=_elapsed_ms(started),
            )

        outcome = attempted.value
        ok = True
        notes: list[str] = []
        try:
            _validate_expectation(step.expect, outcome)
        except ExpectationMismatch as exc:
            ok = False
            notes.extend(exc.notes)

        LOGGER.debug("exec_step_finished", command=spec.run, exit_code=outcome.exit_code, ok=ok)
        return StepResult(
            ok=ok,
            kind="exec",
            title=step.title,
            notes=notes,
            attempts=attempted.attempts,
            duration_ms=_elapsed_ms(started),
        )

    @staticmethod
    def _run_process(command: str, cwd: str, env: dict[str, str], token: CancelToken) -> ProcessOutcome:
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=_POSIX,
            )
        except OSError as exc:
            raise StepError(f"failed to start {command!r}: {exc}") from exc

        token.on_cancel(lambda: _kill(proc))
        try:
            stdout, stderr = proc.communicate()
        finally:
            if proc.poll() is None:
                _kill(proc)
                proc.wait()
        if token.cancelled:
            raise StepTimeout(f"exec timeout after {token.timeout_ms}ms")
        return ProcessOutcome(exit_code=proc.returncode, stdout=stdout or "", stderr=stderr or "")


def _validate_expectation(expect: ExecExpectation, outcome: ProcessOutcome) -> None:
    failures: list[str] = []
    if outcome.exit_code != expect.exit_code:
        failures.append(f"Expected exit_code {expect.exit_code} but got {outcome.exit_code}.")
    if expect.stdout_contains is not None and expect.stdout_contains not in outcome.stdout:
        failures.append(f'Expected stdout to contain: "{expect.stdout_contains}"')
    if expect.stderr_contains is not None and expect.stderr_contains not in outcome.stderr:
        failures.append(f'Expected stderr to contain: "{expect.stderr_contains}"')
    if failures:
        raise ExpectationMismatch(failures)


def _kill(proc: subprocess.Popen) -> None:
    if _POSIX:
        # the shell may have forked children holding the output pipes
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        return
    if proc.poll() is None:
        proc.kill()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
