"""SQL step runner (Postgres via psycopg)."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import psycopg
import structlog
from psycopg.rows import dict_row

from .config import RunnerSettings
from .env import EnvLookup, process_env
from .errors import ExpectationMismatch, StepError, StepTimeout
from .matcher import deep_subset_match
from .models import SqlExpectation, SqlStep, StepResult
from .policy import CancelToken, RetriesExhausted, RetryPolicy, run_with_retries

LOGGER = structlog.get_logger("stoney_runner.sql")


@dataclass
class QueryOutcome:
    row_count: int
    rows: list[dict[str, Any]] = field(default_factory=list)


class QueryFailed(Exception):
    """The server rejected the query itself; not a transient failure."""


class SqlStepExecutor:
    """Runs a query against the database named by the step's ``url_env``."""

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        env: EnvLookup | None = None,
        *,
        connect: Callable[..., Any] = psycopg.connect,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or RunnerSettings()
        self._env = process_env() if env is None else env
        self._connect = connect
        self._sleep = sleep

    def execute(self, step: SqlStep) -> StepResult:
        spec = step.sql
        dsn = self._env.get(spec.url_env)
        if not dsn:
            return StepResult(
                ok=False,
                kind="sql",
                title=step.title,
                notes=[f"Missing env var {spec.url_env}. Set it (e.g. from a CI secret) before running."],
                attempts=0,
            )

        policy = RetryPolicy(
            retries=self._settings.retries if spec.retries is None else spec.retries,
            backoff_ms=self._settings.backoff_ms,
            timeout_ms=self._settings.timeout_ms if spec.timeout_ms is None else spec.timeout_ms,
        )
        started = time.perf_counter()
        attempts = 0

        def attempt(token: CancelToken) -> QueryOutcome:
            nonlocal attempts
            attempts += 1
            return self._run_query(dsn, spec.query, token)

        try:
            attempted = run_with_retries(
                policy,
                attempt,
                sleep=self._sleep,
                label=step.title,
            )
        except RetriesExhausted as exc:
            return self._failed(step, f"SQL error: {exc.last_error}", exc.attempts, started)
        except QueryFailed as exc:
            return self._failed(step, f"SQL error: {exc}", attempts, started)

        outcome = attempted.value
        ok = True
        notes: list[str] = []
        try:
            _validate_expectation(step.expect, outcome)
        except ExpectationMismatch as exc:
            ok = False
            notes.extend(exc.notes)

        LOGGER.debug("sql_step_finished", url_env=spec.url_env, rows=outcome.row_count, ok=ok)
        return StepResult(
            ok=ok,
            kind="sql",
            title=step.title,
            notes=notes,
            attempts=attempted.attempts,
            duration_ms=_elapsed_ms(started),
        )

    def _run_query(self, dsn: str, query: str, token: CancelToken) -> QueryOutcome:
        try:
            conn = self._connect(
                dsn,
                autocommit=True,
                connect_timeout=max(1, math.ceil(token.timeout_s)),
            )
        except psycopg.Error as exc:
            if token.cancelled:
                raise StepTimeout(f"SQL timeout after {token.timeout_ms}ms") from exc
            raise StepError(f"connection failed: {exc}") from exc

        try:
            token.on_cancel(conn.cancel)
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query)
                rows = cur.fetchall() if cur.description else []
                row_count = cur.rowcount
        except psycopg.Error as exc:
            if token.cancelled:
                raise StepTimeout(f"SQL timeout after {token.timeout_ms}ms") from exc
            if isinstance(exc, psycopg.OperationalError):
                raise StepError(str(exc)) from exc
            raise QueryFailed(str(exc)) from exc
        finally:
            conn.close()

        if token.cancelled:
            raise StepTimeout(f"SQL timeout after {token.timeout_ms}ms")
        return QueryOutcome(row_count=row_count if row_count >= 0 else len(rows), rows=list(rows))

    @staticmethod
    def _failed(step: SqlStep, note: str, attempts: int, started: float) -> StepResult:
        return StepResult(
            ok=False,
            kind="sql",
            title=step.title,
            notes=[note],
            attempts=attempts,
            duration_ms=_elapsed_ms(started),
        )


def _validate_expectation(expect: SqlExpectation, outcome: QueryOutcome) -> None:
    failures: list[str] = []
    if expect.rows is not None and outcome.row_count != expect.rows:
        failures.append(f"Expected rows {expect.rows} but got {outcome.row_count}.")
    if expect.checks_first_row:
        if not outcome.rows:
            failures.append("Expected equals match against first row, but query returned no rows.")
        elif not deep_subset_match(outcome.rows[0], expect.equals):
            failures.append("Expected SQL first-row subset did not match.")
    if failures:
        raise ExpectationMismatch(failures)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
