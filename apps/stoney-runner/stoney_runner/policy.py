"""Per-attempt cancellation and bounded retry shared by all step runners."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

import structlog

from .errors import StepError

LOGGER = structlog.get_logger("stoney_runner.policy")

T = TypeVar("T")


class CancelToken:
    """Cancellation handle for one step attempt.

    Entering the token arms a timer for ``timeout_ms``. When the timer fires
    the token is marked cancelled and every registered callback runs, which is
    how runners abort an in-flight request, kill a process or close a
    database connection. Leaving the token disarms the timer.
    """

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._timer: Optional[threading.Timer] = None

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        _invoke(callback)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            _invoke(callback)

    def __enter__(self) -> "CancelToken":
        self._timer = threading.Timer(self.timeout_s, self.cancel)
        self._timer.daemon = True
        self._timer.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


def _invoke(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception as exc:  # pragma: no cover - cleanup is best-effort
        LOGGER.warning("cancel_callback_failed", error=str(exc))


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound, linear backoff and per-attempt timeout for one step."""

    retries: int
    backoff_ms: int
    timeout_ms: int

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def delay_s(self, attempt_index: int) -> float:
        return (attempt_index + 1) * self.backoff_ms / 1000


@dataclass(frozen=True)
class Attempted(Generic[T]):
    value: T
    attempts: int


class RetriesExhausted(StepError):
    """Every attempt failed; carries the last underlying error."""

    def __init__(self, last_error: StepError, attempts: int) -> None:
        super().__init__(str(last_error))
        self.last_error = last_error
        self.attempts = attempts


def run_with_retries(
    policy: RetryPolicy,
    attempt: Callable[[CancelToken], T],
    *,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
) -> Attempted[T]:
    """Call ``attempt`` under a fresh token until it returns or attempts run out.

    Only :class:`StepError` is retried. Anything else, including a completed
    outcome that failed its expectation, propagates on the first attempt.
    """

    last_error: StepError | None = None
    for index in range(policy.max_attempts):
        try:
            with CancelToken(policy.timeout_ms) as token:
                return Attempted(value=attempt(token), attempts=index + 1)
        except StepError as exc:
            last_error = exc
            LOGGER.info(
                "step_attempt_failed",
                step=label,
                attempt=index + 1,
                max_attempts=policy.max_attempts,
                error=str(exc),
            )
            if index + 1 < policy.max_attempts:
                sleep(policy.delay_s(index))

    assert last_error is not None
    raise RetriesExhausted(last_error, policy.max_attempts)
