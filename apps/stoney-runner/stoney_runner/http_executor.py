"""HTTP step runner."""

from __future__ import annotations

from dataclasses import dataclass
from http.client import HTTPException
from typing import Any, Callable
from urllib import error, parse, request
import json
import socket
import time

import structlog

from .config import RunnerSettings
from .errors import ExpectationMismatch, StepError, StepTimeout
from .matcher import deep_subset_match
from .models import HttpExpectation, HttpStep, StepResult
from .policy import CancelToken, RetriesExhausted, RetryPolicy, run_with_retries

LOGGER = structlog.get_logger("stoney_runner.http")

_NO_JSON = object()
_READ_CHUNK = 8192


@dataclass
class HttpResponse:
    """Completed response captured from one attempt."""

    status: int
    content_type: str
    text: str


class HttpStepExecutor:
    """Executes HTTP steps against the target base URL."""

    def __init__(
        self,
        base_url: str,
        settings: RunnerSettings | None = None,
        *,
        opener: Callable[..., Any] = request.urlopen,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._settings = settings or RunnerSettings()
        self._opener = opener
        self._sleep = sleep

    def execute(self, step: HttpStep) -> StepResult:
        spec = step.http
        method = spec.method.upper()
        url = self._build_url(spec.path, spec.query)
        headers = dict(spec.headers or {})
        body = self._encode_body(spec.body, headers)
        if not _has_header(headers, "accept"):
            headers["Accept"] = "application/json"

        policy = RetryPolicy(
            retries=self._settings.retries if spec.retries is None else spec.retries,
            backoff_ms=self._settings.backoff_ms,
            timeout_ms=self._settings.timeout_ms if spec.timeout_ms is None else spec.timeout_ms,
        )
        started = time.perf_counter()
        result_fields: dict[str, Any] = {"kind": "http", "title": step.title, "method": method, "url": url}

        try:
            attempted = run_with_retries(
                policy,
                lambda token: self._perform_request(method, url, headers, body, token),
                sleep=self._sleep,
                label=step.title,
            )
        except RetriesExhausted as exc:
            return StepResult(
                ok=False,
                notes=[f"Network/timeout error: {exc.last_error}"],
                attempts=exc.attempts,
                duration_ms=_elapsed_ms(started),
                **result_fields,
            )

        response = attempted.value
        notes: list[str] = []
        decoded = _decode_json(response, notes)
        ok = True
        try:
            self._validate_expectation(step.expect, response, decoded)
        except ExpectationMismatch as exc:
            ok = False
            notes.extend(exc.notes)

        LOGGER.debug("http_step_finished", method=method, url=url, status=response.status, ok=ok)
        return StepResult(
            ok=ok,
            status=response.status,
            notes=notes,
            attempts=attempted.attempts,
            duration_ms=_elapsed_ms(started),
            **result_fields,
        )

    def _build_url(self, path: str, query: dict[str, Any] | None) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{self._base_url}{path}"
        if not query:
            return url
        parts = parse.urlsplit(url)
        params = dict(parse.parse_qsl(parts.query, keep_blank_values=True))
        params.update({str(key): _query_value(value) for key, value in query.items()})
        return parse.urlunsplit(parts._replace(query=parse.urlencode(params)))

    @staticmethod
    def _encode_body(body: Any, headers: dict[str, str]) -> bytes | None:
        if body is None:
            return None
        if isinstance(body, str):
            return body.encode("utf-8")
        if not _has_header(headers, "content-type"):
            headers["Content-Type"] = "application/json"
        return json.dumps(body).encode("utf-8")

    def _perform_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        token: CancelToken,
    ) -> HttpResponse:
        req = request.Request(url, data=body, headers=headers, method=method)
        try:
            with self._opener(req, timeout=token.timeout_s) as response:
                token.on_cancel(lambda: _shutdown_socket(response))
                payload = _read_body(response, token)
                status = response.getcode()
                content_type = response.headers.get("Content-Type", "")
        except error.HTTPError as exc:
            payload = exc.read()
            status = exc.code
            content_type = exc.headers.get("Content-Type", "") if exc.headers else ""
        except Exception as exc:
            if token.cancelled or _is_timeout(exc):
                raise StepTimeout(f"request timed out after {token.timeout_ms}ms") from exc
            if not isinstance(exc, (OSError, HTTPException, ValueError)):
                raise
            reason = getattr(exc, "reason", exc)
            raise StepError(f"HTTP request failed for {method} {url}: {reason}") from exc
        if token.cancelled:
            raise StepTimeout(f"request timed out after {token.timeout_ms}ms")
        return HttpResponse(
            status=status,
            content_type=content_type or "",
            text=(payload or b"").decode("utf-8", errors="replace"),
        )

    @staticmethod
    def _validate_expectation(expect: HttpExpectation, response: HttpResponse, decoded: Any) -> None:
        failures: list[str] = []
        if expect.status is not None and response.status != expect.status:
            failures.append(f"Expected status {expect.status} but got {response.status}.")
        if expect.body_contains is not None and expect.body_contains not in response.text:
            failures.append(f'Expected body to contain: "{expect.body_contains}"')
        if expect.checks_json:
            if decoded is _NO_JSON:
                failures.append("Expected JSON subset match, but response was not JSON.")
            elif not deep_subset_match(decoded, expect.json_pattern):
                failures.append("Expected JSON subset did not match response JSON.")
        if failures:
            raise ExpectationMismatch(failures)


def _decode_json(response: HttpResponse, notes: list[str]) -> Any:
    if "application/json" not in response.content_type.lower():
        return _NO_JSON
    try:
        return json.loads(response.text)
    except json.JSONDecodeError:
        notes.append("Response advertised JSON but failed to parse JSON.")
        return _NO_JSON


def _read_body(response: Any, token: CancelToken) -> bytes:
    chunks: list[bytes] = []
    while True:
        chunk = response.read1(_READ_CHUNK)
        if token.cancelled:
            raise StepTimeout(f"request timed out after {token.timeout_ms}ms")
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def _shutdown_socket(response: Any) -> None:
    # Unblocks a read in progress; close() alone does not.
    raw = getattr(getattr(response, "fp", None), "raw", None)
    sock = getattr(raw, "_sock", None)
    if sock is not None:
        sock.shutdown(socket.SHUT_RDWR)


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(key.lower() == name for key in headers)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, TimeoutError) or isinstance(getattr(exc, "reason", None), TimeoutError)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
