"""Test bootstrap for stoney-runner."""

from __future__ import annotations

import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest

APP_ROOT = Path(__file__).resolve().parents[1]
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from stoney_runner.config import RunnerSettings  # noqa: E402

TARGET_TOKEN = "devtoken"


class TargetHandler(BaseHTTPRequestHandler):
    """Small target service the runner is exercised against."""

    def _json(self, status: int, payload: object) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _raw(self, status: int, content_type: str, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:  # noqa: N802 - HTTP handler requirement
        parts = urlsplit(self.path)
        if parts.path == "/health":
            self._json(200, {"ok": True, "service": "target", "checks": [1, 2, 3]})
        elif parts.path == "/private/ping":
            auth = self.headers.get("Authorization", "")
            token = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
            if token != TARGET_TOKEN:
                self._json(401, {"ok": False})
            else:
                self._json(200, {"ok": True, "private": True})
        elif parts.path == "/search":
            query = {key: values[0] for key, values in parse_qs(parts.query).items()}
            self._json(200, {"query": query})
        elif parts.path == "/text":
            self._raw(200, "text/plain", b"hello from target")
        elif parts.path == "/broken-json":
            self._raw(200, "application/json", b"{not json")
        else:
            self._json(404, {"ok": False, "error": "not_found"})

    def do_POST(self) -> None:  # noqa: N802 - HTTP handler requirement
        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length).decode("utf-8")
        self._json(
            201,
            {
                "content_type": self.headers.get("Content-Type"),
                "raw": raw,
            },
        )

    def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
        return


@pytest.fixture
def target_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), TargetHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)


@pytest.fixture
def settings() -> RunnerSettings:
    return RunnerSettings(timeout_ms=2000, retries=0, backoff_ms=0)
