"""Load suites embedded in Jira issue descriptions.

The description arrives as an Atlassian Document Format tree. Text nodes and
code blocks are flattened into one text blob (code blocks re-fenced with
their declared language) and the first ```` ```stoney ````, ```` ```yaml ```` or
```` ```yml ```` block is parsed with the regular suite grammar.
"""

from __future__ import annotations

import base64
import json
import re
from typing import Any, Callable, Optional
from urllib import error, parse, request

import structlog

from .config import RunnerSettings
from .env import EnvLookup
from .errors import ConfigError, IssueSourceError
from .loader import build_suite, parse_suite_text
from .models import SuiteDocument

LOGGER = structlog.get_logger("stoney_runner.issue_source")

FENCE_PATTERN = re.compile(r"```(stoney|yaml|yml)\s*\n([\s\S]*?)\n```", re.IGNORECASE)


def document_to_text(node: Any) -> str:
    """Flatten a document tree depth-first into text with fenced code blocks."""

    chunks: list[str] = []
    _collect(node, chunks)
    return "".join(chunks)


def _collect(node: Any, chunks: list[str]) -> None:
    if not isinstance(node, dict):
        return
    node_type = node.get("type")
    children = node.get("content") if isinstance(node.get("content"), list) else []

    if node_type == "text" and isinstance(node.get("text"), str):
        chunks.append(node["text"])
    elif node_type == "codeBlock":
        language = (node.get("attrs") or {}).get("language") or ""
        code = "".join(
            child["text"]
            for child in children
            if isinstance(child, dict) and child.get("type") == "text" and isinstance(child.get("text"), str)
        )
        chunks.append(f"\n```{language}\n{code}\n```\n")
        return

    for child in children:
        _collect(child, chunks)


def extract_suite_block(text: str) -> Optional[str]:
    """Return the body of the first suite-tagged fenced block, if any."""

    match = FENCE_PATTERN.search(text)
    if match is None:
        return None
    return match.group(2).strip()


class JiraSuiteSource:
    """Fetches issues from Jira Cloud and extracts the embedded suite."""

    def __init__(
        self,
        settings: RunnerSettings,
        *,
        opener: Callable[..., Any] = request.urlopen,
    ) -> None:
        missing = [
            name
            for name, value in (
                ("JIRA_BASE_URL", settings.jira_base_url),
                ("JIRA_EMAIL", settings.jira_email),
                ("JIRA_API_TOKEN", settings.jira_api_token),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                f"Missing {'/'.join(missing)} env vars (required to load suites from Jira)."
            )
        self._base_url = str(settings.jira_base_url).rstrip("/")
        credentials = f"{settings.jira_email}:{settings.jira_api_token}".encode("utf-8")
        self._auth = base64.b64encode(credentials).decode("ascii")
        self._timeout = settings.timeout_ms / 1000
        self._opener = opener

    def fetch_issue(self, issue_key: str) -> dict[str, Any]:
        url = f"{self._base_url}/rest/api/3/issue/{parse.quote(issue_key, safe='')}?fields=summary,description"
        req = request.Request(
            url,
            headers={"Authorization": f"Basic {self._auth}", "Accept": "application/json"},
            method="GET",
        )
        try:
            with self._opener(req, timeout=self._timeout) as response:
                raw = response.read().decode("utf-8", errors="replace")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise IssueSourceError(f"Jira fetch failed for {issue_key} ({exc.code}): {detail}") from exc
        except (error.URLError, OSError) as exc:
            raise IssueSourceError(f"Jira fetch failed for {issue_key}: {exc}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise IssueSourceError(f"Jira returned invalid JSON for {issue_key}: {exc}") from exc
        if not isinstance(payload, dict):
            raise IssueSourceError(f"Jira returned an unexpected payload for {issue_key}")
        return payload

    def load_document(self, issue_key: str) -> Any:
        """Return the parsed (not yet validated) suite embedded in the issue."""

        issue = self.fetch_issue(issue_key)
        fields = issue.get("fields") or {}
        summary = fields.get("summary") or issue_key
        text = document_to_text(fields.get("description"))
        block = extract_suite_block(text)
        if block is None:
            raise IssueSourceError(
                f"No ```stoney / ```yaml fenced code block found in Jira issue {issue_key} ({summary})."
            )
        return parse_suite_text(block, source=f"jira:{issue_key}")

    def load_suite(self, issue_key: str, env: EnvLookup | None = None) -> SuiteDocument:
        suite = build_suite(self.load_document(issue_key), env=env)
        LOGGER.info("issue_suite_loaded", issue=issue_key, suite=suite.suite)
        return suite
