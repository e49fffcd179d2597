"""Suite loading and validation.

The loader is the boundary between untrusted documents and the typed model:
every field is checked before it is read, the first violation raises
:class:`SchemaError`, and legacy single-step scenarios (``http:``/``exec:``/
``sql:`` directly under the scenario) are rewritten into a one-element
``steps`` list so nothing downstream sees the old shape.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from .env import EnvLookup, interpolate, process_env
from .errors import ConfigError, SchemaError
from .models import (
    SUPPORTED_SQL_DRIVERS,
    SUPPORTED_VERSION,
    Contract,
    ExecCommandSpec,
    ExecExpectation,
    ExecStep,
    HttpExpectation,
    HttpRequestSpec,
    HttpStep,
    Scenario,
    SqlExpectation,
    SqlQuerySpec,
    SqlStep,
    SuiteDocument,
)

LOGGER = structlog.get_logger("stoney_runner.loader")

STEP_KINDS = ("http", "exec", "sql")
SUITE_SUFFIXES = {".yaml", ".yml", ".json"}


def load_suite(path: Path, env: EnvLookup | None = None) -> SuiteDocument:
    """Load and validate a suite YAML/JSON file."""

    if not path.exists():
        raise ConfigError(f"Suite file not found: {path}")
    if path.suffix.lower() not in SUITE_SUFFIXES:
        raise SchemaError(f"Unsupported suite file type: {path}")
    data = parse_suite_text(path.read_text(encoding="utf-8"), source=str(path))
    suite = build_suite(data, env=env)
    LOGGER.debug("suite_loaded", source=str(path), suite=suite.suite, contracts=len(suite.contracts))
    return suite


def parse_suite_text(text: str, *, source: str) -> Any:
    """Parse suite text; YAML is a superset of JSON so one parser serves both."""

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SchemaError(f"{source}: not valid YAML/JSON: {exc}") from exc


def build_suite(data: Any, env: EnvLookup | None = None) -> SuiteDocument:
    """Validate a parsed document and build the immutable suite."""

    lookup = process_env() if env is None else env

    if not isinstance(data, dict):
        raise SchemaError("Suite file must be an object.")
    version = data.get("version")
    if isinstance(version, bool) or version != SUPPORTED_VERSION:
        raise SchemaError(f"Unsupported version: {version!r} (expected {SUPPORTED_VERSION})")
    if not _non_empty_str(data.get("suite")):
        raise SchemaError("suite must be a non-empty string.")
    raw_contracts = data.get("contracts")
    if not isinstance(raw_contracts, list) or not raw_contracts:
        raise SchemaError("contracts must be a non-empty array.")

    contracts = [
        _build_contract(raw, f"contracts[{index}]", lookup) for index, raw in enumerate(raw_contracts)
    ]
    return SuiteDocument(version=SUPPORTED_VERSION, suite=data["suite"], contracts=contracts)


def dump_suite(suite: SuiteDocument) -> dict[str, Any]:
    """Return the normalized suite in its wire shape (canonical ``steps`` form)."""

    step_kind = {"steps": {"__all__": {"kind"}}}
    data = suite.model_dump(
        mode="json",
        by_alias=True,
        exclude_none=True,
        exclude={"contracts": {"__all__": {"scenarios": {"__all__": step_kind}}}},
    )
    # exclude_none also drops an explicit null pattern, which is still a check.
    for contract, raw_contract in zip(suite.contracts, data["contracts"]):
        for scenario, raw_scenario in zip(contract.scenarios, raw_contract["scenarios"]):
            for step, raw_step in zip(scenario.steps, raw_scenario["steps"]):
                expect = raw_step.setdefault("expect", {})
                if step.kind == "http" and step.expect.checks_json and step.expect.json_pattern is None:
                    expect["json"] = None
                elif step.kind == "sql" and step.expect.checks_first_row and step.expect.equals is None:
                    expect["equals"] = None
    return data


def suite_to_json(suite: SuiteDocument, *, pretty: bool = False) -> str:
    return json.dumps(dump_suite(suite), indent=2 if pretty else None, ensure_ascii=False)


def _build_contract(raw: Any, where: str, env: EnvLookup) -> Contract:
    if not isinstance(raw, dict):
        raise SchemaError(f"{where} must be an object.")
    name = raw.get("name")
    if not _non_empty_str(name):
        raise SchemaError(f"{where}.name must be a non-empty string.")
    raw_scenarios = raw.get("scenarios")
    if not isinstance(raw_scenarios, list) or not raw_scenarios:
        raise SchemaError(f"{where}.scenarios must be a non-empty array.")

    scenarios = [
        _build_scenario(item, f"{where}.scenarios[{index}]", env)
        for index, item in enumerate(raw_scenarios)
    ]

    seen: set[str] = set()
    for scenario in scenarios:
        if scenario.id in seen:
            raise SchemaError(f'Duplicate scenario id in contract "{name}": {scenario.id}')
        seen.add(scenario.id)
    return Contract(name=name, scenarios=scenarios)


def _build_scenario(raw: Any, where: str, env: EnvLookup) -> Scenario:
    if not isinstance(raw, dict):
        raise SchemaError(f"{where} must be an object.")
    scenario_id = raw.get("id")
    if not _non_empty_str(scenario_id):
        raise SchemaError(f"{where}.id is required.")
    where = f"Scenario {scenario_id}"

    legacy_kinds = [kind for kind in STEP_KINDS if kind in raw]
    if "steps" in raw:
        if legacy_kinds:
            raise SchemaError(f"{where}: use either steps or a single {legacy_kinds[0]} block, not both.")
        raw_steps = raw["steps"]
        if not isinstance(raw_steps, list) or not raw_steps:
            raise SchemaError(f"{where}: steps must be a non-empty array.")
    elif len(legacy_kinds) == 1:
        raw_steps = [{legacy_kinds[0]: raw[legacy_kinds[0]], "expect": raw.get("expect")}]
    elif legacy_kinds:
        raise SchemaError(f"{where}: only one of {', '.join(legacy_kinds)} may appear without steps.")
    else:
        raise SchemaError(f"{where}: steps (or a single http/exec/sql block) is required.")

    steps = [_build_step(item, f"{where} steps[{index}]", env) for index, item in enumerate(raw_steps)]
    return Scenario(id=scenario_id, steps=steps)


def _build_step(raw: Any, where: str, env: EnvLookup) -> HttpStep | ExecStep | SqlStep:
    if not isinstance(raw, dict):
        raise SchemaError(f"{where} must be an object.")
    kinds = [kind for kind in STEP_KINDS if kind in raw]
    if len(kinds) != 1:
        raise SchemaError(f"{where}: exactly one of http, exec, sql is required (found {len(kinds)}).")
    kind = kinds[0]
    body = raw[kind]
    if not isinstance(body, dict):
        raise SchemaError(f"{where}: {kind} must be an object.")
    expect = raw.get("expect")
    if expect is not None and not isinstance(expect, dict):
        raise SchemaError(f"{where}: expect must be an object.")
    expect = expect or {}

    builders = {"http": _build_http_step, "exec": _build_exec_step, "sql": _build_sql_step}
    try:
        return builders[kind](body, expect, where, env)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise SchemaError(f"{where}: {kind} {location}: {first['msg']}") from exc


def _build_http_step(body: dict[str, Any], expect: dict[str, Any], where: str, env: EnvLookup) -> HttpStep:
    method = str(body.get("method") or "").strip().upper()
    if not method:
        raise SchemaError(f"{where}: http.method is required.")
    if not _non_empty_str(body.get("path")):
        raise SchemaError(f"{where}: http.path is required.")
    path = interpolate(body["path"], env)
    if not path.startswith("/"):
        raise SchemaError(f'{where}: http.path must start with "/".')

    headers = body.get("headers")
    query = body.get("query")
    request = HttpRequestSpec(
        method=method,
        path=path,
        headers=_string_map(interpolate(headers, env)) if isinstance(headers, dict) else None,
        query=interpolate(query, env) if isinstance(query, dict) else None,
        body=interpolate(body.get("body"), env),
        timeout_ms=_optional_count(body, "timeout_ms", where, minimum=1),
        retries=_optional_count(body, "retries", where),
    )

    fields: dict[str, Any] = {}
    if isinstance(expect.get("status"), int) and not isinstance(expect.get("status"), bool):
        fields["status"] = expect["status"]
    if "json" in expect:
        fields["json"] = interpolate(expect["json"], env)
    if isinstance(expect.get("bodyContains"), str):
        fields["bodyContains"] = interpolate(expect["bodyContains"], env)
    return HttpStep(http=request, expect=HttpExpectation(**fields))


def _build_exec_step(body: dict[str, Any], expect: dict[str, Any], where: str, env: EnvLookup) -> ExecStep:
    if not _non_empty_str(body.get("run")):
        raise SchemaError(f"{where}: exec.run must be a non-empty string.")
    cwd = body.get("cwd")
    overrides = body.get("env")
    command = ExecCommandSpec(
        run=interpolate(body["run"], env),
        cwd=interpolate(cwd, env) if isinstance(cwd, str) and cwd else None,
        env=_string_map(interpolate(overrides, env)) if isinstance(overrides, dict) else None,
        timeout_ms=_optional_count(body, "timeout_ms", where, minimum=1),
        retries=_optional_count(body, "retries", where),
    )

    fields: dict[str, Any] = {}
    if isinstance(expect.get("exit_code"), int) and not isinstance(expect.get("exit_code"), bool):
        fields["exit_code"] = expect["exit_code"]
    for key in ("stdout_contains", "stderr_contains"):
        if isinstance(expect.get(key), str):
            fields[key] = interpolate(expect[key], env)
    return ExecStep(exec=command, expect=ExecExpectation(**fields))


def _build_sql_step(body: dict[str, Any], expect: dict[str, Any], where: str, env: EnvLookup) -> SqlStep:
    driver = body.get("driver", "postgres")
    if driver not in SUPPORTED_SQL_DRIVERS:
        raise SchemaError(f"{where}: unsupported sql.driver {driver!r} (expected postgres).")
    if not _non_empty_str(body.get("url_env")):
        raise SchemaError(f"{where}: sql.url_env must name an environment variable.")
    if not _non_empty_str(body.get("query")):
        raise SchemaError(f"{where}: sql.query must be a non-empty string.")
    query = SqlQuerySpec(
        driver=driver,
        url_env=body["url_env"].strip(),
        query=interpolate(body["query"], env),
        timeout_ms=_optional_count(body, "timeout_ms", where, minimum=1),
        retries=_optional_count(body, "retries", where),
    )

    fields: dict[str, Any] = {}
    if isinstance(expect.get("rows"), int) and not isinstance(expect.get("rows"), bool):
        fields["rows"] = expect["rows"]
    if "equals" in expect:
        fields["equals"] = interpolate(expect["equals"], env)
    return SqlStep(sql=query, expect=SqlExpectation(**fields))


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _string_map(value: dict[Any, Any]) -> dict[str, str]:
    return {str(key): "" if item is None else str(item) for key, item in value.items()}


def _optional_count(body: dict[str, Any], key: str, where: str, *, minimum: int = 0) -> int | None:
    value = body.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise SchemaError(f"{where}: {key} must be an integer >= {minimum}.")
    return value
