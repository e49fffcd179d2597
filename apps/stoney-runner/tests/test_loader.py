from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest
import yaml

from stoney_runner.errors import ConfigError, SchemaError
from stoney_runner.loader import build_suite, dump_suite, load_suite
from stoney_runner.models import ExecStep, HttpStep, SqlStep

BASE_SUITE = {
    "version": 1,
    "suite": "target",
    "contracts": [
        {
            "name": "health",
            "scenarios": [
                {
                    "id": "ping",
                    "steps": [
                        {
                            "http": {"method": "get", "path": "/health"},
                            "expect": {"status": 200, "json": {"ok": True}},
                        }
                    ],
                }
            ],
        }
    ],
}


def _suite(**overrides) -> dict:
    data = copy.deepcopy(BASE_SUITE)
    data.update(overrides)
    return data


def _scenario(data: dict) -> dict:
    return data["contracts"][0]["scenarios"][0]


def test_builds_canonical_suite() -> None:
    suite = build_suite(_suite(), env={})

    step = suite.contracts[0].scenarios[0].steps[0]
    assert isinstance(step, HttpStep)
    assert step.http.method == "GET"
    assert step.expect.status == 200
    assert step.expect.checks_json
    assert step.expect.json_pattern == {"ok": True}


def test_rejects_unsupported_version() -> None:
    with pytest.raises(SchemaError, match="Unsupported version"):
        build_suite(_suite(version=2), env={})


@pytest.mark.parametrize(
    "data, message",
    [
        ([], "must be an object"),
        (_suite(suite=" "), "suite must be"),
        (_suite(contracts=[]), "contracts must be a non-empty array"),
        (_suite(contracts=[{"name": "", "scenarios": []}]), r"contracts\[0\].name"),
        (_suite(contracts=[{"name": "c", "scenarios": []}]), r"contracts\[0\].scenarios"),
    ],
)
def test_structural_violations(data, message: str) -> None:
    with pytest.raises(SchemaError, match=message):
        build_suite(data, env={})


def test_rejects_duplicate_scenario_ids() -> None:
    data = _suite()
    scenarios = data["contracts"][0]["scenarios"]
    scenarios.append(copy.deepcopy(scenarios[0]))
    scenarios[0]["id"] = scenarios[1]["id"] = "s1"

    with pytest.raises(SchemaError, match="Duplicate scenario id.*s1"):
        build_suite(data, env={})


def test_same_id_allowed_across_contracts() -> None:
    data = _suite()
    data["contracts"].append(copy.deepcopy(data["contracts"][0]))
    data["contracts"][1]["name"] = "health-again"

    suite = build_suite(data, env={})

    assert [c.scenarios[0].id for c in suite.contracts] == ["ping", "ping"]


def test_normalizes_legacy_single_step_scenario() -> None:
    data = _suite()
    data["contracts"][0]["scenarios"] = [
        {"id": "legacy", "http": {"method": "GET", "path": "/health"}, "expect": {"status": 200}},
        {"id": "legacy-exec", "exec": {"run": "true"}},
    ]

    scenarios = build_suite(data, env={}).contracts[0].scenarios

    assert len(scenarios[0].steps) == 1
    assert scenarios[0].steps[0].expect.status == 200
    assert isinstance(scenarios[1].steps[0], ExecStep)
    assert scenarios[1].steps[0].expect.exit_code == 0


def test_rejects_step_with_two_kinds() -> None:
    data = _suite()
    _scenario(data)["steps"] = [{"http": {"method": "GET", "path": "/"}, "exec": {"run": "true"}}]

    with pytest.raises(SchemaError, match="exactly one of http, exec, sql"):
        build_suite(data, env={})


def test_rejects_scenario_without_steps() -> None:
    data = _suite()
    _scenario(data).pop("steps")

    with pytest.raises(SchemaError, match="steps"):
        build_suite(data, env={})


@pytest.mark.parametrize(
    "step, message",
    [
        ({"http": {"path": "/x"}}, "http.method is required"),
        ({"http": {"method": "GET", "path": "x"}}, 'must start with "/"'),
        ({"exec": {"run": "  "}}, "exec.run"),
        ({"sql": {"driver": "mysql", "url_env": "DB", "query": "select 1"}}, "unsupported sql.driver"),
        ({"sql": {"url_env": "", "query": "select 1"}}, "url_env"),
        ({"sql": {"url_env": "DB", "query": ""}}, "sql.query"),
        ({"exec": {"run": "true", "retries": -1}}, "retries"),
        ({"exec": {"run": "true", "timeout_ms": 0}}, "timeout_ms must be an integer >= 1"),
        ({"http": {"method": "GET", "path": "/x", "timeout_ms": 0}}, "timeout_ms must be an integer >= 1"),
        ({"sql": {"url_env": "DB", "query": "select 1", "timeout_ms": 0}}, "timeout_ms must be an integer >= 1"),
    ],
)
def test_step_field_violations(step: dict, message: str) -> None:
    data = _suite()
    _scenario(data)["steps"] = [step]

    with pytest.raises(SchemaError, match=message):
        build_suite(data, env={})


def test_interpolates_string_fields() -> None:
    data = _suite()
    _scenario(data)["steps"] = [
        {
            "http": {
                "method": "GET",
                "path": "${PREFIX}/private/ping",
                "headers": {"Authorization": "Bearer ${TOKEN}"},
            },
            "expect": {"bodyContains": "${WORD}"},
        },
        {"sql": {"url_env": "DATABASE_URL", "query": "select * from t where id = '${ID}'"}},
    ]

    steps = build_suite(data, env={"TOKEN": "abc", "ID": "7"}).contracts[0].scenarios[0].steps

    assert steps[0].http.path == "/private/ping"
    assert steps[0].http.headers == {"Authorization": "Bearer abc"}
    assert steps[0].expect.body_contains == ""
    assert isinstance(steps[1], SqlStep)
    assert steps[1].sql.url_env == "DATABASE_URL"
    assert steps[1].sql.query.endswith("'7'")


def test_explicit_null_json_pattern_is_checked() -> None:
    data = _suite()
    _scenario(data)["steps"][0]["expect"] = {"json": None}

    step = build_suite(data, env={}).contracts[0].scenarios[0].steps[0]

    assert step.expect.checks_json
    assert step.expect.json_pattern is None


def test_load_suite_reads_yaml_and_json(tmp_path: Path) -> None:
    yaml_file = tmp_path / "suite.yml"
    yaml_file.write_text(yaml.safe_dump(BASE_SUITE, sort_keys=False), encoding="utf-8")
    json_file = tmp_path / "suite.json"
    json_file.write_text(json.dumps(BASE_SUITE), encoding="utf-8")

    assert load_suite(yaml_file, env={}) == load_suite(json_file, env={})


def test_load_suite_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_suite(tmp_path / "missing.yml", env={})

    text_file = tmp_path / "suite.txt"
    text_file.write_text("version: 1", encoding="utf-8")
    with pytest.raises(SchemaError, match="Unsupported suite file type"):
        load_suite(text_file, env={})


def test_dump_suite_emits_canonical_shape() -> None:
    data = _suite()
    data["contracts"][0]["scenarios"] = [
        {"id": "legacy", "http": {"method": "GET", "path": "/health"}, "expect": {"bodyContains": "ok"}},
    ]

    dumped = dump_suite(build_suite(data, env={}))

    step = dumped["contracts"][0]["scenarios"][0]["steps"][0]
    assert step == {"http": {"method": "GET", "path": "/health"}, "expect": {"bodyContains": "ok"}}


def test_dump_suite_keeps_explicit_null_patterns() -> None:
    data = _suite()
    _scenario(data)["steps"] = [
        {"http": {"method": "GET", "path": "/health"}, "expect": {"json": None}},
        {"sql": {"url_env": "DB", "query": "select 1"}, "expect": {"equals": None}},
    ]

    dumped = dump_suite(build_suite(data, env={}))
    steps = dumped["contracts"][0]["scenarios"][0]["steps"]

    assert steps[0]["expect"] == {"json": None}
    assert steps[1]["expect"] == {"equals": None}
    reloaded = build_suite(dumped, env={}).contracts[0].scenarios[0].steps
    assert reloaded[0].expect.checks_json
    assert reloaded[1].expect.checks_first_row
