import pytest

from stoney_runner.config import RunnerSettings
from stoney_runner.env import interpolate
from stoney_runner.errors import ConfigError


def test_missing_variable_becomes_empty_string() -> None:
    assert interpolate("${MISSING}", {}) == ""
    assert interpolate("Bearer ${TOKEN}", {}) == "Bearer "


def test_interpolates_nested_values() -> None:
    env = {"TOKEN": "abc", "USER_ID": "42"}
    value = {
        "headers": {"Authorization": "Bearer ${TOKEN}"},
        "ids": ["${USER_ID}", 3, None],
        "flag": True,
    }

    assert interpolate(value, env) == {
        "headers": {"Authorization": "Bearer abc"},
        "ids": ["42", 3, None],
        "flag": True,
    }


def test_only_uppercase_placeholders_are_replaced() -> None:
    assert interpolate("${lower} ${UP}", {"lower": "x", "UP": "y"}) == "${lower} y"


def test_settings_defaults_and_overrides() -> None:
    defaults = RunnerSettings.from_env({})
    assert defaults.timeout_ms == 15000
    assert defaults.retries == 2
    assert defaults.base_url is None

    tuned = RunnerSettings.from_env(
        {"STONEY_TIMEOUT_MS": "250", "STONEY_RETRIES": "0", "STONEY_BASE_URL": " http://api "}
    )
    assert tuned.timeout_ms == 250
    assert tuned.retries == 0
    assert tuned.base_url == "http://api"


@pytest.mark.parametrize("raw", ["soon", "-1"])
def test_settings_reject_bad_numbers(raw: str) -> None:
    with pytest.raises(ConfigError, match="STONEY_RETRIES"):
        RunnerSettings.from_env({"STONEY_RETRIES": raw})


def test_settings_reject_zero_timeout() -> None:
    with pytest.raises(ConfigError, match="STONEY_TIMEOUT_MS must be at least 1"):
        RunnerSettings.from_env({"STONEY_TIMEOUT_MS": "0"})
