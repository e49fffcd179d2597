"""Environment lookup and `${NAME}` interpolation."""

from __future__ import annotations

import os
import re
from typing import Any, Mapping

EnvLookup = Mapping[str, str]

ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def process_env() -> EnvLookup:
    """Return the live process environment."""

    return os.environ


def interpolate(value: Any, env: EnvLookup | None = None) -> Any:
    """Recursively replace `${NAME}` placeholders with values from ``env``.

    Strings are substituted, lists and mappings are rebuilt element-wise and
    every other value is returned unchanged. A variable that is not set
    resolves to an empty string, so a missing token surfaces downstream as a
    real authentication failure instead of being skipped.
    """

    lookup = process_env() if env is None else env
    if isinstance(value, str):
        return ENV_PATTERN.sub(lambda match: lookup.get(match.group(1), ""), value)
    if isinstance(value, list):
        return [interpolate(item, lookup) for item in value]
    if isinstance(value, dict):
        return {key: interpolate(item, lookup) for key, item in value.items()}
    return value
