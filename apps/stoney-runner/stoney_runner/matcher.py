"""Deep-subset comparison used by every expectation check."""

from __future__ import annotations

import math
from typing import Any


def deep_subset_match(actual: Any, expected: Any) -> bool:
    """Return True when ``actual`` contains everything ``expected`` describes.

    Mappings match when every expected key is present in ``actual`` with a
    matching value; extra keys are ignored. Lists match positionally over the
    expected length, so ``[1, 2, 3]`` satisfies ``[1, 2]`` but ``[2, 1]`` does
    not. Scalars (``None`` included) must be equal and of the same kind.
    """

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            return False
        return all(
            key in actual and deep_subset_match(actual[key], value)
            for key, value in expected.items()
        )

    if isinstance(expected, list):
        if not isinstance(actual, list) or len(actual) < len(expected):
            return False
        return all(deep_subset_match(actual[index], item) for index, item in enumerate(expected))

    if isinstance(actual, (dict, list)):
        return False
    # bool is an int subclass; True must not match 1
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    if isinstance(actual, float) and isinstance(expected, float) and math.isnan(actual):
        return math.isnan(expected)
    return actual == expected
