"""Exception taxonomy for the contract runner."""

from __future__ import annotations


class StoneyError(RuntimeError):
    """Base class for every error raised by the runner."""


class SchemaError(StoneyError):
    """Raised when a suite document is malformed or fails validation."""


class ConfigError(StoneyError):
    """Raised when a required run-time input is missing or invalid."""


class IssueSourceError(ConfigError):
    """Raised when a suite cannot be loaded from an issue-tracker document."""


class StepError(StoneyError):
    """Transient failure of a single step attempt; eligible for retry."""


class StepTimeout(StepError):
    """A step attempt lost the race against its timeout and was cancelled."""


class ExpectationMismatch(StoneyError):
    """A step completed but its outcome did not satisfy the expectation."""

    def __init__(self, notes: list[str]) -> None:
        super().__init__("; ".join(notes))
        self.notes = list(notes)
