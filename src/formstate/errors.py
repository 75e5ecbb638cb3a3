"""Exception taxonomy.

Structural and usage errors are raised. Validation failures are never
raised: they are FieldError entries in the error tree.
"""
from typing import Any

from formconf.context_manager import MissingProviderError


class FormStateError(Exception):
    """Base class for errors raised by the form state framework."""


class InvalidPathError(FormStateError, ValueError):
    """Raised for a malformed field path. State is left untouched."""

    def __init__(self, path: Any, reason: str = "malformed path"):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid field path {path!r}: {reason}")


class StaleResultDiscarded(FormStateError):
    """A validation result arrived after reset() or unregister() superseded it.

    Internal only: caught by the container and logged, never surfaced.
    """

    def __init__(self, started_epoch: int, current_epoch: int):
        self.started_epoch = started_epoch
        self.current_epoch = current_epoch
        super().__init__(
            f"Validation result from epoch {started_epoch} discarded (current epoch {current_epoch})"
        )


__all__ = [
    'FormStateError',
    'InvalidPathError',
    'MissingProviderError',
    'StaleResultDiscarded',
]
