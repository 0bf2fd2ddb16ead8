"""Error kinds raised by the processing pipelines.

Every error carries the short machine-readable ``error`` tag returned to
the caller, plus the exit code and captured tool output when a child
process was involved.
"""
from __future__ import annotations

from typing import Optional


class ProcessingError(Exception):
    """Base class for all failures that end a /process request."""

    status_code = 500

    def __init__(self, error: str, *, exit_code: Optional[int] = None, log: str = "") -> None:
        super().__init__(error)
        self.error = error
        self.exit_code = exit_code
        self.log = log


class ClientInputError(ProcessingError):
    """Missing upload or an unusable form parameter."""

    status_code = 400


class SpawnError(ProcessingError):
    """The executable could not be started at all."""


class StageFailure(ProcessingError):
    """A stage exited non-zero or did not produce its declared output."""


class ProcessTimeoutError(StageFailure):
    """A child process outlived the configured timeout and was killed."""


class StemNotFoundError(ProcessingError):
    """Separation finished but no accompaniment stem was written."""


class PublishError(ProcessingError):
    """The finished file could not be moved into the public directory."""
