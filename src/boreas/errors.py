"""Exception hierarchy shared by all search engines."""
from __future__ import annotations

from typing import Sequence


class BoreasError(RuntimeError):
    """Base class for processing errors raised by the optimizer."""


class ConfigurationError(BoreasError):
    """Raised when parameters, algorithm settings or expressions are invalid."""


class AlgorithmDefectError(BoreasError):
    """Raised when an algorithm violates an internal contract."""


class EvaluationError(BoreasError):
    """Raised when an objective function evaluation fails.

    Parameters
    ----------
    message:
        Human readable description of the failure.
    command:
        Command line that was executed, when the evaluation ran a process.
    working_directory:
        Directory the evaluation ran in.
    details:
        Additional diagnostics such as the content of the error stream.
    """

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] | str | None = None,
        working_directory: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.working_directory = working_directory
        self.details = details

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.command:
            command = self.command if isinstance(self.command, str) else " ".join(self.command)
            parts.append(f"Command: {command}")
        if self.working_directory:
            parts.append(f"Working directory: {self.working_directory}")
        if self.details:
            parts.append(self.details.rstrip())
        return "\n".join(parts)


class NonFiniteObjectiveError(EvaluationError):
    """Raised when an evaluator returns NaN or infinite objective values."""


class StagnationError(BoreasError):
    """Raised when the optimizer keeps receiving identical objective values."""

    def __init__(self, message: str, *, run_ids: Sequence[int] = (), value: float | None = None) -> None:
        super().__init__(message)
        self.run_ids = list(run_ids)
        self.value = value


class FlatObjectiveError(StagnationError):
    """Raised when a line search detects a constant objective function."""


class UserAbort(Exception):
    """Cancellation requested by the user.

    Not a :class:`BoreasError`: handlers for processing errors do not catch it.
    """

    def __init__(self, message: str = "Optimization stopped by user request.") -> None:
        super().__init__(message)


__all__ = [
    "AlgorithmDefectError",
    "BoreasError",
    "ConfigurationError",
    "EvaluationError",
    "FlatObjectiveError",
    "NonFiniteObjectiveError",
    "StagnationError",
    "UserAbort",
]
