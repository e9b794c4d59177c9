from __future__ import annotations

from typing import Sequence


class CadenceError(RuntimeError):
    """Base class for errors reported by the cadence CLI."""


class CatalogError(CadenceError):
    """Raised when the catalog or a workflow file cannot be parsed."""


class ScheduleError(CadenceError):
    """Raised for cron expressions APScheduler cannot parse."""


class SecretNotFound(CadenceError):
    """Raised when a job references a secret that is not available."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Secret {name!r} is not set")


class InvocationError(CadenceError):
    """Raised when a job cannot be invoked or its command exits non-zero."""

    def __init__(self, message: str, *, job_id: str = "", returncode: int | None = None) -> None:
        self.job_id = job_id
        self.returncode = returncode
        super().__init__(message)


class BuildError(CadenceError):
    """Raised when an image recipe is invalid."""

    def __init__(self, image_id: str, problems: Sequence[str]) -> None:
        self.image_id = image_id
        self.problems = list(problems)
        joined = "\n  - ".join(self.problems)
        super().__init__(f"Image {image_id!r} is invalid:\n  - {joined}")
