"""Domain exceptions raised by repositories and services."""

from __future__ import annotations


class OsintAiError(Exception):
    """Base class for expected, user-facing failures."""


class InvestigationNotFoundError(OsintAiError):
    def __init__(self, investigation_id: int) -> None:
        super().__init__(f"Investigation {investigation_id} not found")
        self.investigation_id = investigation_id


class UnsupportedJobTypeError(OsintAiError):
    def __init__(self, job_type: str) -> None:
        super().__init__(f"Unsupported AI job type: {job_type!r}")
        self.job_type = job_type
