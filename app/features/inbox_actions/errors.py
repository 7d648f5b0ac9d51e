"""
Exception taxonomy for the inbox actions pipeline.

Every error carries a ``recoverable`` flag. Recoverable errors are collected
into a run's ``errors`` list and processing continues; the others end the run.
"""

from typing import Any


class InboxActionsError(Exception):
    """Base exception for the inbox actions feature."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class RunValidationError(InboxActionsError):
    """Run options are invalid. Raised before a job slot is claimed."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, recoverable=False)
        self.field = field


class AdapterError(InboxActionsError):
    """The inbox or calendar provider could not be reached or refused a call."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message, recoverable=recoverable)
        self.operation = operation
        self.status_code = status_code


class ExtractionError(InboxActionsError):
    """AI output was missing or did not conform to the extraction schema."""

    def __init__(
        self,
        message: str,
        batch_index: int | None = None,
        provider: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message, recoverable=recoverable)
        self.batch_index = batch_index
        self.provider = provider


class AIBackendError(ExtractionError):
    """An AI backend call failed (network, quota, refusal or empty output)."""


class PersistenceConflict(InboxActionsError):
    """A row with the same natural key already exists. Callers treat it as a no-op."""

    def __init__(self, message: str, natural_key: tuple | None = None):
        super().__init__(message, recoverable=True)
        self.natural_key = natural_key


class JobAlreadyInProgress(InboxActionsError):
    """A non-stale job of the same type is already running for this user."""

    def __init__(self, user_id: str, job_type: str, current_job: dict[str, Any] | None = None):
        super().__init__(
            f"A {job_type} job is already in progress for this user", recoverable=False
        )
        self.user_id = user_id
        self.job_type = job_type
        self.current_job = current_job or {}


class InvalidJobTransition(InboxActionsError):
    """Requested status change is not allowed from the job's current status."""

    def __init__(self, job_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Job {job_id} cannot move from {from_status} to {to_status}", recoverable=False
        )
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
