"""Typed failures raised by the sync engine.

Controller failures (``JobConflict``, ``JobNotFound``, ``InvalidTransition``,
``SyncDisabled``) are returned to trigger callers.  Fetch and parse failures
are per-item and never escape a batch.  ``SystemicFailure`` is the only error
that halts a job.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every sync engine error."""


# ── Controller ───────────────────────────────────────────────────────────────


class JobConflict(SyncError):
    """A non-terminal sync job already exists."""

    def __init__(self, active_job_id: str) -> None:
        super().__init__(f"A sync job is already active: {active_job_id}")
        self.active_job_id = active_job_id


class JobNotFound(SyncError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Sync job not found: {job_id}")
        self.job_id = job_id


class InvalidTransition(SyncError):
    """The requested status change is not legal from the job's current status."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Cannot move job {job_id} from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class SyncDisabled(SyncError):
    """Sync is switched off via ``TEXLEG_SYNC_ENABLED=0``."""


class SystemicFailure(SyncError):
    """A failure outside the per-item boundary; the job has been moved to ERROR."""

    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(f"Sync job {job_id} failed: {message}")
        self.job_id = job_id
        self.message = message


# ── Remote source ────────────────────────────────────────────────────────────


class RemoteNotFound(SyncError):
    """The remote source has no document for this identifier (gap in numbering)."""


class RemoteFetchError(SyncError):
    """Transport or server failure while fetching a remote document."""


# ── Parsing ──────────────────────────────────────────────────────────────────


class ParseError(SyncError):
    """The remote document is malformed or is not a bill history document."""


class ValidationError(SyncError):
    """A parsed record is incomplete and must not be stored."""
