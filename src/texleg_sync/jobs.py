"""Sync job lifecycle.

State machine::

    PENDING → RUNNING ⇄ PAUSED
       │         │        │
       └─────────┴────────┴──→ STOPPED | COMPLETED | ERROR

At most one job may be non-terminal at a time.  Nothing is cached between
calls: every operation re-reads the job from the database and every status
change is a compare-and-set on the status it was validated against, so a
pause racing an in-flight batch cannot corrupt the job.

Usage::

    controller = SyncJobController(get_session_factory(init_database()))
    job = controller.create()
    controller.start(job.id)
    summary = controller.process(job.id)   # one batch; call again to continue
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .batch import BatchProcessor
from .config import SyncSettings, load_settings
from .database import SyncJob, session_scope, utcnow
from .errors import (
    InvalidTransition,
    JobConflict,
    JobNotFound,
    SyncDisabled,
    SystemicFailure,
)
from .models import NON_TERMINAL_STATUSES, BatchSummary, JobSnapshot, JobStatus
from .run_log import RunLogger
from .scrapers.source import RemoteSource
from .storage import highest_bill_number, update_job

LOGGER = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.RUNNING, JobStatus.PAUSED)
STARTABLE_STATUSES = (JobStatus.PENDING, JobStatus.PAUSED)


class SyncJobController:
    """The only component allowed to change a sync job's status."""

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: SyncSettings | None = None,
        source_factory: Callable[[], object] | None = None,
        run_log_path: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = session_factory
        self.settings = settings or load_settings()
        self._source_factory = source_factory or (lambda: RemoteSource(self.settings))
        self.run_log_path = run_log_path
        self._sleep = sleep
        self._clock = clock

    # ── Reads ──

    def get(self, job_id: str) -> JobSnapshot:
        with session_scope(self._factory) as session:
            row = session.get(SyncJob, job_id)
            if row is None:
                raise JobNotFound(job_id)
            return JobSnapshot.from_row(row)

    def get_active(self) -> JobSnapshot | None:
        """The RUNNING or PAUSED job, if any."""
        with session_scope(self._factory) as session:
            row = (
                session.query(SyncJob)
                .filter(SyncJob.status.in_(ACTIVE_STATUSES))
                .order_by(SyncJob.created_at.desc())
                .first()
            )
            return JobSnapshot.from_row(row) if row else None

    def list_recent(self, limit: int = 10) -> list[JobSnapshot]:
        with session_scope(self._factory) as session:
            rows = (
                session.query(SyncJob)
                .order_by(SyncJob.created_at.desc())
                .limit(limit)
                .all()
            )
            return [JobSnapshot.from_row(row) for row in rows]

    def _non_terminal_id(self) -> str | None:
        with session_scope(self._factory) as session:
            row = (
                session.query(SyncJob.id)
                .filter(SyncJob.status.in_(NON_TERMINAL_STATUSES))
                .first()
            )
            return row.id if row else None

    # ── Create ──

    def create(
        self,
        bill_types: Iterable[str] | None = None,
        incremental: bool = False,
    ) -> JobSnapshot:
        """Create a PENDING job with its cursor at the start of the identifier space.

        With ``incremental=True`` each bill type starts one past the highest
        number already stored for the session instead of at 1.

        Raises
        ------
        SyncDisabled
            ``TEXLEG_SYNC_ENABLED=0``.
        JobConflict
            Another job is PENDING, RUNNING or PAUSED.
        """
        if not self.settings.sync_enabled:
            raise SyncDisabled("Sync is disabled (TEXLEG_SYNC_ENABLED=0)")
        types = [t.strip().upper() for t in (bill_types or self.settings.bill_types) if t.strip()]
        if not types:
            raise ValueError("at least one bill type is required")

        job_id = str(uuid.uuid4())
        try:
            with session_scope(self._factory) as session:
                existing = (
                    session.query(SyncJob.id)
                    .filter(SyncJob.status.in_(NON_TERMINAL_STATUSES))
                    .first()
                )
                if existing is not None:
                    raise JobConflict(existing.id)

                if incremental:
                    starts = {
                        t: highest_bill_number(session, t, self.settings.session_code) + 1
                        for t in types
                    }
                else:
                    starts = {t: 1 for t in types}
                bounds = {
                    t: self.settings.max_bill_numbers[t]
                    for t in types
                    if t in self.settings.max_bill_numbers
                }
                session.add(
                    SyncJob(
                        id=job_id,
                        status=JobStatus.PENDING,
                        session_code=self.settings.session_code,
                        session_name=self.settings.session_name,
                        bill_types=types,
                        current_type=types[0],
                        next_number=starts[types[0]],
                        type_starts=starts,
                        type_bounds=bounds,
                        completed_types=[],
                        recent_failures=[],
                        created_at=utcnow(),
                        active_slot=1,
                    )
                )
        except IntegrityError as exc:
            # Lost a race with another create(); the unique active_slot caught it.
            raise JobConflict(self._non_terminal_id() or "unknown") from exc

        LOGGER.info(
            "Created sync job %s for %s (%s), starts %s",
            job_id,
            self.settings.session_code,
            ",".join(types),
            starts,
        )
        return self.get(job_id)

    # ── Transitions ──

    def _transition(
        self,
        job_id: str,
        allowed: Iterable[JobStatus],
        target: JobStatus,
        values: dict | None = None,
    ) -> JobSnapshot:
        """Read, validate, then compare-and-set the job into *target*."""
        allowed = tuple(allowed)
        with session_scope(self._factory) as session:
            row = session.get(SyncJob, job_id)
            if row is None:
                raise JobNotFound(job_id)
            current = JobStatus(row.status)
            if current not in allowed:
                raise InvalidTransition(job_id, current.value, target.value)
            changes = {"status": target, "last_activity_at": utcnow(), **(values or {})}
            if not update_job(session, job_id, allowed, changes):
                # Status changed between the read and the write.
                raise InvalidTransition(job_id, current.value, target.value)
        LOGGER.info("Sync job %s: %s → %s", job_id, current.value, target.value)
        return self.get(job_id)

    def start(self, job_id: str) -> JobSnapshot:
        """PENDING or PAUSED → RUNNING."""
        with session_scope(self._factory) as session:
            row = session.get(SyncJob, job_id)
            started_at = row.started_at if row is not None else None
        return self._transition(
            job_id,
            STARTABLE_STATUSES,
            JobStatus.RUNNING,
            {"started_at": started_at or utcnow(), "paused_at": None},
        )

    def resume(self, job_id: str) -> JobSnapshot:
        return self.start(job_id)

    def pause(self, job_id: str) -> JobSnapshot:
        """RUNNING → PAUSED.  An in-flight batch stops at its next identifier boundary."""
        return self._transition(
            job_id, (JobStatus.RUNNING,), JobStatus.PAUSED, {"paused_at": utcnow()}
        )

    def stop(self, job_id: str) -> JobSnapshot:
        """Any non-terminal status → STOPPED.  A stopped job cannot be restarted."""
        return self._transition(
            job_id,
            NON_TERMINAL_STATUSES,
            JobStatus.STOPPED,
            {"completed_at": utcnow(), "active_slot": None},
        )

    def _fail(self, job_id: str, message: str) -> None:
        now = utcnow()
        with session_scope(self._factory) as session:
            update_job(
                session,
                job_id,
                NON_TERMINAL_STATUSES,
                {
                    "status": JobStatus.ERROR,
                    "last_error": message,
                    "completed_at": now,
                    "last_activity_at": now,
                    "active_slot": None,
                },
            )

    # ── Process ──

    def process(self, job_id: str) -> BatchSummary:
        """Run exactly one batch for *job_id* and return its summary.

        A systemic failure (database error, or any exception escaping the
        per-item boundary) moves the job to ERROR with the message retained
        and raises ``SystemicFailure``.  Recovering requires a new job.
        """
        if not self.settings.sync_enabled:
            return BatchSummary(
                job=self.get(job_id),
                message="Sync is disabled (TEXLEG_SYNC_ENABLED=0)",
            )

        run = RunLogger("sync_batch", job_id=job_id, log_path=self.run_log_path)
        run.start()
        source = self._source_factory()
        try:
            processor = BatchProcessor(
                self._factory,
                source,
                settings=self.settings,
                sleep=self._sleep,
                clock=self._clock,
            )
            summary = processor.process(job_id)
        except (JobNotFound, InvalidTransition) as exc:
            run.end(status="error", error=str(exc))
            raise
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            LOGGER.exception("Sync job %s failed", job_id)
            try:
                self._fail(job_id, message)
            except SQLAlchemyError:
                LOGGER.exception("Could not record failure of sync job %s", job_id)
            run.end(status="error", error=message)
            raise SystemicFailure(job_id, message) from exc
        finally:
            source.close()

        run.record_batch(summary)
        run.end(status="ok")
        return summary
