"""One bounded unit of sync work.

A batch takes up to ``batch_size`` identifiers from the job cursor and runs
each through fetch → parse → validate → upsert.  Every identifier commits in
its own transaction together with the cursor advance and counter increments,
so a call killed by the host at any point leaves the job resumable at the
next unattempted identifier.

Per-item failures (not found, fetch, parse, validation) are counted and the
cursor still advances.  Anything else propagates to the controller, which
records the job as ERROR.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from .config import SyncSettings, load_settings
from .database import LegislativeSession, SyncJob, session_scope, utcnow
from .errors import (
    InvalidTransition,
    JobNotFound,
    ParseError,
    RemoteFetchError,
    RemoteNotFound,
)
from .models import (
    BatchSummary,
    CandidateRecord,
    ItemOutcome,
    ItemResult,
    JobSnapshot,
    JobStatus,
    format_bill_id,
)
from .parser import parse_document
from .storage import ensure_legislative_session, update_job, upsert_bill
from .validator import validate

LOGGER = logging.getLogger(__name__)

# Statuses in which batch writes are still accepted.  A pause arriving
# mid-item lets that item finish; a stop does not.
WRITABLE_STATUSES = (JobStatus.RUNNING, JobStatus.PAUSED)

MAX_RECENT_FAILURES = 20

_COUNTER_COLUMNS = {
    ItemOutcome.CREATED: SyncJob.created,
    ItemOutcome.UPDATED: SyncJob.updated,
    ItemOutcome.SKIPPED_NOT_FOUND: SyncJob.skipped_not_found,
    ItemOutcome.ERROR: SyncJob.errors,
}


def _cursor(job: JobSnapshot) -> dict:
    """Column values pinning the cursor a write was computed from."""
    return {"current_type": job.current_type, "next_number": job.next_number}


@dataclass
class _Fetched:
    """Outcome of the network/parse half of one identifier."""

    bill_id: str
    outcome: ItemOutcome | None = None  # None → ready to upsert
    message: str = ""
    candidate: CandidateRecord | None = None
    content: str | None = None


class BatchProcessor:
    def __init__(
        self,
        session_factory: sessionmaker,
        source,
        settings: SyncSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = session_factory
        self.source = source
        self.settings = settings or load_settings()
        self._sleep = sleep
        self._clock = clock

    # ── Job reads / writes ──

    def _snapshot(self, job_id: str) -> JobSnapshot:
        with session_scope(self._factory) as session:
            row = session.get(SyncJob, job_id)
            if row is None:
                raise JobNotFound(job_id)
            return JobSnapshot.from_row(row)

    def _write(
        self, job_id: str, values: dict, expected: dict | None = None
    ) -> JobSnapshot | None:
        """CAS-write *values*; the fresh snapshot, or None if the job left
        RUNNING/PAUSED or no longer matches *expected*.
        """
        with session_scope(self._factory) as session:
            if not update_job(session, job_id, WRITABLE_STATUSES, values, expected):
                return None
            return JobSnapshot.from_row(session.get(SyncJob, job_id))

    # ── Cursor bookkeeping ──

    def _discover_bound(self, job: JobSnapshot, bill_type: str) -> int:
        """Highest number to attempt for *bill_type*, asked of the remote source."""
        bound = self.source.find_last_bill_number(bill_type)
        LOGGER.info("Job %s: %s bound resolved to %d", job.id, bill_type, bound)
        return bound

    def _settle_cursor(self, job: JobSnapshot, discover: bool = True) -> tuple[JobSnapshot, str]:
        """Move the cursor off exhausted bill types, completing the job when none remain.

        Returns the (possibly updated) job and a non-empty message when the
        batch must stop here.
        """
        while job.status is not JobStatus.COMPLETED:
            bill_type = job.current_type
            if bill_type is not None:
                if bill_type not in job.type_bounds:
                    if not discover:
                        return job, ""
                    try:
                        bound = self._discover_bound(job, bill_type)
                    except RemoteFetchError as exc:
                        LOGGER.warning(
                            "Job %s: cannot discover %s bound: %s", job.id, bill_type, exc
                        )
                        return job, f"Could not determine the last {bill_type} number: {exc}"
                    bounds = {**job.type_bounds, bill_type: bound}
                    written = self._write(job.id, {"type_bounds": bounds})
                    if written is None:
                        return self._snapshot(job.id), "Job is no longer running"
                    job = written
                if job.next_number <= job.type_bounds[bill_type]:
                    return job, ""
            written = self._write(job.id, self._next_type_values(job), _cursor(job))
            if written is None:
                return self._snapshot(job.id), "Job changed while this batch was running"
            job = written
        return job, ""

    def _next_type_values(self, job: JobSnapshot) -> dict:
        done = job.current_type
        completed = list(job.completed_types)
        if done is not None and done not in completed:
            completed.append(done)
        remaining = [t for t in job.bill_types if t not in completed]
        if remaining:
            nxt = remaining[0]
            LOGGER.info("Job %s: finished %s, moving to %s", job.id, done, nxt)
            return {
                "completed_types": completed,
                "current_type": nxt,
                "next_number": job.type_starts.get(nxt, 1),
            }
        LOGGER.info("Job %s: all bill types done, completing", job.id)
        now = utcnow()
        return {
            "completed_types": completed,
            "current_type": None,
            "status": JobStatus.COMPLETED,
            "completed_at": now,
            "last_activity_at": now,
            "active_slot": None,
        }

    # ── Per-identifier pipeline ──

    def _fetch(self, bill_type: str, number: int) -> _Fetched:
        """Fetch, parse and validate one identifier; per-item failures are captured."""
        bill_id = format_bill_id(bill_type, number)
        try:
            raw = self.source.fetch_history_document(bill_type, number)
        except RemoteNotFound:
            LOGGER.debug("%s not found on the remote source", bill_id)
            return _Fetched(bill_id, ItemOutcome.SKIPPED_NOT_FOUND, "not found")
        except RemoteFetchError as exc:
            LOGGER.warning("Fetch failed for %s: %s", bill_id, exc)
            return _Fetched(bill_id, ItemOutcome.ERROR, f"fetch: {exc}")

        try:
            candidate = parse_document(raw, bill_type, number)
        except ParseError as exc:
            LOGGER.warning("Parse failed for %s: %s", bill_id, exc)
            return _Fetched(bill_id, ItemOutcome.ERROR, f"parse: {exc}")

        violations = validate(candidate)
        if violations:
            LOGGER.warning("Validation failed for %s: %s", bill_id, "; ".join(violations))
            return _Fetched(bill_id, ItemOutcome.ERROR, "validation: " + "; ".join(violations))

        content = None
        if self.settings.fetch_full_text and candidate.text_url:
            content = self.source.fetch_full_text(candidate.text_url)
        return _Fetched(bill_id, candidate=candidate, content=content)

    def _commit_item(
        self,
        job: JobSnapshot,
        legislative_session_id: int,
        fetched: _Fetched,
    ) -> ItemResult | None:
        """Upsert (if any) and advance the cursor in one transaction.

        Returns None, with nothing written, if the job was stopped while the
        item was in flight or another batch already moved the cursor past it.
        """
        with session_scope(self._factory) as session:
            outcome = fetched.outcome
            if fetched.candidate is not None:
                legislative_session = session.get(LegislativeSession, legislative_session_id)
                outcome = upsert_bill(
                    session, fetched.candidate, legislative_session, fetched.content
                )

            counter = _COUNTER_COLUMNS[outcome]
            values = {
                "next_number": job.next_number + 1,
                SyncJob.processed: SyncJob.processed + 1,
                counter: counter + 1,
                "last_activity_at": utcnow(),
            }
            if outcome is ItemOutcome.ERROR:
                failure = {"bill_id": fetched.bill_id, "reason": fetched.message}
                failures = job.recent_failures + [failure]
                values["recent_failures"] = failures[-MAX_RECENT_FAILURES:]

            if not update_job(session, job.id, WRITABLE_STATUSES, values, _cursor(job)):
                session.rollback()
                return None
        return ItemResult(fetched.bill_id, outcome, fetched.message)

    # ── Entry point ──

    def process(self, job_id: str) -> BatchSummary:
        """Run one batch for *job_id*.

        A PAUSED or terminal job is reported as-is without doing any work.
        A PENDING job has not been started and raises ``InvalidTransition``.
        """
        t0 = self._clock()
        job = self._snapshot(job_id)
        if job.status is JobStatus.PENDING:
            raise InvalidTransition(job_id, job.status.value, "process")
        if job.status is not JobStatus.RUNNING:
            return BatchSummary(
                job=job,
                is_complete=job.status is JobStatus.COMPLETED,
                message=f"Job is {job.status.value}; nothing to do",
            )

        with session_scope(self._factory) as session:
            legislative_session_id = ensure_legislative_session(
                session, job.session_code, job.session_name
            ).id

        LOGGER.info(
            "Batch start: job %s at %s %d (batch size %d)",
            job.id,
            job.current_type,
            job.next_number,
            self.settings.batch_size,
        )
        items: list[ItemResult] = []
        message = ""
        while len(items) < self.settings.batch_size:
            job = self._snapshot(job_id)
            if job.status is not JobStatus.RUNNING:
                message = (
                    f"Job is {job.status.value}; "
                    f"stopping at {job.current_type} {job.next_number}"
                )
                break
            job, message = self._settle_cursor(job)
            if message or job.status is not JobStatus.RUNNING:
                break
            if items:
                if self._clock() - t0 >= self.settings.time_budget:
                    message = "Time budget reached"
                    break
                if self.settings.item_delay > 0:
                    self._sleep(self.settings.item_delay)

            fetched = self._fetch(job.current_type, job.next_number)
            result = self._commit_item(job, legislative_session_id, fetched)
            if result is None:
                job = self._snapshot(job_id)
                if job.status is JobStatus.RUNNING:
                    message = f"Cursor moved by another batch; {fetched.bill_id} was not recorded"
                else:
                    message = f"Job is {job.status.value}; {fetched.bill_id} was not recorded"
                break
            items.append(result)
        else:
            # Batch size used up: close out the type if its last number was just done.
            job, _ = self._settle_cursor(self._snapshot(job_id), discover=False)

        summary = BatchSummary(
            job=job,
            items=items,
            is_complete=job.status is JobStatus.COMPLETED,
            message=message or ("Job completed" if job.status is JobStatus.COMPLETED else ""),
            duration_s=self._clock() - t0,
        )
        LOGGER.info(
            "Batch done: job %s, %d processed (%d created, %d updated, %d not found, "
            "%d errors) in %.1fs; cursor %s %d, status %s",
            job.id,
            summary.processed,
            summary.created,
            summary.updated,
            summary.skipped_not_found,
            summary.errors,
            summary.duration_s,
            job.current_type,
            job.next_number,
            job.status.value,
        )
        return summary
