"""Persistence helpers: idempotent bill upserts and compare-and-set job updates.

Callers own the transaction: these helpers flush but never commit, so the
batch processor can commit a bill together with the cursor advance.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict

from sqlalchemy import func
from sqlalchemy.orm import Session

from .database import Bill, LegislativeSession, SyncJob, utcnow
from .models import CandidateRecord, ItemOutcome, JobStatus

LOGGER = logging.getLogger(__name__)


def ensure_legislative_session(session: Session, code: str, name: str) -> LegislativeSession:
    """Get-or-create the session row for *code*."""
    row = session.query(LegislativeSession).filter(LegislativeSession.code == code).first()
    if row is None:
        row = LegislativeSession(code=code, name=name, is_active=True)
        session.add(row)
        session.flush()
        LOGGER.info("Created legislative session %s (%s)", code, name)
    return row


def _bill_values(candidate: CandidateRecord) -> dict:
    """Mutable column values derived from a candidate.

    Excludes content, timestamps and the owning session, which is fixed at
    creation.
    """
    primary = candidate.primary_committee()
    return {
        "bill_type": candidate.bill_type,
        "bill_number": candidate.bill_number,
        "filename": candidate.filename,
        "description": candidate.description,
        "authors": list(candidate.authors),
        "coauthors": list(candidate.coauthors),
        "sponsors": list(candidate.sponsors),
        "cosponsors": list(candidate.cosponsors),
        "subjects": list(candidate.subjects),
        "committees": [asdict(c) for c in candidate.committees],
        "actions": [asdict(a) for a in candidate.actions],
        "status": candidate.status,
        "last_action": candidate.last_action,
        "last_action_date": candidate.last_action_date,
        "last_update_remote": candidate.last_update,
        "text_url": candidate.text_url,
        "committee_name": primary.name if primary else None,
        "committee_status": primary.status if primary else None,
    }


def upsert_bill(
    session: Session,
    candidate: CandidateRecord,
    legislative_session: LegislativeSession,
    content: str | None = None,
) -> ItemOutcome:
    """Create or update the stored bill keyed by ``candidate.bill_id``.

    An existing bill keeps its row id, owning session and ``created_at``.
    Columns are only written (and ``updated_at`` only bumped) when a value
    actually differs, so repeating an identical upsert changes nothing but
    still reports ``updated``.  Stored content is never replaced by ``None``.
    """
    values = _bill_values(candidate)
    bill = session.query(Bill).filter(Bill.bill_id == candidate.bill_id).first()

    if bill is None:
        now = utcnow()
        bill = Bill(
            bill_id=candidate.bill_id,
            session_id=legislative_session.id,
            content=content,
            created_at=now,
            updated_at=now,
            **values,
        )
        session.add(bill)
        session.flush()
        LOGGER.debug("Created %s", candidate.bill_id)
        return ItemOutcome.CREATED

    changed: list[str] = []
    for column, value in values.items():
        if getattr(bill, column) != value:
            setattr(bill, column, value)
            changed.append(column)
    if content is not None and bill.content != content:
        bill.content = content
        changed.append("content")

    if changed:
        bill.updated_at = utcnow()
        session.flush()
        LOGGER.debug("Updated %s: %s", candidate.bill_id, ", ".join(changed))
    return ItemOutcome.UPDATED


def highest_bill_number(session: Session, bill_type: str, session_code: str | None = None) -> int:
    """Highest stored number for *bill_type* (optionally within one session), or 0."""
    query = session.query(func.max(Bill.bill_number)).filter(Bill.bill_type == bill_type)
    if session_code is not None:
        query = query.join(LegislativeSession).filter(LegislativeSession.code == session_code)
    return query.scalar() or 0


def update_job(
    session: Session,
    job_id: str,
    allowed: Iterable[JobStatus],
    values: dict,
    expected: dict | None = None,
) -> bool:
    """Compare-and-set update of one sync job.

    Writes *values* only if the job's status is still one of *allowed* and
    every column named in *expected* still holds the given value (e.g. the
    cursor the caller read).  Returns False when the row was not touched
    (the job moved on underneath us, or does not exist).
    """
    query = session.query(SyncJob).filter(
        SyncJob.id == job_id, SyncJob.status.in_(list(allowed))
    )
    for column, value in (expected or {}).items():
        query = query.filter(getattr(SyncJob, column) == value)
    count = query.update(values, synchronize_session=False)
    return count == 1
