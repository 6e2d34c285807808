from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


NON_TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED}
)
TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.STOPPED, JobStatus.COMPLETED, JobStatus.ERROR}
)


class ItemOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED_NOT_FOUND = "skipped_not_found"
    ERROR = "error"


@dataclass
class ActionEntry:
    date: str  # e.g. "1/22/2025"
    description: str  # e.g. "Referred to Appropriations"
    action_number: str = ""  # e.g. "H010"; absent in older documents


@dataclass
class CommitteeReferral:
    chamber: str  # "house" or "senate"
    name: str  # e.g. "Appropriations"
    status: str  # e.g. "In committee", "Reported"


@dataclass
class CandidateRecord:
    """Parser output for one remote bill history document (not yet validated)."""

    bill_id: str  # e.g. "HB 1" -- natural key
    bill_type: str  # e.g. "HB"
    bill_number: int  # e.g. 1
    description: str
    status: str = "Filed"
    last_action: str = ""
    last_action_date: date | None = None
    last_update: datetime | None = None  # lastUpdate attribute on the remote document
    text_url: str | None = None
    # Role lists are semantically distinct; never merge them.
    authors: list[str] = field(default_factory=list)
    coauthors: list[str] = field(default_factory=list)
    sponsors: list[str] = field(default_factory=list)
    cosponsors: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)
    committees: list[CommitteeReferral] = field(default_factory=list)
    actions: list[ActionEntry] = field(default_factory=list)

    @property
    def filename(self) -> str:
        """Legacy text filename, e.g. ``hb1.txt``."""
        return f"{self.bill_type.lower()}{self.bill_number}.txt"

    def primary_committee(self) -> CommitteeReferral | None:
        """The referral a reader cares about: one still in committee, else the first."""
        if not self.committees:
            return None
        for committee in self.committees:
            if "in committee" in committee.status.lower():
                return committee
        return self.committees[0]


def format_bill_id(bill_type: str, bill_number: int) -> str:
    return f"{bill_type.upper()} {bill_number}"


# ── Job views ────────────────────────────────────────────────────────────────


@dataclass
class JobSnapshot:
    """Read-only view of a sync job, returned by every trigger operation."""

    id: str
    status: JobStatus
    session_code: str
    session_name: str
    bill_types: list[str]
    current_type: str | None
    next_number: int
    type_starts: dict[str, int]
    type_bounds: dict[str, int]
    completed_types: list[str]
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped_not_found: int = 0
    errors: int = 0
    recent_failures: list[dict] = field(default_factory=list)
    last_error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    last_activity_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> JobSnapshot:
        """Build a snapshot from a ``SyncJob`` ORM row."""
        return cls(
            id=row.id,
            status=JobStatus(row.status),
            session_code=row.session_code,
            session_name=row.session_name,
            bill_types=list(row.bill_types or []),
            current_type=row.current_type,
            next_number=row.next_number,
            type_starts=dict(row.type_starts or {}),
            type_bounds=dict(row.type_bounds or {}),
            completed_types=list(row.completed_types or []),
            processed=row.processed,
            created=row.created,
            updated=row.updated,
            skipped_not_found=row.skipped_not_found,
            errors=row.errors,
            recent_failures=list(row.recent_failures or []),
            last_error=row.last_error,
            created_at=row.created_at,
            started_at=row.started_at,
            paused_at=row.paused_at,
            completed_at=row.completed_at,
            last_activity_at=row.last_activity_at,
        )

    @property
    def cursor(self) -> tuple[str | None, int]:
        return (self.current_type, self.next_number)

    def to_dict(self) -> dict:
        def _ts(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "status": self.status.value,
            "session_code": self.session_code,
            "session_name": self.session_name,
            "bill_types": self.bill_types,
            "cursor": {"bill_type": self.current_type, "next_number": self.next_number},
            "type_starts": self.type_starts,
            "type_bounds": self.type_bounds,
            "completed_types": self.completed_types,
            "counters": {
                "processed": self.processed,
                "created": self.created,
                "updated": self.updated,
                "skipped_not_found": self.skipped_not_found,
                "errors": self.errors,
            },
            "recent_failures": self.recent_failures,
            "last_error": self.last_error,
            "created_at": _ts(self.created_at),
            "started_at": _ts(self.started_at),
            "paused_at": _ts(self.paused_at),
            "completed_at": _ts(self.completed_at),
            "last_activity_at": _ts(self.last_activity_at),
        }


@dataclass
class ItemResult:
    bill_id: str
    outcome: ItemOutcome
    message: str = ""


@dataclass
class BatchSummary:
    """Result of one ``process`` call."""

    job: JobSnapshot
    items: list[ItemResult] = field(default_factory=list)
    is_complete: bool = False
    message: str = ""
    duration_s: float = 0.0

    def count(self, outcome: ItemOutcome) -> int:
        return sum(1 for item in self.items if item.outcome is outcome)

    @property
    def processed(self) -> int:
        return len(self.items)

    @property
    def created(self) -> int:
        return self.count(ItemOutcome.CREATED)

    @property
    def updated(self) -> int:
        return self.count(ItemOutcome.UPDATED)

    @property
    def skipped_not_found(self) -> int:
        return self.count(ItemOutcome.SKIPPED_NOT_FOUND)

    @property
    def errors(self) -> int:
        return self.count(ItemOutcome.ERROR)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "skipped_not_found": self.skipped_not_found,
            "errors": self.errors,
            "items": [
                {"bill_id": i.bill_id, "outcome": i.outcome.value, "message": i.message}
                for i in self.items
            ],
            "is_complete": self.is_complete,
            "message": self.message,
            "duration_s": round(self.duration_s, 2),
            "job": self.job.to_dict(),
        }
