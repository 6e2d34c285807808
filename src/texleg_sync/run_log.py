"""Run log for sync batches.

Append-only JSONL store: one line per ``process`` call with the job id,
start/end, duration, outcome counts, the cursor after the batch, and status.
Read back by ``scripts/sync.py logs``.

Usage:
    from texleg_sync.run_log import RunLogger, get_log_path

    log = RunLogger("sync_batch", job_id=job.id, log_path=get_log_path())
    log.start()
    summary = processor.process(job.id)
    log.record_batch(summary)
    log.end(status="ok")
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .models import BatchSummary

LOGGER = logging.getLogger(__name__)

# Append-only; one JSON object per line.
DEFAULT_LOG_PATH = Path(".run_log.jsonl")


@dataclass
class RunRecord:
    """One line in the run log."""

    run_id: str
    task: str
    started_at: str  # ISO
    job_id: str | None = None
    ended_at: str | None = None
    duration_s: float | None = None
    status: str = "running"  # ok | error | running
    counts: dict = field(default_factory=dict)  # {processed, created, updated, ...}
    cursor: dict = field(default_factory=dict)  # {bill_type, next_number}
    job_status: str | None = None
    error: str | None = None

    def to_json_line(self) -> str:
        return json.dumps(
            {
                "run_id": self.run_id,
                "task": self.task,
                "job_id": self.job_id,
                "started_at": self.started_at,
                "ended_at": self.ended_at,
                "duration_s": self.duration_s,
                "status": self.status,
                "counts": self.counts,
                "cursor": self.cursor,
                "job_status": self.job_status,
                "error": self.error,
            }
        )

    @classmethod
    def from_json_line(cls, line: str) -> RunRecord | None:
        line = line.strip()
        if not line:
            return None
        try:
            d = json.loads(line)
            return cls(
                run_id=d.get("run_id", ""),
                task=d.get("task", ""),
                started_at=d.get("started_at", ""),
                job_id=d.get("job_id"),
                ended_at=d.get("ended_at"),
                duration_s=d.get("duration_s"),
                status=d.get("status", "ok"),
                counts=d.get("counts", {}),
                cursor=d.get("cursor", {}),
                job_status=d.get("job_status"),
                error=d.get("error"),
            )
        except (json.JSONDecodeError, TypeError, AttributeError):
            return None


class RunLogger:
    """Records a single run.  With ``log_path=None`` nothing is written."""

    def __init__(
        self,
        task: str,
        *,
        job_id: str | None = None,
        log_path: Path | None = None,
    ):
        self.task = task
        self.job_id = job_id
        self.log_path = log_path
        self.run_id = str(uuid.uuid4())[:8]
        self._started_at: str | None = None
        self._start_time: float | None = None
        self._counts: dict = {}
        self._cursor: dict = {}
        self._job_status: str | None = None

    def start(self) -> None:
        self._started_at = datetime.now(timezone.utc).isoformat()
        self._start_time = time.perf_counter()
        self._counts = {}
        self._cursor = {}
        self._job_status = None

    def record_batch(self, summary: BatchSummary) -> None:
        self._counts = {
            "processed": summary.processed,
            "created": summary.created,
            "updated": summary.updated,
            "skipped_not_found": summary.skipped_not_found,
            "errors": summary.errors,
        }
        self._cursor = {
            "bill_type": summary.job.current_type,
            "next_number": summary.job.next_number,
        }
        self._job_status = summary.job.status.value

    def end(self, status: str = "ok", error: str | None = None) -> None:
        if self._start_time is None or self.log_path is None:
            return
        ended_at = datetime.now(timezone.utc).isoformat()
        record = RunRecord(
            run_id=self.run_id,
            task=self.task,
            job_id=self.job_id,
            started_at=self._started_at or ended_at,
            ended_at=ended_at,
            duration_s=round(time.perf_counter() - self._start_time, 2),
            status=status,
            counts=self._counts,
            cursor=self._cursor,
            job_status=self._job_status,
            error=error,
        )
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(record.to_json_line() + "\n")
        except OSError as e:
            LOGGER.warning("Run log append failed: %s", e)


def load_recent_runs(
    n: int = 100,
    *,
    job_id: str | None = None,
    log_path: Path | None = None,
) -> list[RunRecord]:
    """Load the last n runs (newest first). Optionally filter by job."""
    path = log_path or get_log_path()
    if not path.exists():
        return []
    records: list[RunRecord] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            rec = RunRecord.from_json_line(line)
            if rec is None:
                continue
            if job_id is None or rec.job_id == job_id:
                records.append(rec)
    return records[::-1][:n]


def get_log_path() -> Path:
    """Path to the run log file (for the CLI and the HTTP app)."""
    return Path(os.environ.get("TEXLEG_RUN_LOG", str(DEFAULT_LOG_PATH)))
