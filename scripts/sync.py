#!/usr/bin/env python3
"""Operator CLI for the bill sync engine.

Every command maps to one controller operation; ``process`` runs exactly one
batch, so it can be called from cron the same way the HTTP trigger is.

Usage::

    python scripts/sync.py create                 # new PENDING job (HB, SB)
    python scripts/sync.py create --types HB --incremental
    python scripts/sync.py start JOB_ID
    python scripts/sync.py process JOB_ID         # one batch
    python scripts/sync.py pause JOB_ID
    python scripts/sync.py resume JOB_ID
    python scripts/sync.py stop JOB_ID
    python scripts/sync.py status [JOB_ID]        # active job, or recent jobs
    python scripts/sync.py run --max-batches 10   # create/resume + loop batches
    python scripts/sync.py logs --tail 20         # recent batch runs
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

# Ensure the project is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from texleg_sync.config import load_settings  # noqa: E402
from texleg_sync.database import get_session_factory, init_database  # noqa: E402
from texleg_sync.errors import SyncError, SystemicFailure  # noqa: E402
from texleg_sync.jobs import SyncJobController  # noqa: E402
from texleg_sync.models import BatchSummary, JobSnapshot, JobStatus  # noqa: E402
from texleg_sync.run_log import get_log_path, load_recent_runs  # noqa: E402

console = Console()

_STATUS_STYLE = {
    JobStatus.PENDING: "cyan",
    JobStatus.RUNNING: "green",
    JobStatus.PAUSED: "yellow",
    JobStatus.STOPPED: "dim",
    JobStatus.COMPLETED: "bold green",
    JobStatus.ERROR: "bold red",
}


def _ts(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "—"


def _print_job(job: JobSnapshot) -> None:
    style = _STATUS_STYLE.get(job.status, "")
    table = Table(title=f"Sync job {job.id}", show_lines=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", f"[{style}]{job.status.value}[/]")
    table.add_row("Session", f"{job.session_code} ({job.session_name})")
    table.add_row("Bill types", ", ".join(job.bill_types))
    table.add_row("Cursor", f"{job.current_type or '—'} {job.next_number}")
    table.add_row(
        "Bounds",
        ", ".join(f"{t}≤{n}" for t, n in job.type_bounds.items()) or "not yet resolved",
    )
    table.add_row("Completed types", ", ".join(job.completed_types) or "—")
    table.add_row(
        "Counters",
        f"processed {job.processed}  created {job.created}  updated {job.updated}  "
        f"not found {job.skipped_not_found}  errors {job.errors}",
    )
    table.add_row("Created", _ts(job.created_at))
    table.add_row("Started", _ts(job.started_at))
    table.add_row("Last activity", _ts(job.last_activity_at))
    table.add_row("Completed", _ts(job.completed_at))
    if job.last_error:
        table.add_row("Last error", f"[red]{job.last_error}[/]")
    console.print(table)

    if job.recent_failures:
        failures = Table(title="Recent failures")
        failures.add_column("Bill")
        failures.add_column("Reason")
        for failure in job.recent_failures[-10:]:
            failures.add_row(failure.get("bill_id", "?"), failure.get("reason", ""))
        console.print(failures)


def _print_jobs(jobs: list[JobSnapshot]) -> None:
    table = Table(title="Recent sync jobs")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Cursor")
    table.add_column("Processed", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Created")
    for job in jobs:
        style = _STATUS_STYLE.get(job.status, "")
        table.add_row(
            job.id,
            f"[{style}]{job.status.value}[/]",
            f"{job.current_type or '—'} {job.next_number}",
            str(job.processed),
            str(job.errors),
            _ts(job.created_at),
        )
    console.print(table)


def _print_summary(summary: BatchSummary) -> None:
    job = summary.job
    console.print(
        f"  batch: {summary.processed} processed  "
        f"[green]{summary.created} created[/]  {summary.updated} updated  "
        f"[dim]{summary.skipped_not_found} not found[/]  "
        f"[red]{summary.errors} errors[/]  ({summary.duration_s:.1f}s)  "
        f"→ {job.current_type or '—'} {job.next_number} [{job.status.value}]"
    )
    if summary.message:
        console.print(f"  [dim]{summary.message}[/]")


def _cmd_logs(args: argparse.Namespace) -> int:
    path = get_log_path()
    runs = load_recent_runs(n=args.tail, job_id=args.job, log_path=path)
    if not runs:
        console.print(f"[dim]No batch runs logged in {path}[/]")
        return 0
    table = Table(title=f"Batch runs ({path})")
    table.add_column("Started")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Not found", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Cursor")
    table.add_column("Duration", justify="right")
    for r in runs:
        counts = r.counts or {}
        cursor = r.cursor or {}
        status = "[green]ok[/]" if r.status == "ok" else f"[red]{r.status}[/]"
        table.add_row(
            r.started_at[:19],
            (r.job_id or "")[:8],
            status,
            str(counts.get("processed", "")),
            str(counts.get("created", "")),
            str(counts.get("updated", "")),
            str(counts.get("skipped_not_found", "")),
            str(counts.get("errors", "")),
            f"{cursor.get('bill_type') or '—'} {cursor.get('next_number', '')}",
            f"{r.duration_s:.1f}s" if r.duration_s is not None else "—",
        )
    console.print(table)
    return 0


def _cmd_run(controller: SyncJobController, args: argparse.Namespace) -> int:
    """Create or pick up the active job, then run batches until done or --max-batches."""
    job = controller.get_active()
    if job is None:
        job = controller.create(bill_types=args.types, incremental=args.incremental)
        console.print(f"Created job [bold]{job.id}[/]")
    if job.status in (JobStatus.PENDING, JobStatus.PAUSED):
        job = controller.start(job.id)
    console.print(
        f"Running job [bold]{job.id}[/] from {job.current_type} {job.next_number} "
        f"(up to {args.max_batches} batches)"
    )
    for i in range(1, args.max_batches + 1):
        console.print(f"[bold]Batch {i}/{args.max_batches}[/]")
        summary = controller.process(job.id)
        _print_summary(summary)
        if summary.job.status is not JobStatus.RUNNING:
            break
    _print_job(controller.get(job.id))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Texas Legislature bill sync: create and drive sync jobs.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _types(value: str) -> list[str]:
        return [t.strip().upper() for t in value.split(",") if t.strip()]

    create = sub.add_parser("create", help="Create a PENDING job.")
    create.add_argument("--types", type=_types, default=None, help="e.g. HB,SB")
    create.add_argument(
        "--incremental",
        action="store_true",
        help="Start each bill type after the highest number already stored.",
    )

    for name, help_text in (
        ("start", "PENDING/PAUSED → RUNNING."),
        ("resume", "PAUSED → RUNNING."),
        ("pause", "RUNNING → PAUSED."),
        ("stop", "Stop a job for good."),
        ("process", "Run one batch."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("job_id")

    status = sub.add_parser("status", help="Show one job, the active job, or recent jobs.")
    status.add_argument("job_id", nargs="?")
    status.add_argument("--limit", type=int, default=10)

    run = sub.add_parser("run", help="Create/resume the active job and run batches.")
    run.add_argument("--max-batches", type=int, default=10)
    run.add_argument("--types", type=_types, default=None)
    run.add_argument("--incremental", action="store_true")

    logs = sub.add_parser("logs", help="Recent batch runs from the run log.")
    logs.add_argument("--tail", "-n", type=int, default=20)
    logs.add_argument("--job", default=None, help="Filter by job id.")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "logs":
        return _cmd_logs(args)

    settings = load_settings()
    engine = init_database(settings.database_url)
    controller = SyncJobController(
        get_session_factory(engine),
        settings=settings,
        run_log_path=get_log_path(),
    )

    try:
        if args.command == "create":
            job = controller.create(bill_types=args.types, incremental=args.incremental)
            _print_job(job)
        elif args.command in ("start", "resume", "pause", "stop"):
            job = getattr(controller, args.command)(args.job_id)
            _print_job(job)
        elif args.command == "process":
            summary = controller.process(args.job_id)
            _print_summary(summary)
        elif args.command == "status":
            if args.job_id:
                _print_job(controller.get(args.job_id))
            else:
                active = controller.get_active()
                if active is not None:
                    _print_job(active)
                else:
                    _print_jobs(controller.list_recent(args.limit))
        elif args.command == "run":
            return _cmd_run(controller, args)
    except SystemicFailure as exc:
        console.print(f"[bold red]Job {exc.job_id} failed:[/] {exc.message}")
        return 2
    except SyncError as exc:
        console.print(f"[red]{exc}[/]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
