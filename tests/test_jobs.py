"""Tests for the sync job lifecycle controller."""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import make_history_xml
from texleg_sync.database import SyncJob, session_scope
from texleg_sync.errors import InvalidTransition, JobConflict, JobNotFound, SyncDisabled
from texleg_sync.jobs import SyncJobController
from texleg_sync.models import JobStatus
from texleg_sync.parser import parse_document
from texleg_sync.storage import ensure_legislative_session, upsert_bill


def _controller(session_factory, settings, source) -> SyncJobController:
    return SyncJobController(
        session_factory,
        settings=settings,
        source_factory=lambda: source,
        sleep=lambda _s: None,
    )


class TestCreate:
    def test_new_job_is_pending_at_start_of_space(self, controller) -> None:
        job = controller.create()
        assert job.status is JobStatus.PENDING
        assert job.bill_types == ["HB"]
        assert job.cursor == ("HB", 1)
        assert job.type_starts == {"HB": 1}
        assert job.processed == 0
        assert job.started_at is None

    def test_explicit_bill_types_normalized(self, controller) -> None:
        job = controller.create(bill_types=["sb", " hjr "])
        assert job.bill_types == ["SB", "HJR"]
        assert job.cursor == ("SB", 1)

    def test_empty_bill_types_rejected(self, controller) -> None:
        with pytest.raises(ValueError):
            controller.create(bill_types=[" "])

    def test_conflict_leaves_existing_job_unchanged(self, controller) -> None:
        first = controller.start(controller.create().id)
        with pytest.raises(JobConflict) as excinfo:
            controller.create()
        assert excinfo.value.active_job_id == first.id
        again = controller.get(first.id)
        assert again.status is JobStatus.RUNNING
        assert again.cursor == first.cursor
        assert len(controller.list_recent()) == 1

    def test_pending_job_also_blocks_create(self, controller) -> None:
        controller.create()
        with pytest.raises(JobConflict):
            controller.create()

    def test_terminal_job_frees_the_slot(self, controller) -> None:
        first = controller.create()
        controller.stop(first.id)
        second = controller.create()
        assert second.id != first.id
        assert [j.id for j in controller.list_recent()] == [second.id, first.id]

    def test_bounds_prefilled_from_settings(self, session_factory, settings, fake_source) -> None:
        controller = _controller(
            session_factory,
            replace(settings, bill_types=("HB", "SB"), max_bill_numbers={"SB": 12}),
            fake_source,
        )
        job = controller.create()
        assert job.type_bounds == {"SB": 12}

    def test_incremental_starts_after_highest_stored(self, controller, session_factory) -> None:
        with session_scope(session_factory) as session:
            leg = ensure_legislative_session(session, "89R", "89th Regular Session")
            for number in (4, 9):
                record = parse_document(make_history_xml("HB", number), "HB", number)
                upsert_bill(session, record, leg)
        job = controller.create(bill_types=["HB", "SB"], incremental=True)
        assert job.type_starts == {"HB": 10, "SB": 1}
        assert job.cursor == ("HB", 10)

    def test_disabled_sync_refuses(self, session_factory, settings, fake_source) -> None:
        disabled = replace(settings, sync_enabled=False)
        controller = _controller(session_factory, disabled, fake_source)
        with pytest.raises(SyncDisabled):
            controller.create()
        assert controller.list_recent() == []

    def test_active_slot_held_while_non_terminal(self, controller, session_factory) -> None:
        job = controller.create()
        with session_scope(session_factory) as session:
            assert session.get(SyncJob, job.id).active_slot == 1
        controller.stop(job.id)
        with session_scope(session_factory) as session:
            assert session.get(SyncJob, job.id).active_slot is None


class TestTransitions:
    def test_start_sets_running(self, controller) -> None:
        job = controller.start(controller.create().id)
        assert job.status is JobStatus.RUNNING
        assert job.started_at is not None

    def test_pause_and_resume_keep_started_at(self, controller) -> None:
        job = controller.start(controller.create().id)
        paused = controller.pause(job.id)
        assert paused.status is JobStatus.PAUSED
        assert paused.paused_at is not None
        resumed = controller.resume(job.id)
        assert resumed.status is JobStatus.RUNNING
        assert resumed.paused_at is None
        assert resumed.started_at == job.started_at

    @pytest.mark.parametrize("before", ["create", "start", "pause"])
    def test_stop_from_any_non_terminal(self, controller, before: str) -> None:
        job = controller.create()
        if before in ("start", "pause"):
            controller.start(job.id)
        if before == "pause":
            controller.pause(job.id)
        stopped = controller.stop(job.id)
        assert stopped.status is JobStatus.STOPPED
        assert stopped.completed_at is not None

    def test_pause_requires_running(self, controller) -> None:
        job = controller.create()
        with pytest.raises(InvalidTransition) as excinfo:
            controller.pause(job.id)
        assert excinfo.value.current == "PENDING"
        assert excinfo.value.target == "PAUSED"

    def test_start_twice_is_invalid(self, running_job, controller) -> None:
        with pytest.raises(InvalidTransition):
            controller.start(running_job.id)

    @pytest.mark.parametrize("operation", ["start", "resume", "pause", "stop"])
    def test_terminal_job_rejects_everything(self, controller, operation: str) -> None:
        job = controller.create()
        controller.stop(job.id)
        with pytest.raises(InvalidTransition):
            getattr(controller, operation)(job.id)
        assert controller.get(job.id).status is JobStatus.STOPPED

    @pytest.mark.parametrize("operation", ["get", "start", "resume", "pause", "stop", "process"])
    def test_unknown_job(self, controller, operation: str) -> None:
        with pytest.raises(JobNotFound):
            getattr(controller, operation)("no-such-job")


class TestReads:
    def test_get_active_only_running_or_paused(self, controller) -> None:
        job = controller.create()
        assert controller.get_active() is None
        controller.start(job.id)
        assert controller.get_active().id == job.id
        controller.pause(job.id)
        assert controller.get_active().status is JobStatus.PAUSED
        controller.stop(job.id)
        assert controller.get_active() is None

    def test_list_recent_limit(self, controller) -> None:
        for _ in range(3):
            controller.stop(controller.create().id)
        assert len(controller.list_recent(limit=2)) == 2

    def test_snapshot_to_dict(self, running_job) -> None:
        d = running_job.to_dict()
        assert d["status"] == "RUNNING"
        assert d["cursor"] == {"bill_type": "HB", "next_number": 1}
        assert d["counters"] == {
            "processed": 0,
            "created": 0,
            "updated": 0,
            "skipped_not_found": 0,
            "errors": 0,
        }
