"""Tests for the single-slot job dispatcher."""

import asyncio
from datetime import datetime, timezone

import pytest

from app.engines.jobs.dispatcher import JobDispatcher, oldest_pending
from app.engines.jobs.models import Job, JobStatus

from conftest import ScriptedTaskBody


class RecordingMachine:
    """Stand-in state machine that completes jobs and tracks overlap."""

    def __init__(self, repository, fail_for=(), on_run=None):
        self.repository = repository
        self.fail_for = set(fail_for)
        self.on_run = on_run
        self.active_lanes = 0
        self.runs = []
        self.concurrent = 0
        self.max_concurrent = 0

    async def run(self, job_id):
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        self.runs.append(job_id)
        try:
            await asyncio.sleep(0)
            if self.on_run is not None:
                await self.on_run(job_id)
            if job_id in self.fail_for:
                raise RuntimeError("boom")
            await self.repository.update(job_id, status=JobStatus.COMPLETE)
        finally:
            self.concurrent -= 1


def test_oldest_pending_ignores_other_statuses():
    old = Job(id="00000000-0000-0000-0000-000000000001", status=JobStatus.FAILED,
              created_at=datetime(2023, 1, 1, tzinfo=timezone.utc))
    mid = Job(id="00000000-0000-0000-0000-000000000002", status=JobStatus.PENDING,
              created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    new = Job(id="00000000-0000-0000-0000-000000000003", status=JobStatus.PENDING,
              created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))

    assert oldest_pending([new, old, mid]) is mid
    assert oldest_pending([old]) is None


class TestRecovery:
    @pytest.mark.asyncio
    async def test_running_jobs_become_interrupted(self, repository):
        running = await repository.add_job(["A"], status=JobStatus.RUNNING)
        cancelled = await repository.add_job(["B"], status=JobStatus.CANCELLED)
        dispatcher = JobDispatcher(repository, RecordingMachine(repository), rescan_delay=0)

        recovered = await dispatcher.recover_interrupted()

        assert recovered == 1
        assert (await repository.get(running.id)).status == JobStatus.INTERRUPTED
        assert (await repository.get(cancelled.id)).status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_start_recovers_then_drains_pending(self, repository):
        running = await repository.add_job(["A"], status=JobStatus.RUNNING)
        pending = await repository.add_job(["B"])
        machine = RecordingMachine(repository)
        dispatcher = JobDispatcher(repository, machine, rescan_delay=0)

        recovered = await dispatcher.start()
        await dispatcher.wait_idle()

        assert recovered == 1
        assert machine.runs == [pending.id]
        assert (await repository.get(running.id)).status == JobStatus.INTERRUPTED
        assert (await repository.get(pending.id)).status == JobStatus.COMPLETE


class TestDraining:
    @pytest.mark.asyncio
    async def test_jobs_run_oldest_first_one_at_a_time(self, repository):
        newer = await repository.add_job(["B"], created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        older = await repository.add_job(["A"], created_at=datetime(2023, 1, 1, tzinfo=timezone.utc))
        machine = RecordingMachine(repository)
        dispatcher = JobDispatcher(repository, machine, rescan_delay=0)

        assert dispatcher.kick() is True
        assert dispatcher.kick() is False
        await dispatcher.wait_idle()

        assert machine.runs == [older.id, newer.id]
        assert machine.max_concurrent == 1
        assert dispatcher.is_busy is False

    @pytest.mark.asyncio
    async def test_job_submitted_while_busy_is_picked_up(self, repository):
        first = await repository.add_job(["A"])
        added = []

        async def submit_more(job_id):
            if not added:
                job = await repository.add_job(["B"])
                added.append(job.id)
                assert dispatcher.kick() is False

        machine = RecordingMachine(repository, on_run=submit_more)
        dispatcher = JobDispatcher(repository, machine, rescan_delay=0)

        dispatcher.kick()
        await dispatcher.wait_idle()

        assert machine.runs == [first.id, added[0]]

    @pytest.mark.asyncio
    async def test_failing_job_is_marked_failed_and_loop_continues(self, repository):
        bad = await repository.add_job(["A"])
        good = await repository.add_job(["B"])
        machine = RecordingMachine(repository, fail_for=[bad.id])
        dispatcher = JobDispatcher(repository, machine, rescan_delay=0)

        dispatcher.kick()
        await dispatcher.wait_idle()

        failed = await repository.get(bad.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error_message == "boom"
        assert (await repository.get(good.id)).status == JobStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_status_reports_current_job(self, repository):
        job = await repository.add_job(["A"])
        seen = []

        async def capture(job_id):
            seen.append(dispatcher.status)

        machine = RecordingMachine(repository, on_run=capture)
        dispatcher = JobDispatcher(repository, machine, rescan_delay=0)

        dispatcher.kick()
        await dispatcher.wait_idle()

        assert seen == [{"running": True, "current_job_id": str(job.id), "active_workers": 0}]
        assert dispatcher.status == {"running": False, "current_job_id": None, "active_workers": 0}

    @pytest.mark.asyncio
    async def test_stop_cancels_the_loop(self, repository):
        await repository.add_job(["A"])
        release = asyncio.Event()

        async def block(job_id):
            await release.wait()

        dispatcher = JobDispatcher(repository, RecordingMachine(repository, on_run=block), rescan_delay=0)
        dispatcher.kick()
        await asyncio.sleep(0.01)
        assert dispatcher.is_busy is True

        await dispatcher.stop()

        assert dispatcher.is_busy is False
        assert dispatcher.current_job_id is None


class TestWithStateMachine:
    @pytest.mark.asyncio
    async def test_backlog_drains_through_real_machine(self, repository, make_machine):
        jobs = [await repository.add_job([f"C{i}"]) for i in range(3)]
        body = ScriptedTaskBody()
        dispatcher = JobDispatcher(repository, make_machine(body), rescan_delay=0)

        dispatcher.kick()
        await dispatcher.wait_idle()

        assert [name for name, _ in body.primary_calls] == ["C0", "C1", "C2"]
        for job in jobs:
            assert (await repository.get(job.id)).status == JobStatus.COMPLETE
