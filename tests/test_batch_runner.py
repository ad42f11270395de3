"""
Tests for the batch job runner: single-flight, progress, terminal states and
crash recovery.
"""

import asyncio
from typing import Any, List, Optional

import pytest

from api.database import BatchRunsRepo
from campaigns.core.batch_runner import (
    BatchJob,
    BatchJobRunner,
    CallbackProgressSink,
    ItemOutcome,
    ResolvedTarget,
    RunStatus,
)
from core.errors import (
    ConflictError,
    FatalResolutionError,
    NotFoundError,
    RecoverablePerItemError,
    RunAbortedError,
)


pytestmark = pytest.mark.persistence

KIND = "test_kind"


class ScriptedJob(BatchJob):
    """Job whose per-item behaviour is scripted: an ItemOutcome or an exception."""

    def __init__(self, script: List[Any], resolve_error: Optional[Exception] = None,
                 resolve_gate: Optional[asyncio.Event] = None,
                 item_gate: Optional[asyncio.Event] = None, events: Optional[list] = None):
        self.script = script
        self.resolve_error = resolve_error
        self.resolve_gate = resolve_gate
        self.item_gate = item_gate
        self.events = events if events is not None else []

    async def resolve(self) -> ResolvedTarget:
        if self.resolve_gate is not None:
            await self.resolve_gate.wait()
        if self.resolve_error is not None:
            raise self.resolve_error
        return ResolvedTarget(id="target-1", name="Target One")

    async def list_items(self, target):
        return list(range(len(self.script)))

    def describe_item(self, item):
        return f"item-{item}"

    async def process_item(self, target, item):
        if self.item_gate is not None:
            await self.item_gate.wait()
        self.events.append(("process", item))
        step = self.script[item]
        if isinstance(step, Exception):
            raise step
        return step

    async def after_item(self, item, outcome):
        self.events.append(("after", item))


def make_runner(db_path, job_factory):
    runner = BatchJobRunner(BatchRunsRepo(db_path))
    runner.register(KIND, job_factory)
    return runner


async def wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestResolution:

    @pytest.mark.asyncio
    async def test_unknown_kind(self, db_path):
        runner = BatchJobRunner(BatchRunsRepo(db_path))
        with pytest.raises(NotFoundError):
            await runner.run("missing")

    @pytest.mark.asyncio
    async def test_not_found_leaves_no_row(self, db_path):
        runner = make_runner(db_path, lambda cfg: ScriptedJob(
            [ItemOutcome.PROCESSED], resolve_error=NotFoundError('Pipeline "X" not found')))

        with pytest.raises(NotFoundError):
            await runner.run(KIND)

        assert await runner.list_recent() == []
        assert not runner.is_running(KIND)
        assert runner.get_current_run_id(KIND) is None

    @pytest.mark.asyncio
    async def test_fatal_resolution_leaves_no_row(self, db_path):
        runner = make_runner(db_path, lambda cfg: ScriptedJob(
            [], resolve_error=FatalResolutionError("field could not be created")))

        with pytest.raises(FatalResolutionError):
            await runner.run(KIND)

        assert await runner.list_recent() == []
        assert not runner.is_running(KIND)


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_second_run_conflicts(self, db_path):
        gate = asyncio.Event()
        runner = make_runner(db_path, lambda cfg: ScriptedJob([ItemOutcome.PROCESSED], item_gate=gate))

        first = asyncio.create_task(runner.run(KIND))
        await wait_until(lambda: runner.is_running(KIND))
        await asyncio.sleep(0.05)

        with pytest.raises(ConflictError) as exc:
            await runner.run(KIND)
        assert "already running" in exc.value.message

        gate.set()
        result = await first

        assert result.status == RunStatus.COMPLETED
        assert len(await runner.list_recent()) == 1
        assert not runner.is_running(KIND)

    @pytest.mark.asyncio
    async def test_in_flight_reporting_during_resolution(self, db_path):
        gate = asyncio.Event()
        runner = make_runner(db_path, lambda cfg: ScriptedJob([], resolve_gate=gate))

        assert not runner.is_running(KIND)
        task = asyncio.create_task(runner.run(KIND))
        await wait_until(lambda: runner.is_running(KIND))

        run_id = runner.get_current_run_id(KIND)
        assert run_id is not None
        assert await runner.get_running(KIND) is None  # No row before resolution

        gate.set()
        result = await task

        assert result.run_id == run_id
        assert not runner.is_running(KIND)
        assert runner.get_current_run_id(KIND) is None

    @pytest.mark.asyncio
    async def test_run_id_matches_row_while_processing(self, db_path):
        gate = asyncio.Event()
        runner = make_runner(db_path, lambda cfg: ScriptedJob([ItemOutcome.PROCESSED], item_gate=gate))

        task = asyncio.create_task(runner.run(KIND))
        await wait_until(lambda: runner.is_running(KIND))
        for _ in range(200):
            row = await runner.get_running(KIND)
            if row:
                break
            await asyncio.sleep(0.005)

        assert row["id"] == runner.get_current_run_id(KIND)
        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self, db_path):
        gate = asyncio.Event()
        runner = make_runner(db_path, lambda cfg: ScriptedJob([ItemOutcome.PROCESSED], item_gate=gate))
        runner.register("other", lambda cfg: ScriptedJob([ItemOutcome.PROCESSED]))

        task = asyncio.create_task(runner.run(KIND))
        await wait_until(lambda: runner.is_running(KIND))

        result = await runner.run("other")
        assert result.status == RunStatus.COMPLETED

        gate.set()
        await task


class TestExecution:

    @pytest.mark.asyncio
    async def test_empty_run_completes(self, db_path):
        published = []
        runner = make_runner(db_path, lambda cfg: ScriptedJob([]))

        result = await runner.run(KIND, progress_sink=CallbackProgressSink(published.append))

        assert (result.total, result.processed_ok, result.skipped, result.errors) == (0, 0, 0, 0)
        assert result.status == RunStatus.COMPLETED
        row = await runner.get_run(result.run_id)
        assert row["status"] == "completed"
        assert row["finished_at"] is not None
        assert [p.status for p in published] == [RunStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_item_errors_do_not_stop_run(self, db_path):
        script = [
            ItemOutcome.PROCESSED,
            RuntimeError("contact fetch failed"),
            ItemOutcome.SKIPPED,
            ItemOutcome.ERROR,
            RecoverablePerItemError("no value"),
            ItemOutcome.PROCESSED,
        ]
        runner = make_runner(db_path, lambda cfg: ScriptedJob(script))

        result = await runner.run(KIND)

        assert result.status == RunStatus.COMPLETED
        assert (result.processed_ok, result.skipped, result.errors) == (2, 1, 3)
        assert result.enriched == 2

        row = await runner.get_run(result.run_id)
        assert (row["total"], row["processed_ok"], row["skipped"], row["errors"]) == (6, 2, 1, 3)
        assert row["target_id"] == "target-1"
        assert row["target_name"] == "Target One"

    @pytest.mark.asyncio
    async def test_progress_is_ordered_and_monotonic(self, db_path):
        published = []
        script = [ItemOutcome.PROCESSED, ItemOutcome.SKIPPED, ItemOutcome.ERROR, ItemOutcome.PROCESSED]
        runner = make_runner(db_path, lambda cfg: ScriptedJob(script))

        await runner.run(KIND, progress_sink=CallbackProgressSink(published.append))

        running = [p for p in published if p.status == RunStatus.RUNNING]
        assert [p.current for p in running] == [1, 2, 3, 4]
        assert [p.current_item for p in running] == ["item-0", "item-1", "item-2", "item-3"]
        for before, after in zip(published, published[1:]):
            assert after.processed_ok >= before.processed_ok
            assert after.skipped >= before.skipped
            assert after.errors >= before.errors
        assert published[-1].status == RunStatus.COMPLETED
        assert published[-1].to_dict()["enriched"] == 2

    @pytest.mark.asyncio
    async def test_pacing_runs_after_each_item(self, db_path):
        events = []
        runner = make_runner(db_path, lambda cfg: ScriptedJob(
            [ItemOutcome.PROCESSED, ItemOutcome.SKIPPED], events=events))

        await runner.run(KIND)

        assert events == [("process", 0), ("after", 0), ("process", 1), ("after", 1)]

    @pytest.mark.asyncio
    async def test_failing_sink_is_ignored(self, db_path):
        def broken(progress):
            raise RuntimeError("UI gone")

        runner = make_runner(db_path, lambda cfg: ScriptedJob([ItemOutcome.PROCESSED]))
        result = await runner.run(KIND, progress_sink=CallbackProgressSink(broken))

        assert result.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_run_abort_marks_failed(self, db_path):
        published = []
        script = [ItemOutcome.PROCESSED, RunAbortedError("session lost"), ItemOutcome.PROCESSED]
        runner = make_runner(db_path, lambda cfg: ScriptedJob(script))

        with pytest.raises(RunAbortedError):
            await runner.run(KIND, progress_sink=CallbackProgressSink(published.append))

        [row] = await runner.list_recent()
        assert row["status"] == "failed"
        assert row["processed_ok"] == 1
        assert row["last_error"] == "session lost"
        assert published[-1].status == RunStatus.FAILED
        assert not runner.is_running(KIND)

        # Kind is free again
        runner.register(KIND, lambda cfg: ScriptedJob([]))
        assert (await runner.run(KIND)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancelled_run_marks_failed(self, db_path):
        gate = asyncio.Event()
        runner = make_runner(db_path, lambda cfg: ScriptedJob(
            [ItemOutcome.PROCESSED, ItemOutcome.PROCESSED], item_gate=gate))

        task = asyncio.create_task(runner.run(KIND))
        for _ in range(200):
            if await runner.get_running(KIND):
                break
            await asyncio.sleep(0.005)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        [row] = await runner.list_recent()
        assert row["status"] == "failed"
        assert row["last_error"] == "Cancelled"
        assert not runner.is_running(KIND)

        # A fresh run never leaves two running rows behind
        runner.register(KIND, lambda cfg: ScriptedJob([ItemOutcome.PROCESSED]))
        await runner.run(KIND)
        statuses = sorted(r["status"] for r in await runner.list_recent())
        assert statuses == ["completed", "failed"]


class TestRecovery:

    @pytest.mark.asyncio
    async def test_recovers_stale_running_rows(self, db_path):
        repo = BatchRunsRepo(db_path)
        await repo.create("stale", KIND, "t", 10)
        runner = BatchJobRunner(repo)

        assert await runner.recover_interrupted() == 1

        row = await runner.get_run("stale")
        assert row["status"] == "failed"
        assert row["last_error"] == "Interrupted"
        assert await runner.recover_interrupted() == 0

    @pytest.mark.asyncio
    async def test_leaves_active_run_alone(self, db_path):
        gate = asyncio.Event()
        runner = make_runner(db_path, lambda cfg: ScriptedJob([ItemOutcome.PROCESSED], item_gate=gate))

        task = asyncio.create_task(runner.run(KIND))
        for _ in range(200):
            if await runner.get_running(KIND):
                break
            await asyncio.sleep(0.005)

        assert await runner.recover_interrupted() == 0

        gate.set()
        result = await task
        assert result.status == RunStatus.COMPLETED
