#!/usr/bin/env python3
"""
Batch Job Runner - single-flight, crash-safe batch runs with progress.

Impact: A long batch job (e.g. enriching every contact in a pipeline) runs at
most once per kind, persists its counters after every item and always ends
in a terminal state that callers can observe.

Lifecycle per kind: idle -> running -> completed | failed
"""

import asyncio
import uuid
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from api.database import BatchRunsRepo
from core.errors import ConflictError, NotFoundError, RunAbortedError

from .reservations import RunReservations

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Status of a batch run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemOutcome(str, Enum):
    """Result of processing one work item."""
    PROCESSED = "processed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class ResolvedTarget:
    """What a run works against, established before any item is touched."""
    id: str
    name: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchProgress:
    """Point-in-time progress snapshot of a run."""
    run_id: str
    kind: str
    current: int
    total: int
    processed_ok: int
    skipped: int
    errors: int
    current_item: Optional[str]
    status: RunStatus

    @property
    def enriched(self) -> int:
        return self.processed_ok

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["enriched"] = self.processed_ok
        return data


@dataclass
class BatchRunResult:
    """Final summary of a completed run."""
    run_id: str
    kind: str
    status: RunStatus
    total: int
    processed_ok: int
    skipped: int
    errors: int

    @property
    def enriched(self) -> int:
        return self.processed_ok

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["enriched"] = self.processed_ok
        return data


class ProgressSink(ABC):
    """Receives progress snapshots of a run."""

    @abstractmethod
    def publish(self, progress: BatchProgress):
        ...


class NullProgressSink(ProgressSink):
    """Discards progress."""

    def publish(self, progress: BatchProgress):
        pass


class CallbackProgressSink(ProgressSink):
    """Forwards progress to a callable."""

    def __init__(self, callback: Callable[[BatchProgress], Any]):
        self.callback = callback

    def publish(self, progress: BatchProgress):
        self.callback(progress)


class BatchJob(ABC):
    """
    One kind of batch work.

    The runner calls resolve() and list_items() before anything is
    persisted, then process_item() and after_item() for each item in order.
    """

    @abstractmethod
    async def resolve(self) -> ResolvedTarget:
        """Establish the target. Raise NotFoundError / FatalResolutionError on failure."""

    @abstractmethod
    async def list_items(self, target: ResolvedTarget) -> List[Any]:
        """Enumerate the work items for the target."""

    @abstractmethod
    async def process_item(self, target: ResolvedTarget, item: Any) -> ItemOutcome:
        """Process one item. Ordinary exceptions count as an error for that item."""

    def describe_item(self, item: Any) -> Optional[str]:
        return None

    async def after_item(self, item: Any, outcome: ItemOutcome):
        """Pacing hook, runs after progress for the item is recorded."""


JobFactory = Callable[[Any], BatchJob]


class BatchJobRunner:
    """
    Runs registered batch jobs with a single-flight guarantee per kind.

    Features:
    - Atomic reservation, a second run of a running kind is rejected
    - Counters persisted and published after each item
    - Terminal status always recorded for runs that got a row
    - Recovery of runs left 'running' by a crashed process
    """

    def __init__(self, runs_repo: Optional[BatchRunsRepo] = None,
                 reservations: Optional[RunReservations] = None):
        self.runs_repo = runs_repo or BatchRunsRepo()
        self.reservations = reservations or RunReservations()
        self._factories: Dict[str, JobFactory] = {}

    def register(self, kind: str, factory: JobFactory):
        """Register a job factory for a kind. The factory receives the run config."""
        self._factories[kind] = factory

    def kinds(self) -> List[str]:
        return sorted(self._factories)

    def is_running(self, kind: str) -> bool:
        return self.reservations.is_reserved(kind)

    def get_current_run_id(self, kind: str) -> Optional[str]:
        return self.reservations.run_id_for(kind)

    async def run(self, kind: str, config: Any = None,
                  progress_sink: Optional[ProgressSink] = None) -> BatchRunResult:
        """
        Execute one run of `kind` to completion.

        Raises:
            NotFoundError: unknown kind or missing target (no row written)
            ConflictError: a run of this kind is already in flight
            FatalResolutionError: a prerequisite could not be established (no row written)
            RunAbortedError: infrastructure failure mid-run (row finalized as failed)
        """
        factory = self._factories.get(kind)
        if factory is None:
            raise NotFoundError(f"Unknown batch job kind: {kind}", {"kind": kind})

        run_id = uuid.uuid4().hex
        if not self.reservations.reserve(kind, run_id):
            raise ConflictError(
                f"{kind} is already running",
                {"kind": kind, "run_id": self.reservations.run_id_for(kind)},
            )

        sink = progress_sink or NullProgressSink()
        try:
            job = factory(config)
            target = await job.resolve()
            items = list(await job.list_items(target))

            await self.runs_repo.create(run_id, kind, target.id, len(items), target_name=target.name)
            logger.info(f"[BatchRunner] Run {run_id} started: {kind} on {target.name} ({len(items)} items)")

            return await self._execute(run_id, kind, job, target, items, sink)
        finally:
            self.reservations.release(kind)

    async def _execute(self, run_id: str, kind: str, job: BatchJob, target: ResolvedTarget,
                       items: List[Any], sink: ProgressSink) -> BatchRunResult:
        total = len(items)
        counts = {ItemOutcome.PROCESSED: 0, ItemOutcome.SKIPPED: 0, ItemOutcome.ERROR: 0}

        def snapshot(current: int, label: Optional[str], status: RunStatus) -> BatchProgress:
            return BatchProgress(
                run_id=run_id,
                kind=kind,
                current=current,
                total=total,
                processed_ok=counts[ItemOutcome.PROCESSED],
                skipped=counts[ItemOutcome.SKIPPED],
                errors=counts[ItemOutcome.ERROR],
                current_item=label,
                status=status,
            )

        current = 0
        try:
            for index, item in enumerate(items, start=1):
                label = job.describe_item(item)
                logger.info(f"[BatchRunner] [{index}/{total}] {label or ''}".rstrip())

                try:
                    outcome = ItemOutcome(await job.process_item(target, item))
                except RunAbortedError:
                    raise
                except Exception as e:
                    logger.warning(f"[BatchRunner] Item {index} failed: {e}")
                    outcome = ItemOutcome.ERROR

                counts[outcome] += 1
                current = index

                await self.runs_repo.update_progress(
                    run_id, counts[ItemOutcome.PROCESSED], counts[ItemOutcome.SKIPPED], counts[ItemOutcome.ERROR]
                )
                self._publish(sink, snapshot(index, label, RunStatus.RUNNING))

                await job.after_item(item, outcome)

        except asyncio.CancelledError:
            logger.warning(f"[BatchRunner] Run {run_id} cancelled")
            await self._record_failure(run_id, "Cancelled")
            self._publish(sink, snapshot(current, None, RunStatus.FAILED))
            raise
        except Exception as e:
            logger.error(f"[BatchRunner] Run {run_id} failed: {e}")
            await self._record_failure(run_id, str(e))
            self._publish(sink, snapshot(current, None, RunStatus.FAILED))
            raise

        await self.runs_repo.finish(run_id, RunStatus.COMPLETED.value)
        final = snapshot(total, None, RunStatus.COMPLETED)
        self._publish(sink, final)

        logger.info(
            f"[BatchRunner] Run {run_id} complete: {final.processed_ok} processed, "
            f"{final.skipped} skipped, {final.errors} errors out of {total}"
        )
        return BatchRunResult(
            run_id=run_id,
            kind=kind,
            status=RunStatus.COMPLETED,
            total=total,
            processed_ok=final.processed_ok,
            skipped=final.skipped,
            errors=final.errors,
        )

    async def _record_failure(self, run_id: str, reason: str):
        try:
            await self.runs_repo.finish(run_id, RunStatus.FAILED.value, last_error=reason)
        except Exception as e:
            logger.error(f"[BatchRunner] Could not record failure of run {run_id}: {e}")

    def _publish(self, sink: ProgressSink, progress: BatchProgress):
        try:
            sink.publish(progress)
        except Exception as e:
            logger.warning(f"[BatchRunner] Progress sink failed: {e}")

    # === History ===

    async def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return await self.runs_repo.get(run_id)

    async def get_running(self, kind: str) -> Optional[Dict[str, Any]]:
        return await self.runs_repo.get_running(kind)

    async def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        return await self.runs_repo.list_recent(limit)

    async def recover_interrupted(self) -> int:
        """
        Mark runs left 'running' by a previous process as failed.

        Runs reserved in this process are left alone. Returns the number recovered.
        """
        recovered = 0
        for row in await self.runs_repo.list_running():
            if self.reservations.run_id_for(row["kind"]) == row["id"]:
                continue
            if await self.runs_repo.finish(row["id"], RunStatus.FAILED.value, last_error="Interrupted"):
                recovered += 1
                logger.warning(f"[BatchRunner] Recovered interrupted run {row['id']} ({row['kind']})")
        return recovered
