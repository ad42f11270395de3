#!/usr/bin/env python3
"""
Campaign Core - Framework for single-flight batch job runs.

Modules:
- reservations: Single-flight reservation per job kind
- batch_runner: Batch job lifecycle, progress and run history
"""

from .reservations import RunReservations
from .batch_runner import (
    BatchJob,
    BatchJobRunner,
    BatchProgress,
    BatchRunResult,
    CallbackProgressSink,
    ItemOutcome,
    NullProgressSink,
    ProgressSink,
    ResolvedTarget,
    RunStatus,
)

__all__ = [
    'RunReservations',
    'BatchJob',
    'BatchJobRunner',
    'BatchProgress',
    'BatchRunResult',
    'CallbackProgressSink',
    'ItemOutcome',
    'NullProgressSink',
    'ProgressSink',
    'ResolvedTarget',
    'RunStatus',
]
