#!/usr/bin/env python3
"""
Session State Tracker - per-platform automation state and action budgets.

One PlatformSession per platform being automated. The UI reads snapshots;
the pacing governor is the only writer of ActionBudget counters, through
`try_consume`.
"""

import threading
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .constants import (
    ACTION_WINDOW_SECONDS,
    MAX_ACTIONS_PER_MINUTE,
    MAX_APPLICATIONS_PER_SESSION,
    MAX_EXTRACTIONS_PER_SESSION,
)
from .rate_limiter import SlidingWindowLimiter

logger = logging.getLogger(__name__)


class AutomationState(str, Enum):
    """Automation state of a platform session."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


class BudgetKind(str, Enum):
    """Kinds of gated actions. Every kind also counts as one action."""
    ACTION = "action"
    APPLICATION = "application"
    EXTRACTION = "extraction"


@dataclass
class BudgetDecision:
    """Outcome of a pre-action budget check."""
    allowed: bool
    wait_seconds: float = 0.0
    reason: Optional[str] = None
    # True when a per-session ceiling is hit and waiting will not help
    exhausted: bool = False


class ActionBudget:
    """
    Per-session action counters with fixed ceilings.

    - actions_this_minute: rolling window, max 8
    - applications_this_session: max 15
    - extractions_this_session: max 75
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._minute = SlidingWindowLimiter(MAX_ACTIONS_PER_MINUTE, ACTION_WINDOW_SECONDS, clock)
        self.applications_this_session = 0
        self.extractions_this_session = 0

    @property
    def actions_this_minute(self) -> int:
        return self._minute.count()

    def try_consume(self, kind: BudgetKind) -> BudgetDecision:
        """Check every ceiling for `kind` and consume on success."""
        if kind == BudgetKind.APPLICATION and self.applications_this_session >= MAX_APPLICATIONS_PER_SESSION:
            return BudgetDecision(
                allowed=False,
                reason=f"Application limit reached ({MAX_APPLICATIONS_PER_SESSION} per session)",
                exhausted=True,
            )
        if kind == BudgetKind.EXTRACTION and self.extractions_this_session >= MAX_EXTRACTIONS_PER_SESSION:
            return BudgetDecision(
                allowed=False,
                reason=f"Extraction limit reached ({MAX_EXTRACTIONS_PER_SESSION} per session)",
                exhausted=True,
            )

        allowed, wait = self._minute.check()
        if not allowed:
            return BudgetDecision(
                allowed=False,
                wait_seconds=wait,
                reason=f"Action rate limit ({MAX_ACTIONS_PER_MINUTE}/min)",
            )

        self._minute.record()
        if kind == BudgetKind.APPLICATION:
            self.applications_this_session += 1
        elif kind == BudgetKind.EXTRACTION:
            self.extractions_this_session += 1
        return BudgetDecision(allowed=True)

    def to_dict(self) -> Dict[str, int]:
        return {
            "actions_this_minute": self.actions_this_minute,
            "applications_this_session": self.applications_this_session,
            "extractions_this_session": self.extractions_this_session,
        }


@dataclass
class PlatformSession:
    """Automation state for one platform."""
    platform: str
    state: AutomationState = AutomationState.IDLE
    current_action: Optional[str] = None

    # Progress
    jobs_extracted: int = 0
    jobs_analyzed: int = 0
    applications_submitted: int = 0
    actions_per_minute: int = 0

    errors: List[str] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    budget: ActionBudget = field(default_factory=ActionBudget, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "state": self.state.value,
            "current_action": self.current_action,
            "jobs_extracted": self.jobs_extracted,
            "jobs_analyzed": self.jobs_analyzed,
            "applications_submitted": self.applications_submitted,
            "actions_per_minute": self.actions_per_minute,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "budget": self.budget.to_dict(),
        }


class SessionStateTracker:
    """
    Aggregates per-platform automation state.

    All mutation happens under one lock. Readers get copies, so a snapshot may
    be slightly stale but is never torn.
    """

    STAT_FIELDS = ("jobs_extracted", "jobs_analyzed", "applications_submitted", "actions_per_minute")

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._sessions: Dict[str, PlatformSession] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, platform: str) -> PlatformSession:
        session = self._sessions.get(platform)
        if session is None:
            session = PlatformSession(platform=platform, budget=ActionBudget(self._clock))
            self._sessions[platform] = session
        return session

    def start_session(self, platform: str,
                      state: AutomationState = AutomationState.RUNNING) -> Dict[str, Any]:
        """Start a fresh session for a platform, resetting counters and budget."""
        with self._lock:
            session = PlatformSession(platform=platform, state=state, budget=ActionBudget(self._clock))
            self._sessions[platform] = session
            logger.info(f"[SessionState] Session started for {platform}")
            return session.to_dict()

    def end_session(self, platform: str) -> Optional[Dict[str, Any]]:
        """Clear a platform's session. Returns its final state, if any."""
        with self._lock:
            session = self._sessions.pop(platform, None)
        if session is None:
            return None
        logger.info(
            f"[SessionState] Session ended for {platform}: "
            f"{session.jobs_extracted} extracted, {session.applications_submitted} submitted"
        )
        return session.to_dict()

    def set_state(self, platform: str, state: AutomationState, current_action: Optional[str] = None):
        with self._lock:
            session = self._get_or_create(platform)
            session.state = AutomationState(state)
            if current_action is not None:
                session.current_action = current_action

    def set_current_action(self, platform: str, action: Optional[str]):
        with self._lock:
            self._get_or_create(platform).current_action = action

    def update_stats(self, platform: str, **stats: Optional[int]):
        """Update running counters. Unknown names raise, None values are ignored."""
        unknown = set(stats) - set(self.STAT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown session stats: {sorted(unknown)}")

        with self._lock:
            session = self._get_or_create(platform)
            for key, value in stats.items():
                if value is not None:
                    setattr(session, key, value)

    def record_error(self, platform: str, error: str, set_error_state: bool = False):
        with self._lock:
            session = self._get_or_create(platform)
            session.errors.append(error)
            if set_error_state:
                session.state = AutomationState.ERROR
                session.current_action = error

    def try_consume(self, platform: str, kind: BudgetKind = BudgetKind.ACTION) -> BudgetDecision:
        """
        Atomically check the platform's budget and consume one unit of `kind`.

        Only the pacing governor should call this.
        """
        with self._lock:
            session = self._get_or_create(platform)
            decision = session.budget.try_consume(BudgetKind(kind))
            session.actions_per_minute = session.budget.actions_this_minute
            if decision.allowed:
                kind = BudgetKind(kind)
                if kind == BudgetKind.APPLICATION:
                    session.applications_submitted += 1
                elif kind == BudgetKind.EXTRACTION:
                    session.jobs_extracted += 1
            elif decision.exhausted:
                session.current_action = decision.reason
            return decision

    def get(self, platform: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            session = self._sessions.get(platform)
            return session.to_dict() if session else None

    def platforms(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view of every platform plus totals."""
        with self._lock:
            sessions = {name: s.to_dict() for name, s in self._sessions.items()}

        totals = {key: sum(s[key] for s in sessions.values()) for key in self.STAT_FIELDS}
        return {"platforms": sessions, "totals": totals}
