"""
Core components for session pacing and state.

Modules:
- constants: Fixed pacing and budget policy values
- errors: Error taxonomy shared by every component
- rate_limiter: Sliding window limiter and circuit breaker
- session_state: Per-platform automation state and action budgets
- human_behavior: Humanized interaction pacing and the budget gate
"""

from .errors import (
    OrbitError,
    ConflictError,
    NotFoundError,
    FatalResolutionError,
    RecoverablePerItemError,
    NonCriticalActionFailure,
    FeedStartError,
    RunAbortedError,
    CircuitOpenError,
    error_to_response,
)
from .rate_limiter import SlidingWindowLimiter, CircuitBreaker, CircuitState
from .session_state import (
    AutomationState,
    BudgetKind,
    BudgetDecision,
    ActionBudget,
    PlatformSession,
    SessionStateTracker,
)
from .human_behavior import HumanBehavior

__all__ = [
    "OrbitError",
    "ConflictError",
    "NotFoundError",
    "FatalResolutionError",
    "RecoverablePerItemError",
    "NonCriticalActionFailure",
    "FeedStartError",
    "RunAbortedError",
    "CircuitOpenError",
    "error_to_response",
    "SlidingWindowLimiter",
    "CircuitBreaker",
    "CircuitState",
    "AutomationState",
    "BudgetKind",
    "BudgetDecision",
    "ActionBudget",
    "PlatformSession",
    "SessionStateTracker",
    "HumanBehavior",
]
