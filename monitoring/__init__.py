"""
Monitoring - live operator view of automated sessions.
"""

from .live_stream import (
    FeedStartResult,
    FeedTransport,
    FrameEvent,
    LiveStream,
    LiveViewSnapshot,
    Subscription,
)

__all__ = [
    "FeedStartResult",
    "FeedTransport",
    "FrameEvent",
    "LiveStream",
    "LiveViewSnapshot",
    "Subscription",
]
