#!/usr/bin/env python3
"""
Live Stream - coalesced per-platform visual feed for the operator.

Frames arrive from a FeedTransport at whatever rate the browser produces
them. Only the latest frame per platform is kept, and observers get at most
one snapshot per tick no matter how many frames arrived in between.

Only the focused platform streams; switching focus stops the previous feed
before starting the next one.
"""

import asyncio
import base64
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.constants import LIVE_STALE_TIMEOUT, LIVE_TICK_INTERVAL
from core.errors import FeedStartError

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = "default"


@dataclass
class FrameEvent:
    """One captured frame."""
    platform: Optional[str]
    payload: bytes
    received_at: float = field(default_factory=time.time)


@dataclass
class FeedStartResult:
    ok: bool
    error: Optional[str] = None


class Subscription:
    """Handle returned by subscribe-style calls. unsubscribe() is idempotent."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self):
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()


@dataclass
class LiveViewSnapshot:
    """What the operator sees at one point in time."""
    live_mode: bool
    is_streaming: bool
    focused_platform: Optional[str]
    current_frame: Optional[bytes]
    stale: bool
    error: Optional[str]
    frames_by_platform: Dict[str, bytes]
    available_platforms: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form with base64 encoded frames."""
        def encode(payload: Optional[bytes]) -> Optional[str]:
            return base64.b64encode(payload).decode("ascii") if payload is not None else None

        return {
            "live_mode": self.live_mode,
            "is_streaming": self.is_streaming,
            "focused_platform": self.focused_platform,
            "current_frame": encode(self.current_frame),
            "stale": self.stale,
            "error": self.error,
            "frames_by_platform": {p: encode(f) for p, f in self.frames_by_platform.items()},
            "available_platforms": list(self.available_platforms),
        }


class FeedTransport(ABC):
    """Source of frames for a platform."""

    @abstractmethod
    async def start_feed(self, platform: str) -> FeedStartResult:
        ...

    @abstractmethod
    async def stop_feed(self, platform: str):
        ...

    @abstractmethod
    def subscribe(self, listener: Callable[[FrameEvent], None]) -> Subscription:
        ...


Observer = Callable[[LiveViewSnapshot], Any]


class LiveStream:
    """
    Live view state for one operator.

    Must be driven from the event loop thread; timers use loop.call_later.
    """

    def __init__(
        self,
        transport: FeedTransport,
        stale_timeout: float = LIVE_STALE_TIMEOUT,
        tick_interval: float = LIVE_TICK_INTERVAL,
    ):
        self.transport = transport
        self.stale_timeout = stale_timeout
        self.tick_interval = tick_interval

        # Published state
        self.live_mode = False
        self.is_streaming = False
        self.focused_platform: Optional[str] = None
        self.current_frame: Optional[bytes] = None
        self.stale = False
        self.error: Optional[str] = None
        self.frames_by_platform: Dict[str, bytes] = {}
        self.available_platforms: List[str] = []

        # Latest frames, ahead of what has been published
        self._frames: Dict[str, bytes] = {}
        self._focused_frame: Optional[bytes] = None
        self._streaming_platform: Optional[str] = None

        self._transport_subscription: Optional[Subscription] = None
        self._pending_flush: Optional[asyncio.TimerHandle] = None
        self._stale_timer: Optional[asyncio.TimerHandle] = None
        self._observers: List[Observer] = []

    # === Observers ===

    def add_observer(self, observer: Observer) -> Subscription:
        self._observers.append(observer)

        def cancel():
            if observer in self._observers:
                self._observers.remove(observer)

        return Subscription(cancel)

    def snapshot(self) -> LiveViewSnapshot:
        return LiveViewSnapshot(
            live_mode=self.live_mode,
            is_streaming=self.is_streaming,
            focused_platform=self.focused_platform,
            current_frame=self.current_frame,
            stale=self.stale,
            error=self.error,
            frames_by_platform=dict(self.frames_by_platform),
            available_platforms=list(self.available_platforms),
        )

    def _notify(self):
        snap = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snap)
            except Exception as e:
                logger.warning(f"[LiveStream] Observer failed: {e}")

    # === Coalescing ===

    def _schedule_flush(self):
        if self._pending_flush is not None:
            return
        loop = asyncio.get_running_loop()
        self._pending_flush = loop.call_later(self.tick_interval, self._flush)

    def _flush(self):
        self._pending_flush = None
        self.frames_by_platform = dict(self._frames)
        if self.focused_platform is not None:
            self.current_frame = self._focused_frame
        self._notify()

    # === Staleness ===

    def _reset_stale_timer(self):
        self._cancel_stale_timer()
        self.stale = False
        loop = asyncio.get_running_loop()
        self._stale_timer = loop.call_later(self.stale_timeout, self._on_stale)

    def _cancel_stale_timer(self):
        if self._stale_timer is not None:
            self._stale_timer.cancel()
            self._stale_timer = None

    def _on_stale(self):
        self._stale_timer = None
        self.stale = True
        logger.debug(f"[LiveStream] No frame for {self.focused_platform} in {self.stale_timeout}s")
        self._schedule_flush()

    # === Frames ===

    def on_frame(self, event: FrameEvent):
        """Accept a frame from the transport."""
        platform = event.platform or DEFAULT_PLATFORM
        self._frames[platform] = event.payload

        if self.focused_platform == platform:
            self._focused_frame = event.payload
            self._reset_stale_timer()

        self._schedule_flush()

    def _ensure_subscribed(self):
        if self._transport_subscription is None:
            self._transport_subscription = self.transport.subscribe(self.on_frame)

    # === Feeds ===

    async def _start_feed(self, platform: str) -> bool:
        self.error = None
        self._ensure_subscribed()

        try:
            result = await self.transport.start_feed(platform)
        except Exception as e:
            result = FeedStartResult(ok=False, error=str(e))

        if not result.ok:
            failure = FeedStartError(platform, result.error)
            self.error = failure.message
            logger.warning(f"[LiveStream] {failure.message}")
            return False

        # Focus moved on while the feed was starting
        if self.focused_platform != platform:
            try:
                await self.transport.stop_feed(platform)
            except Exception as e:
                logger.warning(f"[LiveStream] Failed to stop feed for {platform}: {e}")
            return False

        self._streaming_platform = platform
        self.is_streaming = True
        self._reset_stale_timer()
        logger.info(f"[LiveStream] Streaming {platform}")
        return True

    async def _stop_current_feed(self):
        platform = self._streaming_platform
        if platform is None:
            return

        self._streaming_platform = None
        self.is_streaming = False
        self._cancel_stale_timer()
        try:
            await self.transport.stop_feed(platform)
        except Exception as e:
            logger.warning(f"[LiveStream] Failed to stop feed for {platform}: {e}")

    # === Operator actions ===

    def enter_live_mode(self, platforms: List[str]):
        self.live_mode = True
        self.available_platforms = list(platforms)
        self.error = None
        self._schedule_flush()

    async def set_focused_platform(self, platform: Optional[str]):
        """
        Focus a platform and stream it, or pass None to return to the gallery.

        The previous feed is always stopped before a new one is started.
        """
        self.focused_platform = platform
        self.stale = False

        if platform:
            if self._streaming_platform and self._streaming_platform != platform:
                await self._stop_current_feed()

            # Show the last captured frame while the feed starts
            cached = self._frames.get(platform)
            self._focused_frame = cached
            self.current_frame = cached

            if self._streaming_platform != platform:
                await self._start_feed(platform)
        else:
            await self._stop_current_feed()
            self._focused_frame = None
            self.current_frame = None

        self._schedule_flush()

    async def exit_live_mode(self):
        """Stop streaming and drop all live view state. Safe to call repeatedly."""
        active = (self.live_mode or self._streaming_platform is not None
                  or self._transport_subscription is not None or bool(self._frames))

        await self._stop_current_feed()

        if self._transport_subscription is not None:
            self._transport_subscription.unsubscribe()
            self._transport_subscription = None
        if self._pending_flush is not None:
            self._pending_flush.cancel()
            self._pending_flush = None
        self._cancel_stale_timer()

        self._frames = {}
        self._focused_frame = None
        self.live_mode = False
        self.is_streaming = False
        self.focused_platform = None
        self.current_frame = None
        self.stale = False
        self.error = None
        self.frames_by_platform = {}
        self.available_platforms = []

        if active:
            logger.info("[LiveStream] Live mode exited")
            self._notify()
