#!/usr/bin/env python3
"""
Screencast Transport - CDP screencast feeds from Playwright pages.

Each platform has one active Playwright page. Starting a feed opens a CDP
session on that page and issues Page.startScreencast; every
Page.screencastFrame is decoded, handed to the listeners and acknowledged
so Chrome keeps sending frames.
"""

import asyncio
import base64
import logging
from typing import Callable, Dict, List, Optional, Set

from playwright.async_api import CDPSession, Page
from playwright.async_api import Error as PlaywrightError

from api.config import get_config
from monitoring.live_stream import FeedStartResult, FeedTransport, FrameEvent, Subscription

logger = logging.getLogger(__name__)

FrameListener = Callable[[FrameEvent], None]


class ScreencastTransport(FeedTransport):
    """FeedTransport backed by Chrome DevTools screencasts."""

    def __init__(self, options: Optional[dict] = None):
        self.options = options or get_config().screencast_options
        self._pages: Dict[str, Page] = {}
        self._sessions: Dict[str, CDPSession] = {}
        self._listeners: List[FrameListener] = []
        self._ack_tasks: Set[asyncio.Task] = set()

    # === Pages ===

    def register_page(self, platform: str, page: Page):
        """Make `page` the page streamed for `platform`."""
        self._pages[platform] = page

    def unregister_page(self, platform: str):
        self._pages.pop(platform, None)

    def is_streaming(self, platform: Optional[str] = None) -> bool:
        if platform is None:
            return bool(self._sessions)
        return platform in self._sessions

    # === FeedTransport ===

    def subscribe(self, listener: FrameListener) -> Subscription:
        self._listeners.append(listener)

        def cancel():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(cancel)

    async def start_feed(self, platform: str) -> FeedStartResult:
        if platform in self._sessions:
            return FeedStartResult(ok=True)

        page = self._pages.get(platform)
        if page is None:
            return FeedStartResult(ok=False, error=f"No active page for platform: {platform}")

        try:
            cdp = await page.context.new_cdp_session(page)
            cdp.on("Page.screencastFrame", lambda params: self._on_frame(platform, cdp, params))
            await cdp.send("Page.startScreencast", self.options)
        except PlaywrightError as e:
            logger.error(f"[Screencast] Failed to start for {platform}: {e}")
            return FeedStartResult(ok=False, error=str(e))

        self._sessions[platform] = cdp
        logger.info(f"[Screencast] Started for {platform}")
        return FeedStartResult(ok=True)

    async def stop_feed(self, platform: str):
        cdp = self._sessions.pop(platform, None)
        if cdp is None:
            return

        try:
            await cdp.send("Page.stopScreencast")
        except PlaywrightError as e:
            # Page already closed
            logger.debug(f"[Screencast] Stop for {platform}: {e}")
        finally:
            try:
                await cdp.detach()
            except PlaywrightError as e:
                logger.debug(f"[Screencast] Detach for {platform}: {e}")
        logger.info(f"[Screencast] Stopped for {platform}")

    async def stop_all(self):
        for platform in list(self._sessions):
            await self.stop_feed(platform)

    # === Frames ===

    def _on_frame(self, platform: str, cdp: CDPSession, params: dict):
        event = FrameEvent(platform=platform, payload=base64.b64decode(params["data"]))

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"[Screencast] Frame listener failed: {e}")

        task = asyncio.ensure_future(self._ack(cdp, params["sessionId"]))
        self._ack_tasks.add(task)
        task.add_done_callback(self._ack_tasks.discard)

    async def _ack(self, cdp: CDPSession, session_id: int):
        try:
            await cdp.send("Page.screencastFrameAck", {"sessionId": session_id})
        except PlaywrightError as e:
            logger.debug(f"[Screencast] Frame ack failed: {e}")
