#!/usr/bin/env python3
"""
Human Behavior - Pacing governor for browser interactions.

Randomized delays, per-keystroke typing, jittered clicks and idle pauses so
automated sessions do not look like a machine driving the page. Every
random draw goes through an injected `random.Random`, so a fixed seed gives
a reproducible session.
"""

import asyncio
import math
import random
import logging
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from . import constants
from .errors import NonCriticalActionFailure
from .session_state import BudgetKind, SessionStateTracker

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


class HumanBehavior:
    """Humanized interaction helpers plus the pre-action budget gate."""

    # Fixed policy ceilings, read by the session budget check
    MAX_ACTIONS_PER_MINUTE = constants.MAX_ACTIONS_PER_MINUTE
    MAX_APPLICATIONS_PER_SESSION = constants.MAX_APPLICATIONS_PER_SESSION
    MAX_EXTRACTIONS_PER_SESSION = constants.MAX_EXTRACTIONS_PER_SESSION
    SESSION_DURATION_MAX_MINUTES = constants.SESSION_DURATION_MAX_MINUTES

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        sleep: SleepFn = asyncio.sleep,
        tracker: Optional[SessionStateTracker] = None,
    ):
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.tracker = tracker

    async def delay(self, min_sec: float = constants.HUMAN_DELAY_MIN,
                    max_sec: float = constants.HUMAN_DELAY_MAX):
        """Add human-like random delay."""
        await self._sleep(self.rng.uniform(min_sec, max_sec))

    async def type_like_human(self, page: Page, selector: str, text: str):
        """Focus the field once, then type one key at a time with variable delays."""
        await page.click(selector)
        if not text:
            return

        await self.delay(0.1, 0.3)

        for char in text:
            key_delay = self.rng.randint(constants.HUMAN_TYPE_MIN_MS, constants.HUMAN_TYPE_MAX_MS)
            await page.keyboard.type(char, delay=key_delay)
            if self.rng.random() < constants.HUMAN_TYPE_PAUSE_CHANCE:
                await self._sleep(self.rng.uniform(0.2, 0.6))

    async def click_like_human(self, page: Page, selector: str):
        """
        Click somewhere inside the element, never the exact center or the edges.

        Falls back to a plain selector click when the element has no box.
        """
        try:
            box = await page.locator(selector).first.bounding_box()
        except PlaywrightError as e:
            logger.debug(f"[HumanBehavior] No bounding box for {selector}: {e}")
            box = None

        if not box:
            await page.click(selector)
            return

        x = box["x"] + box["width"] * self.rng.uniform(
            constants.CLICK_BOX_MIN_FRACTION, constants.CLICK_BOX_MAX_FRACTION)
        y = box["y"] + box["height"] * self.rng.uniform(
            constants.CLICK_BOX_MIN_FRACTION, constants.CLICK_BOX_MAX_FRACTION)

        await page.mouse.move(x, y)
        await self.delay(0.05, 0.2)
        await page.mouse.click(x, y)

    async def maybe_idle(self) -> bool:
        """Occasionally stop for a while, like a distracted reader. Returns True if idled."""
        if self.rng.random() >= constants.IDLE_CHANCE:
            return False

        idle = self.rng.uniform(constants.IDLE_MIN, constants.IDLE_MAX)
        logger.debug(f"[HumanBehavior] Idling for {idle:.1f}s")
        await self._sleep(idle)
        return True

    async def scroll_like_human(self, page: Page, direction: str = "down", amount: Optional[int] = None):
        """Scroll in wheel-sized steps with short pauses."""
        if amount is None:
            amount = self.rng.randint(200, 500)

        sign = 1 if direction == "down" else -1
        remaining = amount
        while remaining > 0:
            step = min(100, remaining)
            await page.mouse.wheel(0, sign * step)
            remaining -= step
            await self.delay(0.05, 0.15)

        await self.delay(0.5, 1.5)

    async def reading_pause(self, text_length: int):
        """Pause roughly as long as it takes to skim `text_length` characters."""
        sentences = max(1, math.ceil(text_length / 75))
        pause = sentences * constants.HUMAN_READING_PAUSE_PER_SENTENCE
        await self.delay(pause * 0.7, pause * 1.3)

    async def between_listings(self):
        await self.delay(constants.BETWEEN_LISTINGS_MIN, constants.BETWEEN_LISTINGS_MAX)

    async def between_applications(self):
        await self.delay(constants.BETWEEN_APPLICATIONS_MIN, constants.BETWEEN_APPLICATIONS_MAX)

    async def scroll_into_view(self, page: Page, selector: str):
        await page.locator(selector).first.scroll_into_view_if_needed()
        await self.delay(0.3, 0.8)

    async def best_effort(self, action: Callable[[], Awaitable[Any]], label: str = "signal") -> bool:
        """
        Run a humanization signal whose failure must not affect the caller.

        Returns True when the signal went through.
        """
        try:
            await action()
            return True
        except Exception as e:
            failure = NonCriticalActionFailure(f"{label} failed: {e}", {"label": label})
            logger.warning(f"[HumanBehavior] {failure.message}")
            return False

    async def acquire(self, platform: str, kind: BudgetKind = BudgetKind.ACTION) -> bool:
        """
        Wait for budget to perform one action of `kind` on `platform`.

        Returns False when a per-session ceiling has been reached; the
        platform's current action then records the limit.
        """
        if self.tracker is None:
            return True

        while True:
            decision = self.tracker.try_consume(platform, kind)
            if decision.allowed:
                return True
            if decision.exhausted:
                logger.info(f"[HumanBehavior] {platform}: {decision.reason}")
                return False
            logger.debug(f"[HumanBehavior] {platform}: {decision.reason}, waiting {decision.wait_seconds:.1f}s")
            await self._sleep(decision.wait_seconds)
