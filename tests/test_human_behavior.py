"""
Tests for the pacing governor: click jitter, typing, idling, best-effort
signals and the budget gate.
"""

import random

import pytest
from unittest.mock import AsyncMock
from playwright.async_api import Error as PlaywrightError

from core import constants
from core.human_behavior import HumanBehavior
from core.session_state import BudgetKind, SessionStateTracker


pytestmark = pytest.mark.pacing


class TestConstants:
    """Ceilings are fixed policy values."""

    def test_ceiling_values(self):
        assert HumanBehavior.MAX_ACTIONS_PER_MINUTE == 8
        assert HumanBehavior.MAX_APPLICATIONS_PER_SESSION == 15
        assert HumanBehavior.MAX_EXTRACTIONS_PER_SESSION == 75
        assert HumanBehavior.SESSION_DURATION_MAX_MINUTES == 45

    def test_idle_policy(self):
        assert constants.IDLE_CHANCE == pytest.approx(0.1)
        assert constants.IDLE_MIN < constants.IDLE_MAX


class TestDelay:

    @pytest.mark.asyncio
    async def test_delay_within_range(self, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(1), sleep=fake_sleep)
        for _ in range(50):
            await behavior.delay(0.5, 1.5)

        assert len(fake_sleep.calls) == 50
        assert all(0.5 <= d <= 1.5 for d in fake_sleep.calls)

    @pytest.mark.asyncio
    async def test_same_seed_same_delays(self):
        first, second = [], []

        async def record_first(d):
            first.append(d)

        async def record_second(d):
            second.append(d)

        for rec, out in ((record_first, first), (record_second, second)):
            behavior = HumanBehavior(rng=random.Random(42), sleep=rec)
            for _ in range(5):
                await behavior.delay(1, 2)

        assert first == second


class TestClickLikeHuman:

    @pytest.mark.asyncio
    async def test_click_lands_inside_middle_band(self, mock_page, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(7), sleep=fake_sleep)

        for _ in range(200):
            await behavior.click_like_human(mock_page, "#submit")

        box = {"x": 100, "y": 200, "width": 80, "height": 40}
        for call in mock_page.mouse.click.await_args_list:
            x, y = call.args
            fx = (x - box["x"]) / box["width"]
            fy = (y - box["y"]) / box["height"]
            assert 0.3 <= fx <= 0.7
            assert 0.3 <= fy <= 0.7

        assert mock_page.mouse.click.await_count == 200
        mock_page.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_click_is_not_always_center(self, mock_page, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(3), sleep=fake_sleep)
        for _ in range(20):
            await behavior.click_like_human(mock_page, "#submit")

        points = {call.args for call in mock_page.mouse.click.await_args_list}
        assert len(points) > 1

    @pytest.mark.asyncio
    async def test_moves_before_click(self, mock_page, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(0), sleep=fake_sleep)
        await behavior.click_like_human(mock_page, "#submit")

        assert mock_page.mouse.move.await_args.args == mock_page.mouse.click.await_args.args

    @pytest.mark.asyncio
    async def test_fallback_when_no_box(self, mock_page, fake_sleep):
        mock_page.locator.return_value.first.bounding_box = AsyncMock(return_value=None)
        behavior = HumanBehavior(rng=random.Random(0), sleep=fake_sleep)

        await behavior.click_like_human(mock_page, "#hidden")

        mock_page.click.assert_awaited_once_with("#hidden")
        mock_page.mouse.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_when_box_lookup_fails(self, mock_page, fake_sleep):
        mock_page.locator.return_value.first.bounding_box = AsyncMock(
            side_effect=PlaywrightError("element detached")
        )
        behavior = HumanBehavior(rng=random.Random(0), sleep=fake_sleep)

        await behavior.click_like_human(mock_page, "#gone")

        mock_page.click.assert_awaited_once_with("#gone")
        mock_page.mouse.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_click_failure_propagates(self, mock_page, fake_sleep):
        mock_page.locator.return_value.first.bounding_box = AsyncMock(return_value=None)
        mock_page.click = AsyncMock(side_effect=PlaywrightError("not clickable"))
        behavior = HumanBehavior(rng=random.Random(0), sleep=fake_sleep)

        with pytest.raises(PlaywrightError):
            await behavior.click_like_human(mock_page, "#blocked")


class TestTypeLikeHuman:

    @pytest.mark.asyncio
    async def test_types_one_key_at_a_time(self, mock_page, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(5), sleep=fake_sleep)

        await behavior.type_like_human(mock_page, "#email", "jane@example.com")

        mock_page.click.assert_awaited_once_with("#email")
        typed = [call.args[0] for call in mock_page.keyboard.type.await_args_list]
        assert typed == list("jane@example.com")

        for call in mock_page.keyboard.type.await_args_list:
            assert constants.HUMAN_TYPE_MIN_MS <= call.kwargs["delay"] <= constants.HUMAN_TYPE_MAX_MS

    @pytest.mark.asyncio
    async def test_empty_text_only_focuses(self, mock_page, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(5), sleep=fake_sleep)

        await behavior.type_like_human(mock_page, "#email", "")

        mock_page.click.assert_awaited_once_with("#email")
        mock_page.keyboard.type.assert_not_awaited()


class TestMaybeIdle:

    @pytest.mark.asyncio
    async def test_idles_about_ten_percent(self, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(2024), sleep=fake_sleep)

        idled = 0
        for _ in range(2000):
            if await behavior.maybe_idle():
                idled += 1

        assert 120 <= idled <= 280
        assert len(fake_sleep.calls) == idled
        assert all(constants.IDLE_MIN <= d <= constants.IDLE_MAX for d in fake_sleep.calls)

    @pytest.mark.asyncio
    async def test_no_idle_returns_immediately(self, fake_sleep):
        rng = random.Random()
        rng.random = lambda: 0.99
        behavior = HumanBehavior(rng=rng, sleep=fake_sleep)

        assert await behavior.maybe_idle() is False
        assert fake_sleep.calls == []


class TestHelpers:

    @pytest.mark.asyncio
    async def test_scroll_in_wheel_steps(self, mock_page, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(1), sleep=fake_sleep)

        await behavior.scroll_like_human(mock_page, "up", amount=250)

        deltas = [call.args[1] for call in mock_page.mouse.wheel.await_args_list]
        assert deltas == [-100, -100, -50]

    @pytest.mark.asyncio
    async def test_between_listings_range(self, fake_sleep):
        behavior = HumanBehavior(rng=random.Random(1), sleep=fake_sleep)
        await behavior.between_listings()
        assert constants.BETWEEN_LISTINGS_MIN <= fake_sleep.calls[0] <= constants.BETWEEN_LISTINGS_MAX

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text_length,sentences", [(0, 1), (75, 1), (76, 2), (150, 2), (151, 3)])
    async def test_reading_pause_scales_per_sentence(self, fake_sleep, text_length, sentences):
        behavior = HumanBehavior(rng=random.Random(4), sleep=fake_sleep)

        await behavior.reading_pause(text_length)

        pause = sentences * constants.HUMAN_READING_PAUSE_PER_SENTENCE
        assert pause * 0.7 <= fake_sleep.calls[0] <= pause * 1.3

    @pytest.mark.asyncio
    async def test_best_effort_swallows_failure(self, fake_sleep):
        behavior = HumanBehavior(sleep=fake_sleep)
        signal = AsyncMock(side_effect=RuntimeError("presence endpoint down"))

        assert await behavior.best_effort(signal, "typing indicator") is False
        signal.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_best_effort_success(self, fake_sleep):
        behavior = HumanBehavior(sleep=fake_sleep)
        assert await behavior.best_effort(AsyncMock(), "presence") is True


class TestAcquire:

    @pytest.mark.asyncio
    async def test_without_tracker_always_allowed(self, fake_sleep):
        behavior = HumanBehavior(sleep=fake_sleep)
        assert await behavior.acquire("linkedin.com") is True

    @pytest.mark.asyncio
    async def test_waits_for_minute_window(self, clock, fake_sleep):
        tracker = SessionStateTracker(clock=clock)
        tracker.start_session("linkedin.com")
        behavior = HumanBehavior(sleep=fake_sleep, tracker=tracker)

        for _ in range(8):
            assert await behavior.acquire("linkedin.com") is True
        assert fake_sleep.calls == []

        assert await behavior.acquire("linkedin.com") is True
        assert fake_sleep.calls == [pytest.approx(60.0)]

    @pytest.mark.asyncio
    async def test_application_ceiling_is_final(self, clock, fake_sleep):
        tracker = SessionStateTracker(clock=clock)
        tracker.start_session("indeed.com")
        behavior = HumanBehavior(sleep=fake_sleep, tracker=tracker)

        results = []
        for _ in range(16):
            results.append(await behavior.acquire("indeed.com", BudgetKind.APPLICATION))

        assert results == [True] * 15 + [False]
        session = tracker.get("indeed.com")
        assert session["applications_submitted"] == 15
        assert "Application limit" in session["current_action"]
