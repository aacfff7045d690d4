"""Tests for human-paced clicking, typing and polling."""

import os
import random
import pytest

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.errors import BrowserError, WaitTimeoutError
from browser.interaction import HumanInteraction
from browser.timing import DelayProvider

from fakes import FakeContext, FakeElement, RecordingDelays


BOX = {"x": 100.0, "y": 200.0, "width": 80.0, "height": 30.0}


@pytest.fixture
def page():
    context = FakeContext("profile", {}, {"#submit": FakeElement(box=dict(BOX)), "#email": FakeElement()})
    return context.pages[0]


class TestClickTarget:
    """Test pointer jitter bounds."""

    def test_target_stays_inside_box(self):
        for seed in range(200):
            interaction = HumanInteraction(DelayProvider(random.Random(seed)))
            x, y = interaction.click_target(BOX)

            assert BOX["x"] <= x <= BOX["x"] + BOX["width"]
            assert BOX["y"] <= y <= BOX["y"] + BOX["height"]

    def test_jitter_is_capped(self):
        big = {"x": 0.0, "y": 0.0, "width": 1000.0, "height": 1000.0}
        for seed in range(200):
            interaction = HumanInteraction(DelayProvider(random.Random(seed)))
            x, y = interaction.click_target(big)

            assert abs(x - 500) <= 10
            assert abs(y - 500) <= 10

    def test_targets_vary(self):
        interaction = HumanInteraction(DelayProvider(random.Random(7)))
        targets = {interaction.click_target(BOX) for _ in range(20)}
        assert len(targets) > 1


class TestHumanClick:
    """Test the move-pause-press sequence."""

    @pytest.mark.asyncio
    async def test_click_sequence(self, page):
        delays = RecordingDelays()
        interaction = HumanInteraction(delays)

        x, y = await interaction.click(page, page.locator("#submit"))

        assert (x, y) == (140.0, 215.0)
        assert page.mouse.moves == [(140.0, 215.0, 10)]
        assert page.mouse.clicks == [(140.0, 215.0, 100.0)]
        assert delays.sleeps == [250.0]

    @pytest.mark.asyncio
    async def test_click_timing_ranges(self, page):
        delays = RecordingDelays()
        interaction = HumanInteraction(delays)

        await interaction.click(page, page.locator("#submit"))

        assert (5, 15) in delays.ranges
        assert (100.0, 400.0) in delays.ranges
        assert (50.0, 150.0) in delays.ranges

    @pytest.mark.asyncio
    async def test_missing_element_times_out(self, page):
        interaction = HumanInteraction(RecordingDelays())

        with pytest.raises(WaitTimeoutError):
            await interaction.click(page, page.locator("#absent"), timeout_ms=500)
        assert page.mouse.clicks == []

    @pytest.mark.asyncio
    async def test_element_without_box(self, page):
        page.elements["#hidden"] = FakeElement(box=None)
        interaction = HumanInteraction(RecordingDelays())

        with pytest.raises(BrowserError):
            await interaction.click(page, page.locator("#hidden"))


class TestHumanTyping:
    """Test per-keystroke typing."""

    @pytest.mark.asyncio
    async def test_types_each_character(self, page):
        interaction = HumanInteraction(RecordingDelays())
        locator = page.locator("#email")

        await interaction.type_text(page, locator, "me@x.io")

        assert page.keyboard.text == "me@x.io"
        assert len(page.keyboard.typed) == 7
        assert all(delay == 125.0 for _, delay in page.keyboard.typed)
        assert [name for name, _ in locator.calls] == ["click", "select_text"]

    @pytest.mark.asyncio
    async def test_without_clear_keeps_content(self, page):
        interaction = HumanInteraction(RecordingDelays())
        locator = page.locator("#email")

        await interaction.type_text(page, locator, "ab", clear=False)

        assert [name for name, _ in locator.calls] == ["click"]


class TestSmartWait:
    """Test polling waits."""

    @pytest.mark.asyncio
    async def test_selector_present(self, page):
        interaction = HumanInteraction(RecordingDelays())
        assert await interaction.smart_wait(page, "#submit") is True

    @pytest.mark.asyncio
    async def test_selector_absent_times_out(self, page):
        delays = RecordingDelays()
        interaction = HumanInteraction(delays)

        with pytest.raises(WaitTimeoutError):
            await interaction.smart_wait(page, "#never", timeout_ms=3000)
        assert delays.sleeps == [1000.0, 1000.0, 1000.0]

    @pytest.mark.asyncio
    async def test_predicate_polled_until_true(self, page):
        interaction = HumanInteraction(RecordingDelays())
        calls = []

        async def ready():
            calls.append(1)
            return len(calls) >= 3

        assert await interaction.smart_wait(page, ready) is True
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_target_closed_propagates(self, page):
        interaction = HumanInteraction(RecordingDelays())

        async def gone():
            raise RuntimeError("Target page, context or browser has been closed")

        with pytest.raises(RuntimeError):
            await interaction.smart_wait(page, gone)
