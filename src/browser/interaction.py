"""
Human Interaction - pointer and keyboard actions with randomized timing.

Uniform timing is an easy automation signature, so every pause, press
and pointer path is drawn from a DelayProvider. Tests swap in a
deterministic provider.
"""

from typing import Any, Awaitable, Callable, Optional, Union
import structlog

from core.config import InteractionConfig
from core.errors import BrowserError, WaitTimeoutError
from browser.recovery import is_target_closed, is_timeout
from browser.timing import DelayProvider

logger = structlog.get_logger()

Condition = Union[str, Callable[[], Awaitable[Any]]]


class HumanInteraction:
    """
    Human-paced click, type and polling wait.

    Args:
        delays: Source of randomness and pauses
        config: Timing ranges
    """

    def __init__(
        self,
        delays: Optional[DelayProvider] = None,
        config: Optional[InteractionConfig] = None,
    ):
        self.delays = delays or DelayProvider()
        self.config = config or InteractionConfig()

    async def wait_visible(self, locator: Any, timeout_ms: Optional[float] = None) -> None:
        """Wait for the element to become visible, raising WaitTimeoutError on timeout."""
        timeout_ms = timeout_ms or self.config.visibility_timeout_ms
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
        except Exception as e:
            if is_timeout(e):
                raise WaitTimeoutError(
                    f"Element not visible within {timeout_ms}ms: {e}",
                    timeout_ms=timeout_ms,
                ) from e
            raise

    def click_target(self, box: dict[str, float]) -> tuple[float, float]:
        """Point near the center of a bounding box, jittered per axis."""
        span_x = min(box["width"] * 0.6, 20)
        span_y = min(box["height"] * 0.6, 20)
        x = box["x"] + box["width"] / 2 + self.delays.uniform(-span_x / 2, span_x / 2)
        y = box["y"] + box["height"] / 2 + self.delays.uniform(-span_y / 2, span_y / 2)
        return x, y

    async def click(self, page: Any, locator: Any, timeout_ms: Optional[float] = None) -> tuple[float, float]:
        """Move to a jittered point inside the element and click it."""
        await self.wait_visible(locator, timeout_ms)

        box = await locator.bounding_box()
        if not box:
            raise BrowserError("Element not visible or has no bounding box")

        x, y = self.click_target(box)
        cfg = self.config

        await page.mouse.move(x, y, steps=self.delays.randint(*cfg.move_steps))
        await self.delays.sleep(self.delays.uniform(*cfg.click_pause_ms))
        await page.mouse.click(x, y, delay=self.delays.uniform(*cfg.press_duration_ms))

        logger.debug("human_click", x=round(x), y=round(y))
        return x, y

    async def type_text(
        self,
        page: Any,
        locator: Any,
        text: str,
        clear: bool = True,
        timeout_ms: Optional[float] = None,
    ) -> None:
        """
        Focus the element and type one keystroke at a time.

        With clear, the existing content is selected first so typing replaces it.
        """
        await self.wait_visible(locator, timeout_ms)
        await locator.click()

        if clear:
            await locator.select_text()

        for char in text:
            await page.keyboard.type(char, delay=self.delays.uniform(*self.config.keystroke_delay_ms))

        logger.debug("human_type", length=len(text))

    async def smart_wait(self, page: Any, condition: Condition, timeout_ms: float = 30000) -> bool:
        """
        Poll a selector or async predicate until it succeeds.

        Args:
            page: Page to probe selectors on
            condition: Selector string or zero-argument coroutine function
            timeout_ms: Overall budget
        """
        start = self.delays.monotonic_ms()

        while self.delays.monotonic_ms() - start < timeout_ms:
            try:
                if isinstance(condition, str):
                    await page.wait_for_selector(condition, timeout=1000)
                    return True
                if await condition():
                    return True
            except Exception as e:
                if is_target_closed(e):
                    raise
                if not is_timeout(e):
                    logger.debug("smart_wait_probe_failed", error=str(e))

            await self.delays.sleep(self.delays.uniform(*self.config.poll_interval_ms))

        raise WaitTimeoutError(
            f"Wait condition not met within {timeout_ms}ms",
            timeout_ms=timeout_ms,
        )
