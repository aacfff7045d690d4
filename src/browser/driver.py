"""
Browser Driver - owns the Playwright runtime and launches persistent contexts.

One driver per process; each session gets its own persistent context
rooted at a profile directory.
"""

import asyncio
from typing import Optional, Any
from pathlib import Path
import structlog

from core.errors import DependencyMissingError

try:
    from playwright.async_api import async_playwright, BrowserContext, Playwright
    PLAYWRIGHT_AVAILABLE = True
except ImportError:
    PLAYWRIGHT_AVAILABLE = False
    async_playwright = None
    BrowserContext = Any
    Playwright = Any

logger = structlog.get_logger()

INSTALL_HINT = "pip install playwright && playwright install chromium"

LAUNCH_ARGS = [
    "--disable-dev-shm-usage",  # Overcome limited /dev/shm in Docker
    "--no-first-run",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--mute-audio",
    "--disable-blink-features=AutomationControlled",
]


class BrowserDriver:
    """
    Starts Playwright lazily and launches Chromium persistent contexts.

    The runtime is shared by all sessions and stopped once on shutdown.
    """

    def __init__(self, launch_args: Optional[list[str]] = None):
        if not PLAYWRIGHT_AVAILABLE:
            raise DependencyMissingError("playwright not installed", install=INSTALL_HINT)

        self.launch_args = launch_args if launch_args is not None else list(LAUNCH_ARGS)
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Start the Playwright runtime."""
        async with self._lock:
            if self._playwright:
                return
            self._playwright = await async_playwright().start()
            logger.info("driver_started")

    async def launch_persistent_context(self, user_data_dir: str, **options: Any) -> BrowserContext:
        """
        Launch an isolated persistent context.

        Args:
            user_data_dir: Profile directory for cookies, cache and storage
            **options: Playwright context options (viewport, user_agent, headless...)
        """
        if not self._playwright:
            await self.start()

        Path(user_data_dir).mkdir(parents=True, exist_ok=True)
        options.setdefault("args", self.launch_args)
        return await self._playwright.chromium.launch_persistent_context(user_data_dir, **options)

    async def stop(self) -> None:
        """Stop the Playwright runtime."""
        async with self._lock:
            if not self._playwright:
                return
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.error("driver_stop_error", error=str(e))
            self._playwright = None
            logger.info("driver_stopped")

    @property
    def is_started(self) -> bool:
        return self._playwright is not None
