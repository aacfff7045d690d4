"""Persistent browser session engine built on Playwright."""

from .session import Session, PageHandle, SessionOptions
from .registry import SessionRegistry
from .pages import PageMultiplexer
from .interaction import HumanInteraction
from .timing import DelayProvider
from .recovery import RetryPolicy, execute_with_retry, with_retry
from .locators import parse_locator, resolve_locator

__all__ = [
    "Session",
    "PageHandle",
    "SessionOptions",
    "SessionRegistry",
    "PageMultiplexer",
    "HumanInteraction",
    "DelayProvider",
    "RetryPolicy",
    "execute_with_retry",
    "with_retry",
    "parse_locator",
    "resolve_locator",
]
