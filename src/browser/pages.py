"""
Page Multiplexer - tabs within a session.

Pages are reused by hostname so repeated commands against one site land
in the same tab.
"""

from typing import Any, Optional
from urllib.parse import urlparse
import structlog

from core.errors import TabNotFoundError
from browser.registry import SessionRegistry
from browser.session import PageHandle, Session, SessionOptions

logger = structlog.get_logger()


def _hostname(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return urlparse(url).hostname or None


class PageMultiplexer:
    """
    Creates, reuses and switches pages of registry sessions.

    Args:
        registry: Session owner
        navigation_timeout_ms: Default goto timeout
    """

    def __init__(self, registry: SessionRegistry, navigation_timeout_ms: int = 30000):
        self.registry = registry
        self.navigation_timeout_ms = navigation_timeout_ms

    async def get_or_create_page(
        self,
        session_id: str,
        url: Optional[str] = None,
        reuse_tab: bool = True,
        wait_until: str = "load",
        timeout_ms: Optional[int] = None,
        options: Optional[SessionOptions] = None,
    ) -> Any:
        """
        Return a page of the session, navigated to url when given.

        With reuse_tab, a page whose current URL contains the target hostname
        is reused; the match is a plain substring test on the page URL.
        Without a url, the foreground tab is preferred.
        """
        session = await self.registry.get_or_create(session_id, options)
        timeout_ms = timeout_ms or self.navigation_timeout_ms

        if reuse_tab:
            handle = self._find_reusable(session, url)
            if handle:
                if url and handle.page.url != url:
                    await handle.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
                return handle.page

        page = self._launch_page(session) or await session.context.new_page()
        handle = PageHandle(
            page=page,
            created_at=self.registry.clock(),
            tab_index=session.next_tab_index,
        )
        session.pages[handle.tab_index] = handle
        logger.debug("page_created", session_id=session_id, tab_index=handle.tab_index)

        if url:
            try:
                await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            except Exception:
                # A tab that never loaded is closed; its index stays retired
                await self._discard(session, handle)
                raise

        return page

    async def _discard(self, session: Session, handle: PageHandle) -> None:
        if session.active_tab == handle.tab_index:
            session.active_tab = None
        try:
            await handle.page.close()
        except Exception as e:
            logger.debug("page_discard_failed", session_id=session.id, tab_index=handle.tab_index, error=str(e))

    @staticmethod
    def _launch_page(session: Session) -> Optional[Any]:
        """Blank page a persistent context opens at launch, adopted as the first tab."""
        if session.pages:
            return None
        for page in session.context.pages:
            if not page.is_closed() and page.url == "about:blank":
                return page
        return None

    def _find_reusable(self, session: Session, url: Optional[str]) -> Optional[PageHandle]:
        hostname = _hostname(url)

        if not hostname:
            active = session.pages.get(session.active_tab) if session.active_tab is not None else None
            if active and active.is_open:
                return active

        for handle in session.pages.values():
            if not handle.is_open:
                continue
            if not hostname or hostname in handle.page.url:
                return handle
        return None

    def _open_handle(self, session_id: str, tab_index: int) -> tuple[Session, PageHandle]:
        session = self.registry.get(session_id)
        if session is None:
            raise TabNotFoundError(
                f"Tab {tab_index} not found in session {session_id}",
                session_id=session_id,
                tab_index=tab_index,
            )

        handle = session.pages.get(tab_index)
        if handle is None:
            raise TabNotFoundError(
                f"Tab {tab_index} not found in session {session_id}",
                session_id=session_id,
                tab_index=tab_index,
            )
        if not handle.is_open:
            raise TabNotFoundError(
                f"Tab {tab_index} is closed",
                session_id=session_id,
                tab_index=tab_index,
            )
        return session, handle

    async def switch_tab(self, session_id: str, tab_index: int) -> Any:
        """Bring a tab to the foreground and make it the default page."""
        session, handle = self._open_handle(session_id, tab_index)
        await handle.page.bring_to_front()
        session.active_tab = tab_index
        logger.debug("tab_switched", session_id=session_id, tab_index=tab_index)
        return handle.page

    async def close_tab(self, session_id: str, tab_index: int) -> None:
        """Close one tab; its index is not reused."""
        session, handle = self._open_handle(session_id, tab_index)
        await handle.page.close()
        if session.active_tab == tab_index:
            session.active_tab = None
        logger.debug("tab_closed", session_id=session_id, tab_index=tab_index)

    async def get_tab_info(self, session_id: str) -> list[dict[str, Any]]:
        """Ordered info for open tabs; empty for an unknown session."""
        session = self.registry.get(session_id)
        if session is None:
            return []

        tabs = []
        for index, handle in sorted(session.pages.items()):
            if not handle.is_open:
                continue
            tabs.append({
                "index": index,
                "url": handle.page.url,
                "title": await handle.page.title(),
                "createdAt": handle.created_at,
                "active": session.active_tab == index,
            })
        return tabs

    def find_tab(self, session_id: str, page: Any) -> Optional[int]:
        """Tab index of a page object within the session, if tracked."""
        session = self.registry.get(session_id)
        if session is None:
            return None
        for index, handle in session.pages.items():
            if handle.page is page:
                return index
        return None
