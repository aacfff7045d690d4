"""
Session Registry - owns persistent browsing contexts keyed by session id.

Features:
- Get-or-create with per-id serialization
- Hard capacity ceiling with least-recently-used eviction
- Periodic idle sweep
- Auth state snapshot on every teardown path, restore on creation
"""

import asyncio
import random
import re
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Union
import structlog
from pydantic import ValidationError as PydanticValidationError

from core.config import SessionConfig
from core.errors import InvalidArgumentsError, SessionCreateError
from browser.auth import AuthStateStore
from browser.session import Session, SessionOptions

logger = structlog.get_logger()

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

# Auth records sit beside profile directories as <id>_auth.json
AUTH_RECORD_MARKER = "_auth.json"


def validate_session_id(session_id: str) -> str:
    """Session ids name a profile directory, so they must be path-safe."""
    if (
        not isinstance(session_id, str)
        or not SESSION_ID_PATTERN.match(session_id)
        or session_id in (".", "..")
        or AUTH_RECORD_MARKER in session_id
    ):
        raise InvalidArgumentsError(f"Invalid session id: {session_id!r}", field="sessionId")
    return session_id


def build_route_handler(blocked_types: list[str], blocked_domains: list[str]) -> Callable:
    """Route handler aborting requests by resource type or domain substring."""

    async def handler(route: Any) -> None:
        request = route.request
        if blocked_types and request.resource_type in blocked_types:
            await route.abort()
            return
        if blocked_domains and any(domain in request.url for domain in blocked_domains):
            await route.abort()
            return
        await route.continue_()

    return handler


class SessionRegistry:
    """
    Pool of live sessions.

    Args:
        driver: Object with an async launch_persistent_context(user_data_dir, **options)
        config: Pool limits, timeouts and launch defaults
        auth_store: Auth state persistence (defaults to files in sessions_dir)
        clock: Wall clock in seconds, injectable for tests
    """

    def __init__(
        self,
        driver: Any,
        config: Optional[SessionConfig] = None,
        auth_store: Optional[AuthStateStore] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.driver = driver
        self.config = config or SessionConfig()
        self.auth_store = auth_store or AuthStateStore(self.config.sessions_dir)
        self.clock = clock
        self._rng = rng or random.Random()

        self._sessions: dict[str, Session] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_lock_users: dict[str, int] = {}
        self._closing: dict[str, asyncio.Event] = {}
        self._admission_lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    @property
    def max_sessions(self) -> int:
        return self.config.max_sessions

    def profile_dir(self, session_id: str) -> Path:
        return Path(self.config.sessions_dir) / session_id

    def get(self, session_id: str) -> Optional[Session]:
        """Live session for id, refreshing its last use; None if unknown or dead."""
        session = self._sessions.get(session_id)
        if session is None or not session.is_alive:
            return None
        session.touch(self.clock())
        return session

    async def get_or_create(
        self,
        session_id: str,
        options: Optional[Union[SessionOptions, dict[str, Any]]] = None,
    ) -> Session:
        """
        Return the session for id, creating it on first use.

        Options only apply at creation; a known session keeps its original options.
        """
        validate_session_id(session_id)
        options = self._coerce_options(options)

        session = self.get(session_id)
        if session:
            return session

        async with self._key_lock(session_id):
            # Another task may have created it while we waited
            session = self.get(session_id)
            if session:
                return session

            stale = self._sessions.pop(session_id, None)
            if stale:
                logger.info("session_dead", session_id=session_id)
                await self._teardown(stale, reason="dead")

            # An eviction may still be saving this id's profile
            await self._wait_closed(session_id)
            return await self._create(session_id, options)

    async def close(self, session_id: str, reason: str = "explicit") -> bool:
        """Snapshot auth state and close the session. No-op for unknown ids."""
        async with self._key_lock(session_id):
            return await self._close(session_id, reason)

    async def close_all(self) -> None:
        """Close every session."""
        for session_id in list(self._sessions):
            await self.close(session_id, reason="shutdown")

    async def sweep(self) -> list[str]:
        """Close sessions idle longer than the expiry threshold."""
        now = self.clock()
        expired = [
            session_id for session_id, session in self._sessions.items()
            if now - session.last_used_at > self.config.idle_timeout_seconds
        ]

        for session_id in expired:
            await self.close(session_id, reason="idle")

        if expired:
            logger.info("sessions_swept", closed=expired, remaining=len(self._sessions))
        return expired

    async def start(self) -> None:
        """Start the periodic idle sweep."""
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "registry_started",
            max_sessions=self.config.max_sessions,
            idle_timeout_seconds=self.config.idle_timeout_seconds,
        )

    async def stop(self) -> None:
        """Stop the sweep and close all sessions."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.close_all()
        logger.info("registry_stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("session_sweep_failed", error=str(e))

    @asynccontextmanager
    async def _key_lock(self, session_id: str) -> AsyncIterator[None]:
        """Serialize work on one id. The lock is dropped once no task holds or awaits it."""
        lock = self._key_locks.setdefault(session_id, asyncio.Lock())
        self._key_lock_users[session_id] = self._key_lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_lock_users[session_id] -= 1
            if not self._key_lock_users[session_id]:
                del self._key_lock_users[session_id]
                del self._key_locks[session_id]

    async def _close(self, session_id: str, reason: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        closed = asyncio.Event()
        self._closing[session_id] = closed
        try:
            await self._teardown(session, reason=reason)
        finally:
            del self._closing[session_id]
            closed.set()
        return True

    async def _wait_closed(self, session_id: str) -> None:
        closing = self._closing.get(session_id)
        if closing:
            await closing.wait()

    async def _create(self, session_id: str, options: SessionOptions) -> Session:
        async with self._admission_lock:
            while len(self._sessions) >= self.config.max_sessions:
                await self._evict_lru()

            context = await self._launch(session_id, options)

            now = self.clock()
            session = Session(
                id=session_id,
                context=context,
                options=options,
                created_at=now,
                last_used_at=now,
            )
            context.on("close", session.mark_closed)
            self._sessions[session_id] = session

        logger.info("session_created", session_id=session_id, pool_size=len(self._sessions))
        return session

    async def _launch(self, session_id: str, options: SessionOptions) -> Any:
        """Launch and prepare a context; nothing is left open if any step fails."""
        try:
            context = await self.driver.launch_persistent_context(
                str(self.profile_dir(session_id)),
                **self._context_options(options),
            )
        except Exception as e:
            logger.error("session_create_failed", session_id=session_id, error=str(e))
            raise SessionCreateError(
                f"Failed to create session {session_id}: {e}",
                session_id=session_id,
            ) from e

        try:
            await self._apply_blocking(context, options)
        except Exception as e:
            logger.error("session_setup_failed", session_id=session_id, error=str(e))
            try:
                await context.close()
            except Exception as close_error:
                logger.warning("session_setup_close_failed", session_id=session_id, error=str(close_error))
            raise SessionCreateError(
                f"Failed to create session {session_id}: {e}",
                session_id=session_id,
            ) from e

        await self.auth_store.restore(session_id, context)
        return context

    def _context_options(self, options: SessionOptions) -> dict[str, Any]:
        cfg = self.config
        viewport = options.viewport.model_dump() if options.viewport else cfg.viewport.model_dump()
        context_options: dict[str, Any] = {
            "headless": cfg.headless if options.headless is None else options.headless,
            "viewport": viewport,
            "user_agent": options.user_agent or self._rng.choice(cfg.user_agents),
            "accept_downloads": True,
            "ignore_https_errors": True,
            "permissions": ["geolocation", "notifications"],
        }
        context_options.update(options.context_options)
        return context_options

    async def _apply_blocking(self, context: Any, options: SessionOptions) -> None:
        blocked_types = options.blocked_resource_types()
        if not blocked_types and not options.block_domains:
            return
        await context.route("**/*", build_route_handler(blocked_types, options.block_domains))

    async def _evict_lru(self) -> None:
        oldest = min(self._sessions.values(), key=lambda s: s.last_used_at)
        logger.info("session_evicted", session_id=oldest.id, last_used_at=oldest.last_used_at)
        # Holding the admission lock here, so skip the id lock; creators of
        # this id wait on its closing event instead
        await self._close(oldest.id, reason="evicted")

    async def _teardown(self, session: Session, reason: str) -> None:
        if session.is_alive:
            await self.auth_store.snapshot(session.id, session.context)

        try:
            await session.context.close()
        except Exception as e:
            logger.warning("session_close_error", session_id=session.id, error=str(e))

        session.mark_closed()
        logger.info("session_closed", session_id=session.id, reason=reason)

    @staticmethod
    def _coerce_options(options: Optional[Union[SessionOptions, dict[str, Any]]]) -> SessionOptions:
        if options is None:
            return SessionOptions()
        if isinstance(options, SessionOptions):
            return options
        try:
            return SessionOptions.model_validate(options)
        except PydanticValidationError as e:
            raise InvalidArgumentsError(f"Invalid session options: {e}", field="options") from e
