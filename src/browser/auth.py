"""
Auth state persistence - cookie and web storage snapshots per session.

Snapshots are sensitive; only their size is ever logged.
"""

import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse
import structlog

logger = structlog.get_logger()


# Both reads tolerate opaque origins.
READ_LOCAL_STORAGE = "() => { try { return JSON.stringify(localStorage); } catch (e) { return '{}'; } }"
READ_SESSION_STORAGE = "() => { try { return JSON.stringify(sessionStorage); } catch (e) { return '{}'; } }"

# Seeds storage for the snapshot origin without overwriting keys the site already set.
RESTORE_STORAGE_SCRIPT = """
(() => {
  const state = %s;
  if (location.origin !== state.origin) return;
  const seed = (store, blob) => {
    try {
      const items = JSON.parse(blob || '{}');
      for (const [key, value] of Object.entries(items)) {
        if (store.getItem(key) === null) store.setItem(key, value);
      }
    } catch (e) {}
  };
  seed(localStorage, state.localStorage);
  seed(sessionStorage, state.sessionStorage);
})();
"""


@dataclass
class AuthState:
    """Serialized cookie and storage snapshot of a session."""
    cookies: list[dict[str, Any]] = field(default_factory=list)
    local_storage: str = "{}"
    session_storage: str = "{}"
    origin: Optional[str] = None
    saved_at: float = 0

    def to_json(self) -> dict[str, Any]:
        return {
            "cookies": self.cookies,
            "localStorage": self.local_storage,
            "sessionStorage": self.session_storage,
            "origin": self.origin,
            "savedAt": self.saved_at,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "AuthState":
        return cls(
            cookies=list(data.get("cookies") or []),
            local_storage=data.get("localStorage") or "{}",
            session_storage=data.get("sessionStorage") or "{}",
            origin=data.get("origin"),
            saved_at=data.get("savedAt") or 0,
        )


def _origin_of(url: str) -> Optional[str]:
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return f"{parsed.scheme}://{parsed.netloc}"
    return None


class AuthStateStore:
    """One JSON record per session id under the sessions directory."""

    def __init__(self, sessions_dir: str):
        self.sessions_dir = Path(sessions_dir)

    def path_for(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}_auth.json"

    def read(self, session_id: str) -> Optional[AuthState]:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        return AuthState.from_json(json.loads(path.read_text()))

    def write(self, session_id: str, state: AuthState) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(state.to_json()))
        os.replace(tmp_path, path)

    async def snapshot(self, session_id: str, context: Any) -> Optional[AuthState]:
        """
        Capture and persist the auth state of a live context.

        Storage is read from the first page on an http(s) origin. Returns None
        when the context has no page at all.
        Failures are logged and swallowed.
        """
        try:
            pages = context.pages
            if not pages:
                return None

            page = next((p for p in pages if _origin_of(p.url)), pages[0])
            state = AuthState(
                cookies=await context.cookies(),
                local_storage=await page.evaluate(READ_LOCAL_STORAGE),
                session_storage=await page.evaluate(READ_SESSION_STORAGE),
                origin=_origin_of(page.url),
                saved_at=time.time(),
            )
            self.write(session_id, state)
            logger.debug("auth_state_saved", session_id=session_id, cookies=len(state.cookies))
            return state

        except Exception as e:
            logger.warning("auth_state_save_failed", session_id=session_id, error=str(e))
            return None

    async def restore(self, session_id: str, context: Any) -> Optional[AuthState]:
        """
        Seed a freshly launched context with the persisted auth state.

        Missing or unreadable records are not an error.
        """
        try:
            state = self.read(session_id)
            if state is None:
                return None

            if state.cookies:
                await context.add_cookies(state.cookies)
            if state.origin:
                await context.add_init_script(
                    script=RESTORE_STORAGE_SCRIPT % json.dumps({
                        "origin": state.origin,
                        "localStorage": state.local_storage,
                        "sessionStorage": state.session_storage,
                    })
                )
            logger.debug("auth_state_loaded", session_id=session_id, cookies=len(state.cookies))
            return state

        except Exception as e:
            logger.warning("auth_state_load_failed", session_id=session_id, error=str(e))
            return None
