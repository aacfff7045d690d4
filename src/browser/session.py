"""Session data model."""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Viewport(BaseModel):
    width: int = Field(ge=1)
    height: int = Field(ge=1)


class SessionOptions(BaseModel):
    """Per-session launch options as sent by callers (camelCase on the wire)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    headless: Optional[bool] = None
    viewport: Optional[Viewport] = None
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    # True blocks images, fonts and media; a list names resource types
    block_resources: Union[bool, list[str]] = Field(default=False, alias="blockResources")
    block_domains: list[str] = Field(default_factory=list, alias="blockDomains")
    context_options: dict[str, Any] = Field(default_factory=dict, alias="contextOptions")

    def blocked_resource_types(self) -> list[str]:
        if self.block_resources is True:
            return ["image", "font", "media"]
        if not self.block_resources:
            return []
        return list(self.block_resources)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class PageHandle:
    """One tab inside a session."""
    page: Any
    created_at: float
    tab_index: int

    @property
    def is_open(self) -> bool:
        return self.page is not None and not self.page.is_closed()


@dataclass
class Session:
    """A persistent, isolated browsing context addressed by a caller-chosen id."""
    id: str
    context: Any
    options: SessionOptions
    created_at: float
    last_used_at: float
    # Keyed by tab index; indices are never reused
    pages: dict[int, PageHandle] = field(default_factory=dict)
    active_tab: Optional[int] = None
    closed: bool = False

    def touch(self, now: float) -> None:
        self.last_used_at = now

    def mark_closed(self, *_: Any) -> None:
        self.closed = True

    @property
    def is_alive(self) -> bool:
        return not self.closed

    @property
    def next_tab_index(self) -> int:
        return len(self.pages)

    def open_pages(self) -> list[PageHandle]:
        return [handle for handle in self.pages.values() if handle.is_open]
