"""Locator resolution from string or object address expressions."""

from dataclasses import dataclass
from typing import Any, Optional

from core.errors import InvalidArgumentsError


STRING_PREFIXES = {
    "text=": "text",
    "role=": "role",
    "label=": "label",
    "placeholder=": "placeholder",
    "testId=": "test_id",
    "xpath=": "xpath",
    "css=": "css",
}

# First key present wins.
OBJECT_PRIORITY = ("role", "text", "label", "placeholder", "testId", "xpath", "css")


@dataclass(frozen=True)
class LocatorSpec:
    """Parsed address of one element; applied to a page lazily."""
    kind: str
    value: str
    name: Optional[str] = None
    exact: Optional[bool] = None

    def resolve(self, page: Any) -> Any:
        """Build a Playwright locator. Nothing touches the page until it is awaited."""
        if self.kind == "role":
            if self.name:
                return page.get_by_role(self.value, name=self.name, exact=bool(self.exact))
            return page.get_by_role(self.value)
        if self.kind == "text":
            return page.get_by_text(self.value, exact=self.exact)
        if self.kind == "label":
            return page.get_by_label(self.value, exact=self.exact)
        if self.kind == "placeholder":
            return page.get_by_placeholder(self.value, exact=self.exact)
        if self.kind == "test_id":
            return page.get_by_test_id(self.value)
        if self.kind == "xpath":
            return page.locator(f"xpath={self.value}")
        return page.locator(self.value)


def parse_locator(sel: Any) -> LocatorSpec:
    """
    Parse an address expression.

    Strings may carry a strategy prefix (text=, role=, label=, placeholder=,
    testId=, xpath=, css=); unprefixed strings are plain selectors. Objects
    use keys role(+name, exact), text, label, placeholder (+exact), testId,
    xpath, css.
    """
    if isinstance(sel, str):
        s = sel.strip()
        if not s:
            raise InvalidArgumentsError("Invalid locator: empty string", field="locator")
        for prefix, kind in STRING_PREFIXES.items():
            if s.startswith(prefix):
                return LocatorSpec(kind=kind, value=s[len(prefix):])
        return LocatorSpec(kind="css", value=s)

    if isinstance(sel, dict):
        exact = bool(sel.get("exact"))
        for key in OBJECT_PRIORITY:
            value = sel.get(key)
            if not value:
                continue
            if key == "role":
                return LocatorSpec(kind="role", value=str(value), name=sel.get("name"), exact=exact)
            if key in ("text", "label", "placeholder"):
                return LocatorSpec(kind=key, value=str(value), exact=exact)
            if key == "testId":
                return LocatorSpec(kind="test_id", value=str(value))
            return LocatorSpec(kind=key, value=str(value))

    raise InvalidArgumentsError("Invalid locator", field="locator")


def resolve_locator(page: Any, sel: Any) -> Any:
    """Parse and apply an address expression to a page."""
    return parse_locator(sel).resolve(page)
