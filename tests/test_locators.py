"""Tests for locator parsing and resolution."""

import os
import pytest

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.errors import InvalidArgumentsError
from browser.locators import LocatorSpec, parse_locator, resolve_locator

from fakes import FakeContext


@pytest.fixture
def page():
    return FakeContext("profile", {}, {}).pages[0]


class TestParseLocator:
    """Test string and object address expressions."""

    @pytest.mark.parametrize("sel, expected", [
        ("text=Sign in", LocatorSpec(kind="text", value="Sign in")),
        ("role=button", LocatorSpec(kind="role", value="button")),
        ("label=Email", LocatorSpec(kind="label", value="Email")),
        ("placeholder=Search", LocatorSpec(kind="placeholder", value="Search")),
        ("testId=submit", LocatorSpec(kind="test_id", value="submit")),
        ("xpath=//form/button", LocatorSpec(kind="xpath", value="//form/button")),
        ("css=#main .item", LocatorSpec(kind="css", value="#main .item")),
        ("#submit", LocatorSpec(kind="css", value="#submit")),
    ])
    def test_string_forms(self, sel, expected):
        assert parse_locator(sel) == expected

    def test_role_object_with_name(self):
        spec = parse_locator({"role": "button", "name": "Sign in", "exact": True})

        assert spec == LocatorSpec(kind="role", value="button", name="Sign in", exact=True)

    def test_object_priority(self):
        """Role wins over text, text over css."""
        assert parse_locator({"css": "#x", "text": "Hello", "role": "link"}).kind == "role"
        assert parse_locator({"css": "#x", "text": "Hello"}).kind == "text"
        assert parse_locator({"css": "#x", "xpath": "//a"}).kind == "xpath"

    def test_object_test_id(self):
        assert parse_locator({"testId": "login"}) == LocatorSpec(kind="test_id", value="login")

    @pytest.mark.parametrize("sel", ["", "   ", {}, {"name": "orphan"}, 42, None, ["#a"]])
    def test_invalid(self, sel):
        with pytest.raises(InvalidArgumentsError) as exc_info:
            parse_locator(sel)
        assert exc_info.value.context["field"] == "locator"


class TestResolveLocator:
    """Test mapping onto page query methods."""

    @pytest.mark.parametrize("sel, key", [
        ("text=Sign in", "text=Sign in"),
        ({"role": "button", "name": "Go"}, "role=button[name=Go]"),
        ({"role": "button"}, "role=button"),
        ({"label": "Email"}, "label=Email"),
        ({"placeholder": "Search"}, "placeholder=Search"),
        ({"testId": "save"}, "testId=save"),
        ("xpath=//div", "xpath=//div"),
        ("#submit", "#submit"),
    ])
    def test_resolves_to_page_query(self, page, sel, key):
        locator = resolve_locator(page, sel)
        assert locator.key == key

    def test_resolution_is_lazy(self, page):
        resolve_locator(page, "#submit")
        assert page.waits == []
