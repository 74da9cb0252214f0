"""Tests for multi-strategy element resolution.

@file test_locator_resolver.py
@description Strategy priority, uniqueness and visibility requirements, and
             retry on stale element errors, run against the in-memory page.
"""

from __future__ import annotations


import pytest

from formpilot.engine.locator_resolver import LocatorResolver
from formpilot.engine.types import LocatorDescriptor

from tests.fakes import FakeElement, FakePage


class _FlakyLocator:
    """Raises a stale-element error on the first count() call."""

    def __init__(self, message: str) -> None:
        self.message = message
        self.calls = 0

    async def count(self) -> int:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError(self.message)
        return 1

    async def is_visible(self) -> bool:
        return True


class _FlakyPage(FakePage):
    def __init__(self, message: str) -> None:
        super().__init__()
        self.flaky = _FlakyLocator(message)

    def locator(self, selector):
        return self.flaky


@pytest.mark.asyncio
class TestStrategyOrder:
    """Stable attributes beat structural selectors."""

    async def test_test_id_beats_css(self):
        page = FakePage([
            FakeElement(key="a", test_id="email", css={".field"}),
        ])
        result = await LocatorResolver().resolve(page, LocatorDescriptor(testId="email", css=".field"))
        assert result.found
        assert result.strategy == "testId"
        assert result.attempts == 1

    async def test_falls_through_to_next_strategy_on_zero_matches(self):
        page = FakePage([FakeElement(key="a", css={".email"})])
        result = await LocatorResolver().resolve(page, LocatorDescriptor(testId="missing", css=".email"))
        assert result.strategy == "css"
        assert result.attempts == 2

    async def test_multiple_matches_are_not_accepted(self):
        page = FakePage([
            FakeElement(key="a", css={".input"}, xpath="//input[1]"),
            FakeElement(key="b", css={".input"}),
        ])
        result = await LocatorResolver().resolve(page, LocatorDescriptor(css=".input", xpath="//input[1]"))
        assert result.strategy == "xpath"

    async def test_hidden_element_is_not_accepted(self):
        page = FakePage([FakeElement(key="a", id="email", visible=False)])
        result = await LocatorResolver().resolve(page, LocatorDescriptor(id="email"))
        assert not result.found

    async def test_role_with_accessible_name(self):
        page = FakePage([
            FakeElement(key="n", role="button", text="Next", kind="button"),
            FakeElement(key="s", role="button", text="Submit", kind="button"),
        ])
        result = await LocatorResolver().resolve(page, LocatorDescriptor(role="button", name="Submit"))
        assert result.strategy == "role"

    async def test_name_attribute_used_without_role(self):
        page = FakePage([FakeElement(key="a", name="email")])
        result = await LocatorResolver().resolve(page, LocatorDescriptor(name="email"))
        assert result.strategy == "name"

    async def test_not_found_is_a_result_not_an_error(self):
        result = await LocatorResolver().resolve(FakePage([]), LocatorDescriptor(id="x", css=".y"))
        assert not result.found
        assert result.strategy == "none"
        assert result.locator is None
        assert result.attempts == 2


@pytest.mark.asyncio
class TestStaleRetry:
    """Detached-element errors get one retry; other errors do not."""

    async def test_stale_error_retried(self):
        page = _FlakyPage("Element is not attached to the DOM")
        result = await LocatorResolver(retry_delay_s=0).resolve(page, LocatorDescriptor(css=".x"))
        assert result.found
        assert page.flaky.calls == 2

    async def test_other_errors_treated_as_miss(self):
        page = _FlakyPage("Timeout 30000ms exceeded")
        result = await LocatorResolver(retry_delay_s=0).resolve(page, LocatorDescriptor(css=".x"))
        assert not result.found
        assert page.flaky.calls == 1
