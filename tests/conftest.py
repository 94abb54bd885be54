from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import pytest

from flowsentry.errors import NavigationError
from flowsentry.sites import SiteDescriptor, SyntheticSelectors, SyntheticSettings, UrlTarget


class FakeSession:
    """Scripted BrowserSession: URLs in ``failing_urls`` raise, selectors in ``present`` exist."""

    def __init__(
        self,
        *,
        statuses: dict[str, int],
        failing_urls: set[str],
        present: set[str],
        screenshot_error: bool,
        calls: list[tuple[Any, ...]],
    ) -> None:
        self._statuses = statuses
        self._failing_urls = failing_urls
        self._present = present
        self._screenshot_error = screenshot_error
        self.calls = calls

    async def navigate(self, url: str, *, timeout_s: float) -> int:
        self.calls.append(("navigate", url, timeout_s))
        if url in self._failing_urls:
            raise NavigationError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        return self._statuses.get(url, 200)

    async def wait_for_element(self, selector: str, *, timeout_s: float) -> None:
        self.calls.append(("wait_for_element", selector, timeout_s))
        if selector not in self._present:
            raise NavigationError(f"Selector {selector!r} not found within {int(timeout_s * 1000)} ms")

    async def click(self, selector: str, *, expect_navigation: bool, timeout_s: float) -> None:
        self.calls.append(("click", selector, expect_navigation, timeout_s))

    async def has_any(self, selectors: Sequence[str]) -> bool:
        self.calls.append(("has_any", tuple(selectors)))
        return any(s in self._present for s in selectors)

    async def screenshot(self, path: str) -> None:
        self.calls.append(("screenshot", path))
        if self._screenshot_error:
            raise NavigationError("Target page, context or browser has been closed")
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_bytes(b"\x89PNG fake")


class FakeSessionFactory:
    def __init__(
        self,
        *,
        statuses: dict[str, int] | None = None,
        failing_urls: set[str] | None = None,
        present: set[str] | None = None,
        screenshot_error: bool = False,
        acquire_error: Exception | None = None,
        release_error: Exception | None = None,
    ) -> None:
        self.statuses = statuses or {}
        self.failing_urls = failing_urls or set()
        self.present = present or set()
        self.screenshot_error = screenshot_error
        self.acquire_error = acquire_error
        self.release_error = release_error
        self.calls: list[tuple[Any, ...]] = []
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def session(self) -> AsyncIterator[FakeSession]:
        if self.acquire_error is not None:
            raise self.acquire_error
        self.opened += 1
        try:
            yield FakeSession(
                statuses=self.statuses,
                failing_urls=self.failing_urls,
                present=self.present,
                screenshot_error=self.screenshot_error,
                calls=self.calls,
            )
        finally:
            self.closed += 1
            if self.release_error is not None:
                raise self.release_error

    def navigations(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "navigate"]


@pytest.fixture
def fake_sessions():
    return FakeSessionFactory


@pytest.fixture
def shop_site() -> SiteDescriptor:
    return SiteDescriptor(
        client="acme",
        domain="shop.acme.example",
        urls=(UrlTarget("homepage", "/"), UrlTarget("cart", "/cart")),
        synthetic=SyntheticSettings(
            enabled=True,
            selectors=SyntheticSelectors(
                product_link="a.product",
                add_to_cart="button.add",
                proceed_checkout="button.checkout",
            ),
        ),
    )


@pytest.fixture
def plain_site() -> SiteDescriptor:
    return SiteDescriptor(
        client="globex",
        domain="www.globex.example",
        urls=(UrlTarget("homepage", "/"), UrlTarget("status", "/health")),
        synthetic=None,
    )
