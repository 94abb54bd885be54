from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncContextManager, AsyncIterator, Protocol, Sequence

import structlog
from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Page,
    Request,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from flowsentry.config import MonitoringConfig
from flowsentry.errors import NavigationError

logger = structlog.get_logger(__name__)


class BrowserSession(Protocol):
    """The narrow set of browser operations the probe and flow engines rely on.

    Every operation is bounded by its timeout and raises NavigationError when
    the bound expires or the browser reports a failure.
    """

    async def navigate(self, url: str, *, timeout_s: float) -> int:
        """Load ``url`` until the network settles and return the HTTP status."""

    async def wait_for_element(self, selector: str, *, timeout_s: float) -> None:
        """Wait until ``selector`` is visible."""

    async def click(self, selector: str, *, expect_navigation: bool, timeout_s: float) -> None:
        """Click ``selector`` and wait for the navigation (or network settle) it causes."""

    async def has_any(self, selectors: Sequence[str]) -> bool:
        """Whether the current page contains at least one of ``selectors``."""

    async def screenshot(self, path: str) -> None:
        """Write a full-page PNG to ``path``."""


class SessionFactory(Protocol):
    def session(self) -> AsyncContextManager[BrowserSession]:
        """Acquire a fresh session; leaving the context releases it."""


def _ms(seconds: float) -> float:
    return max(1.0, float(seconds) * 1000.0)


def _short_error(exc: BaseException) -> str:
    # Playwright appends a multi-line call log to every message.
    first = str(exc or "").strip().splitlines()
    return first[0][:500] if first else type(exc).__name__


class _InflightTracker:
    """Counts in-flight requests of a page to decide when the network has settled.

    The page counts as settled once no more than ``max_inflight`` requests have
    been pending for ``quiet_ms`` without interruption. The quiet window only
    opens after the current navigation or click returned (``loaded``); every
    new action closes it again with ``restart``.
    """

    def __init__(self, page: Page, *, max_inflight: int, quiet_ms: int) -> None:
        self._max_inflight = max(0, int(max_inflight))
        self._quiet_s = max(0, int(quiet_ms)) / 1000.0
        self._inflight: set[Request] = set()
        self._loaded = False
        self._quiet_since: float | None = None

        page.on("request", self._on_request)
        page.on("requestfinished", self._on_done)
        page.on("requestfailed", self._on_done)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def restart(self) -> None:
        self._loaded = False
        self._quiet_since = None

    def loaded(self) -> None:
        self._loaded = True
        self._open_window()

    def _open_window(self) -> None:
        if self._loaded and self._quiet_since is None and len(self._inflight) <= self._max_inflight:
            self._quiet_since = asyncio.get_running_loop().time()

    def _on_request(self, request: Request) -> None:
        self._inflight.add(request)
        if len(self._inflight) > self._max_inflight:
            self._quiet_since = None

    def _on_done(self, request: Request) -> None:
        self._inflight.discard(request)
        self._open_window()

    async def wait_settled(self, timeout_s: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, float(timeout_s))
        while True:
            now = loop.time()
            if self._quiet_since is not None and now - self._quiet_since >= self._quiet_s:
                return
            if now >= deadline:
                raise NavigationError(
                    f"Network did not settle within {int(timeout_s * 1000)} ms ({self.inflight} requests in flight)"
                )
            await asyncio.sleep(min(0.05, max(0.0, deadline - now)))


class PlaywrightSession:
    def __init__(self, page: Page, *, max_inflight: int, quiet_ms: int) -> None:
        self._page = page
        self._tracker = _InflightTracker(page, max_inflight=max_inflight, quiet_ms=quiet_ms)

    async def navigate(self, url: str, *, timeout_s: float) -> int:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        self._tracker.restart()
        try:
            response = await self._page.goto(url, wait_until="domcontentloaded", timeout=_ms(timeout_s))
        except PlaywrightTimeoutError as exc:
            raise NavigationError(f"Navigation timeout of {int(timeout_s * 1000)} ms exceeded: {url}") from exc
        except PlaywrightError as exc:
            raise NavigationError(_short_error(exc)) from exc
        if response is None:
            raise NavigationError(f"No response received for {url}")

        self._tracker.loaded()
        await self._tracker.wait_settled(deadline - loop.time())
        return int(response.status)

    async def wait_for_element(self, selector: str, *, timeout_s: float) -> None:
        try:
            await self._page.wait_for_selector(selector, state="visible", timeout=_ms(timeout_s))
        except PlaywrightTimeoutError as exc:
            raise NavigationError(f"Selector {selector!r} not found within {int(timeout_s * 1000)} ms") from exc
        except PlaywrightError as exc:
            raise NavigationError(_short_error(exc)) from exc

    async def click(self, selector: str, *, expect_navigation: bool, timeout_s: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        self._tracker.restart()
        try:
            if expect_navigation:
                async with self._page.expect_navigation(wait_until="domcontentloaded", timeout=_ms(timeout_s)):
                    await self._page.click(selector, timeout=_ms(timeout_s))
            else:
                await self._page.click(selector, timeout=_ms(timeout_s))
        except PlaywrightTimeoutError as exc:
            raise NavigationError(f"Click on {selector!r} did not complete within {int(timeout_s * 1000)} ms") from exc
        except PlaywrightError as exc:
            raise NavigationError(_short_error(exc)) from exc

        self._tracker.loaded()
        await self._tracker.wait_settled(deadline - loop.time())

    async def has_any(self, selectors: Sequence[str]) -> bool:
        if not selectors:
            return False
        try:
            handle = await self._page.query_selector(", ".join(selectors))
        except PlaywrightError as exc:
            raise NavigationError(_short_error(exc)) from exc
        return handle is not None

    async def screenshot(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            await self._page.screenshot(path=path, full_page=True)
        except PlaywrightError as exc:
            raise NavigationError(_short_error(exc)) from exc


class PlaywrightSessionFactory:
    """Hands out one BrowserContext + Page per session on a shared Chromium."""

    def __init__(self, browser: Browser, config: MonitoringConfig) -> None:
        self._browser = browser
        self._config = config

    @asynccontextmanager
    async def session(self) -> AsyncIterator[PlaywrightSession]:
        context = await self._browser.new_context(
            viewport={"width": 1280, "height": 720},
            user_agent=self._config.user_agent,
        )
        try:
            page = await context.new_page()
            yield PlaywrightSession(
                page,
                max_inflight=self._config.network_idle_max_inflight,
                quiet_ms=self._config.network_idle_quiet_ms,
            )
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                logger.warning("Browser context close failed", error=_short_error(exc))


def find_chromium_executable(explicit: str | None = None) -> str | None:
    for candidate in (explicit, os.getenv("CHROMIUM_PATH")):
        if candidate and Path(candidate).exists():
            return candidate

    candidates = [
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    ]
    for path in candidates:
        if Path(path).exists():
            return path
    return None


def _launch_args() -> list[str]:
    args = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-gpu",
        "--disable-extensions",
        "--no-first-run",
        "--no-default-browser-check",
    ]
    shm_bytes = 0
    try:
        st = os.statvfs("/dev/shm")
        shm_bytes = int(st.f_frsize) * int(st.f_blocks)
    except (OSError, AttributeError):
        shm_bytes = 0
    if shm_bytes < (512 * 1024 * 1024):
        # CI runners ship a tiny /dev/shm; renderers crash without this.
        args.append("--disable-dev-shm-usage")
    return args


@asynccontextmanager
async def launch_session_factory(config: MonitoringConfig) -> AsyncIterator[PlaywrightSessionFactory]:
    """Start Playwright and one Chromium for the duration of a run."""
    async with async_playwright() as p:
        launch_kwargs: dict[str, Any] = {"headless": config.browser_headless, "args": _launch_args()}
        chromium_path = find_chromium_executable(config.chromium_path)
        if chromium_path:
            launch_kwargs["executable_path"] = chromium_path

        logger.info("Launching Chromium", executable=chromium_path or "bundled", headless=config.browser_headless)
        browser = await p.chromium.launch(**launch_kwargs)
        try:
            yield PlaywrightSessionFactory(browser, config)
        finally:
            await browser.close()
