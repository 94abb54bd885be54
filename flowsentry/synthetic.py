"""Synthetic checkout flow as an explicit state machine.

The flow walks a fixed sequence of states. Every step handler returns an
outcome (ok / skipped / failed) and the next state is looked up in
``TRANSITIONS``. Skips and the single cart -> checkout fallback are edges in
that table, so the recovery policy can be read (and tested) in one place.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import structlog

from flowsentry.browser import BrowserSession, SessionFactory
from flowsentry.config import MonitoringConfig
from flowsentry.errors import FlowSentryError, NavigationError, VerificationFailure
from flowsentry.models import StepRecord, SyntheticFlowResult, utc_now_iso
from flowsentry.sites import SiteDescriptor

logger = structlog.get_logger(__name__)

CHECKOUT_MARKERS: tuple[str, ...] = (
    'input[name="email"]',
    "#email",
    ".checkout-form",
    '[data-testid="checkout"]',
    ".checkout",
)

VERIFY_FAILURE_MESSAGE = "Checkout page not loaded properly - no checkout form found"


class FlowState(str, Enum):
    START = "start"
    HOMEPAGE = "homepage"
    PRODUCT_PAGE = "product_page"
    ADD_TO_CART = "add_to_cart"
    CART = "cart"
    CHECKOUT_FALLBACK = "checkout_fallback"
    PROCEED_TO_CHECKOUT = "proceed_to_checkout"
    VERIFY = "verify"
    SUCCESS = "success"
    FAILURE = "failure"


class StepOutcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_STATES = frozenset({FlowState.SUCCESS, FlowState.FAILURE})

TRANSITIONS: dict[tuple[FlowState, StepOutcome], FlowState] = {
    (FlowState.START, StepOutcome.OK): FlowState.HOMEPAGE,
    (FlowState.HOMEPAGE, StepOutcome.OK): FlowState.PRODUCT_PAGE,
    (FlowState.HOMEPAGE, StepOutcome.FAILED): FlowState.FAILURE,
    (FlowState.PRODUCT_PAGE, StepOutcome.OK): FlowState.ADD_TO_CART,
    (FlowState.PRODUCT_PAGE, StepOutcome.SKIPPED): FlowState.ADD_TO_CART,
    (FlowState.ADD_TO_CART, StepOutcome.OK): FlowState.CART,
    (FlowState.ADD_TO_CART, StepOutcome.SKIPPED): FlowState.CART,
    (FlowState.CART, StepOutcome.OK): FlowState.PROCEED_TO_CHECKOUT,
    (FlowState.CART, StepOutcome.FAILED): FlowState.CHECKOUT_FALLBACK,
    (FlowState.CHECKOUT_FALLBACK, StepOutcome.OK): FlowState.PROCEED_TO_CHECKOUT,
    (FlowState.CHECKOUT_FALLBACK, StepOutcome.FAILED): FlowState.PROCEED_TO_CHECKOUT,
    (FlowState.PROCEED_TO_CHECKOUT, StepOutcome.OK): FlowState.VERIFY,
    (FlowState.PROCEED_TO_CHECKOUT, StepOutcome.SKIPPED): FlowState.VERIFY,
    (FlowState.VERIFY, StepOutcome.OK): FlowState.SUCCESS,
    (FlowState.VERIFY, StepOutcome.FAILED): FlowState.FAILURE,
}


def next_state(state: FlowState, outcome: StepOutcome) -> FlowState:
    try:
        return TRANSITIONS[(state, outcome)]
    except KeyError:
        raise ValueError(f"No transition from {state.value!r} on {outcome.value!r}") from None


@dataclass(frozen=True)
class FlowTimeouts:
    homepage_s: float = 15.0
    navigation_s: float = 10.0
    selector_s: float = 5.0

    @classmethod
    def from_config(cls, config: MonitoringConfig) -> FlowTimeouts:
        return cls(
            homepage_s=config.homepage_timeout_seconds,
            navigation_s=config.navigation_timeout_seconds,
            selector_s=config.selector_timeout_seconds,
        )


StepResult = tuple[StepOutcome, str | None]
StepHandler = Callable[[BrowserSession, SiteDescriptor], Awaitable[StepResult]]


class SyntheticFlowEngine:
    def __init__(
        self,
        sessions: SessionFactory,
        *,
        screenshots_dir: Path | str = "screenshots",
        timeouts: FlowTimeouts | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._sessions = sessions
        self._screenshots_dir = Path(screenshots_dir)
        self._timeouts = timeouts or FlowTimeouts()
        self._clock = clock
        self._handlers: dict[FlowState, StepHandler] = {
            FlowState.HOMEPAGE: self._homepage,
            FlowState.PRODUCT_PAGE: self._product_page,
            FlowState.ADD_TO_CART: self._add_to_cart,
            FlowState.CART: self._cart,
            FlowState.CHECKOUT_FALLBACK: self._checkout_fallback,
            FlowState.PROCEED_TO_CHECKOUT: self._proceed_to_checkout,
            FlowState.VERIFY: self._verify,
        }

    # -- step handlers -------------------------------------------------

    async def _homepage(self, session: BrowserSession, site: SiteDescriptor) -> StepResult:
        try:
            await session.navigate(site.url_for("/"), timeout_s=self._timeouts.homepage_s)
        except NavigationError as exc:
            return StepOutcome.FAILED, f"Homepage failed to load: {exc}"
        return StepOutcome.OK, None

    async def _optional_click(
        self,
        session: BrowserSession,
        selector: str | None,
        *,
        expect_navigation: bool,
    ) -> StepResult:
        if not selector:
            return StepOutcome.SKIPPED, "no selector configured"
        try:
            await session.wait_for_element(selector, timeout_s=self._timeouts.selector_s)
            await session.click(selector, expect_navigation=expect_navigation, timeout_s=self._timeouts.navigation_s)
        except NavigationError as exc:
            return StepOutcome.SKIPPED, str(exc)
        return StepOutcome.OK, None

    async def _product_page(self, session: BrowserSession, site: SiteDescriptor) -> StepResult:
        selectors = site.synthetic.selectors if site.synthetic else None
        return await self._optional_click(
            session, selectors.product_link if selectors else None, expect_navigation=True
        )

    async def _add_to_cart(self, session: BrowserSession, site: SiteDescriptor) -> StepResult:
        # Add-to-cart usually updates the page in place, so wait for the network instead of a navigation.
        selectors = site.synthetic.selectors if site.synthetic else None
        return await self._optional_click(
            session, selectors.add_to_cart if selectors else None, expect_navigation=False
        )

    async def _proceed_to_checkout(self, session: BrowserSession, site: SiteDescriptor) -> StepResult:
        selectors = site.synthetic.selectors if site.synthetic else None
        return await self._optional_click(
            session, selectors.proceed_checkout if selectors else None, expect_navigation=True
        )

    async def _goto(self, session: BrowserSession, site: SiteDescriptor, path: str) -> StepResult:
        try:
            await session.navigate(site.url_for(path), timeout_s=self._timeouts.navigation_s)
        except NavigationError as exc:
            return StepOutcome.FAILED, str(exc)
        return StepOutcome.OK, None

    async def _cart(self, session: BrowserSession, site: SiteDescriptor) -> StepResult:
        return await self._goto(session, site, "/cart")

    async def _checkout_fallback(self, session: BrowserSession, site: SiteDescriptor) -> StepResult:
        return await self._goto(session, site, "/checkout")

    async def _verify(self, session: BrowserSession, site: SiteDescriptor) -> StepResult:
        try:
            if not await session.has_any(CHECKOUT_MARKERS):
                raise VerificationFailure(VERIFY_FAILURE_MESSAGE)
        except (NavigationError, VerificationFailure) as exc:
            return StepOutcome.FAILED, str(exc)
        return StepOutcome.OK, None

    # -- driver ----------------------------------------------------------

    async def _capture_failure(self, session: BrowserSession, site: SiteDescriptor) -> str | None:
        path = self._screenshots_dir / f"{site.client}-{int(time.time() * 1000)}.png"
        try:
            await session.screenshot(str(path))
        except (FlowSentryError, OSError) as exc:
            logger.warning("Failure screenshot not captured", client=site.client, error=str(exc))
            return None
        logger.info("Failure screenshot saved", client=site.client, path=str(path))
        return str(path)

    async def _walk(
        self,
        session: BrowserSession,
        site: SiteDescriptor,
        steps: list[StepRecord],
    ) -> tuple[FlowState, str | None]:
        state = next_state(FlowState.START, StepOutcome.OK)
        error: str | None = None
        while state not in TERMINAL_STATES:
            handler = self._handlers[state]
            outcome, detail = await handler(session, site)
            steps.append(StepRecord(state=state.value, outcome=outcome.value, detail=detail))
            logger.debug("Flow step", client=site.client, state=state.value, outcome=outcome.value, detail=detail)
            if outcome is StepOutcome.FAILED:
                error = detail
            state = next_state(state, outcome)
        if state is FlowState.SUCCESS:
            error = None
        return state, error

    async def run_flow(self, site: SiteDescriptor) -> SyntheticFlowResult:
        started = time.perf_counter()
        steps: list[StepRecord] = []
        state = FlowState.FAILURE
        error: str | None = None
        screenshot_ref: str | None = None

        logger.info("Running synthetic flow", client=site.client, domain=site.domain)
        walked = False
        try:
            async with self._sessions.session() as session:
                try:
                    state, error = await self._walk(session, site, steps)
                except Exception as exc:  # noqa: BLE001 - flow failures are recorded, not raised
                    state = FlowState.FAILURE
                    error = f"{type(exc).__name__}: {exc}"
                if state is FlowState.FAILURE:
                    screenshot_ref = await self._capture_failure(session, site)
                walked = True
        except Exception as exc:  # noqa: BLE001 - session acquisition/release failure
            if walked:
                # The walk already decided the outcome; a failed release is only logged.
                logger.warning(
                    "Browser session release failed",
                    client=site.client,
                    error=f"{type(exc).__name__}: {exc}",
                )
            else:
                state = FlowState.FAILURE
                error = error or f"{type(exc).__name__}: {exc}"

        duration_ms = round((time.perf_counter() - started) * 1000.0, 3)
        success = state is FlowState.SUCCESS
        if success:
            logger.info("Synthetic flow passed", client=site.client, duration_ms=duration_ms)
        else:
            logger.warning("Synthetic flow failed", client=site.client, duration_ms=duration_ms, error=error)

        return SyntheticFlowResult(
            client=site.client,
            domain=site.domain,
            success=success,
            duration_ms=duration_ms,
            timestamp=self._clock(),
            error=None if success else (error or "synthetic flow failed"),
            screenshot_ref=None if success else screenshot_ref,
            steps=tuple(steps),
        )

    async def run(self, sites: Iterable[SiteDescriptor]) -> list[SyntheticFlowResult]:
        results: list[SyntheticFlowResult] = []
        for site in sites:
            if not site.synthetic_enabled:
                logger.info("Skipping synthetic flow (disabled)", client=site.client)
                continue
            results.append(await self.run_flow(site))

        passed = sum(1 for r in results if r.success)
        logger.info("Synthetic flows finished", passed=passed, total=len(results))
        return results
