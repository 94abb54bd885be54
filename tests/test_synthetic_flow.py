from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from flowsentry.sites import SyntheticSelectors, SyntheticSettings
from flowsentry.synthetic import (
    CHECKOUT_MARKERS,
    TERMINAL_STATES,
    TRANSITIONS,
    VERIFY_FAILURE_MESSAGE,
    FlowState,
    StepOutcome,
    SyntheticFlowEngine,
    next_state,
)

HOME = "https://shop.acme.example/"
CART = "https://shop.acme.example/cart"
CHECKOUT = "https://shop.acme.example/checkout"


def _engine(sessions, tmp_path: Path) -> SyntheticFlowEngine:
    return SyntheticFlowEngine(sessions, screenshots_dir=tmp_path / "shots", clock=lambda: "2026-10-19T12:00:00+00:00")


def _visited(result) -> list[tuple[str, str]]:
    return [(s.state, s.outcome) for s in result.steps]


@pytest.mark.asyncio
async def test_full_flow_succeeds_and_releases_session(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(present={"a.product", "button.add", "button.checkout", ".checkout"})
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert result.success is True
    assert result.error is None
    assert result.screenshot_ref is None
    assert result.duration_ms >= 0
    assert _visited(result) == [
        ("homepage", "ok"),
        ("product_page", "ok"),
        ("add_to_cart", "ok"),
        ("cart", "ok"),
        ("proceed_to_checkout", "ok"),
        ("verify", "ok"),
    ]
    assert sessions.opened == 1 and sessions.closed == 1
    assert sessions.navigations() == [HOME, CART]

    clicks = [c for c in sessions.calls if c[0] == "click"]
    assert [(c[1], c[2]) for c in clicks] == [
        ("a.product", True),
        ("button.add", False),
        ("button.checkout", True),
    ]


@pytest.mark.asyncio
async def test_cart_failure_falls_back_to_checkout_exactly_once(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(failing_urls={CART}, present={"#email"})
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert sessions.navigations().count(CHECKOUT) == 1
    assert sessions.navigations()[-2:] == [CART, CHECKOUT]
    assert ("cart", "failed") in _visited(result)
    assert ("checkout_fallback", "ok") in _visited(result)
    assert _visited(result)[-1] == ("verify", "ok")
    assert result.success is True


@pytest.mark.asyncio
async def test_cart_and_checkout_failing_still_verifies(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(failing_urls={CART, CHECKOUT}, present=set())
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert sessions.navigations().count(CHECKOUT) == 1
    assert ("checkout_fallback", "failed") in _visited(result)
    assert _visited(result)[-1] == ("verify", "failed")
    assert result.success is False
    assert result.error == VERIFY_FAILURE_MESSAGE


@pytest.mark.asyncio
async def test_homepage_failure_is_fatal_and_captures_screenshot(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(failing_urls={HOME}, present=set(CHECKOUT_MARKERS))
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert result.success is False
    assert _visited(result) == [("homepage", "failed")]
    assert sessions.navigations() == [HOME]
    assert not [c for c in sessions.calls if c[0] in {"wait_for_element", "click", "has_any"}]
    assert result.error and "Homepage failed to load" in result.error
    assert result.screenshot_ref is not None
    assert Path(result.screenshot_ref).exists()
    assert Path(result.screenshot_ref).name.startswith("acme-")
    assert sessions.opened == 1 and sessions.closed == 1


@pytest.mark.asyncio
async def test_missing_product_link_is_skipped_and_flow_can_succeed(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(present={"button.add", ".checkout-form"})
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    steps = _visited(result)
    assert ("product_page", "skipped") in steps
    assert ("proceed_to_checkout", "skipped") in steps
    assert steps[-1] == ("verify", "ok")
    assert result.success is True
    skipped = next(s for s in result.steps if s.state == "product_page")
    assert "a.product" in (skipped.detail or "")


@pytest.mark.asyncio
async def test_unconfigured_selectors_skip_without_browser_interaction(fake_sessions, shop_site, tmp_path: Path) -> None:
    site = replace(shop_site, synthetic=SyntheticSettings(enabled=True, selectors=SyntheticSelectors()))
    sessions = fake_sessions(present={".checkout"})
    result = await _engine(sessions, tmp_path).run_flow(site)

    assert result.success is True
    assert not [c for c in sessions.calls if c[0] in {"wait_for_element", "click"}]
    assert [s.outcome for s in result.steps if s.state in {"product_page", "add_to_cart", "proceed_to_checkout"}] == [
        "skipped",
        "skipped",
        "skipped",
    ]


@pytest.mark.asyncio
async def test_verify_failure_reports_message_and_screenshot(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(present=set())
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert result.success is False
    assert result.error == VERIFY_FAILURE_MESSAGE
    assert result.screenshot_ref is not None
    assert Path(result.screenshot_ref).parent == tmp_path / "shots"
    assert sessions.closed == 1


@pytest.mark.asyncio
async def test_screenshot_failure_leaves_ref_empty(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(present=set(), screenshot_error=True)
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert result.success is False
    assert result.screenshot_ref is None
    assert result.error == VERIFY_FAILURE_MESSAGE


@pytest.mark.asyncio
async def test_session_acquisition_failure_is_recorded(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(acquire_error=RuntimeError("chromium exited"))
    result = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert result.success is False
    assert "chromium exited" in (result.error or "")
    assert result.steps == ()


@pytest.mark.asyncio
async def test_run_skips_disabled_sites(fake_sessions, shop_site, plain_site, tmp_path: Path) -> None:
    sessions = fake_sessions(present={".checkout"})
    results = await _engine(sessions, tmp_path).run([plain_site, shop_site])

    assert [r.client for r in results] == ["acme"]
    assert sessions.opened == 1


def test_transition_table_edges() -> None:
    assert next_state(FlowState.CART, StepOutcome.FAILED) is FlowState.CHECKOUT_FALLBACK
    assert next_state(FlowState.CHECKOUT_FALLBACK, StepOutcome.FAILED) is FlowState.PROCEED_TO_CHECKOUT
    assert next_state(FlowState.HOMEPAGE, StepOutcome.FAILED) is FlowState.FAILURE
    assert next_state(FlowState.PRODUCT_PAGE, StepOutcome.SKIPPED) is FlowState.ADD_TO_CART

    # Optional steps can never fail the flow; the fallback cannot loop.
    for state in (FlowState.PRODUCT_PAGE, FlowState.ADD_TO_CART, FlowState.PROCEED_TO_CHECKOUT):
        assert (state, StepOutcome.FAILED) not in TRANSITIONS
    assert (FlowState.CHECKOUT_FALLBACK, StepOutcome.FAILED) in TRANSITIONS
    assert FlowState.CART not in {TRANSITIONS[k] for k in TRANSITIONS if k[0] is FlowState.CHECKOUT_FALLBACK}

    with pytest.raises(ValueError):
        next_state(FlowState.SUCCESS, StepOutcome.OK)


def test_every_non_terminal_state_has_an_exit() -> None:
    sources = {state for state, _ in TRANSITIONS}
    for state in FlowState:
        if state in TERMINAL_STATES:
            assert state not in sources
        else:
            assert state in sources


@pytest.mark.asyncio
async def test_release_failure_keeps_walk_outcome(fake_sessions, shop_site, tmp_path: Path) -> None:
    sessions = fake_sessions(present={".checkout"}, release_error=RuntimeError("context already closed"))
    passed = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert passed.success is True
    assert passed.error is None
    assert sessions.closed == 1

    sessions = fake_sessions(present=set(), release_error=RuntimeError("context already closed"))
    failed = await _engine(sessions, tmp_path).run_flow(shop_site)

    assert failed.success is False
    assert failed.error == VERIFY_FAILURE_MESSAGE
    assert failed.screenshot_ref is not None
