from __future__ import annotations

from dataclasses import replace

import pytest

from flowsentry.probe import ProbeExecutor


@pytest.mark.asyncio
async def test_probe_results_follow_status_and_failures_do_not_abort(fake_sessions, shop_site, plain_site) -> None:
    sessions = fake_sessions(
        statuses={"https://www.globex.example/health": 503},
        failing_urls={"https://shop.acme.example/"},
    )
    executor = ProbeExecutor(sessions, timeout_seconds=10.0, clock=lambda: "2026-10-19T12:00:00+00:00")

    results = await executor.run([shop_site, plain_site])

    assert [(r.client, r.url) for r in results] == [
        ("acme", "homepage"),
        ("acme", "cart"),
        ("globex", "homepage"),
        ("globex", "status"),
    ]
    assert [r.http_status for r in results] == [0, 200, 200, 503]
    assert [r.success for r in results] == [False, True, True, False]

    failed = results[0]
    assert failed.error and "ERR_NAME_NOT_RESOLVED" in failed.error
    assert results[3].error is None

    for r in results:
        assert r.success == (r.http_status != 0 and r.http_status < 400)
        assert r.response_time_ms >= 0
        assert r.timestamp == "2026-10-19T12:00:00+00:00"


@pytest.mark.asyncio
async def test_each_probe_uses_its_own_session(fake_sessions, shop_site) -> None:
    sessions = fake_sessions(failing_urls={"https://shop.acme.example/"})
    await ProbeExecutor(sessions).run([shop_site])

    assert sessions.opened == 2
    assert sessions.closed == 2
    assert sessions.calls == [
        ("navigate", "https://shop.acme.example/", 10.0),
        ("navigate", "https://shop.acme.example/cart", 10.0),
    ]


@pytest.mark.asyncio
async def test_session_launch_failure_becomes_failed_probe(fake_sessions, plain_site) -> None:
    sessions = fake_sessions(acquire_error=RuntimeError("browser has been closed"))
    results = await ProbeExecutor(sessions).run([plain_site])

    assert len(results) == 2
    assert all(r.http_status == 0 and not r.success for r in results)
    assert all(r.error == "browser has been closed" for r in results)


@pytest.mark.asyncio
async def test_site_without_urls_yields_nothing(fake_sessions, plain_site) -> None:
    sessions = fake_sessions()
    results = await ProbeExecutor(sessions).run([replace(plain_site, urls=())])

    assert results == []
    assert sessions.opened == 0
