from __future__ import annotations

import time
from typing import Callable, Iterable

import structlog

from flowsentry.browser import SessionFactory
from flowsentry.models import ProbeResult, utc_now_iso
from flowsentry.sites import SiteDescriptor, UrlTarget

logger = structlog.get_logger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0


class ProbeExecutor:
    """Checks every configured URL of every site, one at a time."""

    def __init__(
        self,
        sessions: SessionFactory,
        *,
        timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._sessions = sessions
        self._timeout_seconds = float(timeout_seconds)
        self._clock = clock

    async def probe(self, site: SiteDescriptor, target: UrlTarget) -> ProbeResult:
        full_url = site.url_for(target.path)
        started = time.perf_counter()
        status = 0
        error: str | None = None

        try:
            async with self._sessions.session() as session:
                status = await session.navigate(full_url, timeout_s=self._timeout_seconds)
        except Exception as exc:  # noqa: BLE001 - one probe must never abort the run
            status = 0
            error = str(exc) or type(exc).__name__

        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
        result = ProbeResult(
            client=site.client,
            url=target.name,
            domain=site.domain,
            path=target.path,
            http_status=status,
            response_time_ms=elapsed_ms,
            timestamp=self._clock(),
            error=error,
        )

        if result.success:
            logger.info("Probe passed", client=site.client, url=target.name, status=status, elapsed_ms=elapsed_ms)
        else:
            logger.warning(
                "Probe failed",
                client=site.client,
                url=target.name,
                target=full_url,
                status=status,
                elapsed_ms=elapsed_ms,
                error=error,
            )
        return result

    async def run(self, sites: Iterable[SiteDescriptor]) -> list[ProbeResult]:
        results: list[ProbeResult] = []
        for site in sites:
            logger.info("Checking site", client=site.client, domain=site.domain, urls=len(site.urls))
            for target in site.urls:
                results.append(await self.probe(site, target))

        passed = sum(1 for r in results if r.success)
        logger.info("Uptime checks finished", passed=passed, total=len(results))
        return results
