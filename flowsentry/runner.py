"""One uptime or synthetic run: load sites, execute, persist, export."""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Sequence

import httpx
import structlog

from flowsentry.aggregate import aggregate_results
from flowsentry.browser import SessionFactory, launch_session_factory
from flowsentry.config import ExportCredentials, MonitoringConfig
from flowsentry.errors import NavigationError
from flowsentry.export import ExportOutcome, MetricsExporter
from flowsentry.models import AggregatedStatus
from flowsentry.probe import ProbeExecutor
from flowsentry.sites import SiteDescriptor, load_sites
from flowsentry.storage import SYNTHETIC, UPTIME, ResultStore
from flowsentry.synthetic import FlowTimeouts, SyntheticFlowEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RunReport:
    kind: str
    total: int
    passed: int
    results_file: Path
    export: dict[str, ExportOutcome] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return self.total - self.passed


class UnavailableSessions:
    """Stands in when Chromium could not start, so every probe records the failure."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    @asynccontextmanager
    async def session(self) -> AsyncIterator[None]:
        raise NavigationError(f"browser_unavailable: {self.reason}")
        yield  # pragma: no cover


async def _open_sessions(stack: AsyncExitStack, config: MonitoringConfig) -> SessionFactory:
    try:
        return await stack.enter_async_context(launch_session_factory(config))
    except Exception as exc:  # noqa: BLE001 - a dead browser is recorded per probe
        logger.error("Browser launch failed", error=f"{type(exc).__name__}: {exc}")
        return UnavailableSessions(f"{type(exc).__name__}: {exc}")


async def _export(
    config: MonitoringConfig,
    credentials: ExportCredentials | None,
    http_client: httpx.AsyncClient | None,
    call: Callable[[MetricsExporter], Awaitable[dict[str, ExportOutcome]]],
) -> dict[str, ExportOutcome]:
    credentials = credentials if credentials is not None else ExportCredentials.from_env()
    async with AsyncExitStack() as stack:
        if http_client is None:
            http_client = await stack.enter_async_context(httpx.AsyncClient())
        exporter = MetricsExporter(
            credentials,
            http_client,
            region=config.region,
            timeout_s=config.export_timeout_seconds,
        )
        return await call(exporter)


def _resolve_sites(config: MonitoringConfig, sites: Sequence[SiteDescriptor] | None) -> Sequence[SiteDescriptor]:
    return load_sites(config.sites_file) if sites is None else sites


async def run_uptime(
    config: MonitoringConfig,
    *,
    sites: Sequence[SiteDescriptor] | None = None,
    sessions: SessionFactory | None = None,
    http_client: httpx.AsyncClient | None = None,
    credentials: ExportCredentials | None = None,
) -> RunReport:
    sites = _resolve_sites(config, sites)
    logger.info("Starting uptime checks", sites=len(sites))

    async with AsyncExitStack() as stack:
        if sessions is None:
            sessions = await _open_sessions(stack, config)
        executor = ProbeExecutor(sessions, timeout_seconds=config.navigation_timeout_seconds)
        results = await executor.run(sites)

    path = ResultStore(config.results_directory).write_batch(UPTIME, [r.to_dict() for r in results])
    outcomes = await _export(config, credentials, http_client, lambda e: e.export_probe_results(results))

    return RunReport(
        kind=UPTIME,
        total=len(results),
        passed=sum(1 for r in results if r.success),
        results_file=path,
        export=outcomes,
    )


async def run_synthetic(
    config: MonitoringConfig,
    *,
    sites: Sequence[SiteDescriptor] | None = None,
    sessions: SessionFactory | None = None,
    http_client: httpx.AsyncClient | None = None,
    credentials: ExportCredentials | None = None,
) -> RunReport:
    sites = _resolve_sites(config, sites)
    enabled = [s for s in sites if s.synthetic_enabled]
    logger.info("Starting synthetic checkout flows", sites=len(sites), enabled=len(enabled))

    async with AsyncExitStack() as stack:
        if sessions is None and enabled:
            sessions = await _open_sessions(stack, config)
        engine = SyntheticFlowEngine(
            sessions or UnavailableSessions("not started"),
            screenshots_dir=config.screenshots_directory,
            timeouts=FlowTimeouts.from_config(config),
        )
        results = await engine.run(sites)

    path = ResultStore(config.results_directory).write_batch(SYNTHETIC, [r.to_dict() for r in results])
    outcomes = await _export(config, credentials, http_client, lambda e: e.export_flow_results(results))

    return RunReport(
        kind=SYNTHETIC,
        total=len(results),
        passed=sum(1 for r in results if r.success),
        results_file=path,
        export=outcomes,
    )


def latest_status(
    config: MonitoringConfig,
    *,
    sites: Sequence[SiteDescriptor] | None = None,
) -> dict[str, AggregatedStatus]:
    """Aggregate the most recent persisted uptime batch for the status page."""
    batch = ResultStore(config.results_directory).load_latest_probe_results()
    return aggregate_results(batch, sites)
