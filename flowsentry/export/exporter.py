from __future__ import annotations

from typing import Any, Sequence

import httpx
import structlog

from flowsentry.config import ExportCredentials
from flowsentry.export.delivery import ExportOutcome
from flowsentry.export.loki import LokiEncoder
from flowsentry.export.remote_write import RemoteWriteEncoder
from flowsentry.export.samples import flow_samples, probe_samples
from flowsentry.models import MetricSample, ProbeResult, SyntheticFlowResult

logger = structlog.get_logger(__name__)

METRICS = "metrics"
LOGS = "logs"


class MetricsExporter:
    """Sends one run's results to the metrics and log backends.

    Each encoder is enabled only by its credentials. A disabled encoder makes
    no HTTP call and reports ``skipped``; delivery failures are logged and
    reported as ``failed``, never raised.
    """

    def __init__(
        self,
        credentials: ExportCredentials,
        client: httpx.AsyncClient,
        *,
        region: str = "github-actions",
        timeout_s: float = 10.0,
    ) -> None:
        self._credentials = credentials
        self._region = region
        self._metrics: RemoteWriteEncoder | None = None
        self._logs: LokiEncoder | None = None

        if credentials.metrics_enabled:
            self._metrics = RemoteWriteEncoder(
                client,
                url=str(credentials.prometheus_url),
                api_key=str(credentials.api_key),
                user=credentials.prometheus_user,
                timeout_s=timeout_s,
            )
        if credentials.logs_enabled:
            self._logs = LokiEncoder(
                client,
                url=str(credentials.loki_url),
                user=str(credentials.loki_user),
                api_key=str(credentials.api_key),
                timeout_s=timeout_s,
            )

    async def export_probe_results(self, results: Sequence[ProbeResult]) -> dict[str, ExportOutcome]:
        return await self._export(
            "uptime",
            probe_samples(results, region=self._region),
            [r.to_dict() for r in results],
        )

    async def export_flow_results(self, results: Sequence[SyntheticFlowResult]) -> dict[str, ExportOutcome]:
        return await self._export(
            "synthetic",
            flow_samples(results, region=self._region),
            [r.to_dict() for r in results],
        )

    async def _export(
        self,
        kind: str,
        samples: list[MetricSample],
        records: list[dict[str, Any]],
    ) -> dict[str, ExportOutcome]:
        outcomes = {METRICS: ExportOutcome.SKIPPED, LOGS: ExportOutcome.SKIPPED}

        if not records:
            logger.info("No results to export", kind=kind)
            return outcomes

        if self._metrics is None:
            logger.info(
                "Metrics credentials not found, skipping metrics push",
                kind=kind,
                required="GRAFANA_PROMETHEUS_URL, GRAFANA_API_KEY",
            )
        else:
            outcomes[METRICS] = await self._metrics.push(samples)

        if self._logs is None:
            logger.info(
                "Loki credentials not found, skipping log push",
                kind=kind,
                required="GRAFANA_LOKI_URL, GRAFANA_LOKI_USER, GRAFANA_API_KEY",
            )
        else:
            outcomes[LOGS] = await self._logs.push(records, kind=kind, region=self._region)

        return outcomes
