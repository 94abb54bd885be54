from __future__ import annotations

from typing import Iterable

from flowsentry.models import MetricSample, ProbeResult, SyntheticFlowResult, parse_timestamp

UPTIME_STATUS = "flowsentry_uptime_status"
RESPONSE_TIME_SECONDS = "flowsentry_response_time_seconds"
HTTP_STATUS_CODE = "flowsentry_http_status_code"
CHECKS_TOTAL = "flowsentry_checks_total"
SYNTHETIC_SUCCESS = "flowsentry_synthetic_success"
SYNTHETIC_DURATION_SECONDS = "flowsentry_synthetic_duration_seconds"
SYNTHETIC_FLOWS_TOTAL = "flowsentry_synthetic_flows_total"

METRIC_NAMES = (
    UPTIME_STATUS,
    RESPONSE_TIME_SECONDS,
    HTTP_STATUS_CODE,
    CHECKS_TOTAL,
    SYNTHETIC_SUCCESS,
    SYNTHETIC_DURATION_SECONDS,
    SYNTHETIC_FLOWS_TOTAL,
)


def epoch_ms(timestamp: str) -> int:
    return int(parse_timestamp(timestamp).timestamp() * 1000)


def _outcome(success: bool) -> str:
    return "success" if success else "failure"


def probe_samples(results: Iterable[ProbeResult], *, region: str) -> list[MetricSample]:
    out: list[MetricSample] = []
    for r in results:
        ts = epoch_ms(r.timestamp)
        labels = {"client": r.client, "domain": r.domain, "url": r.url, "path": r.path or "", "region": region}
        out.append(MetricSample(UPTIME_STATUS, 1.0 if r.success else 0.0, dict(labels), ts))
        out.append(MetricSample(RESPONSE_TIME_SECONDS, r.response_time_ms / 1000.0, dict(labels), ts))
        out.append(MetricSample(HTTP_STATUS_CODE, float(r.http_status), dict(labels), ts))
        out.append(MetricSample(CHECKS_TOTAL, 1.0, {**labels, "status": _outcome(r.success)}, ts))
    return out


def flow_samples(results: Iterable[SyntheticFlowResult], *, region: str) -> list[MetricSample]:
    out: list[MetricSample] = []
    for r in results:
        ts = epoch_ms(r.timestamp)
        labels = {"client": r.client, "domain": r.domain, "flow": r.flow, "path": "/", "region": region}
        out.append(MetricSample(SYNTHETIC_SUCCESS, 1.0 if r.success else 0.0, dict(labels), ts))
        out.append(MetricSample(SYNTHETIC_DURATION_SECONDS, r.duration_ms / 1000.0, dict(labels), ts))
        out.append(MetricSample(SYNTHETIC_FLOWS_TOTAL, 1.0, {**labels, "status": _outcome(r.success)}, ts))
    return out
