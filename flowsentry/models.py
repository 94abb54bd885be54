from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    s = str(value or "").strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def status_is_success(http_status: int) -> bool:
    return http_status != 0 and http_status < 400


@dataclass(frozen=True)
class ProbeResult:
    client: str
    url: str
    domain: str
    path: str
    http_status: int
    response_time_ms: float
    timestamp: str
    error: str | None = None

    def __post_init__(self) -> None:
        if self.response_time_ms < 0:
            object.__setattr__(self, "response_time_ms", 0.0)

    @property
    def success(self) -> bool:
        return status_is_success(self.http_status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "client": self.client,
            "url": self.url,
            "domain": self.domain,
            "path": self.path,
            "http_status": self.http_status,
            "response_time_ms": self.response_time_ms,
            "success": self.success,
            "error": self.error,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ProbeResult:
        return cls(
            client=str(raw["client"]),
            url=str(raw["url"]),
            domain=str(raw.get("domain") or ""),
            path=str(raw.get("path") or ""),
            http_status=int(raw.get("http_status") or 0),
            response_time_ms=float(raw.get("response_time_ms") or 0.0),
            timestamp=str(raw["timestamp"]),
            error=raw.get("error"),
        )


@dataclass(frozen=True)
class StepRecord:
    state: str
    outcome: str
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state, "outcome": self.outcome, "detail": self.detail}


@dataclass(frozen=True)
class SyntheticFlowResult:
    client: str
    domain: str
    success: bool
    duration_ms: float
    timestamp: str
    error: str | None = None
    screenshot_ref: str | None = None
    flow: str = "checkout"
    steps: tuple[StepRecord, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "client": self.client,
            "domain": self.domain,
            "flow": self.flow,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "screenshot_ref": self.screenshot_ref,
            "timestamp": self.timestamp,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class MetricSample:
    name: str
    value: float
    labels: dict[str, str]
    timestamp: int  # epoch milliseconds


@dataclass(frozen=True)
class AggregatedStatus:
    client: str
    uptime_percent: float
    status_category: str
    last_check_timestamp: str | None
    total: int
    successes: int
    url_status: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "client": self.client,
            "uptime_percent": self.uptime_percent,
            "status_category": self.status_category,
            "last_check_timestamp": self.last_check_timestamp,
            "total": self.total,
            "successes": self.successes,
            "urls": {name: ("up" if up else "down") for name, up in self.url_status.items()},
        }
