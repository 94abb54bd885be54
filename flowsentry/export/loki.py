from __future__ import annotations

import json
import time
from typing import Any, Sequence

import httpx
import structlog

from flowsentry.errors import ExportDeliveryError
from flowsentry.export.delivery import ExportOutcome, build_auth, post
from flowsentry.models import parse_timestamp

logger = structlog.get_logger(__name__)

DEFAULT_JOB = "flowsentry"


def epoch_ns(timestamp: str | None) -> int:
    if not timestamp:
        return time.time_ns()
    dt = parse_timestamp(timestamp)
    return int(dt.timestamp()) * 1_000_000_000 + dt.microsecond * 1_000


def build_push_payload(
    records: Sequence[dict[str, Any]],
    *,
    kind: str,
    region: str,
    job: str = DEFAULT_JOB,
) -> dict[str, Any]:
    """One stream keyed by static labels; one entry per result record."""
    values: list[tuple[int, str]] = []
    for record in records:
        line = json.dumps({**record, "kind": kind}, ensure_ascii=False, sort_keys=True)
        values.append((epoch_ns(record.get("timestamp")), line))
    values.sort(key=lambda v: v[0])

    return {
        "streams": [
            {
                "stream": {"job": job, "kind": kind, "region": region},
                "values": [[str(ts), line] for ts, line in values],
            }
        ]
    }


class LokiEncoder:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str,
        user: str,
        api_key: str,
        timeout_s: float = 10.0,
    ) -> None:
        self._client = client
        self._url = url
        self._auth, self._auth_headers = build_auth(api_key, user)
        self._timeout_s = timeout_s

    async def push(self, records: Sequence[dict[str, Any]], *, kind: str, region: str) -> ExportOutcome:
        payload = build_push_payload(records, kind=kind, region=region)
        try:
            await post(
                self._client,
                self._url,
                headers={"Content-Type": "application/json", **self._auth_headers},
                auth=self._auth,
                timeout_s=self._timeout_s,
                json_body=payload,
            )
        except ExportDeliveryError as exc:
            logger.error("Loki push failed", kind=kind, error=str(exc), **exc.details)
            return ExportOutcome.FAILED

        logger.info("Results pushed to Loki", kind=kind, entries=len(records))
        return ExportOutcome.DELIVERED
