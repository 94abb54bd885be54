from __future__ import annotations

from typing import Iterable, Sequence

from flowsentry.models import AggregatedStatus, ProbeResult, parse_timestamp
from flowsentry.sites import SiteDescriptor

OPERATIONAL = "operational"
DEGRADED = "degraded"
OUTAGE = "outage"

OPERATIONAL_THRESHOLD = 99.0
DEGRADED_THRESHOLD = 95.0


def compute_uptime_percent(successes: int, total: int) -> float:
    """Unrounded success ratio in percent; 0.0 for an empty batch."""
    if total <= 0:
        return 0.0
    return (successes / float(total)) * 100.0


def status_category(uptime_percent: float) -> str:
    if uptime_percent >= OPERATIONAL_THRESHOLD:
        return OPERATIONAL
    if uptime_percent >= DEGRADED_THRESHOLD:
        return DEGRADED
    return OUTAGE


def _summarize(client: str, items: Sequence[ProbeResult], url_names: Sequence[str] = ()) -> AggregatedStatus:
    total = len(items)
    successes = sum(1 for r in items if r.success)
    pct = compute_uptime_percent(successes, total)

    # Oldest first, so the last write per URL name wins.
    ordered = sorted(items, key=lambda r: parse_timestamp(r.timestamp))
    url_status: dict[str, bool] = {name: False for name in url_names}
    for r in ordered:
        url_status[r.url] = r.success

    return AggregatedStatus(
        client=client,
        uptime_percent=round(pct, 2),
        status_category=status_category(pct),
        last_check_timestamp=ordered[-1].timestamp if ordered else None,
        total=total,
        successes=successes,
        url_status=url_status,
    )


def aggregate_results(
    results: Iterable[ProbeResult],
    sites: Sequence[SiteDescriptor] | None = None,
) -> dict[str, AggregatedStatus]:
    """
    Per-client availability for one ProbeResult batch.

    Pure and deterministic: the same batch always yields the same mapping.
    When ``sites`` is given, clients are ordered as configured and configured
    clients without results are reported with zero checks; otherwise clients
    appear in first-seen order. Configured URLs without a result count as down.
    """
    grouped: dict[str, list[ProbeResult]] = {}
    url_names: dict[str, list[str]] = {}
    for site in sites or ():
        grouped.setdefault(site.client, [])
        url_names[site.client] = [u.name for u in site.urls]
    for r in results:
        grouped.setdefault(r.client, []).append(r)

    return {
        client: _summarize(client, items, url_names.get(client, ()))
        for client, items in grouped.items()
    }
