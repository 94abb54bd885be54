from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

from flowsentry.errors import ExportDeliveryError


class ExportOutcome(str, Enum):
    SKIPPED = "skipped"
    DELIVERED = "delivered"
    DELIVERED_FALLBACK = "delivered_fallback"
    FAILED = "failed"


def build_auth(api_key: str, user: str | None) -> tuple[httpx.Auth | None, dict[str, str]]:
    """Basic auth when a user is configured, a bearer token otherwise."""
    if user:
        return httpx.BasicAuth(user, api_key), {}
    return None, {"Authorization": f"Bearer {api_key}"}


async def post(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str],
    auth: httpx.Auth | None,
    timeout_s: float,
    content: bytes | None = None,
    json_body: Any = None,
) -> httpx.Response:
    """POST once; any transport error or non-2xx answer becomes ExportDeliveryError."""
    kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout_s}
    if auth is not None:
        kwargs["auth"] = auth
    if content is not None:
        kwargs["content"] = content
    else:
        kwargs["json"] = json_body

    try:
        resp = await client.post(url, **kwargs)
    except httpx.RequestError as exc:
        raise ExportDeliveryError(f"http_error: {type(exc).__name__}: {exc}") from exc

    if resp.status_code >= 300:
        raise ExportDeliveryError(
            f"unexpected status {resp.status_code} from {resp.request.url.host}",
            status_code=resp.status_code,
            body=resp.text,
        )
    return resp
