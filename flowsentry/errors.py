"""Error kinds raised inside FlowSentry.

Only ConfigurationError is fatal. Everything else is recovered at the probe,
step or export level and recorded in a result or a log line.
"""

from __future__ import annotations

from typing import Any


class FlowSentryError(Exception):
    """Base class for all FlowSentry errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(FlowSentryError):
    """Malformed site list or config file. Aborts before any probing."""


class NavigationError(FlowSentryError):
    """Timeout, DNS failure, refused connection or a navigation that produced no response."""


class VerificationFailure(FlowSentryError):
    """The synthetic flow ended on a page without any checkout marker."""


class ExportDeliveryError(FlowSentryError):
    """A push to the metrics or log backend did not succeed."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        details: dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if body:
            details["body"] = body[:500]
        super().__init__(message, details)
        self.status_code = status_code
