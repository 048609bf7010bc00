# career_match/errors.py
from __future__ import annotations

from typing import Optional


class CareerMatchError(Exception):
    """Base class for errors raised by the pipeline."""


class ConfigurationError(CareerMatchError, ValueError):
    """Invalid pipeline configuration. Fatal at pipeline start."""


class PipelineCancelled(CareerMatchError):
    """Raised inside a unit of work once the batch has been cancelled."""


# Statuses worth another attempt; any other non-2xx is final.
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class FetchError(CareerMatchError):
    """
    A page could not be fetched.

    reason is one of "network", "timeout", "http_status".
    """

    def __init__(
        self,
        url: str,
        reason: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = True,
        detail: str = "",
    ):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        self.retryable = retryable
        self.detail = detail
        msg = f"{reason} fetching {url}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)

    @classmethod
    def from_status(cls, url: str, status_code: int) -> "FetchError":
        return cls(
            url,
            "http_status",
            status_code=status_code,
            retryable=status_code in RETRYABLE_STATUSES or status_code >= 500,
        )

    @classmethod
    def timeout(cls, url: str, detail: str = "") -> "FetchError":
        return cls(url, "timeout", retryable=True, detail=detail)
