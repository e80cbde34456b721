"""Classification of failed HTTP exchanges into :class:`ApiError`."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Mapping

from sequence_builder.errors import ExitCode, SequenceBuilderError


class ApiErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    PERMISSION_DENIED = "permission_denied"
    UNAUTHORIZED = "unauthorized"
    OTHER = "other"


_KIND_BY_STATUS = {
    429: ApiErrorKind.RATE_LIMITED,
    403: ApiErrorKind.PERMISSION_DENIED,
    401: ApiErrorKind.UNAUTHORIZED,
}

_LABELS = {
    ApiErrorKind.RATE_LIMITED: "Rate Limited",
    ApiErrorKind.PERMISSION_DENIED: "Permission Denied",
    ApiErrorKind.UNAUTHORIZED: "Unauthorized",
    ApiErrorKind.OTHER: "API Error",
}


class ApiError(SequenceBuilderError):
    """A non-2xx response from the remote API."""

    code = ExitCode.API_ERROR

    def __init__(
        self,
        status_code: int,
        body_detail: str = "",
        retry_after_seconds: int | None = None,
    ) -> None:
        self.status_code = status_code
        self.body_detail = body_detail
        self.retry_after_seconds = retry_after_seconds
        self.kind = _KIND_BY_STATUS.get(status_code, ApiErrorKind.OTHER)

        message = f"{_LABELS[self.kind]} ({status_code})"
        if body_detail:
            message += f": {body_detail}"
        if retry_after_seconds is not None:
            message += f" - retry after {retry_after_seconds}s"
        super().__init__(message)

    @property
    def is_rate_limited(self) -> bool:
        return self.kind is ApiErrorKind.RATE_LIMITED

    @property
    def is_permission_denied(self) -> bool:
        return self.kind is ApiErrorKind.PERMISSION_DENIED

    @property
    def is_unauthorized(self) -> bool:
        return self.kind is ApiErrorKind.UNAUTHORIZED

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": _LABELS[self.kind] if self.kind is not ApiErrorKind.OTHER else str(self),
            "kind": self.kind.value,
            "statusCode": self.status_code,
            "retryAfterSeconds": self.retry_after_seconds,
            "detail": self.body_detail,
            "code": self.code,
        }


def _header(headers: Mapping[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def parse_retry_after(header: str | None, now: datetime | None = None) -> int | None:
    """Parse a ``Retry-After`` value into whole seconds.

    Accepts delta-seconds (``"120"``) or an HTTP-date. Dates in the past give
    ``0``. Anything else gives ``None``.
    """
    if header is None:
        return None
    value = header.strip()
    if not value:
        return None
    if value.isascii() and value.isdigit():
        return int(value)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    if now is None:
        now = datetime.now(timezone.utc)
    return max(0, math.ceil((when - now).total_seconds()))


def from_response(
    status_code: int,
    headers: Mapping[str, str] | None,
    body_text: str,
    now: datetime | None = None,
) -> ApiError:
    """Build an :class:`ApiError` from the parts of a failed response. Pure."""
    retry_after = parse_retry_after(_header(headers, "Retry-After"), now=now)
    return ApiError(status_code, body_text or "", retry_after)
