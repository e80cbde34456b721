"""Remote API access -- request dispatch and error classification."""

from sequence_builder.api.client import BuilderClient, RequestDispatcher
from sequence_builder.api.errors import ApiError, ApiErrorKind, from_response, parse_retry_after

__all__ = [
    "ApiError",
    "ApiErrorKind",
    "BuilderClient",
    "RequestDispatcher",
    "from_response",
    "parse_retry_after",
]
