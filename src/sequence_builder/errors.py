"""Error taxonomy shared by the credential core and the CLI.

Every error carries a machine-readable ``code`` which doubles as the process
exit status. Only the CLI layer decides to terminate; the core just raises.
"""

from __future__ import annotations

import json
from typing import Any


class ExitCode:
    """Process exit statuses reported to automation callers."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    NOT_LOGGED_IN = 10
    INVALID_PRIVATE_KEY = 11
    INSUFFICIENT_FUNDS = 20
    NO_PROJECTS_FOUND = 30
    PROJECT_NOT_FOUND = 31
    API_ERROR = 40


EXIT_CODES: dict[str, int] = {
    name: value for name, value in vars(ExitCode).items() if name.isupper()
}


class SequenceBuilderError(Exception):
    """Base class for all errors raised by sequence-builder."""

    code: int = ExitCode.GENERAL_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "code": self.code}


# ---------------------------------------------------------------------------
# Key and credential errors
# ---------------------------------------------------------------------------


class MalformedKey(SequenceBuilderError):
    """A key string could not be turned into a private key."""

    code = ExitCode.INVALID_PRIVATE_KEY


class InvalidKeyFormat(SequenceBuilderError):
    """A key supplied for authentication failed format validation."""

    code = ExitCode.INVALID_PRIVATE_KEY

    def __init__(self, message: str = "Invalid private key format") -> None:
        super().__init__(message)


class DecryptionFailed(SequenceBuilderError):
    """Authenticated decryption did not verify (wrong passphrase or tampering)."""

    code = ExitCode.INVALID_PRIVATE_KEY

    def __init__(self, message: str = "Failed to decrypt secret") -> None:
        super().__init__(message)


class NoKeyAvailable(SequenceBuilderError):
    code = ExitCode.INVALID_PRIVATE_KEY

    def __init__(
        self,
        message: str = (
            "No private key provided. Use --private-key or set "
            "SEQUENCE_PASSPHRASE env var"
        ),
    ) -> None:
        super().__init__(message)


class InvalidStoredKey(SequenceBuilderError):
    code = ExitCode.INVALID_PRIVATE_KEY

    def __init__(
        self,
        message: str = "Failed to decrypt stored key -- check SEQUENCE_PASSPHRASE",
    ) -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Session and remote errors
# ---------------------------------------------------------------------------


class NotLoggedIn(SequenceBuilderError):
    code = ExitCode.NOT_LOGGED_IN

    def __init__(self, message: str = "Not logged in") -> None:
        super().__init__(message)


class AuthenticationFailed(SequenceBuilderError):
    """The auth endpoint answered 2xx but did not issue a token."""

    code = ExitCode.API_ERROR

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class NetworkError(SequenceBuilderError):
    """Transport-level failure: connection refused, DNS, timeout."""

    code = ExitCode.API_ERROR


class ProjectNotFound(SequenceBuilderError):
    code = ExitCode.PROJECT_NOT_FOUND


class InsufficientFunds(SequenceBuilderError):
    code = ExitCode.INSUFFICIENT_FUNDS

    def __init__(self, message: str = "Insufficient balance", wallet_address: str | None = None) -> None:
        super().__init__(message)
        self.wallet_address = wallet_address

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["walletAddress"] = self.wallet_address
        return data


class TransferFailed(SequenceBuilderError):
    code = ExitCode.GENERAL_ERROR


# ---------------------------------------------------------------------------
# Message extraction
# ---------------------------------------------------------------------------


def extract_error_message(error: object) -> str:
    """Return a printable message for any raised or returned failure value.

    Handles exceptions, plain strings, and mappings carrying ``message``,
    ``error`` or ``reason`` (common SDK and JSON-RPC error shapes). Anything
    else is serialized as JSON, falling back to ``str()``.
    """
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        for field in ("message", "error", "reason"):
            value = error.get(field)
            if isinstance(value, str):
                return value
        try:
            return json.dumps(error, indent=2, default=str)
        except (TypeError, ValueError):
            return repr(error)
    if error is None:
        return "Unknown error"
    for field in ("message", "error", "reason"):
        value = getattr(error, field, None)
        if isinstance(value, str):
            return value
    return str(error)


_DENIAL_MARKERS = ("403", "permissiondenied", "rate limit")


def looks_rate_limited_or_denied(message: str) -> bool:
    """Textual fallback for failures that bypassed structured classification.

    Only used by the CLI for errors that are not already an ``ApiError``.
    """
    lowered = message.lower()
    return any(marker in lowered for marker in _DENIAL_MARKERS)
