"""Persistent credential record for sequence-builder.

The whole configuration is a single JSON document at
``~/.sequence-builder/config.json`` (or ``$SEQUENCE_BUILDER_HOME/config.json``).
Every update is a load-merge-persist of the full record, written atomically.
There is no cross-process locking: two concurrent invocations race and the
last writer wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ValidationError, field_validator

from sequence_builder.wallet.cipher import EncryptedSecretBundle

logger = logging.getLogger("sequence_builder.config")

PASSPHRASE_ENV = "SEQUENCE_PASSPHRASE"
HOME_ENV = "SEQUENCE_BUILDER_HOME"
CONFIG_FILENAME = "config.json"


class Environment(str, Enum):
    PROD = "prod"
    DEV = "dev"


API_URLS: dict[Environment, str] = {
    Environment.PROD: "https://api.sequence.build",
    Environment.DEV: "https://dev-api.sequence.build",
}


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class Session(BaseModel):
    """A bearer token and the instant it stops being usable."""

    bearer_token: str
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_valid(self, now: datetime | None = None) -> bool:
        """Valid iff *now* is strictly before ``expires_at``."""
        if now is None:
            now = datetime.now(timezone.utc)
        return now < self.expires_at


class CredentialRecord(BaseModel):
    """Root configuration object persisted between invocations."""

    session: Optional[Session] = None
    environment: Environment = Environment.PROD
    api_url: Optional[str] = None
    encrypted_key: Optional[EncryptedSecretBundle] = None


# ---------------------------------------------------------------------------
# Paths and environment helpers
# ---------------------------------------------------------------------------


def get_config_dir() -> Path:
    """Return the per-user configuration directory (no auto-create)."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".sequence-builder"


def get_passphrase() -> str | None:
    """Return the storage passphrase from the environment, if set and non-empty."""
    return os.environ.get(PASSPHRASE_ENV) or None


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class CredentialStore:
    """File-backed store for the :class:`CredentialRecord`.

    ``load`` and ``update`` are the only ways to touch the record. Nothing is
    cached: each call re-reads the file.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path if path is not None else get_config_dir() / CONFIG_FILENAME

    # -- raw persistence -----------------------------------------------

    def _read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".config-", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            if os.name == "posix":
                os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # -- record operations ---------------------------------------------

    def load(self) -> CredentialRecord:
        """Read the record, returning defaults if it is absent or corrupt."""
        try:
            raw = self._read()
            if raw is None:
                return CredentialRecord()
            return CredentialRecord.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(f"Ignoring unreadable credential file {self.path}: {exc.__class__.__name__}")
            return CredentialRecord()

    def save(self, record: CredentialRecord) -> None:
        data = record.model_dump(mode="json", exclude_none=True)
        self._write(json.dumps(data, indent=2))

    def update(self, **partial: Any) -> CredentialRecord:
        """Shallow-merge *partial* into the stored record and persist it.

        A provided field replaces the old value wholesale; omitted fields are
        kept.
        """
        unknown = set(partial) - set(CredentialRecord.model_fields)
        if unknown:
            raise TypeError(f"Unknown credential fields: {sorted(unknown)}")
        current = self.load()
        merged = dict(current)
        merged.update(partial)
        updated = CredentialRecord.model_validate(merged)
        self.save(updated)
        logger.debug(f"Credential record updated: {sorted(partial)}")
        return updated

    def current_valid_token(self, now: datetime | None = None) -> str | None:
        """Return the bearer token only while it is unexpired."""
        session = self.load().session
        if session is None or not session.bearer_token:
            return None
        if not session.is_valid(now):
            return None
        return session.bearer_token

    def clear_session(self) -> CredentialRecord:
        """Remove the session, leaving environment, URL and stored key intact."""
        return self.update(session=None)


class MemoryCredentialStore(CredentialStore):
    """Non-persistent store holding the serialized record in memory."""

    def __init__(self, initial: CredentialRecord | None = None) -> None:
        super().__init__(path=Path("<memory>"))
        self._text: str | None = None
        if initial is not None:
            self.save(initial)

    def _read(self) -> str | None:
        return self._text

    def _write(self, text: str) -> None:
        self._text = text


# ---------------------------------------------------------------------------
# API URL selection
# ---------------------------------------------------------------------------


def resolve_api_url(
    store: CredentialStore,
    env: str | None = None,
    api_url: str | None = None,
) -> str:
    """Pick the API base URL.

    Precedence: explicit *api_url* > explicit *env* > persisted ``api_url`` >
    persisted environment > prod.
    """
    if api_url:
        return api_url.rstrip("/")
    if env:
        return API_URLS[Environment(env)]
    record = store.load()
    if record.api_url:
        return record.api_url.rstrip("/")
    return API_URLS[record.environment]
