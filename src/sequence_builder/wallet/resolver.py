"""Decide which private key a command runs with."""

from __future__ import annotations

import logging

from sequence_builder.config import CredentialStore, get_passphrase
from sequence_builder.errors import DecryptionFailed, InvalidStoredKey, NoKeyAvailable
from sequence_builder.wallet import cipher
from sequence_builder.wallet.keys import normalize

logger = logging.getLogger("sequence_builder.wallet.resolver")


class CredentialResolver:
    """Resolves a private key from explicit input or the encrypted store.

    Priority:
        1. an explicit key, returned normalized (format is checked downstream)
        2. the stored encrypted key, when a passphrase is available
        3. otherwise :class:`NoKeyAvailable`

    A stored key that fails to decrypt raises :class:`InvalidStoredKey`
    rather than falling through.
    """

    def __init__(self, store: CredentialStore, passphrase: str | None = None) -> None:
        self.store = store
        self._passphrase = passphrase

    @property
    def passphrase(self) -> str | None:
        if self._passphrase is not None:
            return self._passphrase or None
        return get_passphrase()

    def resolve(self, explicit_key: str | None = None) -> str:
        if explicit_key:
            return normalize(explicit_key)

        passphrase = self.passphrase
        bundle = self.store.load().encrypted_key
        if passphrase and bundle is not None:
            try:
                key = cipher.decrypt(bundle, passphrase)
            except DecryptionFailed as exc:
                raise InvalidStoredKey() from exc
            logger.debug("Using stored encrypted key")
            return key

        raise NoKeyAvailable()

    def store_if_requested(self, plaintext_key: str) -> bool:
        """Encrypt and persist *plaintext_key* when a passphrase is set.

        Overwrites any previously stored key. Returns ``False`` (and does
        nothing) when no passphrase is available.
        """
        passphrase = self.passphrase
        if not passphrase:
            return False
        bundle = cipher.encrypt(normalize(plaintext_key), passphrase)
        self.store.update(encrypted_key=bundle)
        logger.info("Private key encrypted and stored")
        return True
