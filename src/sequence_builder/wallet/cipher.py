"""
Passphrase-based encryption for secrets kept in the credential file.

- Key derivation: scrypt(passphrase, salt) -> 32-byte key (memory-hard)
- Cipher: AES-256-GCM with a random 128-bit nonce
- Every call to :func:`encrypt` draws a fresh salt and nonce

Security Note:
    Never log plaintext, passphrases or derived keys.
"""

from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel

from sequence_builder.errors import DecryptionFailed

logger = logging.getLogger("sequence_builder.wallet.cipher")

SALT_SIZE = 32
NONCE_SIZE = 16
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256

# scrypt cost parameters (N=2**14, r=8, p=1 ~ 16 MiB per derivation)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class EncryptedSecretBundle(BaseModel):
    """Hex-encoded output of :func:`encrypt`."""

    ciphertext: str
    auth_tag: str
    salt: str
    nonce: str


def derive_key(passphrase: str, salt: bytes) -> bytes:
    """Stretch *passphrase* into a 32-byte AES key with scrypt."""
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, passphrase: str) -> EncryptedSecretBundle:
    """Encrypt *plaintext* under *passphrase*.

    Args:
        plaintext: Secret to protect (e.g. a hex private key).
        passphrase: User passphrase; never stored.

    Returns:
        Bundle with ciphertext, GCM tag, salt and nonce, all hex.
    """
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = derive_key(passphrase, salt)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return EncryptedSecretBundle(
        ciphertext=ciphertext.hex(),
        auth_tag=tag.hex(),
        salt=salt.hex(),
        nonce=nonce.hex(),
    )


def decrypt(bundle: EncryptedSecretBundle, passphrase: str) -> str:
    """Authenticate and decrypt *bundle* with *passphrase*.

    Raises:
        DecryptionFailed: Wrong passphrase, tampered ciphertext or tag, or a
            bundle whose fields are not valid hex of the expected sizes.
    """
    try:
        salt = bytes.fromhex(bundle.salt)
        nonce = bytes.fromhex(bundle.nonce)
        ciphertext = bytes.fromhex(bundle.ciphertext)
        tag = bytes.fromhex(bundle.auth_tag)
    except ValueError as exc:
        raise DecryptionFailed("Encrypted bundle is not valid hex") from exc

    if len(tag) != TAG_SIZE or not salt or len(nonce) < 8:
        raise DecryptionFailed("Encrypted bundle is malformed")

    key = derive_key(passphrase, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as exc:
        logger.debug("GCM tag verification failed")
        raise DecryptionFailed() from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionFailed("Decrypted secret is not valid UTF-8") from exc
