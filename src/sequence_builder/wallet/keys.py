"""Private key generation, validation and address derivation using eth-account."""

from __future__ import annotations

import re
from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount

from sequence_builder.errors import MalformedKey

# secp256k1 group order; valid scalars are in [1, N).
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class KeyPair:
    """An externally-owned account: private key plus its checksummed address."""

    private_key: str
    address: str

    def __repr__(self) -> str:
        return f"KeyPair(address={self.address!r})"


def normalize(key: str) -> str:
    """Prefix *key* with ``0x`` when missing. No validation is performed."""
    if key.startswith("0x"):
        return key
    return "0x" + key


def is_valid(key: str) -> bool:
    """Return ``True`` if *key* is a usable secp256k1 private key.

    Accepts 64 hex digits with or without the ``0x`` prefix. The scalar must
    be non-zero and below the curve order. Never raises.
    """
    if not isinstance(key, str):
        return False
    normalized = normalize(key)
    if len(normalized) != 66 or not _KEY_RE.match(normalized):
        return False
    scalar = int(normalized, 16)
    if not 0 < scalar < SECP256K1_N:
        return False
    try:
        Account.from_key(normalized)
    except Exception:
        return False
    return True


def to_account(key: str) -> LocalAccount:
    """Return an eth-account signer for *key*.

    Raises
    ------
    MalformedKey
        If *key* is not a valid private key.
    """
    if not is_valid(key):
        raise MalformedKey("Private key should be a 64-character hex string (with or without 0x prefix)")
    return Account.from_key(normalize(key))


def address_of(key: str) -> str:
    """Derive the EIP-55 checksummed address for *key*."""
    return to_account(key).address


def generate() -> KeyPair:
    """Generate a fresh key pair from the OS CSPRNG."""
    acct = Account.create()
    private_key = "0x" + bytes(acct.key).hex()
    return KeyPair(private_key=private_key, address=acct.address)
