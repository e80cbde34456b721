"""ETHAuth v1 ownership proofs.

A proof is ``eth.<address>.<base64url(claims)>.<signature>`` where the
signature is an EIP-712 signature over the claims, so the server can recover
the signer's address without ever seeing the key.
"""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass
from typing import Callable

from eth_account import Account
from eth_account.messages import encode_typed_data

from sequence_builder.wallet.keys import to_account

ETHAUTH_PREFIX = "eth"
ETHAUTH_VERSION = "1"
DEFAULT_APP = "sequence-builder"
DEFAULT_LIFETIME = 3600  # seconds

_CLAIMS_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
    ],
    "Claims": [
        {"name": "app", "type": "string"},
        {"name": "iat", "type": "int64"},
        {"name": "exp", "type": "int64"},
        {"name": "v", "type": "string"},
    ],
}


@dataclass(frozen=True)
class Claims:
    app: str
    iat: int
    exp: int
    v: str = ETHAUTH_VERSION

    def to_dict(self) -> dict:
        return {"app": self.app, "iat": self.iat, "exp": self.exp, "v": self.v}


def make_claims(
    app: str = DEFAULT_APP,
    lifetime: int = DEFAULT_LIFETIME,
    clock: Callable[[], float] = time.time,
) -> Claims:
    """Claims issued now and expiring after *lifetime* seconds."""
    iat = int(clock())
    return Claims(app=app, iat=iat, exp=iat + lifetime)


def _typed_data(claims: Claims) -> dict:
    return {
        "types": _CLAIMS_TYPES,
        "domain": {"name": "ETHAuth", "version": ETHAUTH_VERSION},
        "primaryType": "Claims",
        "message": claims.to_dict(),
    }


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def build_proof(private_key: str, claims: Claims | None = None) -> str:
    """Sign *claims* with *private_key* and serialize the proof string.

    Deterministic for a given key and claims (secp256k1 signing in
    eth-account uses RFC 6979 nonces).
    """
    if claims is None:
        claims = make_claims()
    account = to_account(private_key)
    signable = encode_typed_data(full_message=_typed_data(claims))
    signed = account.sign_message(signable)
    encoded_claims = _b64url(
        json.dumps(claims.to_dict(), separators=(",", ":")).encode("utf-8")
    )
    signature = "0x" + bytes(signed.signature).hex()
    return ".".join(
        [ETHAUTH_PREFIX, account.address.lower(), encoded_claims, signature]
    )


def decode_proof(proof: str) -> tuple[str, dict, str]:
    """Split a proof into ``(address, claims, signature)``.

    Raises ``ValueError`` if the proof is not well formed.
    """
    parts = proof.split(".")
    if len(parts) != 4 or parts[0] != ETHAUTH_PREFIX:
        raise ValueError("Not an ETHAuth proof")
    _, address, encoded_claims, signature = parts
    padded = encoded_claims + "=" * (-len(encoded_claims) % 4)
    claims = json.loads(base64.urlsafe_b64decode(padded))
    return address, claims, signature


def recover_signer(proof: str) -> str:
    """Recover the checksummed address that signed *proof*."""
    _, claims, signature = decode_proof(proof)
    signable = encode_typed_data(full_message=_typed_data(Claims(**claims)))
    return Account.recover_message(signable, signature=signature)
