"""Login: prove key ownership and record the resulting bearer-token session."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from pydantic import ValidationError

from sequence_builder import ethauth
from sequence_builder.api.client import BuilderClient
from sequence_builder.config import CredentialStore, Environment, Session
from sequence_builder.errors import AuthenticationFailed, InvalidKeyFormat
from sequence_builder.wallet import keys

logger = logging.getLogger("sequence_builder.auth")


class AuthSession:
    """Two states: unauthenticated, or authenticated with a stored Session.

    The state lives entirely in the :class:`CredentialStore`; this object
    only reads and writes it.
    """

    def __init__(
        self,
        store: CredentialStore,
        client: BuilderClient,
        *,
        env: str | None = None,
        api_url: str | None = None,
        proof_builder: Callable[[str], str] = ethauth.build_proof,
    ) -> None:
        self.store = store
        self.client = client
        self.env = env
        self.api_url = api_url
        self._build_proof = proof_builder

    def is_logged_in(self) -> bool:
        return self.store.current_valid_token() is not None

    def authenticate(self, private_key: str, email: str | None = None) -> Session:
        """Exchange a signed ownership proof for a bearer token.

        Raises
        ------
        InvalidKeyFormat
            If *private_key* is not a valid key. No network I/O happens.
        ApiError
            Propagated unchanged from the auth endpoint.
        AuthenticationFailed
            If the endpoint answered 2xx without issuing a token.
        """
        if not keys.is_valid(private_key):
            raise InvalidKeyFormat()

        address = keys.address_of(private_key)
        logger.info(f"Authenticating wallet {address}")
        proof = self._build_proof(keys.normalize(private_key))

        response = self.client.get_auth_token(proof, email)
        session = self._session_from(response)

        updates: dict = {"session": session}
        if self.api_url:
            updates["api_url"] = self.api_url
        if self.env:
            updates["environment"] = Environment(self.env)
            if not self.api_url:
                # A saved custom URL would outrank the chosen environment
                updates["api_url"] = None
        self.store.update(**updates)
        logger.info(f"Session for {address} valid until {session.expires_at.isoformat()}")
        return session

    @staticmethod
    def _session_from(response: object) -> Session:
        if not isinstance(response, dict) or not response.get("ok"):
            raise AuthenticationFailed()
        auth = response.get("auth") or {}
        token = auth.get("jwtToken") or auth.get("bearerToken")
        expires_at = auth.get("expiresAt")
        if not token or not expires_at:
            raise AuthenticationFailed()
        try:
            return Session(bearer_token=token, expires_at=expires_at)
        except ValidationError as exc:
            raise AuthenticationFailed(
                f"Authentication failed: unreadable expiry {expires_at!r}"
            ) from exc

    def logout(self) -> None:
        self.store.clear_session()

    def expires_at(self) -> datetime | None:
        session = self.store.load().session
        return session.expires_at if session else None
