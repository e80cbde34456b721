"""JSON-RPC style HTTP client for the Sequence Builder API using httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sequence_builder.api.errors import from_response
from sequence_builder.config import CredentialStore, resolve_api_url
from sequence_builder.errors import NetworkError

logger = logging.getLogger("sequence_builder.api.client")

DEFAULT_TIMEOUT = 30.0


class RequestDispatcher:
    """POSTs JSON payloads to ``<base_url>/rpc/<service>/<endpoint>``.

    When a *store* is given and holds an unexpired token, it is sent as
    ``Authorization: Bearer``. Calls without a token are still sent, since
    some endpoints (the auth exchange itself) must be reachable pre-login.
    Failed responses raise :class:`~sequence_builder.api.errors.ApiError`.
    Nothing is retried.
    """

    def __init__(
        self,
        base_url: str,
        service: str,
        store: CredentialStore | None = None,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service = service
        self.store = store
        self.timeout = timeout
        self._extra_headers = dict(headers or {})
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}/rpc/{self.service}/{endpoint}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self._extra_headers}
        if self.store is not None:
            token = self.store.current_valid_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    def call(self, endpoint: str, payload: dict[str, Any] | None = None) -> Any:
        """Send one request and return the decoded JSON body."""
        url = self.url_for(endpoint)
        body = {k: v for k, v in (payload or {}).items() if v is not None}
        headers = self._headers()
        logger.debug(
            f"POST {url} (authenticated={'Authorization' in headers})"
        )

        try:
            response = self._client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"Request to {self.service}/{endpoint} timed out after {self.timeout:g}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Request to {self.service}/{endpoint} failed: {exc}") from exc

        if not response.is_success:
            error = from_response(response.status_code, response.headers, response.text)
            logger.info(
                f"{self.service}/{endpoint} returned {response.status_code} "
                f"(kind={error.kind.value}, retry_after={error.retry_after_seconds})"
            )
            raise error

        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Invalid JSON in response from {self.service}/{endpoint}"
            ) from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RequestDispatcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class BuilderClient:
    """Project, access-key and authentication calls against the Builder API."""

    def __init__(
        self,
        store: CredentialStore,
        env: str | None = None,
        api_url: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.store = store
        self.base_url = resolve_api_url(store, env=env, api_url=api_url)
        self.builder = RequestDispatcher(
            self.base_url, "Builder", store, timeout=timeout, transport=transport
        )
        self.quota = RequestDispatcher(
            self.base_url, "QuotaControl", store, timeout=timeout, transport=transport
        )

    # ------------------------------------------------------------------
    # Builder service
    # ------------------------------------------------------------------

    def get_auth_token(self, ethauth_proof: str, email: str | None = None) -> dict:
        """Exchange an ETHAuth proof for a bearer token."""
        return self.builder.call(
            "GetAuthToken", {"ethauthProof": ethauth_proof, "email": email}
        )

    def create_project(self, name: str, chain_ids: list[int] | None = None) -> dict:
        options = {"chainIds": chain_ids} if chain_ids else None
        return self.builder.call("CreateProject", {"name": name, "options": options})

    def list_projects(self) -> dict:
        return self.builder.call("ListProjects", {})

    def get_project(self, project_id: int) -> dict:
        return self.builder.call("GetProject", {"id": project_id})

    # ------------------------------------------------------------------
    # QuotaControl service
    # ------------------------------------------------------------------

    def get_default_access_key(self, project_id: int) -> dict:
        return self.quota.call("GetDefaultAccessKey", {"projectID": project_id})

    def list_access_keys(self, project_id: int) -> dict:
        return self.quota.call("ListAccessKeys", {"projectID": project_id})

    def close(self) -> None:
        self.builder.close()
        self.quota.close()

    def __enter__(self) -> BuilderClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
