"""Read-only queries against the Sequence Indexer."""

from __future__ import annotations

import re

import httpx

from sequence_builder.api.client import DEFAULT_TIMEOUT, RequestDispatcher
from sequence_builder.errors import SequenceBuilderError

_NETWORK_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def check_network(network: str) -> str:
    """Return *network* if it is a plausible Sequence network name."""
    if not _NETWORK_RE.match(network):
        raise SequenceBuilderError(f"Invalid network name: {network!r}")
    return network


def indexer_url(network: str) -> str:
    """Return the indexer base URL for a network name (e.g. ``polygon``)."""
    check_network(network)
    return f"https://{network}-indexer.sequence.app"


class IndexerClient:
    """Indexer RPC calls authenticated by a project access key.

    The builder bearer token is never sent to the indexer.
    """

    def __init__(
        self,
        network: str,
        access_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.network = network
        self.dispatcher = RequestDispatcher(
            indexer_url(network),
            "Indexer",
            store=None,
            headers={"X-Access-Key": access_key},
            timeout=timeout,
            transport=transport,
        )

    def get_token_balances(self, address: str, include_metadata: bool = False) -> dict:
        return self.dispatcher.call(
            "GetTokenBalances",
            {"accountAddress": address, "includeMetadata": include_metadata},
        )

    def get_native_token_balance(self, address: str) -> dict:
        return self.dispatcher.call("GetNativeTokenBalance", {"accountAddress": address})

    def get_transaction_history(self, address: str, limit: int = 10) -> dict:
        return self.dispatcher.call(
            "GetTransactionHistory",
            {
                "filter": {"accountAddress": address},
                "page": {"pageSize": limit},
                "includeMetadata": True,
            },
        )

    def get_token_supplies(self, contract_address: str) -> dict:
        return self.dispatcher.call(
            "GetTokenSupplies",
            {"contractAddress": contract_address, "includeMetadata": True},
        )

    def close(self) -> None:
        self.dispatcher.close()
