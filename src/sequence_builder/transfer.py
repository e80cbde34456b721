"""ERC-20 transfers signed locally and broadcast through the Sequence node gateway."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from web3 import Web3
from web3.exceptions import TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from sequence_builder.errors import (
    InsufficientFunds,
    InvalidKeyFormat,
    SequenceBuilderError,
    TransferFailed,
    extract_error_message,
)
from sequence_builder.indexer import check_network
from sequence_builder.wallet import keys

logger = logging.getLogger("sequence_builder.transfer")

RECEIPT_TIMEOUT = 30  # seconds
RPC_TIMEOUT = 30

ERC20_ABI = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "symbol",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
]


@dataclass(frozen=True)
class TransferReceipt:
    transaction_hash: str
    from_address: str
    to: str
    token: str
    amount: str
    symbol: str
    chain_id: int

    def to_dict(self) -> dict:
        return {
            "success": True,
            "transactionHash": self.transaction_hash,
            "from": self.from_address,
            "to": self.to,
            "token": self.token,
            "amount": self.amount,
            "symbol": self.symbol,
            "chainId": self.chain_id,
        }


def node_url(network: str, access_key: str) -> str:
    check_network(network)
    return f"https://nodes.sequence.app/{network}/{access_key}"


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a human amount like ``"1.5"`` into integer token units.

    Rejects non-positive amounts and amounts with more precision than the
    token supports.
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise SequenceBuilderError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise SequenceBuilderError(f"Invalid amount: {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise SequenceBuilderError(
            f"Amount {amount} has more than {decimals} decimal places"
        )
    return int(scaled)


def _looks_insufficient(message: str) -> bool:
    lowered = message.lower()
    return "insufficient" in lowered or "balance" in lowered


class TokenTransfer:
    """Sends ERC-20 transfers from the EOA derived from a private key."""

    def __init__(self, network: str, access_key: str, web3: Web3 | None = None) -> None:
        self.network = network
        self._access_key = access_key
        self._w3 = web3

    def get_web3(self) -> Web3:
        """Return a (cached) Web3 instance for the gateway.

        Injects POA middleware for non-mainnet chains.
        """
        if self._w3 is not None:
            return self._w3
        w3 = Web3(
            Web3.HTTPProvider(
                node_url(self.network, self._access_key),
                request_kwargs={"timeout": RPC_TIMEOUT},
            )
        )
        if w3.eth.chain_id != 1:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self._w3 = w3
        return w3

    def send(self, private_key: str, token: str, recipient: str, amount: str) -> TransferReceipt:
        """Build, sign, send, and wait for an ERC-20 ``transfer``.

        Uses EIP-1559 fee parameters with a legacy gas price fallback.
        """
        if not keys.is_valid(private_key):
            raise InvalidKeyFormat()
        if not Web3.is_address(token):
            raise SequenceBuilderError("Invalid token address")
        if not Web3.is_address(recipient):
            raise SequenceBuilderError("Invalid recipient address")

        account = keys.to_account(private_key)
        try:
            return self._send(account, token, recipient, amount)
        except SequenceBuilderError:
            raise
        except Exception as exc:
            message = extract_error_message(exc)
            if _looks_insufficient(message):
                raise InsufficientFunds(wallet_address=account.address) from exc
            raise TransferFailed(f"Transfer failed: {message}") from exc

    def _send(self, account, token: str, recipient: str, amount: str) -> TransferReceipt:
        w3 = self.get_web3()
        token_address = Web3.to_checksum_address(token)
        to_address = Web3.to_checksum_address(recipient)
        contract = w3.eth.contract(address=token_address, abi=ERC20_ABI)

        decimals, symbol = 18, "TOKEN"
        try:
            decimals = contract.functions.decimals().call()
            symbol = contract.functions.symbol().call()
        except Exception as e:
            logger.warning(f"Could not read token metadata for {token_address}: {e}")

        value = to_base_units(amount, decimals)
        chain_id = w3.eth.chain_id
        params: dict = {
            "from": account.address,
            "nonce": w3.eth.get_transaction_count(account.address),
            "chainId": chain_id,
        }

        # Try EIP-1559 first, fall back to legacy gas price
        latest = w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            max_priority = Web3.to_wei(1.5, "gwei")
            params["maxFeePerGas"] = base_fee * 2 + max_priority
            params["maxPriorityFeePerGas"] = max_priority
        else:
            params["gasPrice"] = w3.eth.gas_price

        tx = contract.functions.transfer(to_address, value).build_transaction(params)
        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = "0x" + bytes(tx_hash).hex()
        logger.info(f"Transfer sent: {amount} {symbol} to {to_address} tx={tx_hex}")

        try:
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
        except TimeExhausted as exc:
            raise TransferFailed(
                f"Transaction {tx_hex} not confirmed within {RECEIPT_TIMEOUT}s"
            ) from exc
        if receipt.get("status") == 0:
            raise TransferFailed(f"Transaction {tx_hex} reverted")

        return TransferReceipt(
            transaction_hash=tx_hex,
            from_address=account.address,
            to=to_address,
            token=token_address,
            amount=amount,
            symbol=symbol,
            chain_id=chain_id,
        )
