"""On-chain existence checks for forge-deployments library."""

import logging
import os
from typing import Any, List, Optional, Protocol, Tuple

import requests

from .broadcast import parse_quantity
from .constants import NETWORK_CONFIG, RPC_TIMEOUT_SECONDS
from .exceptions import NetworkNotFoundError, RpcError

logger = logging.getLogger(__name__)


class BlockchainChecker(Protocol):
    """Answers whether registry entries still exist on a live chain.

    Each method raises if the chain could not be queried; a negative answer
    is returned, not raised.
    """

    def check_deployment_exists(self, address: str) -> Tuple[bool, str]:
        """Return (exists, reason) for code at an address."""
        ...

    def check_transaction_exists(self, tx_hash: str) -> Tuple[bool, int, str]:
        """Return (exists, block_number, reason) for a transaction hash."""
        ...

    def check_safe_contract(self, address: str) -> Tuple[bool, str]:
        """Return (exists, reason) for a Safe contract."""
        ...


def get_network_config(network: str) -> dict:
    """
    Look up a configured network.

    Raises:
        NetworkNotFoundError: If the network is not configured
    """
    if network not in NETWORK_CONFIG:
        raise NetworkNotFoundError(
            f"Network '{network}' not configured (known: {', '.join(sorted(NETWORK_CONFIG))})"
        )
    return NETWORK_CONFIG[network]


def rpc_url_from_env(network: str) -> Optional[str]:
    """
    Read a network's RPC URL from its environment variable.

    Args:
        network: Network name, e.g. "sepolia" (reads $SEP_RPC_URL)

    Returns:
        RPC URL, or None if the variable is unset

    Raises:
        NetworkNotFoundError: If the network is not configured
    """
    return os.environ.get(get_network_config(network)["default_rpc_env"])


class RpcBlockchainChecker:
    """BlockchainChecker backed by a JSON-RPC endpoint."""

    def __init__(self, rpc_url: str, timeout: int = RPC_TIMEOUT_SECONDS):
        self.rpc_url = rpc_url
        self.timeout = timeout

    def _call(self, method: str, params: List[Any]) -> Any:
        """
        Make a JSON-RPC call.

        Raises:
            RpcError: On network errors, non-200 responses or RPC errors
        """
        try:
            response = requests.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "method": method, "params": params, "id": 1},
                timeout=self.timeout,
            )

            # Check for HTTP errors
            if response.status_code != 200:
                raise RpcError(f"RPC request failed with status {response.status_code}")

            result = response.json()

        except requests.RequestException as e:
            raise RpcError(f"Network error during RPC call: {e}") from e
        except ValueError as e:
            raise RpcError(f"Invalid JSON in RPC response: {e}") from e

        # Check for RPC errors
        if "error" in result:
            raise RpcError(f"RPC error: {result['error']}")

        return result.get("result")

    def chain_id(self) -> int:
        return parse_quantity(self._call("eth_chainId", []))

    def connect(self, expected_chain_id: int) -> None:
        """
        Verify the endpoint serves the expected chain.

        Raises:
            RpcError: If the endpoint is unreachable or on another chain
        """
        actual = self.chain_id()
        if actual != expected_chain_id:
            raise RpcError(f"Chain ID mismatch: expected {expected_chain_id}, got {actual}")
        logger.debug("Connected to chain %d at %s", actual, self.rpc_url)

    def check_deployment_exists(self, address: str) -> Tuple[bool, str]:
        code = self._call("eth_getCode", [address, "latest"])
        if not code or code in ("0x", "0x0"):
            return False, "no code at address"
        return True, ""

    def check_transaction_exists(self, tx_hash: str) -> Tuple[bool, int, str]:
        receipt = self._call("eth_getTransactionReceipt", [tx_hash])
        if receipt is None:
            return False, 0, "transaction not found on-chain"
        return True, parse_quantity(receipt.get("blockNumber")), ""

    def check_safe_contract(self, address: str) -> Tuple[bool, str]:
        return self.check_deployment_exists(address)
