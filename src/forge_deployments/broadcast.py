"""Broadcast file parsing for forge-deployments library."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import BroadcastParseError


def parse_quantity(value: Union[str, int, None]) -> int:
    """
    Parse a JSON-RPC quantity.

    Args:
        value: Hex string ("0x2a"), decimal string, int or None

    Returns:
        Integer value (0 for None or empty)
    """
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    if value.startswith(("0x", "0X")):
        return int(value, 16)
    return int(value)


def _hex_data(value: str) -> str:
    """Return `value` if it is whole-byte hex, else raise ValueError."""
    clean = value[2:] if value.startswith(("0x", "0X")) else value
    bytes.fromhex(clean)
    return value


@dataclass
class BroadcastTransaction:
    """A transaction the script-execution tool sent to the chain."""

    hash: str
    sender: str
    to: str
    value: int = 0
    data: str = "0x"
    nonce: int = 0
    transaction_type: str = ""
    contract_name: Optional[str] = None
    contract_address: Optional[str] = None
    additional_contracts: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BroadcastTransaction":
        tx = data.get("transaction") or {}
        return cls(
            hash=data.get("hash") or "",
            sender=tx.get("from") or "",
            to=tx.get("to") or "",
            value=parse_quantity(tx.get("value")),
            # forge writes "input"; older versions wrote "data"
            data=_hex_data(tx.get("input") or tx.get("data") or "0x"),
            nonce=parse_quantity(tx.get("nonce")),
            transaction_type=data.get("transactionType") or "",
            contract_name=data.get("contractName"),
            contract_address=data.get("contractAddress"),
            additional_contracts=list(data.get("additionalContracts") or []),
        )


@dataclass
class BroadcastReceipt:
    """Receipt for a broadcast transaction."""

    transaction_hash: str
    block_number: int
    gas_used: int
    status: int
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BroadcastReceipt":
        return cls(
            transaction_hash=data.get("transactionHash") or "",
            block_number=parse_quantity(data.get("blockNumber")),
            gas_used=parse_quantity(data.get("gasUsed")),
            status=parse_quantity(data.get("status", "0x1")),
            logs=list(data.get("logs") or []),
        )


@dataclass
class BroadcastFile:
    """Contents of a `broadcast/<script>/<chain>/run-latest.json` file."""

    chain: int
    transactions: List[BroadcastTransaction] = field(default_factory=list)
    receipts: List[BroadcastReceipt] = field(default_factory=list)
    path: Optional[Path] = None

    def receipt_for(self, tx_hash: str) -> Optional[BroadcastReceipt]:
        """Return the receipt for a transaction hash, if present."""
        wanted = tx_hash.lower()
        for receipt in self.receipts:
            if receipt.transaction_hash.lower() == wanted:
                return receipt
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "BroadcastFile":
        return cls(
            chain=parse_quantity(data.get("chain")),
            transactions=[BroadcastTransaction.from_dict(t) for t in data.get("transactions") or []],
            receipts=[BroadcastReceipt.from_dict(r) for r in data.get("receipts") or []],
            path=path,
        )


def load_broadcast_file(path: Union[Path, str]) -> BroadcastFile:
    """
    Load a broadcast file produced by `forge script --broadcast`.

    Args:
        path: Path to the broadcast JSON file

    Returns:
        Parsed BroadcastFile

    Raises:
        BroadcastParseError: If the file cannot be read or is not a valid broadcast document
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = json.load(f)
    except OSError as e:
        raise BroadcastParseError(f"Failed to read broadcast file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise BroadcastParseError(f"Invalid JSON in broadcast file {path}: {e}") from e

    if not isinstance(data, dict):
        raise BroadcastParseError(f"Broadcast file {path} is not a JSON object")

    try:
        return BroadcastFile.from_dict(data, path=path)
    except (AttributeError, TypeError, ValueError) as e:
        raise BroadcastParseError(f"Malformed broadcast file {path}: {e}") from e
