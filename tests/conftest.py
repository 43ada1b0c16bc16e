"""Shared pytest fixtures for forge-deployments tests."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from eth_abi import encode

from forge_deployments.events import (
    DEPLOYMENT_DETAILS_TYPE,
    SIG_ADMIN_CHANGED,
    SIG_BEACON_UPGRADED,
    SIG_CONTRACT_DEPLOYED,
    SIG_DEPLOYMENT_COLLISION,
    SIG_PROXY_DEPLOYED,
    SIG_SAFE_TRANSACTION_EXECUTED,
    SIG_SAFE_TRANSACTION_QUEUED,
    SIG_TRANSACTION_SIMULATED,
    SIG_UPGRADED,
    event_topic,
)

SENDER = "0x00000000000000000000000000000000000000aa"
CREATEX = "0xba5ed099633d3b313e4d5f7bdc1305d3c28ba5ed"
COUNTER_ADDRESS = "0xc000000000000000000000000000000000000001"
COUNTER_TX_ID = "0x" + "01" * 32
COUNTER_CALLDATA = "0x1234abcd"
DEAD_HASH = "0xdead" + "00" * 30


def address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte topic."""
    return "0x" + "00" * 12 + address.lower().replace("0x", "")


def _bytes32(value: str) -> bytes:
    return bytes.fromhex(value.replace("0x", ""))


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


class LogFactory:
    """Builds raw logs, in forge's JSON shape, for the events the parser knows."""

    def _details(
        self,
        artifact: str,
        label: str,
        create_strategy: str = "CREATE2",
        entropy: str = "",
        salt: str = "0x" + "22" * 32,
        bytecode_hash: str = "0x" + "33" * 32,
        init_code_hash: str = "0x" + "44" * 32,
        constructor_args: bytes = b"",
    ) -> tuple:
        return (
            artifact,
            label,
            entropy,
            _bytes32(salt),
            _bytes32(bytecode_hash),
            _bytes32(init_code_hash),
            constructor_args,
            create_strategy,
        )

    def transaction_simulated(
        self,
        transaction_id: str,
        sender: str,
        to: str,
        data: str,
        value: int = 0,
        emitter: str = SENDER,
    ) -> Dict[str, Any]:
        payload = encode(
            ["(bytes32,bytes32,address,bytes,(address,bytes,uint256))"],
            [
                (
                    _bytes32(transaction_id),
                    b"\x00" * 32,
                    sender,
                    b"",
                    (to, bytes.fromhex(data.replace("0x", "")), value),
                )
            ],
        )
        return {
            "address": emitter,
            "topics": [event_topic(SIG_TRANSACTION_SIMULATED)],
            "data": _hex(payload),
        }

    def contract_deployed(
        self,
        deployer: str,
        location: str,
        transaction_id: str,
        artifact: str,
        label: str = "",
        **details: Any,
    ) -> Dict[str, Any]:
        payload = encode([DEPLOYMENT_DETAILS_TYPE], [self._details(artifact, label, **details)])
        return {
            "address": deployer,
            "topics": [
                event_topic(SIG_CONTRACT_DEPLOYED),
                address_topic(deployer),
                address_topic(location),
                transaction_id,
            ],
            "data": _hex(payload),
        }

    def deployment_collision(self, existing: str, artifact: str, label: str = "") -> Dict[str, Any]:
        payload = encode([DEPLOYMENT_DETAILS_TYPE], [self._details(artifact, label)])
        return {
            "address": SENDER,
            "topics": [event_topic(SIG_DEPLOYMENT_COLLISION), address_topic(existing)],
            "data": _hex(payload),
        }

    def safe_queued(
        self, safe_tx_hash: str, safe: str, proposer: str, transaction_ids: List[str]
    ) -> Dict[str, Any]:
        return self._safe(SIG_SAFE_TRANSACTION_QUEUED, safe_tx_hash, safe, proposer, transaction_ids)

    def safe_executed(
        self, safe_tx_hash: str, safe: str, executor: str, transaction_ids: List[str]
    ) -> Dict[str, Any]:
        return self._safe(SIG_SAFE_TRANSACTION_EXECUTED, safe_tx_hash, safe, executor, transaction_ids)

    def _safe(
        self, signature: str, safe_tx_hash: str, safe: str, actor: str, transaction_ids: List[str]
    ) -> Dict[str, Any]:
        payload = encode(["bytes32[]"], [[_bytes32(t) for t in transaction_ids]])
        return {
            "address": SENDER,
            "topics": [event_topic(signature), safe_tx_hash, address_topic(safe), address_topic(actor)],
            "data": _hex(payload),
        }

    def proxy_deployed(self, proxy: str, implementation: str) -> Dict[str, Any]:
        return {
            "address": SENDER,
            "topics": [event_topic(SIG_PROXY_DEPLOYED), address_topic(proxy), address_topic(implementation)],
            "data": _hex(encode(["string"], ["ERC1967Proxy"])),
        }

    def upgraded(self, proxy: str, implementation: str) -> Dict[str, Any]:
        return {
            "address": proxy,
            "topics": [event_topic(SIG_UPGRADED), address_topic(implementation)],
            "data": "0x",
        }

    def admin_changed(self, proxy: str, previous_admin: str, new_admin: str) -> Dict[str, Any]:
        return {
            "address": proxy,
            "topics": [event_topic(SIG_ADMIN_CHANGED)],
            "data": _hex(encode(["address", "address"], [previous_admin, new_admin])),
        }

    def beacon_upgraded(self, proxy: str, beacon: str) -> Dict[str, Any]:
        return {
            "address": proxy,
            "topics": [event_topic(SIG_BEACON_UPGRADED), address_topic(beacon)],
            "data": "0x",
        }


@pytest.fixture
def log_factory() -> LogFactory:
    """Return a factory for encoded raw logs."""
    return LogFactory()


class BroadcastFactory:
    """Writes broadcast files in the shape forge produces."""

    def __init__(self, directory: Path):
        self.directory = directory

    def write(
        self,
        transactions: List[Dict[str, Any]],
        receipts: List[Dict[str, Any]],
        chain: int = 31337,
        name: str = "run-latest.json",
    ) -> Path:
        path = self.directory / "broadcast" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump({"chain": chain, "transactions": transactions, "receipts": receipts}, f, indent=2)
        return path

    @staticmethod
    def entry(
        tx_hash: str,
        sender: str,
        to: Optional[str],
        data: str,
        contract_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "hash": tx_hash,
            "transactionType": "CALL",
            "contractName": contract_name,
            "transaction": {"from": sender, "to": to, "value": "0x0", "input": data, "nonce": "0x0"},
            "additionalContracts": [],
        }

    @staticmethod
    def receipt(
        tx_hash: str, block_number: int, gas_used: int = 21000, status: str = "0x1"
    ) -> Dict[str, Any]:
        return {
            "transactionHash": tx_hash,
            "blockNumber": hex(block_number),
            "gasUsed": hex(gas_used),
            "status": status,
            "logs": [],
        }


@pytest.fixture
def broadcast_factory(tmp_path: Path) -> BroadcastFactory:
    """Return a factory writing broadcast files under tmp_path."""
    return BroadcastFactory(tmp_path)


@pytest.fixture
def counter_run(log_factory: LogFactory, broadcast_factory: BroadcastFactory) -> Dict[str, Any]:
    """A run deploying Counter:v1 through CreateX, broadcast in block 42."""
    raw_output = {
        "success": True,
        "gas_used": 120000,
        "logs": ["Deploying Counter"],
        "raw_logs": [
            log_factory.transaction_simulated(COUNTER_TX_ID, SENDER, CREATEX, COUNTER_CALLDATA),
            log_factory.contract_deployed(
                SENDER, COUNTER_ADDRESS, COUNTER_TX_ID, "src/Counter.sol:Counter", "v1"
            ),
        ],
        "traces": [],
    }
    broadcast_path = broadcast_factory.write(
        [broadcast_factory.entry(DEAD_HASH, SENDER, CREATEX, COUNTER_CALLDATA, "Counter")],
        [broadcast_factory.receipt(DEAD_HASH, 42, gas_used=90000)],
    )
    return {
        "raw_output": raw_output,
        "broadcast_path": broadcast_path,
        "address": COUNTER_ADDRESS,
        "sender": SENDER,
        "transaction_id": COUNTER_TX_ID,
        "tx_hash": DEAD_HASH,
    }


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create an empty project directory."""
    project = tmp_path / "project"
    project.mkdir(parents=True, exist_ok=True)
    return project
