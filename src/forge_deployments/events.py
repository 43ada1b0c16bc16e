"""Event log decoding for forge-deployments library.

Turns raw EVM logs emitted during a script run into typed events. Logs whose
topic0 is not in the signature table, and logs with malformed or truncated
topics or data, decode to None: most logs in a run are irrelevant and a bad
one must never abort the whole parse.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

logger = logging.getLogger(__name__)

DEPLOYMENT_DETAILS_TYPE = "(string,string,string,bytes32,bytes32,bytes32,bytes,string)"

SIG_CONTRACT_DEPLOYED = f"ContractDeployed(address,address,bytes32,{DEPLOYMENT_DETAILS_TYPE})"
SIG_DEPLOYMENT_COLLISION = f"DeploymentCollision(address,{DEPLOYMENT_DETAILS_TYPE})"
SIG_TRANSACTION_SIMULATED = (
    "TransactionSimulated((bytes32,bytes32,address,bytes,(address,bytes,uint256)))"
)
SIG_SAFE_TRANSACTION_QUEUED = "SafeTransactionQueued(bytes32,address,address,bytes32[])"
SIG_SAFE_TRANSACTION_EXECUTED = "SafeTransactionExecuted(bytes32,address,address,bytes32[])"
SIG_PROXY_DEPLOYED = "ProxyDeployed(address,address,string)"
SIG_UPGRADED = "Upgraded(address)"
SIG_ADMIN_CHANGED = "AdminChanged(address,address)"
SIG_BEACON_UPGRADED = "BeaconUpgraded(address)"


def event_topic(signature: str) -> str:
    """
    Compute topic0 for a canonical event signature.

    Args:
        signature: Canonical signature, e.g. "Upgraded(address)"

    Returns:
        0x-prefixed lowercase keccak256 hash
    """
    return "0x" + keccak(text=signature).hex()


@dataclass
class RawLog:
    """A log as emitted by the EVM: emitter, ordered topics, opaque data."""

    address: str
    topics: List[str] = field(default_factory=list)
    data: str = "0x"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawLog":
        return cls(
            address=data.get("address", ""),
            topics=list(data.get("topics") or []),
            data=data.get("data") or "0x",
        )

    @property
    def data_bytes(self) -> bytes:
        return hex_to_bytes(self.data)


@dataclass
class DeploymentDetails:
    """Deployment tuple shared by ContractDeployed and DeploymentCollision."""

    artifact: str
    label: str
    entropy: str
    salt: str
    bytecode_hash: str
    init_code_hash: str
    constructor_args: str
    create_strategy: str


@dataclass
class ContractDeployedEvent:
    deployer: str
    location: str
    transaction_id: str
    deployment: DeploymentDetails


@dataclass
class DeploymentCollisionEvent:
    existing_contract: str
    deployment: DeploymentDetails


@dataclass
class TransactionSimulatedEvent:
    transaction_id: str
    sender_id: str
    sender: str
    return_data: str
    to: str
    data: str
    value: int


@dataclass
class SafeTransactionQueuedEvent:
    safe_tx_hash: str
    safe: str
    proposer: str
    transaction_ids: List[str]


@dataclass
class SafeTransactionExecutedEvent:
    safe_tx_hash: str
    safe: str
    executor: str
    transaction_ids: List[str]


@dataclass
class ProxyDeployedEvent:
    proxy: str
    implementation: str


@dataclass
class UpgradedEvent:
    proxy: str
    implementation: str


@dataclass
class AdminChangedEvent:
    proxy: str
    previous_admin: str
    new_admin: str


@dataclass
class BeaconUpgradedEvent:
    proxy: str
    beacon: str


Event = Union[
    ContractDeployedEvent,
    DeploymentCollisionEvent,
    TransactionSimulatedEvent,
    SafeTransactionQueuedEvent,
    SafeTransactionExecutedEvent,
    ProxyDeployedEvent,
    UpgradedEvent,
    AdminChangedEvent,
    BeaconUpgradedEvent,
]

EventDecoder = Callable[[RawLog], Event]


def hex_to_bytes(value: Optional[str]) -> bytes:
    if not value:
        return b""
    clean = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(clean)


def to_hex(value: bytes) -> str:
    return "0x" + value.hex()


def topic_to_address(topic: str) -> str:
    """Topics are 32-byte words; addresses are right-aligned (last 20 bytes)."""
    clean = topic.lower().replace("0x", "")
    if len(clean) != 64:
        raise ValueError(f"Malformed topic: {topic}")
    return to_checksum_address("0x" + clean[-40:])


def _topic_to_bytes32(topic: str) -> str:
    clean = topic.lower().replace("0x", "")
    if len(clean) != 64:
        raise ValueError(f"Malformed topic: {topic}")
    return "0x" + clean


def _details(values: tuple) -> DeploymentDetails:
    artifact, label, entropy, salt, bytecode_hash, init_code_hash, args, strategy = values
    return DeploymentDetails(
        artifact=artifact,
        label=label,
        entropy=entropy,
        salt=to_hex(salt),
        bytecode_hash=to_hex(bytecode_hash),
        init_code_hash=to_hex(init_code_hash),
        constructor_args=to_hex(args),
        create_strategy=strategy,
    )


def _decode_contract_deployed(log: RawLog) -> ContractDeployedEvent:
    (details,) = abi_decode([DEPLOYMENT_DETAILS_TYPE], log.data_bytes)
    return ContractDeployedEvent(
        deployer=topic_to_address(log.topics[1]),
        location=topic_to_address(log.topics[2]),
        transaction_id=_topic_to_bytes32(log.topics[3]),
        deployment=_details(details),
    )


def _decode_deployment_collision(log: RawLog) -> DeploymentCollisionEvent:
    (details,) = abi_decode([DEPLOYMENT_DETAILS_TYPE], log.data_bytes)
    return DeploymentCollisionEvent(
        existing_contract=topic_to_address(log.topics[1]),
        deployment=_details(details),
    )


def _decode_transaction_simulated(log: RawLog) -> TransactionSimulatedEvent:
    (simulated,) = abi_decode(
        ["(bytes32,bytes32,address,bytes,(address,bytes,uint256))"], log.data_bytes
    )
    transaction_id, sender_id, sender, return_data, (to, data, value) = simulated
    return TransactionSimulatedEvent(
        transaction_id=to_hex(transaction_id),
        sender_id=to_hex(sender_id),
        sender=to_checksum_address(sender),
        return_data=to_hex(return_data),
        to=to_checksum_address(to),
        data=to_hex(data),
        value=value,
    )


def _decode_safe_queued(log: RawLog) -> SafeTransactionQueuedEvent:
    (transaction_ids,) = abi_decode(["bytes32[]"], log.data_bytes)
    return SafeTransactionQueuedEvent(
        safe_tx_hash=_topic_to_bytes32(log.topics[1]),
        safe=topic_to_address(log.topics[2]),
        proposer=topic_to_address(log.topics[3]),
        transaction_ids=[to_hex(t) for t in transaction_ids],
    )


def _decode_safe_executed(log: RawLog) -> SafeTransactionExecutedEvent:
    (transaction_ids,) = abi_decode(["bytes32[]"], log.data_bytes)
    return SafeTransactionExecutedEvent(
        safe_tx_hash=_topic_to_bytes32(log.topics[1]),
        safe=topic_to_address(log.topics[2]),
        executor=topic_to_address(log.topics[3]),
        transaction_ids=[to_hex(t) for t in transaction_ids],
    )


def _decode_proxy_deployed(log: RawLog) -> ProxyDeployedEvent:
    return ProxyDeployedEvent(
        proxy=topic_to_address(log.topics[1]),
        implementation=topic_to_address(log.topics[2]),
    )


def _decode_upgraded(log: RawLog) -> UpgradedEvent:
    return UpgradedEvent(
        proxy=to_checksum_address(log.address),
        implementation=topic_to_address(log.topics[1]),
    )


def _decode_admin_changed(log: RawLog) -> AdminChangedEvent:
    # ERC-1967 declares both admins unindexed; some proxies index them
    if len(log.topics) >= 3:
        previous_admin = topic_to_address(log.topics[1])
        new_admin = topic_to_address(log.topics[2])
    else:
        previous_admin, new_admin = abi_decode(["address", "address"], log.data_bytes)
    return AdminChangedEvent(
        proxy=to_checksum_address(log.address),
        previous_admin=to_checksum_address(previous_admin),
        new_admin=to_checksum_address(new_admin),
    )


def _decode_beacon_upgraded(log: RawLog) -> BeaconUpgradedEvent:
    return BeaconUpgradedEvent(
        proxy=to_checksum_address(log.address),
        beacon=topic_to_address(log.topics[1]),
    )


DEFAULT_EVENT_SIGNATURES: Dict[str, EventDecoder] = {
    event_topic(SIG_CONTRACT_DEPLOYED): _decode_contract_deployed,
    event_topic(SIG_DEPLOYMENT_COLLISION): _decode_deployment_collision,
    event_topic(SIG_TRANSACTION_SIMULATED): _decode_transaction_simulated,
    event_topic(SIG_SAFE_TRANSACTION_QUEUED): _decode_safe_queued,
    event_topic(SIG_SAFE_TRANSACTION_EXECUTED): _decode_safe_executed,
    event_topic(SIG_PROXY_DEPLOYED): _decode_proxy_deployed,
    event_topic(SIG_UPGRADED): _decode_upgraded,
    event_topic(SIG_ADMIN_CHANGED): _decode_admin_changed,
    event_topic(SIG_BEACON_UPGRADED): _decode_beacon_upgraded,
}


def decode_log(
    log: RawLog, signatures: Optional[Dict[str, EventDecoder]] = None
) -> Optional[Event]:
    """
    Decode a raw log into a typed event.

    Args:
        log: Raw log (emitter address, topics, data)
        signatures: topic0 -> decoder table (defaults to DEFAULT_EVENT_SIGNATURES)

    Returns:
        Typed event, or None if the log is not recognized or is malformed
    """
    if signatures is None:
        signatures = DEFAULT_EVENT_SIGNATURES

    if not log.topics:
        return None

    decoder = signatures.get(log.topics[0].lower())
    if decoder is None:
        return None

    try:
        return decoder(log)
    except (DecodingError, ValueError, IndexError, TypeError) as e:
        logger.debug("Skipping malformed log from %s: %s", log.address, e)
        return None


def decode_logs(
    logs: Iterable[RawLog], signatures: Optional[Dict[str, EventDecoder]] = None
) -> List[Event]:
    """Decode logs in order, dropping the ones that are not recognized."""
    events = []
    for log in logs:
        event = decode_log(log, signatures)
        if event is not None:
            events.append(event)
    return events
