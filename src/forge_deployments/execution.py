"""Script execution parsing for forge-deployments library.

Rebuilds a structured ScriptExecution from the three artifacts of a
`forge script` run: the JSON script output (raw logs, console logs and the
call-trace forest), and the broadcast file with the on-chain receipts.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from eth_utils import keccak

from .broadcast import BroadcastFile, load_broadcast_file
from .constants import DEFAULT_NAMESPACE, SAFE_EXEC_TRANSACTION_SELECTOR
from .contracts import ContractIndex, ContractInfo
from .events import (
    AdminChangedEvent,
    BeaconUpgradedEvent,
    ContractDeployedEvent,
    DeploymentCollisionEvent,
    DeploymentDetails,
    Event,
    EventDecoder,
    ProxyDeployedEvent,
    RawLog,
    SafeTransactionExecutedEvent,
    SafeTransactionQueuedEvent,
    TransactionSimulatedEvent,
    UpgradedEvent,
    decode_log,
    hex_to_bytes,
)
from .trace import MATCHABLE_KINDS, TraceArena, parse_trace_forest, strip_hex_prefix
from .types import ProxyType, TransactionStatus

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

CONSOLE_LOG_PATTERNS = [
    re.compile(r"console\.log\s*\([^)]+\)"),
    re.compile(r"Logs:.*"),
    re.compile(r"\[LOG\].*"),
]


@dataclass
class ScriptTransaction:
    """A transaction simulated by the script, enriched as the run is parsed."""

    transaction_id: str  # 32-byte id assigned at simulation time
    sender: str
    to: str
    value: int = 0
    data: str = "0x"
    sender_id: str = ""
    return_data: str = "0x"
    status: TransactionStatus = TransactionStatus.SIMULATED
    hash: str = ""
    block_number: int = 0
    gas_used: int = 0
    safe_tx_hash: Optional[str] = None
    safe_address: str = ""
    safe_batch_index: Optional[int] = None
    trace: Optional[TraceArena] = None

    def advance(self, status: TransactionStatus) -> bool:
        """
        Move to a later status.

        Returns:
            True if the status changed, False if `status` would be a regression
        """
        if self.status.can_advance_to(status):
            self.status = status
            return True
        return False


@dataclass
class DeploymentRecord:
    """A contract deployment observed in a script run."""

    transaction_id: str
    address: str
    deployer: str
    details: DeploymentDetails
    contract: Optional[ContractInfo] = None

    @property
    def contract_name(self) -> str:
        if self.contract is not None:
            return self.contract.name
        artifact = self.details.artifact
        return artifact.rsplit(":", 1)[-1] if ":" in artifact else artifact

    @property
    def label(self) -> str:
        return self.details.label


@dataclass
class ProxyRelationship:
    """Heuristic proxy classification folded from proxy-family events."""

    proxy_address: str
    implementation_address: str
    proxy_type: ProxyType
    admin_address: Optional[str] = None
    beacon_address: Optional[str] = None


@dataclass
class ScriptSafeTransaction:
    """A Safe batch proposed (and possibly executed) by the script."""

    safe_tx_hash: str
    safe_address: str
    proposer: str
    transaction_ids: List[str] = field(default_factory=list)
    executed: bool = False
    executor: str = ""
    execution_tx_hash: str = ""
    execution_block_number: int = 0


@dataclass
class ScriptExecution:
    """Everything a single script run did, in simulation order."""

    network: str
    chain_id: int
    namespace: str = DEFAULT_NAMESPACE
    success: bool = False
    transactions: List[ScriptTransaction] = field(default_factory=list)
    deployments: List[DeploymentRecord] = field(default_factory=list)
    proxy_relationships: Dict[str, ProxyRelationship] = field(default_factory=dict)
    safe_transactions: List[ScriptSafeTransaction] = field(default_factory=list)
    collisions: Dict[str, DeploymentDetails] = field(default_factory=dict)
    raw_logs: List[RawLog] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    console_logs: List[str] = field(default_factory=list)
    gas_used: int = 0  # as reported by the simulation
    script_path: str = ""
    broadcast_path: Optional[str] = None

    def transaction(self, transaction_id: str) -> Optional[ScriptTransaction]:
        for tx in self.transactions:
            if tx.transaction_id == transaction_id:
                return tx
        return None

    def proxy_relationship(self, address: str) -> Optional[ProxyRelationship]:
        return self.proxy_relationships.get(address.lower())

    @property
    def total_gas_used(self) -> int:
        """On-chain gas, counting each broadcast transaction hash once."""
        seen: Dict[str, int] = {}
        for tx in self.transactions:
            if tx.hash and tx.hash not in seen:
                seen[tx.hash] = tx.gas_used
        return sum(seen.values())


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return (a or ZERO_ADDRESS).lower() == (b or ZERO_ADDRESS).lower()


def _same_data(a: str, b: str) -> bool:
    return strip_hex_prefix(a).lower() == strip_hex_prefix(b).lower()


def extract_console_logs(text: str) -> List[str]:
    """
    Pick console output lines out of the non-JSON part of a run's output.

    Args:
        text: Raw text output

    Returns:
        Matching lines, stripped, in order
    """
    logs = []
    for line in text.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        if any(pattern.search(trimmed) for pattern in CONSOLE_LOG_PATTERNS):
            logs.append(trimmed)
        elif trimmed.startswith(("==", "##")):
            logs.append(trimmed)
    return logs


def parse_script_output(raw_output: Union[str, Mapping[str, Any]]) -> Tuple[Dict[str, Any], str]:
    """
    Split `forge script --json` output into its JSON document and plain text.

    forge prints one JSON document per line, interleaved with plain text. The
    document carrying `raw_logs` is the script output.

    Args:
        raw_output: Raw stdout, or an already decoded script output document

    Returns:
        Tuple of (script_output, text_output). script_output is empty if no
        JSON document with raw logs was found.
    """
    if isinstance(raw_output, Mapping):
        return dict(raw_output), ""

    script_output: Dict[str, Any] = {}
    text_lines = []
    for line in raw_output.splitlines():
        stripped = line.strip()
        if stripped.startswith("{"):
            try:
                document = json.loads(stripped)
            except json.JSONDecodeError:
                text_lines.append(line)
                continue
            if isinstance(document, dict) and "raw_logs" in document and not script_output:
                script_output = document
            continue
        text_lines.append(line)

    return script_output, "\n".join(text_lines)


class ExecutionParser:
    """Builds a ScriptExecution from the artifacts of one script run."""

    def __init__(
        self,
        contract_index: Optional[ContractIndex] = None,
        signatures: Optional[Dict[str, EventDecoder]] = None,
    ):
        """
        Initialize the parser.

        Args:
            contract_index: Resolves contract metadata for deployments
                            (deployments stay unresolved if None)
            signatures: Event decoder table (defaults to the built-in table)
        """
        self._contract_index = contract_index
        self._signatures = signatures

    def parse(
        self,
        raw_output: Union[str, Mapping[str, Any]],
        traces: Optional[List[Any]] = None,
        broadcast_path: Optional[Union[Path, str]] = None,
        network: str = "",
        chain_id: int = 0,
        namespace: str = DEFAULT_NAMESPACE,
        script_path: str = "",
    ) -> ScriptExecution:
        """
        Parse one script run.

        Args:
            raw_output: `forge script --json` stdout or its decoded document
            traces: Call-trace forest (defaults to the `traces` in raw_output)
            broadcast_path: Broadcast file, None for a dry run
            network: Network name
            chain_id: Chain ID
            namespace: Deployment namespace
            script_path: Path of the script that was run

        Returns:
            Fully populated ScriptExecution

        Raises:
            BroadcastParseError: If the broadcast file is unreadable or not valid JSON
        """
        broadcast = load_broadcast_file(broadcast_path) if broadcast_path is not None else None

        script_output, text_output = parse_script_output(raw_output)
        if not script_output:
            logger.warning("No JSON script output found; parsing an empty run")

        execution = ScriptExecution(
            network=network,
            chain_id=chain_id,
            namespace=namespace,
            success=bool(script_output.get("success", False)),
            gas_used=int(script_output.get("gas_used") or 0),
            script_path=script_path,
            broadcast_path=str(broadcast_path) if broadcast_path is not None else None,
        )
        execution.console_logs = list(script_output.get("logs") or [])
        execution.console_logs.extend(extract_console_logs(text_output))

        for entry in script_output.get("raw_logs") or []:
            if isinstance(entry, dict):
                execution.raw_logs.append(RawLog.from_dict(entry))

        for log in execution.raw_logs:
            event = decode_log(log, self._signatures)
            if event is not None:
                execution.events.append(event)

        transactions: Dict[str, ScriptTransaction] = {}
        order: List[str] = []
        self._collect_transactions(execution.events, transactions, order)

        safe_transactions: Dict[str, ScriptSafeTransaction] = {}
        safe_order: List[str] = []
        for event in execution.events:
            if isinstance(event, ContractDeployedEvent):
                execution.deployments.append(self._deployment_record(event))
            elif isinstance(event, DeploymentCollisionEvent):
                execution.collisions[event.existing_contract] = event.deployment
            elif isinstance(event, (ProxyDeployedEvent, UpgradedEvent, AdminChangedEvent, BeaconUpgradedEvent)):
                fold_proxy_event(execution.proxy_relationships, event)
            elif isinstance(event, SafeTransactionQueuedEvent):
                self._apply_safe_event(event, False, transactions, safe_transactions, safe_order)
            elif isinstance(event, SafeTransactionExecutedEvent):
                self._apply_safe_event(event, True, transactions, safe_transactions, safe_order)

        ordered = [transactions[tx_id] for tx_id in order]

        if traces is None:
            traces = script_output.get("traces")
        match_traces(parse_trace_forest(traces), ordered)

        ordered_safe = [safe_transactions[h] for h in safe_order]
        if broadcast is not None:
            enrich_from_broadcast(ordered, broadcast)
            enrich_safe_executions(ordered_safe, transactions, broadcast)

        execution.transactions = ordered
        execution.safe_transactions = ordered_safe

        logger.info(
            "Parsed run on %s: %d transactions, %d deployments, %d Safe transactions",
            network or chain_id,
            len(execution.transactions),
            len(execution.deployments),
            len(execution.safe_transactions),
        )
        return execution

    def _collect_transactions(
        self,
        events: List[Event],
        transactions: Dict[str, ScriptTransaction],
        order: List[str],
    ) -> None:
        for event in events:
            if not isinstance(event, TransactionSimulatedEvent):
                continue
            if event.transaction_id in transactions:
                logger.debug("Duplicate simulated transaction %s", event.transaction_id)
                continue
            transactions[event.transaction_id] = ScriptTransaction(
                transaction_id=event.transaction_id,
                sender=event.sender,
                to=event.to,
                value=event.value,
                data=event.data,
                sender_id=event.sender_id,
                return_data=event.return_data,
            )
            order.append(event.transaction_id)

    def _deployment_record(self, event: ContractDeployedEvent) -> DeploymentRecord:
        contract = None
        if self._contract_index is not None:
            contract = self._contract_index.get_contract_by_bytecode_hash(
                event.deployment.bytecode_hash
            )
            if contract is None and event.deployment.artifact:
                contract = self._contract_index.get_contract_by_artifact(event.deployment.artifact)
            if contract is None:
                logger.debug(
                    "No contract metadata for %s at %s",
                    event.deployment.artifact,
                    event.location,
                )
        return DeploymentRecord(
            transaction_id=event.transaction_id,
            address=event.location,
            deployer=event.deployer,
            details=event.deployment,
            contract=contract,
        )

    def _apply_safe_event(
        self,
        event: Union[SafeTransactionQueuedEvent, SafeTransactionExecutedEvent],
        executed: bool,
        transactions: Dict[str, ScriptTransaction],
        safe_transactions: Dict[str, ScriptSafeTransaction],
        safe_order: List[str],
    ) -> None:
        safe_tx = safe_transactions.get(event.safe_tx_hash)
        if safe_tx is None:
            proposer = event.executor if executed else event.proposer
            safe_tx = ScriptSafeTransaction(
                safe_tx_hash=event.safe_tx_hash,
                safe_address=event.safe,
                proposer=proposer,
            )
            safe_transactions[event.safe_tx_hash] = safe_tx
            safe_order.append(event.safe_tx_hash)

        for tx_id in event.transaction_ids:
            if tx_id not in safe_tx.transaction_ids:
                safe_tx.transaction_ids.append(tx_id)

        if executed:
            safe_tx.executed = True
            safe_tx.executor = event.executor

        status = TransactionStatus.EXECUTED if executed else TransactionStatus.QUEUED
        for tx_id in event.transaction_ids:
            tx = transactions.get(tx_id)
            if tx is None:
                logger.debug("Safe batch %s references unknown transaction %s", event.safe_tx_hash, tx_id)
                continue
            tx.safe_tx_hash = safe_tx.safe_tx_hash
            tx.safe_address = safe_tx.safe_address
            tx.safe_batch_index = safe_tx.transaction_ids.index(tx_id)
            tx.advance(status)


def fold_proxy_event(
    relationships: Dict[str, ProxyRelationship],
    event: Union[ProxyDeployedEvent, UpgradedEvent, AdminChangedEvent, BeaconUpgradedEvent],
) -> None:
    """
    Fold one proxy-family event into the relationship for its proxy.

    Relationships are keyed by lowercased proxy address. Classification depends
    on arrival order: ProxyDeployed creates MINIMAL, Upgraded creates UUPS when
    nothing is known yet, AdminChanged turns MINIMAL into TRANSPARENT and
    BeaconUpgraded always yields BEACON.
    """
    key = event.proxy.lower()
    relationship = relationships.get(key)

    if isinstance(event, ProxyDeployedEvent):
        relationships[key] = ProxyRelationship(
            proxy_address=event.proxy,
            implementation_address=event.implementation,
            proxy_type=ProxyType.MINIMAL,
        )
    elif isinstance(event, UpgradedEvent):
        if relationship is None:
            relationships[key] = ProxyRelationship(
                proxy_address=event.proxy,
                implementation_address=event.implementation,
                proxy_type=ProxyType.UUPS,
            )
        else:
            relationship.implementation_address = event.implementation
    elif isinstance(event, AdminChangedEvent):
        if relationship is None:
            relationships[key] = ProxyRelationship(
                proxy_address=event.proxy,
                implementation_address="",
                proxy_type=ProxyType.TRANSPARENT,
                admin_address=event.new_admin,
            )
        else:
            relationship.admin_address = event.new_admin
            if relationship.proxy_type == ProxyType.MINIMAL:
                relationship.proxy_type = ProxyType.TRANSPARENT
    elif isinstance(event, BeaconUpgradedEvent):
        if relationship is None:
            relationships[key] = ProxyRelationship(
                proxy_address=event.proxy,
                implementation_address="",
                proxy_type=ProxyType.BEACON,
                beacon_address=event.beacon,
            )
        else:
            relationship.proxy_type = ProxyType.BEACON
            relationship.beacon_address = event.beacon


def _trace_matches(tx: ScriptTransaction, arena: TraceArena, node_idx: int, sender: str) -> bool:
    node = arena.node(node_idx)
    if node.kind not in MATCHABLE_KINDS:
        return False
    if not _same_address(sender, tx.sender):
        return False
    if node.kind == "CALL" and not _same_address(node.address, tx.to):
        return False
    return _same_data(node.data, tx.data)


def match_traces(arenas: List[TraceArena], transactions: List[ScriptTransaction]) -> None:
    """
    Attach a trace fragment to each pending transaction.

    Transactions are served in simulation order. Each one claims the first
    unclaimed node, in pre-order across the forest, whose effective sender,
    recipient (CALL only) and call data match. Transactions without a match
    keep `trace = None`.
    """
    candidates = []
    for arena in arenas:
        for node in arena.walk():
            if node.kind in MATCHABLE_KINDS:
                candidates.append((arena, node.idx, arena.effective_sender(node.idx)))

    claimed = set()
    for tx in transactions:
        if tx.trace is not None or not tx.status.is_pending:
            continue
        for position, (arena, node_idx, sender) in enumerate(candidates):
            if position in claimed:
                continue
            if _trace_matches(tx, arena, node_idx, sender):
                tx.trace = arena.extract_subtree(node_idx)
                claimed.add(position)
                break
        else:
            logger.debug("No trace node matches transaction %s", tx.transaction_id)


def enrich_from_broadcast(transactions: List[ScriptTransaction], broadcast: BroadcastFile) -> None:
    """
    Attach on-chain hashes, blocks and gas from the broadcast file.

    Each broadcast entry is matched to the first transaction, in simulation
    order, without a hash whose recipient, sender and call-data hash agree.
    """
    for entry in broadcast.transactions:
        if not entry.hash:
            continue
        data_hash = keccak(hex_to_bytes(entry.data))
        for tx in transactions:
            if tx.hash:
                continue
            if not _same_address(tx.to, entry.to) or not _same_address(tx.sender, entry.sender):
                continue
            if keccak(hex_to_bytes(tx.data)) != data_hash:
                continue

            tx.hash = entry.hash
            receipt = broadcast.receipt_for(entry.hash)
            if receipt is not None and not receipt.succeeded:
                tx.advance(TransactionStatus.FAILED)
            else:
                tx.advance(TransactionStatus.EXECUTED)
            if receipt is not None:
                tx.block_number = receipt.block_number
                tx.gas_used = receipt.gas_used
            break
        else:
            logger.debug("Broadcast transaction %s matches no simulated transaction", entry.hash)


def enrich_safe_executions(
    safe_transactions: List[ScriptSafeTransaction],
    transactions: Dict[str, ScriptTransaction],
    broadcast: BroadcastFile,
) -> None:
    """
    Attach execution hashes to executed Safe batches.

    Broadcast `execTransaction` calls are matched in discovery order to the
    oldest executed batch of the same Safe that has no execution hash yet.
    Batched transactions inherit the execution hash, block and gas.
    """
    waiting: Dict[str, List[ScriptSafeTransaction]] = {}
    for safe_tx in safe_transactions:
        if safe_tx.executed and not safe_tx.execution_tx_hash:
            waiting.setdefault(safe_tx.safe_address.lower(), []).append(safe_tx)

    for entry in broadcast.transactions:
        if not entry.hash:
            continue
        if not strip_hex_prefix(entry.data).lower().startswith(SAFE_EXEC_TRANSACTION_SELECTOR):
            continue
        queue = waiting.get((entry.to or "").lower())
        if not queue:
            continue

        safe_tx = queue.pop(0)
        receipt = broadcast.receipt_for(entry.hash)
        safe_tx.execution_tx_hash = entry.hash
        if receipt is not None:
            safe_tx.execution_block_number = receipt.block_number

        for tx_id in safe_tx.transaction_ids:
            tx = transactions.get(tx_id)
            if tx is None:
                continue
            if not tx.hash:
                tx.hash = entry.hash
            if receipt is not None:
                tx.block_number = receipt.block_number
                tx.gas_used = receipt.gas_used
                if not receipt.succeeded:
                    tx.advance(TransactionStatus.FAILED)
            tx.advance(TransactionStatus.EXECUTED)
