"""Data types and dataclasses for forge-deployments library.

Persisted types serialize to the camelCase JSON documents kept in the
registry state directory. Transient types produced by the execution parser
live in execution.py.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class DeploymentType(Enum):
    """
    Deployment classification.

    Value strings define de/serialization law.
    """

    SINGLETON = "SINGLETON"
    PROXY = "PROXY"
    LIBRARY = "LIBRARY"


class DeploymentMethod(Enum):
    """Contract creation method used by the deployment script."""

    CREATE = "CREATE"
    CREATE2 = "CREATE2"
    CREATE3 = "CREATE3"


class TransactionStatus(Enum):
    """
    Transaction lifecycle status.

    Status only moves forward: SIMULATED -> QUEUED -> EXECUTED | FAILED.
    """

    SIMULATED = "SIMULATED"
    QUEUED = "QUEUED"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_pending(self) -> bool:
        return self in (TransactionStatus.SIMULATED, TransactionStatus.QUEUED)

    def can_advance_to(self, other: "TransactionStatus") -> bool:
        """Return True if moving to `other` keeps the status monotonic."""
        return other.rank > self.rank


_STATUS_RANK = {
    TransactionStatus.SIMULATED: 0,
    TransactionStatus.QUEUED: 1,
    TransactionStatus.EXECUTED: 2,
    TransactionStatus.FAILED: 2,
}


class ProxyType(Enum):
    """Heuristic proxy classification derived from emitted events."""

    MINIMAL = "MINIMAL"
    UUPS = "UUPS"
    TRANSPARENT = "TRANSPARENT"
    BEACON = "BEACON"


class VerificationStatus(Enum):
    """Block explorer verification state of a deployment."""

    UNVERIFIED = "UNVERIFIED"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # fromisoformat only accepts a trailing "Z" from Python 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass
class DeploymentStrategy:
    """How a contract was created."""

    method: DeploymentMethod = DeploymentMethod.CREATE2
    salt: str = ""
    init_code_hash: str = ""
    factory: str = ""
    constructor_args: str = ""
    entropy: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "salt": self.salt,
            "initCodeHash": self.init_code_hash,
            "factory": self.factory,
            "constructorArgs": self.constructor_args,
            "entropy": self.entropy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentStrategy":
        return cls(
            method=DeploymentMethod(data.get("method", DeploymentMethod.CREATE2.value)),
            salt=data.get("salt", ""),
            init_code_hash=data.get("initCodeHash", ""),
            factory=data.get("factory", ""),
            constructor_args=data.get("constructorArgs", ""),
            entropy=data.get("entropy", ""),
        )


@dataclass
class ProxyUpgrade:
    """One entry in a proxy's implementation history."""

    implementation_id: str
    upgraded_at: datetime
    upgrade_tx_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "implementationId": self.implementation_id,
            "upgradedAt": format_time(self.upgraded_at),
            "upgradeTxId": self.upgrade_tx_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxyUpgrade":
        return cls(
            implementation_id=data.get("implementationId", ""),
            upgraded_at=parse_time(data.get("upgradedAt")) or utc_now(),
            upgrade_tx_id=data.get("upgradeTxId", ""),
        )


@dataclass
class ProxyInfo:
    """Proxy metadata attached to PROXY deployments."""

    type: ProxyType
    implementation: str
    admin: str = ""
    beacon: str = ""
    history: List[ProxyUpgrade] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "implementation": self.implementation,
            "admin": self.admin,
            "beacon": self.beacon,
            "history": [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxyInfo":
        return cls(
            type=ProxyType(data["type"]),
            implementation=data.get("implementation", ""),
            admin=data.get("admin", ""),
            beacon=data.get("beacon", ""),
            history=[ProxyUpgrade.from_dict(h) for h in data.get("history") or []],
        )


@dataclass
class ArtifactInfo:
    """Build artifact metadata for a deployed contract."""

    path: str = ""
    compiler_version: str = ""
    bytecode_hash: str = ""
    script_path: str = ""
    git_commit: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "compilerVersion": self.compiler_version,
            "bytecodeHash": self.bytecode_hash,
            "scriptPath": self.script_path,
            "gitCommit": self.git_commit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactInfo":
        return cls(
            path=data.get("path", ""),
            compiler_version=data.get("compilerVersion", ""),
            bytecode_hash=data.get("bytecodeHash", ""),
            script_path=data.get("scriptPath", ""),
            git_commit=data.get("gitCommit", ""),
        )


@dataclass
class VerifierStatus:
    """Verification outcome reported by a single explorer."""

    status: str
    url: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "url": self.url, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerifierStatus":
        return cls(
            status=data.get("status", ""),
            url=data.get("url", ""),
            reason=data.get("reason", ""),
        )


@dataclass
class VerificationInfo:
    """Aggregated verification state of a deployment."""

    status: VerificationStatus = VerificationStatus.UNVERIFIED
    etherscan_url: str = ""
    verified_at: Optional[datetime] = None
    reason: str = ""
    verifiers: Dict[str, VerifierStatus] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "etherscanUrl": self.etherscan_url,
            "verifiedAt": format_time(self.verified_at),
            "reason": self.reason,
            "verifiers": {name: v.to_dict() for name, v in self.verifiers.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationInfo":
        return cls(
            status=VerificationStatus(data.get("status", VerificationStatus.UNVERIFIED.value)),
            etherscan_url=data.get("etherscanUrl", ""),
            verified_at=parse_time(data.get("verifiedAt")),
            reason=data.get("reason", ""),
            verifiers={
                name: VerifierStatus.from_dict(v)
                for name, v in (data.get("verifiers") or {}).items()
            },
        )


@dataclass
class Deployment:
    """A persisted contract deployment."""

    # Required fields
    id: str  # e.g., "default/31337/Counter:v1"
    namespace: str
    chain_id: int
    contract_name: str
    label: str
    address: str  # Checksummed address
    type: DeploymentType

    # Optional fields
    transaction_id: str = ""
    deployment_strategy: DeploymentStrategy = field(default_factory=DeploymentStrategy)
    proxy_info: Optional[ProxyInfo] = None
    artifact: ArtifactInfo = field(default_factory=ArtifactInfo)
    verification: VerificationInfo = field(default_factory=VerificationInfo)
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def short_id(self) -> str:
        """Contract name with label, as used in registry.json keys."""
        if self.label:
            return f"{self.contract_name}:{self.label}"
        return self.contract_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "namespace": self.namespace,
            "chainId": self.chain_id,
            "contractName": self.contract_name,
            "label": self.label,
            "address": self.address,
            "type": self.type.value,
            "transactionId": self.transaction_id,
            "deploymentStrategy": self.deployment_strategy.to_dict(),
            "proxyInfo": self.proxy_info.to_dict() if self.proxy_info else None,
            "artifact": self.artifact.to_dict(),
            "verification": self.verification.to_dict(),
            "tags": list(self.tags),
            "createdAt": format_time(self.created_at),
            "updatedAt": format_time(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deployment":
        proxy_info = data.get("proxyInfo")
        return cls(
            id=data["id"],
            namespace=data["namespace"],
            chain_id=int(data["chainId"]),
            contract_name=data["contractName"],
            label=data.get("label", ""),
            address=data["address"],
            type=DeploymentType(data["type"]),
            transaction_id=data.get("transactionId", ""),
            deployment_strategy=DeploymentStrategy.from_dict(data.get("deploymentStrategy") or {}),
            proxy_info=ProxyInfo.from_dict(proxy_info) if proxy_info else None,
            artifact=ArtifactInfo.from_dict(data.get("artifact") or {}),
            verification=VerificationInfo.from_dict(data.get("verification") or {}),
            tags=list(data.get("tags") or []),
            created_at=parse_time(data.get("createdAt")),
            updated_at=parse_time(data.get("updatedAt")),
        )


@dataclass
class SafeContext:
    """Links a transaction to the Safe batch that carried it."""

    safe_address: str
    safe_tx_hash: str
    batch_index: int
    proposer_address: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safeAddress": self.safe_address,
            "safeTxHash": self.safe_tx_hash,
            "batchIndex": self.batch_index,
            "proposerAddress": self.proposer_address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafeContext":
        return cls(
            safe_address=data.get("safeAddress", ""),
            safe_tx_hash=data.get("safeTxHash", ""),
            batch_index=int(data.get("batchIndex", 0)),
            proposer_address=data.get("proposerAddress", ""),
        )


@dataclass
class Transaction:
    """A persisted transaction produced by a script run."""

    id: str  # "tx-0x...", "safe-0x...-0" or "tx-internal-0x..."
    chain_id: int
    status: TransactionStatus
    hash: str = ""
    block_number: int = 0
    gas_used: int = 0
    sender: str = ""
    to: str = ""
    value: int = 0
    data: str = ""
    internal_id: str = ""  # 32-byte id assigned at simulation time
    deployments: List[str] = field(default_factory=list)
    safe_context: Optional[SafeContext] = None
    environment: str = ""
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chainId": self.chain_id,
            "hash": self.hash,
            "status": self.status.value,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
            "sender": self.sender,
            "to": self.to,
            # uint256 values overflow JSON number precision in most readers
            "value": str(self.value),
            "data": self.data,
            "internalId": self.internal_id,
            "deployments": list(self.deployments),
            "safeContext": self.safe_context.to_dict() if self.safe_context else None,
            "environment": self.environment,
            "createdAt": format_time(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        safe_context = data.get("safeContext")
        return cls(
            id=data["id"],
            chain_id=int(data["chainId"]),
            status=TransactionStatus(data["status"]),
            hash=data.get("hash", ""),
            block_number=int(data.get("blockNumber") or 0),
            gas_used=int(data.get("gasUsed") or 0),
            sender=data.get("sender", ""),
            to=data.get("to", ""),
            value=int(data.get("value") or 0),
            data=data.get("data", ""),
            internal_id=data.get("internalId", ""),
            deployments=list(data.get("deployments") or []),
            safe_context=SafeContext.from_dict(safe_context) if safe_context else None,
            environment=data.get("environment", ""),
            created_at=parse_time(data.get("createdAt")),
        )


@dataclass
class SafeTransaction:
    """A persisted Safe multisig batch."""

    safe_tx_hash: str
    safe_address: str
    chain_id: int
    status: TransactionStatus
    proposed_by: str = ""
    transaction_ids: List[str] = field(default_factory=list)
    proposed_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    execution_tx_hash: str = ""
    execution_block_number: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safeTxHash": self.safe_tx_hash,
            "safeAddress": self.safe_address,
            "chainId": self.chain_id,
            "status": self.status.value,
            "proposedBy": self.proposed_by,
            "transactionIds": list(self.transaction_ids),
            "proposedAt": format_time(self.proposed_at),
            "executedAt": format_time(self.executed_at),
            "executionTxHash": self.execution_tx_hash,
            "executionBlockNumber": self.execution_block_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafeTransaction":
        return cls(
            safe_tx_hash=data["safeTxHash"],
            safe_address=data["safeAddress"],
            chain_id=int(data["chainId"]),
            status=TransactionStatus(data["status"]),
            proposed_by=data.get("proposedBy", ""),
            transaction_ids=list(data.get("transactionIds") or []),
            proposed_at=parse_time(data.get("proposedAt")),
            executed_at=parse_time(data.get("executedAt")),
            execution_tx_hash=data.get("executionTxHash", ""),
            execution_block_number=int(data.get("executionBlockNumber") or 0),
        )


@dataclass
class ChangesetBucket:
    """Deployments, transactions and Safe transactions for one operation kind."""

    deployments: List[Deployment] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    safe_transactions: List[SafeTransaction] = field(default_factory=list)

    def count(self) -> int:
        return len(self.deployments) + len(self.transactions) + len(self.safe_transactions)


@dataclass
class Changeset:
    """
    A grouped set of registry mutations, applied atomically.

    `reasons` maps an item id (deployment id, transaction id or Safe-tx
    hash) to why the item was selected for deletion.
    """

    create: ChangesetBucket = field(default_factory=ChangesetBucket)
    update: ChangesetBucket = field(default_factory=ChangesetBucket)
    delete: ChangesetBucket = field(default_factory=ChangesetBucket)
    reasons: Dict[str, str] = field(default_factory=dict)

    def count(self) -> int:
        return self.create.count() + self.update.count() + self.delete.count()

    def has_changes(self) -> bool:
        return self.count() > 0


@dataclass
class ProxyIndex:
    """Proxy lookups derived from PROXY deployments."""

    # implementation deployment id -> proxy deployment ids
    implementations: Dict[str, List[str]] = field(default_factory=dict)
    # proxy deployment id -> implementation address
    proxy_to_implementation: Dict[str, str] = field(default_factory=dict)


@dataclass
class LookupIndexes:
    """Derived registry indexes, always equal to a full rebuild."""

    by_address: Dict[int, Dict[str, str]] = field(default_factory=dict)
    by_namespace: Dict[str, Dict[int, List[str]]] = field(default_factory=dict)
    by_contract: Dict[str, List[str]] = field(default_factory=dict)
    proxies: ProxyIndex = field(default_factory=ProxyIndex)
    pending_safe_txs: List[str] = field(default_factory=list)


@dataclass
class DeploymentFilter:
    """In-memory filter for listing deployments. None means any."""

    namespace: Optional[str] = None
    chain_id: Optional[int] = None
    contract_name: Optional[str] = None
    label: Optional[str] = None
    type: Optional[DeploymentType] = None
    tag: Optional[str] = None

    def matches(self, deployment: Deployment) -> bool:
        if self.namespace is not None and deployment.namespace != self.namespace:
            return False
        if self.chain_id is not None and deployment.chain_id != self.chain_id:
            return False
        if self.contract_name is not None and deployment.contract_name != self.contract_name:
            return False
        if self.label is not None and deployment.label != self.label:
            return False
        if self.type is not None and deployment.type != self.type:
            return False
        if self.tag is not None and self.tag not in deployment.tags:
            return False
        return True


@dataclass
class TransactionFilter:
    """In-memory filter for listing transactions. None means any."""

    chain_id: Optional[int] = None
    status: Optional[TransactionStatus] = None
    namespace: Optional[str] = None

    def matches(self, transaction: Transaction) -> bool:
        if self.chain_id is not None and transaction.chain_id != self.chain_id:
            return False
        if self.status is not None and transaction.status != self.status:
            return False
        if self.namespace is not None and transaction.environment != self.namespace:
            return False
        return True
