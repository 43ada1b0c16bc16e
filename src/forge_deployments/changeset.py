"""Changeset construction for forge-deployments library.

Turns a parsed ScriptExecution into a Changeset against a registry snapshot.
Building is pure: time and git commit are injected, and nothing is read from
or written to disk.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from .constants import CREATEX_FACTORY_ADDRESS, DEFAULT_CREATE_STRATEGY
from .execution import (
    DeploymentRecord,
    ProxyRelationship,
    ScriptExecution,
    ScriptSafeTransaction,
    ScriptTransaction,
)
from .trace import strip_hex_prefix
from .types import (
    ArtifactInfo,
    Changeset,
    Deployment,
    DeploymentMethod,
    DeploymentStrategy,
    DeploymentType,
    ProxyInfo,
    ProxyUpgrade,
    SafeContext,
    SafeTransaction,
    Transaction,
    TransactionStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class RegistrySnapshot:
    """The registry keys a changeset must not collide with."""

    deployment_ids: Set[str] = field(default_factory=set)
    transaction_ids: Set[str] = field(default_factory=set)
    safe_tx_hashes: Set[str] = field(default_factory=set)
    # (chain id, lowercased address) -> deployment id
    deployment_ids_by_address: Dict[Tuple[int, str], str] = field(default_factory=dict)


def deployment_base_id(namespace: str, chain_id: int, contract_name: str, label: str) -> str:
    """
    Natural deployment ID.

    Returns:
        "{namespace}/{chain_id}/{contract_name}:{label}", without ":{label}" if label is empty
    """
    base = f"{namespace}/{chain_id}/{contract_name}"
    if label:
        base = f"{base}:{label}"
    return base


def registry_transaction_id(tx: ScriptTransaction) -> str:
    """Registry ID of a transaction: Safe batch position, chain hash or internal id."""
    if tx.safe_tx_hash is not None and tx.safe_batch_index is not None:
        return f"safe-{tx.safe_tx_hash}-{tx.safe_batch_index}"
    if tx.hash:
        return f"tx-{tx.hash}"
    return f"tx-internal-{tx.transaction_id}"


def parse_create_strategy(value: str) -> DeploymentMethod:
    try:
        return DeploymentMethod((value or DEFAULT_CREATE_STRATEGY).upper())
    except ValueError:
        logger.debug("Unknown create strategy %r, assuming %s", value, DEFAULT_CREATE_STRATEGY)
        return DeploymentMethod(DEFAULT_CREATE_STRATEGY)


class ChangesetBuilder:
    """Maps a ScriptExecution to registry creates and updates."""

    def __init__(
        self,
        snapshot: Optional[RegistrySnapshot] = None,
        now: Optional[datetime] = None,
        git_commit: str = "",
    ):
        """
        Initialize the builder.

        Args:
            snapshot: Current registry keys (empty registry if None)
            now: Timestamp for created/updated fields (current time if None)
            git_commit: Commit the deployed artifacts were built from
        """
        self._snapshot = snapshot or RegistrySnapshot()
        self._now = now
        self._git_commit = git_commit

    def build(self, execution: ScriptExecution) -> Changeset:
        """
        Build the changeset for one script run.

        Args:
            execution: Parsed script execution

        Returns:
            Changeset with new entries in `create` and already-known
            transactions and Safe transactions in `update`
        """
        now = self._now or utc_now()
        changeset = Changeset()

        tx_ids: Dict[str, str] = {
            tx.transaction_id: registry_transaction_id(tx) for tx in execution.transactions
        }

        deployments = self._build_deployments(execution, tx_ids, now)
        changeset.create.deployments.extend(deployments)

        deployments_by_tx: Dict[str, List[str]] = {}
        for deployment in deployments:
            deployments_by_tx.setdefault(deployment.transaction_id, []).append(deployment.id)

        safe_by_hash = {s.safe_tx_hash: s for s in execution.safe_transactions}
        for tx in execution.transactions:
            record = self._build_transaction(
                execution, tx, tx_ids[tx.transaction_id], deployments_by_tx, safe_by_hash, now
            )
            if record.id in self._snapshot.transaction_ids:
                changeset.update.transactions.append(record)
            else:
                changeset.create.transactions.append(record)

        for safe_tx in execution.safe_transactions:
            record = self._build_safe_transaction(execution, safe_tx, tx_ids, now)
            if record.safe_tx_hash in self._snapshot.safe_tx_hashes:
                changeset.update.safe_transactions.append(record)
            else:
                changeset.create.safe_transactions.append(record)

        logger.debug(
            "Built changeset: %d creates, %d updates",
            changeset.create.count(),
            changeset.update.count(),
        )
        return changeset

    def assign_deployment_id(self, base: str, tx_hash: str, taken: Set[str], now: datetime) -> str:
        """
        Pick a locally unique deployment ID.

        Args:
            base: Natural ID
            tx_hash: Hash of the owning transaction ("" if not broadcast)
            taken: IDs already in use
            now: Time used for the last-resort suffix

        Returns:
            `base`, else `base#<first four hash hex chars>`, else `base#<unix time>`
        """
        if base not in taken:
            return base

        short_hash = strip_hex_prefix(tx_hash)[:4]
        if len(short_hash) == 4:
            candidate = f"{base}#{short_hash}"
            if candidate not in taken:
                return candidate

        timestamp = int(now.timestamp())
        candidate = f"{base}#{timestamp}"
        counter = 1
        while candidate in taken:
            candidate = f"{base}#{timestamp}-{counter}"
            counter += 1
        return candidate

    def _build_deployments(
        self, execution: ScriptExecution, tx_ids: Dict[str, str], now: datetime
    ) -> List[Deployment]:
        taken = set(self._snapshot.deployment_ids)
        addresses: Dict[str, str] = {
            address: deployment_id
            for (chain_id, address), deployment_id in self._snapshot.deployment_ids_by_address.items()
            if chain_id == execution.chain_id
        }

        assigned: List[Tuple[DeploymentRecord, Deployment]] = []
        for record in execution.deployments:
            address_key = record.address.lower()
            if address_key in addresses:
                logger.warning(
                    "Skipping %s at %s: address already registered as %s",
                    record.contract_name,
                    record.address,
                    addresses[address_key],
                )
                continue

            tx = execution.transaction(record.transaction_id)
            base = deployment_base_id(
                execution.namespace, execution.chain_id, record.contract_name, record.label
            )
            deployment_id = self.assign_deployment_id(base, tx.hash if tx else "", taken, now)
            taken.add(deployment_id)
            addresses[address_key] = deployment_id

            deployment = Deployment(
                id=deployment_id,
                namespace=execution.namespace,
                chain_id=execution.chain_id,
                contract_name=record.contract_name,
                label=record.label,
                address=record.address,
                type=self._deployment_type(execution, record),
                transaction_id=tx_ids.get(record.transaction_id, ""),
                deployment_strategy=self._strategy(record),
                artifact=ArtifactInfo(
                    path=record.contract.path if record.contract else record.details.artifact.split(":")[0],
                    compiler_version=record.contract.compiler_version if record.contract else "",
                    bytecode_hash=record.details.bytecode_hash,
                    script_path=execution.script_path,
                    git_commit=self._git_commit,
                ),
                created_at=now,
                updated_at=now,
            )
            assigned.append((record, deployment))

        # Implementations may be deployed after their proxy in the same run
        for record, deployment in assigned:
            relationship = execution.proxy_relationship(record.address)
            if relationship is not None:
                deployment.proxy_info = self._proxy_info(relationship, deployment, addresses, now)

        return [deployment for _, deployment in assigned]

    def _deployment_type(self, execution: ScriptExecution, record: DeploymentRecord) -> DeploymentType:
        if execution.proxy_relationship(record.address) is not None:
            return DeploymentType.PROXY
        if record.contract is not None and record.contract.is_library:
            return DeploymentType.LIBRARY
        return DeploymentType.SINGLETON

    def _strategy(self, record: DeploymentRecord) -> DeploymentStrategy:
        method = parse_create_strategy(record.details.create_strategy)
        return DeploymentStrategy(
            method=method,
            salt=record.details.salt,
            init_code_hash=record.details.init_code_hash,
            factory="" if method == DeploymentMethod.CREATE else CREATEX_FACTORY_ADDRESS,
            constructor_args=record.details.constructor_args,
            entropy=record.details.entropy,
        )

    def _proxy_info(
        self,
        relationship: ProxyRelationship,
        deployment: Deployment,
        addresses: Dict[str, str],
        now: datetime,
    ) -> ProxyInfo:
        history = []
        implementation_id = addresses.get(relationship.implementation_address.lower(), "")
        if relationship.implementation_address:
            history.append(
                ProxyUpgrade(
                    implementation_id=implementation_id,
                    upgraded_at=now,
                    upgrade_tx_id=deployment.transaction_id,
                )
            )
        return ProxyInfo(
            type=relationship.proxy_type,
            implementation=relationship.implementation_address,
            admin=relationship.admin_address or "",
            beacon=relationship.beacon_address or "",
            history=history,
        )

    def _build_transaction(
        self,
        execution: ScriptExecution,
        tx: ScriptTransaction,
        registry_id: str,
        deployments_by_tx: Dict[str, List[str]],
        safe_by_hash: Dict[str, ScriptSafeTransaction],
        now: datetime,
    ) -> Transaction:
        safe_context = None
        if tx.safe_tx_hash is not None:
            safe_tx = safe_by_hash.get(tx.safe_tx_hash)
            safe_context = SafeContext(
                safe_address=tx.safe_address,
                safe_tx_hash=tx.safe_tx_hash,
                batch_index=tx.safe_batch_index or 0,
                proposer_address=safe_tx.proposer if safe_tx else "",
            )
        return Transaction(
            id=registry_id,
            chain_id=execution.chain_id,
            status=tx.status,
            hash=tx.hash,
            block_number=tx.block_number,
            gas_used=tx.gas_used,
            sender=tx.sender,
            to=tx.to,
            value=tx.value,
            data=tx.data,
            internal_id=tx.transaction_id,
            deployments=list(deployments_by_tx.get(registry_id, [])),
            safe_context=safe_context,
            environment=execution.namespace,
            created_at=now,
        )

    def _build_safe_transaction(
        self,
        execution: ScriptExecution,
        safe_tx: ScriptSafeTransaction,
        tx_ids: Dict[str, str],
        now: datetime,
    ) -> SafeTransaction:
        return SafeTransaction(
            safe_tx_hash=safe_tx.safe_tx_hash,
            safe_address=safe_tx.safe_address,
            chain_id=execution.chain_id,
            status=TransactionStatus.EXECUTED if safe_tx.executed else TransactionStatus.QUEUED,
            proposed_by=safe_tx.proposer,
            transaction_ids=[tx_ids[t] for t in safe_tx.transaction_ids if t in tx_ids],
            proposed_at=now,
            executed_at=now if safe_tx.executed else None,
            execution_tx_hash=safe_tx.execution_tx_hash,
            execution_block_number=safe_tx.execution_block_number,
        )
