"""Registry pruning for forge-deployments library.

Finds registry entries that no longer exist on chain (a reset devnet, a
reorg, a dropped transaction) and removes them. Deletion is irreversible, so
any failure to query the chain keeps the entry.
"""

import logging
from typing import Callable, Dict, Optional, TypeVar

from .chain import BlockchainChecker
from .registry import RegistryStore
from .types import (
    Changeset,
    Deployment,
    DeploymentFilter,
    DeploymentType,
    SafeTransaction,
    Transaction,
    TransactionFilter,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Pruner:
    """Builds and applies delete-only changesets for stale registry entries."""

    def __init__(self, store: RegistryStore, checker: BlockchainChecker):
        self._store = store
        self._checker = checker

    def collect_prunable_items(self, chain_id: int, include_pending: bool = False) -> Changeset:
        """
        Scan the registry for entries that should be pruned.

        Read-only: the registry is not modified.

        Args:
            chain_id: Chain whose entries are checked
            include_pending: Also check SIMULATED/QUEUED transactions, QUEUED
                             Safe transactions, and deployments whose owning
                             transaction is still pending

        Returns:
            Changeset whose delete bucket holds the prunable entries, with the
            reason for each in `reasons` (keyed by id or Safe-tx hash)
        """
        changeset = Changeset()

        transactions: Dict[str, Transaction] = {
            tx.id: tx for tx in self._store.list_transactions(TransactionFilter(chain_id=chain_id))
        }

        for deployment in self._store.list_deployments(DeploymentFilter(chain_id=chain_id)):
            owner = transactions.get(deployment.transaction_id)
            if not include_pending and owner is not None and owner.status.is_pending:
                continue
            reason = self._guarded(deployment.id, self._deployment_reason, deployment)
            if reason is not None:
                changeset.delete.deployments.append(deployment)
                changeset.reasons[deployment.id] = reason

        for tx in transactions.values():
            if not include_pending and tx.status.is_pending:
                continue
            reason = self._guarded(tx.id, self._transaction_reason, tx)
            if reason is not None:
                changeset.delete.transactions.append(tx)
                changeset.reasons[tx.id] = reason

        for safe_tx in self._store.list_safe_transactions(chain_id=chain_id):
            if not include_pending and safe_tx.status == TransactionStatus.QUEUED:
                continue
            reason = self._guarded(safe_tx.safe_tx_hash, self._safe_transaction_reason, safe_tx)
            if reason is not None:
                changeset.delete.safe_transactions.append(safe_tx)
                changeset.reasons[safe_tx.safe_tx_hash] = reason

        logger.info(
            "Found %d prunable items on chain %d (%d deployments, %d transactions, %d Safe transactions)",
            changeset.delete.count(),
            chain_id,
            len(changeset.delete.deployments),
            len(changeset.delete.transactions),
            len(changeset.delete.safe_transactions),
        )
        return changeset

    def execute_prune(self, changeset: Changeset) -> None:
        """
        Delete the collected items.

        Raises:
            RegistryWriteError: If the registry could not be written
        """
        self._store.apply(changeset)

    def _guarded(self, item_id: str, check: Callable[[T], Optional[str]], item: T) -> Optional[str]:
        try:
            return check(item)
        except Exception as e:
            logger.warning("Keeping %s: chain check failed: %s", item_id, e)
            return None

    def _deployment_reason(self, deployment: Deployment) -> Optional[str]:
        exists, reason = self._checker.check_deployment_exists(deployment.address)
        if not exists:
            return reason or "no code at address"

        if deployment.type == DeploymentType.PROXY and deployment.proxy_info is not None:
            implementation = deployment.proxy_info.implementation
            if implementation:
                exists, reason = self._checker.check_deployment_exists(implementation)
                if not exists:
                    return f"proxy implementation missing: {reason or implementation}"
        return None

    def _transaction_reason(self, tx: Transaction) -> Optional[str]:
        if not tx.hash:
            if tx.status == TransactionStatus.EXECUTED:
                return "executed transaction has no hash"
            return None

        exists, block_number, reason = self._checker.check_transaction_exists(tx.hash)
        if not exists:
            return reason or "transaction not found on-chain"
        if tx.block_number > 0 and block_number > 0 and block_number != tx.block_number:
            return f"block number mismatch: expected {tx.block_number}, got {block_number}"
        return None

    def _safe_transaction_reason(self, safe_tx: SafeTransaction) -> Optional[str]:
        exists, reason = self._checker.check_safe_contract(safe_tx.safe_address)
        if not exists:
            return f"Safe contract doesn't exist: {reason or safe_tx.safe_address}"

        if safe_tx.status == TransactionStatus.EXECUTED and safe_tx.execution_tx_hash:
            exists, _, reason = self._checker.check_transaction_exists(safe_tx.execution_tx_hash)
            if not exists:
                return f"execution transaction not found: {reason or safe_tx.execution_tx_hash}"
        return None
