"""Registry persistence for forge-deployments library.

The registry is three maps (deployments, transactions, Safe transactions)
persisted as JSON under the project's state directory, plus lookup indexes
that are always rebuilt from the maps in full. A fourth document,
registry.json, is a chain -> namespace -> contract -> address table read by
Solidity scripts.
"""

import json
import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from .changeset import RegistrySnapshot
from .exceptions import (
    DeploymentNotFoundError,
    DuplicateDeploymentError,
    DuplicateEntryError,
    RegistryLoadError,
    RegistryWriteError,
    SafeTransactionNotFoundError,
    TagAlreadyExistsError,
    TagNotFoundError,
    TransactionNotFoundError,
)
from .paths import RegistryPaths, get_registry_paths
from .types import (
    Changeset,
    Deployment,
    DeploymentFilter,
    DeploymentType,
    LookupIndexes,
    SafeTransaction,
    Transaction,
    TransactionFilter,
    TransactionStatus,
    VerificationInfo,
    VerificationStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _read_json(path: Path) -> Dict[str, Any]:
    """
    Load a registry document.

    Returns:
        Decoded object, empty dict if the file doesn't exist

    Raises:
        RegistryLoadError: If the file is not a JSON object
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        raise RegistryLoadError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise RegistryLoadError(f"Expected a JSON object in {path}")
    return data


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def _load_entries(path: Path, from_dict: Callable[[Dict[str, Any]], T]) -> Dict[str, T]:
    entries = {}
    for key, value in _read_json(path).items():
        try:
            entries[key] = from_dict(value)
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryLoadError(f"Malformed entry {key!r} in {path}: {e}") from e
    return entries


class RegistryStore:
    """
    File-backed deployment registry.

    One lock guards every read and write. `apply` holds it through the index
    rebuild and the four-file flush, so readers never observe a partially
    applied changeset. The lock does not protect against other processes
    writing the same project directory.
    """

    def __init__(self, project_root: Optional[Union[Path, str]] = None):
        """
        Load the registry.

        Args:
            project_root: Project directory (defaults to the working directory)

        Raises:
            RegistryLoadError: If a registry document is corrupt
        """
        self._paths = get_registry_paths(project_root)
        self._lock = threading.RLock()

        self._deployments: Dict[str, Deployment] = _load_entries(
            self._paths.deployments, Deployment.from_dict
        )
        self._transactions: Dict[str, Transaction] = _load_entries(
            self._paths.transactions, Transaction.from_dict
        )
        self._safe_transactions: Dict[str, SafeTransaction] = _load_entries(
            self._paths.safe_transactions, SafeTransaction.from_dict
        )
        self._indexes = LookupIndexes()
        self.rebuild_indexes()

    @property
    def paths(self) -> RegistryPaths:
        return self._paths

    @property
    def indexes(self) -> LookupIndexes:
        with self._lock:
            return deepcopy(self._indexes)

    # Mutation

    def apply(self, changeset: Changeset) -> None:
        """
        Apply a changeset and persist the registry.

        Deletes run first, then updates, then creates, so a changeset can
        retire an entry and replace it in one call.

        Args:
            changeset: Changes to apply

        Raises:
            DeploymentNotFoundError: If an update targets an unknown deployment
            TransactionNotFoundError: If an update targets an unknown transaction
            SafeTransactionNotFoundError: If an update targets an unknown Safe transaction
            DuplicateEntryError: If a create collides with an existing key or address
            RegistryWriteError: If the registry could not be written

        On any error the in-memory registry and the files on disk are left as
        they were before the call.
        """
        with self._lock:
            saved = (
                deepcopy(self._deployments),
                deepcopy(self._transactions),
                deepcopy(self._safe_transactions),
                self._indexes,
            )
            try:
                self._apply_deletes(changeset)
                self._apply_updates(changeset)
                self._apply_creates(changeset)
                self._rebuild_indexes_locked()
                self._flush()
            except Exception:
                self._deployments, self._transactions, self._safe_transactions, self._indexes = saved
                raise

        logger.info(
            "Applied changeset: %d created, %d updated, %d deleted",
            changeset.create.count(),
            changeset.update.count(),
            changeset.delete.count(),
        )

    def _apply_deletes(self, changeset: Changeset) -> None:
        for deployment in changeset.delete.deployments:
            self._deployments.pop(deployment.id, None)
        for transaction in changeset.delete.transactions:
            self._transactions.pop(transaction.id, None)
        for safe_tx in changeset.delete.safe_transactions:
            self._safe_transactions.pop(safe_tx.safe_tx_hash, None)

    def _apply_updates(self, changeset: Changeset) -> None:
        now = utc_now()
        for deployment in changeset.update.deployments:
            existing = self._deployments.get(deployment.id)
            if existing is None:
                raise DeploymentNotFoundError(f"Deployment '{deployment.id}' not found")
            updated = deepcopy(deployment)
            updated.created_at = existing.created_at
            updated.updated_at = now
            self._deployments[deployment.id] = updated

        for transaction in changeset.update.transactions:
            existing = self._transactions.get(transaction.id)
            if existing is None:
                raise TransactionNotFoundError(f"Transaction '{transaction.id}' not found")
            updated = deepcopy(transaction)
            updated.created_at = existing.created_at
            updated.deployments = existing.deployments + [
                d for d in updated.deployments if d not in existing.deployments
            ]
            # status never regresses
            if existing.status.rank > updated.status.rank:
                updated.status = existing.status
            self._transactions[transaction.id] = updated

        for safe_tx in changeset.update.safe_transactions:
            existing = self._safe_transactions.get(safe_tx.safe_tx_hash)
            if existing is None:
                raise SafeTransactionNotFoundError(
                    f"Safe transaction '{safe_tx.safe_tx_hash}' not found"
                )
            updated = deepcopy(safe_tx)
            updated.proposed_at = existing.proposed_at
            if existing.status.rank > updated.status.rank:
                updated.status = existing.status
                updated.executed_at = existing.executed_at
                updated.execution_tx_hash = existing.execution_tx_hash
                updated.execution_block_number = existing.execution_block_number
            self._safe_transactions[safe_tx.safe_tx_hash] = updated

    def _apply_creates(self, changeset: Changeset) -> None:
        now = utc_now()
        addresses = {(d.chain_id, d.address.lower()): d.id for d in self._deployments.values()}

        for deployment in changeset.create.deployments:
            if deployment.id in self._deployments:
                raise DuplicateDeploymentError(f"Deployment '{deployment.id}' already exists")
            address_key = (deployment.chain_id, deployment.address.lower())
            if address_key in addresses:
                raise DuplicateDeploymentError(
                    f"Address {deployment.address} on chain {deployment.chain_id} "
                    f"already registered as '{addresses[address_key]}'"
                )
            created = deepcopy(deployment)
            created.created_at = created.created_at or now
            created.updated_at = created.updated_at or created.created_at
            self._deployments[created.id] = created
            addresses[address_key] = created.id

        for transaction in changeset.create.transactions:
            if transaction.id in self._transactions:
                raise DuplicateEntryError(f"Transaction '{transaction.id}' already exists")
            created = deepcopy(transaction)
            created.created_at = created.created_at or now
            self._transactions[created.id] = created

        for safe_tx in changeset.create.safe_transactions:
            if safe_tx.safe_tx_hash in self._safe_transactions:
                raise DuplicateEntryError(
                    f"Safe transaction '{safe_tx.safe_tx_hash}' already exists"
                )
            created = deepcopy(safe_tx)
            created.proposed_at = created.proposed_at or now
            self._safe_transactions[created.safe_tx_hash] = created

    def _documents(self) -> List[Tuple[Path, Dict[str, Any]]]:
        return [
            (
                self._paths.deployments,
                {k: self._deployments[k].to_dict() for k in sorted(self._deployments)},
            ),
            (
                self._paths.transactions,
                {k: self._transactions[k].to_dict() for k in sorted(self._transactions)},
            ),
            (
                self._paths.safe_transactions,
                {k: self._safe_transactions[k].to_dict() for k in sorted(self._safe_transactions)},
            ),
            (self._paths.solidity_registry, self._solidity_registry()),
        ]

    def _flush(self) -> None:
        """
        Write all four documents.

        Every document is written to a temporary file next to its target
        first; targets are replaced only once all writes succeeded. Existing
        targets are moved to `.bak` files and restored if any rename fails.

        Raises:
            RegistryWriteError: If any write or rename fails
        """
        documents = self._documents()
        temp_paths: List[Path] = []
        try:
            self._paths.deployments.parent.mkdir(parents=True, exist_ok=True)
            for path, data in documents:
                temp_path = path.with_name(path.name + ".tmp")
                temp_paths.append(temp_path)
                _write_json(temp_path, data)
        except OSError as e:
            for temp_path in temp_paths:
                temp_path.unlink(missing_ok=True)
            raise RegistryWriteError(f"Failed to write registry: {e}") from e

        backups: List[Tuple[Path, Path]] = []
        replaced: List[Path] = []
        try:
            for path, _ in documents:
                if path.exists():
                    backup_path = path.with_name(path.name + ".bak")
                    os.replace(path, backup_path)
                    backups.append((path, backup_path))
            for temp_path, (path, _) in zip(temp_paths, documents):
                os.replace(temp_path, path)
                replaced.append(path)
        except OSError as e:
            for path in replaced:
                path.unlink(missing_ok=True)
            for path, backup_path in backups:
                os.replace(backup_path, path)
            for temp_path in temp_paths:
                temp_path.unlink(missing_ok=True)
            raise RegistryWriteError(f"Failed to replace registry files: {e}") from e

        for _, backup_path in backups:
            backup_path.unlink(missing_ok=True)

        logger.debug("Flushed registry to %s", self._paths.deployments.parent)

    def _solidity_registry(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        table: Dict[str, Dict[str, Dict[str, str]]] = {}
        for deployment_id in sorted(self._deployments):
            deployment = self._deployments[deployment_id]
            chain = table.setdefault(str(deployment.chain_id), {})
            chain.setdefault(deployment.namespace, {})[deployment.short_id] = deployment.address
        return table

    # Indexes

    def rebuild_indexes(self) -> None:
        """Recompute every lookup index from the three registry maps."""
        with self._lock:
            self._rebuild_indexes_locked()

    def _rebuild_indexes_locked(self) -> None:
        indexes = LookupIndexes()

        for deployment_id in sorted(self._deployments):
            deployment = self._deployments[deployment_id]
            indexes.by_address.setdefault(deployment.chain_id, {})[
                deployment.address.lower()
            ] = deployment_id
            indexes.by_namespace.setdefault(deployment.namespace, {}).setdefault(
                deployment.chain_id, []
            ).append(deployment_id)
            indexes.by_contract.setdefault(deployment.contract_name, []).append(deployment_id)

        for deployment_id in sorted(self._deployments):
            deployment = self._deployments[deployment_id]
            if deployment.type != DeploymentType.PROXY or deployment.proxy_info is None:
                continue
            implementation = deployment.proxy_info.implementation
            if not implementation:
                continue
            indexes.proxies.proxy_to_implementation[deployment_id] = implementation
            implementation_id = indexes.by_address.get(deployment.chain_id, {}).get(
                implementation.lower()
            )
            if implementation_id is not None:
                indexes.proxies.implementations.setdefault(implementation_id, []).append(
                    deployment_id
                )

        indexes.pending_safe_txs = sorted(
            safe_tx_hash
            for safe_tx_hash, safe_tx in self._safe_transactions.items()
            if safe_tx.status == TransactionStatus.QUEUED
        )

        self._indexes = indexes

    # Reads

    def snapshot(self) -> RegistrySnapshot:
        """Keys currently in use, for building a changeset."""
        with self._lock:
            return RegistrySnapshot(
                deployment_ids=set(self._deployments),
                transaction_ids=set(self._transactions),
                safe_tx_hashes=set(self._safe_transactions),
                deployment_ids_by_address={
                    (chain_id, address): deployment_id
                    for chain_id, addresses in self._indexes.by_address.items()
                    for address, deployment_id in addresses.items()
                },
            )

    def get_deployment(self, deployment_id: str) -> Deployment:
        """
        Get a deployment by ID.

        Raises:
            DeploymentNotFoundError: If no deployment has this ID
        """
        with self._lock:
            if deployment_id not in self._deployments:
                raise DeploymentNotFoundError(f"Deployment '{deployment_id}' not found")
            return deepcopy(self._deployments[deployment_id])

    def get_deployment_by_address(self, chain_id: int, address: str) -> Deployment:
        """
        Get a deployment by chain ID and address (case-insensitive).

        Raises:
            DeploymentNotFoundError: If no deployment is registered at this address
        """
        with self._lock:
            deployment_id = self._indexes.by_address.get(chain_id, {}).get(address.lower())
            if deployment_id is None:
                raise DeploymentNotFoundError(
                    f"No deployment at {address} on chain {chain_id}"
                )
            return deepcopy(self._deployments[deployment_id])

    def list_deployments(self, filters: Optional[DeploymentFilter] = None) -> List[Deployment]:
        """List deployments matching a filter, sorted by ID."""
        with self._lock:
            return [
                deepcopy(self._deployments[k])
                for k in sorted(self._deployments)
                if filters is None or filters.matches(self._deployments[k])
            ]

    def get_transaction(self, transaction_id: str) -> Transaction:
        """
        Get a transaction by registry ID.

        Raises:
            TransactionNotFoundError: If no transaction has this ID
        """
        with self._lock:
            if transaction_id not in self._transactions:
                raise TransactionNotFoundError(f"Transaction '{transaction_id}' not found")
            return deepcopy(self._transactions[transaction_id])

    def list_transactions(self, filters: Optional[TransactionFilter] = None) -> List[Transaction]:
        """List transactions matching a filter, sorted by ID."""
        with self._lock:
            return [
                deepcopy(self._transactions[k])
                for k in sorted(self._transactions)
                if filters is None or filters.matches(self._transactions[k])
            ]

    def get_safe_transaction(self, safe_tx_hash: str) -> SafeTransaction:
        """
        Get a Safe transaction by hash.

        Raises:
            SafeTransactionNotFoundError: If no Safe transaction has this hash
        """
        with self._lock:
            if safe_tx_hash not in self._safe_transactions:
                raise SafeTransactionNotFoundError(f"Safe transaction '{safe_tx_hash}' not found")
            return deepcopy(self._safe_transactions[safe_tx_hash])

    def list_safe_transactions(
        self,
        chain_id: Optional[int] = None,
        status: Optional[TransactionStatus] = None,
    ) -> List[SafeTransaction]:
        with self._lock:
            return [
                deepcopy(safe_tx)
                for _, safe_tx in sorted(self._safe_transactions.items())
                if (chain_id is None or safe_tx.chain_id == chain_id)
                and (status is None or safe_tx.status == status)
            ]

    def get_pending_safe_transactions(self, chain_id: Optional[int] = None) -> List[SafeTransaction]:
        """Safe transactions still waiting for execution."""
        with self._lock:
            return [
                deepcopy(self._safe_transactions[h])
                for h in self._indexes.pending_safe_txs
                if chain_id is None or self._safe_transactions[h].chain_id == chain_id
            ]

    def get_proxies_for_implementation(self, deployment_id: str) -> List[Deployment]:
        """Proxy deployments currently pointing at an implementation deployment."""
        with self._lock:
            return [
                deepcopy(self._deployments[proxy_id])
                for proxy_id in self._indexes.proxies.implementations.get(deployment_id, [])
            ]

    def get_implementation_for_proxy(self, deployment_id: str) -> Optional[Deployment]:
        """
        Implementation deployment of a proxy.

        Returns:
            The implementation, or None if the proxy's implementation
            address is not a registered deployment
        """
        with self._lock:
            proxy = self._deployments.get(deployment_id)
            implementation = self._indexes.proxies.proxy_to_implementation.get(deployment_id)
            if proxy is None or implementation is None:
                return None
            implementation_id = self._indexes.by_address.get(proxy.chain_id, {}).get(
                implementation.lower()
            )
            if implementation_id is None:
                return None
            return deepcopy(self._deployments[implementation_id])

    # Deployment metadata

    def tag_deployment(self, deployment_id: str, tag: str) -> Deployment:
        """
        Add a tag to a deployment.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
            TagAlreadyExistsError: If the deployment already has the tag
        """
        with self._lock:
            deployment = self.get_deployment(deployment_id)
            if tag in deployment.tags:
                raise TagAlreadyExistsError(
                    f"Deployment '{deployment_id}' already has tag '{tag}'"
                )
            deployment.tags.append(tag)
            self._update_deployment(deployment)
            return self.get_deployment(deployment_id)

    def untag_deployment(self, deployment_id: str, tag: str) -> Deployment:
        """
        Remove a tag from a deployment.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
            TagNotFoundError: If the deployment does not have the tag
        """
        with self._lock:
            deployment = self.get_deployment(deployment_id)
            if tag not in deployment.tags:
                raise TagNotFoundError(f"Deployment '{deployment_id}' has no tag '{tag}'")
            deployment.tags.remove(tag)
            self._update_deployment(deployment)
            return self.get_deployment(deployment_id)

    def update_verification(
        self, deployment_id: str, verification: VerificationInfo
    ) -> Deployment:
        """
        Replace a deployment's verification info.

        `verified_at` is set to the current time when the new status is
        VERIFIED and no time was given.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
        """
        with self._lock:
            deployment = self.get_deployment(deployment_id)
            verification = deepcopy(verification)
            if verification.status == VerificationStatus.VERIFIED and verification.verified_at is None:
                verification.verified_at = utc_now()
            deployment.verification = verification
            self._update_deployment(deployment)
            return self.get_deployment(deployment_id)

    def _update_deployment(self, deployment: Deployment) -> None:
        changeset = Changeset()
        changeset.update.deployments.append(deployment)
        self.apply(changeset)
