"""Unit tests for registry pruning."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

import pytest

from forge_deployments.pruner import Pruner
from forge_deployments.registry import RegistryStore
from forge_deployments.types import (
    Changeset,
    Deployment,
    DeploymentType,
    ProxyInfo,
    ProxyType,
    SafeTransaction,
    Transaction,
    TransactionStatus,
)

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)
LIVE = "0xC000000000000000000000000000000000000001"
GONE = "0xC000000000000000000000000000000000000002"
PROXY = "0xC000000000000000000000000000000000000003"
SAFE = "0x0000000000000000000000000000000000005afE"
LIVE_HASH = "0x" + "11" * 32
GONE_HASH = "0x" + "22" * 32


class FakeChecker:
    """In-memory chain: a set of addresses with code and a map of mined transactions."""

    def __init__(
        self,
        code: Optional[Set[str]] = None,
        blocks: Optional[Dict[str, int]] = None,
        safes: Optional[Set[str]] = None,
        failing: Optional[Set[str]] = None,
    ):
        self.code = {a.lower() for a in (code or set())}
        self.blocks = blocks or {}
        self.safes = {a.lower() for a in (safes or set())}
        self.failing = failing or set()
        self.calls = []

    def _maybe_fail(self, key: str) -> None:
        self.calls.append(key)
        if key.lower() in self.failing:
            raise ConnectionError(f"RPC unavailable for {key}")

    def check_deployment_exists(self, address: str) -> Tuple[bool, str]:
        self._maybe_fail(address)
        if address.lower() in self.code:
            return True, ""
        return False, "no code at address"

    def check_transaction_exists(self, tx_hash: str) -> Tuple[bool, int, str]:
        self._maybe_fail(tx_hash)
        if tx_hash in self.blocks:
            return True, self.blocks[tx_hash], ""
        return False, 0, "transaction not found on-chain"

    def check_safe_contract(self, address: str) -> Tuple[bool, str]:
        self._maybe_fail(address)
        if address.lower() in self.safes:
            return True, ""
        return False, "no code at address"


def deployment(name: str, address: str, transaction_id: str = "", **kwargs) -> Deployment:
    return Deployment(
        id=f"default/31337/{name}",
        namespace="default",
        chain_id=31337,
        contract_name=name,
        label="",
        address=address,
        type=kwargs.pop("type", DeploymentType.SINGLETON),
        transaction_id=transaction_id,
        created_at=CREATED,
        **kwargs,
    )


def transaction(tx_id: str, status=TransactionStatus.EXECUTED, tx_hash="", block_number=0) -> Transaction:
    return Transaction(
        id=tx_id,
        chain_id=31337,
        status=status,
        hash=tx_hash,
        block_number=block_number,
        created_at=CREATED,
    )


@pytest.fixture
def store(project_dir: Path) -> RegistryStore:
    return RegistryStore(project_dir)


def seed(store: RegistryStore, *items) -> None:
    changeset = Changeset()
    for item in items:
        if isinstance(item, Deployment):
            changeset.create.deployments.append(item)
        elif isinstance(item, Transaction):
            changeset.create.transactions.append(item)
        else:
            changeset.create.safe_transactions.append(item)
    store.apply(changeset)


def deleted_ids(changeset: Changeset):
    return (
        [d.id for d in changeset.delete.deployments],
        [t.id for t in changeset.delete.transactions],
        [s.safe_tx_hash for s in changeset.delete.safe_transactions],
    )


class TestCollectDeployments:
    """Test deployment checks."""

    def test_missing_code_is_pruned(self, store: RegistryStore):
        """Test that deployments without code are collected with a reason."""
        seed(store, deployment("Live", LIVE), deployment("Gone", GONE))

        changeset = Pruner(store, FakeChecker(code={LIVE})).collect_prunable_items(31337)

        assert deleted_ids(changeset) == (["default/31337/Gone"], [], [])
        assert changeset.reasons == {"default/31337/Gone": "no code at address"}
        assert changeset.create.count() == 0
        assert changeset.update.count() == 0

    def test_collect_is_read_only(self, store: RegistryStore):
        """Test that collecting does not modify the registry."""
        seed(store, deployment("Gone", GONE))

        Pruner(store, FakeChecker()).collect_prunable_items(31337)

        assert [d.id for d in store.list_deployments()] == ["default/31337/Gone"]

    def test_checker_error_keeps_item(self, store: RegistryStore):
        """Test that an RPC failure never leads to deletion."""
        seed(store, deployment("Gone", GONE), deployment("Live", LIVE))
        checker = FakeChecker(failing={GONE.lower()})

        changeset = Pruner(store, checker).collect_prunable_items(31337)

        assert changeset.delete.deployments == [
            d for d in store.list_deployments() if d.address == LIVE
        ]
        assert "default/31337/Gone" not in changeset.reasons

    def test_proxy_with_missing_implementation(self, store: RegistryStore):
        """Test that a proxy whose implementation lost its code is pruned."""
        proxy = deployment(
            "Proxy",
            PROXY,
            type=DeploymentType.PROXY,
            proxy_info=ProxyInfo(type=ProxyType.UUPS, implementation=GONE),
        )
        seed(store, proxy)

        changeset = Pruner(store, FakeChecker(code={PROXY})).collect_prunable_items(31337)

        assert changeset.reasons["default/31337/Proxy"].startswith("proxy implementation missing")

    def test_other_chain_ignored(self, store: RegistryStore):
        """Test that only the requested chain is checked."""
        seed(store, deployment("Gone", GONE))

        checker = FakeChecker()
        changeset = Pruner(store, checker).collect_prunable_items(1)

        assert not changeset.has_changes()
        assert checker.calls == []

    def test_pending_owner_skipped_unless_included(self, store: RegistryStore):
        """Test deployments of pending transactions are only checked on request."""
        seed(
            store,
            transaction("tx-internal-0x01", status=TransactionStatus.SIMULATED),
            deployment("Gone", GONE, transaction_id="tx-internal-0x01"),
        )

        skipped = Pruner(store, FakeChecker()).collect_prunable_items(31337)
        included = Pruner(store, FakeChecker()).collect_prunable_items(31337, include_pending=True)

        assert deleted_ids(skipped) == ([], [], [])
        assert deleted_ids(included)[0] == ["default/31337/Gone"]


class TestCollectTransactions:
    """Test transaction checks."""

    def test_missing_and_mismatched(self, store: RegistryStore):
        """Test not-found and block-mismatch transactions are collected."""
        seed(
            store,
            transaction(f"tx-{LIVE_HASH}", tx_hash=LIVE_HASH, block_number=10),
            transaction(f"tx-{GONE_HASH}", tx_hash=GONE_HASH, block_number=11),
            transaction("tx-moved", tx_hash="0x" + "33" * 32, block_number=12),
        )
        checker = FakeChecker(blocks={LIVE_HASH: 10, "0x" + "33" * 32: 13})

        changeset = Pruner(store, checker).collect_prunable_items(31337)

        assert sorted(t.id for t in changeset.delete.transactions) == [f"tx-{GONE_HASH}", "tx-moved"]
        assert changeset.reasons[f"tx-{GONE_HASH}"] == "transaction not found on-chain"
        assert changeset.reasons["tx-moved"] == "block number mismatch: expected 12, got 13"

    def test_executed_without_hash(self, store: RegistryStore):
        """Test that an executed transaction with no hash is collected."""
        seed(store, transaction("tx-internal-0x02"))

        changeset = Pruner(store, FakeChecker()).collect_prunable_items(31337)

        assert changeset.reasons == {"tx-internal-0x02": "executed transaction has no hash"}

    def test_pending_transactions_skipped(self, store: RegistryStore):
        """Test SIMULATED and QUEUED transactions are skipped by default."""
        seed(
            store,
            transaction("tx-internal-0x03", status=TransactionStatus.SIMULATED, tx_hash=GONE_HASH),
            transaction("safe-0xab-0", status=TransactionStatus.QUEUED, tx_hash=GONE_HASH),
        )

        skipped = Pruner(store, FakeChecker()).collect_prunable_items(31337)
        included = Pruner(store, FakeChecker()).collect_prunable_items(31337, include_pending=True)

        assert not skipped.has_changes()
        assert len(included.delete.transactions) == 2


class TestCollectSafeTransactions:
    """Test Safe transaction checks."""

    def safe_tx(self, status, execution_tx_hash=""):
        return SafeTransaction(
            safe_tx_hash="0x" + "ab" * 32,
            safe_address=SAFE,
            chain_id=31337,
            status=status,
            execution_tx_hash=execution_tx_hash,
            proposed_at=CREATED,
        )

    def test_missing_safe_contract(self, store: RegistryStore):
        """Test that a Safe without code is collected."""
        seed(store, self.safe_tx(TransactionStatus.EXECUTED))

        changeset = Pruner(store, FakeChecker()).collect_prunable_items(31337)

        assert changeset.reasons["0x" + "ab" * 32].startswith("Safe contract doesn't exist")

    def test_missing_execution_transaction(self, store: RegistryStore):
        """Test that an executed batch whose execution tx vanished is collected."""
        seed(store, self.safe_tx(TransactionStatus.EXECUTED, execution_tx_hash=GONE_HASH))

        changeset = Pruner(store, FakeChecker(safes={SAFE})).collect_prunable_items(31337)

        assert changeset.reasons["0x" + "ab" * 32].startswith("execution transaction not found")

    def test_queued_skipped(self, store: RegistryStore):
        """Test that queued batches are only checked with include_pending."""
        seed(store, self.safe_tx(TransactionStatus.QUEUED))

        assert not Pruner(store, FakeChecker()).collect_prunable_items(31337).has_changes()
        assert Pruner(store, FakeChecker()).collect_prunable_items(31337, include_pending=True).has_changes()


class TestExecutePrune:
    """Test applying a prune changeset."""

    def test_removes_collected_items(self, store: RegistryStore, project_dir: Path):
        """Test that executing the prune deletes exactly the collected items."""
        seed(
            store,
            deployment("Live", LIVE),
            deployment("Gone", GONE),
            transaction(f"tx-{GONE_HASH}", tx_hash=GONE_HASH),
        )
        pruner = Pruner(store, FakeChecker(code={LIVE}))

        pruner.execute_prune(pruner.collect_prunable_items(31337))

        assert [d.id for d in store.list_deployments()] == ["default/31337/Live"]
        assert store.list_transactions() == []
        assert [d.id for d in RegistryStore(project_dir).list_deployments()] == ["default/31337/Live"]
        assert store.indexes.by_address[31337] == {LIVE.lower(): "default/31337/Live"}
