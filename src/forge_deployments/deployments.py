"""Main API for forge-deployments library."""

import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple, Union

from .chain import BlockchainChecker, RpcBlockchainChecker, get_network_config, rpc_url_from_env
from .changeset import ChangesetBuilder
from .constants import DEFAULT_NAMESPACE
from .contracts import ContractIndex, index_artifacts
from .exceptions import TransactionNotFoundError
from .execution import ExecutionParser, ScriptExecution
from .paths import get_default_project_root
from .pruner import Pruner
from .registry import RegistryStore
from .types import (
    Changeset,
    Deployment,
    DeploymentFilter,
    DeploymentType,
    SafeTransaction,
    Transaction,
    VerificationInfo,
)

logger = logging.getLogger(__name__)


def get_git_commit(project_root: Union[Path, str]) -> str:
    """
    Get the HEAD commit of a project.

    Args:
        project_root: Directory inside a git checkout

    Returns:
        Commit hash, or "" if the directory is not a git checkout or git is missing
    """
    try:
        result = subprocess.run(
            ["git", "-C", str(project_root), "rev-parse", "HEAD"],
            check=True,
            capture_output=True,
            text=True,
        )
    except (subprocess.CalledProcessError, OSError) as e:
        logger.debug("Could not read git commit in %s: %s", project_root, e)
        return ""
    return result.stdout.strip()


class DeploymentManager:
    """Records script runs into a project's registry and queries it."""

    def __init__(
        self,
        project_root: Optional[Union[Path, str]] = None,
        contract_index: Optional[ContractIndex] = None,
    ):
        """
        Initialize the deployment manager.

        Args:
            project_root: Foundry project directory (defaults to the working directory)
            contract_index: Contract metadata lookup
                            If None, built from the project's out/ directory on first use

        Raises:
            RegistryLoadError: If a registry document is corrupt
        """
        if project_root is None:
            project_root = get_default_project_root()
        self.project_root = Path(project_root).absolute()
        self.store = RegistryStore(self.project_root)
        self._contract_index = contract_index

    @property
    def contract_index(self) -> ContractIndex:
        if self._contract_index is None:
            self._contract_index = index_artifacts(self.project_root)
        return self._contract_index

    def record_execution(
        self,
        execution: ScriptExecution,
        git_commit: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Changeset:
        """
        Build the changeset for a parsed run and apply it.

        Args:
            execution: Parsed script execution
            git_commit: Commit to record on artifacts (defaults to the project's HEAD)
            now: Timestamp for new entries (defaults to the current time)

        Returns:
            The applied changeset

        Raises:
            DuplicateEntryError: If the run creates an entry that already exists
            RegistryWriteError: If the registry could not be written
        """
        if git_commit is None:
            git_commit = get_git_commit(self.project_root)

        builder = ChangesetBuilder(snapshot=self.store.snapshot(), now=now, git_commit=git_commit)
        changeset = builder.build(execution)
        if changeset.has_changes():
            self.store.apply(changeset)
        return changeset

    def record_run(
        self,
        raw_output: Union[str, Mapping[str, Any]],
        broadcast_path: Optional[Union[Path, str]] = None,
        network: str = "anvil",
        chain_id: Optional[int] = None,
        namespace: str = DEFAULT_NAMESPACE,
        traces: Optional[List[Any]] = None,
        script_path: str = "",
        git_commit: Optional[str] = None,
    ) -> Tuple[ScriptExecution, Changeset]:
        """
        Parse a script run and record it.

        The registry is untouched if parsing fails.

        Args:
            raw_output: `forge script --json` stdout or its decoded document
            broadcast_path: Broadcast file (None for a dry run)
            network: Network name
            chain_id: Chain ID (defaults to the configured chain of `network`)
            namespace: Deployment namespace
            traces: Call-trace forest (defaults to the one in raw_output)
            script_path: Path of the script that was run
            git_commit: Commit to record on artifacts (defaults to the project's HEAD)

        Returns:
            Tuple of (execution, applied changeset)

        Raises:
            BroadcastParseError: If the broadcast file is unreadable or not valid JSON
            NetworkNotFoundError: If chain_id is None and the network is not configured
            RegistryWriteError: If the registry could not be written
        """
        if chain_id is None:
            chain_id = get_network_config(network)["chain_id"]

        parser = ExecutionParser(contract_index=self.contract_index)
        execution = parser.parse(
            raw_output,
            traces=traces,
            broadcast_path=broadcast_path,
            network=network,
            chain_id=chain_id,
            namespace=namespace,
            script_path=script_path,
        )
        changeset = self.record_execution(execution, git_commit=git_commit)
        return execution, changeset

    def deployment(self, deployment_id: str) -> Deployment:
        """
        Get a deployment by ID.

        Raises:
            DeploymentNotFoundError: If not found
        """
        return self.store.get_deployment(deployment_id)

    def deployment_by_address(self, chain_id: int, address: str) -> Deployment:
        """
        Get a deployment by address.

        Raises:
            DeploymentNotFoundError: If not found
        """
        return self.store.get_deployment_by_address(chain_id, address)

    def deployments(
        self,
        namespace: Optional[str] = None,
        chain_id: Optional[int] = None,
        contract_name: Optional[str] = None,
        deployment_type: Optional[DeploymentType] = None,
        tag: Optional[str] = None,
    ) -> List[Deployment]:
        """List deployments, filtered by any combination of fields."""
        return self.store.list_deployments(
            DeploymentFilter(
                namespace=namespace,
                chain_id=chain_id,
                contract_name=contract_name,
                type=deployment_type,
                tag=tag,
            )
        )

    def transaction(self, transaction_id: str) -> Transaction:
        """
        Get a transaction by registry ID.

        Raises:
            TransactionNotFoundError: If not found
        """
        return self.store.get_transaction(transaction_id)

    def deployment_transaction(self, deployment_id: str) -> Optional[Transaction]:
        """Transaction that created a deployment, if it is still registered."""
        deployment = self.store.get_deployment(deployment_id)
        if not deployment.transaction_id:
            return None
        try:
            return self.store.get_transaction(deployment.transaction_id)
        except TransactionNotFoundError:
            return None

    def implementation(self, proxy_deployment_id: str) -> Optional[Deployment]:
        """Implementation deployment behind a proxy deployment."""
        return self.store.get_implementation_for_proxy(proxy_deployment_id)

    def safe_transaction(self, safe_tx_hash: str) -> SafeTransaction:
        """
        Get a Safe transaction by hash.

        Raises:
            SafeTransactionNotFoundError: If not found
        """
        return self.store.get_safe_transaction(safe_tx_hash)

    def pending_safe_transactions(self, chain_id: Optional[int] = None) -> List[SafeTransaction]:
        return self.store.get_pending_safe_transactions(chain_id)

    def tag(self, deployment_id: str, tag: str) -> Deployment:
        """
        Add a tag to a deployment.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
            TagAlreadyExistsError: If the tag is already present
        """
        return self.store.tag_deployment(deployment_id, tag)

    def untag(self, deployment_id: str, tag: str) -> Deployment:
        """
        Remove a tag from a deployment.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist
            TagNotFoundError: If the tag is not present
        """
        return self.store.untag_deployment(deployment_id, tag)

    def update_verification(self, deployment_id: str, verification: VerificationInfo) -> Deployment:
        return self.store.update_verification(deployment_id, verification)

    def prune(
        self,
        network: str,
        rpc_url: Optional[str] = None,
        include_pending: bool = False,
        dry_run: bool = False,
        checker: Optional[BlockchainChecker] = None,
    ) -> Changeset:
        """
        Remove registry entries that no longer exist on a network.

        Args:
            network: Configured network name
            rpc_url: RPC URL (defaults to the network's environment variable)
            include_pending: Also check pending transactions and their deployments
            dry_run: Only collect, don't delete
            checker: Chain oracle (defaults to a JSON-RPC checker on rpc_url)

        Returns:
            The prune changeset (applied unless dry_run)

        Raises:
            NetworkNotFoundError: If the network is not configured
            ValueError: If no checker is given and no RPC URL is available
            RpcError: If the RPC endpoint is unreachable or serves another chain
            RegistryWriteError: If the registry could not be written
        """
        chain_id = get_network_config(network)["chain_id"]

        if checker is None:
            # Get RPC URL from environment if not provided
            if rpc_url is None:
                rpc_url = rpc_url_from_env(network)
            if rpc_url is None:
                raise ValueError(
                    f"RPC URL required: set ${get_network_config(network)['default_rpc_env']} "
                    "environment variable, or pass rpc_url parameter"
                )
            rpc_checker = RpcBlockchainChecker(rpc_url)
            rpc_checker.connect(chain_id)
            checker = rpc_checker

        pruner = Pruner(self.store, checker)
        changeset = pruner.collect_prunable_items(chain_id, include_pending=include_pending)
        for item_id, reason in changeset.reasons.items():
            logger.info("Prunable: %s (%s)", item_id, reason)

        if not dry_run and changeset.has_changes():
            pruner.execute_prune(changeset)
        return changeset
