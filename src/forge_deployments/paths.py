"""Path management utilities for forge-deployments library."""

from pathlib import Path
from typing import NamedTuple, Optional, Union

from .constants import (
    DEPLOYMENTS_FILE,
    SAFE_TRANSACTIONS_FILE,
    SOLIDITY_REGISTRY_FILE,
    STATE_DIR_NAME,
    TRANSACTIONS_FILE,
)


class RegistryPaths(NamedTuple):
    """Locations of the four registry documents."""

    deployments: Path
    transactions: Path
    safe_transactions: Path
    solidity_registry: Path


def get_default_project_root() -> Path:
    """
    Get default project root (current directory).

    Returns:
        Absolute path of the working directory
    """
    return Path.cwd()


def get_state_dir(project_root: Optional[Union[Path, str]] = None) -> Path:
    """
    Get the registry state directory.

    Args:
        project_root: Project directory (defaults to the working directory)

    Returns:
        Path to <project_root>/.treb
    """
    if project_root is None:
        project_root = get_default_project_root()
    else:
        project_root = Path(project_root).absolute()

    return project_root / STATE_DIR_NAME


def get_registry_paths(project_root: Optional[Union[Path, str]] = None) -> RegistryPaths:
    """
    Get registry file paths.

    Args:
        project_root: Project directory (defaults to the working directory)

    Returns:
        RegistryPaths for deployments.json, transactions.json, safe-txs.json
        and registry.json
    """
    state_dir = get_state_dir(project_root)

    return RegistryPaths(
        deployments=state_dir / DEPLOYMENTS_FILE,
        transactions=state_dir / TRANSACTIONS_FILE,
        safe_transactions=state_dir / SAFE_TRANSACTIONS_FILE,
        solidity_registry=state_dir / SOLIDITY_REGISTRY_FILE,
    )
