"""
forge-deployments: Python library for recording Foundry script deployments in a local registry
"""

import logging
from importlib.metadata import PackageNotFoundError, version

from .broadcast import BroadcastFile, load_broadcast_file
from .chain import BlockchainChecker, RpcBlockchainChecker
from .changeset import ChangesetBuilder, RegistrySnapshot
from .contracts import ContractInfo, StaticContractIndex, index_artifacts
from .deployments import DeploymentManager
from .events import RawLog, decode_log
from .exceptions import (
    BroadcastParseError,
    DeploymentError,
    DeploymentNotFoundError,
    DuplicateDeploymentError,
    DuplicateEntryError,
    NetworkNotFoundError,
    RegistryLoadError,
    RegistryWriteError,
    RpcError,
    SafeTransactionNotFoundError,
    TagAlreadyExistsError,
    TagNotFoundError,
    TransactionNotFoundError,
)
from .execution import ExecutionParser, ScriptExecution
from .pruner import Pruner
from .registry import RegistryStore
from .trace import TraceArena, TraceNode
from .types import (
    Changeset,
    Deployment,
    DeploymentType,
    ProxyType,
    SafeTransaction,
    Transaction,
    TransactionStatus,
    VerificationInfo,
    VerificationStatus,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

try:
    __version__ = version("forge-deployments")
except PackageNotFoundError:
    __version__ = None

__all__ = [
    "DeploymentManager",
    "ExecutionParser",
    "ScriptExecution",
    "ChangesetBuilder",
    "RegistrySnapshot",
    "RegistryStore",
    "Pruner",
    "BlockchainChecker",
    "RpcBlockchainChecker",
    "ContractInfo",
    "StaticContractIndex",
    "index_artifacts",
    "BroadcastFile",
    "load_broadcast_file",
    "RawLog",
    "decode_log",
    "TraceArena",
    "TraceNode",
    "Changeset",
    "Deployment",
    "DeploymentType",
    "ProxyType",
    "SafeTransaction",
    "Transaction",
    "TransactionStatus",
    "VerificationInfo",
    "VerificationStatus",
    "DeploymentError",
    "BroadcastParseError",
    "RegistryLoadError",
    "RegistryWriteError",
    "DeploymentNotFoundError",
    "TransactionNotFoundError",
    "SafeTransactionNotFoundError",
    "DuplicateEntryError",
    "DuplicateDeploymentError",
    "TagAlreadyExistsError",
    "TagNotFoundError",
    "NetworkNotFoundError",
    "RpcError",
]
