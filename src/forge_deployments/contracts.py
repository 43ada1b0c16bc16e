"""Contract artifact index for forge-deployments library.

The execution parser resolves contract metadata for each deployment through a
`ContractIndex`. `StaticContractIndex` is an in-memory implementation that can
be filled by hand or from a Foundry `out/` directory.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from eth_utils import keccak

from .events import hex_to_bytes

logger = logging.getLogger(__name__)


@dataclass
class ContractInfo:
    """Metadata about a compiled contract."""

    name: str
    path: str  # Source path, e.g. "src/Counter.sol"
    artifact_path: str = ""  # e.g. "out/Counter.sol/Counter.json"
    compiler_version: str = ""
    bytecode_hash: str = ""
    is_library: bool = False

    @property
    def key(self) -> str:
        """Fully qualified artifact name, e.g. "src/Counter.sol:Counter"."""
        return f"{self.path}:{self.name}"


class ContractIndex(Protocol):
    """Lookup of compiled contracts by bytecode hash or artifact name."""

    def get_contract_by_bytecode_hash(self, bytecode_hash: str) -> Optional[ContractInfo]:
        ...

    def get_contract_by_artifact(self, artifact: str) -> Optional[ContractInfo]:
        ...


class StaticContractIndex:
    """In-memory ContractIndex."""

    def __init__(self, contracts: Optional[List[ContractInfo]] = None):
        self._by_key: Dict[str, ContractInfo] = {}
        self._by_name: Dict[str, List[ContractInfo]] = {}
        self._by_bytecode_hash: Dict[str, ContractInfo] = {}
        for contract in contracts or []:
            self.add(contract)

    def __len__(self) -> int:
        return len(self._by_key)

    def add(self, contract: ContractInfo) -> None:
        self._by_key[contract.key] = contract
        self._by_name.setdefault(contract.name, []).append(contract)
        if contract.bytecode_hash:
            self._by_bytecode_hash[contract.bytecode_hash.lower()] = contract

    def get_contract_by_bytecode_hash(self, bytecode_hash: str) -> Optional[ContractInfo]:
        if not bytecode_hash:
            return None
        return self._by_bytecode_hash.get(bytecode_hash.lower())

    def get_contract_by_artifact(self, artifact: str) -> Optional[ContractInfo]:
        """
        Resolve "path:Name" or a bare "Name".

        Args:
            artifact: Artifact identifier as emitted by the deployment script

        Returns:
            Matching ContractInfo or None
        """
        if artifact in self._by_key:
            return self._by_key[artifact]

        if ":" in artifact:
            path, name = artifact.rsplit(":", 1)
        else:
            path, name = "", artifact

        for contract in self._by_name.get(name, []):
            if not path or path in contract.path or contract.path in path:
                return contract
        return None


def bytecode_hash(bytecode: str) -> str:
    """keccak256 of creation bytecode, 0x-prefixed."""
    return "0x" + keccak(hex_to_bytes(bytecode)).hex()


def _is_library(artifact: dict, name: str) -> bool:
    for node in (artifact.get("ast") or {}).get("nodes") or []:
        if node.get("nodeType") == "ContractDefinition" and node.get("name") == name:
            return node.get("contractKind") == "library"
    return False


def parse_artifact(artifact_path: Path, project_root: Path) -> List[ContractInfo]:
    """
    Parse a Foundry artifact JSON file.

    Args:
        artifact_path: Path to out/<File>.sol/<Name>.json
        project_root: Project root, used to relativize paths

    Returns:
        One ContractInfo per compilation target (usually exactly one)

    Raises:
        json.JSONDecodeError: If the artifact is not valid JSON
    """
    with open(artifact_path) as f:
        artifact = json.load(f)

    metadata = artifact.get("metadata") or {}
    if isinstance(metadata, str):
        metadata = json.loads(metadata)

    compiler_version = (metadata.get("compiler") or {}).get("version", "")
    targets = (metadata.get("settings") or {}).get("compilationTarget") or {}
    bytecode = (artifact.get("bytecode") or {}).get("object") or ""

    try:
        relative = str(artifact_path.relative_to(project_root))
    except ValueError:
        relative = str(artifact_path)

    contracts = []
    for source_path, name in targets.items():
        contracts.append(
            ContractInfo(
                name=name,
                path=source_path,
                artifact_path=relative,
                compiler_version=compiler_version,
                bytecode_hash=bytecode_hash(bytecode) if bytecode not in ("", "0x") else "",
                is_library=_is_library(artifact, name),
            )
        )
    return contracts


def index_artifacts(project_root: Union[Path, str], out_dir: str = "out") -> StaticContractIndex:
    """
    Build a contract index from a Foundry output directory.

    Skips build-info and debug files. Artifacts that fail to parse are logged
    and skipped.

    Args:
        project_root: Foundry project root
        out_dir: Artifact directory relative to project root

    Returns:
        Populated StaticContractIndex (empty if the directory does not exist)
    """
    project_root = Path(project_root).absolute()
    index = StaticContractIndex()
    out_path = project_root / out_dir
    if not out_path.exists():
        return index

    for artifact_path in sorted(out_path.rglob("*.json")):
        relative_parts = artifact_path.relative_to(out_path).parts
        if relative_parts and relative_parts[0] in ("build-info", ".treb-debug"):
            continue
        if artifact_path.name.endswith(".dbg.json"):
            continue
        try:
            for contract in parse_artifact(artifact_path, project_root):
                index.add(contract)
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Failed to process artifact %s: %s", artifact_path, e)

    logger.debug("Indexed %d contracts from %s", len(index), out_path)
    return index
