"""Call-trace arenas for forge-deployments library.

A trace is a flat, index-addressed array of nodes (an arena) with integer
parent/child links, as emitted by `forge script --json`.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from eth_utils import to_checksum_address

from .constants import CHEATCODE_ADDRESS, PRANK_SELECTOR

logger = logging.getLogger(__name__)

MATCHABLE_KINDS = ("CALL", "CREATE", "CREATE2")


def strip_hex_prefix(value: str) -> str:
    if value.startswith(("0x", "0X")):
        return value[2:]
    return value


@dataclass
class TraceNode:
    """A single call frame in a trace arena."""

    idx: int
    parent: Optional[int]
    children: List[int] = field(default_factory=list)
    kind: str = ""
    caller: str = ""
    address: str = ""
    data: str = "0x"
    value: str = "0x0"
    output: str = "0x"
    success: bool = True
    gas_used: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceNode":
        trace = data.get("trace") or {}
        return cls(
            idx=int(data["idx"]),
            parent=None if data.get("parent") is None else int(data["parent"]),
            children=[int(c) for c in data.get("children") or []],
            kind=(trace.get("kind") or "").upper(),
            caller=str(trace.get("caller") or ""),
            address=str(trace.get("address") or ""),
            data=str(trace.get("data") or "0x"),
            value=str(trace.get("value") or "0x0"),
            output=str(trace.get("output") or "0x"),
            success=bool(trace.get("success", True)),
            gas_used=int(trace.get("gas_used") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "idx": self.idx,
            "parent": self.parent,
            "children": list(self.children),
            "trace": {
                "kind": self.kind,
                "caller": self.caller,
                "address": self.address,
                "data": self.data,
                "value": self.value,
                "output": self.output,
                "success": self.success,
                "gas_used": self.gas_used,
            },
        }

    def is_prank(self) -> bool:
        """True for a CALL to the cheat-code contract with the prank(address) selector."""
        return (
            self.kind == "CALL"
            and self.address.lower() == CHEATCODE_ADDRESS.lower()
            and strip_hex_prefix(self.data).lower().startswith(PRANK_SELECTOR)
        )


@dataclass
class TraceArena:
    """A labelled trace tree stored as an arena of nodes."""

    label: str
    nodes: List[TraceNode] = field(default_factory=list)

    def __post_init__(self):
        self._by_idx = {node.idx: node for node in self.nodes}

    @classmethod
    def from_dict(cls, label: str, data: Dict[str, Any]) -> "TraceArena":
        return cls(label=label, nodes=[TraceNode.from_dict(n) for n in data.get("arena") or []])

    def to_dict(self) -> Dict[str, Any]:
        return {"arena": [node.to_dict() for node in self.nodes]}

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, idx: int) -> Optional[TraceNode]:
        return self._by_idx.get(idx)

    def roots(self) -> List[TraceNode]:
        return [node for node in self.nodes if node.parent is None]

    def walk(self) -> Iterator[TraceNode]:
        """Yield nodes in pre-order, starting from each root."""
        seen = set()
        for root in self.roots():
            stack = [root.idx]
            while stack:
                idx = stack.pop()
                node = self._by_idx.get(idx)
                if node is None or idx in seen:
                    continue
                seen.add(idx)
                yield node
                stack.extend(reversed(node.children))

    def previous_sibling(self, idx: int) -> Optional[TraceNode]:
        node = self._by_idx.get(idx)
        if node is None or node.parent is None:
            return None
        parent = self._by_idx.get(node.parent)
        if parent is None or idx not in parent.children:
            return None
        position = parent.children.index(idx)
        if position == 0:
            return None
        return self._by_idx.get(parent.children[position - 1])

    def pranked_address(self, idx: int) -> Optional[str]:
        """
        Address pranked by the sibling call immediately preceding a node.

        Args:
            idx: Node index

        Returns:
            Checksummed pranked address, or None if no prank precedes the node
        """
        sibling = self.previous_sibling(idx)
        if sibling is None or not sibling.is_prank():
            return None

        args = strip_hex_prefix(sibling.data)[len(PRANK_SELECTOR):]
        if len(args) < 64:
            logger.debug("Prank call at node %d has truncated arguments", sibling.idx)
            return None
        try:
            return to_checksum_address("0x" + args[24:64])
        except ValueError:
            logger.debug("Prank call at node %d has non-hex arguments", sibling.idx)
            return None

    def effective_sender(self, idx: int) -> str:
        """Pranked address if a prank precedes the node, else the raw caller."""
        pranked = self.pranked_address(idx)
        if pranked is not None:
            return pranked
        return self._by_idx[idx].caller

    def extract_subtree(self, idx: int) -> "TraceArena":
        """
        Copy the subtree rooted at a node into a self-contained arena.

        Nodes are visited breadth-first and renumbered contiguously from 0.
        Parent and child links are rewritten to the new indices and the
        extracted root has no parent.

        Args:
            idx: Index of the subtree root

        Returns:
            New TraceArena with the same label
        """
        order: List[int] = []
        remap: Dict[int, int] = {}
        queue = deque([idx])
        while queue:
            current = queue.popleft()
            if current in remap or current not in self._by_idx:
                continue
            remap[current] = len(order)
            order.append(current)
            queue.extend(self._by_idx[current].children)

        nodes = []
        for old_idx in order:
            original = self._by_idx[old_idx]
            parent = None if old_idx == idx else remap.get(original.parent)
            nodes.append(
                TraceNode(
                    idx=remap[old_idx],
                    parent=parent,
                    children=[remap[c] for c in original.children if c in remap],
                    kind=original.kind,
                    caller=original.caller,
                    address=original.address,
                    data=original.data,
                    value=original.value,
                    output=original.output,
                    success=original.success,
                    gas_used=original.gas_used,
                )
            )
        return TraceArena(label=self.label, nodes=nodes)


def parse_trace_forest(traces: Optional[List[Any]]) -> List[TraceArena]:
    """
    Parse the `traces` array of a script run.

    Entries are `[label, {"arena": [...]}]` pairs; `{"label": ..., "arena": [...]}`
    objects are accepted as well. Entries of any other shape are skipped.

    Args:
        traces: Decoded JSON array, or None

    Returns:
        List of TraceArena, in input order
    """
    arenas = []
    for entry in traces or []:
        if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[1], dict):
            label, body = entry
        elif isinstance(entry, dict) and "arena" in entry:
            label, body = entry.get("label", ""), entry
        else:
            logger.debug("Skipping unrecognized trace entry of type %s", type(entry).__name__)
            continue
        try:
            arenas.append(TraceArena.from_dict(str(label), body))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.debug("Skipping malformed trace arena %r: %s", label, e)
    return arenas
