"""
FinGraph Domain Registry

Defines the directed acyclic graph of cross-domain dependencies.
Answers "who depends on X" and "is this graph acyclic".

The node set is fixed (DomainNode). The edge set is static configuration
loaded once at startup; the registry is read-only after validate().
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union
import logging

from fingraph.core.enums import DomainNode
from fingraph.errors import ConfigurationError, ErrorCode, UnknownSourceError

logger = logging.getLogger(__name__)


# =============================================================================
# DEFAULT EDGES
# =============================================================================

# source -> targets: each target consumes the source's derived output
DOMAIN_DEPENDENCIES: Dict[DomainNode, List[DomainNode]] = {
    DomainNode.TAX: [DomainNode.PREVISIONS],
    DomainNode.COMPTA: [DomainNode.PREVISIONS],
    DomainNode.IMMOBILIER: [DomainNode.PREVISIONS],
    DomainNode.PREVISIONS: [DomainNode.DECIDEUR],
    DomainNode.DECIDEUR: [],
}


# =============================================================================
# DEPENDENCY EDGE
# =============================================================================

@dataclass(frozen=True)
class DependencyEdge:
    """`target` must be recomputed after `source` whenever `source` changes."""
    source: DomainNode
    target: DomainNode

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source.value, "target": self.target.value}


def edges_from_mapping(mapping: Dict[Any, Iterable[Any]]) -> List[Tuple[Any, Any]]:
    """Flatten a {source: [targets]} mapping into (source, target) pairs."""
    return [(source, target) for source, targets in mapping.items() for target in targets]


# =============================================================================
# DOMAIN REGISTRY
# =============================================================================

NodeLike = Union[DomainNode, str]


class DomainRegistry:
    """
    Authoritative node set and edge set.

    Nodes keep their declared order; dependents_of() and nodes() both
    return lists in that order so every consumer sees the same
    deterministic tie-break.
    """

    def __init__(
        self,
        edges: Optional[Iterable[Tuple[NodeLike, NodeLike]]] = None,
        nodes: Optional[Sequence[DomainNode]] = None,
    ):
        self._nodes: List[DomainNode] = list(nodes) if nodes is not None else DomainNode.declared()
        self._rank: Dict[DomainNode, int] = {n: i for i, n in enumerate(self._nodes)}
        self._raw_edges: List[Tuple[NodeLike, NodeLike]] = (
            list(edges) if edges is not None else edges_from_mapping(DOMAIN_DEPENDENCIES)
        )
        self._edges: List[DependencyEdge] = []
        self._dependents: Dict[DomainNode, List[DomainNode]] = {n: [] for n in self._nodes}
        self._dependencies: Dict[DomainNode, List[DomainNode]] = {n: [] for n in self._nodes}
        self._is_valid: bool = False

    @classmethod
    def default(cls) -> "DomainRegistry":
        """Registry with the production edge set, already validated."""
        registry = cls()
        registry.validate()
        return registry

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check that every edge names a known node and that the graph is acyclic.

        Raises:
            ConfigurationError: on an unknown node or a cycle. The registry
                stays invalid and must not be used to serve requests.
        """
        self._is_valid = False
        self._edges = []
        self._dependents = {n: [] for n in self._nodes}
        self._dependencies = {n: [] for n in self._nodes}

        seen: Set[Tuple[DomainNode, DomainNode]] = set()
        for raw_source, raw_target in self._raw_edges:
            source = self._coerce_edge_node(raw_source)
            target = self._coerce_edge_node(raw_target)
            if (source, target) in seen:
                continue
            seen.add((source, target))
            self._edges.append(DependencyEdge(source=source, target=target))
            self._dependents[source].append(target)
            self._dependencies[target].append(source)

        for node in self._nodes:
            self._dependents[node].sort(key=self.rank)
            self._dependencies[node].sort(key=self.rank)

        cycles = self._detect_cycles()
        if cycles:
            cycle = [n.value for n in cycles[0]]
            logger.error(f"Dependency graph rejected, cycle: {' -> '.join(cycle)}")
            raise ConfigurationError(
                f"Cyclic dependency detected: {' -> '.join(cycle)}",
                code=ErrorCode.CFG_CYCLIC_GRAPH,
                cycle=cycle,
            )

        self._is_valid = True
        logger.info(
            f"Domain registry validated: {len(self._nodes)} nodes, "
            f"{len(self._edges)} edges"
        )

    def _coerce_edge_node(self, value: NodeLike) -> DomainNode:
        try:
            node = DomainNode(value)
        except ValueError:
            node = None
        if node is None or node not in self._rank:
            raise ConfigurationError(
                f"Edge references unknown domain: {value!r}",
                code=ErrorCode.CFG_UNKNOWN_NODE,
            )
        return node

    def _detect_cycles(self) -> List[List[DomainNode]]:
        """Detect cycles using DFS with a recursion stack."""
        cycles: List[List[DomainNode]] = []
        visited: Set[DomainNode] = set()
        rec_stack: Set[DomainNode] = set()

        def dfs(node: DomainNode, path: List[DomainNode]) -> None:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for dependent in self._dependents[node]:
                if dependent not in visited:
                    dfs(dependent, path.copy())
                elif dependent in rec_stack:
                    cycle_start = path.index(dependent)
                    cycles.append(path[cycle_start:] + [dependent])

            rec_stack.remove(node)

        for node in self._nodes:
            if node not in visited:
                dfs(node, [])

        return cycles

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def nodes(self) -> List[DomainNode]:
        """All nodes in declared order."""
        return list(self._nodes)

    def edges(self) -> List[DependencyEdge]:
        return list(self._edges)

    def rank(self, node: DomainNode) -> int:
        """Position of `node` in the declared order."""
        return self._rank[node]

    def has_node(self, value: Any) -> bool:
        try:
            self.resolve(value)
        except UnknownSourceError:
            return False
        return True

    def resolve(self, value: NodeLike) -> DomainNode:
        """
        Map a node or its identifier onto a member of the node set.

        Raises:
            UnknownSourceError: if the value names no declared domain.
        """
        if isinstance(value, DomainNode):
            node = value
        else:
            try:
                node = DomainNode(value)
            except ValueError:
                raise UnknownSourceError(value) from None
        if node not in self._rank:
            raise UnknownSourceError(value)
        return node

    def dependents_of(self, node: DomainNode) -> List[DomainNode]:
        """Direct downstream neighbours, in declared order."""
        return list(self._dependents[self.resolve(node)])

    def dependencies_of(self, node: DomainNode) -> List[DomainNode]:
        """Direct upstream neighbours, in declared order."""
        return list(self._dependencies[self.resolve(node)])

    def reachable_from(self, node: DomainNode) -> Set[DomainNode]:
        """`node` plus every node transitively downstream of it."""
        start = self.resolve(node)
        result = {start}
        to_process = [start]

        while to_process:
            current = to_process.pop()
            for dependent in self._dependents[current]:
                if dependent not in result:
                    result.add(dependent)
                    to_process.append(dependent)

        return result

    def to_dict(self) -> Dict[str, Any]:
        """Serialize graph for diagnostics."""
        return {
            "nodes": [n.value for n in self._nodes],
            "edges": [e.to_dict() for e in self._edges],
            "valid": self._is_valid,
        }
