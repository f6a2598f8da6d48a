from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from automation_runner.core.errors import InvalidGraphError

NODE_TYPES = ("action", "condition", "delay", "split")


@dataclass(frozen=True)
class WorkflowNode:
    id: str
    type: str
    name: str = ""
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowEdge:
    source: str
    target: str
    condition: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"from": self.source, "to": self.target}
        if self.condition is not None:
            out["condition"] = self.condition
        return out


class WorkflowGraph:
    """
    Immutable node/edge graph, indexed by node id.

    Nodes live in an id -> node map and edges in a list plus an outgoing index,
    so traversal state only ever deals in ids.
    """

    def __init__(self, nodes: Iterable[WorkflowNode], edges: Iterable[WorkflowEdge]):
        self.nodes: Dict[str, WorkflowNode] = {}
        self.order: List[str] = []
        for node in nodes:
            if node.id in self.nodes:
                raise InvalidGraphError(f"Duplicate node id: {node.id}")
            if node.type not in NODE_TYPES:
                raise InvalidGraphError(f"Unsupported node type '{node.type}' on node {node.id}")
            self.nodes[node.id] = node
            self.order.append(node.id)

        self.edges: List[WorkflowEdge] = list(edges)
        self._outgoing: Dict[str, List[WorkflowEdge]] = {node_id: [] for node_id in self.order}
        for edge in self.edges:
            if edge.source not in self.nodes or edge.target not in self.nodes:
                raise InvalidGraphError(f"Edge {edge.source} -> {edge.target} references an unknown node")
            self._outgoing[edge.source].append(edge)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "WorkflowGraph":
        data = data or {}
        raw_nodes = data.get("nodes") or []
        raw_edges = data.get("edges") or []
        if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
            raise InvalidGraphError("Graph nodes and edges must be lists")

        nodes = []
        for raw in raw_nodes:
            if not isinstance(raw, dict) or not raw.get("id"):
                raise InvalidGraphError("Every node needs an id")
            config = raw.get("config") or {}
            if not isinstance(config, dict):
                raise InvalidGraphError(f"Node {raw['id']} config must be an object")
            nodes.append(
                WorkflowNode(
                    id=str(raw["id"]),
                    type=str(raw.get("type") or ""),
                    name=str(raw.get("name") or ""),
                    config=config,
                )
            )

        edges = []
        for raw in raw_edges:
            if not isinstance(raw, dict) or raw.get("from") is None or raw.get("to") is None:
                raise InvalidGraphError("Every edge needs 'from' and 'to'")
            condition = raw.get("condition")
            edges.append(
                WorkflowEdge(
                    source=str(raw["from"]),
                    target=str(raw["to"]),
                    condition=None if condition in (None, "") else str(condition),
                )
            )

        return cls(nodes, edges)

    def to_dict(self) -> dict:
        return {
            "nodes": [
                {"id": n.id, "type": n.type, "name": n.name, "config": n.config}
                for n in (self.nodes[i] for i in self.order)
            ],
            "edges": [e.to_dict() for e in self.edges],
        }

    def outgoing(self, node_id: str) -> List[WorkflowEdge]:
        return list(self._outgoing.get(node_id, []))

    def start_node_ids(self) -> List[str]:
        incoming = {edge.target for edge in self.edges}
        return [node_id for node_id in self.order if node_id not in incoming]

    def successor_ids(self, node_id: str) -> List[str]:
        seen = []
        for edge in self._outgoing.get(node_id, []):
            if edge.target not in seen:
                seen.append(edge.target)
        return seen

    def reachable_subgraph(self, start_ids: Iterable[str]) -> "WorkflowGraph":
        """Subgraph of every node reachable from start_ids, with the edges among them."""
        keep = set()
        stack = [node_id for node_id in start_ids if node_id in self.nodes]
        while stack:
            node_id = stack.pop()
            if node_id in keep:
                continue
            keep.add(node_id)
            stack.extend(edge.target for edge in self._outgoing[node_id])

        return WorkflowGraph(
            nodes=[self.nodes[i] for i in self.order if i in keep],
            edges=[e for e in self.edges if e.source in keep and e.target in keep],
        )
