"""
Minimal graph model consumed by the layout strategies.

``GraphNode`` and ``GraphEdge`` carry exactly the fields the layout code
reads; ``LayoutGraph`` owns the node/edge maps and publishes mutation and
layout events to subscribers.
"""
from typing import Any, Callable, Dict, List, Optional
from collections import defaultdict
import logging

import numpy as np

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], None]

NODE_ADDED = "node:added"
NODE_REMOVED = "node:removed"
EDGE_ADDED = "edge:added"
EDGE_REMOVED = "edge:removed"


class GraphNode:
    """A positioned node. ``position`` is a mutable float vector of length 3."""

    def __init__(self,
                 id: str,
                 position=None,
                 mass: float = 1.0,
                 is_pinned: bool = False,
                 radius: float = 10.0,
                 data: Optional[Dict[str, Any]] = None):
        self.id = id
        self.position = np.zeros(3) if position is None else np.array(position, dtype=float)
        self.mass = float(mass)
        self.is_pinned = is_pinned
        self.radius = float(radius)
        self.scale = np.ones(3)
        self.data: Dict[str, Any] = dict(data or {})

    def get_bounding_sphere_radius(self) -> float:
        return self.radius * float(np.max(self.scale))

    def get_half_extents(self) -> np.ndarray:
        """Half size of the node's axis-aligned visual box."""
        return self.radius * self.scale

    def __repr__(self) -> str:
        x, y, z = self.position
        return f"GraphNode({self.id!r}, ({x:.1f}, {y:.1f}, {z:.1f}))"


class GraphEdge:
    def __init__(self,
                 id: str,
                 source: GraphNode,
                 target: GraphNode,
                 data: Optional[Dict[str, Any]] = None):
        self.id = id
        self.source = source
        self.target = target
        self.data: Dict[str, Any] = dict(data or {})

    def __repr__(self) -> str:
        return f"GraphEdge({self.id!r}, {self.source.id!r} -> {self.target.id!r})"


class LayoutGraph:
    """Owner of the node and edge maps, with a small synchronous event bus."""

    def __init__(self):
        self.nodes: Dict[str, GraphNode] = {}
        self.edges: Dict[str, GraphEdge] = {}
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Deliver ``payload`` to every handler of ``event``.

        A failing handler is logged and does not prevent delivery to the
        remaining handlers.
        """
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload or {})
            except Exception:
                logger.exception(f"Handler for '{event}' failed")

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(self, node: GraphNode) -> GraphNode:
        if node.id in self.nodes:
            logger.warning(f"Node {node.id} already exists; replacing it")
        self.nodes[node.id] = node
        self.emit(NODE_ADDED, {"node": node})
        return node

    def remove_node(self, node_id: str) -> Optional[GraphNode]:
        node = self.nodes.get(node_id)
        if node is None:
            logger.warning(f"Cannot remove unknown node {node_id}")
            return None
        for edge in [e for e in self.edges.values() if node_id in (e.source.id, e.target.id)]:
            self.remove_edge(edge.id)
        del self.nodes[node_id]
        self.emit(NODE_REMOVED, {"node": node})
        return node

    def add_edge(self,
                 source_id: str,
                 target_id: str,
                 data: Optional[Dict[str, Any]] = None,
                 edge_id: Optional[str] = None) -> Optional[GraphEdge]:
        source = self.nodes.get(source_id)
        target = self.nodes.get(target_id)
        if source is None or target is None:
            missing = source_id if source is None else target_id
            logger.warning(f"Skipping edge {source_id}->{target_id}: node {missing} not found")
            return None
        edge = GraphEdge(edge_id or f"{source_id}-{target_id}", source, target, data)
        self.edges[edge.id] = edge
        self.emit(EDGE_ADDED, {"edge": edge})
        return edge

    def remove_edge(self, edge_id: str) -> Optional[GraphEdge]:
        edge = self.edges.pop(edge_id, None)
        if edge is None:
            logger.warning(f"Cannot remove unknown edge {edge_id}")
            return None
        self.emit(EDGE_REMOVED, {"edge": edge})
        return edge

    def get_node_list(self) -> List[GraphNode]:
        return list(self.nodes.values())

    def get_edge_list(self) -> List[GraphEdge]:
        return list(self.edges.values())
