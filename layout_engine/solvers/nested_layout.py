"""
Nested (container) layouts.

A container node owns a sub-layout for its children. Children are found
through ``data["parent_container"]`` and ``contains`` edges. Each container
is laid out in its own normalized [-1, 1] frame and the result mapped back
to world space; containers are then resized to fit their children,
innermost first.
"""
from typing import Any, Dict, List, Optional, Set, Tuple
from dataclasses import dataclass, field
import logging

import numpy as np

from ..utils.geometry_utils import Bounds, as_vec3
from .base import LayoutStrategy, apply_config
from .static_layouts import (
    CircularLayout,
    FlowLayout,
    GridLayout,
    HierarchicalLayout,
    RelaxedForceLayout,
    StaticLayout,
)

logger = logging.getLogger(__name__)

NESTED_LAYOUTS = {
    "grid": GridLayout,
    "circular": CircularLayout,
    "force": RelaxedForceLayout,
    "hierarchical": HierarchicalLayout,
    "flow": FlowLayout,
}

# Settings for layouts that run directly on normalized coordinates
UNIT_FRAME_CONFIG = {
    "force": {"ideal_length": 0.5, "iterations": 30},
}


@dataclass
class NestedSettings:
    """Nested layout parameters"""
    container_padding: float = 50.0
    child_spacing: float = 25.0
    auto_resize: bool = True
    recursion_depth: int = 10
    default_child_layout: str = "grid"


@dataclass
class ContainerEntry:
    container: Any
    layout: str
    layout_config: Dict[str, Any] = field(default_factory=dict)
    child_ids: List[str] = field(default_factory=list)
    bounds: Optional[Bounds] = None


@dataclass
class _FramePoint:
    """A child as seen by a nested strategy: normalized position only."""
    id: str
    position: np.ndarray
    is_pinned: bool = False
    mass: float = 1.0


@dataclass
class _FrameEdge:
    id: str
    source: _FramePoint
    target: _FramePoint
    data: Dict[str, Any] = field(default_factory=dict)


def is_container(node) -> bool:
    data = getattr(node, "data", None) or {}
    return bool(data.get("is_container") or data.get("child_layout"))


def node_half_extents(node) -> np.ndarray:
    if hasattr(node, "get_half_extents"):
        return np.asarray(node.get_half_extents(), dtype=float)
    return np.full(3, node.get_bounding_sphere_radius())


def container_bounds(node) -> Bounds:
    """World bounds of a container's visual extent."""
    return Bounds.from_center(as_vec3(node.position), node_half_extents(node))


def frame_positions(raw: Dict[str, np.ndarray],
                    available: Bounds,
                    child_extent: float,
                    spacing: float) -> Dict[str, np.ndarray]:
    """Fit raw strategy output into the normalized frame of ``available``.

    The raw layout is centered and scaled uniformly so that children (of
    half size ``child_extent``) stay inside the available space, unless
    that would bring two children closer than ``2 * child_extent + spacing``,
    in which case the minimum separation wins and the container grows on
    the next resize.
    """
    if not raw:
        return {}
    ids = list(raw)
    pts = np.array([raw[i] for i in ids], dtype=float)
    lo, hi = pts.min(axis=0), pts.max(axis=0)
    raw_center = (lo + hi) * 0.5
    raw_half = (hi - lo) * 0.5

    scale = 0.0
    spread = raw_half > 1e-9
    if spread.any():
        room = np.maximum(available.half_size - child_extent, 0.0)
        scale = float(np.min(room[spread] / raw_half[spread]))
    if len(ids) > 1:
        dists = np.linalg.norm(pts[:, None, :] - pts[None, :, :], axis=2)
        dists = dists[np.triu_indices(len(ids), k=1)]
        dists = dists[dists > 1e-9]
        if dists.size:
            scale = max(scale, (2 * child_extent + spacing) / float(dists.min()))

    return {node_id: (pts[k] - raw_center) * scale / available.half_size for k, node_id in enumerate(ids)}


class NestedLayoutComposer(LayoutStrategy):
    """Recursive container layout."""

    name = "nested"

    def __init__(self, settings: Optional[NestedSettings] = None, graph=None):
        super().__init__(graph)
        self.settings = settings or NestedSettings()
        self.containers: Dict[str, ContainerEntry] = {}
        self._parent: Dict[str, str] = {}
        self._strategies: Dict[Tuple[str, str], StaticLayout] = {}

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def _new_entry(self, container) -> ContainerEntry:
        data = container.data or {}
        return ContainerEntry(
            container=container,
            layout=data.get("child_layout") or self.settings.default_child_layout,
            layout_config=dict(data.get("layout_config") or {}),
        )

    def _attach(self, child_id: str, container_id: str) -> bool:
        if child_id == container_id:
            logger.warning(f"Container {container_id} cannot contain itself")
            return False
        current = self._parent.get(child_id)
        if current is not None and current != container_id:
            logger.warning(f"Node {child_id} already belongs to {current}; ignoring {container_id}")
            return False
        entry = self.containers[container_id]
        if child_id not in entry.child_ids:
            entry.child_ids.append(child_id)
        self._parent[child_id] = container_id
        return True

    def _build_hierarchy(self) -> None:
        self.containers = {n.id: self._new_entry(n) for n in self.nodes.values() if is_container(n)}
        self._parent = {}
        for node in self.nodes.values():
            parent_id = node.data.get("parent_container")
            if parent_id is None:
                continue
            if parent_id in self.containers:
                self._attach(node.id, parent_id)
            else:
                logger.warning(f"Node {node.id}: parent container {parent_id} not found")
        for edge in self.edges.values():
            if (edge.data or {}).get("relationship") == "contains" and edge.source.id in self.containers:
                self._attach(edge.target.id, edge.source.id)

    def root_containers(self) -> List[str]:
        return [cid for cid in self.containers if self._parent.get(cid) not in self.containers]

    def children_of(self, container_id: str) -> List[Any]:
        entry = self.containers.get(container_id)
        if entry is None:
            return []
        return [self.nodes[i] for i in entry.child_ids if i in self.nodes]

    # ------------------------------------------------------------------
    # Container management
    # ------------------------------------------------------------------

    def add_container(self, container, parent_id: Optional[str] = None) -> None:
        self.nodes[container.id] = container
        if container.id not in self.containers:
            self.containers[container.id] = self._new_entry(container)
        if parent_id is not None:
            if parent_id not in self.containers:
                logger.warning(f"Parent container {parent_id} not found for {container.id}")
                return
            container.data["parent_container"] = parent_id
            self._attach(container.id, parent_id)

    def remove_container(self, container_id: str) -> None:
        entry = self.containers.pop(container_id, None)
        if entry is None:
            return
        for child_id in entry.child_ids:
            if self._parent.get(child_id) == container_id:
                del self._parent[child_id]
        parent_id = self._parent.pop(container_id, None)
        if parent_id in self.containers and container_id in self.containers[parent_id].child_ids:
            self.containers[parent_id].child_ids.remove(container_id)
        for key in [k for k in self._strategies if k[0] == container_id]:
            self._strategies.pop(key).dispose()

    def add_node_to_container(self, node, container_id: str) -> bool:
        if container_id not in self.containers:
            logger.warning(f"Cannot add {node.id}: container {container_id} not found")
            return False
        self.nodes.setdefault(node.id, node)
        if not self._attach(node.id, container_id):
            return False
        node.data["parent_container"] = container_id
        return True

    def remove_node_from_container(self, node, container_id: str) -> None:
        entry = self.containers.get(container_id)
        if entry is None:
            return
        if node.id in entry.child_ids:
            entry.child_ids.remove(node.id)
        if self._parent.get(node.id) == container_id:
            del self._parent[node.id]
        if node.data.get("parent_container") == container_id:
            del node.data["parent_container"]

    def set_container_layout(self, container_id: str, layout: str,
                             config: Optional[Dict[str, Any]] = None) -> None:
        entry = self.containers.get(container_id)
        if entry is None:
            logger.warning(f"Cannot set layout: container {container_id} not found")
            return
        cached = self._strategies.pop((container_id, entry.layout), None)
        if cached is not None:
            cached.dispose()
        entry.layout = layout
        entry.layout_config = dict(config or {})

    # ------------------------------------------------------------------
    # Layout passes
    # ------------------------------------------------------------------

    def _get_strategy(self, container_id: str, kind: str, config: Dict[str, Any]) -> StaticLayout:
        if kind not in NESTED_LAYOUTS:
            logger.warning(f"Unknown child layout '{kind}' for {container_id}, "
                           f"using {self.settings.default_child_layout}")
            kind = self.settings.default_child_layout
        key = (container_id, kind)
        strategy = self._strategies.get(key)
        if strategy is None:
            strategy = NESTED_LAYOUTS[kind]({**UNIT_FRAME_CONFIG.get(kind, {}), **config})
            self._strategies[key] = strategy
        return strategy

    def _apply_container_layout(self, entry: ContainerEntry, children: List[Any]) -> None:
        container = entry.container
        strategy = self._get_strategy(container.id, entry.layout, entry.layout_config)
        available = container_bounds(container).shrunk(self.settings.container_padding)

        points = {c.id: _FramePoint(c.id, available.normalize(c.position), bool(c.is_pinned)) for c in children}
        frame_edges = [
            _FrameEdge(e.id, points[e.source.id], points[e.target.id])
            for e in self.edges.values()
            if e.source.id in points and e.target.id in points
            and (e.data or {}).get("relationship") != "contains"
        ]
        raw = strategy.compute(list(points.values()), frame_edges)
        child_extent = max(float(np.max(node_half_extents(c))) for c in children)
        local = frame_positions(raw, available, child_extent, self.settings.child_spacing)

        for child in children:
            if child.is_pinned or child.id not in local:
                continue
            child.position[:] = available.denormalize(local[child.id])

    def _recalculate_bounds(self, children: List[Any]) -> Bounds:
        lows = [as_vec3(c.position) - node_half_extents(c) for c in children]
        highs = [as_vec3(c.position) + node_half_extents(c) for c in children]
        bounds = Bounds(np.min(lows, axis=0), np.max(highs, axis=0))
        return bounds.expanded(self.settings.container_padding)

    def _resize(self, entry: ContainerEntry) -> None:
        container = entry.container
        if container.is_pinned or (container.data or {}).get("auto_resize") is False:
            return
        container.position[:] = entry.bounds.center
        radius = getattr(container, "radius", 0.0)
        if radius and hasattr(container, "scale"):
            container.scale = entry.bounds.half_size / radius

    def _layout_container(self, container_id: str, depth: int, visited: Set[str]) -> None:
        if container_id in visited:
            logger.warning(f"Container cycle detected at {container_id}; skipping")
            return
        if depth > self.settings.recursion_depth:
            logger.warning(f"Container nesting deeper than {self.settings.recursion_depth} at {container_id}")
            return
        visited.add(container_id)
        entry = self.containers[container_id]
        children = self.children_of(container_id)
        if not children:
            return

        self._apply_container_layout(entry, children)
        for child in children:
            if child.id in self.containers:
                self._layout_container(child.id, depth + 1, visited)

        entry.bounds = self._recalculate_bounds(children)
        if self.settings.auto_resize:
            self._resize(entry)

    def _has_root(self, container_id: str) -> bool:
        """False when following parents from ``container_id`` loops forever."""
        seen: Set[str] = set()
        current = container_id
        while current in self.containers and current not in seen:
            seen.add(current)
            current = self._parent.get(current)
        return current not in self.containers

    def apply_nested_layouts(self) -> None:
        visited: Set[str] = set()
        for container_id in self.root_containers():
            self._layout_container(container_id, 0, visited)
        # containers below the depth limit stay untouched; only cycles lack a root
        for container_id in self.containers:
            if container_id not in visited and not self._has_root(container_id):
                logger.warning(f"Container {container_id} is unreachable from any root (containment cycle)")
                self._layout_container(container_id, 0, visited)

    # ------------------------------------------------------------------
    # Strategy contract
    # ------------------------------------------------------------------

    def init(self, nodes, edges, config: Optional[Dict[str, Any]] = None):
        apply_config(self.settings, config, owner=self.name)
        self.nodes = {n.id: n for n in nodes}
        self.edges = {e.id: e for e in edges}
        self._build_hierarchy()
        logger.info(f"Nested layout initialized: {len(self.containers)} containers, "
                    f"{len(self.root_containers())} roots")
        self.apply_nested_layouts()

    def run(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._emit("layout:started", {"name": self.name})
        self.apply_nested_layouts()

    def kick(self, intensity: float = 1.0) -> None:
        if self.containers:
            self.apply_nested_layouts()

    def add_node(self, node) -> None:
        self.nodes[node.id] = node
        if is_container(node):
            self.add_container(node)
        parent_id = node.data.get("parent_container")
        if parent_id is not None:
            self.add_node_to_container(node, parent_id)

    def remove_node(self, node) -> None:
        if node.id in self.containers:
            self.remove_container(node.id)
        parent_id = self._parent.get(node.id)
        if parent_id is not None:
            self.remove_node_from_container(node, parent_id)
        self.nodes.pop(node.id, None)

    def add_edge(self, edge) -> None:
        self.edges[edge.id] = edge
        if (edge.data or {}).get("relationship") == "contains":
            self.add_node_to_container(edge.target, edge.source.id)

    def remove_edge(self, edge) -> None:
        self.edges.pop(edge.id, None)
        if (edge.data or {}).get("relationship") == "contains":
            self.remove_node_from_container(edge.target, edge.source.id)

    def dispose(self) -> None:
        for strategy in self._strategies.values():
            strategy.dispose()
        self._strategies = {}
        self.containers = {}
        self._parent = {}
        super().dispose()
