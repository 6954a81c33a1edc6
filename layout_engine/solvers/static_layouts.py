"""
One-shot geometric layouts.

Each layout computes target positions in closed form from the node list
(and, for the tree-like ones, the edge structure). ``init`` writes the
result onto every unpinned node; there is no autonomous motion, so
``run``/``kick`` keep the no-op defaults.
"""
from abc import abstractmethod
from typing import Any, Dict, Iterable, List, Optional
import logging
import math

import networkx as nx
import numpy as np

from ..utils.geometry_utils import as_vec3
from .base import LayoutStrategy, apply_config

logger = logging.getLogger(__name__)

GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))


class StaticLayout(LayoutStrategy):
    """Base for layouts whose result depends only on the input graph."""

    DEFAULTS: Dict[str, Any] = {"center": (0.0, 0.0, 0.0)}

    def __init__(self, config: Optional[Dict[str, Any]] = None, graph=None):
        super().__init__(graph)
        self.settings: Dict[str, Any] = {**StaticLayout.DEFAULTS, **self.DEFAULTS}
        apply_config(self.settings, config, owner=self.name)

    def init(self, nodes: Iterable[Any], edges: Iterable[Any], config: Optional[Dict[str, Any]] = None):
        apply_config(self.settings, config, owner=self.name)
        nodes = list(nodes)
        edges = list(edges)
        self.nodes = {n.id: n for n in nodes}
        self.edges = {e.id: e for e in edges}
        positions = self.compute(nodes, edges)
        for node in nodes:
            if not node.is_pinned and node.id in positions:
                node.position[:] = positions[node.id]
        logger.debug(f"{self.name} layout placed {len(positions)} nodes")
        return positions

    def _center(self) -> np.ndarray:
        return as_vec3(self.settings["center"])

    @abstractmethod
    def compute(self, nodes: List[Any], edges: List[Any]) -> Dict[str, np.ndarray]:
        """Return target positions keyed by node id."""


class GridLayout(StaticLayout):
    name = "grid"
    DEFAULTS = {"spacing": 100.0, "columns": None}

    def compute(self, nodes, edges):
        n = len(nodes)
        if n == 0:
            return {}
        columns = self.settings["columns"] or math.ceil(math.sqrt(n))
        rows = math.ceil(n / columns)
        spacing = self.settings["spacing"]
        center = self._center()
        positions = {}
        for index, node in enumerate(nodes):
            col = index % columns
            row = index // columns
            offset = np.array([(col - (columns - 1) / 2) * spacing, ((rows - 1) / 2 - row) * spacing, 0.0])
            positions[node.id] = center + offset
        return positions


class CircularLayout(StaticLayout):
    name = "circular"
    DEFAULTS = {"radius": 200.0, "start_angle": 0.0}

    def compute(self, nodes, edges):
        n = len(nodes)
        center = self._center()
        if n == 1:
            return {nodes[0].id: center.copy()}
        radius = self.settings["radius"]
        step = 2 * math.pi / max(n, 1)
        return {
            node.id: center + radius * np.array([math.cos(self.settings["start_angle"] + i * step),
                                                  math.sin(self.settings["start_angle"] + i * step),
                                                  0.0])
            for i, node in enumerate(nodes)
        }


class SphericalLayout(StaticLayout):
    """Even distribution over a sphere surface (Fibonacci lattice)."""

    name = "spherical"
    DEFAULTS = {"radius": 300.0}

    def compute(self, nodes, edges):
        n = len(nodes)
        center = self._center()
        if n == 1:
            return {nodes[0].id: center.copy()}
        radius = self.settings["radius"]
        positions = {}
        for i, node in enumerate(nodes):
            y = 1 - 2 * (i + 0.5) / n
            r = math.sqrt(max(0.0, 1 - y * y))
            theta = GOLDEN_ANGLE * i
            positions[node.id] = center + radius * np.array([math.cos(theta) * r, y, math.sin(theta) * r])
        return positions


def compute_levels(nodes: List[Any], edges: List[Any]) -> Dict[str, int]:
    """Breadth-first depth of every node from the sources of a directed graph.

    Sources are nodes without incoming edges; when a component has none
    (a cycle) its first node in input order becomes a source.
    """
    G = nx.DiGraph()
    G.add_nodes_from(n.id for n in nodes)
    G.add_edges_from((e.source.id, e.target.id) for e in edges
                     if e.source.id in G and e.target.id in G and e.source.id != e.target.id)
    levels: Dict[str, int] = {}
    roots = [n.id for n in nodes if G.in_degree(n.id) == 0]
    while len(levels) < len(G):
        if not roots:
            roots = [next(n.id for n in nodes if n.id not in levels)]
        reached = nx.multi_source_dijkstra_path_length(G, roots)
        for node_id, depth in reached.items():
            if node_id not in levels:
                levels[node_id] = int(depth)
        roots = []
    return levels


def _group_by_level(nodes: List[Any], levels: Dict[str, int]) -> Dict[int, List[str]]:
    grouped: Dict[int, List[str]] = {}
    for node in nodes:
        grouped.setdefault(levels[node.id], []).append(node.id)
    return grouped


class HierarchicalLayout(StaticLayout):
    """Layered tree: levels stacked top to bottom, siblings spread along x."""

    name = "hierarchical"
    DEFAULTS = {"level_separation": 150.0, "node_separation": 100.0}
    # (level axis, level direction sign, spread axis)
    AXES = (1, -1.0, 0)

    def compute(self, nodes, edges):
        if not nodes:
            return {}
        grouped = _group_by_level(nodes, compute_levels(nodes, edges))
        max_level = max(grouped)
        level_axis, sign, spread_axis = self.AXES
        center = self._center()
        positions = {}
        for level, ids in grouped.items():
            for k, node_id in enumerate(ids):
                offset = np.zeros(3)
                offset[level_axis] = sign * (level - max_level / 2) * self.settings["level_separation"]
                offset[spread_axis] = (k - (len(ids) - 1) / 2) * self.settings["node_separation"]
                positions[node_id] = center + offset
        return positions


class FlowLayout(HierarchicalLayout):
    """Left-to-right layering, for pipelines and data flows."""

    name = "flow"
    AXES = (0, 1.0, 1)


class RadialLayout(StaticLayout):
    name = "radial"
    DEFAULTS = {"radius_step": 150.0}

    def compute(self, nodes, edges):
        if not nodes:
            return {}
        grouped = _group_by_level(nodes, compute_levels(nodes, edges))
        center = self._center()
        positions = {}
        for level, ids in grouped.items():
            if level == 0 and len(ids) == 1:
                positions[ids[0]] = center.copy()
                continue
            radius = self.settings["radius_step"] * (level if level > 0 else 0.5)
            step = 2 * math.pi / len(ids)
            for k, node_id in enumerate(ids):
                positions[node_id] = center + radius * np.array([math.cos(k * step), math.sin(k * step), 0.0])
        return positions


class RelaxedForceLayout(StaticLayout):
    """Synchronous Fruchterman-Reingold relaxation.

    Runs a fixed number of cooling iterations in one call and starts from
    the nodes' current positions, so repeated passes refine rather than
    restart. Used where a threaded simulation is not wanted (inside
    containers, batch requests).
    """

    name = "relaxed-force"
    DEFAULTS = {"iterations": 50, "ideal_length": 100.0, "gravity": 0.05, "seed": 7}

    def compute(self, nodes, edges):
        n = len(nodes)
        if n == 0:
            return {}
        k = float(self.settings["ideal_length"])
        rng = np.random.default_rng(self.settings["seed"])
        ids = [node.id for node in nodes]
        index = {node_id: i for i, node_id in enumerate(ids)}
        pos = np.array([as_vec3(node.position) for node in nodes])
        pinned = np.array([bool(node.is_pinned) for node in nodes])
        pairs = np.array([(index[e.source.id], index[e.target.id]) for e in edges
                          if e.source.id in index and e.target.id in index], dtype=int).reshape(-1, 2)
        center = self._center()
        iterations = int(self.settings["iterations"])

        for it in range(iterations):
            temperature = k * (1 - it / max(iterations, 1))
            delta = pos[:, None, :] - pos[None, :, :]
            dist = np.linalg.norm(delta, axis=2)
            np.fill_diagonal(dist, np.inf)
            close = dist < 1e-6
            if close.any():
                pos[~pinned] += rng.uniform(-0.01, 0.01, (int((~pinned).sum()), 3)) * k
                continue
            disp = np.einsum("ij,ijk->ik", (k * k) / dist ** 2, delta)
            if len(pairs):
                d = pos[pairs[:, 1]] - pos[pairs[:, 0]]
                length = np.linalg.norm(d, axis=1)[:, None]
                pull = d * length / k
                np.add.at(disp, pairs[:, 0], pull)
                np.add.at(disp, pairs[:, 1], -pull)
            disp += (center - pos) * self.settings["gravity"]
            length = np.linalg.norm(disp, axis=1)
            scale = np.minimum(length, temperature) / np.maximum(length, 1e-9)
            step = disp * scale[:, None]
            step[pinned] = 0.0
            pos += step
        return {node_id: pos[i].copy() for i, node_id in enumerate(ids)}
