"""
Routed connections between layout regions.

A region is a named group of nodes laid out together (for example by a
nested or grid layout). Connections join a node in one region to a node
in another and are routed around the member nodes of every region using
A* over a routing graph of region connection points.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum
import itertools
import logging

import networkx as nx
import numpy as np

from ..utils import geometry_utils as gu
from ..utils.geometry_utils import Bounds, as_vec3
from .base import apply_config

logger = logging.getLogger(__name__)


class ConnectionType(str, Enum):
    DIRECT = "direct"
    ORTHOGONAL = "orthogonal"
    CURVED = "curved"
    BUNDLED = "bundled"


@dataclass
class RouterSettings:
    """Connection routing parameters"""
    default_connection_type: str = "curved"
    routing_padding: float = 30.0
    bundling_threshold: int = 3
    bundling_radius: float = 50.0
    connection_strength: float = 0.5
    curve_segments: int = 20
    default_obstacle_radius: float = 25.0


@dataclass
class Obstacle:
    node_id: str
    center: np.ndarray
    radius: float


@dataclass
class LayoutRegion:
    id: str
    bounds: Bounds
    layout_type: str
    nodes: Dict[str, Any] = field(default_factory=dict)
    connection_points: List[np.ndarray] = field(default_factory=list)
    obstacles: List[Obstacle] = field(default_factory=list)


@dataclass
class Connection:
    id: str
    source_node_id: str
    target_node_id: str
    source_region: str
    target_region: str
    type: ConnectionType
    strength: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    path: List[np.ndarray] = field(default_factory=list)


def connection_points(bounds: Bounds) -> List[np.ndarray]:
    """Six face midpoints plus the four corners of the mid-z plane."""
    c, lo, hi = bounds.center, bounds.min, bounds.max
    return [
        np.array([hi[0], c[1], c[2]]),
        np.array([lo[0], c[1], c[2]]),
        np.array([c[0], hi[1], c[2]]),
        np.array([c[0], lo[1], c[2]]),
        np.array([c[0], c[1], hi[2]]),
        np.array([c[0], c[1], lo[2]]),
        np.array([lo[0], lo[1], c[2]]),
        np.array([hi[0], lo[1], c[2]]),
        np.array([lo[0], hi[1], c[2]]),
        np.array([hi[0], hi[1], c[2]]),
    ]


class ConnectionRouter:
    """Registers regions and keeps a routed path for every connection."""

    def __init__(self, settings: Optional[RouterSettings] = None, graph=None):
        self.settings = settings or RouterSettings()
        self.graph = graph
        self.regions: Dict[str, LayoutRegion] = {}
        self.connections: Dict[str, Connection] = {}
        self.routing_graph = nx.Graph()
        self.is_active = False
        self._dirty = True

    def set_context(self, graph) -> None:
        self.graph = graph

    def update_config(self, config: Optional[Dict[str, Any]]) -> None:
        apply_config(self.settings, config, owner="router")
        self._dirty = True

    # ------------------------------------------------------------------
    # Regions
    # ------------------------------------------------------------------

    def register_region(self, region_id: str, bounds: Bounds, layout_type: str,
                        nodes: Iterable[Any] = ()) -> LayoutRegion:
        region = LayoutRegion(region_id, bounds, layout_type, {n.id: n for n in nodes})
        self.regions[region_id] = region
        self._refresh_region(region)
        self._dirty = True
        logger.info(f"Registered region {region_id} ({layout_type}, {len(region.nodes)} nodes)")
        return region

    def unregister_region(self, region_id: str) -> None:
        if self.regions.pop(region_id, None) is None:
            return
        for connection_id in [cid for cid, c in self.connections.items()
                              if region_id in (c.source_region, c.target_region)]:
            self.remove_connection(connection_id)
        self._dirty = True

    def add_region_node(self, region_id: str, node) -> None:
        region = self.regions.get(region_id)
        if region is None:
            logger.warning(f"Cannot add {node.id}: region {region_id} not registered")
            return
        region.nodes[node.id] = node
        self._dirty = True

    def remove_region_node(self, region_id: str, node_id: str) -> None:
        region = self.regions.get(region_id)
        if region is not None and region.nodes.pop(node_id, None) is not None:
            self._dirty = True

    def _refresh_region(self, region: LayoutRegion) -> bool:
        """Recompute bounds, points and obstacles from member positions.

        Returns True if the region's geometry changed.
        """
        obstacles = [
            Obstacle(n.id, as_vec3(n.position),
                     (n.get_bounding_sphere_radius() or self.settings.default_obstacle_radius)
                     + self.settings.routing_padding)
            for n in region.nodes.values()
        ]
        if obstacles:
            # connection points must sit outside every member obstacle
            margin = max(o.radius for o in obstacles) + self.settings.routing_padding
            bounds = Bounds.from_points(o.center for o in obstacles).expanded(margin)
        else:
            bounds = region.bounds
        changed = (bounds != region.bounds or not region.connection_points
                   or len(obstacles) != len(region.obstacles)
                   or any(not np.allclose(a.center, b.center) for a, b in zip(obstacles, region.obstacles)))
        region.bounds = bounds
        region.connection_points = connection_points(bounds)
        region.obstacles = obstacles
        return changed

    def _refresh(self) -> None:
        changed = [self._refresh_region(r) for r in self.regions.values()]
        if any(changed):
            self._dirty = True
        if self._dirty:
            self._rebuild_routing_graph()

    # ------------------------------------------------------------------
    # Routing graph
    # ------------------------------------------------------------------

    def _all_obstacles(self) -> List[Obstacle]:
        return [o for region in self.regions.values() for o in region.obstacles]

    def _segment_blocked(self, start: np.ndarray, end: np.ndarray, ignore: Tuple[str, ...] = ()) -> bool:
        for obstacle in self._all_obstacles():
            if obstacle.node_id in ignore:
                continue
            if gu.segment_intersects_sphere(start, end, obstacle.center, obstacle.radius):
                return True
        return False

    def _rebuild_routing_graph(self) -> None:
        G = nx.Graph()
        for region in self.regions.values():
            for k, point in enumerate(region.connection_points):
                G.add_node((region.id, k), position=point, region_id=region.id)
        for r1, r2 in itertools.combinations(sorted(self.regions), 2):
            midpoint = (self.regions[r1].bounds.center + self.regions[r2].bounds.center) * 0.5
            G.add_node(("intermediate", r1, r2), position=midpoint, region_id=None)

        nodes = list(G.nodes(data="position"))
        for (u, pu), (v, pv) in itertools.combinations(nodes, 2):
            if not self._segment_blocked(pu, pv):
                G.add_edge(u, v, weight=float(np.linalg.norm(pv - pu)))

        self.routing_graph = G
        self._dirty = False
        logger.debug(f"Routing graph rebuilt: {G.number_of_nodes()} nodes, {G.number_of_edges()} edges")

    def _closest_routing_node(self, position: np.ndarray, region_id: str):
        best, best_dist = None, float("inf")
        for node_id, data in self.routing_graph.nodes(data=True):
            if data["region_id"] not in (region_id, None):
                continue
            dist = float(np.linalg.norm(data["position"] - position))
            if dist < best_dist:
                best, best_dist = node_id, dist
        return best

    def _find_path(self, start: np.ndarray, end: np.ndarray, connection: Connection) -> List[np.ndarray]:
        source = self._closest_routing_node(start, connection.source_region)
        target = self._closest_routing_node(end, connection.target_region)
        if source is None or target is None:
            return self._route_direct(start, end)
        G = self.routing_graph

        def heuristic(u, v):
            return float(np.linalg.norm(G.nodes[u]["position"] - G.nodes[v]["position"]))

        try:
            route = nx.astar_path(G, source, target, heuristic=heuristic, weight="weight")
        except nx.NetworkXNoPath:
            logger.info(f"No obstacle-free route for {connection.id}; using a direct segment")
            return self._route_direct(start, end)
        return [start.copy()] + [G.nodes[n]["position"].copy() for n in route] + [end.copy()]

    # ------------------------------------------------------------------
    # Route shapes
    # ------------------------------------------------------------------

    def _route_direct(self, start: np.ndarray, end: np.ndarray) -> List[np.ndarray]:
        return [start.copy(), end.copy()]

    def _route_orthogonal(self, start: np.ndarray, end: np.ndarray, connection: Connection) -> List[np.ndarray]:
        source = self.regions[connection.source_region].bounds
        target = self.regions[connection.target_region].bounds
        if target.center[0] > source.center[0]:
            exit_x, entry_x = source.max[0], target.min[0]
        else:
            exit_x, entry_x = source.min[0], target.max[0]
        exit_point = np.array([exit_x, start[1], start[2]])
        entry_point = np.array([entry_x, end[1], end[2]])
        mid_x = (exit_x + entry_x) / 2
        return [
            start.copy(),
            exit_point,
            np.array([mid_x, exit_point[1], exit_point[2]]),
            np.array([mid_x, entry_point[1], entry_point[2]]),
            entry_point,
            end.copy(),
        ]

    def _route_curved(self, start: np.ndarray, end: np.ndarray, connection: Connection) -> List[np.ndarray]:
        if self._segment_blocked(start, end, ignore=(connection.source_node_id, connection.target_node_id)):
            return self._find_path(start, end, connection)
        delta = end - start
        perp = gu.perpendicular(delta)
        offset = min(100.0, float(np.linalg.norm(delta)) * 0.2)
        control1 = start + delta * 0.33 + perp * offset
        control2 = start + delta * 0.66 - perp * offset
        return gu.cubic_bezier(start, control1, control2, end, self.settings.curve_segments)

    def _bundle_partners(self, connection: Connection) -> List[Connection]:
        pair = {connection.source_region, connection.target_region}
        return [c for c in self.connections.values()
                if c.id != connection.id and {c.source_region, c.target_region} == pair]

    def _route_bundled(self, start: np.ndarray, end: np.ndarray, connection: Connection) -> List[np.ndarray]:
        if len(self._bundle_partners(connection)) < self.settings.bundling_threshold:
            return self._route_curved(start, end, connection)
        # shared waypoint for every connection between this region pair
        a, b = sorted((connection.source_region, connection.target_region))
        ca, cb = self.regions[a].bounds.center, self.regions[b].bounds.center
        waypoint = (ca + cb) * 0.5 + gu.perpendicular(cb - ca) * self.settings.bundling_radius
        return [start.copy(), gu.lerp(start, waypoint, 0.5), waypoint.copy(), gu.lerp(end, waypoint, 0.5), end.copy()]

    def _route(self, connection: Connection) -> None:
        source = self._get_node(connection.source_node_id)
        target = self._get_node(connection.target_node_id)
        if source is None or target is None:
            logger.warning(f"Cannot route {connection.id}: endpoint node missing")
            return
        start, end = as_vec3(source.position), as_vec3(target.position)
        if connection.type == ConnectionType.DIRECT:
            path = self._route_direct(start, end)
        elif connection.type == ConnectionType.ORTHOGONAL:
            path = self._route_orthogonal(start, end, connection)
        elif connection.type == ConnectionType.BUNDLED:
            path = self._route_bundled(start, end, connection)
        else:
            path = self._route_curved(start, end, connection)
        connection.path = path

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _find_node_region(self, node_id: str) -> Optional[LayoutRegion]:
        for region in self.regions.values():
            if node_id in region.nodes:
                return region
        return None

    def _get_node(self, node_id: str):
        region = self._find_node_region(node_id)
        if region is not None:
            return region.nodes[node_id]
        if self.graph is not None:
            return self.graph.nodes.get(node_id)
        return None

    def add_connection(self, source_node_id: str, target_node_id: str,
                       type: Optional[str] = None, strength: Optional[float] = None,
                       metadata: Optional[Dict[str, Any]] = None) -> Optional[str]:
        source_region = self._find_node_region(source_node_id)
        target_region = self._find_node_region(target_node_id)
        if source_region is None or target_region is None:
            logger.warning(f"Could not find regions for nodes {source_node_id} -> {target_node_id}")
            return None
        try:
            connection_type = ConnectionType(type or self.settings.default_connection_type)
        except ValueError:
            logger.warning(f"Unknown connection type {type!r}; using {self.settings.default_connection_type}")
            connection_type = ConnectionType(self.settings.default_connection_type)

        connection = Connection(
            id=f"{source_node_id}-{target_node_id}",
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            source_region=source_region.id,
            target_region=target_region.id,
            type=connection_type,
            strength=self.settings.connection_strength if strength is None else strength,
            metadata=dict(metadata or {}),
        )
        self.connections[connection.id] = connection
        self._refresh()
        if connection_type == ConnectionType.BUNDLED:
            # a new member can push the whole bundle over the threshold
            for other in self._bundle_partners(connection) + [connection]:
                if other.type == ConnectionType.BUNDLED:
                    self._route(other)
        else:
            self._route(connection)
        return connection.id

    def remove_connection(self, connection_id: str) -> bool:
        return self.connections.pop(connection_id, None) is not None

    def update_connection(self, connection_id: str, type: Optional[str] = None,
                          strength: Optional[float] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            logger.warning(f"Cannot update unknown connection {connection_id}")
            return False
        new_type = connection.type
        if type is not None:
            try:
                new_type = ConnectionType(type)
            except ValueError:
                logger.warning(f"Unknown connection type {type!r}; leaving {connection_id} unchanged")
                return False
        if strength is not None:
            connection.strength = strength
        if metadata:
            connection.metadata.update(metadata)
        if new_type != connection.type:
            connection.type = new_type
            self._refresh()
            self._route(connection)
        return True

    def get_connection_path(self, connection_id: str) -> Optional[List[np.ndarray]]:
        connection = self.connections.get(connection_id)
        return connection.path if connection else None

    def get_all_connections(self) -> List[Connection]:
        return list(self.connections.values())

    def get_connections_for_region(self, region_id: str) -> List[Connection]:
        return [c for c in self.connections.values() if region_id in (c.source_region, c.target_region)]

    def reroute_all(self) -> None:
        """Refresh region geometry and recompute every path."""
        self._refresh()
        for connection in self.connections.values():
            self._route(connection)

    def activate(self) -> None:
        self.is_active = True
        self.reroute_all()

    def deactivate(self) -> None:
        self.is_active = False

    def update(self, dt: float = 0.0) -> None:
        if self.is_active:
            self.reroute_all()

    def dispose(self) -> None:
        self.connections = {}
        self.regions = {}
        self.routing_graph = nx.Graph()
        self.is_active = False
        self.graph = None
