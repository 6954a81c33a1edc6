"""
Iterative geometric constraint solver.

Constraints are plain dataclass values. ``solve_constraint`` is a pure
function that reads the current body table and returns per-node
correction forces; the solver owns the accumulators, applies collision
avoidance and integrates the summed corrections. No true dynamics: every
pass is a relaxation step towards satisfying all constraints at once.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum
import logging
import math

import numpy as np

from ..errors import ConstraintNodeError
from ..utils.geometry_utils import angle_between, as_vec3, perpendicular, rotate_about_axis, safe_normalize
from .base import LayoutStrategy, apply_config

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTRAINT TYPES
# ============================================================================

class ConstraintKind(str, Enum):
    DISTANCE = "distance"
    POSITION = "position"
    ANGLE = "angle"
    CLUSTER = "cluster"
    BOUNDARY = "boundary"


@dataclass
class BoxBoundary:
    min: np.ndarray
    max: np.ndarray


@dataclass
class SphereBoundary:
    center: np.ndarray
    radius: float


@dataclass
class DistanceConstraint:
    a: str
    b: str
    distance: float = 200.0
    strength: float = 0.5
    min_distance: float = 50.0
    max_distance: float = 500.0
    kind: ConstraintKind = field(default=ConstraintKind.DISTANCE, init=False)

    def node_ids(self) -> Tuple[str, ...]:
        return (self.a, self.b)


@dataclass
class PositionConstraint:
    a: str
    target: np.ndarray
    strength: float = 1.0
    tolerance: float = 10.0
    kind: ConstraintKind = field(default=ConstraintKind.POSITION, init=False)

    def node_ids(self) -> Tuple[str, ...]:
        return (self.a,)


@dataclass
class AngleConstraint:
    """Angle at vertex ``b`` between rays b->a and b->c."""
    a: str
    b: str
    c: str
    angle: float = math.pi / 2
    strength: float = 0.3
    kind: ConstraintKind = field(default=ConstraintKind.ANGLE, init=False)

    def node_ids(self) -> Tuple[str, ...]:
        return (self.a, self.b, self.c)


@dataclass
class ClusterConstraint:
    ids: Tuple[str, ...]
    center_strength: float = 0.5
    internal_separation: float = 100.0
    kind: ConstraintKind = field(default=ConstraintKind.CLUSTER, init=False)

    def node_ids(self) -> Tuple[str, ...]:
        return tuple(self.ids)


@dataclass
class BoundaryConstraint:
    ids: Tuple[str, ...]
    shape: Union[BoxBoundary, SphereBoundary]
    strength: float = 0.8
    padding: float = 20.0
    kind: ConstraintKind = field(default=ConstraintKind.BOUNDARY, init=False)

    def node_ids(self) -> Tuple[str, ...]:
        return tuple(self.ids)


Constraint = Union[DistanceConstraint, PositionConstraint, AngleConstraint,
                   ClusterConstraint, BoundaryConstraint]


@dataclass
class Body:
    """Solver-side copy of a node."""
    position: np.ndarray
    mass: float = 1.0
    radius: float = 50.0
    is_pinned: bool = False

# ============================================================================
# PURE SOLVE FUNCTIONS
# ============================================================================

Deltas = Dict[str, np.ndarray]


def _solve_distance(c: DistanceConstraint, bodies: Dict[str, Body]) -> Deltas:
    a, b = bodies[c.a], bodies[c.b]
    delta = b.position - a.position
    dist = float(np.linalg.norm(delta))
    if dist < 1e-6:
        return {}
    target = min(max(c.distance, c.min_distance), c.max_distance)
    correction = delta / dist * (dist - target) * c.strength * 0.5
    total_mass = a.mass + b.mass
    return {
        c.a: correction * (b.mass / total_mass),
        c.b: -correction * (a.mass / total_mass),
    }


def _solve_position(c: PositionConstraint, bodies: Dict[str, Body]) -> Deltas:
    diff = as_vec3(c.target) - bodies[c.a].position
    if np.linalg.norm(diff) <= c.tolerance:
        return {}
    return {c.a: diff * c.strength}


def _solve_angle(c: AngleConstraint, bodies: Dict[str, Body]) -> Deltas:
    vertex = bodies[c.b].position
    v1 = bodies[c.a].position - vertex
    v2 = bodies[c.c].position - vertex
    if np.linalg.norm(v1) < 1e-6 or np.linalg.norm(v2) < 1e-6:
        return {}
    error = c.angle - angle_between(v1, v2)
    axis = np.cross(v1, v2)
    if np.linalg.norm(axis) < 1e-9:
        # collinear rays: open them in the plane perpendicular to v1
        axis = np.cross(v1, perpendicular(v1))
    correction = error * c.strength * 0.1
    # rotating v2 positively about v1 x v2 widens the angle
    new_v1 = rotate_about_axis(v1, axis, -correction)
    new_v2 = rotate_about_axis(v2, axis, correction)
    return {
        c.a: (new_v1 - v1) * 0.5,
        c.c: (new_v2 - v2) * 0.5,
    }


def _solve_cluster(c: ClusterConstraint, bodies: Dict[str, Body]) -> Deltas:
    members = [i for i in c.ids if i in bodies]
    if not members:
        return {}
    positions = np.array([bodies[i].position for i in members])
    centroid = positions.mean(axis=0)
    deltas = {i: (centroid - bodies[i].position) * c.center_strength for i in members}
    for x in range(len(members)):
        for y in range(x + 1, len(members)):
            diff = positions[x] - positions[y]
            dist = float(np.linalg.norm(diff))
            if 1e-6 < dist < c.internal_separation:
                push = diff / dist * (c.internal_separation - dist) * 0.1
                deltas[members[x]] = deltas[members[x]] + push
                deltas[members[y]] = deltas[members[y]] - push
    return deltas


def _solve_boundary(c: BoundaryConstraint, bodies: Dict[str, Body]) -> Deltas:
    deltas: Deltas = {}
    shape = c.shape
    for node_id in c.ids:
        if node_id not in bodies:
            continue
        p = bodies[node_id].position
        if isinstance(shape, SphereBoundary):
            offset = p - as_vec3(shape.center)
            dist = float(np.linalg.norm(offset))
            limit = shape.radius - c.padding
            if dist > limit and dist > 1e-9:
                deltas[node_id] = -offset / dist * (dist - limit) * c.strength
        else:
            low = as_vec3(shape.min) + c.padding
            high = as_vec3(shape.max) - c.padding
            correction = np.where(p < low, low - p, 0.0) + np.where(p > high, high - p, 0.0)
            if correction.any():
                deltas[node_id] = correction * c.strength
    return deltas


_SOLVERS = {
    ConstraintKind.DISTANCE: _solve_distance,
    ConstraintKind.POSITION: _solve_position,
    ConstraintKind.ANGLE: _solve_angle,
    ConstraintKind.CLUSTER: _solve_cluster,
    ConstraintKind.BOUNDARY: _solve_boundary,
}


def solve_constraint(constraint: Constraint, bodies: Dict[str, Body]) -> Deltas:
    """Correction forces for one constraint given the current body table."""
    return _SOLVERS[constraint.kind](constraint, bodies)

# ============================================================================
# SOLVER
# ============================================================================

@dataclass
class ConstraintSettings:
    """Constraint solver parameters"""
    iterations: int = 100
    convergence_threshold: float = 0.1
    damping_factor: float = 0.8
    max_force: float = 1000.0
    enable_collision_avoidance: bool = True
    collision_padding: float = 50.0
    default_edge_distance: float = 200.0
    default_edge_strength: float = 0.5
    group_center_strength: float = 0.3
    group_internal_separation: float = 100.0


@dataclass
class SolveResult:
    iterations: int
    max_displacement: float
    converged: bool


class ConstraintSolver(LayoutStrategy):
    """Relaxation solver over distance/position/angle/cluster/boundary constraints."""

    name = "constraint"

    def __init__(self, settings: Optional[ConstraintSettings] = None, graph=None):
        super().__init__(graph)
        self.settings = settings or ConstraintSettings()
        self.constraints: List[Constraint] = []
        self.bodies: Dict[str, Body] = {}
        self.forces: Dict[str, np.ndarray] = {}
        self.last_result: Optional[SolveResult] = None
        # constraints built from edges and groups, rebuilt on every init
        self._derived: List[Constraint] = []
        self._edge_constraints: Dict[str, Constraint] = {}

    # ------------------------------------------------------------------
    # Node table
    # ------------------------------------------------------------------

    def _make_body(self, node) -> Body:
        radius = node.get_bounding_sphere_radius() * 2 if hasattr(node, "get_bounding_sphere_radius") else 0.0
        return Body(
            position=as_vec3(node.position),
            mass=getattr(node, "mass", 1.0) or 1.0,
            radius=radius or 50.0,
            is_pinned=bool(node.is_pinned),
        )

    def _sync_bodies(self) -> None:
        for node_id, node in self.nodes.items():
            body = self.bodies.get(node_id)
            if body is None:
                self.bodies[node_id] = self._make_body(node)
            else:
                body.position = as_vec3(node.position)
                body.is_pinned = bool(node.is_pinned)
                body.mass = getattr(node, "mass", 1.0) or 1.0

    def _require(self, ids: Sequence[str]) -> None:
        missing = {i for i in ids if i not in self.nodes}
        if missing:
            raise ConstraintNodeError(missing)

    def _add(self, constraint: Constraint) -> Optional[Constraint]:
        try:
            self._require(constraint.node_ids())
        except ConstraintNodeError as e:
            logger.warning(f"Skipping {constraint.kind.value} constraint: {e}")
            return None
        self.constraints.append(constraint)
        return constraint

    # ------------------------------------------------------------------
    # Constraint builders
    # ------------------------------------------------------------------

    def add_distance_constraint(self, a: str, b: str, distance: float = 200.0, strength: float = 0.5,
                                min_distance: float = 50.0, max_distance: float = 500.0):
        return self._add(DistanceConstraint(a, b, distance, strength, min_distance, max_distance))

    def add_position_constraint(self, a: str, target, strength: float = 1.0, tolerance: float = 10.0):
        return self._add(PositionConstraint(a, as_vec3(target), strength, tolerance))

    def add_angle_constraint(self, a: str, b: str, c: str, angle: float = math.pi / 2, strength: float = 0.3):
        return self._add(AngleConstraint(a, b, c, angle, strength))

    def add_cluster_constraint(self, ids: Iterable[str], center_strength: float = 0.5,
                               internal_separation: float = 100.0):
        return self._add(ClusterConstraint(tuple(ids), center_strength, internal_separation))

    def add_boundary_constraint(self, ids: Iterable[str], boundary: Union[BoxBoundary, SphereBoundary],
                                strength: float = 0.8, padding: float = 20.0):
        return self._add(BoundaryConstraint(tuple(ids), boundary, strength, padding))

    def remove_constraint(self, constraint: Constraint) -> bool:
        for i, existing in enumerate(self.constraints):
            if existing is constraint:
                del self.constraints[i]
                return True
        return False

    def constraints_for(self, node_id: str) -> List[Constraint]:
        return [c for c in self.constraints if node_id in c.node_ids()]

    # ------------------------------------------------------------------
    # Strategy contract
    # ------------------------------------------------------------------

    def init(self, nodes, edges, config: Optional[Dict[str, Any]] = None):
        apply_config(self.settings, config, owner=self.name)
        self.nodes = {n.id: n for n in nodes}
        self.edges = {}
        derived = {id(c) for c in self._derived}
        self.constraints = [c for c in self.constraints
                            if id(c) not in derived and all(i in self.nodes for i in c.node_ids())]
        self._derived = []
        self._edge_constraints = {}
        self.bodies = {}
        for edge in edges:
            self.add_edge(edge)

        groups: Dict[str, List[str]] = {}
        for node in self.nodes.values():
            group = node.data.get("group")
            if group is not None:
                groups.setdefault(group, []).append(node.id)
        for members in groups.values():
            if len(members) > 1:
                cluster = self.add_cluster_constraint(
                    members,
                    center_strength=self.settings.group_center_strength,
                    internal_separation=self.settings.group_internal_separation)
                if cluster is not None:
                    self._derived.append(cluster)

        logger.info(f"Constraint solver initialized: {len(self.nodes)} nodes, {len(self.constraints)} constraints")
        return self.solve()

    def run(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._emit("layout:started", {"name": self.name})
        self.solve()

    def kick(self, intensity: float = 1.0) -> None:
        self.solve()

    def add_node(self, node) -> None:
        self.nodes[node.id] = node
        self.bodies[node.id] = self._make_body(node)

    def remove_node(self, node) -> int:
        """Forget a node and prune every constraint that references it."""
        node_id = node.id if hasattr(node, "id") else node
        self.nodes.pop(node_id, None)
        self.bodies.pop(node_id, None)
        before = len(self.constraints)
        self.constraints = [c for c in self.constraints if node_id not in c.node_ids()]
        self._derived = [c for c in self._derived if node_id not in c.node_ids()]
        self._edge_constraints = {eid: c for eid, c in self._edge_constraints.items()
                                  if node_id not in c.node_ids()}
        removed = before - len(self.constraints)
        if removed:
            logger.debug(f"Pruned {removed} constraints referencing {node_id}")
        return removed

    def add_edge(self, edge) -> None:
        if edge.source.id not in self.nodes or edge.target.id not in self.nodes:
            logger.warning(f"Skipping edge {edge.id}: endpoint not in solver")
            return
        self.edges[edge.id] = edge
        params = (edge.data or {}).get("constraint_params") or {}
        distance = params.get("ideal_length", params.get("distance", self.settings.default_edge_distance))
        strength = params.get("stiffness", self.settings.default_edge_strength)
        constraint = self.add_distance_constraint(edge.source.id, edge.target.id, distance=distance, strength=strength)
        if constraint is not None:
            self._derived.append(constraint)
            self._edge_constraints[edge.id] = constraint

    def remove_edge(self, edge) -> None:
        """Drop the edge and only the distance constraint it produced."""
        self.edges.pop(edge.id, None)
        constraint = self._edge_constraints.pop(edge.id, None)
        if constraint is None:
            return
        self.constraints = [c for c in self.constraints if c is not constraint]
        self._derived = [c for c in self._derived if c is not constraint]

    def dispose(self) -> None:
        super().dispose()
        self.constraints = []
        self._derived = []
        self._edge_constraints = {}
        self.bodies = {}
        self.forces = {}

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    def _collision_forces(self, forces: Dict[str, np.ndarray]) -> None:
        ids = list(self.bodies)
        padding = self.settings.collision_padding
        for x in range(len(ids)):
            b1 = self.bodies[ids[x]]
            for y in range(x + 1, len(ids)):
                b2 = self.bodies[ids[y]]
                diff = b1.position - b2.position
                dist = float(np.linalg.norm(diff))
                min_dist = b1.radius + b2.radius + padding
                if dist >= min_dist:
                    continue
                direction = diff / dist if dist > 1e-9 else np.array([1.0, 0.0, 0.0])
                correction = direction * (min_dist - dist) * 0.5
                forces[ids[x]] += correction
                forces[ids[y]] -= correction

    def solve_pass(self) -> float:
        """One relaxation pass over every constraint. Returns the max displacement."""
        s = self.settings
        forces = {node_id: np.zeros(3) for node_id in self.bodies}
        for constraint in self.constraints:
            for node_id, delta in solve_constraint(constraint, self.bodies).items():
                forces[node_id] += delta
        if s.enable_collision_avoidance:
            self._collision_forces(forces)
        self.forces = forces

        max_displacement = 0.0
        for node_id, body in self.bodies.items():
            if body.is_pinned:
                continue
            step = forces[node_id] * s.damping_factor
            magnitude = float(np.linalg.norm(step))
            if magnitude > s.max_force:
                step *= s.max_force / magnitude
            displacement = step / body.mass
            body.position = body.position + displacement
            max_displacement = max(max_displacement, float(np.linalg.norm(displacement)))
        return max_displacement

    def solve(self) -> SolveResult:
        """Relax until converged or ``iterations`` passes, then write positions back."""
        self._sync_bodies()
        max_displacement = 0.0
        converged = False
        iterations = 0
        for iterations in range(1, self.settings.iterations + 1):
            max_displacement = self.solve_pass()
            if max_displacement < self.settings.convergence_threshold:
                converged = True
                break
            if iterations % 20 == 0:
                logger.debug(f"Iteration {iterations}: max_displacement={max_displacement:.4f}")

        for node_id, body in self.bodies.items():
            node = self.nodes.get(node_id)
            if node is not None and not node.is_pinned:
                node.position[:] = body.position

        if converged:
            logger.info(f"Constraints converged after {iterations} iterations")
        else:
            logger.info(f"Constraints not converged after {iterations} iterations "
                        f"(max_displacement={max_displacement:.4f})")
        self.last_result = SolveResult(iterations, max_displacement, converged)
        return self.last_result
