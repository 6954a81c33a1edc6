"""
Force-directed simulation engine.

``ForceSimulation`` holds the physics state as numpy arrays and advances it
one integration step at a time. ``SimulationWorker`` runs a simulation on a
dedicated daemon thread and talks to its owner only through two queues:
commands in, events out.
"""
from typing import Any, Callable, Dict, List, Optional
from dataclasses import asdict, dataclass
import logging
import math
import queue
import threading
import time

import numpy as np

from ...schemas.simulation import (
    CommandType,
    ConstraintType,
    EventType,
    InitPayload,
    NodeStatePayload,
    RemoveEdgePayload,
    WorkerEdge,
    WorkerNode,
)
from ...utils.geometry_utils import as_vec3
from ..base import apply_config

logger = logging.getLogger(__name__)

# Squared distance below which two nodes are treated as coincident
COINCIDENT_DIST_SQ = 1e-3

# ============================================================================
# SETTINGS
# ============================================================================

@dataclass
class ForceSettings:
    """Force simulation parameters"""
    repulsion: float = 3000.0
    center_strength: float = 0.0005
    damping: float = 0.92
    min_energy_threshold: float = 0.1
    gravity_center: tuple = (0.0, 0.0, 0.0)
    z_spread_factor: float = 0.15
    auto_stop_delay: float = 4.0  # seconds
    node_padding: float = 1.2
    default_elastic_stiffness: float = 0.001
    default_elastic_ideal_length: float = 200.0
    default_rigid_stiffness: float = 0.1
    default_weld_stiffness: float = 0.5
    enable_clustering: bool = False
    cluster_strength: float = 0.005
    max_speed: float = 100.0
    energy_smoothing: float = 0.1  # EMA weight of the newest sample
    step_interval: float = 1 / 60  # seconds between steps on the worker thread
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

# ============================================================================
# SIMULATION STATE
# ============================================================================

class ForceSimulation:
    """Vectorized many-body simulation over N x 3 position/velocity arrays."""

    def __init__(self, settings: Optional[ForceSettings] = None, clock: Callable[[], float] = time.monotonic):
        self.settings = settings or ForceSettings()
        self.clock = clock
        self.rng = np.random.default_rng(self.settings.seed)

        self.ids: List[str] = []
        self.index: Dict[str, int] = {}
        self.positions = np.zeros((0, 3))
        self.velocities = np.zeros((0, 3))
        self.masses = np.zeros(0)
        self.radii = np.zeros(0)
        self.fixed = np.zeros(0, dtype=bool)
        self.pinned = np.zeros(0, dtype=bool)
        self.cluster_ids: List[Optional[str]] = []
        self.edges: Dict[str, WorkerEdge] = {}

        self.is_running = False
        self.energy = math.inf
        self.smoothed_energy = math.inf
        self.step_count = 0
        self._last_kick_time = self.clock()
        self._below_threshold_since: Optional[float] = None

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def load(self, nodes: List[WorkerNode], edges: List[WorkerEdge]) -> None:
        self.ids = [n.id for n in nodes]
        self.index = {node_id: i for i, node_id in enumerate(self.ids)}
        self.positions = np.array([[n.x, n.y, n.z] for n in nodes], dtype=float).reshape(-1, 3)
        self.velocities = np.array([[n.vx, n.vy, n.vz] for n in nodes], dtype=float).reshape(-1, 3)
        self.masses = np.array([n.mass for n in nodes], dtype=float)
        self.radii = np.array([n.radius for n in nodes], dtype=float)
        self.pinned = np.array([n.is_pinned for n in nodes], dtype=bool)
        self.fixed = np.array([n.is_fixed or n.is_pinned for n in nodes], dtype=bool)
        self.cluster_ids = [n.cluster_id for n in nodes]
        self.edges = {}
        for edge in edges:
            self.add_edge(edge)
        self._reset_energy()
        logger.info(f"Simulation loaded: {len(self.ids)} nodes, {len(self.edges)} edges")

    def add_node(self, node: WorkerNode) -> None:
        if node.id in self.index:
            self.remove_node(node.id)
        self.index[node.id] = len(self.ids)
        self.ids.append(node.id)
        self.positions = np.vstack([self.positions, [node.x, node.y, node.z]])
        self.velocities = np.vstack([self.velocities, np.zeros(3)])
        self.masses = np.append(self.masses, node.mass)
        self.radii = np.append(self.radii, node.radius)
        self.pinned = np.append(self.pinned, node.is_pinned)
        self.fixed = np.append(self.fixed, node.is_fixed or node.is_pinned)
        self.cluster_ids.append(node.cluster_id)

    def remove_node(self, node_id: str) -> bool:
        i = self.index.get(node_id)
        if i is None:
            logger.warning(f"removeNode: unknown node {node_id}")
            return False
        keep = np.arange(len(self.ids)) != i
        self.positions = self.positions[keep]
        self.velocities = self.velocities[keep]
        self.masses = self.masses[keep]
        self.radii = self.radii[keep]
        self.pinned = self.pinned[keep]
        self.fixed = self.fixed[keep]
        del self.cluster_ids[i]
        del self.ids[i]
        self.index = {nid: j for j, nid in enumerate(self.ids)}
        self.edges = {eid: e for eid, e in self.edges.items()
                      if node_id not in (e.source_id, e.target_id)}
        return True

    def add_edge(self, edge: WorkerEdge) -> bool:
        if edge.source_id not in self.index or edge.target_id not in self.index:
            logger.warning(f"addEdge: skipping {edge.id}, endpoint not in simulation")
            return False
        self.edges[edge.id] = edge
        return True

    def remove_edge(self, payload: RemoveEdgePayload) -> bool:
        if payload.edge_id and payload.edge_id in self.edges:
            del self.edges[payload.edge_id]
            return True
        for edge_id, edge in list(self.edges.items()):
            if edge.source_id == payload.source_id and edge.target_id == payload.target_id:
                del self.edges[edge_id]
                return True
        logger.warning(f"removeEdge: no edge matching {payload.model_dump()}")
        return False

    def update_node_state(self, state: NodeStatePayload) -> bool:
        i = self.index.get(state.node_id)
        if i is None:
            logger.warning(f"updateNodeState: unknown node {state.node_id}")
            return False
        self.pinned[i] = state.is_pinned
        self.fixed[i] = state.is_fixed or state.is_pinned
        if self.fixed[i]:
            self.velocities[i] = 0.0
        if state.position is not None:
            self.positions[i] = state.position
        return True

    def update_settings(self, config: Dict[str, Any]) -> None:
        seed = self.settings.seed
        apply_config(self.settings, config, owner="ForceSimulation")
        if self.settings.seed != seed:
            self.rng = np.random.default_rng(self.settings.seed)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> bool:
        if len(self.ids) < 2:
            logger.debug("Not starting simulation with fewer than 2 nodes")
            return False
        if not self.is_running:
            self.is_running = True
            self._reset_energy()
        return True

    def stop(self) -> None:
        self.is_running = False

    def kick(self, intensity: float = 1.0) -> None:
        """Add random velocity to every free node."""
        n = len(self.ids)
        if n == 0:
            return
        impulse = self.rng.uniform(-0.5, 0.5, (n, 3)) * intensity
        impulse[:, 2] *= self.settings.z_spread_factor
        impulse[self.fixed] = 0.0
        self.velocities += impulse
        self._reset_energy()
        if not self.is_running:
            self.start()

    def _reset_energy(self) -> None:
        self.energy = math.inf
        self.smoothed_energy = math.inf
        self._last_kick_time = self.clock()
        self._below_threshold_since = None

    # ------------------------------------------------------------------
    # Forces
    # ------------------------------------------------------------------

    def _repulsion_forces(self) -> np.ndarray:
        s = self.settings
        n = len(self.ids)
        delta = self.positions[:, None, :] - self.positions[None, :, :]  # i - j
        dist_sq = np.einsum("ijk,ijk->ij", delta, delta)
        np.fill_diagonal(dist_sq, np.inf)

        coincident = np.argwhere(np.triu(dist_sq < COINCIDENT_DIST_SQ, k=1))
        for i, j in coincident:
            push = self.rng.normal(size=3)
            push = push / max(np.linalg.norm(push), 1e-9) * 0.1
            delta[i, j] = push
            delta[j, i] = -push
            dist_sq[i, j] = dist_sq[j, i] = COINCIDENT_DIST_SQ

        dist = np.sqrt(dist_sq)
        magnitude = s.repulsion / dist_sq
        combined = (self.radii[:, None] + self.radii[None, :]) * s.node_padding
        overlap = np.clip(combined - dist, 0.0, None)
        magnitude = magnitude + s.repulsion * overlap ** 2 * 0.01 / dist
        np.fill_diagonal(magnitude, 0.0)

        delta_len = np.linalg.norm(delta, axis=2)
        delta_len[delta_len < 1e-9] = 1.0
        direction = delta / delta_len[:, :, None]
        forces = np.einsum("ij,ijk->ik", magnitude, direction) if n else np.zeros((0, 3))
        forces[:, 2] *= s.z_spread_factor
        return forces

    def _edge_forces(self) -> np.ndarray:
        s = self.settings
        forces = np.zeros_like(self.positions)
        if not self.edges:
            return forces
        src = np.array([self.index[e.source_id] for e in self.edges.values()])
        tgt = np.array([self.index[e.target_id] for e in self.edges.values()])
        targets = np.empty(len(src))
        stiffness = np.empty(len(src))
        for k, edge in enumerate(self.edges.values()):
            params = edge.constraint_params
            if edge.constraint_type == ConstraintType.RIGID:
                targets[k] = params.distance if params.distance is not None else s.default_elastic_ideal_length
                stiffness[k] = params.stiffness if params.stiffness is not None else s.default_rigid_stiffness
            elif edge.constraint_type == ConstraintType.WELD:
                targets[k] = (params.distance if params.distance is not None
                              else self.radii[src[k]] + self.radii[tgt[k]])
                stiffness[k] = params.stiffness if params.stiffness is not None else s.default_weld_stiffness
            else:
                targets[k] = (params.ideal_length if params.ideal_length is not None
                              else s.default_elastic_ideal_length)
                stiffness[k] = (params.stiffness if params.stiffness is not None
                                else s.default_elastic_stiffness)

        delta = self.positions[tgt] - self.positions[src]
        dist = np.linalg.norm(delta, axis=1) + 1e-6
        pull = (stiffness * (dist - targets) / dist)[:, None] * delta
        pull[:, 2] *= s.z_spread_factor
        np.add.at(forces, src, pull)
        np.add.at(forces, tgt, -pull)
        return forces

    def _gravity_forces(self) -> np.ndarray:
        s = self.settings
        forces = (as_vec3(s.gravity_center) - self.positions) * s.center_strength
        forces[:, 2] *= s.z_spread_factor * 0.5
        return forces

    def _cluster_forces(self) -> np.ndarray:
        forces = np.zeros_like(self.positions)
        clusters: Dict[str, List[int]] = {}
        for i, cluster_id in enumerate(self.cluster_ids):
            if cluster_id is not None:
                clusters.setdefault(cluster_id, []).append(i)
        for members in clusters.values():
            if len(members) < 2:
                continue
            centroid = self.positions[members].mean(axis=0)
            forces[members] += (centroid - self.positions[members]) * self.settings.cluster_strength
        return forces

    def compute_forces(self) -> np.ndarray:
        forces = self._repulsion_forces() + self._edge_forces() + self._gravity_forces()
        if self.settings.enable_clustering:
            forces += self._cluster_forces()
        return forces

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def step(self) -> float:
        """Execute one integration step, return total kinetic energy"""
        s = self.settings
        if len(self.ids) == 0:
            self.energy = 0.0
            return self.energy

        forces = self.compute_forces()
        free = ~self.fixed

        v = (self.velocities[free] + forces[free] / self.masses[free, None]) * s.damping
        v[~np.all(np.isfinite(v), axis=1)] = 0.0
        speed = np.linalg.norm(v, axis=1)
        too_fast = speed > s.max_speed
        v[too_fast] *= (s.max_speed / speed[too_fast])[:, None]

        p = self.positions[free] + v
        lost = ~np.all(np.isfinite(p), axis=1)
        p[lost] = 0.0
        v[lost] = 0.0

        self.positions[free] = p
        self.velocities[free] = v
        self.velocities[self.fixed] = 0.0

        self.energy = float(0.5 * np.sum(self.masses[free] * np.einsum("ij,ij->i", v, v)))
        if math.isinf(self.smoothed_energy):
            self.smoothed_energy = self.energy
        else:
            alpha = s.energy_smoothing
            self.smoothed_energy = alpha * self.energy + (1 - alpha) * self.smoothed_energy
        self.step_count += 1
        return self.energy

    def should_stop(self) -> bool:
        """True once the smoothed energy has stayed low for ``auto_stop_delay``."""
        if self.smoothed_energy >= self.settings.min_energy_threshold:
            self._below_threshold_since = None
            return False
        now = self.clock()
        if self._below_threshold_since is None:
            self._below_threshold_since = now
        quiet_since = max(self._below_threshold_since, self._last_kick_time)
        return now - quiet_since >= self.settings.auto_stop_delay

    def run_until_stable(self, max_steps: int = 1000) -> int:
        """Step synchronously until the energy threshold is reached or ``max_steps``.

        Used where no background thread is wanted (batch requests, benchmarks).
        Returns the number of steps taken.
        """
        for i in range(max_steps):
            self.step()
            if self.smoothed_energy < self.settings.min_energy_threshold:
                logger.info(f"Simulation settled after {i + 1} steps (energy={self.energy:.4f})")
                return i + 1
            if i % 100 == 0:
                logger.debug(f"Step {i}: energy={self.energy:.4f}")
        logger.warning(f"Simulation did not settle after {max_steps} steps")
        return max_steps

    def positions_payload(self) -> List[Dict[str, Any]]:
        return [
            {"id": node_id, "x": float(x), "y": float(y), "z": float(z)}
            for node_id, (x, y, z) in zip(self.ids, self.positions)
        ]

# ============================================================================
# BACKGROUND WORKER
# ============================================================================

_TERMINATE = {"type": "__terminate__"}


class SimulationWorker:
    """Runs a ``ForceSimulation`` on its own daemon thread.

    The thread blocks on the command queue while idle and steps every
    ``step_interval`` seconds while running. Any exception is posted as an
    ``error`` event and ends the thread.
    """

    def __init__(self, commands: "queue.Queue", events: "queue.Queue", name: str = "force-simulation"):
        self.commands = commands
        self.events = events
        self.simulation = ForceSimulation()
        self.generation = 0
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._last_step = 0.0

    def start(self) -> None:
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def terminate(self, timeout: float = 1.0) -> None:
        self.commands.put(_TERMINATE)
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _wait_timeout(self) -> Optional[float]:
        if not self.simulation.is_running:
            return None
        elapsed = time.monotonic() - self._last_step
        return max(0.0, self.simulation.settings.step_interval - elapsed)

    def _emit(self, kind: EventType, **fields) -> None:
        self.events.put({"type": kind.value, "generation": self.generation, **fields})

    def _run(self) -> None:
        try:
            while True:
                try:
                    message = self.commands.get(timeout=self._wait_timeout())
                except queue.Empty:
                    message = None
                if message is _TERMINATE:
                    break
                if message is not None:
                    self._dispatch(message)
                if self.simulation.is_running and \
                        time.monotonic() - self._last_step >= self.simulation.settings.step_interval:
                    self._tick()
        except Exception as e:
            logger.exception("Force simulation failed")
            self.simulation.is_running = False
            self._emit(EventType.ERROR, error=str(e))
        logger.debug("Simulation thread exiting")

    def _tick(self) -> None:
        sim = self.simulation
        energy = sim.step()
        self._last_step = time.monotonic()
        self._emit(EventType.POSITIONS_UPDATE, positions=sim.positions_payload(), energy=energy)
        if sim.should_stop():
            sim.stop()
            logger.info(f"Simulation auto-stopped after {sim.step_count} steps (energy={energy:.4f})")
            self._emit(EventType.STOPPED, energy=energy)

    def _dispatch(self, message: Dict[str, Any]) -> None:
        sim = self.simulation
        kind = message.get("type")
        payload = message.get("payload") or {}

        if kind == CommandType.INIT:
            init = InitPayload.model_validate(payload)
            # a fresh graph waits for an explicit start
            sim.stop()
            self.generation = init.generation
            sim.update_settings(init.settings)
            sim.load(init.nodes, init.edges)
        elif kind == CommandType.START:
            self.generation = int(payload.get("generation", self.generation))
            sim.start()
        elif kind == CommandType.STOP:
            if sim.is_running:
                sim.stop()
                self._emit(EventType.STOPPED, energy=sim.energy, requested=True)
        elif kind == CommandType.KICK:
            sim.kick(float(payload.get("intensity", 1.0)))
        elif kind == CommandType.ADD_NODE:
            sim.add_node(WorkerNode.model_validate(payload))
            sim.start()
        elif kind == CommandType.REMOVE_NODE:
            sim.remove_node(payload["node_id"])
            if len(sim.ids) < 2 and sim.is_running:
                sim.stop()
                self._emit(EventType.STOPPED, energy=sim.energy)
        elif kind == CommandType.ADD_EDGE:
            sim.add_edge(WorkerEdge.model_validate(payload))
        elif kind == CommandType.REMOVE_EDGE:
            sim.remove_edge(RemoveEdgePayload.model_validate(payload))
        elif kind == CommandType.UPDATE_NODE_STATE:
            sim.update_node_state(NodeStatePayload.model_validate(payload))
        elif kind == CommandType.UPDATE_SETTINGS:
            sim.update_settings(payload)
            if sim.is_running:
                sim._reset_energy()
            else:
                sim.start()
        else:
            logger.warning(f"Ignoring unknown simulation command: {kind}")
