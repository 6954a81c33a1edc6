"""
Caller-side proxy for the background force simulation.

The proxy owns the worker thread and both channels. Commands are posted
fire-and-forget; positions come back only through ``positionsUpdate``
events, which ``update()`` drains on the caller's thread and writes onto
the graph nodes.
"""
from typing import Any, Dict, Iterable, Optional, Set
import logging
import queue
import time

from ..errors import SimulationLostError
from ..schemas.simulation import (
    CommandType,
    ConstraintParams,
    ConstraintType,
    EventType,
    WorkerEdge,
    WorkerNode,
)
from .base import LayoutStrategy, apply_config
from .impl.force_simulation import ForceSettings, SimulationWorker

logger = logging.getLogger(__name__)


def to_worker_node(node, is_fixed: bool = False) -> WorkerNode:
    x, y, z = (float(c) for c in node.position)
    return WorkerNode(
        id=node.id,
        x=x, y=y, z=z,
        mass=getattr(node, "mass", 1.0) or 1.0,
        is_fixed=is_fixed or node.is_pinned,
        is_pinned=node.is_pinned,
        radius=node.get_bounding_sphere_radius() or 10.0,
        cluster_id=node.data.get("cluster_id"),
    )


def to_worker_edge(edge) -> WorkerEdge:
    data = edge.data or {}
    try:
        constraint_type = ConstraintType(data.get("constraint_type", "elastic"))
    except ValueError:
        logger.warning(f"Edge {edge.id}: unknown constraint type {data.get('constraint_type')!r}, using elastic")
        constraint_type = ConstraintType.ELASTIC
    return WorkerEdge(
        id=edge.id,
        source_id=edge.source.id,
        target_id=edge.target.id,
        constraint_type=constraint_type,
        constraint_params=ConstraintParams(**(data.get("constraint_params") or {})),
    )


class ForceLayout(LayoutStrategy):
    """Force-directed layout computed on a background thread."""

    name = "force"

    def __init__(self, settings: Optional[ForceSettings] = None, graph=None):
        super().__init__(graph)
        self.settings = settings or ForceSettings()
        self.energy = float("inf")
        self.is_dead = False
        self._fixed: Set[str] = set()
        # bumped on init and start; events from older generations are dropped
        self._generation = 0
        self._commands: Optional[queue.Queue] = None
        self._events: Optional[queue.Queue] = None
        self._worker: Optional[SimulationWorker] = None

    # ------------------------------------------------------------------
    # Channel management
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        if self._worker is not None:
            return
        self._commands = queue.Queue()
        self._events = queue.Queue()
        self._worker = SimulationWorker(self._commands, self._events, name=f"force-simulation-{id(self):x}")
        self._worker.start()

    def _post(self, kind: CommandType, payload: Optional[Dict[str, Any]] = None) -> bool:
        if self.is_dead:
            logger.warning(f"Dropping '{kind.value}' command: simulation is gone, recreate the layout")
            return False
        if self._worker is None:
            logger.warning(f"Dropping '{kind.value}' command: layout not initialized")
            return False
        self._commands.put({"type": kind.value, "payload": payload or {}})
        return True

    # ------------------------------------------------------------------
    # Strategy contract
    # ------------------------------------------------------------------

    def init(self, nodes: Iterable[Any], edges: Iterable[Any], config: Optional[Dict[str, Any]] = None):
        apply_config(self.settings, config, owner=self.name)
        self.nodes = {n.id: n for n in nodes}
        self.edges = {}
        for edge in edges:
            if edge.source.id in self.nodes and edge.target.id in self.nodes:
                self.edges[edge.id] = edge
            else:
                logger.warning(f"Skipping edge {edge.id}: endpoint not in layout")
        self._fixed = set()
        self._ensure_worker()
        self._discard_events()
        self.is_running = False
        self.energy = float("inf")
        self._generation += 1
        self._post(CommandType.INIT, {
            "nodes": [to_worker_node(n).model_dump() for n in self.nodes.values()],
            "edges": [to_worker_edge(e).model_dump(mode="json") for e in self.edges.values()],
            "settings": self.settings.to_dict(),
            "generation": self._generation,
        })
        logger.info(f"Force layout initialized: {len(self.nodes)} nodes, {len(self.edges)} edges")

    def _discard_events(self) -> None:
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return
            if event.get("type") == EventType.ERROR:
                self._handle_event(event)

    def run(self) -> None:
        if len(self.nodes) < 2:
            logger.info("Force layout needs at least 2 nodes to run")
            return
        # START is sent even when already running: the engine may have
        # auto-stopped without the event being drained yet
        self._generation += 1
        if self._post(CommandType.START, {"generation": self._generation}):
            was_running = self.is_running
            self.is_running = True
            if not was_running:
                self._emit("layout:started", {"name": f"{self.name} (worker)"})

    def stop(self) -> None:
        """Stop the engine. Whoever asks for the stop announces it."""
        if self._post(CommandType.STOP):
            self.is_running = False

    def kick(self, intensity: float = 1.0) -> None:
        if self._post(CommandType.KICK, {"intensity": intensity}) and not self.is_running:
            self.is_running = len(self.nodes) >= 2

    def add_node(self, node) -> None:
        self.nodes[node.id] = node
        if self._post(CommandType.ADD_NODE, to_worker_node(node).model_dump()) and not self.is_running:
            self.is_running = len(self.nodes) >= 2

    def remove_node(self, node) -> None:
        self.nodes.pop(node.id, None)
        self._fixed.discard(node.id)
        self.edges = {eid: e for eid, e in self.edges.items() if node.id not in (e.source.id, e.target.id)}
        self._post(CommandType.REMOVE_NODE, {"node_id": node.id})

    def add_edge(self, edge) -> None:
        if edge.source.id not in self.nodes or edge.target.id not in self.nodes:
            logger.warning(f"Skipping edge {edge.id}: endpoint not in layout")
            return
        self.edges[edge.id] = edge
        self._post(CommandType.ADD_EDGE, to_worker_edge(edge).model_dump(mode="json"))

    def remove_edge(self, edge) -> None:
        self.edges.pop(edge.id, None)
        self._post(CommandType.REMOVE_EDGE, {
            "edge_id": edge.id,
            "source_id": edge.source.id,
            "target_id": edge.target.id,
        })

    def update_config(self, config: Optional[Dict[str, Any]]) -> None:
        self.set_settings(config or {})

    def set_settings(self, settings: Dict[str, Any]) -> None:
        """Merge settings locally and forward them to the engine."""
        apply_config(self.settings, settings, owner=self.name)
        if self._worker is not None and self._post(CommandType.UPDATE_SETTINGS, dict(settings)):
            # the engine restarts an idle simulation on new settings
            self.is_running = self.is_running or len(self.nodes) >= 2

    # ------------------------------------------------------------------
    # Pinning / dragging
    # ------------------------------------------------------------------

    def _send_node_state(self, node, position: bool = False) -> None:
        payload = {
            "node_id": node.id,
            "is_fixed": node.is_pinned or node.id in self._fixed,
            "is_pinned": node.is_pinned,
        }
        if position:
            payload["position"] = tuple(float(c) for c in node.position)
        self._post(CommandType.UPDATE_NODE_STATE, payload)

    def toggle_pin_node(self, node_id: str) -> Optional[bool]:
        node = self.nodes.get(node_id)
        if node is None:
            logger.warning(f"Cannot toggle pin on unknown node {node_id}")
            return None
        node.is_pinned = not node.is_pinned
        self._send_node_state(node, position=node.is_pinned)
        if not node.is_pinned:
            self.kick(0.3)
        return node.is_pinned

    def fix_node(self, node) -> None:
        """Hold a node at its current position, e.g. while it is dragged."""
        if node.id not in self.nodes:
            return
        self._fixed.add(node.id)
        self._send_node_state(node, position=True)

    def release_node(self, node) -> None:
        if node.id not in self._fixed:
            return
        self._fixed.discard(node.id)
        self._send_node_state(node, position=True)
        self.kick(0.3)

    # ------------------------------------------------------------------
    # Event pump
    # ------------------------------------------------------------------

    def update(self, dt: float = 0.0) -> None:
        """Drain engine events and mirror positions onto nodes."""
        if self._events is None:
            return
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            self._handle_event(event)
        if self._worker is not None and not self.is_dead and not self._worker.is_alive():
            self._mark_dead(str(SimulationLostError("Force simulation thread terminated unexpectedly")))

    def _handle_event(self, event: Dict[str, Any]) -> None:
        kind = event.get("type")
        if kind != EventType.ERROR and event.get("generation", self._generation) != self._generation:
            return
        if kind == EventType.POSITIONS_UPDATE:
            for update in event.get("positions", []):
                node = self.nodes.get(update["id"])
                if node is None or node.is_pinned or node.id in self._fixed:
                    continue
                node.position[0] = update["x"]
                node.position[1] = update["y"]
                node.position[2] = update["z"]
            self.energy = event.get("energy", self.energy)
        elif kind == EventType.STOPPED:
            self.is_running = False
            self.energy = event.get("energy", self.energy)
            if event.get("requested"):
                logger.debug(f"Force engine confirmed stop (energy={self.energy:.4f})")
                return
            logger.info(f"Force layout settled (energy={self.energy:.4f})")
            self._emit("layout:stopped", {"name": self.name})
        elif kind == EventType.ERROR:
            self._mark_dead(event.get("error", "unknown error"))
        else:
            logger.warning(f"Ignoring unknown simulation event: {kind}")

    def _mark_dead(self, message: str) -> None:
        self.is_dead = True
        self.is_running = False
        logger.error(f"Force layout failed: {message}")
        self._emit("layout:error", {"error": message, "name": self.name})

    def wait_until_stopped(self, timeout: float = 10.0, poll: float = 0.01) -> bool:
        """Pump events until the engine reports 'stopped' or ``timeout`` elapses."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            self.update()
            if not self.is_running or self.is_dead:
                return not self.is_dead
            time.sleep(poll)
        return False

    def dispose(self) -> None:
        if self._worker is not None:
            self._worker.terminate()
        self._worker = None
        self._commands = None
        self._events = None
        self._fixed = set()
        self.is_running = False
        self.nodes = {}
        self.edges = {}
        self.graph = None
