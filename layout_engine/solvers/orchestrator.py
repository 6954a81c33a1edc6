"""
Layout orchestration: one active strategy, animated switches.
"""
from typing import Any, Dict, Optional
from dataclasses import dataclass
import logging

from ..graph import EDGE_ADDED, EDGE_REMOVED, NODE_ADDED, NODE_REMOVED, LayoutGraph
from ..utils.tween import PositionTween
from .base import LayoutStrategy
from .registry import STRATEGIES, create_strategy

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorSettings:
    transition_duration: float = 0.7
    transition_easing: str = "power2.inOut"


class LayoutOrchestrator:
    """Holds the registered strategies and switches between them.

    ``apply_layout`` lets the new strategy compute its targets, resets every
    node to where it was and tweens it to the target; the strategy's
    ``run()`` is called once the tween completes inside ``update(dt)``.
    Graph mutations are forwarded to the active strategy only.
    """

    def __init__(self, graph: LayoutGraph, settings: Optional[OrchestratorSettings] = None,
                 register_defaults: bool = True):
        self.graph = graph
        self.settings = settings or OrchestratorSettings()
        self.layouts: Dict[str, LayoutStrategy] = {}
        self.active_layout: Optional[LayoutStrategy] = None
        self.active_layout_name: Optional[str] = None
        self._transition: Optional[PositionTween] = None

        self._subscriptions = [
            (NODE_ADDED, lambda p: self.add_node(p["node"])),
            (NODE_REMOVED, lambda p: self.remove_node(p["node"])),
            (EDGE_ADDED, lambda p: self.add_edge(p["edge"])),
            (EDGE_REMOVED, lambda p: self.remove_edge(p["edge"])),
        ]
        for event, handler in self._subscriptions:
            graph.on(event, handler)

        if register_defaults:
            for name in STRATEGIES:
                self.register_layout(name, create_strategy(name))

    def register_layout(self, name: str, layout: LayoutStrategy) -> None:
        if name in self.layouts:
            logger.warning(f"Layout '{name}' is already registered. Overwriting.")
        layout.set_context(self.graph)
        self.layouts[name] = layout

    @property
    def is_transitioning(self) -> bool:
        return self._transition is not None

    def _finish_transition(self) -> None:
        if self._transition is not None:
            self._transition.finish()

    def _stop_active(self) -> None:
        if self._transition is not None:
            self._transition.cancel()
            self._transition = None
        if self.active_layout is not None:
            self.active_layout.stop()
            self.graph.emit("layout:stopped", {"name": self.active_layout_name})

    def apply_layout(self, name: str, config: Optional[Dict[str, Any]] = None) -> bool:
        layout = self.layouts.get(name)
        if layout is None:
            logger.error(f"Layout '{name}' not found")
            return False

        self._stop_active()
        self.active_layout = layout
        self.active_layout_name = name

        nodes = self.graph.get_node_list()
        edges = self.graph.get_edge_list()
        old_positions = {node.id: node.position.copy() for node in nodes}
        layout.init(nodes, edges, config or {})

        tracks = {}
        for node in nodes:
            target = node.position.copy()
            node.position[:] = old_positions[node.id]
            tracks[node] = (old_positions[node.id], target)
        logger.info(f"Applying layout '{name}' to {len(nodes)} nodes")
        self._transition = PositionTween(tracks, self.settings.transition_duration,
                                         self.settings.transition_easing, on_complete=self._start_active)
        if self.settings.transition_duration <= 0:
            self._transition.finish()
        return True

    def _start_active(self) -> None:
        self._transition = None
        if self.active_layout is None:
            return
        self.graph.emit("layout:started", {"name": self.active_layout_name})
        self.active_layout.run()

    def stop_layout(self) -> None:
        self._stop_active()

    def update(self, dt: float) -> None:
        """Advance transitions and pump the active strategy."""
        if self._transition is not None:
            self._transition.update(dt)
        if self.active_layout is not None:
            self.active_layout.update(dt)

    def kick(self, intensity: float = 1.0) -> None:
        if self.active_layout is not None:
            self.active_layout.kick(intensity)

    def add_node(self, node) -> None:
        if self.active_layout is not None:
            self.active_layout.add_node(node)

    def remove_node(self, node) -> None:
        if self._transition is not None:
            self._transition.tracks.pop(node, None)
        if self.active_layout is not None:
            self.active_layout.remove_node(node)

    def add_edge(self, edge) -> None:
        if self.active_layout is not None:
            self.active_layout.add_edge(edge)

    def remove_edge(self, edge) -> None:
        if self.active_layout is not None:
            self.active_layout.remove_edge(edge)

    def get_active_layout(self) -> Optional[LayoutStrategy]:
        return self.active_layout

    def get_active_layout_name(self) -> Optional[str]:
        return self.active_layout_name

    def dispose(self) -> None:
        self._stop_active()
        for event, handler in self._subscriptions:
            self.graph.off(event, handler)
        for layout in self.layouts.values():
            layout.dispose()
        self.layouts = {}
        self.active_layout = None
        self.active_layout_name = None
