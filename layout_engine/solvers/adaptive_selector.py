"""
Adaptive layout selection.

Computes shape metrics for the current graph, picks the best-fit layout
from a prioritized rule list and morphs nodes from their old positions to
the new layout's targets. Re-evaluation is debounced after graph
mutations and can optionally rotate through a fixed pattern on a timer.
All timing is driven by ``update(dt)``.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import logging
import time

from ..errors import UnknownStrategyError
from ..utils.tween import PositionTween
from .base import LayoutStrategy, apply_config
from .metrics import GraphMetrics, calculate_graph_metrics
from .registry import create_strategy

logger = logging.getLogger(__name__)

# ============================================================================
# SETTINGS & RULES
# ============================================================================

@dataclass
class AdaptiveSettings:
    """Adaptive layout parameters (times in seconds)"""
    morph_duration: float = 1.2
    morph_easing: str = "power2.inOut"
    enable_auto_adaptation: bool = True
    adaptation_delay: float = 2.0
    density_thresholds: Dict[str, float] = field(
        default_factory=lambda: {"sparse": 0.1, "normal": 0.4, "dense": 0.8})
    size_thresholds: Dict[str, int] = field(
        default_factory=lambda: {"small": 50, "medium": 200, "large": 500})
    time_based_adaptation: Dict[str, Any] = field(
        default_factory=lambda: {
            "enabled": False,
            "interval": 30.0,
            "patterns": ["circular", "grid", "force", "hierarchical"],
        })


@dataclass
class AdaptationRule:
    name: str
    condition: Callable[[GraphMetrics], bool]
    target_layout: str
    priority: int = 5
    description: str = "Custom adaptation rule"


@dataclass
class HistoryEntry:
    layout: str
    reason: str
    timestamp: float
    node_count: int
    edge_count: int


class AdaptiveSelector(LayoutStrategy):
    """Picks and morphs between layouts as the graph changes."""

    name = "adaptive"

    def __init__(self,
                 settings: Optional[AdaptiveSettings] = None,
                 graph=None,
                 strategy_factory: Callable[..., LayoutStrategy] = create_strategy):
        super().__init__(graph)
        self.settings = settings or AdaptiveSettings()
        self.strategy_factory = strategy_factory
        self.available_layouts: Dict[str, LayoutStrategy] = {}
        self.adaptation_rules: List[AdaptationRule] = []
        self.layout_history: List[HistoryEntry] = []
        self.current_layout: Optional[LayoutStrategy] = None
        self.current_layout_name = ""
        self.is_adapting = False
        self._morph: Optional[PositionTween] = None
        self._pending_check: Optional[float] = None
        self._since_rotation = 0.0
        self._initialize_adaptation_rules()

    def _initialize_adaptation_rules(self) -> None:
        s = self.settings
        self.adaptation_rules = [
            AdaptationRule("SmallNodeCount",
                           lambda m: m.node_count <= s.size_thresholds["small"],
                           "circular", 1, "Small graphs read best on a circle"),
            AdaptationRule("HighDensity",
                           lambda m: m.density > s.density_thresholds["dense"],
                           "force", 2, "Dense graphs need force-directed separation"),
            AdaptationRule("HierarchicalStructure",
                           lambda m: m.hierarchy_score > 0.7,
                           "hierarchical", 3, "Tree-like structure"),
            AdaptationRule("GridSuitable",
                           lambda m: m.connection_density < 0.3 and m.node_count > 16,
                           "grid", 4, "Many loosely connected nodes"),
            AdaptationRule("LargeGraph",
                           lambda m: m.node_count > s.size_thresholds["large"],
                           "force", 5, "Large graphs"),
            AdaptationRule("HighlyConnected",
                           lambda m: m.average_degree > 5,
                           "force", 6, "High average degree"),
        ]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def add_adaptation_rule(self, name: str, condition: Callable[[GraphMetrics], bool], target_layout: str,
                            priority: int = 5, description: str = "Custom adaptation rule") -> AdaptationRule:
        rule = AdaptationRule(name, condition, target_layout, priority, description)
        self.adaptation_rules.append(rule)
        return rule

    def remove_adaptation_rule(self, name: str) -> bool:
        before = len(self.adaptation_rules)
        self.adaptation_rules = [r for r in self.adaptation_rules if r.name != name]
        return len(self.adaptation_rules) < before

    def select_layout(self, metrics: GraphMetrics) -> Tuple[str, str]:
        """Return (layout name, reason) for ``metrics``.

        Rules are tried in ascending priority; rules sharing a priority keep
        their registration order, so the result is deterministic.
        """
        for rule in sorted(self.adaptation_rules, key=lambda r: r.priority):
            try:
                matched = rule.condition(metrics)
            except Exception:
                logger.exception(f"Adaptation rule {rule.name} failed; skipping it")
                continue
            if matched:
                logger.debug(f"Selected {rule.target_layout} - {rule.description}")
                return rule.target_layout, rule.name

        if metrics.node_count < 20:
            return "circular", "fallback"
        if metrics.hierarchy_score > 0.5:
            return "hierarchical", "fallback"
        if metrics.density > 0.5:
            return "force", "fallback"
        return "grid", "fallback"

    def calculate_graph_metrics(self, nodes=None, edges=None) -> GraphMetrics:
        nodes = list(self.nodes.values()) if nodes is None else nodes
        edges = list(self.edges.values()) if edges is None else edges
        return calculate_graph_metrics(nodes, edges)

    # ------------------------------------------------------------------
    # Layout management
    # ------------------------------------------------------------------

    def register_layout(self, name: str, layout: LayoutStrategy) -> None:
        layout.set_context(self.graph)
        self.available_layouts[name] = layout

    def _get_layout(self, name: str) -> Optional[LayoutStrategy]:
        layout = self.available_layouts.get(name)
        if layout is None:
            try:
                layout = self.strategy_factory(name, graph=self.graph)
            except UnknownStrategyError as e:
                logger.warning(f"Adaptive layout: {e}")
                return None
            self.available_layouts[name] = layout
        return layout

    def apply_layout(self, name: str, reason: str = "adaptive_selection") -> bool:
        layout = self._get_layout(name)
        if layout is None:
            return False
        nodes = list(self.nodes.values())
        edges = list(self.edges.values())
        previous_name = self.current_layout_name
        old_positions = {node.id: node.position.copy() for node in nodes}

        if self._morph is not None:
            self._morph.cancel()
            self._morph = None
        if self.current_layout is not None and self.current_layout is not layout:
            self.current_layout.stop()

        layout.init(nodes, edges)
        self.current_layout = layout
        self.current_layout_name = name

        self.layout_history.append(HistoryEntry(name, reason, time.time(), len(nodes), len(edges)))
        logger.info(f"Adapting layout from '{previous_name or 'none'}' to '{name}' ({reason})")
        self._emit("layout:adapted", {"from": previous_name, "to": name, "reason": reason})

        if previous_name and previous_name != name and self.settings.morph_duration > 0:
            tracks = {}
            for node in nodes:
                if node.is_pinned:
                    continue
                target = node.position.copy()
                node.position[:] = old_positions[node.id]
                tracks[node] = (old_positions[node.id], target)
            self.is_adapting = True
            self._morph = PositionTween(tracks, self.settings.morph_duration,
                                        self.settings.morph_easing, on_complete=self._finish_adaptation)
        else:
            self._finish_adaptation()
        return True

    def _finish_adaptation(self) -> None:
        self.is_adapting = False
        self._morph = None
        if self.is_running and self.current_layout is not None:
            self.current_layout.run()

    def check_for_adaptation(self) -> bool:
        """Re-select a layout for the current graph. Returns True if it changed."""
        if self.is_adapting:
            logger.debug("Adaptation already in flight; skipping check")
            return False
        metrics = self.calculate_graph_metrics()
        best, reason = self.select_layout(metrics)
        if best == self.current_layout_name:
            return False
        return self.apply_layout(best, reason)

    def perform_time_based_adaptation(self) -> bool:
        timed = self.settings.time_based_adaptation
        if self.is_adapting or not timed.get("enabled"):
            return False
        patterns = list(timed.get("patterns") or [])
        if not patterns:
            return False
        current = patterns.index(self.current_layout_name) if self.current_layout_name in patterns else -1
        return self.apply_layout(patterns[(current + 1) % len(patterns)], "time_based")

    def force_adaptation(self, name: str, reason: str = "forced") -> bool:
        return self.apply_layout(name, reason)

    def set_adaptation_enabled(self, enabled: bool) -> None:
        self.settings.enable_auto_adaptation = enabled
        if not enabled:
            self._pending_check = None

    def _schedule_check(self) -> None:
        if self.settings.enable_auto_adaptation:
            self._pending_check = self.settings.adaptation_delay

    # ------------------------------------------------------------------
    # Strategy contract
    # ------------------------------------------------------------------

    def init(self, nodes, edges, config: Optional[Dict[str, Any]] = None):
        apply_config(self.settings, config, owner=self.name)
        self.nodes = {n.id: n for n in nodes}
        self.edges = {e.id: e for e in edges}
        metrics = self.calculate_graph_metrics()
        best, reason = self.select_layout(metrics)
        logger.info(f"Adaptive layout initialized: {metrics.node_count} nodes, "
                    f"{metrics.edge_count} edges -> {best}")
        self.apply_layout(best, reason)

    def run(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._emit("layout:started", {"name": self.name})
        if not self.is_adapting and self.current_layout is not None:
            self.current_layout.run()

    def stop(self) -> None:
        self.is_running = False
        if self.current_layout is not None:
            self.current_layout.stop()

    def kick(self, intensity: float = 1.0) -> None:
        if self.current_layout is not None:
            self.current_layout.kick(intensity)

    def update(self, dt: float) -> None:
        if self._morph is not None:
            self._morph.update(dt)
        if self.current_layout is not None:
            self.current_layout.update(dt)
        if not self.settings.enable_auto_adaptation:
            return
        if self._pending_check is not None:
            self._pending_check -= dt
            if self._pending_check <= 0:
                self._pending_check = None
                self.check_for_adaptation()
        timed = self.settings.time_based_adaptation
        if timed.get("enabled"):
            self._since_rotation += dt
            if self._since_rotation >= timed.get("interval", 30.0):
                self._since_rotation = 0.0
                self.perform_time_based_adaptation()

    def add_node(self, node) -> None:
        self.nodes[node.id] = node
        if self.current_layout is not None:
            self.current_layout.add_node(node)
        self._schedule_check()

    def remove_node(self, node) -> None:
        self.nodes.pop(node.id, None)
        self.edges = {eid: e for eid, e in self.edges.items() if node.id not in (e.source.id, e.target.id)}
        if self._morph is not None:
            self._morph.tracks.pop(node, None)
        if self.current_layout is not None:
            self.current_layout.remove_node(node)
        self._schedule_check()

    def add_edge(self, edge) -> None:
        self.edges[edge.id] = edge
        if self.current_layout is not None:
            self.current_layout.add_edge(edge)
        self._schedule_check()

    def remove_edge(self, edge) -> None:
        self.edges.pop(edge.id, None)
        if self.current_layout is not None:
            self.current_layout.remove_edge(edge)
        self._schedule_check()

    def dispose(self) -> None:
        if self._morph is not None:
            self._morph.cancel()
            self._morph = None
        for layout in self.available_layouts.values():
            layout.dispose()
        self.available_layouts = {}
        self.current_layout = None
        self.current_layout_name = ""
        self._pending_check = None
        super().dispose()
