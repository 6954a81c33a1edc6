"""
Hybrid layout composition.

Extends the orchestrator with four modes on top of the plain strategies:
constraint solving, nested containers, adaptive selection, and a hybrid
mode that runs every enabled system in a fixed order and keeps all of
them fed with graph mutations. The connection router runs alongside
whatever mode is active.
"""
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import asdict, dataclass
from enum import Enum
import logging

from ..graph import LayoutGraph
from .adaptive_selector import AdaptiveSelector
from .base import LayoutStrategy
from .connection_router import ConnectionRouter
from .constraint_solver import ConstraintSolver
from .metrics import calculate_graph_metrics, complexity_score
from .nested_layout import NestedLayoutComposer, is_container
from .orchestrator import LayoutOrchestrator, OrchestratorSettings

logger = logging.getLogger(__name__)


class LayoutMode(str, Enum):
    STANDARD = "standard"
    CONSTRAINT = "constraint"
    NESTED = "nested"
    ADAPTIVE = "adaptive"
    HYBRID = "hybrid"


# Order in which hybrid mode applies the enabled systems
HYBRID_ORDER: Tuple[LayoutMode, ...] = (
    LayoutMode.ADAPTIVE,
    LayoutMode.NESTED,
    LayoutMode.CONSTRAINT,
    LayoutMode.STANDARD,
)

# Keys consumed by the composer itself, never forwarded to a strategy
_ROUTING_KEYS = ("mode", "base_layout")


@dataclass
class HybridSettings(OrchestratorSettings):
    transition_duration: float = 0.8
    enable_connections: bool = True
    enable_constraints: bool = False
    enable_nesting: bool = False
    enable_adaptive: bool = False
    auto_mode_selection: bool = False
    complexity_threshold: float = 0.7


class _HybridProxy(LayoutStrategy):
    """Stands in as the active strategy and fans calls out to the enabled systems."""

    name = "hybrid"

    def __init__(self, composer: "HybridComposer", base: Optional[LayoutStrategy] = None):
        super().__init__(composer.graph)
        self.composer = composer
        # the plain strategy the hybrid run started from, driven after the advanced systems
        self.base = base

    def _systems(self) -> List[LayoutStrategy]:
        systems = self.composer.enabled_systems()
        if self.base is not None and self.base not in systems:
            systems.append(self.base)
        return systems

    def init(self, nodes, edges, config: Optional[Dict[str, Any]] = None):
        nodes = list(nodes)
        edges = list(edges)
        for system in self._systems():
            system.init(nodes, edges, config)

    def run(self) -> None:
        self.is_running = True
        for system in self._systems():
            system.run()

    def stop(self) -> None:
        self.is_running = False
        for system in self._systems():
            system.stop()

    def kick(self, intensity: float = 1.0) -> None:
        for system in self._systems():
            system.kick(intensity)

    def update(self, dt: float) -> None:
        for system in self._systems():
            system.update(dt)

    def add_node(self, node) -> None:
        for system in self._systems():
            system.add_node(node)

    def remove_node(self, node) -> None:
        for system in self._systems():
            system.remove_node(node)

    def add_edge(self, edge) -> None:
        for system in self._systems():
            system.add_edge(edge)

    def remove_edge(self, edge) -> None:
        for system in self._systems():
            system.remove_edge(edge)

    def dispose(self) -> None:
        # the systems belong to the composer
        self.is_running = False
        self.graph = None


class HybridComposer(LayoutOrchestrator):
    """Orchestrator with constraint, nested, adaptive and hybrid modes."""

    def __init__(self, graph: LayoutGraph, settings: Optional[HybridSettings] = None):
        super().__init__(graph, settings or HybridSettings())
        self.current_mode = LayoutMode.STANDARD

        self.constraint_system = ConstraintSolver(graph=graph)
        self.nested_system = NestedLayoutComposer(graph=graph)
        self.adaptive_system = AdaptiveSelector(graph=graph)
        self.connector = ConnectionRouter(graph=graph)

        self.register_layout("constraint", self.constraint_system)
        self.register_layout("nested", self.nested_system)
        self.register_layout("adaptive", self.adaptive_system)
        # the selector shares the orchestrator's instances of the plain strategies
        for name, layout in self.layouts.items():
            if layout not in (self.constraint_system, self.nested_system, self.adaptive_system):
                self.adaptive_system.register_layout(name, layout)

        logger.info("Hybrid composer ready")

    def _systems_by_mode(self) -> Dict[LayoutMode, LayoutStrategy]:
        return {
            LayoutMode.ADAPTIVE: self.adaptive_system,
            LayoutMode.NESTED: self.nested_system,
            LayoutMode.CONSTRAINT: self.constraint_system,
        }

    def _flags(self) -> Dict[LayoutMode, bool]:
        s = self.settings
        return {
            LayoutMode.ADAPTIVE: s.enable_adaptive,
            LayoutMode.NESTED: s.enable_nesting,
            LayoutMode.CONSTRAINT: s.enable_constraints,
        }

    def enabled_systems(self) -> List[LayoutStrategy]:
        """Enabled advanced systems in hybrid order."""
        systems = self._systems_by_mode()
        flags = self._flags()
        return [systems[mode] for mode in HYBRID_ORDER if mode in systems and flags[mode]]

    # ------------------------------------------------------------------
    # Mode selection
    # ------------------------------------------------------------------

    def determine_layout_mode(self, name: str, config: Dict[str, Any]) -> LayoutMode:
        requested = config.get("mode")
        if requested:
            try:
                return LayoutMode(requested)
            except ValueError:
                logger.warning(f"Unknown layout mode {requested!r}; using standard")
                return LayoutMode.STANDARD

        if self.settings.auto_mode_selection:
            return self.auto_select_mode()

        if name == "adaptive" or self.settings.enable_adaptive:
            return LayoutMode.ADAPTIVE
        if name == "nested" or self.settings.enable_nesting:
            return LayoutMode.NESTED
        if name == "constraint" or self.settings.enable_constraints:
            return LayoutMode.CONSTRAINT
        return LayoutMode.STANDARD

    def auto_select_mode(self) -> LayoutMode:
        nodes = self.graph.get_node_list()
        edges = self.graph.get_edge_list()
        has_containers = any(is_container(n) or n.data.get("child_layout") for n in nodes)
        has_constraints = any(e.data.get("constraint_type") or e.data.get("constraint_params") for e in edges)
        complexity = complexity_score(calculate_graph_metrics(nodes, edges))
        is_complex = (len(nodes) > 50 or len(edges) > 100
                      or complexity > self.settings.complexity_threshold)

        if has_containers and has_constraints and is_complex:
            mode = LayoutMode.HYBRID
        elif is_complex:
            mode = LayoutMode.ADAPTIVE
        elif has_containers:
            mode = LayoutMode.NESTED
        elif has_constraints:
            mode = LayoutMode.CONSTRAINT
        else:
            mode = LayoutMode.STANDARD
        logger.info(f"Auto-selected {mode.value} mode (complexity {complexity:.2f}, "
                    f"containers={has_containers}, constraints={has_constraints})")
        return mode

    # ------------------------------------------------------------------
    # Applying layouts
    # ------------------------------------------------------------------

    def apply_layout(self, name: str, config: Optional[Dict[str, Any]] = None) -> bool:
        config = dict(config or {})
        mode = self.determine_layout_mode(name, config)
        base_layout = config.get("base_layout")
        config = {k: v for k, v in config.items() if k not in _ROUTING_KEYS}

        if mode == LayoutMode.STANDARD:
            applied = super().apply_layout(name, config)
        elif mode == LayoutMode.HYBRID:
            applied = self._apply_hybrid(base_layout or name, config)
        else:
            system = self._systems_by_mode()[mode]
            if mode == LayoutMode.CONSTRAINT and base_layout and base_layout != "constraint":
                self._apply_base(base_layout, config)
            applied = self._activate(system, mode.value, config)

        if applied:
            self.current_mode = mode
        return applied

    def _apply_base(self, name: str, config: Dict[str, Any]) -> bool:
        """Apply a plain strategy and settle its transition right away."""
        if not super().apply_layout(name, config):
            return False
        self._finish_transition()
        return True

    def _activate(self, system: LayoutStrategy, name: str, config: Dict[str, Any]) -> bool:
        if system is not self.active_layout:
            self._stop_active()
        self.active_layout = system
        self.active_layout_name = name
        system.init(self.graph.get_node_list(), self.graph.get_edge_list(), config)
        self.graph.emit("layout:started", {"name": name})
        system.run()
        return True

    def _apply_hybrid(self, base_layout: Optional[str], config: Dict[str, Any]) -> bool:
        if not any(self._flags().values()):
            self.set_layout_mode(LayoutMode.HYBRID)
        self._stop_active()
        self.active_layout = None
        self.active_layout_name = None

        nodes = self.graph.get_node_list()
        edges = self.graph.get_edge_list()
        for system in self.enabled_systems():
            system.init(nodes, edges, config)
        base = None
        if base_layout and base_layout in self.layouts and base_layout not in (
                "hybrid", "constraint", "nested", "adaptive"):
            if self._apply_base(base_layout, config):
                base = self.layouts[base_layout]

        proxy = _HybridProxy(self, base)
        self.active_layout = proxy
        self.active_layout_name = LayoutMode.HYBRID.value
        self.graph.emit("layout:started", {"name": proxy.name})
        proxy.run()
        logger.info(f"Hybrid layout applied with {[s.name for s in proxy._systems()]}")
        return True

    # ------------------------------------------------------------------
    # Mutation routing
    # ------------------------------------------------------------------

    def _background_systems(self) -> List[LayoutStrategy]:
        """Enabled systems that are not already reached through the active strategy."""
        if isinstance(self.active_layout, _HybridProxy):
            return []
        return [s for s in self.enabled_systems() if s is not self.active_layout]

    def add_node(self, node) -> None:
        super().add_node(node)
        for system in self._background_systems():
            system.add_node(node)

    def remove_node(self, node) -> None:
        super().remove_node(node)
        for system in self._background_systems():
            system.remove_node(node)
        for region in list(self.connector.regions.values()):
            if node.id in region.nodes:
                self.connector.remove_region_node(region.id, node.id)

    def add_edge(self, edge) -> None:
        super().add_edge(edge)
        for system in self._background_systems():
            system.add_edge(edge)

    def remove_edge(self, edge) -> None:
        super().remove_edge(edge)
        for system in self._background_systems():
            system.remove_edge(edge)

    def update(self, dt: float) -> None:
        super().update(dt)
        if self.settings.enable_connections:
            self.connector.update(dt)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _connections_enabled(self) -> bool:
        if not self.settings.enable_connections:
            logger.warning("Connections are disabled")
            return False
        return True

    def register_layout_region(self, region_id: str, bounds, layout_type: str, nodes=()):
        if self._connections_enabled():
            return self.connector.register_region(region_id, bounds, layout_type, nodes)
        return None

    def unregister_layout_region(self, region_id: str) -> None:
        if self._connections_enabled():
            self.connector.unregister_region(region_id)

    def add_layout_connection(self, source_node_id: str, target_node_id: str, **options) -> Optional[str]:
        if self._connections_enabled():
            return self.connector.add_connection(source_node_id, target_node_id, **options)
        return None

    def remove_layout_connection(self, connection_id: str) -> bool:
        if self._connections_enabled():
            return self.connector.remove_connection(connection_id)
        return False

    def activate_connections(self) -> None:
        if self._connections_enabled():
            self.connector.activate()

    def deactivate_connections(self) -> None:
        self.connector.deactivate()

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def _ensure_constraint_nodes(self) -> None:
        for node in self.graph.get_node_list():
            if node.id not in self.constraint_system.nodes:
                self.constraint_system.add_node(node)

    def add_distance_constraint(self, a: str, b: str, **options):
        self._ensure_constraint_nodes()
        return self.constraint_system.add_distance_constraint(a, b, **options)

    def add_position_constraint(self, node_id: str, target, **options):
        self._ensure_constraint_nodes()
        return self.constraint_system.add_position_constraint(node_id, target, **options)

    def add_angle_constraint(self, a: str, b: str, c: str, **options):
        self._ensure_constraint_nodes()
        return self.constraint_system.add_angle_constraint(a, b, c, **options)

    def add_cluster_constraint(self, node_ids, **options):
        self._ensure_constraint_nodes()
        return self.constraint_system.add_cluster_constraint(node_ids, **options)

    def add_boundary_constraint(self, node_ids, boundary, **options):
        self._ensure_constraint_nodes()
        return self.constraint_system.add_boundary_constraint(node_ids, boundary, **options)

    def remove_constraint(self, constraint) -> bool:
        return self.constraint_system.remove_constraint(constraint)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def add_container(self, container, parent_id: Optional[str] = None) -> None:
        self.nested_system.add_container(container, parent_id)

    def remove_container(self, container_id: str) -> None:
        self.nested_system.remove_container(container_id)

    def add_node_to_container(self, node, container_id: str) -> bool:
        return self.nested_system.add_node_to_container(node, container_id)

    def remove_node_from_container(self, node, container_id: str) -> None:
        self.nested_system.remove_node_from_container(node, container_id)

    def set_container_layout(self, container_id: str, layout: str, config: Optional[Dict[str, Any]] = None) -> None:
        self.nested_system.set_container_layout(container_id, layout, config)

    # ------------------------------------------------------------------
    # Adaptation
    # ------------------------------------------------------------------

    def add_adaptation_rule(self, name, condition, target_layout, priority: int = 5,
                            description: str = "Custom adaptation rule"):
        return self.adaptive_system.add_adaptation_rule(name, condition, target_layout, priority, description)

    def remove_adaptation_rule(self, name: str) -> bool:
        return self.adaptive_system.remove_adaptation_rule(name)

    def force_adaptation(self, name: str, reason: str = "forced") -> bool:
        return self.adaptive_system.force_adaptation(name, reason)

    def set_adaptation_enabled(self, enabled: bool) -> None:
        self.adaptive_system.set_adaptation_enabled(enabled)

    def get_layout_history(self):
        return list(self.adaptive_system.layout_history)

    # ------------------------------------------------------------------
    # Modes & capabilities
    # ------------------------------------------------------------------

    def set_layout_mode(self, mode) -> None:
        mode = LayoutMode(mode)
        s = self.settings
        s.enable_constraints = mode in (LayoutMode.CONSTRAINT, LayoutMode.HYBRID)
        s.enable_nesting = mode in (LayoutMode.NESTED, LayoutMode.HYBRID)
        s.enable_adaptive = mode in (LayoutMode.ADAPTIVE, LayoutMode.HYBRID)
        self.current_mode = mode
        logger.info(f"Layout mode set to {mode.value}")

    def enable_advanced_features(self, constraints: Optional[bool] = None, nesting: Optional[bool] = None,
                                 adaptive: Optional[bool] = None, connections: Optional[bool] = None,
                                 auto_mode: Optional[bool] = None) -> None:
        s = self.settings
        if constraints is not None:
            s.enable_constraints = constraints
        if nesting is not None:
            s.enable_nesting = nesting
        if adaptive is not None:
            s.enable_adaptive = adaptive
        if connections is not None:
            s.enable_connections = connections
            if not connections:
                self.connector.deactivate()
        if auto_mode is not None:
            s.auto_mode_selection = auto_mode

    def get_layout_capabilities(self) -> Dict[str, Any]:
        return {
            "modes": [mode.value for mode in LayoutMode],
            "current_mode": self.current_mode.value,
            "active_layout": self.active_layout_name,
            "layouts": sorted(self.layouts),
            "settings": asdict(self.settings),
            "constraints": len(self.constraint_system.constraints),
            "containers": len(self.nested_system.containers),
            "regions": len(self.connector.regions),
            "connections": len(self.connector.connections),
            "adaptation_rules": [rule.name for rule in self.adaptive_system.adaptation_rules],
        }

    def dispose(self) -> None:
        super().dispose()
        self.connector.dispose()
