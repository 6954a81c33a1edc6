"""
Strategy contract shared by every layout.

Static layouts only implement ``init``; the mutation hooks, ``run``,
``stop``, ``kick`` and ``update`` default to no-ops so callers can
dispatch to any strategy without probing for methods.
"""
from abc import ABC, abstractmethod
from dataclasses import fields, is_dataclass
from typing import Any, Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


def apply_config(settings: Any, config: Optional[Dict[str, Any]], owner: str = "") -> List[str]:
    """Merge ``config`` into a settings dataclass or dict in place.

    Unknown keys are logged and ignored. Returns the list of ignored keys.
    """
    if not config:
        return []
    if is_dataclass(settings):
        known = {f.name for f in fields(settings)}
    else:
        known = set(settings.keys())
    ignored = []
    for key, value in config.items():
        if key not in known:
            ignored.append(key)
            continue
        if is_dataclass(settings):
            setattr(settings, key, value)
        else:
            settings[key] = value
    if ignored:
        logger.warning(f"{owner or type(settings).__name__}: ignoring unknown settings {ignored}")
    return ignored


class LayoutStrategy(ABC):
    """Base class for all layout strategies."""

    name = "base"

    def __init__(self, graph=None):
        self.graph = graph
        self.nodes: Dict[str, Any] = {}
        self.edges: Dict[str, Any] = {}
        self.is_running = False

    def set_context(self, graph) -> None:
        """Attach the graph used for event emission."""
        self.graph = graph

    @abstractmethod
    def init(self, nodes: Iterable[Any], edges: Iterable[Any], config: Optional[Dict[str, Any]] = None):
        """Capture nodes/edges and compute initial target positions."""

    def run(self) -> None:
        pass

    def stop(self) -> None:
        self.is_running = False

    def kick(self, intensity: float = 1.0) -> None:
        pass

    def add_node(self, node) -> None:
        pass

    def remove_node(self, node) -> None:
        pass

    def add_edge(self, edge) -> None:
        pass

    def remove_edge(self, edge) -> None:
        pass

    def update(self, dt: float) -> None:
        """Per-frame pump for strategies with background or timed work."""

    def update_config(self, config: Optional[Dict[str, Any]]) -> None:
        settings = getattr(self, "settings", None)
        if settings is not None:
            apply_config(settings, config, owner=self.name)

    def dispose(self) -> None:
        self.stop()
        self.nodes = {}
        self.edges = {}
        self.graph = None

    def _emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if self.graph is not None:
            self.graph.emit(event, payload or {})
