"""
Name -> strategy class registry.
"""
from typing import Any, Dict, Optional, Type
import logging

from ..errors import UnknownStrategyError
from .base import LayoutStrategy
from .constraint_solver import ConstraintSolver
from .force_layout import ForceLayout
from .nested_layout import NestedLayoutComposer
from .static_layouts import (
    CircularLayout,
    FlowLayout,
    GridLayout,
    HierarchicalLayout,
    RadialLayout,
    RelaxedForceLayout,
    SphericalLayout,
)

logger = logging.getLogger(__name__)

STRATEGIES: Dict[str, Type[LayoutStrategy]] = {
    "grid": GridLayout,
    "circular": CircularLayout,
    "spherical": SphericalLayout,
    "hierarchical": HierarchicalLayout,
    "radial": RadialLayout,
    "flow": FlowLayout,
    "relaxed-force": RelaxedForceLayout,
    "force": ForceLayout,
    "constraint": ConstraintSolver,
    "nested": NestedLayoutComposer,
}


def available_strategies():
    return sorted(STRATEGIES)


def create_strategy(name: str, config: Optional[Dict[str, Any]] = None, graph=None) -> LayoutStrategy:
    """Instantiate a registered strategy.

    Raises:
        UnknownStrategyError: if ``name`` is not registered
    """
    cls = STRATEGIES.get(name)
    if cls is None:
        raise UnknownStrategyError(name)
    strategy = cls()
    strategy.set_context(graph)
    if config:
        strategy.update_config(config)
    return strategy
