"""
Solvers package.
"""
from .base import LayoutStrategy, apply_config
from .impl import ForceSettings, ForceSimulation, SimulationWorker
from .force_layout import ForceLayout
from .constraint_solver import ConstraintSolver, ConstraintSettings, BoxBoundary, SphereBoundary
from .nested_layout import NestedLayoutComposer, NestedSettings
from .connection_router import ConnectionRouter, RouterSettings, ConnectionType
from .adaptive_selector import AdaptiveSelector, AdaptiveSettings
from .registry import STRATEGIES, available_strategies, create_strategy
from .orchestrator import LayoutOrchestrator, OrchestratorSettings
from .hybrid import HybridComposer, HybridSettings, LayoutMode
from .benchmark import BenchmarkRunner, BenchmarkCase, BENCHMARK_CASES

__all__ = [
    'LayoutStrategy',
    'apply_config',
    'ForceSettings',
    'ForceSimulation',
    'SimulationWorker',
    'ForceLayout',
    'ConstraintSolver',
    'ConstraintSettings',
    'BoxBoundary',
    'SphereBoundary',
    'NestedLayoutComposer',
    'NestedSettings',
    'ConnectionRouter',
    'RouterSettings',
    'ConnectionType',
    'AdaptiveSelector',
    'AdaptiveSettings',
    'STRATEGIES',
    'available_strategies',
    'create_strategy',
    'LayoutOrchestrator',
    'OrchestratorSettings',
    'HybridComposer',
    'HybridSettings',
    'LayoutMode',
    'BenchmarkRunner',
    'BenchmarkCase',
    'BENCHMARK_CASES'
]
