"""
Benchmark harness for evaluating and comparing layout strategies.
Collects runtime, convergence and drawing-quality metrics.
"""
from typing import Any, Dict, List, Optional
import time
import logging
from dataclasses import dataclass
import numpy as np
from shapely.geometry import LineString
from ..constraint_solver import SolveResult
from ..force_layout import to_worker_edge, to_worker_node
from ..impl.force_simulation import ForceSettings, ForceSimulation
from ..registry import create_strategy
from .test_cases import BenchmarkCase, BENCHMARK_CASES

logger = logging.getLogger(__name__)

@dataclass
class BenchmarkResult:
    """Results from a single strategy run."""
    case_name: str
    strategy_name: str
    runtime_seconds: float
    iterations: Optional[int]
    stress: float
    edge_crossings: int
    node_overlaps: int
    metrics: Dict[str, Any]

DEFAULT_STRATEGY_CONFIGS = [
    {'name': 'grid', 'strategy': 'grid', 'config': {}},
    {'name': 'circular', 'strategy': 'circular', 'config': {}},
    {'name': 'hierarchical', 'strategy': 'hierarchical', 'config': {}},
    {'name': 'relaxed_force', 'strategy': 'relaxed-force', 'config': {}},
    {'name': 'force', 'strategy': 'force', 'config': {}, 'max_steps': 1500},
    {'name': 'constraint', 'strategy': 'constraint', 'config': {'default_edge_distance': 120}},
]

class BenchmarkRunner:
    def __init__(self, cases: List[BenchmarkCase] = None):
        """Initialize with optional specific test cases."""
        self.cases = cases or BENCHMARK_CASES

    def run_benchmark(self,
                      strategy_configs: List[Dict] = None,
                      runs_per_case: int = 3) -> List[BenchmarkResult]:
        """Run full benchmark suite.

        Args:
            strategy_configs: List of strategy configurations to test
            runs_per_case: Number of runs per case (force runs vary by seed)

        Returns:
            List of BenchmarkResults for all runs
        """
        results = []
        strategy_configs = strategy_configs or DEFAULT_STRATEGY_CONFIGS

        for case in self.cases:
            logger.info(f"Running benchmark case: {case.name} ({case.node_count} nodes)")

            for config in strategy_configs:
                logger.info(f"Testing strategy: {config['name']}")

                for run in range(runs_per_case):
                    try:
                        results.append(self._run_single_case(case, config, seed=run))
                    except Exception:
                        logger.exception(f"Error in {case.name} with {config['name']}")
                        continue

        return results

    def _run_single_case(self, case: BenchmarkCase, strategy_config: Dict, seed: int = 0) -> BenchmarkResult:
        """Run single benchmark case with given strategy config."""
        graph = case.build_graph()
        nodes = graph.get_node_list()
        edges = graph.get_edge_list()
        config = dict(strategy_config.get('config') or {})
        metrics: Dict[str, Any] = {}
        iterations = None

        start_time = time.time()
        if strategy_config['strategy'] == 'force':
            simulation = ForceSimulation(ForceSettings(seed=seed))
            simulation.update_settings(config)
            simulation.load([to_worker_node(n) for n in nodes], [to_worker_edge(e) for e in edges])
            iterations = simulation.run_until_stable(strategy_config.get('max_steps', 1000))
            for update in simulation.positions_payload():
                graph.nodes[update['id']].position[:] = (update['x'], update['y'], update['z'])
            metrics['final_energy'] = simulation.energy
        else:
            strategy = create_strategy(strategy_config['strategy'], graph=graph)
            result = strategy.init(nodes, edges, config)
            if isinstance(result, SolveResult):
                iterations = result.iterations
                metrics['converged'] = result.converged
            strategy.dispose()
        runtime = time.time() - start_time

        positions = {n.id: n.position.copy() for n in nodes}
        radii = {n.id: n.get_bounding_sphere_radius() for n in nodes}
        return BenchmarkResult(
            case_name=case.name,
            strategy_name=strategy_config['name'],
            runtime_seconds=runtime,
            iterations=iterations,
            stress=self._compute_stress(positions, case.edge_list),
            edge_crossings=self._count_edge_crossings(positions, case.edge_list),
            node_overlaps=self._count_node_overlaps(positions, radii),
            metrics=metrics
        )

    def _compute_stress(self, positions: Dict[str, np.ndarray], edges: List) -> float:
        """Coefficient of variation of edge lengths (0 means all equal)."""
        lengths = np.array([np.linalg.norm(positions[a] - positions[b]) for a, b in edges])
        if len(lengths) == 0 or lengths.mean() == 0:
            return 0.0
        return float(lengths.std() / lengths.mean())

    def _count_edge_crossings(self, positions: Dict[str, np.ndarray], edges: List) -> int:
        """Crossings of the XY projection, ignoring edges that share an endpoint."""
        segments = [(a, b, LineString([positions[a][:2], positions[b][:2]])) for a, b in edges]
        crossings = 0
        for i, (a1, b1, s1) in enumerate(segments):
            for a2, b2, s2 in segments[i + 1:]:
                if {a1, b1} & {a2, b2}:
                    continue
                if s1.crosses(s2):
                    crossings += 1
        return crossings

    def _count_node_overlaps(self, positions: Dict[str, np.ndarray], radii: Dict[str, float]) -> int:
        """Pairs whose bounding spheres intersect."""
        ids = list(positions)
        overlaps = 0
        for i, a in enumerate(ids):
            for b in ids[i + 1:]:
                if np.linalg.norm(positions[a] - positions[b]) < radii[a] + radii[b]:
                    overlaps += 1
        return overlaps
