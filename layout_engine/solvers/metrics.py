"""
Graph shape metrics used to pick a layout strategy.
"""
from typing import Any, Dict, Iterable
from dataclasses import asdict, dataclass
import logging

import networkx as nx
import numpy as np

from ..utils.geometry_utils import Bounds, as_vec3

logger = logging.getLogger(__name__)


@dataclass
class GraphMetrics:
    node_count: int = 0
    edge_count: int = 0
    density: float = 0.0
    average_degree: float = 0.0
    connection_density: float = 0.0
    hierarchy_score: float = 0.0
    clustering_coefficient: float = 0.0
    bounding_volume: float = 0.0
    bounds_min: tuple = (0.0, 0.0, 0.0)
    bounds_max: tuple = (0.0, 0.0, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_nx_graph(nodes: Iterable[Any], edges: Iterable[Any]) -> nx.Graph:
    G = nx.Graph()
    G.add_nodes_from(n.id for n in nodes)
    for edge in edges:
        if edge.source.id in G and edge.target.id in G and edge.source.id != edge.target.id:
            G.add_edge(edge.source.id, edge.target.id)
    return G


def average_clustering(G: nx.Graph) -> float:
    """Local clustering averaged over nodes with at least two neighbours."""
    eligible = [n for n, degree in G.degree() if degree >= 2]
    if not eligible:
        return 0.0
    local = nx.clustering(G, eligible)
    return float(np.mean([local[n] for n in eligible]))


def calculate_graph_metrics(nodes: Iterable[Any], edges: Iterable[Any]) -> GraphMetrics:
    nodes = list(nodes)
    edges = list(edges)
    n = len(nodes)
    e = len(edges)
    if n == 0:
        return GraphMetrics()

    G = build_nx_graph(nodes, edges)
    possible_pairs = n * (n - 1) / 2
    density = e / possible_pairs if possible_pairs > 0 else 0.0
    average_degree = 2 * e / n

    bounds = Bounds.from_points(as_vec3(node.position) for node in nodes)
    volume = bounds.volume
    connection_density = e / volume if volume > 0 else 0.0

    if n > 1:
        leaves = sum(1 for _, degree in G.degree() if degree == 1)
        hierarchy = min(1.0, max(0.0, leaves / n + 1 - e / (n * n)))
    else:
        hierarchy = 0.0

    clustering = average_clustering(G) if n >= 3 else 0.0

    return GraphMetrics(
        node_count=n,
        edge_count=e,
        density=density,
        average_degree=average_degree,
        connection_density=connection_density,
        hierarchy_score=hierarchy,
        clustering_coefficient=clustering,
        bounding_volume=volume,
        bounds_min=tuple(float(c) for c in bounds.min),
        bounds_max=tuple(float(c) for c in bounds.max),
    )


def complexity_score(metrics: GraphMetrics) -> float:
    """Mean of density, degree/10 and size/100 (capped at 1)."""
    return (metrics.density + metrics.average_degree / 10 + min(1.0, metrics.node_count / 100)) / 3
