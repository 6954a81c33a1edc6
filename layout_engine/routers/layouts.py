from fastapi import APIRouter, HTTPException
from typing import List, Tuple
import logging
import time

# Absolute package imports so uvicorn can load this module via the package path.
from layout_engine.errors import LayoutError
from layout_engine.graph import GraphNode, LayoutGraph
from layout_engine.schemas.layouts import (
    ComputeRequest,
    ComputeResponse,
    GraphPayload,
    NodePosition,
    RoutedConnection,
    RouteRequest,
    RouteResponse,
    SelectResponse,
)
from layout_engine.solvers.adaptive_selector import AdaptiveSelector
from layout_engine.solvers.connection_router import ConnectionRouter
from layout_engine.solvers.constraint_solver import SolveResult
from layout_engine.solvers.force_layout import to_worker_edge, to_worker_node
from layout_engine.solvers.impl.force_simulation import ForceSettings, ForceSimulation
from layout_engine.solvers.registry import create_strategy
from layout_engine.utils.geometry_utils import Bounds

router = APIRouter()
logger = logging.getLogger(__name__)


def build_graph(payload: GraphPayload) -> Tuple[LayoutGraph, List[str]]:
    """Materialize a request body as a LayoutGraph, collecting warnings."""
    graph = LayoutGraph()
    warnings: List[str] = []
    for n in payload.nodes:
        graph.add_node(GraphNode(n.id, position=(n.x, n.y, n.z), mass=n.mass,
                                 is_pinned=n.is_pinned, radius=n.radius, data=n.data))
    for e in payload.edges:
        if graph.add_edge(e.source, e.target, data=e.data, edge_id=e.id) is None:
            warnings.append(f"Skipped edge {e.source}->{e.target}: unknown endpoint")
    return graph, warnings


def _positions(graph: LayoutGraph) -> List[NodePosition]:
    return [
        NodePosition(id=node.id, x=float(node.position[0]), y=float(node.position[1]), z=float(node.position[2]))
        for node in graph.get_node_list()
    ]


@router.post("/compute", response_model=ComputeResponse)
async def compute_layout(request: ComputeRequest):
    """Run a layout strategy synchronously and return the resulting positions."""
    try:
        t0 = time.time()
        logger.info(
            "[compute] request received: nodes=%d, edges=%d, strategy=%s",
            len(request.nodes), len(request.edges), request.strategy
        )
        graph, warnings = build_graph(request)
        nodes = graph.get_node_list()
        edges = graph.get_edge_list()
        converged = None
        iterations = None

        if request.strategy == "force":
            # stepped in-process; no worker thread for a one-shot request
            simulation = ForceSimulation(ForceSettings(seed=request.seed))
            simulation.update_settings(request.config)
            simulation.load([to_worker_node(n) for n in nodes], [to_worker_edge(e) for e in edges])
            iterations = simulation.run_until_stable(request.steps)
            converged = bool(simulation.smoothed_energy < simulation.settings.min_energy_threshold)
            for update in simulation.positions_payload():
                node = graph.nodes[update["id"]]
                if not node.is_pinned:
                    node.position[:] = (update["x"], update["y"], update["z"])
        else:
            strategy = create_strategy(request.strategy, graph=graph)
            try:
                result = strategy.init(nodes, edges, request.config)
                if isinstance(result, SolveResult):
                    converged = result.converged
                    iterations = result.iterations
            finally:
                strategy.dispose()

        resp = ComputeResponse(
            strategy=request.strategy,
            positions=_positions(graph),
            success=True,
            message="Layout computed successfully",
            converged=converged,
            iterations=iterations,
            warnings=warnings,
        )
        logger.info("[compute] success: nodes=%d, time=%.2fs, strategy=%s",
                    len(resp.positions), time.time() - t0, request.strategy)
        return resp
    except LayoutError as e:
        logger.warning("[compute] rejected: %s", str(e))
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("[compute] error: %s", str(e))
        raise HTTPException(status_code=500, detail=f"Layout error: {str(e)}")


@router.post("/select", response_model=SelectResponse)
async def select_layout(request: GraphPayload):
    """Report graph metrics and the strategy the adaptive selector would pick."""
    try:
        graph, _ = build_graph(request)
        selector = AdaptiveSelector(graph=graph)
        metrics = selector.calculate_graph_metrics(graph.get_node_list(), graph.get_edge_list())
        strategy, reason = selector.select_layout(metrics)
        logger.info("[select] nodes=%d -> %s (%s)", metrics.node_count, strategy, reason)
        return SelectResponse(strategy=strategy, reason=reason, metrics=metrics.to_dict())
    except Exception as e:
        logger.exception("[select] error: %s", str(e))
        raise HTTPException(status_code=500, detail=f"Selection error: {str(e)}")


@router.post("/route", response_model=RouteResponse)
async def route_connections(request: RouteRequest):
    """Register regions and return a routed path for every requested connection."""
    try:
        graph, warnings = build_graph(request)
        connector = ConnectionRouter(graph=graph)
        connector.update_config(request.config)

        for region in request.regions:
            members = [graph.nodes[i] for i in region.node_ids if i in graph.nodes]
            missing = [i for i in region.node_ids if i not in graph.nodes]
            if missing:
                warnings.append(f"Region {region.id}: unknown nodes {missing}")
            if not members:
                warnings.append(f"Region {region.id} has no known nodes; skipped")
                continue
            bounds = Bounds.from_points(node.position for node in members)
            connector.register_region(region.id, bounds, region.layout_type, members)

        routed = []
        for c in request.connections:
            connection_id = connector.add_connection(c.source, c.target, type=c.type, strength=c.strength)
            if connection_id is None:
                warnings.append(f"Could not route {c.source}->{c.target}")
                continue
            connection = connector.connections[connection_id]
            routed.append(RoutedConnection(
                id=connection.id,
                type=connection.type.value,
                source_region=connection.source_region,
                target_region=connection.target_region,
                path=[tuple(float(v) for v in point) for point in connection.path],
            ))
        logger.info("[route] regions=%d, routed=%d", len(connector.regions), len(routed))
        return RouteResponse(connections=routed, warnings=warnings)
    except LayoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("[route] error: %s", str(e))
        raise HTTPException(status_code=500, detail=f"Routing error: {str(e)}")
