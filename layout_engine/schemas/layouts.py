from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class NodeIn(BaseModel):
    """A node as posted by a client"""
    id: str
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    mass: float = Field(1.0, gt=0)
    is_pinned: bool = False
    radius: float = Field(10.0, gt=0)
    data: Dict[str, Any] = Field(default_factory=dict)


class EdgeIn(BaseModel):
    source: str
    target: str
    id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class GraphPayload(BaseModel):
    nodes: List[NodeIn]
    edges: List[EdgeIn] = Field(default_factory=list)


class ComputeRequest(GraphPayload):
    strategy: str = "force"
    config: Dict[str, Any] = Field(default_factory=dict)
    steps: int = Field(500, ge=1, le=20000, description="Maximum simulation steps for 'force'")
    seed: Optional[int] = None


class NodePosition(BaseModel):
    id: str
    x: float
    y: float
    z: float


class ComputeResponse(BaseModel):
    strategy: str
    positions: List[NodePosition]
    success: bool
    message: str
    converged: Optional[bool] = None
    iterations: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)


class SelectResponse(BaseModel):
    strategy: str
    reason: str
    metrics: Dict[str, Any]


class RegionIn(BaseModel):
    id: str
    layout_type: str = "custom"
    node_ids: List[str]


class ConnectionIn(BaseModel):
    source: str
    target: str
    type: Optional[str] = None
    strength: Optional[float] = None


class RouteRequest(GraphPayload):
    regions: List[RegionIn]
    connections: List[ConnectionIn]
    config: Dict[str, Any] = Field(default_factory=dict)


class RoutedConnection(BaseModel):
    id: str
    type: str
    source_region: str
    target_region: str
    path: List[Tuple[float, float, float]]


class RouteResponse(BaseModel):
    connections: List[RoutedConnection]
    warnings: List[str] = Field(default_factory=list)
