"""
Wire models for the force simulation channels.

Commands travel caller -> engine as ``{"type": CommandType, "payload": {...}}``
and events engine -> caller as ``{"type": EventType, ...}``. Payloads are
plain dicts produced by ``model_dump()``; nothing mutable is shared between
the two sides.

``init`` and ``start`` carry a ``generation`` number that the engine stamps
on every event it posts afterwards. A ``stopped`` event answering an
explicit ``stop`` command carries ``requested=True``; auto-stops do not.
"""
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class CommandType(str, Enum):
    INIT = "init"
    START = "start"
    STOP = "stop"
    KICK = "kick"
    ADD_NODE = "addNode"
    REMOVE_NODE = "removeNode"
    ADD_EDGE = "addEdge"
    REMOVE_EDGE = "removeEdge"
    UPDATE_NODE_STATE = "updateNodeState"
    UPDATE_SETTINGS = "updateSettings"


class EventType(str, Enum):
    POSITIONS_UPDATE = "positionsUpdate"
    STOPPED = "stopped"
    ERROR = "error"


class ConstraintType(str, Enum):
    ELASTIC = "elastic"
    RIGID = "rigid"
    WELD = "weld"


class WorkerNode(BaseModel):
    """Snapshot of a node as seen by the simulation."""
    id: str
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0
    mass: float = Field(1.0, gt=0)
    is_fixed: bool = False
    is_pinned: bool = False
    radius: float = 10.0
    cluster_id: Optional[str] = None


class ConstraintParams(BaseModel):
    ideal_length: Optional[float] = None
    distance: Optional[float] = None
    stiffness: Optional[float] = None


class WorkerEdge(BaseModel):
    id: str
    source_id: str
    target_id: str
    constraint_type: ConstraintType = ConstraintType.ELASTIC
    constraint_params: ConstraintParams = Field(default_factory=ConstraintParams)


class NodeStatePayload(BaseModel):
    node_id: str
    is_fixed: bool = False
    is_pinned: bool = False
    position: Optional[Tuple[float, float, float]] = None


class RemoveEdgePayload(BaseModel):
    edge_id: Optional[str] = None
    source_id: Optional[str] = None
    target_id: Optional[str] = None


class PositionUpdate(BaseModel):
    id: str
    x: float
    y: float
    z: float


class InitPayload(BaseModel):
    nodes: List[WorkerNode] = Field(default_factory=list)
    edges: List[WorkerEdge] = Field(default_factory=list)
    settings: dict = Field(default_factory=dict)
    # echoed on every event so the caller can drop output of an earlier run
    generation: int = 0
