"""
Geometry utility helpers for 3D vector operations used by solvers.

Provides:
- vec3(x, y, z) / as_vec3(point)
- safe_normalize(vector)
- project_point_to_segment(point, a, b)
- segment_intersects_sphere(a, b, center, radius)
- cubic_bezier(p0, p1, p2, p3, segments)
- perpendicular(direction)
- angle_between(v1, v2) / rotate_about_axis(v, axis, angle)
- Bounds (axis-aligned box with normalize/denormalize into [-1, 1])

These functions are lightweight and have no external dependencies beyond numpy.
"""
from typing import Iterable, List, Sequence, Tuple
from dataclasses import dataclass
import numpy as np
import math

EPSILON = 1e-9
# Smallest half size used for a degenerate (flat) bounds axis
MIN_HALF_SIZE = 1e-6


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return np.array([x, y, z], dtype=float)


def as_vec3(point) -> np.ndarray:
    """Coerce a sequence, dict with x/y/z keys or array into a float vector of length 3."""
    if isinstance(point, dict):
        return vec3(point.get("x", 0.0), point.get("y", 0.0), point.get("z", 0.0))
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.size == 2:
        return np.array([arr[0], arr[1], 0.0])
    return arr[:3].copy()


def safe_normalize(vector: np.ndarray) -> np.ndarray:
    """Unit vector in the direction of ``vector``; zeros when it has no length."""
    length = np.linalg.norm(vector)
    if length < EPSILON:
        return np.zeros_like(vector, dtype=float)
    return vector / length


def project_point_to_segment(point: np.ndarray, a: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, float]:
    """Closest point on segment ab to ``point`` and its distance."""
    ab = b - a
    l2 = float(np.dot(ab, ab))
    if l2 == 0:
        return a.copy(), float(np.linalg.norm(point - a))
    t = float(np.clip(np.dot(point - a, ab) / l2, 0.0, 1.0))
    proj = a + t * ab
    return proj, float(np.linalg.norm(point - proj))


def segment_intersects_sphere(a: np.ndarray, b: np.ndarray, center: np.ndarray, radius: float) -> bool:
    _, dist = project_point_to_segment(center, a, b)
    return dist < radius


def cubic_bezier(p0: np.ndarray, p1: np.ndarray, p2: np.ndarray, p3: np.ndarray,
                 segments: int = 20) -> List[np.ndarray]:
    """Sample a cubic Bézier curve at ``segments + 1`` evenly spaced parameters."""
    points = []
    for i in range(segments + 1):
        t = i / segments
        u = 1.0 - t
        points.append(u ** 3 * p0 + 3 * u ** 2 * t * p1 + 3 * u * t ** 2 * p2 + t ** 3 * p3)
    return points


def perpendicular(direction: np.ndarray) -> np.ndarray:
    """Unit vector perpendicular to ``direction``, preferring the XY plane."""
    perp = np.array([-direction[1], direction[0], 0.0])
    if np.linalg.norm(perp) < EPSILON:
        # direction is parallel to z
        return vec3(1.0, 0.0, 0.0)
    return safe_normalize(perp)


def angle_between(v1: np.ndarray, v2: np.ndarray) -> float:
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 < EPSILON or n2 < EPSILON:
        return 0.0
    cos_angle = float(np.clip(np.dot(v1, v2) / (n1 * n2), -1.0, 1.0))
    return math.acos(cos_angle)


def rotate_about_axis(v: np.ndarray, axis: np.ndarray, angle: float) -> np.ndarray:
    """Rodrigues rotation of ``v`` around ``axis`` by ``angle`` radians."""
    k = safe_normalize(axis)
    if not k.any():
        return v.copy()
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)
    return v * cos_a + np.cross(k, v) * sin_a + k * np.dot(k, v) * (1.0 - cos_a)


def lerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    return a + (b - a) * t


# ============================================================================
# BOUNDS
# ============================================================================

@dataclass
class Bounds:
    """Axis-aligned bounding box."""
    min: np.ndarray
    max: np.ndarray

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]]) -> "Bounds":
        pts = np.array([as_vec3(p) for p in points], dtype=float)
        if len(pts) == 0:
            return cls(np.zeros(3), np.zeros(3))
        return cls(pts.min(axis=0), pts.max(axis=0))

    @classmethod
    def from_center(cls, center: np.ndarray, half_size: np.ndarray) -> "Bounds":
        center = as_vec3(center)
        half_size = np.abs(np.broadcast_to(np.asarray(half_size, dtype=float), (3,)))
        return cls(center - half_size, center + half_size)

    @property
    def center(self) -> np.ndarray:
        return (self.min + self.max) * 0.5

    @property
    def size(self) -> np.ndarray:
        return self.max - self.min

    @property
    def half_size(self) -> np.ndarray:
        """Half extents with flat axes clamped to ``MIN_HALF_SIZE``."""
        return np.maximum(self.size * 0.5, MIN_HALF_SIZE)

    @property
    def volume(self) -> float:
        return float(np.prod(self.size))

    def expanded(self, padding: float) -> "Bounds":
        return Bounds(self.min - padding, self.max + padding)

    def shrunk(self, padding: float) -> "Bounds":
        """Bounds inset by ``padding`` on every side, never inverting an axis."""
        half = np.maximum(self.size * 0.5 - padding, MIN_HALF_SIZE)
        return Bounds.from_center(self.center, half)

    def contains(self, point: np.ndarray) -> bool:
        p = as_vec3(point)
        return bool(np.all(p >= self.min) and np.all(p <= self.max))

    def normalize(self, point: np.ndarray) -> np.ndarray:
        """Map a world point into the local [-1, 1] frame of these bounds."""
        return (as_vec3(point) - self.center) / self.half_size

    def denormalize(self, point: np.ndarray) -> np.ndarray:
        """Inverse of :meth:`normalize`."""
        return as_vec3(point) * self.half_size + self.center

    def __eq__(self, other) -> bool:
        if not isinstance(other, Bounds):
            return NotImplemented
        return bool(np.allclose(self.min, other.min) and np.allclose(self.max, other.max))
