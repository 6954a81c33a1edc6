import math

import numpy as np
import pytest
from layout_engine.utils import geometry_utils as gu
from layout_engine.utils.tween import PositionTween, get_easing
from layout_engine.graph import GraphNode


def test_bounds_normalize_round_trip():
    bounds = gu.Bounds(gu.vec3(-50, 10, 0), gu.vec3(150, 90, 40))
    p = gu.vec3(12.5, 33.0, 7.0)

    local = bounds.normalize(p)
    assert np.allclose(bounds.denormalize(local), p)

    # corners map to +-1
    assert np.allclose(bounds.normalize(bounds.min), [-1, -1, -1])
    assert np.allclose(bounds.normalize(bounds.max), [1, 1, 1])
    assert np.allclose(bounds.normalize(bounds.center), [0, 0, 0])


def test_flat_bounds_do_not_divide_by_zero():
    # all points in the z=0 plane
    bounds = gu.Bounds.from_points([(0, 0, 0), (10, 20, 0)])
    assert bounds.half_size[2] == pytest.approx(gu.MIN_HALF_SIZE)
    local = bounds.normalize((5, 10, 0))
    assert np.all(np.isfinite(local))
    assert np.allclose(bounds.denormalize(local), [5, 10, 0])


def test_bounds_shrunk_never_inverts():
    bounds = gu.Bounds.from_center((0, 0, 0), (10, 10, 10))
    inner = bounds.shrunk(25)
    assert np.all(inner.max >= inner.min)
    assert inner.center == pytest.approx(bounds.center)


def test_project_point_to_segment():
    a = gu.vec3(0, 0, 0)
    b = gu.vec3(10, 0, 0)

    proj, dist = gu.project_point_to_segment(gu.vec3(5, 3, 0), a, b)
    assert np.allclose(proj, [5, 0, 0])
    assert dist == pytest.approx(3.0)

    # beyond the end clamps to b
    proj, dist = gu.project_point_to_segment(gu.vec3(14, 3, 0), a, b)
    assert np.allclose(proj, b)
    assert dist == pytest.approx(5.0)

    # zero-length segment
    proj, dist = gu.project_point_to_segment(gu.vec3(3, 4, 0), a, a)
    assert dist == pytest.approx(5.0)


def test_segment_intersects_sphere():
    a = gu.vec3(-100, 0, 0)
    b = gu.vec3(100, 0, 0)
    assert gu.segment_intersects_sphere(a, b, gu.vec3(0, 5, 0), 10)
    assert not gu.segment_intersects_sphere(a, b, gu.vec3(0, 50, 0), 10)


def test_cubic_bezier_endpoints_and_count():
    p0, p3 = gu.vec3(0, 0, 0), gu.vec3(100, 0, 0)
    pts = gu.cubic_bezier(p0, gu.vec3(30, 40, 0), gu.vec3(70, 40, 0), p3, segments=20)
    assert len(pts) == 21
    assert np.allclose(pts[0], p0)
    assert np.allclose(pts[-1], p3)
    # symmetric control points put the midpoint on x=50
    assert pts[10][0] == pytest.approx(50.0)
    assert pts[10][1] > 0


def test_perpendicular_and_angle():
    d = gu.vec3(1, 1, 0)
    perp = gu.perpendicular(d)
    assert np.dot(perp, d) == pytest.approx(0.0)
    assert np.linalg.norm(perp) == pytest.approx(1.0)
    # parallel to z falls back to the x axis
    assert np.allclose(gu.perpendicular(gu.vec3(0, 0, 5)), [1, 0, 0])

    assert gu.angle_between(gu.vec3(1, 0, 0), gu.vec3(0, 1, 0)) == pytest.approx(math.pi / 2)
    assert gu.angle_between(gu.vec3(0, 0, 0), gu.vec3(0, 1, 0)) == 0.0


def test_rotate_about_axis():
    v = gu.rotate_about_axis(gu.vec3(1, 0, 0), gu.vec3(0, 0, 1), math.pi / 2)
    assert np.allclose(v, [0, 1, 0])


def test_as_vec3_accepts_dicts_and_pairs():
    assert np.allclose(gu.as_vec3({"x": 1, "y": 2}), [1, 2, 0])
    assert np.allclose(gu.as_vec3((3, 4)), [3, 4, 0])
    assert np.allclose(gu.as_vec3(np.array([1.0, 2.0, 3.0])), [1, 2, 3])


def test_tween_reaches_target_and_fires_once():
    node = GraphNode("a", position=(0, 0, 0))
    calls = []
    tween = PositionTween({node: ((0, 0, 0), (100, 0, 0))}, 1.0, "linear", on_complete=lambda: calls.append(1))

    assert tween.update(0.5) is False
    assert node.position[0] == pytest.approx(50.0)
    assert tween.update(0.6) is True
    assert np.allclose(node.position, [100, 0, 0])
    tween.update(0.1)
    assert calls == [1]


def test_zero_duration_tween_completes_immediately():
    node = GraphNode("a")
    tween = PositionTween({node: ((0, 0, 0), (1, 2, 3))}, 0.0)
    assert tween.update(0.0) is True
    assert np.allclose(node.position, [1, 2, 3])


def test_cancelled_tween_stops_writing():
    node = GraphNode("a")
    done = []
    tween = PositionTween({node: ((0, 0, 0), (10, 0, 0))}, 1.0, "linear", on_complete=lambda: done.append(1))
    tween.update(0.2)
    tween.cancel()
    tween.update(5.0)
    assert node.position[0] == pytest.approx(2.0)
    assert done == []


def test_unknown_easing_falls_back():
    assert get_easing("bounce.wobble")(0.5) == pytest.approx(get_easing("power2.inOut")(0.5))
