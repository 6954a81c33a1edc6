"""
Tests for routing connections between layout regions.
"""
import logging

import numpy as np
import pytest

from layout_engine.graph import GraphNode
from layout_engine.solvers.connection_router import ConnectionRouter, ConnectionType, connection_points
from layout_engine.utils.geometry_utils import Bounds, segment_intersects_sphere


def region(router, region_id, *nodes):
    return router.register_region(region_id, Bounds.from_points(n.position for n in nodes), "grid", nodes)


@pytest.fixture
def router():
    return ConnectionRouter()


@pytest.fixture
def blocked(router):
    """Three regions on the x axis; the middle one sits between the outer two."""
    a = GraphNode("a", position=(0, 0, 0))
    c = GraphNode("c", position=(200, 0, 0))
    b = GraphNode("b", position=(400, 0, 0))
    region(router, "A", a)
    region(router, "C", c)
    region(router, "B", b)
    return router


def test_connection_points_cover_faces_and_corners():
    points = connection_points(Bounds.from_center(np.zeros(3), np.array([1.0, 2.0, 3.0])))
    assert len(points) == 10
    assert any(np.allclose(p, [0, 0, 3]) for p in points)
    assert any(np.allclose(p, [-1, -2, 0]) for p in points)


def test_region_bounds_keep_members_clear(router):
    node = GraphNode("n", position=(10, 20, 30))
    reg = region(router, "R", node)
    # node radius 10 + padding 30, then padding again
    assert np.allclose(reg.bounds.min, [-60, -50, -40])
    assert np.allclose(reg.bounds.max, [80, 90, 100])
    assert reg.obstacles[0].radius == pytest.approx(40.0)


def test_direct_connection_is_a_single_segment(router):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", GraphNode("b", position=(400, 0, 0)))

    cid = router.add_connection("a", "b", type="direct")

    path = router.get_connection_path(cid)
    assert len(path) == 2
    assert np.allclose(path[0], [0, 0, 0]) and np.allclose(path[-1], [400, 0, 0])


def test_unobstructed_curve_is_sampled_bezier(router):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", GraphNode("b", position=(400, 0, 0)))

    path = router.get_connection_path(router.add_connection("a", "b"))

    assert len(path) == router.settings.curve_segments + 1
    assert np.allclose(path[0], [0, 0, 0]) and np.allclose(path[-1], [400, 0, 0])
    assert max(abs(p[1]) for p in path) > 0


def test_curved_connection_avoids_region_in_between(blocked):
    cid = blocked.add_connection("a", "b", type="curved")
    path = blocked.get_connection_path(cid)

    assert len(path) > 2
    assert any(abs(p[1]) > 0 or abs(p[2]) > 0 for p in path)
    obstacle = blocked.regions["C"].obstacles[0]
    for p, q in zip(path, path[1:]):
        assert not segment_intersects_sphere(p, q, obstacle.center, obstacle.radius)


def test_orthogonal_route_exits_region_faces(router):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", GraphNode("b", position=(400, 100, 0)))

    path = router.get_connection_path(router.add_connection("a", "b", type="orthogonal"))

    assert len(path) == 6
    assert path[1][0] == pytest.approx(router.regions["A"].bounds.max[0])
    assert path[4][0] == pytest.approx(router.regions["B"].bounds.min[0])
    assert path[2][0] == pytest.approx(path[3][0])


def test_bundled_connections_share_a_waypoint(router):
    left = [GraphNode(f"a{i}", position=(0, i * 30, 0)) for i in range(4)]
    right = [GraphNode(f"b{i}", position=(400, i * 30, 0)) for i in range(4)]
    region(router, "A", *left)
    region(router, "B", *right)

    ids = [router.add_connection(f"a{i}", f"b{i}", type="bundled") for i in range(4)]

    paths = [router.get_connection_path(cid) for cid in ids]
    assert all(len(p) == 5 for p in paths)
    for p in paths[1:]:
        assert np.allclose(p[2], paths[0][2])


def test_few_bundled_connections_route_as_curves(router):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", GraphNode("b", position=(400, 0, 0)))
    path = router.get_connection_path(router.add_connection("a", "b", type="bundled"))
    assert len(path) == router.settings.curve_segments + 1


def test_unknown_type_falls_back_to_default(router, caplog):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", GraphNode("b", position=(400, 0, 0)))
    with caplog.at_level(logging.WARNING):
        cid = router.add_connection("a", "b", type="zigzag")
    assert "Unknown connection type" in caplog.text
    assert router.connections[cid].type == ConnectionType.CURVED


def test_connection_needs_both_regions(router):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    assert router.add_connection("a", "elsewhere") is None
    assert router.connections == {}


def test_unregister_region_drops_its_connections(blocked):
    blocked.add_connection("a", "b")
    kept = blocked.add_connection("a", "c")

    blocked.unregister_region("B")

    assert list(blocked.connections) == [kept]
    assert [c.id for c in blocked.get_connections_for_region("A")] == [kept]


def test_update_and_remove_connection(router):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", GraphNode("b", position=(400, 0, 0)))
    cid = router.add_connection("a", "b", strength=0.9, metadata={"label": "x"})

    assert router.update_connection(cid, type="direct", metadata={"color": "red"})
    connection = router.connections[cid]
    assert len(connection.path) == 2
    assert connection.strength == 0.9
    assert connection.metadata == {"label": "x", "color": "red"}

    assert router.remove_connection(cid)
    assert not router.remove_connection(cid)
    assert not router.update_connection(cid, strength=0.1)


def test_update_with_unknown_type_is_rejected(router, caplog):
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", GraphNode("b", position=(400, 0, 0)))
    cid = router.add_connection("a", "b", type="direct", strength=0.9)

    with caplog.at_level(logging.WARNING):
        assert router.update_connection(cid, type="zigzag", strength=0.1) is False
    assert "Unknown connection type" in caplog.text
    connection = router.connections[cid]
    assert connection.type == ConnectionType.DIRECT
    assert connection.strength == 0.9
    assert len(connection.path) == 2


def test_active_router_follows_moving_nodes(router):
    b = GraphNode("b", position=(400, 0, 0))
    region(router, "A", GraphNode("a", position=(0, 0, 0)))
    region(router, "B", b)
    cid = router.add_connection("a", "b", type="direct")

    router.activate()
    b.position[:] = (600.0, 50.0, 0.0)
    router.update(0.016)
    assert np.allclose(router.get_connection_path(cid)[-1], [600, 50, 0])

    router.deactivate()
    b.position[:] = (0.0, 900.0, 0.0)
    router.update(0.016)
    assert np.allclose(router.get_connection_path(cid)[-1], [600, 50, 0])
