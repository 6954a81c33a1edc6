"""
Tests for the force simulation engine (stepped synchronously, no thread).
"""
import math

import numpy as np
import pytest

from layout_engine.schemas.simulation import (
    ConstraintParams,
    NodeStatePayload,
    RemoveEdgePayload,
    WorkerEdge,
    WorkerNode,
)
from layout_engine.solvers.impl.force_simulation import ForceSettings, ForceSimulation


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_nodes(coords, **kwargs):
    return [WorkerNode(id=f"n{i}", x=x, y=y, z=z, **kwargs) for i, (x, y, z) in enumerate(coords)]


def chain_edges(ids, **params):
    return [
        WorkerEdge(id=f"{a}-{b}", source_id=a, target_id=b, constraint_params=ConstraintParams(**params))
        for a, b in zip(ids, ids[1:])
    ]


def test_simulation_settles():
    sim = ForceSimulation(ForceSettings(seed=3))
    nodes = make_nodes([(0, 0, 0), (40, 0, 0), (0, 40, 0), (40, 40, 10), (20, 20, -10)])
    sim.load(nodes, chain_edges([n.id for n in nodes]))

    steps = sim.run_until_stable(max_steps=3000)

    assert steps < 3000
    assert sim.smoothed_energy < sim.settings.min_energy_threshold
    assert np.all(np.isfinite(sim.positions))


def test_pinned_nodes_are_bit_for_bit_unchanged():
    sim = ForceSimulation(ForceSettings(seed=1))
    nodes = make_nodes([(0, 0, 0), (5, 0, 0), (0, 5, 0)])
    nodes[0] = WorkerNode(id="n0", x=1.25, y=-3.5, z=0.125, is_pinned=True)
    sim.load(nodes, chain_edges(["n0", "n1", "n2"]))
    before = sim.positions[0].copy()

    for _ in range(200):
        sim.step()

    assert np.array_equal(sim.positions[0], before)
    assert np.array_equal(sim.velocities[0], np.zeros(3))


def test_three_node_elastic_chain_straightens():
    """Stiff springs dominate repulsion, so the edges settle at their ideal length."""
    settings = ForceSettings(gravity_center=(0.0, 0.0, 0.0), default_elastic_stiffness=0.2,
                             default_elastic_ideal_length=100.0, seed=7)
    sim = ForceSimulation(settings)
    # A - B - C bent at B (about 127 degrees)
    sim.load(
        [WorkerNode(id="A", x=-100), WorkerNode(id="B", y=50), WorkerNode(id="C", x=100)],
        chain_edges(["A", "B", "C"]),
    )

    for _ in range(2000):
        sim.step()

    a, b, c = (sim.positions[sim.index[k]] for k in "ABC")
    assert np.linalg.norm(a - b) == pytest.approx(100.0, abs=5.0)
    assert np.linalg.norm(c - b) == pytest.approx(100.0, abs=5.0)
    ba, bc = a - b, c - b
    angle = math.degrees(math.acos(np.dot(ba, bc) / (np.linalg.norm(ba) * np.linalg.norm(bc))))
    assert angle > 150.0


def test_default_stiffness_chain_is_stretched_by_repulsion():
    """With the default springs repulsion wins: both edges end up longer than ideal."""
    settings = ForceSettings(gravity_center=(0.0, 0.0, 0.0), default_elastic_ideal_length=100.0, seed=7)
    sim = ForceSimulation(settings)
    sim.load(
        [WorkerNode(id="A", x=-100), WorkerNode(id="B", y=50), WorkerNode(id="C", x=100)],
        chain_edges(["A", "B", "C"]),
    )

    for _ in range(2000):
        sim.step()

    assert np.all(np.isfinite(sim.positions))
    a, b, c = (sim.positions[sim.index[k]] for k in "ABC")
    assert np.linalg.norm(a - b) > 100.0
    assert np.linalg.norm(c - b) > 100.0
    assert np.linalg.norm(a - b) == pytest.approx(np.linalg.norm(c - b), rel=0.05)


def test_coincident_nodes_are_separated():
    sim = ForceSimulation(ForceSettings(seed=11))
    sim.load(make_nodes([(0, 0, 0), (0, 0, 0)]), [])

    for _ in range(50):
        sim.step()

    assert np.all(np.isfinite(sim.positions))
    assert np.linalg.norm(sim.positions[0] - sim.positions[1]) > 1.0


def test_rigid_edge_uses_distance_parameter():
    settings = ForceSettings(repulsion=0.0, center_strength=0.0, seed=2)
    sim = ForceSimulation(settings)
    sim.load(
        make_nodes([(0, 0, 0), (300, 0, 0)]),
        [WorkerEdge(id="e", source_id="n0", target_id="n1", constraint_type="rigid",
                    constraint_params=ConstraintParams(distance=50.0))],
    )
    for _ in range(500):
        sim.step()
    assert np.linalg.norm(sim.positions[0] - sim.positions[1]) == pytest.approx(50.0, abs=1.0)


def test_add_and_remove_node_keeps_arrays_aligned():
    sim = ForceSimulation(ForceSettings(seed=0))
    sim.load(make_nodes([(0, 0, 0), (10, 0, 0), (20, 0, 0)]), chain_edges(["n0", "n1", "n2"]))

    assert sim.remove_node("n1") is True
    assert sim.ids == ["n0", "n2"]
    assert sim.index == {"n0": 0, "n2": 1}
    assert sim.positions.shape == (2, 3)
    # both chain edges touched n1
    assert sim.edges == {}

    sim.add_node(WorkerNode(id="n3", x=5.0))
    assert sim.index["n3"] == 2
    assert sim.positions[2][0] == pytest.approx(5.0)
    assert sim.remove_node("missing") is False


def test_remove_edge_by_id_or_endpoints():
    sim = ForceSimulation()
    sim.load(make_nodes([(0, 0, 0), (10, 0, 0), (20, 0, 0)]), chain_edges(["n0", "n1", "n2"]))

    assert sim.remove_edge(RemoveEdgePayload(edge_id="n0-n1"))
    assert sim.remove_edge(RemoveEdgePayload(source_id="n1", target_id="n2"))
    assert not sim.remove_edge(RemoveEdgePayload(edge_id="nope"))
    assert sim.edges == {}


def test_edge_with_unknown_endpoint_is_skipped():
    sim = ForceSimulation()
    sim.load(make_nodes([(0, 0, 0)]), [WorkerEdge(id="x", source_id="n0", target_id="ghost")])
    assert sim.edges == {}


def test_update_node_state_fixes_and_moves():
    sim = ForceSimulation()
    sim.load(make_nodes([(0, 0, 0), (10, 0, 0)]), [])
    sim.update_node_state(NodeStatePayload(node_id="n1", is_fixed=True, position=(7.0, 8.0, 9.0)))

    assert sim.fixed[1]
    assert not sim.pinned[1]
    assert np.allclose(sim.positions[1], [7, 8, 9])
    for _ in range(20):
        sim.step()
    assert np.allclose(sim.positions[1], [7, 8, 9])


def test_start_requires_two_nodes():
    sim = ForceSimulation()
    sim.load(make_nodes([(0, 0, 0)]), [])
    assert sim.start() is False
    sim.add_node(WorkerNode(id="other", x=10))
    assert sim.start() is True
    assert sim.is_running


def test_should_stop_waits_for_auto_stop_delay():
    clock = FakeClock()
    sim = ForceSimulation(ForceSettings(auto_stop_delay=4.0), clock=clock)
    sim.load(make_nodes([(0, 0, 0), (10, 0, 0)]), [])
    sim.smoothed_energy = 0.0

    assert sim.should_stop() is False
    clock.now = 3.9
    assert sim.should_stop() is False
    clock.now = 4.1
    assert sim.should_stop() is True

    # a kick restarts the quiet period
    sim.kick(1.0)
    sim.smoothed_energy = 0.0
    assert sim.should_stop() is False


def test_update_settings_ignores_unknown_keys():
    sim = ForceSimulation()
    sim.update_settings({"repulsion": 10.0, "not_a_setting": 1})
    assert sim.settings.repulsion == 10.0
    assert not hasattr(sim.settings, "not_a_setting")


def test_kick_leaves_fixed_nodes_still():
    sim = ForceSimulation(ForceSettings(seed=4))
    nodes = make_nodes([(0, 0, 0), (50, 0, 0)])
    nodes[0] = WorkerNode(id="n0", is_pinned=True)
    sim.load(nodes, [])
    sim.kick(5.0)
    assert np.array_equal(sim.velocities[0], np.zeros(3))
    assert np.linalg.norm(sim.velocities[1]) > 0
