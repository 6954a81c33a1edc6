"""
Tests for mode selection and composition in the hybrid composer.
"""
import logging
import math
import time

import numpy as np
import pytest

from layout_engine.graph import GraphNode, LayoutGraph
from layout_engine.solvers.force_layout import ForceLayout
from layout_engine.solvers.impl.force_simulation import ForceSettings
from layout_engine.solvers.hybrid import HybridComposer, HybridSettings, LayoutMode
from layout_engine.utils.geometry_utils import Bounds


def make_graph(count=4, edges=((0, 1), (1, 2), (2, 3))):
    g = LayoutGraph()
    for i in range(count):
        g.add_node(GraphNode(f"n{i}", position=(i * 20.0, 0.0, 0.0)))
    for a, b in edges:
        g.add_edge(f"n{a}", f"n{b}")
    return g


@pytest.fixture
def graph():
    return make_graph()


@pytest.fixture
def composer(graph):
    comp = HybridComposer(graph, HybridSettings(transition_duration=0.0))
    yield comp
    comp.dispose()


def started_names(graph):
    names = []
    graph.on("layout:started", lambda p: names.append(p["name"]))
    return names


def wait_for(predicate, pump=None, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pump is not None:
            pump(0.016)
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_mode_from_config_name_and_flags(composer, caplog):
    assert composer.determine_layout_mode("grid", {"mode": "nested"}) == LayoutMode.NESTED
    with caplog.at_level(logging.WARNING):
        assert composer.determine_layout_mode("grid", {"mode": "sideways"}) == LayoutMode.STANDARD
    assert "Unknown layout mode" in caplog.text

    assert composer.determine_layout_mode("adaptive", {}) == LayoutMode.ADAPTIVE
    assert composer.determine_layout_mode("constraint", {}) == LayoutMode.CONSTRAINT
    assert composer.determine_layout_mode("grid", {}) == LayoutMode.STANDARD

    composer.enable_advanced_features(nesting=True, constraints=True)
    # nesting outranks constraints
    assert composer.determine_layout_mode("grid", {}) == LayoutMode.NESTED


def test_auto_select_mode():
    plain = HybridComposer(make_graph())
    assert plain.auto_select_mode() == LayoutMode.STANDARD
    plain.dispose()

    g = make_graph()
    g.nodes["n0"].data["is_container"] = True
    nested = HybridComposer(g)
    assert nested.auto_select_mode() == LayoutMode.NESTED
    nested.dispose()

    g = make_graph()
    g.edges["n0-n1"].data["constraint_type"] = "rigid"
    constrained = HybridComposer(g)
    assert constrained.auto_select_mode() == LayoutMode.CONSTRAINT
    constrained.dispose()

    big = make_graph(60, edges=())
    adaptive = HybridComposer(big)
    assert adaptive.auto_select_mode() == LayoutMode.ADAPTIVE
    big.nodes["n0"].data["child_layout"] = "grid"
    big.add_edge("n1", "n2", data={"constraint_params": {"distance": 50.0}})
    assert adaptive.auto_select_mode() == LayoutMode.HYBRID
    adaptive.dispose()


def test_auto_mode_selection_drives_apply(graph):
    graph.edges["n1-n2"].data["constraint_type"] = "elastic"
    comp = HybridComposer(graph, HybridSettings(transition_duration=0.0, auto_mode_selection=True))
    try:
        assert comp.apply_layout("grid")
        assert comp.current_mode == LayoutMode.CONSTRAINT
        assert comp.get_active_layout() is comp.constraint_system
    finally:
        comp.dispose()


def test_standard_mode_strips_routing_keys(graph, composer, caplog):
    with caplog.at_level(logging.WARNING):
        assert composer.apply_layout("grid", {"mode": "standard", "base_layout": "circular", "spacing": 50.0})
    assert "ignoring unknown settings" not in caplog.text
    assert composer.current_mode == LayoutMode.STANDARD
    assert composer.get_active_layout_name() == "grid"
    assert composer.layouts["grid"].settings["spacing"] == 50.0


def test_unknown_layout_keeps_mode(composer):
    assert composer.apply_layout("does-not-exist") is False
    assert composer.current_mode == LayoutMode.STANDARD


def test_constraint_mode_over_base_layout(graph, composer):
    graph.edges["n0-n1"].data["constraint_params"] = {"ideal_length": 120.0}
    names = started_names(graph)
    stopped = []
    graph.on("layout:stopped", stopped.append)

    assert composer.apply_layout("constraint", {"base_layout": "grid"})

    assert composer.current_mode == LayoutMode.CONSTRAINT
    assert composer.get_active_layout() is composer.constraint_system
    assert names[0] == "grid" and "constraint" in names
    assert {"name": "grid"} in stopped
    d = np.linalg.norm(graph.nodes["n0"].position - graph.nodes["n1"].position)
    # the grid puts neighbours 100 apart; the solver pulls towards 120
    assert abs(d - 120.0) < 20.0


def test_nested_mode_lays_out_containers(graph, composer):
    graph.nodes["n0"].data.update(is_container=True, child_layout="circular")
    for child in ("n1", "n2"):
        graph.nodes[child].data["parent_container"] = "n0"

    assert composer.apply_layout("nested")

    assert composer.current_mode == LayoutMode.NESTED
    assert sorted(c.id for c in composer.nested_system.children_of("n0")) == ["n1", "n2"]
    assert composer.nested_system.is_running


def test_hybrid_mode_enables_everything_and_broadcasts(graph, composer):
    names = started_names(graph)

    assert composer.apply_layout("grid", {"mode": "hybrid"})

    s = composer.settings
    assert s.enable_constraints and s.enable_nesting and s.enable_adaptive
    assert composer.current_mode == LayoutMode.HYBRID
    assert composer.get_active_layout_name() == "hybrid"
    assert composer.enabled_systems() == [composer.adaptive_system, composer.nested_system,
                                          composer.constraint_system]
    assert "hybrid" in names

    newcomer = graph.add_node(GraphNode("late", position=(5, 5, 5)))
    assert composer.constraint_system.nodes["late"] is newcomer
    assert composer.nested_system.nodes["late"] is newcomer
    assert composer.adaptive_system.nodes["late"] is newcomer

    composer.stop_layout()
    assert not composer.constraint_system.is_running


def test_enabled_systems_follow_mutations_in_background(graph, composer):
    composer.enable_advanced_features(nesting=True, constraints=True)
    assert composer.apply_layout("grid")
    assert composer.get_active_layout() is composer.nested_system

    graph.add_node(GraphNode("extra"))
    graph.add_edge("extra", "n0")

    assert "extra" in composer.constraint_system.nodes
    assert "extra" in composer.nested_system.nodes
    assert "extra-n0" in composer.nested_system.edges


def test_constraint_builders_register_graph_nodes(composer):
    constraint = composer.add_distance_constraint("n0", "n3", distance=80.0)
    assert constraint is not None
    assert composer.add_position_constraint("n1", (0, 0, 0)) is not None
    assert len(composer.constraint_system.constraints) == 2
    assert composer.remove_constraint(constraint)


def test_connections_follow_flag(graph, composer, caplog):
    a, b = graph.nodes["n0"], graph.nodes["n3"]
    composer.register_layout_region("left", Bounds.from_points([a.position]), "grid", [a])
    composer.register_layout_region("right", Bounds.from_points([b.position]), "grid", [b])
    cid = composer.add_layout_connection("n0", "n3", type="direct")
    assert cid == "n0-n3"

    composer.activate_connections()
    b.position[:] = (300.0, 0.0, 0.0)
    composer.update(0.016)
    assert np.allclose(composer.connector.get_connection_path(cid)[-1], [300, 0, 0])

    composer.enable_advanced_features(connections=False)
    assert not composer.connector.is_active
    with caplog.at_level(logging.WARNING):
        assert composer.add_layout_connection("n0", "n3") is None
        assert composer.remove_layout_connection(cid) is False
    assert "Connections are disabled" in caplog.text


def test_removed_node_leaves_regions(graph, composer):
    node = graph.nodes["n1"]
    composer.register_layout_region("r", Bounds.from_points([node.position]), "grid", [node])
    graph.remove_node("n1")
    assert "n1" not in composer.connector.regions["r"].nodes


def test_adaptation_delegates(composer):
    composer.add_adaptation_rule("always-grid", lambda m: True, "grid", priority=0)
    assert composer.apply_layout("adaptive")
    assert composer.adaptive_system.current_layout_name == "grid"
    assert composer.force_adaptation("circular")
    assert [h.layout for h in composer.get_layout_history()] == ["grid", "circular"]
    assert composer.remove_adaptation_rule("always-grid")
    composer.set_adaptation_enabled(False)
    assert composer.adaptive_system.settings.enable_auto_adaptation is False


def test_set_layout_mode_flags(composer):
    composer.set_layout_mode("constraint")
    s = composer.settings
    assert (s.enable_constraints, s.enable_nesting, s.enable_adaptive) == (True, False, False)
    composer.set_layout_mode(LayoutMode.STANDARD)
    assert not any((s.enable_constraints, s.enable_nesting, s.enable_adaptive))
    with pytest.raises(ValueError):
        composer.set_layout_mode("wobbly")


def test_capabilities_report(composer):
    composer.add_distance_constraint("n0", "n1")
    caps = composer.get_layout_capabilities()

    assert caps["modes"] == ["standard", "constraint", "nested", "adaptive", "hybrid"]
    assert caps["current_mode"] == "standard"
    assert caps["active_layout"] is None
    assert {"grid", "force", "constraint", "nested", "adaptive"} <= set(caps["layouts"])
    assert caps["settings"]["enable_connections"] is True
    assert caps["constraints"] == 1
    assert caps["regions"] == 0 and caps["connections"] == 0
    assert "SmallNodeCount" in caps["adaptation_rules"]


def test_dispose_clears_router(composer):
    composer.register_layout_region("r", Bounds.from_points([np.zeros(3)]), "grid")
    composer.dispose()
    assert composer.connector.regions == {}
    assert composer.layouts == {}


def test_hybrid_base_layout_is_pumped_and_stopped(graph, composer):
    force = ForceLayout(ForceSettings(step_interval=0.0, auto_stop_delay=60.0, seed=2))
    composer.register_layout("force", force)

    assert composer.apply_layout("force", {"mode": "hybrid"})

    proxy = composer.get_active_layout()
    assert proxy._systems() == [composer.adaptive_system, composer.nested_system,
                                composer.constraint_system, force]
    assert force.is_running
    # engine output only reaches the layout through the composer's update
    assert wait_for(lambda: math.isfinite(force.energy), pump=composer.update)

    newcomer = graph.add_node(GraphNode("late", position=(5, 5, 5)))
    assert force.nodes["late"] is newcomer

    composer.stop_layout()
    assert not force.is_running
    assert wait_for(lambda: not force._worker.simulation.is_running)
