"""
Tests for layout switching and graph event routing.
"""
import logging
import time

import numpy as np
import pytest

from layout_engine.graph import GraphNode, LayoutGraph
from layout_engine.solvers.base import LayoutStrategy
from layout_engine.solvers.force_layout import ForceLayout
from layout_engine.solvers.impl.force_simulation import ForceSettings
from layout_engine.solvers.orchestrator import LayoutOrchestrator, OrchestratorSettings
from layout_engine.solvers.registry import available_strategies
from layout_engine.solvers.static_layouts import GridLayout


class RecordingLayout(LayoutStrategy):
    """Moves every node to a fixed spot and records the calls it receives."""

    name = "recording"

    def __init__(self, target=(100.0, 0.0, 0.0)):
        super().__init__()
        self.target = np.array(target, dtype=float)
        self.calls = []

    def init(self, nodes, edges, config=None):
        self.calls.append(("init", dict(config or {})))
        self.nodes = {n.id: n for n in nodes}
        for node in nodes:
            if not node.is_pinned:
                node.position[:] = self.target

    def run(self):
        self.is_running = True
        self.calls.append(("run",))

    def stop(self):
        self.is_running = False
        self.calls.append(("stop",))

    def kick(self, intensity=1.0):
        self.calls.append(("kick", intensity))

    def update(self, dt):
        self.calls.append(("update", dt))

    def add_node(self, node):
        self.calls.append(("add_node", node.id))

    def remove_node(self, node):
        self.calls.append(("remove_node", node.id))

    def add_edge(self, edge):
        self.calls.append(("add_edge", edge.id))

    def remove_edge(self, edge):
        self.calls.append(("remove_edge", edge.id))


def call_names(layout):
    return [c[0] for c in layout.calls]


@pytest.fixture
def graph():
    g = LayoutGraph()
    g.add_node(GraphNode("a", position=(0, 0, 0)))
    g.add_node(GraphNode("b", position=(10, 0, 0)))
    return g


@pytest.fixture
def orchestrator(graph):
    orch = LayoutOrchestrator(graph, OrchestratorSettings(transition_duration=1.0, transition_easing="linear"),
                              register_defaults=False)
    orch.register_layout("first", RecordingLayout((100.0, 0.0, 0.0)))
    orch.register_layout("second", RecordingLayout((0.0, 100.0, 0.0)))
    yield orch
    orch.dispose()


def test_default_registration_covers_registry(graph):
    orch = LayoutOrchestrator(graph)
    try:
        assert sorted(orch.layouts) == available_strategies()
        assert all(layout.graph is graph for layout in orch.layouts.values())
    finally:
        orch.dispose()


def test_register_overwrite_warns(orchestrator, caplog):
    with caplog.at_level(logging.WARNING):
        orchestrator.register_layout("first", RecordingLayout())
    assert "already registered" in caplog.text


def test_unknown_layout_returns_false(orchestrator, caplog):
    with caplog.at_level(logging.ERROR):
        assert orchestrator.apply_layout("missing") is False
    assert "not found" in caplog.text
    assert orchestrator.get_active_layout() is None


def test_transition_then_run(graph, orchestrator):
    started = []
    graph.on("layout:started", started.append)
    layout = orchestrator.layouts["first"]

    assert orchestrator.apply_layout("first", {"spacing": 3})

    assert layout.calls[0] == ("init", {"spacing": 3})
    assert orchestrator.is_transitioning
    # positions restored before the tween starts
    assert np.allclose(graph.nodes["a"].position, [0, 0, 0])

    orchestrator.update(0.5)
    assert np.allclose(graph.nodes["a"].position, [50, 0, 0])
    assert np.allclose(graph.nodes["b"].position, [55, 0, 0])
    assert "run" not in call_names(layout)
    assert started == []

    orchestrator.update(0.5)
    assert not orchestrator.is_transitioning
    assert np.allclose(graph.nodes["b"].position, [100, 0, 0])
    assert started == [{"name": "first"}]
    assert "run" in call_names(layout)
    assert orchestrator.get_active_layout_name() == "first"


def test_switch_stops_previous_and_emits(graph, orchestrator):
    stopped = []
    graph.on("layout:stopped", stopped.append)

    orchestrator.apply_layout("first")
    orchestrator.update(1.0)
    orchestrator.apply_layout("second")

    assert stopped == [{"name": "first"}]
    assert "stop" in call_names(orchestrator.layouts["first"])
    assert orchestrator.get_active_layout() is orchestrator.layouts["second"]


def test_switch_mid_transition_cancels_previous_tween(graph, orchestrator):
    orchestrator.apply_layout("first")
    orchestrator.update(0.5)
    orchestrator.apply_layout("second")
    orchestrator.update(1.0)

    # 'first' never ran; the second tween started from the midway point
    assert "run" not in call_names(orchestrator.layouts["first"])
    assert np.allclose(graph.nodes["a"].position, [0, 100, 0])


def test_zero_duration_completes_immediately(graph):
    orch = LayoutOrchestrator(graph, OrchestratorSettings(transition_duration=0.0), register_defaults=False)
    orch.register_layout("grid", GridLayout({"spacing": 40.0}))
    started = []
    graph.on("layout:started", started.append)

    orch.apply_layout("grid")

    assert not orch.is_transitioning
    assert started == [{"name": "grid"}]
    assert np.allclose(graph.nodes["a"].position, [-20, 0, 0])
    assert np.allclose(graph.nodes["b"].position, [20, 0, 0])


def test_pinned_node_stays_during_transition(graph, orchestrator):
    graph.nodes["a"].is_pinned = True
    orchestrator.apply_layout("first")
    orchestrator.update(0.5)
    assert np.allclose(graph.nodes["a"].position, [0, 0, 0])


def test_graph_mutations_reach_active_layout_only(graph, orchestrator):
    orchestrator.apply_layout("first")
    orchestrator.update(1.0)
    first, second = orchestrator.layouts["first"], orchestrator.layouts["second"]

    graph.add_node(GraphNode("c"))
    graph.add_edge("a", "c")
    graph.remove_edge("a-c")
    graph.remove_node("c")

    assert [c for c in first.calls if c[0] in ("add_node", "add_edge", "remove_edge", "remove_node")] == [
        ("add_node", "c"), ("add_edge", "a-c"), ("remove_edge", "a-c"), ("remove_node", "c")]
    assert second.calls == []


def test_removed_node_leaves_transition(graph, orchestrator):
    orchestrator.apply_layout("first")
    node = graph.nodes["b"]
    graph.remove_node("b")
    orchestrator.update(1.0)
    assert np.allclose(node.position, [10, 0, 0])


def test_kick_and_stop_layout(graph, orchestrator):
    orchestrator.apply_layout("first")
    orchestrator.update(1.0)
    orchestrator.kick(2.0)
    orchestrator.stop_layout()
    assert ("kick", 2.0) in orchestrator.layouts["first"].calls
    assert not orchestrator.layouts["first"].is_running


def test_dispose_unsubscribes(graph, orchestrator):
    layout = orchestrator.layouts["first"]
    orchestrator.apply_layout("first")
    orchestrator.dispose()
    graph.add_node(GraphNode("late"))
    assert ("add_node", "late") not in layout.calls
    assert orchestrator.layouts == {}


def test_force_restarts_after_switching_away_and_back(graph):
    orch = LayoutOrchestrator(graph, OrchestratorSettings(transition_duration=0.0), register_defaults=False)
    force = ForceLayout(ForceSettings(step_interval=0.05, auto_stop_delay=60.0, seed=3))
    orch.register_layout("force", force)
    orch.register_layout("grid", GridLayout())
    stopped = []
    graph.on("layout:stopped", stopped.append)
    try:
        orch.apply_layout("force")
        # undrained positions pile up while the force layout is active
        time.sleep(0.3)
        orch.apply_layout("grid")
        grid_positions = {n.id: n.position.copy() for n in graph.get_node_list()}

        orch.apply_layout("force")
        orch.update(0.0)

        for node in graph.get_node_list():
            assert np.linalg.norm(node.position - grid_positions[node.id]) < 5.0
        deadline = time.monotonic() + 5.0
        while not force._worker.simulation.is_running and time.monotonic() < deadline:
            time.sleep(0.01)
        assert force._worker.simulation.is_running
        assert force.is_running

        orch.update(0.0)
        assert stopped == [{"name": "force"}, {"name": "grid"}]
    finally:
        orch.dispose()
