from __future__ import annotations

import math
from typing import List

import jax.numpy as jnp
import pytest

from slam2d.core.errors import InconsistentMirrorError
from slam2d.core.math2d import se2_compose
from slam2d.core.pose_graph import PoseGraph
from slam2d.core.types import EdgeState, EdgeType, PoseUpdateHook, SimpleModel
from slam2d.optimization.mirror import GaussNewtonMirror, add_paired_edge, add_paired_node
from slam2d.slam.trajectory import TrajectoryUpdater, initialize_from_odometry


class RecordingScan:
    def __init__(self, name: str, log: List[str]):
        self.name = name
        self.log = log
        self.pose = None

    def on_pose_updated(self, pose):
        self.pose = pose
        self.log.append(self.name)


def test_recording_scan_satisfies_hook_protocol():
    assert isinstance(RecordingScan("a", []), PoseUpdateHook)
    assert not isinstance("plain payload", PoseUpdateHook)


def test_apply_writes_estimates_in_node_order_and_skips_anchor():
    log: List[str] = []
    graph, mirror = PoseGraph(), GaussNewtonMirror()
    add_paired_node(graph, mirror, jnp.zeros(3), RecordingScan("s0", log), fixed=True)
    add_paired_node(graph, mirror, jnp.array([1.0, 0.0, 0.0]), "no hook here", fixed=False)
    add_paired_node(graph, mirror, jnp.array([2.0, 0.0, 0.0]), RecordingScan("s2", log), fixed=False)

    mirror.set_estimate(0, jnp.array([9.0, 9.0, 0.0]))
    mirror.set_estimate(2, jnp.array([2.0, 0.5, 0.1]))

    written = TrajectoryUpdater(graph, mirror).apply()

    assert written == 2
    assert jnp.array_equal(graph.get_node(0).pose, jnp.zeros(3))
    assert jnp.allclose(graph.get_node(2).pose, jnp.array([2.0, 0.5, 0.1]))
    assert log == ["s0", "s2"]
    assert jnp.allclose(graph.get_node(2).payload.pose, jnp.array([2.0, 0.5, 0.1]))
    assert jnp.array_equal(graph.get_node(0).payload.pose, jnp.zeros(3))


def test_payload_without_hook_is_skipped():
    graph, mirror = PoseGraph(), GaussNewtonMirror()
    add_paired_node(graph, mirror, jnp.zeros(3), "scan-0", fixed=True)
    add_paired_node(graph, mirror, jnp.array([1.0, 0.0, 0.0]), "scan-1", fixed=False)
    add_paired_node(graph, mirror, jnp.array([2.0, 0.0, 0.0]), None, fixed=False)
    mirror.set_estimate(1, jnp.array([1.2, 0.1, 0.0]))

    assert TrajectoryUpdater(graph, mirror).apply() == 2
    assert jnp.allclose(graph.get_node(1).pose, jnp.array([1.2, 0.1, 0.0]))
    assert graph.get_node(1).payload == "scan-1"
    assert graph.get_node(2).payload is None


def test_missing_vertex_aborts_before_any_write():
    graph, mirror = PoseGraph(), GaussNewtonMirror()
    add_paired_node(graph, mirror, jnp.zeros(3), None, fixed=True)
    add_paired_node(graph, mirror, jnp.array([1.0, 0.0, 0.0]), None, fixed=False)
    mirror.set_estimate(1, jnp.array([5.0, 0.0, 0.0]))
    graph.add_node(jnp.array([2.0, 0.0, 0.0]))  # bypasses the mirror

    with pytest.raises(InconsistentMirrorError):
        TrajectoryUpdater(graph, mirror).apply()
    assert jnp.allclose(graph.get_node(1).pose, jnp.array([1.0, 0.0, 0.0]))


def test_initialize_from_odometry_composes_chain():
    """
    Square-ish chain with turns: the re-derived poses must equal the
    sequential composition of the odometry transforms from the origin.
    """
    steps = [
        jnp.array([1.0, 0.0, 0.5 * math.pi]),
        jnp.array([1.0, 0.0, 0.5 * math.pi]),
        jnp.array([0.5, 0.2, -0.3]),
        jnp.array([2.0, -1.0, 0.1]),
    ]
    g = PoseGraph()
    for _ in range(len(steps) + 1):
        g.add_node(jnp.array([7.0, -3.0, 1.0]))
    for i, t in enumerate(steps):
        g.add_edge(i, i + 1, t, jnp.eye(3))
    # A loop edge must not influence the walk
    g.add_edge(0, 4, jnp.array([0.0, 0.0, 0.0]), jnp.eye(3), EdgeType.LOOP)

    updated = initialize_from_odometry(g, 0)

    assert updated == [0, 1, 2, 3, 4]
    expected = jnp.zeros(3)
    assert jnp.allclose(g.get_node(0).pose, expected)
    for i, t in enumerate(steps):
        expected = se2_compose(expected, t)
        assert jnp.allclose(g.get_node(i + 1).pose, expected, atol=1e-5)


def test_initialize_from_odometry_stops_at_inactive_or_missing_edge():
    g = PoseGraph()
    for _ in range(4):
        g.add_node(jnp.array([5.0, 5.0, 0.0]))
    g.add_edge(0, 1, jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    e = g.add_edge(1, 2, jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    g.set_edge_state(e, EdgeState.INACTIVE)

    assert initialize_from_odometry(g, 0) == [0, 1]
    assert jnp.allclose(g.get_node(2).pose, jnp.array([5.0, 5.0, 0.0]))


def test_initialize_from_odometry_stops_on_cycle():
    g = PoseGraph()
    for _ in range(3):
        g.add_node(jnp.zeros(3))
    g.add_edge(0, 1, jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    g.add_edge(1, 2, jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    g.add_edge(2, 0, jnp.array([-2.0, 0.0, 0.0]), jnp.eye(3))
    assert initialize_from_odometry(g, 0) == [0, 1, 2]


def test_initialize_from_odometry_on_paired_graph():
    graph, mirror = PoseGraph(), GaussNewtonMirror()
    add_paired_node(graph, mirror, jnp.zeros(3), None, fixed=True)
    add_paired_node(graph, mirror, jnp.array([3.0, 3.0, 0.0]), None, fixed=False)
    add_paired_edge(graph, mirror, 0, 1, jnp.array([1.0, 0.0, 0.0]), SimpleModel(jnp.eye(3)))
    initialize_from_odometry(graph, 0)
    assert jnp.allclose(graph.get_node(1).pose, jnp.array([1.0, 0.0, 0.0]))
