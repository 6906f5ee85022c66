from __future__ import annotations

import jax.numpy as jnp
import pytest

from slam2d.core.errors import NotFoundError
from slam2d.core.pose_graph import PoseGraph
from slam2d.core.types import EdgeState, EdgeType


def _chain(n: int) -> PoseGraph:
    g = PoseGraph()
    for i in range(n):
        g.add_node(jnp.array([float(i), 0.0, 0.0]), payload=f"scan{i}")
    for i in range(n - 1):
        g.add_edge(i, i + 1, jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    return g


def test_node_and_edge_ids_are_dense_from_zero():
    g = _chain(4)
    assert [n.id for n in g.nodes()] == [0, 1, 2, 3]
    assert [e.id for e in g.edges()] == [0, 1, 2]
    assert g.num_nodes == 4
    assert g.num_edges == 3


def test_add_edge_links_endpoints():
    g = _chain(3)
    n1 = g.get_node(1)
    assert n1.edges_in == [0]
    assert n1.edges_out == [1]
    assert g.edge_endpoints(1) == (1, 2)
    assert g.get_node(2).payload == "scan2"


def test_unknown_ids_raise_not_found():
    g = _chain(2)
    for bad in (2, -1, 100):
        with pytest.raises(NotFoundError):
            g.get_node(bad)
    with pytest.raises(NotFoundError):
        g.get_edge(1)
    # NotFoundError is also a KeyError for dict-style callers
    with pytest.raises(KeyError):
        g.get_edge(5)


def test_bool_is_not_a_node_id():
    g = _chain(2)
    assert not g.has_node(True)
    with pytest.raises(NotFoundError):
        g.get_node(True)


def test_edge_to_unknown_node_adds_nothing():
    g = _chain(2)
    with pytest.raises(NotFoundError):
        g.add_edge(0, 7, jnp.zeros(3), jnp.eye(3))
    assert g.num_edges == 1
    assert g.get_node(0).edges_out == [0]


def test_pose_and_information_are_validated():
    g = PoseGraph()
    with pytest.raises(ValueError):
        g.add_node(jnp.zeros(2))
    g.add_node(jnp.zeros(3))
    g.add_node(jnp.zeros(3))
    with pytest.raises(ValueError):
        g.add_edge(0, 1, jnp.zeros(3), jnp.eye(2))


def test_information_is_symmetrized():
    g = PoseGraph()
    g.add_node(jnp.zeros(3))
    g.add_node(jnp.zeros(3))
    info = jnp.array([[2.0, 0.2, 0.0], [0.0, 2.0, 0.0], [0.0, 0.0, 1.0]])
    eid = g.add_edge(0, 1, jnp.zeros(3), info)
    stored = g.get_edge(eid).information
    assert jnp.allclose(stored, stored.T)
    assert float(stored[0, 1]) == pytest.approx(0.1)


def test_loop_edges_filter_by_state():
    g = _chain(4)
    a = g.add_edge(0, 3, jnp.array([3.0, 0.0, 0.0]), jnp.eye(3), EdgeType.LOOP)
    b = g.add_edge(1, 3, jnp.array([2.0, 0.0, 0.0]), jnp.eye(3), EdgeType.LOOP)
    g.set_edge_state(a, EdgeState.INACTIVE)

    assert [e.id for e in g.loop_edges()] == [b]
    assert [e.id for e in g.loop_edges(EdgeState.INACTIVE)] == [a]
    assert [e.id for e in g.loop_edges(None)] == [a, b]
    # Inactive edges are still part of iteration
    assert g.num_edges == 5


def test_edges_out_by_type_and_last_node_ids():
    g = _chain(3)
    g.add_edge(0, 2, jnp.array([2.0, 0.0, 0.0]), jnp.eye(3), EdgeType.LOOP)
    assert [e.id for e in g.edges_out(0)] == [0, 2]
    assert [e.id for e in g.edges_out(0, EdgeType.ODOM)] == [0]
    assert g.last_node_ids(2) == [1, 2]
    assert g.last_node_ids(0) == []


def test_update_node_pose_and_poses_snapshot():
    g = _chain(2)
    g.update_node_pose(1, jnp.array([5.0, 1.0, 0.5]))
    poses = g.poses()
    assert jnp.allclose(poses[1], jnp.array([5.0, 1.0, 0.5]))
    assert set(poses) == {0, 1}


def test_stored_arrays_use_default_float_dtype():
    g = PoseGraph()
    a = g.add_node([0, 1, 2])
    b = g.add_node(jnp.zeros(3))
    eid = g.add_edge(a, b, [1, 0, 0], [[1, 0, 0], [0, 1, 0], [0, 0, 1]])
    expected = jnp.result_type(float)
    assert g.get_node(a).pose.dtype == expected
    assert g.get_edge(eid).transform.dtype == expected
    assert g.get_edge(eid).information.dtype == expected
