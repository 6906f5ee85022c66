from __future__ import annotations

import io

import jax.numpy as jnp
import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

from slam2d.core.pose_graph import PoseGraph  # noqa: E402
from slam2d.core.types import EdgeState, EdgeType  # noqa: E402
from slam2d.world.visualization import (  # noqa: E402
    GRAY,
    GREEN,
    RED,
    create_arrow_markers,
    create_list_markers,
    plot_pose_graph_2d,
    serialize_graph_text,
)


def _graph() -> PoseGraph:
    g = PoseGraph()
    g.add_node(jnp.array([0.0, 0.0, 0.0]))
    g.add_node(jnp.array([1.0, 0.0, 1.57]))
    g.add_node(jnp.array([1.0, 1.0, 3.14]))
    g.add_edge(0, 1, jnp.array([1.0, 0.0, 1.57]), jnp.eye(3))
    g.add_edge(1, 2, jnp.array([1.0, 0.0, 1.57]), jnp.eye(3))
    g.add_edge(0, 2, jnp.array([1.0, 1.0, 3.14]), jnp.eye(3), EdgeType.LOOP)
    g.add_edge(2, 0, jnp.array([1.0, 1.0, 3.14]), jnp.eye(3), EdgeType.LOOP)
    g.set_edge_state(3, EdgeState.INACTIVE)
    return g


def test_arrow_markers_colored_by_type_and_state():
    markers = create_arrow_markers(_graph(), "map")
    assert [m.id for m in markers] == [0, 1, 2, 3]
    assert [m.color for m in markers] == [RED, RED, GREEN, GRAY]
    assert all(m.kind == "arrow" and m.frame_id == "map" for m in markers)
    assert all(m.namespace == "slam_graph" for m in markers)
    assert markers[1].points == [(1.0, 0.0, 0.0), (1.0, 1.0, 0.0)]


def test_line_list_marker_holds_every_edge():
    (marker,) = create_list_markers(_graph(), "odom")
    assert marker.kind == "line_list"
    assert len(marker.points) == 8
    assert len(marker.colors) == 8
    assert marker.points[4] == (0.0, 0.0, 0.0)


def test_serialize_writes_one_line_per_node_and_edge():
    g = _graph()
    buf = io.StringIO()
    text = serialize_graph_text(g, buf)
    lines = text.splitlines()
    assert len(lines) == g.num_nodes + g.num_edges
    assert lines[0] == 'p0[pose = "0,0!"]'
    assert lines[-1] == "p2->p0"
    assert buf.getvalue() == text


def test_serialize_empty_graph():
    assert serialize_graph_text(PoseGraph()) == ""


def test_plot_pose_graph_2d_returns_figure():
    fig = plot_pose_graph_2d(_graph(), show_labels=True, show=False)
    ax = fig.axes[0]
    assert len(ax.lines) == 4
    assert ax.get_title() == "SLAM2D-JIT Pose Graph (top-down)"
    plt.close(fig)


def test_plot_into_existing_axes():
    fig, ax = plt.subplots()
    out = plot_pose_graph_2d(PoseGraph(), ax=ax, show=False)
    assert out is fig
    plt.close(fig)
