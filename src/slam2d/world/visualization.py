# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Visualization and export utilities for SLAM2D-JIT.

This module turns a `PoseGraph` into things people and tools can look at.
It only reads the graph; nothing here feeds back into optimization.

1. **Text dump**
   `serialize_graph_text()` writes one line per node followed by one line
   per edge, in graph iteration order:

       p0[pose = "0,0!"]
       p1[pose = "1,0!"]
       p0->p1

   Downstream graph-visualization tooling parses this exact shape, so it
   must not change.

2. **Drawable primitives**
   `create_arrow_markers()` emits one arrow per edge, colored by edge type
   (ODOM red, LOOP green, inactive edges gray). `create_list_markers()`
   packs every edge into a single line-list primitive. Both use the plain
   `Marker` dataclass below, which mirrors the fields of a ROS
   `visualization_msgs/Marker` without depending on ROS.

3. **Matplotlib top-down plot**
   `plot_pose_graph_2d()` draws poses and constraints in the x–y plane with
   equal aspect and bounds fitted to the trajectory.

Module contents:
    - `Marker`: drawable primitive.
    - `edge_color()`: RGBA color for an edge.
    - `serialize_graph_text()`: text dump.
    - `create_arrow_markers()` / `create_list_markers()`: primitives.
    - `plot_pose_graph_2d()`: Matplotlib rendering.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass, field
from typing import List, Literal, Optional, TextIO, Tuple

import matplotlib.pyplot as plt

from ..core.pose_graph import PoseGraph
from ..core.types import Edge, EdgeType

Point = Tuple[float, float, float]
RGBA = Tuple[float, float, float, float]
MarkerKind = Literal["arrow", "line_list"]

RED: RGBA = (1.0, 0.0, 0.0, 1.0)
GREEN: RGBA = (0.0, 1.0, 0.0, 1.0)
GRAY: RGBA = (0.6, 0.6, 0.6, 0.5)
LIGHT_RED: RGBA = (0.4, 0.0, 0.0, 1.0)


@dataclass
class Marker:
    """Lightweight drawable primitive."""
    frame_id: str
    id: int
    kind: MarkerKind
    points: List[Point] = field(default_factory=list)
    colors: List[RGBA] = field(default_factory=list)
    color: RGBA = RED
    scale: Tuple[float, float, float] = (0.1, 0.3, 1.0)
    namespace: str = "slam_graph"


def edge_color(edge: Edge) -> RGBA:
    if not edge.is_active:
        return GRAY
    if edge.type is EdgeType.LOOP:
        return GREEN
    return RED


def _endpoints(graph: PoseGraph, edge: Edge) -> Tuple[Point, Point]:
    a = graph.get_node(edge.from_id).pose
    b = graph.get_node(edge.to_id).pose
    return (float(a[0]), float(a[1]), 0.0), (float(b[0]), float(b[1]), 0.0)


def serialize_graph_text(graph: PoseGraph, stream: Optional[TextIO] = None) -> str:
    """
    Write the text dump to `stream` (if given) and return it.

    Coordinates are printed with `%g`.
    """
    buf = io.StringIO()
    for node in graph.nodes():
        x, y = float(node.pose[0]), float(node.pose[1])
        buf.write(f'p{node.id}[pose = "{x:g},{y:g}!"]\n')
    for edge in graph.edges():
        buf.write(f"p{edge.from_id}->p{edge.to_id}\n")

    text = buf.getvalue()
    if stream is not None:
        stream.write(text)
    return text


def create_arrow_markers(graph: PoseGraph, frame_id: str) -> List[Marker]:
    """One arrow per edge, in edge iteration order; marker id == position."""
    markers: List[Marker] = []
    for i, edge in enumerate(graph.edges()):
        start, end = _endpoints(graph, edge)
        markers.append(
            Marker(
                frame_id=frame_id,
                id=i,
                kind="arrow",
                points=[start, end],
                color=edge_color(edge),
                scale=(0.1, 0.3, 1.0),
            )
        )
    return markers


def create_list_markers(graph: PoseGraph, frame_id: str) -> List[Marker]:
    """All edges as one line list; each segment fades from dark to bright red."""
    marker = Marker(frame_id=frame_id, id=0, kind="line_list", scale=(0.3, 0.0, 0.0))
    for edge in graph.edges():
        start, end = _endpoints(graph, edge)
        marker.points.extend([start, end])
        marker.colors.extend([LIGHT_RED, RED])
    return [marker]


def plot_pose_graph_2d(
    graph: PoseGraph,
    show_labels: bool = True,
    ax=None,
    show: bool = True,
):
    """
    Simple top-down 2D visualization of the pose graph.

    - poses drawn as points with a short heading tick
    - ODOM edges solid, LOOP edges dashed, inactive edges faded
    - equal aspect, bounds fitted to the poses

    :param graph: The pose graph to visualize.
    :param show_labels: Whether to draw node ids.
    :param ax: Existing axes to draw into; a new figure is created if None.
    :param show: Call `plt.show()` at the end.
    :return: The matplotlib figure.
    """
    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure
    ax.set_aspect("equal")

    for edge in graph.edges():
        (x0, y0, _), (x1, y1, _) = _endpoints(graph, edge)
        r, g, b, alpha = edge_color(edge)
        ls = "--" if edge.type is EdgeType.LOOP else "-"
        ax.plot([x0, x1], [y0, y1], color=(r, g, b), alpha=alpha, linestyle=ls, linewidth=1.0)

    xs, ys = [], []
    for node in graph.nodes():
        x, y, th = float(node.pose[0]), float(node.pose[1]), float(node.pose[2])
        xs.append(x)
        ys.append(y)
        ax.scatter(x, y, s=20, c="C0")
        ax.arrow(x, y, 0.2 * math.cos(th), 0.2 * math.sin(th), width=0.01, color="C0")
        if show_labels:
            ax.text(x + 0.05, y + 0.05, str(node.id), fontsize=6)

    ax.set_xlabel("x [m]")
    ax.set_ylabel("y [m]")
    ax.set_title("SLAM2D-JIT Pose Graph (top-down)")

    # Dynamic bounds with equal aspect
    if xs and ys:
        min_x, max_x = min(xs), max(xs)
        min_y, max_y = min(ys), max(ys)
        max_range = max(max_x - min_x, max_y - min_y) / 2.0
        if max_range < 1e-3:
            max_range = 1.0
        mid_x = 0.5 * (max_x + min_x)
        mid_y = 0.5 * (max_y + min_y)
        ax.set_xlim(mid_x - max_range * 1.1, mid_x + max_range * 1.1)
        ax.set_ylim(mid_y - max_range * 1.1, mid_y + max_range * 1.1)

    fig.tight_layout()
    if show:
        plt.show()
    return fig
