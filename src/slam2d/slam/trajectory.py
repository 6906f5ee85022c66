# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Trajectory write-back and odometry re-initialization.

`TrajectoryUpdater` copies the solver's estimates into the pose graph after
an optimization pass and tells each payload about its new pose.
`initialize_from_odometry` rebuilds poses by chaining ODOM transforms from
the anchor, ignoring loop closures.
"""

from __future__ import annotations

import logging
from typing import Dict, List

import jax.numpy as jnp

from ..core.errors import InconsistentMirrorError
from ..core.math2d import se2_compose
from ..core.pose_graph import PoseGraph
from ..core.types import EdgeType, Node, NodeId
from ..optimization.mirror import SolverMirror

logger = logging.getLogger("slam2d.trajectory")


def notify_payload(node: Node) -> None:
    """Call the payload's `on_pose_updated` hook if it has one."""
    hook = getattr(node.payload, "on_pose_updated", None)
    if hook is not None:
        hook(jnp.array(node.pose))


class TrajectoryUpdater:
    """Write optimized poses back into the pose graph, in node-id order."""

    def __init__(self, graph: PoseGraph, mirror: SolverMirror) -> None:
        self.graph = graph
        self.mirror = mirror

    def collect(self) -> Dict[NodeId, jnp.ndarray]:
        """Fetch every estimate up front so a missing vertex changes nothing."""
        estimates: Dict[NodeId, jnp.ndarray] = {}
        for node in self.graph.nodes():
            if not self.mirror.has_vertex(node.id):
                raise InconsistentMirrorError(f"Node {node.id} has no solver vertex")
            estimates[node.id] = self.mirror.estimate(node.id)
        return estimates

    def apply(self) -> int:
        """Returns the number of nodes whose pose was written."""
        estimates = self.collect()
        written = 0
        for node in self.graph.nodes():
            # The anchor is the gauge; optimization never moves it.
            if not self.mirror.is_fixed(node.id):
                node.pose = estimates[node.id]
                written += 1
            notify_payload(node)
        logger.debug("Updated %d of %d poses from solver", written, self.graph.num_nodes)
        return written


def initialize_from_odometry(graph: PoseGraph, anchor_id: int) -> List[NodeId]:
    """
    Reset the anchor to the origin and re-derive poses along the ODOM chain.

    From each node the first active outgoing ODOM edge is followed; the walk
    ends at a node without one. Branching odometry is not handled: only the first
    outgoing ODOM edge of each node is used. Returns the ids whose pose was
    set, anchor first.
    """
    if graph.num_nodes == 0:
        return []

    pose = jnp.zeros(3)
    graph.update_node_pose(anchor_id, pose)
    updated = [NodeId(int(anchor_id))]
    visited = {int(anchor_id)}

    current = anchor_id
    while True:
        odom = [e for e in graph.edges_out(current, EdgeType.ODOM) if e.is_active]
        if not odom:
            break
        edge = odom[0]
        if int(edge.to_id) in visited:
            logger.warning("Odometry chain revisits node %d; stopping", edge.to_id)
            break
        pose = se2_compose(pose, edge.transform)
        graph.update_node_pose(edge.to_id, pose)
        updated.append(edge.to_id)
        visited.add(int(edge.to_id))
        current = edge.to_id

    return updated
