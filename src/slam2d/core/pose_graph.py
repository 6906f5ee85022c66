# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Pose graph storage for SLAM2D-JIT.

The PoseGraph is the application-facing half of the system: it owns the
nodes (poses plus payload) and the edges (relative constraints), and knows
nothing about optimization. The solver keeps its own mirror of the same ids
in `optimization.mirror`; keeping the two in step is the job of the
`slam.graph_slam.GraphSlam2D` facade.

Guarantees
----------
- Node and edge ids are dense integers assigned in insertion order,
  starting at 0. Ids are never reused and nothing is ever deleted.
- Iteration over nodes and edges follows insertion order.
- An edge can only be added between nodes that already exist.
- Rejected edges are kept and marked INACTIVE, so the full history of
  constraints stays inspectable.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Tuple

import jax.numpy as jnp

from .errors import NotFoundError
from .types import (
    Edge,
    EdgeId,
    EdgeState,
    EdgeType,
    Node,
    NodeId,
    as_information,
    as_pose,
)


@dataclass
class PoseGraph:
    """
    Ordered collection of pose nodes and constraint edges.

    - nodes: node list, index == NodeId
    - edges: edge list, index == EdgeId
    """
    _nodes: List[Node] = field(default_factory=list)
    _edges: List[Edge] = field(default_factory=list)

    # --- Mutation ---

    def add_node(self, pose, payload: Any = None) -> NodeId:
        nid = NodeId(len(self._nodes))
        self._nodes.append(Node(id=nid, pose=as_pose(pose), payload=payload))
        return nid

    def add_edge(
        self,
        from_id: int,
        to_id: int,
        transform,
        information,
        edge_type: EdgeType = EdgeType.ODOM,
    ) -> EdgeId:
        """Append a constraint between two existing nodes and return its id."""
        src = self.get_node(from_id)
        dst = self.get_node(to_id)

        eid = EdgeId(len(self._edges))
        edge = Edge(
            id=eid,
            from_id=src.id,
            to_id=dst.id,
            transform=as_pose(transform),
            information=as_information(information),
            type=edge_type,
            state=EdgeState.ACTIVE,
        )
        self._edges.append(edge)
        src.edges_out.append(eid)
        dst.edges_in.append(eid)
        return eid

    def update_node_pose(self, node_id: int, pose) -> None:
        self.get_node(node_id).pose = as_pose(pose)

    def set_edge_state(self, edge_id: int, state: EdgeState) -> None:
        self.get_edge(edge_id).state = state

    # --- Lookup ---

    def get_node(self, node_id: int) -> Node:
        if not self.has_node(node_id):
            raise NotFoundError("node", node_id)
        return self._nodes[int(node_id)]

    def get_edge(self, edge_id: int) -> Edge:
        if not self.has_edge(edge_id):
            raise NotFoundError("edge", edge_id)
        return self._edges[int(edge_id)]

    def has_node(self, node_id) -> bool:
        return _is_index(node_id) and 0 <= int(node_id) < len(self._nodes)

    def has_edge(self, edge_id) -> bool:
        return _is_index(edge_id) and 0 <= int(edge_id) < len(self._edges)

    def edge_endpoints(self, edge_id: int) -> Tuple[NodeId, NodeId]:
        e = self.get_edge(edge_id)
        return e.from_id, e.to_id

    def edges_out(self, node_id: int, edge_type: EdgeType | None = None) -> List[Edge]:
        """Outgoing edges of a node, optionally filtered by type, in insertion order."""
        out = [self._edges[eid] for eid in self.get_node(node_id).edges_out]
        if edge_type is not None:
            out = [e for e in out if e.type is edge_type]
        return out

    def last_node_ids(self, count: int) -> List[NodeId]:
        """Ids of the `count` most recently added nodes, oldest first."""
        if count <= 0:
            return []
        return [n.id for n in self._nodes[-count:]]

    # --- Iteration ---

    def nodes(self) -> Iterator[Node]:
        return iter(self._nodes)

    def edges(self) -> Iterator[Edge]:
        return iter(self._edges)

    def loop_edges(self, state: EdgeState | None = EdgeState.ACTIVE) -> List[Edge]:
        return [
            e for e in self._edges
            if e.type is EdgeType.LOOP and (state is None or e.state is state)
        ]

    def poses(self) -> dict:
        """Snapshot of all node poses keyed by id."""
        return {n.id: jnp.array(n.pose) for n in self._nodes}

    @property
    def num_nodes(self) -> int:
        return len(self._nodes)

    @property
    def num_edges(self) -> int:
        return len(self._edges)


def _is_index(value) -> bool:
    # bool is an int subclass; True must not silently mean node 1
    if isinstance(value, bool):
        return False
    try:
        operator.index(value)
    except TypeError:
        return False
    return True
