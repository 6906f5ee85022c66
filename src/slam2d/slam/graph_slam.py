# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Incremental 2D graph SLAM front door.

`GraphSlam2D` is the public API. It owns one `PoseGraph`, one
`SolverMirror`, one `EdgeRegistry`, the loop-closure orchestrator and the
trajectory updater, and routes every mutation through the paired helpers in
`optimization.mirror` so the graph and the solver always share one id space.

Typical usage
-------------

.. code-block:: python

    import jax.numpy as jnp
    from slam2d.slam.graph_slam import GraphSlam2D

    slam = GraphSlam2D()
    a = slam.add_pose(jnp.array([0.0, 0.0, 0.0]), scan0)
    b = slam.add_pose(jnp.array([1.0, 0.0, 0.0]), scan1)
    slam.add_last_constrain(jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    slam.try_loop_close()
    slam.optimize()
    slam.get_pose_location(b)

Design notes
------------
- The first pose added is the anchor. It is fixed in the solver and its pose
  is never written by `optimize()`.
- `optimize()` returns whether the solver pass executed, not whether it
  converged. Convergence details are in `last_solve_report`.
- With a validator configured, each `optimize()` ends with a validation of
  the active loop closures. Rejections take effect on the next pass.
- Everything here is single threaded; callers serialize access.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, TextIO, Tuple

import jax.numpy as jnp

from ..core.edge_registry import DuplicatePolicy, EdgeRegistry
from ..core.errors import InconsistentMirrorError
from ..core.pose_graph import PoseGraph
from ..core.types import (
    EdgeId,
    EdgeState,
    EdgeType,
    NodeId,
    SimpleModel,
    as_pose,
    check_information,
)
from ..optimization.mirror import (
    GaussNewtonMirror,
    SolverMirror,
    add_paired_edge,
    add_paired_node,
)
from ..optimization.solvers import GNConfig, SolveReport
from ..world.visualization import (
    Marker,
    create_arrow_markers,
    create_list_markers,
    serialize_graph_text,
)
from .loop_closure import (
    LoopClosureConfig,
    LoopClosureOrchestrator,
    LoopDetector,
    LoopValidator,
)
from .trajectory import TrajectoryUpdater, initialize_from_odometry

logger = logging.getLogger("slam2d.graph_slam")


@dataclass
class Slam2DConfig:
    max_iterations: int = 10
    euclidean_max_error: float = 1e-3
    damping: float = 1e-3
    max_step_norm: float = 1.0
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT
    loop: LoopClosureConfig = field(default_factory=LoopClosureConfig)
    validate_after_optimize: bool = True


class GraphSlam2D:
    """Pose graph + solver mirror + loop closures behind one API."""

    def __init__(
        self,
        detector: Optional[LoopDetector] = None,
        validator: Optional[LoopValidator] = None,
        config: Optional[Slam2DConfig] = None,
        mirror: Optional[SolverMirror] = None,
    ) -> None:
        self.config = config or Slam2DConfig()
        if mirror is None:
            mirror = GaussNewtonMirror(
                GNConfig(
                    max_iters=self.config.max_iterations,
                    damping=self.config.damping,
                    max_step_norm=self.config.max_step_norm,
                    step_tolerance=self.config.euclidean_max_error,
                )
            )
        elif mirror.vertex_ids():
            raise InconsistentMirrorError("Solver mirror must start empty")

        self.graph = PoseGraph()
        self.mirror = mirror
        self.registry = EdgeRegistry(policy=self.config.duplicate_policy)
        self.loops = LoopClosureOrchestrator(
            self.graph,
            self.mirror,
            self.registry,
            detector=detector,
            validator=validator,
            cfg=self.config.loop,
        )
        self.updater = TrajectoryUpdater(self.graph, self.mirror)

        self._anchor_id: Optional[NodeId] = None
        self._last_node_id: Optional[NodeId] = None
        self._prev_node_id: Optional[NodeId] = None

    # --- Collaborators ---

    def set_loop_detector(self, detector: Optional[LoopDetector]) -> None:
        self.loops.detector = detector

    def set_loop_validator(self, validator: Optional[LoopValidator]) -> None:
        self.loops.validator = validator

    # --- Graph building ---

    def add_pose(self, pose, payload: Any = None) -> NodeId:
        """Add a pose; the very first one becomes the fixed anchor."""
        is_anchor = self._anchor_id is None
        nid = add_paired_node(self.graph, self.mirror, pose, payload, fixed=is_anchor)
        if is_anchor:
            self._anchor_id = nid
        else:
            self._prev_node_id = self._last_node_id
        self._last_node_id = nid
        return nid

    def add_constrain(self, from_id: int, to_id: int, transform, information) -> EdgeId:
        """
        Add an ODOM constraint from `from_id` to `to_id`.

        Raises NotFoundError for unknown ids and DuplicateConstraintError when
        the ordered pair is already constrained under the REJECT policy.
        """
        self.graph.get_node(from_id)
        self.graph.get_node(to_id)
        if int(from_id) == int(to_id):
            raise ValueError(f"Constraint from node {from_id} to itself")
        transform = as_pose(transform)
        information = check_information(information)
        replaced = self.registry.check(from_id, to_id)

        logger.info("Adding constraint between nodes %d->%d", int(from_id), int(to_id))
        if replaced is not None:
            logger.info("Replacing edge %d", replaced)
            self.loops.deactivate(replaced)

        eid = add_paired_edge(
            self.graph,
            self.mirror,
            from_id,
            to_id,
            transform,
            SimpleModel(information),
            edge_type=EdgeType.ODOM,
        )
        self.registry.put(from_id, to_id, eid)
        return eid

    def add_last_constrain(self, transform, information) -> EdgeId:
        """Constrain the two most recently added poses."""
        if self._prev_node_id is None:
            raise ValueError("add_last_constrain needs at least two poses")
        return self.add_constrain(self._prev_node_id, self._last_node_id, transform, information)

    # --- Loop closure ---

    def try_loop_close(self, node_id: Optional[int] = None) -> bool:
        """Loop-close at `node_id`, or at the last added pose when omitted."""
        if node_id is None:
            if self._last_node_id is None:
                return False
            node_id = self._last_node_id
        logger.debug("Loop closing for node %d", int(node_id))
        return self.loops.try_loop_close(node_id)

    def validate_loop_closures(self) -> Tuple[List[EdgeId], List[EdgeId]]:
        return self.loops.apply_validation()

    # --- Optimization ---

    def optimize(self) -> bool:
        executed = self.mirror.run(self.config.max_iterations)
        if not executed:
            return False
        self.updater.apply()
        logger.info("Optimization done")

        if self.loops.validator is not None and self.config.validate_after_optimize:
            self.loops.apply_validation()
        return True

    def optimize_iteratively(self, rounds: int = 1) -> bool:
        """Repeat `optimize()`; stops at the first pass that does not execute."""
        if rounds < 1:
            raise ValueError(f"rounds must be >= 1, got {rounds}")
        for _ in range(rounds):
            if not self.optimize():
                return False
        return True

    def initialize_from_odometry(self) -> List[NodeId]:
        """
        Re-derive poses along the odometry chain and seed the solver with them.
        """
        if self._anchor_id is None:
            return []
        updated = initialize_from_odometry(self.graph, self._anchor_id)
        for nid in updated:
            self.mirror.set_estimate(nid, self.graph.get_node(nid).pose)
        return updated

    def calc_total_graph_error(self) -> float:
        return self.mirror.total_error()

    @property
    def last_solve_report(self) -> Optional[SolveReport]:
        return self.mirror.last_report

    # --- Accessors ---

    def get_pose_location(self, node_id: int) -> jnp.ndarray:
        return self.graph.get_node(node_id).pose

    def get_pose_data(self, node_id: int) -> Any:
        return self.graph.get_node(node_id).payload

    def get_constrain_transform(self, edge_id: int) -> jnp.ndarray:
        return self.graph.get_edge(edge_id).transform

    def get_constrain_inform_mat(self, edge_id: int) -> jnp.ndarray:
        return self.graph.get_edge(edge_id).information

    def get_constrain_poses(self, edge_id: int) -> Tuple[NodeId, NodeId]:
        return self.graph.edge_endpoints(edge_id)

    def get_constrain_type(self, edge_id: int) -> EdgeType:
        return self.graph.get_edge(edge_id).type

    def get_constrain_state(self, edge_id: int) -> EdgeState:
        return self.graph.get_edge(edge_id).state

    @property
    def anchor_id(self) -> Optional[NodeId]:
        return self._anchor_id

    @property
    def last_node_id(self) -> Optional[NodeId]:
        return self._last_node_id

    # --- Configuration ---

    def set_euclidean_max_error(self, epsilon: float) -> None:
        """Step-norm tolerance for early stopping; 0 runs every iteration."""
        if epsilon < 0.0:
            raise ValueError(f"epsilon must be >= 0, got {epsilon}")
        self.config.euclidean_max_error = float(epsilon)
        if isinstance(self.mirror, GaussNewtonMirror):
            self.mirror.cfg.step_tolerance = float(epsilon)

    def set_max_iterations(self, count: int) -> None:
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")
        self.config.max_iterations = int(count)

    # --- Export ---

    def get_graph_serialized(self, stream: Optional[TextIO] = None) -> str:
        return serialize_graph_text(self.graph, stream)

    def get_graph_markers(self, frame_id: str = "map", kind: str = "arrow") -> List[Marker]:
        if kind == "arrow":
            return create_arrow_markers(self.graph, frame_id)
        if kind == "line_list":
            return create_list_markers(self.graph, frame_id)
        raise ValueError(f"Unknown marker kind '{kind}'")
