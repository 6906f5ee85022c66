# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""SLAM2D-JIT: incremental 2D pose-graph SLAM with robust loop closures in JAX.

The public entry point is :class:`slam2d.slam.graph_slam.GraphSlam2D`. The
subpackages hold the pieces it is built from:

    core          pose graph, ids, errors, SE(2) math, solver factor graph
    slam          residuals, manifold metadata, loop closure, trajectory
    optimization  Gauss-Newton solver and the solver mirror
    world         text dump, drawable markers, matplotlib plots
"""

from .core.edge_registry import DuplicatePolicy, EdgeRegistry
from .core.errors import (
    DuplicateConstraintError,
    InconsistentMirrorError,
    NotFoundError,
    Slam2DError,
)
from .core.pose_graph import PoseGraph
from .core.types import (
    Edge,
    EdgeId,
    EdgeState,
    EdgeType,
    LoopClosure,
    MixtureModel,
    Node,
    NodeId,
    PoseUpdateHook,
    SimpleModel,
)
from .optimization.mirror import GaussNewtonMirror, SolverMirror
from .slam.graph_slam import GraphSlam2D, Slam2DConfig
from .slam.loop_closure import (
    LoopClosureConfig,
    ProximityConfig,
    ProximityLoopDetector,
)

__version__ = "0.1.0"

__all__ = [
    "DuplicatePolicy",
    "EdgeRegistry",
    "DuplicateConstraintError",
    "InconsistentMirrorError",
    "NotFoundError",
    "Slam2DError",
    "PoseGraph",
    "Edge",
    "EdgeId",
    "EdgeState",
    "EdgeType",
    "LoopClosure",
    "MixtureModel",
    "Node",
    "NodeId",
    "PoseUpdateHook",
    "SimpleModel",
    "GaussNewtonMirror",
    "SolverMirror",
    "GraphSlam2D",
    "Slam2DConfig",
    "LoopClosureConfig",
    "ProximityConfig",
    "ProximityLoopDetector",
]
