# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Core typed data structures for SLAM2D-JIT.

This module defines the lightweight container classes shared by the pose
graph, the solver mirror and the loop-closure layer. They store structure and
current values only; every numerical operation happens in the JAX functions of
`slam.measurements` and `optimization.solvers`.

Classes
-------
Node
    A robot pose in the graph:
    - id: dense integer id assigned in insertion order
    - pose: (x, y, theta) as a JAX array
    - payload: application object attached to the pose (e.g. a scan)
    - edges_out / edges_in: ids of the edges touching the node

Edge
    A relative pose constraint between two nodes:
    - from_id / to_id: ordered endpoints
    - transform: measured (dx, dy, dtheta) of `to` expressed in `from`
    - information: 3x3 inverse covariance
    - type: ODOM or LOOP
    - state: ACTIVE or INACTIVE

SimpleModel / MixtureModel
    Edge models handed to the solver. A mixture carries several weighted
    information matrices for the same measurement; the solver whitens with
    the best fitting one on every iteration.

LoopClosure
    A candidate proposed by a loop detector.

Notes
-----
Nodes and edges reference each other by id only. The graph owns both and
never deletes either, so ids stay valid for the lifetime of the graph.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, NewType, Protocol, Tuple, Union, runtime_checkable

import jax.numpy as jnp

NodeId = NewType("NodeId", int)
EdgeId = NewType("EdgeId", int)


class EdgeType(Enum):
    ODOM = "odom"
    LOOP = "loop"


class EdgeState(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def as_pose(value) -> jnp.ndarray:
    """Coerce a 3-sequence into a (3,) array of the default float dtype."""
    v = jnp.asarray(value, dtype=jnp.result_type(float)).reshape(-1)
    if v.shape != (3,):
        raise ValueError(f"Expected a 3-vector (x, y, theta), got shape {v.shape}")
    return v


def as_information(value) -> jnp.ndarray:
    """Coerce a 3x3 information matrix and symmetrize it."""
    m = jnp.asarray(value, dtype=jnp.result_type(float))
    if m.shape != (3, 3):
        raise ValueError(f"Expected a 3x3 information matrix, got shape {m.shape}")
    return 0.5 * (m + m.T)


def check_information(value) -> jnp.ndarray:
    """
    Validate an information matrix on the host.

    JAX's Cholesky returns NaNs instead of raising on a matrix that is not
    positive definite, so this has to be checked before it reaches a solver.
    """
    m = as_information(value)
    if not bool(jnp.all(jnp.isfinite(jnp.linalg.cholesky(m)))):
        raise ValueError("Information matrix must be symmetric positive definite")
    return m


@dataclass(frozen=True)
class SimpleModel:
    """Single Gaussian constraint."""
    information: jnp.ndarray


@dataclass(frozen=True)
class MixtureModel:
    """Max-mixture of Gaussians sharing one measurement.

    The first component is the confident hypothesis; it is the one reported
    to callers asking for the edge's information matrix.
    """
    components: Tuple[Tuple[jnp.ndarray, float], ...]

    def __post_init__(self) -> None:
        if not self.components:
            raise ValueError("MixtureModel needs at least one component")
        for _, weight in self.components:
            if weight <= 0.0:
                raise ValueError(f"Mixture weights must be positive, got {weight}")

    @property
    def confident_information(self) -> jnp.ndarray:
        return self.components[0][0]


EdgeModel = Union[SimpleModel, MixtureModel]


@dataclass
class Node:
    """Pose node owned by :class:`core.pose_graph.PoseGraph`."""
    id: NodeId
    pose: jnp.ndarray
    payload: Any = None
    edges_out: List[EdgeId] = field(default_factory=list)
    edges_in: List[EdgeId] = field(default_factory=list)


@dataclass
class Edge:
    """Relative pose constraint owned by :class:`core.pose_graph.PoseGraph`."""
    id: EdgeId
    from_id: NodeId
    to_id: NodeId
    transform: jnp.ndarray
    information: jnp.ndarray
    type: EdgeType = EdgeType.ODOM
    state: EdgeState = EdgeState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state is EdgeState.ACTIVE


@dataclass(frozen=True)
class LoopClosure:
    """Loop-closure candidate proposed by a detector."""
    from_id: NodeId
    to_id: NodeId
    transform: jnp.ndarray
    information: jnp.ndarray


@runtime_checkable
class PoseUpdateHook(Protocol):
    """Capability a payload exposes to be told about its optimized pose."""

    def on_pose_updated(self, pose: jnp.ndarray) -> None:
        ...
