# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Solver mirror: the optimizer-side copy of the pose graph.

`SolverMirror` is the capability set the rest of the system needs from a
nonlinear least-squares back end:

    add_vertex(id, pose, fixed)
    add_edge(id, from_id, to_id, transform, model)   # SimpleModel | MixtureModel
    deactivate_edge(id)
    set_estimate(id, pose)
    run(max_iterations) -> bool
    estimate(id) -> pose

Ids are never invented here. Every vertex id is a PoseGraph node id and every
edge id is a PoseGraph edge id; the mirror only checks that it is never asked
to create an id twice or to connect vertices it does not know, and raises
`InconsistentMirrorError` when it is.

`GaussNewtonMirror` implements the capability set on top of the JAX factor
graph and the manifold-aware Gauss–Newton solver.
"""

from __future__ import annotations

import abc
import logging
from typing import List, Optional

import jax.numpy as jnp

from ..core.errors import InconsistentMirrorError
from ..core.factor_graph import Factor, FactorGraph, Variable
from ..core.pose_graph import PoseGraph
from ..core.types import (
    EdgeId,
    EdgeModel,
    EdgeState,
    EdgeType,
    MixtureModel,
    NodeId,
    SimpleModel,
    as_pose,
    check_information,
)
from ..slam.manifold import build_manifold_metadata
from ..slam.measurements import (
    between_params,
    max_mixture_residual,
    mixture_params,
    se2_between_residual,
)
from .solvers import GNConfig, SolveReport, gauss_newton_manifold

logger = logging.getLogger("slam2d.mirror")

SE2_BETWEEN = "se2_between"
SE2_MAX_MIXTURE = "se2_max_mixture"


class SolverMirror(abc.ABC):
    """Abstract optimizer back end keyed by PoseGraph ids."""

    @abc.abstractmethod
    def add_vertex(self, vertex_id: int, pose, fixed: bool = False) -> None:
        ...

    @abc.abstractmethod
    def add_edge(self, edge_id: int, from_id: int, to_id: int, transform, model: EdgeModel) -> None:
        ...

    @abc.abstractmethod
    def deactivate_edge(self, edge_id: int) -> None:
        """Drop an edge from the active working set; it stays addressable."""

    @abc.abstractmethod
    def set_estimate(self, vertex_id: int, pose) -> None:
        """Overwrite a vertex's current estimate (re-initialization)."""

    @abc.abstractmethod
    def run(self, max_iterations: int) -> bool:
        """Run one optimization pass. True iff the pass executed."""

    @abc.abstractmethod
    def estimate(self, vertex_id: int) -> jnp.ndarray:
        ...

    @abc.abstractmethod
    def has_vertex(self, vertex_id: int) -> bool:
        ...

    @abc.abstractmethod
    def has_edge(self, edge_id: int) -> bool:
        ...

    @abc.abstractmethod
    def is_fixed(self, vertex_id: int) -> bool:
        ...

    @abc.abstractmethod
    def vertex_ids(self) -> List[NodeId]:
        ...

    @abc.abstractmethod
    def active_edge_ids(self) -> List[EdgeId]:
        ...

    @abc.abstractmethod
    def total_error(self) -> float:
        """Sum of whitened squared residuals over active edges at the current estimate."""

    @property
    def last_report(self) -> Optional[SolveReport]:
        return None


class GaussNewtonMirror(SolverMirror):
    """
    JAX Gauss–Newton implementation of :class:`SolverMirror`.

    Simple edges become "se2_between" factors; mixture edges become
    "se2_max_mixture" factors that re-select their component on every
    iteration.
    """

    def __init__(self, cfg: Optional[GNConfig] = None) -> None:
        self.cfg = cfg or GNConfig()
        self.fg = FactorGraph()
        self.fg.register_residual(SE2_BETWEEN, se2_between_residual)
        self.fg.register_residual(SE2_MAX_MIXTURE, max_mixture_residual)
        self._last_report: Optional[SolveReport] = None

    # --- Mutation ---

    def add_vertex(self, vertex_id: int, pose, fixed: bool = False) -> None:
        vid = NodeId(int(vertex_id))
        if vid in self.fg.variables:
            raise InconsistentMirrorError(f"Solver already has vertex {vid}")
        self.fg.add_variable(Variable(id=vid, type="pose_se2", value=as_pose(pose), fixed=fixed))

    def add_edge(self, edge_id: int, from_id: int, to_id: int, transform, model: EdgeModel) -> None:
        eid = EdgeId(int(edge_id))
        if eid in self.fg.factors:
            raise InconsistentMirrorError(f"Solver already has edge {eid}")
        for vid in (from_id, to_id):
            if NodeId(int(vid)) not in self.fg.variables:
                raise InconsistentMirrorError(f"Solver edge {eid} references unknown vertex {vid}")

        if isinstance(model, SimpleModel):
            f_type, params = SE2_BETWEEN, between_params(transform, model.information)
        elif isinstance(model, MixtureModel):
            f_type, params = SE2_MAX_MIXTURE, mixture_params(transform, model)
        else:
            raise ValueError(f"Unsupported edge model {type(model).__name__}")

        self.fg.add_factor(
            Factor(
                id=eid,
                type=f_type,
                var_ids=(NodeId(int(from_id)), NodeId(int(to_id))),
                params=params,
            )
        )

    def deactivate_edge(self, edge_id: int) -> None:
        self._factor(edge_id).active = False

    def set_estimate(self, vertex_id: int, pose) -> None:
        self._variable(vertex_id).value = as_pose(pose)

    # --- Optimization ---

    def run(self, max_iterations: int) -> bool:
        if not self.fg.variables:
            logger.debug("Nothing to optimize: solver graph is empty")
            return False

        if not self.fg.active_factors():
            # Nothing constrains the state; the pass is trivially done.
            self._last_report = SolveReport(0, 0.0, 0.0, 0.0, True)
            return True

        cfg = GNConfig(
            max_iters=int(max_iterations),
            damping=self.cfg.damping,
            max_step_norm=self.cfg.max_step_norm,
            step_tolerance=self.cfg.step_tolerance,
        )
        x0, index = self.fg.pack_state()
        residual_fn = self.fg.build_residual_function()
        block_slices, manifold_types, fixed_mask = build_manifold_metadata(
            self.fg, packed_state=(x0, index)
        )

        x_opt, report = gauss_newton_manifold(
            residual_fn, x0, block_slices, manifold_types, cfg, fixed_mask
        )
        self._last_report = report

        if not bool(jnp.all(jnp.isfinite(x_opt))):
            logger.warning("Solver produced non-finite estimates; keeping previous state")
            return False

        for nid, value in self.fg.unpack_state(x_opt, index).items():
            self.fg.variables[nid].value = value

        logger.debug(
            "Gauss-Newton pass: %d iterations, error %.6g -> %.6g",
            report.iterations,
            report.initial_error,
            report.final_error,
        )
        return True

    def total_error(self) -> float:
        if not self.fg.variables or not self.fg.active_factors():
            return 0.0
        x, _ = self.fg.pack_state()
        return float(self.fg.build_objective()(x))

    # --- Lookup ---

    def estimate(self, vertex_id: int) -> jnp.ndarray:
        return jnp.array(self._variable(vertex_id).value)

    def has_vertex(self, vertex_id: int) -> bool:
        return NodeId(int(vertex_id)) in self.fg.variables

    def has_edge(self, edge_id: int) -> bool:
        return EdgeId(int(edge_id)) in self.fg.factors

    def is_fixed(self, vertex_id: int) -> bool:
        return self._variable(vertex_id).fixed

    def vertex_ids(self) -> List[NodeId]:
        return sorted(self.fg.variables)

    def active_edge_ids(self) -> List[EdgeId]:
        return [f.id for f in self.fg.factors.values() if f.active]

    @property
    def last_report(self) -> Optional[SolveReport]:
        return self._last_report

    def _variable(self, vertex_id: int) -> Variable:
        try:
            return self.fg.variables[NodeId(int(vertex_id))]
        except KeyError:
            raise InconsistentMirrorError(f"Solver has no vertex {vertex_id}") from None

    def _factor(self, edge_id: int) -> Factor:
        try:
            return self.fg.factors[EdgeId(int(edge_id))]
        except KeyError:
            raise InconsistentMirrorError(f"Solver has no edge {edge_id}") from None


# --- Paired mutations ---
#
# Every change to the pose graph goes through one of these so that the graph
# and the mirror move together. The mirror is mutated first, against the id
# the graph is about to assign: if it refuses, the graph is left untouched.


def add_paired_node(graph: PoseGraph, mirror: SolverMirror, pose, payload, fixed: bool) -> NodeId:
    expected = NodeId(graph.num_nodes)
    mirror.add_vertex(expected, pose, fixed=fixed)
    nid = graph.add_node(pose, payload)
    if nid != expected:
        raise InconsistentMirrorError(f"Pose graph assigned node {nid}, solver expected {expected}")
    return nid


def add_paired_edge(
    graph: PoseGraph,
    mirror: SolverMirror,
    from_id: int,
    to_id: int,
    transform,
    model: EdgeModel,
    edge_type: EdgeType = EdgeType.ODOM,
) -> EdgeId:
    """
    Add one logical constraint to both sides.

    The pose graph stores the model's reported information matrix (the
    confident component for a mixture); the mirror receives the full model.
    """
    # Unknown endpoints are a caller error, not a mirror inconsistency.
    graph.get_node(from_id)
    graph.get_node(to_id)
    information = reported_information(model)
    for info in model_informations(model):
        check_information(info)

    expected = EdgeId(graph.num_edges)
    mirror.add_edge(expected, from_id, to_id, transform, model)
    eid = graph.add_edge(from_id, to_id, transform, information, edge_type)
    if eid != expected:
        raise InconsistentMirrorError(f"Pose graph assigned edge {eid}, solver expected {expected}")
    return eid


def deactivate_paired_edge(graph: PoseGraph, mirror: SolverMirror, edge_id: int) -> None:
    """Mark an edge INACTIVE and drop it from the solver's working set."""
    graph.get_edge(edge_id)
    mirror.deactivate_edge(edge_id)
    graph.set_edge_state(edge_id, EdgeState.INACTIVE)


def reported_information(model: EdgeModel) -> jnp.ndarray:
    if isinstance(model, MixtureModel):
        return model.confident_information
    return model.information


def model_informations(model: EdgeModel) -> List[jnp.ndarray]:
    if isinstance(model, MixtureModel):
        return [info for info, _ in model.components]
    return [model.information]
