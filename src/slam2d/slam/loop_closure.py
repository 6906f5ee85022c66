# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Loop-closure integration for SLAM2D-JIT.

This module turns loop-closure candidates into robust constraints and applies
the verdicts of an external validator. The pieces:

1. Collaborator protocols
-------------------------
    • `LoopDetector.generate(node_id)` proposes `LoopClosure` candidates.
    • `LoopValidator.validate(loop_edges, poses)` returns, per edge id,
      True (keep) or False (reject).
    • `ScanMatcher.match(reference, query, guess)` aligns two payloads;
      used by `ProximityLoopDetector`.

2. Robust edge model
--------------------
    • `build_mixture_model`: a confident component (the detector's
      information matrix) plus a near-null component standing for "this
      closure is spurious". The solver whitens with whichever fits best on
      each iteration, see `slam.measurements.max_mixture_residual`.

3. Orchestration
----------------
    • `LoopClosureOrchestrator.try_loop_close(node_id)`:
          detector → checks → for each candidate:
          PoseGraph LOOP edge (confident information) + solver mixture edge
          + registry entry.
    • `LoopClosureOrchestrator.apply_validation()`:
          validator verdicts → rejected edges become INACTIVE and leave the
          solver's working set; they stay in the pose graph for inspection.

4. A reference detector
-----------------------
    • `ProximityLoopDetector`: nearest older poses within a radius, confirmed
      by a scan matcher. Matching itself is left to the caller's matcher.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import jax.numpy as jnp

from ..core.edge_registry import DuplicatePolicy, EdgeRegistry
from ..core.math2d import se2_between
from ..core.pose_graph import PoseGraph
from ..core.types import (
    Edge,
    EdgeId,
    EdgeState,
    EdgeType,
    LoopClosure,
    MixtureModel,
    NodeId,
    as_information,
    as_pose,
    check_information,
)
from ..optimization.mirror import SolverMirror, add_paired_edge, deactivate_paired_edge

logger = logging.getLogger("slam2d.loop_closure")


class LoopDetector(Protocol):
    def generate(self, node_id: int) -> Sequence[LoopClosure]:
        ...


class LoopValidator(Protocol):
    def validate(
        self, loop_edges: Sequence[Edge], poses: Mapping[NodeId, jnp.ndarray]
    ) -> Mapping[EdgeId, bool]:
        ...


class ScanMatcher(Protocol):
    def match(
        self, reference, query, initial_guess: jnp.ndarray
    ) -> Optional[Tuple[jnp.ndarray, jnp.ndarray]]:
        """Transform of `query` in the frame of `reference` plus its information, or None."""
        ...


@dataclass
class LoopClosureConfig:
    confident_weight: float = 1.0
    null_weight: float = 0.01
    null_information_scale: float = 5e-10


def build_mixture_model(information, cfg: Optional[LoopClosureConfig] = None) -> MixtureModel:
    """Confident hypothesis first, near-null "spurious" hypothesis second."""
    cfg = cfg or LoopClosureConfig()
    return MixtureModel(
        components=(
            (as_information(information), cfg.confident_weight),
            (jnp.eye(3) * cfg.null_information_scale, cfg.null_weight),
        )
    )


class LoopClosureOrchestrator:
    """
    Adds robust loop edges to the pose graph and the solver mirror together,
    and retracts the ones the validator rejects.
    """

    def __init__(
        self,
        graph: PoseGraph,
        mirror: SolverMirror,
        registry: EdgeRegistry,
        detector: Optional[LoopDetector] = None,
        validator: Optional[LoopValidator] = None,
        cfg: Optional[LoopClosureConfig] = None,
    ) -> None:
        self.graph = graph
        self.mirror = mirror
        self.registry = registry
        self.detector = detector
        self.validator = validator
        self.cfg = cfg or LoopClosureConfig()

    def try_loop_close(self, node_id: int) -> bool:
        """
        Ask the detector for closures at `node_id` and add them.

        Returns True iff at least one loop edge was added. Candidates naming
        unknown nodes raise NotFoundError before anything is added.
        """
        self.graph.get_node(node_id)
        if self.detector is None:
            return False

        candidates = list(self.detector.generate(node_id))
        plan = self._plan(candidates)

        for candidate, replaced in plan:
            if replaced is not None:
                logger.info(
                    "Replacing loop constraint %d->%d (edge %d)",
                    int(candidate.from_id), int(candidate.to_id), replaced,
                )
                self.deactivate(replaced)

            logger.info(
                "Adding loop constraint between nodes %d->%d",
                int(candidate.from_id), int(candidate.to_id),
            )
            eid = add_paired_edge(
                self.graph,
                self.mirror,
                candidate.from_id,
                candidate.to_id,
                candidate.transform,
                build_mixture_model(candidate.information, self.cfg),
                edge_type=EdgeType.LOOP,
            )
            self.registry.put(candidate.from_id, candidate.to_id, eid)

        return len(plan) > 0

    def _plan(self, candidates: Sequence[LoopClosure]) -> List[Tuple[LoopClosure, Optional[EdgeId]]]:
        plan: List[Tuple[LoopClosure, Optional[EdgeId]]] = []
        seen = set()
        for c in candidates:
            self.graph.get_node(c.from_id)
            self.graph.get_node(c.to_id)
            c = replace(
                c,
                transform=as_pose(c.transform),
                information=check_information(c.information),
            )
            pair = (int(c.from_id), int(c.to_id))

            if pair[0] == pair[1]:
                logger.warning("Ignoring self loop closure on node %d", pair[0])
                continue
            if pair in seen:
                logger.debug("Ignoring repeated candidate %d->%d", *pair)
                continue
            seen.add(pair)

            existing = self.registry.get(*pair)
            if existing is not None and self.registry.policy is DuplicatePolicy.REJECT:
                logger.debug("Constraint %d->%d already exists as edge %d; skipping", pair[0], pair[1], existing)
                continue
            plan.append((c, existing))
        return plan

    def deactivate(self, edge_id: int) -> None:
        deactivate_paired_edge(self.graph, self.mirror, edge_id)

    def apply_validation(self) -> Tuple[List[EdgeId], List[EdgeId]]:
        """
        Run the validator over the ACTIVE loop edges at the current poses.

        Returns (accepted, rejected) edge ids. Edges the validator does not
        mention stay ACTIVE and are reported as accepted.
        """
        if self.validator is None:
            return [], []
        loops = self.graph.loop_edges(EdgeState.ACTIVE)
        if not loops:
            return [], []

        poses = self.graph.poses()
        decisions: Dict = dict(self.validator.validate(loops, poses))

        for eid in decisions:
            edge = self.graph.get_edge(eid)
            if edge.type is not EdgeType.LOOP:
                raise ValueError(f"Validator returned a verdict for non-loop edge {eid}")

        accepted: List[EdgeId] = []
        rejected: List[EdgeId] = []
        for edge in loops:
            if decisions.get(edge.id, True):
                accepted.append(edge.id)
            else:
                rejected.append(edge.id)

        for eid in rejected:
            e = self.graph.get_edge(eid)
            logger.warning("Loop closure %d->%d (edge %d) rejected", e.from_id, e.to_id, eid)
            self.deactivate(eid)

        return accepted, rejected


@dataclass
class ProximityConfig:
    max_distance: float = 2.0
    min_node_gap: int = 10
    max_candidates: int = 3


class ProximityLoopDetector:
    """
    Proposes older poses near the query pose and keeps those the matcher
    confirms. Candidates run from the older node to the query node.
    """

    def __init__(
        self,
        graph: PoseGraph,
        matcher: ScanMatcher,
        cfg: Optional[ProximityConfig] = None,
    ) -> None:
        self.graph = graph
        self.matcher = matcher
        self.cfg = cfg or ProximityConfig()

    def nearby(self, node_id: int) -> List[NodeId]:
        query = self.graph.get_node(node_id)
        qx, qy = float(query.pose[0]), float(query.pose[1])

        scored = []
        for node in self.graph.nodes():
            if node.id > query.id - self.cfg.min_node_gap:
                continue
            d = math.hypot(float(node.pose[0]) - qx, float(node.pose[1]) - qy)
            if d <= self.cfg.max_distance:
                scored.append((d, node.id))

        scored.sort()
        return [nid for _, nid in scored[: self.cfg.max_candidates]]

    def generate(self, node_id: int) -> List[LoopClosure]:
        query = self.graph.get_node(node_id)
        closures: List[LoopClosure] = []
        for ref_id in self.nearby(node_id):
            ref = self.graph.get_node(ref_id)
            guess = se2_between(ref.pose, query.pose)
            result = self.matcher.match(ref.payload, query.payload, guess)
            if result is None:
                continue
            transform, information = result
            closures.append(
                LoopClosure(
                    from_id=ref.id,
                    to_id=query.id,
                    transform=jnp.asarray(transform),
                    information=jnp.asarray(information),
                )
            )
        return closures
