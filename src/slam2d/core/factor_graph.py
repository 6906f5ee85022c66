# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Solver-side factor graph for SLAM2D-JIT.

This is the storage the Gauss-Newton back end works on. It shadows the pose
graph one-to-one (variable id == node id, factor id == edge id) but keeps
only what the optimizer needs:

    - Variables: current estimate, manifold type, fixed flag
    - Factors: residual type, endpoint ids, parameters, active flag
    - Residual functions, registered per factor type

Residual assembly
-----------------
`build_residual_function()` groups the active factors by type. Inside a
group every factor has the same parameter shapes, so the group's parameters
are stacked along a leading axis and its residual function is evaluated once
with `jax.vmap` over gathered state slices:

    r(x) = concat_t  vmap(residual_t)(x[gather_t], params_t)

The result is jitted; Jacobians come from `jax.jacobian` on top of it. Rows
are ordered by factor type (in registration order of the first factor of
each type) and then by insertion order, which only matters to callers that
look at individual rows.

Factors are never removed. Deactivating one drops it from the next build
while keeping it addressable by id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

import jax
import jax.numpy as jnp

from .types import EdgeId, NodeId

ResidualFn = Callable[[jnp.ndarray, Dict[str, Any]], jnp.ndarray]
StateIndex = Dict[NodeId, Tuple[int, int]]


@dataclass
class Variable:
    """Optimization variable (one pose vertex)."""
    id: NodeId
    type: str             # e.g. "pose_se2"
    value: jnp.ndarray
    fixed: bool = False


@dataclass
class Factor:
    """Constraint between variables as seen by the solver."""
    id: EdgeId
    type: str             # e.g. "se2_between", "se2_max_mixture"
    var_ids: Tuple[NodeId, ...]
    params: Dict[str, Any]
    active: bool = True


@dataclass
class FactorGraph:
    """
    Solver factor graph.

    - variables: NodeId -> Variable
    - factors: EdgeId -> Factor
    - residual_fns: factor type -> residual(x_stacked, params)
    """
    variables: Dict[NodeId, Variable] = field(default_factory=dict)
    factors: Dict[EdgeId, Factor] = field(default_factory=dict)
    residual_fns: Dict[str, ResidualFn] = field(default_factory=dict)

    def add_variable(self, var: Variable) -> None:
        assert var.id not in self.variables, f"variable {var.id} already present"
        self.variables[var.id] = var

    def add_factor(self, factor: Factor) -> None:
        assert factor.id not in self.factors, f"factor {factor.id} already present"
        assert all(v in self.variables for v in factor.var_ids), "factor on unknown variable"
        self.factors[factor.id] = factor

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        self.residual_fns[factor_type] = fn

    def active_factors(self) -> Tuple[Factor, ...]:
        return tuple(f for f in self.factors.values() if f.active)

    # --- Flat state ---

    def state_index(self) -> StateIndex:
        """NodeId -> (start, dim) in the flat state, ascending id order."""
        index: StateIndex = {}
        start = 0
        for nid in sorted(self.variables):
            dim = int(jnp.shape(self.variables[nid].value)[0])
            index[nid] = (start, dim)
            start += dim
        return index

    def pack_state(self) -> Tuple[jnp.ndarray, StateIndex]:
        index = self.state_index()
        if not index:
            return jnp.zeros((0,)), index
        blocks = [jnp.asarray(self.variables[nid].value) for nid in index]
        return jnp.concatenate(blocks), index

    def unpack_state(self, x: jnp.ndarray, index: StateIndex) -> Dict[NodeId, jnp.ndarray]:
        return {nid: x[start:start + dim] for nid, (start, dim) in index.items()}

    # --- Residual / objective ---

    def _group_active_factors(self) -> Dict[str, List[Factor]]:
        groups: Dict[str, List[Factor]] = {}
        for factor in self.active_factors():
            if factor.type not in self.residual_fns:
                raise ValueError(f"No residual fn registered for factor type '{factor.type}'")
            groups.setdefault(factor.type, []).append(factor)
        return groups

    @staticmethod
    def _gather_columns(factor: Factor, index: StateIndex) -> List[int]:
        cols: List[int] = []
        for nid in factor.var_ids:
            start, dim = index[nid]
            cols.extend(range(start, start + dim))
        return cols

    def build_residual_function(self):
        """
        r(x) over the active factors, jitted. `x` is the packed state.

        The factor set is frozen at build time; a factor deactivated
        afterwards still contributes until the next build.
        """
        _, index = self.pack_state()

        batches = []
        for f_type, members in self._group_active_factors().items():
            gather = jnp.array([self._gather_columns(f, index) for f in members], dtype=jnp.int32)
            params = jax.tree_util.tree_map(
                lambda *leaves: jnp.stack(leaves), *[f.params for f in members]
            )
            batches.append((jax.vmap(self.residual_fns[f_type]), gather, params))

        def residual(x: jnp.ndarray) -> jnp.ndarray:
            if not batches:
                return jnp.zeros((0,), dtype=x.dtype)
            return jnp.concatenate(
                [fn(x[gather], params).reshape(-1) for fn, gather, params in batches]
            )

        return jax.jit(residual)

    def build_objective(self):
        """f(x) = ||r(x)||², the total whitened squared error."""
        residual = self.build_residual_function()

        def objective(x: jnp.ndarray) -> jnp.ndarray:
            return jnp.sum(residual(x) ** 2)

        return jax.jit(objective)
