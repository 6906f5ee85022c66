# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Nonlinear least-squares solver for SLAM2D-JIT.

This module implements the Gauss–Newton back end behind
`optimization.mirror.GaussNewtonMirror`. It operates on the flat state
vector and residual function produced by `core.factor_graph.FactorGraph`
and applies updates block by block according to the manifold metadata from
`slam.manifold`.

Key Concepts
------------
GNConfig
    Dataclass holding configuration for Gauss–Newton:
    - max_iters: maximum number of GN iterations
    - damping: Levenberg–Marquardt-style diagonal damping
    - max_step_norm: clamp on the update step size
    - step_tolerance: stop once the update norm falls below this value
      (0 disables early stopping)

gauss_newton_manifold(residual_fn, x0, block_slices, manifold_types, cfg, fixed_mask)
    Manifold-aware Gauss–Newton:
        Jᵀ J Δx = Jᵀ r,   x ← retract(x, −Δx)
    Columns of J belonging to fixed variables are zeroed, so those blocks
    receive exactly zero update. This is how the anchor pose removes the
    three gauge degrees of freedom of a 2D pose graph.

SolveReport
    Iterations run, initial and final total error, last step norm and
    whether the step tolerance was reached. This is a diagnostic only; the
    callers' boolean contract ("the pass executed") does not depend on it.

Notes
-----
The residual is re-evaluated at every iteration, which is what lets
max-mixture factors re-select their best component per iteration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import jax
import jax.numpy as jnp

from ..slam.manifold import se2_retract

ResidualFn = Callable[[jnp.ndarray], jnp.ndarray]


@dataclass
class GNConfig:
    max_iters: int = 10
    damping: float = 1e-3        # LM-style diagonal damping
    max_step_norm: float = 1.0   # clamp step size for stability
    step_tolerance: float = 1e-3


@dataclass(frozen=True)
class SolveReport:
    iterations: int
    initial_error: float
    final_error: float
    last_step_norm: float
    converged: bool


def gauss_newton_manifold(
    residual_fn: ResidualFn,
    x0: jnp.ndarray,
    block_slices: Dict,      # NodeId -> slice
    manifold_types: Dict,    # NodeId -> "se2" / "euclidean"
    cfg: GNConfig,
    fixed_mask: Optional[jnp.ndarray] = None,
) -> Tuple[jnp.ndarray, SolveReport]:
    """
    Manifold-aware Gauss-Newton with gauge fixing.

      - residual_fn: x -> r(x), with x in R^n, r in R^m
      - block_slices: maps each NodeId to a slice in x
      - manifold_types: maps each NodeId to a manifold label:
            - "se2": added, then heading wrapped
            - "euclidean": simple subtraction
      - fixed_mask: bool (n,), True where x must not move
    """
    n = x0.shape[0]
    if fixed_mask is None:
        fixed_mask = jnp.zeros(n, dtype=bool)
    free = jnp.where(fixed_mask, 0.0, 1.0).astype(x0.dtype)

    J_fn = jax.jit(jax.jacobian(residual_fn))  # J: (m, n)

    x = x0
    initial_error = float(jnp.sum(residual_fn(x) ** 2))
    step_norm = 0.0
    iterations = 0
    converged = False

    for _ in range(cfg.max_iters):
        r = residual_fn(x)           # (m,)
        J = J_fn(x) * free[None, :]  # (m, n)

        H = J.T @ J                  # (n, n)
        g = J.T @ r                  # (n,)

        H_damped = H + cfg.damping * jnp.eye(n)
        delta = jnp.linalg.solve(H_damped, g) * free  # (n,)

        # Step size clamp
        norm = jnp.linalg.norm(delta)
        scale = jnp.minimum(1.0, cfg.max_step_norm / (norm + 1e-9))
        delta_scaled = scale * delta

        # Apply updates per variable block using the right manifold
        x_new = x
        for nid, sl in block_slices.items():
            d_i = delta_scaled[sl]
            x_i = x[sl]
            if manifold_types[nid] == "se2":
                x_i_new = se2_retract(x_i, -d_i)
            else:
                x_i_new = x_i - d_i
            x_new = x_new.at[sl].set(x_i_new)

        # Fixed entries are copied through untouched, not retracted.
        x = jnp.where(fixed_mask, x, x_new)
        iterations += 1
        step_norm = float(jnp.linalg.norm(delta_scaled))

        if cfg.step_tolerance > 0.0 and step_norm < cfg.step_tolerance:
            converged = True
            break

    final_error = float(jnp.sum(residual_fn(x) ** 2))
    report = SolveReport(
        iterations=iterations,
        initial_error=initial_error,
        final_error=final_error,
        last_step_norm=step_norm,
        converged=converged,
    )
    return x, report
