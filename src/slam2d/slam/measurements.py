# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Residual models (measurement factors) for SLAM2D-JIT.

Each function here implements a residual

    r(x; params) ∈ ℝ³

compatible with JAX differentiation and JIT compilation, where `x` is the
two endpoint poses stacked as [x_i, y_i, θ_i, x_j, y_j, θ_j]. Factor types in
the solver graph are mapped to these functions via
`FactorGraph.register_residual`.

1. Gaussian relative pose
-------------------------
    • `se2_between_residual`:
          e = (x_i⁻¹ ⊕ x_j) − z        (heading wrapped)
          r = Lᵀ e                      with Ω = L Lᵀ

      so that ||r||² = eᵀ Ω e, the usual Mahalanobis error.

2. Max-mixture relative pose
----------------------------
    • `max_mixture_residual`:
          k* = argmin_k  ½ eᵀ Ω_k e − log w_k − ½ log det Ω_k
          r  = L_{k*}ᵀ e

      All components share the measurement z and differ only in their
      information matrix and weight. The component is re-selected every
      time the residual is evaluated, i.e. once per Gauss–Newton iteration,
      and the selection itself is not differentiated. A loop closure built
      with a confident component and a near-null component therefore pulls
      on the trajectory while it agrees with the rest of the graph and goes
      slack once it does not.

Helpers
-------
    • `sqrt_information`: whitening factor Lᵀ of an information matrix.
    • `between_params` / `mixture_params`: parameter blocks for the two
      residuals, precomputing the whitening factors on the host.
    • `select_mixture_component`: the selection rule alone, for diagnostics.
"""

from __future__ import annotations

from typing import Dict

import jax
import jax.numpy as jnp

from ..core.math2d import se2_between, wrap_angle
from ..core.types import MixtureModel, as_information, as_pose


def sqrt_information(information: jnp.ndarray) -> jnp.ndarray:
    """
    Upper-triangular R with Rᵀ R = Ω.

    Whitening an error e with R gives ||R e||² = eᵀ Ω e.
    """
    L = jnp.linalg.cholesky(as_information(information))
    return L.T


def _log_det_information(information: jnp.ndarray) -> jnp.ndarray:
    L = jnp.linalg.cholesky(as_information(information))
    return 2.0 * jnp.sum(jnp.log(jnp.diag(L)))


def between_error(x: jnp.ndarray, measurement: jnp.ndarray) -> jnp.ndarray:
    """Unwhitened SE(2) error of the stacked endpoint poses against z."""
    assert x.shape[0] == 6, "SE(2) residuals expect two 3D poses stacked."
    e = se2_between(x[:3], x[3:]) - measurement
    return e.at[2].set(wrap_angle(e[2]))


def between_params(measurement, information) -> Dict[str, jnp.ndarray]:
    return {
        "measurement": as_pose(measurement),
        "sqrt_info": sqrt_information(information),
    }


def mixture_params(measurement, model: MixtureModel) -> Dict[str, jnp.ndarray]:
    """
    Stack a mixture model into residual parameters:

        "measurement": (3,)
        "sqrt_infos":  (K, 3, 3)  whitening factor per component
        "log_norm":    (K,)       log w_k + ½ log det Ω_k
    """
    sqrt_infos = []
    log_norm = []
    for information, weight in model.components:
        sqrt_infos.append(sqrt_information(information))
        log_norm.append(jnp.log(weight) + 0.5 * _log_det_information(information))
    return {
        "measurement": as_pose(measurement),
        "sqrt_infos": jnp.stack(sqrt_infos),
        "log_norm": jnp.stack(log_norm),
    }


def se2_between_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Gaussian SE(2) relative pose residual.

    params:
        "measurement": (3,) measured transform from pose i to pose j
        "sqrt_info":   (3, 3) whitening factor
    """
    e = between_error(x, params["measurement"])
    return params["sqrt_info"] @ e


def _component_costs(e: jnp.ndarray, params: Dict[str, jnp.ndarray]):
    whitened = jnp.einsum("kij,j->ki", params["sqrt_infos"], e)  # (K, 3)
    nll = 0.5 * jnp.sum(whitened ** 2, axis=1) - params["log_norm"]
    return whitened, nll


def select_mixture_component(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """Index of the max-likelihood component at state x."""
    e = between_error(x, params["measurement"])
    _, nll = _component_costs(e, params)
    return jnp.argmin(nll)


def max_mixture_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Max-mixture SE(2) relative pose residual.

    params: see `mixture_params`.
    """
    e = between_error(x, params["measurement"])
    whitened, nll = _component_costs(e, params)
    k = jnp.argmin(jax.lax.stop_gradient(nll))
    return whitened[k]


def chi2(residual: jnp.ndarray) -> jnp.ndarray:
    return jnp.sum(residual ** 2)
