from __future__ import annotations

import jax.numpy as jnp
import pytest

from slam2d.core.factor_graph import Factor, FactorGraph, Variable
from slam2d.core.types import EdgeId, NodeId
from slam2d.optimization.solvers import GNConfig, gauss_newton_manifold
from slam2d.slam.manifold import build_manifold_metadata
from slam2d.slam.measurements import between_params, se2_between_residual


def _se2_chain(initial) -> FactorGraph:
    """
    pose0 --(1,0,0)--> pose1 --(1,0,0)--> pose2, pose0 fixed.
    """
    fg = FactorGraph()
    fg.register_residual("se2_between", se2_between_residual)
    for i, value in enumerate(initial):
        fg.add_variable(
            Variable(id=NodeId(i), type="pose_se2", value=jnp.array(value), fixed=(i == 0))
        )
    for i in range(len(initial) - 1):
        fg.add_factor(
            Factor(
                id=EdgeId(i),
                type="se2_between",
                var_ids=(NodeId(i), NodeId(i + 1)),
                params=between_params(jnp.array([1.0, 0.0, 0.0]), jnp.eye(3)),
            )
        )
    return fg


def _solve(fg: FactorGraph, cfg: GNConfig):
    x0, index = fg.pack_state()
    block_slices, manifold_types, fixed_mask = build_manifold_metadata(fg, packed_state=(x0, index))
    x, report = gauss_newton_manifold(
        fg.build_residual_function(), x0, block_slices, manifold_types, cfg, fixed_mask
    )
    return fg.unpack_state(x, index), report


def test_gauss_newton_recovers_chain_and_keeps_anchor():
    fg = _se2_chain([[0.0, 0.0, 0.0], [0.8, 0.1, 0.05], [2.3, -0.2, -0.1]])
    values, report = _solve(fg, GNConfig(max_iters=20, step_tolerance=1e-6))

    assert jnp.array_equal(values[NodeId(0)], jnp.zeros(3))
    assert jnp.allclose(values[NodeId(1)], jnp.array([1.0, 0.0, 0.0]), atol=1e-3)
    assert jnp.allclose(values[NodeId(2)], jnp.array([2.0, 0.0, 0.0]), atol=1e-3)
    assert report.final_error < report.initial_error
    assert report.final_error == pytest.approx(0.0, abs=1e-5)


def test_fixed_anchor_off_origin_does_not_move():
    fg = _se2_chain([[0.5, -0.5, 0.3], [0.0, 0.0, 0.0]])
    values, _ = _solve(fg, GNConfig(max_iters=10))
    assert jnp.array_equal(values[NodeId(0)], jnp.array([0.5, -0.5, 0.3]))


def test_early_stop_on_small_step():
    fg = _se2_chain([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    _, report = _solve(fg, GNConfig(max_iters=10, step_tolerance=1e-3))
    assert report.iterations == 1
    assert report.converged


def test_zero_tolerance_runs_every_iteration():
    fg = _se2_chain([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    _, report = _solve(fg, GNConfig(max_iters=3, step_tolerance=0.0))
    assert report.iterations == 3
    assert not report.converged


def test_step_is_clamped():
    fg = _se2_chain([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0]])
    values, report = _solve(fg, GNConfig(max_iters=1, max_step_norm=0.5, step_tolerance=0.0))
    assert report.last_step_norm == pytest.approx(0.5, rel=1e-3)
    assert float(values[NodeId(1)][0]) == pytest.approx(9.5, abs=1e-3)
