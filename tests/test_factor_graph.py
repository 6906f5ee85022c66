from __future__ import annotations

import jax.numpy as jnp
import pytest

from slam2d.core.factor_graph import Factor, FactorGraph, Variable
from slam2d.core.types import EdgeId, NodeId
from slam2d.slam.measurements import between_params, se2_between_residual


def _two_pose_graph() -> FactorGraph:
    fg = FactorGraph()
    fg.add_variable(Variable(id=NodeId(0), type="pose_se2", value=jnp.zeros(3), fixed=True))
    fg.add_variable(Variable(id=NodeId(1), type="pose_se2", value=jnp.array([0.8, 0.1, 0.0])))
    fg.register_residual("se2_between", se2_between_residual)
    return fg


def test_pack_and_unpack_state():
    fg = _two_pose_graph()
    x, index = fg.pack_state()
    assert x.shape == (6,)
    assert index[NodeId(0)] == (0, 3)
    assert index[NodeId(1)] == (3, 3)
    values = fg.unpack_state(x, index)
    assert jnp.allclose(values[NodeId(1)], jnp.array([0.8, 0.1, 0.0]))


def test_empty_graph_packs_to_empty_state():
    x, index = FactorGraph().pack_state()
    assert x.shape == (0,)
    assert index == {}


def test_inactive_factors_leave_the_residual():
    """
    Two factors on the same pair; deactivating one halves the residual
    length at the next build, while the factor stays stored.
    """
    fg = _two_pose_graph()
    for fid in (0, 1):
        fg.add_factor(
            Factor(
                id=EdgeId(fid),
                type="se2_between",
                var_ids=(NodeId(0), NodeId(1)),
                params=between_params(jnp.array([1.0, 0.0, 0.0]), jnp.eye(3)),
            )
        )
    x, _ = fg.pack_state()
    assert fg.build_residual_function()(x).shape == (6,)

    fg.factors[EdgeId(1)].active = False
    assert fg.build_residual_function()(x).shape == (3,)
    assert len(fg.factors) == 2

    # ||(-0.2, 0.1, 0)||² for the single remaining factor
    assert float(fg.build_objective()(x)) == pytest.approx(0.05, rel=1e-4)


def test_unregistered_factor_type_fails_at_build():
    fg = _two_pose_graph()
    fg.add_factor(Factor(id=EdgeId(0), type="mystery", var_ids=(NodeId(0), NodeId(1)), params={}))
    with pytest.raises(ValueError):
        fg.build_residual_function()
