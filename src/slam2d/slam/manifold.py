# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
Manifold metadata for SE(2) and Euclidean variables in SLAM2D-JIT.

The Gauss–Newton solver works on a flat state vector. This module tells it
how to interpret each block of that vector:

    • `TYPE_TO_MANIFOLD`: variable type → manifold label
      ("pose_se2" → "se2", anything else → "euclidean")
    • `build_manifold_metadata`: NodeId → slice, manifold label, and the
      boolean mask of state entries that belong to fixed (gauge) variables
    • `se2_retract`: the per-block update rule for SE(2) poses

SE(2) is simple enough that a retraction in global coordinates is just
addition followed by wrapping the heading back into (-π, π].
"""

from __future__ import annotations

from typing import Dict, Tuple

import jax.numpy as jnp

from ..core.factor_graph import FactorGraph
from ..core.math2d import wrap_angle
from ..core.types import NodeId

TYPE_TO_MANIFOLD: Dict[str, str] = {
    "pose_se2": "se2",
}


def get_manifold_for_var_type(var_type: str) -> str:
    return TYPE_TO_MANIFOLD.get(var_type, "euclidean")


def se2_retract(x: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    y = x + delta
    return y.at[2].set(wrap_angle(y[2]))


def build_manifold_metadata(
    fg: FactorGraph,
    packed_state=None,
) -> Tuple[Dict[NodeId, slice], Dict[NodeId, str], jnp.ndarray]:
    """
    Build metadata for the manifold-aware solver:

      - block_slices: NodeId -> slice in the flat state vector
      - manifold_types: NodeId -> 'se2' or 'euclidean'
      - fixed_mask: bool array over the flat state, True for entries of
        fixed variables (they receive no update)

    `packed_state` may be passed as the (x, index) pair from a previous
    `fg.pack_state()` call to avoid packing twice.
    """
    if packed_state is None:
        packed_state = fg.pack_state()
    x, index = packed_state

    block_slices: Dict[NodeId, slice] = {}
    manifold_types: Dict[NodeId, str] = {}
    fixed_mask = jnp.zeros(x.shape[0], dtype=bool)

    for nid, var in fg.variables.items():
        start, length = index[nid]
        sl = slice(start, start + length)
        block_slices[nid] = sl
        manifold_types[nid] = get_manifold_for_var_type(var.type)
        if var.fixed:
            fixed_mask = fixed_mask.at[sl].set(True)

    return block_slices, manifold_types, fixed_mask
