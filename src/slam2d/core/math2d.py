# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""
SE(2) operations for SLAM2D-JIT.

Poses and relative transforms are 3-vectors (x, y, theta). All functions are
written in JAX so they can be traced by `jax.jit` and differentiated by
`jax.jacobian` inside the residuals of `slam.measurements`.

Key Functions
-------------
wrap_angle(a)
    Map an angle to (-pi, pi].

se2_compose(a, b)
    a ⊕ b: apply transform b in the frame of pose a.

se2_inverse(a)
    Inverse transform.

se2_between(a, b)
    a⁻¹ ⊕ b: pose b expressed in the frame of a. This is what an odometry
    or loop-closure measurement observes.

se2_to_matrix / matrix_to_se2
    Conversion to and from 3x3 homogeneous matrices.
"""

from __future__ import annotations

import jax.numpy as jnp


def wrap_angle(a: jnp.ndarray) -> jnp.ndarray:
    """Normalize an angle via atan2 so it stays smooth for autodiff."""
    return jnp.arctan2(jnp.sin(a), jnp.cos(a))


def se2_compose(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    a = jnp.asarray(a)
    b = jnp.asarray(b)
    c, s = jnp.cos(a[2]), jnp.sin(a[2])
    return jnp.array(
        [
            a[0] + c * b[0] - s * b[1],
            a[1] + s * b[0] + c * b[1],
            wrap_angle(a[2] + b[2]),
        ]
    )


def se2_inverse(a: jnp.ndarray) -> jnp.ndarray:
    a = jnp.asarray(a)
    c, s = jnp.cos(a[2]), jnp.sin(a[2])
    return jnp.array(
        [
            -(c * a[0] + s * a[1]),
            -(-s * a[0] + c * a[1]),
            wrap_angle(-a[2]),
        ]
    )


def se2_between(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """
    Relative transform from a to b, i.e. a⁻¹ ⊕ b.

    Written out directly instead of composing with the inverse, which keeps
    the Jacobian expressions short.
    """
    a = jnp.asarray(a)
    b = jnp.asarray(b)
    c, s = jnp.cos(a[2]), jnp.sin(a[2])
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    return jnp.array(
        [
            c * dx + s * dy,
            -s * dx + c * dy,
            wrap_angle(b[2] - a[2]),
        ]
    )


def se2_to_matrix(v: jnp.ndarray) -> jnp.ndarray:
    """(x, y, theta) -> 3x3 homogeneous transform."""
    v = jnp.asarray(v)
    c, s = jnp.cos(v[2]), jnp.sin(v[2])
    return jnp.array(
        [
            [c, -s, v[0]],
            [s, c, v[1]],
            [0.0, 0.0, 1.0],
        ]
    )


def matrix_to_se2(T: jnp.ndarray) -> jnp.ndarray:
    """3x3 homogeneous transform -> (x, y, theta)."""
    T = jnp.asarray(T)
    return jnp.array([T[0, 2], T[1, 2], jnp.arctan2(T[1, 0], T[0, 0])])
