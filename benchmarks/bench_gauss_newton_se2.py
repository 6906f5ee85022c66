# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.

import time

import jax.numpy as jnp

from slam2d.core.pose_graph import PoseGraph
from slam2d.core.types import SimpleModel
from slam2d.optimization.mirror import GaussNewtonMirror, add_paired_edge, add_paired_node
from slam2d.optimization.solvers import GNConfig


def build_se2_chain(num_poses: int = 10):
    """
    Simple SE2 pose chain:
        pose0 --odom--> pose1 --odom--> ... --odom--> pose_{N-1}
    pose0 is the fixed anchor, odom edges are +1m in x, no rotation.
    """
    graph = PoseGraph()
    mirror = GaussNewtonMirror(GNConfig(damping=1e-3, max_step_norm=1.0, step_tolerance=0.0))

    # Initial guesses: slightly perturbed around ground truth [i, 0, 0]
    for i in range(num_poses):
        init_val = jnp.array(
            [
                i + 0.1 * jnp.sin(0.3 * i),  # x
                0.05 * jnp.cos(0.2 * i),     # y
                0.02 * jnp.sin(0.5 * i),     # theta
            ]
        )
        add_paired_node(graph, mirror, init_val, None, fixed=(i == 0))

    meas = jnp.array([1.0, 0.0, 0.0])
    for i in range(num_poses - 1):
        add_paired_edge(graph, mirror, i, i + 1, meas, SimpleModel(jnp.eye(3)))

    return graph, mirror


def run_benchmark(num_poses: int = 50, max_iters: int = 20):
    print("=== SE2 Gauss-Newton Benchmark (GaussNewtonMirror) ===")
    print(f"num_poses = {num_poses}, max_iters = {max_iters}")

    # Warmup: first pass includes tracing and compilation
    graph, mirror = build_se2_chain(num_poses)
    t0 = time.time()
    mirror.run(max_iters)
    t1 = time.time()
    print(f"First pass (incl. compile): {(t1 - t0) * 1000:.3f} ms")

    # Benchmark a fresh problem of the same shape
    graph, mirror = build_se2_chain(num_poses)
    t0 = time.time()
    mirror.run(max_iters)
    t1 = time.time()
    print(f"Second pass:                {(t1 - t0) * 1000:.3f} ms")

    report = mirror.last_report
    print(f"error: {report.initial_error:.6f} -> {report.final_error:.6f}")

    # Quick sanity: print pose0 / pose_last
    print(f"pose0 (opt):   {mirror.estimate(0)}")
    print(f"poseN-1 (opt): {mirror.estimate(num_poses - 1)}")


if __name__ == "__main__":
    run_benchmark(num_poses=50, max_iters=20)
