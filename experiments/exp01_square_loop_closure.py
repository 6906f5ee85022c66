# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.

from __future__ import annotations

import logging
import math

import jax.numpy as jnp

from slam2d.core.math2d import se2_compose
from slam2d.core.types import EdgeState, LoopClosure
from slam2d.slam.graph_slam import GraphSlam2D
from slam2d.world.visualization import plot_pose_graph_2d


class ScriptedDetector:
    """
    Stand-in for a place-recognition front end: returns hand-written
    candidates per query node.
    """

    def __init__(self, script):
        self.script = script

    def generate(self, node_id):
        return self.script.get(int(node_id), [])


class ResidualGateValidator:
    """
    Toy validator: rejects loop edges whose measured transform disagrees with
    the optimized poses by more than `max_error` meters.
    """

    def __init__(self, max_error: float = 1.0):
        self.max_error = max_error

    def validate(self, loop_edges, poses):
        verdicts = {}
        for e in loop_edges:
            predicted = se2_compose(poses[e.from_id], e.transform)
            err = float(jnp.linalg.norm(predicted[:2] - poses[e.to_id][:2]))
            verdicts[e.id] = err <= self.max_error
        return verdicts


def build_square_world(side_poses: int = 4, drift: float = 0.03):
    """
    Drive around a 4 m x 4 m square with slightly biased odometry:

      - the robot turns 90° at each corner
      - every odometry step underestimates the heading change by `drift`
      - at the end it is back at the start, which the detector notices
        (genuine loop 0 -> last)
      - the detector also reports one bogus closure across the square

    Returns the SLAM front door and the number of poses.
    """
    n = 4 * side_poses
    step = jnp.array([1.0, 0.0, 0.0])
    turn = jnp.array([1.0, 0.0, 0.5 * math.pi])

    last = n
    script = {
        last: [LoopClosure(0, last, jnp.zeros(3), 10.0 * jnp.eye(3))],
        2 * side_poses: [LoopClosure(1, 2 * side_poses, jnp.array([-6.0, 9.0, 0.0]), jnp.eye(3))],
    }
    slam = GraphSlam2D(detector=ScriptedDetector(script), validator=ResidualGateValidator())

    pose = jnp.zeros(3)
    slam.add_pose(pose, "scan0")
    for i in range(1, n + 1):
        meas = turn if i % side_poses == 0 else step
        noisy = meas.at[2].add(-drift)
        pose = se2_compose(pose, noisy)
        slam.add_pose(pose, f"scan{i}")
        slam.add_last_constrain(meas, jnp.eye(3))
        slam.try_loop_close()

    return slam, n + 1


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    slam, num_poses = build_square_world()
    print(f"Poses: {num_poses}, constraints: {slam.graph.num_edges}")
    print(f"Total error before: {slam.calc_total_graph_error():.4f}")
    print(f"Last pose before:   {slam.get_pose_location(num_poses - 1)}")

    ok = slam.optimize_iteratively(rounds=3)
    report = slam.last_solve_report

    print(f"Optimize executed: {ok}")
    print(f"Total error after:  {slam.calc_total_graph_error():.4f}")
    print(f"Last pose after:    {slam.get_pose_location(num_poses - 1)}")
    if report is not None:
        print(f"Last pass: {report.iterations} iterations, converged={report.converged}")

    for e in slam.graph.loop_edges(state=None):
        status = "kept" if e.state is EdgeState.ACTIVE else "rejected"
        print(f"Loop {e.from_id}->{e.to_id}: {status}")

    print("--- graph dump ---")
    print(slam.get_graph_serialized(), end="")

    plot_pose_graph_2d(slam.graph, show_labels=True)


if __name__ == "__main__":
    main()
