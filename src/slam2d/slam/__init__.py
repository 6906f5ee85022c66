# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""Residuals, loop closure, trajectory write-back and the GraphSlam2D facade."""
