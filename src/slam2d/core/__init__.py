# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""Pose graph storage, ids, errors and SE(2) math."""
