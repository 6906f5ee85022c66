# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""Gauss-Newton solver and the solver mirror."""
