# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""Export and visualization of pose graphs."""
