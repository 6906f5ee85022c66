# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""Ordered node-pair -> edge id lookup with an explicit duplicate policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, ItemsView, Optional, Tuple

from .errors import DuplicateConstraintError
from .types import EdgeId, NodeId

NodePair = Tuple[NodeId, NodeId]


class DuplicatePolicy(Enum):
    """What to do when a constraint is added twice for one ordered pair."""
    REJECT = "reject"
    REPLACE = "replace"


@dataclass
class EdgeRegistry:
    """
    At most one edge id per ordered (from_id, to_id) pair.

    (a, b) and (b, a) are different pairs. The registry itself only enforces
    the REJECT policy; REPLACE needs the caller to retire the previous edge
    in both the pose graph and the solver before remapping.
    """
    policy: DuplicatePolicy = DuplicatePolicy.REJECT
    _pairs: Dict[NodePair, EdgeId] = field(default_factory=dict)

    def contains(self, from_id: int, to_id: int) -> bool:
        return (NodeId(int(from_id)), NodeId(int(to_id))) in self._pairs

    def get(self, from_id: int, to_id: int) -> Optional[EdgeId]:
        return self._pairs.get((NodeId(int(from_id)), NodeId(int(to_id))))

    def check(self, from_id: int, to_id: int) -> Optional[EdgeId]:
        """
        Validate a pending insertion against the policy.

        Returns the id of the edge that the insertion would replace, or None.
        Raises DuplicateConstraintError under REJECT.
        """
        existing = self.get(from_id, to_id)
        if existing is not None and self.policy is DuplicatePolicy.REJECT:
            raise DuplicateConstraintError((from_id, to_id), existing)
        return existing

    def put(self, from_id: int, to_id: int, edge_id: int) -> None:
        self._pairs[(NodeId(int(from_id)), NodeId(int(to_id)))] = EdgeId(int(edge_id))

    def items(self) -> ItemsView[NodePair, EdgeId]:
        return self._pairs.items()

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, pair) -> bool:
        return self.contains(*pair)
