# Copyright (c) 2025.
# This file is part of SLAM2D-JIT, released under the MIT License.
"""Exception types raised by the pose graph and its solver mirror."""

from __future__ import annotations


class Slam2DError(Exception):
    """Base class for all SLAM2D-JIT errors."""


class NotFoundError(Slam2DError, KeyError):
    """A node or edge id that was never added was accessed."""

    def __init__(self, kind: str, item_id) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"Unknown {kind} id {item_id!r}")

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return self.args[0]


class InconsistentMirrorError(Slam2DError):
    """The pose graph and the solver mirror no longer share one id space.

    This is an invariant violation. It is not meant to be recovered from.
    """


class DuplicateConstraintError(Slam2DError):
    """A constraint already exists for the ordered node pair."""

    def __init__(self, pair, existing_edge_id) -> None:
        self.pair = tuple(pair)
        self.existing_edge_id = existing_edge_id
        super().__init__(
            f"Constraint {self.pair[0]}->{self.pair[1]} already registered as edge {existing_edge_id}"
        )
