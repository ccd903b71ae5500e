# checkpoint.py ------------------------------------------------------------
"""
Trajectory buffer filled by the forward pass and drained by the adjoints.

Two snapshot shapes exist.  A buffer is typed by :class:`CheckpointKind` when
it is created and refuses the other shape, so a discrete replay can never
see continuous data or vice versa.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Union

import torch

from .status import BufferEmptyError, BufferOverflowError

logger = logging.getLogger(__name__)

BUFSIZE = 200000


class CheckpointKind(enum.Enum):
    DISCRETE   = "discrete"
    CONTINUOUS = "continuous"


@dataclass
class DiscreteSnapshot:
    t:       float
    h:       float                    # step magnitude actually taken
    ystage:  torch.Tensor             # (S, n) stage states
    k:       torch.Tensor             # (S, n) stage vectors
    factorization: Optional[Any] = None   # saved LU of the iteration matrix


@dataclass
class ContinuousSnapshot:
    t:    float
    h:    float
    y:    torch.Tensor                # state
    dy:   torch.Tensor                # f(t, y)
    d2y:  torch.Tensor                # J f + df/dt


Snapshot = Union[DiscreteSnapshot, ContinuousSnapshot]

_SHAPES = {
    CheckpointKind.DISCRETE:   DiscreteSnapshot,
    CheckpointKind.CONTINUOUS: ContinuousSnapshot,
}


class TrajectoryBuffer:
    """Bounded LIFO stack of snapshots of a single shape."""

    def __init__(self, kind: CheckpointKind, capacity: int = BUFSIZE):
        self.kind     = CheckpointKind(kind)
        self.capacity = int(capacity)
        self._stack: List[Snapshot] = []
        logger.debug("allocated %s trajectory buffer, capacity %d",
                     self.kind.value, self.capacity)

    # ---- stack ops --------------------------------------------------------
    def push(self, snap: Snapshot) -> None:
        if not isinstance(snap, _SHAPES[self.kind]):
            raise TypeError(f"{type(snap).__name__} pushed onto a "
                            f"{self.kind.value} trajectory buffer")
        if len(self._stack) >= self.capacity:
            raise BufferOverflowError(
                f"trajectory buffer full ({self.capacity} snapshots); "
                "increase buffer_size")
        self._stack.append(snap)

    def pop(self) -> Snapshot:
        if not self._stack:
            raise BufferEmptyError("pop from an empty trajectory buffer")
        return self._stack.pop()

    def peek(self) -> Snapshot:
        if not self._stack:
            raise BufferEmptyError("peek into an empty trajectory buffer")
        return self._stack[-1]

    def clear(self) -> None:
        self._stack.clear()

    # ---- read-only access (oldest first) ---------------------------------
    def __len__(self) -> int:
        return len(self._stack)

    def __getitem__(self, idx: int) -> Snapshot:
        return self._stack[idx]

    def times(self) -> List[float]:
        return [s.t for s in self._stack]
