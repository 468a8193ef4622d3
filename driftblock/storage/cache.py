"""
In-memory block cache.

A Cache is a fixed-length sequence of blocks plus a two-state switch that
decides whether a block matrix routes reads and writes to memory or to its
storage mechanism:

    UNUSED ──cache()──▶ USED ──flush()──▶ UNUSED

Only BlockMatrix.cache() and BlockMatrix.flush() drive the transitions.
"""

from enum import Enum
from typing import List, Optional

import numpy as np

from ..errors import BlockIndexError, CacheStateError, UnwrittenBlockError


class CacheState(Enum):
    UNUSED = "unused"
    USED = "used"


_LEGAL_TRANSITIONS = {
    (CacheState.UNUSED, CacheState.USED),
    (CacheState.USED, CacheState.UNUSED),
}


class Cache:
    """
    Fixed-length block overlay.

    Parameters
    ----------
    nblocks : int
        Number of blocks in the owning matrix
    used : bool
        Initial state. Matrices without backing storage start USED and stay there.
    """

    def __init__(self, nblocks: int, used: bool = False):
        if nblocks < 0:
            raise ValueError(f"nblocks must be non-negative, got {nblocks}")
        self.blocks: List[Optional[np.ndarray]] = [None] * nblocks
        self._state = CacheState.USED if used else CacheState.UNUSED

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def used(self) -> bool:
        return self._state is CacheState.USED

    def transition(self, target: CacheState) -> None:
        """Move to `target`. Only UNUSED→USED and USED→UNUSED are allowed."""
        if (self._state, target) not in _LEGAL_TRANSITIONS:
            raise CacheStateError(
                f"Illegal cache transition {self._state.value} -> {target.value}"
            )
        self._state = target

    def __len__(self) -> int:
        return len(self.blocks)

    def _check(self, index: int) -> int:
        if not 0 <= index < len(self.blocks):
            raise BlockIndexError(
                f"Cache index {index} out of range for {len(self.blocks)} blocks"
            )
        return index

    def __getitem__(self, index: int) -> np.ndarray:
        block = self.blocks[self._check(index)]
        if block is None:
            raise UnwrittenBlockError(f"Cache slot {index} has never been written")
        return block

    def __setitem__(self, index: int, block: np.ndarray) -> None:
        self.blocks[self._check(index)] = block

    def __repr__(self) -> str:
        return f"Cache(nblocks={len(self.blocks)}, state={self._state.value})"
