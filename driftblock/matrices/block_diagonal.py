"""
Generic block matrices over plain block stores.

BlockDiagonalMatrix  arity 1, one block per order m
MFBlockMatrix        arity 2, one block per (m, beta)
"""

from typing import Tuple

from .base import BlockMatrix, as_float_array, as_nonnegative_int
from .registry import register_matrix


@register_matrix
class BlockDiagonalMatrix(BlockMatrix):
    """Block-diagonal in m, e.g. a frequency-averaged covariance."""

    arity = 1
    fields = (("mmax", as_nonnegative_int),)

    def dims(self) -> Tuple[int, ...]:
        return (self.mmax + 1,)


@register_matrix
class MFBlockMatrix(BlockMatrix):
    """Block-diagonal in m and in frequency."""

    arity = 2
    fields = (
        ("mmax", as_nonnegative_int),
        ("frequencies", as_float_array),
    )

    @property
    def nfreq(self) -> int:
        return len(self.frequencies)

    def dims(self) -> Tuple[int, ...]:
        return (self.mmax + 1, self.nfreq)
