"""
Transfer Matrix.

Maps spherical harmonic coefficients of the sky to visibilities. Block (m, beta)
holds, for order m and frequency channel beta, one row per (baseline, ±m) and
one column per degree l = m..lmax:

    m = 0:  rows = baselines                         columns = l = 0..lmax
    m > 0:  rows = 2a (+m), 2a+1 (-m) per baseline a  columns = l = m..lmax

Blocks live in HierarchicalStorage so short baselines carry fewer columns.
"""

import logging
from typing import Optional, Sequence, Tuple

from ..core.hierarchy import Hierarchy, compute_baseline_hierarchy, maximum_multipole_moment
from ..core.metadata import Metadata
from ..errors import ConstructionError
from ..storage.hierarchical import HierarchicalStorage
from .base import BlockMatrix, as_nonnegative_int, create
from .registry import register_matrix

logger = logging.getLogger("driftblock")


@register_matrix
class TransferMatrix(BlockMatrix):
    """Instrument response, block-indexed by (m, beta)."""

    arity = 2
    fields = (
        ("metadata", Metadata.coerce),
        ("lmax", as_nonnegative_int),
        ("mmax", as_nonnegative_int),
    )

    def __init__(self, storage, *values):
        super().__init__(storage, *values)
        if self.mmax > self.lmax:
            raise ConstructionError(f"mmax={self.mmax} exceeds lmax={self.lmax}")

    @property
    def nfreq(self) -> int:
        return self.metadata.n_freq

    @property
    def nbase(self) -> int:
        return self.metadata.n_base

    @property
    def hierarchy(self) -> Optional[Hierarchy]:
        return getattr(self.storage, "hierarchy", None)

    def dims(self) -> Tuple[int, ...]:
        return (self.mmax + 1, self.nfreq)

    def compute(self, beam, **options) -> "TransferMatrix":
        """Fill every block. See driftblock.parallel.scheduler.compute."""
        from ..parallel.scheduler import compute
        return compute(self, beam, **options)


def create_transfer_matrix(
    path: str,
    metadata,
    lmax: Optional[int] = None,
    divisions: Optional[Sequence[int]] = None,
    base_cutoff: int = 100,
    purge: bool = False,
) -> TransferMatrix:
    """
    Build the baseline hierarchy and create an empty transfer matrix at `path`.

    Parameters
    ----------
    path : str
        Matrix root directory
    metadata : Metadata or mapping
        Interferometer description
    lmax : int, optional
        Global maximum multipole. Default: largest required multipole + 1.
    divisions : sequence of int, optional
        Explicit hierarchy cutoffs
    base_cutoff : int
        First cutoff of the default doubling ladder
    purge : bool
        Delete stale blocks of an earlier matrix at `path`

    Returns
    -------
    transfermatrix : TransferMatrix
        lmax = mmax = the largest non-empty hierarchy cutoff
    """
    metadata = Metadata.coerce(metadata)
    if lmax is None:
        lmax = int(maximum_multipole_moment(metadata).max()) + 1
    hierarchy = compute_baseline_hierarchy(metadata, lmax, divisions, base_cutoff)
    storage = HierarchicalStorage(path, hierarchy)
    matrix = create(TransferMatrix, storage, metadata, hierarchy.lmax, hierarchy.lmax, purge=purge)
    logger.info(f"Created transfer matrix at {path}: lmax={hierarchy.lmax}, "
                f"{len(hierarchy)} divisions, {metadata.n_freq} frequencies")
    return matrix
