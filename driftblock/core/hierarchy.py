"""
Baseline Hierarchy.

Short baselines only see large angular scales, so their fringe patterns are
band-limited at a small multipole. The hierarchy groups baselines into
divisions, each with its own lmax cutoff, so short baselines are computed and
stored with far fewer (l, m) coefficients than long ones.

    divisions:  100        200        400        1000
    baselines:  [0, 3, 7]  [1, 4]     [2, 8]     [5, 6]

Invariants: cutoffs strictly increasing; every baseline index in exactly one
division.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import h5py
import numpy as np
from scipy.constants import c as SPEED_OF_LIGHT

from ..io.hdf5 import register_hdf5_kind
from .metadata import Metadata

logger = logging.getLogger("driftblock")


def two(m: int) -> int:
    """Rows contributed per baseline at order m (+m and -m share a block when m > 0)."""
    return 2 if m > 0 else 1


@register_hdf5_kind
@dataclass(frozen=True)
class Hierarchy:
    """Ordered lmax cutoffs and the baselines assigned to each."""
    divisions: Tuple[int, ...]
    baselines: Tuple[Tuple[int, ...], ...]

    def __post_init__(self):
        divisions = tuple(int(d) for d in self.divisions)
        baselines = tuple(tuple(sorted(int(a) for a in group)) for group in self.baselines)
        if not divisions:
            raise ValueError("Hierarchy needs at least one division")
        if len(divisions) != len(baselines):
            raise ValueError(
                f"{len(divisions)} divisions but {len(baselines)} baseline groups"
            )
        if divisions[0] < 0 or any(b <= a for a, b in zip(divisions, divisions[1:])):
            raise ValueError(f"Division cutoffs must be strictly increasing: {divisions}")
        seen = set()
        for group in baselines:
            overlap = seen.intersection(group)
            if overlap:
                raise ValueError(f"Baselines {sorted(overlap)} assigned to more than one division")
            seen.update(group)
        object.__setattr__(self, "divisions", divisions)
        object.__setattr__(self, "baselines", baselines)

    @property
    def lmax(self) -> int:
        return self.divisions[-1]

    @property
    def n_base(self) -> int:
        return sum(len(group) for group in self.baselines)

    def __len__(self) -> int:
        return len(self.divisions)

    def is_partition_of(self, n_base: int) -> bool:
        """True if the baseline groups cover 0..n_base-1 exactly once."""
        flat = [a for group in self.baselines for a in group]
        return sorted(flat) == list(range(n_base))

    def divisions_for(self, m: int) -> Iterator[Tuple[int, int]]:
        """(division index, cutoff) for every division that contains order m."""
        for idx, lmax in enumerate(self.divisions):
            if lmax >= m:
                yield idx, lmax

    def block_shape(self, m: int) -> Tuple[int, int]:
        """Shape of the stitched block for order m."""
        rows = sum(two(m) * len(self.baselines[idx]) for idx, _ in self.divisions_for(m))
        return rows, self.lmax - m + 1

    def baseline_permutation(self, m: int) -> np.ndarray:
        """
        Row layout of the stitched block for order m.

        For m = 0 each row is a baseline index. For m > 0 baseline a occupies
        two rows, encoded as 2a (positive m) and 2a+1 (negative m).
        """
        indices: List[int] = []
        for idx, _ in self.divisions_for(m):
            if m == 0:
                indices.extend(self.baselines[idx])
            else:
                for a in self.baselines[idx]:
                    indices.append(2 * a)
                    indices.append(2 * a + 1)
        return np.array(indices, dtype=np.int64)

    def __str__(self) -> str:
        lines = ["Hierarchy:"]
        for lmax, group in zip(self.divisions, self.baselines):
            lines.append(f"  lmax={lmax:5d}  n_base={len(group)}")
        return "\n".join(lines)

    # -----------------------------------------------------------------------
    # HDF5
    # -----------------------------------------------------------------------

    def write_hdf5(self, group: h5py.Group) -> None:
        group.create_dataset("divisions", data=np.array(self.divisions, dtype=np.int64))
        for idx, members in enumerate(self.baselines):
            group.create_dataset(f"baselines_{idx:04d}", data=np.array(members, dtype=np.int64))

    @classmethod
    def read_hdf5(cls, group: h5py.Group) -> "Hierarchy":
        divisions = tuple(int(d) for d in group["divisions"][()])
        baselines = tuple(
            tuple(int(a) for a in group[f"baselines_{idx:04d}"][()])
            for idx in range(len(divisions))
        )
        return cls(divisions, baselines)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def maximum_multipole_moment(metadata: Metadata) -> np.ndarray:
    """
    Largest multipole each baseline is sensitive to.

    Uses the highest frequency channel: l ≈ 2π|b|/λ_min.

    Returns
    -------
    lmax : ndarray (n_base,) int64
    """
    lengths = np.linalg.norm(metadata.baselines, axis=1)
    wavelength = SPEED_OF_LIGHT / np.max(metadata.frequencies)
    return np.ceil(2 * np.pi * lengths / wavelength).astype(np.int64)


def _candidate_cutoffs(lmax: int, divisions: Optional[Sequence[int]], base_cutoff: int) -> List[int]:
    if divisions is not None:
        cutoffs = [int(d) for d in divisions]
        if any(b <= a for a, b in zip(cutoffs, cutoffs[1:])):
            raise ValueError(f"divisions must be strictly increasing: {cutoffs}")
        cutoffs = [d for d in cutoffs if 0 < d < lmax]
    else:
        if base_cutoff < 1:
            raise ValueError(f"base_cutoff must be positive, got {base_cutoff}")
        cutoffs = []
        cutoff = base_cutoff
        while cutoff < lmax:
            cutoffs.append(cutoff)
            cutoff *= 2
    cutoffs.append(lmax)
    return cutoffs


def compute_baseline_hierarchy(
    metadata: Metadata,
    lmax: int,
    divisions: Optional[Sequence[int]] = None,
    base_cutoff: int = 100,
) -> Hierarchy:
    """
    Assign every baseline to the cheapest division that still represents it.

    Parameters
    ----------
    metadata : Metadata
        Interferometer description
    lmax : int
        Global maximum multipole. Baselines needing more are truncated here.
    divisions : sequence of int, optional
        Explicit cutoffs. Values at or above lmax are dropped; lmax is appended.
    base_cutoff : int
        First cutoff of the default doubling ladder (base, 2·base, 4·base, ... lmax)

    Returns
    -------
    hierarchy : Hierarchy
        Empty divisions are dropped, so hierarchy.lmax may be below `lmax`.
    """
    lmax = int(lmax)
    if lmax < 1:
        raise ValueError(f"lmax must be at least 1, got {lmax}")
    if metadata.n_base == 0:
        raise ValueError("Cannot build a hierarchy without baselines")

    cutoffs = _candidate_cutoffs(lmax, divisions, base_cutoff)
    required = np.minimum(maximum_multipole_moment(metadata), lmax)
    # smallest cutoff >= required multipole
    slot = np.searchsorted(np.array(cutoffs), required, side="left")

    groups = [[] for _ in cutoffs]
    for alpha, idx in enumerate(slot):
        groups[int(idx)].append(alpha)

    kept = [(cutoff, group) for cutoff, group in zip(cutoffs, groups) if group]
    hierarchy = Hierarchy(
        divisions=tuple(cutoff for cutoff, _ in kept),
        baselines=tuple(tuple(group) for _, group in kept),
    )
    logger.debug(f"baseline hierarchy from {len(cutoffs)} candidate cutoffs:\n{hierarchy}")
    return hierarchy
