"""
DRIFTBLOCK Memory Prediction.

Estimates the peak memory a leader needs to compute one frequency, and caps
the number of leaders so that all of them fit in RAM at once.
"""

import logging
from typing import Optional

import numpy as np
import psutil

from .hierarchy import Hierarchy, two

logger = logging.getLogger("driftblock")

GB = 1024**3


def get_available_ram_gb() -> float:
    """Get available system RAM in GB."""
    return psutil.virtual_memory().available / GB


def estimate_division_memory_gb(n_base: int, lmax: int, nside: int) -> float:
    """Estimate memory for one (division, frequency) in GB.

    Accounts for: per-m blocks, pixel directions, beam map, fringe maps,
    coefficient vectors, temporaries.
    """
    # Blocks: sum over m of two(m) * n_base * (lmax - m + 1) complex128
    rows_cols = sum(two(m) * n_base * (lmax - m + 1) for m in range(lmax + 1))
    block_bytes = rows_cols * 16

    # Maps: rhat (npix, 3) + beam + cos/sin fringe, float64
    npix = 12 * nside * nside
    map_bytes = npix * (3 + 1 + 2) * 8

    # Two alm vectors of size ~ (lmax+1)(lmax+2)/2, complex128
    alm_bytes = 2 * (lmax + 1) * (lmax + 2) // 2 * 16

    # Temporaries: ~1x maps
    temp_bytes = map_bytes

    total = block_bytes + map_bytes + alm_bytes + temp_bytes
    return total / GB


def estimate_frequency_memory_gb(hierarchy: Hierarchy, nside: Optional[int] = None) -> float:
    """Peak memory for one frequency: divisions run one at a time, so take the max."""
    from ..kernel.fringes import nside_for_lmax

    peak = 0.0
    for lmax, group in zip(hierarchy.divisions, hierarchy.baselines):
        ns = nside if nside is not None else nside_for_lmax(lmax)
        peak = max(peak, estimate_division_memory_gb(len(group), lmax, ns))
    return peak


def compute_safe_leader_count(
    n_leaders: int,
    per_leader_gb: float,
    memory_limit_gb: float = 0.0,
    safety_factor: float = 0.6,
) -> int:
    """Compute maximum number of leaders that can be active at once.

    Returns a leader count in [1, n_leaders].
    """
    if memory_limit_gb <= 0:
        available = get_available_ram_gb() * safety_factor
    else:
        available = memory_limit_gb

    if per_leader_gb <= 0:
        return max(1, n_leaders)

    fit = int(np.floor(available / per_leader_gb))
    count = max(1, min(n_leaders, fit))
    if count < n_leaders:
        logger.warning(
            f"Memory allows {count} of {n_leaders} leaders "
            f"({per_leader_gb:.2f} GB each, {available:.1f} GB available)"
        )
    return count
