"""Memory prediction and leader capping."""

import pytest

from driftblock.core.hierarchy import Hierarchy
from driftblock.core.memory import (
    compute_safe_leader_count,
    estimate_division_memory_gb,
    estimate_frequency_memory_gb,
    get_available_ram_gb,
)


def test_available_ram_positive():
    assert get_available_ram_gb() > 0


def test_division_estimate_grows():
    small = estimate_division_memory_gb(10, 100, 64)
    assert estimate_division_memory_gb(20, 100, 64) > small
    assert estimate_division_memory_gb(10, 200, 64) > small
    assert estimate_division_memory_gb(10, 100, 128) > small


def test_frequency_estimate_is_peak_division():
    h = Hierarchy((10, 100), ((0, 1, 2), (3,)))
    peak = estimate_frequency_memory_gb(h, nside=64)
    assert peak == pytest.approx(max(
        estimate_division_memory_gb(3, 10, 64),
        estimate_division_memory_gb(1, 100, 64),
    ))
    # default nside follows each division's lmax
    assert estimate_frequency_memory_gb(h) > 0


@pytest.mark.parametrize("n_leaders, per_leader, limit, expected", [
    (4, 1.0, 2.5, 2),
    (4, 0.1, 10.0, 4),
    (4, 100.0, 1.0, 1),
    (3, 0.0, 1.0, 3),
])
def test_safe_leader_count(n_leaders, per_leader, limit, expected):
    assert compute_safe_leader_count(n_leaders, per_leader, memory_limit_gb=limit) == expected


def test_safe_leader_count_uses_available_ram():
    assert 1 <= compute_safe_leader_count(8, 1e-6) <= 8
