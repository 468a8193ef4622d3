"""Pytest configuration and shared fixtures.

This module defines:
- A small interferometer (four baselines spanning 1 cm to 20 m)
- A near-zero-baseline interferometer for end-to-end transfer matrix checks
- A hand-built two-division hierarchy
"""

import numpy as np
import pytest

from driftblock.core.hierarchy import Hierarchy
from driftblock.core.metadata import Metadata

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# ITRF position of a mid-latitude site
POSITION = np.array([-2409150.4, -4478573.1, 3838617.3])
ZENITH = POSITION / np.linalg.norm(POSITION)

FREQUENCIES = np.array([50e6, 60e6, 70e6])

# Required multipoles at 70 MHz: 1, 2, 8, 30
BASELINES = np.array([
    [0.01, 0.0, 0.0],
    [1.0, 0.0, 0.0],
    [0.0, 5.0, 0.0],
    [0.0, 0.0, 20.0],
])


@pytest.fixture
def metadata():
    return Metadata(
        frequencies=FREQUENCIES,
        baselines=BASELINES,
        phase_center=ZENITH,
        position=POSITION,
    )


@pytest.fixture
def tiny_metadata():
    """One near-zero baseline, two frequencies."""
    return Metadata(
        frequencies=np.array([60e6, 70e6]),
        baselines=np.array([[1e-7, 0.0, 0.0]]),
        phase_center=ZENITH,
        position=POSITION,
    )


@pytest.fixture
def hierarchy():
    """Baselines 0 and 2 up to lmax=2, baseline 1 up to lmax=4."""
    return Hierarchy(divisions=(2, 4), baselines=((0, 2), (1,)))


@pytest.fixture
def three_baseline_metadata():
    return Metadata(
        frequencies=np.array([60e6, 70e6]),
        baselines=BASELINES[:3],
        phase_center=ZENITH,
        position=POSITION,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
