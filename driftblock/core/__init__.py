"""
DRIFTBLOCK Core.

Handles:
- Interferometer metadata
- Baseline hierarchy construction
- Memory prediction
- Logging setup
"""

from .metadata import Metadata
from .hierarchy import (
    Hierarchy,
    compute_baseline_hierarchy,
    maximum_multipole_moment,
    two,
)
