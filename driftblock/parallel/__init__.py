"""Worker topology and the two-level work-stealing scheduler."""

from .topology import WorkerTopology
from .scheduler import DivisionBuffers, compute, compute_one_frequency
