"""
DRIFTBLOCK error taxonomy.

Every error raised by the library derives from DriftBlockError so callers can
catch the whole family. Concrete classes also derive from the builtin that
best matches them (TypeError for coercion failures, IndexError for bounds).
"""

from typing import Optional


class DriftBlockError(Exception):
    """Base class for all driftblock errors."""


class ConstructionError(DriftBlockError, TypeError):
    """A metadata field could not be coerced to its declared type."""


class BlockIndexError(DriftBlockError, IndexError):
    """A logical block index is outside the matrix domain."""


class UnwrittenBlockError(DriftBlockError, LookupError):
    """An in-memory block was read before anything was written to it."""


class ReconstructionError(DriftBlockError):
    """A persisted matrix record cannot be turned back into a matrix."""


class NoBackingStorageError(DriftBlockError):
    """A NoFile mechanism was asked to read or write a block."""


class CacheStateError(DriftBlockError):
    """An illegal cache state transition was requested."""


class KernelError(DriftBlockError):
    """
    The numeric kernel failed for one baseline.

    Parameters
    ----------
    message : str
        Description of the failure
    beta : int
        Frequency index being processed
    baseline : int
        Global baseline index that failed
    lmax : int, optional
        Cutoff of the hierarchy division being processed
    """

    def __init__(self, message: str, beta: int, baseline: int, lmax: Optional[int] = None):
        super().__init__(message)
        self.beta = beta
        self.baseline = baseline
        self.lmax = lmax
