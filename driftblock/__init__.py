"""
DRIFTBLOCK - Out-of-core block matrices for drift-scan interferometry

Stores enormous block-structured matrices on disk, caches them in memory on
demand, and fills the transfer matrix of an interferometer with a two-level
work-stealing scheduler.

Usage:
    from driftblock import Metadata, create_transfer_matrix, WorkerTopology
    from driftblock.kernel import uniform_beam

    metadata = Metadata.load("metadata.h5")
    tm = create_transfer_matrix("transfer/", metadata, lmax=300)
    tm.compute(uniform_beam, topology=WorkerTopology.local(8))

    tm = load("transfer/")
    block = tm[5, 0]          # m = 5, beta = 0

Generic block matrices:
    from driftblock import MFBlockMatrix, MultipleFiles, NoFile, create, similar

    mf = create(MFBlockMatrix, MultipleFiles("covariance/"), 100, frequencies)
    mf.cache()                # read every block into memory
    mf[3, 1] = block
    mf.flush()                # write back and leave cached mode
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    DriftBlockError,
    ConstructionError,
    BlockIndexError,
    ReconstructionError,
    NoBackingStorageError,
    CacheStateError,
    UnwrittenBlockError,
    KernelError,
)

# Core
from .core import Metadata, Hierarchy, compute_baseline_hierarchy, maximum_multipole_moment

# Storage
from .storage import (
    Cache,
    CacheState,
    NoFile,
    SingleFile,
    MultipleFiles,
    HierarchicalStorage,
)

# Matrices
from .matrices import (
    BlockMatrix,
    BlockDiagonalMatrix,
    MFBlockMatrix,
    TransferMatrix,
    construct,
    create,
    load,
    similar,
    map_blocks,
    blocks_equal,
    create_transfer_matrix,
)

# Scheduler
from .parallel import WorkerTopology, compute

__all__ = [
    # Version
    '__version__',
    # Errors
    'DriftBlockError',
    'ConstructionError',
    'BlockIndexError',
    'ReconstructionError',
    'NoBackingStorageError',
    'CacheStateError',
    'UnwrittenBlockError',
    'KernelError',
    # Core
    'Metadata',
    'Hierarchy',
    'compute_baseline_hierarchy',
    'maximum_multipole_moment',
    # Storage
    'Cache',
    'CacheState',
    'NoFile',
    'SingleFile',
    'MultipleFiles',
    'HierarchicalStorage',
    # Matrices
    'BlockMatrix',
    'BlockDiagonalMatrix',
    'MFBlockMatrix',
    'TransferMatrix',
    'construct',
    'create',
    'load',
    'similar',
    'map_blocks',
    'blocks_equal',
    'create_transfer_matrix',
    # Scheduler
    'WorkerTopology',
    'compute',
]
