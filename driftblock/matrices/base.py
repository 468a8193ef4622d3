"""
Block Matrices - base class for all block-structured matrices.

A block matrix is a collection of dense complex blocks addressed by one
integer (arity 1) or two integers (arity 2). It owns:

    BlockMatrix
    ├── storage     mechanism that reads/writes blocks (disk or nothing)
    ├── cache       in-memory overlay, UNUSED or USED
    └── fields      immutable metadata declared per class as (name, coercer)

Every get/set reads the cache state once and routes the whole call either to
the cache or to the storage mechanism.

Each subclass defines:
- fields: ((name, coercer), ...)
- dims(): extent of each index axis

Lifecycle:
    construct() -> in-memory object only
    create()    -> construct + optional purge + persist the matrix record
    load()      -> rebuild from a matrix record
    similar()   -> create the same type and fields over another storage
"""

import logging
import itertools
from abc import ABC, abstractmethod
from numbers import Integral
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple, Type, Union

import numpy as np

from ..errors import (
    BlockIndexError,
    ConstructionError,
    NoBackingStorageError,
    ReconstructionError,
)
from ..io.hdf5 import read_metadata_record
from ..storage.cache import Cache, CacheState
from ..storage.mechanisms import Mechanism, NoFile, mechanism_from_descriptor
from .registry import get_matrix_type, resolve_matrix_type

logger = logging.getLogger("driftblock")


# ---------------------------------------------------------------------------
# Field coercers
# ---------------------------------------------------------------------------

def as_nonnegative_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("bool is not a valid integer field")
    if isinstance(value, Integral):
        out = int(value)
    elif isinstance(value, (float, np.floating)) and float(value).is_integer():
        out = int(value)
    else:
        raise TypeError(f"{value!r} is not an integer")
    if out < 0:
        raise ValueError(f"{out} is negative")
    return out


def as_float_array(value: Any) -> np.ndarray:
    arr = np.array(value, dtype=np.float64)
    if arr.ndim != 1 or arr.size == 0:
        raise ValueError(f"expected a non-empty 1-D array, got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


def as_block(block: Any) -> np.ndarray:
    """Coerce to a 2-D complex128 block."""
    arr = np.asarray(block, dtype=np.complex128)
    if arr.ndim != 2:
        raise ValueError(f"Blocks must be 2-D, got shape {arr.shape}")
    return arr


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------

class BlockMatrix(ABC):
    """
    Base class for all block matrices.

    Subclasses must define:
    - arity
    - fields
    - dims()
    """

    # Override in subclass
    arity: int = 1
    fields: Tuple[Tuple[str, Callable[[Any], Any]], ...] = ()

    def __init__(self, storage: Mechanism, *values: Any):
        if not isinstance(storage, Mechanism):
            raise ConstructionError(
                f"storage must be a storage mechanism, got {type(storage).__name__}"
            )
        if len(values) != len(self.fields):
            raise ConstructionError(
                f"{type(self).__name__} takes fields {[n for n, _ in self.fields]}, "
                f"got {len(values)} values"
            )
        coerced = []
        for (name, coercer), value in zip(self.fields, values):
            try:
                coerced.append(coercer(value))
            except (TypeError, ValueError) as exc:
                raise ConstructionError(
                    f"{type(self).__name__}.{name}: cannot coerce {type(value).__name__}: {exc}"
                ) from exc
        self.field_values: Tuple[Any, ...] = tuple(coerced)
        for (name, _), value in zip(self.fields, coerced):
            setattr(self, name, value)

        self.storage = storage
        self._cache = Cache(self.nblocks, used=isinstance(storage, NoFile))

    @abstractmethod
    def dims(self) -> Tuple[int, ...]:
        """Extent of each index axis."""

    # -----------------------------------------------------------------------
    # Index domain
    # -----------------------------------------------------------------------

    @property
    def nblocks(self) -> int:
        return int(np.prod(self.dims(), dtype=np.int64))

    def indices(self) -> Iterator[Tuple[int, ...]]:
        """Every valid index, in linear order."""
        return itertools.product(*(range(n) for n in self.dims()))

    def check_index(self, *index: int) -> None:
        dims = self.dims()
        if len(index) != len(dims):
            raise BlockIndexError(
                f"{type(self).__name__} takes {len(dims)} indices, got {len(index)}"
            )
        for i, n in zip(index, dims):
            if not isinstance(i, Integral) or isinstance(i, bool) or not 0 <= i < n:
                raise BlockIndexError(f"Index {index} out of range for dims {dims}")

    def linear_index(self, *index: int) -> int:
        self.check_index(*index)
        return int(np.ravel_multi_index(index, self.dims()))

    # -----------------------------------------------------------------------
    # Block access
    # -----------------------------------------------------------------------

    def get(self, *index: int) -> np.ndarray:
        self.check_index(*index)
        if self._cache.used:
            return self._cache[self.linear_index(*index)]
        return self.storage.get(*index)

    def set(self, block: Any, *index: int) -> np.ndarray:
        self.check_index(*index)
        block = as_block(block)
        if self._cache.used:
            self._cache[self.linear_index(*index)] = block
            return block
        return self.storage.set(block, *index)

    @staticmethod
    def _as_index(index: Union[int, Tuple[int, ...]]) -> Tuple[int, ...]:
        return index if isinstance(index, tuple) else (index,)

    def __getitem__(self, index) -> np.ndarray:
        return self.get(*self._as_index(index))

    def __setitem__(self, index, block) -> None:
        self.set(block, *self._as_index(index))

    # -----------------------------------------------------------------------
    # Cache control
    # -----------------------------------------------------------------------

    @property
    def cached(self) -> bool:
        return self._cache.used

    def cache(self) -> "BlockMatrix":
        """Read every block into memory, then serve all access from memory."""
        if self._cache.used:
            return self
        for index in self.indices():
            self._cache[self.linear_index(*index)] = as_block(self.storage.get(*index))
        self._cache.transition(CacheState.USED)
        logger.debug(f"cached {self.nblocks} blocks of {self!r}")
        return self

    def flush(self) -> "BlockMatrix":
        """Leave cached mode and write every cached block through storage."""
        if isinstance(self.storage, NoFile):
            raise NoBackingStorageError(f"{self!r} has no backing storage to flush to")
        if not self._cache.used:
            return self
        self._cache.transition(CacheState.UNUSED)
        try:
            for index in self.indices():
                block = self._cache.blocks[self.linear_index(*index)]
                if block is not None:
                    self.set(block, *index)
        except Exception:
            # cached blocks stay authoritative so flush() can be retried
            self._cache.transition(CacheState.USED)
            raise
        self._cache.blocks[:] = [None] * self.nblocks
        logger.debug(f"flushed {self.nblocks} blocks of {self!r}")
        return self

    @property
    def distribute_read(self) -> bool:
        return self.storage.distribute_read and not self._cache.used

    @property
    def distribute_write(self) -> bool:
        return self.storage.distribute_write and not self._cache.used

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    @classmethod
    def construct(cls, storage: Mechanism, *values: Any) -> "BlockMatrix":
        return construct(cls, storage, *values)

    @classmethod
    def create(cls, storage: Mechanism, *values: Any, purge: bool = False) -> "BlockMatrix":
        return create(cls, storage, *values, purge=purge)

    @classmethod
    def load(cls, path: str) -> "BlockMatrix":
        matrix = load(path)
        if not isinstance(matrix, cls):
            raise ReconstructionError(
                f"{path} holds a {type(matrix).__name__}, not a {cls.__name__}"
            )
        return matrix

    def named_fields(self) -> List[Tuple[str, Any]]:
        return [(name, value) for (name, _), value in zip(self.fields, self.field_values)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dims={self.dims()}, storage={self.storage!r})"


# ---------------------------------------------------------------------------
# Module-level operations
# ---------------------------------------------------------------------------

def construct(kind: Union[str, Type[BlockMatrix]], storage: Mechanism, *values: Any) -> BlockMatrix:
    """
    Build an in-memory matrix object. Nothing is written.

    Parameters
    ----------
    kind : str or type
        Registered type tag or matrix class
    storage : Mechanism
        Where blocks live. NoFile matrices start (and stay) cached.
    *values
        Field values in declaration order, coerced by each field's coercer

    Raises
    ------
    ConstructionError
        Unknown type or a field that cannot be coerced
    """
    cls = resolve_matrix_type(kind)
    return cls(storage, *values)


def create(
    kind: Union[str, Type[BlockMatrix]],
    storage: Mechanism,
    *values: Any,
    purge: bool = False,
) -> BlockMatrix:
    """construct, optionally purge stale blocks, then persist the matrix record."""
    matrix = construct(kind, storage, *values)
    if purge:
        storage.purge(matrix)
    storage.write_metadata(type(matrix).__name__, matrix.named_fields())
    logger.debug(f"created {matrix!r}")
    return matrix


def load(path: str) -> BlockMatrix:
    """Rebuild a matrix from the record at `path`."""
    try:
        tag, values, descriptor = read_metadata_record(path)
    except (OSError, KeyError, ValueError) as exc:
        raise ReconstructionError(f"Cannot read matrix record at {path}: {exc}") from exc
    try:
        storage = mechanism_from_descriptor(descriptor, path)
    except (KeyError, TypeError) as exc:
        raise ReconstructionError(f"Invalid storage descriptor at {path}: {exc}") from exc
    cls = get_matrix_type(tag)
    matrix = construct(cls, storage, *values)
    logger.info(f"Loaded {matrix!r}")
    return matrix


def similar(matrix: BlockMatrix, storage: Optional[Mechanism] = None) -> BlockMatrix:
    """Create a matrix of the same type and fields over `storage` (default NoFile)."""
    if storage is None:
        storage = NoFile()
    return create(type(matrix), storage, *matrix.field_values)


def _check_same_domain(matrices: Sequence[BlockMatrix]) -> None:
    dims = matrices[0].dims()
    for other in matrices[1:]:
        if other.dims() != dims:
            raise ValueError(f"Index domains differ: {dims} vs {other.dims()}")


def map_blocks(
    func: Callable[..., np.ndarray],
    *matrices: BlockMatrix,
    out: Optional[BlockMatrix] = None,
) -> BlockMatrix:
    """
    Apply `func` blockwise: out[i] = func(m1[i], m2[i], ...).

    Parameters
    ----------
    func : callable
        Takes one block per input matrix, returns the output block
    *matrices : BlockMatrix
        Inputs with identical index domains
    out : BlockMatrix, optional
        Destination. Default similar(matrices[0]) in memory.
    """
    if not matrices:
        raise ValueError("map_blocks needs at least one matrix")
    _check_same_domain(matrices)
    if out is None:
        out = similar(matrices[0])
    else:
        _check_same_domain([matrices[0], out])
    for index in matrices[0].indices():
        out.set(func(*(m.get(*index) for m in matrices)), *index)
    return out


def blocks_equal(a: BlockMatrix, b: BlockMatrix) -> bool:
    """True if both matrices have the same domain and identical blocks."""
    if a.dims() != b.dims():
        return False
    return all(np.array_equal(a.get(*index), b.get(*index)) for index in a.indices())
