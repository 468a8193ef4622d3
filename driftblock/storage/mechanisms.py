"""
Storage Mechanisms - how a block matrix reads and writes its blocks.

Each mechanism implements:
- get(*index): read one block
- set(block, *index): write one block
- purge(matrix): remove stale blocks for a matrix domain
- describe() / from_descriptor(): persistence of the mechanism itself

Capability flags say whether independent workers may read or write
disjoint blocks concurrently, with no coordination beyond the filesystem.

Mechanisms:
- NoFile:         no backing store; the matrix lives in its cache
- SingleFile:     every block in one HDF5 container
- MultipleFiles:  one HDF5 container per block
"""

import os
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple, Type

import numpy as np

from ..errors import NoBackingStorageError, ReconstructionError
from ..io.hdf5 import (
    RECORD_FILENAME,
    block_key,
    delete_dataset,
    read_dataset,
    read_metadata_record,
    write_dataset,
    write_metadata_record,
)

logger = logging.getLogger("driftblock")

MECHANISM_REGISTRY: Dict[str, Type["Mechanism"]] = {}


def register_mechanism(cls):
    MECHANISM_REGISTRY[cls.__name__] = cls
    return cls


def mechanism_from_descriptor(descriptor: Dict[str, Any], path: str) -> "Mechanism":
    """Rebuild a mechanism rooted at `path` from its persisted descriptor."""
    name = descriptor.get("type")
    if name not in MECHANISM_REGISTRY:
        raise ReconstructionError(
            f"Unknown storage mechanism '{name}'. "
            f"Available: {list(MECHANISM_REGISTRY.keys())}"
        )
    return MECHANISM_REGISTRY[name].from_descriptor(path, descriptor)


class Mechanism(ABC):
    """Base class for all storage mechanisms."""

    # Override in subclass
    distribute_read: bool = False
    distribute_write: bool = False

    def __init__(self, path: str):
        self.path = str(path)

    @abstractmethod
    def get(self, *index: int) -> np.ndarray:
        pass

    @abstractmethod
    def set(self, block: np.ndarray, *index: int) -> np.ndarray:
        pass

    def purge(self, matrix) -> None:
        """Remove blocks left over from an earlier matrix at the same path."""

    def describe(self) -> Dict[str, Any]:
        return {"type": type(self).__name__}

    @classmethod
    def from_descriptor(cls, path: str, descriptor: Dict[str, Any]) -> "Mechanism":
        return cls(path)

    def write_metadata(self, type_tag: str, fields: List[Tuple[str, Any]]) -> None:
        write_metadata_record(self.path, type_tag, fields, self.describe())

    def read_metadata(self) -> Tuple[str, Tuple[Any, ...], Dict[str, Any]]:
        return read_metadata_record(self.path)

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.path}')"


@register_mechanism
class NoFile(Mechanism):
    """
    No backing store.

    A matrix over NoFile keeps its cache USED for its whole life, so indexed
    access never reaches this mechanism. Reaching it is a bug in the caller.
    """

    def __init__(self, path: str = ""):
        super().__init__(path)

    def get(self, *index: int) -> np.ndarray:
        raise NoBackingStorageError(f"NoFile has no block {index}; the matrix cache must be in use")

    def set(self, block: np.ndarray, *index: int) -> np.ndarray:
        raise NoBackingStorageError(f"NoFile cannot store block {index}; the matrix cache must be in use")

    def write_metadata(self, type_tag: str, fields: List[Tuple[str, Any]]) -> None:
        pass

    def __repr__(self) -> str:
        return "NoFile()"


@register_mechanism
class MultipleFiles(Mechanism):
    """One HDF5 container per block: {path}/0003.h5 or {path}/0003-0012.h5."""

    distribute_read = True
    distribute_write = True

    def _block_file(self, *index: int) -> str:
        return os.path.join(self.path, f"{block_key(*index)}.h5")

    def get(self, *index: int) -> np.ndarray:
        return read_dataset(self._block_file(*index), "block")

    def set(self, block: np.ndarray, *index: int) -> np.ndarray:
        os.makedirs(self.path, exist_ok=True)
        write_dataset(self._block_file(*index), "block", block)
        return block

    def purge(self, matrix) -> None:
        removed = 0
        for index in matrix.indices():
            path = self._block_file(*index)
            if os.path.isfile(path):
                os.remove(path)
                removed += 1
        logger.debug(f"purged {removed} blocks from {self.path}")


@register_mechanism
class SingleFile(Mechanism):
    """Every block in {path}/blocks.h5, one dataset per block."""

    distribute_read = True
    distribute_write = False

    @property
    def container(self) -> str:
        return os.path.join(self.path, "blocks.h5")

    def get(self, *index: int) -> np.ndarray:
        return read_dataset(self.container, block_key(*index))

    def set(self, block: np.ndarray, *index: int) -> np.ndarray:
        os.makedirs(self.path, exist_ok=True)
        write_dataset(self.container, block_key(*index), block)
        return block

    def purge(self, matrix) -> None:
        for index in matrix.indices():
            delete_dataset(self.container, block_key(*index))


def is_matrix_root(path: str) -> bool:
    return os.path.isfile(os.path.join(path, RECORD_FILENAME))
