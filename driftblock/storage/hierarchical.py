"""
Hierarchical storage for transfer matrix blocks.

Blocks are indexed by (m, beta). Each block is split by baseline hierarchy
division, and each division's sub-block is stored under its own lmax cutoff:

    <path>/
    ├── METADATA.h5
    ├── 0000/            beta = 0
    │   ├── 0000.h5      m = 0: datasets "0100", "0200", "0400"
    │   ├── 0001.h5      m = 1
    │   └── ...
    └── 0001/ ...

A division with cutoff lmax only holds orders m <= lmax, so the block for a
high m is stitched from fewer divisions than the block for m = 0.
"""

import os
import logging
from typing import Any, Dict, List

import numpy as np

from ..core.hierarchy import Hierarchy, two
from ..errors import BlockIndexError
from ..io.hdf5 import block_key, read_datasets, write_dataset
from .mechanisms import Mechanism, register_mechanism

logger = logging.getLogger("driftblock")


def stitch(parts: List[np.ndarray]) -> np.ndarray:
    """Stack sub-blocks along rows, zero-padding narrower ones on the right."""
    rows = sum(p.shape[0] for p in parts)
    cols = max(p.shape[1] for p in parts)
    out = np.zeros((rows, cols), dtype=np.complex128)
    r = 0
    for p in parts:
        out[r:r + p.shape[0], :p.shape[1]] = p
        r += p.shape[0]
    return out


@register_mechanism
class HierarchicalStorage(Mechanism):
    """
    Per-(m, beta) files holding one dataset per hierarchy division.

    Parameters
    ----------
    path : str
        Matrix root directory
    hierarchy : Hierarchy
        Baseline divisions used to split and stitch blocks
    """

    distribute_read = True
    distribute_write = False

    def __init__(self, path: str, hierarchy: Hierarchy):
        super().__init__(path)
        if not isinstance(hierarchy, Hierarchy):
            raise TypeError(f"hierarchy must be a Hierarchy, got {type(hierarchy).__name__}")
        self.hierarchy = hierarchy

    def block_file(self, m: int, beta: int) -> str:
        return os.path.join(self.path, block_key(beta), f"{block_key(m)}.h5")

    def _parts(self, m: int):
        parts = list(self.hierarchy.divisions_for(m))
        if not parts:
            raise BlockIndexError(
                f"m={m} is above every division cutoff (lmax={self.hierarchy.lmax})"
            )
        return parts

    def get(self, m: int, beta: int) -> np.ndarray:
        parts = self._parts(m)
        subs = read_datasets(self.block_file(m, beta), [block_key(lmax) for _, lmax in parts])
        return stitch(subs)

    def set(self, block: np.ndarray, *index: int) -> np.ndarray:
        """
        set(block, lmax, m, beta) writes one division's sub-block.
        set(block, m, beta) splits a full stitched block and writes every division.
        """
        if len(index) == 3:
            lmax, m, beta = index
            self._write(block, lmax, m, beta)
        elif len(index) == 2:
            m, beta = index
            self._split(block, m, beta)
        else:
            raise TypeError(
                f"HierarchicalStorage.set takes (lmax, m, beta) or (m, beta), got {index}"
            )
        return block

    def _write(self, block: np.ndarray, lmax: int, m: int, beta: int) -> None:
        if lmax not in self.hierarchy.divisions:
            raise BlockIndexError(f"lmax={lmax} is not a division cutoff {self.hierarchy.divisions}")
        if m > lmax:
            raise BlockIndexError(f"m={m} is above division cutoff {lmax}")
        os.makedirs(os.path.dirname(self.block_file(m, beta)), exist_ok=True)
        write_dataset(self.block_file(m, beta), block_key(lmax), block)

    def _split(self, block: np.ndarray, m: int, beta: int) -> None:
        parts = self._parts(m)
        expected = self.hierarchy.block_shape(m)
        if block.shape != expected:
            raise ValueError(
                f"Block for m={m} has shape {block.shape}, expected {expected}"
            )
        r = 0
        for idx, lmax in parts:
            nrows = two(m) * len(self.hierarchy.baselines[idx])
            ncols = lmax - m + 1
            self._write(block[r:r + nrows, :ncols], lmax, m, beta)
            r += nrows

    def purge(self, matrix) -> None:
        removed = 0
        for m, beta in matrix.indices():
            path = self.block_file(m, beta)
            if os.path.isfile(path):
                os.remove(path)
                removed += 1
        for beta in range(matrix.nfreq):
            folder = os.path.join(self.path, block_key(beta))
            if os.path.isdir(folder) and not os.listdir(folder):
                os.rmdir(folder)
        logger.debug(f"purged {removed} block files from {self.path}")

    def describe(self) -> Dict[str, Any]:
        return {"type": type(self).__name__, "hierarchy": self.hierarchy}

    @classmethod
    def from_descriptor(cls, path: str, descriptor: Dict[str, Any]) -> "HierarchicalStorage":
        return cls(path, descriptor["hierarchy"])

    def __repr__(self) -> str:
        return f"HierarchicalStorage('{self.path}', divisions={self.hierarchy.divisions})"
