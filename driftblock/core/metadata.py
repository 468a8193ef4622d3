"""
Interferometer Metadata.

Describes the instrument a transfer matrix is computed for: the frequency
channels, the baseline vectors, the phase center and the array position.
Metadata is immutable and shared read-only by the matrix, the scheduler and
the numeric kernel.
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import h5py
import numpy as np

from ..io.hdf5 import register_hdf5_kind

logger = logging.getLogger("driftblock")


def _frozen_array(value: Any, shape_check, name: str) -> np.ndarray:
    arr = np.array(value, dtype=np.float64)
    if not shape_check(arr):
        raise ValueError(f"Metadata.{name} has invalid shape {arr.shape}")
    arr.setflags(write=False)
    return arr


@register_hdf5_kind
@dataclass(frozen=True, eq=False)
class Metadata:
    """Interferometer description."""
    frequencies: np.ndarray   # (n_freq,) Hz
    baselines: np.ndarray     # (n_base, 3) metres, ITRF
    phase_center: np.ndarray  # (3,) unit vector, ITRF
    position: np.ndarray      # (3,) metres, ITRF

    def __post_init__(self):
        freqs = _frozen_array(self.frequencies, lambda a: a.ndim == 1 and a.size > 0, "frequencies")
        if np.any(freqs <= 0):
            raise ValueError("Metadata.frequencies must be positive")
        object.__setattr__(self, "frequencies", freqs)
        object.__setattr__(self, "baselines", _frozen_array(
            self.baselines, lambda a: a.ndim == 2 and a.shape[1] == 3, "baselines"))
        object.__setattr__(self, "phase_center", _frozen_array(
            self.phase_center, lambda a: a.shape == (3,), "phase_center"))
        object.__setattr__(self, "position", _frozen_array(
            self.position, lambda a: a.shape == (3,), "position"))

    @property
    def n_freq(self) -> int:
        return len(self.frequencies)

    @property
    def n_base(self) -> int:
        return len(self.baselines)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Metadata):
            return NotImplemented
        return (np.array_equal(self.frequencies, other.frequencies)
                and np.array_equal(self.baselines, other.baselines)
                and np.array_equal(self.phase_center, other.phase_center)
                and np.array_equal(self.position, other.position))

    __hash__ = None

    def __repr__(self) -> str:
        return (f"Metadata(n_freq={self.n_freq}, n_base={self.n_base}, "
                f"freq=[{self.frequencies[0]/1e6:.3f}..{self.frequencies[-1]/1e6:.3f}] MHz)")

    @classmethod
    def coerce(cls, value: Any) -> "Metadata":
        """Accept a Metadata or a mapping of its fields."""
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise TypeError(f"Cannot interpret {type(value).__name__} as Metadata")

    # -----------------------------------------------------------------------
    # HDF5
    # -----------------------------------------------------------------------

    def write_hdf5(self, group: h5py.Group) -> None:
        group.create_dataset("frequencies", data=self.frequencies)
        group.create_dataset("baselines", data=self.baselines)
        group.create_dataset("phase_center", data=self.phase_center)
        group.create_dataset("position", data=self.position)

    @classmethod
    def read_hdf5(cls, group: h5py.Group) -> "Metadata":
        return cls(
            frequencies=group["frequencies"][()],
            baselines=group["baselines"][()],
            phase_center=group["phase_center"][()],
            position=group["position"][()],
        )

    def save(self, path: str) -> None:
        """Write to a standalone metadata file."""
        with h5py.File(path, "w") as f:
            self.write_hdf5(f.require_group("metadata"))

    @classmethod
    def load(cls, path: str) -> "Metadata":
        """Read a standalone metadata file written by `save`."""
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Metadata file not found: {path}")
        with h5py.File(path, "r") as f:
            group = f["metadata"] if "metadata" in f else f
            meta = cls.read_hdf5(group)
        logger.info(f"Loaded {meta!r} from {path}")
        return meta
