"""Generic storage mechanisms and the matrix record."""

import os

import numpy as np
import pytest

from driftblock.core.hierarchy import Hierarchy
from driftblock.errors import NoBackingStorageError, ReconstructionError
from driftblock.io.hdf5 import RECORD_FILENAME, read_metadata_record, write_metadata_record
from driftblock.matrices import BlockDiagonalMatrix, MFBlockMatrix, construct
from driftblock.storage import (
    HierarchicalStorage,
    MultipleFiles,
    NoFile,
    SingleFile,
    mechanism_from_descriptor,
)


def test_nofile_refuses_access():
    storage = NoFile()
    with pytest.raises(NoBackingStorageError):
        storage.get(0)
    with pytest.raises(NoBackingStorageError):
        storage.set(np.zeros((1, 1)), 0)
    assert not storage.distribute_read
    assert not storage.distribute_write


def test_capability_flags():
    assert MultipleFiles.distribute_read and MultipleFiles.distribute_write
    assert SingleFile.distribute_read and not SingleFile.distribute_write
    assert HierarchicalStorage.distribute_read and not HierarchicalStorage.distribute_write


def test_multiple_files_layout(tmp_path, rng):
    storage = MultipleFiles(str(tmp_path / "mf"))
    block = rng.standard_normal((2, 3)) + 1j * rng.standard_normal((2, 3))
    storage.set(block, 3, 1)
    assert os.path.isfile(tmp_path / "mf" / "0003-0001.h5")
    np.testing.assert_array_equal(storage.get(3, 1), block)

    storage.set(block[:1], 7)
    assert os.path.isfile(tmp_path / "mf" / "0007.h5")


def test_multiple_files_overwrite(tmp_path):
    storage = MultipleFiles(str(tmp_path))
    storage.set(np.zeros((2, 2), dtype=np.complex128), 0)
    storage.set(np.ones((3, 1), dtype=np.complex128), 0)
    assert storage.get(0).shape == (3, 1)


def test_multiple_files_purge(tmp_path):
    storage = MultipleFiles(str(tmp_path))
    matrix = construct(BlockDiagonalMatrix, storage, 1)
    for (m,) in matrix.indices():
        storage.set(np.ones((1, 1), dtype=np.complex128), m)
    storage.set(np.ones((1, 1), dtype=np.complex128), 9)

    storage.purge(matrix)
    assert not os.path.exists(tmp_path / "0000.h5")
    assert not os.path.exists(tmp_path / "0001.h5")
    # outside the matrix domain: untouched
    assert os.path.exists(tmp_path / "0009.h5")


def test_single_file(tmp_path, rng):
    storage = SingleFile(str(tmp_path))
    a = rng.standard_normal((2, 2)) + 0j
    b = rng.standard_normal((4, 1)) + 0j
    storage.set(a, 0, 0)
    storage.set(b, 1, 2)
    assert os.listdir(tmp_path) == ["blocks.h5"]
    np.testing.assert_array_equal(storage.get(0, 0), a)
    np.testing.assert_array_equal(storage.get(1, 2), b)

    matrix = construct(MFBlockMatrix, storage, 1, [1e8, 2e8, 3e8])
    storage.purge(matrix)
    with pytest.raises(KeyError):
        storage.get(0, 0)


def test_missing_block_raises(tmp_path):
    storage = SingleFile(str(tmp_path))
    storage.set(np.zeros((1, 1)), 0)
    with pytest.raises(KeyError):
        storage.get(1)


def test_descriptor_round_trip(tmp_path, hierarchy):
    storage = HierarchicalStorage(str(tmp_path), hierarchy)
    storage.write_metadata("Anything", [("x", 1)])
    _, _, descriptor = read_metadata_record(str(tmp_path))
    rebuilt = mechanism_from_descriptor(descriptor, str(tmp_path))
    assert isinstance(rebuilt, HierarchicalStorage)
    assert rebuilt.hierarchy == hierarchy


def test_unknown_mechanism(tmp_path):
    with pytest.raises(ReconstructionError):
        mechanism_from_descriptor({"type": "Tape"}, str(tmp_path))


def test_nofile_writes_no_record(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    NoFile().write_metadata("BlockDiagonalMatrix", [("mmax", 1)])
    assert not os.path.exists(RECORD_FILENAME)


def test_record_field_kinds(tmp_path, metadata):
    hierarchy = Hierarchy((3,), ((0, 1, 2, 3),))
    fields = [
        ("count", 5),
        ("scale", 2.5),
        ("name", "abc"),
        ("flag", True),
        ("cutoffs", [100, 200]),
        ("freqs", np.array([1.0, 2.0])),
        ("metadata", metadata),
        ("hierarchy", hierarchy),
    ]
    write_metadata_record(str(tmp_path), "Thing", fields, {"type": "MultipleFiles"})
    tag, values, storage = read_metadata_record(str(tmp_path))

    assert tag == "Thing"
    assert storage == {"type": "MultipleFiles"}
    assert values[0] == 5 and isinstance(values[0], int)
    assert values[1] == 2.5
    assert values[2] == "abc"
    assert values[3] is True
    assert values[4] == [100, 200]
    np.testing.assert_array_equal(values[5], [1.0, 2.0])
    assert values[6] == metadata
    assert values[7] == hierarchy


def test_missing_record(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_metadata_record(str(tmp_path))
