"""Scheduler: preconditions, backends, failure propagation, buffers."""

import os

import numpy as np
import pytest

from driftblock.errors import KernelError
from driftblock.kernel import fringe_pattern, uniform_beam
from driftblock.matrices import TransferMatrix, construct, create_transfer_matrix
from driftblock.parallel import DivisionBuffers, WorkerTopology, compute, scheduler
from driftblock.storage import MultipleFiles

SINGLE = WorkerTopology({"local": [0]})


def _failing_kernel(baseline, *args):
    """Fails for any baseline longer than half a metre."""
    if np.linalg.norm(baseline) > 0.5:
        raise RuntimeError("boom")
    return fringe_pattern(baseline, *args)


@pytest.fixture
def two_baseline_metadata(tiny_metadata):
    from driftblock.core.metadata import Metadata
    return Metadata(
        frequencies=tiny_metadata.frequencies,
        baselines=np.array([[1e-7, 0.0, 0.0], [1.0, 0.0, 0.0]]),
        phase_center=tiny_metadata.phase_center,
        position=tiny_metadata.position,
    )


def test_requires_hierarchical_storage(tmp_path, tiny_metadata):
    tm = construct(TransferMatrix, MultipleFiles(str(tmp_path)), tiny_metadata, 3, 3)
    with pytest.raises(ValueError):
        compute(tm, uniform_beam, topology=SINGLE, backend="thread")


def test_requires_uncached_matrix(tmp_path, tiny_metadata):
    tm = create_transfer_matrix(str(tmp_path), tiny_metadata, lmax=3)
    tm.compute(uniform_beam, topology=SINGLE, backend="thread", nside=4)
    tm.cache()
    with pytest.raises(ValueError):
        tm.compute(uniform_beam, topology=SINGLE, backend="thread", nside=4)


def test_unknown_backend(tmp_path, tiny_metadata):
    tm = create_transfer_matrix(str(tmp_path), tiny_metadata, lmax=3)
    with pytest.raises(ValueError):
        compute(tm, uniform_beam, topology=SINGLE, backend="mpi")


def test_every_block_written(tmp_path, metadata):
    tm = create_transfer_matrix(str(tmp_path), metadata, lmax=12, divisions=[2, 8])
    compute(tm, uniform_beam, topology=WorkerTopology({"a": [0, 1], "b": [2, 3]}),
            backend="thread", nside=8, progress=True)
    for m, beta in tm.indices():
        assert os.path.isfile(tm.storage.block_file(m, beta))
        assert tm[m, beta].shape == tm.hierarchy.block_shape(m)


def test_process_backend_matches_thread_backend(tmp_path, two_baseline_metadata):
    a = create_transfer_matrix(str(tmp_path / "a"), two_baseline_metadata, lmax=3)
    b = create_transfer_matrix(str(tmp_path / "b"), two_baseline_metadata, lmax=3)
    a.compute(uniform_beam, topology=SINGLE, backend="thread", nside=4)
    b.compute(uniform_beam, topology=WorkerTopology({"h": [0, 1, 2]}), backend="process", nside=4)
    for index in a.indices():
        np.testing.assert_allclose(a[index], b[index], rtol=1e-12, atol=1e-9)


def test_kernel_failure_propagates(tmp_path, two_baseline_metadata):
    tm = create_transfer_matrix(str(tmp_path), two_baseline_metadata, lmax=3)
    with pytest.raises(KernelError) as info:
        tm.compute(uniform_beam, topology=SINGLE, backend="thread", nside=4,
                   kernel=_failing_kernel)

    err = info.value
    assert err.baseline == 1
    assert err.lmax == 3
    assert err.beta == 0
    assert isinstance(err.__cause__, RuntimeError)

    # the failing frequency wrote nothing, and no further frequency was claimed
    for m, beta in tm.indices():
        assert not os.path.exists(tm.storage.block_file(m, beta))


def _truncated_kernel(*args):
    real_alm, imag_alm = fringe_pattern(*args)
    return real_alm[:2], imag_alm[:2]


def test_scatter_failure_propagates(tmp_path, two_baseline_metadata):
    tm = create_transfer_matrix(str(tmp_path), two_baseline_metadata, lmax=3)
    with pytest.raises(KernelError) as info:
        tm.compute(uniform_beam, topology=WorkerTopology({"h": [0, 1]}), backend="thread",
                   nside=4, kernel=_truncated_kernel)
    assert info.value.beta == 0
    assert isinstance(info.value.__cause__, IndexError)
    # nothing persisted for the failing division
    for m, beta in tm.indices():
        assert not os.path.exists(tm.storage.block_file(m, beta))


def test_pools_do_not_fork():
    assert scheduler.POOL_CONTEXT.get_start_method() == "spawn"


def test_process_backend_with_concurrent_leaders(tmp_path, two_baseline_metadata):
    a = create_transfer_matrix(str(tmp_path / "a"), two_baseline_metadata, lmax=3)
    b = create_transfer_matrix(str(tmp_path / "b"), two_baseline_metadata, lmax=3)
    a.compute(uniform_beam, topology=SINGLE, backend="thread", nside=4)
    b.compute(uniform_beam, topology=WorkerTopology.local(4, n_machines=2),
              backend="process", nside=4, memory_limit_gb=1e3)
    for index in a.indices():
        np.testing.assert_allclose(a[index], b[index], rtol=1e-12, atol=1e-9)


def test_kernel_failure_keeps_finished_frequencies(tmp_path, two_baseline_metadata):
    calls = []

    def fail_on_second_frequency(baseline, phase_center, beam_map, rhat, plan, frequency):
        calls.append(frequency)
        if frequency > 65e6:
            raise ValueError("bad channel")
        return fringe_pattern(baseline, phase_center, beam_map, rhat, plan, frequency)

    tm = create_transfer_matrix(str(tmp_path), two_baseline_metadata, lmax=3)
    with pytest.raises(KernelError) as info:
        tm.compute(uniform_beam, topology=SINGLE, backend="thread", nside=4,
                   kernel=fail_on_second_frequency)
    assert info.value.beta == 1
    # beta = 0 completed before the failure and stays on disk
    assert os.path.isfile(tm.storage.block_file(0, 0))
    assert tm[0, 0].shape == (2, 4)


def test_division_buffers_release():
    with DivisionBuffers(n_base=3, lmax=4, mmax=4) as buffers:
        assert len(buffers.blocks) == 5
        assert buffers.blocks[0].shape == (3, 5)
        assert buffers.blocks[2].shape == (6, 3)
        assert buffers.blocks[0].dtype == np.complex128
    assert buffers.blocks == []


def test_memory_limit_caps_leaders(tmp_path, tiny_metadata, caplog):
    tm = create_transfer_matrix(str(tmp_path), tiny_metadata, lmax=3)
    topology = WorkerTopology.local(4, n_machines=2)
    with caplog.at_level("WARNING", logger="driftblock"):
        tm.compute(uniform_beam, topology=topology, backend="thread", nside=4,
                   memory_limit_gb=1e-9)
    assert "leaders" in caplog.text
    assert os.path.isfile(tm.storage.block_file(3, 1))
