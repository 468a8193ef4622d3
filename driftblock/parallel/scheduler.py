"""
DRIFTBLOCK Scheduler - fills a transfer matrix with computed blocks.

Two levels of work stealing:

    compute()
    ├── outer queue: frequencies beta
    │   └── leader thread (one per machine) claims a beta
    │       └── for each hierarchy division, ascending lmax:
    │           ├── beam map, pixel directions, SHT plan
    │           ├── inner queue: baselines of the division
    │           │   └── claiming thread (one per subordinate)
    │           │       ├── kernel in a pool process (or in-thread)
    │           │       ├── fix_scaling
    │           │       └── write_to_blocks
    │           ├── barrier (join)
    │           └── storage.set(block, lmax, m, beta) for every m
    └── progress: advanced once per finished beta

Every beta is owned by exactly one leader, so no two writers ever touch the
same (m, beta) file.

A kernel failure raises KernelError(beta, baseline, lmax). The failing leader
stops, no leader claims a new beta afterwards, and the error propagates out
of compute(). Blocks already written stay on disk.
"""

import time
import queue
import logging
import threading
import multiprocessing as mp
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from ..core.logging_utils import console, format_hierarchy_table
from ..core.memory import compute_safe_leader_count, estimate_frequency_memory_gb
from ..errors import KernelError
from ..kernel.fringes import (
    SHTPlan,
    allocate_blocks,
    create_beam_map,
    fix_scaling,
    fringe_pattern,
    nside_for_lmax,
    unit_vectors,
    write_to_blocks,
)
from ..storage.hierarchical import HierarchicalStorage
from .topology import WorkerTopology

logger = logging.getLogger("driftblock")

BACKENDS = ("process", "thread")

# Leader threads create pools concurrently; workers start from a fresh interpreter.
POOL_CONTEXT = mp.get_context("spawn")


# ---------------------------------------------------------------------------
# Per-division data for pool workers. Installed by the pool initializer in
# each worker process, read by _pool_kernel. Never modified by workers.
# ---------------------------------------------------------------------------
_division_data: Dict[str, Any] = {}


def _init_worker(context: Dict[str, Any]) -> None:
    _division_data.clear()
    _division_data.update(context)


def _run_kernel(context: Dict[str, Any], alpha: int):
    return context["kernel"](
        context["baselines"][alpha],
        context["phase_center"],
        context["beam_map"],
        context["rhat"],
        context["plan"],
        context["frequency"],
    )


def _pool_kernel(alpha: int):
    return _run_kernel(_division_data, alpha)


@contextmanager
def _kernel_runner(backend: str, n_workers: int, context: Dict[str, Any]):
    """Yield run(alpha) -> (real_alm, imag_alm) for one division."""
    if backend == "thread":
        yield lambda alpha: _run_kernel(context, alpha)
        return
    with POOL_CONTEXT.Pool(processes=n_workers, initializer=_init_worker, initargs=(context,)) as pool:
        yield lambda alpha: pool.apply(_pool_kernel, (alpha,))


class DivisionBuffers:
    """Per-m blocks for one (division, beta), released when the scope exits."""

    def __init__(self, n_base: int, lmax: int, mmax: int):
        self.n_base = n_base
        self.lmax = lmax
        self.mmax = mmax
        self.blocks: List[np.ndarray] = []

    def __enter__(self) -> "DivisionBuffers":
        self.blocks = allocate_blocks(self.n_base, self.lmax, self.mmax)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.blocks.clear()
        return False


# ---------------------------------------------------------------------------
# Inner level: one division at one frequency
# ---------------------------------------------------------------------------

def compute_baseline_group_one_frequency(
    transfermatrix,
    subordinates: Sequence[int],
    beam: Callable,
    baselines: Sequence[int],
    lmax: int,
    beta: int,
    backend: str = "process",
    nside: Optional[int] = None,
    kernel: Callable = fringe_pattern,
) -> None:
    """
    Compute and store every block of one hierarchy division at frequency beta.

    Parameters
    ----------
    transfermatrix : TransferMatrix
        Destination, over HierarchicalStorage
    subordinates : sequence of int
        Workers that claim baselines; one claiming thread each
    beam : callable
        beam(azimuth, elevation)
    baselines : sequence of int
        Global baseline indices of the division, in row order
    lmax : int
        Division cutoff (mmax = lmax)
    beta : int
        Frequency index
    """
    metadata = transfermatrix.metadata
    frequency = float(metadata.frequencies[beta])
    ns = nside if nside is not None else nside_for_lmax(lmax)

    rhat = unit_vectors(ns)
    context = {
        "kernel": kernel,
        "baselines": np.ascontiguousarray(metadata.baselines[list(baselines)]),
        "phase_center": np.ascontiguousarray(metadata.phase_center),
        "beam_map": create_beam_map(beam, metadata, ns, rhat),
        "rhat": rhat,
        "plan": SHTPlan(lmax, lmax, ns),
        "frequency": frequency,
    }
    plan = context["plan"]

    pending: "queue.Queue[int]" = queue.Queue()
    for alpha in range(len(baselines)):
        pending.put(alpha)
    failures = []

    with DivisionBuffers(len(baselines), lmax, lmax) as buffers, \
            _kernel_runner(backend, len(subordinates), context) as run:

        def claim():
            while not failures:
                try:
                    alpha = pending.get_nowait()
                except queue.Empty:
                    return
                try:
                    real_alm, imag_alm = run(alpha)
                    fix_scaling(real_alm, imag_alm, frequency)
                    write_to_blocks(buffers.blocks, real_alm, imag_alm, plan, alpha)
                except Exception as exc:
                    failures.append((alpha, exc))
                    return

        threads = [
            threading.Thread(target=claim, name=f"beta{beta:04d}-sub{worker}")
            for worker in subordinates
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if failures:
            alpha, exc = failures[0]
            raise KernelError(
                f"Kernel failed for baseline {baselines[alpha]} at beta={beta}, lmax={lmax}: {exc}",
                beta=beta, baseline=int(baselines[alpha]), lmax=lmax,
            ) from exc

        for m in range(lmax + 1):
            transfermatrix.storage.set(buffers.blocks[m], lmax, m, beta)


# ---------------------------------------------------------------------------
# Middle level: one frequency
# ---------------------------------------------------------------------------

def compute_one_frequency(
    transfermatrix,
    subordinates: Sequence[int],
    beam: Callable,
    beta: int,
    backend: str = "process",
    nside: Optional[int] = None,
    kernel: Callable = fringe_pattern,
) -> None:
    """Every hierarchy division at frequency beta, in ascending cutoff order."""
    hierarchy = transfermatrix.storage.hierarchy
    for lmax, group in zip(hierarchy.divisions, hierarchy.baselines):
        t0 = time.time()
        compute_baseline_group_one_frequency(
            transfermatrix, subordinates, beam, group, lmax, beta,
            backend=backend, nside=nside, kernel=kernel,
        )
        logger.debug(f"beta={beta} lmax={lmax}: {len(group)} baselines in {time.time() - t0:.2f}s")


# ---------------------------------------------------------------------------
# Outer level
# ---------------------------------------------------------------------------

def compute(
    transfermatrix,
    beam: Callable,
    topology: Optional[WorkerTopology] = None,
    backend: str = "process",
    nside: Optional[int] = None,
    progress: bool = False,
    memory_limit_gb: float = 0.0,
    kernel: Callable = fringe_pattern,
):
    """
    Fill every (m, beta) block of a transfer matrix.

    Parameters
    ----------
    transfermatrix : TransferMatrix
        Must use HierarchicalStorage and must not be cached
    beam : callable
        beam(azimuth, elevation), radians
    topology : WorkerTopology, optional
        Default WorkerTopology.local()
    backend : str
        'process' (pool per division) or 'thread' (kernel runs in the claiming thread)
    nside : int, optional
        HEALPix resolution. Default nside_for_lmax(division lmax).
    progress : bool
        Show a progress bar
    memory_limit_gb : float
        RAM budget for concurrent leaders. 0 = 60% of available RAM.
    kernel : callable
        kernel(baseline, phase_center, beam_map, rhat, plan, frequency) -> (real_alm, imag_alm)

    Returns
    -------
    transfermatrix : TransferMatrix

    Raises
    ------
    ValueError
        Wrong storage, cached matrix or unknown backend
    KernelError
        The kernel failed for some baseline
    """
    if not isinstance(transfermatrix.storage, HierarchicalStorage):
        raise ValueError(
            f"compute needs HierarchicalStorage, got {type(transfermatrix.storage).__name__}"
        )
    if transfermatrix.cached:
        raise ValueError("compute needs an uncached matrix; flush it first")
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend '{backend}'. Available: {list(BACKENDS)}")

    if topology is None:
        topology = WorkerTopology.local()
    hierarchy = transfermatrix.storage.hierarchy
    n_freq = transfermatrix.nfreq

    per_leader_gb = estimate_frequency_memory_gb(hierarchy, nside)
    leaders = topology.leaders()
    leaders = leaders[:compute_safe_leader_count(len(leaders), per_leader_gb, memory_limit_gb)]

    logger.info(str(topology))
    logger.info(format_hierarchy_table(hierarchy))
    logger.info(f"Computing {n_freq} frequencies with {len(leaders)} leaders "
                f"(~{per_leader_gb:.2f} GB each, backend={backend})")

    pending: "queue.Queue[int]" = queue.Queue()
    for beta in range(n_freq):
        pending.put(beta)
    abort = threading.Event()
    lock = threading.Lock()

    bar = None
    task = None
    if progress:
        bar = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("({task.completed}/{task.total})"),
            TimeElapsedColumn(),
            console=console,
        )
        task = bar.add_task("  Frequencies:", total=n_freq)
        bar.start()

    def run_leader(leader: int) -> None:
        subordinates = topology.subordinates(leader)
        while not abort.is_set():
            try:
                beta = pending.get_nowait()
            except queue.Empty:
                return
            t0 = time.time()
            try:
                compute_one_frequency(transfermatrix, subordinates, beam, beta,
                                      backend=backend, nside=nside, kernel=kernel)
            except BaseException:
                abort.set()
                raise
            logger.info(f"beta={beta} done on leader {leader} in {time.time() - t0:.1f}s")
            if bar is not None:
                with lock:
                    bar.advance(task)

    t_start = time.time()
    try:
        with ThreadPoolExecutor(max_workers=len(leaders), thread_name_prefix="leader") as pool:
            futures = [pool.submit(run_leader, leader) for leader in leaders]
        for future in futures:
            error = future.exception()
            if error is not None:
                raise error
    finally:
        if bar is not None:
            bar.stop()

    logger.info(f"Transfer matrix complete in {time.time() - t_start:.1f}s")
    return transfermatrix
