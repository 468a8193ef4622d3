"""DRIFTBLOCK Pipeline.

Orchestrates: config -> metadata -> hierarchy -> transfer matrix -> compute.

The matrix record is written before any block is computed, so an interrupted
run leaves a loadable matrix whose missing blocks can be recomputed.
"""

import logging
import time as _time
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from .config import DriftBlockConfig, config_to_yaml, load_config
from .core.logging_utils import setup_logging
from .core.metadata import Metadata
from .kernel.beams import get_beam
from .matrices.transfer import TransferMatrix, create_transfer_matrix
from .parallel.topology import WorkerTopology

logger = logging.getLogger("driftblock")

_console = Console()


def _log(msg: str, style: str = ""):
    logger.info(msg)
    if style:
        _console.print(msg, style=style)


# ============================================================
# PUBLIC ENTRY POINT
# ============================================================

def run_pipeline(config_path: str, use_rich: bool = True) -> TransferMatrix:
    """Run the full pipeline from a YAML config file."""
    config = load_config(config_path)
    setup_logging(config.log_dir, use_rich=use_rich)
    return run_config(config)


def run_config(config: DriftBlockConfig) -> TransferMatrix:
    """Create and compute the transfer matrix described by a parsed config."""
    from . import __version__

    _console.print(Panel(f"DRIFTBLOCK {__version__}\n{config.matrix.path}", expand=False))

    provenance = Path(config.log_dir) / "driftblock_config.yaml"
    provenance.parent.mkdir(parents=True, exist_ok=True)
    provenance.write_text(config_to_yaml(config))
    logger.info(f"Config written to {provenance}")

    t0 = _time.time()
    m, c = config.matrix, config.compute
    metadata = Metadata.load(m.metadata)
    transfermatrix = create_transfer_matrix(
        m.path, metadata,
        lmax=m.lmax, divisions=m.divisions, base_cutoff=m.base_cutoff, purge=m.purge,
    )

    topology = WorkerTopology.local(c.workers, c.machines)
    transfermatrix.compute(
        get_beam(c.beam),
        topology=topology,
        backend=c.backend,
        nside=c.nside,
        progress=c.progress,
        memory_limit_gb=c.memory_limit_gb,
    )

    _log(f"Done in {_time.time() - t0:.1f}s: {transfermatrix!r}", style="bold green")
    return transfermatrix
