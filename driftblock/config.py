"""
DRIFTBLOCK Configuration.

Parses YAML config with matrix: and compute: blocks.
Crashes early with clear error messages on bad input.

Config format:
    matrix:
      path: transfer/
      metadata: metadata.h5
      lmax: 300
      divisions: [100, 200]
      base_cutoff: 100
      purge: false

    compute:
      beam: uniform
      workers: 4
      machines: 1
      backend: process
      nside: null
      progress: true
      memory_limit_gb: 0

    log_dir: "."
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
import logging

logger = logging.getLogger("driftblock")


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class MatrixBlock:
    """The matrix: entry."""
    path: str
    metadata: str
    lmax: Optional[int] = None
    divisions: Optional[List[int]] = None
    base_cutoff: int = 100
    purge: bool = False


@dataclass
class ComputeBlock:
    """The compute: entry."""
    beam: str = "uniform"
    workers: Optional[int] = None
    machines: int = 1
    backend: str = "process"
    nside: Optional[int] = None
    progress: bool = True
    memory_limit_gb: float = 0.0


@dataclass
class DriftBlockConfig:
    """Full parsed config."""
    matrix: MatrixBlock
    compute: ComputeBlock = field(default_factory=ComputeBlock)
    log_dir: str = "."


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def load_config(path: str) -> DriftBlockConfig:
    """Load and validate YAML config. Crashes on bad input."""
    path = Path(path)
    if not path.exists():
        _die(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        _die("Config must be a YAML mapping")

    if "matrix" not in raw or not isinstance(raw["matrix"], dict):
        _die("Config must have a 'matrix:' block")

    compute = raw.get("compute") or {}
    if not isinstance(compute, dict):
        _die("'compute:' must be a mapping")

    return DriftBlockConfig(
        matrix=_parse_matrix_block(raw["matrix"], path.parent),
        compute=_parse_compute_block(compute),
        log_dir=str(raw.get("log_dir", ".")),
    )


def _parse_matrix_block(entry: dict, base: Path) -> MatrixBlock:
    """Parse the matrix: entry. Relative paths resolve against the config file."""
    for r in ["path", "metadata"]:
        if r not in entry or entry[r] is None:
            _die(f"matrix: missing required field '{r}'")

    metadata = _resolve(entry["metadata"], base)
    if not Path(metadata).is_file():
        _die(f"matrix: metadata file not found: {metadata}")

    lmax = entry.get("lmax")
    if lmax is not None:
        lmax = _positive_int(lmax, "matrix.lmax")

    divisions = entry.get("divisions")
    if divisions is not None:
        divisions = [_positive_int(d, "matrix.divisions") for d in _ensure_list(divisions)]
        if any(b <= a for a, b in zip(divisions, divisions[1:])):
            _die(f"matrix.divisions must be strictly increasing, got {divisions}")

    return MatrixBlock(
        path=_resolve(entry["path"], base),
        metadata=metadata,
        lmax=lmax,
        divisions=divisions,
        base_cutoff=_positive_int(entry.get("base_cutoff", 100), "matrix.base_cutoff"),
        purge=bool(entry.get("purge", False)),
    )


def _parse_compute_block(entry: dict) -> ComputeBlock:
    """Parse the compute: entry."""
    from .kernel.beams import BEAM_REGISTRY
    from .parallel.scheduler import BACKENDS

    beam = str(entry.get("beam", "uniform")).lower()
    if beam not in BEAM_REGISTRY:
        _die(f"compute.beam: invalid beam '{beam}'. Valid: {', '.join(BEAM_REGISTRY)}")

    backend = str(entry.get("backend", "process")).lower()
    if backend not in BACKENDS:
        _die(f"compute.backend: invalid backend '{backend}'. Valid: {', '.join(BACKENDS)}")

    workers = entry.get("workers")
    if workers is not None:
        workers = _positive_int(workers, "compute.workers")

    nside = entry.get("nside")
    if nside is not None:
        nside = _positive_int(nside, "compute.nside")
        if nside & (nside - 1):
            _die(f"compute.nside must be a power of two, got {nside}")

    memory = float(entry.get("memory_limit_gb", 0) or 0)
    if memory < 0:
        _die(f"compute.memory_limit_gb must be >= 0, got {memory}")

    return ComputeBlock(
        beam=beam,
        workers=workers,
        machines=_positive_int(entry.get("machines", 1), "compute.machines"),
        backend=backend,
        nside=nside,
        progress=bool(entry.get("progress", True)),
        memory_limit_gb=memory,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _resolve(value, base: Path) -> str:
    p = Path(str(value))
    return str(p if p.is_absolute() else base / p)


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value or value < 1:
        _die(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _ensure_list(val):
    if isinstance(val, list):
        return val
    return [val]


def _die(msg: str):
    print(f"\n  DRIFTBLOCK CONFIG ERROR: {msg}\n", file=sys.stderr)
    sys.exit(1)


def config_to_yaml(config: DriftBlockConfig) -> str:
    """Serialize config back to YAML string for reproducibility."""
    m, c = config.matrix, config.compute
    d = {
        "matrix": {
            "path": m.path, "metadata": m.metadata, "lmax": m.lmax,
            "divisions": m.divisions, "base_cutoff": m.base_cutoff, "purge": m.purge,
        },
        "compute": {
            "beam": c.beam, "workers": c.workers, "machines": c.machines,
            "backend": c.backend, "nside": c.nside, "progress": c.progress,
            "memory_limit_gb": c.memory_limit_gb,
        },
        "log_dir": config.log_dir,
    }
    return yaml.dump(d, default_flow_style=False)
