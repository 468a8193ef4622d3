"""
Logging utilities for the transfer matrix pipeline.

Provides logger setup and formatted tables.
"""

import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .hierarchy import Hierarchy

logger = logging.getLogger("driftblock")

console = Console()


def setup_logging(log_dir: str = ".", use_rich: bool = True) -> logging.Logger:
    """
    Setup logging with rich console formatting and file output.

    Parameters
    ----------
    log_dir : str
        Directory to write log files
    use_rich : bool
        Use rich formatting on the console

    Returns
    -------
    logger : logging.Logger
        Configured logger
    """
    # Create timestamped log filename
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_file = Path(log_dir) / f"driftblock_run_{timestamp}.log"

    log = logging.getLogger("driftblock")
    log.setLevel(logging.INFO)

    # Clear existing handlers
    log.handlers.clear()

    # File handler (always plain text)
    fh = logging.FileHandler(log_file)
    fh.setLevel(logging.INFO)
    fh.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)-8s %(message)s', datefmt='%H:%M:%S'))
    log.addHandler(fh)

    if use_rich:
        ch = RichHandler(console=console, show_time=True, show_path=False)
    else:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)-8s %(message)s', datefmt='%H:%M:%S'))
    ch.setLevel(logging.INFO)
    log.addHandler(ch)

    log.info(f"Log file: {log_file}")
    return log


def format_hierarchy_table(hierarchy: Hierarchy) -> str:
    """
    Format a baseline hierarchy as an ASCII table.

    Parameters
    ----------
    hierarchy : Hierarchy
        Baseline divisions

    Returns
    -------
    table_str : str
        Formatted table string
    """
    lines = []
    lines.append("")
    lines.append("=" * 60)
    lines.append("  BASELINE HIERARCHY")
    lines.append("=" * 60)
    lines.append(f"  {'Div':>4} | {'lmax':>6} | {'Baselines':>10} | {'Orders':>8}")
    lines.append("  " + "-" * 56)
    for idx, (lmax, group) in enumerate(zip(hierarchy.divisions, hierarchy.baselines)):
        lines.append(f"  {idx:4d} | {lmax:6d} | {len(group):10d} | {lmax + 1:8d}")
    lines.append("  " + "-" * 56)
    lines.append(f"  Total baselines: {hierarchy.n_base}")
    lines.append("=" * 60)
    lines.append("")
    return "\n".join(lines)


__all__ = ['console', 'setup_logging', 'format_hierarchy_table']
