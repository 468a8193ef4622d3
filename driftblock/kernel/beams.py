"""Built-in beam models: beam(azimuth, elevation) -> response, angles in radians."""

from typing import Callable, Dict

import numpy as np


def uniform_beam(azimuth, elevation):
    """Unit response over the whole sphere."""
    return np.ones_like(np.asarray(elevation, dtype=np.float64))


def cosine_beam(azimuth, elevation):
    """sin(elevation) above the horizon, zero below."""
    elevation = np.asarray(elevation, dtype=np.float64)
    return np.where(elevation > 0, np.sin(elevation), 0.0)


BEAM_REGISTRY: Dict[str, Callable] = {
    "uniform": uniform_beam,
    "cosine": cosine_beam,
}


def get_beam(name: str) -> Callable:
    """Get beam function by name."""
    key = name.lower()
    if key not in BEAM_REGISTRY:
        raise ValueError(
            f"Unknown beam '{name}'. "
            f"Available: {list(BEAM_REGISTRY.keys())}"
        )
    return BEAM_REGISTRY[key]
