"""Numeric kernel: beam maps, fringe transforms, scaling and block scatter."""

from .beams import BEAM_REGISTRY, cosine_beam, get_beam, uniform_beam
from .fringes import (
    SHTPlan,
    allocate_blocks,
    create_beam_map,
    fix_scaling,
    flux_to_temperature,
    fringe_pattern,
    nside_for_lmax,
    plane_wave,
    unit_vectors,
    write_to_blocks,
)
