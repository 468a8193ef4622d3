"""
DRIFTBLOCK fringe kernel.

For one baseline at one frequency:

    beam map B(r)            evaluated once per (division, beta)
    fringe   exp(2πi (r - r0)·b / λ)
    alm      SHT of B·cos(φ) and B·sin(φ)        (healpy map2alm)
    scale    divide by the Jy -> K conversion
    scatter  into the per-m blocks of the division

Spherical harmonic coefficients follow the healpy layout: a flat complex
vector, m-major, index(l, m) = m(2·lmax + 1 - m)/2 + l.
"""

import logging
from typing import Callable, List, Tuple

import healpy as hp
import numpy as np
from numba import njit
from scipy.constants import c as SPEED_OF_LIGHT, k as BOLTZMANN

from ..core.metadata import Metadata

logger = logging.getLogger("driftblock")

JANSKY = 1e-26  # W m^-2 Hz^-1


# ---------------------------------------------------------------------------
# Spherical harmonic transform
# ---------------------------------------------------------------------------

def nside_for_lmax(lmax: int, accuracy_boost: int = 0) -> int:
    """Smallest power-of-two nside with 3·nside >= lmax + 1, times 2**accuracy_boost."""
    nside = 1
    while 3 * nside < lmax + 1:
        nside *= 2
    return nside * 2 ** accuracy_boost


class SHTPlan:
    """
    Reusable map -> alm transform for a fixed (lmax, mmax, nside).

    Parameters
    ----------
    lmax, mmax : int
        Band limit of the output coefficients
    nside : int
        HEALPix resolution of the input maps
    iterations : int
        Jacobi iterations used by map2alm to refine the quadrature
    """

    def __init__(self, lmax: int, mmax: int, nside: int, iterations: int = 3):
        if mmax > lmax:
            raise ValueError(f"mmax={mmax} exceeds lmax={lmax}")
        if not hp.isnsideok(nside):
            raise ValueError(f"Invalid nside: {nside}")
        self.lmax = int(lmax)
        self.mmax = int(mmax)
        self.nside = int(nside)
        self.iterations = int(iterations)

    @property
    def npix(self) -> int:
        return hp.nside2npix(self.nside)

    @property
    def size(self) -> int:
        return hp.Alm.getsize(self.lmax, self.mmax)

    def index(self, l, m):
        """Flat position of coefficient (l, m). Accepts arrays of l."""
        return m * (2 * self.lmax + 1 - m) // 2 + l

    def transform(self, sky_map: np.ndarray) -> np.ndarray:
        sky_map = np.ascontiguousarray(sky_map, dtype=np.float64)
        if sky_map.shape != (self.npix,):
            raise ValueError(f"Map has shape {sky_map.shape}, expected ({self.npix},)")
        return hp.map2alm(sky_map, lmax=self.lmax, mmax=self.mmax,
                          iter=self.iterations, use_weights=False)

    def __repr__(self) -> str:
        return f"SHTPlan(lmax={self.lmax}, mmax={self.mmax}, nside={self.nside})"


def unit_vectors(nside: int) -> np.ndarray:
    """(npix, 3) unit vector toward every pixel center."""
    x, y, z = hp.pix2vec(nside, np.arange(hp.nside2npix(nside)))
    return np.ascontiguousarray(np.column_stack([x, y, z]))


# ---------------------------------------------------------------------------
# Beam map
# ---------------------------------------------------------------------------

def gram_schmidt(vector: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Component of `vector` orthogonal to unit `reference`, normalized."""
    ortho = vector - np.dot(vector, reference) * reference
    return ortho / np.linalg.norm(ortho)


def local_frame(position: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(east, north, zenith) unit vectors at an ITRF position."""
    norm = np.linalg.norm(position)
    if norm == 0:
        raise ValueError("Array position must be non-zero")
    zenith = np.asarray(position, dtype=np.float64) / norm
    pole = np.array([0.0, 0.0, 1.0])
    if abs(abs(np.dot(pole, zenith)) - 1.0) < 1e-12:
        # at a geographic pole north is undefined; take the x axis
        pole = np.array([1.0, 0.0, 0.0])
    north = gram_schmidt(pole, zenith)
    east = np.cross(north, zenith)
    return east, north, zenith


def create_beam_map(beam: Callable, metadata: Metadata, nside: int, rhat: np.ndarray = None) -> np.ndarray:
    """
    Evaluate beam(azimuth, elevation) at every pixel.

    Azimuth is measured from north through east; both angles in radians.
    """
    if rhat is None:
        rhat = unit_vectors(nside)
    east, north, zenith = local_frame(metadata.position)
    x = rhat @ east
    y = rhat @ north
    z = rhat @ zenith
    elevation = np.arcsin(np.clip(z, -1.0, 1.0))
    azimuth = np.arctan2(x, y)
    values = np.asarray(beam(azimuth, elevation), dtype=np.float64)
    return np.ascontiguousarray(np.broadcast_to(values, elevation.shape))


# ---------------------------------------------------------------------------
# Numba kernels
# ---------------------------------------------------------------------------

@njit(cache=True)
def _plane_wave(rhat, baseline, phase_center, wavelength):
    """cos and sin of the fringe phase.

    rhat:         (npix, 3) float64
    baseline:     (3,) float64 metres
    phase_center: (3,) float64 unit vector
    Returns:      two (npix,) float64 arrays
    """
    n = rhat.shape[0]
    real_part = np.empty(n, dtype=np.float64)
    imag_part = np.empty(n, dtype=np.float64)
    two_pi = 2.0 * np.pi
    delta = two_pi * (phase_center[0] * baseline[0]
                      + phase_center[1] * baseline[1]
                      + phase_center[2] * baseline[2]) / wavelength
    for i in range(n):
        phi = two_pi * (rhat[i, 0] * baseline[0]
                        + rhat[i, 1] * baseline[1]
                        + rhat[i, 2] * baseline[2]) / wavelength - delta
        real_part[i] = np.cos(phi)
        imag_part[i] = np.sin(phi)
    return real_part, imag_part


def plane_wave(rhat, baseline, phase_center, wavelength) -> Tuple[np.ndarray, np.ndarray]:
    return _plane_wave(
        np.ascontiguousarray(rhat, dtype=np.float64),
        np.ascontiguousarray(baseline, dtype=np.float64),
        np.ascontiguousarray(phase_center, dtype=np.float64),
        float(wavelength),
    )


def fringe_pattern(baseline, phase_center, beam_map, rhat, plan: SHTPlan, frequency: float):
    """
    Spherical harmonic coefficients of the beam-weighted fringe.

    Returns
    -------
    real_alm, imag_alm : ndarray complex128
        Transforms of B·cos(φ) and B·sin(φ)
    """
    wavelength = SPEED_OF_LIGHT / frequency
    real_fringe, imag_fringe = plane_wave(rhat, baseline, phase_center, wavelength)
    real_alm = plan.transform(real_fringe * beam_map)
    imag_alm = plan.transform(imag_fringe * beam_map)
    return real_alm, imag_alm


# ---------------------------------------------------------------------------
# Scaling and scatter
# ---------------------------------------------------------------------------

def flux_to_temperature(frequency: float) -> float:
    """Kelvin per Jansky: Jy·c²/(2kν²)."""
    return JANSKY * SPEED_OF_LIGHT ** 2 / (2 * BOLTZMANN * frequency ** 2)


def fix_scaling(real_alm: np.ndarray, imag_alm: np.ndarray, frequency: float) -> None:
    """Divide both coefficient vectors in place so the matrix maps K to Jy."""
    factor = flux_to_temperature(frequency)
    real_alm /= factor
    imag_alm /= factor


def allocate_blocks(n_base: int, lmax: int, mmax: int) -> List[np.ndarray]:
    """Zeroed per-m blocks for one division: (two(m)·n_base, lmax - m + 1)."""
    return [
        np.zeros(((2 if m > 0 else 1) * n_base, lmax - m + 1), dtype=np.complex128)
        for m in range(mmax + 1)
    ]


def write_to_blocks(blocks: List[np.ndarray], real_alm, imag_alm, plan: SHTPlan, alpha: int) -> None:
    """
    Scatter one baseline's coefficients into its rows.

    alpha is the baseline's position within the division. For m > 0 row 2α
    holds +m and row 2α+1 holds -m.
    """
    for m in range(plan.mmax + 1):
        idx = plan.index(np.arange(m, plan.lmax + 1), m)
        re = np.conj(real_alm[idx])
        im = np.conj(imag_alm[idx])
        if m == 0:
            blocks[0][alpha, :] = re + 1j * im
        else:
            blocks[m][2 * alpha, :] = re + 1j * im
            blocks[m][2 * alpha + 1, :] = re - 1j * im
