"""Numeric kernel: SHT plan, beam maps, fringes, scaling and scatter."""

import healpy as hp
import numpy as np
import pytest

from driftblock.kernel import (
    SHTPlan,
    allocate_blocks,
    cosine_beam,
    create_beam_map,
    fix_scaling,
    flux_to_temperature,
    fringe_pattern,
    get_beam,
    nside_for_lmax,
    plane_wave,
    uniform_beam,
    unit_vectors,
    write_to_blocks,
)
from driftblock.kernel.fringes import local_frame


@pytest.mark.parametrize("lmax, boost, expected", [
    (0, 0, 1),
    (2, 0, 1),
    (3, 0, 2),
    (100, 0, 64),
    (100, 1, 128),
])
def test_nside_for_lmax(lmax, boost, expected):
    assert nside_for_lmax(lmax, boost) == expected


def test_plan_index_matches_healpy():
    plan = SHTPlan(lmax=6, mmax=4, nside=4)
    for m in range(5):
        for l in range(m, 7):
            assert plan.index(l, m) == hp.Alm.getidx(6, l, m)
    assert plan.size == hp.Alm.getsize(6, 4)


def test_plan_validation():
    with pytest.raises(ValueError):
        SHTPlan(lmax=2, mmax=3, nside=4)
    with pytest.raises(ValueError):
        SHTPlan(lmax=2, mmax=2, nside=0)
    with pytest.raises(ValueError):
        SHTPlan(2, 2, 4).transform(np.ones(10))


def test_constant_map_transforms_to_monopole():
    plan = SHTPlan(lmax=4, mmax=4, nside=16)
    alm = plan.transform(np.ones(plan.npix))
    assert alm[plan.index(0, 0)].real == pytest.approx(np.sqrt(4 * np.pi), rel=1e-6)
    assert np.all(np.abs(np.delete(alm, plan.index(0, 0))) < 1e-6)


def test_unit_vectors():
    rhat = unit_vectors(4)
    assert rhat.shape == (hp.nside2npix(4), 3)
    np.testing.assert_allclose(np.linalg.norm(rhat, axis=1), 1.0)


def test_local_frame_is_orthonormal():
    for position in ([6.4e6, 0.0, 0.0], [-2.4e6, -4.5e6, 3.8e6], [0.0, 0.0, 6.4e6]):
        east, north, zenith = local_frame(np.array(position))
        frame = np.array([east, north, zenith])
        np.testing.assert_allclose(frame @ frame.T, np.eye(3), atol=1e-12)
    with pytest.raises(ValueError):
        local_frame(np.zeros(3))


def test_local_frame_north_points_to_pole():
    # on the equator north is +z and east is +y
    east, north, zenith = local_frame(np.array([6.4e6, 0.0, 0.0]))
    np.testing.assert_allclose(north, [0, 0, 1], atol=1e-12)
    np.testing.assert_allclose(east, [0, 1, 0], atol=1e-12)


def test_beam_maps(metadata):
    nside = 8
    assert np.all(create_beam_map(uniform_beam, metadata, nside) == 1.0)

    cos_map = create_beam_map(cosine_beam, metadata, nside)
    assert cos_map.shape == (hp.nside2npix(nside),)
    assert np.all((cos_map >= 0) & (cos_map <= 1))
    zenith_pixel = hp.vec2pix(nside, *metadata.phase_center)
    assert cos_map[zenith_pixel] > 0.95
    nadir_pixel = hp.vec2pix(nside, *(-metadata.phase_center))
    assert cos_map[nadir_pixel] == 0.0


def test_beam_receives_azimuth_and_elevation(metadata):
    seen = {}

    def beam(azimuth, elevation):
        seen["az"], seen["el"] = azimuth, elevation
        return np.zeros_like(elevation)

    create_beam_map(beam, metadata, 4)
    assert np.all(np.abs(seen["el"]) <= np.pi / 2)
    assert np.all(np.abs(seen["az"]) <= np.pi)


def test_get_beam():
    assert get_beam("Uniform") is uniform_beam
    assert get_beam("cosine") is cosine_beam
    with pytest.raises(ValueError):
        get_beam("gaussian")


def test_plane_wave():
    rhat = unit_vectors(2)
    center = rhat[0]
    re, im = plane_wave(rhat, np.zeros(3), center, 2.0)
    np.testing.assert_array_equal(re, 1.0)
    np.testing.assert_array_equal(im, 0.0)

    baseline = np.array([3.0, -1.0, 2.0])
    re, im = plane_wave(rhat, baseline, center, 2.0)
    # phase is zero toward the phase center
    assert re[0] == pytest.approx(1.0)
    assert im[0] == pytest.approx(0.0, abs=1e-12)
    phase = 2 * np.pi * (rhat - center) @ baseline / 2.0
    np.testing.assert_allclose(re, np.cos(phase), atol=1e-12)
    np.testing.assert_allclose(im, np.sin(phase), atol=1e-12)


def test_fringe_pattern_zero_baseline(metadata):
    nside = 8
    plan = SHTPlan(3, 3, nside)
    rhat = unit_vectors(nside)
    beam_map = create_beam_map(uniform_beam, metadata, nside, rhat)
    real_alm, imag_alm = fringe_pattern(np.zeros(3), metadata.phase_center, beam_map,
                                        rhat, plan, 70e6)
    assert real_alm[0].real == pytest.approx(np.sqrt(4 * np.pi), rel=1e-6)
    assert np.all(np.abs(imag_alm) < 1e-12)


def test_flux_to_temperature():
    # Jy -> K at 150 MHz
    assert flux_to_temperature(150e6) == pytest.approx(1.4466e-3, rel=1e-3)
    assert flux_to_temperature(300e6) == pytest.approx(flux_to_temperature(150e6) / 4)


def test_fix_scaling_in_place():
    real = np.array([2.0 + 1j, 4.0])
    imag = np.array([1.0, -1.0 + 0j])
    factor = flux_to_temperature(100e6)
    fix_scaling(real, imag, 100e6)
    np.testing.assert_allclose(real, np.array([2.0 + 1j, 4.0]) / factor)
    np.testing.assert_allclose(imag, np.array([1.0, -1.0]) / factor)


def test_write_to_blocks():
    plan = SHTPlan(lmax=2, mmax=2, nside=1)
    real = np.arange(plan.size) + 1j * np.arange(plan.size)
    imag = 10 * np.arange(plan.size) - 1j * np.arange(plan.size)
    blocks = allocate_blocks(n_base=2, lmax=2, mmax=2)

    write_to_blocks(blocks, real, imag, plan, alpha=1)

    def expected(l, m, sign):
        i = hp.Alm.getidx(2, l, m)
        return np.conj(real[i]) + sign * 1j * np.conj(imag[i])

    np.testing.assert_array_equal(blocks[0][0], 0)
    np.testing.assert_allclose(blocks[0][1], [expected(l, 0, 1) for l in range(3)])
    for m in (1, 2):
        np.testing.assert_array_equal(blocks[m][:2], 0)
        np.testing.assert_allclose(blocks[m][2], [expected(l, m, 1) for l in range(m, 3)])
        np.testing.assert_allclose(blocks[m][3], [expected(l, m, -1) for l in range(m, 3)])
