"""
Unit tests for the projection engine.

These tests verify that:
1. Sum-mode and surface-density maps conserve the projected totals
2. Weighted, mean and max modes give the expected per-pixel values
3. Grid geometry follows res, pxsize and lmax
4. Particle families are filtered
5. Gravity data projects with volume weighting
6. Empty selections give zero maps
7. Invalid arguments raise before any deposit

"""

import numpy as np
import pytest

from drishti import (
    UnknownKeyError,
    UsageError,
    getclumps,
    getgravity,
    gethydro,
    getinfo,
    getparticles,
    getvar,
    projection,
)

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

RTOL = 1e-6


# ──────────────────────────────────────────────────────────────
# Conservation
# ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("res", [5, 32, 64])
def test_sum_conserves_mass(gas, res):
    """Summed mass maps hold the total mass at any resolution."""
    total = getvar(gas, "mass").sum()
    p = projection(gas, "mass", mode="sum", res=res)
    assert p.shape == (res, res)
    assert p.total("mass") == pytest.approx(total, rel=RTOL)


@pytest.mark.parametrize("direction", ["x", "y", "z"])
def test_surface_density(gas, direction):
    """sd integrates back to the total mass in every direction."""
    total = getvar(gas, "mass").sum()
    p = projection(gas, "sd", res=32, direction=direction)
    assert p.maps["sd"].sum() * p.pixsize**2 == pytest.approx(total, rel=RTOL)
    assert p.weight_map.sum() == pytest.approx(total, rel=RTOL)


def test_partial_extent_conserves_selected(gas):
    """A sub-extent conserves the mass of the cells overlapping it."""
    p = projection(gas, "mass", mode="sum", res=16, xrange=(0.0, 0.5))
    assert p.shape == (8, 16)
    assert p.extent == pytest.approx((0.0, 0.5, 0.0, 1.0))
    inside = getvar(gas, "x") <= 0.5
    assert p.total("mass") == pytest.approx(getvar(gas, "mass", mask=inside).sum(), rel=RTOL)


def test_range_on_integration_axis(info, gas):
    """A slab loaded with a range and projected with the same range keeps all its mass."""
    slab = gethydro(info, zrange=(0.45, 0.55))
    total = getvar(slab, "mass").sum()
    assert len(slab) == 32
    p = projection(slab, "mass", mode="sum", res=8, zrange=(0.45, 0.55))
    assert p.total("mass") == pytest.approx(total, rel=RTOL)
    q = projection(gas, "mass", mode="sum", res=8, zrange=(0.45, 0.55))
    assert q.total("mass") == pytest.approx(total, rel=RTOL)


def test_units(gas):
    """Units multiply the projected values; the extent converts on request."""
    total = getvar(gas, "mass", unit="Msol").sum()
    p = projection(gas, "mass", unit="Msol", mode="sum", res=16)
    assert p.total("mass") == pytest.approx(total, rel=RTOL)
    assert p.units == {"mass": "Msol"}
    assert p.extent_in("kpc") == pytest.approx(tuple(e * gas.scale["kpc"] for e in p.extent))


# ──────────────────────────────────────────────────────────────
# Modes
# ──────────────────────────────────────────────────────────────

def test_weighted_constant_field(gas):
    """A constant field projects to itself in weighted and mean modes."""
    for mode, weighting in (("standard", "mass"), ("weighted", "volume"), ("mean", "mass")):
        p = projection(gas, ["vy", "T"], res=8, mode=mode, weighting=weighting)
        assert np.allclose(p.maps["vy"], -0.2)
        assert np.allclose(p.maps["T"], 0.1)
    assert p.mode == "mean"


def test_volume_weight_map(gas):
    """With volume weighting the weight map sums to the box volume."""
    p = projection(gas, "rho", res=8, weighting="volume")
    assert p.weight_map.sum() == pytest.approx(gas.boxlen**3, rel=RTOL)


def test_max_mode(gas):
    """max keeps the finest level reaching a pixel."""
    p = projection(gas, "var6", res=8, mode="max")
    grid = p.maps["var6"]
    assert grid[0, 0] == 3.0
    assert grid[7, 7] == 3.0
    assert grid[3, 3] == 2.0
    assert set(np.unique(grid)) == {2.0, 3.0}


def test_default_pixel_size(gas):
    """Without res or pxsize the pixel size is boxlen / 2**lmax."""
    p = projection(gas, "mass", mode="sum")
    assert p.pixsize == pytest.approx(gas.boxlen / 2**gas.lmax)
    assert p.shape == (8, 8)
    coarse = projection(gas, "mass", mode="sum", lmax=2)
    assert coarse.shape == (4, 4)
    assert coarse.total("mass") == pytest.approx(p.total("mass"), rel=RTOL)


def test_pxsize(gas):
    """pxsize in a physical unit sets the pixel size."""
    p = projection(gas, "mass", mode="sum", pxsize=0.25, pxsize_unit="kpc")
    assert p.pixsize == pytest.approx(0.25 / gas.scale["kpc"])
    assert p.shape == (4, 4)


def test_direction_axes(gas):
    """The pixel plane is spanned by the two other axes."""
    assert projection(gas, "mass", direction="x", res=4).axes == ("y", "z")
    assert projection(gas, "mass", direction="y", res=4).axes == ("x", "z")
    assert projection(gas, "mass", direction="z", res=4).axes == ("x", "y")


def test_maps_read_only(gas):
    """Result grids cannot be modified."""
    p = projection(gas, "rho", res=4)
    with pytest.raises(ValueError):
        p.maps["rho"][0, 0] = 1.0


def test_empty_selection(gas):
    """An all-false mask gives zero maps and a zero weight map."""
    mask = np.zeros(len(gas), dtype=bool)
    for mode in ("standard", "sum", "mean", "max"):
        p = projection(gas, "rho", res=8, mode=mode, mask=mask)
        assert np.all(p.maps["rho"] == 0.0)
        assert np.all(p.weight_map == 0.0)


# ──────────────────────────────────────────────────────────────
# Particles
# ──────────────────────────────────────────────────────────────

def test_particle_families(info, expected):
    """Particle maps conserve mass per family."""
    part = getparticles(info)
    total = getvar(part, "mass").sum()
    assert projection(part, "mass", mode="sum", res=16).total("mass") == pytest.approx(total, rel=RTOL)

    stars = projection(part, "mass", mode="sum", res=16, family="star")
    assert stars.total("mass") == pytest.approx(expected["nstars"] * 1e-3, rel=RTOL)
    dm = projection(part, "sd", res=16, family=["dm"])
    assert dm.maps["sd"].sum() * dm.pixsize**2 == pytest.approx(12e-3, rel=RTOL)


def test_particle_volume_weighting_rejected(info):
    """Particles have no volume to weight by."""
    part = getparticles(info)
    with pytest.raises(UsageError):
        projection(part, "vx", res=8, weighting="volume")


# ──────────────────────────────────────────────────────────────
# Gravity
# ──────────────────────────────────────────────────────────────

def test_gravity_volume_weighted(info):
    """Gravity data has no mass, so its default weight is the cell volume."""
    grav = getgravity(info)
    p = projection(grav, "epot", res=8)
    assert p.weighting == "volume"
    assert p.weight_map.sum() == pytest.approx(grav.boxlen**3, rel=RTOL)
    weighted = (getvar(grav, "epot") * getvar(grav, "volume")).sum()
    assert (p.maps["epot"] * p.weight_map).sum() == pytest.approx(weighted, rel=RTOL)
    assert np.all(p.maps["epot"] < 0.0)

    summed = projection(grav, "ax", mode="sum", res=8)
    assert summed.total("ax") == pytest.approx(getvar(grav, "ax").sum(), abs=1e-12)
    with pytest.raises(UsageError):
        projection(grav, "epot", res=8, weighting="mass")


# ──────────────────────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────────────────────

def test_invalid_arguments(gas):
    """Bad options raise UsageError or KeyError."""
    with pytest.raises(UsageError):
        projection(gas, "rho", mode="median")
    with pytest.raises(UsageError):
        projection(gas, "rho", direction="w")
    with pytest.raises(UsageError):
        projection(gas, "rho", res=0)
    with pytest.raises(UsageError):
        projection(gas, "rho", weighting="temperature")
    with pytest.raises(UsageError):
        projection(gas, "rho", lmax=gas.info.levelmax + 1)
    with pytest.raises(UsageError):
        projection(gas, "rho", family="star")
    with pytest.raises(UsageError):
        projection(gas, ["rho", "p"], unit=["g_cm3"])
    with pytest.raises(UsageError):
        projection(gas, "rho", mask=np.ones(3, dtype=bool))
    with pytest.raises(UnknownKeyError):
        projection(gas, "vorticity")
    with pytest.raises(KeyError):
        projection(gas, "rho", unit="stone")


def test_clumps_rejected(clump_sim_path):
    """Clump catalogues cannot be projected."""
    clumps = getclumps(getinfo(1, path=clump_sim_path))
    with pytest.raises(UsageError):
        projection(clumps, "mass_cl")
