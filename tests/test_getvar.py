"""
Unit tests for the variable engine.

These tests verify that getvar:
1. Returns stored columns and derived quantities in code units
2. Applies unit factors after the computation
3. Resolves positions relative to a center in any length unit
4. Validates keys, units and masks before computing anything
5. Lists the known keys when called without a variable

"""

import numpy as np
import pytest

from drishti import (
    UnknownKeyError,
    UsageError,
    describe_variables,
    getgravity,
    gethydro,
    getparticles,
    getvar,
    subregion,
)

# ──────────────────────────────────────────────────────────────
# Tests
# ──────────────────────────────────────────────────────────────

def test_cellsize_and_volume(gas):
    """cellsize is boxlen / 2**level and volume its cube."""
    level = gas.column("level")
    dx = getvar(gas, "cellsize")
    assert np.allclose(dx, gas.boxlen / 2.0**level)
    assert np.allclose(getvar(gas, "volume"), dx**3)


def test_mass_and_units(gas):
    """Cell mass is rho * volume; units multiply the code value."""
    mass = getvar(gas, "mass")
    assert np.allclose(mass, getvar(gas, "rho") * getvar(gas, "volume"))
    assert np.allclose(getvar(gas, "mass", unit="Msol"), mass * gas.scale["Msol"])
    v = getvar(gas, "v", unit="km_s")
    vx, vy, vz = (getvar(gas, k) for k in ("vx", "vy", "vz"))
    assert np.allclose(v, np.sqrt(vx**2 + vy**2 + vz**2) * gas.scale["km_s"])


def test_thermodynamics(gas):
    """Temperature, sound speed, thermal energy and Jeans length."""
    info = gas.info
    rho, p = getvar(gas, "rho"), getvar(gas, "p")
    assert np.allclose(getvar(gas, "T"), p / rho)
    assert np.allclose(getvar(gas, "T", unit="K"), p / rho * gas.scale["K"])

    cs = getvar(gas, "cs")
    assert np.allclose(cs, np.sqrt(info.gamma * 0.1))
    assert np.allclose(getvar(gas, "mach"), getvar(gas, "v") / cs)
    assert np.allclose(getvar(gas, "etherm"), p * getvar(gas, "volume") / (info.gamma - 1.0))

    G = info.constants.G * info.unit_d * info.unit_t**2
    assert np.allclose(getvar(gas, "jeanslength"), cs * np.sqrt(np.pi / (G * rho)))


def test_positions_and_center(gas):
    """Positions are absolute by default and shift with the center."""
    x = getvar(gas, "x")
    level = gas.column("level")
    assert np.allclose(x, (gas.column("cx") - 0.5) * gas.boxlen / 2.0**level)

    r_bc = getvar(gas, "r_sphere", center="bc")
    y, z = getvar(gas, "y"), getvar(gas, "z")
    assert np.allclose(r_bc, np.sqrt((x - 0.5) ** 2 + (y - 0.5) ** 2 + (z - 0.5) ** 2))

    r_kpc = getvar(gas, "r_sphere", center=(0.5, 0.5, 0.5), center_unit="kpc")
    assert np.allclose(r_kpc, r_bc)
    r_mixed = getvar(gas, "r_sphere", center=("bc", 0.5, "boxcenter"))
    assert np.allclose(r_mixed, r_bc)


def test_kinematics(gas):
    """Cylindrical and angular-momentum quantities relative to the box centre."""
    data = getvar(gas, ["x", "y", "vx", "vy", "hz", "vr_cylinder", "vphi_cylinder", "lz", "mass"], center="bc")
    x, y, vx, vy = data["x"], data["y"], data["vx"], data["vy"]
    r = np.sqrt(x**2 + y**2)
    assert np.allclose(data["hz"], x * vy - y * vx)
    assert np.allclose(data["vr_cylinder"], (x * vx + y * vy) / r)
    assert np.allclose(data["vphi_cylinder"], (x * vy - y * vx) / r)
    assert np.allclose(data["lz"], data["mass"] * data["hz"])


def test_list_returns_aligned_dict(gas):
    """A list of keys gives one array per key, all masked alike."""
    mask = gas.column("level") == 3
    data = getvar(gas, ["rho", "cellsize"], unit=["g_cm3", "kpc"], mask=mask)
    assert set(data) == {"rho", "cellsize"}
    assert len(data["rho"]) == len(data["cellsize"]) == 16
    assert np.allclose(data["cellsize"], 0.125 * gas.scale["kpc"])
    assert np.allclose(data["rho"], getvar(gas, "rho")[mask] * gas.scale["g_cm3"])


def test_selection_matches_mask(gas):
    """getvar on a subregion equals getvar with the matching mask."""
    sub = subregion(gas, "sphere", center="bc", radius=0.3, cell=False)
    mask = getvar(gas, "r_sphere", center="bc") <= 0.3
    assert np.allclose(getvar(sub, "mass"), getvar(gas, "mass", mask=mask))


def test_stored_values_are_copies(gas):
    """Arrays handed out by getvar do not alias the row table."""
    rho = getvar(gas, "rho")
    rho[:] = -1.0
    assert np.all(gas.column("rho") > 0.0)


def test_equal_quantities_do_not_share_arrays(gas):
    """Keys that compute the same values come back as separate arrays."""
    data = getvar(gas, ["vphi_sphere", "vphi_cylinder"], center="bc")
    assert np.array_equal(data["vphi_sphere"], data["vphi_cylinder"])
    assert not np.shares_memory(data["vphi_sphere"], data["vphi_cylinder"])
    before = data["vphi_cylinder"].copy()
    data["vphi_sphere"][:] = 0.0
    assert np.array_equal(data["vphi_cylinder"], before)


def test_unknown_key(gas):
    """An unknown variable raises a KeyError."""
    with pytest.raises(UnknownKeyError):
        getvar(gas, "vorticity")
    with pytest.raises(KeyError):
        getvar(gas, ["rho", "vorticity"])


def test_unknown_unit(gas):
    """An unknown unit raises a KeyError."""
    with pytest.raises(KeyError):
        getvar(gas, "rho", unit="stone")


def test_unit_count_mismatch(gas):
    """One unit per key is required when a list of units is given."""
    with pytest.raises(UsageError):
        getvar(gas, ["rho", "p"], unit=["g_cm3"])


def test_bad_masks(gas):
    """Masks must be boolean with one entry per row."""
    with pytest.raises(UsageError):
        getvar(gas, "rho", mask=np.ones(len(gas) - 1, dtype=bool))
    with pytest.raises(UsageError):
        getvar(gas, "rho", mask=np.ones(len(gas), dtype=int))


def test_missing_required_column(info):
    """A derived key whose inputs were not loaded raises UsageError."""
    ds = gethydro(info, vars=["rho"])
    assert np.allclose(getvar(ds, "mass"), getvar(ds, "rho") * getvar(ds, "volume"))
    with pytest.raises(UsageError):
        getvar(ds, "T")


def test_introspection(gas):
    """Without a variable getvar lists the known keys."""
    listing = getvar(gas)
    assert "rho" in listing and "mass" in listing and "jeansmass" in listing
    assert listing["rho"] == "stored"
    everything = getvar()
    assert set(everything) == {"hydro", "gravity", "particles", "clumps"}
    assert "age" in everything["particles"]
    assert describe_variables(gas) == listing
    with pytest.raises(UsageError):
        getvar(None, "rho")


def test_particle_age(info, expected):
    """age is ref_time - birth; the default reference is the snapshot time."""
    part = getparticles(info)
    birth = getvar(part, "birth")
    assert np.allclose(getvar(part, "age"), info.time - birth)
    assert np.allclose(getvar(part, "age", ref_time=1.0), 1.0 - birth)
    stars = part.column("family") == 2
    assert np.all(getvar(part, "age", mask=stars) > 0.0)
    assert np.allclose(getvar(part, "ekin"), 0.5 * getvar(part, "mass") * getvar(part, "v2"))


def test_particle_positions_relative(info):
    """Particle x/y/z are relative to the requested center."""
    part = getparticles(info)
    assert np.allclose(getvar(part, "x", center="bc"), part.column("x") - 0.5)


def test_gravity_quantities(info):
    """Acceleration magnitude, escape speed and radial acceleration."""
    grav = getgravity(info)
    data = getvar(grav, ["ax", "ay", "az", "epot", "a_magnitude", "escape_speed", "ar_sphere", "r_sphere"], center="bc")
    assert np.allclose(data["a_magnitude"], np.sqrt(data["ax"] ** 2 + data["ay"] ** 2 + data["az"] ** 2))
    assert np.allclose(data["escape_speed"], np.sqrt(2.0 * np.abs(data["epot"])))
    # a = -(r - c) points inwards with magnitude r
    assert np.allclose(data["ar_sphere"], -data["r_sphere"])
    with pytest.raises(UnknownKeyError):
        getvar(grav, "rho")
