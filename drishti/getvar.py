# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Resolve variable keys against a Dataset: ``getvar``.

A key is either a column of the row table (stored variable or bookkeeping
column) or a derived quantity from the registry below. Derived quantities
are computed in code units from the stored columns, the AMR geometry and an
optional center; the unit factor is applied afterwards.

──────────────────────────────────────────────────────────────────────────────
REGISTRY
──────────────────────────────────────────────────────────────────────────────
Each entry is a ``DerivedVariable``: the dataset kinds it applies to, the
stored columns it needs and a pure compute function taking a ``Frame``.
New quantities are added with the ``derived`` decorator; call sites never
change. Registry entries win over table columns, so ``x``/``y``/``z`` of
particles and clumps are always center-relative.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import normalize_center
from .dataset import KINDS, Dataset
from .errors import UnknownKeyError, UsageError
from .scales import resolve

logger = logging.getLogger("drishti")

CELLS = ("hydro", "gravity")
ALL_KINDS = KINDS


@dataclass(frozen=True)
class DerivedVariable:
    key: str
    kinds: Tuple[str, ...]
    requires: Tuple[str, ...]
    compute: Callable[["Frame"], np.ndarray]
    description: str = ""


# kind -> key -> DerivedVariable
REGISTRY: Dict[str, Dict[str, DerivedVariable]] = {kind: {} for kind in KINDS}


def derived(key: str, kinds: Sequence[str], requires: Sequence[str] = (), description: str = ""):
    """Register ``fn(frame) -> ndarray`` as derived quantity ``key`` for ``kinds``."""

    def register(fn):
        entry = DerivedVariable(key, tuple(kinds), tuple(requires), fn, description)
        for kind in entry.kinds:
            REGISTRY[kind][key] = entry
        return fn

    return register


@dataclass
class Frame:
    """
    Masked view of a Dataset handed to compute functions.

    Columns and positions are computed lazily and cached per call.
    """

    ds: Dataset
    mask: Optional[np.ndarray]
    center: Tuple[float, float, float]
    ref_time: float
    _cache: Dict[str, np.ndarray] = field(default_factory=dict)

    def col(self, name: str) -> np.ndarray:
        if name not in self._cache:
            arr = self.ds.column(name)
            self._cache[name] = arr if self.mask is None else arr[self.mask]
        return self._cache[name]

    def get(self, key: str) -> np.ndarray:
        """Another quantity (stored or derived) on the same rows, in code units."""
        if key not in self._cache:
            entry = REGISTRY[self.ds.kind].get(key)
            self._cache[key] = entry.compute(self) if entry is not None else self.col(key)
        return self._cache[key]

    @property
    def info(self):
        return self.ds.info

    @property
    def G(self) -> float:
        """Gravitational constant in code units."""
        return self.info.constants.G * self.info.unit_d * self.info.unit_t**2

    def positions(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if "_pos" not in self._cache:
            x, y, z = self.ds.positions(self.center)
            if self.mask is not None:
                x, y, z = x[self.mask], y[self.mask], z[self.mask]
            self._cache["_pos"] = np.vstack([x, y, z])
        pos = self._cache["_pos"]
        return pos[0], pos[1], pos[2]

    def velocities(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.col("vx"), self.col("vy"), self.col("vz")


def _safe_divide(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """a / b with 0 where b == 0 (quantities undefined on the axis or at the center)."""
    a = np.asarray(a, dtype=np.float64)
    out = np.zeros(np.broadcast(a, b).shape)
    np.divide(a, b, out=out, where=b != 0)
    return out


# ──────────────────────────────────────────────────────────────
# Geometry
# ──────────────────────────────────────────────────────────────

@derived("cellsize", CELLS, ("level",), "cell edge length, boxlen / 2**level")
def _cellsize(f: Frame) -> np.ndarray:
    return f.info.cellsize(f.col("level"))


@derived("volume", CELLS, ("level",), "cell volume, cellsize**3")
def _volume(f: Frame) -> np.ndarray:
    return f.get("cellsize") ** 3


@derived("x", ALL_KINDS, (), "x position relative to the center")
def _x(f: Frame) -> np.ndarray:
    return f.positions()[0]


@derived("y", ALL_KINDS, (), "y position relative to the center")
def _y(f: Frame) -> np.ndarray:
    return f.positions()[1]


@derived("z", ALL_KINDS, (), "z position relative to the center")
def _z(f: Frame) -> np.ndarray:
    return f.positions()[2]


@derived("r_sphere", ALL_KINDS, (), "distance from the center")
def _r_sphere(f: Frame) -> np.ndarray:
    x, y, z = f.positions()
    return np.sqrt(x**2 + y**2 + z**2)


@derived("r_cylinder", ALL_KINDS, (), "distance from the z axis through the center")
def _r_cylinder(f: Frame) -> np.ndarray:
    x, y, _ = f.positions()
    return np.sqrt(x**2 + y**2)


@derived("phi", ALL_KINDS, (), "azimuthal angle around the z axis through the center")
def _phi(f: Frame) -> np.ndarray:
    x, y, _ = f.positions()
    return np.arctan2(y, x)


# ──────────────────────────────────────────────────────────────
# Kinematics (hydro and particles)
# ──────────────────────────────────────────────────────────────

MOVING = ("hydro", "particles")
VEL = ("vx", "vy", "vz")


@derived("mass", ("hydro",), ("rho", "level"), "cell mass, rho * volume")
def _mass(f: Frame) -> np.ndarray:
    return f.col("rho") * f.get("volume")


@derived("v", MOVING, VEL, "velocity magnitude")
def _v(f: Frame) -> np.ndarray:
    vx, vy, vz = f.velocities()
    return np.sqrt(vx**2 + vy**2 + vz**2)


@derived("v2", MOVING, VEL, "squared velocity magnitude")
def _v2(f: Frame) -> np.ndarray:
    vx, vy, vz = f.velocities()
    return vx**2 + vy**2 + vz**2


@derived("ekin", ("hydro",), ("rho", "level") + VEL, "kinetic energy of the cell, 0.5 * rho * v**2 * volume")
def _ekin_cells(f: Frame) -> np.ndarray:
    return 0.5 * f.get("mass") * f.get("v2")


@derived("ekin", ("particles",), ("mass",) + VEL, "kinetic energy, 0.5 * mass * v**2")
def _ekin_particles(f: Frame) -> np.ndarray:
    return 0.5 * f.col("mass") * f.get("v2")


@derived("vr_sphere", MOVING, VEL, "radial velocity (spherical)")
def _vr_sphere(f: Frame) -> np.ndarray:
    x, y, z = f.positions()
    vx, vy, vz = f.velocities()
    return _safe_divide(x * vx + y * vy + z * vz, f.get("r_sphere"))


@derived("vtheta_sphere", MOVING, VEL, "polar velocity (spherical, theta from +z)")
def _vtheta_sphere(f: Frame) -> np.ndarray:
    x, y, z = f.positions()
    vx, vy, vz = f.velocities()
    num = z * (x * vx + y * vy) - (x**2 + y**2) * vz
    return _safe_divide(num, f.get("r_sphere") * f.get("r_cylinder"))


@derived("vphi_sphere", MOVING, VEL, "azimuthal velocity (spherical)")
def _vphi_sphere(f: Frame) -> np.ndarray:
    return f.get("vphi_cylinder").copy()


@derived("vr_cylinder", MOVING, VEL, "radial velocity (cylindrical)")
def _vr_cylinder(f: Frame) -> np.ndarray:
    x, y, _ = f.positions()
    vx, vy, _ = f.velocities()
    return _safe_divide(x * vx + y * vy, f.get("r_cylinder"))


@derived("vphi_cylinder", MOVING, VEL, "azimuthal velocity (cylindrical)")
def _vphi_cylinder(f: Frame) -> np.ndarray:
    x, y, _ = f.positions()
    vx, vy, _ = f.velocities()
    return _safe_divide(x * vy - y * vx, f.get("r_cylinder"))


@derived("hx", MOVING, VEL, "specific angular momentum, x component")
def _hx(f: Frame) -> np.ndarray:
    _, y, z = f.positions()
    _, vy, vz = f.velocities()
    return y * vz - z * vy


@derived("hy", MOVING, VEL, "specific angular momentum, y component")
def _hy(f: Frame) -> np.ndarray:
    x, _, z = f.positions()
    vx, _, vz = f.velocities()
    return z * vx - x * vz


@derived("hz", MOVING, VEL, "specific angular momentum, z component")
def _hz(f: Frame) -> np.ndarray:
    x, y, _ = f.positions()
    vx, vy, _ = f.velocities()
    return x * vy - y * vx


@derived("h", MOVING, VEL, "specific angular momentum magnitude")
def _h(f: Frame) -> np.ndarray:
    return np.sqrt(f.get("hx") ** 2 + f.get("hy") ** 2 + f.get("hz") ** 2)


def _angular_momentum(component: str):
    def compute(f: Frame) -> np.ndarray:
        return f.get("mass") * f.get(component)

    return compute


for _key, _hkey in (("lx", "hx"), ("ly", "hy"), ("lz", "hz"), ("l", "h")):
    derived(_key, ("hydro",), ("rho", "level") + VEL, f"angular momentum, mass * {_hkey}")(_angular_momentum(_hkey))
    derived(_key, ("particles",), ("mass",) + VEL, f"angular momentum, mass * {_hkey}")(_angular_momentum(_hkey))


# ──────────────────────────────────────────────────────────────
# Thermodynamics (hydro)
# ──────────────────────────────────────────────────────────────

@derived("cs", ("hydro",), ("rho", "p"), "sound speed, sqrt(gamma * p / rho)")
def _cs(f: Frame) -> np.ndarray:
    return np.sqrt(f.info.gamma * f.col("p") / f.col("rho"))


@derived("mach", ("hydro",), ("rho", "p") + VEL, "Mach number, v / cs")
def _mach(f: Frame) -> np.ndarray:
    return f.get("v") / f.get("cs")


for _axis in ("x", "y", "z"):
    derived(f"mach{_axis}", ("hydro",), ("rho", "p", f"v{_axis}"), f"Mach number along {_axis}")(
        lambda f, _a=_axis: f.col(f"v{_a}") / f.get("cs")
    )


@derived("T", ("hydro",), ("rho", "p"), "temperature p / rho; unit 'K' gives Kelvin")
def _temperature(f: Frame) -> np.ndarray:
    return f.col("p") / f.col("rho")


@derived("etherm", ("hydro",), ("p", "level"), "thermal energy of the cell, p * volume / (gamma - 1)")
def _etherm(f: Frame) -> np.ndarray:
    return f.col("p") * f.get("volume") / (f.info.gamma - 1.0)


@derived("entropy_index", ("hydro",), ("rho", "p"), "adiabatic constant p / rho**gamma")
def _entropy_index(f: Frame) -> np.ndarray:
    return f.col("p") / f.col("rho") ** f.info.gamma


@derived("freefall_time", ("hydro",), ("rho",), "free-fall time sqrt(3 pi / (32 G rho))")
def _freefall_time(f: Frame) -> np.ndarray:
    return np.sqrt(3.0 * np.pi / (32.0 * f.G * f.col("rho")))


@derived("jeanslength", ("hydro",), ("rho", "p"), "Jeans length cs * sqrt(pi / (G rho))")
def _jeanslength(f: Frame) -> np.ndarray:
    return f.get("cs") * np.sqrt(np.pi / (f.G * f.col("rho")))


@derived("jeansmass", ("hydro",), ("rho", "p"), "Jeans mass 4/3 pi rho (jeanslength / 2)**3")
def _jeansmass(f: Frame) -> np.ndarray:
    return 4.0 / 3.0 * np.pi * f.col("rho") * (f.get("jeanslength") / 2.0) ** 3


# ──────────────────────────────────────────────────────────────
# Particles
# ──────────────────────────────────────────────────────────────

@derived("age", ("particles",), ("birth",), "ref_time - birth")
def _age(f: Frame) -> np.ndarray:
    return f.ref_time - f.col("birth")


# ──────────────────────────────────────────────────────────────
# Gravity
# ──────────────────────────────────────────────────────────────

ACC = ("ax", "ay", "az")


@derived("a_magnitude", ("gravity",), ACC, "acceleration magnitude")
def _a_magnitude(f: Frame) -> np.ndarray:
    return np.sqrt(f.col("ax") ** 2 + f.col("ay") ** 2 + f.col("az") ** 2)


@derived("escape_speed", ("gravity",), ("epot",), "sqrt(2 |epot|)")
def _escape_speed(f: Frame) -> np.ndarray:
    return np.sqrt(2.0 * np.abs(f.col("epot")))


@derived("ar_sphere", ("gravity",), ACC, "radial acceleration (spherical)")
def _ar_sphere(f: Frame) -> np.ndarray:
    x, y, z = f.positions()
    return _safe_divide(x * f.col("ax") + y * f.col("ay") + z * f.col("az"), f.get("r_sphere"))


@derived("ar_cylinder", ("gravity",), ACC, "radial acceleration (cylindrical)")
def _ar_cylinder(f: Frame) -> np.ndarray:
    x, y, _ = f.positions()
    return _safe_divide(x * f.col("ax") + y * f.col("ay"), f.get("r_cylinder"))


# ──────────────────────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────────────────────

def describe_variables(dataobject: Optional[Dataset] = None) -> Dict:
    """
    Registry dump. For a Dataset: ``{key: description}`` of its table columns
    and derived keys; without one: ``{kind: {key: description}}``.
    """
    if dataobject is None:
        return {kind: {k: e.description for k, e in sorted(entries.items())} for kind, entries in REGISTRY.items()}
    out = {name: "stored" for name in dataobject.columns}
    for key, entry in sorted(REGISTRY[dataobject.kind].items()):
        out[key] = entry.description
    return out


def _lookup(ds: Dataset, key: str):
    entry = REGISTRY[ds.kind].get(key)
    if entry is not None:
        missing = [c for c in entry.requires if c not in ds.table]
        if missing:
            raise UsageError(f"'{key}' needs column(s) {missing}, which were not loaded.")
        return entry
    if key in ds.table:
        return None
    raise UnknownKeyError(f"Unknown variable '{key}' for {ds.kind} data.")


def _check_mask(ds: Dataset, mask) -> Optional[np.ndarray]:
    if mask is None:
        return None
    mask = np.asarray(mask)
    if mask.dtype != np.bool_:
        raise UsageError(f"mask must be boolean, got dtype {mask.dtype}.")
    if mask.shape != (len(ds),):
        raise UsageError(f"mask length {mask.size} does not match the {len(ds)} rows of the dataset.")
    return mask


def getvar(
    dataobject: Optional[Dataset] = None,
    var: Union[None, str, Sequence[str]] = None,
    unit: Union[str, Sequence[str]] = "standard",
    mask=None,
    center=(0.0, 0.0, 0.0),
    center_unit: str = "standard",
    ref_time: Optional[float] = None,
):
    """
    Return stored or derived quantities of a Dataset.

    Args:
        dataobject: any Dataset (a selection recomputes on its rows only)
        var: a key or a list of keys; None returns the registry dump
        unit: unit of the result(s); one unit per key when ``var`` is a list
        mask: boolean array with one entry per row; only True rows are returned
        center: three coordinates in ``center_unit`` or "bc"/"boxcenter"
        center_unit: "standard" (box-normalized) or any unit of the scale table
        ref_time: reference time for ``age`` in code units (default: snapshot time)

    Returns:
        ndarray for a single key, ``{key: ndarray}`` for a list of keys.
        Arrays of one call are row-aligned.

    Raises:
        UnknownKeyError: unknown key or unit
        UsageError: unit/key length mismatch, bad mask, center or missing columns
    """
    if var is None:
        return describe_variables(dataobject)
    if dataobject is None:
        raise UsageError("getvar needs a Dataset to resolve variables.")

    single = isinstance(var, str)
    keys: List[str] = [var] if single else list(var)

    if isinstance(unit, str):
        units = [unit] * len(keys)
    else:
        units = list(unit)
        if len(units) != len(keys):
            raise UsageError(f"{len(units)} units given for {len(keys)} variables.")

    entries = [_lookup(dataobject, key) for key in keys]
    factors = [resolve(dataobject.scale, u) for u in units]
    mask = _check_mask(dataobject, mask)
    center = normalize_center(center, center_unit, dataobject.boxlen, dataobject.scale)

    logger.debug("getvar %s on %d row(s) of %s data", keys, len(dataobject), dataobject.kind)
    frame = Frame(
        ds=dataobject,
        mask=mask,
        center=center,
        ref_time=dataobject.info.time if ref_time is None else float(ref_time),
    )

    out: Dict[str, np.ndarray] = {}
    for key, entry, factor in zip(keys, entries, factors):
        values = frame.get(key)
        if factor != 1.0:
            values = values * factor
        elif entry is None:
            values = values.copy()
        out[key] = values

    return out[keys[0]] if single else out
