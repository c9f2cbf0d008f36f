# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Unit system for RAMSES outputs.

RAMSES stores every quantity in code units. The info file gives four base
conversion factors (length, density, time and the derived mass); everything
else is derived here from those factors and a fixed table of physical
constants (cgs).

──────────────────────────────────────────────────────────────────────────────
LAYOUTS
──────────────────────────────────────────────────────────────────────────────
- current: the full table built by ``create_scales``.
- legacy:  the 32-field table written by older tools. ``to_legacy`` and
  ``from_legacy`` remap between the two without touching shared values.

"""

from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

from .errors import UnknownKeyError, UsageError


@dataclass(frozen=True)
class PhysicalConstants:
    """Physical constants in cgs units."""

    Au: float = 1.495978707e13  # cm
    pc: float = 3.08567758128e18  # cm
    ly: float = 9.4607304725808e17  # cm
    Msol: float = 1.9891e33  # g
    Rsol: float = 6.96e10  # cm
    Lsol: float = 3.828e33  # erg/s
    Mearth: float = 5.9722e27  # g
    Mjupiter: float = 1.89813e30  # g
    me: float = 9.1093837015e-28  # g
    mp: float = 1.67262192369e-24  # g
    mn: float = 1.67492749804e-24  # g
    mH: float = 1.66e-24  # g
    amu: float = 1.66053906660e-24  # g
    NA: float = 6.02214076e23  # 1/mol
    c: float = 2.99792458e10  # cm/s
    h: float = 6.62607015e-27  # erg s
    G: float = 6.67430e-8  # cm^3 / (g s^2)
    kB: float = 1.380649e-16  # erg/K
    sigma_SB: float = 5.670374419e-5  # erg / (cm^2 s K^4)
    sigma_T: float = 6.6524587321e-25  # cm^2
    eV: float = 1.602176634e-12  # erg
    yr: float = 3.15576e7  # s
    day: float = 86400.0  # s
    hr: float = 3600.0  # s
    min: float = 60.0  # s
    X_frac: float = 0.76  # hydrogen mass fraction

    @property
    def kpc(self) -> float:
        return self.pc * 1e3

    @property
    def Mpc(self) -> float:
        return self.pc * 1e6

    @property
    def Myr(self) -> float:
        return self.yr * 1e6

    @property
    def Gyr(self) -> float:
        return self.yr * 1e9

    @property
    def mu(self) -> float:
        """Mean molecular weight used for the temperature conversion."""
        return 1.0 / self.X_frac


LEGACY_FIELDS: Tuple[str, ...] = (
    "Mpc", "kpc", "pc", "mpc", "ly", "Au", "km", "m", "cm", "mm", "um",
    "Msol_pc3", "g_cm3", "Msol_pc2", "g_cm2",
    "Gyr", "Myr", "yr", "s", "ms",
    "Msol", "Mearth", "Mjupiter", "g",
    "km_s", "m_s", "cm_s",
    "nH", "erg", "g_cms2", "T_mu", "Ba",
)

LAYOUTS = ("current", "legacy")


class ScaleSet(Mapping):
    """
    Read-only mapping of unit name -> factor converting code units to that unit.

    Entries are also reachable as attributes (``scale.Msol``).
    """

    __slots__ = ("_values", "_layout")

    def __init__(self, values: Mapping[str, float], layout: str = "current"):
        if layout not in LAYOUTS:
            raise UsageError(f"Unknown scale layout '{layout}'; expected one of {LAYOUTS}.")
        object.__setattr__(self, "_values", MappingProxyType({k: float(v) for k, v in values.items()}))
        object.__setattr__(self, "_layout", layout)

    @property
    def layout(self) -> str:
        return self._layout

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __getattr__(self, name: str) -> float:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name, value):
        raise AttributeError("ScaleSet is immutable")

    def __reduce__(self):
        return (ScaleSet, (dict(self._values), self._layout))

    def __repr__(self) -> str:
        return f"ScaleSet(layout={self._layout!r}, units={len(self)})"


def create_scales(
    unit_l: float,
    unit_d: float,
    unit_t: float,
    unit_m: Optional[float] = None,
    constants: Optional[PhysicalConstants] = None,
) -> ScaleSet:
    """
    Derive the full table of unit factors from the base code-unit factors.

    Args:
        unit_l: code length in cm
        unit_d: code density in g/cm^3
        unit_t: code time in s
        unit_m: code mass in g (defaults to unit_d * unit_l**3)
        constants: physical constants (defaults to ``PhysicalConstants()``)

    Returns:
        ScaleSet in the current layout.
    """
    c = constants if constants is not None else PhysicalConstants()
    if unit_m is None:
        unit_m = unit_d * unit_l**3

    unit_v = unit_l / unit_t
    s: Dict[str, float] = {}

    # length
    s["Mpc"] = unit_l / c.pc / 1e6
    s["kpc"] = unit_l / c.pc / 1e3
    s["pc"] = unit_l / c.pc
    s["mpc"] = unit_l / c.pc * 1e3
    s["ly"] = unit_l / c.ly
    s["Au"] = unit_l / c.Au
    s["Rsol"] = unit_l / c.Rsol
    s["km"] = unit_l / 1e5
    s["m"] = unit_l / 1e2
    s["cm"] = unit_l
    s["mm"] = unit_l * 10.0
    s["um"] = unit_l * 1e4
    for name in ("Mpc", "kpc", "pc", "mpc", "ly", "Au", "km", "m", "cm", "mm", "um"):
        s[name + "3"] = s[name] ** 3

    # density / surface density
    s["Msol_pc3"] = unit_d * c.pc**3 / c.Msol
    s["Msun_pc3"] = s["Msol_pc3"]
    s["g_cm3"] = unit_d
    s["Msol_pc2"] = unit_d * unit_l * c.pc**2 / c.Msol
    s["Msun_pc2"] = s["Msol_pc2"]
    s["g_cm2"] = unit_d * unit_l

    # time
    s["Gyr"] = unit_t / c.yr / 1e9
    s["Myr"] = unit_t / c.yr / 1e6
    s["yr"] = unit_t / c.yr
    s["day"] = unit_t / c.day
    s["hr"] = unit_t / c.hr
    s["min"] = unit_t / c.min
    s["s"] = unit_t
    s["ms"] = unit_t * 1e3

    # mass
    s["Msol"] = unit_m / c.Msol
    s["Msun"] = s["Msol"]
    s["Mearth"] = unit_m / c.Mearth
    s["Mjupiter"] = unit_m / c.Mjupiter
    s["g"] = unit_m

    # velocity
    s["km_s"] = unit_v / 1e5
    s["m_s"] = unit_v / 1e2
    s["cm_s"] = unit_v

    # number densities
    s["nH"] = c.X_frac / c.mH * unit_d
    s["cm_3"] = 1.0 / unit_l**3
    s["pc_3"] = s["cm_3"] * c.pc**3
    s["n_e"] = s["nH"]

    # energy
    s["erg"] = unit_m * unit_v**2
    s["J"] = s["erg"] / 1e7
    s["eV"] = s["erg"] / c.eV
    s["keV"] = s["eV"] / 1e3
    s["MeV"] = s["eV"] / 1e6
    s["erg_g"] = unit_v**2
    s["J_kg"] = s["erg_g"] / 1e4
    s["km2_s2"] = s["erg_g"] / 1e10

    # pressure / force density
    s["g_cms2"] = unit_m / (unit_l * unit_t**2)
    s["Ba"] = unit_m / unit_l / unit_t**2
    s["g_cm_s2"] = s["Ba"]
    s["p_kB"] = s["Ba"] / c.kB
    s["K_cm3"] = s["p_kB"]

    # temperature
    s["T_mu"] = c.mH / c.kB * unit_v**2
    s["K_mu"] = s["T_mu"]
    s["T"] = s["T_mu"] * c.mu
    s["K"] = s["T"]

    # entropy
    s["erg_g_K"] = s["erg_g"] / c.kB
    s["keV_cm2"] = s["erg"] / unit_m * unit_d * unit_l**2 / c.eV / 1e3
    s["erg_K"] = s["erg"] / c.kB
    s["J_K"] = s["erg_K"] / 1e7
    s["erg_cm3_K"] = s["erg_g_K"] * unit_d

    # angular momentum
    s["g_cm2_s"] = unit_m * unit_l**2 / unit_t
    s["J_s"] = s["g_cm2_s"] / 1e7
    s["Msol_pc_km_s"] = s["Msol"] * s["pc"] * s["km_s"]

    # magnetic field
    s["Gauss"] = math.sqrt(4.0 * math.pi * unit_m / (unit_l * unit_t**2))
    s["muG"] = s["Gauss"] * 1e6
    s["Tesla"] = s["Gauss"] * 1e-4

    # luminosity / cooling / flux
    s["erg_s"] = s["erg"] / unit_t
    s["Lsol"] = s["erg_s"] / c.Lsol
    s["Lsun"] = s["Lsol"]
    s["erg_g_s"] = s["erg_g"] / unit_t
    s["erg_cm3_s"] = unit_m / (unit_l * unit_t**3)
    s["erg_cm2_s"] = unit_m / unit_t**3
    s["Jy"] = s["erg_cm2_s"] / 1e-23
    s["mJy"] = s["Jy"] * 1e3

    # column density
    s["atoms_cm2"] = unit_d * unit_l / c.mH
    s["NH_cm2"] = s["atoms_cm2"]

    # acceleration
    s["cm_s2"] = unit_l / unit_t**2
    s["m_s2"] = s["cm_s2"] / 1e2
    s["km_s2"] = s["cm_s2"] / 1e5
    s["pc_Myr2"] = unit_l / c.pc / (unit_t / c.Myr) ** 2
    s["dyne"] = unit_m * s["cm_s2"]

    # dimensionless / angles
    s["dimensionless"] = 1.0
    s["rad"] = 1.0
    s["deg"] = 180.0 / math.pi

    return ScaleSet(s, layout="current")


def resolve(scale: Mapping[str, float], unit: str) -> float:
    """
    Return the factor for ``unit``; ``"standard"`` means code units (1.0).

    Raises:
        UnknownKeyError: unit not present in the scale table.
    """
    if unit is None or unit == "standard":
        return 1.0
    try:
        return float(scale[unit])
    except KeyError:
        raise UnknownKeyError(f"Unknown unit '{unit}'.") from None


def convert(scale: Mapping[str, float], from_unit: str, to_unit: str) -> float:
    """Factor turning a value expressed in ``from_unit`` into ``to_unit``."""
    return resolve(scale, to_unit) / resolve(scale, from_unit)


def to_legacy(scale: ScaleSet) -> ScaleSet:
    """Project a current-layout ScaleSet onto the legacy fields."""
    if scale.layout == "legacy":
        return scale
    return ScaleSet({k: scale[k] for k in LEGACY_FIELDS}, layout="legacy")


def from_legacy(scale: ScaleSet) -> ScaleSet:
    """
    Expand a legacy ScaleSet to the current layout.

    The base factors are recovered from the ``cm``, ``g_cm3``, ``s`` and ``g``
    entries; fields shared with the legacy layout keep their stored values.
    """
    if scale.layout == "current":
        return scale
    values = dict(create_scales(scale["cm"], scale["g_cm3"], scale["s"], scale["g"]))
    values.update(scale)
    return ScaleSet(values, layout="current")
