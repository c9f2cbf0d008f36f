# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Logging setup and the option types shared by the loader, the region selector
and the projection engine.

Option types are frozen dataclasses validated once in ``__post_init__``;
nothing is patched onto them afterwards.

──────────────────────────────────────────────────────────────────────────────
LENGTH CONVENTION
──────────────────────────────────────────────────────────────────────────────
Ranges, centers and radii given in the ``"standard"`` unit are box-normalized
([0, 1] spans the whole box). Any other unit is physical and converted with
``value / scale[unit] / boxlen``.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, Union

from .errors import UsageError
from .scales import resolve

logger = logging.getLogger("drishti")

BOX_CENTER_MARKERS = ("bc", "boxcenter")
DIRECTIONS = ("x", "y", "z")
MODES = ("standard", "weighted", "sum", "mean", "max")
WEIGHTINGS = ("mass", "volume")
PARTICLE_FAMILIES = {
    "other_tracer": -5,
    "debris_tracer": -4,
    "cloud_tracer": -3,
    "star_tracer": -2,
    "dm_tracer": -1,
    "gas_tracer": 0,
    "dm": 1,
    "star": 2,
    "cloud": 3,
    "debris": 4,
    "other": 5,
    "undefined": 127,
}

Range = Optional[Tuple[Optional[float], Optional[float]]]
Center = Union[str, Sequence[Union[float, str]]]


def setup_logging(verbose: bool) -> None:
    """
    Configure global logging.

    Args:
        verbose: If True, set DEBUG level, otherwise INFO.
    """

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )

    logging.getLogger("h5py").setLevel(logging.WARNING)


def _check_range(name: str, r: Range) -> Tuple[Optional[float], Optional[float]]:
    if r is None:
        return (None, None)
    if len(r) != 2:
        raise UsageError(f"{name} must be a (min, max) pair, got {r!r}.")
    lo, hi = r
    lo = None if lo is None else float(lo)
    hi = None if hi is None else float(hi)
    if lo is not None and hi is not None and lo > hi:
        raise UsageError(f"{name} is inverted: min {lo} > max {hi}.")
    return (lo, hi)


def normalize_center(center: Center, unit: str, boxlen: float, scale) -> Tuple[float, float, float]:
    """
    Return ``center`` as box-normalized coordinates.

    ``center`` is either a box-center marker (``"bc"`` / ``"boxcenter"``) or
    three coordinates; each coordinate may itself be a marker, which selects
    the box center on that axis only. None is the box origin.
    """
    if center is None:
        return (0.0, 0.0, 0.0)
    if isinstance(center, str):
        if center not in BOX_CENTER_MARKERS:
            raise UsageError(f"Unknown center marker '{center}'; use one of {BOX_CENTER_MARKERS}.")
        return (0.5, 0.5, 0.5)

    if len(center) != 3:
        raise UsageError(f"center must have 3 coordinates, got {len(center)}.")

    factor = resolve(scale, unit)
    out = []
    for c in center:
        if isinstance(c, str):
            if c not in BOX_CENTER_MARKERS:
                raise UsageError(f"Unknown center marker '{c}'; use one of {BOX_CENTER_MARKERS}.")
            out.append(0.5)
        elif unit == "standard":
            out.append(float(c))
        else:
            out.append(float(c) / factor / boxlen)
    return (out[0], out[1], out[2])


def to_box_length(value: float, unit: str, boxlen: float, scale) -> float:
    """Convert a length in ``unit`` to a box-normalized length."""
    if unit == "standard":
        return float(value)
    return float(value) / resolve(scale, unit) / boxlen


@dataclass(frozen=True)
class SpatialRange:
    """
    Axis ranges relative to ``center``; a None endpoint leaves that side open.
    """

    xrange: Range = None
    yrange: Range = None
    zrange: Range = None
    center: Center = (0.0, 0.0, 0.0)
    unit: str = "standard"

    def __post_init__(self):
        object.__setattr__(self, "xrange", _check_range("xrange", self.xrange))
        object.__setattr__(self, "yrange", _check_range("yrange", self.yrange))
        object.__setattr__(self, "zrange", _check_range("zrange", self.zrange))

    @property
    def is_full_box(self) -> bool:
        return all(r == (None, None) for r in (self.xrange, self.yrange, self.zrange))

    def normalized(self, boxlen: float, scale) -> Tuple[float, float, float, float, float, float]:
        """
        Return (xmin, xmax, ymin, ymax, zmin, zmax) in box-normalized units,
        clipped to [0, 1].
        """
        resolve(scale, self.unit)
        center = normalize_center(self.center, self.unit, boxlen, scale)

        bounds = []
        for axis, r in enumerate((self.xrange, self.yrange, self.zrange)):
            lo, hi = r
            lo = 0.0 if lo is None else center[axis] + to_box_length(lo, self.unit, boxlen, scale)
            hi = 1.0 if hi is None else center[axis] + to_box_length(hi, self.unit, boxlen, scale)
            bounds.extend([max(lo, 0.0), min(hi, 1.0)])
        return tuple(bounds)


@dataclass(frozen=True)
class LoadOptions:
    """Options of one loader call."""

    vars: Optional[Tuple[str, ...]] = None
    lmin: Optional[int] = None
    lmax: Optional[int] = None
    ranges: SpatialRange = field(default_factory=SpatialRange)
    nthreads: int = 1

    def __post_init__(self):
        if self.vars is not None:
            if isinstance(self.vars, str):
                object.__setattr__(self, "vars", (self.vars,))
            else:
                object.__setattr__(self, "vars", tuple(self.vars))
        if self.nthreads is None or int(self.nthreads) < 1:
            raise UsageError(f"nthreads must be >= 1, got {self.nthreads}.")
        if self.lmin is not None and self.lmax is not None and self.lmin > self.lmax:
            raise UsageError(f"lmin {self.lmin} > lmax {self.lmax}.")

    def check_levels(self, levelmin: int, levelmax: int) -> Tuple[int, int]:
        """Return (lmin, lmax) after checking them against the snapshot's level range."""
        lmin = levelmin if self.lmin is None else int(self.lmin)
        lmax = levelmax if self.lmax is None else int(self.lmax)
        for name, value in (("lmin", lmin), ("lmax", lmax)):
            if not levelmin <= value <= levelmax:
                raise UsageError(
                    f"{name}={value} outside the snapshot level range [{levelmin}, {levelmax}]."
                )
        return lmin, lmax


@dataclass(frozen=True)
class ProjectionOptions:
    """Options of one projection call."""

    res: Optional[int] = None
    pxsize: Optional[float] = None
    pxsize_unit: str = "standard"
    direction: str = "z"
    mode: str = "standard"
    weighting: str = "mass"
    family: Optional[Union[str, Sequence[str]]] = None
    lmax: Optional[int] = None

    def __post_init__(self):
        if self.res is not None and (int(self.res) != self.res or self.res <= 0):
            raise UsageError(f"res must be a positive integer, got {self.res}.")
        if self.pxsize is not None and self.pxsize <= 0:
            raise UsageError(f"pxsize must be positive, got {self.pxsize}.")
        if self.direction not in DIRECTIONS:
            raise UsageError(f"Unknown direction '{self.direction}'; use one of {DIRECTIONS}.")
        if self.mode not in MODES:
            raise UsageError(f"Unknown mode '{self.mode}'; use one of {MODES}.")
        if self.weighting not in WEIGHTINGS:
            raise UsageError(f"Unknown weighting '{self.weighting}'; use one of {WEIGHTINGS}.")
        for fam in self.families:
            if fam not in PARTICLE_FAMILIES:
                raise UsageError(
                    f"Unknown particle family '{fam}'; use one of {sorted(PARTICLE_FAMILIES)}."
                )

    @property
    def families(self) -> Tuple[str, ...]:
        if self.family is None:
            return ()
        if isinstance(self.family, str):
            return (self.family,)
        return tuple(self.family)

    @property
    def accumulation(self) -> str:
        """Mode with the ``weighted`` alias folded into ``standard``."""
        return "standard" if self.mode == "weighted" else self.mode
