# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Geometric row selection: ``subregion`` and ``shellregion``.

Shapes are ``RegionPredicate`` variants with two vectorized tests over
absolute positions in code length:

- ``contains(x, y, z)``: the point lies inside the shape
- ``overlaps(x, y, z, half)``: the cube of half-size ``half`` around the
  point shares interior with the shape

AMR cells are selected with ``overlaps`` by default (``cell=True``), which
for cuboids is the loader's index rule; ``cell=False`` tests the cell centre.
Particles and clumps always use ``contains``. ``not_`` complements a
predicate and ``band(inner, outer)`` keeps what lies inside ``outer`` but
outside ``inner``. Selections return a new Dataset with the same info, scale
and level bounds, so they compose by chaining.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .config import DIRECTIONS, SpatialRange, normalize_center, to_box_length
from .dataset import Dataset
from .errors import UsageError

logger = logging.getLogger("drishti")

SHAPES = ("cuboid", "sphere", "cylinder")
SHELL_SHAPES = ("sphere", "cylinder")

Point = Tuple[float, float, float]


def _gap(d: np.ndarray, half) -> np.ndarray:
    """Distance from 0 to the interval ``[d - half, d + half]``."""
    return np.maximum(np.abs(d) - half, 0.0)


class RegionPredicate:
    """Inclusion test over row positions."""

    def contains(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def overlaps(self, x: np.ndarray, y: np.ndarray, z: np.ndarray, half: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __invert__(self) -> "RegionPredicate":
        return not_(self)


@dataclass(frozen=True)
class Cuboid(RegionPredicate):
    xmin: float = -np.inf
    xmax: float = np.inf
    ymin: float = -np.inf
    ymax: float = np.inf
    zmin: float = -np.inf
    zmax: float = np.inf

    def contains(self, x, y, z):
        return (
            (x >= self.xmin) & (x <= self.xmax)
            & (y >= self.ymin) & (y <= self.ymax)
            & (z >= self.zmin) & (z <= self.zmax)
        )

    def overlaps(self, x, y, z, half):
        return (
            (x + half > self.xmin) & (x - half < self.xmax)
            & (y + half > self.ymin) & (y - half < self.ymax)
            & (z + half > self.zmin) & (z - half < self.zmax)
        )


@dataclass(frozen=True)
class Sphere(RegionPredicate):
    center: Point
    radius: float

    def contains(self, x, y, z):
        cx, cy, cz = self.center
        return (x - cx) ** 2 + (y - cy) ** 2 + (z - cz) ** 2 <= self.radius**2

    def overlaps(self, x, y, z, half):
        cx, cy, cz = self.center
        gx, gy, gz = _gap(x - cx, half), _gap(y - cy, half), _gap(z - cz, half)
        return gx**2 + gy**2 + gz**2 < self.radius**2


@dataclass(frozen=True)
class Cylinder(RegionPredicate):
    """Cylinder along ``direction``, extending ``height`` on both sides of the center."""

    center: Point
    radius: float
    height: float
    direction: str = "z"

    def _split(self, x, y, z):
        d = [x - self.center[0], y - self.center[1], z - self.center[2]]
        along = d.pop(DIRECTIONS.index(self.direction))
        return d[0], d[1], along

    def contains(self, x, y, z):
        a, b, along = self._split(x, y, z)
        return (a**2 + b**2 <= self.radius**2) & (np.abs(along) <= self.height)

    def overlaps(self, x, y, z, half):
        a, b, along = self._split(x, y, z)
        ga, gb = _gap(a, half), _gap(b, half)
        return (ga**2 + gb**2 < self.radius**2) & (np.abs(along) - half < self.height)


@dataclass(frozen=True)
class Not(RegionPredicate):
    predicate: RegionPredicate

    def contains(self, x, y, z):
        return ~self.predicate.contains(x, y, z)

    def overlaps(self, x, y, z, half):
        return ~self.predicate.overlaps(x, y, z, half)


@dataclass(frozen=True)
class Band(RegionPredicate):
    inner: RegionPredicate
    outer: RegionPredicate

    def contains(self, x, y, z):
        return self.outer.contains(x, y, z) & ~self.inner.contains(x, y, z)

    def overlaps(self, x, y, z, half):
        return self.outer.overlaps(x, y, z, half) & ~self.inner.overlaps(x, y, z, half)


def not_(predicate: RegionPredicate) -> RegionPredicate:
    return Not(predicate)


def band(inner: RegionPredicate, outer: RegionPredicate) -> RegionPredicate:
    return Band(inner, outer)


def select_region(dataobject: Dataset, predicate: RegionPredicate, cell: bool = True) -> Dataset:
    """
    Rows of ``dataobject`` satisfying ``predicate``.

    With ``cell=True`` AMR cells are kept when their volume overlaps the
    shape; otherwise (and for particles and clumps) by position.
    """
    x, y, z = dataobject.positions()
    if cell and dataobject.is_cells:
        half = dataobject.info.cellsize(dataobject.column("level")) / 2.0
        mask = predicate.overlaps(x, y, z, half)
    else:
        mask = predicate.contains(x, y, z)
    out = dataobject.select(np.asarray(mask, dtype=bool))
    logger.debug("Region %s kept %d of %d rows", predicate, len(out), len(dataobject))
    return out


def _center_code(dataobject: Dataset, center, unit: str) -> Point:
    c = normalize_center(center, unit, dataobject.boxlen, dataobject.scale)
    return (c[0] * dataobject.boxlen, c[1] * dataobject.boxlen, c[2] * dataobject.boxlen)


def _length_code(dataobject: Dataset, name: str, value: Optional[float], unit: str) -> float:
    if value is None:
        raise UsageError(f"'{name}' is required for this shape.")
    if value < 0:
        raise UsageError(f"'{name}' must be non-negative, got {value}.")
    return to_box_length(value, unit, dataobject.boxlen, dataobject.scale) * dataobject.boxlen


def _signed_length(dataobject: Dataset, value: float, unit: str) -> float:
    return to_box_length(value, unit, dataobject.boxlen, dataobject.scale) * dataobject.boxlen


def _check_direction(direction: str) -> None:
    if direction not in DIRECTIONS:
        raise UsageError(f"Unknown direction '{direction}'; use one of {DIRECTIONS}.")


def make_shape(
    dataobject: Dataset,
    shape: str,
    xrange=None,
    yrange=None,
    zrange=None,
    center=(0.0, 0.0, 0.0),
    radius: Optional[float] = None,
    height: Optional[float] = None,
    direction: str = "z",
    range_unit: str = "standard",
) -> RegionPredicate:
    """Build the predicate of a named shape with lengths in ``range_unit``."""
    if shape not in SHAPES:
        raise UsageError(f"Unknown shape '{shape}'; use one of {SHAPES}.")

    if shape == "cuboid":
        ranges = SpatialRange(xrange, yrange, zrange, center, range_unit)
        c = _center_code(dataobject, center, range_unit)
        bounds = []
        for axis, (lo, hi) in enumerate((ranges.xrange, ranges.yrange, ranges.zrange)):
            bounds.append(-np.inf if lo is None else c[axis] + _signed_length(dataobject, lo, range_unit))
            bounds.append(np.inf if hi is None else c[axis] + _signed_length(dataobject, hi, range_unit))
        return Cuboid(*bounds)

    c = _center_code(dataobject, center, range_unit)
    r = _length_code(dataobject, "radius", radius, range_unit)
    if shape == "sphere":
        return Sphere(c, r)

    _check_direction(direction)
    h = _length_code(dataobject, "height", height, range_unit)
    return Cylinder(c, r, h, direction)


def subregion(
    dataobject: Dataset,
    shape: str = "cuboid",
    xrange=None,
    yrange=None,
    zrange=None,
    center=(0.0, 0.0, 0.0),
    radius: Optional[float] = None,
    height: Optional[float] = None,
    direction: str = "z",
    range_unit: str = "standard",
    cell: bool = True,
    inverse: bool = False,
) -> Dataset:
    """
    Select the rows inside (or, with ``inverse=True``, outside) a shape.

    Args:
        dataobject: any Dataset
        shape: "cuboid", "sphere" or "cylinder"
        xrange, yrange, zrange: cuboid ranges relative to ``center``; None is open
        center: three coordinates or "bc"/"boxcenter"
        radius: sphere/cylinder radius
        height: cylinder half-height along ``direction``
        direction: cylinder axis "x", "y" or "z"
        range_unit: "standard" (box-normalized) or a unit of the scale table
        cell: select AMR cells overlapping the shape (True) or by centre (False)
        inverse: keep the complement

    Returns:
        Dataset
    """
    predicate = make_shape(
        dataobject, shape, xrange, yrange, zrange, center, radius, height, direction, range_unit
    )
    if inverse:
        predicate = not_(predicate)
    return select_region(dataobject, predicate, cell=cell)


def shellregion(
    dataobject: Dataset,
    shape: str = "sphere",
    radius: Tuple[float, float] = None,
    height: Optional[float] = None,
    center=(0.0, 0.0, 0.0),
    direction: str = "z",
    range_unit: str = "standard",
    cell: bool = True,
    inverse: bool = False,
) -> Dataset:
    """
    Select the shell between ``radius[0]`` (excluded) and ``radius[1]``
    (included) of a sphere or cylinder.

    With ``cell=True`` a cell belongs to the shell when it overlaps the outer
    shape and does not overlap the inner one.
    """
    if shape not in SHELL_SHAPES:
        raise UsageError(f"Unknown shell shape '{shape}'; use one of {SHELL_SHAPES}.")
    if radius is None or len(radius) != 2:
        raise UsageError("radius must be an (inner, outer) pair.")
    inner_r, outer_r = radius
    if inner_r > outer_r:
        raise UsageError(f"Inner radius {inner_r} exceeds outer radius {outer_r}.")

    inner = make_shape(dataobject, shape, center=center, radius=inner_r, height=height,
                       direction=direction, range_unit=range_unit)
    outer = make_shape(dataobject, shape, center=center, radius=outer_r, height=height,
                       direction=direction, range_unit=range_unit)
    predicate = band(inner, outer)
    if inverse:
        predicate = not_(predicate)
    return select_region(dataobject, predicate, cell=cell)
