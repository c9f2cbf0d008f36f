# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Rasterize a Dataset onto a uniform 2D pixel grid along one axis.

──────────────────────────────────────────────────────────────────────────────
DEPOSIT RULES
──────────────────────────────────────────────────────────────────────────────
- Rows are pre-filtered against the extent on all three axes: cells by the
  loader's index-overlap rule, particles by position. The axis along
  ``direction`` is never binned.
- A cell covers the square ``center +- cellsize / 2`` in the pixel plane. Its
  footprint is clipped to the grid and split over the pixels it overlaps;
  pixel intervals are half-open ``[i, i + 1)`` and the per-axis overlap
  fractions are normalized over the clipped footprint, so every selected
  cell deposits exactly its whole value. Sum-mode totals therefore equal the
  input totals at any resolution.
- A particle deposits into the one pixel containing it.
- Per pixel: ``sum`` adds values; ``standard``/``weighted`` divides the
  mass- or volume-weighted sum by the accumulated weight; ``mean`` divides by
  the accumulated overlap; ``max`` keeps the largest contributing value.
  Pixels without contributions are 0.

"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import DIRECTIONS, PARTICLE_FAMILIES, ProjectionOptions, SpatialRange, to_box_length
from .dataset import Dataset
from .errors import UsageError
from .getvar import _check_mask, _lookup, getvar
from .loader import cell_index_bounds
from .scales import resolve

logger = logging.getLogger("drishti")

# pixel axes per projection direction
PIXEL_AXES = {"x": (1, 2), "y": (0, 2), "z": (0, 1)}

# surface density: projected mass per pixel area
SURFACE_DENSITY = "sd"


@dataclass(frozen=True)
class ProjectionResult:
    """
    Pixel grids of one projection.

    ``maps[var]`` has shape ``(n_a, n_b)``: the first index runs along the
    first pixel axis (``axes[0]``), the second along ``axes[1]``.
    ``extent`` is ``(a_min, a_max, b_min, b_max)`` in code length.
    """

    maps: Dict[str, np.ndarray]
    units: Dict[str, str]
    extent: Tuple[float, float, float, float]
    pixsize: float
    direction: str
    axes: Tuple[str, str]
    mode: str
    weighting: str
    weight_map: np.ndarray
    lmax: int
    boxlen: float
    ranges: Tuple[float, float, float, float, float, float]
    scale: Dict[str, float] = field(default_factory=dict, repr=False)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.weight_map.shape

    def extent_in(self, unit: str) -> Tuple[float, float, float, float]:
        """Extent converted from code length to ``unit``."""
        factor = resolve(self.scale, unit)
        return tuple(e * factor for e in self.extent)

    def pixsize_in(self, unit: str) -> float:
        return self.pixsize * resolve(self.scale, unit)

    def total(self, var: str) -> float:
        return float(self.maps[var].sum())


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def _grid_geometry(bounds, axes, boxlen, opts: ProjectionOptions, lmax: int, scale):
    """Return (origin_a, origin_b, pixsize, n_a, n_b) in code length."""
    a0, a1 = bounds[2 * axes[0]] * boxlen, bounds[2 * axes[0] + 1] * boxlen
    b0, b1 = bounds[2 * axes[1]] * boxlen, bounds[2 * axes[1] + 1] * boxlen
    len_a, len_b = a1 - a0, b1 - b0

    if opts.pxsize is not None:
        pixsize = to_box_length(opts.pxsize, opts.pxsize_unit, boxlen, scale) * boxlen
    elif opts.res is not None:
        pixsize = max(len_a, len_b) / opts.res
    else:
        pixsize = boxlen / 2**lmax

    if pixsize <= 0:
        raise UsageError("The projected extent has zero size.")

    n_a = max(1, int(np.ceil(len_a / pixsize - 1e-9)))
    n_b = max(1, int(np.ceil(len_b / pixsize - 1e-9)))
    return a0, b0, pixsize, n_a, n_b


def _axis_overlaps(lo: np.ndarray, hi: np.ndarray, n: int) -> Tuple[List[np.ndarray], List[np.ndarray]]:
    """
    Split the intervals ``[lo, hi)`` (in pixel units) over the pixels
    ``[i, i + 1)``, ``0 <= i < n``.

    Returns per-offset lists of pixel indices and normalized overlap fractions.
    """
    lo = np.clip(lo, 0.0, n)
    hi = np.clip(hi, 0.0, n)
    length = hi - lo
    first = np.minimum(np.floor(lo).astype(np.int64), n - 1)
    span = int(np.ceil((length.max() if length.size else 0.0))) + 1

    indices, fractions = [], []
    for o in range(span):
        i = first + o
        overlap = np.minimum(hi, i + 1) - np.maximum(lo, i)
        overlap = np.where((i < n) & (overlap > 0), overlap, 0.0)
        frac = np.zeros_like(overlap)
        np.divide(overlap, length, out=frac, where=length > 0)
        indices.append(np.minimum(i, n - 1))
        fractions.append(frac)
    return indices, fractions


class _Accumulator:
    """Per-call pixel buffers for all variables."""

    def __init__(self, keys: Sequence[str], shape: Tuple[int, int], mode: str):
        self.mode = mode
        self.weight = np.zeros(shape)
        if mode == "max":
            self.grids = {k: np.full(shape, -np.inf) for k in keys}
        else:
            self.grids = {k: np.zeros(shape) for k in keys}

    def add(self, ia, ib, frac, values: Dict[str, np.ndarray], weight: np.ndarray) -> None:
        hit = frac > 0
        if not hit.any():
            return
        ia, ib, frac, w = ia[hit], ib[hit], frac[hit], weight[hit]
        np.add.at(self.weight, (ia, ib), w * frac)
        for key, v in values.items():
            v = v[hit]
            if self.mode == "max":
                np.maximum.at(self.grids[key], (ia, ib), v)
            elif self.mode == "sum":
                np.add.at(self.grids[key], (ia, ib), v * frac)
            else:
                np.add.at(self.grids[key], (ia, ib), v * w * frac)

    def finish(self) -> Dict[str, np.ndarray]:
        out = {}
        for key, grid in self.grids.items():
            if self.mode == "max":
                grid = np.where(np.isfinite(grid), grid, 0.0)
            elif self.mode != "sum":
                result = np.zeros_like(grid)
                np.divide(grid, self.weight, out=result, where=self.weight > 0)
                grid = result
            out[key] = grid
        return out


def projection(
    dataobject: Dataset,
    var: Union[str, Sequence[str]],
    unit: Union[None, str, Sequence[str]] = None,
    res: Optional[int] = None,
    pxsize: Optional[float] = None,
    pxsize_unit: str = "standard",
    direction: str = "z",
    xrange=None,
    yrange=None,
    zrange=None,
    center=(0.0, 0.0, 0.0),
    range_unit: str = "standard",
    lmax: Optional[int] = None,
    mode: str = "standard",
    weighting: Optional[str] = None,
    mask=None,
    family: Optional[Union[str, Sequence[str]]] = None,
) -> ProjectionResult:
    """
    Project one or more variables along ``direction``.

    Args:
        dataobject: hydro, gravity or particle Dataset
        var: key or list of keys (any getvar key, or "sd" for surface density)
        unit: unit per key (default code units)
        res: pixels along the longer side of the extent
        pxsize: pixel size in ``pxsize_unit`` (overrides res)
        direction: projection (integration) axis
        xrange, yrange, zrange, center, range_unit: extent, as for the loader
        lmax: level that sets the default pixel size boxlen / 2**lmax
        mode: "standard"/"weighted", "sum", "mean" or "max"
        weighting: "mass" or "volume" (standard mode); defaults to "volume" for
            gravity data, which has no mass, and "mass" otherwise
        mask: boolean row mask
        family: particle family name(s) to keep

    Returns:
        ProjectionResult
    """
    kind = dataobject.kind
    if weighting is None:
        weighting = "volume" if kind == "gravity" else "mass"
    opts = ProjectionOptions(
        res=res, pxsize=pxsize, pxsize_unit=pxsize_unit, direction=direction, mode=mode,
        weighting=weighting, family=family, lmax=lmax,
    )
    ranges = SpatialRange(xrange, yrange, zrange, center, range_unit)
    if kind == "clumps":
        raise UsageError("Clump catalogues cannot be projected.")
    if opts.families and kind != "particles":
        raise UsageError("A particle-family filter only applies to particle data.")
    if opts.lmax is not None and not dataobject.lmin <= opts.lmax <= dataobject.info.levelmax:
        raise UsageError(
            f"lmax={opts.lmax} outside [{dataobject.lmin}, {dataobject.info.levelmax}]."
        )

    keys = [var] if isinstance(var, str) else list(var)
    if unit is None:
        units = ["standard"] * len(keys)
    elif isinstance(unit, str):
        units = [unit] * len(keys)
    else:
        units = list(unit)
        if len(units) != len(keys):
            raise UsageError(f"{len(units)} units given for {len(keys)} variables.")

    accumulation = opts.accumulation
    weight_key = None
    if accumulation == "standard":
        weight_key = opts.weighting
        if kind == "particles" and weight_key == "volume":
            raise UsageError("Volume weighting needs cell data.")
        if kind == "gravity" and weight_key == "mass":
            raise UsageError(
                "weighting='mass' needs hydro or particle data; use weighting='volume' for gravity."
            )

    for key in keys:
        _lookup(dataobject, "mass" if key == SURFACE_DENSITY else key)
    if weight_key is not None:
        _lookup(dataobject, weight_key)
    for u in units:
        resolve(dataobject.scale, u)
    mask = _check_mask(dataobject, mask)

    # geometry
    t0 = time.time()
    boxlen = dataobject.boxlen
    bounds = ranges.normalized(boxlen, dataobject.scale)
    lmax_eff = opts.lmax if opts.lmax is not None else dataobject.lmax
    axes = PIXEL_AXES[opts.direction]
    a0, b0, pixsize, n_a, n_b = _grid_geometry(bounds, axes, boxlen, opts, lmax_eff, dataobject.scale)
    logger.debug(
        "Projection along %s: %d x %d pixels of %g (code length), mode %s",
        opts.direction, n_a, n_b, pixsize, accumulation,
    )

    # row selection
    pos = dataobject.positions()
    rows = np.ones(len(dataobject), dtype=bool)
    if dataobject.is_cells:
        level = dataobject.column("level")
        idx = [dataobject.column(name) for name in ("cx", "cy", "cz")]
        for lvl in np.unique(level):
            at = level == lvl
            lims = cell_index_bounds(bounds, int(lvl))
            for axis in range(3):
                i = idx[axis][at]
                rows[at] &= (i >= lims[2 * axis]) & (i <= lims[2 * axis + 1])
    else:
        for axis in range(3):
            rows &= (pos[axis] >= bounds[2 * axis] * boxlen) & (pos[axis] <= bounds[2 * axis + 1] * boxlen)
    if mask is not None:
        rows &= mask
    if opts.families:
        codes = [PARTICLE_FAMILIES[f] for f in opts.families]
        rows &= np.isin(dataobject.column("family"), codes)

    value_keys = ["mass" if k == SURFACE_DENSITY else k for k in keys]
    fetch = list(dict.fromkeys(value_keys + ([weight_key] if weight_key else [])))
    fetched = getvar(dataobject, fetch, mask=rows) if fetch else {}
    factors = [resolve(dataobject.scale, u) for u in units]
    values = {k: fetched[vk] * f for k, vk, f in zip(keys, value_keys, factors)}
    weight = fetched[weight_key] if weight_key else np.ones(int(rows.sum()))

    ua = (pos[axes[0]][rows] - a0) / pixsize
    ub = (pos[axes[1]][rows] - b0) / pixsize

    sums = [k for k in keys if k == SURFACE_DENSITY]
    acc = _Accumulator([k for k in keys if k not in sums], (n_a, n_b), accumulation)
    sd_acc = _Accumulator(sums, (n_a, n_b), "sum") if sums else None

    def subset(sel):
        return (
            {k: values[k][sel] for k in acc.grids},
            {k: values[k][sel] for k in sums},
            weight[sel],
        )

    def deposit(ia, ib, frac, group):
        vals, sd_vals, w = group
        acc.add(ia, ib, frac, vals, w)
        if sd_acc is not None:
            sd_acc.add(ia, ib, frac, sd_vals, w)

    if dataobject.is_cells:
        level = dataobject.column("level")[rows]
        for lvl in np.unique(level):
            sel = level == lvl
            group = subset(sel)
            half = dataobject.info.cellsize(lvl) / 2.0 / pixsize
            ias, fas = _axis_overlaps(ua[sel] - half, ua[sel] + half, n_a)
            ibs, fbs = _axis_overlaps(ub[sel] - half, ub[sel] + half, n_b)
            for ia, fa in zip(ias, fas):
                for ib, fb in zip(ibs, fbs):
                    deposit(ia, ib, fa * fb, group)
    else:
        ia = np.clip(np.floor(ua).astype(np.int64), 0, n_a - 1)
        ib = np.clip(np.floor(ub).astype(np.int64), 0, n_b - 1)
        deposit(ia, ib, np.ones(len(ia)), subset(slice(None)))

    maps = acc.finish()
    if sd_acc is not None:
        for k, grid in sd_acc.finish().items():
            maps[k] = grid / pixsize**2

    result = ProjectionResult(
        maps={k: _readonly(maps[k]) for k in keys},
        units=dict(zip(keys, units)),
        extent=(a0, a0 + n_a * pixsize, b0, b0 + n_b * pixsize),
        pixsize=pixsize,
        direction=opts.direction,
        axes=(DIRECTIONS[axes[0]], DIRECTIONS[axes[1]]),
        mode=accumulation,
        weighting=opts.weighting,
        weight_map=_readonly(acc.weight),
        lmax=lmax_eff,
        boxlen=boxlen,
        ranges=bounds,
        scale=dict(dataobject.scale),
    )
    logger.info("Projected %d row(s) onto %d x %d pixels in %.2fs", int(rows.sum()), n_a, n_b, time.time() - t0)
    return result
