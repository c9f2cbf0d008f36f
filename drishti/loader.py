# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Load RAMSES payload shards into a ``Dataset``.

 - gethydro / getgravity: octree shards (amr + hydro/grav), leaf cells only
 - getparticles:          flat particle lists
 - getclumps:             clump-finder text tables

──────────────────────────────────────────────────────────────────────────────
HOW A SHARD IS READ
──────────────────────────────────────────────────────────────────────────────
- Every shard is decoded on its own (see ``parallel.read_shards``) and
  returns one column block; blocks are concatenated in shard order.
- Records of unrequested variables are skipped without decoding.
- Cells outside the level/spatial bounds are dropped before their columns are
  assembled. A refined cell at ``lmax`` counts as a leaf.
- Argument problems are raised before any file is opened; a damaged shard
  raises ``ShardReadError`` and aborts the load.

"""

from __future__ import annotations

import logging
import os
import time
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import LoadOptions, SpatialRange
from .dataset import BOOKKEEPING, Dataset, RowTable, row_counts_by_level
from .errors import MissingDataError, ShardReadError, UnknownKeyError
from .fortran import ShardFile
from .info import InfoRecord
from .parallel import read_shards

logger = logging.getLogger("drishti")

TWOTONDIM = 8

# descriptor type code -> numpy dtype
PARTICLE_DTYPES = {"d": "f8", "f": "f4", "i": "i4", "l": "i8", "q": "i8", "b": "i1"}

CELL_DTYPES = {"level": np.int32, "cx": np.int32, "cy": np.int32, "cz": np.int32, "shard": np.int32}
PARTICLE_BOOK_DTYPES = {"x": np.float64, "y": np.float64, "z": np.float64, "id": np.int64,
                        "level": np.int32, "family": np.int32, "shard": np.int32}

FAMILY_DM = 1
FAMILY_STAR = 2


# ──────────────────────────────────────────────────────────────
# Argument handling
# ──────────────────────────────────────────────────────────────

def _require(info: InfoRecord, component: str) -> None:
    if not info.has(component):
        raise MissingDataError(
            f"Component '{component}' is not present in snapshot {info.output} ({info.output_dir})."
        )


def _select_vars(requested: Optional[Sequence[str]], available: Sequence[str], component: str) -> Tuple[str, ...]:
    if requested is None or tuple(requested) == ("all",):
        return tuple(available)
    unknown = [v for v in requested if v not in available]
    if unknown:
        raise UnknownKeyError(
            f"Unknown {component} variable(s) {unknown}; available: {list(available)}."
        )
    # keep file order, drop duplicates
    return tuple(v for v in available if v in requested)


def _options(vars, lmin, lmax, xrange, yrange, zrange, center, range_unit, nthreads) -> LoadOptions:
    return LoadOptions(
        vars=vars,
        lmin=lmin,
        lmax=lmax,
        ranges=SpatialRange(xrange=xrange, yrange=yrange, zrange=zrange, center=center, unit=range_unit),
        nthreads=nthreads,
    )


def cell_index_bounds(bounds: Sequence[float], level: int) -> Tuple[int, int, int, int, int, int]:
    """
    1-based index range (imin, imax, jmin, jmax, kmin, kmax) of the cells at
    ``level`` that overlap the normalized ``bounds``.
    """
    n = 2**level
    out = []
    for lo, hi in zip(bounds[0::2], bounds[1::2]):
        out.append(int(np.floor(lo * n)) + 1)
        out.append(int(np.ceil(hi * n)))
    return tuple(out)


# ──────────────────────────────────────────────────────────────
# Octree shards (hydro, gravity)
# ──────────────────────────────────────────────────────────────

def _read_amr_header(amr: ShardFile, ncpu: int):
    """Return (ndim, xbound, nlevelmax, ngridfile[level, domain]) and leave the file at level 1."""
    amr.skip(1)  # ncpu
    ndim = amr.read_int()
    nx, ny, nz = (int(v) for v in amr.read_ints()[:3])
    nlevelmax = amr.read_int()
    amr.skip(1)  # ngridmax
    nboundary = amr.read_int()
    amr.skip(15)  # ngrid_current .. taill
    numbl = amr.read_array(np.int32, ncpu * nlevelmax).reshape(nlevelmax, ncpu)
    amr.skip(1)  # numbtot
    ngridfile = numbl
    if nboundary > 0:
        amr.skip(2)  # headb, tailb
        numbb = amr.read_array(np.int32, nboundary * nlevelmax).reshape(nlevelmax, nboundary)
        ngridfile = np.hstack([numbl, numbb])
    amr.skip(6)  # free list, ordering, bound keys, coarse son/flag/cpu_map
    xbound = np.array([nx // 2, ny // 2, nz // 2], dtype=np.float64)
    return ndim, xbound, nlevelmax, ngridfile


def _read_payload_header(data: ShardFile, component: str) -> int:
    """Skip a hydro/grav header and return its nvar."""
    data.skip(1)  # ncpu
    nvar = data.read_int()
    if component == "hydro":
        data.skip(4)  # ndim, nlevelmax, nboundary, gamma
    else:
        data.skip(2)  # nlevelmax, nboundary
    return nvar


def _cell_offsets(level: int) -> np.ndarray:
    """Offsets (8, 3) of the cell centres from their oct centre at ``level``."""
    dx = 0.5**level
    offsets = np.empty((TWOTONDIM, 3))
    for ind in range(TWOTONDIM):
        iz = ind // 4
        iy = (ind - 4 * iz) // 2
        ix = ind - 2 * iy - 4 * iz
        offsets[ind] = ((ix - 0.5) * dx, (iy - 0.5) * dx, (iz - 0.5) * dx)
    return offsets


def read_cell_shard(
    icpu: int,
    info: InfoRecord,
    component: str,
    wanted: Dict[int, str],
    lmin: int,
    lmax: int,
    bounds: Sequence[float],
) -> Dict[str, np.ndarray]:
    """
    Decode the leaf cells of one octree shard.

    Args:
        icpu: 1-based shard id
        info: snapshot metadata
        component: "hydro" or "gravity"
        wanted: file variable index (0-based) -> column name to decode
        lmin, lmax: level bounds
        bounds: normalized (xmin, xmax, ymin, ymax, zmin, zmax)

    Returns:
        columns level, cx, cy, cz, shard and one per wanted variable
    """
    blocks: Dict[str, List[np.ndarray]] = {name: [] for name in ("level", "cx", "cy", "cz")}
    for name in wanted.values():
        blocks[name] = []

    with ShardFile(info.shard_path("amr", icpu)) as amr, ShardFile(info.shard_path(component, icpu)) as data:
        ndim, xbound, nlevelmax, ngridfile = _read_amr_header(amr, info.ncpu)
        nvar = _read_payload_header(data, component)
        if wanted and max(wanted) >= nvar:
            raise ShardReadError(
                f"{data.path} holds {nvar} variables, variable index {max(wanted) + 1} requested."
            )

        ndomains = ngridfile.shape[1]
        for ilevel in range(1, min(lmax, nlevelmax) + 1):
            ngrida = int(ngridfile[ilevel - 1, icpu - 1])
            decode = ngrida > 0 and ilevel >= lmin
            xg = son = None
            values: Dict[Tuple[int, int], np.ndarray] = {}

            for j in range(ndomains):
                ng = int(ngridfile[ilevel - 1, j])
                own = decode and j == icpu - 1

                if ng > 0:
                    amr.skip(3)  # ind_grid, next, prev
                    if own:
                        xg = np.vstack([amr.read_array(np.float64, ng) for _ in range(ndim)])
                    else:
                        amr.skip(ndim)
                    amr.skip(1 + 2 * ndim)  # father, nbor
                    if own:
                        son = np.vstack([amr.read_array(np.int32, ng) for _ in range(TWOTONDIM)])
                    else:
                        amr.skip(TWOTONDIM)
                    amr.skip(2 * TWOTONDIM)  # cpu_map, flag1

                data.skip(2)  # ilevel, ncache
                if ng > 0:
                    for ind in range(TWOTONDIM):
                        for ivar in range(nvar):
                            if own and ivar in wanted:
                                values[(ind, ivar)] = data.read_array(np.float64, ng)
                            else:
                                data.skip(1)

            if not decode:
                continue

            nfull = 2**ilevel
            imin, imax, jmin, jmax, kmin, kmax = cell_index_bounds(bounds, ilevel)
            offsets = _cell_offsets(ilevel)

            for ind in range(TWOTONDIM):
                keep = ~((son[ind] > 0) & (ilevel < lmax))
                cx = np.floor((xg[0] + offsets[ind, 0] - xbound[0]) * nfull).astype(np.int32) + 1
                cy = np.floor((xg[1] + offsets[ind, 1] - xbound[1]) * nfull).astype(np.int32) + 1
                cz = np.floor((xg[2] + offsets[ind, 2] - xbound[2]) * nfull).astype(np.int32) + 1
                keep &= (cx >= imin) & (cx <= imax)
                keep &= (cy >= jmin) & (cy <= jmax)
                keep &= (cz >= kmin) & (cz <= kmax)
                if not keep.any():
                    continue

                blocks["level"].append(np.full(int(keep.sum()), ilevel, dtype=np.int32))
                blocks["cx"].append(cx[keep])
                blocks["cy"].append(cy[keep])
                blocks["cz"].append(cz[keep])
                for ivar, name in wanted.items():
                    blocks[name].append(values[(ind, ivar)][keep])

    columns = {}
    for name, parts in blocks.items():
        dtype = CELL_DTYPES.get(name, np.float64)
        columns[name] = np.concatenate(parts).astype(dtype, copy=False) if parts else np.empty(0, dtype=dtype)
    columns["shard"] = np.full(len(columns["level"]), icpu, dtype=np.int32)

    logger.debug("[shard %d] %s: %d leaf cells", icpu, component, len(columns["level"]))
    return columns


def _load_cells(
    info: InfoRecord,
    component: str,
    available: Sequence[str],
    options: LoadOptions,
    executor: str,
) -> Dataset:
    _require(info, component)
    _require(info, "amr")
    lmin, lmax = options.check_levels(info.levelmin, info.levelmax)
    variables = _select_vars(options.vars, available, component)
    bounds = options.ranges.normalized(info.boxlen, info.scale)

    wanted = {available.index(name): name for name in variables}

    logger.info(
        "Loading %s of output %d: %d shard(s), levels [%d, %d], variables %s",
        component, info.output, info.ncpu, lmin, lmax, list(variables),
    )
    t0 = time.time()

    worker = partial(
        read_cell_shard,
        info=info,
        component=component,
        wanted=wanted,
        lmin=lmin,
        lmax=lmax,
        bounds=bounds,
    )
    blocks = read_shards(worker, range(1, info.ncpu + 1), nthreads=options.nthreads, executor=executor)

    table = RowTable.concatenate(blocks, BOOKKEEPING[component] + variables, CELL_DTYPES)
    ds = Dataset(
        kind=component,
        table=table,
        info=info,
        scale=info.scale,
        variables=variables,
        lmin=lmin,
        lmax=lmax,
        ranges=bounds,
    )
    logger.info("Loaded %d cells in %.2fs", len(ds), time.time() - t0)
    logger.debug("Cells per level: %s", row_counts_by_level(ds))
    return ds


def gethydro(
    info: InfoRecord,
    vars: Optional[Sequence[str]] = None,
    lmax: Optional[int] = None,
    lmin: Optional[int] = None,
    xrange=None,
    yrange=None,
    zrange=None,
    center=(0.0, 0.0, 0.0),
    range_unit: str = "standard",
    nthreads: int = 1,
    executor: str = "thread",
) -> Dataset:
    """
    Load the hydro leaf cells of a snapshot.

    Args:
        info: from ``getinfo``
        vars: hydro variables to materialize (default: all of ``info.variable_list``)
        lmax, lmin: level bounds within [info.levelmin, info.levelmax]
        xrange, yrange, zrange: (min, max) relative to ``center`` in ``range_unit``
        center: three coordinates or "bc"/"boxcenter"
        range_unit: "standard" (box-normalized) or any unit of ``info.scale``
        nthreads: shard reads in parallel

    Returns:
        Dataset of kind "hydro"
    """
    options = _options(vars, lmin, lmax, xrange, yrange, zrange, center, range_unit, nthreads)
    return _load_cells(info, "hydro", info.variable_list, options, executor)


def getgravity(
    info: InfoRecord,
    vars: Optional[Sequence[str]] = None,
    lmax: Optional[int] = None,
    lmin: Optional[int] = None,
    xrange=None,
    yrange=None,
    zrange=None,
    center=(0.0, 0.0, 0.0),
    range_unit: str = "standard",
    nthreads: int = 1,
    executor: str = "thread",
) -> Dataset:
    """Load gravity leaf cells (epot, ax, ay, az); arguments as in ``gethydro``."""
    options = _options(vars, lmin, lmax, xrange, yrange, zrange, center, range_unit, nthreads)
    return _load_cells(info, "gravity", info.gravity_variable_list, options, executor)


# ──────────────────────────────────────────────────────────────
# Particle shards
# ──────────────────────────────────────────────────────────────

def particle_layout(info: InfoRecord) -> Tuple[Tuple[str, str], ...]:
    """Ordered (column, numpy dtype) of the per-particle records of a shard."""
    if info.particles_descriptor:
        layout = []
        for name, code in info.particles_descriptor:
            if code not in PARTICLE_DTYPES:
                raise ShardReadError(f"Unknown particle field type '{code}' for '{name}'.")
            layout.append((name, PARTICLE_DTYPES[code]))
        return tuple(layout)

    layout = [(name, "f8") for name in ("x", "y", "z", "vx", "vy", "vz", "mass")]
    layout += [("id", "i4"), ("level", "i4")]
    if info.nstar > 0:
        layout.append(("birth", "f8"))
    return tuple(layout)


def read_particle_shard(
    icpu: int,
    info: InfoRecord,
    layout: Tuple[Tuple[str, str], ...],
    wanted: Tuple[str, ...],
    bounds: Sequence[float],
) -> Dict[str, np.ndarray]:
    """Decode one particle shard, keeping particles inside ``bounds``."""
    names = [name for name, _ in layout]
    needed = set(wanted) | {"x", "y", "z", "id", "level"}
    if "family" in names:
        needed.add("family")
    elif "birth" in names:
        needed.add("birth")

    raw: Dict[str, np.ndarray] = {}
    with ShardFile(info.shard_path("particles", icpu)) as f:
        f.skip(1)  # ncpu
        f.skip(1)  # ndim
        npart = f.read_int()
        f.skip(5)  # localseed, nstar_tot, mstar_tot, mstar_lost, nsink
        for name, dtype in layout:
            if name in needed:
                raw[name] = f.read_array(dtype, npart)
            else:
                f.skip(1)

    missing = needed - set(raw)
    if missing:
        raise ShardReadError(f"Particle shard {icpu} lacks field(s) {sorted(missing)}.")

    boxlen = info.boxlen
    keep = np.ones(npart, dtype=bool)
    for axis, name in enumerate(("x", "y", "z")):
        keep &= (raw[name] >= bounds[2 * axis] * boxlen) & (raw[name] <= bounds[2 * axis + 1] * boxlen)

    if "family" in raw:
        family = raw["family"].astype(np.int32)
    elif "birth" in raw:
        family = np.where(raw["birth"] != 0, FAMILY_STAR, FAMILY_DM).astype(np.int32)
    else:
        family = np.full(npart, FAMILY_DM, dtype=np.int32)

    columns = {name: raw[name][keep].astype(dtype, copy=False) for name, dtype in PARTICLE_BOOK_DTYPES.items()
               if name in raw}
    columns["family"] = family[keep]
    for name in wanted:
        if name not in columns:
            columns[name] = raw[name][keep]
    columns["shard"] = np.full(int(keep.sum()), icpu, dtype=np.int32)

    logger.debug("[shard %d] particles: %d of %d kept", icpu, len(columns["shard"]), npart)
    return columns


def getparticles(
    info: InfoRecord,
    vars: Optional[Sequence[str]] = None,
    xrange=None,
    yrange=None,
    zrange=None,
    center=(0.0, 0.0, 0.0),
    range_unit: str = "standard",
    nthreads: int = 1,
    executor: str = "thread",
) -> Dataset:
    """
    Load particles. Bookkeeping columns x, y, z, id, level, family and shard
    are always present; positions are in code length.
    """
    _require(info, "particles")
    options = _options(vars, None, None, xrange, yrange, zrange, center, range_unit, nthreads)
    variables = _select_vars(options.vars, info.particles_variable_list, "particles")
    variables = tuple(v for v in variables if v not in BOOKKEEPING["particles"])
    bounds = options.ranges.normalized(info.boxlen, info.scale)
    layout = particle_layout(info)

    logger.info("Loading particles of output %d: %d shard(s), variables %s", info.output, info.ncpu, list(variables))
    t0 = time.time()

    worker = partial(read_particle_shard, info=info, layout=layout, wanted=variables, bounds=bounds)
    blocks = read_shards(worker, range(1, info.ncpu + 1), nthreads=options.nthreads, executor=executor)

    dtypes = dict(PARTICLE_BOOK_DTYPES)
    dtypes.update({name: np.dtype(dtype) for name, dtype in layout if name in variables})
    table = RowTable.concatenate(blocks, BOOKKEEPING["particles"] + variables, dtypes)
    ds = Dataset(
        kind="particles",
        table=table,
        info=info,
        scale=info.scale,
        variables=variables,
        lmin=info.levelmin,
        lmax=info.levelmax,
        ranges=bounds,
    )
    logger.info("Loaded %d particles in %.2fs", len(ds), time.time() - t0)
    return ds


# ──────────────────────────────────────────────────────────────
# Clump tables
# ──────────────────────────────────────────────────────────────

def read_clump_shard(icpu: int, info: InfoRecord, wanted: Tuple[str, ...], bounds: Sequence[float]) -> Dict[str, np.ndarray]:
    """Read one ``clump_XXXXX.txtYYYYY`` table, keeping clumps whose peak lies in ``bounds``."""
    path = info.shard_path("clumps", icpu)
    if not os.path.isfile(path):
        raise MissingDataError(f"Clump file not found: {path}")

    with open(path, "r") as f:
        header = f.readline().split()
        try:
            table = np.loadtxt(f, ndmin=2)
        except ValueError as e:
            raise ShardReadError(f"Malformed clump table '{path}': {e}") from e

    if table.size == 0:
        table = np.empty((0, len(header)))
    if table.shape[1] != len(header):
        raise ShardReadError(f"Clump table '{path}' has {table.shape[1]} columns, header names {len(header)}.")

    cols = {name: table[:, i] for i, name in enumerate(header)}
    keep = np.ones(table.shape[0], dtype=bool)
    for axis, name in enumerate(("peak_x", "peak_y", "peak_z")):
        keep &= (cols[name] >= bounds[2 * axis] * info.boxlen) & (cols[name] <= bounds[2 * axis + 1] * info.boxlen)

    columns = {name: cols[name][keep] for name in ("peak_x", "peak_y", "peak_z") + wanted}
    columns["shard"] = np.full(int(keep.sum()), icpu, dtype=np.int32)
    return columns


def getclumps(
    info: InfoRecord,
    vars: Optional[Sequence[str]] = None,
    xrange=None,
    yrange=None,
    zrange=None,
    center=(0.0, 0.0, 0.0),
    range_unit: str = "standard",
) -> Dataset:
    """Load the clump-finder catalogue; peak_x/y/z are in code length."""
    _require(info, "clumps")
    options = _options(vars, None, None, xrange, yrange, zrange, center, range_unit, 1)
    variables = _select_vars(options.vars, info.clumps_variable_list, "clumps")
    variables = tuple(v for v in variables if v not in BOOKKEEPING["clumps"])
    for name in ("peak_x", "peak_y", "peak_z"):
        if name not in info.clumps_variable_list:
            raise ShardReadError(f"Clump tables of output {info.output} lack the '{name}' column.")
    bounds = options.ranges.normalized(info.boxlen, info.scale)

    worker = partial(read_clump_shard, info=info, wanted=variables, bounds=bounds)
    blocks = read_shards(worker, range(1, info.ncpu + 1))
    table = RowTable.concatenate(blocks, BOOKKEEPING["clumps"] + variables, {"shard": np.int32})
    ds = Dataset(
        kind="clumps",
        table=table,
        info=info,
        scale=info.scale,
        variables=variables,
        lmin=info.levelmin,
        lmax=info.levelmax,
        ranges=bounds,
    )
    logger.info("Loaded %d clumps", len(ds))
    return ds
