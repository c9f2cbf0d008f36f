# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Persist Datasets and ProjectionResults to HDF5 and read them back.

──────────────────────────────────────────────────────────────────────────────
LAYOUT
──────────────────────────────────────────────────────────────────────────────
Dataset file:
  /                 attrs: Type="Dataset", kind, lmin, lmax, ranges, variables,
                           generator_version, generator_timestamp
  /Info             attrs: Record (JSON of the InfoRecord fields), Constants
  /Scale            Names, Values; attrs: Layout
  /Columns/<name>   one dataset per row-table column
  /ShardRanges      (shard, start, stop) rows

Projection file:
  /                 attrs: Type="Projection", extent, pixsize, direction, axes,
                           mode, weighting, lmax, boxlen, ranges
  /Maps/<var>       one 2D dataset per variable; attrs: Unit
  /WeightMap
  /Scale            Names, Values

"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, fields
from typing import Dict

import numpy as np
import h5py as h5

from .dataset import Dataset, RowTable
from .errors import MissingDataError, UsageError
from .info import InfoRecord
from .projection import ProjectionResult
from .scales import PhysicalConstants, ScaleSet

logger = logging.getLogger("drishti")

_SKIP_INFO = {"scale", "constants"}


def _version() -> str:
    from . import __version__

    return __version__


def _string_attr(group, name: str, value: str) -> None:
    data = value.encode("utf-8")
    group.attrs.create(name, data, dtype=h5.string_dtype("utf-8", len(data) or 1))


def _read_string_attr(group, name: str) -> str:
    value = group.attrs[name]
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _write_scale(root, scale) -> None:
    grp = root.create_group("Scale")
    names = list(scale)
    grp.create_dataset("Names", data=np.array(names, dtype=object), dtype=h5.string_dtype("utf-8"))
    grp.create_dataset("Values", data=np.array([scale[n] for n in names], dtype=np.float64))
    _string_attr(grp, "Layout", getattr(scale, "layout", "current"))


def _read_scale(root) -> ScaleSet:
    grp = root["Scale"]
    names = [n.decode("utf-8") if isinstance(n, bytes) else str(n) for n in grp["Names"][()]]
    values = grp["Values"][()]
    return ScaleSet(dict(zip(names, values.tolist())), layout=_read_string_attr(grp, "Layout"))


def _info_to_json(info: InfoRecord) -> str:
    record = {f.name: getattr(info, f.name) for f in fields(info) if f.name not in _SKIP_INFO}
    return json.dumps(record)


def _info_from_json(text: str, scale: ScaleSet, constants: PhysicalConstants) -> InfoRecord:
    record = json.loads(text)
    for f in fields(InfoRecord):
        value = record.get(f.name)
        if isinstance(value, list):
            record[f.name] = tuple(tuple(v) if isinstance(v, list) else v for v in value)
    return InfoRecord(scale=scale, constants=constants, **record)


def _stamp(root, type_name: str) -> None:
    _string_attr(root, "Type", type_name)
    _string_attr(root, "generator_version", _version())
    _string_attr(root, "generator_timestamp", time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))


def _open_typed(filename: str, type_name: str):
    try:
        f = h5.File(filename, "r")
    except FileNotFoundError as e:
        raise MissingDataError(f"File not found: {filename}") from e
    if "Type" not in f.attrs or _read_string_attr(f, "Type") != type_name:
        f.close()
        raise UsageError(f"'{filename}' does not hold a drishti {type_name}.")
    return f


def save_dataset(dataobject: Dataset, filename: str, compression: str = "gzip") -> None:
    """Write ``dataobject`` with its info, scale and shard ranges to ``filename``."""
    t0 = time.time()
    with h5.File(filename, "w") as f:
        _stamp(f, "Dataset")
        _string_attr(f, "kind", dataobject.kind)
        f.attrs["lmin"] = dataobject.lmin
        f.attrs["lmax"] = dataobject.lmax
        f.attrs["ranges"] = np.asarray(dataobject.ranges, dtype=np.float64)
        _string_attr(f, "variables", json.dumps(list(dataobject.variables)))

        info = f.create_group("Info")
        _string_attr(info, "Record", _info_to_json(dataobject.info))
        _string_attr(info, "Constants", json.dumps(asdict(dataobject.info.constants)))

        _write_scale(f, dataobject.scale)

        cols = f.create_group("Columns", track_order=True)
        for name in dataobject.columns:
            cols.create_dataset(name, data=np.asarray(dataobject.column(name)), compression=compression)

        ranges = dataobject.table.shard_ranges
        shard_rows = np.array([(s, lo, hi) for s, (lo, hi) in ranges.items()], dtype=np.int64).reshape(-1, 3)
        f.create_dataset("ShardRanges", data=shard_rows)

    logger.info("Saved %s dataset (%d rows) to '%s' in %.2fs", dataobject.kind, len(dataobject), filename, time.time() - t0)


def load_dataset(filename: str) -> Dataset:
    """Read a Dataset written by ``save_dataset``."""
    with _open_typed(filename, "Dataset") as f:
        scale = _read_scale(f)
        constants = PhysicalConstants(**json.loads(_read_string_attr(f["Info"], "Constants")))
        info = _info_from_json(_read_string_attr(f["Info"], "Record"), scale, constants)

        columns: Dict[str, np.ndarray] = {name: ds[()] for name, ds in f["Columns"].items()}
        shard_ranges = {int(s): (int(lo), int(hi)) for s, lo, hi in f["ShardRanges"][()]}

        dataobject = Dataset(
            kind=_read_string_attr(f, "kind"),
            table=RowTable(columns, shard_ranges),
            info=info,
            scale=scale,
            variables=tuple(json.loads(_read_string_attr(f, "variables"))),
            lmin=int(f.attrs["lmin"]),
            lmax=int(f.attrs["lmax"]),
            ranges=tuple(float(v) for v in f.attrs["ranges"]),
        )

    logger.info("Loaded %s dataset (%d rows) from '%s'", dataobject.kind, len(dataobject), filename)
    return dataobject


def save_projection(result: ProjectionResult, filename: str) -> None:
    """Write the maps and geometry of ``result`` to ``filename``."""
    with h5.File(filename, "w") as f:
        _stamp(f, "Projection")
        f.attrs["extent"] = np.asarray(result.extent, dtype=np.float64)
        f.attrs["pixsize"] = result.pixsize
        _string_attr(f, "direction", result.direction)
        _string_attr(f, "axes", "".join(result.axes))
        _string_attr(f, "mode", result.mode)
        _string_attr(f, "weighting", result.weighting)
        f.attrs["lmax"] = result.lmax
        f.attrs["boxlen"] = result.boxlen
        f.attrs["ranges"] = np.asarray(result.ranges, dtype=np.float64)

        maps = f.create_group("Maps", track_order=True)
        for var, grid in result.maps.items():
            dset = maps.create_dataset(var, data=np.asarray(grid))
            _string_attr(dset, "Unit", result.units[var])
        f.create_dataset("WeightMap", data=np.asarray(result.weight_map))
        _write_scale(f, result.scale)

    logger.info("Saved projection (%s) to '%s'", ", ".join(result.maps), filename)


def load_projection(filename: str) -> ProjectionResult:
    """Read a ProjectionResult written by ``save_projection``."""
    with _open_typed(filename, "Projection") as f:
        maps, units = {}, {}
        for var, dset in f["Maps"].items():
            grid = dset[()]
            grid.flags.writeable = False
            maps[var] = grid
            units[var] = _read_string_attr(dset, "Unit")
        weight_map = f["WeightMap"][()]
        weight_map.flags.writeable = False
        axes = _read_string_attr(f, "axes")

        return ProjectionResult(
            maps=maps,
            units=units,
            extent=tuple(float(v) for v in f.attrs["extent"]),
            pixsize=float(f.attrs["pixsize"]),
            direction=_read_string_attr(f, "direction"),
            axes=(axes[0], axes[1]),
            mode=_read_string_attr(f, "mode"),
            weighting=_read_string_attr(f, "weighting"),
            weight_map=weight_map,
            lmax=int(f.attrs["lmax"]),
            boxlen=float(f.attrs["boxlen"]),
            ranges=tuple(float(v) for v in f.attrs["ranges"]),
            scale=dict(_read_scale(f)),
        )
