# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Row storage for loaded snapshots.

``RowTable`` is an append-only column store: every shard contributes one
block of rows and the table remembers the index range of each block. Columns
are read-only numpy arrays, so a table can be shared freely.

``Dataset`` ties a table to the snapshot it came from (``InfoRecord``), the
unit table and the level/spatial bounds used to build it. Selections always
return a new Dataset.

"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import UsageError
from .info import InfoRecord
from .scales import ScaleSet

KINDS = ("hydro", "gravity", "particles", "clumps")

# bookkeeping columns always present per kind
BOOKKEEPING = {
    "hydro": ("level", "cx", "cy", "cz", "shard"),
    "gravity": ("level", "cx", "cy", "cz", "shard"),
    "particles": ("x", "y", "z", "id", "level", "family", "shard"),
    "clumps": ("peak_x", "peak_y", "peak_z", "shard"),
}


def _freeze(arr: np.ndarray) -> np.ndarray:
    arr = np.asarray(arr)
    if arr.flags.writeable:
        arr = arr.view()
        arr.flags.writeable = False
    return arr


class RowTable:
    """
    Column-oriented row store with per-shard index ranges.

    Build one with ``RowTable.concatenate`` from per-shard column blocks.
    """

    def __init__(self, columns: Mapping[str, np.ndarray], shard_ranges: Optional[Dict[int, Tuple[int, int]]] = None):
        lengths = {name: len(col) for name, col in columns.items()}
        if len(set(lengths.values())) > 1:
            raise UsageError(f"Columns differ in length: {lengths}")
        self._columns = {name: _freeze(col) for name, col in columns.items()}
        self._nrows = next(iter(lengths.values())) if lengths else 0
        self._shard_ranges = dict(shard_ranges or {})

    @classmethod
    def concatenate(cls, blocks: Sequence[Tuple[int, Mapping[str, np.ndarray]]], names: Sequence[str],
                    dtypes: Optional[Mapping[str, np.dtype]] = None) -> "RowTable":
        """
        Merge ``(shard_id, columns)`` blocks, in the given order.

        ``names`` fixes the column set, so an empty merge still has every
        column (with ``dtypes`` or float64).
        """
        dtypes = dtypes or {}
        shard_ranges: Dict[int, Tuple[int, int]] = {}
        start = 0
        for shard, cols in blocks:
            n = len(cols[names[0]]) if names else 0
            shard_ranges[shard] = (start, start + n)
            start += n

        columns = {}
        for name in names:
            parts = [cols[name] for _, cols in blocks]
            if parts:
                columns[name] = np.concatenate(parts)
            else:
                columns[name] = np.empty(0, dtype=dtypes.get(name, np.float64))
        return cls(columns, shard_ranges)

    def __len__(self) -> int:
        return self._nrows

    def __contains__(self, name: str) -> bool:
        return name in self._columns

    def __getitem__(self, name: str) -> np.ndarray:
        return self._columns[name]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._columns)

    @property
    def shard_ranges(self) -> Dict[int, Tuple[int, int]]:
        return dict(self._shard_ranges)

    def take(self, mask: np.ndarray) -> "RowTable":
        """Rows where ``mask`` is True, shard ranges recomputed."""
        mask = np.asarray(mask, dtype=bool)
        columns = {name: col[mask] for name, col in self._columns.items()}
        ranges = {}
        start = 0
        for shard, (lo, hi) in sorted(self._shard_ranges.items(), key=lambda kv: kv[1]):
            n = int(np.count_nonzero(mask[lo:hi]))
            ranges[shard] = (start, start + n)
            start += n
        return RowTable(columns, ranges)

    def as_dict(self) -> Dict[str, np.ndarray]:
        return dict(self._columns)


@dataclass(frozen=True)
class Dataset:
    """
    One loaded component of a snapshot.

    Attributes:
        kind: "hydro", "gravity", "particles" or "clumps"
        table: the rows
        info: snapshot metadata
        scale: unit table
        variables: stored variables materialized at load time
        lmin, lmax: level bounds used to build the dataset
        ranges: normalized (xmin, xmax, ymin, ymax, zmin, zmax) load bounds
    """

    kind: str
    table: RowTable
    info: InfoRecord
    scale: ScaleSet
    variables: Tuple[str, ...]
    lmin: int
    lmax: int
    ranges: Tuple[float, float, float, float, float, float] = (0.0, 1.0, 0.0, 1.0, 0.0, 1.0)

    def __post_init__(self):
        if self.kind not in KINDS:
            raise UsageError(f"Unknown dataset kind '{self.kind}'; use one of {KINDS}.")

    def __len__(self) -> int:
        return len(self.table)

    @property
    def boxlen(self) -> float:
        return self.info.boxlen

    @property
    def is_cells(self) -> bool:
        return self.kind in ("hydro", "gravity")

    @property
    def columns(self) -> Tuple[str, ...]:
        return self.table.names

    def column(self, name: str) -> np.ndarray:
        return self.table[name]

    def select(self, mask: np.ndarray) -> "Dataset":
        """New Dataset holding the rows where ``mask`` is True."""
        mask = np.asarray(mask)
        if mask.dtype != bool or mask.shape != (len(self),):
            raise UsageError("Selection mask must be a boolean array with one entry per row.")
        return replace(self, table=self.table.take(mask))

    def positions(self, center: Iterable[float] = (0.0, 0.0, 0.0)) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Row positions in code length relative to ``center`` (box-normalized).

        Cells use their centre, ``(c - 0.5) * cellsize``; particles and clumps
        use their stored coordinates.
        """
        cx, cy, cz = (float(c) * self.boxlen for c in center)
        if self.is_cells:
            dx = self.info.cellsize(self.table["level"])
            return (
                (self.table["cx"] - 0.5) * dx - cx,
                (self.table["cy"] - 0.5) * dx - cy,
                (self.table["cz"] - 0.5) * dx - cz,
            )
        if self.kind == "particles":
            return self.table["x"] - cx, self.table["y"] - cy, self.table["z"] - cz
        return self.table["peak_x"] - cx, self.table["peak_y"] - cy, self.table["peak_z"] - cz

    def __repr__(self) -> str:
        return (
            f"Dataset(kind={self.kind!r}, rows={len(self)}, output={self.info.output}, "
            f"levels=[{self.lmin}, {self.lmax}], variables={list(self.variables)})"
        )


def row_counts_by_level(dataset: Dataset) -> Dict[int, int]:
    """Number of rows per refinement level."""
    if "level" not in dataset.table:
        return {}
    levels, counts = np.unique(dataset.column("level"), return_counts=True)
    return {int(l): int(c) for l, c in zip(levels, counts)}
