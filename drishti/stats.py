# -*- coding: utf-8 -*-

"""

Mass-weighted reductions over a Dataset.

Sums over zero rows are 0. Means, centres and other reductions that are
undefined without rows (or without weight) raise ``EmptySelectionError``.

"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .dataset import Dataset
from .errors import EmptySelectionError, UsageError
from .getvar import getvar


@dataclass(frozen=True)
class WStat:
    mean: float
    median: float
    std: float
    skewness: float
    kurtosis: float
    min: float
    max: float


def _weighted_mean(values: np.ndarray, weight: np.ndarray, what: str) -> float:
    total = weight.sum()
    if values.size == 0 or total == 0:
        raise EmptySelectionError(f"{what} is undefined for an empty selection.")
    return float((values * weight).sum() / total)


def msum(dataobject: Dataset, unit: str = "standard", mask=None) -> float:
    """Total mass of the (masked) rows."""
    return float(getvar(dataobject, "mass", unit=unit, mask=mask).sum())


def center_of_mass(dataobject: Dataset, unit: str = "standard", mask=None) -> Tuple[float, float, float]:
    """Mass-weighted mean position (absolute, in ``unit``)."""
    data = getvar(dataobject, ["mass", "x", "y", "z"], unit=["standard", unit, unit, unit], mask=mask)
    m = data["mass"]
    return tuple(_weighted_mean(data[axis], m, "The center of mass") for axis in ("x", "y", "z"))


com = center_of_mass


def bulk_velocity(dataobject: Dataset, unit: str = "standard", mask=None, weighting: str = "mass") -> Tuple[float, float, float]:
    """Mass- or volume-weighted mean velocity."""
    if weighting not in ("mass", "volume"):
        raise UsageError(f"Unknown weighting '{weighting}'; use 'mass' or 'volume'.")
    data = getvar(dataobject, [weighting, "vx", "vy", "vz"], unit=["standard", unit, unit, unit], mask=mask)
    w = data[weighting]
    return tuple(_weighted_mean(data[v], w, "The bulk velocity") for v in ("vx", "vy", "vz"))


def average_mweighted(dataobject: Dataset, var: str, unit: str = "standard", mask=None) -> float:
    """Mass-weighted average of ``var``."""
    data = getvar(dataobject, ["mass", var], unit=["standard", unit], mask=mask)
    return _weighted_mean(data[var], data["mass"], f"The mass-weighted mean of '{var}'")


def wstat(values, weight=None, mask: Optional[np.ndarray] = None) -> WStat:
    """Weighted descriptive statistics of a 1D array."""
    values = np.asarray(values, dtype=np.float64)
    weight = np.ones_like(values) if weight is None else np.asarray(weight, dtype=np.float64)
    if weight.shape != values.shape:
        raise UsageError("values and weight must have the same length.")
    if mask is not None:
        mask = np.asarray(mask)
        if mask.dtype != np.bool_ or mask.shape != values.shape:
            raise UsageError("mask must be a boolean array of the same length as values.")
        values, weight = values[mask], weight[mask]

    mean = _weighted_mean(values, weight, "A weighted statistic")
    total = weight.sum()
    var = float((weight * (values - mean) ** 2).sum() / total)
    std = np.sqrt(var)
    if std > 0:
        skew = float((weight * (values - mean) ** 3).sum() / total / std**3)
        kurt = float((weight * (values - mean) ** 4).sum() / total / var**2 - 3.0)
    else:
        skew = kurt = 0.0

    order = np.argsort(values)
    cum = np.cumsum(weight[order])
    median = float(values[order][np.searchsorted(cum, 0.5 * total)])

    return WStat(
        mean=mean,
        median=median,
        std=float(std),
        skewness=skew,
        kurtosis=kurt,
        min=float(values.min()),
        max=float(values.max()),
    )
