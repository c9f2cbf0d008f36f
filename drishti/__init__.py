# -*- coding: utf-8 -*-

"""

Drishti: RAMSES AMR snapshot reader, variable engine and projector
==================================================================

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Drishti reads the distributed binary output of RAMSES simulations into one
row table per physics component, computes stored and derived quantities in
any unit, selects geometric regions and projects the data onto uniform pixel
grids.

──────────────────────────────────────────────────────────────────────────────
WHY THIS EXISTS
──────────────────────────────────────────────────────────────────────────────
- RAMSES writes one file per MPI rank and component, laid out as an octree.
  Analysis wants a flat table of leaf cells with positions and units.
- Adaptive resolution makes naive binning lose mass; projections here split
  every coarse cell over the pixels it covers, so totals are preserved.

"""

from .config import (
    LoadOptions,
    ProjectionOptions,
    SpatialRange,
    setup_logging,
)

from .errors import (
    DrishtiError,
    EmptySelectionError,
    MissingDataError,
    ShardReadError,
    UnknownKeyError,
    UsageError,
)

from .scales import (
    PhysicalConstants,
    ScaleSet,
    create_scales,
    from_legacy,
    resolve,
    to_legacy,
)

from .info import InfoRecord, getinfo
from .dataset import Dataset, RowTable
from .loader import getclumps, getgravity, gethydro, getparticles
from .getvar import describe_variables, getvar
from .regions import (
    Band,
    Cuboid,
    Cylinder,
    Not,
    RegionPredicate,
    Sphere,
    band,
    not_,
    select_region,
    shellregion,
    subregion,
)
from .projection import ProjectionResult, projection
from .stats import average_mweighted, bulk_velocity, center_of_mass, com, msum, wstat
from .io import load_dataset, load_projection, save_dataset, save_projection

__version__ = "1.0.0"
