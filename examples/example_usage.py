#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

─────────────────────────────────────────────────────────────
Example Usage of Drishti
─────────────────────────────────────────────────────────────

This script walks through a typical analysis of one RAMSES
snapshot:

1. Reading the snapshot metadata
2. Loading hydro leaf cells inside a region
3. Computing derived quantities in physical units
4. Selecting a spherical subregion
5. Projecting density and surface density along z
6. Saving the projection to HDF5

─────────────────────────────────────────────────────────────

"""

import logging

from drishti import (
    getinfo,
    gethydro,
    getvar,
    msum,
    projection,
    save_projection,
    setup_logging,
    subregion,
)

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

RAMSES_OUTPUT_ROOT = "ramses_outputs/sedov_3d"

SNAPSHOT = 1

NTHREADS = 4

OUTPUT_FILE = "projection_00001.h5"

logger = logging.getLogger("drishti")


# ──────────────────────────────────────────────────────────────
# Main Example Workflow
# ──────────────────────────────────────────────────────────────

def main():

    setup_logging(verbose=False)

    info = getinfo(SNAPSHOT, path=RAMSES_OUTPUT_ROOT, verbose=True)
    logger.info("Time: %.3f Myr", info.time * info.scale["Myr"])
    logger.info("Hydro variables: %s", ", ".join(info.variable_list))

    gas = gethydro(info, xrange=(-0.3, 0.3), yrange=(-0.3, 0.3), zrange=(-0.3, 0.3),
                   center="bc", nthreads=NTHREADS)

    temperature = getvar(gas, "T", unit="K")
    logger.info("Temperature range: %.3e .. %.3e K", temperature.min(), temperature.max())
    logger.info("Gas mass: %.3e Msol", msum(gas, unit="Msol"))

    core = subregion(gas, "sphere", center="bc", radius=0.1)
    logger.info("Core: %d cells, %.3e Msol", len(core), msum(core, unit="Msol"))

    proj = projection(gas, ["rho", "sd"], unit=["g_cm3", "Msol_pc2"], res=256, direction="z", center="bc",
                      xrange=(-0.3, 0.3), yrange=(-0.3, 0.3))
    logger.info("Projected %s onto %d x %d pixels", ", ".join(proj.maps), *proj.shape)

    save_projection(proj, OUTPUT_FILE)


# ──────────────────────────────────────────────────────────────
# Entry Point
# ──────────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
