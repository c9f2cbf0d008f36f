"""
Shared fixtures: a small synthetic RAMSES snapshot written to tmp_path.

The snapshot (output_00001) has:
1. 2 shards, levelmin 2, levelmax 3, boxlen 1
2. 64 level-2 cells, two of them refined into level-3 octs (78 leaves)
3. hydro (rho, vx, vy, vz, p, var6), gravity (epot, ax, ay, az)
4. 20 particles (12 DM, 8 stars) in descriptor version 1 layout
5. optional clump tables

Shard 2 also carries a ghost copy of the root oct, as real outputs do.

"""

import os

import numpy as np
import pytest
from scipy.io import FortranFile

from drishti import gethydro, getinfo

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

NCPU = 2
LEVELMIN = 2
LEVELMAX = 3
BOXLEN = 1.0
TIME = 0.330855641315456
GAMMA = 5.0 / 3.0
UNIT_L = 3.08567758128e21
UNIT_D = 1.6726e-24
UNIT_T = 3.15576e13
REFINED_L2 = {(1, 1, 1), (4, 4, 4)}
NPART_PER_SHARD = 10
NSTAR_PER_SHARD = 4

HYDRO_DESCRIPTOR = """# version:  1
# ivar, variable_name, variable_type
  1, density, d
  2, velocity_x, d
  3, velocity_y, d
  4, velocity_z, d
  5, thermal_pressure, d
  6, passive_scalar_1, d
"""

PART_DESCRIPTOR = """# version:  1
# ivar, variable_name, variable_type
  1, position_x, d
  2, position_y, d
  3, position_z, d
  4, velocity_x, d
  5, velocity_y, d
  6, velocity_z, d
  7, mass, d
  8, identity, i
  9, levelp, i
 10, family, b
 11, tag, b
 12, birth_time, d
 13, metallicity, d
"""

PART_HEADER = """           Family     Count
     other_tracer         0
    debris_tracer         0
     cloud_tracer         0
      star_tracer         0
     other_tracer         0
       gas_tracer         0
               DM        12
             star         8
            cloud         0
           debris         0
            other         0
        undefined         0
Particle fields
pos vel mass iord level family tag tform metal
"""

NAMELIST = """&RUN_PARAMS
hydro=.true.
poisson=.true.
pic=.true.
/

&AMR_PARAMS
levelmin=2
levelmax=3
boxlen=1.0
/
"""


def cell_offsets(level):
    dx = 0.5**level
    out = []
    for ind in range(8):
        iz = ind // 4
        iy = (ind - 4 * iz) // 2
        ix = ind - 2 * iy - 4 * iz
        out.append(((ix - 0.5) * dx, (iy - 0.5) * dx, (iz - 0.5) * dx))
    return np.array(out)


def cell_index(center, level):
    return tuple(int(np.floor(c * 2**level)) + 1 for c in center)


def build_octs():
    """Octs per level: dicts with center, owner shard and son flags."""
    octs = {1: [], 2: [], 3: []}
    octs[1].append({"center": np.array([0.5, 0.5, 0.5]), "owner": 1, "son": np.arange(1, 9)})

    for off in cell_offsets(1):
        center = 0.5 + off
        son = []
        for off2 in cell_offsets(2):
            son.append(1 if cell_index(center + off2, 2) in REFINED_L2 else 0)
        owner = 1 if center[0] < 0.5 else 2
        octs[2].append({"center": center, "owner": owner, "son": np.array(son)})

    for idx in sorted(REFINED_L2):
        center = (np.array(idx) - 0.5) / 4.0
        owner = 1 if center[0] < 0.5 else 2
        octs[3].append({"center": center, "owner": owner, "son": np.zeros(8, dtype=int)})
    return octs


def hydro_values(x, y, z, level):
    rho = 1.0 + x + 2.0 * y
    return [rho, 0.1 + z, -0.2 + 0.0 * x, 0.3 * x, 0.1 * rho, float(level) + 0.0 * x]


def grav_values(x, y, z, level):
    r = np.sqrt((x - 0.5) ** 2 + (y - 0.5) ** 2 + (z - 0.5) ** 2)
    return [-1.0 / (0.1 + r), -(x - 0.5), -(y - 0.5), -(z - 0.5)]


def file_blocks(octs, icpu):
    """Octs stored in file ``icpu``, grouped [level][domain]."""
    blocks = {}
    for level, level_octs in octs.items():
        blocks[level] = []
        for j in range(1, NCPU + 1):
            sel = [o for o in level_octs if o["owner"] == j and (j == icpu or (level == 1 and icpu != 1))]
            blocks[level].append(sel)
    return blocks


def write_amr(path, blocks, icpu):
    i4 = np.int32
    numbl = np.array([[len(blocks[l][j]) for j in range(NCPU)] for l in range(1, LEVELMAX + 1)], dtype=i4)
    with FortranFile(path, "w") as f:
        f.write_record(np.array([NCPU], i4))
        f.write_record(np.array([3], i4))
        f.write_record(np.array([1, 1, 1], i4))
        f.write_record(np.array([LEVELMAX], i4))
        f.write_record(np.array([1000], i4))
        f.write_record(np.array([0], i4))  # nboundary
        f.write_record(np.array([int(numbl[:, icpu - 1].sum())], i4))
        f.write_record(np.array([BOXLEN]))
        f.write_record(np.array([1, 1, 1], i4))
        f.write_record(np.zeros(1))  # tout
        f.write_record(np.zeros(1))  # aout
        f.write_record(np.array([TIME]))
        f.write_record(np.zeros(LEVELMAX))  # dtold
        f.write_record(np.zeros(LEVELMAX))  # dtnew
        f.write_record(np.array([10, 10], i4))
        f.write_record(np.zeros(3))
        f.write_record(np.zeros(7))
        f.write_record(np.zeros(5))
        f.write_record(np.zeros(1))  # mass_sph
        f.write_record(np.zeros(NCPU * LEVELMAX, i4))  # headl
        f.write_record(np.zeros(NCPU * LEVELMAX, i4))  # taill
        f.write_record(numbl.ravel())
        f.write_record(np.zeros(10 * LEVELMAX, i4))  # numbtot
        f.write_record(np.zeros(5, i4))  # free memory
        f.write_record(np.frombuffer(b"hilbert".ljust(128), dtype=np.uint8))
        f.write_record(np.zeros(NCPU + 1))  # bound_key
        f.write_record(np.ones(1, i4))  # coarse son
        f.write_record(np.zeros(1, i4))  # coarse flag1
        f.write_record(np.ones(1, i4))  # coarse cpu_map

        for level in range(1, LEVELMAX + 1):
            for block in blocks[level]:
                ng = len(block)
                if ng == 0:
                    continue
                for _ in range(3):
                    f.write_record(np.arange(1, ng + 1, dtype=i4))
                for axis in range(3):
                    f.write_record(np.array([o["center"][axis] for o in block]))
                f.write_record(np.zeros(ng, i4))  # father
                for _ in range(6):
                    f.write_record(np.zeros(ng, i4))  # nbor
                for ind in range(8):
                    f.write_record(np.array([o["son"][ind] for o in block], dtype=i4))
                for _ in range(8):
                    f.write_record(np.full(ng, icpu, dtype=i4))  # cpu_map
                for _ in range(8):
                    f.write_record(np.zeros(ng, i4))  # flag1


def write_cell_payload(path, blocks, header, values_fn):
    with FortranFile(path, "w") as f:
        for record in header:
            f.write_record(record)
        for level in range(1, LEVELMAX + 1):
            offsets = cell_offsets(level)
            for block in blocks[level]:
                ng = len(block)
                f.write_record(np.array([level], np.int32))
                f.write_record(np.array([ng], np.int32))
                if ng == 0:
                    continue
                centers = np.array([o["center"] for o in block])
                for ind in range(8):
                    pos = centers + offsets[ind]
                    vals = values_fn(pos[:, 0], pos[:, 1], pos[:, 2], level)
                    for v in vals:
                        f.write_record(np.asarray(v, dtype=np.float64))


def particle_columns(icpu):
    rng = np.random.default_rng(icpu)
    n = NPART_PER_SHARD
    x = rng.uniform(0.0, 0.5, n) + (0.5 if icpu == 2 else 0.0)
    y = rng.uniform(0.0, 1.0, n)
    z = rng.uniform(0.0, 1.0, n)
    family = np.array([1] * (n - NSTAR_PER_SHARD) + [2] * NSTAR_PER_SHARD, dtype=np.int8)
    birth = np.where(family == 2, rng.uniform(0.05, 0.3, n), 0.0)
    return {
        "x": x, "y": y, "z": z,
        "vx": rng.normal(size=n), "vy": rng.normal(size=n), "vz": rng.normal(size=n),
        "mass": np.full(n, 1e-3),
        "id": np.arange(1, n + 1, dtype=np.int32) + 100 * icpu,
        "level": np.full(n, LEVELMAX, dtype=np.int32),
        "family": family,
        "tag": np.zeros(n, dtype=np.int8),
        "birth": birth,
        "metals": np.full(n, 0.02),
    }


def write_particles(path, icpu):
    cols = particle_columns(icpu)
    with FortranFile(path, "w") as f:
        f.write_record(np.array([NCPU], np.int32))
        f.write_record(np.array([3], np.int32))
        f.write_record(np.array([NPART_PER_SHARD], np.int32))
        f.write_record(np.zeros(4, np.int32))  # localseed
        f.write_record(np.array([NSTAR_PER_SHARD * NCPU], np.int32))
        f.write_record(np.zeros(1))  # mstar_tot
        f.write_record(np.zeros(1))  # mstar_lost
        f.write_record(np.array([0], np.int32))  # nsink
        for name in ("x", "y", "z", "vx", "vy", "vz", "mass", "id", "level", "family", "tag", "birth", "metals"):
            f.write_record(cols[name])


def write_info(path):
    lines = [
        f"ncpu        ={NCPU:11d}",
        f"ndim        ={3:11d}",
        f"levelmin    ={LEVELMIN:11d}",
        f"levelmax    ={LEVELMAX:11d}",
        f"ngridmax    ={1000:11d}",
        f"nstep_coarse={10:11d}",
        "",
        f"boxlen      ={BOXLEN:23.15E}",
        f"time        ={TIME:23.15E}",
        f"aexp        ={1.0:23.15E}",
        f"H0          ={1.0:23.15E}",
        f"omega_m     ={1.0:23.15E}",
        f"omega_l     ={0.0:23.15E}",
        f"omega_k     ={0.0:23.15E}",
        f"omega_b     ={0.0:23.15E}",
        f"unit_l      ={UNIT_L:23.15E}",
        f"unit_d      ={UNIT_D:23.15E}",
        f"unit_t      ={UNIT_T:23.15E}",
        "",
        "ordering type=hilbert",
        "   DOMAIN   ind_min                 ind_max",
        f"       1   {0.0:23.15E}   {4.0:23.15E}",
        f"       2   {4.0:23.15E}   {8.0:23.15E}",
    ]
    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")


def write_clumps(outdir):
    header = "index lev parent ncell peak_x peak_y peak_z rho- rho+ rho_av mass_cl relevance"
    rows = {
        1: ["1 0 1 12 0.25 0.30 0.35 0.1 10.0 2.0 5.0 3.0", "2 0 2 4 0.10 0.80 0.20 0.1 4.0 1.0 1.5 2.0"],
        2: ["3 0 3 20 0.75 0.60 0.55 0.2 12.0 3.0 8.0 4.0"],
    }
    for icpu in range(1, NCPU + 1):
        with open(os.path.join(outdir, f"clump_00001.txt{icpu:05d}"), "w") as f:
            f.write(header + "\n")
            for row in rows[icpu]:
                f.write(row + "\n")


def write_snapshot(root, clumps=False):
    """Write output_00001 below ``root`` and return the snapshot directory."""
    outdir = os.path.join(str(root), "output_00001")
    os.makedirs(outdir, exist_ok=True)

    write_info(os.path.join(outdir, "info_00001.txt"))
    with open(os.path.join(outdir, "hydro_file_descriptor.txt"), "w") as f:
        f.write(HYDRO_DESCRIPTOR)
    with open(os.path.join(outdir, "part_file_descriptor.txt"), "w") as f:
        f.write(PART_DESCRIPTOR)
    with open(os.path.join(outdir, "header_00001.txt"), "w") as f:
        f.write(PART_HEADER)
    with open(os.path.join(outdir, "namelist.txt"), "w") as f:
        f.write(NAMELIST)

    octs = build_octs()
    hydro_header = [
        np.array([NCPU], np.int32), np.array([6], np.int32), np.array([3], np.int32),
        np.array([LEVELMAX], np.int32), np.array([0], np.int32), np.array([GAMMA]),
    ]
    grav_header = [
        np.array([NCPU], np.int32), np.array([4], np.int32),
        np.array([LEVELMAX], np.int32), np.array([0], np.int32),
    ]
    for icpu in range(1, NCPU + 1):
        blocks = file_blocks(octs, icpu)
        write_amr(os.path.join(outdir, f"amr_00001.out{icpu:05d}"), blocks, icpu)
        write_cell_payload(os.path.join(outdir, f"hydro_00001.out{icpu:05d}"), blocks, hydro_header, hydro_values)
        write_cell_payload(os.path.join(outdir, f"grav_00001.out{icpu:05d}"), blocks, grav_header, grav_values)
        write_particles(os.path.join(outdir, f"part_00001.out{icpu:05d}"), icpu)

    if clumps:
        write_clumps(outdir)
    return outdir


# ──────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def sim_path(tmp_path):
    write_snapshot(tmp_path)
    return str(tmp_path)


@pytest.fixture
def clump_sim_path(tmp_path):
    write_snapshot(tmp_path, clumps=True)
    return str(tmp_path)


@pytest.fixture
def info(sim_path):
    return getinfo(1, path=sim_path)


@pytest.fixture
def gas(info):
    return gethydro(info)


@pytest.fixture
def expected():
    """Numbers the synthetic snapshot is built to produce."""
    return {
        "ncpu": NCPU,
        "levelmin": LEVELMIN,
        "levelmax": LEVELMAX,
        "boxlen": BOXLEN,
        "time": TIME,
        "gamma": GAMMA,
        "unit_l": UNIT_L,
        "unit_d": UNIT_D,
        "unit_t": UNIT_T,
        "ncells": 64 - len(REFINED_L2) + 8 * len(REFINED_L2),
        "ncells_lmax2": 64,
        "cells_per_shard": 32 - 1 + 8,
        "nparticles": NPART_PER_SHARD * NCPU,
        "nstars": NSTAR_PER_SHARD * NCPU,
        "hydro_rho": hydro_values,
        "particles": {icpu: particle_columns(icpu) for icpu in range(1, NCPU + 1)},
    }
