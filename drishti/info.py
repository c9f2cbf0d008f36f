# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Resolve a RAMSES snapshot directory into an immutable ``InfoRecord``.

A snapshot ``output_XXXXX`` holds one ``info_XXXXX.txt`` metadata file, one
descriptor per physics component and one binary payload file per component
and shard (``<kind>_XXXXX.outYYYYY``). ``getinfo`` reads the metadata and the
descriptors, records which components are present on disk and derives the
unit table.

──────────────────────────────────────────────────────────────────────────────
FILES
──────────────────────────────────────────────────────────────────────────────
 - info_XXXXX.txt               box, levels, time, cosmology, units, domains
 - hydro_file_descriptor.txt    ordered hydro variable names (v0 or v1)
 - part_file_descriptor.txt     ordered particle fields and types (v1)
 - header_XXXXX.txt             particle counts per family
 - namelist.txt                 run parameters (optional)

"""

from __future__ import annotations

import configparser
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .errors import MissingDataError, UsageError
from .fortran import ShardFile
from .scales import PhysicalConstants, ScaleSet, create_scales

logger = logging.getLogger("drishti")

# payload file prefix per component
COMPONENT_PREFIX = {
    "amr": "amr",
    "hydro": "hydro",
    "gravity": "grav",
    "particles": "part",
    "rt": "rt",
    "sinks": "sink",
}

HYDRO_NAMES = {
    "density": "rho",
    "velocity_x": "vx",
    "velocity_y": "vy",
    "velocity_z": "vz",
    "pressure": "p",
    "thermal_pressure": "p",
}

PARTICLE_NAMES = {
    "position_x": "x",
    "position_y": "y",
    "position_z": "z",
    "velocity_x": "vx",
    "velocity_y": "vy",
    "velocity_z": "vz",
    "identity": "id",
    "levelp": "level",
    "birth_time": "birth",
    "metallicity": "metals",
}

GRAVITY_VARIABLES = ("epot", "ax", "ay", "az")

_INFO_LINE = re.compile(r"^\s*(?P<key>[A-Za-z0-9_ ]+?)\s*=\s*(?P<val>\S+)\s*$")


@dataclass(frozen=True)
class InfoRecord:
    """Everything known about one snapshot before any payload is read."""

    output: int
    path: str
    ncpu: int
    ndim: int
    levelmin: int
    levelmax: int
    ngridmax: int
    nstep_coarse: int
    boxlen: float
    time: float
    aexp: float
    H0: float
    omega_m: float
    omega_l: float
    omega_k: float
    omega_b: float
    unit_l: float
    unit_d: float
    unit_t: float
    unit_v: float
    unit_m: float
    scale: ScaleSet
    constants: PhysicalConstants
    ordering: str = "hilbert"
    bound_key: Tuple[float, ...] = ()
    gamma: float = 5.0 / 3.0
    nvarh: int = 0
    variable_list: Tuple[str, ...] = ()
    hydro_descriptor: Tuple[str, ...] = ()
    hydro_descriptor_version: Optional[int] = None
    gravity_variable_list: Tuple[str, ...] = ()
    particles_variable_list: Tuple[str, ...] = ()
    particles_descriptor: Tuple[Tuple[str, str], ...] = ()
    particles_descriptor_version: Optional[int] = None
    nstar: int = 0
    clumps_variable_list: Tuple[str, ...] = ()
    amr: bool = False
    hydro: bool = False
    gravity: bool = False
    particles: bool = False
    clumps: bool = False
    rt: bool = False
    sinks: bool = False
    particle_counts: Dict[str, int] = field(default_factory=dict)
    namelist: Dict[str, Dict[str, str]] = field(default_factory=dict)
    files: Dict[str, str] = field(default_factory=dict)

    @property
    def output_dir(self) -> str:
        return os.path.join(self.path, f"output_{self.output:05d}")

    def cellsize(self, level) -> np.ndarray:
        """Cell size in code length for ``level`` (scalar or array)."""
        return self.boxlen / 2.0 ** np.asarray(level)

    def has(self, component: str) -> bool:
        return bool(getattr(self, component))

    def shard_path(self, component: str, icpu: int) -> str:
        """Path of the payload file of ``component`` written by shard ``icpu`` (1-based)."""
        if component == "clumps":
            name = f"clump_{self.output:05d}.txt{icpu:05d}"
        else:
            name = f"{COMPONENT_PREFIX[component]}_{self.output:05d}.out{icpu:05d}"
        return os.path.join(self.output_dir, name)


def _parse_info_file(filename: str) -> Tuple[Dict[str, str], List[Tuple[float, float]]]:
    """Return the ``key = value`` entries and the domain (ind_min, ind_max) table."""
    entries: Dict[str, str] = {}
    domains: List[Tuple[float, float]] = []
    in_domains = False

    with open(filename, "r") as f:
        for line in f:
            s = line.strip()
            if not s:
                continue
            if s.startswith("DOMAIN"):
                in_domains = True
                continue
            if in_domains:
                parts = s.split()
                if len(parts) >= 3:
                    domains.append((float(parts[1]), float(parts[2])))
                continue
            m = _INFO_LINE.match(s)
            if m:
                entries[m.group("key").strip().replace(" ", "_")] = m.group("val")

    return entries, domains


def _info_value(entries: Dict[str, str], key: str, cast, filename: str):
    try:
        return cast(entries[key])
    except KeyError:
        raise MissingDataError(f"Entry '{key}' missing from info file {filename}") from None
    except ValueError as e:
        raise UsageError(f"Malformed entry '{key}' in info file {filename}: {e}") from e


def read_descriptor_table(filename: str) -> Tuple[Tuple[str, str], ...]:
    """
    Read a version-1 ``ivar, variable_name, variable_type`` descriptor into
    (name, type) pairs in file order.
    """
    fd = np.genfromtxt(
        filename, delimiter=",", names=True, dtype=None, encoding="utf-8", skip_header=1, autostrip=True
    )
    fd = np.atleast_1d(fd)
    return tuple((str(row["variable_name"]), str(row["variable_type"])) for row in fd)


def descriptor_version(filename: str) -> int:
    with open(filename, "r") as f:
        first = f.readline()
    return 1 if "version" in first else 0


def read_hydro_descriptor(filename: str) -> Tuple[int, Tuple[str, ...]]:
    """Return (layout version, ordered variable names) of a hydro descriptor."""
    version = descriptor_version(filename)
    if version == 1:
        return version, tuple(name for name, _ in read_descriptor_table(filename))

    names = []
    with open(filename, "r") as f:
        for line in f:
            if line.startswith("variable #"):
                names.append(line.split(":", 1)[1].strip())
    return version, tuple(names)


def hydro_column_names(descriptor: Tuple[str, ...], nvarh: int) -> Tuple[str, ...]:
    """
    Column names for the ``nvarh`` hydro variables: known descriptor names map
    to rho/vx/vy/vz/p, everything else is ``var<i>`` (1-based file position).
    Without a descriptor the first five are rho, vx, vy, vz, p.
    """
    if not descriptor:
        canonical = ["rho", "vx", "vy", "vz", "p"]
        return tuple(canonical[i] if i < 5 else f"var{i + 1}" for i in range(nvarh))

    out = []
    for i in range(nvarh):
        name = descriptor[i] if i < len(descriptor) else ""
        column = HYDRO_NAMES.get(name, f"var{i + 1}")
        out.append(column if column not in out else f"var{i + 1}")
    return tuple(out)


def read_particle_header(filename: str) -> Dict[str, int]:
    """Particle counts per family from ``header_XXXXX.txt`` (both layouts)."""
    counts: Dict[str, int] = {}
    with open(filename, "r") as f:
        lines = [line.strip() for line in f if line.strip()]

    if not lines:
        return counts

    if "Family" in lines[0]:
        for line in lines[1:]:
            if line.startswith("Particle fields"):
                break
            parts = line.split()
            if len(parts) == 2:
                name = parts[0].lower()
                counts[name] = counts.get(name, 0) + int(parts[1])
    else:
        for label, value in zip(lines[0::2], lines[1::2]):
            if not label.startswith("Total number of"):
                break
            name = label.replace("Total number of", "").replace("particles", "").strip()
            name = {"": "total", "dark matter": "dm"}.get(name, name.replace(" ", "_"))
            counts[name] = int(value.split()[0])
    return counts


def parse_namelist(filename: str) -> Dict[str, Dict[str, str]]:
    """Parse a Fortran namelist file into ``{group: {key: value}}``."""
    config = configparser.ConfigParser(
        allow_no_value=True, strict=False, comment_prefixes=("!", "#"), inline_comment_prefixes=("!",)
    )
    with open(filename, "r") as file:
        lines = []
        for line in file:
            s = line.strip()
            if s.startswith("&"):
                line = "[" + s[1:] + "]\n"
            elif s == "/":
                continue
            lines.append(line)

    try:
        config.read_string("".join(lines))
    except configparser.Error as e:
        logger.warning("Could not parse namelist '%s': %s", filename, e)
        return {}

    return {s: dict(config.items(s)) for s in config.sections()}


def _read_hydro_header(filename: str) -> Tuple[int, float]:
    """Return (nvar, gamma) from the header of a hydro shard."""
    with ShardFile(filename) as f:
        f.skip(1)  # ncpu
        nvar = f.read_int()
        f.skip(3)  # ndim, nlevelmax, nboundary
        gamma = f.read_real()
    return nvar, gamma


def _read_nstar(filename: str) -> int:
    with ShardFile(filename) as f:
        f.skip(4)  # ncpu, ndim, npart, localseed
        return f.read_int()


def _clump_columns(filename: str) -> Tuple[str, ...]:
    with open(filename, "r") as f:
        return tuple(f.readline().split())


def getinfo(output: int = 1, path: str = ".", verbose: bool = False) -> InfoRecord:
    """
    Read the metadata of snapshot ``output`` below ``path``.

    Args:
        output: snapshot number (the XXXXX in output_XXXXX)
        path: directory containing the output_XXXXX folders
        verbose: log a summary of the snapshot at INFO level

    Returns:
        InfoRecord

    Raises:
        MissingDataError: path, snapshot folder or info file does not exist.
        UsageError: the simulation is not three-dimensional.
    """
    if not os.path.isdir(path):
        raise MissingDataError(f"Simulation directory not found: {path}")

    output = int(output)
    outdir = os.path.join(path, f"output_{output:05d}")
    if not os.path.isdir(outdir):
        raise MissingDataError(f"Snapshot {output} not found: {outdir}")

    info_file = os.path.join(outdir, f"info_{output:05d}.txt")
    if not os.path.isfile(info_file):
        raise MissingDataError(f"Info file not found: {info_file}")

    entries, domains = _parse_info_file(info_file)

    def ival(key):
        return _info_value(entries, key, int, info_file)

    def fval(key):
        return _info_value(entries, key, float, info_file)

    ndim = ival("ndim")
    if ndim != 3:
        raise UsageError(f"Only 3D simulations are supported (ndim={ndim}).")

    unit_l, unit_d, unit_t = fval("unit_l"), fval("unit_d"), fval("unit_t")
    unit_m = unit_d * unit_l**3
    constants = PhysicalConstants()

    bound_key: Tuple[float, ...] = ()
    if domains:
        bound_key = (domains[0][0],) + tuple(hi for _, hi in domains)

    files = {"info": info_file}
    present = {}
    for component in COMPONENT_PREFIX:
        fname = os.path.join(outdir, f"{COMPONENT_PREFIX[component]}_{output:05d}.out00001")
        present[component] = os.path.isfile(fname)
        if present[component]:
            files[component] = fname
    clump_file = os.path.join(outdir, f"clump_{output:05d}.txt00001")
    present["clumps"] = os.path.isfile(clump_file)
    if present["clumps"]:
        files["clumps"] = clump_file

    extras = {
        "hydro_descriptor": os.path.join(outdir, "hydro_file_descriptor.txt"),
        "particles_descriptor": os.path.join(outdir, "part_file_descriptor.txt"),
        "header": os.path.join(outdir, f"header_{output:05d}.txt"),
        "namelist": os.path.join(outdir, "namelist.txt"),
    }
    for key, fname in extras.items():
        if os.path.isfile(fname):
            files[key] = fname

    # hydro
    gamma, nvarh = 5.0 / 3.0, 0
    hydro_descriptor: Tuple[str, ...] = ()
    hydro_version = None
    variable_list: Tuple[str, ...] = ()
    if present["hydro"]:
        nvarh, gamma = _read_hydro_header(files["hydro"])
        if "hydro_descriptor" in files:
            hydro_version, hydro_descriptor = read_hydro_descriptor(files["hydro_descriptor"])
        variable_list = hydro_column_names(hydro_descriptor, nvarh)

    # particles
    part_descriptor: Tuple[Tuple[str, str], ...] = ()
    part_version = None
    particles_variable_list: Tuple[str, ...] = ()
    nstar = 0
    if present["particles"]:
        nstar = _read_nstar(files["particles"])
        if "particles_descriptor" in files:
            part_version = descriptor_version(files["particles_descriptor"])
            part_descriptor = tuple(
                (PARTICLE_NAMES.get(name, name), kind)
                for name, kind in read_descriptor_table(files["particles_descriptor"])
            )
            particles_variable_list = tuple(
                name for name, _ in part_descriptor if name not in ("x", "y", "z", "id", "level")
            )
        else:
            part_version = 0
            particles_variable_list = ("vx", "vy", "vz", "mass") + (("birth",) if nstar > 0 else ())

    particle_counts = read_particle_header(files["header"]) if "header" in files else {}
    namelist = parse_namelist(files["namelist"]) if "namelist" in files else {}

    record = InfoRecord(
        output=output,
        path=path,
        ncpu=ival("ncpu"),
        ndim=ndim,
        levelmin=ival("levelmin"),
        levelmax=ival("levelmax"),
        ngridmax=ival("ngridmax"),
        nstep_coarse=ival("nstep_coarse"),
        boxlen=fval("boxlen"),
        time=fval("time"),
        aexp=fval("aexp"),
        H0=fval("H0"),
        omega_m=fval("omega_m"),
        omega_l=fval("omega_l"),
        omega_k=fval("omega_k"),
        omega_b=fval("omega_b"),
        unit_l=unit_l,
        unit_d=unit_d,
        unit_t=unit_t,
        unit_v=unit_l / unit_t,
        unit_m=unit_m,
        scale=create_scales(unit_l, unit_d, unit_t, unit_m, constants),
        constants=constants,
        ordering=entries.get("ordering_type", "hilbert"),
        bound_key=bound_key,
        gamma=gamma,
        nvarh=nvarh,
        variable_list=variable_list,
        hydro_descriptor=hydro_descriptor,
        hydro_descriptor_version=hydro_version,
        gravity_variable_list=GRAVITY_VARIABLES if present["gravity"] else (),
        particles_variable_list=particles_variable_list,
        particles_descriptor=part_descriptor,
        particles_descriptor_version=part_version,
        nstar=nstar,
        clumps_variable_list=_clump_columns(files["clumps"]) if present["clumps"] else (),
        amr=present["amr"],
        hydro=present["hydro"],
        gravity=present["gravity"],
        particles=present["particles"],
        clumps=present["clumps"],
        rt=present["rt"],
        sinks=present["sinks"],
        particle_counts=particle_counts,
        namelist=namelist,
        files=files,
    )

    log = logger.info if verbose else logger.debug
    log(
        "Snapshot %d: ncpu=%d levels=[%d, %d] boxlen=%g time=%g",
        output, record.ncpu, record.levelmin, record.levelmax, record.boxlen, record.time,
    )
    log(
        "Components: hydro=%s gravity=%s particles=%s clumps=%s rt=%s sinks=%s",
        record.hydro, record.gravity, record.particles, record.clumps, record.rt, record.sinks,
    )
    return record
