# -*- coding: utf-8 -*-

"""

Sequential reader for Fortran unformatted shard files.

RAMSES writes every array as one Fortran record; ``ShardFile`` wraps
``scipy.io.FortranFile`` and turns its format/EOF errors into
``ShardReadError`` so a damaged archive is reported with the file name.

"""

from __future__ import annotations

import contextlib
import logging
import os
from typing import Iterator

import numpy as np
from scipy.io import FortranEOFError, FortranFile, FortranFormattingError

from .errors import MissingDataError, ShardReadError

logger = logging.getLogger("drishti")


class ShardFile:
    """Context manager reading records from one shard file in order."""

    def __init__(self, path: str):
        self.path = path
        self.records_read = 0
        if not os.path.isfile(path):
            raise MissingDataError(f"Shard file not found: {path}")
        try:
            self._f = FortranFile(path, "r")
        except OSError as e:
            raise ShardReadError(f"Cannot open shard '{path}': {e}") from e

    def __enter__(self) -> "ShardFile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._f.close()

    @contextlib.contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except (FortranEOFError, FortranFormattingError, ValueError) as e:
            raise ShardReadError(
                f"Malformed or truncated shard '{self.path}' at record {self.records_read + 1}: {e}"
            ) from e
        self.records_read += 1

    def skip(self, n: int = 1) -> None:
        """Skip ``n`` records without decoding them."""
        for _ in range(n):
            with self._guard():
                self._f.read_record(np.uint8)

    def read_ints(self, dtype="i4") -> np.ndarray:
        with self._guard():
            return self._f.read_ints(dtype)

    def read_int(self, dtype="i4") -> int:
        return int(self.read_ints(dtype)[0])

    def read_reals(self, dtype="f8") -> np.ndarray:
        with self._guard():
            return self._f.read_reals(dtype)

    def read_real(self, dtype="f8") -> float:
        return float(self.read_reals(dtype)[0])

    def read_array(self, dtype, count: int) -> np.ndarray:
        """Read one record that must hold exactly ``count`` values of ``dtype``."""
        with self._guard():
            arr = self._f.read_record(dtype)
            if arr.size != count:
                raise ValueError(f"expected {count} values, found {arr.size}")
        return arr

