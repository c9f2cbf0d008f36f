#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Parallel execution utilities for drishti.

Shards of one snapshot are independent: each worker decodes one shard into
its own column block and the blocks are merged afterwards in shard order, so
the worker count never changes the result.

"""

from __future__ import annotations

from typing import Callable, Dict, List, Sequence, Tuple

import logging
import time
import concurrent.futures

import numpy as np

from .errors import UsageError

logger = logging.getLogger("drishti")

EXECUTORS = ("thread", "process")

ShardBlock = Tuple[int, Dict[str, np.ndarray]]


def read_shards(
    worker: Callable[[int], Dict[str, np.ndarray]],
    shards: Sequence[int],
    nthreads: int = 1,
    executor: str = "thread",
) -> List[ShardBlock]:
    """
    Run ``worker`` on every shard id and return ``(shard, columns)`` blocks in
    the order of ``shards``.

    Args:
        worker: callable decoding one shard; must not touch shared state.
                With ``executor="process"`` it must be picklable
                (a module-level function or a functools.partial of one).
        shards: 1-based shard ids.
        nthreads: number of workers; capped at the number of shards.
        executor: "thread" or "process".

    Errors raised by a worker propagate unchanged; there is no retry.
    """
    if executor not in EXECUTORS:
        raise UsageError(f"Unknown executor '{executor}'; use one of {EXECUTORS}.")

    shards = list(shards)
    nworkers = max(1, min(int(nthreads), len(shards))) if shards else 1

    logger.debug("Reading %d shard(s) on %d worker(s)", len(shards), nworkers)
    t0 = time.time()

    if nworkers == 1:
        results = [worker(s) for s in shards]
    else:
        pool_cls = (
            concurrent.futures.ThreadPoolExecutor
            if executor == "thread"
            else concurrent.futures.ProcessPoolExecutor
        )
        with pool_cls(max_workers=nworkers) as ex:
            results = list(ex.map(worker, shards))

    logger.debug("Shard reads finished in %.2fs", time.time() - t0)
    return list(zip(shards, results))
