"""
Walk Kernel Compilation and Caching.

This module handles JAX compilation of the walk kernel:
- build_chunk_runner: Wrap the step function in a lax.scan over a chunk of steps
- KernelCache: Per-engine cache of compiled chunk kernels

A chunk is sync_interval steps long (the final chunk of a walk may be
shorter). Each distinct chunk length is compiled once per engine.
"""

from typing import Callable, Dict, Tuple

import jax
import jax.numpy as jnp

from .types import WalkParams

import logging
logger = logging.getLogger('histmcmc')


def build_chunk_runner(step_fn: Callable, length: int) -> Callable:
    """
    Compile `length` consecutive walk steps into one kernel.

    The kernel has the signature run(carry, start, consts) -> (carry, records)
    where records are stacked along a leading axis of size `length`.
    """
    def run_chunk(carry, start, consts):
        step_indices = start + jnp.arange(length)
        return jax.lax.scan(lambda c, s: step_fn(c, s, consts), carry, step_indices)

    return jax.jit(run_chunk)


class KernelCache:
    """
    Compiled chunk kernels keyed by run parameters and chunk length.

    Kernels close over the engine's PDFs, so the cache belongs to one
    engine instance and is never shared.
    """

    def __init__(self, make_step_fn: Callable[[WalkParams], Callable]):
        self._make_step_fn = make_step_fn
        self._kernels: Dict[Tuple[WalkParams, int], Callable] = {}

    def get(self, walk_params: WalkParams, length: int) -> Callable:
        key = (walk_params, length)
        if key not in self._kernels:
            logger.info(f"Compiling walk kernel for {length} steps...")
            self._kernels[key] = build_chunk_runner(self._make_step_fn(walk_params), length)
        return self._kernels[key]

    def __len__(self):
        return len(self._kernels)

