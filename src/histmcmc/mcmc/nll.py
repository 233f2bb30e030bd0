"""
Negative Log-Likelihood Evaluation.

    NLL = sum_j N_j + 1/2 * sum_k ((p_k - mean_k) / sigma_k)^2
          - sum_i log(sum_j N_j * P_j(x_i))

where N_j is the expected count of signal j at the current parameters and
P_j(x_i) is the lookup-table density of signal j at data event i.

The event term is computed in three steps so it runs the same way on a
single core or a data-parallel device:

  1. Partial sums: events are zero-padded into blocks of block_size (a power
     of two) and each block is summed independently
  2. Total: the partial sums are reduced into one value
  3. Normalization and Gaussian constraint terms are added to the total

Both the within-block and the across-block sums are pairwise tree
reductions (repeatedly adding the upper half of the array onto the lower
half). The fold order is therefore fixed and identical for every backend.

Backends:
- 'jax': traced/compiled JAX; used inside the walk kernel
- 'numpy': host numpy; blocks may be farmed out to a thread pool
"""

from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Optional

import jax
import jax.numpy as jnp
import numpy as np

from ..error_handling import ConfigurationError


DEFAULT_BLOCK_SIZE = 256
BACKENDS = ('jax', 'numpy')


def _next_pow2(n: int) -> int:
    return 1 if n <= 1 else 1 << (int(n) - 1).bit_length()


def pairwise_reduce(values, xp=jnp):
    """
    Sum the last axis by a fixed pairwise tree.

    The axis is zero-padded to a power of two, then halved repeatedly:
    values[..., :n/2] + values[..., n/2:].
    """
    n = values.shape[-1]
    if n == 0:
        return xp.zeros(values.shape[:-1], dtype=values.dtype)
    size = _next_pow2(n)
    if size != n:
        pad = [(0, 0)] * (values.ndim - 1) + [(0, size - n)]
        values = xp.pad(values, pad)
    while size > 1:
        size //= 2
        values = values[..., :size] + values[..., size:]
    return values[..., 0]


def event_log_terms(lut, rates, xp=jnp):
    """log(sum_j N_j * P_j(x_i)) for each event i. Zero density gives -inf."""
    per_event = xp.sum(lut * rates[None, :], axis=1)
    # A negative or NaN mixture is treated like zero density
    positive = per_event > 0
    return xp.where(positive, xp.log(xp.where(positive, per_event, 1.0)), -xp.inf)


def event_partial_sums(lut, rates, block_size: int = DEFAULT_BLOCK_SIZE, xp=jnp):
    """
    Step 1: per-block sums of the event log terms.

    Args:
        lut: Lookup table (n_events, n_signals)
        rates: Expected counts N_j (n_signals,)
        block_size: Events per block (power of two)

    Returns:
        Partial sums, one per block (n_blocks,)
    """
    logs = event_log_terms(lut, rates, xp)
    n_events = logs.shape[0]
    n_blocks = max(1, -(-n_events // block_size))
    padded = xp.pad(logs, (0, n_blocks * block_size - n_events))
    return pairwise_reduce(padded.reshape(n_blocks, block_size), xp)


def signal_rates(params, source_id, rate_fractions):
    """Expected count of each signal from the source rate parameters."""
    return params[source_id] * rate_fractions


def constraint_term(params, means, sigmas, xp=jnp):
    """1/2 sum ((p - mean) / sigma)^2 over parameters with sigma > 0."""
    constrained = sigmas > 0
    safe_sigmas = xp.where(constrained, sigmas, 1.0)
    pulls = xp.where(constrained, (params - means) / safe_sigmas, 0.0)
    return 0.5 * pairwise_reduce(pulls * pulls, xp)


def finalize_nll(event_total, rates, constraint, xp=jnp):
    """
    Step 3: combine the event total with normalization and constraints.

    Non-finite results and negative expected counts map to +inf, so such
    points are always rejected by the Metropolis rule.
    """
    total = pairwise_reduce(rates, xp) + constraint - event_total
    bad = (~xp.isfinite(total)) | xp.any(rates < 0)
    return xp.where(bad, xp.inf, total)


@partial(jax.jit, static_argnames=('block_size',))
def nll_jax(lut, params, source_id, rate_fractions, means, sigmas,
            block_size: int = DEFAULT_BLOCK_SIZE):
    """
    Evaluate the NLL with JAX.

    Args:
        lut: Lookup table (n_events, n_signals)
        params: Full parameter vector (rates then systematics)
        source_id: Rate parameter index for each signal (n_signals,)
        rate_fractions: Share of its source rate carried by each signal (n_signals,)
        means: Parameter central values (n_params,)
        sigmas: Constraint widths, 0 = unconstrained (n_params,)
        block_size: Events per partial-sum block

    Returns:
        Scalar NLL (+inf for excluded points)
    """
    rates = signal_rates(params, source_id, rate_fractions)
    partials = event_partial_sums(lut, rates, block_size, jnp)
    event_total = pairwise_reduce(partials, jnp)
    return finalize_nll(event_total, rates, constraint_term(params, means, sigmas, jnp), jnp)


def nll_numpy(lut, params, source_id, rate_fractions, means, sigmas,
              block_size: int = DEFAULT_BLOCK_SIZE, num_threads: int = 1):
    """
    Evaluate the NLL on the host with numpy.

    With num_threads > 1 the per-block partial sums are computed in a
    thread pool; the reduction of the partial sums is unchanged.
    """
    lut = np.asarray(lut, dtype=np.float64)
    params = np.asarray(params, dtype=np.float64)
    rates = signal_rates(params, np.asarray(source_id), np.asarray(rate_fractions, dtype=np.float64))

    if num_threads > 1 and lut.shape[0] > block_size:
        n_blocks = -(-lut.shape[0] // block_size)
        chunks = [lut[b * block_size:(b + 1) * block_size] for b in range(n_blocks)]

        def block_sum(chunk):
            return event_partial_sums(chunk, rates, block_size, np)[0]

        with ThreadPoolExecutor(max_workers=num_threads) as pool:
            partials = np.array(list(pool.map(block_sum, chunks)))
    else:
        partials = event_partial_sums(lut, rates, block_size, np)

    event_total = pairwise_reduce(partials, np)
    constraint = constraint_term(params, np.asarray(means, dtype=np.float64),
                                 np.asarray(sigmas, dtype=np.float64), np)
    with np.errstate(invalid='ignore'):
        return float(finalize_nll(event_total, rates, constraint, np))


class NLLEvaluator:
    """
    NLL for a fixed parameter space, with a selectable backend.

    Args:
        space: ParameterSpace (source wiring, means and constraint widths)
        block_size: Events per partial-sum block (power of two)
        backend: 'jax' or 'numpy'
        num_threads: Thread pool size for the numpy backend

    Calling the evaluator never mutates the lookup table.
    """

    def __init__(self, space, block_size: int = DEFAULT_BLOCK_SIZE,
                 backend: str = 'jax', num_threads: int = 1):
        validate_block_size(block_size)
        if backend not in BACKENDS:
            raise ConfigurationError(f"Unknown NLL backend '{backend}'. Expected one of {BACKENDS}")
        self.space = space
        self.block_size = block_size
        self.backend = backend
        self.num_threads = num_threads

    def __call__(self, lut, params) -> float:
        s = self.space
        if self.backend == 'numpy':
            return nll_numpy(lut, params, s.source_id, s.rate_fractions, s.means,
                             s.sigmas, self.block_size, self.num_threads)
        return float(nll_jax(jnp.asarray(lut), jnp.asarray(params, dtype=jnp.asarray(lut).dtype),
                             jnp.asarray(s.source_id), jnp.asarray(s.rate_fractions),
                             jnp.asarray(s.means), jnp.asarray(s.sigmas),
                             block_size=self.block_size))


def validate_block_size(block_size: Optional[int]) -> None:
    if not isinstance(block_size, (int, np.integer)) or block_size < 1 or block_size & (block_size - 1):
        raise ConfigurationError(f"block_size must be a positive power of two, got {block_size!r}")
