"""
MCMC Scan Body and Lookup-Table Maintenance.

This module contains the main scan loop components:
- initial_lookup_table: Evaluate every signal PDF at a parameter point
- refresh_lookup_table: Re-evaluate only signals whose systematics changed
- make_step_fn: Build one walk step (propose, evaluate, accept/reject, record)

Carry tuple structure (5 elements):
    0: params - Current (last accepted) parameter vector
    1: nll - NLL of the current parameters
    2: lut - Lookup table at the current parameters (n_events, n_signals)
    3: n_accepted - Accepted proposals so far
    4: n_nonfinite - Proposals rejected for containing NaN/Inf

Signal rates are fixed at their efficiency-at-means values, so the
per-PDF normalizations returned by the evaluators are not carried.
"""

from typing import Callable, Sequence, Tuple

import jax
import jax.numpy as jnp
import jax.random as random

from .nll import nll_jax
from .sampling import metropolis_accept, rand_walk_proposal
from .types import WalkArrays, WalkParams


def initial_lookup_table(evaluators: Sequence[Callable], pdf_buffers: Sequence[tuple],
                         systematic_params) -> jnp.ndarray:
    """Evaluate all signal PDFs at one systematic parameter point: (n_events, n_signals)."""
    columns = [evaluate(buffers, systematic_params)[0]
               for evaluate, buffers in zip(evaluators, pdf_buffers)]
    return jnp.stack(columns, axis=1)


def refresh_lookup_table(lut, current_sys, proposed_sys,
                         evaluators: Sequence[Callable], pdf_buffers: Sequence[tuple],
                         signal_slots: Sequence[Tuple[int, ...]]):
    """
    Lookup table at the proposed systematics, reusing unchanged columns.

    A signal's column is re-evaluated only if one of the systematic slots
    its PDF reads differs between the current and proposed points. Signals
    without systematics always reuse their cached column.
    """
    columns = []
    for j, (evaluate, buffers, slots) in enumerate(zip(evaluators, pdf_buffers, signal_slots)):
        cached = lut[:, j]
        if not slots:
            columns.append(cached)
            continue

        idx = jnp.asarray(slots, dtype=jnp.int32)
        changed = jnp.any(proposed_sys[idx] != current_sys[idx])
        column = jax.lax.cond(
            changed,
            lambda op, evaluate=evaluate: evaluate(*op)[0],
            lambda op, cached=cached: cached,
            (buffers, proposed_sys),
        )
        columns.append(column)
    return jnp.stack(columns, axis=1)


def make_step_fn(evaluators: Sequence[Callable], signal_slots: Sequence[Tuple[int, ...]],
                 nsources: int, walk_params: WalkParams) -> Callable:
    """
    Build the scan body for one walk step.

    The returned function has the signature
        step(carry, step_idx, consts) -> (next_carry, record)
    with consts = (master_key, arrays, pdf_buffers, step_scale).

    The random key for a step is derived from its global index, so a walk
    gives the same chain however it is split into chunks.

    record = (params, nll, accepted, keep):
        In normal mode params/nll are the state after the step (accepted or
        repeated). In debug mode every finite proposal is accepted and
        params/nll are the proposed point and its NLL.
        keep is False during burn-in.
    """
    debug_mode = walk_params.DEBUG_MODE
    burnin_steps = walk_params.BURNIN_STEPS
    block_size = walk_params.BLOCK_SIZE

    def step(carry, step_idx, consts):
        params, nll, lut, n_accepted, n_nonfinite = carry
        master_key, arrays, pdf_buffers, step_scale = consts
        arrays: WalkArrays

        step_key = random.fold_in(master_key, step_idx)
        proposal_key, accept_key = random.split(step_key)

        # --- Propose ---
        proposed, is_finite = rand_walk_proposal(
            proposal_key, params, arrays.steps, arrays.float_mask, step_scale
        )
        # Non-finite proposals never reach the PDFs or the NLL
        safe_proposed = jnp.where(is_finite, proposed, params)

        # --- Evaluate ---
        proposed_lut = refresh_lookup_table(
            lut, params[nsources:], safe_proposed[nsources:],
            evaluators, pdf_buffers, signal_slots
        )
        proposed_nll = nll_jax(
            proposed_lut, safe_proposed, arrays.source_id, arrays.rate_fractions,
            arrays.means, arrays.sigmas, block_size=block_size
        )
        proposed_nll = jnp.where(is_finite, proposed_nll, jnp.inf)

        # --- Accept/Reject ---
        if debug_mode:
            # Debug walks follow every finite proposal
            accept = is_finite
        else:
            accept = is_finite & metropolis_accept(accept_key, nll, proposed_nll)

        next_params = jnp.where(accept, proposed, params)
        next_nll = jnp.where(accept, proposed_nll, nll)
        next_lut = jnp.where(accept, proposed_lut, lut)

        next_carry = (
            next_params, next_nll, next_lut,
            n_accepted + accept.astype(n_accepted.dtype),
            n_nonfinite + (~is_finite).astype(n_nonfinite.dtype),
        )

        # --- Record ---
        if debug_mode:
            record_params, record_nll = proposed, proposed_nll
        else:
            record_params, record_nll = next_params, next_nll
        keep = step_idx >= burnin_steps

        return next_carry, (record_params, record_nll, accept, keep)

    return step
