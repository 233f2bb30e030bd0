"""
MCMC Sampling Functions.

Core sampling functions for the walk:
- rand_walk_proposal: Independent Gaussian perturbation of floating parameters
- metropolis_accept: Metropolis acceptance test on NLL values

Proposal: x' ~ N(x_current, diag((step_scale * steps)^2)) on floating
parameters; fixed parameters are masked out and never move. The proposal
is symmetric, so the Hastings ratio is 0 and acceptance depends only on
the NLL difference.
"""

import jax.numpy as jnp
import jax.random as random


def rand_walk_proposal(key, current, steps, float_mask, step_scale=1.0):
    """
    Random walk proposal with independent per-parameter widths.

    Args:
        key: JAX random key
        current: Current parameter vector (n_params,)
        steps: Proposal width of each parameter (n_params,)
        float_mask: 1.0 for floating parameters, 0.0 for fixed ones
        step_scale: Global multiplier on the widths

    Returns:
        proposal: Proposed parameter vector
        is_finite: False if the proposal contains NaN or Inf
    """
    noise = random.normal(key, shape=current.shape, dtype=current.dtype)
    perturbation = noise * steps * step_scale

    # Apply mask to only perturb floating parameters
    proposal = current + jnp.where(float_mask > 0, perturbation, 0.0)
    return proposal, jnp.all(jnp.isfinite(proposal))


def metropolis_accept(key, nll_current, nll_proposed):
    """
    Metropolis test for a symmetric proposal, in NLL units.

    Accept if nll_proposed <= nll_current, otherwise with probability
    exp(nll_current - nll_proposed). A non-finite proposed NLL (NaN or +inf)
    is never accepted, so a state with NLL +inf is left for any finite point.

    Args:
        key: JAX random key
        nll_current: NLL of the current state
        nll_proposed: NLL of the proposed state

    Returns:
        Boolean scalar
    """
    log_uniform = jnp.log(random.uniform(key, shape=(), dtype=jnp.result_type(float)))
    downhill = nll_proposed <= nll_current
    uphill = log_uniform < (nll_current - nll_proposed)
    return (downhill | uphill) & jnp.isfinite(nll_proposed)
