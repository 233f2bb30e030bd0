"""
MCMC Diagnostics.

Post-walk summaries for a single chain:
- acceptance_rate: Fraction of proposals accepted
- print_acceptance_summary: Log the acceptance rate with a low-rate warning
- parameter_summary: Mean, spread and interval of each stored parameter
- print_parameter_summary: Log the parameter summary as a table
"""

from typing import Dict, Sequence

import numpy as np

import logging
logger = logging.getLogger('histmcmc')


LOW_ACCEPTANCE = 0.10


def acceptance_rate(n_accepted: int, n_steps: int) -> float:
    if n_steps <= 0:
        return 0.0
    return float(n_accepted) / float(n_steps)


def print_acceptance_summary(n_accepted: int, n_steps: int, n_nonfinite: int = 0) -> None:
    """
    Print summary statistics for the Metropolis acceptance rate.

    Args:
        n_accepted: Accepted proposals
        n_steps: Steps walked (including burn-in)
        n_nonfinite: Proposals rejected for containing NaN/Inf
    """
    if n_steps <= 0:
        return

    rate = acceptance_rate(n_accepted, n_steps)
    logger.info(f"\n--- MH Acceptance Rate ---")
    logger.info(f"  Accepted: {n_accepted}/{n_steps} ({rate:.1%})")

    if n_nonfinite:
        logger.warning(f"  WARNING: {n_nonfinite} proposal(s) contained NaN/Inf and were rejected")

    # Warn about low acceptance rates
    if rate < LOW_ACCEPTANCE:
        logger.warning(f"  WARNING: acceptance rate < {LOW_ACCEPTANCE:.0%}; consider a smaller step_scale")


def parameter_summary(samples: np.ndarray, labels: Sequence[str]) -> Dict[str, Dict[str, float]]:
    """
    Per-parameter mean, standard deviation and central 68% interval.

    Args:
        samples: Stored parameter vectors (n_samples, n_params)
        labels: Parameter names

    Returns:
        {label: {'mean', 'std', 'lower', 'upper'}}; empty if nothing is stored
    """
    samples = np.asarray(samples)
    if samples.shape[0] == 0:
        return {}

    lower, upper = np.percentile(samples, [15.865, 84.135], axis=0)
    means = np.mean(samples, axis=0)
    stds = np.std(samples, axis=0)
    return {
        label: {
            'mean': float(means[i]),
            'std': float(stds[i]),
            'lower': float(lower[i]),
            'upper': float(upper[i]),
        }
        for i, label in enumerate(labels)
    }


def print_parameter_summary(summary: Dict[str, Dict[str, float]]) -> None:
    if not summary:
        return
    width = max(len(label) for label in summary)
    logger.info(f"\n--- Parameter Summary ({len(summary)} parameters) ---")
    for label, stats in summary.items():
        logger.info(
            f"  {label:<{width}}  {stats['mean']:12.5g} +/- {stats['std']:<10.4g} "
            f"[{stats['lower']:.5g}, {stats['upper']:.5g}]"
        )
