"""
MCMC Subpackage - Metropolis walk over fit parameters.

This package contains the walk logic:
- engine: Walk entry point (MCMC)
- compile: Kernel compilation and caching
- diagnostics: Acceptance and parameter summaries
- nll: Negative log-likelihood (jax and numpy backends)
- sampling: Proposal and Metropolis acceptance functions
- scan: JAX scan body and lookup-table maintenance
- types: Core data structures (ParameterSpace, WalkArrays, WalkParams)
- utils: Run-config defaults
"""

# Import types first (needed by other modules)
from .types import ParameterSpace, WalkArrays, WalkParams, build_parameter_space

# Import main entry point
from .engine import MCMC

# Import commonly used functions
from .nll import NLLEvaluator, nll_jax, nll_numpy, pairwise_reduce, DEFAULT_BLOCK_SIZE
from .sampling import rand_walk_proposal, metropolis_accept
from .diagnostics import print_acceptance_summary, parameter_summary
from .utils import clean_config

__all__ = [
    # Main entry point
    'MCMC',
    # Types
    'ParameterSpace',
    'WalkArrays',
    'WalkParams',
    'build_parameter_space',
    # NLL
    'NLLEvaluator',
    'nll_jax',
    'nll_numpy',
    'pairwise_reduce',
    'DEFAULT_BLOCK_SIZE',
    # Sampling
    'rand_walk_proposal',
    'metropolis_accept',
    # Diagnostics
    'print_acceptance_summary',
    'parameter_summary',
    # Config
    'clean_config',
]
