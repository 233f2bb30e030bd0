import os

import numpy as np

# Suppress CUDA/XLA C++ warnings (GPU interconnect, NUMA, cuDNN factories)
# Must be set before JAX import; does not affect JAX compilation time messages
os.environ.setdefault('TF_CPP_MIN_LOG_LEVEL', '2')

import logging
logger = logging.getLogger('histmcmc')


def clean_config(run_config):
    """
    Cleans the walk config and sets defaults.
    All config keys use lowercase with underscores.
    """

    # Define Defaults and retrieve values from dictionary (all lowercase)
    run_config.setdefault('nsteps', 1000)
    run_config.setdefault('burnin_fraction', 0.1)
    run_config.setdefault('debug_mode', False)
    run_config.setdefault('sync_interval', 10000)
    run_config.setdefault('rng_seed', 42)
    run_config.setdefault('step_scale', 1.0)

    if not isinstance(run_config["debug_mode"], (bool, np.bool_)):
        logger.warning("'debug_mode' must be 'True' or 'False'")

    return run_config


def burnin_steps(run_config) -> int:
    """Number of leading steps that are walked but not stored."""
    return int(run_config['burnin_fraction'] * run_config['nsteps'])
