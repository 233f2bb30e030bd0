"""
Error Handling and Validation Utilities for the Likelihood Walk

This module defines the error taxonomy used across the package and provides
validation functions and diagnostic tools for MCMC sampling.

Error taxonomy:
    ConfigurationError - bad observables, systematics, signals or run config.
                         Raised at construction time, before any walk starts.
    WalkError          - failure while the random walk is running.
    ResourceError      - sample or lookup buffers do not fit in host/device memory.
"""

from typing import Any, Dict

import numpy as np

import logging
logger = logging.getLogger('histmcmc')


class ConfigurationError(ValueError):
    """Invalid fit configuration, detected before the walk starts."""


class WalkError(RuntimeError):
    """The random walk failed after setup completed."""

    def __init__(self, message: str, step: int = -1):
        super().__init__(message)
        self.step = step


class ResourceError(MemoryError):
    """Sample or lookup-table buffers exceed available memory."""


def is_resource_exhausted(exc: BaseException) -> bool:
    """True if an exception is an out-of-memory report from the host or an XLA device."""
    if isinstance(exc, MemoryError):
        return True
    return 'RESOURCE_EXHAUSTED' in str(exc)


def validate_run_config(run_config: Dict[str, Any]) -> None:
    """
    Validates that a walk configuration is sensible.

    Args:
        run_config: Configuration dictionary (see mcmc.utils.clean_config)

    Raises:
        ConfigurationError: If configuration is invalid
    """
    errors = []

    required_keys = ['nsteps', 'burnin_fraction', 'debug_mode', 'sync_interval']
    for key in required_keys:
        if key not in run_config:
            errors.append(f"Missing required config key: '{key}'")

    if 'nsteps' in run_config:
        nsteps = run_config['nsteps']
        if not isinstance(nsteps, (int, np.integer)) or isinstance(nsteps, bool):
            errors.append(f"nsteps must be an integer, got {nsteps!r}")
        elif nsteps < 0:
            errors.append("nsteps must be >= 0")

    if 'burnin_fraction' in run_config:
        fraction = run_config['burnin_fraction']
        if not np.isfinite(fraction) or fraction < 0 or fraction > 1:
            errors.append(f"burnin_fraction must be in [0, 1], got {fraction}")

    if 'sync_interval' in run_config:
        sync_interval = run_config['sync_interval']
        if not isinstance(sync_interval, (int, np.integer)) or sync_interval < 1:
            errors.append(f"sync_interval must be an integer >= 1, got {sync_interval!r}")

    if 'debug_mode' in run_config:
        if not isinstance(run_config['debug_mode'], (bool, np.bool_)):
            errors.append("debug_mode must be 'True' or 'False'")

    if 'step_scale' in run_config:
        step_scale = run_config['step_scale']
        if not np.isfinite(step_scale) or step_scale <= 0:
            errors.append(f"step_scale must be > 0, got {step_scale}")

    if errors:
        raise ConfigurationError("Invalid walk configuration:\n  " + "\n  ".join(errors))


def diagnose_samples(samples: np.ndarray, nll: np.ndarray, diagnostics: Dict[str, Any]) -> Dict[str, Any]:
    """
    Analyzes a stored chain to identify common issues.

    Args:
        samples: Stored parameter vectors (n_samples, n_params)
        nll: NLL of each stored sample (n_samples,)
        diagnostics: Existing diagnostics dict to extend

    Returns:
        diagnostics: Dictionary with issues, warnings, and info
    """
    diagnostics = diagnostics | {
        'issues': [],
        'warnings': [],
        'info': []
    }

    if samples.shape[0] == 0:
        diagnostics['warnings'].append("No samples stored - nothing to diagnose")
        return diagnostics

    if not np.all(np.isfinite(samples)):
        diagnostics['issues'].append(
            "Samples contain NaN or Inf values - sampler became unstable"
        )

    if not np.all(np.isfinite(nll)):
        diagnostics['issues'].append(
            "Stored NLL values contain NaN or Inf - chain sat on an excluded point"
        )

    # A parameter that never moves is either fixed or stuck
    param_vars = np.var(samples, axis=0)
    stuck = int(np.sum(param_vars < 1e-12))
    if stuck > 0:
        diagnostics['warnings'].append(
            f"{stuck} parameter(s) have near-zero variance (fixed or stuck)"
        )

    diagnostics['info'].append(f"Total samples: {samples.shape[0]}")
    diagnostics['info'].append(f"Number of parameters: {samples.shape[1]}")
    diagnostics['info'].append(f"Minimum NLL: {np.min(nll):.4f}")

    return diagnostics


def print_diagnostics(diagnostics: Dict[str, Any]) -> None:
    """Pretty-print diagnostics from diagnose_samples."""
    if diagnostics['issues']:
        logger.error("\n[ERROR] ISSUES:")
        for issue in diagnostics['issues']:
            logger.error(f"  - {issue}")

    if diagnostics['warnings']:
        logger.warning("\n[WARN] WARNINGS:")
        for warning in diagnostics['warnings']:
            logger.warning(f"  - {warning}")

    if diagnostics['info']:
        logger.info("\n[INFO] INFO:")
        for info in diagnostics['info']:
            logger.info(f"  - {info}")

    if not diagnostics['issues'] and not diagnostics['warnings']:
        logger.info("\n[OK] No issues detected")
