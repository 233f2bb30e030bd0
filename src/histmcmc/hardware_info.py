"""
Hardware Info - JAX backend and device fingerprint.

Logged at the start of each walk so timings from different sessions can be
compared.

Functions:
- get_hardware_info: Collect GPU/JAX hardware fingerprint
- get_histmcmc_version: Get installed histmcmc package version
"""

import subprocess
from typing import Any, Dict

import jax


def get_hardware_info() -> Dict[str, Any]:
    """
    Collect hardware information for the walk log.

    GPU fields are only present when nvidia-smi is available.
    """
    info = {
        'jax_backend': str(jax.default_backend()),
        'jax_devices': [str(d) for d in jax.devices()],
        'jax_version': jax.__version__,
        'x64_enabled': bool(jax.config.jax_enable_x64),
    }

    # Try to get GPU info via nvidia-smi
    try:
        result = subprocess.run(
            ['nvidia-smi', '--query-gpu=name,memory.total,driver_version', '--format=csv,noheader'],
            capture_output=True, text=True, timeout=5
        )
        if result.returncode == 0:
            parts = result.stdout.strip().split(', ')
            if len(parts) >= 3:
                info['gpu_name'] = parts[0]
                info['gpu_memory'] = parts[1]
                info['driver_version'] = parts[2]
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass

    return info


def get_histmcmc_version() -> str:
    """Get histmcmc package version."""
    try:
        from histmcmc import __version__
        return __version__
    except (ImportError, AttributeError):
        return "unknown"
