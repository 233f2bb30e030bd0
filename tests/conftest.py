"""
Pytest configuration and shared fixtures for histmcmc tests.
"""

import pytest
import numpy as np

# Import the package first so jax_config sets JAX_ENABLE_X64 before JAX loads
import histmcmc  # noqa: F401
from histmcmc import MCMC, Observable, Signal, Systematic, SystematicType


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def energy():
    """One observable on field 0 with 10 unit-width bins."""
    return Observable('energy', field_index=0, lower=0.0, upper=10.0, bins=10)


@pytest.fixture
def energy_shift():
    """Constrained shift systematic on field 0."""
    return Systematic('energy_shift', SystematicType.SHIFT, field_index=0,
                      means=[0.0], sigmas=[0.1])


@pytest.fixture
def flat_events():
    """Events uniform on [0, 10), one field."""
    rng = np.random.default_rng(1)
    return rng.uniform(0.0, 10.0, size=(2000, 1))


@pytest.fixture
def two_signal_fit(energy, energy_shift):
    """
    Falling and rising spectra on [0, 10) sharing one energy shift.

    Returns:
        (mcmc, data, truth) where truth maps signal name to its generated count
    """
    rng = np.random.default_rng(7)
    falling_mc = rng.exponential(3.0, size=(20000, 1))
    rising_mc = 10.0 - rng.exponential(3.0, size=(20000, 1))

    falling = Signal('falling', 400.0, falling_mc, 1, [energy], [energy_shift])
    rising = Signal('rising', 200.0, rising_mc, 1, [energy], [energy_shift])

    truth = {'falling': 400, 'rising': 200}
    data = np.concatenate([
        rng.exponential(3.0, size=(truth['falling'], 1)),
        10.0 - rng.exponential(3.0, size=(truth['rising'], 1)),
    ])
    data = data[(data[:, 0] >= 0.0) & (data[:, 0] < 10.0)]

    mcmc = MCMC([falling, rising], [energy_shift], [energy])
    return mcmc, data, truth


def make_signal(name, samples, observables, systematics=(), nexpected=100.0, **kwargs):
    """Build a one-field Signal from a 1-D array of sample values."""
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 1)
    return Signal(name, nexpected, samples, 1, observables, systematics, **kwargs)


@pytest.fixture
def signal_factory():
    """Expose make_signal to tests."""
    return make_signal
