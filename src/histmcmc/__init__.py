"""
histmcmc - Binned Likelihood Fits by Metropolis MCMC

Public API:
    Descriptors:
        Observable - Binned field of the sample matrix (range, bins, exclusion window)
        Systematic - Nuisance parameter family applied as a coordinate transform
        SystematicType - Enum of transform kinds (SHIFT, SCALE, RESOLUTION_SCALE)
        Source - Rate group shared by signals with the same category
        field_index - Look up a field name in a field list

    PDFs and Signals:
        HistogramPDF - N-dimensional histogram PDF with runtime systematics
        SystematicTransform - Systematic bound to its parameter slots
        apply_exclusions - Drop events inside every declared exclusion window
        Signal - A signal's metadata, efficiency and histogram PDF
        build_sources - Group signals into rate sources by category

    Walk:
        MCMC - Metropolis walk engine; calling it returns a SampleStore
        SampleStore - Ordered (parameter vector, NLL) samples with labels
        NLLEvaluator - Negative log-likelihood with a selectable backend

    Errors:
        ConfigurationError - Invalid configuration, raised before a walk starts
        WalkError - Failure while the walk is running
        ResourceError - Buffers do not fit in host or device memory

Example:
    from histmcmc import MCMC, Observable, Signal, Systematic

    energy = Observable('energy', field_index=0, lower=0.0, upper=10.0, bins=20)
    shift = Systematic('energy_shift', 'shift', field_index=0, means=[0.0], sigmas=[0.1])

    signal = Signal('b8', nexpected=500.0, samples=mc_events, nfields=1,
                    observables=[energy], systematics=[shift])
    mcmc = MCMC([signal], [shift], [energy])
    store = mcmc(data_events, nsteps=20000, burnin_fraction=0.1)
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

# Import mcmc subpackage to register the WalkArrays pytree
from . import mcmc as _mcmc  # noqa: F401

from .error_handling import ConfigurationError, ResourceError, WalkError
from .observables import Observable, Source, Systematic, SystematicType, field_index
from .pdf import HistogramPDF, SystematicTransform, apply_exclusions
from .signals import Signal, build_sources
from .samples import SampleStore
from .mcmc import MCMC, NLLEvaluator

__version__ = "0.1.0"

__all__ = [
    # Descriptors
    'Observable',
    'Systematic',
    'SystematicType',
    'Source',
    'field_index',
    # PDFs and signals
    'HistogramPDF',
    'SystematicTransform',
    'apply_exclusions',
    'Signal',
    'build_sources',
    # Walk
    'MCMC',
    'SampleStore',
    'NLLEvaluator',
    # Errors
    'ConfigurationError',
    'WalkError',
    'ResourceError',
]
